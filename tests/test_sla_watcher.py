"""
Tests: SLA sweep (instance expiry and overdue task notices).
"""

from docflow.core.clock import as_utc
from docflow.models.notification import Notification
from docflow.models.workflow import HistoryAction, InstanceStatus, TaskStatus
from docflow.services import history_ledger
from docflow.services.sla_watcher import SYSTEM_ACTOR, SLAWatcher


def _start(wf, make_template, *steps, **template_fields):
    tpl = make_template(*steps, **template_fields)
    return wf.orchestrator.start_workflow(tpl.id, "DOC-7", "Vendor onboarding", "ivan")


class TestExpiry:
    def test_overdue_instance_expires_exactly_once(self, wf, make_template):
        instance = _start(wf, make_template, default_sla_hours=24)
        wf.clock.advance(hours=25)
        assert instance.is_overdue(wf.clock.now()) is True

        first = wf.sla_watcher.sweep()
        second = wf.sla_watcher.sweep()

        assert first["expired"] == 1
        assert second == {"checked": 0, "expired": 0, "skipped": 0, "tasks_flagged": 0}
        assert instance.status == InstanceStatus.EXPIRED
        assert instance.is_overdue(wf.clock.now()) is False
        assert as_utc(instance.end_date) == wf.clock.now()
        assert history_ledger.actions_for(instance.id).count(HistoryAction.EXPIRED.value) == 1

        entry = history_ledger.entries_for(instance.id)[-1]
        assert entry.performed_by == SYSTEM_ACTOR

    def test_expiry_voids_tasks_and_notifies(self, wf, hook, make_template):
        instance = _start(wf, make_template, default_sla_hours=24)
        wf.clock.advance(days=2)
        wf.sla_watcher.sweep()

        tasks = wf.tasks.tasks_for_instance(instance.id)
        assert [t.status for t in tasks] == [TaskStatus.VOIDED.value]
        expired = hook.of_type("EXPIRED")
        assert expired[0].recipients == ("ivan", "alice")

    def test_not_yet_due_is_left_alone(self, wf, make_template):
        instance = _start(wf, make_template, default_sla_hours=24)
        wf.clock.advance(hours=23)
        assert wf.sla_watcher.sweep()["expired"] == 0
        assert instance.status == InstanceStatus.IN_PROGRESS

    def test_no_due_date_never_expires(self, wf, make_template):
        instance = _start(wf, make_template)
        wf.clock.advance(days=365)
        wf.sla_watcher.sweep()
        assert instance.status == InstanceStatus.IN_PROGRESS

    def test_on_hold_is_overdue_but_not_expired(self, wf, make_template):
        instance = _start(wf, make_template, default_sla_hours=1)
        wf.orchestrator.hold(instance.id, "ivan")
        wf.clock.advance(hours=2)

        assert instance.is_overdue(wf.clock.now()) is True
        assert wf.sla_watcher.sweep()["checked"] == 0
        assert instance.status == InstanceStatus.ON_HOLD

    def test_changed_instance_is_skipped(self, wf, make_template):
        """The flip is conditional on the version that was read."""
        instance = _start(wf, make_template, default_sla_hours=1)
        wf.clock.advance(hours=2)

        assert wf.sla_watcher._expire(instance.id, instance.version - 1, wf.clock.now()) is False
        assert instance.status == InstanceStatus.IN_PROGRESS
        assert wf.sla_watcher._expire(instance.id, instance.version, wf.clock.now()) is True


class TestOverdueTasks:
    def test_overdue_task_notified_once(self, wf, make_template):
        instance = _start(wf, make_template, {"name": "Review", "approvers": ["alice"], "sla_hours": 4},
                          default_sla_hours=100)
        wf.clock.advance(hours=5)

        assert wf.sla_watcher.sweep()["tasks_flagged"] == 1
        assert wf.sla_watcher.sweep()["tasks_flagged"] == 0

        task = wf.tasks.open_tasks(instance.id)[0]
        assert task.status == TaskStatus.PENDING
        assert instance.status == InstanceStatus.IN_PROGRESS
        assert as_utc(task.overdue_notified_at) == wf.clock.now()
        notices = Notification.query.filter_by(recipient="alice", event_type="TASK_OVERDUE").all()
        assert len(notices) == 1

    def test_notices_can_be_disabled(self, wf, clock, hook, make_template):
        _start(wf, make_template, {"name": "Review", "approvers": ["alice"], "sla_hours": 4},
               default_sla_hours=100)
        clock.advance(hours=5)
        quiet = SLAWatcher(clock, hook=hook, notify_overdue_tasks=False)
        assert quiet.sweep()["tasks_flagged"] == 0
        assert hook.of_type("TASK_OVERDUE") == []
