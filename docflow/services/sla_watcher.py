"""
SLA watcher.

Periodic sweep, safe to run any number of times and concurrently with user
actions:

1. Instances still IN_PROGRESS whose due date has passed become EXPIRED.
   The flip is a conditional UPDATE on (id, version, status), so an instance
   that changed since it was read is skipped and picked up next sweep; a
   second sweep over an unchanged instance finds nothing to do.
2. PENDING tasks past their own due date get one TASK_OVERDUE notice to the
   assignee (tracked by overdue_notified_at). Task status does not change.

Each expired instance commits on its own so one conflict never rolls back
the rest of the batch.
"""

from __future__ import annotations

import logging

from sqlalchemy import select, update

from docflow.core.clock import Clock
from docflow.models import db
from docflow.models.workflow import (
    HistoryAction,
    InstanceStatus,
    TaskStatus,
    WorkflowInstance,
    WorkflowTask,
)
from docflow.services import history_ledger
from docflow.services.notification import InAppNotificationHook, NotificationHook, WorkflowEvent
from docflow.services.task_manager import TaskManager

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system:sla-watcher"


class SLAWatcher:
    def __init__(
        self,
        clock: Clock,
        task_manager: TaskManager | None = None,
        hook: NotificationHook | None = None,
        batch_size: int = 200,
        notify_overdue_tasks: bool = True,
    ) -> None:
        self.clock = clock
        self.tasks = task_manager or TaskManager(clock)
        self.hook = hook or InAppNotificationHook()
        self.batch_size = batch_size
        self.notify_overdue_tasks = notify_overdue_tasks

    def sweep(self) -> dict:
        """Run both passes. Returns counters for the job record."""
        now = self.clock.now()
        result = {"checked": 0, "expired": 0, "skipped": 0, "tasks_flagged": 0}

        for instance_id, version in self._expiry_candidates(now):
            result["checked"] += 1
            if self._expire(instance_id, version, now):
                result["expired"] += 1
            else:
                result["skipped"] += 1

        if self.notify_overdue_tasks:
            result["tasks_flagged"] = self._flag_overdue_tasks(now)

        if result["expired"] or result["tasks_flagged"]:
            logger.info("SLA sweep: %s", result, extra={"event_type": "SLA_SWEEP"})
        return result

    # ── Instance expiry ───────────────────────────────────────────────────

    def _expiry_candidates(self, now) -> list[tuple[int, int]]:
        rows = db.session.execute(
            select(WorkflowInstance)
            .where(
                WorkflowInstance.status == InstanceStatus.IN_PROGRESS.value,
                WorkflowInstance.due_date.is_not(None),
                WorkflowInstance.due_date < now,
            )
            .order_by(WorkflowInstance.due_date.asc(), WorkflowInstance.id.asc())
            .limit(self.batch_size)
        ).scalars().all()
        # The SQL filter narrows the batch; is_overdue() is the authority
        return [(inst.id, inst.version) for inst in rows if inst.is_overdue(now)]

    def _expire(self, instance_id: int, version: int, now) -> bool:
        try:
            result = db.session.execute(
                update(WorkflowInstance)
                .where(
                    WorkflowInstance.id == instance_id,
                    WorkflowInstance.version == version,
                    WorkflowInstance.status == InstanceStatus.IN_PROGRESS.value,
                )
                .values(
                    status=InstanceStatus.EXPIRED.value,
                    end_date=now,
                    updated_at=now,
                    version=version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.info("Workflow %s changed since it was read; expiry deferred", instance_id,
                            extra={"instance_id": instance_id})
                return False

            voided = self.tasks.void_open_tasks(instance_id)
            instance = db.session.get(WorkflowInstance, instance_id)
            db.session.refresh(instance)
            history_ledger.append(
                instance_id, HistoryAction.EXPIRED,
                f"Due date {instance.due_date} passed while in progress",
                SYSTEM_ACTOR, at=now, step_order=instance.current_step_order,
            )
            self.hook.emit(WorkflowEvent(
                instance_id=instance_id,
                event_type=HistoryAction.EXPIRED.value,
                recipients=tuple(dict.fromkeys([instance.initiated_by, *voided])),
                title=f"Workflow expired: {instance.title}",
                message="The approval deadline passed before the workflow completed.",
            ))
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.warning("Workflow %s expired", instance_id,
                       extra={"instance_id": instance_id, "event_type": HistoryAction.EXPIRED.value})
        return True

    # ── Overdue task notices ──────────────────────────────────────────────

    def _flag_overdue_tasks(self, now) -> int:
        tasks = db.session.execute(
            select(WorkflowTask)
            .join(WorkflowInstance, WorkflowInstance.id == WorkflowTask.instance_id)
            .where(
                WorkflowTask.status == TaskStatus.PENDING.value,
                WorkflowTask.due_date.is_not(None),
                WorkflowTask.due_date < now,
                WorkflowTask.overdue_notified_at.is_(None),
                WorkflowInstance.status == InstanceStatus.IN_PROGRESS.value,
            )
            .order_by(WorkflowTask.id.asc())
            .limit(self.batch_size)
        ).scalars().all()

        flagged = 0
        try:
            for task in tasks:
                if not task.is_overdue(now):
                    continue
                task.overdue_notified_at = now
                self.hook.emit(WorkflowEvent(
                    instance_id=task.instance_id,
                    event_type="TASK_OVERDUE",
                    recipients=(task.assignee,),
                    title=f"Approval overdue: step {task.step_order} '{task.step_name}'",
                    message=f"Task {task.id} was due {task.due_date}.",
                    task_id=task.id,
                ))
                flagged += 1
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return flagged
