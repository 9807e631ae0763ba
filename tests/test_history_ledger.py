"""
Tests: append-only workflow history.
"""

import pytest

from docflow.core.exceptions import ImmutableRecordError
from docflow.models import db as _db
from docflow.models.workflow import HistoryAction
from docflow.services import history_ledger


@pytest.fixture()
def instance(wf, make_template):
    tpl = make_template()
    return wf.orchestrator.start_workflow(tpl.id, "DOC-3", "Expense report", "ivan")


def test_entries_come_back_in_write_order(wf, instance):
    """Same-timestamp rows keep insertion order."""
    now = wf.clock.now()
    history_ledger.append(instance.id, HistoryAction.ON_HOLD, "a", "ivan", at=now)
    history_ledger.append(instance.id, HistoryAction.RESUMED, "b", "ivan", at=now)
    _db.session.commit()

    assert history_ledger.actions_for(instance.id) == [
        "CREATED", "STEP_STARTED", "ON_HOLD", "RESUMED",
    ]


def test_update_is_rejected(instance):
    entry = history_ledger.entries_for(instance.id)[0]
    entry.details = "rewritten"
    with pytest.raises(ImmutableRecordError):
        _db.session.flush()
    _db.session.rollback()

    assert history_ledger.entries_for(instance.id)[0].details != "rewritten"


def test_delete_is_rejected(instance):
    entry = history_ledger.entries_for(instance.id)[0]
    _db.session.delete(entry)
    with pytest.raises(ImmutableRecordError):
        _db.session.flush()
    _db.session.rollback()

    assert len(history_ledger.entries_for(instance.id)) == 2


def test_unknown_action_is_refused(wf, instance):
    with pytest.raises(ValueError):
        history_ledger.append(instance.id, "RENAMED", "", "ivan", at=wf.clock.now())


def test_blank_actor_recorded_as_system(wf, instance):
    entry = history_ledger.append(instance.id, HistoryAction.ON_HOLD, "", "", at=wf.clock.now())
    assert entry.performed_by == "system"
    assert entry.details == ""


def test_history_rows_are_never_removed_by_transitions(wf, instance):
    task = wf.tasks.open_tasks(instance.id)[0]
    wf.orchestrator.complete_task(task.id, "REJECT", "alice", comments="no receipt")

    entries = history_ledger.entries_for(instance.id)
    assert [e.action for e in entries] == ["CREATED", "STEP_STARTED", "REJECTED"]
    assert entries[-1].performed_by == "alice"
