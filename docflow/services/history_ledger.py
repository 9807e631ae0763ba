"""
Workflow history ledger.

append() is the only write path for WorkflowHistory. Rows are never updated
or deleted; ORM attempts to do so raise ImmutableRecordError. Reads return
entries in action_date order, insertion order breaking ties, which is the
order the engine wrote them in.

append() only adds to the session: the calling transition owns the commit,
so a history row exists if and only if its state change was committed.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import event, select

from docflow.core.exceptions import ImmutableRecordError
from docflow.models import db
from docflow.models.workflow import HistoryAction, WorkflowHistory

logger = logging.getLogger(__name__)


def append(
    instance_id: int,
    action: HistoryAction | str,
    details: str = "",
    performed_by: str = "system",
    *,
    at: datetime,
    step_order: int | None = None,
    task_id: int | None = None,
) -> WorkflowHistory:
    entry = WorkflowHistory(
        instance_id=instance_id,
        action=HistoryAction(action).value,
        details=details or "",
        performed_by=performed_by or "system",
        step_order=step_order,
        task_id=task_id,
        action_date=at,
    )
    db.session.add(entry)
    logger.debug(
        "history instance=%s action=%s step=%s by=%s",
        instance_id, entry.action, step_order, entry.performed_by,
        extra={"instance_id": instance_id, "event_type": entry.action},
    )
    return entry


def entries_for(instance_id: int) -> list[WorkflowHistory]:
    stmt = (
        select(WorkflowHistory)
        .where(WorkflowHistory.instance_id == instance_id)
        .order_by(WorkflowHistory.action_date.asc(), WorkflowHistory.id.asc())
    )
    return list(db.session.execute(stmt).scalars())


def actions_for(instance_id: int) -> list[str]:
    return [e.action for e in entries_for(instance_id)]


@event.listens_for(WorkflowHistory, "before_update")
def _reject_update(mapper, connection, target):
    raise ImmutableRecordError(f"WorkflowHistory id={target.id} is append-only")


@event.listens_for(WorkflowHistory, "before_delete")
def _reject_delete(mapper, connection, target):
    raise ImmutableRecordError(f"WorkflowHistory id={target.id} cannot be deleted")
