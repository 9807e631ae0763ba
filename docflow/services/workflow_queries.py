"""
Read-only workflow queries for the HTTP layer and embedding callers.

"Mine" means workflows the principal started or holds a task on.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import exists, func, or_, select

from docflow.core.exceptions import NotFoundError, ValidationError
from docflow.models import db
from docflow.models.workflow import (
    InstanceStatus,
    TaskStatus,
    WorkflowInstance,
    WorkflowTask,
)
from docflow.services import history_ledger


def get_instance(instance_id: int) -> WorkflowInstance:
    instance = db.session.get(WorkflowInstance, instance_id)
    if instance is None:
        raise NotFoundError(resource="WorkflowInstance", resource_id=instance_id)
    return instance


def get_instance_detail(instance_id: int, now: datetime) -> dict:
    """Instance with its tasks (step order, then creation) and full history."""
    instance = get_instance(instance_id)
    tasks = db.session.execute(
        select(WorkflowTask)
        .where(WorkflowTask.instance_id == instance_id)
        .order_by(WorkflowTask.step_order.asc(), WorkflowTask.id.asc())
    ).scalars().all()

    data = instance.to_dict(now=now)
    data["steps"] = (instance.template_snapshot or {}).get("steps", [])
    data["tasks"] = [t.to_dict(now=now) for t in tasks]
    data["history"] = [h.to_dict() for h in history_ledger.entries_for(instance_id)]
    return data


def _parse_statuses(status: str | list[str] | None) -> list[str]:
    if not status:
        return []
    raw = status.split(",") if isinstance(status, str) else status
    values = []
    for item in raw:
        item = item.strip().upper()
        if not item:
            continue
        try:
            values.append(InstanceStatus(item).value)
        except ValueError:
            raise ValidationError(
                f"Unknown status '{item}'",
                details={"status": f"must be one of {[s.value for s in InstanceStatus]}"},
            ) from None
    return values


def list_mine(
    principal: str,
    *,
    status: str | list[str] | None = None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
):
    """Workflows started by or assigned to ``principal``, newest first.

    Returns:
        (items, total)
    """
    assigned = exists().where(
        WorkflowTask.instance_id == WorkflowInstance.id,
        WorkflowTask.assignee == principal,
    )
    stmt = select(WorkflowInstance).where(or_(WorkflowInstance.initiated_by == principal, assigned))

    statuses = _parse_statuses(status)
    if statuses:
        stmt = stmt.where(WorkflowInstance.status.in_(statuses))
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(
            WorkflowInstance.title.ilike(pattern),
            WorkflowInstance.description.ilike(pattern),
            WorkflowInstance.document_id.ilike(pattern),
        ))

    total = db.session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    items = db.session.execute(
        stmt.order_by(WorkflowInstance.created_at.desc(), WorkflowInstance.id.desc())
        .limit(limit).offset(offset)
    ).scalars().all()
    return items, total


def list_my_tasks(principal: str, status: str | None = TaskStatus.PENDING.value, *,
                  limit: int = 50, offset: int = 0):
    """Tasks assigned to ``principal``, oldest due first. Returns (items, total)."""
    stmt = select(WorkflowTask).where(WorkflowTask.assignee == principal)
    if status:
        try:
            stmt = stmt.where(WorkflowTask.status == TaskStatus(status.upper()).value)
        except ValueError:
            raise ValidationError(
                f"Unknown task status '{status}'",
                details={"status": f"must be one of {[s.value for s in TaskStatus]}"},
            ) from None

    total = db.session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    items = db.session.execute(
        stmt.order_by(WorkflowTask.due_date.asc().nulls_last(), WorkflowTask.id.asc())
        .limit(limit).offset(offset)
    ).scalars().all()
    return items, total
