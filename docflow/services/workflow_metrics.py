"""
Workflow metrics.

Derived, read-only aggregates for reporting consumers. Nothing here is on
the write path. Durations are computed in Python from stored start/end
dates so the same code runs on SQLite and PostgreSQL.

    overview(since, until)    counts by status, average approval hours, approval rate
    by_template(...)          the same, per template
    by_step(template_id, ...) per-step task completion rate
    my_metrics(principal)     personal task and initiated-workflow counters
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime

from sqlalchemy import func, select

from docflow.core.clock import as_utc
from docflow.models import db
from docflow.models.workflow import (
    InstanceStatus,
    TaskAction,
    TaskStatus,
    WorkflowInstance,
    WorkflowTask,
    WorkflowTemplate,
)


def _window(stmt, since: datetime | None, until: datetime | None):
    if since is not None:
        stmt = stmt.where(WorkflowInstance.created_at >= since)
    if until is not None:
        stmt = stmt.where(WorkflowInstance.created_at < until)
    return stmt


def _hours(start, end) -> float | None:
    if start is None or end is None:
        return None
    return (as_utc(end) - as_utc(start)).total_seconds() / 3600.0


def _summarise(counts: dict[str, int], durations: list[float]) -> dict:
    by_status = {s.value: counts.get(s.value, 0) for s in InstanceStatus}
    decided = by_status[InstanceStatus.APPROVED.value] + by_status[InstanceStatus.REJECTED.value]
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "average_approval_hours": round(sum(durations) / len(durations), 2) if durations else None,
        "approval_rate": (
            round(by_status[InstanceStatus.APPROVED.value] / decided, 4) if decided else None
        ),
    }


def overview(since: datetime | None = None, until: datetime | None = None) -> dict:
    counts = dict(db.session.execute(
        _window(
            select(WorkflowInstance.status, func.count(WorkflowInstance.id))
            .group_by(WorkflowInstance.status),
            since, until,
        )
    ).all())
    durations = [
        h for h in (
            _hours(start, end) for start, end in db.session.execute(
                _window(
                    select(WorkflowInstance.start_date, WorkflowInstance.end_date)
                    .where(WorkflowInstance.status == InstanceStatus.APPROVED.value),
                    since, until,
                )
            ).all()
        ) if h is not None
    ]
    return _summarise(counts, durations)


def by_template(since: datetime | None = None, until: datetime | None = None) -> list[dict]:
    rows = db.session.execute(
        _window(
            select(
                WorkflowInstance.template_id,
                WorkflowInstance.status,
                WorkflowInstance.start_date,
                WorkflowInstance.end_date,
            ),
            since, until,
        )
    ).all()
    names = dict(db.session.execute(select(WorkflowTemplate.id, WorkflowTemplate.name)).all())

    counts: dict[int, dict[str, int]] = defaultdict(lambda: defaultdict(int))
    durations: dict[int, list[float]] = defaultdict(list)
    for template_id, status, start, end in rows:
        counts[template_id][status] += 1
        if status == InstanceStatus.APPROVED.value:
            hours = _hours(start, end)
            if hours is not None:
                durations[template_id].append(hours)

    result = []
    for template_id in sorted(counts):
        entry = {"template_id": template_id, "template_name": names.get(template_id)}
        entry.update(_summarise(counts[template_id], durations[template_id]))
        result.append(entry)
    return result


def by_step(template_id: int | None = None, since: datetime | None = None,
            until: datetime | None = None) -> list[dict]:
    """Completion rate per (template, step): completed tasks / live tasks.

    The window applies to the owning instance's created_at, like overview().
    """
    stmt = (
        select(
            WorkflowInstance.template_id,
            WorkflowTask.step_order,
            WorkflowTask.step_name,
            WorkflowTask.status,
            WorkflowTask.action,
            func.count(WorkflowTask.id),
        )
        .join(WorkflowInstance, WorkflowInstance.id == WorkflowTask.instance_id)
        .group_by(
            WorkflowInstance.template_id,
            WorkflowTask.step_order,
            WorkflowTask.step_name,
            WorkflowTask.status,
            WorkflowTask.action,
        )
    )
    if template_id is not None:
        stmt = stmt.where(WorkflowInstance.template_id == template_id)
    stmt = _window(stmt, since, until)

    buckets: dict[tuple[int, int], dict] = {}
    for tpl_id, order, name, status, action, count in db.session.execute(stmt).all():
        b = buckets.setdefault((tpl_id, order), {
            "template_id": tpl_id, "step_order": order, "step_name": name,
            "tasks": 0, "completed": 0, "approved": 0, "rejected": 0, "pending": 0, "voided": 0,
        })
        if status == TaskStatus.VOIDED.value:
            b["voided"] += count
            continue
        b["tasks"] += count
        if status == TaskStatus.PENDING.value:
            b["pending"] += count
        elif status == TaskStatus.COMPLETED.value:
            b["completed"] += count
            if action == TaskAction.APPROVE.value:
                b["approved"] += count
            elif action == TaskAction.REJECT.value:
                b["rejected"] += count

    result = []
    for key in sorted(buckets):
        b = buckets[key]
        b["completion_rate"] = round(b["completed"] / b["tasks"], 4) if b["tasks"] else None
        result.append(b)
    return result


def my_metrics(principal: str, now: datetime) -> dict:
    tasks = db.session.execute(
        select(WorkflowTask).where(WorkflowTask.assignee == principal)
    ).scalars().all()
    completed = [t for t in tasks if t.status == TaskStatus.COMPLETED.value]
    response_hours = [
        h for h in (_hours(t.created_at, t.completed_at) for t in completed) if h is not None
    ]

    initiated = dict(db.session.execute(
        select(WorkflowInstance.status, func.count(WorkflowInstance.id))
        .where(WorkflowInstance.initiated_by == principal)
        .group_by(WorkflowInstance.status)
    ).all())

    return {
        "principal": principal,
        "pending_tasks": sum(1 for t in tasks if t.status == TaskStatus.PENDING.value),
        "overdue_tasks": sum(1 for t in tasks if t.is_overdue(now)),
        "completed_tasks": len(completed),
        "approved": sum(1 for t in completed if t.action == TaskAction.APPROVE.value),
        "rejected": sum(1 for t in completed if t.action == TaskAction.REJECT.value),
        "average_response_hours": (
            round(sum(response_hours) / len(response_hours), 2) if response_hours else None
        ),
        "initiated": {s.value: initiated.get(s.value, 0) for s in InstanceStatus},
    }
