"""
Task manager.

Creates, completes, reassigns and voids WorkflowTask rows. Never commits:
every method runs inside the orchestrator's transaction for the owning
instance.

Completion is a conditional UPDATE ... WHERE status = 'PENDING' so that
exactly one of several concurrent callers moves a task to COMPLETED; the
others get InvalidTransitionError.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Callable

from sqlalchemy import select, update

from docflow.core.clock import Clock
from docflow.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from docflow.models import db
from docflow.models.workflow import (
    HistoryAction,
    TaskAction,
    TaskStatus,
    WorkflowInstance,
    WorkflowStep,
    WorkflowTask,
)
from docflow.services import history_ledger

logger = logging.getLogger(__name__)


class TaskManager:
    def __init__(self, clock: Clock) -> None:
        self.clock = clock

    # ── Read ──────────────────────────────────────────────────────────────

    def get(self, task_id: int) -> WorkflowTask:
        task = db.session.get(WorkflowTask, task_id)
        if task is None:
            raise NotFoundError(resource="WorkflowTask", resource_id=task_id)
        return task

    def tasks_for_step(self, instance_id: int, step_order: int) -> list[WorkflowTask]:
        """Fresh read of every task ever created for one step of one instance."""
        stmt = (
            select(WorkflowTask)
            .where(WorkflowTask.instance_id == instance_id, WorkflowTask.step_order == step_order)
            .order_by(WorkflowTask.id.asc())
            .execution_options(populate_existing=True)
        )
        return list(db.session.execute(stmt).scalars())

    def tasks_for_instance(self, instance_id: int) -> list[WorkflowTask]:
        stmt = (
            select(WorkflowTask)
            .where(WorkflowTask.instance_id == instance_id)
            .order_by(WorkflowTask.step_order.asc(), WorkflowTask.id.asc())
        )
        return list(db.session.execute(stmt).scalars())

    def open_tasks(self, instance_id: int) -> list[WorkflowTask]:
        stmt = (
            select(WorkflowTask)
            .where(WorkflowTask.instance_id == instance_id, WorkflowTask.status == TaskStatus.PENDING.value)
            .order_by(WorkflowTask.id.asc())
        )
        return list(db.session.execute(stmt).scalars())

    # ── Write ─────────────────────────────────────────────────────────────

    def create_tasks_for_step(
        self,
        instance: WorkflowInstance,
        step,
        approvers: list[str],
        performed_by: str = "system",
    ) -> list[WorkflowTask]:
        """One PENDING task per approver, plus a STEP_STARTED history row.

        Due date is now + step.sla_hours when the step has an SLA, otherwise
        the instance due date.
        """
        now = self.clock.now()
        due = now + timedelta(hours=step.sla_hours) if step.sla_hours else instance.due_date
        # The snapshot may outlive the template step it was taken from
        step_id = step.step_id if step.step_id and db.session.get(WorkflowStep, step.step_id) else None

        tasks = [
            WorkflowTask(
                instance_id=instance.id,
                step_id=step_id,
                step_order=step.order,
                step_name=step.name,
                assignee=principal,
                status=TaskStatus.PENDING.value,
                due_date=due,
                created_at=now,
                updated_at=now,
            )
            for principal in approvers
        ]
        db.session.add_all(tasks)
        db.session.flush()

        history_ledger.append(
            instance.id,
            HistoryAction.STEP_STARTED,
            f"Step {step.order} '{step.name}' assigned to {', '.join(approvers)}",
            performed_by,
            at=now,
            step_order=step.order,
        )
        logger.info(
            "Created %d task(s) for instance %s step %s",
            len(tasks), instance.id, step.order,
            extra={"instance_id": instance.id, "event_type": HistoryAction.STEP_STARTED.value},
        )
        return tasks

    def complete_task(
        self,
        task_id: int,
        action: TaskAction | str,
        comments: str | None,
        actor: str,
        on_completed: Callable[[WorkflowTask], object] | None = None,
    ) -> WorkflowTask:
        """PENDING → COMPLETED for the assignee only.

        Raises:
            NotFoundError: unknown task.
            ValidationError: action is not APPROVE or REJECT.
            InvalidTransitionError: task not pending, actor is not the
                assignee, or a concurrent caller completed it first.
        """
        try:
            action = TaskAction(str(action).upper())
        except ValueError:
            raise ValidationError(
                f"Invalid task action '{action}'",
                details={"action": f"must be one of {[a.value for a in TaskAction]}"},
            ) from None

        task = self.get(task_id)
        if task.status != TaskStatus.PENDING:
            raise InvalidTransitionError(
                f"Task {task_id} is {task.status}, not PENDING", current_state=task.status,
            )
        if task.assignee != actor:
            raise InvalidTransitionError(
                f"Task {task_id} is assigned to {task.assignee}, not {actor}", current_state=task.status,
            )

        now = self.clock.now()
        result = db.session.execute(
            update(WorkflowTask)
            .where(
                WorkflowTask.id == task_id,
                WorkflowTask.status == TaskStatus.PENDING.value,
                WorkflowTask.assignee == actor,
            )
            .values(
                status=TaskStatus.COMPLETED.value,
                action=action.value,
                comments=comments,
                completed_by=actor,
                completed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError(f"Task {task_id} was completed concurrently")
        db.session.refresh(task)

        logger.info(
            "Task %s %s by %s", task_id, action.value, actor,
            extra={"instance_id": task.instance_id, "task_id": task_id},
        )
        if on_completed is not None:
            on_completed(task)
        return task

    def reassign_task(self, task_id: int, new_assignee: str, reason: str | None,
                      performed_by: str) -> WorkflowTask:
        """Move a PENDING task to another principal; due date is kept."""
        new_assignee = (new_assignee or "").strip()
        if not new_assignee:
            raise ValidationError("new_assignee is required", details={"new_assignee": "is required"})

        task = self.get(task_id)
        if task.status != TaskStatus.PENDING:
            raise InvalidTransitionError(
                f"Task {task_id} is {task.status}; only pending tasks can be reassigned",
                current_state=task.status,
            )
        if new_assignee == task.assignee:
            raise ValidationError(
                f"Task {task_id} is already assigned to {new_assignee}",
                details={"new_assignee": "must differ from the current assignee"},
            )
        already = db.session.execute(
            select(WorkflowTask.id).where(
                WorkflowTask.instance_id == task.instance_id,
                WorkflowTask.step_order == task.step_order,
                WorkflowTask.assignee == new_assignee,
                WorkflowTask.status != TaskStatus.VOIDED.value,
            )
        ).first()
        if already:
            raise ValidationError(
                f"{new_assignee} already holds a task for step {task.step_order}",
                details={"new_assignee": "already assigned on this step"},
            )

        now = self.clock.now()
        previous = task.assignee
        task.assignee = new_assignee
        task.updated_at = now

        details = f"Task {task.id} reassigned from {previous} to {new_assignee}"
        if reason:
            details += f": {reason}"
        history_ledger.append(
            task.instance_id, HistoryAction.REASSIGNED, details, performed_by,
            at=now, step_order=task.step_order, task_id=task.id,
        )
        logger.info(details, extra={"instance_id": task.instance_id, "task_id": task.id})
        return task

    def void_open_tasks(self, instance_id: int, step_order: int | None = None) -> list[str]:
        """PENDING → VOIDED for the instance (or one step of it).

        Returns the assignees whose tasks were voided.
        """
        conditions = [
            WorkflowTask.instance_id == instance_id,
            WorkflowTask.status == TaskStatus.PENDING.value,
        ]
        if step_order is not None:
            conditions.append(WorkflowTask.step_order == step_order)

        assignees = list(db.session.execute(select(WorkflowTask.assignee).where(*conditions)).scalars())
        if not assignees:
            return []
        db.session.execute(
            update(WorkflowTask)
            .where(*conditions)
            .values(status=TaskStatus.VOIDED.value, updated_at=self.clock.now())
            .execution_options(synchronize_session="fetch")
        )
        logger.debug("Voided %d open task(s) on instance %s", len(assignees), instance_id,
                     extra={"instance_id": instance_id})
        return assignees
