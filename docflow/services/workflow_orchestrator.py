"""
Workflow orchestrator.

Owns the instance lifecycle:

    PENDING ──start──▶ IN_PROGRESS ──▶ APPROVED | REJECTED | CANCELLED | EXPIRED
                          ▲   │
                   resume │   │ hold
                          │   ▼
                         ON_HOLD

Every public action is one transaction:
    1. lock the instance row (SELECT ... FOR UPDATE where supported),
    2. claim it by bumping ``version`` and flushing, so a concurrent writer
       that read the same version fails with ConcurrentModificationError,
    3. apply the transition, write history, queue notifications,
    4. commit, or roll back everything on any error.

The engine never retries on conflict: replaying task creation blindly is
not safe, so the caller re-reads and decides.

History written per transition (beyond CREATED):
    step entered          STEP_STARTED (by task_manager)
    step satisfied        STEP_COMPLETED, then the next step's STEP_STARTED
    last step satisfied   APPROVED
    step rejected         REJECTED
    optional step passed  STEP_SKIPPED
    no approvers          REJECTED ("NoApproversAvailable: ...")
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from docflow.core.clock import Clock, as_utc
from docflow.core.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    NoApproversAvailableError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from docflow.core.roles import Role
from docflow.models import db
from docflow.models.workflow import (
    CANCELLABLE_STATUSES,
    HistoryAction,
    InstanceStatus,
    Priority,
    TaskAction,
    WorkflowInstance,
    WorkflowTask,
)
from docflow.services import history_ledger, step_policy, template_catalog
from docflow.services.approver_resolver import ApproverResolver
from docflow.services.notification import InAppNotificationHook, NotificationHook, WorkflowEvent
from docflow.services.step_policy import PolicyDecision, StepOutcome, StuckStepDiagnostic
from docflow.services.task_manager import TaskManager
from docflow.services.template_catalog import StepSpec, TemplateSpec

logger = logging.getLogger(__name__)


class WorkflowOrchestrator:
    def __init__(
        self,
        clock: Clock,
        resolver: ApproverResolver,
        task_manager: TaskManager | None = None,
        hook: NotificationHook | None = None,
    ) -> None:
        self.clock = clock
        self.resolver = resolver
        self.tasks = task_manager or TaskManager(clock)
        self.hook = hook or InAppNotificationHook()

    # ═════════════════════════════════════════════════════════════════════
    # Actions
    # ═════════════════════════════════════════════════════════════════════

    def start_workflow(
        self,
        template_id: int,
        document_id: str,
        title: str,
        initiated_by: str,
        *,
        description: str = "",
        priority: Priority | str = Priority.NORMAL,
        document_attributes: dict | None = None,
        due_date: datetime | None = None,
        auto_start: bool = True,
    ) -> WorkflowInstance:
        """Create an instance for a document and, by default, start it.

        Due date precedence: explicit ``due_date``, then the template's
        default_sla_hours, then the sum of step SLAs when every step has one.

        Raises:
            NotFoundError: unknown template.
            ValidationError: inactive template, missing title/document, bad priority.
        """
        template = template_catalog.get(template_id)
        errors = {}
        if not template.is_active:
            errors["template_id"] = "template is inactive"
        if not template.steps:
            errors["template_id"] = "template has no steps"
        if not (document_id or "").strip():
            errors["document_id"] = "is required"
        if not (title or "").strip():
            errors["title"] = "is required"
        try:
            priority = Priority(str(getattr(priority, "value", priority) or Priority.NORMAL.value).upper())
        except ValueError:
            errors["priority"] = f"must be one of {[p.value for p in Priority]}"
        if errors:
            raise ValidationError("Cannot start workflow", details=errors)

        now = self.clock.now()
        with self._transaction():
            instance = WorkflowInstance(
                template_id=template.id,
                template_snapshot=template_catalog.snapshot(template),
                document_id=document_id.strip(),
                document_attributes=dict(document_attributes or {}),
                title=title.strip(),
                description=description or "",
                status=InstanceStatus.PENDING.value,
                priority=priority.value,
                initiated_by=initiated_by,
                due_date=as_utc(due_date),
                created_at=now,
                updated_at=now,
                version=1,
            )
            db.session.add(instance)
            db.session.flush()
            history_ledger.append(
                instance.id, HistoryAction.CREATED,
                f"Workflow '{instance.title}' created from template '{template.name}' "
                f"for document {instance.document_id}",
                initiated_by, at=now,
            )
            if auto_start:
                self.start(instance, initiated_by)

        logger.info(
            "Workflow %s created from template %s status=%s",
            instance.id, template.id, instance.status,
            extra={"instance_id": instance.id, "template_id": template.id},
        )
        return instance

    def submit(self, instance_id: int, actor: str, expected_version: int | None = None) -> WorkflowInstance:
        """Start a PENDING instance that was created with auto_start=False."""
        with self._transaction(instance_id):
            instance = self._lock(instance_id)
            self._authorize(instance, actor, "start")
            self.start(instance, actor, expected_version=expected_version)
        return instance

    def start(self, instance: WorkflowInstance, actor: str, expected_version: int | None = None) -> None:
        """PENDING → IN_PROGRESS and enter step 1. Runs in the caller's transaction.

        A required first step with nobody to approve it terminates the
        instance as REJECTED; that outcome is committed, not raised.
        """
        if instance.status != InstanceStatus.PENDING:
            raise InvalidTransitionError(
                f"Workflow {instance.id} is {instance.status}; only PENDING workflows can start",
                current_state=instance.status,
            )
        now = self.clock.now()
        self._claim(instance, now, expected_version)
        spec = self._spec(instance)

        instance.status = InstanceStatus.IN_PROGRESS.value
        instance.start_date = now
        if instance.due_date is None:
            hours = spec.default_sla_hours or spec.total_step_sla_hours()
            if hours:
                instance.due_date = now + timedelta(hours=hours)
        self._enter_step(instance, spec, spec.steps[0].order, actor)

    def complete_task(
        self,
        task_id: int,
        action: TaskAction | str,
        actor: str,
        comments: str | None = None,
        expected_version: int | None = None,
    ) -> WorkflowTask:
        """Record an approver's decision and advance the workflow if it resolves the step.

        Raises:
            NotFoundError: unknown task.
            InvalidTransitionError: task not pending, not the actor's, instance
                not IN_PROGRESS, or another approver won the race.
            ConcurrentModificationError: instance version conflict.
        """
        task = self.tasks.get(task_id)
        with self._transaction(task.instance_id):
            instance = self._lock(task.instance_id)
            if instance.status != InstanceStatus.IN_PROGRESS:
                raise InvalidTransitionError(
                    f"Workflow {instance.id} is {instance.status}; tasks can only be completed "
                    f"while IN_PROGRESS",
                    current_state=instance.status,
                )
            self._claim(instance, self.clock.now(), expected_version)
            self.tasks.complete_task(task_id, action, comments, actor, on_completed=self.on_task_completed)
        return task

    def cancel(self, instance_id: int, actor: str, reason: str | None = None,
               expected_version: int | None = None) -> WorkflowInstance:
        with self._transaction(instance_id):
            instance = self._lock(instance_id)
            self._authorize(instance, actor, "cancel")
            if instance.status not in CANCELLABLE_STATUSES:
                raise InvalidTransitionError(
                    f"Workflow {instance_id} is {instance.status} and cannot be cancelled",
                    current_state=instance.status,
                )
            self._claim(instance, self.clock.now(), expected_version)
            self._finalize(instance, InstanceStatus.CANCELLED, actor, reason or "Cancelled")
        return instance

    def hold(self, instance_id: int, actor: str, reason: str | None = None,
             expected_version: int | None = None) -> WorkflowInstance:
        return self._pause_or_resume(
            instance_id, actor, reason, expected_version,
            source=InstanceStatus.IN_PROGRESS, target=InstanceStatus.ON_HOLD,
            action=HistoryAction.ON_HOLD,
        )

    def resume(self, instance_id: int, actor: str, reason: str | None = None,
               expected_version: int | None = None) -> WorkflowInstance:
        return self._pause_or_resume(
            instance_id, actor, reason, expected_version,
            source=InstanceStatus.ON_HOLD, target=InstanceStatus.IN_PROGRESS,
            action=HistoryAction.RESUMED,
        )

    def reassign(self, task_id: int, new_assignee: str, actor: str, reason: str | None = None,
                 expected_version: int | None = None) -> WorkflowTask:
        """Hand a pending task to someone else (assignee, initiator or admin only)."""
        task = self.tasks.get(task_id)
        with self._transaction(task.instance_id):
            instance = self._lock(task.instance_id)
            if instance.status not in (InstanceStatus.IN_PROGRESS, InstanceStatus.ON_HOLD):
                raise InvalidTransitionError(
                    f"Workflow {instance.id} is {instance.status}; tasks cannot be reassigned",
                    current_state=instance.status,
                )
            if actor != task.assignee:
                self._authorize(instance, actor, "reassign")
            self._claim(instance, self.clock.now(), expected_version)
            self.tasks.reassign_task(task_id, new_assignee, reason, actor)
            self._emit(
                instance, HistoryAction.REASSIGNED.value, [task.assignee],
                title=f"Task reassigned to you: {instance.title}",
                message=reason or "", task_id=task.id,
            )
        return task

    # ═════════════════════════════════════════════════════════════════════
    # Step resolution
    # ═════════════════════════════════════════════════════════════════════

    def on_task_completed(self, task: WorkflowTask) -> PolicyDecision | None:
        """Re-evaluate the current step after one of its tasks completed.

        Runs inside complete_task's transaction with the instance claimed,
        so at most one completion per instance gets here at a time.
        """
        instance = db.session.get(WorkflowInstance, task.instance_id)
        if instance.status != InstanceStatus.IN_PROGRESS or task.step_order != instance.current_step_order:
            return None

        spec = self._spec(instance)
        step = spec.step(instance.current_step_order)
        decision = step_policy.evaluate(
            step, self.tasks.tasks_for_step(instance.id, step.order), instance.document_attributes,
        )
        logger.debug(
            "Step %s of workflow %s: %s (%d/%d approvals)",
            step.order, instance.id, decision.outcome.value, decision.approvals, decision.required,
            extra={"instance_id": instance.id, "task_id": task.id},
        )
        if decision.outcome == StepOutcome.PENDING:
            return decision

        actor = task.completed_by
        self.tasks.void_open_tasks(instance.id, step.order)

        if decision.outcome == StepOutcome.REJECTED:
            if step.is_required:
                details = f"Step {step.order} '{step.name}' rejected by {actor}"
                if task.comments:
                    details += f": {task.comments}"
                self._finalize(instance, InstanceStatus.REJECTED, actor, details)
            else:
                self._skip_step(instance, spec, step, actor,
                                f"optional step not approved ({decision.approvals}/{decision.required})")
            return decision

        if step.order >= spec.last_order:
            self._finalize(
                instance, InstanceStatus.APPROVED, actor,
                f"Step {step.order} '{step.name}' approved; workflow complete",
            )
        else:
            history_ledger.append(
                instance.id, HistoryAction.STEP_COMPLETED,
                f"Step {step.order} '{step.name}' approved ({decision.approvals}/{decision.required})",
                actor, at=self.clock.now(), step_order=step.order,
            )
            self._emit(instance, HistoryAction.STEP_COMPLETED.value, [instance.initiated_by],
                       title=f"Step approved: {instance.title}",
                       message=f"Step {step.order} '{step.name}' approved by {actor}")
            self._enter_step(instance, spec, step.order + 1, actor)
        return decision

    def _enter_step(self, instance: WorkflowInstance, spec: TemplateSpec, order: int, actor: str) -> None:
        step = spec.step(order)
        instance.current_step_order = order

        if step_policy.auto_approves(step, instance.document_attributes):
            self._skip_step(instance, spec, step, actor,
                            f"auto-approve condition '{step.auto_approve_condition}' met")
            return

        try:
            approvers = self.resolver.resolve(step)
        except NoApproversAvailableError as exc:
            logger.warning(
                "Workflow %s rejected: %s", instance.id, exc,
                extra={"instance_id": instance.id, "event_type": HistoryAction.REJECTED.value},
            )
            self._finalize(instance, InstanceStatus.REJECTED, actor, f"NoApproversAvailable: {exc}")
            return

        if not approvers:
            self._skip_step(instance, spec, step, actor, "no approvers resolved for optional step")
            return

        diagnostic = step_policy.diagnose(step, len(approvers))
        if diagnostic is not None and not step.is_required:
            self._skip_step(instance, spec, step, actor, diagnostic.message)
            return

        tasks = self.tasks.create_tasks_for_step(instance, step, approvers, performed_by=actor)
        for task in tasks:
            self._emit(
                instance, "TASK_ASSIGNED", [task.assignee],
                title=f"Approval requested: {instance.title}",
                message=f"Step {step.order} '{step.name}'", task_id=task.id,
            )
        self._emit(instance, HistoryAction.STEP_STARTED.value, [instance.initiated_by],
                   title=f"Workflow moved to step {step.order}: {instance.title}",
                   message=f"Waiting on {', '.join(approvers)}")
        if diagnostic is not None:
            self._report_stuck(instance, diagnostic, actor)

    def _skip_step(self, instance: WorkflowInstance, spec: TemplateSpec, step: StepSpec,
                   actor: str, reason: str) -> None:
        history_ledger.append(
            instance.id, HistoryAction.STEP_SKIPPED,
            f"Step {step.order} '{step.name}' skipped: {reason}",
            actor, at=self.clock.now(), step_order=step.order,
        )
        self._emit(instance, HistoryAction.STEP_SKIPPED.value, [instance.initiated_by],
                   title=f"Step skipped: {instance.title}",
                   message=f"Step {step.order} '{step.name}' skipped: {reason}")
        if step.order >= spec.last_order:
            self._finalize(instance, InstanceStatus.APPROVED, actor,
                           f"Step {step.order} '{step.name}' skipped; workflow complete")
        else:
            self._enter_step(instance, spec, step.order + 1, actor)

    def _report_stuck(self, instance: WorkflowInstance, diagnostic: StuckStepDiagnostic, actor: str) -> None:
        """Surface a step that can never reach quorum; the instance stays IN_PROGRESS."""
        logger.warning(
            "Stuck step on workflow %s: %s", instance.id, diagnostic.message,
            extra={"instance_id": instance.id, "event_type": HistoryAction.STEP_STUCK.value},
        )
        history_ledger.append(
            instance.id, HistoryAction.STEP_STUCK, diagnostic.message, actor,
            at=self.clock.now(), step_order=diagnostic.step_order,
        )
        self._emit(instance, HistoryAction.STEP_STUCK.value, [instance.initiated_by],
                   title=f"Workflow needs attention: {instance.title}", message=diagnostic.message)

    def _finalize(self, instance: WorkflowInstance, status: InstanceStatus, actor: str, details: str) -> None:
        now = self.clock.now()
        instance.status = status.value
        instance.end_date = now
        instance.updated_at = now
        voided = self.tasks.void_open_tasks(instance.id)
        history_ledger.append(
            instance.id, HistoryAction(status.value), details, actor,
            at=now, step_order=instance.current_step_order,
        )
        self._emit(instance, status.value, [instance.initiated_by, *voided],
                   title=f"Workflow {status.value.lower()}: {instance.title}", message=details)
        logger.info(
            "Workflow %s → %s (%s)", instance.id, status.value, details,
            extra={"instance_id": instance.id, "event_type": status.value},
        )

    def _pause_or_resume(self, instance_id, actor, reason, expected_version, *, source, target, action):
        with self._transaction(instance_id):
            instance = self._lock(instance_id)
            self._authorize(instance, actor, action.value.lower())
            if instance.status != source:
                raise InvalidTransitionError(
                    f"Workflow {instance_id} is {instance.status}; expected {source.value}",
                    current_state=instance.status,
                )
            now = self.clock.now()
            self._claim(instance, now, expected_version)
            instance.status = target.value
            history_ledger.append(
                instance.id, action, reason or "", actor,
                at=now, step_order=instance.current_step_order,
            )
            recipients = [t.assignee for t in self.tasks.open_tasks(instance.id)]
            self._emit(instance, action.value, recipients,
                       title=f"Workflow {action.value.lower().replace('_', ' ')}: {instance.title}",
                       message=reason or "")
        logger.info("Workflow %s → %s by %s", instance_id, target.value, actor,
                    extra={"instance_id": instance_id, "event_type": action.value})
        return instance

    # ═════════════════════════════════════════════════════════════════════
    # Helpers
    # ═════════════════════════════════════════════════════════════════════

    @contextmanager
    def _transaction(self, instance_id: int | None = None):
        try:
            yield
            db.session.commit()
        except StaleDataError:
            db.session.rollback()
            logger.warning("Version conflict on workflow %s", instance_id,
                           extra={"instance_id": instance_id})
            raise ConcurrentModificationError(instance_id) from None
        except Exception:
            db.session.rollback()
            raise

    def _lock(self, instance_id: int) -> WorkflowInstance:
        instance = db.session.execute(
            select(WorkflowInstance).where(WorkflowInstance.id == instance_id).with_for_update()
        ).scalar_one_or_none()
        if instance is None:
            raise NotFoundError(resource="WorkflowInstance", resource_id=instance_id)
        return instance

    def _claim(self, instance: WorkflowInstance, now: datetime, expected_version: int | None) -> None:
        """Bump the version and flush so a stale writer fails here, before any other change."""
        if expected_version is not None and instance.version != expected_version:
            raise ConcurrentModificationError(instance.id, expected_version, instance.version)
        instance.version = instance.version + 1
        instance.updated_at = now
        db.session.flush()

    def _authorize(self, instance: WorkflowInstance, actor: str, action: str) -> None:
        if actor == instance.initiated_by or self.resolver.has_role(actor, Role.ADMIN):
            return
        raise PermissionDeniedError(
            f"{actor} may not {action} workflow {instance.id}; only the initiator or an admin can"
        )

    def _spec(self, instance: WorkflowInstance) -> TemplateSpec:
        return template_catalog.spec_from_snapshot(instance.template_snapshot)

    def _emit(self, instance: WorkflowInstance, event_type: str, recipients, *, title: str = "",
              message: str = "", task_id: int | None = None) -> None:
        event = WorkflowEvent(
            instance_id=instance.id,
            event_type=event_type,
            recipients=tuple(dict.fromkeys(r for r in recipients if r)),
            title=title,
            message=message,
            task_id=task_id,
        )
        self.hook.emit(event)
