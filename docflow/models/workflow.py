"""
Document Approval Workflow Engine
Workflow domain models.

Models:
    - WorkflowTemplate: reusable, ordered approval process definition
    - WorkflowStep: one stage of a template (policy + approver pool)
    - StepRole / StepApprover: role-based and direct approver pool entries
    - WorkflowInstance: one run of a template against one document
    - WorkflowTask: one approver obligation for one step of one instance
    - WorkflowHistory: append-only audit trail of instance state changes

Enum columns are stored as their string value; every enum below is a
(str, Enum) so comparisons against the stored string hold directly.
"""

from datetime import datetime, timezone
from enum import Enum

from docflow.core.clock import as_utc
from docflow.models import db


# ── Enums ────────────────────────────────────────────────────────────────────


class WorkflowType(str, Enum):
    DOCUMENT_APPROVAL = "DOCUMENT_APPROVAL"
    DOCUMENT_REVIEW = "DOCUMENT_REVIEW"
    CHANGE_REQUEST = "CHANGE_REQUEST"
    CUSTOM = "CUSTOM"


class StepType(str, Enum):
    APPROVAL = "APPROVAL"
    REVIEW = "REVIEW"
    NOTIFICATION = "NOTIFICATION"
    VALIDATION = "VALIDATION"
    DATA_PROCESSING = "DATA_PROCESSING"
    CUSTOM_ACTION = "CUSTOM_ACTION"


class ApprovalPolicy(str, Enum):
    QUORUM = "QUORUM"
    UNANIMOUS = "UNANIMOUS"
    ALL = "ALL"
    MAJORITY = "MAJORITY"
    ANY_ONE = "ANY_ONE"


class InstanceStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    ON_HOLD = "ON_HOLD"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


TERMINAL_STATUSES = frozenset({
    InstanceStatus.APPROVED,
    InstanceStatus.REJECTED,
    InstanceStatus.CANCELLED,
    InstanceStatus.EXPIRED,
})
CANCELLABLE_STATUSES = frozenset({
    InstanceStatus.PENDING,
    InstanceStatus.IN_PROGRESS,
    InstanceStatus.ON_HOLD,
})


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    VOIDED = "VOIDED"


class TaskAction(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class Priority(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class HistoryAction(str, Enum):
    CREATED = "CREATED"
    STEP_STARTED = "STEP_STARTED"
    STEP_COMPLETED = "STEP_COMPLETED"
    STEP_SKIPPED = "STEP_SKIPPED"
    STEP_STUCK = "STEP_STUCK"
    REASSIGNED = "REASSIGNED"
    ON_HOLD = "ON_HOLD"
    RESUMED = "RESUMED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    value = as_utc(value)
    return value.isoformat() if value else None


# ── Template side ────────────────────────────────────────────────────────────


class WorkflowTemplate(db.Model):
    """
    Reusable approval process definition.

    Business rules:
    - steps carry unique, contiguous step_order values starting at 1
      (validated by template_catalog on every write).
    - Editing a template never affects running instances: each instance
      pins a snapshot of the step sequence at start.
    """

    __tablename__ = "workflow_templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, unique=True)
    description = db.Column(db.Text, default="")
    workflow_type = db.Column(
        db.String(30), nullable=False, default=WorkflowType.DOCUMENT_APPROVAL.value,
        comment="DOCUMENT_APPROVAL | DOCUMENT_REVIEW | CHANGE_REQUEST | CUSTOM",
    )
    default_sla_hours = db.Column(
        db.Integer, nullable=True,
        comment="Instance due date offset when the caller supplies none",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.String(150), default="")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    steps = db.relationship(
        "WorkflowStep",
        order_by="WorkflowStep.step_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def to_dict(self, include_steps=True):
        d = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "workflow_type": self.workflow_type,
            "default_sla_hours": self.default_sla_hours,
            "is_active": self.is_active,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_steps:
            d["steps"] = [s.to_dict() for s in self.steps]
        return d

    def __repr__(self):
        return f"<WorkflowTemplate {self.id}: {self.name}>"


class WorkflowStep(db.Model):
    """One stage of a template. The approver pool is roles ∪ direct approvers."""

    __tablename__ = "workflow_steps"
    __table_args__ = (
        db.UniqueConstraint("template_id", "step_order", name="uq_workflow_step_order"),
    )

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("workflow_templates.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    step_order = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    step_type = db.Column(db.String(30), nullable=False, default=StepType.APPROVAL.value)
    approval_policy = db.Column(db.String(20), nullable=False, default=ApprovalPolicy.QUORUM.value)
    required_approvals = db.Column(db.Integer, nullable=False, default=1)
    is_required = db.Column(db.Boolean, nullable=False, default=True)
    sla_hours = db.Column(db.Integer, nullable=True)
    auto_approve_condition = db.Column(
        db.String(500), nullable=True,
        comment="'<field> <op> <value>' evaluated against document attributes; optional steps only",
    )

    roles = db.relationship("StepRole", cascade="all, delete-orphan", lazy="selectin")
    approvers = db.relationship("StepApprover", cascade="all, delete-orphan", lazy="selectin")

    def to_dict(self):
        return {
            "id": self.id,
            "template_id": self.template_id,
            "step_order": self.step_order,
            "name": self.name,
            "description": self.description,
            "step_type": self.step_type,
            "approval_policy": self.approval_policy,
            "required_approvals": self.required_approvals,
            "is_required": self.is_required,
            "sla_hours": self.sla_hours,
            "auto_approve_condition": self.auto_approve_condition,
            "roles": sorted(r.role for r in self.roles),
            "approvers": sorted(a.principal_id for a in self.approvers),
        }

    def __repr__(self):
        return f"<WorkflowStep {self.template_id}#{self.step_order}: {self.name}>"


class StepRole(db.Model):
    __tablename__ = "workflow_step_roles"
    __table_args__ = (
        db.UniqueConstraint("step_id", "role", name="uq_step_role"),
    )

    id = db.Column(db.Integer, primary_key=True)
    step_id = db.Column(
        db.Integer, db.ForeignKey("workflow_steps.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    role = db.Column(db.String(30), nullable=False, comment="docflow.core.roles.Role value")


class StepApprover(db.Model):
    __tablename__ = "workflow_step_approvers"
    __table_args__ = (
        db.UniqueConstraint("step_id", "principal_id", name="uq_step_approver"),
    )

    id = db.Column(db.Integer, primary_key=True)
    step_id = db.Column(
        db.Integer, db.ForeignKey("workflow_steps.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    principal_id = db.Column(db.String(150), nullable=False)


# ── Run side ─────────────────────────────────────────────────────────────────


class WorkflowInstance(db.Model):
    """
    One execution of a template against one document.

    Business rules:
    - current_step_order never decreases while IN_PROGRESS.
    - APPROVED / REJECTED / CANCELLED / EXPIRED are terminal.
    - version is bumped on every transition; the ORM adds
      ``WHERE version = :old`` to each UPDATE, so two writers racing on the
      same instance cannot both commit.
    """

    __tablename__ = "workflow_instances"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("workflow_templates.id"), nullable=False, index=True,
    )
    template_snapshot = db.Column(
        db.JSON, nullable=False,
        comment="Step sequence pinned at start; template edits do not affect this run",
    )
    document_id = db.Column(db.String(64), nullable=False, index=True)
    document_attributes = db.Column(db.JSON, default=dict)

    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    status = db.Column(db.String(20), nullable=False, default=InstanceStatus.PENDING.value, index=True)
    priority = db.Column(db.String(10), nullable=False, default=Priority.NORMAL.value)
    current_step_order = db.Column(db.Integer, nullable=True)
    initiated_by = db.Column(db.String(150), nullable=False, index=True)

    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    end_date = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    version = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": False,
    }

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_completed(self) -> bool:
        """Display label only: the orchestrator never stores a COMPLETED status."""
        return self.status in (InstanceStatus.APPROVED, InstanceStatus.REJECTED)

    def is_overdue(self, now: datetime) -> bool:
        """Deterministic from stored dates: due date passed and not yet terminal."""
        if self.due_date is None or self.is_terminal:
            return False
        return as_utc(self.due_date) < as_utc(now)

    def to_dict(self, now: datetime | None = None):
        d = {
            "id": self.id,
            "template_id": self.template_id,
            "template_name": (self.template_snapshot or {}).get("name"),
            "document_id": self.document_id,
            "document_attributes": self.document_attributes or {},
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "current_step_order": self.current_step_order,
            "initiated_by": self.initiated_by,
            "start_date": _iso(self.start_date),
            "due_date": _iso(self.due_date),
            "end_date": _iso(self.end_date),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "version": self.version,
            "is_completed": self.is_completed,
        }
        if now is not None:
            d["is_overdue"] = self.is_overdue(now)
        return d

    def __repr__(self):
        return f"<WorkflowInstance {self.id} [{self.status}] step={self.current_step_order}>"


class WorkflowTask(db.Model):
    """
    One approver's obligation for one step of one instance.

    PENDING → COMPLETED is guarded by a conditional UPDATE in task_manager so
    exactly one concurrent caller wins. COMPLETED and VOIDED are final.
    """

    __tablename__ = "workflow_tasks"
    __table_args__ = (
        db.Index("ix_workflow_task_instance_step", "instance_id", "step_order"),
        db.Index("ix_workflow_task_assignee_status", "assignee", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    instance_id = db.Column(
        db.Integer, db.ForeignKey("workflow_instances.id", ondelete="CASCADE"), nullable=False,
    )
    step_id = db.Column(
        db.Integer, db.ForeignKey("workflow_steps.id", ondelete="SET NULL"), nullable=True,
        comment="Template step at start time; SET NULL when the template is re-authored",
    )
    step_order = db.Column(db.Integer, nullable=False)
    step_name = db.Column(db.String(200), default="")

    assignee = db.Column(db.String(150), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=TaskStatus.PENDING.value)
    action = db.Column(db.String(10), nullable=True, comment="APPROVE | REJECT, set on completion only")
    comments = db.Column(db.Text, nullable=True)
    completed_by = db.Column(db.String(150), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    overdue_notified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def is_overdue(self, now: datetime) -> bool:
        if self.status != TaskStatus.PENDING or self.due_date is None:
            return False
        return as_utc(self.due_date) < as_utc(now)

    def to_dict(self, now: datetime | None = None):
        d = {
            "id": self.id,
            "instance_id": self.instance_id,
            "step_id": self.step_id,
            "step_order": self.step_order,
            "step_name": self.step_name,
            "assignee": self.assignee,
            "status": self.status,
            "action": self.action,
            "comments": self.comments,
            "completed_by": self.completed_by,
            "completed_at": _iso(self.completed_at),
            "due_date": _iso(self.due_date),
            "created_at": _iso(self.created_at),
        }
        if now is not None:
            d["is_overdue"] = self.is_overdue(now)
        return d

    def __repr__(self):
        return f"<WorkflowTask {self.id} {self.assignee} [{self.status}]>"


class WorkflowHistory(db.Model):
    """
    Immutable audit row. Written only through history_ledger.append();
    any ORM update or delete raises ImmutableRecordError.
    """

    __tablename__ = "workflow_history"
    __table_args__ = (
        db.Index("ix_workflow_history_instance_date", "instance_id", "action_date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    instance_id = db.Column(
        db.Integer, db.ForeignKey("workflow_instances.id", ondelete="CASCADE"), nullable=False,
    )
    action = db.Column(db.String(30), nullable=False)
    details = db.Column(db.Text, default="")
    performed_by = db.Column(db.String(150), nullable=False)
    step_order = db.Column(db.Integer, nullable=True)
    task_id = db.Column(db.Integer, nullable=True)
    action_date = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "instance_id": self.instance_id,
            "action": self.action,
            "details": self.details,
            "performed_by": self.performed_by,
            "step_order": self.step_order,
            "task_id": self.task_id,
            "action_date": _iso(self.action_date),
        }

    def __repr__(self):
        return f"<WorkflowHistory {self.instance_id}:{self.action}>"
