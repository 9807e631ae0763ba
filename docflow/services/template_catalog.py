"""
Template catalog.

Read side used by the engine:
    get(template_id)          -> WorkflowTemplate or NotFoundError
    snapshot(template)        -> JSON-safe dict pinned on each instance
    spec_from_snapshot(dict)  -> TemplateSpec (plain records the engine runs on)

Authoring side used only by the HTTP layer:
    list_templates / create_template / update_template / set_active

Every write validates the step sequence: step_order values are unique,
contiguous and start at 1. required_approvals of zero or below is stored as 1.

Service layer owns all commits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import select

from docflow.core.clock import Clock, SystemClock
from docflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from docflow.core.roles import Role
from docflow.models import db
from docflow.models.workflow import (
    ApprovalPolicy,
    StepApprover,
    StepRole,
    StepType,
    WorkflowStep,
    WorkflowTemplate,
    WorkflowType,
)
from docflow.services.conditions import parse_condition

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Plain records
# ═════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class StepSpec:
    order: int
    name: str
    step_type: StepType = StepType.APPROVAL
    approval_policy: ApprovalPolicy = ApprovalPolicy.QUORUM
    required_approvals: int = 1
    is_required: bool = True
    sla_hours: int | None = None
    auto_approve_condition: str | None = None
    roles: tuple[Role, ...] = ()
    approvers: tuple[str, ...] = ()
    step_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "step_id": self.step_id,
            "order": self.order,
            "name": self.name,
            "step_type": self.step_type.value,
            "approval_policy": self.approval_policy.value,
            "required_approvals": self.required_approvals,
            "is_required": self.is_required,
            "sla_hours": self.sla_hours,
            "auto_approve_condition": self.auto_approve_condition,
            "roles": [r.value for r in self.roles],
            "approvers": list(self.approvers),
        }

    @classmethod
    def from_dict(cls, data: dict) -> StepSpec:
        return cls(
            order=int(data["order"]),
            name=data["name"],
            step_type=StepType(data.get("step_type") or StepType.APPROVAL.value),
            approval_policy=ApprovalPolicy(data.get("approval_policy") or ApprovalPolicy.QUORUM.value),
            required_approvals=max(1, int(data.get("required_approvals") or 1)),
            is_required=bool(data.get("is_required", True)),
            sla_hours=data.get("sla_hours"),
            auto_approve_condition=data.get("auto_approve_condition"),
            roles=tuple(Role.parse(r) for r in data.get("roles") or ()),
            approvers=tuple(data.get("approvers") or ()),
            step_id=data.get("step_id"),
        )

    @classmethod
    def from_model(cls, step: WorkflowStep) -> StepSpec:
        return cls(
            order=step.step_order,
            name=step.name,
            step_type=StepType(step.step_type),
            approval_policy=ApprovalPolicy(step.approval_policy),
            required_approvals=max(1, step.required_approvals or 1),
            is_required=bool(step.is_required),
            sla_hours=step.sla_hours,
            auto_approve_condition=step.auto_approve_condition,
            roles=tuple(sorted((Role.parse(r.role) for r in step.roles), key=lambda r: r.value)),
            approvers=tuple(sorted(a.principal_id for a in step.approvers)),
            step_id=step.id,
        )


@dataclass(frozen=True)
class TemplateSpec:
    template_id: int
    name: str
    workflow_type: WorkflowType
    default_sla_hours: int | None = None
    steps: tuple[StepSpec, ...] = field(default_factory=tuple)

    @property
    def last_order(self) -> int:
        return self.steps[-1].order

    def step(self, order: int) -> StepSpec:
        for s in self.steps:
            if s.order == order:
                return s
        raise NotFoundError(resource="WorkflowStep", resource_id=f"{self.template_id}#{order}")

    def total_step_sla_hours(self) -> int | None:
        """Sum of step SLAs, or None unless every step defines one."""
        if not self.steps or any(s.sla_hours is None for s in self.steps):
            return None
        return sum(s.sla_hours for s in self.steps)


def snapshot(template: WorkflowTemplate) -> dict:
    return {
        "template_id": template.id,
        "name": template.name,
        "workflow_type": template.workflow_type,
        "default_sla_hours": template.default_sla_hours,
        "steps": [StepSpec.from_model(s).to_dict() for s in template.steps],
    }


def spec_from_snapshot(data: dict) -> TemplateSpec:
    steps = tuple(sorted((StepSpec.from_dict(s) for s in data.get("steps") or ()), key=lambda s: s.order))
    return TemplateSpec(
        template_id=data["template_id"],
        name=data["name"],
        workflow_type=WorkflowType(data.get("workflow_type") or WorkflowType.DOCUMENT_APPROVAL.value),
        default_sla_hours=data.get("default_sla_hours"),
        steps=steps,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Read
# ═════════════════════════════════════════════════════════════════════════════


def get(template_id: int) -> WorkflowTemplate:
    template = db.session.get(WorkflowTemplate, template_id)
    if template is None:
        raise NotFoundError(resource="WorkflowTemplate", resource_id=template_id)
    return template


def list_templates(active_only: bool = False) -> list[WorkflowTemplate]:
    stmt = select(WorkflowTemplate).order_by(WorkflowTemplate.name.asc(), WorkflowTemplate.id.asc())
    if active_only:
        stmt = stmt.where(WorkflowTemplate.is_active.is_(True))
    return list(db.session.execute(stmt).scalars())


# ═════════════════════════════════════════════════════════════════════════════
# Authoring
# ═════════════════════════════════════════════════════════════════════════════


def create_template(data: dict, created_by: str, clock: Clock | None = None) -> WorkflowTemplate:
    """Validate and persist a new template with its steps.

    Raises:
        ValidationError: payload violates a business rule (details per field).
        ConflictError: a template with the same name exists.
    """
    clean = _validate_template(data)
    _ensure_unique_name(clean["name"])
    now = (clock or SystemClock()).now()

    template = WorkflowTemplate(
        name=clean["name"],
        description=clean["description"],
        workflow_type=clean["workflow_type"].value,
        default_sla_hours=clean["default_sla_hours"],
        is_active=True,
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )
    template.steps = [_build_step(s) for s in clean["steps"]]
    db.session.add(template)
    db.session.commit()

    logger.info(
        "Workflow template created: id=%s name=%s steps=%d",
        template.id, template.name, len(template.steps),
        extra={"template_id": template.id},
    )
    return template


def update_template(template_id: int, data: dict, clock: Clock | None = None) -> WorkflowTemplate:
    """Replace a template's definition and step sequence wholesale.

    Running instances keep the snapshot they were started with.
    """
    template = get(template_id)
    clean = _validate_template(data)
    if clean["name"] != template.name:
        _ensure_unique_name(clean["name"])

    template.name = clean["name"]
    template.description = clean["description"]
    template.workflow_type = clean["workflow_type"].value
    template.default_sla_hours = clean["default_sla_hours"]
    template.updated_at = (clock or SystemClock()).now()

    # Flush the orphan deletes before inserting steps that reuse step_order
    template.steps.clear()
    db.session.flush()
    template.steps.extend(_build_step(s) for s in clean["steps"])
    db.session.commit()

    logger.info(
        "Workflow template updated: id=%s steps=%d", template.id, len(template.steps),
        extra={"template_id": template.id},
    )
    return template


def set_active(template_id: int, active: bool) -> WorkflowTemplate:
    template = get(template_id)
    template.is_active = bool(active)
    db.session.commit()
    logger.info("Workflow template id=%s active=%s", template_id, template.is_active,
                extra={"template_id": template_id})
    return template


# ── Validation ───────────────────────────────────────────────────────────────


def _ensure_unique_name(name: str) -> None:
    exists = db.session.execute(
        select(WorkflowTemplate.id).where(WorkflowTemplate.name == name)
    ).first()
    if exists:
        raise ConflictError(resource="WorkflowTemplate", field="name", value=name)


def _positive_int_or_none(value, key: str, errors: dict) -> int | None:
    if value is None or value == "":
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        errors[key] = "must be an integer"
        return None
    if number <= 0:
        errors[key] = "must be a positive number of hours"
        return None
    return number


def _enum_value(enum_cls, raw, default, key: str, errors: dict):
    if raw is None or raw == "":
        return default
    try:
        return enum_cls(str(raw).strip().upper())
    except ValueError:
        errors[key] = f"must be one of {[m.value for m in enum_cls]}"
        return default


def _flag(raw, default: bool, key: str, errors: dict) -> bool:
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in ("true", "1", "yes"):
        return True
    if text in ("false", "0", "no"):
        return False
    errors[key] = "must be true or false"
    return default


def _validate_template(data: dict) -> dict:
    errors: dict[str, str] = {}

    name = (data.get("name") or "").strip()
    if not name:
        errors["name"] = "is required"
    elif len(name) > 200:
        errors["name"] = "must be at most 200 characters"

    workflow_type = _enum_value(
        WorkflowType, data.get("workflow_type"), WorkflowType.DOCUMENT_APPROVAL, "workflow_type", errors,
    )
    default_sla_hours = _positive_int_or_none(data.get("default_sla_hours"), "default_sla_hours", errors)

    raw_steps = data.get("steps")
    steps: list[dict] = []
    if not isinstance(raw_steps, list) or not raw_steps:
        errors["steps"] = "at least one step is required"
    else:
        for index, raw in enumerate(raw_steps):
            steps.append(_validate_step(index, raw if isinstance(raw, dict) else {}, errors))
        _validate_step_orders(steps, errors)

    if errors:
        raise ValidationError("Invalid workflow template", details=errors)

    return {
        "name": name,
        "description": data.get("description") or "",
        "workflow_type": workflow_type,
        "default_sla_hours": default_sla_hours,
        "steps": sorted(steps, key=lambda s: s["step_order"]),
    }


def _validate_step(index: int, raw: dict, errors: dict) -> dict:
    prefix = f"steps[{index}]"

    name = (raw.get("name") or "").strip()
    if not name:
        errors[f"{prefix}.name"] = "is required"

    try:
        required = int(raw.get("required_approvals", 1) or 1)
    except (TypeError, ValueError):
        errors[f"{prefix}.required_approvals"] = "must be an integer"
        required = 1

    roles: list[Role] = []
    for role in raw.get("roles") or []:
        try:
            roles.append(Role.parse(role))
        except ValidationError as exc:
            errors[f"{prefix}.roles"] = str(exc)

    approvers = []
    for principal in raw.get("approvers") or []:
        principal = str(principal or "").strip()
        if not principal:
            errors[f"{prefix}.approvers"] = "approver ids must be non-empty"
        elif principal not in approvers:
            approvers.append(principal)

    condition = (raw.get("auto_approve_condition") or "").strip() or None
    if condition:
        try:
            parse_condition(condition)
        except ValidationError as exc:
            errors[f"{prefix}.auto_approve_condition"] = str(exc)

    return {
        "step_order": raw.get("step_order", index + 1),
        "name": name,
        "description": raw.get("description") or "",
        "step_type": _enum_value(StepType, raw.get("step_type"), StepType.APPROVAL,
                                 f"{prefix}.step_type", errors),
        "approval_policy": _enum_value(ApprovalPolicy, raw.get("approval_policy"), ApprovalPolicy.QUORUM,
                                       f"{prefix}.approval_policy", errors),
        "required_approvals": max(1, required),
        "is_required": _flag(raw.get("is_required"), True, f"{prefix}.is_required", errors),
        "sla_hours": _positive_int_or_none(raw.get("sla_hours"), f"{prefix}.sla_hours", errors),
        "auto_approve_condition": condition,
        "roles": sorted(set(roles), key=lambda r: r.value),
        "approvers": sorted(approvers),
    }


def _validate_step_orders(steps: list[dict], errors: dict) -> None:
    orders = []
    for step in steps:
        try:
            step["step_order"] = int(step["step_order"])
        except (TypeError, ValueError):
            errors["steps"] = "step_order must be an integer"
            return
        orders.append(step["step_order"])
    if sorted(orders) != list(range(1, len(orders) + 1)):
        errors["steps"] = "step_order values must be unique and contiguous starting at 1"


def _build_step(clean: dict) -> WorkflowStep:
    step = WorkflowStep(
        step_order=clean["step_order"],
        name=clean["name"],
        description=clean["description"],
        step_type=clean["step_type"].value,
        approval_policy=clean["approval_policy"].value,
        required_approvals=clean["required_approvals"],
        is_required=clean["is_required"],
        sla_hours=clean["sla_hours"],
        auto_approve_condition=clean["auto_approve_condition"],
    )
    step.roles = [StepRole(role=r.value) for r in clean["roles"]]
    step.approvers = [StepApprover(principal_id=p) for p in clean["approvers"]]
    return step
