"""
Step policy evaluation.

Pure functions: given a step definition and the outcomes of the tasks that
were created for it, decide whether the step is SATISFIED, REJECTED or
still PENDING. No database access, no clock.

Policies:
    QUORUM     approvals >= required_approvals satisfies; any REJECT on a
               required step rejects immediately.
    UNANIMOUS  every live task must approve; any REJECT rejects.
    ALL        counted like QUORUM (required_approvals).
    MAJORITY   approvals >= n // 2 + 1 satisfies; once that many approvals
               can no longer be reached the step rejects.
    ANY_ONE    first APPROVE satisfies; a REJECT before any approval rejects.

Voided tasks do not count: they were never actionable for this decision.

A non-required step reports REJECTED once it can no longer be satisfied;
the orchestrator skips such a step instead of rejecting the instance.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Protocol

from docflow.models.workflow import ApprovalPolicy, TaskAction, TaskStatus
from docflow.services.conditions import evaluate_condition


class StepOutcome(str, Enum):
    SATISFIED = "SATISFIED"
    REJECTED = "REJECTED"
    PENDING = "PENDING"


class TaskOutcome(Protocol):
    status: str
    action: str | None


@dataclass(frozen=True)
class Outcome:
    """Lightweight TaskOutcome for callers that have no task rows."""
    status: str
    action: str | None = None


@dataclass(frozen=True)
class StuckStepDiagnostic:
    """required_approvals can never be met by the tasks that exist for the step."""
    step_order: int
    step_name: str
    required_approvals: int
    obtainable_approvals: int

    @property
    def message(self) -> str:
        return (
            f"Step {self.step_order} '{self.step_name}' requires {self.required_approvals} "
            f"approvals but only {self.obtainable_approvals} approver(s) are assigned"
        )


@dataclass(frozen=True)
class PolicyDecision:
    outcome: StepOutcome
    approvals: int = 0
    rejections: int = 0
    pending: int = 0
    required: int = 1
    auto_approved: bool = False
    diagnostic: StuckStepDiagnostic | None = None

    @property
    def is_final(self) -> bool:
        return self.outcome != StepOutcome.PENDING


def required_approvals(step) -> int:
    """Stored values of zero or below mean one."""
    return max(1, int(step.required_approvals or 1))


def diagnose(step, obtainable: int) -> StuckStepDiagnostic | None:
    """Only quorum steps have a fixed approval count that can be out of reach."""
    if ApprovalPolicy(step.approval_policy) not in (ApprovalPolicy.QUORUM, ApprovalPolicy.ALL):
        return None
    required = required_approvals(step)
    if required <= obtainable:
        return None
    return StuckStepDiagnostic(
        step_order=step.order,
        step_name=step.name,
        required_approvals=required,
        obtainable_approvals=obtainable,
    )


def auto_approves(step, attributes: dict | None) -> bool:
    """Only optional steps may be satisfied by their auto-approve condition."""
    if step.is_required or not step.auto_approve_condition:
        return False
    return evaluate_condition(step.auto_approve_condition, attributes)


def evaluate(step, outcomes: Iterable[TaskOutcome], attributes: dict | None = None) -> PolicyDecision:
    """Decide the step outcome from its task outcomes.

    ``step`` is any object exposing order, name, approval_policy,
    required_approvals, is_required and auto_approve_condition
    (template_catalog.StepSpec in the engine).
    """
    if auto_approves(step, attributes):
        return PolicyDecision(
            outcome=StepOutcome.SATISFIED,
            required=required_approvals(step),
            auto_approved=True,
        )

    live = [o for o in outcomes if o.status != TaskStatus.VOIDED]
    approvals = sum(
        1 for o in live if o.status == TaskStatus.COMPLETED and o.action == TaskAction.APPROVE
    )
    rejections = sum(
        1 for o in live if o.status == TaskStatus.COMPLETED and o.action == TaskAction.REJECT
    )
    pending = sum(1 for o in live if o.status == TaskStatus.PENDING)
    total = len(live)

    policy = ApprovalPolicy(step.approval_policy)
    if policy in (ApprovalPolicy.QUORUM, ApprovalPolicy.ALL):
        required = required_approvals(step)
        outcome = _quorum(step, approvals, rejections, pending, required)
    elif policy == ApprovalPolicy.UNANIMOUS:
        required = total
        outcome = _unanimous(approvals, rejections, total)
    elif policy == ApprovalPolicy.MAJORITY:
        required = total // 2 + 1
        outcome = _threshold(approvals, rejections, pending, required)
    else:
        required = 1
        outcome = _any_one(approvals, rejections)

    return PolicyDecision(
        outcome=outcome,
        approvals=approvals,
        rejections=rejections,
        pending=pending,
        required=required,
        diagnostic=diagnose(step, total) if outcome == StepOutcome.PENDING else None,
    )


def _quorum(step, approvals, rejections, pending, required) -> StepOutcome:
    if step.is_required and rejections:
        return StepOutcome.REJECTED
    if approvals >= required:
        return StepOutcome.SATISFIED
    if not step.is_required and approvals + pending < required:
        return StepOutcome.REJECTED
    return StepOutcome.PENDING


def _unanimous(approvals, rejections, total) -> StepOutcome:
    if rejections:
        return StepOutcome.REJECTED
    if total and approvals == total:
        return StepOutcome.SATISFIED
    return StepOutcome.PENDING


def _threshold(approvals, rejections, pending, threshold) -> StepOutcome:
    if approvals >= threshold:
        return StepOutcome.SATISFIED
    if rejections >= threshold or approvals + pending < threshold:
        return StepOutcome.REJECTED
    return StepOutcome.PENDING


def _any_one(approvals, rejections) -> StepOutcome:
    if approvals:
        return StepOutcome.SATISFIED
    if rejections:
        return StepOutcome.REJECTED
    return StepOutcome.PENDING
