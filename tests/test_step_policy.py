"""
Tests: step policy evaluation (QUORUM, ALL, UNANIMOUS, MAJORITY, ANY_ONE).

evaluate() is pure, so outcomes are built from step_policy.Outcome records
instead of task rows.
"""

import pytest

from docflow.models.workflow import ApprovalPolicy
from docflow.services import step_policy
from docflow.services.step_policy import Outcome, StepOutcome
from docflow.services.template_catalog import StepSpec

APPROVED = Outcome("COMPLETED", "APPROVE")
REJECTED = Outcome("COMPLETED", "REJECT")
PENDING = Outcome("PENDING")
VOIDED = Outcome("VOIDED")


def _step(policy=ApprovalPolicy.QUORUM, required=1, is_required=True, condition=None):
    return StepSpec(
        order=1,
        name="Legal review",
        approval_policy=policy,
        required_approvals=required,
        is_required=is_required,
        auto_approve_condition=condition,
    )


class TestQuorum:
    def test_partial_approval_stays_pending(self):
        decision = step_policy.evaluate(_step(required=2), [APPROVED, PENDING])
        assert decision.outcome == StepOutcome.PENDING
        assert (decision.approvals, decision.pending, decision.required) == (1, 1, 2)
        assert decision.is_final is False

    def test_quorum_reached(self):
        decision = step_policy.evaluate(_step(required=2), [APPROVED, APPROVED, PENDING])
        assert decision.outcome == StepOutcome.SATISFIED

    @pytest.mark.parametrize("required", [1, 2, 3])
    def test_satisfied_exactly_at_threshold(self, required):
        outcomes = [APPROVED] * (required - 1) + [PENDING]
        assert step_policy.evaluate(_step(required=required), outcomes).outcome == StepOutcome.PENDING
        outcomes = [APPROVED] * required
        assert step_policy.evaluate(_step(required=required), outcomes).outcome == StepOutcome.SATISFIED

    def test_any_reject_on_required_step_rejects_even_with_quorum(self):
        decision = step_policy.evaluate(_step(required=2), [APPROVED, APPROVED, REJECTED])
        assert decision.outcome == StepOutcome.REJECTED

    def test_voided_tasks_do_not_count(self):
        decision = step_policy.evaluate(_step(required=1), [VOIDED, VOIDED, PENDING])
        assert decision.outcome == StepOutcome.PENDING
        assert decision.pending == 1

    def test_zero_required_approvals_means_one(self):
        step = _step(required=0)
        assert step_policy.required_approvals(step) == 1
        assert step_policy.evaluate(step, [APPROVED]).outcome == StepOutcome.SATISFIED

    def test_optional_step_tolerates_reachable_rejection(self):
        decision = step_policy.evaluate(_step(required=1, is_required=False), [REJECTED, PENDING])
        assert decision.outcome == StepOutcome.PENDING

    def test_optional_step_rejects_once_unreachable(self):
        decision = step_policy.evaluate(_step(required=2, is_required=False), [REJECTED, PENDING])
        assert decision.outcome == StepOutcome.REJECTED


class TestStuckDiagnostic:
    def test_unreachable_quorum_reports_diagnostic(self):
        decision = step_policy.evaluate(_step(required=3), [PENDING, PENDING])
        assert decision.outcome == StepOutcome.PENDING
        assert decision.diagnostic is not None
        assert decision.diagnostic.required_approvals == 3
        assert decision.diagnostic.obtainable_approvals == 2
        assert "requires 3 approvals" in decision.diagnostic.message

    def test_reachable_quorum_has_no_diagnostic(self):
        assert step_policy.diagnose(_step(required=2), 2) is None

    def test_only_quorum_policy_is_diagnosed(self):
        assert step_policy.diagnose(_step(policy=ApprovalPolicy.UNANIMOUS, required=5), 1) is None


class TestOtherPolicies:
    def test_unanimous(self):
        step = _step(policy=ApprovalPolicy.UNANIMOUS)
        assert step_policy.evaluate(step, [APPROVED, PENDING]).outcome == StepOutcome.PENDING
        assert step_policy.evaluate(step, [APPROVED, APPROVED]).outcome == StepOutcome.SATISFIED
        assert step_policy.evaluate(step, [APPROVED, REJECTED]).outcome == StepOutcome.REJECTED

    def test_all_counts_required_approvals(self):
        """ALL has no rule of its own: it resolves exactly like QUORUM."""
        assert step_policy.evaluate(_step(policy=ApprovalPolicy.ALL), [APPROVED, PENDING]).outcome \
            == StepOutcome.SATISFIED
        two = _step(policy=ApprovalPolicy.ALL, required=2)
        assert step_policy.evaluate(two, [APPROVED, PENDING]).outcome == StepOutcome.PENDING
        assert step_policy.evaluate(two, [PENDING, REJECTED]).outcome == StepOutcome.REJECTED

    def test_all_with_unreachable_quorum_is_diagnosed(self):
        diagnostic = step_policy.diagnose(_step(policy=ApprovalPolicy.ALL, required=3), 2)
        assert diagnostic is not None
        assert diagnostic.obtainable_approvals == 2

    def test_majority_of_three(self):
        step = _step(policy=ApprovalPolicy.MAJORITY)
        assert step_policy.evaluate(step, [APPROVED, PENDING, PENDING]).outcome == StepOutcome.PENDING
        assert step_policy.evaluate(step, [APPROVED, APPROVED, PENDING]).outcome == StepOutcome.SATISFIED
        assert step_policy.evaluate(step, [APPROVED, REJECTED, PENDING]).outcome == StepOutcome.PENDING
        assert step_policy.evaluate(step, [REJECTED, REJECTED, PENDING]).outcome == StepOutcome.REJECTED

    def test_any_one(self):
        step = _step(policy=ApprovalPolicy.ANY_ONE)
        assert step_policy.evaluate(step, [PENDING, PENDING]).outcome == StepOutcome.PENDING
        assert step_policy.evaluate(step, [APPROVED, PENDING]).outcome == StepOutcome.SATISFIED
        assert step_policy.evaluate(step, [REJECTED, APPROVED]).outcome == StepOutcome.SATISFIED

    def test_any_one_first_rejection_rejects(self):
        step = _step(policy=ApprovalPolicy.ANY_ONE)
        assert step_policy.evaluate(step, [REJECTED, PENDING]).outcome == StepOutcome.REJECTED


class TestAutoApprove:
    def test_optional_step_condition_satisfies(self):
        step = _step(is_required=False, condition="amount < 100")
        decision = step_policy.evaluate(step, [], {"amount": 50})
        assert decision.outcome == StepOutcome.SATISFIED
        assert decision.auto_approved is True

    def test_condition_ignored_on_required_step(self):
        step = _step(is_required=True, condition="amount < 100")
        assert step_policy.auto_approves(step, {"amount": 50}) is False

    def test_condition_not_met_falls_back_to_votes(self):
        step = _step(is_required=False, condition="amount < 100")
        decision = step_policy.evaluate(step, [PENDING], {"amount": 500})
        assert decision.outcome == StepOutcome.PENDING
        assert decision.auto_approved is False
