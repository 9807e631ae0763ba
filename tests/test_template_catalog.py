"""
Tests: template authoring, validation and per-instance snapshots.
"""

import pytest

from docflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from docflow.core.roles import Role
from docflow.models.workflow import ApprovalPolicy, InstanceStatus
from docflow.services import template_catalog


def _steps(*names):
    return [{"name": n, "approvers": ["alice"]} for n in names]


class TestCreate:
    def test_steps_default_to_position_order(self):
        tpl = template_catalog.create_template(
            {"name": "Contracts", "steps": _steps("Legal", "Finance")}, created_by="author",
        )
        assert [(s.step_order, s.name) for s in tpl.steps] == [(1, "Legal"), (2, "Finance")]
        assert tpl.is_active is True
        assert tpl.created_by == "author"

    def test_roles_are_parsed_once_and_normalised(self):
        tpl = template_catalog.create_template(
            {"name": "Policies", "steps": [{"name": "Sign-off", "roles": ["manager", "ROLE_ADMIN"]}]},
            created_by="author",
        )
        spec = template_catalog.StepSpec.from_model(tpl.steps[0])
        assert spec.roles == (Role.ADMIN, Role.MANAGER)

    def test_zero_required_approvals_stored_as_one(self):
        tpl = template_catalog.create_template(
            {"name": "Quick", "steps": [{"name": "Any", "approvers": ["a"], "required_approvals": 0}]},
            created_by="author",
        )
        assert tpl.steps[0].required_approvals == 1

    @pytest.mark.parametrize("raw, expected", [
        (False, False), ("false", False), ("False", False), ("0", False), ("true", True), (None, True),
    ])
    def test_is_required_parses_text_flags(self, raw, expected):
        step = {"name": "Courtesy copy", "approvers": ["a"]}
        if raw is not None:
            step["is_required"] = raw
        tpl = template_catalog.create_template({"name": "Flags", "steps": [step]}, created_by="author")
        assert tpl.steps[0].is_required is expected

    def test_is_required_rejects_other_values(self):
        data = {"name": "Flags", "steps": [{"name": "A", "approvers": ["a"], "is_required": "maybe"}]}
        with pytest.raises(ValidationError) as exc:
            template_catalog.create_template(data, created_by="author")
        assert exc.value.details["steps[0].is_required"] == "must be true or false"

    def test_step_orders_must_be_contiguous_from_one(self):
        data = {"name": "Gappy", "steps": [
            {"name": "A", "step_order": 1, "approvers": ["a"]},
            {"name": "B", "step_order": 3, "approvers": ["b"]},
        ]}
        with pytest.raises(ValidationError) as exc:
            template_catalog.create_template(data, created_by="author")
        assert "contiguous" in exc.value.details["steps"]

    def test_duplicate_step_order_rejected(self):
        data = {"name": "Dupes", "steps": [
            {"name": "A", "step_order": 1, "approvers": ["a"]},
            {"name": "B", "step_order": 1, "approvers": ["b"]},
        ]}
        with pytest.raises(ValidationError):
            template_catalog.create_template(data, created_by="author")

    def test_field_errors_are_collected(self):
        data = {"name": "", "steps": [{
            "name": "",
            "roles": ["janitor"],
            "sla_hours": -4,
            "approval_policy": "LOTTERY",
            "auto_approve_condition": "amount ~ 3",
        }]}
        with pytest.raises(ValidationError) as exc:
            template_catalog.create_template(data, created_by="author")
        details = exc.value.details
        for key in ("name", "steps[0].name", "steps[0].roles", "steps[0].sla_hours",
                    "steps[0].approval_policy", "steps[0].auto_approve_condition"):
            assert key in details, key

    def test_template_needs_steps(self):
        with pytest.raises(ValidationError) as exc:
            template_catalog.create_template({"name": "Empty", "steps": []}, created_by="author")
        assert "steps" in exc.value.details

    def test_duplicate_name_conflicts(self, make_template):
        make_template(name="Invoices")
        with pytest.raises(ConflictError):
            make_template(name="Invoices")


class TestUpdate:
    def test_update_replaces_step_sequence(self, make_template):
        tpl = make_template(*_steps("Legal", "Finance"))
        updated = template_catalog.update_template(tpl.id, {
            "name": tpl.name,
            "steps": [{"name": "Board", "approvers": ["chair"], "approval_policy": "unanimous"}],
        })
        assert [s.name for s in updated.steps] == ["Board"]
        assert updated.steps[0].approval_policy == ApprovalPolicy.UNANIMOUS.value

    def test_running_instance_keeps_its_snapshot(self, wf, make_template):
        """Editing a template never changes the steps of a workflow already started."""
        tpl = make_template(*_steps("Legal", "Finance"))
        instance = wf.orchestrator.start_workflow(tpl.id, "DOC-1", "Contract", "ivan")

        template_catalog.update_template(tpl.id, {"name": tpl.name, "steps": _steps("Only")})

        spec = template_catalog.spec_from_snapshot(instance.template_snapshot)
        assert [s.name for s in spec.steps] == ["Legal", "Finance"]

        task = wf.tasks.open_tasks(instance.id)[0]
        wf.orchestrator.complete_task(task.id, "APPROVE", "alice")
        assert instance.current_step_order == 2
        assert wf.tasks.open_tasks(instance.id)[0].step_name == "Finance"

    def test_deactivated_template_cannot_start(self, wf, make_template):
        tpl = make_template()
        template_catalog.set_active(tpl.id, False)
        with pytest.raises(ValidationError) as exc:
            wf.orchestrator.start_workflow(tpl.id, "DOC-1", "Contract", "ivan")
        assert exc.value.details["template_id"] == "template is inactive"

    def test_unknown_template(self):
        with pytest.raises(NotFoundError):
            template_catalog.get(999)


def test_snapshot_round_trips_to_spec(make_template):
    tpl = make_template(
        {"name": "Legal", "roles": ["MANAGER"], "required_approvals": 2, "sla_hours": 24},
        {"name": "Archive", "approvers": ["bob"], "is_required": False,
         "auto_approve_condition": "amount < 10"},
        default_sla_hours=72,
    )
    spec = template_catalog.spec_from_snapshot(template_catalog.snapshot(tpl))

    assert spec.template_id == tpl.id
    assert spec.default_sla_hours == 72
    assert spec.last_order == 2
    assert spec.step(1).roles == (Role.MANAGER,)
    assert spec.step(1).required_approvals == 2
    assert spec.step(2).is_required is False
    assert spec.step(2).auto_approve_condition == "amount < 10"
    assert spec.total_step_sla_hours() is None
    with pytest.raises(NotFoundError):
        spec.step(3)
