"""
Tests: HTTP surface of templates, workflows and tasks.

Error bodies follow {"error", "code", "details"?}.
"""

import pytest

IVAN = {"X-User": "ivan"}
ALICE = {"X-User": "alice"}


def _create_template(client, **overrides):
    body = {
        "name": "Contracts",
        "default_sla_hours": 72,
        "steps": [
            {"name": "Legal", "approvers": ["alice"]},
            {"name": "Finance", "roles": ["MANAGER"], "approval_policy": "ANY_ONE"},
        ],
    }
    body.update(overrides)
    return client.post("/api/v1/workflow-templates", json=body, headers={"X-User": "author"})


@pytest.fixture()
def template_id(client):
    return _create_template(client).get_json()["id"]


@pytest.fixture()
def workflow(client, template_id):
    res = client.post("/api/v1/workflows", json={
        "template_id": template_id,
        "document_id": "DOC-100",
        "title": "Supplier agreement",
        "priority": "high",
        "document_attributes": {"amount": 12000},
    }, headers=IVAN)
    assert res.status_code == 201
    return res.get_json()


def _my_task(client, headers=ALICE):
    items = client.get("/api/v1/tasks/mine", headers=headers).get_json()["items"]
    return items[0]


class TestTemplates:
    def test_create(self, client):
        res = _create_template(client)
        assert res.status_code == 201
        data = res.get_json()
        assert data["created_by"] == "author"
        assert [s["name"] for s in data["steps"]] == ["Legal", "Finance"]

    def test_invalid_definition_422(self, client):
        res = _create_template(client, steps=[])
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_RULE"

    def test_duplicate_name_409(self, client):
        _create_template(client)
        res = _create_template(client)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    def test_list_active_only(self, client, template_id):
        client.post(f"/api/v1/workflow-templates/{template_id}/deactivate")
        assert client.get("/api/v1/workflow-templates").get_json()["total"] == 1
        assert client.get("/api/v1/workflow-templates?active=true").get_json()["total"] == 0

    def test_update_replaces_steps(self, client, template_id):
        res = client.put(f"/api/v1/workflow-templates/{template_id}", json={
            "name": "Contracts", "steps": [{"name": "Board", "approvers": ["bea"]}],
        })
        assert res.status_code == 200
        assert [s["name"] for s in res.get_json()["steps"]] == ["Board"]

    def test_unknown_template_404(self, client):
        res = client.get("/api/v1/workflow-templates/999")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


class TestStartWorkflow:
    def test_started(self, workflow):
        assert workflow["status"] == "IN_PROGRESS"
        assert workflow["priority"] == "HIGH"
        assert workflow["current_step_order"] == 1
        assert workflow["initiated_by"] == "ivan"
        assert workflow["is_overdue"] is False
        assert workflow["due_date"].startswith("2026-01-08T09:00")

    def test_missing_template_id_400(self, client):
        res = client.post("/api/v1/workflows", json={"document_id": "D", "title": "T"}, headers=IVAN)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_bad_due_date_400(self, client, template_id):
        res = client.post("/api/v1/workflows", json={
            "template_id": template_id, "document_id": "D", "title": "T", "due_date": "next week",
        }, headers=IVAN)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_unknown_template_404(self, client):
        res = client.post("/api/v1/workflows", json={
            "template_id": 999, "document_id": "D", "title": "T",
        }, headers=IVAN)
        assert res.status_code == 404

    def test_deferred_start(self, client, template_id):
        res = client.post("/api/v1/workflows", json={
            "template_id": template_id, "document_id": "D", "title": "T", "start": False,
        }, headers=IVAN)
        assert res.get_json()["status"] == "PENDING"

        wid = res.get_json()["id"]
        res = client.post(f"/api/v1/workflows/{wid}/start", json={}, headers=IVAN)
        assert res.status_code == 200
        assert res.get_json()["status"] == "IN_PROGRESS"

    def test_wrong_content_type_415(self, client):
        res = client.post("/api/v1/workflows", data="template_id=1", content_type="text/plain", headers=IVAN)
        assert res.status_code == 415


class TestTasks:
    def test_my_tasks(self, client, workflow):
        res = client.get("/api/v1/tasks/mine", headers=ALICE)
        data = res.get_json()
        assert data["total"] == 1
        assert data["items"][0]["instance_id"] == workflow["id"]
        assert data["items"][0]["step_name"] == "Legal"

        assert client.get("/api/v1/tasks/mine", headers=IVAN).get_json()["total"] == 0

    def test_approve_through_both_steps(self, client, workflow):
        task = _my_task(client)
        res = client.post(f"/api/v1/tasks/{task['id']}/complete", json={"action": "approve"}, headers=ALICE)
        assert res.status_code == 200
        body = res.get_json()
        assert body["task"]["status"] == "COMPLETED"
        assert body["workflow"]["current_step_order"] == 2

        manager_task = _my_task(client, headers={"X-User": "mia"})
        res = client.post(
            f"/api/v1/tasks/{manager_task['id']}/complete",
            json={"action": "APPROVE", "comments": "ok"},
            headers={"X-User": "mia"},
        )
        assert res.get_json()["workflow"]["status"] == "APPROVED"
        assert res.get_json()["workflow"]["is_completed"] is True

    def test_missing_action_400(self, client, workflow):
        task = _my_task(client)
        res = client.post(f"/api/v1/tasks/{task['id']}/complete", json={}, headers=ALICE)
        assert res.status_code == 400

    def test_double_completion_409(self, client, workflow):
        task = _my_task(client)
        url = f"/api/v1/tasks/{task['id']}/complete"
        client.post(url, json={"action": "APPROVE"}, headers=ALICE)
        res = client.post(url, json={"action": "APPROVE"}, headers=ALICE)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_stale_expected_version_409(self, client, workflow):
        task = _my_task(client)
        res = client.post(
            f"/api/v1/tasks/{task['id']}/complete",
            json={"action": "APPROVE", "expected_version": workflow["version"] - 1},
            headers=ALICE,
        )
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT_VERSION"
        assert body["details"] == {
            "expected_version": workflow["version"] - 1,
            "actual_version": workflow["version"],
        }

    def test_reassign(self, client, workflow):
        task = _my_task(client)
        res = client.post(
            f"/api/v1/tasks/{task['id']}/reassign",
            json={"new_assignee": "zoe", "reason": "vacation"},
            headers=ALICE,
        )
        assert res.status_code == 200
        assert res.get_json()["assignee"] == "zoe"
        assert client.get("/api/v1/tasks/mine", headers={"X-User": "zoe"}).get_json()["total"] == 1


class TestInstances:
    def test_detail(self, client, workflow):
        res = client.get(f"/api/v1/workflows/{workflow['id']}/detail")
        data = res.get_json()
        assert [s["name"] for s in data["steps"]] == ["Legal", "Finance"]
        assert [t["assignee"] for t in data["tasks"]] == ["alice"]
        assert [h["action"] for h in data["history"]] == ["CREATED", "STEP_STARTED"]

    def test_history(self, client, workflow):
        res = client.get(f"/api/v1/workflows/{workflow['id']}/history")
        assert res.get_json()["total"] == 2

    def test_mine_covers_initiated_and_assigned(self, client, workflow):
        assert client.get("/api/v1/workflows/mine", headers=IVAN).get_json()["total"] == 1
        assert client.get("/api/v1/workflows/mine", headers=ALICE).get_json()["total"] == 1
        assert client.get("/api/v1/workflows/mine", headers={"X-User": "bob"}).get_json()["total"] == 0

    def test_cancel_by_stranger_403(self, client, workflow):
        res = client.post(f"/api/v1/workflows/{workflow['id']}/cancel", json={}, headers=ALICE)
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_cancel_then_complete_409(self, client, workflow):
        task = _my_task(client)
        res = client.post(
            f"/api/v1/workflows/{workflow['id']}/cancel", json={"reason": "withdrawn"}, headers=IVAN,
        )
        assert res.get_json()["status"] == "CANCELLED"

        res = client.post(f"/api/v1/tasks/{task['id']}/complete", json={"action": "APPROVE"}, headers=ALICE)
        assert res.status_code == 409

    def test_hold_and_resume(self, client, workflow):
        wid = workflow["id"]
        assert client.post(f"/api/v1/workflows/{wid}/hold", json={}, headers=IVAN).get_json()["status"] == "ON_HOLD"
        res = client.post(f"/api/v1/workflows/{wid}/hold", json={}, headers=IVAN)
        assert res.status_code == 409
        assert client.post(f"/api/v1/workflows/{wid}/resume", json={}, headers=IVAN).get_json()["status"] == "IN_PROGRESS"

    def test_unknown_workflow_404(self, client):
        assert client.get("/api/v1/workflows/999").status_code == 404


def test_health(client):
    res = client.get("/api/v1/health")
    assert res.get_json() == {"status": "ok", "app": "docflow"}


def test_request_timing_headers(client):
    res = client.get("/api/v1/workflow-templates")
    assert "X-Request-Duration-Ms" in res.headers
    assert res.headers.get("X-Request-ID")
