"""
Tests: workflow reporting aggregates and their CSV exports.
"""

import csv
import io

import pytest

from docflow.services import workflow_export, workflow_metrics


@pytest.fixture()
def decided(wf, make_template):
    """Two workflows on one template: approved after 6h, rejected after 8h."""
    tpl = make_template(name="Contracts")
    approved = wf.orchestrator.start_workflow(tpl.id, "DOC-1", "NDA", "ivan")
    rejected = wf.orchestrator.start_workflow(tpl.id, "DOC-2", "MSA", "ivan")

    wf.clock.advance(hours=6)
    task = wf.tasks.open_tasks(approved.id)[0]
    wf.orchestrator.complete_task(task.id, "APPROVE", "alice")

    wf.clock.advance(hours=2)
    task = wf.tasks.open_tasks(rejected.id)[0]
    wf.orchestrator.complete_task(task.id, "REJECT", "alice")
    return tpl


class TestOverview:
    def test_counts_and_rates(self, decided):
        data = workflow_metrics.overview()
        assert data["total"] == 2
        assert data["by_status"]["APPROVED"] == 1
        assert data["by_status"]["REJECTED"] == 1
        assert data["by_status"]["IN_PROGRESS"] == 0
        assert data["approval_rate"] == 0.5
        assert data["average_approval_hours"] == 6.0

    def test_empty(self):
        data = workflow_metrics.overview()
        assert data["total"] == 0
        assert data["approval_rate"] is None
        assert data["average_approval_hours"] is None

    def test_since_window(self, wf, decided):
        since = wf.clock.now()
        wf.orchestrator.start_workflow(decided.id, "DOC-3", "SOW", "ivan")

        data = workflow_metrics.overview(since=since)
        assert data["total"] == 1
        assert data["by_status"]["IN_PROGRESS"] == 1


def test_by_template(wf, decided, make_template):
    other = make_template(name="Invoices")
    wf.orchestrator.start_workflow(other.id, "INV-1", "Invoice 1", "ivan")

    rows = workflow_metrics.by_template()
    assert [r["template_name"] for r in rows] == ["Contracts", "Invoices"]
    assert rows[0]["approval_rate"] == 0.5
    assert rows[1]["total"] == 1
    assert rows[1]["approval_rate"] is None


def test_by_step(decided):
    [row] = workflow_metrics.by_step(decided.id)
    assert row["step_order"] == 1
    assert row["step_name"] == "Review"
    assert (row["tasks"], row["completed"], row["approved"], row["rejected"]) == (2, 2, 1, 1)
    assert row["completion_rate"] == 1.0


def test_by_step_window(wf, decided):
    since = wf.clock.now()
    wf.orchestrator.start_workflow(decided.id, "DOC-3", "SOW", "ivan")

    [row] = workflow_metrics.by_step(decided.id, since=since)
    assert (row["tasks"], row["pending"], row["completed"]) == (1, 1, 0)
    assert workflow_metrics.by_step(decided.id, until=since)[0]["completed"] == 2


def test_by_step_ignores_voided_tasks(wf, make_template):
    tpl = make_template({"name": "Any", "approvers": ["alice", "bob"], "approval_policy": "ANY_ONE"})
    instance = wf.orchestrator.start_workflow(tpl.id, "DOC-1", "Memo", "ivan")
    task = wf.tasks.open_tasks(instance.id)[0]
    wf.orchestrator.complete_task(task.id, "APPROVE", task.assignee)

    [row] = workflow_metrics.by_step(tpl.id)
    assert (row["tasks"], row["voided"], row["completion_rate"]) == (1, 1, 1.0)


def test_my_metrics(wf, decided):
    mine = workflow_metrics.my_metrics("alice", wf.clock.now())
    assert mine["completed_tasks"] == 2
    assert (mine["approved"], mine["rejected"]) == (1, 1)
    assert mine["pending_tasks"] == 0
    assert mine["average_response_hours"] == 7.0

    initiator = workflow_metrics.my_metrics("ivan", wf.clock.now())
    assert initiator["initiated"]["APPROVED"] == 1
    assert initiator["initiated"]["REJECTED"] == 1


def test_metrics_api(client, decided):
    res = client.get("/api/v1/workflow-metrics/overview")
    assert res.status_code == 200
    assert res.get_json()["total"] == 2

    res = client.get("/api/v1/workflow-metrics/overview?since=not-a-date")
    assert res.status_code == 400

    res = client.get("/api/v1/workflow-metrics/me", headers={"X-User": "alice"})
    assert res.get_json()["completed_tasks"] == 2

    res = client.get("/api/v1/workflow-metrics/steps?since=not-a-date")
    assert res.status_code == 400


def _rows(content):
    return list(csv.DictReader(io.StringIO(content)))


class TestExport:
    def test_overview_csv(self, decided):
        [row] = _rows(workflow_export.overview_csv())
        assert row["total"] == "2"
        assert (row["approved"], row["rejected"], row["in_progress"]) == ("1", "1", "0")
        assert row["average_approval_hours"] == "6.0"
        assert row["approval_rate"] == "0.5"

    def test_templates_csv_blanks_missing_rates(self, wf, decided, make_template):
        other = make_template(name="Invoices")
        wf.orchestrator.start_workflow(other.id, "INV-1", "Invoice 1", "ivan")

        rows = _rows(workflow_export.templates_csv())
        assert [r["template_name"] for r in rows] == ["Contracts", "Invoices"]
        assert rows[1]["approval_rate"] == ""

    def test_steps_csv_honours_window(self, wf, decided):
        since = wf.clock.now()
        wf.orchestrator.start_workflow(decided.id, "DOC-3", "SOW", "ivan")

        [row] = _rows(workflow_export.steps_csv(decided.id, since=since))
        assert (row["step_name"], row["tasks"], row["pending"]) == ("Review", "1", "1")

    def test_download_endpoints(self, client, decided):
        for name in ("overview", "templates", "steps"):
            res = client.get(f"/api/v1/workflow-metrics/export/{name}.csv")
            assert res.status_code == 200, name
            assert res.mimetype == "text/csv"
            assert res.headers["Content-Disposition"].startswith(f"attachment; filename=workflow_{name}_")
            assert _rows(res.get_data(as_text=True))

    def test_download_rejects_bad_window(self, client):
        res = client.get("/api/v1/workflow-metrics/export/steps.csv?until=yesterday")
        assert res.status_code == 400
