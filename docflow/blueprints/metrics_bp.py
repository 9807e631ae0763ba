"""
Workflow Metrics Blueprint (read-only).

Routes:
  GET /api/v1/workflow-metrics/overview        – counts by status, avg approval hours (?since=&until=)
  GET /api/v1/workflow-metrics/templates       – same, per template
  GET /api/v1/workflow-metrics/steps           – per-step completion rate (?template_id=&since=&until=)
  GET /api/v1/workflow-metrics/me              – current principal's counters

CSV downloads of the same aggregates, same query params:
  GET /api/v1/workflow-metrics/export/overview.csv
  GET /api/v1/workflow-metrics/export/templates.csv
  GET /api/v1/workflow-metrics/export/steps.csv
"""

from flask import Blueprint, Response, jsonify, request

from docflow.blueprints import register_error_handlers
from docflow.services import workflow_export, workflow_metrics
from docflow.services.engine import get_engine
from docflow.utils.errors import E, api_error
from docflow.utils.helpers import current_principal, parse_datetime

metrics_bp = Blueprint("workflow_metrics", __name__, url_prefix="/api/v1/workflow-metrics")
register_error_handlers(metrics_bp)


def _window():
    """Returns (since, until, error_response)."""
    try:
        return parse_datetime(request.args.get("since")), parse_datetime(request.args.get("until")), None
    except ValueError as exc:
        return None, None, api_error(E.VALIDATION_INVALID, str(exc))


def _csv(content: str, name: str) -> Response:
    date_str = get_engine().clock.now().strftime("%Y%m%d")
    return Response(
        content,
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename=workflow_{name}_{date_str}.csv"},
    )


@metrics_bp.route("/overview", methods=["GET"])
def overview():
    since, until, err = _window()
    if err:
        return err
    return jsonify(workflow_metrics.overview(since, until))


@metrics_bp.route("/templates", methods=["GET"])
def by_template():
    since, until, err = _window()
    if err:
        return err
    return jsonify({"items": workflow_metrics.by_template(since, until)})


@metrics_bp.route("/steps", methods=["GET"])
def by_step():
    since, until, err = _window()
    if err:
        return err
    template_id = request.args.get("template_id", type=int)
    return jsonify({"items": workflow_metrics.by_step(template_id, since, until)})


@metrics_bp.route("/me", methods=["GET"])
def my_metrics():
    return jsonify(workflow_metrics.my_metrics(current_principal(), get_engine().clock.now()))


# ── CSV export ───────────────────────────────────────────────────────────────


@metrics_bp.route("/export/overview.csv", methods=["GET"])
def export_overview():
    since, until, err = _window()
    if err:
        return err
    return _csv(workflow_export.overview_csv(since, until), "overview")


@metrics_bp.route("/export/templates.csv", methods=["GET"])
def export_templates():
    since, until, err = _window()
    if err:
        return err
    return _csv(workflow_export.templates_csv(since, until), "templates")


@metrics_bp.route("/export/steps.csv", methods=["GET"])
def export_steps():
    since, until, err = _window()
    if err:
        return err
    template_id = request.args.get("template_id", type=int)
    return _csv(workflow_export.steps_csv(template_id, since, until), "steps")
