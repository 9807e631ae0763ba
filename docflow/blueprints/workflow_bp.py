"""
Workflow Blueprint: instances and tasks.

Routes:
  POST   /api/v1/workflows                         – start a workflow for a document
  GET    /api/v1/workflows/mine                    – started by or assigned to me (paged)
  GET    /api/v1/workflows/<wid>                   – instance
  GET    /api/v1/workflows/<wid>/detail            – instance + tasks + history
  GET    /api/v1/workflows/<wid>/history           – audit trail
  POST   /api/v1/workflows/<wid>/start             – start a workflow created with start=false
  POST   /api/v1/workflows/<wid>/cancel            – cancel (initiator or admin)
  POST   /api/v1/workflows/<wid>/hold              – put on hold (initiator or admin)
  POST   /api/v1/workflows/<wid>/resume            – resume (initiator or admin)
  GET    /api/v1/tasks/mine                        – my tasks (?status=PENDING)
  POST   /api/v1/tasks/<task_id>/complete          – approve / reject
  POST   /api/v1/tasks/<task_id>/reassign          – hand over a pending task

The acting principal comes from the X-User header. Mutating calls accept
an optional ``expected_version``; a mismatch returns 409 ERR_CONFLICT_VERSION
and the client should re-read before retrying.

Layer contract: parse + validate input here, all writes in the orchestrator.
"""

import logging

from flask import Blueprint, jsonify, request

from docflow.blueprints import page_params, register_error_handlers
from docflow.services import history_ledger, workflow_queries
from docflow.services.engine import get_engine
from docflow.utils.errors import E, api_error
from docflow.utils.helpers import current_principal, parse_datetime, parse_int

logger = logging.getLogger(__name__)

workflow_bp = Blueprint("workflows", __name__, url_prefix="/api/v1")
register_error_handlers(workflow_bp)


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _expected_version(data: dict):
    """Returns (version, error_response)."""
    try:
        return parse_int(data.get("expected_version")), None
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_INVALID, "expected_version must be an integer")


# ═════════════════════════════════════════════════════════════════════════════
# Instances
# ═════════════════════════════════════════════════════════════════════════════


@workflow_bp.route("/workflows", methods=["POST"])
def start_workflow():
    """Body: {template_id, document_id, title, description?, priority?,
    document_attributes?, due_date?, start?}"""
    data = _body()
    try:
        template_id = parse_int(data.get("template_id"))
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_INVALID, "template_id must be an integer")
    if template_id is None:
        return api_error(E.VALIDATION_REQUIRED, "template_id is required")

    document_id = str(data.get("document_id") or "").strip()
    if not document_id:
        return api_error(E.VALIDATION_REQUIRED, "document_id is required")
    title = (data.get("title") or "").strip()
    if not title:
        return api_error(E.VALIDATION_REQUIRED, "title is required")

    attributes = data.get("document_attributes") or {}
    if not isinstance(attributes, dict):
        return api_error(E.VALIDATION_INVALID, "document_attributes must be an object")
    try:
        due_date = parse_datetime(data.get("due_date"))
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))

    engine = get_engine()
    instance = engine.orchestrator.start_workflow(
        template_id,
        document_id,
        title,
        current_principal(),
        description=data.get("description") or "",
        priority=data.get("priority") or "NORMAL",
        document_attributes=attributes,
        due_date=due_date,
        auto_start=data.get("start", True) is not False,
    )
    return jsonify(instance.to_dict(now=engine.clock.now())), 201


@workflow_bp.route("/workflows/mine", methods=["GET"])
def list_my_workflows():
    limit, offset = page_params()
    items, total = workflow_queries.list_mine(
        current_principal(),
        status=request.args.get("status"),
        search=request.args.get("search"),
        limit=limit,
        offset=offset,
    )
    now = get_engine().clock.now()
    return jsonify({
        "items": [i.to_dict(now=now) for i in items],
        "total": total,
        "limit": limit,
        "offset": offset,
    })


@workflow_bp.route("/workflows/<int:wid>", methods=["GET"])
def get_workflow(wid):
    instance = workflow_queries.get_instance(wid)
    return jsonify(instance.to_dict(now=get_engine().clock.now()))


@workflow_bp.route("/workflows/<int:wid>/detail", methods=["GET"])
def get_workflow_detail(wid):
    return jsonify(workflow_queries.get_instance_detail(wid, get_engine().clock.now()))


@workflow_bp.route("/workflows/<int:wid>/history", methods=["GET"])
def get_workflow_history(wid):
    workflow_queries.get_instance(wid)
    entries = history_ledger.entries_for(wid)
    return jsonify({"items": [e.to_dict() for e in entries], "total": len(entries)})


@workflow_bp.route("/workflows/<int:wid>/start", methods=["POST"])
def submit_workflow(wid):
    version, err = _expected_version(_body())
    if err:
        return err
    engine = get_engine()
    instance = engine.orchestrator.submit(wid, current_principal(), expected_version=version)
    return jsonify(instance.to_dict(now=engine.clock.now()))


@workflow_bp.route("/workflows/<int:wid>/cancel", methods=["POST"])
def cancel_workflow(wid):
    data = _body()
    version, err = _expected_version(data)
    if err:
        return err
    engine = get_engine()
    instance = engine.orchestrator.cancel(
        wid, current_principal(), reason=(data.get("reason") or "").strip() or None,
        expected_version=version,
    )
    return jsonify(instance.to_dict(now=engine.clock.now()))


@workflow_bp.route("/workflows/<int:wid>/hold", methods=["POST"])
def hold_workflow(wid):
    data = _body()
    version, err = _expected_version(data)
    if err:
        return err
    engine = get_engine()
    instance = engine.orchestrator.hold(
        wid, current_principal(), reason=data.get("reason"), expected_version=version,
    )
    return jsonify(instance.to_dict(now=engine.clock.now()))


@workflow_bp.route("/workflows/<int:wid>/resume", methods=["POST"])
def resume_workflow(wid):
    data = _body()
    version, err = _expected_version(data)
    if err:
        return err
    engine = get_engine()
    instance = engine.orchestrator.resume(
        wid, current_principal(), reason=data.get("reason"), expected_version=version,
    )
    return jsonify(instance.to_dict(now=engine.clock.now()))


# ═════════════════════════════════════════════════════════════════════════════
# Tasks
# ═════════════════════════════════════════════════════════════════════════════


@workflow_bp.route("/tasks/mine", methods=["GET"])
def list_my_tasks():
    limit, offset = page_params()
    status = request.args.get("status", "PENDING")
    items, total = workflow_queries.list_my_tasks(
        current_principal(), status=None if status == "all" else status, limit=limit, offset=offset,
    )
    now = get_engine().clock.now()
    return jsonify({"items": [t.to_dict(now=now) for t in items], "total": total})


@workflow_bp.route("/tasks/<int:task_id>/complete", methods=["POST"])
def complete_task(task_id):
    """Body: {action: APPROVE|REJECT, comments?, expected_version?}"""
    data = _body()
    action = (data.get("action") or "").strip().upper()
    if not action:
        return api_error(E.VALIDATION_REQUIRED, "action is required")
    version, err = _expected_version(data)
    if err:
        return err

    engine = get_engine()
    task = engine.orchestrator.complete_task(
        task_id, action, current_principal(), comments=data.get("comments"), expected_version=version,
    )
    instance = workflow_queries.get_instance(task.instance_id)
    now = engine.clock.now()
    return jsonify({"task": task.to_dict(now=now), "workflow": instance.to_dict(now=now)})


@workflow_bp.route("/tasks/<int:task_id>/reassign", methods=["POST"])
def reassign_task(task_id):
    """Body: {new_assignee, reason?, expected_version?}"""
    data = _body()
    new_assignee = (data.get("new_assignee") or "").strip()
    if not new_assignee:
        return api_error(E.VALIDATION_REQUIRED, "new_assignee is required")
    version, err = _expected_version(data)
    if err:
        return err

    engine = get_engine()
    task = engine.orchestrator.reassign(
        task_id, new_assignee, current_principal(), reason=data.get("reason"), expected_version=version,
    )
    return jsonify(task.to_dict(now=engine.clock.now()))
