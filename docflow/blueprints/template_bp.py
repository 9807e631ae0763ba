"""
Workflow Template Blueprint.

Routes:
  GET    /api/v1/workflow-templates                 – list templates (?active=true)
  POST   /api/v1/workflow-templates                 – create template with steps
  GET    /api/v1/workflow-templates/<tid>           – template with steps
  PUT    /api/v1/workflow-templates/<tid>           – replace definition and steps
  POST   /api/v1/workflow-templates/<tid>/activate  – make startable
  POST   /api/v1/workflow-templates/<tid>/deactivate

Running workflows keep the template snapshot they started with, so edits
only affect workflows started afterwards.
"""

import logging

from flask import Blueprint, jsonify, request

from docflow.services import template_catalog
from docflow.blueprints import register_error_handlers
from docflow.utils.errors import E, api_error
from docflow.utils.helpers import current_principal

logger = logging.getLogger(__name__)

template_bp = Blueprint("workflow_templates", __name__, url_prefix="/api/v1")
register_error_handlers(template_bp)


@template_bp.route("/workflow-templates", methods=["GET"])
def list_templates():
    active_only = request.args.get("active") == "true"
    templates = template_catalog.list_templates(active_only=active_only)
    return jsonify({"items": [t.to_dict(include_steps=False) for t in templates], "total": len(templates)})


@template_bp.route("/workflow-templates", methods=["POST"])
def create_template():
    """Body: {name, workflow_type?, description?, default_sla_hours?, steps: [...]}

    Each step: {name, step_order?, step_type?, approval_policy?, required_approvals?,
    is_required?, sla_hours?, auto_approve_condition?, roles?: [...], approvers?: [...]}
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_INVALID, "JSON object body is required")
    template = template_catalog.create_template(data, created_by=current_principal())
    return jsonify(template.to_dict()), 201


@template_bp.route("/workflow-templates/<int:tid>", methods=["GET"])
def get_template(tid):
    return jsonify(template_catalog.get(tid).to_dict())


@template_bp.route("/workflow-templates/<int:tid>", methods=["PUT"])
def update_template(tid):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_INVALID, "JSON object body is required")
    template = template_catalog.update_template(tid, data)
    return jsonify(template.to_dict())


@template_bp.route("/workflow-templates/<int:tid>/activate", methods=["POST"])
def activate_template(tid):
    return jsonify(template_catalog.set_active(tid, True).to_dict(include_steps=False))


@template_bp.route("/workflow-templates/<int:tid>/deactivate", methods=["POST"])
def deactivate_template(tid):
    return jsonify(template_catalog.set_active(tid, False).to_dict(include_steps=False))
