"""
Admin Blueprint: scheduled maintenance jobs.

Routes:
  GET  /api/v1/admin/jobs                    – registered jobs with run history
  POST /api/v1/admin/jobs/<name>/run         – run now (e.g. workflow_sla_sweep)
  POST /api/v1/admin/jobs/<name>/toggle      – {"enabled": bool}

Callers must hold the ADMIN role.
"""

import logging

from flask import Blueprint, jsonify, request

from docflow.blueprints import register_error_handlers
from docflow.core.exceptions import PermissionDeniedError
from docflow.core.roles import Role
from docflow.services.engine import get_engine
from docflow.services.scheduler_service import SchedulerService, get_registered_jobs
from docflow.utils.errors import E, api_error
from docflow.utils.helpers import current_principal

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/api/v1/admin")
register_error_handlers(admin_bp)


@admin_bp.before_request
def _require_admin():
    principal = current_principal()
    if not get_engine().resolver.has_role(principal, Role.ADMIN):
        raise PermissionDeniedError(f"{principal} is not an administrator")


@admin_bp.route("/jobs", methods=["GET"])
def list_jobs():
    SchedulerService.ensure_jobs_registered()
    return jsonify({"items": SchedulerService.list_jobs()})


@admin_bp.route("/jobs/<job_name>/run", methods=["POST"])
def run_job(job_name):
    if job_name not in get_registered_jobs():
        return api_error(E.NOT_FOUND, f"Unknown job: {job_name}")
    SchedulerService.ensure_jobs_registered()
    logger.info("Manual run of %s by %s", job_name, current_principal())
    result = SchedulerService.run_job(job_name)
    status = 200 if result["status"] == "success" else 500
    return jsonify(result), status


@admin_bp.route("/jobs/<job_name>/toggle", methods=["POST"])
def toggle_job(job_name):
    data = request.get_json(silent=True) or {}
    if not isinstance(data.get("enabled"), bool):
        return api_error(E.VALIDATION_INVALID, "enabled must be true or false")
    SchedulerService.ensure_jobs_registered()
    record = SchedulerService.toggle_job(job_name, data["enabled"])
    if record is None:
        return api_error(E.NOT_FOUND, f"Unknown job: {job_name}")
    return jsonify(record)
