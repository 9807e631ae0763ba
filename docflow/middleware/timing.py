"""
Request timing middleware.

Every response carries X-Request-ID (echoed from the caller when given)
and X-Request-Duration-Ms. API calls are logged with the acting principal
and, where the route names one, the workflow/task/template id, so a single
instance can be followed through the logs.
"""

import logging
import time
import uuid

from flask import Flask, g, request

from docflow.utils.helpers import current_principal

logger = logging.getLogger(__name__)

SLOW_THRESHOLD_MS = 1000

# URL parameter name → log field
_ROUTE_IDS = {"wid": "instance_id", "task_id": "task_id", "tid": "template_id"}


def _request_fields(status: int, duration_ms: float) -> dict:
    fields = {
        "method": request.method,
        "path": request.path,
        "status": status,
        "duration_ms": round(duration_ms, 1),
        "remote_addr": request.remote_addr,
        "request_id": g.get("request_id", ""),
        "principal": current_principal(),
    }
    for arg, field in _ROUTE_IDS.items():
        if request.view_args and arg in request.view_args:
            fields[field] = request.view_args[arg]
    return fields


def init_request_timing(app: Flask):
    """Register the before/after request hooks on ``app``."""

    @app.before_request
    def _stamp_request():
        g.request_started = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _finish_request(response):
        started = g.get("request_started")
        if started is None:
            return response

        duration_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"

        if not request.path.startswith("/api/") or request.path == "/api/v1/health":
            return response

        fields = _request_fields(response.status_code, duration_ms)
        line = f"{request.method} {request.path} {response.status_code} ({duration_ms:.0f}ms)"
        if response.status_code >= 500:
            logger.error("Server error: %s", line, extra=fields)
        elif duration_ms > SLOW_THRESHOLD_MS:
            logger.warning("Slow request: %s", line, extra=fields)
        else:
            logger.debug("Request: %s", line, extra=fields)
        return response
