"""
Rate limiting configuration.

The Limiter instance is created in docflow/__init__.py with no default
limits; this module applies per-blueprint limits with Flask-Limiter.

Usage:
    from docflow.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import request

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def rate_limit_key() -> str:
    """Key by acting principal when the gateway supplies one, else remote IP."""
    principal = request.headers.get("X-User") or request.headers.get("X-Forwarded-User")
    if principal:
        return f"user:{principal.strip()}"
    return request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

        - Workflow / template / admin routes: 60/minute
        - Metrics / notifications:            200/minute

    Disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in ("workflows", "workflow_templates", "admin"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    for bp_name in ("workflow_metrics", "notifications"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(READ_LIMIT)(bp)

    app.logger.info("Rate limiter configured: write=%s read=%s", WRITE_LIMIT, READ_LIMIT)
