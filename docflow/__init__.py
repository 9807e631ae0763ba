"""
Document Approval Workflow Engine
Flask Application Factory.

Usage:
    from docflow import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import json
import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from docflow.config import config
from docflow.middleware.logging_config import configure_logging
from docflow.middleware.rate_limiter import init_rate_limits, rate_limit_key
from docflow.middleware.timing import init_request_timing
from docflow.models import db

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=rate_limit_key,
    default_limits=[],                     # no global limit; applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None, engine=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
        engine: Optional pre-built WorkflowEngine (custom clock, role
                membership or notification hook).

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    cfg = config[config_name]
    app.config.from_object(cfg() if config_name == "production" else cfg)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    init_request_timing(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 1 * 1024 * 1024)

    @app.before_request
    def _guard_request():
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from docflow.models import directory as _directory_models        # noqa: F401
    from docflow.models import notification as _notification_models  # noqa: F401
    from docflow.models import scheduling as _scheduling_models      # noqa: F401
    from docflow.models import workflow as _workflow_models          # noqa: F401
    from docflow.services import history_ledger as _history_ledger   # noqa: F401  (append-only guards)

    if not app.config.get("TESTING"):
        with app.app_context():
            try:
                db.create_all()
            except Exception as e:
                app.logger.warning("db.create_all() failed: %s", e)

    # ── Workflow engine ──────────────────────────────────────────────────
    from docflow.services.engine import init_workflow_engine
    init_workflow_engine(app, engine)

    # ── Blueprints ───────────────────────────────────────────────────────
    from docflow.blueprints.admin_bp import admin_bp
    from docflow.blueprints.metrics_bp import metrics_bp
    from docflow.blueprints.notification_bp import notification_bp
    from docflow.blueprints.template_bp import template_bp
    from docflow.blueprints.workflow_bp import workflow_bp

    app.register_blueprint(template_bp)
    app.register_blueprint(workflow_bp)
    app.register_blueprint(metrics_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(admin_bp)

    _register_cli(app)

    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "docflow"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(415)
    def unsupported_media(e):
        return {"error": e.description}, 415

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler (import jobs to register them) ─────────────────────────
    import importlib
    importlib.import_module("docflow.services.scheduled_jobs")
    from docflow.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)
    if app.config.get("WORKFLOW_SCHEDULER_ENABLED") and not app.config.get("TESTING"):
        SchedulerService.start()

    return app


def _register_cli(app):
    from docflow.services.approver_resolver import DirectoryRoleMembership
    from docflow.services.engine import get_engine

    @app.cli.command("run-sla-sweep")
    def run_sla_sweep_cmd():
        """Expire overdue workflows and flag overdue tasks once."""
        result = get_engine().sla_watcher.sweep()
        click.echo(json.dumps(result))

    @app.cli.command("assign-role")
    @click.argument("principal")
    @click.argument("role")
    def assign_role_cmd(principal, role):
        """Grant ROLE (USER, MANAGER, ADMIN) to PRINCIPAL."""
        row = DirectoryRoleMembership().assign(role, principal)
        click.echo(f"{row.principal_id}: {row.role}")

    @app.cli.command("revoke-role")
    @click.argument("principal")
    @click.argument("role")
    def revoke_role_cmd(principal, role):
        """Deactivate ROLE for PRINCIPAL."""
        if DirectoryRoleMembership().revoke(role, principal):
            click.echo(f"revoked {role} from {principal}")
        else:
            click.echo(f"{principal} does not hold {role}")
