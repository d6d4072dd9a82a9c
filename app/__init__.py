"""
Project Workflow Platform
Flask Application Factory.

Usage:
    from app import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import importlib
import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event
from sqlalchemy.exc import SQLAlchemyError

from app.config import config
from app.middleware.logging_config import configure_logging
from app.middleware.rate_limiter import init_rate_limits
from app.middleware.timing import init_request_timing
from app.models import db

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit — apply per-blueprint
    storage_uri=os.getenv("REDIS_URL") or "memory://",
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])
    os.makedirs(app.instance_path, exist_ok=True)  # default SQLite file lives here

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

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    @app.before_request
    def _guard_request():
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and request.content_length and request.content_length > max_len:
            abort(413, description="Request body too large")
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from app.models import workflow as _workflow_models          # noqa: F401
    from app.models import project as _project_models            # noqa: F401
    from app.models import tracker as _tracker_models            # noqa: F401
    from app.models import alert as _alert_models                # noqa: F401
    from app.models import phase_override as _override_models    # noqa: F401
    from app.models import notification as _notification_models  # noqa: F401
    from app.models import scheduling as _scheduling_models      # noqa: F401

    # ── Auto-create tables (safe for production — CREATE IF NOT EXISTS) ──
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except SQLAlchemyError as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from app.blueprints.health_bp import health_bp
    from app.blueprints.scheduler_bp import scheduler_bp
    from app.blueprints.template_bp import template_bp
    from app.blueprints.workflow_bp import workflow_bp

    app.register_blueprint(workflow_bp)
    app.register_blueprint(template_bp)
    app.register_blueprint(scheduler_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-workflow-templates")
    def seed_workflow_templates_cmd():
        """Seed the default ROOFING and GUTTERS workflow templates."""
        from app.services.seed_templates import seed_default_templates
        count = seed_default_templates()
        click.echo(f"Seeded {count} workflow template(s).")

    @app.cli.command("run-job")
    @click.argument("job_name")
    def run_job_cmd(job_name):
        """Run one registered scheduler job now."""
        from app.services.scheduler_service import SchedulerService
        result = SchedulerService.run_job(job_name)
        click.echo(f"{job_name}: {result['status']}")
        if result.get("error"):
            raise click.ClickException(result["error"])

    # ── Health check (kept for backward compat — detailed version at /health/live) ──
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Project Workflow Platform"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "detail": str(e)}, 500

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler initialization (import jobs to register them) ──────────
    importlib.import_module("app.services.scheduled_jobs")  # registers @register_job handlers
    from app.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)

    return app
