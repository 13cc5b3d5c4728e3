"""
Welfare Case Workflow Engine
Flask Application Factory.

Usage:
    from welfare_workflow import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from welfare_workflow.config import config
from welfare_workflow.middleware.identity import init_identity
from welfare_workflow.middleware.logging_config import configure_logging
from welfare_workflow.middleware.rate_limiter import init_rate_limits
from welfare_workflow.middleware.timing import init_request_timing
from welfare_workflow.models import db
from welfare_workflow.utils.errors import E, api_error

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
# Storage comes from RATELIMIT_STORAGE_URI; limits are set per blueprint.
limiter = Limiter(key_func=get_remote_address, default_limits=[])


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

    # ── Request middleware ───────────────────────────────────────────────
    init_request_timing(app)
    init_identity(app)

    # ── Models (register tables with the metadata) ──────────────────────
    from welfare_workflow.models import audit, auth, case, checklist, notification, workflow  # noqa: F401

    # ── Blueprints ───────────────────────────────────────────────────────
    from welfare_workflow.blueprints.case_workflow_bp import case_workflow_bp
    from welfare_workflow.blueprints.executive_level_bp import executive_level_bp
    from welfare_workflow.blueprints.health_bp import health_bp
    from welfare_workflow.blueprints.notification_bp import notification_bp
    from welfare_workflow.blueprints.workflow_stage_bp import workflow_stage_bp

    app.register_blueprint(case_workflow_bp)
    app.register_blueprint(workflow_stage_bp)
    app.register_blueprint(executive_level_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-workflow")
    def seed_workflow_cmd():
        """Seed the default seven-stage catalog and executive levels 1-4."""
        from welfare_workflow.services.catalog_seed import seed_default_catalog
        stages, levels = seed_default_catalog()
        db.session.commit()
        logger.info("Seeded %s workflow stages and %s executive levels.", stages, levels)

    @app.cli.command("reconcile-cases")
    def reconcile_cases_cmd():
        """Self-heal every case whose status drifted out of its stage's set."""
        from welfare_workflow.services.diagnostics import inconsistent_cases
        from welfare_workflow.services.status_sync import reconcile_case
        flagged = inconsistent_cases()
        for row in flagged:
            reconcile_case(row["id"])
        logger.info("Reconciled %s case(s).", len(flagged))

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, f"No route for {request.path}")

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, f"{request.method} not allowed on {request.path}", status=405)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.RATE_LIMITED, "Too many requests", details={"limit": str(e.description)})

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
