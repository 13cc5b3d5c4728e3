"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — database plus workflow-catalog readiness
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from welfare_workflow.models import db
from welfare_workflow.services.stage_catalog import StageCatalog, active_executive_levels

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check.

    A catalog without an executive or finance stage still serves traffic
    (transitions degrade), so it is reported but does not fail the probe.
    """
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except SQLAlchemyError as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Workflow catalog ─────────────────────────────────────────────
    if overall:
        catalog = StageCatalog.load()
        gaps = []
        if catalog.is_empty:
            gaps.append("no active stages")
        if catalog.executive_stage() is None:
            gaps.append("no executive stage")
        if catalog.finance_stage() is None:
            gaps.append("no finance/disbursement stage")
        levels = active_executive_levels()
        if not levels:
            gaps.append("no active executive levels")
        checks["workflow_catalog"] = {
            "status": "ok" if not gaps else "degraded",
            "active_stages": len(catalog),
            "active_executive_levels": len(levels),
            "gaps": gaps,
        }

    checks["app"] = {
        "name": "Welfare Case Workflow Engine",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
