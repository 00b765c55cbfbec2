"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — database, schema and availability monitor status
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from mealpass.core.exceptions import SchemaError
from mealpass.middleware.diagnostics import missing_tables
from mealpass.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except SQLAlchemyError as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Schema ───────────────────────────────────────────────────────
    if overall:
        absent = missing_tables(db.engine)
        if absent:
            checks["schema"] = {
                "status": "error",
                "missing_tables": absent,
                "remediation": SchemaError.DEFAULT_REMEDIATION,
            }
            overall = False
        else:
            checks["schema"] = {"status": "ok"}

    # ── Availability monitor ─────────────────────────────────────────
    monitor = current_app.extensions.get("availability_monitor")
    if monitor is not None and monitor.running:
        snap = monitor.snapshot()
        checks["availability_monitor"] = {
            "status": "ok" if snap.online else "offline",
            "checked_at": snap.checked_at.isoformat() if snap.checked_at else None,
            "open_meal_types": len(snap.meal_types),
        }
    else:
        checks["availability_monitor"] = {"status": "skipped"}

    checks["app"] = {
        "name": "MealPass",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
