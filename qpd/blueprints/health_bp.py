"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        - status plus table row counts
    GET /api/v1/health/ready  - simple 200 for load balancers
    GET /api/v1/health/live   - database round-trip check
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from qpd.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")

_TABLES = (
    "processes", "process_fields", "workflow_steps", "process_records",
    "record_field_values", "workflow_history", "record_links",
    "user_profiles", "guided_sessions",
)


@health_bp.route("", methods=["GET"])
def health():
    """Overall status with per-table row counts."""
    tables = {}
    overall = True
    for tbl in _TABLES:
        try:
            count = db.session.execute(db.text(f"SELECT COUNT(*) FROM {tbl}")).scalar()
            tables[tbl] = {"status": "ok", "count": count}
        except Exception as exc:
            db.session.rollback()
            tables[tbl] = {"status": "error", "detail": str(exc)}
            overall = False
            logger.error("Health check - table %s failed: %s", tbl, exc)

    return jsonify({
        "status": "healthy" if overall else "degraded",
        "app": "Quality Process Designer",
        "tables": tables,
    }), 200 if overall else 503


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Readiness check, always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Liveness check with database latency."""
    checks = {}
    overall = True

    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check - database failed: %s", exc)

    checks["app"] = {
        "name": "Quality Process Designer",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
