"""
Health check blueprint.

Endpoints:
    GET /api/v1/health           plain "ok" for uptime checks
    GET /api/v1/health/ready     simple 200 for load balancers
    GET /api/v1/health/live      dependency status (DB, ledger)
    GET /api/v1/health/ledger    active ledger mode, degradation, counters
    GET /api/v1/health/metrics   request timing over the last N seconds
"""

import logging
import time

from flask import Blueprint, current_app, jsonify, request

from herbtrace.ledger import get_ledger
from herbtrace.middleware.timing import get_recent_metrics
from herbtrace.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def health():
    return jsonify({"status": "ok", "app": "Herb Traceability Service"})


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe, always 200 if the app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status.

    A degraded ledger keeps the service live (writes go to the fallback
    store) so it is reported but does not fail the check.
    """
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check: database failed: %s", exc)

    # ── Ledger ───────────────────────────────────────────────────────
    status = get_ledger().status()
    if not status.connected:
        checks["ledger"] = {"status": "error", "mode": status.mode, "detail": status.last_error}
        overall = False
    elif status.degraded:
        checks["ledger"] = {"status": "degraded", "mode": status.mode, "primary": status.primary_mode}
    else:
        checks["ledger"] = {"status": "ok", "mode": status.mode}

    # ── App info ─────────────────────────────────────────────────────
    checks["app"] = {
        "name": "Herb Traceability Service",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code


@health_bp.route("/ledger", methods=["GET"])
def ledger_status():
    """Ledger connection status: mode, fallback state, write counter."""
    return jsonify(get_ledger().status().to_dict()), 200


@health_bp.route("/metrics", methods=["GET"])
def request_metrics():
    """Request count and latency per path, from the in-memory buffer."""
    seconds = request.args.get("seconds", 3600, type=int)
    entries = get_recent_metrics(seconds)

    by_path: dict[str, dict] = {}
    for m in entries:
        row = by_path.setdefault(m["path"], {"count": 0, "errors": 0, "total_ms": 0.0, "max_ms": 0.0})
        row["count"] += 1
        row["total_ms"] += m["ms"]
        row["max_ms"] = max(row["max_ms"], m["ms"])
        if m["status"] >= 500:
            row["errors"] += 1

    paths = {
        path: {
            "count": row["count"],
            "errors": row["errors"],
            "avg_ms": round(row["total_ms"] / row["count"], 1),
            "max_ms": row["max_ms"],
        }
        for path, row in by_path.items()
    }
    return jsonify({"window_seconds": seconds, "requests": len(entries), "paths": paths}), 200
