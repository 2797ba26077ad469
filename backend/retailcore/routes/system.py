# backend/retailcore/routes/system.py
"""
System health endpoint.
"""

import time

from flask import Blueprint, current_app, jsonify, request

from ..extensions import db
from ..models import Branch, LedgerAccount
from ..services import audit_service
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and that the investor-pool account exists.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        branch_count = db.session.query(Branch).count()
        ledger_count = db.session.query(LedgerAccount).count()
        pool_code = current_app.config.get("INVESTOR_POOL_BRANCH_CODE")
        has_pool = db.session.query(Branch.id).filter_by(code=pool_code).first() is not None

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy" if has_pool else "degraded",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "branches": branch_count,
                "ledger_accounts": ledger_count,
                "investor_pool_configured": has_pool,
            },
        }
    except Exception:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (no investor-pool account yet)
    - 503: database unreachable
    """
    database_health = check_database_health()
    http_status = 503 if database_health["status"] == "unhealthy" else 200

    return {
        "status": database_health["status"],
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database_health},
    }, http_status


@system_bp.get("/audit-events")
def audit_events():
    """Query params: entity_type, entity_id, limit (max 500). Newest first."""
    limit = max(1, min(request.args.get("limit", default=200, type=int), 500))
    events = audit_service.list_events(
        entity_type=request.args.get("entity_type"),
        entity_id=request.args.get("entity_id", type=int),
        limit=limit,
    )
    return jsonify({"items": [ev.to_dict() for ev in events], "count": len(events)}), 200
