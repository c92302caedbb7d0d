# backend/shopledger/routes/system.py
"""
System health and audit trail endpoints.
"""

import time

from flask import Blueprint, current_app, request
from sqlalchemy import text

from ..extensions import db
from ..services.audit_service import list_audit_events
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {"status": "unhealthy", "latency_ms": round(elapsed_ms, 2), "error": "Database error"}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database reachable
    - 503: database unhealthy
    """
    database_health = check_database_health()
    healthy = database_health["status"] == "healthy"
    response = {
        "success": healthy,
        "status": database_health["status"],
        "shop": current_app.config.get("SHOP_NAME"),
        "currency": current_app.config.get("CURRENCY"),
        "timestamp": utcnow().isoformat() + "Z",
        "checks": {"database": database_health},
    }
    return response, 200 if healthy else 503


@system_bp.get("/api/audit/events")
def audit_events():
    """Recent audit events: ?entity_ref=110001&event_type=sale.cancelled&limit=50"""
    events = list_audit_events(
        entity_ref=request.args.get("entity_ref"),
        event_type=request.args.get("event_type"),
        limit=request.args.get("limit", default=200, type=int),
    )
    return {"success": True, "events": [e.to_dict() for e in events]}
