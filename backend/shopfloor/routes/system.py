# Overview: System health, version and audit endpoints.

"""
System Routes

Health checks cover the database, the shop-floor bootstrap data (roles and
stations) and the QuickBooks connection. The QuickBooks check reads the stored
token only; it never calls Intuit and never refreshes.
"""

import sys
import time
from flask import Blueprint, current_app, request, jsonify

from ..decorators import require_auth, require_role, ADMIN
from ..extensions import db
from ..models import Order, OrderItem, Role, Station
from ..services.audit_service import list_audit_logs
from ..services.qbo_token_service import get_token_manager
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        order_count = db.session.query(Order).count()
        order_item_count = db.session.query(OrderItem).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "orders": order_count,
                "order_items": order_item_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_bootstrap_health() -> dict:
    """Roles and stations must be seeded (flask system init) for scans to work."""
    try:
        role_count = db.session.query(Role).count()
        station_count = db.session.query(Station).filter_by(is_active=True).count()
    except Exception:
        current_app.logger.exception("Bootstrap health check failed")
        return {"status": "unhealthy", "error": "Database error"}

    missing = []
    if role_count == 0:
        missing.append("roles")
    if station_count == 0:
        missing.append("stations")
    if missing:
        return {
            "status": "degraded",
            "warning": f"Not seeded: {', '.join(missing)}. Run 'flask system init'.",
        }
    return {"status": "healthy", "details": {"roles": role_count, "active_stations": station_count}}


def check_quickbooks_health() -> dict:
    status = get_token_manager().get_connection_status()
    if not status["connected"]:
        return {"status": "degraded", "warning": "QuickBooks is not connected"}
    return {
        "status": "healthy",
        "details": {
            "company_id": status["companyId"],
            "access_token_expires_at": status["accessTokenExpiresAt"],
            "refresh_token_expires_at": status["refreshTokenExpiresAt"],
        },
    }


@system_bp.get("/api/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (still operational)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    if database_health["status"] == "unhealthy":
        checks = {"database": database_health}
    else:
        checks = {
            "database": database_health,
            "bootstrap": check_bootstrap_health(),
            "quickbooks": check_quickbooks_health(),
        }

    statuses = [check["status"] for check in checks.values()]
    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }, http_status


@system_bp.get("/api/version")
def version():
    env = "production" if not current_app.debug else "development"
    return {
        "api_version": "0.1.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }


@system_bp.get("/api/audit-logs")
@require_auth
@require_role(ADMIN)
def audit_logs_route():
    logs = list_audit_logs(
        entity_name=request.args.get("entityName"),
        entity_id=request.args.get("entityId"),
        limit=min(request.args.get("limit", default=100, type=int), 500),
    )
    return jsonify({"auditLogs": [entry.to_dict() for entry in logs], "count": len(logs)})
