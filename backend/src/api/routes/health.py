"""
Fleet Trip Integrity - Health Check Endpoint
Provides API health status, trip store reachability and audit trail state.
"""

from flask import Blueprint, jsonify

from api.services import get_services
from integrity.types import AuditSearchFilters
from utils.logger import logger
from utils.timezone import utc_now

health_bp = Blueprint('health', __name__)


@health_bp.route('/health', methods=['GET'])
def health_check():
    """
    Health check endpoint.

    Returns:
        JSON with API health status and per-dependency checks

    Response:
        200 OK: All systems operational (or degraded)
        503 Service Unavailable: Trip store or audit store unreachable
    """
    services = get_services()
    health_data = {
        "status": "healthy",
        "timestamp": utc_now().isoformat() + 'Z',
        "api_version": "1.0.0",
        "checks": {}
    }

    try:
        vehicle_count = len(services.store.list_vehicle_ids())
        health_data["checks"]["trip_store"] = {
            "status": "healthy" if vehicle_count else "no_data",
            "vehicle_count": vehicle_count,
        }
    except Exception as e:
        logger.error(f"Health check: trip store failed: {e}", exc_info=True)
        health_data["checks"]["trip_store"] = {
            "status": "unhealthy",
            "message": f"Trip store unavailable: {e}"
        }

    try:
        total = services.audit.store.count(AuditSearchFilters(limit=None))
        pending = len(services.audit.fallback_entries)
        health_data["checks"]["audit_trail"] = {
            # Buffered entries mean some audit writes have failed
            "status": "degraded" if pending else "healthy",
            "total_entries": total,
            "unwritten_entries": pending,
        }
    except Exception as e:
        logger.error(f"Health check: audit store failed: {e}", exc_info=True)
        health_data["checks"]["audit_trail"] = {
            "status": "unhealthy",
            "message": f"Audit store unavailable: {e}"
        }

    # Determine overall status
    check_statuses = [check.get("status") for check in health_data["checks"].values()]

    if "unhealthy" in check_statuses:
        health_data["status"] = "unhealthy"
        return jsonify(health_data), 503
    elif "degraded" in check_statuses or "no_data" in check_statuses:
        health_data["status"] = "degraded"

    return jsonify(health_data), 200
