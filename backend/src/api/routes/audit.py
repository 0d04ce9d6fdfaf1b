"""
Fleet Trip Integrity - Audit Trail API Routes
=============================================

Endpoints for searching and exporting the integrity audit trail.

Endpoints:
    GET  /audit/trail                     - Filtered, paginated search
    GET  /audit/stats                     - Dashboard statistics
    GET  /audit/summary                   - Daily activity and top entities
    GET  /audit/export                    - CSV download of matching entries
    GET  /audit/entities/<type>/<id>      - History of one entity (newest first)
    POST /audit/corrections               - Record a correction applied elsewhere

The audit trail is append-only; there are no update or delete endpoints.
"""

from flask import Blueprint, Response, abort, request, jsonify

from api.services import get_services
from integrity.audit_trail import json_safe
from integrity.csv_export import export_audit_csv
from integrity.types import AuditSearchFilters, AuditSeverity, OperationCategory, OperationType
from utils.logger import logger
from utils.timezone import parse_iso_datetime, utc_now

audit_bp = Blueprint("audit", __name__)

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 1000


def _int_arg(name, default, minimum=0, maximum=None):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        abort(400, description=f"{name} must be an integer")
    if value < minimum:
        abort(400, description=f"{name} must be at least {minimum}")
    if maximum is not None:
        value = min(value, maximum)
    return value


def _enum_list_arg(name, enum_cls):
    values = []
    for raw in request.args.getlist(name):
        for item in raw.split(","):
            item = item.strip().lower()
            if not item:
                continue
            try:
                values.append(enum_cls(item))
            except ValueError:
                valid = ", ".join(e.value for e in enum_cls)
                abort(400, description=f"Invalid {name} '{item}'. Must be one of: {valid}")
    return tuple(values)


def _date_arg(name):
    try:
        return parse_iso_datetime(request.args.get(name))
    except ValueError:
        abort(400, description=f"Invalid {name}. Use ISO-8601 (YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS)")


def _filters_from_request(default_limit=DEFAULT_PAGE_SIZE):
    """
    Build AuditSearchFilters from query parameters.

    Query Parameters:
        operation_type (str, repeatable): e.g. validation_check
        severity (str, repeatable): critical, error, warning, info
        entity_type (str, repeatable): e.g. trip, vehicle
        entity_id (str): Exact entity ID
        search (str): Case-insensitive text search
        start_date / end_date (ISO-8601): Inclusive time window (UTC)
        limit (int): Page size (default 100, max 1000)
        offset (int): Entries to skip
        sort (str): 'asc' (default) or 'desc'
    """
    sort = request.args.get("sort", "asc").lower()
    if sort not in ("asc", "desc"):
        abort(400, description="Invalid sort. Must be asc or desc")

    start_date = _date_arg("start_date")
    end_date = _date_arg("end_date")
    if start_date and end_date and end_date < start_date:
        abort(400, description="end_date must not be before start_date")

    entity_types = tuple(
        t.strip() for raw in request.args.getlist("entity_type") for t in raw.split(",") if t.strip()
    )

    return AuditSearchFilters(
        operation_types=_enum_list_arg("operation_type", OperationType),
        severity_levels=_enum_list_arg("severity", AuditSeverity),
        entity_types=entity_types,
        entity_id=request.args.get("entity_id") or None,
        search_text=request.args.get("search") or None,
        start_date=start_date,
        end_date=end_date,
        limit=_int_arg("limit", default_limit, minimum=0, maximum=MAX_PAGE_SIZE),
        offset=_int_arg("offset", 0),
        sort_descending=(sort == "desc"),
    )


@audit_bp.route("/audit/trail", methods=["GET"])
def search_audit_trail():
    """
    Search the audit trail.

    Returns:
        {
            "success": true,
            "entries": [...],
            "total": 250,
            "limit": 25,
            "offset": 75
        }
    """
    filters = _filters_from_request()
    result = get_services().audit.search_audit_trail(filters)

    response = result.to_dict()
    response.update({
        "success": True,
        "limit": filters.limit,
        "offset": filters.offset,
    })
    return jsonify(response), 200


@audit_bp.route("/audit/stats", methods=["GET"])
def get_audit_stats():
    """Statistics over entries matching the same filters as /audit/trail."""
    filters = _filters_from_request()
    stats = get_services().audit.get_audit_trail_stats(filters)

    response = stats.to_dict()
    response["success"] = True
    return jsonify(response), 200


@audit_bp.route("/audit/summary", methods=["GET"])
def get_audit_summary():
    """
    Activity summary over the last N days.

    Query Parameters:
        days (int): Window length (default 30, max 365)
    """
    days = _int_arg("days", 30, minimum=1, maximum=365)
    summary = get_services().audit.get_audit_summary(days)
    summary["success"] = True
    return jsonify(summary), 200


@audit_bp.route("/audit/export", methods=["GET"])
def export_audit_trail():
    """
    Download matching entries as CSV.

    Pagination parameters are ignored unless limit is given explicitly.
    """
    filters = _filters_from_request(default_limit=None)
    audit = get_services().audit

    if filters.limit is None:
        entries = audit.iter_all(filters)
    else:
        entries = audit.search_audit_trail(filters).entries

    body = export_audit_csv(entries)
    filename = f"audit-trail-{utc_now():%Y%m%d-%H%M%S}.csv"
    logger.info("Audit trail exported", extra={"filename": filename})

    return Response(
        body,
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@audit_bp.route("/audit/entities/<entity_type>/<entity_id>", methods=["GET"])
def get_entity_audit_trail(entity_type, entity_id):
    limit = _int_arg("limit", 50, minimum=1, maximum=MAX_PAGE_SIZE)
    entries = get_services().audit.get_entity_audit_trail(entity_type, entity_id, limit=limit)
    return jsonify({
        "success": True,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "entries": [e.to_dict() for e in entries],
    }), 200


@audit_bp.route("/audit/corrections", methods=["POST"])
def record_correction():
    """
    Record a manual correction applied by the fleet application.

    Request Body:
        {
            "entity_type": "trip",
            "entity_id": "t-1",
            "before": {"end_km": 950},
            "after": {"end_km": 1950},
            "reason": "Digit dropped on entry",
            "performer_name": "A. Reviewer",        (optional)
            "entity_description": "Trip #T-104",    (optional)
            "cascade_operations": ["recalculate_kmpl"],  (optional)
            "operation_category": "trip_data",      (optional)
            "confidence_score": 95                  (optional)
        }

    Status Codes:
        201: Recorded
        400: Invalid request body
        503: Audit store unavailable (write failed)
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        abort(400, description="Request body must be a JSON object")

    required_fields = ["entity_type", "entity_id", "before", "after", "reason"]
    missing = [f for f in required_fields if data.get(f) in (None, "")]
    if missing:
        abort(400, description=f"Missing required fields: {', '.join(missing)}")
    if not isinstance(data["before"], dict) or not isinstance(data["after"], dict):
        abort(400, description="before and after must be JSON objects")

    try:
        category = OperationCategory(data.get("operation_category", "trip_data"))
    except ValueError:
        valid = ", ".join(c.value for c in OperationCategory)
        abort(400, description=f"Invalid operation_category. Must be one of: {valid}")

    confidence = data.get("confidence_score")
    if confidence is not None:
        try:
            confidence = float(confidence)
        except (TypeError, ValueError):
            abort(400, description="confidence_score must be a number")
        if not 0 <= confidence <= 100:
            abort(400, description="confidence_score must be between 0 and 100")

    cascade = data.get("cascade_operations") or []
    if not isinstance(cascade, list):
        abort(400, description="cascade_operations must be a list")

    entry_id = get_services().audit.log_data_correction(
        str(data["entity_type"]),
        str(data["entity_id"]),
        before=json_safe(data["before"]),
        after=json_safe(data["after"]),
        reason=str(data["reason"]),
        performer_name=data.get("performer_name"),
        entity_description=data.get("entity_description"),
        cascade_operations=[str(op) for op in cascade],
        operation_category=category,
        confidence_score=confidence,
    )

    if entry_id is None:
        return jsonify({
            "error": "Service Unavailable",
            "message": "Correction could not be recorded in the audit trail"
        }), 503

    return jsonify({"success": True, "id": entry_id}), 201
