"""
Fleet Trip Integrity - Integrity API Routes
===========================================

Dashboard endpoints over the validator and edge-case detector. The GET
endpoints only read; POST /edge-cases/scan is the one that records its
detections in the audit trail.

Endpoints:
    GET /vehicles/<id>/validation          - Per-trip validation results
    GET /data-quality/summary              - Fleet (or subset) quality summary
    GET /edge-cases                        - System-wide edge-case report
    POST /edge-cases/scan                  - System-wide scan, recorded in the audit trail
    GET /vehicles/<id>/edge-cases          - Edge cases of one vehicle
    GET /vehicles/<id>/recovery-scenarios  - Recovery proposals for one vehicle

StoreUnavailableError and VehicleNotFoundError propagate to the error
handlers (503 and 404).
"""

from flask import Blueprint, request, jsonify

from api.services import get_services
from integrity.trip_validator import summarize
from utils.logger import logger

integrity_bp = Blueprint('integrity', __name__)


def _vehicle_ids_arg():
    """Repeated or comma-separated vehicle_id query parameters; None when absent."""
    values = []
    for raw in request.args.getlist('vehicle_id'):
        values.extend(v.strip() for v in raw.split(',') if v.strip())
    return values or None


@integrity_bp.route('/vehicles/<vehicle_id>/validation', methods=['GET'])
def get_vehicle_validation(vehicle_id):
    """
    Validate every trip of a vehicle.

    Returns:
        {
            "success": true,
            "vehicle_id": "v-1",
            "summary": {...},
            "results": [{"trip_id": ..., "score": 80, "errors": [...], "warnings": [...]}]
        }
    """
    results = get_services().validator.validate_vehicle_trips(vehicle_id)
    summary = summarize(results, vehicles_included=1)

    return jsonify({
        "success": True,
        "vehicle_id": vehicle_id,
        "summary": summary.to_dict(),
        "results": [r.to_dict() for r in results],
    }), 200


@integrity_bp.route('/data-quality/summary', methods=['GET'])
def get_data_quality_summary():
    """
    Aggregate quality over the fleet.

    Query Parameters:
        vehicle_id (str, repeatable): Restrict to these vehicles
    """
    summary = get_services().validator.get_data_quality_summary(_vehicle_ids_arg())
    return jsonify({
        "success": True,
        "summary": summary.to_dict(),
    }), 200


@integrity_bp.route('/edge-cases', methods=['GET'])
def get_edge_cases():
    """
    System-wide edge-case report.

    Query Parameters:
        vehicle_id (str, repeatable): Restrict to these vehicles

    A partial scan (failed vehicles, timeout) still returns 200 with
    is_complete false so dashboards can show what was found.
    """
    report = get_services().detector.get_system_wide_edge_cases(vehicle_ids=_vehicle_ids_arg())
    if not report.is_complete:
        logger.warning("Edge-case report is partial", extra={
            "failed_vehicles": list(report.failed_vehicles),
            "timed_out": report.timed_out,
        })

    return jsonify({
        "success": True,
        "report": report.to_dict(),
    }), 200


@integrity_bp.route('/vehicles/<vehicle_id>/edge-cases', methods=['GET'])
def get_vehicle_edge_cases(vehicle_id):
    detections = get_services().detector.analyze_vehicle(vehicle_id)
    return jsonify({
        "success": True,
        "vehicle_id": vehicle_id,
        "total_cases": len(detections),
        "detections": [d.to_dict() for d in detections],
    }), 200


@integrity_bp.route('/vehicles/<vehicle_id>/recovery-scenarios', methods=['GET'])
def get_recovery_scenarios(vehicle_id):
    """
    Recovery proposals for a vehicle's inconsistent data.

    Proposals are decision support only; nothing is changed.
    """
    scenarios = get_services().detector.analyze_data_recovery(vehicle_id)
    return jsonify({
        "success": True,
        "vehicle_id": vehicle_id,
        "total_scenarios": len(scenarios),
        "scenarios": [s.to_dict() for s in scenarios],
    }), 200


@integrity_bp.route('/edge-cases/scan', methods=['POST'])
def run_edge_case_scan():
    """
    Run a system-wide scan and record its detections in the audit trail.

    Query Parameters:
        vehicle_id (str, repeatable): Restrict to these vehicles
    """
    report = get_services().scanner.get_system_wide_edge_cases(vehicle_ids=_vehicle_ids_arg())
    logger.info("Recorded edge-case scan", extra={
        "vehicles_scanned": report.vehicles_scanned,
        "cases_detected": report.total_cases_detected,
    })
    return jsonify({
        "success": True,
        "report": report.to_dict(),
    }), 200
