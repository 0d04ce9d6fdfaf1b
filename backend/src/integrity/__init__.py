"""
Trip Data Integrity Package
===========================

Quality scoring, edge-case detection and audit trail for fleet trip data.

Components:
- TripValidator: Scores trips 0-100 with severity-tiered issues
- EdgeCaseDetector: Classifies anomalous trips and proposes recovery scenarios
- AuditTrailLogger: Append-only record of integrity operations

Usage:
    from integrity import AuditTrailLogger, EdgeCaseDetector, TripValidator

    audit = AuditTrailLogger()
    validator = TripValidator(store=store, audit_sink=audit)
    detector = EdgeCaseDetector(store=store, audit_sink=audit, validator=validator)

    results = validator.validate_vehicle_trips(vehicle_id)
    report = detector.get_system_wide_edge_cases()
"""

from .audit_trail import AuditTrailLogger, InMemoryAuditStore
from .csv_export import export_audit_csv
from .edge_case_detector import EdgeCaseDetector
from .fleet_scan import FleetScanner
from .recovery import RecoveryPlanner
from .store import InMemoryTripStore, StoreUnavailableError, VehicleNotFoundError
from .trip_record import TripRecord
from .trip_validator import TripContext, TripValidator

__all__ = [
    'AuditTrailLogger',
    'InMemoryAuditStore',
    'export_audit_csv',
    'EdgeCaseDetector',
    'FleetScanner',
    'RecoveryPlanner',
    'InMemoryTripStore',
    'StoreUnavailableError',
    'VehicleNotFoundError',
    'TripRecord',
    'TripContext',
    'TripValidator',
]
