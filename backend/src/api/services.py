"""
Fleet Trip Integrity - API Service Wiring
Builds the integrity components once per Flask app and hands them to routes.

Tests (or alternative deployments) pass their own trip store / audit logger
to create_app(); otherwise the SQL-backed implementations are used.
"""

from dataclasses import dataclass
from typing import Optional

from flask import Flask, current_app

from integrity.audit_trail import AuditTrailLogger
from integrity.edge_case_detector import EdgeCaseDetector
from integrity.store import TripStore
from integrity.trip_validator import TripValidator


EXTENSION_KEY = 'fleet_integrity'


@dataclass
class IntegrityServices:
    """
    validator and detector serve the GET dashboards and write no audit
    entries; scanner records its detections and is used by POST /edge-cases/scan.
    """
    store: TripStore
    audit: AuditTrailLogger
    validator: TripValidator
    detector: EdgeCaseDetector
    scanner: EdgeCaseDetector


def init_services(
    app: Flask,
    trip_store: Optional[TripStore] = None,
    audit_logger: Optional[AuditTrailLogger] = None,
) -> IntegrityServices:
    """
    Attach integrity services to the app.

    Args:
        app: Flask application
        trip_store: Trip store (default: SqlTripStore)
        audit_logger: Audit logger (default: AuditTrailLogger over SqlAuditStore)
    """
    if trip_store is None:
        from database.repositories.trip_repository import SqlTripStore
        trip_store = SqlTripStore()
    if audit_logger is None:
        from database.repositories.audit_trail_repository import SqlAuditStore
        audit_logger = AuditTrailLogger(store=SqlAuditStore())

    validator = TripValidator(store=trip_store)
    recording_validator = TripValidator(store=trip_store, audit_sink=audit_logger)
    services = IntegrityServices(
        store=trip_store,
        audit=audit_logger,
        validator=validator,
        detector=EdgeCaseDetector(store=trip_store, validator=validator),
        scanner=EdgeCaseDetector(store=trip_store, audit_sink=audit_logger, validator=recording_validator),
    )
    app.extensions[EXTENSION_KEY] = services
    return services


def get_services() -> IntegrityServices:
    """Services of the current app (inside a request or app context)."""
    return current_app.extensions[EXTENSION_KEY]
