"""
Integrity Scan Script
=====================

Runs a system-wide edge-case scan and prints the report as JSON.

Features:
- Concurrent scan with ThreadPoolExecutor (--workers, default 4)
- Whole-scan timeout (--timeout, default SCAN_TIMEOUT_SECONDS)
- Optional data recovery proposals per vehicle (--recovery)
- Trips read from the database, or from the fleet backend API (--source api)
- Detections and failures are written to the audit trail

Usage:
    # Scan every vehicle
    python -m scripts.run_integrity_scan

    # Two vehicles, with recovery scenarios
    python -m scripts.run_integrity_scan --vehicle v-1 --vehicle v-2 --recovery

Exit codes:
    0  scan complete
    2  partial report (vehicle failures, timeout or interrupt)
    1  scan could not run (store unavailable)

Environment:
    PYTHONPATH should include backend/src
"""

import argparse
import json
import sys
import threading
from typing import Dict, List, Optional, Sequence

from integrity.audit_trail import AuditTrailLogger
from integrity.edge_case_detector import EdgeCaseDetector
from integrity.fleet_scan import FleetScanner
from integrity.store import StoreUnavailableError, TripStore, VehicleNotFoundError
from integrity.trip_validator import TripValidator
from utils.config import SCAN_MAX_WORKERS, SCAN_TIMEOUT_SECONDS
from utils.logger import logger


EXIT_OK = 0
EXIT_FAILED = 1
EXIT_PARTIAL = 2


def build_store(source: str) -> TripStore:
    if source == 'api':
        from collector.fleet_api_client import FleetApiTripStore
        return FleetApiTripStore()
    from database.repositories.trip_repository import SqlTripStore
    return SqlTripStore()


def build_audit_logger() -> AuditTrailLogger:
    from database.repositories.audit_trail_repository import SqlAuditStore
    return AuditTrailLogger(store=SqlAuditStore())


def collect_recovery(detector: EdgeCaseDetector, vehicle_ids: Sequence[str]) -> Dict[str, object]:
    """Recovery scenarios per vehicle; failures are reported inline."""
    scenarios: Dict[str, object] = {}
    for vehicle_id in vehicle_ids:
        try:
            scenarios[vehicle_id] = [s.to_dict() for s in detector.analyze_data_recovery(vehicle_id)]
        except (StoreUnavailableError, VehicleNotFoundError) as e:
            logger.error(f"Recovery analysis failed for vehicle {vehicle_id}: {e}")
            scenarios[vehicle_id] = {"error": str(e)}
    return scenarios


def run_scan(
    store: TripStore,
    audit: AuditTrailLogger,
    vehicle_ids: Optional[List[str]] = None,
    include_recovery: bool = False,
    workers: int = SCAN_MAX_WORKERS,
    timeout: float = SCAN_TIMEOUT_SECONDS,
    cancel_event: Optional[threading.Event] = None,
) -> Dict[str, object]:
    """
    Run the scan and assemble the printable report.

    Raises:
        StoreUnavailableError: If the vehicle list cannot be fetched
    """
    validator = TripValidator(store=store, audit_sink=audit)
    detector = EdgeCaseDetector(store=store, audit_sink=audit, validator=validator)
    scanner = FleetScanner(detector, audit_sink=audit, max_workers=workers, timeout=timeout)

    report = scanner.scan(vehicle_ids=vehicle_ids, cancel_event=cancel_event)
    output: Dict[str, object] = {"edge_cases": report.to_dict()}

    if include_recovery:
        ids = vehicle_ids if vehicle_ids is not None else store.list_vehicle_ids()
        output["recovery_scenarios"] = collect_recovery(detector, ids)

    unwritten = audit.fallback_entries
    if unwritten:
        output["unwritten_audit_entries"] = [e.to_dict() for e in unwritten]
    return output


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        description='Scan fleet trip data for edge cases and data integrity problems'
    )
    parser.add_argument(
        '--vehicle',
        action='append',
        dest='vehicles',
        metavar='ID',
        help='Vehicle ID to scan (repeatable; default: all vehicles)'
    )
    parser.add_argument(
        '--recovery',
        action='store_true',
        help='Include data recovery scenarios for each scanned vehicle'
    )
    parser.add_argument(
        '--workers',
        type=int,
        default=SCAN_MAX_WORKERS,
        help=f'Concurrent vehicle scans (default: {SCAN_MAX_WORKERS})'
    )
    parser.add_argument(
        '--timeout',
        type=float,
        default=SCAN_TIMEOUT_SECONDS,
        help=f'Whole-scan timeout in seconds (default: {SCAN_TIMEOUT_SECONDS:g})'
    )
    parser.add_argument(
        '--source',
        choices=('db', 'api'),
        default='db',
        help='Where trips are read from (default: db)'
    )

    args = parser.parse_args(argv)
    if args.workers < 1:
        parser.error('--workers must be at least 1')
    if args.timeout <= 0:
        parser.error('--timeout must be positive')

    cancel_event = threading.Event()
    try:
        output = run_scan(
            build_store(args.source),
            build_audit_logger(),
            vehicle_ids=args.vehicles,
            include_recovery=args.recovery,
            workers=args.workers,
            timeout=args.timeout,
            cancel_event=cancel_event,
        )
    except KeyboardInterrupt:
        cancel_event.set()
        logger.warning("Scan interrupted")
        return EXIT_PARTIAL
    except StoreUnavailableError as e:
        logger.error(
            "Scan failed",
            extra={'error': str(e), 'error_type': type(e).__name__}
        )
        return EXIT_FAILED

    print(json.dumps(output, indent=2, default=str))
    return EXIT_OK if output["edge_cases"]["is_complete"] else EXIT_PARTIAL


if __name__ == '__main__':
    sys.exit(main())
