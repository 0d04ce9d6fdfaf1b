"""
Fleet-Wide Edge-Case Scan
=========================

Runs the edge-case detector over many vehicles with bounded concurrency.

Concurrency model:
- ThreadPoolExecutor with SCAN_MAX_WORKERS workers (default 4)
- TokenBucket limits store calls to SCAN_RATE_LIMIT_PER_SECOND
- Whole scan bounded by SCAN_TIMEOUT_SECONDS; vehicles not finished by then
  are abandoned and the report is marked timed_out
- A caller-supplied threading.Event cancels the scan cooperatively; it is
  checked before each vehicle is fetched

One vehicle failing never aborts the scan: the failure is logged, written to
the audit trail, and the vehicle is listed in failed_vehicles so a partial
report is never mistaken for "no anomalies found".
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed, TimeoutError as FuturesTimeoutError
from typing import Dict, List, Optional, Sequence

from integrity.audit_trail import AuditTrailLogger
from integrity.types import (
    AuditSeverity,
    CaseType,
    EdgeCaseDetection,
    EdgeCaseReport,
    OperationCategory,
    OperationType,
    ResolutionStatus,
    Severity,
)
from utils.config import (
    RECENT_DETECTIONS_LIMIT,
    SCAN_MAX_WORKERS,
    SCAN_RATE_LIMIT_PER_SECOND,
    SCAN_TIMEOUT_SECONDS,
)
from utils.logger import logger, log_scan_start, log_scan_complete, log_scan_error
from utils.rate_limiter import TokenBucket


SCAN_TYPE = "edge_cases"


class ScanTimeoutError(Exception):
    """A vehicle could not start before the scan deadline."""
    pass


def build_report(
    detections: Sequence[EdgeCaseDetection],
    vehicles_scanned: int,
    failed_vehicles: Sequence[str] = (),
    cancelled: bool = False,
    timed_out: bool = False,
    recent_limit: int = RECENT_DETECTIONS_LIMIT,
) -> EdgeCaseReport:
    """Aggregate detections into a report (all case types and severities listed)."""
    by_type = {case_type.value: 0 for case_type in CaseType}
    by_severity = {severity.value: 0 for severity in Severity}
    for detection in detections:
        by_type[detection.case_type.value] += 1
        by_severity[detection.severity.value] += 1

    recent = sorted(
        detections,
        key=lambda d: (d.detected_at, d.severity.rank, d.confidence_score),
        reverse=True,
    )[:recent_limit]

    return EdgeCaseReport(
        total_cases_detected=len(detections),
        pending_reviews=sum(
            1 for d in detections
            if d.requires_manual_review and d.resolution_status is ResolutionStatus.PENDING
        ),
        cases_by_type=by_type,
        cases_by_severity=by_severity,
        recent_detections=tuple(recent),
        vehicles_scanned=vehicles_scanned,
        failed_vehicles=tuple(failed_vehicles),
        cancelled=cancelled,
        timed_out=timed_out,
    )


class FleetScanner:
    """
    Bounded-concurrency scan of the fleet.

    Usage:
        ```python
        scanner = FleetScanner(detector, audit_sink=audit)
        stop = threading.Event()
        report = scanner.scan(cancel_event=stop)  # stop.set() from another thread
        ```
    """

    def __init__(
        self,
        detector,
        audit_sink: Optional[AuditTrailLogger] = None,
        max_workers: int = SCAN_MAX_WORKERS,
        rate_limit: float = SCAN_RATE_LIMIT_PER_SECOND,
        timeout: float = SCAN_TIMEOUT_SECONDS,
    ):
        """
        Args:
            detector: EdgeCaseDetector (provides store and analyze_vehicle)
            audit_sink: Audit trail receiving per-vehicle failures
            max_workers: Concurrency bound
            rate_limit: Store calls per second
            timeout: Default whole-scan timeout in seconds
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.detector = detector
        self.audit_sink = audit_sink
        self.max_workers = max_workers
        self.rate_limiter = TokenBucket(rate=rate_limit)
        self.timeout = timeout

    def scan(
        self,
        vehicle_ids: Optional[Sequence[str]] = None,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> EdgeCaseReport:
        """
        Scan vehicles and aggregate their detections.

        Args:
            vehicle_ids: Vehicles to scan (default: every vehicle in the store)
            cancel_event: Set to stop the scan between vehicles
            timeout: Whole-scan timeout in seconds (default: self.timeout)

        Returns:
            EdgeCaseReport; is_complete is False when any vehicle failed or
            the scan was cancelled or timed out

        Raises:
            StoreUnavailableError: If the vehicle list cannot be fetched
        """
        cancel_event = cancel_event or threading.Event()
        stop_event = threading.Event()
        timeout = self.timeout if timeout is None else timeout

        started = time.monotonic()
        deadline = started + timeout

        ids = list(vehicle_ids) if vehicle_ids is not None else self.detector.require_store().list_vehicle_ids()
        log_scan_start(SCAN_TYPE, len(ids))

        detections: List[EdgeCaseDetection] = []
        failed: List[str] = []
        skipped = 0
        scanned = 0
        timed_out = False

        executor = ThreadPoolExecutor(max_workers=self.max_workers)
        try:
            future_to_vehicle = {
                executor.submit(self._scan_vehicle, vehicle_id, cancel_event, stop_event, deadline): vehicle_id
                for vehicle_id in ids
            }

            try:
                for future in as_completed(future_to_vehicle, timeout=max(0.0, deadline - time.monotonic())):
                    vehicle_id = future_to_vehicle[future]
                    result = future.result()

                    if result['status'] == 'ok':
                        scanned += 1
                        detections.extend(result['detections'])
                    elif result['status'] == 'skipped':
                        skipped += 1
                    else:
                        failed.append(vehicle_id)
                        if result.get('timed_out'):
                            timed_out = True

            except FuturesTimeoutError:
                timed_out = True
                stop_event.set()
                logger.warning("Fleet scan timed out", extra={
                    "scan_type": SCAN_TYPE,
                    "timeout_seconds": timeout,
                    "vehicles_finished": scanned + len(failed),
                    "vehicles_total": len(ids),
                })
        finally:
            # Queued vehicles are dropped; running ones finish in the background
            executor.shutdown(wait=False, cancel_futures=True)

        cancelled = cancel_event.is_set() and skipped > 0
        report = build_report(
            detections,
            vehicles_scanned=scanned,
            failed_vehicles=failed,
            cancelled=cancelled,
            timed_out=timed_out,
        )

        log_scan_complete(
            SCAN_TYPE,
            duration_seconds=round(time.monotonic() - started, 3),
            vehicles_processed=scanned,
            vehicles_failed=len(failed),
            cancelled=cancelled,
        )
        return report

    def _scan_vehicle(
        self,
        vehicle_id: str,
        cancel_event: threading.Event,
        stop_event: threading.Event,
        deadline: float,
    ) -> Dict:
        """Analyze one vehicle; never raises."""
        if cancel_event.is_set() or stop_event.is_set():
            return {'status': 'skipped', 'vehicle_id': vehicle_id}

        try:
            remaining = deadline - time.monotonic()
            if remaining <= 0 or not self.rate_limiter.acquire(timeout=remaining):
                raise ScanTimeoutError(f"Scan deadline reached before vehicle {vehicle_id} started")

            if cancel_event.is_set() or stop_event.is_set():
                return {'status': 'skipped', 'vehicle_id': vehicle_id}

            detections = self.detector.analyze_vehicle(vehicle_id)
            return {'status': 'ok', 'vehicle_id': vehicle_id, 'detections': detections}

        except Exception as e:
            log_scan_error(e, vehicle_id=vehicle_id, scan_type=SCAN_TYPE)
            self._record_failure(vehicle_id, e)
            return {
                'status': 'failed',
                'vehicle_id': vehicle_id,
                'error': str(e),
                'timed_out': isinstance(e, ScanTimeoutError),
            }

    def _record_failure(self, vehicle_id: str, error: Exception):
        if self.audit_sink is None:
            return
        self.audit_sink.log_operation(
            OperationType.EDGE_CASE_DETECTION,
            OperationCategory.SYSTEM_MAINTENANCE,
            'vehicle',
            vehicle_id,
            "Edge-case scan failed",
            severity_level=AuditSeverity.ERROR,
            business_context=f"{type(error).__name__}: {error}",
            tags=('scan_failure',),
        )
