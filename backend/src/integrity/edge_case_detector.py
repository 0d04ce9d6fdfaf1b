"""
Edge-Case Detection
===================

Classifies trips into anomaly categories that plain validation rules miss.

Detection Methods:
1. Data anomaly: odometer rollback, negative or impossible distance, distance
   z-score against the vehicle's rolling baseline
2. Maintenance / breakdown: very short distance plus long downtime or
   workshop / breakdown keywords in remarks and destinations
3. Emergency: average speed far above normal (short duration for the
   distance), emergency keywords, unusual start hour
4. Statistical outlier: fuel efficiency or expense per km outside N standard
   deviations of the rolling baseline

Every detector runs independently. When several match a trip, the
highest-severity match becomes the primary case type and all matched
patterns are kept. Confidence grows with the number of agreeing detectors
and with the strongest detector's distance from baseline.

Usage:
    detector = EdgeCaseDetector(store=store, audit_sink=audit)
    detections = detector.analyze_vehicle('vehicle-1')
    report = detector.get_system_wide_edge_cases(cancel_event=stop_event)
"""

import re
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from integrity.audit_trail import AuditTrailLogger
from integrity.baseline import VehicleBaseline, rolling_baselines
from integrity.fleet_scan import FleetScanner
from integrity.recovery import RecoveryPlanner
from integrity.store import StoreUnavailableError, TripStore, VehicleInfo, VehicleNotFoundError
from integrity.trip_record import TripRecord
from integrity.trip_validator import TripValidator
from integrity.types import (
    AuditSeverity,
    CaseType,
    DataRecoveryScenario,
    EdgeCaseDetection,
    EdgeCaseReport,
    ScenarioType,
    Severity,
)
from utils.config import (
    ANOMALY_ZSCORE_THRESHOLD,
    BASELINE_MIN_TRIPS,
    BASELINE_WINDOW_TRIPS,
    OUTLIER_STD_DEVS,
)
from utils.logger import logger
from utils.timezone import utc_now


DEFAULT_THRESHOLDS: Dict[str, float] = {
    "zscore": ANOMALY_ZSCORE_THRESHOLD,
    "zscore_high": 4.0,
    "outlier_std_devs": OUTLIER_STD_DEVS,
    "max_trip_distance_km": 2000.0,
    "short_trip_km": 10.0,
    "downtime_hours": 48.0,
    "max_plausible_speed_kmph": 90.0,
    "early_hour": 5,
    "late_hour": 22,
    "baseline_window": BASELINE_WINDOW_TRIPS,
    "baseline_min_trips": BASELINE_MIN_TRIPS,
}

# Keyword tables: (regex, label)
MAINTENANCE_PATTERNS = [
    (r'\bservic(e|ing)\b', 'service'),
    (r'\brepairs?\b', 'repair'),
    (r'\bmaintenance\b', 'maintenance'),
    (r'\bworkshop\b', 'workshop'),
    (r'\bgarage\b', 'garage'),
]

BREAKDOWN_PATTERNS = [
    (r'\bbreak\s?down\b', 'breakdown'),
    (r'\btow(ed|ing)?\b', 'tow'),
    (r'\bstuck\b', 'stuck'),
    (r'\baccident\b', 'accident'),
    (r'\bmechanical\b', 'mechanical'),
]

EMERGENCY_PATTERNS = [
    (r'\bhospital\b', 'hospital'),
    (r'\bambulance\b', 'ambulance'),
    (r'\bemergency\b', 'emergency'),
    (r'\burgent\b', 'urgent'),
    (r'\bpolice\b', 'police'),
]

MEDICAL_KEYWORDS = ('hospital', 'ambulance')
MAJOR_BREAKDOWN_KEYWORDS = ('tow', 'stuck')

AUTO_ACTIONS: Dict[CaseType, Tuple[str, ...]] = {
    CaseType.DATA_ANOMALY: ('flag_for_review', 'suggest_data_correction'),
    CaseType.MAINTENANCE_TRIP: ('flag_as_maintenance', 'exclude_from_efficiency_baseline'),
    CaseType.BREAKDOWN_TRIP: ('flag_as_breakdown', 'notify_maintenance_team', 'create_maintenance_alert'),
    CaseType.EMERGENCY_TRIP: ('flag_as_emergency', 'notify_fleet_manager', 'exclude_from_baseline'),
    CaseType.UNUSUAL_PATTERN: ('flag_unusual_pattern', 'monitor_for_trends'),
    CaseType.RECOVERY_SCENARIO: ('generate_recovery_options',),
}

CASE_RECOMMENDATIONS: Dict[CaseType, Tuple[str, ...]] = {
    CaseType.DATA_ANOMALY: (
        'Verify odometer readings against the vehicle dashboard',
        'Check for data entry errors in distance and fuel fields',
    ),
    CaseType.MAINTENANCE_TRIP: (
        'Confirm the trip was a workshop or service run',
        'Exclude from fuel efficiency calculations',
    ),
    CaseType.BREAKDOWN_TRIP: (
        'Schedule an immediate vehicle inspection',
        'Review the maintenance history for recurring faults',
    ),
    CaseType.EMERGENCY_TRIP: (
        'Contact the driver to confirm the emergency',
        'Document the circumstances for insurance and compliance',
    ),
    CaseType.UNUSUAL_PATTERN: (
        'Compare with the route and load of similar trips',
        'Monitor the vehicle for a developing trend',
    ),
    CaseType.RECOVERY_SCENARIO: (
        'Review the proposed recovery options before applying any correction',
    ),
}

SEVERITY_RECOMMENDATIONS: Dict[Severity, Tuple[str, ...]] = {
    Severity.CRITICAL: ('Immediate attention required', 'Escalate to the fleet manager'),
    Severity.HIGH: ('Review within 24 hours',),
    Severity.MEDIUM: ('Review during the weekly data audit',),
    Severity.LOW: (),
}

CASE_LABELS: Dict[CaseType, str] = {
    CaseType.DATA_ANOMALY: 'Data anomaly',
    CaseType.MAINTENANCE_TRIP: 'Maintenance trip',
    CaseType.BREAKDOWN_TRIP: 'Breakdown',
    CaseType.EMERGENCY_TRIP: 'Emergency trip',
    CaseType.UNUSUAL_PATTERN: 'Unusual pattern',
    CaseType.RECOVERY_SCENARIO: 'Recovery scenario',
}


def _compile(patterns):
    return [(re.compile(p, re.IGNORECASE), label) for p, label in patterns]


_MAINTENANCE_RE = _compile(MAINTENANCE_PATTERNS)
_BREAKDOWN_RE = _compile(BREAKDOWN_PATTERNS)
_EMERGENCY_RE = _compile(EMERGENCY_PATTERNS)


def match_keywords(text: str, compiled) -> List[str]:
    return [label for regex, label in compiled if regex.search(text)]


def combine_confidence(detector_count: int, max_strength: float) -> int:
    """
    Confidence (0-100) from detector agreement and signal strength.

    Non-decreasing in detector_count for a fixed strength, and in strength
    for a fixed count.
    """
    if detector_count <= 0:
        return 0
    strength = max(0.0, min(1.0, max_strength))
    return int(min(100, round(30 + 20 * (detector_count - 1) + 40 * strength)))


def _strength_from_z(z: float, threshold: float) -> float:
    return min(1.0, abs(z) / (2 * threshold))


@dataclass(frozen=True)
class DetectorHit:
    """One detector's verdict on one trip."""

    case_type: CaseType
    severity: Severity
    patterns: Tuple[str, ...]
    strength: float


class EdgeCaseDetector:
    """Pattern and statistical classification of trips per vehicle."""

    def __init__(
        self,
        store: Optional[TripStore] = None,
        audit_sink: Optional[AuditTrailLogger] = None,
        validator: Optional[TripValidator] = None,
        thresholds: Optional[Dict[str, float]] = None,
    ):
        """
        Args:
            store: Trip store for vehicle-level analysis
            audit_sink: Audit trail receiving detections
            validator: Scores trips; trips with Critical errors are kept out
                       of baselines
            thresholds: Overrides for DEFAULT_THRESHOLDS
        """
        self.store = store
        self.audit_sink = audit_sink
        self.validator = validator or TripValidator()
        self.thresholds = {**DEFAULT_THRESHOLDS, **(thresholds or {})}

    # =========================================================================
    # DETECTORS
    # =========================================================================

    def _detect_data_anomaly(
        self, trip: TripRecord, prior: Optional[TripRecord], baseline: Optional[VehicleBaseline]
    ) -> Optional[DetectorHit]:
        patterns = []
        severity = None
        strength = 0.0

        def raise_to(level: Severity, signal: float):
            nonlocal severity, strength
            if severity is None or level.rank > severity.rank:
                severity = level
            strength = max(strength, signal)

        if prior is not None and prior.end_km is not None and trip.start_km is not None:
            if trip.start_km < prior.end_km:
                patterns.append(
                    f"Odometer rollback: start {trip.start_km:g} km below previous end {prior.end_km:g} km"
                )
                raise_to(Severity.CRITICAL, 1.0)

        distance = trip.distance_km
        if distance is not None:
            if distance < 0:
                patterns.append(f"Negative distance: {distance:g} km")
                raise_to(Severity.CRITICAL, 1.0)
            elif distance > self.thresholds["max_trip_distance_km"]:
                patterns.append(f"Impossible distance: {distance:g} km in one trip")
                raise_to(Severity.HIGH, 0.9)

            if baseline is not None and baseline.distance_km is not None and distance >= 0:
                z = baseline.distance_km.z_score(distance)
                if z is not None and abs(z) > self.thresholds["zscore"]:
                    patterns.append(
                        f"Distance {distance:g} km is {z:+.1f} std devs from the vehicle mean "
                        f"{baseline.distance_km.mean:.0f} km"
                    )
                    level = Severity.HIGH if abs(z) > self.thresholds["zscore_high"] else Severity.MEDIUM
                    raise_to(level, _strength_from_z(z, self.thresholds["zscore"]))

        if not patterns:
            return None
        return DetectorHit(CaseType.DATA_ANOMALY, severity, tuple(patterns), strength)

    def _detect_maintenance_or_breakdown(
        self, trip: TripRecord, prior: Optional[TripRecord]
    ) -> Optional[DetectorHit]:
        distance = trip.distance_km
        if distance is None or distance < 0 or distance >= self.thresholds["short_trip_km"]:
            return None

        patterns = [f"Very short trip: {distance:g} km"]
        signals = 0

        downtime_limit = self.thresholds["downtime_hours"]
        if prior is not None and prior.trip_end_date and trip.trip_start_date:
            idle_hours = (trip.trip_start_date - prior.trip_end_date).total_seconds() / 3600.0
            if idle_hours > downtime_limit:
                patterns.append(f"Vehicle idle {idle_hours:.0f}h before the trip")
                signals += 1
        hours = trip.duration_hours
        if hours is not None and hours > downtime_limit:
            patterns.append(f"Trip lasted {hours:.0f}h for {distance:g} km")
            signals += 1

        text = self._trip_text(trip)
        breakdown = match_keywords(text, _BREAKDOWN_RE)
        maintenance = match_keywords(text, _MAINTENANCE_RE)
        for keyword in breakdown + maintenance:
            patterns.append(f'Indicator found: "{keyword}"')

        if not signals and not breakdown and not maintenance:
            return None

        if breakdown:
            if 'accident' in breakdown:
                severity = Severity.CRITICAL
            elif any(k in breakdown for k in MAJOR_BREAKDOWN_KEYWORDS):
                severity = Severity.HIGH
            else:
                severity = Severity.MEDIUM
            case_type = CaseType.BREAKDOWN_TRIP
        else:
            severity = Severity.LOW
            case_type = CaseType.MAINTENANCE_TRIP

        keyword_signals = (1 if breakdown else 0) + (1 if maintenance else 0)
        strength = min(1.0, 0.4 + 0.25 * (signals + keyword_signals))
        return DetectorHit(case_type, severity, tuple(patterns), strength)

    def _detect_emergency(
        self, trip: TripRecord, baseline: Optional[VehicleBaseline]
    ) -> Optional[DetectorHit]:
        patterns = []
        severity = None
        strengths = []

        speed = trip.average_speed_kmph
        if speed is not None:
            z = None
            if baseline is not None and baseline.average_speed_kmph is not None:
                z = baseline.average_speed_kmph.z_score(speed)
            if z is not None and z > self.thresholds["zscore"]:
                patterns.append(
                    f"Average speed {speed:.0f} km/h is {z:.1f} std devs above normal "
                    f"({baseline.average_speed_kmph.mean:.0f} km/h)"
                )
                severity = Severity.MEDIUM
                strengths.append(_strength_from_z(z, self.thresholds["zscore"]))
            elif speed > self.thresholds["max_plausible_speed_kmph"]:
                patterns.append(f"Average speed {speed:.0f} km/h is implausibly high for the distance")
                severity = Severity.MEDIUM
                strengths.append(0.8)

        keywords = match_keywords(self._trip_text(trip), _EMERGENCY_RE)
        for keyword in keywords:
            patterns.append(f'Indicator found: "{keyword}"')
        if keywords:
            strengths.append(0.7)
            if any(k in MEDICAL_KEYWORDS for k in keywords):
                severity = Severity.CRITICAL
            else:
                severity = Severity.HIGH

        if not patterns:
            return None

        start = trip.trip_start_date
        if start is not None and (start.hour < self.thresholds["early_hour"] or start.hour >= self.thresholds["late_hour"]):
            patterns.append(f"Unusual start time: {start:%H:%M}")
            strengths.append(0.5)
            if severity is Severity.MEDIUM:
                severity = Severity.HIGH

        strength = min(1.0, max(strengths) + 0.1 * (len(strengths) - 1))
        return DetectorHit(CaseType.EMERGENCY_TRIP, severity, tuple(patterns), strength)

    def _detect_statistical_outlier(
        self, trip: TripRecord, baseline: Optional[VehicleBaseline]
    ) -> Optional[DetectorHit]:
        if baseline is None:
            return None

        limit = self.thresholds["outlier_std_devs"]
        patterns = []
        z_scores = []

        checks = (
            ("Fuel efficiency", trip.fuel_efficiency_kmpl, baseline.fuel_efficiency_kmpl, "km/L"),
            ("Expense per km", trip.expense_per_km, baseline.expense_per_km, "per km"),
        )
        for label, value, stats, unit in checks:
            if value is None or stats is None:
                continue
            z = stats.z_score(value)
            if z is not None and abs(z) > limit:
                patterns.append(
                    f"{label} {value:.2f} {unit} is {z:+.1f} std devs from baseline {stats.mean:.2f}"
                )
                z_scores.append(abs(z))

        if not patterns:
            return None

        severity = Severity.MEDIUM if len(patterns) > 1 or max(z_scores) > 2 * limit else Severity.LOW
        return DetectorHit(CaseType.UNUSUAL_PATTERN, severity, tuple(patterns), _strength_from_z(max(z_scores), limit))

    @staticmethod
    def _trip_text(trip: TripRecord) -> str:
        return ' '.join(list(trip.destinations) + [trip.remarks or ''])

    # =========================================================================
    # CLASSIFICATION
    # =========================================================================

    def run_detectors(
        self,
        trip: TripRecord,
        prior: Optional[TripRecord] = None,
        baseline: Optional[VehicleBaseline] = None,
    ) -> List[DetectorHit]:
        """Run every detector; a failing detector is logged and skipped."""
        detectors = (
            ('data_anomaly', lambda: self._detect_data_anomaly(trip, prior, baseline)),
            ('maintenance_breakdown', lambda: self._detect_maintenance_or_breakdown(trip, prior)),
            ('emergency', lambda: self._detect_emergency(trip, baseline)),
            ('statistical_outlier', lambda: self._detect_statistical_outlier(trip, baseline)),
        )

        hits = []
        for name, detect in detectors:
            try:
                hit = detect()
            except Exception as e:
                logger.error(f"Detector {name} failed: {e}", extra={
                    "detector": name,
                    "trip_id": trip.id,
                    "error_type": type(e).__name__,
                })
                continue
            if hit is not None:
                hits.append(hit)
        return hits

    def classify(
        self,
        trip: TripRecord,
        hits: Sequence[DetectorHit],
        vehicle_registration: Optional[str] = None,
        baseline: Optional[VehicleBaseline] = None,
        validation_score: Optional[int] = None,
    ) -> Optional[EdgeCaseDetection]:
        """Merge detector hits into a single detection (None if no hits)."""
        if not hits:
            return None

        primary = max(hits, key=lambda h: (h.severity.rank, h.case_type.priority))
        patterns = tuple(p for h in hits for p in h.patterns)
        confidence = combine_confidence(len(hits), max(h.strength for h in hits))

        actions = []
        for hit in hits:
            for action in AUTO_ACTIONS[hit.case_type]:
                if action not in actions:
                    actions.append(action)

        registration = vehicle_registration or trip.vehicle_registration or trip.vehicle_id or 'unknown'
        description = f"{CASE_LABELS[primary.case_type]} on trip {trip.label}: {primary.patterns[0]}"

        context: Dict[str, Any] = {
            "trip_details": {
                "trip_serial_number": trip.trip_serial_number,
                "trip_start_date": trip.trip_start_date.isoformat() if trip.trip_start_date else None,
                "distance_km": trip.distance_km,
                "duration_hours": round(trip.duration_hours, 2) if trip.duration_hours is not None else None,
                "fuel_efficiency_kmpl": trip.fuel_efficiency_kmpl,
                "destinations": list(trip.destinations),
            },
            "matched_case_types": [h.case_type.value for h in hits],
            "baseline": baseline.to_dict() if baseline else None,
            "validation_score": validation_score,
        }

        return EdgeCaseDetection(
            case_id=str(uuid.uuid4()),
            case_type=primary.case_type,
            severity=primary.severity,
            confidence_score=confidence,
            vehicle_id=trip.vehicle_id or '',
            vehicle_registration=registration,
            description=description,
            patterns_detected=patterns,
            detected_at=utc_now(),
            trip_id=trip.id,
            context=context,
            auto_actions_taken=tuple(actions),
            recommendations=CASE_RECOMMENDATIONS[primary.case_type] + SEVERITY_RECOMMENDATIONS[primary.severity],
            requires_manual_review=(
                primary.severity in (Severity.CRITICAL, Severity.HIGH) or confidence < 60
            ),
        )

    def detect_trip(
        self,
        trip: Any,
        prior: Optional[Any] = None,
        baseline: Optional[VehicleBaseline] = None,
        vehicle_registration: Optional[str] = None,
    ) -> Optional[EdgeCaseDetection]:
        """Classify a single trip given its predecessor and baseline."""
        record = TripRecord.from_mapping(trip)
        prior_record = TripRecord.from_mapping(prior) if prior is not None else None
        hits = self.run_detectors(record, prior_record, baseline)
        return self.classify(record, hits, vehicle_registration, baseline)

    def analyze_trips(
        self,
        trips: Sequence[Any],
        vehicle: Optional[VehicleInfo] = None,
    ) -> List[EdgeCaseDetection]:
        """
        Classify every trip of one vehicle against its rolling baseline.

        Trips are processed in chronological order; trips with Critical
        validation errors do not feed later baselines.
        """
        records = _chronological(trips)

        scores = []
        usable = []
        prior_end = None
        for record in records:
            result = self.validator.validate(record, prior_trip_end_km=prior_end)
            scores.append(result.score)
            usable.append(result.count_errors(Severity.CRITICAL) == 0)
            if record.end_km is not None:
                prior_end = record.end_km

        baselines = rolling_baselines(
            records,
            window=int(self.thresholds["baseline_window"]),
            min_trips=int(self.thresholds["baseline_min_trips"]),
            usable=usable,
        )

        registration = vehicle.registration_number if vehicle else None
        detections = []
        for index, record in enumerate(records):
            prior = records[index - 1] if index > 0 else None
            hits = self.run_detectors(record, prior, baselines[index])
            detection = self.classify(record, hits, registration, baselines[index], scores[index])
            if detection is not None:
                detections.append(detection)
        return detections

    # =========================================================================
    # VEHICLE / FLEET
    # =========================================================================

    def require_store(self) -> TripStore:
        if self.store is None:
            raise StoreUnavailableError("No trip store configured")
        return self.store

    def analyze_vehicle(self, vehicle_id: str) -> List[EdgeCaseDetection]:
        """
        Detect edge cases for one vehicle and record them in the audit trail.

        Raises:
            VehicleNotFoundError: Unknown vehicle
            StoreUnavailableError: Store unreachable
        """
        store = self.require_store()
        vehicle = store.get_vehicle(vehicle_id)
        if vehicle is None:
            raise VehicleNotFoundError(vehicle_id)

        trips = store.get_vehicle_trips(vehicle_id)
        detections = self.analyze_trips(trips, vehicle)

        if self.audit_sink is not None:
            for detection in detections:
                self.audit_sink.log_edge_case_detection(detection)
            self._record_baseline(vehicle, trips)

        logger.info("Vehicle edge-case analysis complete", extra={
            "vehicle_id": vehicle_id,
            "trips_analyzed": len(trips),
            "cases_detected": len(detections),
        })
        return detections

    def _record_baseline(self, vehicle: VehicleInfo, trips: Sequence[TripRecord]):
        baseline = VehicleBaseline.from_trips(
            _chronological(trips)[-int(self.thresholds["baseline_window"]):],
            int(self.thresholds["baseline_min_trips"]),
        )
        if baseline is None:
            return
        self.audit_sink.log_baseline_operation(
            vehicle.id,
            f"Recomputed baseline from {baseline.trip_count} trips",
            baseline.to_dict(),
        )

    def analyze_data_recovery(self, vehicle_id: str) -> List[DataRecoveryScenario]:
        """
        Propose recovery scenarios for a vehicle's inconsistent trip data.

        Returns:
            Scenarios (empty list means no inconsistencies were found)

        Raises:
            VehicleNotFoundError: Unknown vehicle
            StoreUnavailableError: Store unreachable
        """
        store = self.require_store()
        if store.get_vehicle(vehicle_id) is None:
            raise VehicleNotFoundError(vehicle_id)

        trips = store.get_vehicle_trips(vehicle_id)
        planner = RecoveryPlanner(
            odometer_gap_km=self.validator.thresholds["odometer_gap_km"],
            min_trips=int(self.thresholds["baseline_min_trips"]),
        )
        scenarios = planner.plan(vehicle_id, trips)

        if self.audit_sink is not None:
            for scenario in scenarios:
                if scenario.scenario_type is ScenarioType.CORRUPTED_ODOMETER:
                    self.audit_sink.log_sequence_monitoring(
                        vehicle_id,
                        f"Odometer sequence broken in {len(scenario.affected_trips)} trip(s)",
                        scenario.to_dict(),
                        severity_level=_scenario_severity(scenario),
                    )
        return scenarios

    def get_system_wide_edge_cases(
        self,
        vehicle_ids: Optional[Sequence[str]] = None,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> EdgeCaseReport:
        """Scan the fleet (or a subset) with bounded concurrency."""
        scanner = FleetScanner(self, audit_sink=self.audit_sink)
        return scanner.scan(vehicle_ids=vehicle_ids, cancel_event=cancel_event, timeout=timeout)


def _chronological(trips: Sequence[Any]) -> List[TripRecord]:
    """Trips oldest first; undated trips go last."""
    return sorted(
        (TripRecord.from_mapping(t) for t in trips),
        key=lambda t: (t.trip_start_date is None, t.trip_start_date or datetime.min),
    )


def _scenario_severity(scenario: DataRecoveryScenario) -> AuditSeverity:
    top = max((i.confidence for i in scenario.data_inconsistencies), default=0)
    return AuditSeverity.ERROR if top >= 90 else AuditSeverity.WARNING
