"""
Trip Validator
==============

Scores individual trip records for data quality (0-100) and reports
severity-tiered issues.

Scoring:
    Start at 100 and subtract a penalty per error by severity
    (Critical 50, High 20, Medium 10, Low 5 by default). Warnings are
    advisory and cost PENALTY_WARNING points each (0 by default).
    The score is clamped to [0, 100].

Severity Levels:
- CRITICAL: Record is internally impossible (odometer or dates reversed)
- HIGH: Key value missing or unusable
- MEDIUM: Secondary value missing or negative amounts
- LOW: Nice-to-have value missing

Malformed input never raises: it is coerced by TripRecord.from_mapping() and
flagged here as an issue on the offending field.

Usage:
    validator = TripValidator(store=store, audit_sink=audit)
    result = validator.validate({'start_km': 1000, 'end_km': 950})
    results = validator.validate_vehicle_trips('vehicle-1')
"""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from integrity.audit_trail import AuditTrailLogger
from integrity.store import (
    DriverInfo,
    StoreUnavailableError,
    TripStore,
    VehicleInfo,
    VehicleNotFoundError,
)
from integrity.trip_record import EXPENSE_FIELDS, TripRecord
from integrity.types import (
    AuditSeverity,
    DataQualitySummary,
    Provenance,
    Severity,
    ValidationIssue,
    ValidationResult,
    ValidationWarning,
)
from utils.config import (
    ODOMETER_GAP_THRESHOLD_KM,
    PENALTY_CRITICAL,
    PENALTY_HIGH,
    PENALTY_LOW,
    PENALTY_MEDIUM,
    PENALTY_WARNING,
)
from utils.logger import logger, log_scan_error


DEFAULT_PENALTIES: Dict[str, int] = {
    "critical": PENALTY_CRITICAL,
    "high": PENALTY_HIGH,
    "medium": PENALTY_MEDIUM,
    "low": PENALTY_LOW,
    "warning": PENALTY_WARNING,
}

DEFAULT_THRESHOLDS: Dict[str, float] = {
    "odometer_gap_km": ODOMETER_GAP_THRESHOLD_KM,
    "max_trip_distance_km": 2000.0,
    "max_duration_hours": 48.0,
    "max_fuel_litres": 500.0,
    "min_kmpl": 0.5,
    "max_kmpl": 20.0,
}

# Required fields: severity scaled by importance
REQUIRED_FIELDS: Dict[str, Dict[str, Any]] = {
    "vehicle_id": {
        "severity": Severity.HIGH,
        "message": "Vehicle is required",
        "suggested_fix": "Assign the vehicle that made the trip",
    },
    "driver_id": {
        "severity": Severity.MEDIUM,
        "message": "Driver is required",
        "suggested_fix": "Assign the driver from the trip sheet",
    },
    "trip_start_date": {
        "severity": Severity.HIGH,
        "message": "Trip start date is required",
        "suggested_fix": "Enter the departure date and time",
    },
    "trip_end_date": {
        "severity": Severity.HIGH,
        "message": "Trip end date is required",
        "suggested_fix": "Enter the arrival date and time",
    },
    "start_km": {
        "severity": Severity.HIGH,
        "message": "Start odometer reading is required",
        "suggested_fix": "Enter the odometer reading at departure",
    },
    "end_km": {
        "severity": Severity.HIGH,
        "message": "End odometer reading is required",
        "suggested_fix": "Enter the odometer reading at arrival",
    },
    "gross_weight": {
        "severity": Severity.LOW,
        "message": "Gross weight is missing",
        "suggested_fix": "Enter the loaded weight from the weighbridge slip",
    },
}


@dataclass(frozen=True)
class TripContext:
    """Optional surroundings of a trip used by cross-record rules."""

    vehicle: Optional[VehicleInfo] = None
    driver: Optional[DriverInfo] = None
    sibling_trips: Sequence[TripRecord] = ()


def _overlaps(a: TripRecord, b: TripRecord) -> bool:
    if None in (a.trip_start_date, a.trip_end_date, b.trip_start_date, b.trip_end_date):
        return False
    return a.trip_start_date < b.trip_end_date and b.trip_start_date < a.trip_end_date


def _chronological_key(indexed):
    index, trip = indexed
    start = trip.trip_start_date
    return (start is None, start or datetime.min, index)


class TripValidator:
    """Rule-based quality scoring for trips."""

    def __init__(
        self,
        store: Optional[TripStore] = None,
        audit_sink: Optional[AuditTrailLogger] = None,
        penalties: Optional[Dict[str, int]] = None,
        thresholds: Optional[Dict[str, float]] = None,
    ):
        """
        Args:
            store: Trip store used by validate_vehicle_trips / summaries
            audit_sink: Audit trail receiving one ValidationCheck per vehicle
            penalties: Overrides for DEFAULT_PENALTIES
            thresholds: Overrides for DEFAULT_THRESHOLDS
        """
        self.store = store
        self.audit_sink = audit_sink
        self.penalties = {**DEFAULT_PENALTIES, **(penalties or {})}
        self.thresholds = {**DEFAULT_THRESHOLDS, **(thresholds or {})}

    # =========================================================================
    # SINGLE TRIP
    # =========================================================================

    def validate(
        self,
        trip: Any,
        prior_trip_end_km: Optional[float] = None,
        context: Optional[TripContext] = None,
    ) -> ValidationResult:
        """
        Validate one trip.

        Args:
            trip: TripRecord, mapping or ORM row
            prior_trip_end_km: End odometer of the vehicle's previous trip
            context: Vehicle, driver and sibling trips for cross-record rules

        Returns:
            ValidationResult (pure function of the inputs)
        """
        record = TripRecord.from_mapping(trip)
        errors: List[ValidationIssue] = []
        warnings: List[ValidationWarning] = []

        errors.extend(self._check_malformed(record))
        errors.extend(self._check_required(record))
        errors.extend(self._check_odometer(record))
        errors.extend(self._check_dates(record))
        errors.extend(self._check_amounts(record))

        warnings.extend(self._check_odometer_continuity(record, prior_trip_end_km))
        warnings.extend(self._check_fuel_consistency(record))
        warnings.extend(self._check_ranges(record))
        warnings.extend(self._check_provenance(record))
        if context is not None:
            warnings.extend(self._check_context(record, context))

        return ValidationResult(
            score=self._score(errors, warnings),
            errors=tuple(errors),
            warnings=tuple(warnings),
            trip_id=record.id,
        )

    def _score(self, errors: Sequence[ValidationIssue], warnings: Sequence[ValidationWarning]) -> int:
        score = 100
        for issue in errors:
            score -= self.penalties[issue.severity.value]
        score -= self.penalties["warning"] * len(warnings)
        return max(0, min(100, int(score)))

    def _check_malformed(self, trip: TripRecord) -> List[ValidationIssue]:
        return [
            ValidationIssue(
                field=name,
                message=f"{name} has an unreadable value",
                severity=Severity.HIGH,
                suggested_fix=f"Re-enter {name} as a valid {'date' if name.endswith('_date') else 'number'}",
            )
            for name in trip.malformed_fields
        ]

    def _check_required(self, trip: TripRecord) -> List[ValidationIssue]:
        issues = []
        for name, rule in REQUIRED_FIELDS.items():
            if name in trip.malformed_fields:
                continue
            if getattr(trip, name) is None:
                issues.append(ValidationIssue(
                    field=name,
                    message=rule["message"],
                    severity=rule["severity"],
                    suggested_fix=rule["suggested_fix"],
                ))
        return issues

    def _check_odometer(self, trip: TripRecord) -> List[ValidationIssue]:
        issues = []
        for name in ("start_km", "end_km"):
            value = getattr(trip, name)
            if value is not None and value < 0:
                issues.append(ValidationIssue(
                    field=name,
                    message=f"{name} cannot be negative",
                    severity=Severity.HIGH,
                    suggested_fix="Check the odometer reading",
                ))

        if trip.start_km is not None and trip.end_km is not None and trip.end_km <= trip.start_km:
            issues.append(ValidationIssue(
                field="end_km",
                message="end_km must exceed start_km",
                severity=Severity.CRITICAL,
                suggested_fix=f"End reading {trip.end_km:g} is not above start reading {trip.start_km:g}; "
                              f"check for swapped or mistyped readings",
            ))
        return issues

    def _check_dates(self, trip: TripRecord) -> List[ValidationIssue]:
        if trip.trip_start_date is None or trip.trip_end_date is None:
            return []
        if trip.trip_end_date < trip.trip_start_date:
            return [ValidationIssue(
                field="trip_end_date",
                message="trip_end_date cannot be before trip_start_date",
                severity=Severity.CRITICAL,
                suggested_fix="Check the trip dates for swapped values",
            )]
        return []

    def _check_amounts(self, trip: TripRecord) -> List[ValidationIssue]:
        issues = []
        for name in EXPENSE_FIELDS:
            value = getattr(trip, name)
            if value is not None and value < 0:
                issues.append(ValidationIssue(
                    field=name,
                    message=f"{name} cannot be negative",
                    severity=Severity.MEDIUM,
                    suggested_fix="Enter the amount as a positive value",
                ))

        if trip.fuel_quantity is not None and trip.fuel_quantity < 0:
            issues.append(ValidationIssue(
                field="fuel_quantity",
                message="fuel_quantity cannot be negative",
                severity=Severity.HIGH,
                suggested_fix="Check the fuel quantity against the receipt",
            ))
        if trip.material_quantity is not None and trip.material_quantity < 0:
            issues.append(ValidationIssue(
                field="material_quantity",
                message="material_quantity cannot be negative",
                severity=Severity.MEDIUM,
                suggested_fix="Check the loaded quantity",
            ))
        return issues

    def _check_odometer_continuity(
        self, trip: TripRecord, prior_trip_end_km: Optional[float]
    ) -> List[ValidationWarning]:
        if prior_trip_end_km is None or trip.start_km is None:
            return []
        gap = trip.start_km - prior_trip_end_km
        if abs(gap) <= self.thresholds["odometer_gap_km"]:
            return []
        if gap < 0:
            message = f"Odometer went back {abs(gap):g} km since the previous trip ended at {prior_trip_end_km:g}"
        else:
            message = f"{gap:g} km gap since the previous trip ended at {prior_trip_end_km:g}"
        return [ValidationWarning(
            field="start_km",
            message=message,
            recommendation="Confirm the reading or check for an unrecorded trip or vehicle swap",
        )]

    def _check_fuel_consistency(self, trip: TripRecord) -> List[ValidationWarning]:
        warnings = []
        has_quantity = bool(trip.fuel_quantity and trip.fuel_quantity > 0)
        has_cost = bool(
            (trip.fuel_cost and trip.fuel_cost > 0)
            or (trip.total_fuel_cost and trip.total_fuel_cost > 0)
        )

        if has_quantity and not has_cost:
            warnings.append(ValidationWarning(
                field="fuel_cost",
                message="Fuel quantity recorded without a cost",
                recommendation="Enter the fuel price or total fuel cost from the receipt",
            ))
        elif has_cost and not has_quantity:
            warnings.append(ValidationWarning(
                field="fuel_quantity",
                message="Fuel cost recorded without a quantity",
                recommendation="Enter the litres filled from the receipt",
            ))

        if trip.refueling_done and not has_quantity:
            warnings.append(ValidationWarning(
                field="refueling_done",
                message="Refueling marked but no fuel quantity recorded",
                recommendation="Enter the refuel quantity or clear the refueling flag",
            ))
        return warnings

    def _check_ranges(self, trip: TripRecord) -> List[ValidationWarning]:
        warnings = []

        distance = trip.distance_km
        if distance is not None and distance > self.thresholds["max_trip_distance_km"]:
            warnings.append(ValidationWarning(
                field="end_km",
                message=f"Trip distance {distance:g} km is unusually long",
                recommendation="Verify the odometer readings",
            ))

        hours = trip.duration_hours
        if hours is not None and hours > self.thresholds["max_duration_hours"]:
            warnings.append(ValidationWarning(
                field="trip_end_date",
                message=f"Trip lasted {hours:.1f} hours",
                recommendation="Verify the trip dates or split the trip",
            ))

        if trip.fuel_quantity is not None and trip.fuel_quantity > self.thresholds["max_fuel_litres"]:
            warnings.append(ValidationWarning(
                field="fuel_quantity",
                message=f"Fuel quantity {trip.fuel_quantity:g} L exceeds tank capacity",
                recommendation="Check the quantity against the receipt",
            ))

        kmpl = trip.fuel_efficiency_kmpl
        if kmpl is not None and not (self.thresholds["min_kmpl"] <= kmpl <= self.thresholds["max_kmpl"]):
            warnings.append(ValidationWarning(
                field="calculated_kmpl",
                message=f"Mileage {kmpl:.2f} km/L is outside the expected range",
                recommendation="Check the fuel quantity and odometer readings",
            ))
        return warnings

    def _check_provenance(self, trip: TripRecord) -> List[ValidationWarning]:
        if trip.provenance is Provenance.ESTIMATED:
            return [ValidationWarning(
                field="provenance",
                message="Trip values are estimated",
                recommendation="Replace estimates with recorded values when available",
            )]
        if trip.provenance is Provenance.PLACEHOLDER:
            return [ValidationWarning(
                field="provenance",
                message="Trip contains placeholder data",
                recommendation="Enter the actual trip data",
            )]
        return []

    def _check_context(self, trip: TripRecord, context: TripContext) -> List[ValidationWarning]:
        warnings = []

        if context.vehicle is not None and not context.vehicle.is_active:
            warnings.append(ValidationWarning(
                field="vehicle_id",
                message=f"Vehicle {context.vehicle.registration_number} is {context.vehicle.status}",
                recommendation="Confirm the vehicle assignment",
            ))
        if context.driver is not None and not context.driver.is_active:
            warnings.append(ValidationWarning(
                field="driver_id",
                message=f"Driver {context.driver.name} is {context.driver.status}",
                recommendation="Confirm the driver assignment",
            ))

        siblings = [
            t for t in context.sibling_trips
            if t is not trip and (trip.id is None or t.id != trip.id)
        ]
        overlapping = [t for t in siblings if _overlaps(trip, t)]
        if overlapping:
            warnings.append(ValidationWarning(
                field="trip_start_date",
                message=f"Overlaps with {len(overlapping)} other trip(s) of the same vehicle: "
                        f"{', '.join(t.label for t in overlapping[:5])}",
                recommendation="Check the trip dates for the vehicle",
            ))

        if trip.is_return_trip:
            warnings.extend(self._check_return_trip(trip, siblings))
        return warnings

    def _check_return_trip(self, trip: TripRecord, siblings: Sequence[TripRecord]) -> List[ValidationWarning]:
        if not trip.destinations:
            return [ValidationWarning(
                field="destinations",
                message="Return trip has no destinations",
                recommendation="Enter the route of the return trip",
            )]

        places = {d.lower() for d in trip.destinations}
        for other in siblings:
            if other.is_return_trip or other.trip_start_date is None or trip.trip_start_date is None:
                continue
            if other.trip_start_date < trip.trip_start_date and places & {d.lower() for d in other.destinations}:
                return []

        return [ValidationWarning(
            field="is_return_trip",
            message="No earlier outbound trip to the same destination",
            recommendation="Link the return trip to its outbound trip or clear the return flag",
        )]

    # =========================================================================
    # VEHICLE / FLEET
    # =========================================================================

    def _require_store(self) -> TripStore:
        if self.store is None:
            raise StoreUnavailableError("No trip store configured")
        return self.store

    def validate_vehicle_trips(self, vehicle_id: str) -> List[ValidationResult]:
        """
        Validate every trip of a vehicle.

        Trips are checked in chronological order so each one is compared with
        the odometer of the trip before it; results come back in source order.

        Raises:
            VehicleNotFoundError: Unknown vehicle
            StoreUnavailableError: Store unreachable
        """
        store = self._require_store()
        started = time.monotonic()

        vehicle = store.get_vehicle(vehicle_id)
        if vehicle is None:
            raise VehicleNotFoundError(vehicle_id)
        trips = store.get_vehicle_trips(vehicle_id)

        drivers: Dict[str, Optional[DriverInfo]] = {}
        results: List[Optional[ValidationResult]] = [None] * len(trips)
        prior_end_km = None

        for index, trip in sorted(enumerate(trips), key=_chronological_key):
            if trip.driver_id and trip.driver_id not in drivers:
                drivers[trip.driver_id] = store.get_driver(trip.driver_id)
            context = TripContext(
                vehicle=vehicle,
                driver=drivers.get(trip.driver_id) if trip.driver_id else None,
                sibling_trips=trips,
            )
            results[index] = self.validate(trip, prior_trip_end_km=prior_end_km, context=context)
            if trip.end_km is not None:
                prior_end_km = trip.end_km

        self._record_vehicle_check(vehicle, trips, results, started)
        return results

    def _record_vehicle_check(self, vehicle: VehicleInfo, trips, results, started: float):
        if self.audit_sink is None:
            return

        summary = summarize(results)
        if summary.critical_issues:
            severity = AuditSeverity.CRITICAL
        elif summary.high_issues:
            severity = AuditSeverity.ERROR
        elif summary.medium_issues or summary.low_issues:
            severity = AuditSeverity.WARNING
        else:
            severity = AuditSeverity.INFO

        self.audit_sink.log_validation_check(
            'vehicle',
            vehicle.id,
            {
                "trip_count": summary.total_trips,
                "critical_issues": summary.critical_issues,
                "high_issues": summary.high_issues,
                "medium_issues": summary.medium_issues,
                "low_issues": summary.low_issues,
                "warnings": summary.warnings,
                "invalid_trips": [
                    trip.label for trip, result in zip(trips, results) if not result.is_valid
                ],
            },
            data_quality_score=summary.average_score,
            severity_level=severity,
            entity_description=vehicle.registration_number,
            operation_duration_ms=int((time.monotonic() - started) * 1000),
        )

        for trip, result in zip(trips, results):
            if not trip.is_return_trip or trip.id is None:
                continue
            flagged = [w for w in result.warnings if w.field in ("is_return_trip", "destinations")]
            self.audit_sink.log_return_trip_validation(
                trip.id,
                "Return trip flagged" if flagged else "Return trip confirmed",
                {
                    "vehicle_id": vehicle.id,
                    "destinations": list(trip.destinations),
                    "warnings": [w.message for w in flagged],
                },
                severity_level=AuditSeverity.WARNING if flagged else AuditSeverity.INFO,
            )

    def get_data_quality_summary(self, vehicle_ids: Optional[Sequence[str]] = None) -> DataQualitySummary:
        """
        Aggregate validation results over all vehicles or a subset.

        Vehicles that fail to load are skipped and listed in failed_vehicles;
        failing to list the fleet at all raises StoreUnavailableError.
        """
        store = self._require_store()
        ids = list(vehicle_ids) if vehicle_ids is not None else store.list_vehicle_ids()

        all_results: List[ValidationResult] = []
        failed: List[str] = []
        included = 0

        for vehicle_id in ids:
            try:
                all_results.extend(self.validate_vehicle_trips(vehicle_id))
                included += 1
            except (StoreUnavailableError, VehicleNotFoundError) as e:
                log_scan_error(e, vehicle_id=vehicle_id, scan_type="data_quality_summary")
                failed.append(vehicle_id)

        summary = summarize(all_results, vehicles_included=included, failed_vehicles=failed)
        logger.info("Data quality summary computed", extra={
            "vehicles_included": included,
            "vehicles_failed": len(failed),
            "total_trips": summary.total_trips,
            "average_score": summary.average_score,
        })
        return summary


def summarize(
    results: Sequence[ValidationResult],
    vehicles_included: int = 0,
    failed_vehicles: Sequence[str] = (),
) -> DataQualitySummary:
    """Aggregate a set of validation results; averageScore is 100 for no trips."""
    total = len(results)
    average = round(sum(r.score for r in results) / total, 2) if total else 100.0
    return DataQualitySummary(
        total_trips=total,
        average_score=average,
        critical_issues=sum(r.count_errors(Severity.CRITICAL) for r in results),
        high_issues=sum(r.count_errors(Severity.HIGH) for r in results),
        medium_issues=sum(r.count_errors(Severity.MEDIUM) for r in results),
        low_issues=sum(r.count_errors(Severity.LOW) for r in results),
        warnings=sum(len(r.warnings) for r in results),
        vehicles_included=vehicles_included,
        failed_vehicles=tuple(failed_vehicles),
    )
