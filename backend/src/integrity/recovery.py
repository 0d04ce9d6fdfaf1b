"""
Data Recovery Scenarios
=======================

Finds internally inconsistent trip data for a vehicle and proposes ranked,
risk-annotated ways to recover it. Nothing here changes a record: scenarios
are decision support for the reviewer who applies corrections.

Scenario types:
- missing_trip_data: duplicate serial numbers, gaps over 7 days
- corrupted_odometer: readings going backwards (with a transposed-digit
  hypothesis), jumps over 1000 km within 24 hours
- fuel_data_loss: refuel without quantity, negative quantity, quantity
  without cost
- incomplete_trip: missing end date or end odometer
- duplicate_detection: identical odometer and date signature

Options are ranked by success_probability x (1 - risk_weight); the
recommended action is the top option unless none clears the minimum
confidence, in which case a manual review is recommended.
"""

import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from integrity.baseline import VehicleBaseline
from integrity.trip_record import TripRecord
from integrity.types import (
    DataInconsistency,
    DataRecoveryScenario,
    RecoveryOption,
    RiskLevel,
    ScenarioType,
)
from utils.config import RECOVERY_MIN_CONFIDENCE


MANUAL_REVIEW_ACTION = "Manual review required: no recovery option is reliable enough to apply automatically"

MAX_TRIP_GAP = timedelta(days=7)
MAX_ODOMETER_JUMP_KM = 1000.0
ODOMETER_JUMP_WINDOW = timedelta(hours=24)


def rank_options(options: Sequence[RecoveryOption]) -> Tuple[RecoveryOption, ...]:
    """Sort by composite score, best first (stable for equal scores)."""
    return tuple(sorted(options, key=lambda o: o.composite_score, reverse=True))


def recommended_action(options: Sequence[RecoveryOption], min_confidence: float) -> str:
    """Top option's description if it clears min_confidence, else manual review."""
    if not options or options[0].composite_score < min_confidence:
        return MANUAL_REVIEW_ACTION
    return options[0].description


def transposition_candidates(value: float) -> List[int]:
    """Values obtained by swapping two adjacent digits of an integer reading."""
    if value is None or value < 0:
        return []
    digits = str(int(value))
    candidates = []
    for i in range(len(digits) - 1):
        if digits[i] == digits[i + 1]:
            continue
        swapped = digits[:i] + digits[i + 1] + digits[i] + digits[i + 2:]
        if swapped[0] == '0' and len(swapped) > 1:
            continue
        candidate = int(swapped)
        if candidate not in candidates:
            candidates.append(candidate)
    return candidates


def _chronological(trips: Sequence[TripRecord]) -> List[TripRecord]:
    return sorted(trips, key=lambda t: (t.trip_start_date is None, t.trip_start_date or datetime.min))


class RecoveryPlanner:
    """Builds DataRecoveryScenario proposals for one vehicle's trips."""

    def __init__(
        self,
        min_confidence: float = RECOVERY_MIN_CONFIDENCE,
        odometer_gap_km: float = 50.0,
        min_trips: int = 5,
    ):
        self.min_confidence = min_confidence
        self.odometer_gap_km = odometer_gap_km
        self.min_trips = min_trips

    def plan(self, vehicle_id: str, trips: Sequence[TripRecord]) -> List[DataRecoveryScenario]:
        """All scenarios for the vehicle; empty when the data is consistent."""
        ordered = _chronological(list(trips))
        builders = (
            self._missing_trip_data,
            self._corrupted_odometer,
            self._fuel_data_loss,
            self._incomplete_trips,
            self._duplicates,
        )
        scenarios = []
        for build in builders:
            scenario = build(vehicle_id, ordered)
            if scenario is not None:
                scenarios.append(scenario)
        return scenarios

    def _scenario(
        self,
        scenario_type: ScenarioType,
        vehicle_id: str,
        affected: Sequence[Optional[str]],
        inconsistencies: Sequence[DataInconsistency],
        options: Sequence[RecoveryOption],
    ) -> DataRecoveryScenario:
        ranked = rank_options(options)
        affected_ids = []
        for trip_id in affected:
            if trip_id and trip_id not in affected_ids:
                affected_ids.append(trip_id)
        return DataRecoveryScenario(
            scenario_id=f"{scenario_type.value}-{vehicle_id}-{uuid.uuid4().hex[:8]}",
            scenario_type=scenario_type,
            vehicle_id=vehicle_id,
            affected_trips=tuple(affected_ids),
            data_inconsistencies=tuple(inconsistencies),
            recovery_options=ranked,
            recommended_action=recommended_action(ranked, self.min_confidence),
        )

    # -------------------------------------------------------------------------
    # Missing data
    # -------------------------------------------------------------------------

    def _missing_trip_data(self, vehicle_id: str, trips: List[TripRecord]) -> Optional[DataRecoveryScenario]:
        issues = []
        affected = []

        seen: Dict[str, TripRecord] = {}
        for trip in trips:
            serial = trip.trip_serial_number
            if not serial:
                continue
            if serial in seen:
                issues.append(DataInconsistency(
                    field='trip_serial_number',
                    expected_value='unique serial number',
                    actual_value=serial,
                    confidence=90,
                    trip_id=trip.id,
                ))
                affected.extend([seen[serial].id, trip.id])
            else:
                seen[serial] = trip

        dated = [t for t in trips if t.trip_start_date is not None]
        for previous, current in zip(dated, dated[1:]):
            gap = current.trip_start_date - previous.trip_start_date
            if gap > MAX_TRIP_GAP:
                issues.append(DataInconsistency(
                    field='trip_start_date',
                    expected_value=f'next trip within {MAX_TRIP_GAP.days} days',
                    actual_value=f'{gap.total_seconds() / 86400:.1f} day gap',
                    confidence=70,
                    trip_id=current.id,
                ))
                affected.extend([previous.id, current.id])

        if not issues:
            return None

        return self._scenario(ScenarioType.MISSING_TRIP_DATA, vehicle_id, affected, issues, [
            RecoveryOption(
                method='manual_data_entry',
                description='Manually enter missing trip data from physical trip sheets',
                risk_level=RiskLevel.LOW,
                success_probability=85,
                estimated_accuracy=90,
            ),
            RecoveryOption(
                method='interpolation',
                description='Estimate missing trips from neighbouring trip patterns',
                risk_level=RiskLevel.MEDIUM,
                success_probability=70,
                estimated_accuracy=75,
            ),
        ])

    # -------------------------------------------------------------------------
    # Odometer
    # -------------------------------------------------------------------------

    def _transposition_fix(self, reading: float, lower: float, upper: Optional[float]) -> Optional[int]:
        """A digit swap of reading that lands in [lower, lower + gap] and below upper."""
        for candidate in transposition_candidates(reading):
            if lower <= candidate <= lower + self.odometer_gap_km and (upper is None or candidate < upper):
                return candidate
        return None

    def _corrupted_odometer(self, vehicle_id: str, trips: List[TripRecord]) -> Optional[DataRecoveryScenario]:
        issues = []
        affected = []
        transposition = None

        for trip in trips:
            if trip.start_km is not None and trip.end_km is not None and trip.end_km <= trip.start_km:
                issues.append(DataInconsistency(
                    field='end_km',
                    expected_value=f'> {trip.start_km:g}',
                    actual_value=trip.end_km,
                    confidence=95,
                    trip_id=trip.id,
                ))
                affected.append(trip.id)
                fix = self._transposition_fix(trip.end_km, trip.start_km, None)
                if fix is not None and transposition is None:
                    transposition = (trip, 'end_km', trip.end_km, fix)

        for previous, current in zip(trips, trips[1:]):
            if previous.end_km is None or current.start_km is None:
                continue

            if current.start_km < previous.end_km:
                fix = self._transposition_fix(current.start_km, previous.end_km, current.end_km)
                issues.append(DataInconsistency(
                    field='start_km',
                    expected_value=fix if fix is not None else f'>= {previous.end_km:g}',
                    actual_value=current.start_km,
                    confidence=95,
                    trip_id=current.id,
                ))
                affected.append(current.id)
                if fix is not None and transposition is None:
                    transposition = (current, 'start_km', current.start_km, fix)

            jump = current.start_km - previous.end_km
            if jump > MAX_ODOMETER_JUMP_KM and previous.trip_end_date and current.trip_start_date:
                elapsed = current.trip_start_date - previous.trip_end_date
                if elapsed < ODOMETER_JUMP_WINDOW:
                    issues.append(DataInconsistency(
                        field='start_km',
                        expected_value=f'<= {previous.end_km + MAX_ODOMETER_JUMP_KM:g}',
                        actual_value=current.start_km,
                        confidence=85,
                        trip_id=current.id,
                    ))
                    affected.append(current.id)

        if not issues:
            return None

        options = [
            RecoveryOption(
                method='odometer_verification',
                description='Verify the actual odometer reading and correct the records',
                risk_level=RiskLevel.LOW,
                success_probability=90,
                estimated_accuracy=95,
            ),
            RecoveryOption(
                method='progressive_correction',
                description='Correct readings progressively from the distance pattern of surrounding trips',
                risk_level=RiskLevel.MEDIUM,
                success_probability=75,
                estimated_accuracy=80,
            ),
        ]
        if transposition is not None:
            trip, field, actual, fix = transposition
            options.append(RecoveryOption(
                method='transposed_digit_correction',
                description=f'Correct {field} of trip {trip.label} from {actual:g} to {fix} (adjacent digits swapped)',
                risk_level=RiskLevel.LOW,
                success_probability=80,
                estimated_accuracy=95,
            ))

        return self._scenario(ScenarioType.CORRUPTED_ODOMETER, vehicle_id, affected, issues, options)

    # -------------------------------------------------------------------------
    # Fuel
    # -------------------------------------------------------------------------

    def _fuel_data_loss(self, vehicle_id: str, trips: List[TripRecord]) -> Optional[DataRecoveryScenario]:
        baseline = VehicleBaseline.from_trips(trips, self.min_trips)
        kmpl = baseline.fuel_efficiency_kmpl.mean if baseline and baseline.fuel_efficiency_kmpl else None

        issues = []
        affected = []
        for trip in trips:
            quantity = trip.fuel_quantity
            if quantity is not None and quantity < 0:
                issues.append(DataInconsistency(
                    field='fuel_quantity',
                    expected_value='>= 0',
                    actual_value=quantity,
                    confidence=95,
                    trip_id=trip.id,
                ))
                affected.append(trip.id)
            elif trip.refueling_done and not quantity:
                distance = trip.distance_km
                estimate = round(distance / kmpl, 1) if kmpl and distance and distance > 0 else '> 0'
                issues.append(DataInconsistency(
                    field='fuel_quantity',
                    expected_value=estimate,
                    actual_value=quantity or 0,
                    confidence=80,
                    trip_id=trip.id,
                ))
                affected.append(trip.id)
            elif quantity and quantity > 0 and not (trip.fuel_cost or trip.total_fuel_cost):
                issues.append(DataInconsistency(
                    field='total_fuel_cost',
                    expected_value='> 0',
                    actual_value=trip.total_fuel_cost or 0,
                    confidence=75,
                    trip_id=trip.id,
                ))
                affected.append(trip.id)

        if not issues:
            return None

        if kmpl:
            estimation = RecoveryOption(
                method='average_consumption_estimation',
                description=f'Estimate fuel from the vehicle average of {kmpl:.2f} km/L',
                risk_level=RiskLevel.MEDIUM,
                success_probability=70,
                estimated_accuracy=75,
            )
        else:
            estimation = RecoveryOption(
                method='average_consumption_estimation',
                description='Estimate fuel from fleet average consumption (no vehicle baseline yet)',
                risk_level=RiskLevel.HIGH,
                success_probability=50,
                estimated_accuracy=60,
            )

        return self._scenario(ScenarioType.FUEL_DATA_LOSS, vehicle_id, affected, issues, [
            RecoveryOption(
                method='fuel_receipt_verification',
                description='Cross-reference with fuel receipts and payment records',
                risk_level=RiskLevel.LOW,
                success_probability=85,
                estimated_accuracy=90,
            ),
            estimation,
        ])

    # -------------------------------------------------------------------------
    # Incomplete / duplicate trips
    # -------------------------------------------------------------------------

    def _incomplete_trips(self, vehicle_id: str, trips: List[TripRecord]) -> Optional[DataRecoveryScenario]:
        issues = []
        affected = []
        can_chain = False

        for index, trip in enumerate(trips):
            if trip.start_km is None and trip.trip_start_date is None:
                continue
            next_trip = trips[index + 1] if index + 1 < len(trips) else None

            if trip.end_km is None:
                expected = next_trip.start_km if next_trip and next_trip.start_km is not None else None
                can_chain = can_chain or expected is not None
                issues.append(DataInconsistency(
                    field='end_km',
                    expected_value=expected if expected is not None else 'recorded reading',
                    actual_value=None,
                    confidence=85 if expected is not None else 60,
                    trip_id=trip.id,
                ))
                affected.append(trip.id)
            if trip.trip_end_date is None:
                issues.append(DataInconsistency(
                    field='trip_end_date',
                    expected_value=next_trip.trip_start_date.isoformat()
                    if next_trip and next_trip.trip_start_date else 'recorded date',
                    actual_value=None,
                    confidence=60,
                    trip_id=trip.id,
                ))
                affected.append(trip.id)

        if not issues:
            return None

        options = [
            RecoveryOption(
                method='driver_confirmation',
                description='Confirm the missing end reading and date with the driver',
                risk_level=RiskLevel.LOW,
                success_probability=75,
                estimated_accuracy=90,
            ),
            RecoveryOption(
                method='close_trip_as_incomplete',
                description='Close the trip as incomplete and exclude it from efficiency figures',
                risk_level=RiskLevel.HIGH,
                success_probability=90,
                estimated_accuracy=50,
            ),
        ]
        if can_chain:
            options.append(RecoveryOption(
                method='chain_from_next_trip',
                description="Use the next trip's start reading as the missing end reading",
                risk_level=RiskLevel.LOW,
                success_probability=80,
                estimated_accuracy=85,
            ))
        return self._scenario(ScenarioType.INCOMPLETE_TRIP, vehicle_id, affected, issues, options)

    def _duplicates(self, vehicle_id: str, trips: List[TripRecord]) -> Optional[DataRecoveryScenario]:
        groups: Dict[tuple, List[TripRecord]] = {}
        for trip in trips:
            if trip.start_km is None or trip.end_km is None or trip.trip_start_date is None:
                continue
            key = (trip.start_km, trip.end_km, trip.trip_start_date.date())
            groups.setdefault(key, []).append(trip)

        issues = []
        affected = []
        for (start_km, end_km, day), group in groups.items():
            if len(group) < 2:
                continue
            for duplicate in group[1:]:
                issues.append(DataInconsistency(
                    field='trip',
                    expected_value=f'single trip {start_km:g}-{end_km:g} km on {day.isoformat()}',
                    actual_value=f'duplicate of {group[0].label}',
                    confidence=90,
                    trip_id=duplicate.id,
                ))
            affected.extend(t.id for t in group)

        if not issues:
            return None

        return self._scenario(ScenarioType.DUPLICATE_DETECTION, vehicle_id, affected, issues, [
            RecoveryOption(
                method='remove_duplicate',
                description='Keep the first entry and void the duplicates',
                risk_level=RiskLevel.MEDIUM,
                success_probability=85,
                estimated_accuracy=90,
            ),
            RecoveryOption(
                method='merge_records',
                description='Merge the duplicate entries, keeping the most complete values',
                risk_level=RiskLevel.MEDIUM,
                success_probability=70,
                estimated_accuracy=80,
            ),
        ])
