"""
Trip Record
===========

Immutable view of one trip as consumed by the integrity core.

TripRecord.from_mapping() accepts raw dicts (API payloads, CSV rows) or ORM
rows and never raises: values that cannot be coerced become None and the
field name is recorded in malformed_fields so the validator can flag it.
"""

from dataclasses import dataclass, fields
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Mapping, Optional, Tuple

from integrity.types import Provenance


NUMERIC_FIELDS = (
    'start_km', 'end_km', 'gross_weight', 'material_quantity',
    'fuel_quantity', 'fuel_cost', 'total_fuel_cost', 'calculated_kmpl',
    'unloading_expense', 'driver_expense', 'road_rto_expense',
    'miscellaneous_expense', 'total_road_expenses', 'advance_amount',
    'freight_rate', 'income_amount', 'route_deviation',
)

DATE_FIELDS = ('trip_start_date', 'trip_end_date')

EXPENSE_FIELDS = (
    'unloading_expense', 'driver_expense', 'road_rto_expense',
    'miscellaneous_expense', 'total_road_expenses', 'total_fuel_cost',
    'fuel_cost', 'advance_amount', 'freight_rate', 'income_amount',
)

_TRUE_STRINGS = ('true', '1', 'yes', 'y', 'on')


def _coerce_number(value: Any) -> Tuple[Optional[float], bool]:
    """Return (number, ok). Empty values are (None, True)."""
    if value is None:
        return None, True
    if isinstance(value, bool):
        return None, False
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
        if number != number or number in (float('inf'), float('-inf')):
            return None, False
        return number, True
    if isinstance(value, str):
        stripped = value.strip().replace(',', '')
        if not stripped:
            return None, True
        try:
            number = float(stripped)
        except ValueError:
            return None, False
        if number != number or number in (float('inf'), float('-inf')):
            return None, False
        return number, True
    return None, False


def _coerce_datetime(value: Any) -> Tuple[Optional[datetime], bool]:
    """Return a naive UTC datetime and whether the input was usable."""
    if value is None:
        return None, True
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None, True
        if stripped.endswith('Z'):
            stripped = stripped[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(stripped)
        except ValueError:
            return None, False
    else:
        return None, False

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed, True


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


def _coerce_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coerce_provenance(value: Any) -> Provenance:
    if isinstance(value, Provenance):
        return value
    if isinstance(value, str):
        try:
            return Provenance(value.strip().lower())
        except ValueError:
            pass
    return Provenance.RECORDED


@dataclass(frozen=True)
class TripRecord:
    """Trip values plus the derived measures the detectors work with."""

    id: Optional[str] = None
    vehicle_id: Optional[str] = None
    driver_id: Optional[str] = None
    vehicle_registration: Optional[str] = None
    trip_serial_number: Optional[str] = None
    trip_start_date: Optional[datetime] = None
    trip_end_date: Optional[datetime] = None
    start_km: Optional[float] = None
    end_km: Optional[float] = None
    gross_weight: Optional[float] = None
    material_quantity: Optional[float] = None
    refueling_done: bool = False
    fuel_quantity: Optional[float] = None
    fuel_cost: Optional[float] = None
    total_fuel_cost: Optional[float] = None
    calculated_kmpl: Optional[float] = None
    unloading_expense: Optional[float] = None
    driver_expense: Optional[float] = None
    road_rto_expense: Optional[float] = None
    miscellaneous_expense: Optional[float] = None
    total_road_expenses: Optional[float] = None
    advance_amount: Optional[float] = None
    freight_rate: Optional[float] = None
    income_amount: Optional[float] = None
    route_deviation: Optional[float] = None
    destinations: Tuple[str, ...] = ()
    remarks: Optional[str] = None
    is_return_trip: bool = False
    provenance: Provenance = Provenance.RECORDED
    malformed_fields: Tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, data: Any) -> "TripRecord":
        """
        Build a TripRecord from a mapping or an object with trip attributes.

        Args:
            data: dict-like trip payload, ORM Trip row, or an existing TripRecord

        Returns:
            TripRecord (never raises on bad values)
        """
        if isinstance(data, TripRecord):
            return data

        if isinstance(data, Mapping):
            def read(name):
                return data.get(name)
        else:
            def read(name):
                return getattr(data, name, None)

        values = {}
        malformed = []

        for name in NUMERIC_FIELDS:
            number, ok = _coerce_number(read(name))
            values[name] = number
            if not ok:
                malformed.append(name)

        for name in DATE_FIELDS:
            parsed, ok = _coerce_datetime(read(name))
            values[name] = parsed
            if not ok:
                malformed.append(name)

        registration = read('vehicle_registration')
        if registration is None:
            vehicle = read('vehicle')
            if vehicle is not None:
                registration = (
                    vehicle.get('registration_number') if isinstance(vehicle, Mapping)
                    else getattr(vehicle, 'registration_number', None)
                )

        destinations = read('destinations')
        if isinstance(destinations, (list, tuple)):
            destinations = tuple(str(d) for d in destinations if d is not None)
        elif isinstance(destinations, str) and destinations.strip():
            destinations = (destinations.strip(),)
        else:
            destinations = ()

        return cls(
            id=_coerce_str(read('id')),
            vehicle_id=_coerce_str(read('vehicle_id')),
            driver_id=_coerce_str(read('driver_id')),
            vehicle_registration=_coerce_str(registration),
            trip_serial_number=_coerce_str(read('trip_serial_number')),
            refueling_done=_coerce_bool(read('refueling_done')),
            destinations=destinations,
            remarks=_coerce_str(read('remarks')),
            is_return_trip=_coerce_bool(read('is_return_trip')),
            provenance=_coerce_provenance(read('provenance')),
            malformed_fields=tuple(malformed),
            **values
        )

    def to_dict(self):
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, Provenance):
                value = value.value
            elif isinstance(value, tuple):
                value = list(value)
            result[f.name] = value
        return result

    # -------------------------------------------------------------------------
    # Derived measures (None when inputs are missing or nonsensical)
    # -------------------------------------------------------------------------

    @property
    def distance_km(self) -> Optional[float]:
        if self.start_km is None or self.end_km is None:
            return None
        return self.end_km - self.start_km

    @property
    def duration_hours(self) -> Optional[float]:
        if self.trip_start_date is None or self.trip_end_date is None:
            return None
        return (self.trip_end_date - self.trip_start_date).total_seconds() / 3600.0

    @property
    def average_speed_kmph(self) -> Optional[float]:
        distance = self.distance_km
        hours = self.duration_hours
        if distance is None or hours is None or distance <= 0 or hours <= 0:
            return None
        return distance / hours

    @property
    def fuel_efficiency_kmpl(self) -> Optional[float]:
        """Recorded kmpl when present, else distance / fuel quantity."""
        if self.calculated_kmpl is not None and self.calculated_kmpl > 0:
            return self.calculated_kmpl
        distance = self.distance_km
        if distance is None or distance <= 0:
            return None
        if not self.fuel_quantity or self.fuel_quantity <= 0:
            return None
        return distance / self.fuel_quantity

    @property
    def total_expenses(self) -> Optional[float]:
        """Road expenses plus fuel cost; None when nothing was recorded."""
        if self.total_road_expenses is not None:
            road = self.total_road_expenses
        else:
            parts = [
                self.unloading_expense, self.driver_expense,
                self.road_rto_expense, self.miscellaneous_expense,
            ]
            recorded = [p for p in parts if p is not None]
            road = sum(recorded) if recorded else None

        if road is None and self.total_fuel_cost is None:
            return None
        return (road or 0.0) + (self.total_fuel_cost or 0.0)

    @property
    def expense_per_km(self) -> Optional[float]:
        distance = self.distance_km
        expenses = self.total_expenses
        if distance is None or distance <= 0 or expenses is None:
            return None
        return expenses / distance

    @property
    def primary_destination(self) -> Optional[str]:
        return self.destinations[-1] if self.destinations else None

    @property
    def label(self) -> str:
        """Human-readable identifier for descriptions and audit entries."""
        return self.trip_serial_number or self.id or 'unidentified trip'
