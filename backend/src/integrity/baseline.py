"""
Vehicle Baselines
=================

Rolling statistical profile of a vehicle's recent trips, used by the
edge-case detectors to judge how unusual a trip is.

Only trips that carry trustworthy measurements feed a baseline: placeholder
or estimated provenance, malformed fields and non-positive distances are
excluded.
"""

import statistics
from dataclasses import dataclass
from typing import List, Optional, Sequence

from integrity.trip_record import TripRecord
from integrity.types import Provenance


@dataclass(frozen=True)
class MetricStats:
    mean: float
    std: float
    count: int

    def z_score(self, value: Optional[float]) -> Optional[float]:
        """Standard score of value; None when undefined (no spread)."""
        if value is None or self.std <= 0:
            return None
        return (value - self.mean) / self.std

    def to_dict(self):
        return {
            "mean": round(self.mean, 3),
            "std": round(self.std, 3),
            "count": self.count,
        }


def _metric(values: Sequence[float], min_count: int) -> Optional[MetricStats]:
    if len(values) < max(min_count, 2):
        return None
    return MetricStats(
        mean=statistics.fmean(values),
        std=statistics.stdev(values),
        count=len(values),
    )


def is_baseline_eligible(trip: TripRecord) -> bool:
    if trip.provenance in (Provenance.PLACEHOLDER, Provenance.ESTIMATED):
        return False
    if trip.malformed_fields:
        return False
    distance = trip.distance_km
    return distance is not None and distance > 0


@dataclass(frozen=True)
class VehicleBaseline:
    """Mean / standard deviation of the key per-trip measures."""

    trip_count: int
    distance_km: Optional[MetricStats] = None
    fuel_efficiency_kmpl: Optional[MetricStats] = None
    expense_per_km: Optional[MetricStats] = None
    average_speed_kmph: Optional[MetricStats] = None

    @classmethod
    def from_trips(cls, trips: Sequence[TripRecord], min_trips: int) -> Optional["VehicleBaseline"]:
        """
        Build a baseline from historical trips.

        Args:
            trips: Prior trips of the vehicle (any order)
            min_trips: Minimum eligible trips required

        Returns:
            VehicleBaseline, or None if too few eligible trips
        """
        eligible = [t for t in trips if is_baseline_eligible(t)]
        if len(eligible) < min_trips:
            return None

        def collect(attr):
            return [v for v in (getattr(t, attr) for t in eligible) if v is not None and v > 0]

        return cls(
            trip_count=len(eligible),
            distance_km=_metric(collect('distance_km'), min_trips),
            fuel_efficiency_kmpl=_metric(collect('fuel_efficiency_kmpl'), min_trips),
            expense_per_km=_metric(collect('expense_per_km'), min_trips),
            average_speed_kmph=_metric(collect('average_speed_kmph'), min_trips),
        )

    def to_dict(self):
        return {
            "trip_count": self.trip_count,
            "distance_km": self.distance_km.to_dict() if self.distance_km else None,
            "fuel_efficiency_kmpl": self.fuel_efficiency_kmpl.to_dict() if self.fuel_efficiency_kmpl else None,
            "expense_per_km": self.expense_per_km.to_dict() if self.expense_per_km else None,
            "average_speed_kmph": self.average_speed_kmph.to_dict() if self.average_speed_kmph else None,
        }


def rolling_baselines(
    trips: Sequence[TripRecord],
    window: int,
    min_trips: int,
    usable: Optional[Sequence[bool]] = None,
) -> List[Optional[VehicleBaseline]]:
    """
    Baseline for each trip built from the `window` trips preceding it.

    Trips must already be in chronological order. The trip itself never
    contributes to its own baseline; trips flagged False in `usable` (e.g.
    ones that failed validation) are skipped as history.
    """
    if usable is None:
        usable = [True] * len(trips)

    baselines = []
    for index in range(len(trips)):
        start = max(0, index - window)
        history = [t for t, ok in zip(trips[start:index], usable[start:index]) if ok]
        baselines.append(VehicleBaseline.from_trips(history, min_trips))
    return baselines
