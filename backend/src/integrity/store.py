"""
Trip Store Interface
====================

The integrity core reads vehicles, drivers and trips through this interface.
Implementations:
- database.repositories.trip_repository.SqlTripStore (SQLAlchemy)
- collector.fleet_api_client.FleetApiTripStore (fleet backend HTTP API)
- InMemoryTripStore (fixtures and offline analysis)

Every implementation raises StoreUnavailableError when the backing store
cannot be reached; the core never substitutes fabricated data.
"""

import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Protocol

from integrity.trip_record import TripRecord


class StoreUnavailableError(Exception):
    """Backing store unreachable, timed out, or returned an error."""

    def __init__(self, message: str, vehicle_id: Optional[str] = None):
        super().__init__(message)
        self.vehicle_id = vehicle_id


class VehicleNotFoundError(Exception):
    """The requested vehicle does not exist in the store."""

    def __init__(self, vehicle_id: str):
        super().__init__(f"Vehicle {vehicle_id} not found")
        self.vehicle_id = vehicle_id


@dataclass(frozen=True)
class VehicleInfo:
    id: str
    registration_number: str
    status: str = 'active'

    @property
    def is_active(self) -> bool:
        return self.status == 'active'

    @classmethod
    def from_mapping(cls, data: Any) -> "VehicleInfo":
        read = data.get if isinstance(data, dict) else (lambda k, d=None: getattr(data, k, d))
        vehicle_id = str(read('id'))
        return cls(
            id=vehicle_id,
            registration_number=read('registration_number') or vehicle_id,
            status=read('status') or 'active',
        )


@dataclass(frozen=True)
class DriverInfo:
    id: str
    name: str
    status: str = 'active'

    @property
    def is_active(self) -> bool:
        return self.status == 'active'

    @classmethod
    def from_mapping(cls, data: Any) -> "DriverInfo":
        read = data.get if isinstance(data, dict) else (lambda k, d=None: getattr(data, k, d))
        return cls(
            id=str(read('id')),
            name=read('name') or '',
            status=read('status') or 'active',
        )


class TripStore(Protocol):
    """Read-only access to fleet records."""

    def list_vehicle_ids(self) -> List[str]:
        ...

    def get_vehicle(self, vehicle_id: str) -> Optional[VehicleInfo]:
        ...

    def get_vehicle_trips(self, vehicle_id: str) -> List[TripRecord]:
        """Trips of one vehicle in source order."""
        ...

    def get_driver(self, driver_id: str) -> Optional[DriverInfo]:
        ...


class InMemoryTripStore:
    """
    TripStore over plain Python objects.

    Usage:
        store = InMemoryTripStore()
        store.add_vehicle(VehicleInfo('v-1', 'MH12AB1234'))
        store.add_trips('v-1', [{'id': 't-1', 'start_km': 100, 'end_km': 180}])
    """

    def __init__(self):
        self._vehicles: Dict[str, VehicleInfo] = {}
        self._drivers: Dict[str, DriverInfo] = {}
        self._trips: Dict[str, List[TripRecord]] = {}
        self._lock = threading.Lock()

    def add_vehicle(self, vehicle: VehicleInfo):
        with self._lock:
            self._vehicles[vehicle.id] = vehicle
            self._trips.setdefault(vehicle.id, [])

    def add_driver(self, driver: DriverInfo):
        with self._lock:
            self._drivers[driver.id] = driver

    def add_trips(self, vehicle_id: str, trips: Iterable[Any]):
        records = [TripRecord.from_mapping(t) for t in trips]
        with self._lock:
            if vehicle_id not in self._vehicles:
                self._vehicles[vehicle_id] = VehicleInfo(vehicle_id, vehicle_id)
            self._trips.setdefault(vehicle_id, []).extend(records)

    def list_vehicle_ids(self) -> List[str]:
        with self._lock:
            return list(self._vehicles)

    def get_vehicle(self, vehicle_id: str) -> Optional[VehicleInfo]:
        with self._lock:
            return self._vehicles.get(vehicle_id)

    def get_vehicle_trips(self, vehicle_id: str) -> List[TripRecord]:
        with self._lock:
            if vehicle_id not in self._vehicles:
                raise VehicleNotFoundError(vehicle_id)
            return list(self._trips.get(vehicle_id, []))

    def get_driver(self, driver_id: str) -> Optional[DriverInfo]:
        with self._lock:
            return self._drivers.get(driver_id)
