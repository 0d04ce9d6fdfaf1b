"""
Fleet Trip Integrity - Trip Repository
Read-only access to vehicles, drivers and trips using SQLAlchemy ORM.

SqlTripStore implements the integrity.store.TripStore interface. Each call
opens its own short-lived session so the store is safe to share between the
fleet scan's worker threads.
"""

from contextlib import contextmanager
from typing import Callable, Generator, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from integrity.store import DriverInfo, StoreUnavailableError, VehicleInfo, VehicleNotFoundError
from integrity.trip_record import TripRecord
from models import Driver, Trip, Vehicle, create_session
from utils.logger import logger, log_database_error


class TripRepository:
    """
    Repository for trip queries on an existing session.

    Soft-deleted trips (deleted_at set) are never returned.
    """

    def __init__(self, session: Session):
        """
        Initialize repository with database session.

        Args:
            session: SQLAlchemy session object
        """
        self.session = session

    def list_vehicle_ids(self) -> List[str]:
        stmt = select(Vehicle.id).order_by(Vehicle.registration_number)
        return [row for row in self.session.scalars(stmt)]

    def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        return self.session.get(Vehicle, vehicle_id)

    def get_driver(self, driver_id: str) -> Optional[Driver]:
        return self.session.get(Driver, driver_id)

    def get_vehicle_trips(self, vehicle_id: str) -> List[Trip]:
        """
        Fetch a vehicle's live trips in insertion order.

        Args:
            vehicle_id: Vehicle ID

        Returns:
            Trip rows with the vehicle relationship loaded
        """
        stmt = (
            select(Trip)
            .options(selectinload(Trip.vehicle))
            .where(Trip.vehicle_id == vehicle_id)
            .where(Trip.deleted_at.is_(None))
            .order_by(Trip.created_at, Trip.id)
        )
        return list(self.session.scalars(stmt))


class SqlTripStore:
    """
    TripStore backed by the fleet database.

    Usage:
        ```python
        store = SqlTripStore()
        trips = store.get_vehicle_trips('vehicle-1')
        ```

    Database errors surface as StoreUnavailableError so callers can tell an
    outage apart from an empty result.
    """

    def __init__(self, session_factory: Callable[[], Session] = create_session):
        """
        Args:
            session_factory: Returns a new Session (defaults to models.create_session)
        """
        self.session_factory = session_factory

    @contextmanager
    def _repository(self, context: str, vehicle_id: Optional[str] = None) -> Generator[TripRepository, None, None]:
        try:
            session = self.session_factory()
        except SQLAlchemyError as e:
            log_database_error(e, context)
            raise StoreUnavailableError(f"{context}: {e}", vehicle_id=vehicle_id) from e

        try:
            yield TripRepository(session)
        except SQLAlchemyError as e:
            log_database_error(e, context)
            raise StoreUnavailableError(f"{context}: {e}", vehicle_id=vehicle_id) from e
        finally:
            session.close()

    def list_vehicle_ids(self) -> List[str]:
        with self._repository("Failed to list vehicles") as repo:
            return repo.list_vehicle_ids()

    def get_vehicle(self, vehicle_id: str) -> Optional[VehicleInfo]:
        with self._repository(f"Failed to load vehicle {vehicle_id}", vehicle_id) as repo:
            vehicle = repo.get_vehicle(vehicle_id)
            return VehicleInfo.from_mapping(vehicle) if vehicle is not None else None

    def get_driver(self, driver_id: str) -> Optional[DriverInfo]:
        with self._repository(f"Failed to load driver {driver_id}") as repo:
            driver = repo.get_driver(driver_id)
            return DriverInfo.from_mapping(driver) if driver is not None else None

    def get_vehicle_trips(self, vehicle_id: str) -> List[TripRecord]:
        with self._repository(f"Failed to load trips for vehicle {vehicle_id}", vehicle_id) as repo:
            if repo.get_vehicle(vehicle_id) is None:
                raise VehicleNotFoundError(vehicle_id)
            # Convert inside the session; rows are detached afterwards
            trips = [TripRecord.from_mapping(row) for row in repo.get_vehicle_trips(vehicle_id)]

        logger.debug(f"Loaded {len(trips)} trips for vehicle {vehicle_id}")
        return trips
