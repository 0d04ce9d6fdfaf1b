"""
Fleet Trip Integrity - Trip Repository Integration Tests

Tests SqlTripStore against a real database schema:
- Vehicle listing and lookup
- Trip loading (source order, soft deletes, registration from the vehicle row)
- Database failures surfaced as StoreUnavailableError

Priority: P1 - Trip data is the input to every integrity check
"""

import pytest
from datetime import datetime, timedelta
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database.repositories.trip_repository import SqlTripStore, TripRepository
from integrity.store import StoreUnavailableError, VehicleNotFoundError
from integrity.trip_validator import TripValidator
from models import Driver, Trip, Vehicle

pytestmark = pytest.mark.integration

BASE_TIME = datetime(2024, 3, 4, 8, 0)


@pytest.fixture
def seeded(session_factory):
    """Two vehicles, one driver and four trips (one soft-deleted)."""
    session = session_factory()
    session.add_all([
        Vehicle(id='v-1', registration_number='MH12AB1234', status='active'),
        Vehicle(id='v-2', registration_number='KA01CD5678', status='inactive'),
        Driver(id='d-1', name='Ravi Kumar', status='active'),
    ])
    session.flush()

    for i, (start_km, end_km) in enumerate([(1000.0, 1200.0), (1200.0, 1400.0), (1400.0, 1600.0)]):
        session.add(Trip(
            id=f't-{i + 1}',
            vehicle_id='v-1',
            driver_id='d-1',
            trip_serial_number=f'T-{i + 1:03d}',
            trip_start_date=BASE_TIME + timedelta(days=i),
            trip_end_date=BASE_TIME + timedelta(days=i, hours=4),
            start_km=start_km,
            end_km=end_km,
            gross_weight=12000.0,
            destinations=['Pune'],
            created_at=BASE_TIME + timedelta(days=i, hours=5),
        ))
    session.add(Trip(
        id='t-deleted',
        vehicle_id='v-1',
        start_km=1600.0,
        end_km=1700.0,
        created_at=BASE_TIME + timedelta(days=5),
        deleted_at=BASE_TIME + timedelta(days=6),
    ))
    session.commit()
    session.close()
    return SqlTripStore(session_factory=session_factory)


class TestSqlTripStore:
    def test_list_vehicle_ids_ordered_by_registration(self, seeded):
        assert seeded.list_vehicle_ids() == ['v-2', 'v-1']

    def test_get_vehicle(self, seeded):
        vehicle = seeded.get_vehicle('v-2')

        assert vehicle.registration_number == 'KA01CD5678'
        assert vehicle.is_active is False
        assert seeded.get_vehicle('ghost') is None

    def test_get_driver(self, seeded):
        assert seeded.get_driver('d-1').name == 'Ravi Kumar'
        assert seeded.get_driver('d-2') is None

    def test_trips_exclude_soft_deleted(self, seeded):
        trips = seeded.get_vehicle_trips('v-1')

        assert [t.id for t in trips] == ['t-1', 't-2', 't-3']

    def test_trips_carry_registration_and_values(self, seeded):
        trip = seeded.get_vehicle_trips('v-1')[0]

        assert trip.vehicle_registration == 'MH12AB1234'
        assert trip.distance_km == 200.0
        assert trip.destinations == ('Pune',)
        assert trip.trip_start_date == BASE_TIME

    def test_vehicle_without_trips(self, seeded):
        assert seeded.get_vehicle_trips('v-2') == []

    def test_unknown_vehicle_raises(self, seeded):
        with pytest.raises(VehicleNotFoundError):
            seeded.get_vehicle_trips('ghost')

    def test_validator_reads_from_database(self, seeded):
        results = TripValidator(store=seeded).validate_vehicle_trips('v-1')

        assert [r.trip_id for r in results] == ['t-1', 't-2', 't-3']
        assert all(r.is_valid for r in results)


class TestTripRepository:
    def test_rows_keep_vehicle_relationship(self, seeded, session_factory):
        session = session_factory()
        try:
            rows = TripRepository(session).get_vehicle_trips('v-1')
            assert rows[0].vehicle.registration_number == 'MH12AB1234'
        finally:
            session.close()


class TestDatabaseFailures:
    def test_unreachable_database_raises_store_unavailable(self, tmp_path):
        # Directory does not exist, so SQLite cannot open the file
        engine = create_engine(f"sqlite:///{tmp_path / 'missing' / 'fleet.db'}")
        store = SqlTripStore(session_factory=sessionmaker(bind=engine))

        with pytest.raises(StoreUnavailableError) as exc_info:
            store.get_vehicle_trips('v-1')

        assert exc_info.value.vehicle_id == 'v-1'

    def test_session_factory_failure(self):
        from sqlalchemy.exc import OperationalError

        def broken_factory():
            raise OperationalError("connect", {}, Exception("Can't connect to MySQL server"))

        with pytest.raises(StoreUnavailableError):
            SqlTripStore(session_factory=broken_factory).list_vehicle_ids()
