"""
Fleet Trip Integrity - pytest Configuration and Fixtures

Provides shared test fixtures for:
- Sample trip dictionaries and chronological trip series
- In-memory trip store with a registered vehicle and driver
- Audit trail logger over the in-memory audit store
- Flask test client wired to the in-memory stores

Note: SQLite database fixtures are in tests/integration/conftest.py
"""

import pytest
from datetime import datetime, timedelta

from integrity.audit_trail import AuditTrailLogger
from integrity.store import DriverInfo, InMemoryTripStore, VehicleInfo


BASE_TIME = datetime(2024, 3, 4, 8, 0)

# Distances cycle so baselines have a small, non-zero spread
SERIES_DISTANCES = (190.0, 200.0, 210.0, 200.0, 195.0, 205.0)


# ============================================================================
# Trip Factories
# ============================================================================

def make_trip(**overrides) -> dict:
    """
    A complete, internally consistent trip (scores 100 with no warnings).

    200 km in 4 hours on 40 L of fuel: 50 km/h, 5 km/L, 25 per km.
    """
    trip = {
        'id': 't-1',
        'vehicle_id': 'v-1',
        'driver_id': 'd-1',
        'trip_serial_number': 'T-001',
        'trip_start_date': BASE_TIME,
        'trip_end_date': BASE_TIME + timedelta(hours=4),
        'start_km': 1000.0,
        'end_km': 1200.0,
        'gross_weight': 12000.0,
        'refueling_done': True,
        'fuel_quantity': 40.0,
        'fuel_cost': 95.0,
        'total_fuel_cost': 3800.0,
        'driver_expense': 500.0,
        'total_road_expenses': 1200.0,
        'destinations': ['Pune'],
        'remarks': None,
    }
    trip.update(overrides)
    return trip


def make_trip_series(count: int, vehicle_id: str = 'v-1', start_km: float = 1000.0) -> list:
    """
    `count` back-to-back daily trips with continuous odometer readings.

    Speed, fuel efficiency and expense per km vary only slightly, so none of
    the trips is unusual against the others.
    """
    trips = []
    odometer = start_km
    for i in range(count):
        distance = SERIES_DISTANCES[i % len(SERIES_DISTANCES)]
        started = BASE_TIME + timedelta(days=i)
        trips.append(make_trip(
            id=f'{vehicle_id}-t{i + 1}',
            vehicle_id=vehicle_id,
            trip_serial_number=f'{vehicle_id}-T{i + 1:03d}',
            trip_start_date=started,
            trip_end_date=started + timedelta(hours=4),
            start_km=odometer,
            end_km=odometer + distance,
        ))
        odometer += distance
    return trips


@pytest.fixture
def trip_factory():
    """make_trip(**overrides) for tests that build their own trips."""
    return make_trip


@pytest.fixture
def series_factory():
    """make_trip_series(count, vehicle_id='v-1', start_km=1000.0)."""
    return make_trip_series


# ============================================================================
# Store Fixtures
# ============================================================================

@pytest.fixture
def trip_store():
    """
    In-memory trip store with vehicle v-1 (MH12AB1234) and driver d-1.

    No trips are loaded; tests add the trips they need.
    """
    store = InMemoryTripStore()
    store.add_vehicle(VehicleInfo('v-1', 'MH12AB1234'))
    store.add_driver(DriverInfo('d-1', 'Ravi Kumar'))
    return store


@pytest.fixture
def audit():
    """Audit trail logger over a fresh in-memory store."""
    return AuditTrailLogger()


@pytest.fixture
def app(trip_store, audit):
    """Flask app wired to the in-memory stores."""
    from api.app import create_app

    app = create_app(trip_store=trip_store, audit_logger=audit)
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()
