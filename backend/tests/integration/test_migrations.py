"""
Fleet Trip Integrity - Migration Integration Tests

Runs the Alembic revisions against an empty SQLite database and checks the
result matches what the ORM models and repositories expect.
"""

import importlib.util
import pytest
from datetime import datetime
from pathlib import Path

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database.repositories.audit_trail_repository import SqlAuditStore
from database.repositories.trip_repository import SqlTripStore
from integrity.audit_trail import AuditTrailLogger
from integrity.types import AuditTrailEntry, OperationCategory, OperationType
from models import Trip, Vehicle

pytestmark = pytest.mark.integration

VERSIONS_DIR = Path(__file__).parent.parent.parent / 'src' / 'database' / 'migrations' / 'versions'
REVISION_FILES = ['001_create_fleet_tables.py', '002_create_audit_trail.py']


def load_revision(filename):
    spec = importlib.util.spec_from_file_location(filename[:-3], VERSIONS_DIR / filename)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def migrated_engine():
    engine = create_engine('sqlite://', connect_args={'check_same_thread': False}, poolclass=StaticPool)
    with engine.begin() as connection:
        with Operations.context(MigrationContext.configure(connection)):
            for filename in REVISION_FILES:
                load_revision(filename).upgrade()
    yield engine
    engine.dispose()


class TestRevisionChain:
    def test_revisions_are_linked(self):
        fleet, audit = (load_revision(f) for f in REVISION_FILES)

        assert fleet.down_revision is None
        assert audit.down_revision == fleet.revision


class TestUpgrade:
    def test_tables_and_indexes(self, migrated_engine):
        inspector = inspect(migrated_engine)

        assert {'vehicles', 'drivers', 'trips', 'audit_trail'} <= set(inspector.get_table_names())
        audit_indexes = {idx['name'] for idx in inspector.get_indexes('audit_trail')}
        assert 'idx_audit_performed_at' in audit_indexes
        trip_indexes = {idx['name'] for idx in inspector.get_indexes('trips')}
        assert 'idx_trips_vehicle_start' in trip_indexes

    def test_repositories_work_on_migrated_schema(self, migrated_engine):
        factory = sessionmaker(bind=migrated_engine, expire_on_commit=False)
        session = factory()
        session.add(Vehicle(id='v-1', registration_number='MH12AB1234'))
        session.add(Trip(id='t-1', vehicle_id='v-1', start_km=100.0, end_km=180.0,
                         created_at=datetime(2024, 3, 4, 8, 0)))
        session.commit()
        session.close()

        trips = SqlTripStore(session_factory=factory).get_vehicle_trips('v-1')
        audit = AuditTrailLogger(store=SqlAuditStore(session_factory=factory))
        entry_id = audit.record(AuditTrailEntry(
            operation_type=OperationType.VALIDATION_CHECK,
            operation_category=OperationCategory.TRIP_DATA,
            entity_type='trip',
            entity_id='t-1',
            action_performed='Validated trip data',
        ))

        assert trips[0].provenance.value == 'recorded'
        assert trips[0].refueling_done is False
        assert entry_id is not None
        assert audit.search_audit_trail().total == 1


class TestDowngrade:
    def test_downgrade_drops_tables(self, migrated_engine):
        with migrated_engine.begin() as connection:
            with Operations.context(MigrationContext.configure(connection)):
                for filename in reversed(REVISION_FILES):
                    load_revision(filename).downgrade()

        assert inspect(migrated_engine).get_table_names() == []
