"""
Integration test fixtures and configuration.

Provides database fixtures for repository integration tests.

Fixture Types:
- db_engine: SQLite in-memory engine (or TEST_DATABASE_URL) with the ORM schema
- session_factory: Session factory bound to db_engine, as the SQL stores expect

Safety Features:
- Blocks running tests against production/dev databases
- Drops all tables after each test
"""

import pytest
import os
from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from models import Base


# =============================================================================
# Safety Constants
# =============================================================================

# Database names that should NEVER be used for automated tests
PROTECTED_DATABASE_NAMES = [
    'fleet_integrity',        # Production
    'fleet_integrity_dev',    # Development
    'fleet_integrity_prod',   # Production alias
]


@pytest.fixture
def db_engine():
    """
    Engine with all ORM tables created.

    Uses a shared in-memory SQLite database unless TEST_DATABASE_URL is set
    (e.g. a dedicated MySQL test schema).

    Yields:
        SQLAlchemy engine
    """
    url = os.getenv('TEST_DATABASE_URL')

    if url:
        db_name = make_url(url).database
        if db_name in PROTECTED_DATABASE_NAMES:
            pytest.fail(
                f"SAFETY ERROR: TEST_DATABASE_URL points at protected database '{db_name}'.\n"
                f"Protected databases: {PROTECTED_DATABASE_NAMES}\n"
                f"Use 'fleet_integrity_test' or another dedicated test database."
            )
        engine = create_engine(url, echo=False)
    else:
        # One connection shared by every session so the in-memory data persists
        engine = create_engine(
            'sqlite://',
            connect_args={'check_same_thread': False},
            poolclass=StaticPool,
            echo=False,
        )

    Base.metadata.create_all(engine)
    yield engine

    # Cleanup
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory in the shape SqlTripStore / SqlAuditStore take."""
    return sessionmaker(bind=db_engine, expire_on_commit=False)
