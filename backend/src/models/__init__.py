# Fleet Trip Integrity - Models Package

# Import all ORM models to register them with SQLAlchemy's declarative base
# This ensures string-based relationship() forward references can be resolved
from .base import Base, SessionLocal, create_session
from .orm_fleet import Vehicle, Driver, Trip
from .orm_audit_trail import AuditTrailRecord, AuditTrailImmutableError

__all__ = [
    'Base',
    'SessionLocal',
    'create_session',
    'Vehicle',
    'Driver',
    'Trip',
    'AuditTrailRecord',
    'AuditTrailImmutableError',
]
