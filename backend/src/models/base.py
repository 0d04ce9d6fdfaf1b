"""
Declarative base and session factory shared by the fleet and audit models.

SessionLocal starts unbound. create_session() attaches it to the engine from
database.connection on first call, so importing models never touches MySQL
and integration tests can hand repositories their own sessionmaker.
"""

from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker


class Base(DeclarativeBase):
    pass


SessionLocal = sessionmaker(expire_on_commit=False, autoflush=True)


def _bind_engine() -> None:
    if SessionLocal.kw.get('bind') is None:
        from database.connection import db
        SessionLocal.configure(bind=db.get_engine())


def create_session() -> Session:
    """
    New session on the shared engine, for repositories running in scripts and
    request handlers. Callers own commit/rollback and must close it.
    """
    _bind_engine()
    return SessionLocal()
