"""
Fleet Trip Integrity - Database Connection Management
Provides SQLAlchemy connection pooling and ORM session management.

The engine targets MySQL through PyMySQL unless DATABASE_URL is set, in which
case that URL is used as-is (SQLite for local runs and tests).
"""

from contextlib import contextmanager
from sqlalchemy import create_engine, text
from sqlalchemy.pool import QueuePool
from sqlalchemy.engine import Engine, Connection, URL
from typing import Generator, Optional

from utils.config import (
    DATABASE_URL, DB_HOST, DB_PORT, DB_NAME, DB_USER, DB_PASSWORD,
    DB_POOL_SIZE, DB_POOL_MAX_OVERFLOW, DB_POOL_RECYCLE, DB_POOL_PRE_PING, DB_POOL_TIMEOUT,
    DB_CONNECT_TIMEOUT, DB_READ_TIMEOUT, DB_WRITE_TIMEOUT,
    config
)
from utils.logger import logger, log_database_error

PYMYSQL_TIMEOUTS = {
    "connect_timeout": DB_CONNECT_TIMEOUT,
    "read_timeout": DB_READ_TIMEOUT,
    "write_timeout": DB_WRITE_TIMEOUT,
}


class DatabaseConnection:
    """
    Lazily built engine plus transactional connection helper.

    With no URL the engine is a QueuePool over PyMySQL (pre-ping, hourly
    recycle, UTC session time zone). A url argument or DATABASE_URL replaces
    that, which is how local runs and tests use SQLite.
    """

    def __init__(self, url: Optional[str] = None):
        self._url = url if url is not None else DATABASE_URL
        self._engine: Engine = None

    def _create_url_engine(self) -> Engine:
        if self._url.startswith('sqlite'):
            return create_engine(self._url, echo=False, connect_args={"timeout": DB_CONNECT_TIMEOUT})
        connect_args = PYMYSQL_TIMEOUTS if self._url.startswith('mysql+pymysql') else {}
        return create_engine(
            self._url,
            connect_args=connect_args,
            pool_timeout=DB_POOL_TIMEOUT,
            pool_recycle=DB_POOL_RECYCLE,
            pool_pre_ping=DB_POOL_PRE_PING,
            echo=False,
            hide_parameters=True,
        )

    def _create_mysql_engine(self) -> Engine:
        # URL.create() keeps the password out of logged URLs
        connection_url = URL.create(
            drivername="mysql+pymysql",
            username=DB_USER,
            password=DB_PASSWORD,
            host=DB_HOST,
            port=DB_PORT,
            database=DB_NAME,
            query={
                "charset": "utf8mb4",
                "init_command": "SET time_zone='+00:00'",  # Force UTC for all connections
            },
        )
        return create_engine(
            connection_url,
            poolclass=QueuePool,
            pool_size=DB_POOL_SIZE,
            max_overflow=DB_POOL_MAX_OVERFLOW,
            pool_timeout=DB_POOL_TIMEOUT,
            connect_args=PYMYSQL_TIMEOUTS,
            pool_recycle=DB_POOL_RECYCLE,
            pool_pre_ping=DB_POOL_PRE_PING,
            echo=False,
            hide_parameters=True,
        )

    def get_engine(self) -> Engine:
        """Engine for this connection, built on first call. Raises DatabaseConnectionError."""
        if self._engine is None:
            try:
                self._engine = self._create_url_engine() if self._url else self._create_mysql_engine()
            except Exception as e:
                log_database_error(e, "Failed to create database engine")
                raise DatabaseConnectionError(f"Failed to create database engine: {e}")

            logger.info("Database connection pool initialized", extra={
                "source": "DATABASE_URL" if self._url else "mysql",
                "database": DB_NAME if not self._url else None,
                "environment": config.environment
            })

        return self._engine

    @contextmanager
    def get_connection(self) -> Generator[Connection, None, None]:
        """
        One transaction on a pooled connection: committed when the block
        exits cleanly, rolled back (and the error re-raised) otherwise.

            with db.get_connection() as conn:
                conn.execute(text("SELECT COUNT(*) FROM audit_trail"))
        """
        connection = self.get_engine().connect()
        try:
            yield connection
            connection.commit()
        except Exception as e:
            connection.rollback()
            log_database_error(e, "Transaction failed, rolled back")
            raise
        finally:
            connection.close()

    def test_connection(self) -> bool:
        try:
            with self.get_connection() as conn:
                conn.execute(text("SELECT 1")).fetchone()
        except Exception as e:
            logger.error("Database connection test failed", extra={"error": str(e)})
            return False
        logger.info("Database connection test successful")
        return True

    def close(self):
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            logger.info("Database connection pool closed")


class DatabaseConnectionError(Exception):
    """The engine could not be created."""


# Shared by repositories via models.create_session()
db = DatabaseConnection()
