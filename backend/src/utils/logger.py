"""
Fleet Trip Integrity - Structured Logging
Provides JSON-formatted logging for CloudWatch Logs Insights queries.

Operational logs only. The compliance record of integrity operations lives in
the audit trail (integrity.audit_trail), not here.
"""

import logging
import sys
from typing import Optional
from pythonjsonlogger import jsonlogger

from .config import LOG_LEVEL, config


def setup_logger(name: str = __name__) -> logging.Logger:
    """
    Configure structured JSON logger for CloudWatch integration.

    Args:
        name: Logger name (typically __name__ from calling module)

    Returns:
        Configured logger instance

    Example:
        >>> logger = setup_logger(__name__)
        >>> logger.info("Scan completed", extra={
        ...     "vehicle_count": 85,
        ...     "duration_seconds": 142,
        ...     "cases_detected": 12
        ... })
    """
    logger = logging.getLogger(name)

    # Prevent duplicate handlers
    if logger.hasHandlers():
        return logger

    level = getattr(logging, LOG_LEVEL.upper(), logging.INFO)
    logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    formatter = jsonlogger.JsonFormatter(
        '%(asctime)s %(name)s %(levelname)s %(message)s',
        datefmt='%Y-%m-%dT%H:%M:%S'
    )
    handler.setFormatter(formatter)

    logger.addHandler(handler)

    # Don't propagate to root logger
    logger.propagate = False

    return logger


# Global logger instance
logger = setup_logger('fleet_integrity')


def log_scan_start(scan_type: str, vehicle_count: int):
    """Log the start of a fleet scan."""
    logger.info("Fleet scan started", extra={
        "event_type": "scan_start",
        "scan_type": scan_type,
        "vehicle_count": vehicle_count,
        "environment": config.environment
    })


def log_scan_complete(
    scan_type: str,
    duration_seconds: float,
    vehicles_processed: int,
    vehicles_failed: int,
    cancelled: bool = False,
):
    """Log fleet scan completion (complete or partial)."""
    logger.info("Fleet scan completed", extra={
        "event_type": "scan_complete",
        "scan_type": scan_type,
        "duration_seconds": duration_seconds,
        "vehicles_processed": vehicles_processed,
        "vehicles_failed": vehicles_failed,
        "cancelled": cancelled
    })


def log_scan_error(error: Exception, vehicle_id: Optional[str] = None, scan_type: Optional[str] = None):
    """Log a per-vehicle scan failure with context."""
    logger.error("Vehicle scan failed", extra={
        "event_type": "scan_error",
        "scan_type": scan_type,
        "error_type": type(error).__name__,
        "error_message": str(error),
        "vehicle_id": vehicle_id
    }, exc_info=True)


def log_audit_write_failure(error: Exception, operation_type: str, entity_id: Optional[str] = None):
    """Log a failed audit trail write (non-fatal for the audited operation)."""
    logger.warning("Audit trail write failed", extra={
        "event_type": "audit_write_failure",
        "operation_type": operation_type,
        "entity_id": entity_id,
        "error_type": type(error).__name__,
        "error_message": str(error)
    })


def log_api_request(method: str, path: str, status_code: int, duration_ms: float):
    """Log API request metrics."""
    logger.info("API request", extra={
        "event_type": "api_request",
        "method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": duration_ms
    })


def log_database_error(error: Exception, query_context: str = None):
    """Log database error with context."""
    logger.error("Database error", extra={
        "event_type": "database_error",
        "error_type": type(error).__name__,
        "error_message": str(error),
        "query_context": query_context
    }, exc_info=True)
