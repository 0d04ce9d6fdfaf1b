"""
Fleet Trip Integrity - Audit Trail Repository
Provides append and query access to the audit_trail table.

The table is append-only: the repository exposes no update or delete, and the
ORM model rejects both at flush time.
"""

from contextlib import contextmanager
from typing import Callable, Dict, Generator, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from integrity.types import (
    AuditSearchFilters,
    AuditSeverity,
    AuditTrailEntry,
    OperationCategory,
    OperationType,
)
from models import AuditTrailRecord, create_session
from utils.config import MAX_RETRY_ATTEMPTS
from utils.logger import logger, log_database_error
from utils.timezone import date_to_reporting, to_naive_utc


GROUP_COLUMNS = {
    'operation_type': AuditTrailRecord.operation_type,
    'severity_level': AuditTrailRecord.severity_level,
}


class AuditTrailRepository:
    """
    Repository for audit trail operations.

    Implements:
    - Insert of immutable entries
    - Filtered, paginated search ordered by (performed_at, entry_seq)
    - Grouped counts and averages for dashboard statistics
    """

    def __init__(self, session: Session):
        """
        Initialize repository with database session.

        Args:
            session: SQLAlchemy session object
        """
        self.session = session

    def insert(self, entry: AuditTrailEntry) -> int:
        """
        Insert an audit entry.

        Args:
            entry: Entry with id and performed_at already assigned

        Returns:
            entry_seq of the inserted row
        """
        record = AuditTrailRecord(
            id=entry.id,
            operation_type=entry.operation_type.value,
            operation_category=entry.operation_category.value,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            entity_description=entry.entity_description,
            action_performed=entry.action_performed,
            performer_name=entry.performer_name,
            severity_level=entry.severity_level.value,
            confidence_score=entry.confidence_score,
            data_quality_score=entry.data_quality_score,
            business_context=entry.business_context,
            changes_made=entry.changes_made,
            validation_results=entry.validation_results,
            operation_duration_ms=entry.operation_duration_ms,
            tags=list(entry.tags),
            performed_at=entry.performed_at,
        )
        self.session.add(record)
        self.session.flush()
        return record.entry_seq

    def _apply_filters(self, stmt: Select, filters: AuditSearchFilters) -> Select:
        if filters.operation_types:
            stmt = stmt.where(AuditTrailRecord.operation_type.in_([t.value for t in filters.operation_types]))
        if filters.severity_levels:
            stmt = stmt.where(AuditTrailRecord.severity_level.in_([s.value for s in filters.severity_levels]))
        if filters.entity_types:
            stmt = stmt.where(AuditTrailRecord.entity_type.in_(list(filters.entity_types)))
        if filters.entity_id is not None:
            stmt = stmt.where(AuditTrailRecord.entity_id == filters.entity_id)
        if filters.start_date is not None:
            stmt = stmt.where(AuditTrailRecord.performed_at >= to_naive_utc(filters.start_date))
        if filters.end_date is not None:
            stmt = stmt.where(AuditTrailRecord.performed_at <= to_naive_utc(filters.end_date))
        if filters.search_text:
            # Literal substring: % and _ in the search text are escaped
            needle = filters.search_text.lower()
            stmt = stmt.where(or_(*(
                func.lower(column).contains(needle, autoescape=True)
                for column in (
                    AuditTrailRecord.entity_description,
                    AuditTrailRecord.action_performed,
                    AuditTrailRecord.business_context,
                    AuditTrailRecord.entity_id,
                )
            )))
        return stmt

    def search(self, filters: AuditSearchFilters) -> List[AuditTrailRecord]:
        stmt = self._apply_filters(select(AuditTrailRecord), filters)
        if filters.sort_descending:
            stmt = stmt.order_by(AuditTrailRecord.performed_at.desc(), AuditTrailRecord.entry_seq.desc())
        else:
            stmt = stmt.order_by(AuditTrailRecord.performed_at, AuditTrailRecord.entry_seq)
        if filters.offset:
            stmt = stmt.offset(filters.offset)
        if filters.limit is not None:
            stmt = stmt.limit(filters.limit)
        return list(self.session.scalars(stmt))

    def count(self, filters: AuditSearchFilters) -> int:
        stmt = self._apply_filters(select(func.count(AuditTrailRecord.entry_seq)), filters)
        return self.session.scalar(stmt) or 0

    def count_by(self, key: str, filters: AuditSearchFilters) -> Dict[str, int]:
        """
        Group counts of matching entries.

        Args:
            key: 'operation_type', 'severity_level', 'entity' or 'day'
            filters: Search criteria (pagination ignored)

        Returns:
            Dict of group -> count
        """
        if key in GROUP_COLUMNS:
            column = GROUP_COLUMNS[key]
            stmt = self._apply_filters(select(column, func.count()), filters).group_by(column)
            return {value: count for value, count in self.session.execute(stmt)}

        if key == 'entity':
            stmt = self._apply_filters(
                select(AuditTrailRecord.entity_type, AuditTrailRecord.entity_id, func.count()),
                filters,
            ).group_by(AuditTrailRecord.entity_type, AuditTrailRecord.entity_id)
            return {
                f"{entity_type}:{entity_id}": count
                for entity_type, entity_id, count in self.session.execute(stmt)
            }

        if key == 'day':
            # Reporting-day boundaries depend on the configured timezone,
            # so bucket in Python rather than with the dialect's DATE()
            stmt = self._apply_filters(select(AuditTrailRecord.performed_at), filters)
            counts: Dict[str, int] = {}
            for performed_at in self.session.scalars(stmt):
                day = date_to_reporting(performed_at).isoformat()
                counts[day] = counts.get(day, 0) + 1
            return counts

        raise ValueError(f"Unknown grouping key: {key}")

    def averages(self, filters: AuditSearchFilters) -> Tuple[Optional[float], Optional[float]]:
        stmt = self._apply_filters(
            select(
                func.avg(AuditTrailRecord.data_quality_score),
                func.avg(AuditTrailRecord.confidence_score),
            ),
            filters,
        )
        avg_quality, avg_confidence = self.session.execute(stmt).one()
        return (
            float(avg_quality) if avg_quality is not None else None,
            float(avg_confidence) if avg_confidence is not None else None,
        )


def record_to_entry(record: AuditTrailRecord) -> AuditTrailEntry:
    """Convert a persisted row to the immutable value object."""
    return AuditTrailEntry(
        id=record.id,
        operation_type=OperationType(record.operation_type),
        operation_category=OperationCategory(record.operation_category),
        entity_type=record.entity_type,
        entity_id=record.entity_id,
        entity_description=record.entity_description,
        action_performed=record.action_performed,
        performer_name=record.performer_name,
        severity_level=AuditSeverity(record.severity_level),
        confidence_score=record.confidence_score,
        data_quality_score=record.data_quality_score,
        business_context=record.business_context,
        changes_made=record.changes_made,
        validation_results=record.validation_results,
        operation_duration_ms=record.operation_duration_ms,
        tags=tuple(record.tags or ()),
        performed_at=record.performed_at,
    )


_transient_retry = retry(
    stop=stop_after_attempt(MAX_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
    retry=retry_if_exception_type(OperationalError),
    reraise=True,
)


class SqlAuditStore:
    """
    AuditStore backed by the audit_trail table.

    Each call runs in its own session and transaction. Transient connection
    errors (OperationalError) are retried with exponential backoff; anything
    else propagates to AuditTrailLogger, which logs it and buffers the entry.

    Usage:
        ```python
        audit = AuditTrailLogger(store=SqlAuditStore())
        ```
    """

    def __init__(self, session_factory: Callable[[], Session] = create_session):
        self.session_factory = session_factory

    @contextmanager
    def _repository(self, context: str, commit: bool = False) -> Generator[AuditTrailRepository, None, None]:
        session = self.session_factory()
        try:
            yield AuditTrailRepository(session)
            if commit:
                session.commit()
        except Exception as e:
            session.rollback()
            log_database_error(e, context)
            raise
        finally:
            session.close()

    @_transient_retry
    def append(self, entry: AuditTrailEntry) -> None:
        with self._repository("Failed to insert audit entry", commit=True) as repo:
            entry_seq = repo.insert(entry)
        logger.debug(f"Audit entry {entry.id} stored as #{entry_seq}")

    @_transient_retry
    def search(self, filters: AuditSearchFilters) -> Tuple[List[AuditTrailEntry], int]:
        with self._repository("Failed to search audit trail") as repo:
            entries = [record_to_entry(r) for r in repo.search(filters)]
            total = repo.count(filters)
        return entries, total

    @_transient_retry
    def count(self, filters: AuditSearchFilters) -> int:
        with self._repository("Failed to count audit entries") as repo:
            return repo.count(filters)

    @_transient_retry
    def count_by(self, key: str, filters: AuditSearchFilters) -> Dict[str, int]:
        with self._repository(f"Failed to group audit entries by {key}") as repo:
            return repo.count_by(key, filters)

    @_transient_retry
    def averages(self, filters: AuditSearchFilters) -> Tuple[Optional[float], Optional[float]]:
        with self._repository("Failed to average audit scores") as repo:
            return repo.averages(filters)
