"""
Audit Trail Logger
==================

Append-only record of integrity operations plus search and aggregation.

The logger is a passive sink: the validator, the edge-case detector and
external correction workflows push entries into it; it never calls back.

Storage is pluggable:
- InMemoryAuditStore: single writer lock, used by default and in tests
- database.repositories.audit_trail_repository.SqlAuditStore: SQLAlchemy

Failure policy:
    record() never raises. A failed write is logged, kept in a bounded
    fallback buffer (Error/Critical entries only) and reported by returning
    None, so the audited operation itself is never blocked.

Usage:
    audit = AuditTrailLogger()
    audit.log_validation_check('trip', 't-1', {'errors': 0}, data_quality_score=100)
    result = audit.search_audit_trail(AuditSearchFilters(limit=25))
"""

import threading
import uuid
from collections import deque
from dataclasses import replace
from datetime import datetime, date
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from integrity.types import (
    AuditSearchFilters,
    AuditSearchResult,
    AuditSeverity,
    AuditTrailEntry,
    AuditTrailStats,
    EdgeCaseDetection,
    OperationCategory,
    OperationType,
)
from utils.logger import logger, log_audit_write_failure
from utils.timezone import (
    date_to_reporting,
    get_days_ago_utc,
    get_today_start_utc,
    get_week_start_utc,
    to_naive_utc,
    utc_now,
)


ERROR_SEVERITIES = (AuditSeverity.ERROR, AuditSeverity.CRITICAL)
RECENT_OPERATIONS_LIMIT = 20
TOP_ENTITIES_LIMIT = 10


def json_safe(value: Any) -> Any:
    """Convert nested values (datetimes, enums, value objects) to JSON-serializable ones."""
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [json_safe(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, 'to_dict'):
        return json_safe(value.to_dict())
    return value


# =============================================================================
# STORES
# =============================================================================

class AuditStore(Protocol):
    """Persistence interface for audit entries (append and query only)."""

    def append(self, entry: AuditTrailEntry) -> None:
        ...

    def search(self, filters: AuditSearchFilters) -> Tuple[List[AuditTrailEntry], int]:
        ...

    def count(self, filters: AuditSearchFilters) -> int:
        ...

    def count_by(self, key: str, filters: AuditSearchFilters) -> Dict[str, int]:
        """Group counts by 'operation_type', 'severity_level', 'entity' or 'day'."""
        ...

    def averages(self, filters: AuditSearchFilters) -> Tuple[Optional[float], Optional[float]]:
        """(avg data_quality_score, avg confidence_score) over matching entries."""
        ...


def matches_filters(entry: AuditTrailEntry, filters: AuditSearchFilters) -> bool:
    """Filter predicate shared by the in-memory store and its tests."""
    if filters.operation_types and entry.operation_type not in filters.operation_types:
        return False
    if filters.severity_levels and entry.severity_level not in filters.severity_levels:
        return False
    if filters.entity_types and entry.entity_type not in filters.entity_types:
        return False
    if filters.entity_id is not None and entry.entity_id != filters.entity_id:
        return False
    if filters.start_date is not None and entry.performed_at < to_naive_utc(filters.start_date):
        return False
    if filters.end_date is not None and entry.performed_at > to_naive_utc(filters.end_date):
        return False
    if filters.search_text:
        needle = filters.search_text.lower()
        haystack = (
            entry.entity_description,
            entry.action_performed,
            entry.business_context,
            entry.entity_id,
        )
        if not any(field and needle in field.lower() for field in haystack):
            return False
    return True


def _group_key(entry: AuditTrailEntry, key: str) -> str:
    if key == 'operation_type':
        return entry.operation_type.value
    if key == 'severity_level':
        return entry.severity_level.value
    if key == 'entity':
        return f"{entry.entity_type}:{entry.entity_id}"
    if key == 'day':
        return date_to_reporting(entry.performed_at).isoformat()
    raise ValueError(f"Unknown grouping key: {key}")


class InMemoryAuditStore:
    """
    Process-local audit store.

    Appends are serialized by a single lock; every entry gets an insertion
    sequence so ordering is total even when timestamps collide.
    """

    def __init__(self):
        self._entries: List[Tuple[int, AuditTrailEntry]] = []
        self._sequence = 0
        self._lock = threading.Lock()

    def append(self, entry: AuditTrailEntry) -> None:
        with self._lock:
            self._sequence += 1
            self._entries.append((self._sequence, entry))

    def _matching(self, filters: AuditSearchFilters) -> List[AuditTrailEntry]:
        with self._lock:
            snapshot = list(self._entries)
        selected = [(seq, e) for seq, e in snapshot if matches_filters(e, filters)]
        selected.sort(key=lambda pair: (pair[1].performed_at, pair[0]), reverse=filters.sort_descending)
        return [e for _, e in selected]

    def search(self, filters: AuditSearchFilters) -> Tuple[List[AuditTrailEntry], int]:
        matching = self._matching(filters)
        start = max(filters.offset, 0)
        end = None if filters.limit is None else start + max(filters.limit, 0)
        return matching[start:end], len(matching)

    def count(self, filters: AuditSearchFilters) -> int:
        with self._lock:
            snapshot = [e for _, e in self._entries]
        return sum(1 for e in snapshot if matches_filters(e, filters))

    def count_by(self, key: str, filters: AuditSearchFilters) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for entry in self._matching(filters.unpaged()):
            group = _group_key(entry, key)
            counts[group] = counts.get(group, 0) + 1
        return counts

    def averages(self, filters: AuditSearchFilters) -> Tuple[Optional[float], Optional[float]]:
        entries = self._matching(filters.unpaged())
        quality = [e.data_quality_score for e in entries if e.data_quality_score is not None]
        confidence = [e.confidence_score for e in entries if e.confidence_score is not None]
        avg_quality = sum(quality) / len(quality) if quality else None
        avg_confidence = sum(confidence) / len(confidence) if confidence else None
        return avg_quality, avg_confidence

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# =============================================================================
# LOGGER
# =============================================================================

class AuditTrailLogger:
    """Records integrity operations and answers dashboard queries."""

    FALLBACK_BUFFER_SIZE = 100

    def __init__(self, store: Optional[AuditStore] = None):
        self.store = store if store is not None else InMemoryAuditStore()
        self._fallback = deque(maxlen=self.FALLBACK_BUFFER_SIZE)
        self._fallback_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    def record(self, entry: AuditTrailEntry) -> Optional[str]:
        """
        Append an entry, assigning id and performed_at when absent.

        Returns:
            The entry id, or None if the write failed
        """
        try:
            entry = replace(
                entry,
                id=entry.id or str(uuid.uuid4()),
                performed_at=to_naive_utc(entry.performed_at) if entry.performed_at else utc_now(),
            )
            self.store.append(entry)
        except Exception as e:
            operation = getattr(entry.operation_type, 'value', entry.operation_type)
            log_audit_write_failure(e, str(operation), entry.entity_id)
            if entry.severity_level in ERROR_SEVERITIES:
                with self._fallback_lock:
                    self._fallback.append(entry)
            return None

        return entry.id

    @property
    def fallback_entries(self) -> List[AuditTrailEntry]:
        """Error/Critical entries whose write failed (most recent last)."""
        with self._fallback_lock:
            return list(self._fallback)

    def log_operation(
        self,
        operation_type: OperationType,
        operation_category: OperationCategory,
        entity_type: str,
        entity_id: str,
        action_performed: str,
        **details: Any
    ) -> Optional[str]:
        """Build and record an entry; details map to AuditTrailEntry fields."""
        if 'changes_made' in details:
            details['changes_made'] = json_safe(details['changes_made'])
        if 'validation_results' in details:
            details['validation_results'] = json_safe(details['validation_results'])
        if 'tags' in details:
            details['tags'] = tuple(details['tags'] or ())

        return self.record(AuditTrailEntry(
            operation_type=operation_type,
            operation_category=operation_category,
            entity_type=entity_type,
            entity_id=str(entity_id),
            action_performed=action_performed,
            **details
        ))

    def log_data_correction(
        self,
        entity_type: str,
        entity_id: str,
        before: Dict[str, Any],
        after: Dict[str, Any],
        reason: str,
        performer_name: Optional[str] = None,
        entity_description: Optional[str] = None,
        cascade_operations: Sequence[str] = (),
        operation_category: OperationCategory = OperationCategory.TRIP_DATA,
        confidence_score: Optional[float] = None,
    ) -> Optional[str]:
        """Record a correction applied by the external write path."""
        changed_fields = {
            key: {'from': before.get(key), 'to': after.get(key)}
            for key in sorted(set(before) | set(after))
            if before.get(key) != after.get(key)
        }

        return self.log_operation(
            OperationType.DATA_CORRECTION,
            operation_category,
            entity_type,
            entity_id,
            f"Corrected {', '.join(changed_fields) or 'no fields'}",
            entity_description=entity_description,
            performer_name=performer_name,
            severity_level=AuditSeverity.WARNING if cascade_operations else AuditSeverity.INFO,
            confidence_score=confidence_score,
            business_context=reason,
            changes_made={
                'before': before,
                'after': after,
                'changed_fields': changed_fields,
                'cascade_operations': list(cascade_operations),
            },
            tags=('correction', entity_type),
        )

    def log_validation_check(
        self,
        entity_type: str,
        entity_id: str,
        validation_results: Dict[str, Any],
        data_quality_score: Optional[float] = None,
        severity_level: AuditSeverity = AuditSeverity.INFO,
        entity_description: Optional[str] = None,
        operation_duration_ms: Optional[int] = None,
        operation_category: OperationCategory = OperationCategory.TRIP_DATA,
    ) -> Optional[str]:
        return self.log_operation(
            OperationType.VALIDATION_CHECK,
            operation_category,
            entity_type,
            entity_id,
            "Validated trip data",
            entity_description=entity_description,
            severity_level=severity_level,
            validation_results=validation_results,
            data_quality_score=data_quality_score,
            operation_duration_ms=operation_duration_ms,
            tags=('validation',),
        )

    def log_edge_case_detection(self, detection: EdgeCaseDetection) -> Optional[str]:
        entity_type = 'trip' if detection.trip_id else 'vehicle'
        return self.log_operation(
            OperationType.EDGE_CASE_DETECTION,
            OperationCategory.TRIP_DATA,
            entity_type,
            detection.trip_id or detection.vehicle_id,
            f"Detected {detection.case_type.value}",
            entity_description=f"{detection.vehicle_registration} {detection.description}",
            severity_level=AuditSeverity.from_issue_severity(detection.severity),
            confidence_score=float(detection.confidence_score),
            business_context=detection.description,
            validation_results={
                'case_id': detection.case_id,
                'case_type': detection.case_type.value,
                'patterns_detected': list(detection.patterns_detected),
                'requires_manual_review': detection.requires_manual_review,
            },
            tags=('edge_case', detection.case_type.value),
        )

    def log_baseline_operation(
        self,
        vehicle_id: str,
        action: str,
        baseline_data: Dict[str, Any],
        severity_level: AuditSeverity = AuditSeverity.INFO,
    ) -> Optional[str]:
        return self.log_operation(
            OperationType.BASELINE_MANAGEMENT,
            OperationCategory.VEHICLE_DATA,
            'vehicle',
            vehicle_id,
            action,
            severity_level=severity_level,
            changes_made=baseline_data,
            tags=('baseline',),
        )

    def log_sequence_monitoring(
        self,
        vehicle_id: str,
        action: str,
        sequence_data: Dict[str, Any],
        severity_level: AuditSeverity = AuditSeverity.INFO,
    ) -> Optional[str]:
        return self.log_operation(
            OperationType.SEQUENCE_MONITORING,
            OperationCategory.TRIP_DATA,
            'vehicle',
            vehicle_id,
            action,
            severity_level=severity_level,
            validation_results=sequence_data,
            tags=('sequence',),
        )

    def log_return_trip_validation(
        self,
        trip_id: str,
        action: str,
        validation_data: Dict[str, Any],
        severity_level: AuditSeverity = AuditSeverity.INFO,
    ) -> Optional[str]:
        return self.log_operation(
            OperationType.RETURN_TRIP_VALIDATION,
            OperationCategory.TRIP_DATA,
            'trip',
            trip_id,
            action,
            severity_level=severity_level,
            validation_results=validation_data,
            tags=('return_trip',),
        )

    # -------------------------------------------------------------------------
    # Querying
    # -------------------------------------------------------------------------

    def search_audit_trail(self, filters: Optional[AuditSearchFilters] = None) -> AuditSearchResult:
        """Offset/limit search; total is the full matching count."""
        entries, total = self.store.search(filters or AuditSearchFilters())
        return AuditSearchResult(entries=list(entries), total=total)

    def get_entity_audit_trail(self, entity_type: str, entity_id: str, limit: int = 50) -> List[AuditTrailEntry]:
        """Newest-first history of one entity."""
        filters = AuditSearchFilters(
            entity_types=(entity_type,),
            entity_id=str(entity_id),
            limit=limit,
            sort_descending=True,
        )
        return self.search_audit_trail(filters).entries

    def get_audit_trail_stats(self, filters: Optional[AuditSearchFilters] = None) -> AuditTrailStats:
        """
        Aggregate statistics over entries matching filters (all entries by default).

        Every figure is derived through the store's count/search with the same
        criteria, so counting a search result always agrees with the stats.
        """
        base = (filters or AuditSearchFilters()).unpaged()
        now = utc_now()

        total = self.store.count(base)
        today = self.store.count(replace(base, start_date=_later(base.start_date, get_today_start_utc(now))))
        this_week = self.store.count(replace(base, start_date=_later(base.start_date, get_week_start_utc(now))))

        error_levels = tuple(
            s for s in ERROR_SEVERITIES
            if not base.severity_levels or s in base.severity_levels
        )
        errors = self.store.count(replace(base, severity_levels=error_levels)) if error_levels else 0
        error_rate = round(errors / total * 100, 2) if total else 0.0

        avg_quality, avg_confidence = self.store.averages(base)
        recent, _ = self.store.search(replace(base, limit=RECENT_OPERATIONS_LIMIT, sort_descending=True))

        return AuditTrailStats(
            total_operations=total,
            operations_today=today,
            operations_this_week=this_week,
            error_rate=error_rate,
            avg_quality_score=round(avg_quality, 2) if avg_quality is not None else 0.0,
            avg_confidence_score=round(avg_confidence, 2) if avg_confidence is not None else 0.0,
            operations_by_type=self.store.count_by('operation_type', base),
            operations_by_severity=self.store.count_by('severity_level', base),
            recent_operations=list(recent),
        )

    def get_audit_summary(self, days: int = 30) -> Dict[str, Any]:
        """Daily activity, breakdowns and the most-audited entities over a window."""
        if days <= 0:
            raise ValueError("days must be positive")

        window = AuditSearchFilters(start_date=get_days_ago_utc(days), limit=None)
        entity_counts = self.store.count_by('entity', window)
        top_entities = sorted(entity_counts.items(), key=lambda item: (-item[1], item[0]))[:TOP_ENTITIES_LIMIT]

        return {
            'period_days': days,
            'total_operations': self.store.count(window),
            'daily_activity': dict(sorted(self.store.count_by('day', window).items())),
            'operations_by_type': self.store.count_by('operation_type', window),
            'operations_by_severity': self.store.count_by('severity_level', window),
            'top_entities': [
                {'entity': key, 'operation_count': count}
                for key, count in top_entities
            ],
        }

    def iter_all(self, filters: Optional[AuditSearchFilters] = None, page_size: int = 500) -> Iterable[AuditTrailEntry]:
        """Page through every matching entry (used by CSV export)."""
        base = filters or AuditSearchFilters()
        offset = base.offset
        while True:
            page, total = self.store.search(replace(base, limit=page_size, offset=offset))
            yield from page
            offset += len(page)
            if not page or offset >= total:
                break
        logger.debug("Audit trail iteration complete", extra={"entries": offset - base.offset})


def _later(current: Optional[datetime], candidate: datetime) -> datetime:
    if current is None:
        return candidate
    return max(to_naive_utc(current), candidate)
