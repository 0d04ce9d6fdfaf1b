"""
Trip Integrity Types
====================

Closed taxonomies and value objects shared by the validator, the edge-case
detector and the audit trail.

All value objects are frozen dataclasses: components hand them around as
values, never as shared mutable references.
"""

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple


# =============================================================================
# TAXONOMIES
# =============================================================================

class Severity(enum.Enum):
    """Issue / detection severity tier."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}


class CaseType(enum.Enum):
    """Edge-case category assigned by the detector."""
    MAINTENANCE_TRIP = "maintenance_trip"
    EMERGENCY_TRIP = "emergency_trip"
    DATA_ANOMALY = "data_anomaly"
    BREAKDOWN_TRIP = "breakdown_trip"
    UNUSUAL_PATTERN = "unusual_pattern"
    RECOVERY_SCENARIO = "recovery_scenario"

    @property
    def priority(self) -> int:
        """Tie-break when two detectors report the same severity."""
        return _CASE_PRIORITY[self]


_CASE_PRIORITY = {
    CaseType.DATA_ANOMALY: 6,
    CaseType.BREAKDOWN_TRIP: 5,
    CaseType.EMERGENCY_TRIP: 4,
    CaseType.MAINTENANCE_TRIP: 3,
    CaseType.UNUSUAL_PATTERN: 2,
    CaseType.RECOVERY_SCENARIO: 1,
}


class ResolutionStatus(enum.Enum):
    """Review state of a detection (changed only by an external reviewer)."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


_ALLOWED_TRANSITIONS = {
    ResolutionStatus.PENDING: {
        ResolutionStatus.IN_PROGRESS, ResolutionStatus.RESOLVED, ResolutionStatus.DISMISSED,
    },
    ResolutionStatus.IN_PROGRESS: {ResolutionStatus.RESOLVED, ResolutionStatus.DISMISSED},
    ResolutionStatus.RESOLVED: set(),
    ResolutionStatus.DISMISSED: set(),
}


class RiskLevel(enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def weight(self) -> float:
        """Penalty applied to success probability when ranking recovery options."""
        return _RISK_WEIGHT[self]


_RISK_WEIGHT = {
    RiskLevel.LOW: 0.1,
    RiskLevel.MEDIUM: 0.3,
    RiskLevel.HIGH: 0.6,
}


class ScenarioType(enum.Enum):
    MISSING_TRIP_DATA = "missing_trip_data"
    CORRUPTED_ODOMETER = "corrupted_odometer"
    FUEL_DATA_LOSS = "fuel_data_loss"
    INCOMPLETE_TRIP = "incomplete_trip"
    DUPLICATE_DETECTION = "duplicate_detection"


class OperationType(enum.Enum):
    """Kind of integrity operation recorded in the audit trail."""
    DATA_CORRECTION = "data_correction"
    VALIDATION_CHECK = "validation_check"
    EDGE_CASE_DETECTION = "edge_case_detection"
    BASELINE_MANAGEMENT = "baseline_management"
    SEQUENCE_MONITORING = "sequence_monitoring"
    RETURN_TRIP_VALIDATION = "return_trip_validation"


class OperationCategory(enum.Enum):
    TRIP_DATA = "trip_data"
    VEHICLE_DATA = "vehicle_data"
    DRIVER_DATA = "driver_data"
    FUEL_DATA = "fuel_data"
    SYSTEM_MAINTENANCE = "system_maintenance"


class AuditSeverity(enum.Enum):
    """Severity of an audit entry (Critical > Error > Warning > Info)."""
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @classmethod
    def from_issue_severity(cls, severity: Severity) -> "AuditSeverity":
        if severity is Severity.CRITICAL:
            return cls.CRITICAL
        if severity is Severity.HIGH:
            return cls.ERROR
        if severity is Severity.MEDIUM:
            return cls.WARNING
        return cls.INFO


class Provenance(enum.Enum):
    """Where a trip's values came from, attached at ingestion."""
    RECORDED = "recorded"
    IMPORTED = "imported"
    ESTIMATED = "estimated"
    PLACEHOLDER = "placeholder"


# =============================================================================
# VALIDATION
# =============================================================================

@dataclass(frozen=True)
class ValidationIssue:
    """A rule violation that lowers the quality score."""

    field: str
    message: str
    severity: Severity
    suggested_fix: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "message": self.message,
            "severity": self.severity.value,
            "suggestedFix": self.suggested_fix,
        }


@dataclass(frozen=True)
class ValidationWarning:
    """Advisory finding; carries a recommendation instead of a severity."""

    field: str
    message: str
    recommendation: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "message": self.message,
            "recommendation": self.recommendation,
        }


@dataclass(frozen=True)
class ValidationResult:
    """Quality verdict for one trip."""

    score: int
    errors: Tuple[ValidationIssue, ...] = ()
    warnings: Tuple[ValidationWarning, ...] = ()
    trip_id: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        """No Critical or High errors."""
        return not any(
            e.severity in (Severity.CRITICAL, Severity.HIGH) for e in self.errors
        )

    def count_errors(self, severity: Severity) -> int:
        return sum(1 for e in self.errors if e.severity is severity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trip_id": self.trip_id,
            "score": self.score,
            "is_valid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


@dataclass(frozen=True)
class DataQualitySummary:
    """Aggregate of validation results over a set of vehicles."""

    total_trips: int
    average_score: float
    critical_issues: int
    high_issues: int
    medium_issues: int
    low_issues: int
    warnings: int
    vehicles_included: int = 0
    failed_vehicles: Tuple[str, ...] = ()

    @property
    def is_complete(self) -> bool:
        return not self.failed_vehicles

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalTrips": self.total_trips,
            "averageScore": self.average_score,
            "criticalIssues": self.critical_issues,
            "highIssues": self.high_issues,
            "mediumIssues": self.medium_issues,
            "lowIssues": self.low_issues,
            "warnings": self.warnings,
            "vehiclesIncluded": self.vehicles_included,
            "failedVehicles": list(self.failed_vehicles),
            "isComplete": self.is_complete,
        }


# =============================================================================
# EDGE CASES & RECOVERY
# =============================================================================

@dataclass(frozen=True)
class EdgeCaseDetection:
    """A trip classified into an anomaly category."""

    case_id: str
    case_type: CaseType
    severity: Severity
    confidence_score: int
    vehicle_id: str
    vehicle_registration: str
    description: str
    patterns_detected: Tuple[str, ...]
    detected_at: datetime
    trip_id: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    auto_actions_taken: Tuple[str, ...] = ()
    recommendations: Tuple[str, ...] = ()
    resolution_status: ResolutionStatus = ResolutionStatus.PENDING
    requires_manual_review: bool = False

    def with_status(self, new_status: ResolutionStatus) -> "EdgeCaseDetection":
        """
        Return a copy with a new resolution status.

        Raises:
            ValueError: If the transition is not allowed (e.g. reopening a
                        resolved case)
        """
        if new_status is self.resolution_status:
            return self
        if new_status not in _ALLOWED_TRANSITIONS[self.resolution_status]:
            raise ValueError(
                f"Cannot move case {self.case_id} from "
                f"{self.resolution_status.value} to {new_status.value}"
            )
        return replace(self, resolution_status=new_status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "case_id": self.case_id,
            "case_type": self.case_type.value,
            "trip_id": self.trip_id,
            "vehicle_id": self.vehicle_id,
            "vehicle_registration": self.vehicle_registration,
            "severity": self.severity.value,
            "confidence_score": self.confidence_score,
            "detected_at": self.detected_at.isoformat(),
            "description": self.description,
            "patterns_detected": list(self.patterns_detected),
            "context": self.context,
            "recommendations": list(self.recommendations),
            "auto_actions_taken": list(self.auto_actions_taken),
            "requires_manual_review": self.requires_manual_review,
            "resolution_status": self.resolution_status.value,
        }


@dataclass(frozen=True)
class DataInconsistency:
    field: str
    expected_value: Any
    actual_value: Any
    confidence: float
    trip_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "expected_value": self.expected_value,
            "actual_value": self.actual_value,
            "confidence": self.confidence,
            "trip_id": self.trip_id,
        }


@dataclass(frozen=True)
class RecoveryOption:
    method: str
    description: str
    risk_level: RiskLevel
    success_probability: float
    estimated_accuracy: float

    @property
    def composite_score(self) -> float:
        """success_probability x (1 - risk_weight); used for ranking."""
        return round(self.success_probability * (1.0 - self.risk_level.weight), 4)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "description": self.description,
            "risk_level": self.risk_level.value,
            "success_probability": self.success_probability,
            "estimated_accuracy": self.estimated_accuracy,
            "composite_score": self.composite_score,
        }


@dataclass(frozen=True)
class DataRecoveryScenario:
    """Decision-support artifact; never a committed change."""

    scenario_id: str
    scenario_type: ScenarioType
    vehicle_id: str
    affected_trips: Tuple[str, ...]
    data_inconsistencies: Tuple[DataInconsistency, ...]
    recovery_options: Tuple[RecoveryOption, ...]
    recommended_action: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scenario_id": self.scenario_id,
            "scenario_type": self.scenario_type.value,
            "vehicle_id": self.vehicle_id,
            "affected_trips": list(self.affected_trips),
            "data_inconsistencies": [i.to_dict() for i in self.data_inconsistencies],
            "recovery_options": [o.to_dict() for o in self.recovery_options],
            "recommended_action": self.recommended_action,
        }


@dataclass(frozen=True)
class EdgeCaseReport:
    """Result of a system-wide edge-case scan."""

    total_cases_detected: int
    pending_reviews: int
    cases_by_type: Dict[str, int]
    cases_by_severity: Dict[str, int]
    recent_detections: Tuple[EdgeCaseDetection, ...]
    vehicles_scanned: int = 0
    failed_vehicles: Tuple[str, ...] = ()
    cancelled: bool = False
    timed_out: bool = False

    @property
    def is_complete(self) -> bool:
        """False when any vehicle failed or the scan stopped early."""
        return not (self.failed_vehicles or self.cancelled or self.timed_out)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_cases_detected": self.total_cases_detected,
            "pending_reviews": self.pending_reviews,
            "cases_by_type": dict(self.cases_by_type),
            "cases_by_severity": dict(self.cases_by_severity),
            "recent_detections": [d.to_dict() for d in self.recent_detections],
            "vehicles_scanned": self.vehicles_scanned,
            "failed_vehicles": list(self.failed_vehicles),
            "cancelled": self.cancelled,
            "timed_out": self.timed_out,
            "is_complete": self.is_complete,
        }


# =============================================================================
# AUDIT TRAIL
# =============================================================================

@dataclass(frozen=True)
class AuditTrailEntry:
    """
    One immutable audit record.

    id and performed_at are assigned by AuditTrailLogger.record() when absent.
    A missing performer_name means the operation was done by the system.
    """

    operation_type: OperationType
    operation_category: OperationCategory
    entity_type: str
    entity_id: str
    action_performed: str
    entity_description: Optional[str] = None
    performer_name: Optional[str] = None
    severity_level: AuditSeverity = AuditSeverity.INFO
    confidence_score: Optional[float] = None
    business_context: Optional[str] = None
    changes_made: Optional[Dict[str, Any]] = None
    validation_results: Optional[Dict[str, Any]] = None
    data_quality_score: Optional[float] = None
    operation_duration_ms: Optional[int] = None
    tags: Tuple[str, ...] = ()
    id: Optional[str] = None
    performed_at: Optional[datetime] = None

    @property
    def performed_by(self) -> str:
        return self.performer_name or "System"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "operation_type": self.operation_type.value,
            "operation_category": self.operation_category.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "entity_description": self.entity_description,
            "action_performed": self.action_performed,
            "performer_name": self.performed_by,
            "severity_level": self.severity_level.value,
            "confidence_score": self.confidence_score,
            "business_context": self.business_context,
            "changes_made": self.changes_made,
            "validation_results": self.validation_results,
            "data_quality_score": self.data_quality_score,
            "operation_duration_ms": self.operation_duration_ms,
            "tags": list(self.tags),
            "performed_at": self.performed_at.isoformat() if self.performed_at else None,
        }


@dataclass(frozen=True)
class AuditSearchFilters:
    operation_types: Tuple[OperationType, ...] = ()
    severity_levels: Tuple[AuditSeverity, ...] = ()
    entity_types: Tuple[str, ...] = ()
    entity_id: Optional[str] = None
    search_text: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: Optional[int] = 100
    offset: int = 0
    sort_descending: bool = False

    def unpaged(self) -> "AuditSearchFilters":
        """Same criteria without pagination (for counting)."""
        return replace(self, limit=None, offset=0)


@dataclass(frozen=True)
class AuditSearchResult:
    entries: List[AuditTrailEntry]
    total: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entries": [e.to_dict() for e in self.entries],
            "total": self.total,
        }


@dataclass(frozen=True)
class AuditTrailStats:
    total_operations: int
    operations_today: int
    operations_this_week: int
    error_rate: float
    avg_quality_score: float
    avg_confidence_score: float
    operations_by_type: Dict[str, int]
    operations_by_severity: Dict[str, int]
    recent_operations: List[AuditTrailEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_operations": self.total_operations,
            "operations_today": self.operations_today,
            "operations_this_week": self.operations_this_week,
            "error_rate": self.error_rate,
            "avg_quality_score": self.avg_quality_score,
            "avg_confidence_score": self.avg_confidence_score,
            "operations_by_type": dict(self.operations_by_type),
            "operations_by_severity": dict(self.operations_by_severity),
            "recent_operations": [e.to_dict() for e in self.recent_operations],
        }
