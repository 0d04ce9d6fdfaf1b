"""
SQLAlchemy ORM Model: Audit Trail
Append-only record of every integrity operation (validation runs, edge-case
detections, corrections).

Rows are write-once: mapper events reject UPDATE and DELETE through the ORM.
"""

from sqlalchemy import Integer, String, DateTime, Enum, Index, Text, Float, JSON, event
from sqlalchemy.orm import Mapped, mapped_column
from models.base import Base
from datetime import datetime
from typing import Optional, Dict, Any, List


class AuditTrailImmutableError(Exception):
    """Raised when code tries to modify or delete a persisted audit entry."""
    pass


class AuditTrailRecord(Base):
    """
    One persisted audit trail entry.

    entry_seq is the insertion sequence and breaks ties between entries with
    the same performed_at.
    """
    __tablename__ = "audit_trail"

    entry_seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)

    operation_type: Mapped[str] = mapped_column(
        Enum('data_correction', 'validation_check', 'edge_case_detection',
             'baseline_management', 'sequence_monitoring', 'return_trip_validation',
             name='audit_operation_type_enum'),
        nullable=False
    )
    operation_category: Mapped[str] = mapped_column(
        Enum('trip_data', 'vehicle_data', 'driver_data', 'fuel_data', 'system_maintenance',
             name='audit_operation_category_enum'),
        nullable=False
    )

    # Affected entity
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_description: Mapped[Optional[str]] = mapped_column(Text)

    action_performed: Mapped[str] = mapped_column(Text, nullable=False)
    performer_name: Mapped[Optional[str]] = mapped_column(
        String(255),
        comment="NULL means the operation was performed by the system"
    )
    severity_level: Mapped[str] = mapped_column(
        Enum('critical', 'error', 'warning', 'info', name='audit_severity_enum'),
        nullable=False,
        default='info'
    )

    confidence_score: Mapped[Optional[float]] = mapped_column(Float)
    data_quality_score: Mapped[Optional[float]] = mapped_column(Float)
    business_context: Mapped[Optional[str]] = mapped_column(Text)
    changes_made: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)
    validation_results: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)
    operation_duration_ms: Mapped[Optional[int]] = mapped_column(Integer)
    tags: Mapped[Optional[List[str]]] = mapped_column(JSON)

    performed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index('idx_audit_performed_at', 'performed_at', 'entry_seq'),
        Index('idx_audit_operation_type', 'operation_type'),
        Index('idx_audit_severity', 'severity_level'),
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
        {'extend_existing': True}
    )

    @property
    def is_error(self) -> bool:
        return self.severity_level in ('error', 'critical')

    def __repr__(self) -> str:
        return (
            f"<AuditTrailRecord(id={self.id!r}, type='{self.operation_type}', "
            f"entity='{self.entity_type}:{self.entity_id}')>"
        )


@event.listens_for(AuditTrailRecord, "before_update")
def _reject_update(mapper, connection, target):
    raise AuditTrailImmutableError(f"Audit entry {target.id} is append-only and cannot be updated")


@event.listens_for(AuditTrailRecord, "before_delete")
def _reject_delete(mapper, connection, target):
    raise AuditTrailImmutableError(f"Audit entry {target.id} is append-only and cannot be deleted")
