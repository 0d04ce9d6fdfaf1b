"""
Audit Trail CSV Export
======================

Fixed-header CSV rendering of audit entries for compliance downloads.
Every cell is double-quoted and embedded quotes are doubled.
"""

import csv
import io
from typing import Iterable, List

from integrity.types import AuditTrailEntry


CSV_HEADER: List[str] = [
    "Date",
    "Operation Type",
    "Entity Type",
    "Entity ID",
    "Action",
    "Performed By",
    "Severity",
    "Confidence Score",
    "Business Context",
]


def audit_entry_row(entry: AuditTrailEntry) -> List[str]:
    return [
        entry.performed_at.isoformat() if entry.performed_at else "",
        entry.operation_type.value,
        entry.entity_type,
        entry.entity_id,
        entry.action_performed,
        entry.performed_by,
        entry.severity_level.value,
        "" if entry.confidence_score is None else f"{entry.confidence_score:g}",
        entry.business_context or "",
    ]


def export_audit_csv(entries: Iterable[AuditTrailEntry]) -> str:
    """
    Render entries as CSV text (header row first, rows joined with '\\n').

    Args:
        entries: Audit entries, typically a search result page or
                 AuditTrailLogger.iter_all()

    Returns:
        CSV document as a string
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for entry in entries:
        writer.writerow(audit_entry_row(entry))
    # No terminator after the last row
    return buffer.getvalue()[:-1]
