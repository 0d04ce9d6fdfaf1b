"""Create audit_trail table

Revision ID: 002_audit_trail
Revises: 001_fleet_tables
Create Date: 2024-03-01

Append-only record of integrity operations. entry_seq is the insertion
sequence used to order entries that share a performed_at timestamp.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '002_audit_trail'
down_revision: Union[str, Sequence[str], None] = '001_fleet_tables'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'audit_trail',
        sa.Column('entry_seq', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('id', sa.String(36), nullable=False, unique=True),
        sa.Column(
            'operation_type',
            sa.Enum(
                'data_correction', 'validation_check', 'edge_case_detection',
                'baseline_management', 'sequence_monitoring', 'return_trip_validation',
                name='audit_operation_type_enum'
            ),
            nullable=False
        ),
        sa.Column(
            'operation_category',
            sa.Enum(
                'trip_data', 'vehicle_data', 'driver_data', 'fuel_data', 'system_maintenance',
                name='audit_operation_category_enum'
            ),
            nullable=False
        ),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.String(64), nullable=False),
        sa.Column('entity_description', sa.Text(), nullable=True),
        sa.Column('action_performed', sa.Text(), nullable=False),
        sa.Column(
            'performer_name',
            sa.String(255),
            nullable=True,
            comment="NULL means the operation was performed by the system"
        ),
        sa.Column(
            'severity_level',
            sa.Enum('critical', 'error', 'warning', 'info', name='audit_severity_enum'),
            nullable=False,
            server_default='info'
        ),
        sa.Column('confidence_score', sa.Float(), nullable=True),
        sa.Column('data_quality_score', sa.Float(), nullable=True),
        sa.Column('business_context', sa.Text(), nullable=True),
        sa.Column('changes_made', sa.JSON(), nullable=True),
        sa.Column('validation_results', sa.JSON(), nullable=True),
        sa.Column('operation_duration_ms', sa.Integer(), nullable=True),
        sa.Column('tags', sa.JSON(), nullable=True),
        sa.Column('performed_at', sa.DateTime(), nullable=False),
        comment="Append-only audit trail of data integrity operations"
    )

    op.create_index('idx_audit_performed_at', 'audit_trail', ['performed_at', 'entry_seq'])
    op.create_index('idx_audit_operation_type', 'audit_trail', ['operation_type'])
    op.create_index('idx_audit_severity', 'audit_trail', ['severity_level'])
    op.create_index('idx_audit_entity', 'audit_trail', ['entity_type', 'entity_id'])


def downgrade() -> None:
    op.drop_table('audit_trail')
