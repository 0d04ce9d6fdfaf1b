"""Create vehicles, drivers and trips tables

Revision ID: 001_fleet_tables
Revises:
Create Date: 2024-03-01

Mirrors the fleet record store the integrity checks read from. Local and test
databases use these tables directly; production points at the fleet
application's own schema.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_fleet_tables'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'vehicles',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('registration_number', sa.String(32), nullable=False, unique=True),
        sa.Column('make', sa.String(100), nullable=True),
        sa.Column('model', sa.String(100), nullable=True),
        sa.Column(
            'status',
            sa.Enum('active', 'inactive', 'maintenance', 'archived', name='vehicle_status_enum'),
            nullable=False,
            server_default='active'
        ),
        sa.Column('current_odometer', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'drivers',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('license_number', sa.String(50), nullable=True),
        sa.Column(
            'status',
            sa.Enum('active', 'inactive', 'onLeave', 'suspended', name='driver_status_enum'),
            nullable=False,
            server_default='active'
        ),
    )

    op.create_table(
        'trips',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column(
            'vehicle_id',
            sa.String(36),
            sa.ForeignKey('vehicles.id', ondelete='CASCADE'),
            nullable=True
        ),
        sa.Column('driver_id', sa.String(36), sa.ForeignKey('drivers.id'), nullable=True),
        sa.Column('trip_serial_number', sa.String(50), nullable=True),
        sa.Column('trip_start_date', sa.DateTime(), nullable=True),
        sa.Column('trip_end_date', sa.DateTime(), nullable=True),
        sa.Column('start_km', sa.Float(), nullable=True),
        sa.Column('end_km', sa.Float(), nullable=True),
        sa.Column('gross_weight', sa.Float(), nullable=True),
        sa.Column('material_quantity', sa.Float(), nullable=True),
        sa.Column('refueling_done', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('fuel_quantity', sa.Float(), nullable=True),
        sa.Column('fuel_cost', sa.Float(), nullable=True, comment="Price per litre"),
        sa.Column('total_fuel_cost', sa.Float(), nullable=True),
        sa.Column('calculated_kmpl', sa.Float(), nullable=True),
        sa.Column('unloading_expense', sa.Float(), nullable=True),
        sa.Column('driver_expense', sa.Float(), nullable=True),
        sa.Column('road_rto_expense', sa.Float(), nullable=True),
        sa.Column('miscellaneous_expense', sa.Float(), nullable=True),
        sa.Column('total_road_expenses', sa.Float(), nullable=True),
        sa.Column('advance_amount', sa.Float(), nullable=True),
        sa.Column('freight_rate', sa.Float(), nullable=True),
        sa.Column('income_amount', sa.Float(), nullable=True),
        sa.Column('route_deviation', sa.Float(), nullable=True, comment="Percent over planned distance"),
        sa.Column('destinations', sa.JSON(), nullable=True),
        sa.Column('is_return_trip', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('remarks', sa.Text(), nullable=True),
        sa.Column(
            'provenance',
            sa.Enum('recorded', 'imported', 'estimated', 'placeholder', name='trip_provenance_enum'),
            nullable=False,
            server_default='recorded',
            comment="Where the values came from, set at ingestion"
        ),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
    )

    op.create_index('idx_trips_vehicle_start', 'trips', ['vehicle_id', 'trip_start_date'])
    op.create_index('idx_trips_driver', 'trips', ['driver_id'])


def downgrade() -> None:
    op.drop_index('idx_trips_driver', table_name='trips')
    op.drop_index('idx_trips_vehicle_start', table_name='trips')
    op.drop_table('trips')
    op.drop_table('drivers')
    op.drop_table('vehicles')
