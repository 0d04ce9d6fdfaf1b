"""
SQLAlchemy ORM Models: Fleet
Vehicles, drivers and trips as stored by the fleet record store.

The integrity core only reads these tables; corrections are applied by the
fleet application's own write path.
"""

from sqlalchemy import String, Boolean, Float, ForeignKey, DateTime, Enum, Index, Text, JSON, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from models.base import Base
from datetime import datetime
from typing import List, Optional


class Vehicle(Base):
    __tablename__ = "vehicles"
    __table_args__ = {'extend_existing': True}

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    registration_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    make: Mapped[Optional[str]] = mapped_column(String(100))
    model: Mapped[Optional[str]] = mapped_column(String(100))
    status: Mapped[str] = mapped_column(
        Enum('active', 'inactive', 'maintenance', 'archived', name='vehicle_status_enum'),
        nullable=False,
        default='active'
    )
    current_odometer: Mapped[Optional[float]] = mapped_column(Float)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now()
    )

    trips: Mapped[List["Trip"]] = relationship(back_populates="vehicle")

    @property
    def is_active(self) -> bool:
        return self.status == 'active'

    def __repr__(self) -> str:
        return f"<Vehicle(id={self.id!r}, registration={self.registration_number!r})>"


class Driver(Base):
    __tablename__ = "drivers"
    __table_args__ = {'extend_existing': True}

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    license_number: Mapped[Optional[str]] = mapped_column(String(50))
    status: Mapped[str] = mapped_column(
        Enum('active', 'inactive', 'onLeave', 'suspended', name='driver_status_enum'),
        nullable=False,
        default='active'
    )

    @property
    def is_active(self) -> bool:
        return self.status == 'active'

    def __repr__(self) -> str:
        return f"<Driver(id={self.id!r}, name={self.name!r})>"


class Trip(Base):
    """
    One vehicle movement with odometer, fuel and expense data.

    end_km >= start_km is expected but not enforced; flagging violations is
    the validator's job.
    """
    __tablename__ = "trips"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    vehicle_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("vehicles.id", ondelete="CASCADE"),
        nullable=True
    )
    driver_id: Mapped[Optional[str]] = mapped_column(ForeignKey("drivers.id"), nullable=True)
    trip_serial_number: Mapped[Optional[str]] = mapped_column(String(50))

    trip_start_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    trip_end_date: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Odometer
    start_km: Mapped[Optional[float]] = mapped_column(Float)
    end_km: Mapped[Optional[float]] = mapped_column(Float)
    gross_weight: Mapped[Optional[float]] = mapped_column(Float)
    material_quantity: Mapped[Optional[float]] = mapped_column(Float)

    # Fuel
    refueling_done: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    fuel_quantity: Mapped[Optional[float]] = mapped_column(Float)
    fuel_cost: Mapped[Optional[float]] = mapped_column(Float, comment="Price per litre")
    total_fuel_cost: Mapped[Optional[float]] = mapped_column(Float)
    calculated_kmpl: Mapped[Optional[float]] = mapped_column(Float)

    # Expenses and billing
    unloading_expense: Mapped[Optional[float]] = mapped_column(Float)
    driver_expense: Mapped[Optional[float]] = mapped_column(Float)
    road_rto_expense: Mapped[Optional[float]] = mapped_column(Float)
    miscellaneous_expense: Mapped[Optional[float]] = mapped_column(Float)
    total_road_expenses: Mapped[Optional[float]] = mapped_column(Float)
    advance_amount: Mapped[Optional[float]] = mapped_column(Float)
    freight_rate: Mapped[Optional[float]] = mapped_column(Float)
    income_amount: Mapped[Optional[float]] = mapped_column(Float)

    # Route
    route_deviation: Mapped[Optional[float]] = mapped_column(Float, comment="Percent over planned distance")
    destinations: Mapped[Optional[list]] = mapped_column(JSON)
    is_return_trip: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    remarks: Mapped[Optional[str]] = mapped_column(Text)

    provenance: Mapped[str] = mapped_column(
        Enum('recorded', 'imported', 'estimated', 'placeholder', name='trip_provenance_enum'),
        nullable=False,
        default='recorded',
        comment="Where the values came from, set at ingestion"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now()
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    vehicle: Mapped[Optional["Vehicle"]] = relationship(back_populates="trips")

    __table_args__ = (
        Index('idx_trips_vehicle_start', 'vehicle_id', 'trip_start_date'),
        Index('idx_trips_driver', 'driver_id'),
        {'extend_existing': True}
    )

    def __repr__(self) -> str:
        return f"<Trip(id={self.id!r}, vehicle_id={self.vehicle_id!r}, serial={self.trip_serial_number!r})>"
