"""
Trip database model.

The central append-heavy entity validated by the trip integrity engine.
Deleted trips keep their row (``deleted_at`` set) so historical references
and the mileage chain stay intact.
"""

from sqlalchemy import (
    Column, Integer, String, Float, Boolean, DateTime, Text, ForeignKey, Enum, Index, UniqueConstraint
)
from sqlalchemy.sql import func
from fleet_backend.app.db.session import Base
from fleet_backend.app.models.trip_enums import TripType


class Trip(Base):
    """
    Trip model.

    Distance is ``end_km - start_km``; the trip window is the half-open
    interval ``[trip_start_date, trip_end_date)``.
    """
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Tenant scope and identity
    organization_id = Column(Integer, nullable=False, index=True)
    trip_serial_number = Column(String(50), nullable=False)

    # Associations
    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey('drivers.id'), nullable=True, index=True)

    # Classification
    trip_type = Column(
        Enum(TripType, values_callable=lambda enum_cls: [member.value for member in enum_cls]),
        default=TripType.NORMAL,
        nullable=False,
    )
    notes = Column(Text, nullable=True)

    # Temporal
    trip_start_date = Column(DateTime(timezone=True), nullable=False)
    trip_end_date = Column(DateTime(timezone=True), nullable=False)

    # Odometer
    start_km = Column(Integer, nullable=False)
    end_km = Column(Integer, nullable=False)

    # Fuel
    refueling_done = Column(Boolean, default=False, nullable=False)
    fuel_quantity = Column(Float, nullable=True)
    fuel_rate_per_liter = Column(Float, nullable=True)
    fuel_efficiency_kmpl = Column(Float, nullable=True)  # Derived by the mileage chain

    # Expenses
    fuel_expense = Column(Float, default=0, nullable=False)
    driver_expense = Column(Float, default=0, nullable=False)
    toll_expense = Column(Float, default=0, nullable=False)
    other_expense = Column(Float, default=0, nullable=False)
    breakdown_expense = Column(Float, default=0, nullable=False)
    miscellaneous_expense = Column(Float, default=0, nullable=False)

    # Audit
    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Soft delete
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)
    deleted_by = Column(Integer, nullable=True)
    deletion_reason = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint('organization_id', 'trip_serial_number', name='uq_trips_org_serial'),
        Index('ix_trips_vehicle_start', 'organization_id', 'vehicle_id', 'trip_start_date'),
        Index('ix_trips_driver_start', 'organization_id', 'driver_id', 'trip_start_date'),
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self):
        return f"<Trip(id={self.id}, serial='{self.trip_serial_number}', vehicle_id={self.vehicle_id})>"
