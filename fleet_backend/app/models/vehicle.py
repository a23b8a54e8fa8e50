"""
Vehicle database model.

Each vehicle owns an ordered, tenant-scoped sequence of trips over which the
odometer and fuel chain invariants are defined.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from fleet_backend.app.db.session import Base


class Vehicle(Base):
    """Vehicle registered by an organization."""
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Tenant scope
    organization_id = Column(Integer, nullable=False, index=True)

    # Vehicle identification
    registration_number = Column(String(50), nullable=False)
    vehicle_type = Column(String(100), nullable=True)  # e.g., "Truck", "Van"
    fuel_type = Column(String(50), nullable=True)  # e.g., "Diesel", "Petrol"

    # Status
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('organization_id', 'registration_number', name='uq_vehicles_org_registration'),
    )

    def __repr__(self):
        return f"<Vehicle(id={self.id}, registration='{self.registration_number}', org={self.organization_id})>"
