"""
Driver database model.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func
from fleet_backend.app.db.session import Base


class Driver(Base):
    """
    Driver model.

    Drivers are optionally assigned to trips and are subject to the same
    temporal non-overlap rule as vehicles, scoped independently.
    """
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Tenant scope
    organization_id = Column(Integer, nullable=False, index=True)

    name = Column(String(200), nullable=False)
    license_number = Column(String(100), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Driver(id={self.id}, name='{self.name}', org={self.organization_id})>"
