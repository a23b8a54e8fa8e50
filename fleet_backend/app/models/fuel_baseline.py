"""
Fuel efficiency baseline database model.

One row per vehicle, recomputed out of band from the vehicle's tank-to-tank
efficiency history.
"""

from sqlalchemy import Column, Integer, Float, DateTime, ForeignKey, UniqueConstraint
from fleet_backend.app.db.session import Base
from fleet_backend.app.core.clock import utc_now


class FuelEfficiencyBaseline(Base):
    __tablename__ = "fuel_efficiency_baselines"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    organization_id = Column(Integer, nullable=False, index=True)
    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), nullable=False, index=True)

    baseline_kmpl = Column(Float, nullable=False)
    std_dev_kmpl = Column(Float, nullable=False, default=0)
    sample_size = Column(Integer, nullable=False)
    confidence_score = Column(Float, nullable=False)  # 0-100

    # Tolerance band used for deviation warnings
    tolerance_lower_kmpl = Column(Float, nullable=False)
    tolerance_upper_kmpl = Column(Float, nullable=False)

    data_start_date = Column(DateTime(timezone=True), nullable=True)
    data_end_date = Column(DateTime(timezone=True), nullable=True)
    calculated_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint('organization_id', 'vehicle_id', name='uq_fuel_baseline_vehicle'),
    )

    def __repr__(self):
        return f"<FuelEfficiencyBaseline(vehicle_id={self.vehicle_id}, kmpl={self.baseline_kmpl})>"
