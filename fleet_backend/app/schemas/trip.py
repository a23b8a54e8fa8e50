"""
Trip schemas.

Request and response models for the trip write path.
"""

from pydantic import BaseModel, Field, model_validator
from typing import Any, Dict, List, Optional
from datetime import datetime

from fleet_backend.app.models.trip_enums import AuditSeverity, TripType, ValidationOutcome


class TripBase(BaseModel):
    vehicle_id: int
    driver_id: Optional[int] = None
    trip_type: TripType = TripType.NORMAL
    notes: Optional[str] = Field(None, max_length=2000)
    trip_start_date: datetime
    trip_end_date: datetime
    start_km: int
    end_km: int
    refueling_done: bool = False
    fuel_quantity: Optional[float] = None
    fuel_rate_per_liter: Optional[float] = None
    fuel_expense: float = 0
    driver_expense: float = 0
    toll_expense: float = 0
    other_expense: float = 0
    breakdown_expense: float = 0
    miscellaneous_expense: float = 0


class TripCreate(TripBase):
    """
    Schema for recording a new trip.

    Odometer, duration and range rules are enforced by the integrity engine
    (so they are audited); only shape is checked here.
    """
    trip_serial_number: str = Field(..., min_length=1, max_length=50)


class TripUpdate(BaseModel):
    """Schema for updating an existing trip (only the fields sent are changed)."""
    trip_serial_number: Optional[str] = Field(None, min_length=1, max_length=50)
    vehicle_id: Optional[int] = None
    driver_id: Optional[int] = None
    trip_type: Optional[TripType] = None
    notes: Optional[str] = Field(None, max_length=2000)
    trip_start_date: Optional[datetime] = None
    trip_end_date: Optional[datetime] = None
    start_km: Optional[int] = None
    end_km: Optional[int] = None
    refueling_done: Optional[bool] = None
    fuel_quantity: Optional[float] = None
    fuel_rate_per_liter: Optional[float] = None
    fuel_expense: Optional[float] = None
    driver_expense: Optional[float] = None
    toll_expense: Optional[float] = None
    other_expense: Optional[float] = None
    breakdown_expense: Optional[float] = None
    miscellaneous_expense: Optional[float] = None

    @model_validator(mode="after")
    def required_fields_not_cleared(self):
        required = (
            "trip_serial_number", "vehicle_id", "trip_type", "trip_start_date", "trip_end_date",
            "start_km", "end_km", "refueling_done",
        )
        cleared = [name for name in required if name in self.model_fields_set and getattr(self, name) is None]
        if cleared:
            raise ValueError(f"Fields cannot be null: {', '.join(cleared)}")
        return self


class TripResponse(BaseModel):
    """Schema for trip response."""
    id: int
    organization_id: int
    trip_serial_number: str
    vehicle_id: int
    driver_id: Optional[int]
    trip_type: TripType
    notes: Optional[str]
    trip_start_date: datetime
    trip_end_date: datetime
    start_km: int
    end_km: int
    refueling_done: bool
    fuel_quantity: Optional[float]
    fuel_rate_per_liter: Optional[float]
    fuel_efficiency_kmpl: Optional[float]
    fuel_expense: float
    driver_expense: float
    toll_expense: float
    other_expense: float
    breakdown_expense: float
    miscellaneous_expense: float
    created_by: Optional[int]
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class FindingResponse(BaseModel):
    code: str
    severity: AuditSeverity
    message: str
    values: Dict[str, Any] = {}
    threshold: Optional[float] = None


class WriteResultResponse(BaseModel):
    """Outcome of an accepted trip write."""
    trip: Optional[TripResponse]
    outcome: ValidationOutcome
    severity: AuditSeverity
    findings: List[FindingResponse]
    warnings: List[FindingResponse]
    audit_entry_id: int
    chain_changes: List[Dict[str, Any]] = []


class AvailabilityRequest(BaseModel):
    window_start: datetime
    window_end: datetime
    vehicle_id: Optional[int] = None
    driver_id: Optional[int] = None
    exclude_trip_id: Optional[int] = None

    @model_validator(mode="after")
    def check_window(self):
        if self.vehicle_id is None and self.driver_id is None:
            raise ValueError("vehicle_id or driver_id is required")
        if self.window_end <= self.window_start:
            raise ValueError("window_end must be after window_start")
        return self


class AvailabilityResponse(BaseModel):
    available: bool
    conflict_count: int
    conflicts: List[Dict[str, Any]]


class CorrectionRequest(BaseModel):
    """Odometer correction of one trip, optionally cascaded to later trips."""
    new_end_km: int
    new_start_km: Optional[int] = None
    cascade: bool = True
    reason: Optional[str] = Field(None, max_length=1000)


class CorrectionApplyRequest(CorrectionRequest):
    reason: str = Field(..., min_length=1, max_length=1000)
