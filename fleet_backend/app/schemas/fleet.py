"""
Vehicle and driver registry schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional


class VehicleCreate(BaseModel):
    """Schema for registering a vehicle."""
    registration_number: str = Field(..., min_length=1, max_length=50, description="Registration / plate number")
    vehicle_type: Optional[str] = Field(None, max_length=100)
    fuel_type: Optional[str] = Field(None, max_length=50)


class VehicleResponse(BaseModel):
    id: int
    organization_id: int
    registration_number: str
    vehicle_type: Optional[str]
    fuel_type: Optional[str]
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class DriverCreate(BaseModel):
    """Schema for registering a driver."""
    name: str = Field(..., min_length=1, max_length=200)
    license_number: Optional[str] = Field(None, max_length=100)


class DriverResponse(BaseModel):
    id: int
    organization_id: int
    name: str
    license_number: Optional[str]
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class VehicleListResponse(BaseModel):
    vehicles: List[VehicleResponse]
    total: int


class DriverListResponse(BaseModel):
    drivers: List[DriverResponse]
    total: int
