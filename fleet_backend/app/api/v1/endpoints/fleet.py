"""
Vehicle and Driver Registry API Endpoints.

Trips reference vehicles and drivers of the same organization only.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_backend.app.db.session import get_db
from fleet_backend.app.core.guards import require_role, ANY_ROLE, MAINTAINERS
from fleet_backend.app.models.driver import Driver
from fleet_backend.app.models.vehicle import Vehicle
from fleet_backend.app.schemas.fleet import (
    DriverCreate,
    DriverListResponse,
    DriverResponse,
    VehicleCreate,
    VehicleListResponse,
    VehicleResponse,
)

router = APIRouter(tags=["Fleet Registry"])


@router.post("/vehicles", response_model=VehicleResponse, status_code=status.HTTP_201_CREATED)
async def create_vehicle(
    vehicle_data: VehicleCreate,
    current_user: dict = Depends(require_role(MAINTAINERS)),
    db: AsyncSession = Depends(get_db)
):
    """
    Register a vehicle in the caller's organization.

    Registration numbers are unique per organization.
    """
    organization_id = current_user["organization_id"]
    existing = await db.execute(
        select(Vehicle.id).where(
            Vehicle.organization_id == organization_id,
            Vehicle.registration_number == vehicle_data.registration_number,
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Vehicle with registration number {vehicle_data.registration_number} already exists"
        )

    vehicle = Vehicle(organization_id=organization_id, is_active=True, **vehicle_data.model_dump())
    db.add(vehicle)
    await db.commit()
    await db.refresh(vehicle)
    return vehicle


@router.get("/vehicles", response_model=VehicleListResponse)
async def list_vehicles(
    active_only: bool = Query(True),
    current_user: dict = Depends(require_role(ANY_ROLE)),
    db: AsyncSession = Depends(get_db)
):
    conditions = [Vehicle.organization_id == current_user["organization_id"]]
    if active_only:
        conditions.append(Vehicle.is_active.is_(True))

    total = await db.scalar(select(func.count(Vehicle.id)).where(*conditions))
    result = await db.execute(select(Vehicle).where(*conditions).order_by(Vehicle.id))
    vehicles = [VehicleResponse.model_validate(v) for v in result.scalars().all()]
    return VehicleListResponse(vehicles=vehicles, total=total or 0)


@router.post("/drivers", response_model=DriverResponse, status_code=status.HTTP_201_CREATED)
async def create_driver(
    driver_data: DriverCreate,
    current_user: dict = Depends(require_role(MAINTAINERS)),
    db: AsyncSession = Depends(get_db)
):
    """Register a driver in the caller's organization."""
    driver = Driver(organization_id=current_user["organization_id"], is_active=True, **driver_data.model_dump())
    db.add(driver)
    await db.commit()
    await db.refresh(driver)
    return driver


@router.get("/drivers", response_model=DriverListResponse)
async def list_drivers(
    active_only: bool = Query(True),
    current_user: dict = Depends(require_role(ANY_ROLE)),
    db: AsyncSession = Depends(get_db)
):
    conditions = [Driver.organization_id == current_user["organization_id"]]
    if active_only:
        conditions.append(Driver.is_active.is_(True))

    total = await db.scalar(select(func.count(Driver.id)).where(*conditions))
    result = await db.execute(select(Driver).where(*conditions).order_by(Driver.id))
    drivers = [DriverResponse.model_validate(d) for d in result.scalars().all()]
    return DriverListResponse(drivers=drivers, total=total or 0)
