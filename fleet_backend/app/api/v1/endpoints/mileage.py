"""
Mileage Chain and Fuel Baseline API Endpoints.
"""

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_backend.app.db.session import get_db
from fleet_backend.app.core.exceptions import ResourceNotFoundError
from fleet_backend.app.core.guards import require_role, ANY_ROLE, MAINTAINERS
from fleet_backend.app.domain.trips.write_orchestrator import TripWriteOrchestrator
from fleet_backend.app.api.v1.endpoints.trips import write_context
from fleet_backend.app.schemas.integrity import FuelBaselineResponse, MileageChainResponse
from fleet_backend.app.services.fuel_baseline import get_fuel_baseline, recompute_fuel_baseline
from fleet_backend.app.services.mileage_chain import get_mileage_chain
from fleet_backend.app.services.trip_repository import get_vehicle

router = APIRouter(prefix="/vehicles", tags=["Mileage"])


@router.get("/{vehicle_id}/mileage-chain", response_model=MileageChainResponse)
async def read_mileage_chain(
    vehicle_id: int = Path(..., description="Vehicle ID"),
    current_user: dict = Depends(require_role(ANY_ROLE)),
    db: AsyncSession = Depends(get_db)
):
    """Tank-to-tank segments of a vehicle (served from cache when warm)."""
    organization_id = current_user["organization_id"]
    if await get_vehicle(db, organization_id, vehicle_id) is None:
        raise ResourceNotFoundError("Vehicle", vehicle_id)
    segments = await get_mileage_chain(db, organization_id, vehicle_id)
    return MileageChainResponse(vehicle_id=vehicle_id, segments=segments)


@router.post("/{vehicle_id}/mileage-chain/rebuild", response_model=MileageChainResponse)
async def rebuild_mileage_chain(
    vehicle_id: int = Path(..., description="Vehicle ID"),
    current_user: dict = Depends(require_role(MAINTAINERS)),
    db: AsyncSession = Depends(get_db)
):
    """
    Recompute every segment of a vehicle and repair stored efficiencies.

    Idempotent; the rebuild is recorded in the audit trail.
    """
    segments = await TripWriteOrchestrator.rebuild_mileage_chain(db, write_context(current_user), vehicle_id)
    return MileageChainResponse(vehicle_id=vehicle_id, segments=[s.to_dict() for s in segments])


@router.get("/{vehicle_id}/fuel-baseline", response_model=FuelBaselineResponse)
async def read_fuel_baseline(
    vehicle_id: int = Path(..., description="Vehicle ID"),
    current_user: dict = Depends(require_role(ANY_ROLE)),
    db: AsyncSession = Depends(get_db)
):
    baseline = await get_fuel_baseline(db, current_user["organization_id"], vehicle_id)
    if baseline is None:
        raise ResourceNotFoundError("Fuel baseline for vehicle", vehicle_id)
    return baseline


@router.post("/{vehicle_id}/fuel-baseline/recompute", response_model=FuelBaselineResponse)
async def recompute_baseline(
    vehicle_id: int = Path(..., description="Vehicle ID"),
    current_user: dict = Depends(require_role(MAINTAINERS)),
    db: AsyncSession = Depends(get_db)
):
    """Recompute the vehicle's efficiency baseline from its mileage segments."""
    baseline = await recompute_fuel_baseline(
        db,
        current_user["organization_id"],
        vehicle_id,
        performed_by=current_user.get("user_id"),
        user_role=current_user.get("role"),
    )
    await db.commit()
    await db.refresh(baseline)
    return baseline
