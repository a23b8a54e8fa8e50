"""
Trip Write API Endpoints.

Every trip insert, update, delete and restore goes through the integrity
engine; a rejection comes back as a typed error carrying its findings.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_backend.app.db.session import get_db
from fleet_backend.app.core.exceptions import ResourceNotFoundError
from fleet_backend.app.core.guards import require_role, ANY_ROLE, MAINTAINERS
from fleet_backend.app.domain.trips.write_orchestrator import (
    TripWriteOrchestrator,
    WriteContext,
    WriteResult,
)
from fleet_backend.app.models.trip_enums import WriteMode
from fleet_backend.app.schemas.integrity import CascadePreviewResponse, CorrectionResultResponse
from fleet_backend.app.schemas.trip import (
    AvailabilityRequest,
    AvailabilityResponse,
    CorrectionApplyRequest,
    CorrectionRequest,
    TripCreate,
    TripResponse,
    TripUpdate,
    WriteResultResponse,
)
from fleet_backend.app.services.mileage_chain import preview_cascade_impact
from fleet_backend.app.services.overlap_detection import check_availability
from fleet_backend.app.services.trip_repository import get_trip

router = APIRouter(prefix="/trips", tags=["Trips"])


def write_context(current_user: dict) -> WriteContext:
    return WriteContext(
        organization_id=current_user["organization_id"],
        user_id=current_user.get("user_id"),
        role=current_user.get("role"),
    )


def to_response(result: WriteResult, include_trip: bool = True) -> WriteResultResponse:
    return WriteResultResponse(
        trip=TripResponse.model_validate(result.trip) if include_trip else None,
        outcome=result.outcome,
        severity=result.severity,
        findings=[f.to_dict() for f in result.findings],
        warnings=[f.to_dict() for f in result.warnings],
        audit_entry_id=result.audit_entry.id,
        chain_changes=result.chain_changes,
    )


@router.post("", response_model=WriteResultResponse, status_code=status.HTTP_201_CREATED)
async def create_trip(
    trip_data: TripCreate,
    current_user: dict = Depends(require_role(ANY_ROLE)),
    db: AsyncSession = Depends(get_db)
):
    """
    Record a new trip.

    Accepted trips may still carry warnings or an edge-case classification;
    both are returned and recorded in the audit trail.
    """
    result = await TripWriteOrchestrator.validate_and_commit(
        db, write_context(current_user), WriteMode.INSERT, payload=trip_data.model_dump()
    )
    return to_response(result)


@router.post("/availability", response_model=AvailabilityResponse)
async def trip_availability(
    request: AvailabilityRequest,
    current_user: dict = Depends(require_role(ANY_ROLE)),
    db: AsyncSession = Depends(get_db)
):
    """Scheduling pre-check for a vehicle and/or driver; writes nothing."""
    return await check_availability(
        db,
        current_user["organization_id"],
        request.window_start,
        request.window_end,
        vehicle_id=request.vehicle_id,
        driver_id=request.driver_id,
        exclude_trip_id=request.exclude_trip_id,
    )


@router.get("/{trip_id}", response_model=TripResponse)
async def read_trip(
    trip_id: int = Path(..., description="Trip ID"),
    include_deleted: bool = Query(False),
    current_user: dict = Depends(require_role(ANY_ROLE)),
    db: AsyncSession = Depends(get_db)
):
    trip = await get_trip(db, current_user["organization_id"], trip_id, include_deleted=include_deleted)
    if trip is None:
        raise ResourceNotFoundError("Trip", trip_id)
    return trip


@router.put("/{trip_id}", response_model=WriteResultResponse)
async def update_trip(
    trip_data: TripUpdate,
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(require_role(ANY_ROLE)),
    db: AsyncSession = Depends(get_db)
):
    """Update the fields sent; the whole resulting trip is re-validated."""
    result = await TripWriteOrchestrator.validate_and_commit(
        db,
        write_context(current_user),
        WriteMode.UPDATE,
        payload=trip_data.model_dump(exclude_unset=True),
        trip_id=trip_id,
    )
    return to_response(result)


@router.delete("/{trip_id}", response_model=WriteResultResponse)
async def delete_trip(
    trip_id: int = Path(..., description="Trip ID"),
    hard_delete: bool = Query(False, description="Physically remove the trip"),
    reason: Optional[str] = Query(None, max_length=1000),
    current_user: dict = Depends(require_role(ANY_ROLE)),
    db: AsyncSession = Depends(get_db)
):
    """
    Soft-delete a trip (default) or remove it permanently.

    A refuel that later trips depend on can only be soft-deleted.
    """
    result = await TripWriteOrchestrator.validate_and_commit(
        db,
        write_context(current_user),
        WriteMode.DELETE,
        trip_id=trip_id,
        hard_delete=hard_delete,
        reason=reason,
    )
    return to_response(result, include_trip=not hard_delete)


@router.post("/{trip_id}/restore", response_model=WriteResultResponse)
async def restore_trip(
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(require_role(ANY_ROLE)),
    db: AsyncSession = Depends(get_db)
):
    """Restore a soft-deleted trip; it is re-validated as if newly written."""
    result = await TripWriteOrchestrator.validate_and_commit(
        db, write_context(current_user), WriteMode.RESTORE, trip_id=trip_id
    )
    return to_response(result)


@router.post("/{trip_id}/odometer-correction/preview", response_model=CascadePreviewResponse)
async def preview_odometer_correction(
    request: CorrectionRequest,
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(require_role(ANY_ROLE)),
    db: AsyncSession = Depends(get_db)
):
    """Trips and mileage segments an odometer correction would change."""
    return await preview_cascade_impact(
        db,
        current_user["organization_id"],
        trip_id,
        request.new_end_km,
        new_start_km=request.new_start_km,
        cascade=request.cascade,
    )


@router.post("/{trip_id}/odometer-correction", response_model=CorrectionResultResponse)
async def apply_odometer_correction(
    request: CorrectionApplyRequest,
    trip_id: int = Path(..., description="Trip ID"),
    current_user: dict = Depends(require_role(MAINTAINERS)),
    db: AsyncSession = Depends(get_db)
):
    """Apply an odometer correction (Admin / Fleet Manager only)."""
    return await TripWriteOrchestrator.apply_odometer_correction(
        db,
        write_context(current_user),
        trip_id,
        request.new_end_km,
        request.reason,
        new_start_km=request.new_start_km,
        cascade=request.cascade,
    )
