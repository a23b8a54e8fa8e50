"""
Integrity Sweep API Endpoints.

Retroactive, read-only reports over stored trips.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_backend.app.db.session import get_db
from fleet_backend.app.core.exceptions import ResourceNotFoundError
from fleet_backend.app.core.guards import require_role, ANY_ROLE
from fleet_backend.app.schemas.integrity import (
    AnomalyBucketResponse,
    AnomalyListResponse,
    ChainBreakListResponse,
    ContinuitySummaryResponse,
    OdometerGapResponse,
    OverlapListResponse,
)
from fleet_backend.app.services.mileage_chain import detect_chain_breaks
from fleet_backend.app.services.odometer_continuity import find_odometer_gaps
from fleet_backend.app.services.overlap_detection import find_overlaps
from fleet_backend.app.services.trip_repository import get_vehicle
from fleet_backend.app.services.value_range import find_anomalies

router = APIRouter(prefix="/integrity", tags=["Integrity"])


async def _require_vehicle(db: AsyncSession, organization_id: int, vehicle_id: int) -> None:
    if await get_vehicle(db, organization_id, vehicle_id) is None:
        raise ResourceNotFoundError("Vehicle", vehicle_id)


@router.get("/overlaps", response_model=OverlapListResponse)
async def list_overlaps(
    vehicle_id: Optional[int] = Query(None),
    driver_id: Optional[int] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(require_role(ANY_ROLE)),
    db: AsyncSession = Depends(get_db)
):
    """Overlapping trip pairs, most severe first."""
    overlaps, total = await find_overlaps(
        db,
        current_user["organization_id"],
        vehicle_id=vehicle_id,
        driver_id=driver_id,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return OverlapListResponse(
        overlaps=[o.to_dict() for o in overlaps], total=total, limit=limit, offset=offset
    )


@router.get("/vehicles/{vehicle_id}/odometer-gaps", response_model=OdometerGapResponse)
async def list_odometer_gaps(
    vehicle_id: int = Path(..., description="Vehicle ID"),
    current_user: dict = Depends(require_role(ANY_ROLE)),
    db: AsyncSession = Depends(get_db)
):
    """Negative and large odometer gaps with a continuity score."""
    await _require_vehicle(db, current_user["organization_id"], vehicle_id)
    gaps, summary = await find_odometer_gaps(db, current_user["organization_id"], vehicle_id)
    return OdometerGapResponse(
        vehicle_id=vehicle_id,
        gaps=[g.to_dict() for g in gaps],
        summary=ContinuitySummaryResponse.model_validate(summary),
    )


@router.get("/anomalies", response_model=AnomalyListResponse)
async def list_anomalies(
    vehicle_id: Optional[int] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(require_role(ANY_ROLE)),
    db: AsyncSession = Depends(get_db)
):
    """Value range findings bucketed by code."""
    buckets, total = await find_anomalies(
        db,
        current_user["organization_id"],
        vehicle_id=vehicle_id,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return AnomalyListResponse(
        anomalies=[AnomalyBucketResponse.model_validate(b) for b in buckets],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/vehicles/{vehicle_id}/chain-breaks", response_model=ChainBreakListResponse)
async def list_chain_breaks(
    vehicle_id: int = Path(..., description="Vehicle ID"),
    current_user: dict = Depends(require_role(ANY_ROLE)),
    db: AsyncSession = Depends(get_db)
):
    await _require_vehicle(db, current_user["organization_id"], vehicle_id)
    breaks = await detect_chain_breaks(db, current_user["organization_id"], vehicle_id)
    return ChainBreakListResponse(
        vehicle_id=vehicle_id, breaks=[b.to_dict() for b in breaks], total=len(breaks)
    )
