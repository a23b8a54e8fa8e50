"""
Audit Trail API Endpoints.

Read-only: the audit trail is append-only and has no write endpoints.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_backend.app.db.session import get_db
from fleet_backend.app.core.guards import require_role, ANY_ROLE
from fleet_backend.app.models.trip_enums import AuditSeverity
from fleet_backend.app.schemas.audit import AuditEntryResponse, AuditSearchResponse, AuditSummaryRow
from fleet_backend.app.services.audit_trail import (
    audit_summary,
    get_entity_audit_trail,
    search_audit_trail,
)

router = APIRouter(prefix="/audit-trail", tags=["Audit Trail"])


@router.get("/entities/{entity_type}/{entity_id}", response_model=List[AuditEntryResponse])
async def entity_audit_trail(
    entity_type: str = Path(..., description="Entity type, e.g. trip or vehicle"),
    entity_id: int = Path(..., description="Entity ID"),
    limit: int = Query(50, ge=1, le=500),
    current_user: dict = Depends(require_role(ANY_ROLE)),
    db: AsyncSession = Depends(get_db)
):
    """Audit history of one entity, most recent first."""
    return await get_entity_audit_trail(
        db, entity_type, entity_id, organization_id=current_user["organization_id"], limit=limit
    )


@router.get("/search", response_model=AuditSearchResponse)
async def search_entries(
    operation_type: Optional[str] = Query(None),
    severity: Optional[AuditSeverity] = Query(None),
    entity_type: Optional[str] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    q: Optional[str] = Query(None, description="Free-text search"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(require_role(ANY_ROLE)),
    db: AsyncSession = Depends(get_db)
):
    entries, total = await search_audit_trail(
        db,
        organization_id=current_user["organization_id"],
        operation_type=operation_type,
        severity=severity,
        entity_type=entity_type,
        date_from=date_from,
        date_to=date_to,
        search_text=q,
        limit=limit,
        offset=offset,
    )
    return AuditSearchResponse(
        entries=[AuditEntryResponse.model_validate(e) for e in entries],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/summary", response_model=List[AuditSummaryRow])
async def summary(
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    current_user: dict = Depends(require_role(ANY_ROLE)),
    db: AsyncSession = Depends(get_db)
):
    """Daily entry counts per operation type and severity."""
    return await audit_summary(
        db, organization_id=current_user["organization_id"], date_from=date_from, date_to=date_to
    )
