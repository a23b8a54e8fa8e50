"""
Audit trail service for trip integrity decisions.

Entries are appended inside the caller's transaction (``record_entry``
only flushes) so a decision record commits or rolls back together with the
change it describes. No update or delete function exists.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, desc, func, or_, String, cast
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_backend.app.core.clock import as_utc
from fleet_backend.app.models.audit_trail import AuditTrailEntry
from fleet_backend.app.models.trip_enums import AuditSeverity
from fleet_backend.app.services.findings import Finding, worst_severity


class AuditOperation:
    """Standardized audit operation types."""
    TRIP_INSERT = "trip_insert"
    TRIP_UPDATE = "trip_update"
    TRIP_DELETE = "trip_delete"
    TRIP_RESTORE = "trip_restore"
    TRIP_REJECTED = "trip_rejected"
    DATA_CORRECTION = "data_correction"
    CHAIN_REBUILD = "mileage_chain_rebuild"
    BASELINE_UPDATE = "baseline_update"


class AuditCategory:
    DATA_VALIDATION = "data_validation"
    DATA_CORRECTION = "data_correction"
    DATA_MAINTENANCE = "data_maintenance"


async def record_entry(
    db: AsyncSession,
    operation_type: str,
    operation_category: str,
    entity_type: str,
    entity_id: Optional[int],
    action_performed: str,
    organization_id: Optional[int] = None,
    entity_description: Optional[str] = None,
    performed_by: Optional[int] = None,
    user_role: Optional[str] = None,
    severity: AuditSeverity = AuditSeverity.INFO,
    findings: Sequence[Finding] = (),
    changes_made: Optional[Dict[str, Any]] = None,
    reason: Optional[str] = None,
    tags: Optional[List[str]] = None,
) -> AuditTrailEntry:
    """
    Append one audit entry to the current transaction.

    Args:
        db: Database session (the caller commits)
        operation_type: One of the AuditOperation constants
        severity: Worst severity of the decision
        findings: Individual findings, stored with their rendered messages

    Returns:
        Flushed AuditTrailEntry instance
    """
    entry = AuditTrailEntry(
        organization_id=organization_id,
        operation_type=operation_type,
        operation_category=operation_category,
        entity_type=entity_type,
        entity_id=entity_id,
        entity_description=entity_description,
        action_performed=action_performed,
        performed_by=performed_by,
        user_role=user_role,
        severity=severity,
        validation_results=[f.to_dict() for f in findings] or None,
        changes_made=changes_made,
        reason=reason,
        tags=tags,
    )
    db.add(entry)
    await db.flush()
    return entry


async def record_decision(
    db: AsyncSession,
    operation_type: str,
    entity_id: Optional[int],
    findings: Sequence[Finding],
    action_performed: str,
    **kwargs,
) -> AuditTrailEntry:
    """Record a validation decision; severity is the worst finding's."""
    return await record_entry(
        db,
        operation_type=operation_type,
        operation_category=kwargs.pop("operation_category", AuditCategory.DATA_VALIDATION),
        entity_type=kwargs.pop("entity_type", "trip"),
        entity_id=entity_id,
        action_performed=action_performed,
        severity=worst_severity(findings),
        findings=findings,
        **kwargs,
    )


async def get_entity_audit_trail(
    db: AsyncSession,
    entity_type: str,
    entity_id: int,
    organization_id: Optional[int] = None,
    limit: int = 50,
) -> List[AuditTrailEntry]:
    """
    Audit history of one entity, most recent first.
    """
    query = select(AuditTrailEntry).where(
        AuditTrailEntry.entity_type == entity_type,
        AuditTrailEntry.entity_id == entity_id,
    )
    if organization_id is not None:
        query = query.where(AuditTrailEntry.organization_id == organization_id)

    query = query.order_by(desc(AuditTrailEntry.performed_at), desc(AuditTrailEntry.id)).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


def _search_conditions(
    organization_id: Optional[int],
    operation_type: Optional[str],
    severity: Optional[AuditSeverity],
    entity_type: Optional[str],
    date_from: Optional[datetime],
    date_to: Optional[datetime],
    search_text: Optional[str],
):
    conditions = []
    if organization_id is not None:
        conditions.append(AuditTrailEntry.organization_id == organization_id)
    if operation_type:
        conditions.append(AuditTrailEntry.operation_type == operation_type)
    if severity:
        conditions.append(AuditTrailEntry.severity == severity)
    if entity_type:
        conditions.append(AuditTrailEntry.entity_type == entity_type)
    if date_from:
        conditions.append(AuditTrailEntry.performed_at >= as_utc(date_from))
    if date_to:
        conditions.append(AuditTrailEntry.performed_at <= as_utc(date_to))
    if search_text:
        pattern = f"%{search_text}%"
        conditions.append(or_(
            AuditTrailEntry.action_performed.ilike(pattern),
            AuditTrailEntry.entity_description.ilike(pattern),
            AuditTrailEntry.reason.ilike(pattern),
            cast(AuditTrailEntry.validation_results, String).ilike(pattern),
        ))
    return conditions


async def search_audit_trail(
    db: AsyncSession,
    organization_id: Optional[int] = None,
    operation_type: Optional[str] = None,
    severity: Optional[AuditSeverity] = None,
    entity_type: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    search_text: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[AuditTrailEntry], int]:
    """
    Filtered audit search with pagination.

    Returns:
        (entries newest first, total matching count)
    """
    conditions = _search_conditions(
        organization_id, operation_type, severity, entity_type, date_from, date_to, search_text
    )

    total = await db.scalar(select(func.count(AuditTrailEntry.id)).where(*conditions))

    query = (
        select(AuditTrailEntry)
        .where(*conditions)
        .order_by(desc(AuditTrailEntry.performed_at), desc(AuditTrailEntry.id))
        .limit(limit)
        .offset(offset)
    )
    result = await db.execute(query)
    return list(result.scalars().all()), total or 0


async def audit_summary(
    db: AsyncSession,
    organization_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """
    Daily rollup of entry counts per operation type and severity.
    """
    day = func.date(AuditTrailEntry.performed_at).label("day")
    conditions = _search_conditions(organization_id, None, None, None, date_from, date_to, None)

    query = (
        select(
            day,
            AuditTrailEntry.operation_type,
            AuditTrailEntry.severity,
            func.count(AuditTrailEntry.id).label("entry_count"),
            func.count(func.distinct(AuditTrailEntry.entity_id)).label("entity_count"),
        )
        .where(*conditions)
        .group_by(day, AuditTrailEntry.operation_type, AuditTrailEntry.severity)
        .order_by(day.desc(), AuditTrailEntry.operation_type, AuditTrailEntry.severity)
    )
    result = await db.execute(query)
    return [
        {
            "date": str(row.day),
            "operation_type": row.operation_type,
            "severity": row.severity.value if isinstance(row.severity, AuditSeverity) else row.severity,
            "entry_count": row.entry_count,
            "entity_count": row.entity_count,
        }
        for row in result.all()
    ]
