"""
Audit trail tests: append-only storage, entity history, search and rollups.
"""

import pytest
from sqlalchemy import delete, update

from fleet_backend.app.core.exceptions import AuditTrailImmutableError
from fleet_backend.app.models.audit_trail import AuditTrailEntry
from fleet_backend.app.models.trip_enums import AuditSeverity
from fleet_backend.app.services import findings as F
from fleet_backend.app.services.audit_trail import (
    AuditCategory,
    AuditOperation,
    audit_summary,
    get_entity_audit_trail,
    record_decision,
    record_entry,
    search_audit_trail,
)
from fleet_backend.tests.factories import ORG_ID, OTHER_ORG_ID


async def add_entry(db, entity_id=1, operation_type=AuditOperation.TRIP_INSERT, severity=AuditSeverity.INFO,
                    organization_id=ORG_ID, **kwargs):
    entry = await record_entry(
        db,
        operation_type=operation_type,
        operation_category=AuditCategory.DATA_VALIDATION,
        entity_type=kwargs.pop("entity_type", "trip"),
        entity_id=entity_id,
        action_performed=kwargs.pop("action_performed", f"Trip {entity_id} {operation_type}"),
        organization_id=organization_id,
        severity=severity,
        **kwargs,
    )
    await db.commit()
    return entry


@pytest.mark.asyncio
async def test_record_decision_uses_worst_severity(db_session):
    findings = [F.info("values_in_range"), F.warning("long_distance", 1500, distance_km=1600)]

    entry = await record_decision(db_session, AuditOperation.TRIP_INSERT, 5, findings, "Trip T-5 insert accepted")
    await db_session.commit()

    assert entry.severity == AuditSeverity.WARNING
    assert entry.entity_type == "trip"
    assert entry.operation_category == AuditCategory.DATA_VALIDATION
    assert [r["code"] for r in entry.validation_results] == ["values_in_range", "long_distance"]
    assert entry.validation_results[1]["message"].startswith("Long distance 1600 km")


@pytest.mark.asyncio
async def test_entry_cannot_be_updated(db_session):
    entry = await add_entry(db_session)

    entry.reason = "rewritten"
    with pytest.raises(AuditTrailImmutableError):
        await db_session.commit()
    await db_session.rollback()


@pytest.mark.asyncio
async def test_entry_cannot_be_deleted(db_session):
    entry = await add_entry(db_session)

    await db_session.delete(entry)
    with pytest.raises(AuditTrailImmutableError):
        await db_session.flush()
    await db_session.rollback()


@pytest.mark.asyncio
async def test_bulk_statements_are_refused(db_session):
    await add_entry(db_session)

    with pytest.raises(AuditTrailImmutableError):
        await db_session.execute(update(AuditTrailEntry).values(reason="rewritten"))
    with pytest.raises(AuditTrailImmutableError):
        await db_session.execute(delete(AuditTrailEntry))
    await db_session.rollback()

    entries, total = await search_audit_trail(db_session, organization_id=ORG_ID)
    assert total == 1
    assert entries[0].reason is None


@pytest.mark.asyncio
async def test_entity_trail_is_newest_first_and_scoped(db_session):
    await add_entry(db_session, entity_id=7, operation_type=AuditOperation.TRIP_INSERT)
    await add_entry(db_session, entity_id=7, operation_type=AuditOperation.TRIP_UPDATE)
    await add_entry(db_session, entity_id=8, operation_type=AuditOperation.TRIP_INSERT)
    await add_entry(db_session, entity_id=7, organization_id=OTHER_ORG_ID)

    trail = await get_entity_audit_trail(db_session, "trip", 7, organization_id=ORG_ID)

    assert [e.operation_type for e in trail] == [AuditOperation.TRIP_UPDATE, AuditOperation.TRIP_INSERT]


@pytest.mark.asyncio
async def test_search_filters(db_session):
    await add_entry(db_session, entity_id=1, severity=AuditSeverity.INFO)
    await add_entry(db_session, entity_id=2, severity=AuditSeverity.WARNING, reason="Long detour via NH48")
    await add_entry(
        db_session, entity_id=None, operation_type=AuditOperation.TRIP_REJECTED, severity=AuditSeverity.ERROR
    )
    await add_entry(db_session, entity_id=3, entity_type="vehicle", operation_type=AuditOperation.CHAIN_REBUILD)

    warnings, total = await search_audit_trail(db_session, organization_id=ORG_ID, severity=AuditSeverity.WARNING)
    assert total == 1
    assert warnings[0].entity_id == 2

    rejected, _ = await search_audit_trail(
        db_session, organization_id=ORG_ID, operation_type=AuditOperation.TRIP_REJECTED
    )
    assert rejected[0].severity == AuditSeverity.ERROR

    by_text, _ = await search_audit_trail(db_session, organization_id=ORG_ID, search_text="nh48")
    assert [e.entity_id for e in by_text] == [2]

    vehicles, _ = await search_audit_trail(db_session, organization_id=ORG_ID, entity_type="vehicle")
    assert [e.operation_type for e in vehicles] == [AuditOperation.CHAIN_REBUILD]


@pytest.mark.asyncio
async def test_search_paginates(db_session):
    for entity_id in range(1, 6):
        await add_entry(db_session, entity_id=entity_id)

    page, total = await search_audit_trail(db_session, organization_id=ORG_ID, limit=2, offset=2)

    assert total == 5
    assert [e.entity_id for e in page] == [3, 2]


@pytest.mark.asyncio
async def test_summary_counts_per_operation_and_severity(db_session):
    await add_entry(db_session, entity_id=1)
    await add_entry(db_session, entity_id=2)
    await add_entry(db_session, entity_id=2, operation_type=AuditOperation.TRIP_UPDATE, severity=AuditSeverity.WARNING)

    rows = await audit_summary(db_session, organization_id=ORG_ID)

    by_key = {(r["operation_type"], r["severity"]): r for r in rows}
    assert by_key[(AuditOperation.TRIP_INSERT, "info")]["entry_count"] == 2
    assert by_key[(AuditOperation.TRIP_INSERT, "info")]["entity_count"] == 2
    assert by_key[(AuditOperation.TRIP_UPDATE, "warning")]["entry_count"] == 1
    assert len({r["date"] for r in rows}) == 1
