"""
Fuel efficiency baseline tests.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from fleet_backend.app.core.exceptions import InsufficientDataError, ResourceNotFoundError
from fleet_backend.app.models.audit_trail import AuditTrailEntry
from fleet_backend.app.models.trip import Trip
from fleet_backend.app.services.audit_trail import AuditOperation
from fleet_backend.app.services.fuel_baseline import compute_baseline_stats, recompute_fuel_baseline
from fleet_backend.tests.factories import BASE_TIME, ORG_ID


def test_too_few_samples():
    with pytest.raises(InsufficientDataError) as exc_info:
        compute_baseline_stats([10.0] * 9)

    assert exc_info.value.details == {"sample_size": 9, "required": 10}


def test_none_samples_are_ignored():
    with pytest.raises(InsufficientDataError):
        compute_baseline_stats([10.0] * 9 + [None, None])


def test_uniform_samples():
    stats = compute_baseline_stats([10.0] * 10)

    assert stats["baseline_kmpl"] == 10.0
    assert stats["std_dev_kmpl"] == 0.0
    assert stats["tolerance_lower_kmpl"] == 8.5
    assert stats["tolerance_upper_kmpl"] == 11.5
    # Ten samples are a third of the full-confidence sample size
    assert stats["confidence_score"] == 33.3


def test_outliers_are_trimmed():
    samples = [9.0, 9.5, 10.0, 10.5, 11.0] * 3 + [45.0]

    stats = compute_baseline_stats(samples)

    assert stats["sample_size"] == 15
    assert stats["baseline_kmpl"] == 10.0


@pytest.mark.asyncio
async def test_recompute_from_mileage_segments(db_session, vehicle):
    # Eleven refuels, 100 km and 10 L apart: ten 10 km/L segments
    for i in range(11):
        start = BASE_TIME + timedelta(hours=i * 6)
        db_session.add(Trip(
            organization_id=ORG_ID,
            trip_serial_number=f"R{i}",
            vehicle_id=vehicle.id,
            trip_start_date=start,
            trip_end_date=start + timedelta(hours=2),
            start_km=1000 + i * 100 - 100,
            end_km=1000 + i * 100,
            refueling_done=True,
            fuel_quantity=10,
        ))
    await db_session.commit()

    baseline = await recompute_fuel_baseline(db_session, ORG_ID, vehicle.id, performed_by=1)
    await db_session.commit()

    assert baseline.baseline_kmpl == 10.0
    assert baseline.sample_size == 10
    assert baseline.tolerance_upper_kmpl == 11.5

    entries = (await db_session.execute(
        select(AuditTrailEntry).where(AuditTrailEntry.operation_type == AuditOperation.BASELINE_UPDATE)
    )).scalars().all()
    assert len(entries) == 1
    assert entries[0].entity_type == "vehicle"
    assert entries[0].changes_made["previous_kmpl"] is None


@pytest.mark.asyncio
async def test_recompute_unknown_vehicle(db_session):
    with pytest.raises(ResourceNotFoundError):
        await recompute_fuel_baseline(db_session, ORG_ID, 999)
