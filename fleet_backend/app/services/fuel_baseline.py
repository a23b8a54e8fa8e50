"""
Per-vehicle fuel efficiency baseline.

Recomputed out of band from the vehicle's tank-to-tank segments. The
baseline mean is taken after trimming IQR outliers; confidence combines
sample size with consistency (1 - coefficient of variation).
"""

import logging
from typing import Optional

import numpy as np
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_backend.app.core.clock import utc_now
from fleet_backend.app.core.config import IntegrityThresholds, settings
from fleet_backend.app.core.exceptions import InsufficientDataError, ResourceNotFoundError
from fleet_backend.app.models.fuel_baseline import FuelEfficiencyBaseline
from fleet_backend.app.models.trip_enums import AuditSeverity
from fleet_backend.app.services.audit_trail import AuditCategory, AuditOperation, record_entry
from fleet_backend.app.services.mileage_chain import build_segments
from fleet_backend.app.services.trip_records import TripRecord
from fleet_backend.app.services.trip_repository import get_vehicle, vehicle_trip_models

logger = logging.getLogger("fleet_backend.integrity.baseline")


def compute_baseline_stats(samples, thresholds: Optional[IntegrityThresholds] = None) -> dict:
    """
    Baseline statistics for a list of kmpl samples.

    Raises:
        InsufficientDataError: fewer samples than ``baseline_min_samples``
    """
    t = thresholds or settings.integrity
    values = np.asarray([s for s in samples if s is not None], dtype=float)
    if values.size < t.baseline_min_samples:
        raise InsufficientDataError(
            f"At least {t.baseline_min_samples} efficiency samples are required, found {values.size}",
            details={"sample_size": int(values.size), "required": t.baseline_min_samples},
        )

    q1, q3 = np.percentile(values, [25, 75])
    iqr = q3 - q1
    trimmed = values[(values >= q1 - 1.5 * iqr) & (values <= q3 + 1.5 * iqr)]
    if trimmed.size < t.baseline_min_samples:
        trimmed = values

    mean = float(np.mean(trimmed))
    std = float(np.std(trimmed, ddof=1)) if trimmed.size > 1 else 0.0
    variation = std / mean if mean > 0 else 1.0
    size_factor = min(trimmed.size / (t.baseline_min_samples * 3), 1.0)
    confidence = round(100 * size_factor * max(0.0, 1 - variation), 1)
    tolerance = t.baseline_tolerance_percent / 100

    return {
        "baseline_kmpl": round(mean, 2),
        "std_dev_kmpl": round(std, 2),
        "sample_size": int(trimmed.size),
        "confidence_score": confidence,
        "tolerance_lower_kmpl": round(mean * (1 - tolerance), 2),
        "tolerance_upper_kmpl": round(mean * (1 + tolerance), 2),
    }


async def get_fuel_baseline(
    db: AsyncSession,
    organization_id: int,
    vehicle_id: int,
) -> Optional[FuelEfficiencyBaseline]:
    result = await db.execute(
        select(FuelEfficiencyBaseline).where(
            FuelEfficiencyBaseline.organization_id == organization_id,
            FuelEfficiencyBaseline.vehicle_id == vehicle_id,
        )
    )
    return result.scalar_one_or_none()


async def recompute_fuel_baseline(
    db: AsyncSession,
    organization_id: int,
    vehicle_id: int,
    performed_by: Optional[int] = None,
    user_role: Optional[str] = None,
    thresholds: Optional[IntegrityThresholds] = None,
) -> FuelEfficiencyBaseline:
    """
    Recompute and store the baseline of one vehicle (caller commits).
    """
    t = thresholds or settings.integrity
    if await get_vehicle(db, organization_id, vehicle_id) is None:
        raise ResourceNotFoundError("Vehicle", vehicle_id)

    trips = await vehicle_trip_models(db, organization_id, vehicle_id)
    segments = [
        s for s in build_segments(TripRecord.from_model(trip) for trip in trips)
        if s.kmpl is not None and t.min_efficiency_kmpl <= s.kmpl <= t.max_efficiency_kmpl
    ]
    stats = compute_baseline_stats([s.kmpl for s in segments], t)

    baseline = await get_fuel_baseline(db, organization_id, vehicle_id)
    previous = baseline.baseline_kmpl if baseline else None
    if baseline is None:
        baseline = FuelEfficiencyBaseline(organization_id=organization_id, vehicle_id=vehicle_id)
        db.add(baseline)

    for key, value in stats.items():
        setattr(baseline, key, value)
    baseline.data_start_date = segments[0].start_trip.trip_end_date
    baseline.data_end_date = segments[-1].end_trip.trip_end_date
    baseline.calculated_at = utc_now()
    await db.flush()

    await record_entry(
        db,
        operation_type=AuditOperation.BASELINE_UPDATE,
        operation_category=AuditCategory.DATA_MAINTENANCE,
        entity_type="vehicle",
        entity_id=vehicle_id,
        action_performed=f"Fuel efficiency baseline set to {stats['baseline_kmpl']} km/L",
        organization_id=organization_id,
        performed_by=performed_by,
        user_role=user_role,
        severity=AuditSeverity.INFO,
        changes_made={"previous_kmpl": previous, **stats},
    )
    logger.info(
        "Fuel baseline recomputed",
        extra={"organization_id": organization_id, "vehicle_id": vehicle_id, **stats},
    )
    return baseline
