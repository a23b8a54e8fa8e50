"""
Value range and edge-case validation for trips.

``evaluate_trip_values`` is a pure function of one trip snapshot: it
classifies the trip into exactly one outcome (accepted, edge case, warning,
rejected) and returns every individual finding. Edge cases (maintenance,
test, refueling-only, long-haul) relax the soft checks but never the
absolute caps.

``find_anomalies`` is the read-only sweep that aggregates the same findings
across a vehicle or time window into buckets for data-quality dashboards.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from fleet_backend.app.core.config import IntegrityThresholds, settings
from fleet_backend.app.models.trip_enums import AuditSeverity, TripType, ValidationOutcome
from fleet_backend.app.services import findings as F
from fleet_backend.app.services.findings import Finding
from fleet_backend.app.services.trip_records import EXPENSE_FIELDS, TripRecord
from fleet_backend.app.services.trip_repository import trips_in_range

logger = logging.getLogger("fleet_backend.integrity.values")

# Findings that make a trip physically impossible rather than out of range
CORRECTNESS_CODES = frozenset({"negative_distance", "invalid_duration"})

LONG_HAUL_TYPES = (TripType.LONG_HAUL, TripType.INTERSTATE)
MAINTENANCE_TYPES = (TripType.MAINTENANCE, TripType.SERVICE)

LARGE_EXPENSE_LIMITS = (
    ("fuel_expense", "large_fuel_expense"),
    ("driver_expense", "large_driver_expense"),
    ("toll_expense", "large_toll_expense"),
)

RECOMMENDATIONS: Dict[str, str] = {
    "negative_distance": "Check odometer readings; end_km must not be below start_km",
    "invalid_duration": "Correct trip dates; the end must be after the start",
    "absolute_distance_exceeded": "Verify odometer readings or split the trip into multiple entries",
    "distance_ceiling_exceeded": "Mark as long-haul/interstate if legitimate, otherwise fix the odometer",
    "duration_ceiling_exceeded": "Verify trip dates or split the trip into multiple entries",
    "excessive_speed": "Verify distance and trip dates; the implied speed is not achievable",
    "impossible_efficiency": "Verify fuel quantity and odometer readings around this refuel",
    "excessive_fuel_quantity": "Verify fuel quantity; it exceeds any tank capacity",
    "negative_fuel_quantity": "Correct the fuel quantity",
    "negative_expense": "Correct the expense amount",
    "short_distance": "Review trip purpose and classify as maintenance/test if applicable",
    "long_distance": "Mark as long-haul/interstate if legitimate",
    "long_duration": "Verify trip dates; consider splitting multi-day trips",
    "high_speed": "Verify distance and trip dates",
    "low_speed": "Verify trip dates; the vehicle may have been idle for most of the window",
    "poor_efficiency": "Check for fuel theft, leaks or vehicle maintenance issues",
    "high_efficiency": "Verify fuel entries; a refuel may be missing from the chain",
    "large_fuel_quantity": "Verify fuel quantity against tank capacity",
    "unusual_fuel_rate": "Verify the fuel rate per litre",
    "large_expense": "Review expense receipts",
    "baseline_deviation": "Compare with the vehicle's history; check for maintenance issues",
}


@dataclass(frozen=True)
class EdgeCase:
    kind: str  # maintenance, test, refueling_only, long_haul
    label: str


@dataclass
class ValueRangeResult:
    outcome: ValidationOutcome
    findings: List[Finding]
    edge_case: Optional[EdgeCase] = None

    @property
    def severity(self) -> AuditSeverity:
        return F.worst_severity(self.findings)

    @property
    def is_correctness_violation(self) -> bool:
        return any(f.code in CORRECTNESS_CODES for f in self.findings)

    @property
    def warnings(self) -> List[Finding]:
        return [f for f in self.findings if f.severity == AuditSeverity.WARNING]


@dataclass
class AnomalyBucket:
    code: str
    severity: AuditSeverity
    count: int = 0
    trip_ids: List[int] = field(default_factory=list)
    sample_messages: List[str] = field(default_factory=list)

    @property
    def recommendation(self) -> str:
        return RECOMMENDATIONS.get(self.code, "Review the affected trips")


def _notes(trip: TripRecord) -> str:
    return (trip.notes or "").lower()


def is_long_haul_tagged(trip: TripRecord) -> bool:
    notes = _notes(trip)
    return trip.trip_type in LONG_HAUL_TYPES or "long haul" in notes or "interstate" in notes


def classify_edge_case(trip: TripRecord, thresholds: IntegrityThresholds) -> Optional[EdgeCase]:
    """Recognize the first matching edge-case classification, if any."""
    distance = trip.distance_km
    if distance < 0:
        return None
    notes = _notes(trip)

    if distance <= thresholds.maintenance_max_distance_km and (
        trip.trip_type in MAINTENANCE_TYPES or "maintenance" in notes or "service" in notes
    ):
        return EdgeCase("maintenance", "Service" if trip.trip_type == TripType.SERVICE else "Maintenance")

    if distance < thresholds.test_max_distance_km and (trip.trip_type == TripType.TEST or "test" in notes):
        return EdgeCase("test", "Test")

    if (
        distance < thresholds.refuel_only_max_distance_km
        and (trip.refueling_done or trip.trip_type == TripType.REFUELING)
        and (trip.fuel_quantity or 0) > 0
    ):
        return EdgeCase("refueling_only", "Refueling-only")

    if is_long_haul_tagged(trip) and (
        distance > thresholds.long_haul_min_distance_km
        or trip.duration_hours > thresholds.long_haul_min_duration_hours
    ):
        return EdgeCase("long_haul", "Interstate" if trip.trip_type == TripType.INTERSTATE else "Long-haul")

    return None


def _edge_case_finding(trip: TripRecord, edge: EdgeCase) -> Finding:
    distance = trip.distance_km
    if edge.kind in ("maintenance", "test"):
        if distance == 0:
            return F.info("edge_case_zero_distance", trip_label=edge.label, edge_case=edge.kind)
        return F.info("edge_case_short_distance", trip_label=edge.label, distance_km=distance, edge_case=edge.kind)
    if edge.kind == "refueling_only":
        return F.info(
            "edge_case_refueling_only",
            distance_km=distance,
            fuel_quantity=trip.fuel_quantity,
            edge_case=edge.kind,
        )
    return F.info(
        "edge_case_long_haul",
        trip_label=edge.label,
        distance_km=distance,
        duration_hours=round(trip.duration_hours, 1),
        edge_case=edge.kind,
    )


def evaluate_trip_values(
    trip: TripRecord,
    thresholds: Optional[IntegrityThresholds] = None,
    baseline=None,
    efficiency_kmpl: Optional[float] = None,
) -> ValueRangeResult:
    """
    Classify one trip against the value range rules.

    Args:
        trip: Snapshot of the candidate trip
        thresholds: Rule thresholds (defaults to ``settings.integrity``)
        baseline: Optional fuel efficiency baseline of the vehicle
        efficiency_kmpl: Tank-to-tank efficiency the trip would close, if it is a refuel

    Returns:
        ValueRangeResult with exactly one outcome and the full finding list
    """
    t = thresholds or settings.integrity
    found: List[Finding] = []

    distance = trip.distance_km
    duration = trip.duration_hours
    speed = trip.average_speed_kmh
    trip_type = trip.trip_type.value

    # Physically impossible values
    if distance < 0:
        found.append(F.error("negative_distance", start_km=trip.start_km, end_km=trip.end_km, distance_km=distance))
    if duration <= 0:
        found.append(F.error(
            "invalid_duration",
            trip_start_date=trip.trip_start_date.isoformat(),
            trip_end_date=trip.trip_end_date.isoformat(),
        ))

    edge = classify_edge_case(trip, t)
    long_haul = is_long_haul_tagged(trip)
    max_distance = t.long_haul_max_distance_km if long_haul else t.standard_max_distance_km
    max_duration = t.long_haul_max_duration_hours if long_haul else t.standard_max_duration_hours

    # Distance and duration ceilings
    if distance > t.absolute_max_distance_km:
        found.append(F.error("absolute_distance_exceeded", t.absolute_max_distance_km, distance_km=distance))
    elif distance > max_distance:
        found.append(F.error("distance_ceiling_exceeded", max_distance, distance_km=distance, trip_type=trip_type))
    elif not long_haul and distance > t.long_distance_warning_km:
        found.append(F.warning("long_distance", t.long_distance_warning_km, distance_km=distance))

    if duration > max_duration:
        found.append(F.error(
            "duration_ceiling_exceeded", max_duration, duration_hours=round(duration, 1), trip_type=trip_type
        ))
    elif not long_haul and duration > t.long_duration_warning_hours:
        found.append(F.warning("long_duration", t.long_duration_warning_hours, duration_hours=round(duration, 1)))

    if edge is None and 0 <= distance < t.short_distance_warning_km:
        found.append(F.warning("short_distance", t.short_distance_warning_km, distance_km=distance))

    # Speed
    if speed is not None and distance > t.speed_check_min_distance_km:
        if speed > t.max_speed_kmh:
            found.append(F.error("excessive_speed", t.max_speed_kmh, speed_kmh=round(speed, 1), distance_km=distance))
        elif speed >= t.speed_warning_kmh:
            found.append(F.warning("high_speed", t.speed_warning_kmh, speed_kmh=round(speed, 1)))
    if speed is not None and distance > t.low_speed_min_distance_km and speed < t.low_speed_kmh:
        found.append(F.warning("low_speed", t.low_speed_kmh, speed_kmh=round(speed, 1), distance_km=distance))

    # Fuel efficiency (tank-to-tank figure for the segment this trip closes)
    if efficiency_kmpl is not None:
        kmpl = round(efficiency_kmpl, 2)
        if kmpl < t.min_efficiency_kmpl or kmpl > t.max_efficiency_kmpl:
            found.append(F.error(
                "impossible_efficiency",
                efficiency_kmpl=kmpl,
                min_kmpl=t.min_efficiency_kmpl,
                max_kmpl=t.max_efficiency_kmpl,
            ))
        elif edge is None and kmpl < t.poor_efficiency_kmpl:
            found.append(F.warning("poor_efficiency", t.poor_efficiency_kmpl, efficiency_kmpl=kmpl))
        elif edge is None and kmpl > t.high_efficiency_kmpl:
            found.append(F.warning("high_efficiency", t.high_efficiency_kmpl, efficiency_kmpl=kmpl))
        elif baseline is not None and (baseline.confidence_score or 0) >= t.baseline_min_confidence:
            if not baseline.tolerance_lower_kmpl <= kmpl <= baseline.tolerance_upper_kmpl:
                found.append(F.warning(
                    "baseline_deviation",
                    efficiency_kmpl=kmpl,
                    baseline_kmpl=round(baseline.baseline_kmpl, 2),
                    lower_kmpl=round(baseline.tolerance_lower_kmpl, 2),
                    upper_kmpl=round(baseline.tolerance_upper_kmpl, 2),
                ))

    # Fuel quantity and rate
    fuel = trip.fuel_quantity
    if fuel is not None:
        if fuel < 0:
            found.append(F.error("negative_fuel_quantity", fuel_quantity=fuel))
        elif fuel > t.max_fuel_quantity_liters:
            found.append(F.error("excessive_fuel_quantity", t.max_fuel_quantity_liters, fuel_quantity=fuel))
        elif fuel > t.large_fuel_quantity_liters:
            found.append(F.warning("large_fuel_quantity", t.large_fuel_quantity_liters, fuel_quantity=fuel))

    rate = trip.fuel_rate_per_liter
    if rate is not None and rate > 0 and not t.min_fuel_rate_per_liter <= rate <= t.max_fuel_rate_per_liter:
        found.append(F.warning(
            "unusual_fuel_rate",
            fuel_rate_per_liter=rate,
            min_rate=t.min_fuel_rate_per_liter,
            max_rate=t.max_fuel_rate_per_liter,
        ))

    # Expenses
    for expense_field in EXPENSE_FIELDS:
        amount = getattr(trip, expense_field) or 0
        if amount < 0:
            found.append(F.error("negative_expense", expense_field=expense_field, amount=amount))
    for expense_field, limit_name in LARGE_EXPENSE_LIMITS:
        amount = getattr(trip, expense_field) or 0
        limit = getattr(t, limit_name)
        if amount > limit:
            found.append(F.warning("large_expense", limit, expense_field=expense_field, amount=amount))

    if edge is not None:
        found.append(_edge_case_finding(trip, edge))

    if F.has_errors(found):
        outcome = ValidationOutcome.REJECTED
    elif any(f.severity == AuditSeverity.WARNING for f in found):
        outcome = ValidationOutcome.WARNING
    elif edge is not None:
        outcome = ValidationOutcome.EDGE_CASE
    else:
        outcome = ValidationOutcome.ACCEPTED
        found.append(F.info("values_in_range"))

    return ValueRangeResult(outcome=outcome, findings=found, edge_case=edge)


def sweep_anomalies(
    records: Sequence[TripRecord],
    thresholds: Optional[IntegrityThresholds] = None,
) -> List[AnomalyBucket]:
    """
    Bucket warning and rejection findings across many trips.

    Each record's stored ``fuel_efficiency_kmpl`` is used as its efficiency figure.
    """
    buckets: "OrderedDict[str, AnomalyBucket]" = OrderedDict()
    for record in records:
        result = evaluate_trip_values(record, thresholds, efficiency_kmpl=record.fuel_efficiency_kmpl)
        for finding in result.findings:
            if finding.severity == AuditSeverity.INFO:
                continue
            bucket = buckets.get(finding.code)
            if bucket is None:
                bucket = buckets[finding.code] = AnomalyBucket(code=finding.code, severity=finding.severity)
            elif finding.severity.rank > bucket.severity.rank:
                bucket.severity = finding.severity
            bucket.count += 1
            if record.id is not None and record.id not in bucket.trip_ids:
                bucket.trip_ids.append(record.id)
            if len(bucket.sample_messages) < 3:
                bucket.sample_messages.append(f"{record.label}: {finding.message}")

    return sorted(buckets.values(), key=lambda b: (-b.severity.rank, -b.count, b.code))


async def find_anomalies(
    db: AsyncSession,
    organization_id: int,
    vehicle_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    thresholds: Optional[IntegrityThresholds] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[AnomalyBucket], int]:
    """
    Read-only anomaly sweep over a vehicle or time window.

    Returns:
        (page of buckets, total bucket count)
    """
    records = await trips_in_range(db, organization_id, vehicle_id=vehicle_id, date_from=date_from, date_to=date_to)
    buckets = sweep_anomalies(records, thresholds)
    logger.info(
        "Anomaly sweep completed",
        extra={
            "organization_id": organization_id,
            "vehicle_id": vehicle_id,
            "trips_scanned": len(records),
            "buckets": len(buckets),
        },
    )
    return buckets[offset:offset + limit], len(buckets)
