"""
Vehicle and driver double-booking detection.

Two trip windows ``[s1, e1)`` and ``[s2, e2)`` intersect iff
``s1 < e2 and s2 < e1``. The classification of an overlap is diagnostic
only; any intersection on a shared vehicle, or on a shared driver, is a
conflict.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from fleet_backend.app.core.clock import as_utc
from fleet_backend.app.core.config import IntegrityThresholds, settings
from fleet_backend.app.core.exceptions import DriverConflictError, VehicleConflictError
from fleet_backend.app.models.trip_enums import OverlapType
from fleet_backend.app.services import findings as F
from fleet_backend.app.services.findings import Finding
from fleet_backend.app.services.trip_records import TripRecord
from fleet_backend.app.services.trip_repository import overlapping_trips, trips_in_range

logger = logging.getLogger("fleet_backend.integrity.overlap")

CRITICAL_OVERLAP_TYPES = (
    OverlapType.EXACT_DUPLICATE,
    OverlapType.NEW_CONTAINED_IN_EXISTING,
    OverlapType.EXISTING_CONTAINED_IN_NEW,
)


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return start_a < end_b and start_b < end_a


def classify_overlap(
    candidate_start: datetime,
    candidate_end: datetime,
    existing_start: datetime,
    existing_end: datetime,
) -> OverlapType:
    """Describe how an overlapping candidate window sits against an existing one."""
    if candidate_start == existing_start and candidate_end == existing_end:
        return OverlapType.EXACT_DUPLICATE
    if candidate_start >= existing_start and candidate_end <= existing_end:
        return OverlapType.NEW_CONTAINED_IN_EXISTING
    if candidate_start <= existing_start and candidate_end >= existing_end:
        return OverlapType.EXISTING_CONTAINED_IN_NEW
    if candidate_start > existing_start:
        return OverlapType.OVERLAP_AT_START
    return OverlapType.OVERLAP_AT_END


def overlap_hours(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> float:
    seconds = (min(end_a, end_b) - max(start_a, start_b)).total_seconds()
    return round(max(seconds, 0) / 3600, 2)


@dataclass(frozen=True)
class Conflict:
    conflict_type: str  # vehicle or driver
    trip_id: Optional[int]
    trip_serial_number: Optional[str]
    trip_start_date: datetime
    trip_end_date: datetime
    overlap_type: OverlapType
    overlap_hours: float
    vehicle_id: Optional[int] = None
    driver_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conflict_type": self.conflict_type,
            "trip_id": self.trip_id,
            "trip_serial_number": self.trip_serial_number,
            "trip_start_date": self.trip_start_date.isoformat(),
            "trip_end_date": self.trip_end_date.isoformat(),
            "overlap_type": self.overlap_type.value,
            "overlap_hours": self.overlap_hours,
            "vehicle_id": self.vehicle_id,
            "driver_id": self.driver_id,
        }

    def to_finding(self) -> Finding:
        values = {
            "conflicting_trip_id": self.trip_id,
            "conflicting_serial": self.trip_serial_number,
            "conflicting_start": self.trip_start_date.isoformat(),
            "conflicting_end": self.trip_end_date.isoformat(),
            "overlap_type": self.overlap_type.value,
            "overlap_hours": self.overlap_hours,
        }
        if self.conflict_type == "vehicle":
            return F.error("vehicle_conflict", vehicle_id=self.vehicle_id, **values)
        return F.error("driver_conflict", driver_id=self.driver_id, **values)


@dataclass
class ConflictCheckResult:
    conflicts: List[Conflict] = field(default_factory=list)

    @property
    def vehicle_conflicts(self) -> List[Conflict]:
        return [c for c in self.conflicts if c.conflict_type == "vehicle"]

    @property
    def driver_conflicts(self) -> List[Conflict]:
        return [c for c in self.conflicts if c.conflict_type == "driver"]

    @property
    def findings(self) -> List[Finding]:
        if not self.conflicts:
            return [F.info("no_conflicts")]
        return [c.to_finding() for c in self.conflicts]

    def raise_for_conflicts(self, earlier_findings: Sequence[Finding] = ()) -> None:
        """Raise the typed conflict error; vehicle conflicts take precedence."""
        if not self.conflicts:
            return
        collected = list(earlier_findings) + self.findings
        conflicts = [c.to_dict() for c in self.conflicts]
        if self.vehicle_conflicts:
            raise VehicleConflictError(collected, conflicts)
        raise DriverConflictError(collected, conflicts)


def find_conflicts(
    window_start: datetime,
    window_end: datetime,
    others: Sequence[TripRecord],
    vehicle_id: Optional[int] = None,
    driver_id: Optional[int] = None,
    exclude_trip_id: Optional[int] = None,
) -> ConflictCheckResult:
    """
    Pure conflict check of one window against other trips.

    A trip never conflicts with itself: ``exclude_trip_id`` is skipped.
    """
    window_start, window_end = as_utc(window_start), as_utc(window_end)
    result = ConflictCheckResult()
    for other in others:
        if other.deleted_at is not None:
            continue
        if exclude_trip_id is not None and other.id == exclude_trip_id:
            continue
        if not intervals_overlap(window_start, window_end, other.trip_start_date, other.trip_end_date):
            continue

        kind = classify_overlap(window_start, window_end, other.trip_start_date, other.trip_end_date)
        hours = overlap_hours(window_start, window_end, other.trip_start_date, other.trip_end_date)
        for conflict_type, shared in (
            ("vehicle", vehicle_id is not None and other.vehicle_id == vehicle_id),
            ("driver", driver_id is not None and other.driver_id == driver_id),
        ):
            if shared:
                result.conflicts.append(Conflict(
                    conflict_type=conflict_type,
                    trip_id=other.id,
                    trip_serial_number=other.trip_serial_number,
                    trip_start_date=other.trip_start_date,
                    trip_end_date=other.trip_end_date,
                    overlap_type=kind,
                    overlap_hours=hours,
                    vehicle_id=other.vehicle_id,
                    driver_id=other.driver_id,
                ))
    return result


async def check_trip_conflicts(
    db: AsyncSession,
    candidate: TripRecord,
) -> ConflictCheckResult:
    """Conflict check of a candidate trip against its tenant's stored history."""
    others = await overlapping_trips(
        db,
        candidate.organization_id,
        candidate.trip_start_date,
        candidate.trip_end_date,
        vehicle_id=candidate.vehicle_id,
        driver_id=candidate.driver_id,
        exclude_trip_id=candidate.id,
    )
    return find_conflicts(
        candidate.trip_start_date,
        candidate.trip_end_date,
        others,
        vehicle_id=candidate.vehicle_id,
        driver_id=candidate.driver_id,
        exclude_trip_id=candidate.id,
    )


async def check_availability(
    db: AsyncSession,
    organization_id: int,
    window_start: datetime,
    window_end: datetime,
    vehicle_id: Optional[int] = None,
    driver_id: Optional[int] = None,
    exclude_trip_id: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Scheduling pre-check; never writes.

    Returns:
        {"available": bool, "conflict_count": int, "conflicts": [...]}
    """
    others = await overlapping_trips(
        db,
        organization_id,
        window_start,
        window_end,
        vehicle_id=vehicle_id,
        driver_id=driver_id,
        exclude_trip_id=exclude_trip_id,
    )
    result = find_conflicts(
        window_start,
        window_end,
        others,
        vehicle_id=vehicle_id,
        driver_id=driver_id,
        exclude_trip_id=exclude_trip_id,
    )
    return {
        "available": not result.conflicts,
        "conflict_count": len(result.conflicts),
        "conflicts": [c.to_dict() for c in result.conflicts],
    }


# Retroactive sweep

@dataclass(frozen=True)
class OverlapRecord:
    trip_a: TripRecord
    trip_b: TripRecord
    conflict_type: str  # vehicle, driver or both_vehicle_and_driver
    overlap_type: OverlapType
    overlap_hours: float
    severity: str
    suggested_fix: str

    def to_dict(self) -> Dict[str, Any]:
        def describe(trip: TripRecord) -> Dict[str, Any]:
            return {
                "trip_id": trip.id,
                "trip_serial_number": trip.trip_serial_number,
                "vehicle_id": trip.vehicle_id,
                "driver_id": trip.driver_id,
                "trip_start_date": trip.trip_start_date.isoformat(),
                "trip_end_date": trip.trip_end_date.isoformat(),
            }

        return {
            "trip_a": describe(self.trip_a),
            "trip_b": describe(self.trip_b),
            "conflict_type": self.conflict_type,
            "overlap_type": self.overlap_type.value,
            "overlap_hours": self.overlap_hours,
            "severity": self.severity,
            "suggested_fix": self.suggested_fix,
        }


def sweep_severity(kind: OverlapType, hours: float, thresholds: IntegrityThresholds) -> str:
    if kind in CRITICAL_OVERLAP_TYPES:
        return "critical"
    if hours > thresholds.high_overlap_hours:
        return "high"
    return "medium"


def suggest_fix(kind: OverlapType, conflict_type: str, trip_a: TripRecord, trip_b: TripRecord) -> str:
    if kind == OverlapType.EXACT_DUPLICATE:
        return f"Delete duplicate trip {trip_b.label}"
    if kind in CRITICAL_OVERLAP_TYPES:
        return f"Review and merge trips {trip_a.label} and {trip_b.label}"
    if conflict_type == "both_vehicle_and_driver":
        return f"Critical conflict - review both trips {trip_a.label} and {trip_b.label}"
    if conflict_type == "vehicle":
        return f"Adjust trip times or assign different vehicle for trip {trip_b.label}"
    return f"Adjust trip times or assign different driver for trip {trip_b.label}"


_SEVERITY_ORDER = {"critical": 0, "high": 1, "medium": 2}


def find_pairwise_overlaps(
    records: Sequence[TripRecord],
    thresholds: Optional[IntegrityThresholds] = None,
) -> List[OverlapRecord]:
    """
    Every overlapping pair sharing a vehicle or a driver.

    Sort-and-sweep over start dates; each unordered pair is reported once with
    ``trip_a`` the earlier-starting trip.
    """
    t = thresholds or settings.integrity
    ordered = sorted(
        (r for r in records if r.deleted_at is None and r.trip_end_date > r.trip_start_date),
        key=lambda r: r.sort_key,
    )
    found: List[OverlapRecord] = []
    for i, trip_a in enumerate(ordered):
        for trip_b in ordered[i + 1:]:
            if trip_b.trip_start_date >= trip_a.trip_end_date:
                break
            same_vehicle = trip_a.vehicle_id == trip_b.vehicle_id
            same_driver = trip_a.driver_id is not None and trip_a.driver_id == trip_b.driver_id
            if not (same_vehicle or same_driver):
                continue
            if same_vehicle and same_driver:
                conflict_type = "both_vehicle_and_driver"
            elif same_vehicle:
                conflict_type = "vehicle"
            else:
                conflict_type = "driver"

            kind = classify_overlap(
                trip_b.trip_start_date, trip_b.trip_end_date, trip_a.trip_start_date, trip_a.trip_end_date
            )
            hours = overlap_hours(
                trip_a.trip_start_date, trip_a.trip_end_date, trip_b.trip_start_date, trip_b.trip_end_date
            )
            found.append(OverlapRecord(
                trip_a=trip_a,
                trip_b=trip_b,
                conflict_type=conflict_type,
                overlap_type=kind,
                overlap_hours=hours,
                severity=sweep_severity(kind, hours, t),
                suggested_fix=suggest_fix(kind, conflict_type, trip_a, trip_b),
            ))

    found.sort(key=lambda r: (_SEVERITY_ORDER[r.severity], -r.overlap_hours, r.trip_a.sort_key))
    return found


async def find_overlaps(
    db: AsyncSession,
    organization_id: int,
    vehicle_id: Optional[int] = None,
    driver_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    thresholds: Optional[IntegrityThresholds] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[OverlapRecord], int]:
    """
    Read-only overlap sweep for a vehicle, a driver or a whole organization.

    Returns:
        (page of overlap records, total count)
    """
    if vehicle_id is None and driver_id is None:
        records = await trips_in_range(db, organization_id, date_from=date_from, date_to=date_to)
    else:
        # Both sides of a pair must be loaded: the vehicle's trips and the driver's trips
        records = []
        seen = set()
        for scope in ({"vehicle_id": vehicle_id}, {"driver_id": driver_id}):
            if next(iter(scope.values())) is None:
                continue
            for record in await trips_in_range(db, organization_id, date_from=date_from, date_to=date_to, **scope):
                if record.id not in seen:
                    seen.add(record.id)
                    records.append(record)

    overlaps = find_pairwise_overlaps(records, thresholds)
    if vehicle_id is not None or driver_id is not None:
        overlaps = [
            o for o in overlaps
            if (vehicle_id is not None and vehicle_id in (o.trip_a.vehicle_id, o.trip_b.vehicle_id)
                and o.conflict_type != "driver")
            or (driver_id is not None and driver_id in (o.trip_a.driver_id, o.trip_b.driver_id)
                and o.conflict_type != "vehicle")
        ]

    logger.info(
        "Overlap sweep completed",
        extra={"organization_id": organization_id, "trips_scanned": len(records), "overlaps": len(overlaps)},
    )
    return overlaps[offset:offset + limit], len(overlaps)
