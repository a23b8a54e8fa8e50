"""
Tank-to-tank mileage chain.

Fuel efficiency is computed between consecutive refuels of a vehicle, not
per trip: for refuels A then B,

    kmpl = (B.end_km - A.end_km) / fuel recorded over the trips in (A, B]

The chain is a derived view of the trip log. ``build_segments`` is the
single recomputation path; everything else (adjacent refresh on write,
cascade previews, full rebuilds, chain-break reports) goes through it.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from fleet_backend.app.core.config import IntegrityThresholds, settings
from fleet_backend.app.core.exceptions import ResourceNotFoundError
from fleet_backend.app.services.cache import CacheService, mileage_chain_key
from fleet_backend.app.services.trip_records import TripRecord
from fleet_backend.app.services.trip_repository import get_trip, vehicle_trip_models

logger = logging.getLogger("fleet_backend.integrity.mileage")


@dataclass(frozen=True)
class MileageSegment:
    start_trip: TripRecord  # refuel opening the segment
    end_trip: TripRecord  # refuel closing the segment
    trips: Tuple[TripRecord, ...]  # trips in (start, end]
    distance_km: int
    fuel_liters: float
    kmpl: Optional[float]

    @property
    def trip_ids(self) -> List[Optional[int]]:
        return [t.id for t in self.trips]

    def contains(self, trip_id: int) -> bool:
        return any(t.id == trip_id for t in self.trips)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_trip_id": self.start_trip.id,
            "start_trip_serial": self.start_trip.trip_serial_number,
            "start_km": self.start_trip.end_km,
            "end_trip_id": self.end_trip.id,
            "end_trip_serial": self.end_trip.trip_serial_number,
            "end_km": self.end_trip.end_km,
            "distance_km": self.distance_km,
            "fuel_liters": self.fuel_liters,
            "kmpl": self.kmpl,
            "trip_ids": self.trip_ids,
        }


def segment_kmpl(distance_km: int, fuel_liters: float) -> Optional[float]:
    if fuel_liters is None or fuel_liters <= 0 or distance_km <= 0:
        return None
    return round(distance_km / fuel_liters, 2)


def ordered_active(history: Iterable[TripRecord]) -> List[TripRecord]:
    return sorted((h for h in history if h.deleted_at is None), key=lambda h: h.sort_key)


def build_segments(history: Iterable[TripRecord]) -> List[MileageSegment]:
    """
    Recompute every segment of one vehicle from scratch.

    Deterministic for a given trip set: ordering is by start date then id.
    """
    segments: List[MileageSegment] = []
    previous_refuel: Optional[TripRecord] = None
    pending: List[TripRecord] = []

    for trip in ordered_active(history):
        pending.append(trip)
        if not trip.is_refuel:
            continue
        if previous_refuel is not None:
            distance = trip.end_km - previous_refuel.end_km
            fuel = round(sum(t.fuel_quantity or 0 for t in pending), 3)
            segments.append(MileageSegment(
                start_trip=previous_refuel,
                end_trip=trip,
                trips=tuple(pending),
                distance_km=distance,
                fuel_liters=fuel,
                kmpl=segment_kmpl(distance, fuel),
            ))
        previous_refuel = trip
        pending = []

    return segments


def efficiency_map(segments: Sequence[MileageSegment]) -> Dict[int, Optional[float]]:
    """Expected ``fuel_efficiency_kmpl`` per closing refuel trip id."""
    return {s.end_trip.id: s.kmpl for s in segments if s.end_trip.id is not None}


def expected_efficiency(history: Sequence[TripRecord], trip: TripRecord) -> Optional[float]:
    for segment in build_segments(history):
        if segment.end_trip is trip:
            return segment.kmpl
    return None


def prospective_efficiency(history: Sequence[TripRecord], candidate: TripRecord) -> Optional[float]:
    """
    Efficiency the candidate would close if written into ``history``.

    Only refuels with a positive distance since the previous refuel get a figure.
    """
    if not candidate.is_refuel or candidate.deleted_at is not None:
        return None
    others = [h for h in history if candidate.id is None or h.id != candidate.id]
    return expected_efficiency(others + [candidate], candidate)


def efficiency_breaches(
    history: Sequence[TripRecord],
    candidate: TripRecord,
    previous: Optional[TripRecord] = None,
    thresholds: Optional[IntegrityThresholds] = None,
) -> List[MileageSegment]:
    """
    Other segments this write would push outside the hard efficiency bounds.

    ``history`` is the vehicle's active trips without the candidate and
    ``previous`` the stored version of the trip being edited. The segment the
    candidate closes is left to the value range check; segments already out of
    bounds before the write are not reported again.
    """
    t = thresholds or settings.integrity
    others = [h for h in history if candidate.id is None or h.id != candidate.id]

    current = list(others)
    if previous is not None and previous.deleted_at is None and previous.vehicle_id == candidate.vehicle_id:
        current.append(previous)
    before = {s.end_trip.id: s.kmpl for s in build_segments(current)}

    proposed = others + ([candidate] if candidate.deleted_at is None else [])
    breaches = []
    for segment in build_segments(proposed):
        if segment.end_trip is candidate or segment.kmpl is None:
            continue
        if t.min_efficiency_kmpl <= segment.kmpl <= t.max_efficiency_kmpl:
            continue
        if before.get(segment.end_trip.id) == segment.kmpl:
            continue
        breaches.append(segment)
    return breaches


def affected_end_trip_ids(segments: Sequence[MileageSegment], trip_id: Optional[int]) -> Set[int]:
    """Closing refuels of the segments a trip sits in or opens."""
    ids: Set[int] = set()
    if trip_id is None:
        return ids
    for segment in segments:
        if segment.contains(trip_id) or segment.start_trip.id == trip_id:
            if segment.end_trip.id is not None:
                ids.add(segment.end_trip.id)
    return ids


def downstream_dependents(history: Sequence[TripRecord], refuel_trip_id: int) -> List[TripRecord]:
    """Non-refuel trips after a refuel, up to the next refuel."""
    dependents: List[TripRecord] = []
    started = False
    for trip in ordered_active(history):
        if trip.id == refuel_trip_id:
            started = True
            continue
        if not started:
            continue
        if trip.is_refuel:
            break
        dependents.append(trip)
    return dependents


async def refresh_adjacent_segments(
    db: AsyncSession,
    organization_id: int,
    vehicle_id: int,
    trip_id: Optional[int],
    previous_end_ids: Iterable[int] = (),
) -> List[Dict[str, Any]]:
    """
    Recompute the segments bordering ``trip_id`` after a flushed write.

    ``previous_end_ids`` are the closing refuels of the segments the trip
    bordered before the write, so a moved or removed trip also repairs the
    segment it left.

    Returns:
        The efficiency changes applied, as dicts
    """
    trips = await vehicle_trip_models(db, organization_id, vehicle_id)
    records = [TripRecord.from_model(t) for t in trips]
    segments = build_segments(records)
    expected = efficiency_map(segments)

    targets = affected_end_trip_ids(segments, trip_id) | set(previous_end_ids)
    if trip_id is not None:
        targets.add(trip_id)

    return _apply_efficiencies(trips, expected, targets)


def _apply_efficiencies(trips, expected: Dict[int, Optional[float]], targets: Optional[Set[int]]) -> List[Dict[str, Any]]:
    changes = []
    for trip in trips:
        if targets is not None and trip.id not in targets:
            continue
        new_value = expected.get(trip.id)
        if trip.fuel_efficiency_kmpl != new_value:
            changes.append({
                "trip_id": trip.id,
                "trip_serial_number": trip.trip_serial_number,
                "old_kmpl": trip.fuel_efficiency_kmpl,
                "new_kmpl": new_value,
            })
            trip.fuel_efficiency_kmpl = new_value
    return changes


async def recompute_vehicle_chain(
    db: AsyncSession,
    organization_id: int,
    vehicle_id: int,
) -> Tuple[List[MileageSegment], List[Dict[str, Any]]]:
    """
    Full recomputation for one vehicle; the caller holds the vehicle lock and commits.

    Returns:
        (segments, efficiency changes applied to the session)
    """
    trips = await vehicle_trip_models(db, organization_id, vehicle_id)
    records = [TripRecord.from_model(t) for t in trips]
    segments = build_segments(records)
    changes = _apply_efficiencies(trips, efficiency_map(segments), targets=None)
    await db.flush()
    return segments, changes


async def get_mileage_chain(db: AsyncSession, organization_id: int, vehicle_id: int) -> List[Dict[str, Any]]:
    """Serialized segments of a vehicle, served from the cache when present."""
    key = mileage_chain_key(organization_id, vehicle_id)
    cached = await CacheService.get(key)
    if cached is not None:
        return cached

    trips = await vehicle_trip_models(db, organization_id, vehicle_id)
    chain = [s.to_dict() for s in build_segments(TripRecord.from_model(t) for t in trips)]
    await CacheService.set(key, chain)
    return chain


# Cascading odometer corrections

def plan_odometer_correction(
    history: Sequence[TripRecord],
    trip_id: int,
    new_end_km: int,
    new_start_km: Optional[int] = None,
    cascade: bool = True,
) -> List[Tuple[TripRecord, TripRecord]]:
    """
    Proposed (before, after) pairs for an odometer correction.

    With ``cascade`` every later trip of the vehicle shifts by the same
    delta as the corrected trip's ``end_km``.
    """
    ordered = ordered_active(history)
    target = next((t for t in ordered if t.id == trip_id), None)
    if target is None:
        raise ResourceNotFoundError("Trip", trip_id)

    delta = new_end_km - target.end_km
    changes = {}
    updated_target = target.with_changes(
        end_km=new_end_km,
        start_km=target.start_km if new_start_km is None else new_start_km,
    )
    changes[target.id] = updated_target

    if cascade and delta:
        for trip in ordered:
            if trip.sort_key > target.sort_key:
                changes[trip.id] = trip.with_changes(start_km=trip.start_km + delta, end_km=trip.end_km + delta)

    return [(t, changes[t.id]) for t in ordered if t.id in changes and changes[t.id] != t]


def compare_segments(
    before: Sequence[MileageSegment],
    after: Sequence[MileageSegment],
) -> List[Dict[str, Any]]:
    """Segments whose boundaries, distance or kmpl differ between two chains."""
    old_by_end = {s.end_trip.id: s for s in before}
    affected = []
    for segment in after:
        old = old_by_end.get(segment.end_trip.id)
        if (
            old is not None
            and old.start_trip.id == segment.start_trip.id
            and old.distance_km == segment.distance_km
            and old.kmpl == segment.kmpl
        ):
            continue
        affected.append({
            "start_trip_id": segment.start_trip.id,
            "end_trip_id": segment.end_trip.id,
            "end_trip_serial": segment.end_trip.trip_serial_number,
            "old_distance_km": old.distance_km if old else None,
            "new_distance_km": segment.distance_km,
            "old_kmpl": old.kmpl if old else None,
            "new_kmpl": segment.kmpl,
        })
    return affected


async def preview_cascade_impact(
    db: AsyncSession,
    organization_id: int,
    trip_id: int,
    new_end_km: int,
    new_start_km: Optional[int] = None,
    cascade: bool = True,
) -> Dict[str, Any]:
    """
    What an odometer correction would change, without writing anything.

    Returns:
        Dict with the shifted trips and the affected segments
    """
    trip = await get_trip(db, organization_id, trip_id)
    if trip is None:
        raise ResourceNotFoundError("Trip", trip_id)

    trips = await vehicle_trip_models(db, organization_id, trip.vehicle_id)
    history = [TripRecord.from_model(t) for t in trips]
    plan = plan_odometer_correction(history, trip_id, new_end_km, new_start_km, cascade)

    after_by_id = {after.id: after for _, after in plan}
    proposed = [after_by_id.get(h.id, h) for h in history]

    return {
        "trip_id": trip_id,
        "vehicle_id": trip.vehicle_id,
        "odometer_delta_km": new_end_km - trip.end_km,
        "cascade": cascade,
        "affected_trips": [
            {
                "trip_id": before.id,
                "trip_serial_number": before.trip_serial_number,
                "old_start_km": before.start_km,
                "old_end_km": before.end_km,
                "new_start_km": after.start_km,
                "new_end_km": after.end_km,
            }
            for before, after in plan
        ],
        "affected_segments": compare_segments(build_segments(history), build_segments(proposed)),
    }


# Chain break detection

@dataclass(frozen=True)
class ChainBreak:
    code: str
    severity: str
    trip_id: Optional[int]
    trip_serial_number: Optional[str]
    details: Dict[str, Any] = field(default_factory=dict)
    suggested_action: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "severity": self.severity,
            "trip_id": self.trip_id,
            "trip_serial_number": self.trip_serial_number,
            "details": self.details,
            "suggested_action": self.suggested_action,
        }


def find_chain_breaks(
    history: Sequence[TripRecord],
    thresholds: Optional[IntegrityThresholds] = None,
) -> List[ChainBreak]:
    """
    Report every place the tank-to-tank chain cannot be trusted.

    ``history`` should include soft-deleted trips so unrepaired deletions can
    be located; they are otherwise ignored.
    """
    t = thresholds or settings.integrity
    active = ordered_active(history)
    deleted = [h for h in history if h.deleted_at is not None]
    breaks: List[ChainBreak] = []

    for previous, current in zip(active, active[1:]):
        if current.start_km < previous.end_km:
            breaks.append(ChainBreak(
                code="overlapping_odometer_span",
                severity="warning",
                trip_id=current.id,
                trip_serial_number=current.trip_serial_number,
                details={"previous_trip_id": previous.id, "previous_end_km": previous.end_km,
                         "start_km": current.start_km},
                suggested_action="Correct odometer readings so trips do not overlap",
            ))
        elif current.start_km > previous.end_km:
            lost = [
                d for d in deleted
                if d.vehicle_id == previous.vehicle_id and previous.sort_key < d.sort_key < current.sort_key
            ]
            if lost:
                breaks.append(ChainBreak(
                    code="unrepaired_deletion",
                    severity="warning",
                    trip_id=current.id,
                    trip_serial_number=current.trip_serial_number,
                    details={
                        "previous_trip_id": previous.id,
                        "unaccounted_km": current.start_km - previous.end_km,
                        "deleted_trip_ids": [d.id for d in lost],
                    },
                    suggested_action="Restore the deleted trip(s) or record a replacement trip",
                ))

    for trip in active:
        if trip.end_km < trip.start_km:
            breaks.append(ChainBreak(
                code="negative_distance",
                severity="warning",
                trip_id=trip.id,
                trip_serial_number=trip.trip_serial_number,
                details={"start_km": trip.start_km, "end_km": trip.end_km},
                suggested_action="Fix start/end odometer readings",
            ))

    for segment in build_segments(active):
        end = segment.end_trip
        if segment.fuel_liters <= 0:
            breaks.append(ChainBreak(
                code="missing_fuel",
                severity="warning",
                trip_id=end.id,
                trip_serial_number=end.trip_serial_number,
                details={"start_trip_id": segment.start_trip.id, "distance_km": segment.distance_km},
                suggested_action="Record the fuel quantity of this refuel",
            ))
        if segment.distance_km <= 0:
            breaks.append(ChainBreak(
                code="non_positive_segment_distance",
                severity="warning",
                trip_id=end.id,
                trip_serial_number=end.trip_serial_number,
                details={"start_trip_id": segment.start_trip.id, "distance_km": segment.distance_km},
                suggested_action="Check odometer readings between the two refuels",
            ))
        if segment.kmpl is not None and not t.min_efficiency_kmpl <= segment.kmpl <= t.max_efficiency_kmpl:
            breaks.append(ChainBreak(
                code="unrealistic_efficiency",
                severity="warning",
                trip_id=end.id,
                trip_serial_number=end.trip_serial_number,
                details={"kmpl": segment.kmpl, "distance_km": segment.distance_km,
                         "fuel_liters": segment.fuel_liters},
                suggested_action="Verify fuel quantity and odometer readings",
            ))
        if end.fuel_efficiency_kmpl != segment.kmpl:
            breaks.append(ChainBreak(
                code="stale_efficiency",
                severity="warning",
                trip_id=end.id,
                trip_serial_number=end.trip_serial_number,
                details={"stored_kmpl": end.fuel_efficiency_kmpl, "expected_kmpl": segment.kmpl},
                suggested_action="Rebuild the mileage chain",
            ))

    return breaks


async def detect_chain_breaks(
    db: AsyncSession,
    organization_id: int,
    vehicle_id: int,
    thresholds: Optional[IntegrityThresholds] = None,
) -> List[ChainBreak]:
    trips = await vehicle_trip_models(db, organization_id, vehicle_id, include_deleted=True)
    breaks = find_chain_breaks([TripRecord.from_model(t) for t in trips], thresholds)
    if breaks:
        logger.warning(
            "Mileage chain breaks detected",
            extra={"organization_id": organization_id, "vehicle_id": vehicle_id, "breaks": len(breaks)},
        )
    return breaks
