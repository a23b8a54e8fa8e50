"""
Odometer continuity across a vehicle's trip history.

Trips of a vehicle, ordered by ``trip_start_date`` (ties by id), must have
non-decreasing odometer readings: a trip may not start below the reading its
predecessor ended at, nor run past the reading its successor starts at.
Large forward gaps are allowed but flagged.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from fleet_backend.app.core.config import IntegrityThresholds, settings
from fleet_backend.app.services import findings as F
from fleet_backend.app.services.findings import Finding
from fleet_backend.app.services.trip_records import TripRecord
from fleet_backend.app.services.trip_repository import vehicle_history

logger = logging.getLogger("fleet_backend.integrity.odometer")


@dataclass
class ContinuityResult:
    findings: List[Finding]
    predecessor: Optional[TripRecord] = None
    successor: Optional[TripRecord] = None

    @property
    def has_errors(self) -> bool:
        return F.has_errors(self.findings)


def find_neighbours(candidate: TripRecord, history: Sequence[TripRecord]):
    """Immediate predecessor and successor of ``candidate`` in the vehicle timeline."""
    others = sorted(
        (
            h for h in history
            if h.deleted_at is None
            and h.vehicle_id == candidate.vehicle_id
            and h.organization_id == candidate.organization_id
            and (candidate.id is None or h.id != candidate.id)
        ),
        key=lambda h: h.sort_key,
    )
    key = candidate.sort_key
    predecessor = None
    successor = None
    for other in others:
        if other.sort_key < key:
            predecessor = other
        elif successor is None:
            successor = other
            break
    return predecessor, successor


def check_continuity(
    candidate: TripRecord,
    history: Sequence[TripRecord],
    thresholds: Optional[IntegrityThresholds] = None,
) -> ContinuityResult:
    t = thresholds or settings.integrity
    predecessor, successor = find_neighbours(candidate, history)
    found: List[Finding] = []

    if predecessor is not None:
        gap = candidate.start_km - predecessor.end_km
        if gap < 0:
            found.append(F.error(
                "negative_odometer_gap",
                start_km=candidate.start_km,
                neighbour_end_km=predecessor.end_km,
                neighbour_trip_id=predecessor.id,
                neighbour_serial=predecessor.label,
                gap_km=gap,
            ))
        elif gap > t.large_gap_threshold_km:
            found.append(F.warning(
                "large_odometer_gap",
                t.large_gap_threshold_km,
                gap_km=gap,
                direction="after",
                neighbour_trip_id=predecessor.id,
                neighbour_serial=predecessor.label,
            ))

    if successor is not None:
        if candidate.start_km > successor.start_km or candidate.end_km > successor.start_km:
            field_name = "start_km" if candidate.start_km > successor.start_km else "end_km"
            found.append(F.error(
                "successor_overrun",
                field=field_name,
                value_km=getattr(candidate, field_name),
                neighbour_start_km=successor.start_km,
                neighbour_trip_id=successor.id,
                neighbour_serial=successor.label,
            ))
        else:
            gap = successor.start_km - candidate.end_km
            if gap > t.large_gap_threshold_km:
                found.append(F.warning(
                    "large_odometer_gap",
                    t.large_gap_threshold_km,
                    gap_km=gap,
                    direction="before",
                    neighbour_trip_id=successor.id,
                    neighbour_serial=successor.label,
                ))

    if not found:
        found.append(F.info(
            "odometer_continuous",
            predecessor_trip_id=predecessor.id if predecessor else None,
            successor_trip_id=successor.id if successor else None,
        ))

    return ContinuityResult(findings=found, predecessor=predecessor, successor=successor)


# Retroactive scan

@dataclass(frozen=True)
class GapRecord:
    previous_trip: TripRecord
    next_trip: TripRecord
    gap_km: int
    gap_type: str  # negative or large
    severity: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "previous_trip_id": self.previous_trip.id,
            "previous_trip_serial": self.previous_trip.trip_serial_number,
            "previous_end_km": self.previous_trip.end_km,
            "next_trip_id": self.next_trip.id,
            "next_trip_serial": self.next_trip.trip_serial_number,
            "next_start_km": self.next_trip.start_km,
            "gap_km": self.gap_km,
            "gap_type": self.gap_type,
            "severity": self.severity,
        }


@dataclass
class ContinuitySummary:
    total_trips: int = 0
    perfect_continuity: int = 0
    small_gaps: int = 0
    moderate_gaps: int = 0
    large_gaps: int = 0
    negative_gaps: int = 0
    total_gap_km: int = 0
    max_gap_km: int = 0
    continuity_score: Optional[int] = None
    recommendations: List[str] = field(default_factory=list)


def scan_odometer_gaps(
    history: Sequence[TripRecord],
    thresholds: Optional[IntegrityThresholds] = None,
):
    """
    Walk a vehicle's full history pairwise.

    Returns:
        (list of GapRecord for negative and large gaps, ContinuitySummary)
    """
    t = thresholds or settings.integrity
    ordered = sorted((h for h in history if h.deleted_at is None), key=lambda h: h.sort_key)
    summary = ContinuitySummary(total_trips=len(ordered))
    gaps: List[GapRecord] = []

    for previous, current in zip(ordered, ordered[1:]):
        gap = current.start_km - previous.end_km
        if gap < 0:
            summary.negative_gaps += 1
            gaps.append(GapRecord(previous, current, gap, "negative", "error"))
            continue
        if gap == 0:
            summary.perfect_continuity += 1
        elif gap <= t.small_gap_km:
            summary.small_gaps += 1
        elif gap <= t.moderate_gap_km:
            summary.moderate_gaps += 1
        else:
            summary.large_gaps += 1
        summary.total_gap_km += gap
        summary.max_gap_km = max(summary.max_gap_km, gap)
        if gap > t.large_gap_threshold_km:
            gaps.append(GapRecord(previous, current, gap, "large", "warning"))

    if len(ordered) > 1:
        if summary.negative_gaps:
            score = 0
        elif summary.large_gaps:
            score = 50 - summary.large_gaps * 10
        elif summary.moderate_gaps:
            score = 70 - summary.moderate_gaps * 5
        elif summary.small_gaps:
            score = 90 - summary.small_gaps * 2
        else:
            score = 100
        summary.continuity_score = max(score, 0)

    if summary.negative_gaps:
        summary.recommendations.append(
            f"CRITICAL: {summary.negative_gaps} trips have negative odometer gaps. Immediate correction required."
        )
    if summary.large_gaps:
        summary.recommendations.append(
            f"WARNING: {summary.large_gaps} trips have large gaps (>{t.moderate_gap_km}km). Check for missing trips."
        )
    if summary.moderate_gaps:
        summary.recommendations.append(
            f"INFO: {summary.moderate_gaps} trips have moderate gaps. Review for accuracy."
        )
    if summary.continuity_score is not None and summary.continuity_score >= 90:
        summary.recommendations.append("Odometer continuity is good.")

    return gaps, summary


async def find_odometer_gaps(
    db: AsyncSession,
    organization_id: int,
    vehicle_id: int,
    thresholds: Optional[IntegrityThresholds] = None,
):
    history = await vehicle_history(db, organization_id, vehicle_id)
    gaps, summary = scan_odometer_gaps(history, thresholds)
    logger.info(
        "Odometer gap scan completed",
        extra={
            "organization_id": organization_id,
            "vehicle_id": vehicle_id,
            "gaps": len(gaps),
            "continuity_score": summary.continuity_score,
        },
    )
    return gaps, summary
