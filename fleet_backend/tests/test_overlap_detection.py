"""
Vehicle and driver double-booking tests.
"""

from datetime import timedelta

import pytest

from fleet_backend.app.core.exceptions import DriverConflictError, VehicleConflictError
from fleet_backend.app.models.trip_enums import OverlapType
from fleet_backend.app.services.overlap_detection import (
    classify_overlap,
    find_conflicts,
    find_pairwise_overlaps,
    intervals_overlap,
    overlap_hours,
)
from fleet_backend.tests.factories import BASE_TIME, record


def at(hour):
    return BASE_TIME.replace(hour=0) + timedelta(hours=hour)


def test_intersection_is_symmetric_and_half_open():
    assert intervals_overlap(at(8), at(10), at(9), at(11))
    assert intervals_overlap(at(9), at(11), at(8), at(10))
    # Back-to-back trips touch but do not overlap
    assert not intervals_overlap(at(8), at(10), at(10), at(12))
    assert not intervals_overlap(at(10), at(12), at(8), at(10))


@pytest.mark.parametrize("candidate,existing,expected", [
    ((8, 10), (8, 10), OverlapType.EXACT_DUPLICATE),
    ((8.5, 9.5), (8, 10), OverlapType.NEW_CONTAINED_IN_EXISTING),
    ((7, 11), (8, 10), OverlapType.EXISTING_CONTAINED_IN_NEW),
    ((9, 11), (8, 10), OverlapType.OVERLAP_AT_START),
    ((7, 9), (8, 10), OverlapType.OVERLAP_AT_END),
])
def test_classify_overlap(candidate, existing, expected):
    kind = classify_overlap(at(candidate[0]), at(candidate[1]), at(existing[0]), at(existing[1]))
    assert kind == expected


def test_overlap_hours():
    assert overlap_hours(at(8), at(10), at(9), at(11)) == 1.0
    assert overlap_hours(at(8), at(10), at(10), at(12)) == 0


def test_vehicle_conflict_detected():
    existing = [record(1, 1000, 1050, start_offset_hours=2, duration_hours=2)]

    result = find_conflicts(at(9), at(11), existing, vehicle_id=1)

    assert len(result.vehicle_conflicts) == 1
    conflict = result.vehicle_conflicts[0]
    assert conflict.trip_id == 1
    assert conflict.overlap_type == OverlapType.OVERLAP_AT_START
    assert conflict.overlap_hours == 1.0
    assert result.findings[0].code == "vehicle_conflict"


def test_trip_never_conflicts_with_itself():
    existing = [record(1, 1000, 1050, start_offset_hours=2, duration_hours=2)]

    result = find_conflicts(at(8), at(10), existing, vehicle_id=1, exclude_trip_id=1)

    assert result.conflicts == []
    assert [f.code for f in result.findings] == ["no_conflicts"]


def test_soft_deleted_trips_are_ignored():
    existing = [record(1, 1000, 1050, start_offset_hours=2, duration_hours=2, deleted_at=BASE_TIME)]

    assert find_conflicts(at(8), at(10), existing, vehicle_id=1).conflicts == []


def test_driver_conflict_on_other_vehicle():
    existing = [record(1, 1000, 1050, start_offset_hours=2, duration_hours=2, vehicle_id=2, driver_id=7)]

    result = find_conflicts(at(9), at(11), existing, vehicle_id=1, driver_id=7)

    assert result.vehicle_conflicts == []
    assert len(result.driver_conflicts) == 1
    with pytest.raises(DriverConflictError) as exc_info:
        result.raise_for_conflicts()
    assert exc_info.value.details["conflicts"][0]["driver_id"] == 7


def test_vehicle_conflict_takes_precedence():
    existing = [
        record(1, 1000, 1050, start_offset_hours=2, duration_hours=2, driver_id=3),
        record(2, 500, 550, start_offset_hours=2, duration_hours=2, vehicle_id=2, driver_id=7),
    ]
    result = find_conflicts(at(9), at(11), existing, vehicle_id=1, driver_id=7)

    with pytest.raises(VehicleConflictError) as exc_info:
        result.raise_for_conflicts()

    error = exc_info.value
    assert error.error_code == "ERR_TRIP_CONFLICT_VEHICLE"
    assert error.status_code == 409
    assert {c["conflict_type"] for c in error.conflicts} == {"vehicle", "driver"}
    assert [f["code"] for f in error.details["findings"]] == ["vehicle_conflict", "driver_conflict"]


def test_no_conflicts_does_not_raise():
    find_conflicts(at(8), at(10), [], vehicle_id=1).raise_for_conflicts()


def test_pairwise_sweep_severity_and_fix():
    records = [
        # Exact duplicate pair
        record(1, 0, 50, start_offset_hours=0, duration_hours=2),
        record(2, 0, 50, start_offset_hours=0, duration_hours=2),
        # Long partial overlap on another vehicle
        record(3, 0, 100, start_offset_hours=10, duration_hours=8, vehicle_id=2),
        record(4, 100, 200, start_offset_hours=12, duration_hours=8, vehicle_id=2),
        # Short partial overlap on a shared driver
        record(5, 0, 20, start_offset_hours=30, duration_hours=2, vehicle_id=3, driver_id=9),
        record(6, 0, 20, start_offset_hours=31, duration_hours=2, vehicle_id=4, driver_id=9),
    ]

    overlaps = find_pairwise_overlaps(records)

    assert [o.severity for o in overlaps] == ["critical", "high", "medium"]
    critical, high, medium = overlaps
    assert critical.overlap_type == OverlapType.EXACT_DUPLICATE
    assert critical.suggested_fix == "Delete duplicate trip T-2"
    assert high.conflict_type == "vehicle"
    assert high.overlap_hours == 6.0
    assert high.suggested_fix == "Adjust trip times or assign different vehicle for trip T-4"
    assert medium.conflict_type == "driver"
    assert medium.trip_a.id == 5
    assert medium.to_dict()["trip_b"]["trip_id"] == 6


def test_pairwise_sweep_reports_shared_vehicle_and_driver_once():
    records = [
        record(1, 0, 50, start_offset_hours=0, duration_hours=3, driver_id=4),
        record(2, 60, 90, start_offset_hours=2, duration_hours=3, driver_id=4),
    ]

    overlaps = find_pairwise_overlaps(records)

    assert len(overlaps) == 1
    assert overlaps[0].conflict_type == "both_vehicle_and_driver"
    assert overlaps[0].suggested_fix.startswith("Critical conflict")


def test_pairwise_sweep_ignores_unrelated_trips():
    records = [
        record(1, 0, 50, start_offset_hours=0, duration_hours=3),
        record(2, 0, 50, start_offset_hours=1, duration_hours=3, vehicle_id=2),
        record(3, 60, 90, start_offset_hours=3, duration_hours=3),
    ]

    assert find_pairwise_overlaps(records) == []
