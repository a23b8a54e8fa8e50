"""
Value range and edge-case validation tests.
"""

from types import SimpleNamespace

import pytest

from fleet_backend.app.core.config import IntegrityThresholds
from fleet_backend.app.models.trip_enums import AuditSeverity, TripType, ValidationOutcome
from fleet_backend.app.services.value_range import (
    classify_edge_case,
    evaluate_trip_values,
    sweep_anomalies,
)
from fleet_backend.tests.factories import record


def codes(result):
    return [f.code for f in result.findings]


def test_plain_trip_is_accepted():
    result = evaluate_trip_values(record(1, 1000, 1050, duration_hours=2))

    assert result.outcome == ValidationOutcome.ACCEPTED
    assert codes(result) == ["values_in_range"]
    assert result.severity == AuditSeverity.INFO


def test_negative_distance_is_a_correctness_violation():
    result = evaluate_trip_values(record(None, 1000, 950))

    assert result.outcome == ValidationOutcome.REJECTED
    assert result.is_correctness_violation
    finding = result.findings[0]
    assert finding.code == "negative_distance"
    assert finding.values["distance_km"] == -50
    assert "950" in finding.message


def test_end_not_after_start_is_rejected():
    result = evaluate_trip_values(record(None, 1000, 1010, duration_hours=0))

    assert result.outcome == ValidationOutcome.REJECTED
    assert "invalid_duration" in codes(result)
    assert result.is_correctness_violation


def test_long_haul_tag_never_bypasses_absolute_cap():
    trip = record(None, 0, 3500, duration_hours=50, trip_type=TripType.LONG_HAUL)

    result = evaluate_trip_values(trip)

    assert result.outcome == ValidationOutcome.REJECTED
    assert "absolute_distance_exceeded" in codes(result)
    assert not result.is_correctness_violation
    assert result.findings[0].threshold == 3000


def test_long_haul_tag_raises_distance_ceiling():
    trip = record(None, 0, 2500, duration_hours=40, trip_type=TripType.LONG_HAUL)

    result = evaluate_trip_values(trip)

    assert result.outcome == ValidationOutcome.EDGE_CASE
    assert result.edge_case.kind == "long_haul"
    assert "long_distance" not in codes(result)
    assert "edge_case_long_haul" in codes(result)


def test_untagged_trip_over_standard_ceiling_is_rejected():
    result = evaluate_trip_values(record(None, 0, 2500, duration_hours=40))

    assert result.outcome == ValidationOutcome.REJECTED
    assert "distance_ceiling_exceeded" in codes(result)


def test_interstate_in_notes_counts_as_long_haul():
    trip = record(None, 0, 2200, duration_hours=30, notes="Interstate delivery to Pune")

    result = evaluate_trip_values(trip)

    assert result.outcome == ValidationOutcome.EDGE_CASE
    assert result.edge_case.kind == "long_haul"


def test_long_distance_warning():
    result = evaluate_trip_values(record(None, 0, 1600, duration_hours=30))

    assert result.outcome == ValidationOutcome.WARNING
    assert "long_distance" in codes(result)
    assert [w.code for w in result.warnings] == ["long_distance"]


def test_excessive_speed_rejected_and_high_speed_warned():
    too_fast = evaluate_trip_values(record(None, 0, 300, duration_hours=2))
    fast = evaluate_trip_values(record(None, 0, 220, duration_hours=2))

    assert "excessive_speed" in codes(too_fast)
    assert too_fast.outcome == ValidationOutcome.REJECTED
    assert "high_speed" in codes(fast)
    assert fast.outcome == ValidationOutcome.WARNING


def test_low_speed_warning():
    result = evaluate_trip_values(record(None, 0, 60, duration_hours=20))

    assert "low_speed" in codes(result)


def test_short_distance_warned_without_edge_case():
    result = evaluate_trip_values(record(None, 100, 103, duration_hours=1))

    assert result.outcome == ValidationOutcome.WARNING
    assert "short_distance" in codes(result)


def test_zero_distance_maintenance_is_edge_case():
    trip = record(None, 500, 500, duration_hours=1, trip_type=TripType.MAINTENANCE)

    result = evaluate_trip_values(trip)

    assert result.outcome == ValidationOutcome.EDGE_CASE
    assert result.severity == AuditSeverity.INFO
    assert result.warnings == []
    assert result.findings[-1].message == "Maintenance trip with zero distance"


def test_maintenance_keyword_in_notes():
    trip = record(None, 500, 503, duration_hours=1, notes="Workshop SERVICE visit")

    edge = classify_edge_case(trip, IntegrityThresholds())

    assert edge.kind == "maintenance"


def test_test_trip_edge_case():
    result = evaluate_trip_values(record(None, 0, 8, duration_hours=1, trip_type=TripType.TEST))

    assert result.outcome == ValidationOutcome.EDGE_CASE
    assert result.edge_case.kind == "test"


def test_refueling_only_requires_fuel():
    with_fuel = record(None, 0, 12, duration_hours=1, refueling_done=True, fuel_quantity=30)
    without_fuel = record(None, 0, 12, duration_hours=1, refueling_done=True, fuel_quantity=0)

    assert classify_edge_case(with_fuel, IntegrityThresholds()).kind == "refueling_only"
    assert classify_edge_case(without_fuel, IntegrityThresholds()) is None


def test_impossible_efficiency_rejected_even_for_edge_cases():
    trip = record(None, 0, 12, duration_hours=1, refueling_done=True, fuel_quantity=30)

    result = evaluate_trip_values(trip, efficiency_kmpl=60)

    assert result.outcome == ValidationOutcome.REJECTED
    assert "impossible_efficiency" in codes(result)


def test_poor_efficiency_warning_relaxed_for_edge_case():
    normal = record(None, 0, 200, duration_hours=4, refueling_done=True, fuel_quantity=80)
    refuel_run = record(None, 0, 12, duration_hours=1, refueling_done=True, fuel_quantity=30)

    assert "poor_efficiency" in codes(evaluate_trip_values(normal, efficiency_kmpl=2.5))
    assert "poor_efficiency" not in codes(evaluate_trip_values(refuel_run, efficiency_kmpl=2.5))


def test_baseline_deviation_needs_confident_baseline():
    trip = record(None, 0, 300, duration_hours=6, refueling_done=True, fuel_quantity=50)
    confident = SimpleNamespace(
        baseline_kmpl=10.0, confidence_score=80, tolerance_lower_kmpl=8.5, tolerance_upper_kmpl=11.5
    )
    unsure = SimpleNamespace(
        baseline_kmpl=10.0, confidence_score=20, tolerance_lower_kmpl=8.5, tolerance_upper_kmpl=11.5
    )

    assert "baseline_deviation" in codes(evaluate_trip_values(trip, baseline=confident, efficiency_kmpl=6))
    assert "baseline_deviation" not in codes(evaluate_trip_values(trip, baseline=unsure, efficiency_kmpl=6))


def test_fuel_quantity_bounds():
    excessive = evaluate_trip_values(record(None, 0, 100, duration_hours=2, fuel_quantity=600))
    large = evaluate_trip_values(record(None, 0, 100, duration_hours=2, fuel_quantity=250))
    negative = evaluate_trip_values(record(None, 0, 100, duration_hours=2, fuel_quantity=-5))

    assert "excessive_fuel_quantity" in codes(excessive)
    assert large.outcome == ValidationOutcome.WARNING
    assert "negative_fuel_quantity" in codes(negative)


def test_unusual_fuel_rate_warning():
    result = evaluate_trip_values(record(None, 0, 100, duration_hours=2, fuel_rate_per_liter=250))

    assert "unusual_fuel_rate" in codes(result)


def test_expense_checks():
    negative = evaluate_trip_values(record(None, 0, 100, duration_hours=2, toll_expense=-10))
    large = evaluate_trip_values(record(None, 0, 100, duration_hours=2, driver_expense=6000))

    assert negative.outcome == ValidationOutcome.REJECTED
    assert "negative_expense" in codes(negative)
    assert large.outcome == ValidationOutcome.WARNING
    assert large.findings[0].values["expense_field"] == "driver_expense"


def test_thresholds_can_be_overridden_per_call():
    strict = IntegrityThresholds(long_distance_warning_km=50)

    result = evaluate_trip_values(record(None, 0, 80, duration_hours=2), strict)

    assert "long_distance" in codes(result)


@pytest.mark.parametrize("kind,expected", [
    (TripType.SERVICE, "Service trip with zero distance"),
    (TripType.MAINTENANCE, "Maintenance trip with zero distance"),
])
def test_zero_distance_messages(kind, expected):
    result = evaluate_trip_values(record(None, 10, 10, duration_hours=1, trip_type=kind))

    assert result.findings[-1].message == expected


def test_sweep_buckets_findings_by_code():
    records = [
        record(1, 0, 1600, duration_hours=30),
        record(2, 2000, 3700, start_offset_hours=40, duration_hours=30),
        record(3, 4000, 4003, start_offset_hours=80, duration_hours=1),
        record(4, 5000, 5050, start_offset_hours=90, duration_hours=2),
    ]

    buckets = sweep_anomalies(records)
    by_code = {b.code: b for b in buckets}

    assert by_code["long_distance"].count == 2
    assert by_code["long_distance"].trip_ids == [1, 2]
    assert by_code["short_distance"].trip_ids == [3]
    assert by_code["long_distance"].recommendation.startswith("Mark as long-haul")
    assert buckets[0].code == "long_distance"
