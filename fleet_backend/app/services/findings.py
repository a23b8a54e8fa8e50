"""
Structured validation findings.

Validators never build human-readable strings; they return ``Finding``
values (a machine-readable code, the computed values and the threshold
crossed). Messages are rendered from ``MESSAGE_TEMPLATES`` when a finding
is serialized for a response or an audit entry.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

from fleet_backend.app.models.trip_enums import AuditSeverity


MESSAGE_TEMPLATES: Dict[str, str] = {
    # Correctness
    "negative_distance": "Negative distance: end_km {end_km} is less than start_km {start_km}",
    "invalid_duration": "Trip end {trip_end_date} is not after trip start {trip_start_date}",
    "negative_odometer_gap": (
        "start_km {start_km} is less than end_km {neighbour_end_km} of previous trip "
        "{neighbour_serial} (gap {gap_km} km)"
    ),
    "successor_overrun": (
        "Odometer {field} {value_km} is greater than start_km {neighbour_start_km} of next trip "
        "{neighbour_serial}"
    ),
    # Hard range rejections
    "absolute_distance_exceeded": "Distance {distance_km} km exceeds absolute maximum of {threshold} km",
    "distance_ceiling_exceeded": "Distance {distance_km} km exceeds the {threshold} km ceiling for {trip_type} trips",
    "duration_ceiling_exceeded": "Duration {duration_hours} h exceeds the {threshold} h ceiling for {trip_type} trips",
    "excessive_speed": "Average speed {speed_kmh} km/h exceeds maximum {threshold} km/h",
    "impossible_efficiency": "Fuel efficiency {efficiency_kmpl} km/L is outside the possible range {min_kmpl}-{max_kmpl} km/L",
    "excessive_fuel_quantity": "Fuel quantity {fuel_quantity} L exceeds maximum {threshold} L",
    "negative_fuel_quantity": "Fuel quantity {fuel_quantity} L is negative",
    "negative_expense": "{expense_field} {amount} is negative",
    # Warnings
    "short_distance": "Very short distance {distance_km} km (below {threshold} km) without an edge-case classification",
    "long_distance": "Long distance {distance_km} km (above {threshold} km) not marked as long-haul",
    "long_duration": "Long duration {duration_hours} h (above {threshold} h)",
    "high_speed": "High average speed {speed_kmh} km/h (above {threshold} km/h)",
    "low_speed": "Very low average speed {speed_kmh} km/h over {distance_km} km",
    "poor_efficiency": "Poor fuel efficiency {efficiency_kmpl} km/L (below {threshold} km/L)",
    "high_efficiency": "Unusually high fuel efficiency {efficiency_kmpl} km/L (above {threshold} km/L)",
    "large_fuel_quantity": "Large fuel quantity {fuel_quantity} L (above {threshold} L)",
    "unusual_fuel_rate": "Fuel rate {fuel_rate_per_liter} per litre is outside the usual {min_rate}-{max_rate} range",
    "large_expense": "{expense_field} {amount} exceeds {threshold}",
    "baseline_deviation": (
        "Fuel efficiency {efficiency_kmpl} km/L deviates from vehicle baseline {baseline_kmpl} km/L "
        "(band {lower_kmpl}-{upper_kmpl})"
    ),
    "large_odometer_gap": "Odometer gap of {gap_km} km {direction} trip {neighbour_serial} (above {threshold} km)",
    # Informational
    "edge_case_zero_distance": "{trip_label} trip with zero distance",
    "edge_case_short_distance": "{trip_label} trip with {distance_km} km distance",
    "edge_case_refueling_only": "Refueling-only trip of {distance_km} km with {fuel_quantity} L",
    "edge_case_long_haul": "{trip_label} trip of {distance_km} km over {duration_hours} h; extended ceilings apply",
    "values_in_range": "All values within expected ranges",
    "odometer_continuous": "Odometer continuity verified",
    "no_conflicts": "No conflicts found",
    "vehicle_conflict": (
        "Vehicle {vehicle_id} is already booked by trip {conflicting_serial} "
        "({conflicting_start} to {conflicting_end}, {overlap_type}, {overlap_hours} h overlap)"
    ),
    "driver_conflict": (
        "Driver {driver_id} is already assigned to trip {conflicting_serial} "
        "({conflicting_start} to {conflicting_end}, {overlap_type}, {overlap_hours} h overlap)"
    ),
    "dependent_trips": "Refueling trip {trip_serial} has {dependent_count} dependent trip(s) in its mileage segment",
    "soft_deleted_with_dependents": (
        "Refueling trip {trip_serial} soft-deleted; {dependent_count} dependent trip(s) now roll into the next segment"
    ),
    "segment_recomputed": "Mileage segment ending at trip {trip_serial} recomputed: {old_kmpl} -> {new_kmpl} km/L",
    "segment_efficiency_out_of_range": (
        "Mileage segment ending at trip {trip_serial} would reach {efficiency_kmpl} km/L, "
        "outside the possible range {min_kmpl}-{max_kmpl} km/L"
    ),
    "duplicate_serial_number": "Trip serial number {trip_serial_number} already exists",
    "trip_soft_deleted": "Trip {trip_serial} soft-deleted",
    "trip_hard_deleted": "Trip {trip_serial} permanently removed",
    "trip_restored": "Trip {trip_serial} restored",
    "odometer_corrected": "Odometer of trip {trip_serial} corrected by {delta_km} km; {shifted_count} later trip(s) shifted",
    "chain_rebuilt": "Mileage chain rebuilt: {segment_count} segment(s), {changed_count} efficiency value(s) changed",
}


@dataclass(frozen=True)
class Finding:
    """One individual validation result."""

    code: str
    severity: AuditSeverity
    values: Dict[str, Any] = field(default_factory=dict)
    threshold: Optional[float] = None

    @property
    def message(self) -> str:
        return render_message(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "severity": self.severity.value,
            "message": self.message,
            "values": self.values,
            "threshold": self.threshold,
        }


def render_message(finding: Finding) -> str:
    template = MESSAGE_TEMPLATES.get(finding.code)
    if template is None:
        return finding.code.replace("_", " ")
    context = dict(finding.values)
    context.setdefault("threshold", finding.threshold)
    try:
        return template.format(**context)
    except KeyError:
        return finding.code.replace("_", " ")


def info(code: str, **values) -> Finding:
    return Finding(code=code, severity=AuditSeverity.INFO, values=values)


def warning(code: str, threshold: Optional[float] = None, **values) -> Finding:
    return Finding(code=code, severity=AuditSeverity.WARNING, values=values, threshold=threshold)


def error(code: str, threshold: Optional[float] = None, **values) -> Finding:
    return Finding(code=code, severity=AuditSeverity.ERROR, values=values, threshold=threshold)


def worst_severity(findings: Iterable[Finding]) -> AuditSeverity:
    """Highest severity among findings (``info`` when there are none)."""
    worst = AuditSeverity.INFO
    for finding in findings:
        if finding.severity.rank > worst.rank:
            worst = finding.severity
    return worst


def has_errors(findings: Iterable[Finding]) -> bool:
    return any(f.severity.rank >= AuditSeverity.ERROR.rank for f in findings)
