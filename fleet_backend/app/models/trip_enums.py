"""
Trip integrity enumerations.
"""

import enum


class TripType(str, enum.Enum):
    """Trip classification; drives edge-case exemptions."""
    NORMAL = "normal"
    MAINTENANCE = "maintenance"
    SERVICE = "service"
    TEST = "test"
    LONG_HAUL = "long_haul"
    INTERSTATE = "interstate"
    REFUELING = "refueling"  # Refueling-only run to the pump


class AuditSeverity(str, enum.Enum):
    """Audit entry severity, ordered info < warning < error < critical."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    AuditSeverity.INFO: 0,
    AuditSeverity.WARNING: 1,
    AuditSeverity.ERROR: 2,
    AuditSeverity.CRITICAL: 3,
}


class ValidationOutcome(str, enum.Enum):
    """Single classification returned by the value range validator."""
    ACCEPTED = "accepted"
    EDGE_CASE = "edge_case"
    WARNING = "warning"
    REJECTED = "rejected"


class OverlapType(str, enum.Enum):
    EXACT_DUPLICATE = "exact_duplicate"
    NEW_CONTAINED_IN_EXISTING = "new_contained_in_existing"
    EXISTING_CONTAINED_IN_NEW = "existing_contained_in_new"
    OVERLAP_AT_START = "overlap_at_start"  # Candidate starts inside the existing trip
    OVERLAP_AT_END = "overlap_at_end"  # Candidate ends inside the existing trip


class WriteMode(str, enum.Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    RESTORE = "restore"
