"""
Immutable trip snapshots used by the validators.

Validators work on ``TripRecord`` values rather than ORM instances so they
stay pure, can evaluate a proposed change before anything is flushed, and
see a consistent snapshot of the vehicle history.
"""

from dataclasses import dataclass, replace, asdict
from datetime import datetime
from typing import Any, Dict, Optional

from fleet_backend.app.core.clock import as_utc
from fleet_backend.app.models.trip_enums import TripType


EXPENSE_FIELDS = (
    "fuel_expense",
    "driver_expense",
    "toll_expense",
    "other_expense",
    "breakdown_expense",
    "miscellaneous_expense",
)


@dataclass(frozen=True)
class TripRecord:
    organization_id: int
    vehicle_id: int
    trip_start_date: datetime
    trip_end_date: datetime
    start_km: int
    end_km: int
    id: Optional[int] = None
    trip_serial_number: Optional[str] = None
    driver_id: Optional[int] = None
    trip_type: TripType = TripType.NORMAL
    notes: Optional[str] = None
    refueling_done: bool = False
    fuel_quantity: Optional[float] = None
    fuel_rate_per_liter: Optional[float] = None
    fuel_efficiency_kmpl: Optional[float] = None
    fuel_expense: float = 0
    driver_expense: float = 0
    toll_expense: float = 0
    other_expense: float = 0
    breakdown_expense: float = 0
    miscellaneous_expense: float = 0
    deleted_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, trip) -> "TripRecord":
        return cls(
            id=trip.id,
            organization_id=trip.organization_id,
            trip_serial_number=trip.trip_serial_number,
            vehicle_id=trip.vehicle_id,
            driver_id=trip.driver_id,
            trip_type=TripType(trip.trip_type) if trip.trip_type else TripType.NORMAL,
            notes=trip.notes,
            trip_start_date=as_utc(trip.trip_start_date),
            trip_end_date=as_utc(trip.trip_end_date),
            start_km=trip.start_km,
            end_km=trip.end_km,
            refueling_done=bool(trip.refueling_done),
            fuel_quantity=trip.fuel_quantity,
            fuel_rate_per_liter=trip.fuel_rate_per_liter,
            fuel_efficiency_kmpl=trip.fuel_efficiency_kmpl,
            fuel_expense=trip.fuel_expense or 0,
            driver_expense=trip.driver_expense or 0,
            toll_expense=trip.toll_expense or 0,
            other_expense=trip.other_expense or 0,
            breakdown_expense=trip.breakdown_expense or 0,
            miscellaneous_expense=trip.miscellaneous_expense or 0,
            deleted_at=as_utc(trip.deleted_at),
        )

    def with_changes(self, **changes) -> "TripRecord":
        for key in ("trip_start_date", "trip_end_date", "deleted_at"):
            if key in changes:
                changes[key] = as_utc(changes[key])
        return replace(self, **changes)

    @property
    def distance_km(self) -> int:
        return self.end_km - self.start_km

    @property
    def duration_hours(self) -> float:
        return (self.trip_end_date - self.trip_start_date).total_seconds() / 3600

    @property
    def average_speed_kmh(self) -> Optional[float]:
        duration = self.duration_hours
        if self.distance_km <= 0 or duration <= 0:
            return None
        return self.distance_km / duration

    @property
    def is_refuel(self) -> bool:
        # A refuel marks a tank-to-tank boundary even when no quantity was recorded
        return bool(self.refueling_done)

    @property
    def sort_key(self):
        # Ties on start date are broken by id; unsaved candidates sort last
        return (self.trip_start_date, self.id if self.id is not None else float("inf"))

    @property
    def label(self) -> str:
        return self.trip_serial_number or (f"#{self.id}" if self.id is not None else "(new)")

    def snapshot(self) -> Dict[str, Any]:
        """JSON-friendly dict for audit payloads."""
        data = asdict(self)
        data["trip_type"] = self.trip_type.value
        for key in ("trip_start_date", "trip_end_date", "deleted_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data
