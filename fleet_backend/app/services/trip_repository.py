"""
Tenant-scoped trip queries shared by the integrity validators.

Every function takes the organization id explicitly. Soft-deleted trips are
excluded unless a function says otherwise.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, or_, and_
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_backend.app.core.clock import as_utc
from fleet_backend.app.models.driver import Driver
from fleet_backend.app.models.trip import Trip
from fleet_backend.app.models.vehicle import Vehicle
from fleet_backend.app.services.trip_records import TripRecord


def _chronological():
    return (Trip.trip_start_date.asc(), Trip.id.asc())


async def get_trip(
    db: AsyncSession,
    organization_id: int,
    trip_id: int,
    include_deleted: bool = False,
) -> Optional[Trip]:
    query = select(Trip).where(Trip.id == trip_id, Trip.organization_id == organization_id)
    if not include_deleted:
        query = query.where(Trip.deleted_at.is_(None))
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_vehicle(db: AsyncSession, organization_id: int, vehicle_id: int) -> Optional[Vehicle]:
    result = await db.execute(
        select(Vehicle).where(Vehicle.id == vehicle_id, Vehicle.organization_id == organization_id)
    )
    return result.scalar_one_or_none()


async def get_driver(db: AsyncSession, organization_id: int, driver_id: int) -> Optional[Driver]:
    result = await db.execute(
        select(Driver).where(Driver.id == driver_id, Driver.organization_id == organization_id)
    )
    return result.scalar_one_or_none()


async def serial_number_taken(
    db: AsyncSession,
    organization_id: int,
    serial_number: str,
    exclude_trip_id: Optional[int] = None,
) -> bool:
    """Serial numbers stay reserved by soft-deleted trips as well."""
    query = select(Trip.id).where(
        Trip.organization_id == organization_id,
        Trip.trip_serial_number == serial_number,
    )
    if exclude_trip_id is not None:
        query = query.where(Trip.id != exclude_trip_id)
    result = await db.execute(query.limit(1))
    return result.scalar_one_or_none() is not None


async def vehicle_trip_models(
    db: AsyncSession,
    organization_id: int,
    vehicle_id: int,
    include_deleted: bool = False,
) -> List[Trip]:
    """ORM trips of a vehicle in chronological order (start date, then id)."""
    query = select(Trip).where(Trip.organization_id == organization_id, Trip.vehicle_id == vehicle_id)
    if not include_deleted:
        query = query.where(Trip.deleted_at.is_(None))
    result = await db.execute(query.order_by(*_chronological()))
    return list(result.scalars().all())


async def vehicle_history(
    db: AsyncSession,
    organization_id: int,
    vehicle_id: int,
    exclude_trip_id: Optional[int] = None,
) -> List[TripRecord]:
    """Non-deleted trips of a vehicle as snapshots, in chronological order."""
    trips = await vehicle_trip_models(db, organization_id, vehicle_id)
    return [TripRecord.from_model(t) for t in trips if exclude_trip_id is None or t.id != exclude_trip_id]


async def overlapping_trips(
    db: AsyncSession,
    organization_id: int,
    window_start: datetime,
    window_end: datetime,
    vehicle_id: Optional[int] = None,
    driver_id: Optional[int] = None,
    exclude_trip_id: Optional[int] = None,
) -> List[TripRecord]:
    """
    Trips of the vehicle or the driver whose window intersects ``[window_start, window_end)``.
    """
    scope = []
    if vehicle_id is not None:
        scope.append(Trip.vehicle_id == vehicle_id)
    if driver_id is not None:
        scope.append(Trip.driver_id == driver_id)
    if not scope:
        return []

    query = select(Trip).where(
        Trip.organization_id == organization_id,
        Trip.deleted_at.is_(None),
        Trip.trip_start_date < as_utc(window_end),
        Trip.trip_end_date > as_utc(window_start),
        or_(*scope),
    )
    if exclude_trip_id is not None:
        query = query.where(Trip.id != exclude_trip_id)

    result = await db.execute(query.order_by(*_chronological()))
    return [TripRecord.from_model(t) for t in result.scalars().all()]


async def trips_in_range(
    db: AsyncSession,
    organization_id: int,
    vehicle_id: Optional[int] = None,
    driver_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> List[TripRecord]:
    """Non-deleted trips whose window touches the optional date range."""
    conditions = [Trip.organization_id == organization_id, Trip.deleted_at.is_(None)]
    if vehicle_id is not None:
        conditions.append(Trip.vehicle_id == vehicle_id)
    if driver_id is not None:
        conditions.append(Trip.driver_id == driver_id)
    if date_from is not None:
        conditions.append(Trip.trip_end_date > as_utc(date_from))
    if date_to is not None:
        conditions.append(Trip.trip_start_date < as_utc(date_to))

    result = await db.execute(select(Trip).where(and_(*conditions)).order_by(*_chronological()))
    return [TripRecord.from_model(t) for t in result.scalars().all()]
