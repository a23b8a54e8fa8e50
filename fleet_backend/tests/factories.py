"""
Shared builders for test data and auth headers.
"""

from datetime import datetime, timedelta, timezone

from fleet_backend.app.core.jwt import create_access_token
from fleet_backend.app.models.enums import UserRole
from fleet_backend.app.services.trip_records import TripRecord

ORG_ID = 1
OTHER_ORG_ID = 2
BASE_TIME = datetime(2024, 3, 1, 6, 0, tzinfo=timezone.utc)


def auth_headers_for(role: UserRole = UserRole.FLEET_MANAGER, organization_id: int = ORG_ID, user_id: int = 1) -> dict:
    token = create_access_token(data={
        "sub": f"user{user_id}",
        "user_id": user_id,
        "organization_id": organization_id,
        "role": role.value,
    })
    return {"Authorization": f"Bearer {token}"}


def trip_payload(
    vehicle_id: int,
    serial: str,
    start_km: int,
    end_km: int,
    start_offset_hours: float = 0,
    duration_hours: float = 4,
    **extra,
) -> dict:
    """Write payload for a trip starting ``start_offset_hours`` after BASE_TIME."""
    start = BASE_TIME + timedelta(hours=start_offset_hours)
    payload = {
        "trip_serial_number": serial,
        "vehicle_id": vehicle_id,
        "trip_start_date": start,
        "trip_end_date": start + timedelta(hours=duration_hours),
        "start_km": start_km,
        "end_km": end_km,
    }
    payload.update(extra)
    return payload


def as_json(payload: dict) -> dict:
    return {k: v.isoformat() if isinstance(v, datetime) else v for k, v in payload.items()}


def record(
    trip_id,
    start_km: int,
    end_km: int,
    start_offset_hours: float = 0,
    duration_hours: float = 4,
    vehicle_id: int = 1,
    **extra,
) -> TripRecord:
    """In-memory trip snapshot for the pure validators."""
    start = BASE_TIME + timedelta(hours=start_offset_hours)
    extra.setdefault("trip_serial_number", f"T-{trip_id}" if trip_id is not None else None)
    return TripRecord(
        id=trip_id,
        organization_id=ORG_ID,
        vehicle_id=vehicle_id,
        trip_start_date=start,
        trip_end_date=start + timedelta(hours=duration_hours),
        start_km=start_km,
        end_km=end_km,
        **extra,
    )
