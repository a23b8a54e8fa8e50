"""
Integration tests for the trip integrity API.

Tests the write path over HTTP, error envelopes, the read-only integrity
sweeps, the audit trail endpoints and role enforcement.
"""

import pytest

from fleet_backend.app.models.enums import UserRole
from fleet_backend.tests.factories import OTHER_ORG_ID, as_json, auth_headers_for, trip_payload

# Note: Client and DB setup are in conftest.py


@pytest.fixture
async def vehicle_id(client, auth_headers):
    """Register a vehicle over the API and return its id."""
    response = await client.post("/v1/vehicles", headers=auth_headers, json={
        "registration_number": "MH12XY0001",
        "vehicle_type": "Truck",
        "fuel_type": "Diesel"
    })
    assert response.status_code == 201
    return response.json()["id"]


async def post_trip(client, headers, vehicle_id, serial, start_km, end_km, offset, duration=2, **extra):
    payload = as_json(trip_payload(vehicle_id, serial, start_km, end_km, offset, duration, **extra))
    return await client.post("/v1/trips", headers=headers, json=payload)


# TEST 1: Registry
@pytest.mark.asyncio
async def test_register_and_list_vehicles(client, auth_headers, vehicle_id):
    """Vehicles are listed per organization; duplicates are refused."""
    duplicate = await client.post("/v1/vehicles", headers=auth_headers, json={"registration_number": "MH12XY0001"})
    assert duplicate.status_code == 400
    assert duplicate.json()["error_code"] == "ERR_BAD_REQUEST"

    response = await client.get("/v1/vehicles", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["total"] == 1

    other_org = await client.get("/v1/vehicles", headers=auth_headers_for(organization_id=OTHER_ORG_ID))
    assert other_org.json()["total"] == 0


@pytest.mark.asyncio
async def test_register_driver(client, auth_headers):
    response = await client.post("/v1/drivers", headers=auth_headers, json={"name": "Sunil Rao"})
    assert response.status_code == 201
    assert response.json()["is_active"] is True


# TEST 2: Trip write path
@pytest.mark.asyncio
async def test_create_trip(client, auth_headers, vehicle_id):
    """Accepted trip returns the trip, findings and the audit entry id."""
    response = await post_trip(client, auth_headers, vehicle_id, "A", 1000, 1050, offset=2)

    assert response.status_code == 201
    body = response.json()
    assert body["outcome"] == "accepted"
    assert body["severity"] == "info"
    assert body["trip"]["trip_serial_number"] == "A"
    assert body["trip"]["created_by"] == 1
    assert body["audit_entry_id"] > 0

    trip_id = body["trip"]["id"]
    read = await client.get(f"/v1/trips/{trip_id}", headers=auth_headers)
    assert read.status_code == 200
    assert read.json()["end_km"] == 1050


@pytest.mark.asyncio
async def test_overlap_returns_conflict_with_findings(client, auth_headers, vehicle_id):
    """A vehicle double-booking is a 409 carrying the conflicting trip."""
    await post_trip(client, auth_headers, vehicle_id, "A", 1000, 1050, offset=2)

    response = await post_trip(client, auth_headers, vehicle_id, "B", 1050, 1100, offset=3)

    assert response.status_code == 409
    body = response.json()
    assert body["error_code"] == "ERR_TRIP_CONFLICT_VEHICLE"
    assert body["details"]["conflicts"][0]["overlap_type"] == "overlap_at_start"
    assert "vehicle_conflict" in [f["code"] for f in body["details"]["findings"]]


@pytest.mark.asyncio
async def test_negative_distance_is_unprocessable(client, auth_headers, vehicle_id):
    response = await post_trip(client, auth_headers, vehicle_id, "BAD", 1000, 950, offset=2)

    assert response.status_code == 422
    body = response.json()
    assert body["error_code"] == "ERR_TRIP_CORRECTNESS_001"
    assert body["details"]["findings"][0]["code"] == "negative_distance"


@pytest.mark.asyncio
async def test_gap_warning_is_returned(client, auth_headers, vehicle_id):
    await post_trip(client, auth_headers, vehicle_id, "A", 1000, 1050, offset=2)

    response = await post_trip(client, auth_headers, vehicle_id, "D", 1250, 1300, offset=6)

    assert response.status_code == 201
    body = response.json()
    assert body["severity"] == "warning"
    assert [w["code"] for w in body["warnings"]] == ["large_odometer_gap"]


@pytest.mark.asyncio
async def test_unknown_vehicle_is_not_found(client, auth_headers):
    response = await post_trip(client, auth_headers, 999, "A", 1000, 1050, offset=2)

    assert response.status_code == 404
    assert response.json()["error_code"] == "ERR_NOT_FOUND_001"


@pytest.mark.asyncio
async def test_update_delete_restore(client, auth_headers, vehicle_id):
    """A trip can be edited, soft-deleted and restored."""
    created = await post_trip(client, auth_headers, vehicle_id, "A", 1000, 1050, offset=2)
    trip_id = created.json()["trip"]["id"]

    updated = await client.put(f"/v1/trips/{trip_id}", headers=auth_headers, json={"notes": "Customer detour"})
    assert updated.status_code == 200
    assert updated.json()["trip"]["notes"] == "Customer detour"

    cleared = await client.put(f"/v1/trips/{trip_id}", headers=auth_headers, json={"end_km": None})
    assert cleared.status_code == 422

    deleted = await client.delete(f"/v1/trips/{trip_id}", headers=auth_headers, params={"reason": "Duplicate"})
    assert deleted.status_code == 200
    assert deleted.json()["trip"]["deleted_at"] is not None

    missing = await client.get(f"/v1/trips/{trip_id}", headers=auth_headers)
    assert missing.status_code == 404
    kept = await client.get(f"/v1/trips/{trip_id}", headers=auth_headers, params={"include_deleted": True})
    assert kept.status_code == 200

    restored = await client.post(f"/v1/trips/{trip_id}/restore", headers=auth_headers)
    assert restored.status_code == 200
    assert restored.json()["trip"]["deleted_at"] is None


@pytest.mark.asyncio
async def test_hard_delete_omits_trip(client, auth_headers, vehicle_id):
    created = await post_trip(client, auth_headers, vehicle_id, "A", 1000, 1050, offset=2)
    trip_id = created.json()["trip"]["id"]

    response = await client.delete(f"/v1/trips/{trip_id}", headers=auth_headers, params={"hard_delete": True})

    assert response.status_code == 200
    assert response.json()["trip"] is None
    assert (await client.get(f"/v1/trips/{trip_id}", headers=auth_headers,
                             params={"include_deleted": True})).status_code == 404


# TEST 3: Availability pre-check
@pytest.mark.asyncio
async def test_availability(client, auth_headers, vehicle_id):
    await post_trip(client, auth_headers, vehicle_id, "A", 1000, 1050, offset=2)

    busy = await client.post("/v1/trips/availability", headers=auth_headers, json={
        "vehicle_id": vehicle_id,
        "window_start": "2024-03-01T09:00:00+00:00",
        "window_end": "2024-03-01T11:00:00+00:00"
    })
    free = await client.post("/v1/trips/availability", headers=auth_headers, json={
        "vehicle_id": vehicle_id,
        "window_start": "2024-03-01T10:00:00+00:00",
        "window_end": "2024-03-01T12:00:00+00:00"
    })

    assert busy.status_code == 200
    assert busy.json()["available"] is False
    assert busy.json()["conflict_count"] == 1
    assert free.json()["available"] is True


@pytest.mark.asyncio
async def test_availability_requires_subject(client, auth_headers):
    response = await client.post("/v1/trips/availability", headers=auth_headers, json={
        "window_start": "2024-03-01T09:00:00+00:00",
        "window_end": "2024-03-01T11:00:00+00:00"
    })
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_VALIDATION"


# TEST 4: Odometer corrections
@pytest.mark.asyncio
async def test_correction_preview_and_apply(client, auth_headers, vehicle_id):
    first = await post_trip(client, auth_headers, vehicle_id, "A", 1000, 1050, offset=2)
    await post_trip(client, auth_headers, vehicle_id, "C", 1050, 1090, offset=4)
    trip_id = first.json()["trip"]["id"]

    preview = await client.post(f"/v1/trips/{trip_id}/odometer-correction/preview", headers=auth_headers,
                                json={"new_end_km": 1060})
    assert preview.status_code == 200
    assert preview.json()["odometer_delta_km"] == 10
    assert len(preview.json()["affected_trips"]) == 2

    # Preview writes nothing
    unchanged = await client.get(f"/v1/trips/{trip_id}", headers=auth_headers)
    assert unchanged.json()["end_km"] == 1050

    missing_reason = await client.post(f"/v1/trips/{trip_id}/odometer-correction", headers=auth_headers,
                                       json={"new_end_km": 1060})
    assert missing_reason.status_code == 422

    applied = await client.post(f"/v1/trips/{trip_id}/odometer-correction", headers=auth_headers,
                                json={"new_end_km": 1060, "reason": "Odometer photo reviewed"})
    assert applied.status_code == 200
    assert applied.json()["audit_entry_id"] > 0


@pytest.mark.asyncio
async def test_operator_cannot_apply_correction(client, auth_headers, operator_headers, vehicle_id):
    created = await post_trip(client, operator_headers, vehicle_id, "A", 1000, 1050, offset=2)
    assert created.status_code == 201
    trip_id = created.json()["trip"]["id"]

    response = await client.post(f"/v1/trips/{trip_id}/odometer-correction", headers=operator_headers,
                                 json={"new_end_km": 1060, "reason": "Typo"})

    assert response.status_code == 403
    assert response.json()["error_code"] == "ERR_FORBIDDEN"


# TEST 5: Mileage chain
@pytest.mark.asyncio
async def test_mileage_chain_and_rebuild(client, auth_headers, operator_headers, vehicle_id):
    await post_trip(client, auth_headers, vehicle_id, "R1", 950, 1000, offset=0,
                    refueling_done=True, fuel_quantity=0)
    await post_trip(client, auth_headers, vehicle_id, "R2", 1000, 1400, offset=4, duration=6,
                    refueling_done=True, fuel_quantity=40)

    chain = await client.get(f"/v1/vehicles/{vehicle_id}/mileage-chain", headers=auth_headers)
    assert chain.status_code == 200
    segments = chain.json()["segments"]
    assert len(segments) == 1
    assert segments[0]["kmpl"] == 10.0
    assert segments[0]["distance_km"] == 400

    # Served from cache on the second read
    cached = await client.get(f"/v1/vehicles/{vehicle_id}/mileage-chain", headers=operator_headers)
    assert cached.json()["segments"] == segments

    forbidden = await client.post(f"/v1/vehicles/{vehicle_id}/mileage-chain/rebuild", headers=operator_headers)
    assert forbidden.status_code == 403

    rebuilt = await client.post(f"/v1/vehicles/{vehicle_id}/mileage-chain/rebuild", headers=auth_headers)
    assert rebuilt.status_code == 200
    assert rebuilt.json()["segments"][0]["kmpl"] == 10.0


@pytest.mark.asyncio
async def test_fuel_baseline_missing_and_insufficient(client, auth_headers, vehicle_id):
    missing = await client.get(f"/v1/vehicles/{vehicle_id}/fuel-baseline", headers=auth_headers)
    assert missing.status_code == 404

    recompute = await client.post(f"/v1/vehicles/{vehicle_id}/fuel-baseline/recompute", headers=auth_headers)
    assert recompute.status_code == 422
    assert recompute.json()["error_code"] == "ERR_INSUFFICIENT_DATA_001"


# TEST 6: Integrity sweeps
@pytest.mark.asyncio
async def test_integrity_reports(client, auth_headers, vehicle_id):
    await post_trip(client, auth_headers, vehicle_id, "A", 1000, 1050, offset=2)
    await post_trip(client, auth_headers, vehicle_id, "D", 1250, 1300, offset=6)
    await post_trip(client, auth_headers, vehicle_id, "S", 1300, 1303, offset=10, duration=1)

    gaps = await client.get(f"/v1/integrity/vehicles/{vehicle_id}/odometer-gaps", headers=auth_headers)
    assert gaps.status_code == 200
    assert gaps.json()["gaps"][0]["gap_km"] == 200
    assert gaps.json()["summary"]["continuity_score"] == 40

    anomalies = await client.get("/v1/integrity/anomalies", headers=auth_headers,
                                 params={"vehicle_id": vehicle_id})
    assert anomalies.status_code == 200
    assert [a["code"] for a in anomalies.json()["anomalies"]] == ["short_distance"]

    overlaps = await client.get("/v1/integrity/overlaps", headers=auth_headers)
    assert overlaps.json()["total"] == 0

    breaks = await client.get(f"/v1/integrity/vehicles/{vehicle_id}/chain-breaks", headers=auth_headers)
    assert breaks.json()["total"] == 0

    unknown = await client.get("/v1/integrity/vehicles/999/odometer-gaps", headers=auth_headers)
    assert unknown.status_code == 404


# TEST 7: Audit trail
@pytest.mark.asyncio
async def test_audit_trail_endpoints(client, auth_headers, vehicle_id):
    created = await post_trip(client, auth_headers, vehicle_id, "A", 1000, 1050, offset=2)
    trip_id = created.json()["trip"]["id"]
    await post_trip(client, auth_headers, vehicle_id, "B", 1050, 1100, offset=3)

    trail = await client.get(f"/v1/audit-trail/entities/trip/{trip_id}", headers=auth_headers)
    assert trail.status_code == 200
    assert [e["operation_type"] for e in trail.json()] == ["trip_insert"]

    rejected = await client.get("/v1/audit-trail/search", headers=auth_headers,
                                params={"severity": "error"})
    assert rejected.json()["total"] == 1
    assert rejected.json()["entries"][0]["operation_type"] == "trip_rejected"

    summary = await client.get("/v1/audit-trail/summary", headers=auth_headers)
    assert summary.status_code == 200
    assert sum(row["entry_count"] for row in summary.json()) == 2

    other_org = await client.get("/v1/audit-trail/search", headers=auth_headers_for(organization_id=OTHER_ORG_ID))
    assert other_org.json()["total"] == 0


# TEST 8: Authentication
@pytest.mark.asyncio
async def test_requests_require_token(client):
    response = await client.get("/v1/vehicles")
    assert response.status_code in (401, 403)

    bad_token = await client.get("/v1/vehicles", headers={"Authorization": "Bearer not-a-token"})
    assert bad_token.status_code == 401
    assert bad_token.json()["error_code"] == "ERR_UNAUTHORIZED"


@pytest.mark.asyncio
async def test_operator_cannot_register_vehicles(client):
    response = await client.post("/v1/vehicles", headers=auth_headers_for(UserRole.OPERATOR),
                                 json={"registration_number": "KA05ZZ0001"})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["cache"] == "up"
