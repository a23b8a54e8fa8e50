"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from fleet_backend.app.api.v1.endpoints import audit_trail, fleet, integrity, mileage, trips

router = APIRouter()

# Vehicle and driver registry
router.include_router(fleet.router)

# Trip write path
router.include_router(trips.router)

# Mileage chain and fuel baselines
router.include_router(mileage.router)

# Retroactive integrity sweeps
router.include_router(integrity.router)

# Audit trail (read-only)
router.include_router(audit_trail.router)
