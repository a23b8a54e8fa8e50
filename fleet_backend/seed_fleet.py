"""
Database seeding script for a demo fleet.

Creates a few vehicles and drivers for one organization so trips can be
recorded against them in development.
Run with: python -m fleet_backend.seed_fleet
"""

import asyncio

from sqlalchemy import select

from fleet_backend.app.db.session import AsyncSessionLocal, engine, Base
from fleet_backend.app.models.vehicle import Vehicle
from fleet_backend.app.models.driver import Driver

DEMO_ORGANIZATION_ID = 1

VEHICLES = [
    ("MH12AB1234", "Truck", "Diesel"),
    ("MH12CD5678", "Truck", "Diesel"),
    ("KA01EF9012", "Van", "Petrol"),
]

DRIVERS = [
    ("Ramesh Kumar", "MH1220190012345"),
    ("Sunil Rao", "KA0120150067890"),
]


async def seed_fleet():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting fleet seeding...")

        result = await db.execute(
            select(Vehicle).where(Vehicle.organization_id == DEMO_ORGANIZATION_ID)
        )
        if result.scalars().first():
            print("ℹ️  Organization already has vehicles, skipping seeding")
            return

        for registration, vehicle_type, fuel_type in VEHICLES:
            db.add(Vehicle(
                organization_id=DEMO_ORGANIZATION_ID,
                registration_number=registration,
                vehicle_type=vehicle_type,
                fuel_type=fuel_type,
            ))
            print(f"✅ Created vehicle {registration}")

        for name, license_number in DRIVERS:
            db.add(Driver(
                organization_id=DEMO_ORGANIZATION_ID,
                name=name,
                license_number=license_number,
            ))
            print(f"✅ Created driver {name}")

        await db.commit()
        print(f"\n🎉 Fleet seeding completed for organization {DEMO_ORGANIZATION_ID}")


if __name__ == "__main__":
    asyncio.run(seed_fleet())
