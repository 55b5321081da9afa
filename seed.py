"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 6 parents with funded wallets
  - 4 drivers (3 online, 1 offline)
  - 5 open ride requests to schools around Johannesburg
"""

import asyncio
from decimal import Decimal

from sqlalchemy import func, select

from ride2school.domain.entities import Location
from ride2school.domain.enums import RequestStatus, UserType
from ride2school.domain.pricing import PricingEngine
from ride2school.config import settings
from ride2school.infrastructure.database import async_session_factory, engine
from ride2school.infrastructure.models import RideRequestModel, UserModel


PARENTS = [
    {"name": "Thandi Mokoena", "email": "thandi@example.com", "balance": "500.00"},
    {"name": "Pieter van Wyk", "email": "pieter@example.com", "balance": "350.00"},
    {"name": "Naledi Dlamini", "email": "naledi@example.com", "balance": "800.00"},
    {"name": "Ayesha Patel", "email": "ayesha@example.com", "balance": "250.00"},
    {"name": "Sipho Ndlovu", "email": "sipho@example.com", "balance": "600.00"},
    {"name": "Karen Botha", "email": "karen@example.com", "balance": "150.00"},
]

DRIVERS = [
    {"name": "Lerato Khumalo", "email": "lerato@example.com", "online": True},
    {"name": "Johan Pretorius", "email": "johan@example.com", "online": True},
    {"name": "Mandla Zulu", "email": "mandla@example.com", "online": True},
    {"name": "Fatima Essop", "email": "fatima@example.com", "online": False},
]

# (home, school name, school) -- lat/lng pairs
REQUESTS = [
    ((-26.1076, 28.0567), "Sandton Primary", (-26.1030, 28.0600)),
    ((-26.1450, 28.0410), "Parktown Boys", (-26.1780, 28.0390)),
    ((-26.1920, 28.0300), "Braamfontein High", (-26.1930, 28.0340)),
    ((-26.0900, 28.0050), "Randburg School", (-26.0940, 28.0010)),
    ((-26.2040, 28.0470), "Jeppe Prep", (-26.1980, 28.0660)),
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(select(func.count()).select_from(UserModel))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Users ─────────────────────────────────────────────────────
        parents = [
            UserModel(
                name=p["name"],
                email=p["email"],
                user_type=UserType.PARENT,
                wallet_balance=Decimal(p["balance"]),
            )
            for p in PARENTS
        ]
        drivers = [
            UserModel(
                name=d["name"],
                email=d["email"],
                user_type=UserType.DRIVER,
                is_online=d["online"],
            )
            for d in DRIVERS
        ]
        session.add_all(parents + drivers)
        await session.flush()
        print(f"  Created {len(parents)} parents and {len(drivers)} drivers")

        # ── Open ride requests ────────────────────────────────────────
        pricing = PricingEngine(
            base_fare=settings.base_fare,
            rate_per_km=settings.rate_per_km,
            platform_fee_rate=settings.platform_fee_rate,
            cancellation_penalty_rate=settings.cancellation_penalty_rate,
        )
        for parent, (home, school_name, school) in zip(parents, REQUESTS):
            origin, destination = Location(*home), Location(*school)
            session.add(
                RideRequestModel(
                    parent_id=parent.id,
                    origin_lat=origin.latitude,
                    origin_lng=origin.longitude,
                    destination_lat=destination.latitude,
                    destination_lng=destination.longitude,
                    destination_name=school_name,
                    estimated_fare=pricing.estimate_fare(origin, destination),
                    status=RequestStatus.PENDING,
                )
            )
        await session.flush()
        print(f"  Created {len(REQUESTS)} ride requests")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
