"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations (or with CREATE_SCHEMA=true):
    python seed.py

Creates, for one sample event:
  - 4 ride offers (mix of going / return / both, payment policies)
  - 3 ride requests
  - join requests and invitations in every state
    (pending, confirmed, rejected, cancelled)
"""

import asyncio
from datetime import time

from rideshare.config import settings
from rideshare.domain.entities import Location, Pickup
from rideshare.domain.enums import PaymentPolicy, TimeType, TripDirection, TripType
from rideshare.infrastructure.repositories import SqlStore
from rideshare.services.engine import RideShareEngine
from rideshare.services.registry import OfferSpec, RequestSpec

EVENT_ID = "evt_summer_festival"

# Festival grounds and the neighbourhoods people drive in from
VENUE = ("Festival Grounds, Main Gate", 52.5200, 13.4050)


def going(address, lat, lng, at=None):
    return Location(
        address=address,
        trip_direction=TripDirection.GOING,
        time_type=TimeType.SPECIFIC if at else TimeType.FLEXIBLE,
        specific_time=at,
        lat=lat,
        lng=lng,
    )


def returning(address, lat, lng):
    return Location(
        address=address, trip_direction=TripDirection.RETURN, lat=lat, lng=lng
    )


OFFERS = [
    (
        "acc_driver_anna",
        OfferSpec(
            total_seats=3,
            trip_type=TripType.BOTH,
            locations=[
                going("Kreuzberg, Oranienstr. 10", 52.5010, 13.4190, time(17, 30)),
                returning(*VENUE),
            ],
            payment_policy=PaymentPolicy.OPTIONAL,
            payment_amount=5.0,
            payment_method="cash",
            notes="Room for small bags only",
        ),
    ),
    (
        "acc_driver_ben",
        OfferSpec(
            total_seats=4,
            trip_type=TripType.GOING,
            locations=[going("Prenzlauer Berg, Kastanienallee 5", 52.5380, 13.4100)],
        ),
    ),
    (
        "acc_driver_carla",
        OfferSpec(
            total_seats=2,
            trip_type=TripType.RETURN,
            locations=[returning(*VENUE)],
            payment_policy=PaymentPolicy.OBLIGATORY,
            payment_amount=8.0,
            payment_method="transfer",
        ),
    ),
    (
        "acc_driver_dev",
        OfferSpec(
            total_seats=1,
            trip_type=TripType.GOING,
            locations=[going("Charlottenburg, Kantstr. 40", 52.5060, 13.3040)],
        ),
    ),
]

REQUESTS = [
    (
        "acc_rider_eli",
        RequestSpec(
            trip_type=TripType.GOING,
            locations=[going("Kreuzberg, Wiener Str. 3", 52.4990, 13.4300)],
            passenger_count=2,
        ),
    ),
    (
        "acc_rider_fay",
        RequestSpec(
            trip_type=TripType.BOTH,
            locations=[
                going("Friedrichshain, Boxhagener Platz", 52.5110, 13.4590),
                returning(*VENUE),
            ],
        ),
    ),
    (
        "acc_rider_gus",
        RequestSpec(
            trip_type=TripType.RETURN,
            locations=[returning(*VENUE)],
            notes="Leaving after the last act",
        ),
    ),
]


async def seed(engine: RideShareEngine):
    if await engine.offers.list_public_active(EVENT_ID):
        print("Database already seeded. Skipping.")
        return

    # ── Offers & requests ─────────────────────────────────────────
    offers = [
        await engine.offers.create_offer(owner, EVENT_ID, spec)
        for owner, spec in OFFERS
    ]
    print(f"  Created {len(offers)} offers")

    requests = [
        await engine.requests.create_request(owner, EVENT_ID, spec)
        for owner, spec in REQUESTS
    ]
    print(f"  Created {len(requests)} ride requests")

    anna, ben, carla, _ = offers
    eli, fay, gus = requests

    # ── Pairings ──────────────────────────────────────────────────
    # confirmed join request
    p = await engine.pairings.send_join_request(
        "acc_rider_hana",
        anna.id,
        pickup=Pickup("Kottbusser Tor", 52.4990, 13.4180),
        message="Can I bring a folding chair?",
    )
    await engine.pairings.confirm(p.id, anna.owner_account_id)

    # confirmed invitation (driver -> request)
    p = await engine.pairings.send_invitation(ben.owner_account_id, ben.id, eli.id)
    await engine.pairings.confirm(p.id, eli.owner_account_id)

    # pending join request
    await engine.pairings.send_join_request(
        fay.owner_account_id, anna.id, request_id=fay.id
    )

    # rejected invitation
    p = await engine.pairings.send_invitation(carla.owner_account_id, carla.id, gus.id)
    await engine.pairings.reject(p.id, gus.owner_account_id)

    # cancelled join request
    p = await engine.pairings.send_join_request("acc_rider_ivo", ben.id)
    await engine.pairings.cancel(p.id, "acc_rider_ivo", message="Found another ride")

    print("  Created 5 pairings")
    print("\nSeed complete!")


async def main():
    print("Seeding database...")
    if not settings.database_url:
        raise SystemExit("DATABASE_URL is not set")
    store = SqlStore.from_url(settings.database_url)
    if settings.create_schema:
        await store.create_schema()
    engine = RideShareEngine(store)
    try:
        await seed(engine)
    finally:
        await engine.aclose()


if __name__ == "__main__":
    asyncio.run(main())
