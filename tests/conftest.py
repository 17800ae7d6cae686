"""
Shared test fixtures.

Engine tests run twice: once on the in-process store and once on a SQLite
file database (via aiosqlite) using the production models and repositories,
so both ``RideStore`` implementations are held to the same behaviour without
Docker / PostgreSQL / Redis.
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio

from rideshare.domain.entities import Location
from rideshare.domain.enums import TripDirection, TripType
from rideshare.infrastructure.clients import StaticEventDirectory
from rideshare.infrastructure.memory import MemoryStore
from rideshare.infrastructure.repositories import SqlStore
from rideshare.infrastructure.store import RideStore
from rideshare.services.engine import RideShareEngine
from rideshare.services.registry import OfferSpec, RequestSpec

EVENT_ID = "evt_festival"
OTHER_EVENT_ID = "evt_concert"

EVENTS = {
    EVENT_ID: {
        "event_id": EVENT_ID,
        "event_name": "Summer Festival",
        "event_date": "2026-07-18",
        "event_code": "SUMMER26",
    },
}


def stops_for(trip_type: TripType) -> list[Location]:
    stops = []
    if trip_type in (TripType.GOING, TripType.BOTH):
        stops.append(Location("Oranienstr. 10", TripDirection.GOING))
    if trip_type in (TripType.RETURN, TripType.BOTH):
        stops.append(Location("Festival Grounds", TripDirection.RETURN))
    return stops


# ── Stores ────────────────────────────────────────────────────────────


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def store(request, tmp_path) -> AsyncGenerator[RideStore, None]:
    if request.param == "memory":
        yield MemoryStore()
        return

    sql = SqlStore.from_url(f"sqlite+aiosqlite:///{tmp_path / 'rides.db'}")
    await sql.create_schema()
    yield sql
    await sql.close()


@pytest_asyncio.fixture
async def engine(store) -> RideShareEngine:
    return RideShareEngine(store, events=StaticEventDirectory(EVENTS))


# ── Factories ─────────────────────────────────────────────────────────


@pytest.fixture
def create_offer(engine):
    """``await create_offer(owner="driver", seats=2, ...)``"""

    async def create(
        owner="driver",
        seats=2,
        event_id=EVENT_ID,
        trip_type=TripType.GOING,
        locations=None,
        **kwargs,
    ):
        spec = OfferSpec(
            total_seats=seats,
            trip_type=trip_type,
            locations=locations if locations is not None else stops_for(trip_type),
            **kwargs,
        )
        return await engine.offers.create_offer(owner, event_id, spec)

    return create


@pytest.fixture
def create_request(engine):
    """``await create_request(owner="rider", passengers=1, ...)``"""

    async def create(
        owner="rider",
        passengers=1,
        event_id=EVENT_ID,
        trip_type=TripType.GOING,
        locations=None,
        **kwargs,
    ):
        spec = RequestSpec(
            trip_type=trip_type,
            locations=locations if locations is not None else stops_for(trip_type),
            passenger_count=passengers,
            **kwargs,
        )
        return await engine.requests.create_request(owner, event_id, spec)

    return create
