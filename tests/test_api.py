"""
Integration tests for the REST API endpoints.

The app runs on the in-process store with a static token table, so no
PostgreSQL / Redis / auth service is needed.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from rideshare.api.app import create_app
from rideshare.config import Settings
from rideshare.infrastructure.clients import (
    StaticEventDirectory,
    StaticIdentityResolver,
)
from rideshare.infrastructure.memory import MemoryStore

EVENT_ID = "evt_festival"

TOKENS = {
    "tok-driver": "driver",
    "tok-p1": "p1",
    "tok-p2": "p2",
    "tok-p3": "p3",
    "tok-admin": "admin",
}


def auth(account: str) -> dict[str, str]:
    return {"Authorization": f"Bearer tok-{account}"}


def offer_body(seats: int = 2, **overrides) -> dict:
    body = {
        "event_id": EVENT_ID,
        "total_seats": seats,
        "trip_type": "going",
        "locations": [
            {
                "address": "Oranienstr. 10",
                "trip_direction": "going",
                "lat": 52.499,
                "lng": 13.418,
            }
        ],
    }
    body.update(overrides)
    return body


@pytest_asyncio.fixture
async def client():
    app = create_app(
        config=Settings(rate_limit_enabled=False, admin_accounts=["admin"]),
        store=MemoryStore(),
        identity=StaticIdentityResolver(TOKENS),
        events=StaticEventDirectory(
            {EVENT_ID: {"event_id": EVENT_ID, "event_name": "Summer Festival"}}
        ),
    )
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def publish_offer(client: AsyncClient, seats: int = 2) -> dict:
    resp = await client.post("/api/v1/offers", json=offer_body(seats), headers=auth("driver"))
    assert resp.status_code == 201
    return resp.json()


async def join(client: AsyncClient, offer_id: str, account: str, count: int = 1) -> dict:
    resp = await client.post(
        f"/api/v1/offers/{offer_id}/join-requests",
        json={"passenger_count": count, "message": "Room for me?"},
        headers=auth(account),
    )
    assert resp.status_code == 201
    return resp.json()


# ── Tests ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "store": "memory"}


@pytest.mark.asyncio
async def test_create_offer_returns_201(client: AsyncClient):
    data = await publish_offer(client, seats=3)
    assert data["id"].startswith("offer_")
    assert data["owner_account_id"] == "driver"
    assert data["available_seats"] == data["total_seats"] == 3
    assert data["status"] == "active"
    assert data["locations"][0]["sort_order"] == 0


@pytest.mark.asyncio
async def test_missing_token_is_401(client: AsyncClient):
    resp = await client.post("/api/v1/offers", json=offer_body())
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_unknown_token_is_401(client: AsyncClient):
    resp = await client.post(
        "/api/v1/offers",
        json=offer_body(),
        headers={"Authorization": "Bearer nope"},
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_malformed_body_is_400(client: AsyncClient):
    resp = await client.post(
        "/api/v1/offers", json=offer_body(seats=0), headers=auth("driver")
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "ValidationError"


@pytest.mark.asyncio
async def test_engine_validation_is_400(client: AsyncClient):
    body = offer_body(trip_type="both")  # no return stop
    resp = await client.post("/api/v1/offers", json=body, headers=auth("driver"))
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_get_offer_not_found(client: AsyncClient):
    resp = await client.get("/api/v1/offers/offer_missing")
    assert resp.status_code == 404
    assert resp.json()["error"] == "NotFound"


@pytest.mark.asyncio
async def test_non_owner_update_is_403(client: AsyncClient):
    offer = await publish_offer(client)
    resp = await client.patch(
        f"/api/v1/offers/{offer['id']}", json={"notes": "mine now"}, headers=auth("p1")
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_owner_update(client: AsyncClient):
    offer = await publish_offer(client)
    resp = await client.patch(
        f"/api/v1/offers/{offer['id']}",
        json={"notes": "Leaving at six"},
        headers=auth("driver"),
    )
    assert resp.status_code == 200
    assert resp.json()["notes"] == "Leaving at six"
    assert resp.json()["total_seats"] == offer["total_seats"]


@pytest.mark.asyncio
async def test_browse_event_offers(client: AsyncClient):
    offer = await publish_offer(client)
    resp = await client.get(f"/api/v1/events/{EVENT_ID}/offers?trip_type=going&seats=2")
    assert resp.status_code == 200
    assert [o["id"] for o in resp.json()] == [offer["id"]]

    resp = await client.get(f"/api/v1/events/{EVENT_ID}/offers?seats=3")
    assert resp.json() == []


@pytest.mark.asyncio
async def test_browse_with_half_a_point_is_400(client: AsyncClient):
    resp = await client.get(f"/api/v1/events/{EVENT_ID}/offers?lat=52.5")
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_confirm_over_capacity_is_409(client: AsyncClient):
    offer = await publish_offer(client, seats=3)
    first = await join(client, offer["id"], "p1", count=2)
    second = await join(client, offer["id"], "p2", count=2)

    resp = await client.post(
        f"/api/v1/pairings/{first['id']}/confirm", headers=auth("driver")
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "confirmed"

    resp = await client.post(
        f"/api/v1/pairings/{second['id']}/confirm", headers=auth("driver")
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "CapacityExceeded"

    audit = await client.get(f"/api/v1/offers/{offer['id']}/capacity")
    assert audit.json()["available_seats"] == 1
    assert audit.json()["consistent"] is True


@pytest.mark.asyncio
async def test_passenger_cannot_confirm_own_request(client: AsyncClient):
    offer = await publish_offer(client)
    pairing = await join(client, offer["id"], "p1")
    resp = await client.post(
        f"/api/v1/pairings/{pairing['id']}/confirm", headers=auth("p1")
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_duplicate_join_is_409(client: AsyncClient):
    offer = await publish_offer(client)
    await join(client, offer["id"], "p1")
    resp = await client.post(
        f"/api/v1/offers/{offer['id']}/join-requests", json={}, headers=auth("p1")
    )
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_cancel_confirmed_pairing_with_message(client: AsyncClient):
    offer = await publish_offer(client)
    pairing = await join(client, offer["id"], "p1")
    await client.post(f"/api/v1/pairings/{pairing['id']}/confirm", headers=auth("driver"))

    resp = await client.post(
        f"/api/v1/pairings/{pairing['id']}/cancel",
        json={"message": "Plans changed"},
        headers=auth("p1"),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"
    assert resp.json()["close_message"] == "Plans changed"

    offer_now = await client.get(f"/api/v1/offers/{offer['id']}")
    assert offer_now.json()["available_seats"] == 2


@pytest.mark.asyncio
async def test_delete_pending_join_request(client: AsyncClient):
    offer = await publish_offer(client)
    pairing = await join(client, offer["id"], "p1")
    resp = await client.delete(f"/api/v1/pairings/{pairing['id']}", headers=auth("p1"))
    assert resp.status_code == 200
    assert resp.json() == {"id": pairing["id"], "deleted": True}

    resp = await client.get(f"/api/v1/pairings/{pairing['id']}", headers=auth("p1"))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_pairing_hidden_from_outsiders(client: AsyncClient):
    offer = await publish_offer(client)
    pairing = await join(client, offer["id"], "p1")
    resp = await client.get(f"/api/v1/pairings/{pairing['id']}", headers=auth("p3"))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_invitation_flow(client: AsyncClient):
    offer = await publish_offer(client)
    resp = await client.post(
        "/api/v1/requests",
        json={
            "event_id": EVENT_ID,
            "trip_type": "going",
            "passenger_count": 2,
            "locations": [{"address": "Kottbusser Tor", "trip_direction": "going"}],
        },
        headers=auth("p1"),
    )
    assert resp.status_code == 201
    ride_request = resp.json()

    resp = await client.post(
        f"/api/v1/offers/{offer['id']}/invitations",
        json={"request_id": ride_request["id"]},
        headers=auth("driver"),
    )
    assert resp.status_code == 201
    invitation = resp.json()
    assert invitation["initiated_by"] == "driver"
    assert invitation["passenger_count"] == 2

    resp = await client.post(
        f"/api/v1/pairings/{invitation['id']}/confirm", headers=auth("p1")
    )
    assert resp.status_code == 200

    resp = await client.get("/api/v1/me/ride-requests", headers=auth("p1"))
    views = resp.json()
    assert views[0]["request"]["id"] == ride_request["id"]
    assert views[0]["confirmed_pairing"]["id"] == invitation["id"]


@pytest.mark.asyncio
async def test_me_endpoints(client: AsyncClient):
    offer = await publish_offer(client, seats=3)
    confirmed = await join(client, offer["id"], "p1")
    pending = await join(client, offer["id"], "p2")
    await client.post(f"/api/v1/pairings/{confirmed['id']}/confirm", headers=auth("driver"))

    resp = await client.get("/api/v1/me/offers", headers=auth("driver"))
    assert resp.status_code == 200
    [view] = resp.json()
    assert view["offer"]["id"] == offer["id"]
    assert [p["id"] for p in view["confirmed"]] == [confirmed["id"]]
    assert [p["id"] for p in view["pending"]] == [pending["id"]]
    assert view["ledger_error"] is False

    resp = await client.get("/api/v1/me/joined-rides", headers=auth("p1"))
    [ride] = resp.json()
    assert ride["offer"]["id"] == offer["id"]
    assert ride["event"]["event_name"] == "Summer Festival"

    resp = await client.get("/api/v1/me/requests", headers=auth("p2"))
    assert [p["id"] for p in resp.json()] == [pending["id"]]

    resp = await client.get("/api/v1/me/offers")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_cancel_offer_cascades(client: AsyncClient):
    offer = await publish_offer(client)
    pairing = await join(client, offer["id"], "p1")
    resp = await client.delete(f"/api/v1/offers/{offer['id']}", headers=auth("driver"))
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"

    resp = await client.get(f"/api/v1/pairings/{pairing['id']}", headers=auth("p1"))
    assert resp.json()["status"] == "cancelled"


@pytest.mark.asyncio
async def test_advisory_price_straight_line(client: AsyncClient):
    resp = await client.post(
        "/api/v1/pricing/advisory",
        json={
            "origin": {"lat": 52.52, "lng": 13.405},
            "destination": {"lat": 52.52, "lng": 13.405},
            "amount": 5,
        },
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["source"] == "straight_line"
    assert data["distance_km"] == 0
    assert data["max_payment"] == 0
    assert data["exceeds_cap"] is False


@pytest.mark.asyncio
async def test_advisory_price_flags_amount_over_cap(client: AsyncClient):
    # Berlin -> Potsdam, roughly 27 km straight line
    resp = await client.post(
        "/api/v1/pricing/advisory",
        json={
            "origin": {"lat": 52.52, "lng": 13.405},
            "destination": {"lat": 52.3906, "lng": 13.0645},
            "amount": 500,
        },
    )
    data = resp.json()
    assert data["max_payment"] > 0
    assert data["exceeds_cap"] is True


@pytest.mark.asyncio
async def test_event_admin_views_need_admin(client: AsyncClient):
    for path in ("summary", "pairings"):
        url = f"/api/v1/admin/events/{EVENT_ID}/{path}"
        assert (await client.get(url)).status_code == 401
        assert (await client.get(url, headers=auth("driver"))).status_code == 403


@pytest.mark.asyncio
async def test_event_admin_views(client: AsyncClient):
    offer = await publish_offer(client, seats=3)
    confirmed = await join(client, offer["id"], "p1", count=2)
    await client.post(
        f"/api/v1/pairings/{confirmed['id']}/confirm", headers=auth("driver")
    )
    pending = await join(client, offer["id"], "p2")

    resp = await client.get(
        f"/api/v1/admin/events/{EVENT_ID}/summary", headers=auth("admin")
    )
    assert resp.status_code == 200
    assert resp.json() == {
        "event_id": EVENT_ID,
        "total_offers": 1,
        "total_requests": 0,
        "available_seats": 1,
        "total_seats": 3,
        "confirmed_pairings": 1,
        "pending_pairings": 1,
        "unmatched_requests": 0,
    }

    resp = await client.get(
        f"/api/v1/admin/events/{EVENT_ID}/pairings", headers=auth("admin")
    )
    assert resp.status_code == 200
    assert [p["id"] for p in resp.json()] == [pending["id"], confirmed["id"]]
