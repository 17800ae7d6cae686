"""
Pairing lifecycle: join requests, invitations, and every transition.

Runs against both stores (see ``conftest.store``).
"""

import pytest

from conftest import OTHER_EVENT_ID

from rideshare.domain.entities import Pickup
from rideshare.domain.enums import InitiatedBy, PairingStatus
from rideshare.domain.errors import (
    CapacityExceeded,
    Conflict,
    NotFound,
    Unauthorized,
    ValidationError,
)


class TestJoinRequest:
    @pytest.mark.asyncio
    async def test_creates_pending_without_reserving(self, engine, create_offer):
        offer = await create_offer(seats=2)
        p = await engine.pairings.send_join_request(
            "p1", offer.id, pickup=Pickup("Kottbusser Tor", 52.499, 13.418), message="hi"
        )
        assert p.id.startswith("pair_")
        assert p.status == PairingStatus.PENDING
        assert p.initiated_by == InitiatedBy.PASSENGER
        assert p.driver_account_id == "driver"
        assert p.pickup.address == "Kottbusser Tor"
        assert (await engine.offers.get(offer.id)).available_seats == 2

    @pytest.mark.asyncio
    async def test_unknown_or_cancelled_offer(self, engine, create_offer):
        with pytest.raises(NotFound):
            await engine.pairings.send_join_request("p1", "offer_missing")
        offer = await create_offer()
        await engine.offers.cancel(offer.id, "driver")
        with pytest.raises(NotFound):
            await engine.pairings.send_join_request("p1", offer.id)

    @pytest.mark.asyncio
    async def test_driver_cannot_join_own_offer(self, engine, create_offer):
        offer = await create_offer()
        with pytest.raises(ValidationError):
            await engine.pairings.send_join_request("driver", offer.id)

    @pytest.mark.asyncio
    async def test_passenger_count_bounds(self, engine, create_offer):
        offer = await create_offer(seats=2)
        with pytest.raises(ValidationError):
            await engine.pairings.send_join_request("p1", offer.id, passenger_count=0)
        with pytest.raises(ValidationError):
            await engine.pairings.send_join_request("p1", offer.id, passenger_count=3)

    @pytest.mark.asyncio
    async def test_duplicate_while_pending_conflicts(self, engine, create_offer):
        offer = await create_offer()
        await engine.pairings.send_join_request("p1", offer.id)
        with pytest.raises(Conflict):
            await engine.pairings.send_join_request("p1", offer.id)

    @pytest.mark.asyncio
    async def test_rejoin_after_rejection(self, engine, create_offer):
        offer = await create_offer()
        first = await engine.pairings.send_join_request("p1", offer.id)
        await engine.pairings.reject(first.id, "driver")
        second = await engine.pairings.send_join_request("p1", offer.id)
        assert second.status == PairingStatus.PENDING

    @pytest.mark.asyncio
    async def test_linked_request_must_be_own_and_same_event(
        self, engine, create_offer, create_request
    ):
        offer = await create_offer()
        elsewhere = await create_request(owner="p1", event_id=OTHER_EVENT_ID)
        theirs = await create_request(owner="p2")
        with pytest.raises(ValidationError):
            await engine.pairings.send_join_request("p1", offer.id, request_id=elsewhere.id)
        with pytest.raises(ValidationError):
            await engine.pairings.send_join_request("p1", offer.id, request_id=theirs.id)


class TestInvitation:
    @pytest.mark.asyncio
    async def test_carries_request_details(self, engine, create_offer, create_request):
        offer = await create_offer(seats=3)
        request = await create_request(passengers=2)
        p = await engine.pairings.send_invitation(
            "driver", offer.id, request.id, message="Room for two"
        )
        assert p.initiated_by == InitiatedBy.DRIVER
        assert p.request_id == request.id
        assert p.passenger_account_id == "rider"
        assert p.passenger_count == 2
        assert p.pickup.address == request.locations[0].address

    @pytest.mark.asyncio
    async def test_only_driver_invites(self, engine, create_offer, create_request):
        offer = await create_offer()
        request = await create_request()
        with pytest.raises(Unauthorized):
            await engine.pairings.send_invitation("intruder", offer.id, request.id)

    @pytest.mark.asyncio
    async def test_events_must_match(self, engine, create_offer, create_request):
        offer = await create_offer()
        request = await create_request(event_id=OTHER_EVENT_ID)
        with pytest.raises(ValidationError):
            await engine.pairings.send_invitation("driver", offer.id, request.id)

    @pytest.mark.asyncio
    async def test_request_too_big_for_offer(self, engine, create_offer, create_request):
        offer = await create_offer(seats=2)
        request = await create_request(passengers=3)
        with pytest.raises(ValidationError):
            await engine.pairings.send_invitation("driver", offer.id, request.id)

    @pytest.mark.asyncio
    async def test_cancelled_request_not_found(
        self, engine, create_offer, create_request
    ):
        offer = await create_offer()
        request = await create_request()
        await engine.requests.cancel(request.id, "rider")
        with pytest.raises(NotFound):
            await engine.pairings.send_invitation("driver", offer.id, request.id)

    @pytest.mark.asyncio
    async def test_invite_after_join_conflicts(
        self, engine, create_offer, create_request
    ):
        offer = await create_offer()
        request = await create_request()
        await engine.pairings.send_join_request("rider", offer.id)
        with pytest.raises(Conflict):
            await engine.pairings.send_invitation("driver", offer.id, request.id)

    @pytest.mark.asyncio
    async def test_passenger_rejects_invitation(
        self, engine, create_offer, create_request
    ):
        offer = await create_offer(seats=2)
        request = await create_request()
        p = await engine.pairings.send_invitation("driver", offer.id, request.id)
        rejected = await engine.pairings.reject(p.id, "rider")
        assert rejected.status == PairingStatus.REJECTED
        assert rejected.closed_at is not None
        assert (await engine.offers.get(offer.id)).available_seats == 2


class TestConfirm:
    @pytest.mark.asyncio
    async def test_counterparty_confirms_and_reserves(self, engine, create_offer):
        offer = await create_offer(seats=2)
        p = await engine.pairings.send_join_request("p1", offer.id)
        confirmed = await engine.pairings.confirm(p.id, "driver")
        assert confirmed.status == PairingStatus.CONFIRMED
        assert confirmed.confirmed_at is not None
        assert (await engine.offers.get(offer.id)).available_seats == 1

    @pytest.mark.asyncio
    async def test_confirm_twice_reserves_once(self, engine, create_offer):
        offer = await create_offer(seats=3)
        p = await engine.pairings.send_join_request("p1", offer.id, passenger_count=2)
        await engine.pairings.confirm(p.id, "driver")
        again = await engine.pairings.confirm(p.id, "driver")
        assert again.status == PairingStatus.CONFIRMED
        assert (await engine.offers.get(offer.id)).available_seats == 1

    @pytest.mark.asyncio
    async def test_initiator_cannot_confirm(self, engine, create_offer):
        offer = await create_offer()
        p = await engine.pairings.send_join_request("p1", offer.id)
        with pytest.raises(Unauthorized):
            await engine.pairings.confirm(p.id, "p1")

    @pytest.mark.asyncio
    async def test_outsider_cannot_confirm(self, engine, create_offer):
        offer = await create_offer()
        p = await engine.pairings.send_join_request("p1", offer.id)
        with pytest.raises(Unauthorized):
            await engine.pairings.confirm(p.id, "intruder")

    @pytest.mark.asyncio
    async def test_confirm_unknown(self, engine):
        with pytest.raises(NotFound):
            await engine.pairings.confirm("pair_missing", "driver")

    @pytest.mark.asyncio
    async def test_confirm_rejected_conflicts(self, engine, create_offer):
        offer = await create_offer()
        p = await engine.pairings.send_join_request("p1", offer.id)
        await engine.pairings.reject(p.id, "driver")
        with pytest.raises(Conflict):
            await engine.pairings.confirm(p.id, "driver")

    @pytest.mark.asyncio
    async def test_capacity_scenario(self, engine, create_offer):
        """Two seats: P1 fits, P2 with two passengers does not and stays pending."""
        offer = await create_offer(seats=2)
        p1 = await engine.pairings.send_join_request("p1", offer.id)
        await engine.pairings.confirm(p1.id, "driver")
        assert (await engine.offers.get(offer.id)).available_seats == 1

        p2 = await engine.pairings.send_join_request("p2", offer.id, passenger_count=2)
        with pytest.raises(CapacityExceeded):
            await engine.pairings.confirm(p2.id, "driver")

        assert (await engine.pairings.get(p2.id, "p2")).status == PairingStatus.PENDING
        assert (await engine.offers.get(offer.id)).available_seats == 1
        assert (await engine.ledger.confirmed_seats(offer.id)) == 1


class TestRejectAndCancel:
    @pytest.mark.asyncio
    async def test_reject_confirmed_releases(self, engine, create_offer):
        offer = await create_offer(seats=2)
        p = await engine.pairings.send_join_request("p1", offer.id)
        await engine.pairings.confirm(p.id, "driver")
        await engine.pairings.reject(p.id, "driver")
        assert (await engine.offers.get(offer.id)).available_seats == 2

    @pytest.mark.asyncio
    async def test_initiator_cannot_reject(self, engine, create_offer):
        offer = await create_offer()
        p = await engine.pairings.send_join_request("p1", offer.id)
        with pytest.raises(Unauthorized):
            await engine.pairings.reject(p.id, "p1")

    @pytest.mark.asyncio
    async def test_reject_is_idempotent(self, engine, create_offer):
        offer = await create_offer()
        p = await engine.pairings.send_join_request("p1", offer.id)
        await engine.pairings.reject(p.id, "driver")
        again = await engine.pairings.reject(p.id, "driver")
        assert again.status == PairingStatus.REJECTED

    @pytest.mark.asyncio
    async def test_reject_cancelled_conflicts(self, engine, create_offer):
        offer = await create_offer()
        p = await engine.pairings.send_join_request("p1", offer.id)
        await engine.pairings.cancel(p.id, "p1")
        with pytest.raises(Conflict):
            await engine.pairings.reject(p.id, "driver")

    @pytest.mark.asyncio
    async def test_initiator_withdraws_pending(self, engine, create_offer):
        offer = await create_offer()
        p = await engine.pairings.send_join_request("p1", offer.id)
        cancelled = await engine.pairings.cancel(p.id, "p1", message="Plans changed")
        assert cancelled.status == PairingStatus.CANCELLED
        assert cancelled.close_message == "Plans changed"
        stored = await engine.pairings.get(p.id, "driver")
        assert stored.close_message == "Plans changed"

    @pytest.mark.asyncio
    async def test_counterparty_cannot_cancel_pending(self, engine, create_offer):
        offer = await create_offer()
        p = await engine.pairings.send_join_request("p1", offer.id)
        with pytest.raises(Unauthorized):
            await engine.pairings.cancel(p.id, "driver")

    @pytest.mark.asyncio
    async def test_either_party_cancels_confirmed(self, engine, create_offer):
        offer = await create_offer(seats=2)
        for passenger, canceller in (("p1", "p1"), ("p2", "driver")):
            p = await engine.pairings.send_join_request(passenger, offer.id)
            await engine.pairings.confirm(p.id, "driver")
            cancelled = await engine.pairings.cancel(p.id, canceller)
            assert cancelled.status == PairingStatus.CANCELLED
        assert (await engine.offers.get(offer.id)).available_seats == 2

    @pytest.mark.asyncio
    async def test_cancel_twice_releases_once(self, engine, create_offer):
        offer = await create_offer(seats=2)
        p = await engine.pairings.send_join_request("p1", offer.id)
        await engine.pairings.confirm(p.id, "driver")
        await engine.pairings.cancel(p.id, "p1")
        await engine.pairings.cancel(p.id, "p1")
        assert (await engine.offers.get(offer.id)).available_seats == 2
        assert (await engine.capacity.audit(offer.id)).consistent

    @pytest.mark.asyncio
    async def test_cancel_rejected_conflicts(self, engine, create_offer):
        offer = await create_offer()
        p = await engine.pairings.send_join_request("p1", offer.id)
        await engine.pairings.reject(p.id, "driver")
        with pytest.raises(Conflict):
            await engine.pairings.cancel(p.id, "p1")


async def lose_status_race(store, monkeypatch):
    """Make every pairing status write look like another writer got there first."""
    async with store.unit_of_work() as uow:
        repo = type(uow.pairings)

    async def stale(self, pairing, expected):
        return False

    monkeypatch.setattr(repo, "compare_and_set", stale)


class TestLostStatusRace:
    @pytest.mark.asyncio
    async def test_confirm_rolls_back_reservation(
        self, engine, store, create_offer, monkeypatch
    ):
        offer = await create_offer(seats=3)
        p = await engine.pairings.send_join_request("p1", offer.id, passenger_count=2)
        await lose_status_race(store, monkeypatch)

        with pytest.raises(Conflict, match="changed while confirming"):
            await engine.pairings.confirm(p.id, "driver")

        assert (await engine.offers.get(offer.id)).available_seats == 3
        assert (await engine.pairings.get(p.id, "p1")).status == PairingStatus.PENDING
        assert (await engine.capacity.audit(offer.id)).consistent

    @pytest.mark.asyncio
    async def test_cancel_confirmed_keeps_reservation(
        self, engine, store, create_offer, monkeypatch
    ):
        offer = await create_offer(seats=3)
        p = await engine.pairings.send_join_request("p1", offer.id, passenger_count=2)
        await engine.pairings.confirm(p.id, "driver")
        await lose_status_race(store, monkeypatch)

        with pytest.raises(Conflict, match="changed while closing"):
            await engine.pairings.cancel(p.id, "p1")

        assert (await engine.offers.get(offer.id)).available_seats == 1
        stored = await engine.pairings.get(p.id, "driver")
        assert stored.status == PairingStatus.CONFIRMED
        assert stored.closed_at is None
        assert (await engine.capacity.audit(offer.id)).consistent

    @pytest.mark.asyncio
    async def test_reject_confirmed_keeps_reservation(
        self, engine, store, create_offer, monkeypatch
    ):
        offer = await create_offer(seats=2)
        p = await engine.pairings.send_join_request("p1", offer.id)
        await engine.pairings.confirm(p.id, "driver")
        await lose_status_race(store, monkeypatch)

        with pytest.raises(Conflict):
            await engine.pairings.reject(p.id, "driver")

        assert (await engine.offers.get(offer.id)).available_seats == 1
        assert (await engine.capacity.audit(offer.id)).consistent


class TestDelete:
    @pytest.mark.asyncio
    async def test_passenger_deletes_pending_join_request(self, engine, create_offer):
        offer = await create_offer()
        p = await engine.pairings.send_join_request("p1", offer.id)
        await engine.pairings.delete(p.id, "p1")
        with pytest.raises(NotFound):
            await engine.pairings.get(p.id, "p1")
        # the slot is free again
        await engine.pairings.send_join_request("p1", offer.id)

    @pytest.mark.asyncio
    async def test_only_creator_deletes(self, engine, create_offer, create_request):
        offer = await create_offer()
        join = await engine.pairings.send_join_request("p1", offer.id)
        with pytest.raises(Unauthorized):
            await engine.pairings.delete(join.id, "driver")

        request = await create_request()
        invite = await engine.pairings.send_invitation("driver", offer.id, request.id)
        with pytest.raises(Unauthorized):
            await engine.pairings.delete(invite.id, "rider")

    @pytest.mark.asyncio
    async def test_confirmed_cannot_be_deleted(self, engine, create_offer):
        offer = await create_offer()
        p = await engine.pairings.send_join_request("p1", offer.id)
        await engine.pairings.confirm(p.id, "driver")
        with pytest.raises(Conflict):
            await engine.pairings.delete(p.id, "p1")

    @pytest.mark.asyncio
    async def test_delete_unknown(self, engine):
        with pytest.raises(NotFound):
            await engine.pairings.delete("pair_missing", "p1")


class TestLedgerViews:
    @pytest.mark.asyncio
    async def test_list_for_offer_split_and_ordered(self, engine, create_offer):
        offer = await create_offer(seats=4)
        ids = []
        for passenger in ("p1", "p2", "p3", "p4"):
            ids.append((await engine.pairings.send_join_request(passenger, offer.id)).id)
        await engine.pairings.confirm(ids[2], "driver")
        await engine.pairings.confirm(ids[0], "driver")
        await engine.pairings.reject(ids[3], "driver")

        view = await engine.ledger.list_for_offer(offer.id)
        assert [p.id for p in view.confirmed] == [ids[0], ids[2]]
        assert [p.id for p in view.pending] == [ids[1]]
        again = await engine.ledger.list_for_offer(offer.id)
        assert [p.id for p in again.confirmed] == [ids[0], ids[2]]

    @pytest.mark.asyncio
    async def test_list_for_request_newest_first(
        self, engine, create_offer, create_request
    ):
        request = await create_request()
        first = await create_offer(owner="d1")
        second = await create_offer(owner="d2")
        a = await engine.pairings.send_invitation("d1", first.id, request.id)
        b = await engine.pairings.send_invitation("d2", second.id, request.id)
        listed = await engine.ledger.list_for_request(request.id)
        assert [p.id for p in listed] == [b.id, a.id]

    @pytest.mark.asyncio
    async def test_get_requires_party(self, engine, create_offer):
        offer = await create_offer()
        p = await engine.pairings.send_join_request("p1", offer.id)
        assert (await engine.pairings.get(p.id, "driver")).id == p.id
        with pytest.raises(Unauthorized):
            await engine.pairings.get(p.id, "intruder")
