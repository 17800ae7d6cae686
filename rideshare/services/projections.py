"""
Projection Builder
==================

Read-only "my ..." views assembled from the registries and the ledger.
Each view fans out per record; one failing record never sinks the whole
view:

* ``my_offers``        -- a failing ledger call leaves that offer with empty
  lists and ``ledger_error`` set.
* ``my_joined_rides``  -- a failing item is skipped.
* ``my_ride_requests`` -- a failing item is returned without its pairing.

The event-wide ``event_summary`` and ``event_pairings`` back the admin views
and read straight through; a store failure there propagates.

Failures are logged with the traceback.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from rideshare.domain.entities import Offer, Pairing, RideRequest
from rideshare.domain.enums import PairingStatus
from rideshare.infrastructure.clients import EventDirectory

from .ledger import MatchLedger
from .registry import OfferRegistry, RequestRegistry

logger = logging.getLogger(__name__)


@dataclass
class OfferView:
    offer: Offer
    confirmed: list[Pairing] = field(default_factory=list)
    pending: list[Pairing] = field(default_factory=list)
    ledger_error: bool = False


@dataclass
class JoinedRide:
    pairing: Pairing
    offer: Offer
    event: Optional[dict[str, Any]] = None


@dataclass
class RequestView:
    request: RideRequest
    confirmed_pairing: Optional[Pairing] = None
    ledger_error: bool = False


@dataclass
class EventSummary:
    event_id: str
    total_offers: int = 0
    total_requests: int = 0
    available_seats: int = 0
    total_seats: int = 0
    confirmed_pairings: int = 0
    pending_pairings: int = 0
    unmatched_requests: int = 0


class ProjectionBuilder:
    def __init__(
        self,
        offers: OfferRegistry,
        requests: RequestRegistry,
        ledger: MatchLedger,
        events: EventDirectory,
    ):
        self.offers = offers
        self.requests = requests
        self.ledger = ledger
        self.events = events

    async def my_offers(self, account_id: str) -> list[OfferView]:
        views = []
        for offer in await self.offers.list_owned(account_id):
            try:
                pairings = await self.ledger.list_for_offer(offer.id)
            except Exception:
                logger.exception("Could not load pairings for offer %s", offer.id)
                views.append(OfferView(offer=offer, ledger_error=True))
                continue
            views.append(
                OfferView(
                    offer=offer,
                    confirmed=pairings.confirmed,
                    pending=pairings.pending,
                )
            )
        return views

    async def my_joined_rides(self, account_id: str) -> list[JoinedRide]:
        pairings = [
            p
            for p in await self.ledger.list_for_account(account_id)
            if p.passenger_account_id == account_id
            and p.status == PairingStatus.CONFIRMED
        ]
        events: dict[str, Optional[dict[str, Any]]] = {}
        rides = []
        for pairing in pairings:
            try:
                offer = await self.offers.get(pairing.offer_id)
            except Exception:
                logger.exception("Skipping joined ride %s", pairing.id)
                continue
            if offer.event_id not in events:
                events[offer.event_id] = await self._event(offer.event_id)
            rides.append(
                JoinedRide(pairing=pairing, offer=offer, event=events[offer.event_id])
            )
        return rides

    async def _event(self, event_id: str) -> Optional[dict[str, Any]]:
        try:
            return await self.events.display(event_id)
        except Exception:
            logger.warning("Event directory failed for %s", event_id, exc_info=True)
            return None

    async def my_requests(self, account_id: str) -> list[Pairing]:
        return [
            p
            for p in await self.ledger.list_for_account(account_id)
            if p.initiator_account_id == account_id
        ]

    async def my_ride_requests(self, account_id: str) -> list[RequestView]:
        views = []
        for request in await self.requests.list_owned(account_id):
            try:
                pairings = await self.ledger.list_for_request(request.id)
            except Exception:
                logger.exception("Could not load pairings for request %s", request.id)
                views.append(RequestView(request=request, ledger_error=True))
                continue
            confirmed = next(
                (p for p in pairings if p.status == PairingStatus.CONFIRMED), None
            )
            views.append(RequestView(request=request, confirmed_pairing=confirmed))
        return views

    async def event_summary(self, event_id: str) -> EventSummary:
        """Listing, seat and pairing counts for one event.

        Seat totals cover active offers only. A request counts as unmatched
        while it is active and no confirmed pairing points at it.
        """
        offers = await self.offers.list_for_event(event_id)
        requests = await self.requests.list_for_event(event_id)
        pairings = await self.ledger.list_for_event(event_id)

        active_offers = [o for o in offers if o.is_active]
        confirmed = [p for p in pairings if p.status == PairingStatus.CONFIRMED]
        matched = {p.request_id for p in confirmed if p.request_id}
        return EventSummary(
            event_id=event_id,
            total_offers=len(offers),
            total_requests=len(requests),
            available_seats=sum(o.available_seats for o in active_offers),
            total_seats=sum(o.total_seats for o in active_offers),
            confirmed_pairings=len(confirmed),
            pending_pairings=sum(p.status == PairingStatus.PENDING for p in pairings),
            unmatched_requests=sum(
                1
                for r in requests
                if r.is_active and r.id not in matched
            ),
        )

    async def event_pairings(self, event_id: str) -> list[Pairing]:
        return await self.ledger.list_for_event(event_id)
