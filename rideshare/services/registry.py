"""
Offer & Request Registries
==========================

CRUD for published offers and requests and their ordered location lists.
Registries never touch pairing status directly: cancelling a listing hands
its open pairings to the ledger, inside the same unit of work.

Browse filters
--------------
* ``trip_type`` -- ``going`` matches going and both, ``return`` matches
  return and both, ``both`` matches both only.
* ``seats``     -- offers with at least *n* free seats; requests for at
  most *n* passengers.
* ``payment``   -- offers with the given payment policy.
* ``near``      -- ``(lat, lng)``; keeps listings with a stop inside the H3
  search disk and orders them nearest first (see ``domain.proximity``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from rideshare.domain.entities import (
    Location,
    MonotonicClock,
    Offer,
    RideRequest,
    check_locations,
    new_id,
)
from rideshare.domain.enums import (
    ListingStatus,
    PaymentPolicy,
    Privacy,
    TripType,
)
from rideshare.domain.errors import Conflict, NotFound, Unauthorized, ValidationError
from rideshare.domain.proximity import nearby
from rideshare.infrastructure.store import RideStore

from .ledger import MatchLedger

logger = logging.getLogger(__name__)

# Trip types a browse filter accepts
TRIP_TYPE_MATCHES: dict[TripType, set[TripType]] = {
    TripType.GOING: {TripType.GOING, TripType.BOTH},
    TripType.RETURN: {TripType.RETURN, TripType.BOTH},
    TripType.BOTH: {TripType.BOTH},
}

OFFER_CHANGES = frozenset(
    {"locations", "notes", "privacy", "payment_policy", "payment_amount", "payment_method"}
)
REQUEST_CHANGES = frozenset({"locations", "notes", "privacy"})


@dataclass
class OfferSpec:
    total_seats: int
    trip_type: TripType
    locations: list[Location]
    privacy: Privacy = Privacy.PUBLIC
    payment_policy: PaymentPolicy = PaymentPolicy.NOT_REQUIRED
    payment_amount: Optional[float] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class RequestSpec:
    trip_type: TripType
    locations: list[Location]
    passenger_count: int = 1
    privacy: Privacy = Privacy.PUBLIC
    notes: Optional[str] = None


@dataclass
class BrowseFilters:
    trip_type: Optional[TripType] = None
    seats: Optional[int] = None
    payment: Optional[PaymentPolicy] = None
    near: Optional[tuple[float, float]] = None


def check_payment(
    policy: PaymentPolicy, amount: Optional[float], method: Optional[str]
) -> tuple[Optional[float], Optional[str]]:
    if policy == PaymentPolicy.NOT_REQUIRED:
        return None, None
    if amount is None:
        raise ValidationError(
            f"Payment policy '{policy.value}' needs a payment amount"
        )
    if amount < 0:
        raise ValidationError("Payment amount cannot be negative")
    return amount, method


def _unknown_changes(changes: Mapping[str, Any], allowed: frozenset) -> None:
    unknown = set(changes) - allowed
    if unknown:
        raise ValidationError(
            "Cannot change: " + ", ".join(sorted(unknown))
        )


# ── Offers ────────────────────────────────────────────────────────────


class OfferRegistry:
    def __init__(
        self,
        store: RideStore,
        ledger: MatchLedger,
        clock: MonotonicClock,
        h3_resolution: int = 7,
        near_ring_size: int = 2,
    ):
        self.store = store
        self.ledger = ledger
        self.clock = clock
        self.h3_resolution = h3_resolution
        self.near_ring_size = near_ring_size

    async def create_offer(
        self, owner_account_id: str, event_id: str, spec: OfferSpec
    ) -> Offer:
        if spec.total_seats < 1:
            raise ValidationError("An offer needs at least one seat")
        locations = check_locations(spec.trip_type, spec.locations)
        amount, method = check_payment(
            spec.payment_policy, spec.payment_amount, spec.payment_method
        )
        now = self.clock.now()
        offer = Offer(
            id=new_id("offer"),
            event_id=event_id,
            owner_account_id=owner_account_id,
            total_seats=spec.total_seats,
            available_seats=spec.total_seats,
            trip_type=spec.trip_type,
            privacy=spec.privacy,
            payment_policy=spec.payment_policy,
            payment_amount=amount,
            payment_method=method,
            notes=spec.notes,
            locations=locations,
            created_at=now,
            updated_at=now,
        )
        async with self.store.unit_of_work() as uow:
            await uow.offers.add(offer)
        logger.info(
            "Offer %s created for event %s (%d seats)",
            offer.id,
            event_id,
            offer.total_seats,
        )
        return offer

    async def get(self, offer_id: str) -> Offer:
        async with self.store.unit_of_work() as uow:
            offer = await uow.offers.get(offer_id)
        if offer is None:
            raise NotFound(f"Offer {offer_id} not found")
        return offer

    async def get_owned(self, offer_id: str, account_id: str) -> Offer:
        offer = await self.get(offer_id)
        if offer.owner_account_id != account_id:
            raise Unauthorized("Only the driver can see this")
        return offer

    async def list_public_active(
        self, event_id: str, filters: Optional[BrowseFilters] = None
    ) -> list[Offer]:
        filters = filters or BrowseFilters()
        async with self.store.unit_of_work() as uow:
            offers = await uow.offers.list_public_active(event_id)

        if filters.trip_type is not None:
            accepted = TRIP_TYPE_MATCHES[filters.trip_type]
            offers = [o for o in offers if o.trip_type in accepted]
        if filters.seats is not None:
            offers = [o for o in offers if o.available_seats >= filters.seats]
        if filters.payment is not None:
            offers = [o for o in offers if o.payment_policy == filters.payment]
        if filters.near is not None:
            lat, lng = filters.near
            offers = nearby(
                offers, lat, lng, self.h3_resolution, self.near_ring_size
            )
        return offers

    async def list_owned(self, account_id: str) -> list[Offer]:
        async with self.store.unit_of_work() as uow:
            return await uow.offers.list_by_owner(account_id)

    async def list_for_event(self, event_id: str) -> list[Offer]:
        """Every offer of the event regardless of privacy or status."""
        async with self.store.unit_of_work() as uow:
            return await uow.offers.list_by_event(event_id)

    async def update_offer(
        self, offer_id: str, account_id: str, changes: Mapping[str, Any]
    ) -> Offer:
        _unknown_changes(changes, OFFER_CHANGES)
        async with self.store.unit_of_work() as uow:
            offer = await uow.offers.get(offer_id, for_update=True)
            if offer is None:
                raise NotFound(f"Offer {offer_id} not found")
            if offer.owner_account_id != account_id:
                raise Unauthorized("Only the driver can update this offer")
            if not offer.is_active:
                raise Conflict(f"Offer {offer_id} is cancelled")

            if "locations" in changes:
                offer.locations = check_locations(offer.trip_type, changes["locations"])
            if "notes" in changes:
                offer.notes = changes["notes"]
            if changes.get("privacy") is not None:
                offer.privacy = changes["privacy"]
            policy = changes.get("payment_policy") or offer.payment_policy
            offer.payment_amount, offer.payment_method = check_payment(
                policy,
                changes.get("payment_amount", offer.payment_amount),
                changes.get("payment_method", offer.payment_method),
            )
            offer.payment_policy = policy
            offer.updated_at = self.clock.now()
            offer = await uow.offers.save(offer)
        logger.info("Offer %s updated (%s)", offer_id, ", ".join(sorted(changes)))
        return offer

    async def cancel(self, offer_id: str, requester_account_id: str) -> Offer:
        async with self.store.unit_of_work() as uow:
            offer = await uow.offers.get(offer_id, for_update=True)
            if offer is None:
                raise NotFound(f"Offer {offer_id} not found")
            if offer.owner_account_id != requester_account_id:
                raise Unauthorized("Only the driver can cancel this offer")
            if offer.status == ListingStatus.CANCELLED:
                return offer

            now = self.clock.now()
            closed = await self.ledger.close_open(
                uow, await uow.pairings.list_for_offer(offer_id), now
            )
            offer.status = ListingStatus.CANCELLED
            offer.updated_at = now
            offer = await uow.offers.save(offer)
        logger.info("Offer %s cancelled, %d pairing(s) closed", offer_id, len(closed))
        return offer


# ── Requests ──────────────────────────────────────────────────────────


class RequestRegistry:
    def __init__(
        self,
        store: RideStore,
        ledger: MatchLedger,
        clock: MonotonicClock,
        max_passenger_count: int = 10,
        h3_resolution: int = 7,
        near_ring_size: int = 2,
    ):
        self.store = store
        self.ledger = ledger
        self.clock = clock
        self.max_passenger_count = max_passenger_count
        self.h3_resolution = h3_resolution
        self.near_ring_size = near_ring_size

    async def create_request(
        self, owner_account_id: str, event_id: str, spec: RequestSpec
    ) -> RideRequest:
        if not 1 <= spec.passenger_count <= self.max_passenger_count:
            raise ValidationError(
                f"Passenger count must be between 1 and {self.max_passenger_count}"
            )
        locations = check_locations(spec.trip_type, spec.locations)
        now = self.clock.now()
        request = RideRequest(
            id=new_id("req"),
            event_id=event_id,
            owner_account_id=owner_account_id,
            passenger_count=spec.passenger_count,
            trip_type=spec.trip_type,
            privacy=spec.privacy,
            notes=spec.notes,
            locations=locations,
            created_at=now,
            updated_at=now,
        )
        async with self.store.unit_of_work() as uow:
            await uow.requests.add(request)
        logger.info(
            "Request %s created for event %s (%d passenger(s))",
            request.id,
            event_id,
            request.passenger_count,
        )
        return request

    async def get(self, request_id: str) -> RideRequest:
        async with self.store.unit_of_work() as uow:
            request = await uow.requests.get(request_id)
        if request is None:
            raise NotFound(f"Request {request_id} not found")
        return request

    async def get_owned(self, request_id: str, account_id: str) -> RideRequest:
        request = await self.get(request_id)
        if request.owner_account_id != account_id:
            raise Unauthorized("Only the passenger can see this")
        return request

    async def list_public_active(
        self, event_id: str, filters: Optional[BrowseFilters] = None
    ) -> list[RideRequest]:
        filters = filters or BrowseFilters()
        async with self.store.unit_of_work() as uow:
            requests = await uow.requests.list_public_active(event_id)

        if filters.trip_type is not None:
            accepted = TRIP_TYPE_MATCHES[filters.trip_type]
            requests = [r for r in requests if r.trip_type in accepted]
        if filters.seats is not None:
            requests = [r for r in requests if r.passenger_count <= filters.seats]
        if filters.near is not None:
            lat, lng = filters.near
            requests = nearby(
                requests, lat, lng, self.h3_resolution, self.near_ring_size
            )
        return requests

    async def list_owned(self, account_id: str) -> list[RideRequest]:
        async with self.store.unit_of_work() as uow:
            return await uow.requests.list_by_owner(account_id)

    async def list_for_event(self, event_id: str) -> list[RideRequest]:
        async with self.store.unit_of_work() as uow:
            return await uow.requests.list_by_event(event_id)

    async def update_request(
        self, request_id: str, account_id: str, changes: Mapping[str, Any]
    ) -> RideRequest:
        _unknown_changes(changes, REQUEST_CHANGES)
        async with self.store.unit_of_work() as uow:
            request = await uow.requests.get(request_id, for_update=True)
            if request is None:
                raise NotFound(f"Request {request_id} not found")
            if request.owner_account_id != account_id:
                raise Unauthorized("Only the passenger can update this request")
            if not request.is_active:
                raise Conflict(f"Request {request_id} is cancelled")

            if "locations" in changes:
                request.locations = check_locations(
                    request.trip_type, changes["locations"]
                )
            if "notes" in changes:
                request.notes = changes["notes"]
            if changes.get("privacy") is not None:
                request.privacy = changes["privacy"]
            request.updated_at = self.clock.now()
            request = await uow.requests.save(request)
        logger.info("Request %s updated (%s)", request_id, ", ".join(sorted(changes)))
        return request

    async def cancel(self, request_id: str, requester_account_id: str) -> RideRequest:
        async with self.store.unit_of_work() as uow:
            request = await uow.requests.get(request_id, for_update=True)
            if request is None:
                raise NotFound(f"Request {request_id} not found")
            if request.owner_account_id != requester_account_id:
                raise Unauthorized("Only the passenger can cancel this request")
            if request.status == ListingStatus.CANCELLED:
                return request

            now = self.clock.now()
            closed = await self.ledger.close_open(
                uow, await uow.pairings.list_for_request(request_id), now
            )
            request.status = ListingStatus.CANCELLED
            request.updated_at = now
            request = await uow.requests.save(request)
        logger.info(
            "Request %s cancelled, %d pairing(s) closed", request_id, len(closed)
        )
        return request
