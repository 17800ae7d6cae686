"""
Pairing Lifecycle Manager
=========================

State machine for join requests (passenger -> offer) and invitations
(driver -> request).  Both are one ``Pairing`` record; who may do what is
decided by ``initiated_by``:

    pending   --confirm (counterparty)-->  confirmed
    pending   --reject  (counterparty)-->  rejected
    pending   --cancel  (initiator)---->   cancelled
    confirmed --reject  (counterparty)-->  rejected    (seats released)
    confirmed --cancel  (either party)-->  cancelled   (seats released)

Re-applying a transition that already happened returns the record as is;
anything else out of a terminal state is a ``Conflict``.

Concurrency
-----------
* Sends run under a keyed lock on ``(offer, passenger)``; a held lock is a
  lost race and surfaces as ``Conflict``.  The store's open-pairing
  uniqueness check (a partial unique index on SQL) backs it up.
* Transitions lock the offer row before the pairing row, the same order
  listing cancellation uses.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from rideshare.domain.entities import MonotonicClock, Pairing, Pickup, new_id
from rideshare.domain.enums import InitiatedBy, PairingStatus
from rideshare.domain.errors import Conflict, NotFound, Unauthorized, ValidationError
from rideshare.infrastructure.locks import LockNotAcquired
from rideshare.infrastructure.store import RideStore, UnitOfWork

from .ledger import MatchLedger

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = (PairingStatus.REJECTED, PairingStatus.CANCELLED)


class PairingLifecycle:
    def __init__(
        self,
        store: RideStore,
        ledger: MatchLedger,
        locks: Callable,
        clock: MonotonicClock,
        max_passenger_count: int = 10,
    ):
        self.store = store
        self.ledger = ledger
        self.locks = locks
        self.clock = clock
        self.max_passenger_count = max_passenger_count

    @asynccontextmanager
    async def _pair_lock(self, offer_id: str, passenger_account_id: str) -> AsyncIterator[None]:
        try:
            async with self.locks(f"pairing:{offer_id}:{passenger_account_id}"):
                yield
        except LockNotAcquired as exc:
            raise Conflict(
                "Another request for this offer and passenger is in progress"
            ) from exc

    # ── Creation ─────────────────────────────────────────────────────

    async def send_join_request(
        self,
        passenger_account_id: str,
        offer_id: str,
        pickup: Optional[Pickup] = None,
        passenger_count: int = 1,
        message: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> Pairing:
        if not 1 <= passenger_count <= self.max_passenger_count:
            raise ValidationError(
                f"Passenger count must be between 1 and {self.max_passenger_count}"
            )

        async with self._pair_lock(offer_id, passenger_account_id):
            async with self.store.unit_of_work() as uow:
                offer = await uow.offers.get(offer_id)
                if offer is None or not offer.is_active:
                    raise NotFound(f"Offer {offer_id} not found or no longer active")
                if offer.owner_account_id == passenger_account_id:
                    raise ValidationError("You cannot join your own offer")
                if passenger_count > offer.total_seats:
                    raise ValidationError(
                        f"Offer {offer_id} has only {offer.total_seats} seat(s)"
                    )
                if request_id is not None:
                    request = await uow.requests.get(request_id)
                    if request is None or not request.is_active:
                        raise NotFound(
                            f"Request {request_id} not found or no longer active"
                        )
                    if request.owner_account_id != passenger_account_id:
                        raise ValidationError("Request belongs to another passenger")
                    if request.event_id != offer.event_id:
                        raise ValidationError("Request and offer are for different events")

                await self._ensure_no_open(uow, offer_id, passenger_account_id)
                now = self.clock.now()
                pairing = Pairing(
                    id=new_id("pair"),
                    offer_id=offer_id,
                    request_id=request_id,
                    driver_account_id=offer.owner_account_id,
                    passenger_account_id=passenger_account_id,
                    initiated_by=InitiatedBy.PASSENGER,
                    passenger_count=passenger_count,
                    pickup=pickup or Pickup(),
                    message=message[:500] if message else None,
                    created_at=now,
                    updated_at=now,
                )
                await uow.pairings.add(pairing)

        logger.info(
            "Join request %s: passenger %s -> offer %s (%d seat(s))",
            pairing.id,
            passenger_account_id,
            offer_id,
            passenger_count,
        )
        return pairing

    async def send_invitation(
        self,
        driver_account_id: str,
        offer_id: str,
        request_id: str,
        message: Optional[str] = None,
    ) -> Pairing:
        # the lock key needs the passenger, which only the request knows
        async with self.store.unit_of_work() as uow:
            request = await uow.requests.get(request_id)
        if request is None or not request.is_active:
            raise NotFound(f"Request {request_id} not found or no longer active")

        async with self._pair_lock(offer_id, request.owner_account_id):
            async with self.store.unit_of_work() as uow:
                offer = await uow.offers.get(offer_id)
                if offer is None or not offer.is_active:
                    raise NotFound(f"Offer {offer_id} not found or no longer active")
                if offer.owner_account_id != driver_account_id:
                    raise Unauthorized("Only the driver can invite to this offer")
                request = await uow.requests.get(request_id)
                if request is None or not request.is_active:
                    raise NotFound(f"Request {request_id} not found or no longer active")
                if request.event_id != offer.event_id:
                    raise ValidationError("Request and offer are for different events")
                if request.owner_account_id == driver_account_id:
                    raise ValidationError("You cannot invite your own request")
                if request.passenger_count > offer.total_seats:
                    raise ValidationError(
                        f"Request needs {request.passenger_count} seat(s), "
                        f"offer has {offer.total_seats}"
                    )

                await self._ensure_no_open(uow, offer_id, request.owner_account_id)
                first = request.locations[0] if request.locations else None
                now = self.clock.now()
                pairing = Pairing(
                    id=new_id("pair"),
                    offer_id=offer_id,
                    request_id=request_id,
                    driver_account_id=driver_account_id,
                    passenger_account_id=request.owner_account_id,
                    initiated_by=InitiatedBy.DRIVER,
                    passenger_count=request.passenger_count,
                    pickup=(
                        Pickup(address=first.address, lat=first.lat, lng=first.lng)
                        if first
                        else Pickup()
                    ),
                    message=message[:500] if message else None,
                    created_at=now,
                    updated_at=now,
                )
                await uow.pairings.add(pairing)

        logger.info(
            "Invitation %s: offer %s -> request %s", pairing.id, offer_id, request_id
        )
        return pairing

    async def _ensure_no_open(
        self, uow: UnitOfWork, offer_id: str, passenger_account_id: str
    ) -> None:
        existing = await uow.pairings.find_open(offer_id, passenger_account_id)
        if existing is not None:
            raise Conflict(
                f"Pairing {existing.id} is already {existing.status.value} "
                f"for this offer and passenger"
            )

    # ── Transitions ──────────────────────────────────────────────────

    async def _load_for_transition(
        self, uow: UnitOfWork, pairing_id: str, account_id: str
    ) -> Pairing:
        pairing = await uow.pairings.get(pairing_id)
        if pairing is None:
            raise NotFound(f"Pairing {pairing_id} not found")
        if not pairing.is_party(account_id):
            raise Unauthorized("You are not part of this pairing")
        await uow.offers.get(pairing.offer_id, for_update=True)
        pairing = await uow.pairings.get(pairing_id, for_update=True)
        if pairing is None:
            raise NotFound(f"Pairing {pairing_id} not found")
        return pairing

    async def confirm(self, pairing_id: str, account_id: str) -> Pairing:
        async with self.store.unit_of_work() as uow:
            pairing = await self._load_for_transition(uow, pairing_id, account_id)
            if account_id != pairing.counterparty_account_id:
                raise Unauthorized("Only the other party can confirm this pairing")
            if pairing.status == PairingStatus.CONFIRMED:
                return pairing
            if pairing.status in TERMINAL_STATUSES:
                raise Conflict(
                    f"Pairing {pairing_id} is already {pairing.status.value}"
                )
            offer = await uow.offers.get(pairing.offer_id)
            if offer is None or not offer.is_active:
                raise NotFound(f"Offer {pairing.offer_id} is no longer active")
            return await self.ledger.record_confirmation(uow, pairing, self.clock.now())

    async def reject(self, pairing_id: str, account_id: str) -> Pairing:
        async with self.store.unit_of_work() as uow:
            pairing = await self._load_for_transition(uow, pairing_id, account_id)
            if account_id != pairing.counterparty_account_id:
                raise Unauthorized("Only the other party can reject this pairing")
            if pairing.status == PairingStatus.REJECTED:
                return pairing
            if pairing.status == PairingStatus.CANCELLED:
                raise Conflict(f"Pairing {pairing_id} is already cancelled")
            return await self.ledger.record_closure(
                uow, pairing, PairingStatus.REJECTED, self.clock.now()
            )

    async def cancel(
        self, pairing_id: str, account_id: str, message: Optional[str] = None
    ) -> Pairing:
        async with self.store.unit_of_work() as uow:
            pairing = await self._load_for_transition(uow, pairing_id, account_id)
            if pairing.status == PairingStatus.CANCELLED:
                return pairing
            if pairing.status == PairingStatus.REJECTED:
                raise Conflict(f"Pairing {pairing_id} is already rejected")
            if (
                pairing.status == PairingStatus.PENDING
                and account_id != pairing.initiator_account_id
            ):
                raise Unauthorized("Reject a pending proposal instead of cancelling it")
            return await self.ledger.record_closure(
                uow, pairing, PairingStatus.CANCELLED, self.clock.now(), message
            )

    async def delete(self, pairing_id: str, account_id: str) -> None:
        async with self.store.unit_of_work() as uow:
            pairing = await uow.pairings.get(pairing_id, for_update=True)
            if pairing is None:
                raise NotFound(f"Pairing {pairing_id} not found")
            if (
                pairing.initiated_by != InitiatedBy.PASSENGER
                or pairing.passenger_account_id != account_id
            ):
                raise Unauthorized("Only the passenger who sent it can delete it")
            if pairing.status != PairingStatus.PENDING:
                raise Conflict(
                    f"Only pending join requests can be deleted "
                    f"(this one is {pairing.status.value})"
                )
            await uow.pairings.delete(pairing_id)
        logger.info("Join request %s deleted by passenger", pairing_id)

    async def get(self, pairing_id: str, account_id: str) -> Pairing:
        async with self.store.unit_of_work() as uow:
            pairing = await uow.pairings.get(pairing_id)
        if pairing is None:
            raise NotFound(f"Pairing {pairing_id} not found")
        if not pairing.is_party(account_id):
            raise Unauthorized("You are not part of this pairing")
        return pairing
