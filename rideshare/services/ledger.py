"""
Match Ledger
============

Authoritative record of pairings.  Lifecycle transitions that move seats
go through ``record_confirmation`` / ``record_closure`` so the seat change
and the status flip share one unit of work:

    confirm:  reserve seats  ->  CAS status pending -> confirmed
    close:    release seats (if confirmed)  ->  CAS status -> rejected|cancelled

A failed compare-and-set raises ``Conflict`` and the unit of work rolls the
seat change back with it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from rideshare.domain.entities import Pairing
from rideshare.domain.enums import OPEN_PAIRING_STATUSES, PairingStatus
from rideshare.domain.errors import Conflict
from rideshare.infrastructure.store import RideStore, UnitOfWork

from .capacity import CapacityGuard

logger = logging.getLogger(__name__)


@dataclass
class OfferPairings:
    """Driver view of an offer: confirmed and pending pairings, oldest first."""

    confirmed: list[Pairing] = field(default_factory=list)
    pending: list[Pairing] = field(default_factory=list)


class MatchLedger:
    def __init__(self, store: RideStore, capacity: CapacityGuard):
        self.store = store
        self.capacity = capacity

    # ── Writes (caller's unit of work) ───────────────────────────────

    async def record_confirmation(
        self, uow: UnitOfWork, pairing: Pairing, at: datetime
    ) -> Pairing:
        await self.capacity.reserve(pairing.offer_id, pairing.passenger_count, uow=uow)
        pairing.transition_to(PairingStatus.CONFIRMED, at)
        if not await uow.pairings.compare_and_set(pairing, PairingStatus.PENDING):
            raise Conflict(f"Pairing {pairing.id} changed while confirming")
        logger.info(
            "Pairing %s confirmed (%d seat(s) on offer %s)",
            pairing.id,
            pairing.passenger_count,
            pairing.offer_id,
        )
        return pairing

    async def record_closure(
        self,
        uow: UnitOfWork,
        pairing: Pairing,
        status: PairingStatus,
        at: datetime,
        message: Optional[str] = None,
    ) -> Pairing:
        previous = pairing.status
        pairing.transition_to(status, at)
        if previous == PairingStatus.CONFIRMED:
            await self.capacity.release(
                pairing.offer_id, pairing.passenger_count, uow=uow
            )
        if message:
            pairing.close_message = message[:500]
        if not await uow.pairings.compare_and_set(pairing, previous):
            raise Conflict(f"Pairing {pairing.id} changed while closing")
        logger.info("Pairing %s %s (was %s)", pairing.id, status.value, previous.value)
        return pairing

    async def close_open(
        self, uow: UnitOfWork, pairings: Iterable[Pairing], at: datetime
    ) -> list[Pairing]:
        """Cancel every open pairing in *pairings*; used by listing cancellation.

        All affected offer rows are locked up front in id order, so two
        cancellations touching the same offers always queue instead of
        deadlocking.
        """
        open_pairings = [p for p in pairings if p.status in OPEN_PAIRING_STATUSES]
        for offer_id in sorted({p.offer_id for p in open_pairings}):
            await uow.offers.get(offer_id, for_update=True)
        return [
            await self.record_closure(uow, pairing, PairingStatus.CANCELLED, at)
            for pairing in open_pairings
        ]

    # ── Reads ────────────────────────────────────────────────────────

    async def list_for_offer(self, offer_id: str) -> OfferPairings:
        async with self.store.unit_of_work() as uow:
            pairings = await uow.pairings.list_for_offer(offer_id)
        view = OfferPairings()
        for p in pairings:
            if p.status == PairingStatus.CONFIRMED:
                view.confirmed.append(p)
            elif p.status == PairingStatus.PENDING:
                view.pending.append(p)
        return view

    async def list_for_request(self, request_id: str) -> list[Pairing]:
        async with self.store.unit_of_work() as uow:
            return await uow.pairings.list_for_request(request_id)

    async def list_for_account(self, account_id: str) -> list[Pairing]:
        async with self.store.unit_of_work() as uow:
            return await uow.pairings.list_for_account(account_id)

    async def list_for_event(self, event_id: str) -> list[Pairing]:
        async with self.store.unit_of_work() as uow:
            return await uow.pairings.list_for_event(event_id)

    async def confirmed_seats(self, offer_id: str) -> int:
        view = await self.list_for_offer(offer_id)
        return sum(p.passenger_count for p in view.confirmed)
