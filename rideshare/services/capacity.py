"""
Capacity Guard
==============

Atomic seat arithmetic on an offer.

* ``reserve`` succeeds only while ``available_seats >= seats``.
* ``release`` refuses to push ``available_seats`` above ``total_seats``;
  that can only happen through a double release, so it is reported as an
  ``InvariantViolation`` instead of being clamped.

Both accept the caller's unit of work so the ledger can combine a seat
change with a status flip in one transaction.  Without one, each call runs
in its own unit of work.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from rideshare.domain.enums import PairingStatus
from rideshare.domain.errors import (
    CapacityExceeded,
    InvariantViolation,
    NotFound,
    ValidationError,
)
from rideshare.infrastructure.store import RideStore, UnitOfWork

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CapacityAudit:
    offer_id: str
    total_seats: int
    available_seats: int
    confirmed_seats: int

    @property
    def expected_available(self) -> int:
        return self.total_seats - self.confirmed_seats

    @property
    def consistent(self) -> bool:
        return self.available_seats == self.expected_available


class CapacityGuard:
    def __init__(self, store: RideStore):
        self.store = store

    @asynccontextmanager
    async def _unit(self, uow: Optional[UnitOfWork]) -> AsyncIterator[UnitOfWork]:
        if uow is not None:
            yield uow
        else:
            async with self.store.unit_of_work() as own:
                yield own

    async def reserve(
        self, offer_id: str, seats: int, uow: Optional[UnitOfWork] = None
    ) -> int:
        """Take *seats* from the offer; return the seats left."""
        if seats < 1:
            raise ValidationError("Seats to reserve must be at least 1")
        async with self._unit(uow) as unit:
            try:
                remaining = await unit.offers.reserve_seats(offer_id, seats)
            except CapacityExceeded as exc:
                logger.warning("Reservation refused: %s", exc.message)
                raise
        logger.info(
            "Reserved %d seat(s) on offer %s (%d left)", seats, offer_id, remaining
        )
        return remaining

    async def release(
        self, offer_id: str, seats: int, uow: Optional[UnitOfWork] = None
    ) -> int:
        """Give *seats* back to the offer; return the seats left."""
        if seats < 1:
            raise ValidationError("Seats to release must be at least 1")
        async with self._unit(uow) as unit:
            try:
                remaining = await unit.offers.release_seats(offer_id, seats)
            except InvariantViolation as exc:
                logger.error("Seat invariant violated: %s", exc.message)
                raise
        logger.info(
            "Released %d seat(s) on offer %s (%d left)", seats, offer_id, remaining
        )
        return remaining

    async def audit(self, offer_id: str) -> CapacityAudit:
        """Recompute availability from confirmed pairings."""
        async with self.store.unit_of_work() as uow:
            offer = await uow.offers.get(offer_id)
            if offer is None:
                raise NotFound(f"Offer {offer_id} not found")
            pairings = await uow.pairings.list_for_offer(offer_id)

        audit = CapacityAudit(
            offer_id=offer_id,
            total_seats=offer.total_seats,
            available_seats=offer.available_seats,
            confirmed_seats=sum(
                p.passenger_count
                for p in pairings
                if p.status == PairingStatus.CONFIRMED
            ),
        )
        if not audit.consistent:
            logger.error(
                "Capacity drift on offer %s: stored %d, expected %d",
                offer_id,
                audit.available_seats,
                audit.expected_available,
            )
        return audit
