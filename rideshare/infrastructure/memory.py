"""
In-process ``RideStore``.

Used when no database URL is configured, and by the tests next to the SQL
store.  Construct one per process and inject it; nothing here is global.

Concurrency safety
------------------
* A store-wide ``asyncio.Lock`` is held for the whole unit of work.  There is
  no I/O behind this store, so finer-grained locks would not let any more
  work overlap.
* Every mutation appends an undo step to a journal.  If the unit of work
  raises, the journal is replayed backwards so a failed confirm (seats
  reserved, status flip rejected) leaves nothing behind.
* Records are copied on the way in and on the way out; callers never hold a
  reference to stored state.
"""

from __future__ import annotations

import asyncio
import copy
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional, TypeVar

from rideshare.domain.entities import Offer, Pairing, RideRequest
from rideshare.domain.enums import (
    OPEN_PAIRING_STATUSES,
    ListingStatus,
    PairingStatus,
    Privacy,
)
from rideshare.domain.errors import Conflict, NotFound

from .store import (
    OfferRepository,
    PairingRepository,
    RequestRepository,
    RideStore,
    UnitOfWork,
)

T = TypeVar("T")


def _newest_first(records: list[T]) -> list[T]:
    return sorted(records, key=lambda r: (r.created_at, r.id), reverse=True)


class _Tables:
    def __init__(self) -> None:
        self.offers: dict[str, Offer] = {}
        self.requests: dict[str, RideRequest] = {}
        self.pairings: dict[str, Pairing] = {}


class _Journal:
    def __init__(self) -> None:
        self._undo: list[Callable[[], None]] = []

    def put(self, table: dict, key: str) -> None:
        """Remember *table[key]* as it is now."""
        if key in table:
            previous = table[key]
            self._undo.append(lambda: table.__setitem__(key, previous))
        else:
            self._undo.append(lambda: table.pop(key, None))

    def rollback(self) -> None:
        while self._undo:
            self._undo.pop()()


class MemoryOfferRepository(OfferRepository):
    def __init__(self, tables: _Tables, journal: _Journal):
        self.tables = tables
        self.journal = journal

    async def add(self, offer: Offer) -> Offer:
        self.journal.put(self.tables.offers, offer.id)
        self.tables.offers[offer.id] = copy.deepcopy(offer)
        return offer

    async def get(self, offer_id: str, *, for_update: bool = False) -> Optional[Offer]:
        offer = self.tables.offers.get(offer_id)
        return copy.deepcopy(offer) if offer else None

    async def save(self, offer: Offer) -> Offer:
        stored = self.tables.offers.get(offer.id)
        if stored is None:
            raise NotFound(f"Offer {offer.id} not found")
        updated = copy.deepcopy(offer)
        # seat counters only move through reserve/release
        updated.total_seats = stored.total_seats
        updated.available_seats = stored.available_seats
        self.journal.put(self.tables.offers, offer.id)
        self.tables.offers[offer.id] = updated
        return copy.deepcopy(updated)

    async def list_public_active(self, event_id: str) -> list[Offer]:
        return _newest_first(
            [
                copy.deepcopy(o)
                for o in self.tables.offers.values()
                if o.event_id == event_id
                and o.privacy == Privacy.PUBLIC
                and o.status == ListingStatus.ACTIVE
            ]
        )

    async def list_by_owner(self, account_id: str) -> list[Offer]:
        return _newest_first(
            [
                copy.deepcopy(o)
                for o in self.tables.offers.values()
                if o.owner_account_id == account_id
            ]
        )

    async def list_by_event(self, event_id: str) -> list[Offer]:
        return _newest_first(
            [
                copy.deepcopy(o)
                for o in self.tables.offers.values()
                if o.event_id == event_id
            ]
        )

    async def reserve_seats(self, offer_id: str, seats: int) -> int:
        return self._adjust(offer_id, lambda offer: offer.reserve(seats))

    async def release_seats(self, offer_id: str, seats: int) -> int:
        return self._adjust(offer_id, lambda offer: offer.release(seats))

    def _adjust(self, offer_id: str, change: Callable[[Offer], int]) -> int:
        stored = self.tables.offers.get(offer_id)
        if stored is None:
            raise NotFound(f"Offer {offer_id} not found")
        updated = copy.deepcopy(stored)
        remaining = change(updated)  # raises before anything is written
        self.journal.put(self.tables.offers, offer_id)
        self.tables.offers[offer_id] = updated
        return remaining


class MemoryRequestRepository(RequestRepository):
    def __init__(self, tables: _Tables, journal: _Journal):
        self.tables = tables
        self.journal = journal

    async def add(self, request: RideRequest) -> RideRequest:
        self.journal.put(self.tables.requests, request.id)
        self.tables.requests[request.id] = copy.deepcopy(request)
        return request

    async def get(
        self, request_id: str, *, for_update: bool = False
    ) -> Optional[RideRequest]:
        request = self.tables.requests.get(request_id)
        return copy.deepcopy(request) if request else None

    async def save(self, request: RideRequest) -> RideRequest:
        if request.id not in self.tables.requests:
            raise NotFound(f"Request {request.id} not found")
        self.journal.put(self.tables.requests, request.id)
        self.tables.requests[request.id] = copy.deepcopy(request)
        return request

    async def list_public_active(self, event_id: str) -> list[RideRequest]:
        return _newest_first(
            [
                copy.deepcopy(r)
                for r in self.tables.requests.values()
                if r.event_id == event_id
                and r.privacy == Privacy.PUBLIC
                and r.status == ListingStatus.ACTIVE
            ]
        )

    async def list_by_owner(self, account_id: str) -> list[RideRequest]:
        return _newest_first(
            [
                copy.deepcopy(r)
                for r in self.tables.requests.values()
                if r.owner_account_id == account_id
            ]
        )

    async def list_by_event(self, event_id: str) -> list[RideRequest]:
        return _newest_first(
            [
                copy.deepcopy(r)
                for r in self.tables.requests.values()
                if r.event_id == event_id
            ]
        )


class MemoryPairingRepository(PairingRepository):
    def __init__(self, tables: _Tables, journal: _Journal):
        self.tables = tables
        self.journal = journal

    async def add(self, pairing: Pairing) -> Pairing:
        if await self.find_open(pairing.offer_id, pairing.passenger_account_id):
            raise Conflict(
                f"An open pairing already exists for offer {pairing.offer_id} "
                f"and account {pairing.passenger_account_id}"
            )
        self.journal.put(self.tables.pairings, pairing.id)
        self.tables.pairings[pairing.id] = copy.deepcopy(pairing)
        return pairing

    async def get(
        self, pairing_id: str, *, for_update: bool = False
    ) -> Optional[Pairing]:
        pairing = self.tables.pairings.get(pairing_id)
        return copy.deepcopy(pairing) if pairing else None

    async def find_open(
        self, offer_id: str, passenger_account_id: str
    ) -> Optional[Pairing]:
        for p in self.tables.pairings.values():
            if (
                p.offer_id == offer_id
                and p.passenger_account_id == passenger_account_id
                and p.status in OPEN_PAIRING_STATUSES
            ):
                return copy.deepcopy(p)
        return None

    async def list_for_offer(self, offer_id: str) -> list[Pairing]:
        return sorted(
            (
                copy.deepcopy(p)
                for p in self.tables.pairings.values()
                if p.offer_id == offer_id
            ),
            key=lambda p: (p.created_at, p.id),
        )

    async def list_for_request(self, request_id: str) -> list[Pairing]:
        return _newest_first(
            [
                copy.deepcopy(p)
                for p in self.tables.pairings.values()
                if p.request_id == request_id
            ]
        )

    async def list_for_account(self, account_id: str) -> list[Pairing]:
        return _newest_first(
            [
                copy.deepcopy(p)
                for p in self.tables.pairings.values()
                if p.is_party(account_id)
            ]
        )

    async def list_for_event(self, event_id: str) -> list[Pairing]:
        offer_ids = {
            o.id for o in self.tables.offers.values() if o.event_id == event_id
        }
        return _newest_first(
            [
                copy.deepcopy(p)
                for p in self.tables.pairings.values()
                if p.offer_id in offer_ids
            ]
        )

    async def compare_and_set(
        self, pairing: Pairing, expected: PairingStatus
    ) -> bool:
        stored = self.tables.pairings.get(pairing.id)
        if stored is None or stored.status != expected:
            return False
        self.journal.put(self.tables.pairings, pairing.id)
        self.tables.pairings[pairing.id] = copy.deepcopy(pairing)
        return True

    async def delete(self, pairing_id: str) -> None:
        if pairing_id in self.tables.pairings:
            self.journal.put(self.tables.pairings, pairing_id)
            del self.tables.pairings[pairing_id]


class MemoryUnitOfWork(UnitOfWork):
    def __init__(self, tables: _Tables):
        self.journal = _Journal()
        self.offers = MemoryOfferRepository(tables, self.journal)
        self.requests = MemoryRequestRepository(tables, self.journal)
        self.pairings = MemoryPairingRepository(tables, self.journal)


class MemoryStore(RideStore):
    def __init__(self) -> None:
        self._tables = _Tables()
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[MemoryUnitOfWork]:
        async with self._lock:
            uow = MemoryUnitOfWork(self._tables)
            try:
                yield uow
            except BaseException:
                uow.journal.rollback()
                raise
