"""
Repository Pattern -- one storage interface, two implementations.

The engine only talks to a ``RideStore``.  Every operation opens a
``UnitOfWork`` (``async with store.unit_of_work() as uow``) and reaches the
tables through ``uow.offers``, ``uow.requests`` and ``uow.pairings``.  A unit
of work commits when the block exits normally and leaves no trace when it
raises, which is what makes "reserve seats + flip status" atomic.

Implementations
---------------
* :class:`rideshare.infrastructure.memory.MemoryStore` -- in-process, used
  when no database is configured and throughout the tests.
* :class:`rideshare.infrastructure.repositories.SqlStore` -- SQLAlchemy
  async (PostgreSQL in production, SQLite in tests).

Ordering contract
-----------------
* Listings of offers / requests: newest first (``created_at`` desc, ``id``
  desc).
* ``PairingRepository.list_for_offer``: oldest first (``created_at`` asc,
  ``id`` asc) so a driver's passenger list is stable.
* ``PairingRepository.list_for_request`` / ``list_for_account`` /
  ``list_for_event``: newest first.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncContextManager, Optional

from rideshare.domain.entities import Offer, Pairing, RideRequest
from rideshare.domain.enums import PairingStatus


class OfferRepository(ABC):
    @abstractmethod
    async def add(self, offer: Offer) -> Offer: ...

    @abstractmethod
    async def get(self, offer_id: str, *, for_update: bool = False) -> Optional[Offer]: ...

    @abstractmethod
    async def save(self, offer: Offer) -> Offer:
        """Persist everything except the seat counters."""

    @abstractmethod
    async def list_public_active(self, event_id: str) -> list[Offer]: ...

    @abstractmethod
    async def list_by_owner(self, account_id: str) -> list[Offer]: ...

    @abstractmethod
    async def list_by_event(self, event_id: str) -> list[Offer]:
        """Every offer for the event, any privacy or status."""

    @abstractmethod
    async def reserve_seats(self, offer_id: str, seats: int) -> int:
        """Atomically take *seats*; raise ``CapacityExceeded`` / ``NotFound``."""

    @abstractmethod
    async def release_seats(self, offer_id: str, seats: int) -> int:
        """Atomically give back *seats*; raise ``InvariantViolation`` / ``NotFound``."""


class RequestRepository(ABC):
    @abstractmethod
    async def add(self, request: RideRequest) -> RideRequest: ...

    @abstractmethod
    async def get(
        self, request_id: str, *, for_update: bool = False
    ) -> Optional[RideRequest]: ...

    @abstractmethod
    async def save(self, request: RideRequest) -> RideRequest: ...

    @abstractmethod
    async def list_public_active(self, event_id: str) -> list[RideRequest]: ...

    @abstractmethod
    async def list_by_owner(self, account_id: str) -> list[RideRequest]: ...

    @abstractmethod
    async def list_by_event(self, event_id: str) -> list[RideRequest]: ...


class PairingRepository(ABC):
    @abstractmethod
    async def add(self, pairing: Pairing) -> Pairing:
        """Insert; raise ``Conflict`` if an open pairing already exists."""

    @abstractmethod
    async def get(
        self, pairing_id: str, *, for_update: bool = False
    ) -> Optional[Pairing]: ...

    @abstractmethod
    async def find_open(
        self, offer_id: str, passenger_account_id: str
    ) -> Optional[Pairing]: ...

    @abstractmethod
    async def list_for_offer(self, offer_id: str) -> list[Pairing]: ...

    @abstractmethod
    async def list_for_request(self, request_id: str) -> list[Pairing]: ...

    @abstractmethod
    async def list_for_account(self, account_id: str) -> list[Pairing]: ...

    @abstractmethod
    async def list_for_event(self, event_id: str) -> list[Pairing]:
        """Pairings on any offer of the event."""

    @abstractmethod
    async def compare_and_set(
        self, pairing: Pairing, expected: PairingStatus
    ) -> bool:
        """Write *pairing*'s status fields only if the stored status is *expected*.

        Returns ``False`` when another writer got there first.
        """

    @abstractmethod
    async def delete(self, pairing_id: str) -> None: ...


class UnitOfWork(ABC):
    offers: OfferRepository
    requests: RequestRepository
    pairings: PairingRepository


class RideStore(ABC):
    @abstractmethod
    def unit_of_work(self) -> AsyncContextManager[UnitOfWork]: ...

    async def open(self) -> None:
        """Prepare the backing store (no-op by default)."""

    async def close(self) -> None:
        """Release connections (no-op by default)."""
