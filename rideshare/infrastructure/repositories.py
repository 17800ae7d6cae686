"""
SQLAlchemy implementation of the ``RideStore`` interface.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only, translating between ORM rows and domain
entities so nothing above this module sees a model object.

Concurrency safety
------------------
* **SELECT ... FOR UPDATE** on rows read for mutation (PostgreSQL).
* Seat counters move only through compare-and-set ``UPDATE`` statements
  (``WHERE available_seats >= :seats``); a zero row count is reported as
  ``CapacityExceeded`` / ``InvariantViolation``, never dropped.
* Pairing status flips are compare-and-set on ``status``.
* A transaction the database aborts as a deadlock or serialization
  victim (or a SQLite write lock that never came free) surfaces as
  ``Conflict``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging
from typing import AsyncIterator, Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from .database import Base, create_engine
from .models import (
    OfferLocationModel,
    OfferModel,
    PairingModel,
    RequestLocationModel,
    RideRequestModel,
)
from .store import (
    OfferRepository,
    PairingRepository,
    RequestRepository,
    RideStore,
    UnitOfWork,
)
from rideshare.domain.entities import Location, Offer, Pairing, Pickup, RideRequest
from rideshare.domain.enums import (
    OPEN_PAIRING_STATUSES,
    ListingStatus,
    PairingStatus,
    Privacy,
)
from rideshare.domain.errors import (
    CapacityExceeded,
    Conflict,
    InvariantViolation,
    NotFound,
)

logger = logging.getLogger(__name__)


# PostgreSQL serialization_failure and deadlock_detected
_LOST_RACE_SQLSTATES = frozenset({"40001", "40P01"})


def _lost_race(exc: DBAPIError) -> bool:
    """True when the database aborted the transaction in favour of another one."""
    code = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    if code in _LOST_RACE_SQLSTATES:
        return True
    # SQLite gave up waiting for the write lock
    return isinstance(exc, OperationalError) and "database is locked" in str(exc.orig)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops the offset; everything is written in UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _location(row) -> Location:
    return Location(
        address=row.address,
        trip_direction=row.trip_direction,
        time_type=row.time_type,
        specific_time=row.specific_time,
        lat=row.lat,
        lng=row.lng,
        sort_order=row.sort_order,
    )


def _location_fields(loc: Location) -> dict:
    return dict(
        address=loc.address,
        lat=loc.lat,
        lng=loc.lng,
        trip_direction=loc.trip_direction,
        time_type=loc.time_type,
        specific_time=loc.specific_time,
        sort_order=loc.sort_order,
    )


def _to_offer(row: OfferModel) -> Offer:
    return Offer(
        id=row.id,
        event_id=row.event_id,
        owner_account_id=row.owner_account_id,
        total_seats=row.total_seats,
        available_seats=row.available_seats,
        trip_type=row.trip_type,
        privacy=row.privacy,
        payment_policy=row.payment_policy,
        payment_amount=row.payment_amount,
        payment_method=row.payment_method,
        notes=row.notes,
        status=row.status,
        locations=[_location(loc) for loc in row.locations],
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _to_request(row: RideRequestModel) -> RideRequest:
    return RideRequest(
        id=row.id,
        event_id=row.event_id,
        owner_account_id=row.owner_account_id,
        passenger_count=row.passenger_count,
        trip_type=row.trip_type,
        privacy=row.privacy,
        notes=row.notes,
        status=row.status,
        locations=[_location(loc) for loc in row.locations],
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _to_pairing(row: PairingModel) -> Pairing:
    return Pairing(
        id=row.id,
        offer_id=row.offer_id,
        request_id=row.request_id,
        driver_account_id=row.driver_account_id,
        passenger_account_id=row.passenger_account_id,
        initiated_by=row.initiated_by,
        passenger_count=row.passenger_count,
        pickup=Pickup(
            address=row.pickup_address, lat=row.pickup_lat, lng=row.pickup_lng
        ),
        status=row.status,
        message=row.message,
        close_message=row.close_message,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
        confirmed_at=_aware(row.confirmed_at),
        closed_at=_aware(row.closed_at),
    )


class SqlOfferRepository(OfferRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, offer: Offer) -> Offer:
        row = OfferModel(
            id=offer.id,
            event_id=offer.event_id,
            owner_account_id=offer.owner_account_id,
            total_seats=offer.total_seats,
            available_seats=offer.available_seats,
            trip_type=offer.trip_type,
            privacy=offer.privacy,
            payment_policy=offer.payment_policy,
            payment_amount=offer.payment_amount,
            payment_method=offer.payment_method,
            notes=offer.notes,
            status=offer.status,
            created_at=offer.created_at,
            updated_at=offer.updated_at,
            locations=[
                OfferLocationModel(**_location_fields(loc)) for loc in offer.locations
            ],
        )
        self.session.add(row)
        await self.session.flush()
        return offer

    async def _row(self, offer_id: str, for_update: bool = False) -> Optional[OfferModel]:
        query = (
            select(OfferModel)
            .where(OfferModel.id == offer_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get(self, offer_id: str, *, for_update: bool = False) -> Optional[Offer]:
        row = await self._row(offer_id, for_update)
        return _to_offer(row) if row else None

    async def save(self, offer: Offer) -> Offer:
        row = await self._row(offer.id, for_update=True)
        if row is None:
            raise NotFound(f"Offer {offer.id} not found")
        row.privacy = offer.privacy
        row.payment_policy = offer.payment_policy
        row.payment_amount = offer.payment_amount
        row.payment_method = offer.payment_method
        row.notes = offer.notes
        row.status = offer.status
        row.updated_at = offer.updated_at
        row.locations = [
            OfferLocationModel(**_location_fields(loc)) for loc in offer.locations
        ]
        await self.session.flush()
        return _to_offer(row)

    async def list_public_active(self, event_id: str) -> list[Offer]:
        result = await self.session.execute(
            select(OfferModel)
            .where(
                OfferModel.event_id == event_id,
                OfferModel.privacy == Privacy.PUBLIC,
                OfferModel.status == ListingStatus.ACTIVE,
            )
            .order_by(OfferModel.created_at.desc(), OfferModel.id.desc())
            .execution_options(populate_existing=True)
        )
        return [_to_offer(row) for row in result.scalars().all()]

    async def list_by_owner(self, account_id: str) -> list[Offer]:
        result = await self.session.execute(
            select(OfferModel)
            .where(OfferModel.owner_account_id == account_id)
            .order_by(OfferModel.created_at.desc(), OfferModel.id.desc())
            .execution_options(populate_existing=True)
        )
        return [_to_offer(row) for row in result.scalars().all()]

    async def list_by_event(self, event_id: str) -> list[Offer]:
        result = await self.session.execute(
            select(OfferModel)
            .where(OfferModel.event_id == event_id)
            .order_by(OfferModel.created_at.desc(), OfferModel.id.desc())
            .execution_options(populate_existing=True)
        )
        return [_to_offer(row) for row in result.scalars().all()]

    async def _available(self, offer_id: str) -> int:
        result = await self.session.execute(
            select(OfferModel.available_seats).where(OfferModel.id == offer_id)
        )
        return result.scalar_one()

    async def reserve_seats(self, offer_id: str, seats: int) -> int:
        result = await self.session.execute(
            update(OfferModel)
            .where(OfferModel.id == offer_id, OfferModel.available_seats >= seats)
            .values(available_seats=OfferModel.available_seats - seats)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            row = await self._row(offer_id)
            if row is None:
                raise NotFound(f"Offer {offer_id} not found")
            raise CapacityExceeded(
                f"Offer {offer_id} has {row.available_seats} seat(s) left, "
                f"{seats} requested"
            )
        return await self._available(offer_id)

    async def release_seats(self, offer_id: str, seats: int) -> int:
        result = await self.session.execute(
            update(OfferModel)
            .where(
                OfferModel.id == offer_id,
                OfferModel.available_seats + seats <= OfferModel.total_seats,
            )
            .values(available_seats=OfferModel.available_seats + seats)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            row = await self._row(offer_id)
            if row is None:
                raise NotFound(f"Offer {offer_id} not found")
            raise InvariantViolation(
                f"Releasing {seats} seat(s) on offer {offer_id} would exceed "
                f"total_seats ({row.available_seats} + {seats} > {row.total_seats})"
            )
        return await self._available(offer_id)


class SqlRequestRepository(RequestRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, request: RideRequest) -> RideRequest:
        row = RideRequestModel(
            id=request.id,
            event_id=request.event_id,
            owner_account_id=request.owner_account_id,
            passenger_count=request.passenger_count,
            trip_type=request.trip_type,
            privacy=request.privacy,
            notes=request.notes,
            status=request.status,
            created_at=request.created_at,
            updated_at=request.updated_at,
            locations=[
                RequestLocationModel(**_location_fields(loc))
                for loc in request.locations
            ],
        )
        self.session.add(row)
        await self.session.flush()
        return request

    async def _row(
        self, request_id: str, for_update: bool = False
    ) -> Optional[RideRequestModel]:
        query = (
            select(RideRequestModel)
            .where(RideRequestModel.id == request_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get(
        self, request_id: str, *, for_update: bool = False
    ) -> Optional[RideRequest]:
        row = await self._row(request_id, for_update)
        return _to_request(row) if row else None

    async def save(self, request: RideRequest) -> RideRequest:
        row = await self._row(request.id, for_update=True)
        if row is None:
            raise NotFound(f"Request {request.id} not found")
        row.privacy = request.privacy
        row.notes = request.notes
        row.status = request.status
        row.updated_at = request.updated_at
        row.locations = [
            RequestLocationModel(**_location_fields(loc)) for loc in request.locations
        ]
        await self.session.flush()
        return _to_request(row)

    async def list_public_active(self, event_id: str) -> list[RideRequest]:
        result = await self.session.execute(
            select(RideRequestModel)
            .where(
                RideRequestModel.event_id == event_id,
                RideRequestModel.privacy == Privacy.PUBLIC,
                RideRequestModel.status == ListingStatus.ACTIVE,
            )
            .order_by(RideRequestModel.created_at.desc(), RideRequestModel.id.desc())
            .execution_options(populate_existing=True)
        )
        return [_to_request(row) for row in result.scalars().all()]

    async def list_by_owner(self, account_id: str) -> list[RideRequest]:
        result = await self.session.execute(
            select(RideRequestModel)
            .where(RideRequestModel.owner_account_id == account_id)
            .order_by(RideRequestModel.created_at.desc(), RideRequestModel.id.desc())
            .execution_options(populate_existing=True)
        )
        return [_to_request(row) for row in result.scalars().all()]

    async def list_by_event(self, event_id: str) -> list[RideRequest]:
        result = await self.session.execute(
            select(RideRequestModel)
            .where(RideRequestModel.event_id == event_id)
            .order_by(RideRequestModel.created_at.desc(), RideRequestModel.id.desc())
            .execution_options(populate_existing=True)
        )
        return [_to_request(row) for row in result.scalars().all()]


class SqlPairingRepository(PairingRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, pairing: Pairing) -> Pairing:
        row = PairingModel(
            id=pairing.id,
            offer_id=pairing.offer_id,
            request_id=pairing.request_id,
            driver_account_id=pairing.driver_account_id,
            passenger_account_id=pairing.passenger_account_id,
            initiated_by=pairing.initiated_by,
            passenger_count=pairing.passenger_count,
            pickup_address=pairing.pickup.address,
            pickup_lat=pairing.pickup.lat,
            pickup_lng=pairing.pickup.lng,
            status=pairing.status,
            message=pairing.message,
            created_at=pairing.created_at,
            updated_at=pairing.updated_at,
        )
        self.session.add(row)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise Conflict(
                f"An open pairing already exists for offer {pairing.offer_id} "
                f"and account {pairing.passenger_account_id}"
            ) from exc
        return pairing

    async def get(
        self, pairing_id: str, *, for_update: bool = False
    ) -> Optional[Pairing]:
        query = (
            select(PairingModel)
            .where(PairingModel.id == pairing_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        row = result.scalar_one_or_none()
        return _to_pairing(row) if row else None

    async def find_open(
        self, offer_id: str, passenger_account_id: str
    ) -> Optional[Pairing]:
        result = await self.session.execute(
            select(PairingModel)
            .where(
                PairingModel.offer_id == offer_id,
                PairingModel.passenger_account_id == passenger_account_id,
                PairingModel.status.in_(list(OPEN_PAIRING_STATUSES)),
            )
            .execution_options(populate_existing=True)
        )
        row = result.scalars().first()
        return _to_pairing(row) if row else None

    async def list_for_offer(self, offer_id: str) -> list[Pairing]:
        result = await self.session.execute(
            select(PairingModel)
            .where(PairingModel.offer_id == offer_id)
            .order_by(PairingModel.created_at, PairingModel.id)
            .execution_options(populate_existing=True)
        )
        return [_to_pairing(row) for row in result.scalars().all()]

    async def list_for_request(self, request_id: str) -> list[Pairing]:
        result = await self.session.execute(
            select(PairingModel)
            .where(PairingModel.request_id == request_id)
            .order_by(PairingModel.created_at.desc(), PairingModel.id.desc())
            .execution_options(populate_existing=True)
        )
        return [_to_pairing(row) for row in result.scalars().all()]

    async def list_for_account(self, account_id: str) -> list[Pairing]:
        result = await self.session.execute(
            select(PairingModel)
            .where(
                or_(
                    PairingModel.driver_account_id == account_id,
                    PairingModel.passenger_account_id == account_id,
                )
            )
            .order_by(PairingModel.created_at.desc(), PairingModel.id.desc())
            .execution_options(populate_existing=True)
        )
        return [_to_pairing(row) for row in result.scalars().all()]

    async def list_for_event(self, event_id: str) -> list[Pairing]:
        result = await self.session.execute(
            select(PairingModel)
            .join(OfferModel, PairingModel.offer_id == OfferModel.id)
            .where(OfferModel.event_id == event_id)
            .order_by(PairingModel.created_at.desc(), PairingModel.id.desc())
            .execution_options(populate_existing=True)
        )
        return [_to_pairing(row) for row in result.scalars().all()]

    async def compare_and_set(
        self, pairing: Pairing, expected: PairingStatus
    ) -> bool:
        result = await self.session.execute(
            update(PairingModel)
            .where(PairingModel.id == pairing.id, PairingModel.status == expected)
            .values(
                status=pairing.status,
                close_message=pairing.close_message,
                updated_at=pairing.updated_at,
                confirmed_at=pairing.confirmed_at,
                closed_at=pairing.closed_at,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def delete(self, pairing_id: str) -> None:
        await self.session.execute(
            delete(PairingModel)
            .where(PairingModel.id == pairing_id)
            .execution_options(synchronize_session=False)
        )


class SqlUnitOfWork(UnitOfWork):
    def __init__(self, session: AsyncSession):
        self.session = session
        self.offers = SqlOfferRepository(session)
        self.requests = SqlRequestRepository(session)
        self.pairings = SqlPairingRepository(session)


class SqlStore(RideStore):
    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_url(cls, url: str) -> "SqlStore":
        return cls(create_engine(url))

    async def create_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[SqlUnitOfWork]:
        """One session / transaction; commit on success, rollback on error."""
        async with self.session_factory() as session:
            try:
                yield SqlUnitOfWork(session)
                await session.commit()
            except DBAPIError as exc:
                await session.rollback()
                if _lost_race(exc):
                    logger.warning("Transaction lost a race: %s", exc.orig)
                    raise Conflict("Concurrent update, please retry") from exc
                raise
            except BaseException:
                await session.rollback()
                raise
