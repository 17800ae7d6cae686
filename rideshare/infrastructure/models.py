"""
SQLAlchemy ORM models  (PostgreSQL in production, SQLite in tests).

Tables
------
* ``offers``             -- driver ride offers with the seat counters
* ``offer_locations``    -- ordered pickup / drop-off points of an offer
* ``ride_requests``      -- passenger ride requests
* ``request_locations``  -- ordered desired points of a request
* ``pairings``           -- join requests and invitations (one table)

Indexes
-------
* **B-Tree** on ``event_id``, ``owner_account_id`` and ``status`` for the
  browse and "my ..." queries.
* **Partial unique** ``uq_pairings_open`` on ``(offer_id,
  passenger_account_id)`` for pending / confirmed rows: the database refuses
  a second open pairing even if two API processes race past the check.
* **CHECK** constraints keep ``0 <= available_seats <= total_seats``.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    func,
    text,
)
from sqlalchemy.orm import relationship

from .database import Base
from rideshare.domain.enums import (
    InitiatedBy,
    ListingStatus,
    PairingStatus,
    PaymentPolicy,
    Privacy,
    TimeType,
    TripDirection,
    TripType,
)

OPEN_PAIRING_CLAUSE = text("status IN ('pending', 'confirmed')")


def _enum(enum_cls) -> Enum:
    """Store the lowercase enum values rather than the member names."""
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=20,
        validate_strings=True,
    )


class OfferModel(Base):
    __tablename__ = "offers"

    id = Column(String(40), primary_key=True)
    event_id = Column(String(64), nullable=False)
    owner_account_id = Column(String(64), nullable=False)
    total_seats = Column(Integer, nullable=False)
    available_seats = Column(Integer, nullable=False)
    trip_type = Column(_enum(TripType), nullable=False)
    privacy = Column(_enum(Privacy), default=Privacy.PUBLIC, nullable=False)
    payment_policy = Column(
        _enum(PaymentPolicy), default=PaymentPolicy.NOT_REQUIRED, nullable=False
    )
    payment_amount = Column(Float, nullable=True)
    payment_method = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)
    status = Column(_enum(ListingStatus), default=ListingStatus.ACTIVE, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    locations = relationship(
        "OfferLocationModel",
        cascade="all, delete-orphan",
        order_by="OfferLocationModel.sort_order",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("total_seats >= 1", name="ck_offers_total_seats"),
        CheckConstraint(
            "available_seats >= 0 AND available_seats <= total_seats",
            name="ck_offers_available_seats",
        ),
        Index("idx_offers_event", "event_id"),
        Index("idx_offers_owner", "owner_account_id"),
        Index("idx_offers_status", "status"),
    )


class OfferLocationModel(Base):
    __tablename__ = "offer_locations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    offer_id = Column(
        String(40), ForeignKey("offers.id", ondelete="CASCADE"), nullable=False
    )
    address = Column(String(500), nullable=False)
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    trip_direction = Column(_enum(TripDirection), nullable=False)
    time_type = Column(_enum(TimeType), default=TimeType.FLEXIBLE, nullable=False)
    specific_time = Column(Time, nullable=True)
    sort_order = Column(Integer, default=0, nullable=False)

    __table_args__ = (Index("idx_offer_locations_offer", "offer_id"),)


class RideRequestModel(Base):
    __tablename__ = "ride_requests"

    id = Column(String(40), primary_key=True)
    event_id = Column(String(64), nullable=False)
    owner_account_id = Column(String(64), nullable=False)
    passenger_count = Column(Integer, default=1, nullable=False)
    trip_type = Column(_enum(TripType), nullable=False)
    privacy = Column(_enum(Privacy), default=Privacy.PUBLIC, nullable=False)
    notes = Column(Text, nullable=True)
    status = Column(_enum(ListingStatus), default=ListingStatus.ACTIVE, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    locations = relationship(
        "RequestLocationModel",
        cascade="all, delete-orphan",
        order_by="RequestLocationModel.sort_order",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("passenger_count >= 1", name="ck_requests_passenger_count"),
        Index("idx_requests_event", "event_id"),
        Index("idx_requests_owner", "owner_account_id"),
        Index("idx_requests_status", "status"),
    )


class RequestLocationModel(Base):
    __tablename__ = "request_locations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    request_id = Column(
        String(40), ForeignKey("ride_requests.id", ondelete="CASCADE"), nullable=False
    )
    address = Column(String(500), nullable=False)
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    trip_direction = Column(_enum(TripDirection), nullable=False)
    time_type = Column(_enum(TimeType), default=TimeType.FLEXIBLE, nullable=False)
    specific_time = Column(Time, nullable=True)
    sort_order = Column(Integer, default=0, nullable=False)

    __table_args__ = (Index("idx_request_locations_request", "request_id"),)


class PairingModel(Base):
    __tablename__ = "pairings"

    id = Column(String(40), primary_key=True)
    offer_id = Column(
        String(40), ForeignKey("offers.id", ondelete="CASCADE"), nullable=False
    )
    request_id = Column(
        String(40), ForeignKey("ride_requests.id", ondelete="CASCADE"), nullable=True
    )
    driver_account_id = Column(String(64), nullable=False)
    passenger_account_id = Column(String(64), nullable=False)
    initiated_by = Column(_enum(InitiatedBy), nullable=False)
    passenger_count = Column(Integer, default=1, nullable=False)

    pickup_address = Column(String(500), nullable=True)
    pickup_lat = Column(Float, nullable=True)
    pickup_lng = Column(Float, nullable=True)

    status = Column(_enum(PairingStatus), default=PairingStatus.PENDING, nullable=False)
    message = Column(String(500), nullable=True)
    close_message = Column(String(500), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_pairings_offer", "offer_id"),
        Index("idx_pairings_request", "request_id"),
        Index("idx_pairings_driver", "driver_account_id"),
        Index("idx_pairings_passenger", "passenger_account_id"),
        Index("idx_pairings_status", "status"),
        Index(
            "uq_pairings_open",
            "offer_id",
            "passenger_account_id",
            unique=True,
            postgresql_where=OPEN_PAIRING_CLAUSE,
            sqlite_where=OPEN_PAIRING_CLAUSE,
        ),
    )
