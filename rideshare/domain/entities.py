"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Pairing``: enforces valid lifecycle transitions
  (PENDING -> CONFIRMED -> REJECTED | CANCELLED).
- ``Offer.reserve`` / ``Offer.release`` encapsulate the seat invariant
  ``0 <= available_seats <= total_seats``.
- One ``Pairing`` type covers passenger join requests and driver
  invitations; ``initiated_by`` decides who may confirm.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import Optional

from .enums import (
    PAIRING_TRANSITIONS,
    REQUIRED_DIRECTIONS,
    InitiatedBy,
    ListingStatus,
    PairingStatus,
    PaymentPolicy,
    Privacy,
    TimeType,
    TripDirection,
    TripType,
)
from .errors import CapacityExceeded, Conflict, InvariantViolation, ValidationError


class InvalidStateTransition(Conflict):
    """Raised when a pairing status change violates the state machine."""


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


class MonotonicClock:
    """UTC clock that never hands out the same instant twice.

    Creation timestamps double as the ordering key for listings, so two
    records created within one clock tick must still sort deterministically.
    """

    def __init__(self) -> None:
        self._last: Optional[datetime] = None

    def now(self) -> datetime:
        current = datetime.now(timezone.utc)
        if self._last is not None and current <= self._last:
            current = self._last + timedelta(microseconds=1)
        self._last = current
        return current


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    address: str
    trip_direction: TripDirection
    time_type: TimeType = TimeType.FLEXIBLE
    specific_time: Optional[time] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    sort_order: int = 0

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None


@dataclass(frozen=True)
class Pickup:
    address: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None


def check_locations(
    trip_type: TripType, locations: list[Location]
) -> list[Location]:
    """Validate a location list and return it renumbered by position."""
    if not locations:
        raise ValidationError("At least one location is required")

    for loc in locations:
        if not loc.address or not loc.address.strip():
            raise ValidationError("Every location needs an address")
        if loc.time_type == TimeType.SPECIFIC and loc.specific_time is None:
            raise ValidationError(
                f"Location '{loc.address}' has a specific time type but no time"
            )

    covered = {loc.trip_direction for loc in locations}
    missing = REQUIRED_DIRECTIONS[trip_type] - covered
    if missing:
        names = ", ".join(sorted(d.value for d in missing))
        raise ValidationError(
            f"Trip type '{trip_type.value}' needs a location for: {names}"
        )

    return [
        Location(
            address=loc.address.strip()[:500],
            trip_direction=loc.trip_direction,
            time_type=loc.time_type,
            specific_time=(
                loc.specific_time if loc.time_type == TimeType.SPECIFIC else None
            ),
            lat=loc.lat,
            lng=loc.lng,
            sort_order=i,
        )
        for i, loc in enumerate(locations)
    ]


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Offer:
    id: str
    event_id: str
    owner_account_id: str
    total_seats: int
    available_seats: int
    trip_type: TripType = TripType.GOING
    privacy: Privacy = Privacy.PUBLIC
    payment_policy: PaymentPolicy = PaymentPolicy.NOT_REQUIRED
    payment_amount: Optional[float] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    status: ListingStatus = ListingStatus.ACTIVE
    locations: list[Location] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == ListingStatus.ACTIVE

    def reserve(self, seats: int) -> int:
        """Take *seats* out of the budget and return what is left."""
        if seats > self.available_seats:
            raise CapacityExceeded(
                f"Offer {self.id} has {self.available_seats} seat(s) left, "
                f"{seats} requested"
            )
        self.available_seats -= seats
        return self.available_seats

    def release(self, seats: int) -> int:
        """Give *seats* back; refuses to exceed ``total_seats``."""
        if self.available_seats + seats > self.total_seats:
            raise InvariantViolation(
                f"Releasing {seats} seat(s) on offer {self.id} would exceed "
                f"total_seats ({self.available_seats} + {seats} > {self.total_seats})"
            )
        self.available_seats += seats
        return self.available_seats


@dataclass
class RideRequest:
    id: str
    event_id: str
    owner_account_id: str
    passenger_count: int = 1
    trip_type: TripType = TripType.GOING
    privacy: Privacy = Privacy.PUBLIC
    notes: Optional[str] = None
    status: ListingStatus = ListingStatus.ACTIVE
    locations: list[Location] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == ListingStatus.ACTIVE


@dataclass
class Pairing:
    id: str
    offer_id: str
    driver_account_id: str
    passenger_account_id: str
    initiated_by: InitiatedBy
    passenger_count: int = 1
    request_id: Optional[str] = None
    pickup: Pickup = field(default_factory=Pickup)
    status: PairingStatus = PairingStatus.PENDING
    message: Optional[str] = None
    close_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    @property
    def initiator_account_id(self) -> str:
        if self.initiated_by == InitiatedBy.DRIVER:
            return self.driver_account_id
        return self.passenger_account_id

    @property
    def counterparty_account_id(self) -> str:
        if self.initiated_by == InitiatedBy.DRIVER:
            return self.passenger_account_id
        return self.driver_account_id

    @property
    def holds_seats(self) -> bool:
        return self.status == PairingStatus.CONFIRMED

    def is_party(self, account_id: str) -> bool:
        return account_id in (self.driver_account_id, self.passenger_account_id)

    def can_transition_to(self, new_status: PairingStatus) -> bool:
        return new_status in PAIRING_TRANSITIONS.get(self.status, set())

    def transition_to(self, new_status: PairingStatus, at: datetime) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        if not self.can_transition_to(new_status):
            raise InvalidStateTransition(
                f"Cannot transition pairing {self.id} from "
                f"{self.status.value} to {new_status.value}"
            )
        self.status = new_status
        self.updated_at = at
        if new_status == PairingStatus.CONFIRMED:
            self.confirmed_at = at
        else:
            self.closed_at = at
