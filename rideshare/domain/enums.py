"""Domain enumerations and state-transition rules."""

import enum


class TripType(str, enum.Enum):
    GOING = "going"
    RETURN = "return"
    BOTH = "both"


class TripDirection(str, enum.Enum):
    GOING = "going"
    RETURN = "return"


# Location directions each trip type must cover
REQUIRED_DIRECTIONS: dict[TripType, set[TripDirection]] = {
    TripType.GOING: {TripDirection.GOING},
    TripType.RETURN: {TripDirection.RETURN},
    TripType.BOTH: {TripDirection.GOING, TripDirection.RETURN},
}


class TimeType(str, enum.Enum):
    FLEXIBLE = "flexible"
    SPECIFIC = "specific"


class Privacy(str, enum.Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class PaymentPolicy(str, enum.Enum):
    NOT_REQUIRED = "not_required"
    OPTIONAL = "optional"
    OBLIGATORY = "obligatory"


class ListingStatus(str, enum.Enum):
    """Status of a published offer or request."""

    ACTIVE = "active"
    CANCELLED = "cancelled"


class PairingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class InitiatedBy(str, enum.Enum):
    DRIVER = "driver"
    PASSENGER = "passenger"


# State machine: maps current status -> set of valid next statuses
PAIRING_TRANSITIONS: dict[PairingStatus, set[PairingStatus]] = {
    PairingStatus.PENDING: {
        PairingStatus.CONFIRMED,
        PairingStatus.REJECTED,
        PairingStatus.CANCELLED,
    },
    PairingStatus.CONFIRMED: {PairingStatus.REJECTED, PairingStatus.CANCELLED},
    PairingStatus.REJECTED: set(),
    PairingStatus.CANCELLED: set(),
}

# Pairings in these states block a second pairing for the same passenger
OPEN_PAIRING_STATUSES = frozenset({PairingStatus.PENDING, PairingStatus.CONFIRMED})
