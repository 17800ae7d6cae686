"""Engine exceptions.

Every error the engine raises on purpose derives from ``RideShareError`` and
carries the HTTP status the API layer translates it to.
"""


class RideShareError(Exception):
    """Base class for recoverable engine errors."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RideShareError):
    """Malformed or missing input."""

    status_code = 400


class Unauthorized(RideShareError):
    """Caller is not the owner or counterparty of the record."""

    status_code = 403


class NotFound(RideShareError):
    """Referenced record does not exist or is no longer active."""

    status_code = 404


class Conflict(RideShareError):
    """Duplicate pairing, transition out of a terminal state, or a lost race."""

    status_code = 409


class CapacityExceeded(RideShareError):
    """Seat reservation would push ``available_seats`` below zero."""

    status_code = 409


class InvariantViolation(RideShareError):
    """A caller bug was caught before it could corrupt seat accounting."""

    status_code = 500
