"""Unit tests for pairing state transitions and party roles."""

from datetime import datetime, timezone

import pytest

from rideshare.domain.entities import InvalidStateTransition, Pairing
from rideshare.domain.enums import InitiatedBy, PairingStatus
from rideshare.domain.errors import Conflict

NOW = datetime(2026, 7, 18, 12, 0, tzinfo=timezone.utc)


def make_pairing(status=PairingStatus.PENDING, initiated_by=InitiatedBy.PASSENGER):
    return Pairing(
        id="pair_1",
        offer_id="offer_1",
        driver_account_id="driver",
        passenger_account_id="rider",
        initiated_by=initiated_by,
        status=status,
    )


class TestPairingStateMachine:
    def test_initial_status_is_pending(self):
        assert make_pairing().status == PairingStatus.PENDING

    # ── Valid transitions ─────────────────────────────────────────

    def test_pending_to_confirmed_stamps_confirmed_at(self):
        p = make_pairing()
        p.transition_to(PairingStatus.CONFIRMED, NOW)
        assert p.status == PairingStatus.CONFIRMED
        assert p.confirmed_at == NOW
        assert p.closed_at is None
        assert p.holds_seats

    @pytest.mark.parametrize(
        "start", [PairingStatus.PENDING, PairingStatus.CONFIRMED]
    )
    @pytest.mark.parametrize(
        "end", [PairingStatus.REJECTED, PairingStatus.CANCELLED]
    )
    def test_open_to_closed(self, start, end):
        p = make_pairing(status=start)
        p.transition_to(end, NOW)
        assert p.status == end
        assert p.closed_at == NOW
        assert not p.holds_seats

    # ── Invalid transitions ───────────────────────────────────────

    @pytest.mark.parametrize(
        "terminal", [PairingStatus.REJECTED, PairingStatus.CANCELLED]
    )
    @pytest.mark.parametrize("target", list(PairingStatus))
    def test_terminal_states_are_final(self, terminal, target):
        p = make_pairing(status=terminal)
        with pytest.raises(InvalidStateTransition):
            p.transition_to(target, NOW)
        assert p.status == terminal

    def test_confirmed_cannot_go_back_to_pending(self):
        p = make_pairing(status=PairingStatus.CONFIRMED)
        assert not p.can_transition_to(PairingStatus.PENDING)

    def test_invalid_transition_is_a_conflict(self):
        assert issubclass(InvalidStateTransition, Conflict)


class TestParties:
    def test_join_request_roles(self):
        p = make_pairing(initiated_by=InitiatedBy.PASSENGER)
        assert p.initiator_account_id == "rider"
        assert p.counterparty_account_id == "driver"

    def test_invitation_roles(self):
        p = make_pairing(initiated_by=InitiatedBy.DRIVER)
        assert p.initiator_account_id == "driver"
        assert p.counterparty_account_id == "rider"

    def test_is_party(self):
        p = make_pairing()
        assert p.is_party("driver")
        assert p.is_party("rider")
        assert not p.is_party("someone")
