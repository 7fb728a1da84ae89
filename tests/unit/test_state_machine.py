# tests/unit/test_state_machine.py

import pytest

from nexticket.domain.state_machine import (
    BookingStateMachine,
    BookingStatus,
    TicketVerificationStateMachine,
    VerificationStatus,
)
from nexticket.domain.exceptions import InvalidStateTransitionError


# ---------------------
# VALID TRANSITIONS
# ---------------------

def test_valid_booking_happy_path():
    assert BookingStateMachine.can_transition(
        BookingStatus.PENDING,
        BookingStatus.ACCEPTED,
    )

    assert BookingStateMachine.can_transition(
        BookingStatus.ACCEPTED,
        BookingStatus.PAID,
    )


def test_vendor_can_reject_pending_booking():
    assert BookingStateMachine.can_transition(
        BookingStatus.PENDING,
        BookingStatus.REJECTED,
    )


def test_booking_edges_are_exactly_the_lifecycle():
    edges = {
        (source, target)
        for source in BookingStatus
        for target in BookingStatus
        if BookingStateMachine.can_transition(source, target)
    }
    assert edges == {
        (BookingStatus.PENDING, BookingStatus.ACCEPTED),
        (BookingStatus.PENDING, BookingStatus.REJECTED),
        (BookingStatus.ACCEPTED, BookingStatus.PAID),
    }


def test_pending_ticket_can_be_decided_either_way():
    assert TicketVerificationStateMachine.get_allowed_transitions(VerificationStatus.PENDING) == {
        VerificationStatus.APPROVED,
        VerificationStatus.REJECTED,
    }


# ---------------------
# INVALID TRANSITIONS
# ---------------------

def test_cannot_skip_acceptance():
    with pytest.raises(InvalidStateTransitionError):
        BookingStateMachine.validate_transition(
            BookingStatus.PENDING,
            BookingStatus.PAID,
        )


def test_terminal_state_rejected():
    assert BookingStateMachine.is_terminal(BookingStatus.REJECTED)

    with pytest.raises(InvalidStateTransitionError):
        BookingStateMachine.validate_transition(
            BookingStatus.REJECTED,
            BookingStatus.PAID,
        )


def test_terminal_state_paid():
    assert BookingStateMachine.is_terminal(BookingStatus.PAID)

    for target in BookingStatus:
        assert not BookingStateMachine.can_transition(BookingStatus.PAID, target)


@pytest.mark.parametrize("decided", [VerificationStatus.APPROVED, VerificationStatus.REJECTED])
def test_verification_decisions_are_final(decided):
    assert TicketVerificationStateMachine.is_terminal(decided)

    with pytest.raises(InvalidStateTransitionError) as exc_info:
        TicketVerificationStateMachine.validate_transition(decided, VerificationStatus.APPROVED)

    assert exc_info.value.from_state == decided.value
    assert exc_info.value.details == {"from_state": decided.value, "to_state": "approved"}


def test_invalid_type_guard():
    with pytest.raises(TypeError):
        BookingStateMachine.validate_transition(
            "pending",  # invalid type
            BookingStatus.ACCEPTED,
        )


def test_machines_do_not_accept_each_others_statuses():
    with pytest.raises(TypeError):
        TicketVerificationStateMachine.can_transition(
            BookingStatus.PENDING,
            VerificationStatus.APPROVED,
        )
