# nexticket/domain/state_machine.py

from enum import Enum
from typing import ClassVar, Dict, Set, Type

from nexticket.domain.exceptions import InvalidStateTransitionError


class VerificationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class BookingStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    PAID = "paid"


class LifecycleStateMachine:
    """
    Shared transition-table logic.
    Subclasses define the status enum and the legal edges.
    """

    _STATUS_TYPE: ClassVar[Type[Enum]]
    _ALLOWED_TRANSITIONS: ClassVar[Dict[Enum, Set[Enum]]]

    @classmethod
    def can_transition(cls, from_status, to_status) -> bool:
        """
        Returns True if transition is allowed.
        """
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(cls, from_status, to_status) -> None:
        """
        Raises InvalidStateTransitionError if transition is illegal.
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def is_terminal(cls, status) -> bool:
        cls._ensure_valid_status(status)
        return len(cls._ALLOWED_TRANSITIONS.get(status, set())) == 0

    @classmethod
    def get_allowed_transitions(cls, status) -> Set[Enum]:
        cls._ensure_valid_status(status)
        return set(cls._ALLOWED_TRANSITIONS.get(status, set()))

    @classmethod
    def _ensure_valid_status(cls, status) -> None:
        if not isinstance(status, cls._STATUS_TYPE):
            raise TypeError(
                f"Expected {cls._STATUS_TYPE.__name__}, got {type(status)}"
            )


class TicketVerificationStateMachine(LifecycleStateMachine):
    """
    Admin moderation of vendor-submitted tickets.
    Both decisions are final.
    """

    _STATUS_TYPE = VerificationStatus
    _ALLOWED_TRANSITIONS = {
        VerificationStatus.PENDING: {
            VerificationStatus.APPROVED,
            VerificationStatus.REJECTED,
        },
        VerificationStatus.APPROVED: set(),
        VerificationStatus.REJECTED: set(),
    }


class BookingStateMachine(LifecycleStateMachine):
    """
    Central lifecycle controller for booking transitions.
    Vendor decides pending bookings; the user pays accepted ones.
    """

    _STATUS_TYPE = BookingStatus
    _ALLOWED_TRANSITIONS = {
        BookingStatus.PENDING: {
            BookingStatus.ACCEPTED,
            BookingStatus.REJECTED,
        },
        BookingStatus.ACCEPTED: {
            BookingStatus.PAID,
        },
        BookingStatus.REJECTED: set(),
        BookingStatus.PAID: set(),
    }
