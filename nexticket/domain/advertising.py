# nexticket/domain/advertising.py

from typing import Final

from nexticket.domain.exceptions import (
    InvalidStateTransitionError,
    SlotLimitExceededError,
)
from nexticket.domain.state_machine import VerificationStatus

MAX_ADVERTISED_TICKETS: Final[int] = 6


def check_toggle(
    verification_status: VerificationStatus,
    currently_advertised: bool,
    desired: bool,
    advertised_count: int,
) -> bool:
    """
    Validate an advertise toggle against the slot cap.

    Returns True when the flag actually flips, False for a no-op
    (desired value already set). Raises when the toggle is refused.
    """
    if verification_status is not VerificationStatus.APPROVED:
        raise InvalidStateTransitionError(
            from_state=verification_status.value,
            to_state="advertised" if desired else "unadvertised",
        )

    if desired == currently_advertised:
        return False

    if desired and advertised_count >= MAX_ADVERTISED_TICKETS:
        raise SlotLimitExceededError(
            f"Cannot advertise more than {MAX_ADVERTISED_TICKETS} tickets. "
            f"Unadvertise one first.",
            limit=MAX_ADVERTISED_TICKETS,
        )
    return True


def slots_available(advertised_count: int) -> int:
    return max(0, MAX_ADVERTISED_TICKETS - advertised_count)
