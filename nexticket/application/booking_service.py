import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from nexticket import config
from nexticket.domain.exceptions import (
    InsufficientInventoryError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationFailedError,
)
from nexticket.domain.money import total_price
from nexticket.domain.roles import Action, Role, RoleInfo, ensure_owner, ensure_permitted
from nexticket.domain.schedule import ensure_not_departed, utc_now
from nexticket.domain.state_machine import (
    BookingStateMachine,
    BookingStatus,
    VerificationStatus,
)
from nexticket.infrastructure.db.models import Booking
from nexticket.infrastructure.repositories.booking_repository import BookingRepository
from nexticket.infrastructure.repositories.ticket_repository import TicketRepository
from nexticket.infrastructure.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)


class BookingService:
    """Application service coordinating booking workflow."""

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = utc_now,
        utc_offset_minutes: int = config.DEPARTURE_UTC_OFFSET_MINUTES,
    ):
        self.db = db
        self.clock = clock
        self.utc_offset_minutes = utc_offset_minutes
        self.booking_repository = BookingRepository(db)
        self.ticket_repository = TicketRepository(db)
        self.user_repository = UserRepository(db)

    def create_booking(
        self,
        actor: RoleInfo | None,
        ticket_id: str,
        quantity: int,
    ) -> Booking:
        """
        Request ``quantity`` units of an approved ticket.

        Stock is only checked here, not held: the ticket's quantity is
        decremented when the vendor accepts.
        """
        actor = ensure_permitted(actor, Action.CREATE_BOOKING)

        ticket = self.ticket_repository.get_by_id(ticket_id)
        if not ticket or ticket.verification_status is not VerificationStatus.APPROVED:
            raise NotFoundError(f"Ticket {ticket_id} not found")

        vendor = self.user_repository.get_by_email(ticket.vendor_email)
        if vendor and vendor.is_fraud:
            raise NotFoundError(f"Ticket {ticket_id} not found")

        ensure_not_departed(
            ticket.departure_date,
            ticket.departure_time,
            self.clock(),
            self.utc_offset_minutes,
        )

        if quantity < 1:
            raise ValidationFailedError("Booking quantity must be at least 1")
        if quantity > ticket.quantity:
            raise InsufficientInventoryError(
                f"Please enter a quantity between 1 and {ticket.quantity}",
                available=ticket.quantity,
            )

        booking = self.booking_repository.create_booking(
            ticket=ticket,
            user_email=actor.email.lower(),
            booking_quantity=quantity,
            total_price=total_price(ticket.price_per_unit, quantity),
        )
        logger.info(
            "Booking requested. booking_id=%s ticket_id=%s user=%s quantity=%s",
            booking.id,
            ticket.id,
            actor.email,
            quantity,
        )
        return booking

    def accept_booking(self, actor: RoleInfo | None, booking_id: str) -> Booking:
        booking = self._get_for_vendor(actor, booking_id)
        BookingStateMachine.validate_transition(booking.status, BookingStatus.ACCEPTED)

        if booking.ticket_id is None:
            raise NotFoundError(f"Ticket for booking {booking_id} no longer exists")

        # Stock is claimed first; a failed status swap below rolls it back
        # with the rest of the unit of work.
        if not self.ticket_repository.decrement_quantity(booking.ticket_id, booking.booking_quantity):
            raise InsufficientInventoryError(
                f"Not enough tickets left to accept booking {booking_id}"
            )

        self._transition(booking, BookingStatus.ACCEPTED)
        logger.info("Booking accepted. booking_id=%s vendor=%s", booking.id, booking.vendor_email)
        return booking

    def reject_booking(self, actor: RoleInfo | None, booking_id: str) -> Booking:
        booking = self._get_for_vendor(actor, booking_id)
        self._transition(booking, BookingStatus.REJECTED)
        logger.info("Booking rejected. booking_id=%s vendor=%s", booking.id, booking.vendor_email)
        return booking

    def pay_booking(
        self,
        actor: RoleInfo | None,
        booking_id: str,
        transaction_id: str,
    ) -> Booking:
        actor = ensure_permitted(actor, Action.PAY_BOOKING)
        booking = self._get(booking_id)
        ensure_owner(actor, booking.user_email, "booking")

        # Retried pay with the same charge id after a lost response.
        if booking.status is BookingStatus.PAID and booking.transaction_id == transaction_id:
            return booking

        BookingStateMachine.validate_transition(booking.status, BookingStatus.PAID)
        ensure_not_departed(
            booking.departure_date,
            booking.departure_time,
            self.clock(),
            self.utc_offset_minutes,
        )

        self._transition(booking, BookingStatus.PAID, transaction_id=transaction_id)
        logger.info(
            "Booking paid. booking_id=%s transaction_id=%s amount=%s",
            booking.id,
            transaction_id,
            booking.total_price,
        )
        return booking

    def list_for_user(self, actor: RoleInfo | None, user_email: str) -> list[Booking]:
        self._ensure_self_or_admin(actor, user_email)
        return self.booking_repository.list_by_user(user_email)

    def list_for_vendor(self, actor: RoleInfo | None, vendor_email: str) -> list[Booking]:
        self._ensure_self_or_admin(actor, vendor_email)
        return self.booking_repository.list_by_vendor(vendor_email)

    def _get(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)

        if not booking:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    def _get_for_vendor(self, actor: RoleInfo | None, booking_id: str) -> Booking:
        actor = ensure_permitted(actor, Action.DECIDE_BOOKING)
        booking = self._get(booking_id)
        ensure_owner(actor, booking.vendor_email, "booking")
        return booking

    def _ensure_self_or_admin(self, actor: RoleInfo | None, email: str) -> None:
        actor = ensure_permitted(actor, Action.BROWSE_TICKETS)
        if actor.role is not Role.ADMIN:
            ensure_owner(actor, email, "booking list")

    def _transition(self, booking: Booking, to_status: BookingStatus, **values) -> None:
        from_status = booking.status
        BookingStateMachine.validate_transition(from_status, to_status)

        if not self.booking_repository.transition_status(booking.id, from_status, to_status, **values):
            self.db.refresh(booking)
            raise InvalidStateTransitionError(
                from_state=booking.status.value,
                to_state=to_status.value,
            )
        self.db.refresh(booking)
