import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from nexticket import config
from nexticket.domain.advertising import check_toggle
from nexticket.domain.exceptions import (
    InvalidStateTransitionError,
    NotFoundError,
    TicketLockedError,
    ValidationFailedError,
)
from nexticket.domain.roles import Action, RoleInfo, Role, ensure_owner, ensure_permitted
from nexticket.domain.schedule import has_departed, utc_now
from nexticket.domain.state_machine import (
    TicketVerificationStateMachine,
    VerificationStatus,
)
from nexticket.domain.tickets import TicketDraft
from nexticket.infrastructure.db.models import TRANSPORT_TYPES, Ticket
from nexticket.infrastructure.repositories.booking_repository import BookingRepository
from nexticket.infrastructure.repositories.ticket_repository import TicketRepository
from nexticket.infrastructure.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = {
    "title",
    "from_location",
    "to_location",
    "transport_type",
    "price_per_unit",
    "quantity",
    "perks",
    "image_url",
    "departure_date",
    "departure_time",
}


class TicketService:
    """
    Vendor inventory, admin moderation and the advertisement slots.
    """

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = utc_now,
        utc_offset_minutes: int = config.DEPARTURE_UTC_OFFSET_MINUTES,
    ):
        self.db = db
        self.clock = clock
        self.utc_offset_minutes = utc_offset_minutes
        self.ticket_repository = TicketRepository(db)
        self.booking_repository = BookingRepository(db)
        self.user_repository = UserRepository(db)

    # -----------------------------
    # Vendor inventory
    # -----------------------------
    def create_ticket(self, actor: RoleInfo | None, draft: TicketDraft) -> Ticket:
        actor = ensure_permitted(actor, Action.ADD_TICKET)
        self._validate(
            transport_type=draft.transport_type,
            price_per_unit=draft.price_per_unit,
            quantity=draft.quantity,
        )
        if has_departed(draft.departure_date, draft.departure_time, self.clock(), self.utc_offset_minutes):
            raise ValidationFailedError("Departure must be in the future")

        vendor = self.user_repository.get_by_email(actor.email)
        ticket = self.ticket_repository.create_ticket(
            title=draft.title,
            from_location=draft.from_location,
            to_location=draft.to_location,
            transport_type=draft.transport_type,
            price_per_unit=draft.price_per_unit,
            quantity=draft.quantity,
            perks=_unique(draft.perks),
            image_url=draft.image_url,
            vendor_name=vendor.display_name if vendor else None,
            vendor_email=actor.email.lower(),
            departure_date=draft.departure_date,
            departure_time=draft.departure_time,
        )
        logger.info("Ticket submitted for review. ticket_id=%s vendor=%s", ticket.id, actor.email)
        return ticket

    def update_ticket(self, actor: RoleInfo | None, ticket_id: str, changes: dict) -> Ticket:
        actor = ensure_permitted(actor, Action.EDIT_TICKET)
        ticket = self._get_owned(actor, ticket_id)

        unknown = set(changes) - _EDITABLE_FIELDS
        if unknown:
            raise ValidationFailedError(f"Fields not editable: {', '.join(sorted(unknown))}")
        self._validate(
            transport_type=changes.get("transport_type", ticket.transport_type),
            price_per_unit=changes.get("price_per_unit", ticket.price_per_unit),
            quantity=changes.get("quantity", ticket.quantity),
        )

        for field, value in changes.items():
            if field == "perks":
                value = _unique(value)
            setattr(ticket, field, value)
        self.db.flush()
        return ticket

    def delete_ticket(self, actor: RoleInfo | None, ticket_id: str) -> None:
        actor = ensure_permitted(actor, Action.DELETE_TICKET)
        ticket = self._get_owned(actor, ticket_id)

        if self.booking_repository.has_unresolved_for_ticket(ticket.id):
            raise TicketLockedError(
                "Ticket has pending or accepted bookings and cannot be deleted"
            )
        self.ticket_repository.delete_ticket(ticket)
        logger.info("Ticket deleted. ticket_id=%s vendor=%s", ticket_id, actor.email)

    def vendor_tickets(self, actor: RoleInfo | None, vendor_email: str) -> list[Ticket]:
        actor = ensure_permitted(actor, Action.BROWSE_TICKETS)
        if actor.role is not Role.ADMIN:
            ensure_owner(actor, vendor_email, "ticket list")
        return self.ticket_repository.list_by_vendor(vendor_email)

    # -----------------------------
    # Admin moderation
    # -----------------------------
    def verify_ticket(
        self,
        actor: RoleInfo | None,
        ticket_id: str,
        decision: VerificationStatus,
    ) -> Ticket:
        ensure_permitted(actor, Action.VERIFY_TICKET)
        ticket = self._get(ticket_id)

        current = ticket.verification_status
        TicketVerificationStateMachine.validate_transition(current, decision)

        if not self.ticket_repository.set_verification_status(ticket.id, current, decision):
            self.db.refresh(ticket)
            raise InvalidStateTransitionError(
                from_state=ticket.verification_status.value,
                to_state=decision.value,
            )
        self.db.refresh(ticket)
        logger.info("Ticket %s. ticket_id=%s admin=%s", decision.value, ticket.id, actor.email)
        return ticket

    def toggle_advertise(
        self,
        actor: RoleInfo | None,
        ticket_id: str,
        desired: bool,
    ) -> tuple[Ticket, int]:
        """
        Flip one ticket's advertised flag. Returns the ticket and the
        advertised count after the change.
        """
        ensure_permitted(actor, Action.ADVERTISE_TICKET)
        self.ticket_repository.lock_advertising_slots()
        ticket = self.ticket_repository.lock_ticket(ticket_id)
        count = self.ticket_repository.count_advertised()

        changed = check_toggle(
            verification_status=ticket.verification_status,
            currently_advertised=ticket.is_advertised,
            desired=desired,
            advertised_count=count,
        )
        if not changed:
            return ticket, count

        if not self.ticket_repository.set_advertised(ticket.id, ticket.is_advertised, desired):
            self.db.refresh(ticket)
            raise InvalidStateTransitionError(
                from_state="advertised" if ticket.is_advertised else "unadvertised",
                to_state="advertised" if desired else "unadvertised",
            )
        self.db.refresh(ticket)
        count = count + 1 if desired else count - 1
        logger.info(
            "Ticket %s. ticket_id=%s slots_used=%s",
            "advertised" if desired else "unadvertised",
            ticket.id,
            count,
        )
        return ticket, count

    def pending_tickets(self, actor: RoleInfo | None) -> list[Ticket]:
        ensure_permitted(actor, Action.VERIFY_TICKET)
        return self.ticket_repository.list_by_status(VerificationStatus.PENDING)

    def all_tickets(self, actor: RoleInfo | None) -> list[Ticket]:
        ensure_permitted(actor, Action.VERIFY_TICKET)
        return self.ticket_repository.list_by_status(None)

    # -----------------------------
    # Public browsing
    # -----------------------------
    def browse(
        self,
        from_location: str | None = None,
        to_location: str | None = None,
        transport_type: str | None = None,
        sort_by: str | None = None,
        page: int = 1,
        limit: int = 9,
    ) -> tuple[list[Ticket], int]:
        if sort_by not in (None, "", "price-low", "price-high"):
            raise ValidationFailedError(f"Unknown sort order: {sort_by}")
        return self.ticket_repository.list_public(
            from_location=from_location,
            to_location=to_location,
            transport_type=transport_type,
            sort_by=sort_by,
            page=page,
            limit=limit,
        )

    def latest(self, limit: int = 8) -> list[Ticket]:
        return self.ticket_repository.list_latest(limit)

    def advertised(self) -> list[Ticket]:
        return self.ticket_repository.list_advertised()

    def get_ticket(self, actor: RoleInfo | None, ticket_id: str) -> Ticket:
        """
        Approved tickets are public; anything else is visible only to
        its vendor and to admins.
        """
        ticket = self._get(ticket_id)
        if ticket.verification_status is VerificationStatus.APPROVED:
            return ticket
        if actor is not None and (
            actor.role is Role.ADMIN or actor.email.lower() == ticket.vendor_email.lower()
        ):
            return ticket
        raise NotFoundError(f"Ticket {ticket_id} not found")

    def _get(self, ticket_id: str) -> Ticket:
        ticket = self.ticket_repository.get_by_id(ticket_id)
        if not ticket:
            raise NotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    def _get_owned(self, actor: RoleInfo, ticket_id: str) -> Ticket:
        ticket = self._get(ticket_id)
        ensure_owner(actor, ticket.vendor_email, "ticket")
        if ticket.verification_status is VerificationStatus.REJECTED:
            raise TicketLockedError("Rejected tickets cannot be changed")
        return ticket

    @staticmethod
    def _validate(transport_type: str, price_per_unit: int, quantity: int) -> None:
        if transport_type not in TRANSPORT_TYPES:
            raise ValidationFailedError(f"Unknown transport type: {transport_type}")
        if price_per_unit <= 0:
            raise ValidationFailedError("Price per unit must be positive")
        if quantity < 0:
            raise ValidationFailedError("Quantity cannot be negative")


def _unique(perks) -> list[str]:
    seen: list[str] = []
    for perk in perks or ():
        if perk not in seen:
            seen.append(perk)
    return seen
