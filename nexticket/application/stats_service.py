from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from nexticket.domain.roles import Action, Role, RoleInfo, ensure_owner, ensure_permitted
from nexticket.domain.state_machine import BookingStatus
from nexticket.infrastructure.db.models import Booking, Ticket


@dataclass(frozen=True)
class VendorStats:
    total_revenue: int
    total_tickets_sold: int
    total_tickets_added: int
    pending_bookings: int


class StatsService:

    def __init__(self, db: Session):
        self.db = db

    def vendor_stats(self, actor: RoleInfo | None, vendor_email: str) -> VendorStats:
        actor = ensure_permitted(actor, Action.VIEW_VENDOR_STATS)
        if actor.role is not Role.ADMIN:
            ensure_owner(actor, vendor_email, "revenue overview")

        email = vendor_email.lower()
        revenue, sold = self.db.execute(
            select(
                func.coalesce(func.sum(Booking.total_price), 0),
                func.coalesce(func.sum(Booking.booking_quantity), 0),
            )
            .where(func.lower(Booking.vendor_email) == email)
            .where(Booking.status == BookingStatus.PAID)
        ).one()
        added = self.db.execute(
            select(func.count()).select_from(Ticket).where(func.lower(Ticket.vendor_email) == email)
        ).scalar_one()
        pending = self.db.execute(
            select(func.count())
            .select_from(Booking)
            .where(func.lower(Booking.vendor_email) == email)
            .where(Booking.status == BookingStatus.PENDING)
        ).scalar_one()

        return VendorStats(
            total_revenue=int(revenue),
            total_tickets_sold=int(sold),
            total_tickets_added=added,
            pending_bookings=pending,
        )
