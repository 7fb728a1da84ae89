# nexticket/infrastructure/repositories/booking_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import func, select, update

from nexticket.infrastructure.db.models import Booking, Ticket, Transaction
from nexticket.domain.state_machine import BookingStatus


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        booking_id: str,
    ) -> Booking | None:

        stmt = select(Booking).where(Booking.id == booking_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def create_booking(
        self,
        ticket: Ticket,
        user_email: str,
        booking_quantity: int,
        total_price: int,
    ) -> Booking:

        booking = Booking(
            ticket_id=ticket.id,
            ticket_title=ticket.title,
            user_email=user_email,
            vendor_email=ticket.vendor_email,
            booking_quantity=booking_quantity,
            total_price=total_price,
            from_location=ticket.from_location,
            to_location=ticket.to_location,
            departure_date=ticket.departure_date,
            departure_time=ticket.departure_time,
            status=BookingStatus.PENDING,
        )

        self.db.add(booking)
        self.db.flush()
        return booking

    def list_by_user(self, user_email: str) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(func.lower(Booking.user_email) == user_email.lower())
            .order_by(Booking.created_at.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_by_vendor(self, vendor_email: str) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(func.lower(Booking.vendor_email) == vendor_email.lower())
            .order_by(Booking.created_at.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def has_unresolved_for_ticket(self, ticket_id: str) -> bool:
        stmt = (
            select(func.count())
            .select_from(Booking)
            .where(Booking.ticket_id == ticket_id)
            .where(Booking.status.in_([BookingStatus.PENDING, BookingStatus.ACCEPTED]))
        )
        return self.db.execute(stmt).scalar_one() > 0

    def list_paid_without_transaction(self) -> list[Booking]:
        recorded = select(Transaction.booking_id)
        stmt = (
            select(Booking)
            .where(Booking.status == BookingStatus.PAID)
            .where(Booking.id.not_in(recorded))
            .order_by(Booking.updated_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def transition_status(
        self,
        booking_id: str,
        expected: BookingStatus,
        new_status: BookingStatus,
        **values,
    ) -> bool:
        """
        Compare-and-swap on status. A concurrent writer that got there
        first makes this return False instead of overwriting.
        """
        result = self.db.execute(
            update(Booking)
            .where(Booking.id == booking_id)
            .where(Booking.status == expected)
            .values(status=new_status, **values)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1
