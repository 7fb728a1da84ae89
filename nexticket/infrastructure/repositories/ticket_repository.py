# nexticket/infrastructure/repositories/ticket_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import func, select, text, update

from nexticket.infrastructure.db.models import Ticket, User
from nexticket.domain.exceptions import NotFoundError
from nexticket.domain.state_machine import VerificationStatus

# Arbitrary key shared by every advertise toggle.
_ADVERTISING_LOCK_KEY = 6_060_606


def _fraud_vendor_emails():
    return select(User.email).where(User.is_fraud.is_(True))


class TicketRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, ticket_id: str) -> Ticket | None:
        stmt = select(Ticket).where(Ticket.id == ticket_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def lock_ticket(self, ticket_id: str) -> Ticket:
        """
        SELECT ... FOR UPDATE
        Serializes writers of a single ticket row.
        """

        stmt = (
            select(Ticket)
            .where(Ticket.id == ticket_id)
            .with_for_update()
        )

        ticket = self.db.execute(stmt).scalar_one_or_none()

        if not ticket:
            raise NotFoundError(f"Ticket {ticket_id} not found")

        return ticket

    def create_ticket(self, **fields) -> Ticket:
        ticket = Ticket(
            verification_status=VerificationStatus.PENDING,
            is_advertised=False,
            **fields,
        )
        self.db.add(ticket)
        self.db.flush()
        return ticket

    def delete_ticket(self, ticket: Ticket) -> None:
        self.db.delete(ticket)
        self.db.flush()

    # -----------------------------
    # Listings
    # -----------------------------
    def list_public(
        self,
        from_location: str | None = None,
        to_location: str | None = None,
        transport_type: str | None = None,
        sort_by: str | None = None,
        page: int = 1,
        limit: int = 9,
    ) -> tuple[list[Ticket], int]:
        stmt = (
            select(Ticket)
            .where(Ticket.verification_status == VerificationStatus.APPROVED)
            .where(Ticket.vendor_email.not_in(_fraud_vendor_emails()))
        )
        if from_location:
            stmt = stmt.where(func.lower(Ticket.from_location).contains(from_location.lower()))
        if to_location:
            stmt = stmt.where(func.lower(Ticket.to_location).contains(to_location.lower()))
        if transport_type:
            stmt = stmt.where(Ticket.transport_type == transport_type)

        total = self.db.execute(
            select(func.count()).select_from(stmt.subquery())
        ).scalar_one()

        if sort_by == "price-low":
            stmt = stmt.order_by(Ticket.price_per_unit.asc(), Ticket.created_at.desc())
        elif sort_by == "price-high":
            stmt = stmt.order_by(Ticket.price_per_unit.desc(), Ticket.created_at.desc())
        else:
            stmt = stmt.order_by(Ticket.created_at.desc())

        stmt = stmt.offset((page - 1) * limit).limit(limit)
        return list(self.db.execute(stmt).scalars().all()), total

    def list_latest(self, limit: int = 8) -> list[Ticket]:
        stmt = (
            select(Ticket)
            .where(Ticket.verification_status == VerificationStatus.APPROVED)
            .where(Ticket.vendor_email.not_in(_fraud_vendor_emails()))
            .order_by(Ticket.created_at.desc())
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_advertised(self) -> list[Ticket]:
        stmt = (
            select(Ticket)
            .where(Ticket.is_advertised.is_(True))
            .where(Ticket.vendor_email.not_in(_fraud_vendor_emails()))
            .order_by(Ticket.created_at.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_by_vendor(self, vendor_email: str) -> list[Ticket]:
        stmt = (
            select(Ticket)
            .where(func.lower(Ticket.vendor_email) == vendor_email.lower())
            .order_by(Ticket.created_at.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def list_by_status(self, status: VerificationStatus | None = None) -> list[Ticket]:
        stmt = select(Ticket).order_by(Ticket.created_at.desc())
        if status is not None:
            stmt = stmt.where(Ticket.verification_status == status)
        return list(self.db.execute(stmt).scalars().all())

    # -----------------------------
    # Conditional writes
    # -----------------------------
    def set_verification_status(
        self,
        ticket_id: str,
        expected: VerificationStatus,
        new_status: VerificationStatus,
    ) -> bool:
        result = self.db.execute(
            update(Ticket)
            .where(Ticket.id == ticket_id)
            .where(Ticket.verification_status == expected)
            .values(verification_status=new_status)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    def lock_advertising_slots(self) -> None:
        """
        Transaction-scoped advisory lock so two admins cannot both take
        the last slot. Other dialects rely on their own write serialization.
        """
        bind = self.db.get_bind()
        if bind.dialect.name == "postgresql":
            self.db.execute(
                text("SELECT pg_advisory_xact_lock(:key)"),
                {"key": _ADVERTISING_LOCK_KEY},
            )

    def count_advertised(self) -> int:
        stmt = select(func.count()).select_from(Ticket).where(Ticket.is_advertised.is_(True))
        return self.db.execute(stmt).scalar_one()

    def set_advertised(self, ticket_id: str, expected: bool, desired: bool) -> bool:
        result = self.db.execute(
            update(Ticket)
            .where(Ticket.id == ticket_id)
            .where(Ticket.is_advertised.is_(expected))
            .where(Ticket.verification_status == VerificationStatus.APPROVED)
            .values(is_advertised=desired)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    def unadvertise_vendor(self, vendor_email: str) -> int:
        result = self.db.execute(
            update(Ticket)
            .where(func.lower(Ticket.vendor_email) == vendor_email.lower())
            .where(Ticket.is_advertised.is_(True))
            .values(is_advertised=False)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    def decrement_quantity(self, ticket_id: str, amount: int) -> bool:
        """
        UPDATE ... SET quantity = quantity - :amount WHERE quantity >= :amount
        Returns False when stock is short; nothing is written then.
        """
        result = self.db.execute(
            update(Ticket)
            .where(Ticket.id == ticket_id)
            .where(Ticket.quantity >= amount)
            .values(quantity=Ticket.quantity - amount)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1
