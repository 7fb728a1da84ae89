import logging
from datetime import datetime
from typing import Callable
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from nexticket import config
from nexticket.domain.exceptions import (
    IdempotencyConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    PaymentConfirmationFailedError,
    ValidationFailedError,
)
from nexticket.domain.money import to_major_units
from nexticket.domain.roles import Action, Role, RoleInfo, ensure_owner, ensure_permitted
from nexticket.domain.schedule import ensure_not_departed, utc_now
from nexticket.domain.state_machine import BookingStatus
from nexticket.infrastructure.db.models import Booking, Transaction
from nexticket.infrastructure.payments.razorpay_gateway import RazorpayGateway
from nexticket.infrastructure.repositories.booking_repository import BookingRepository
from nexticket.infrastructure.repositories.transaction_repository import TransactionRepository

logger = logging.getLogger(__name__)


class PaymentService:
    """
    Backend half of checkout: payment intents, charge verification,
    the append-only transaction log and its reconciliation.
    """

    def __init__(
        self,
        db: Session,
        gateway: RazorpayGateway | None = None,
        clock: Callable[[], datetime] = utc_now,
        require_signature: bool = config.REQUIRE_PAYMENT_SIGNATURE,
        utc_offset_minutes: int = config.DEPARTURE_UTC_OFFSET_MINUTES,
    ):
        self.db = db
        self.gateway = gateway
        self.clock = clock
        self.utc_offset_minutes = utc_offset_minutes
        self.require_signature = require_signature
        self.booking_repository = BookingRepository(db)
        self.transaction_repository = TransactionRepository(db)

    def create_intent(
        self,
        actor: RoleInfo | None,
        amount: int,
        booking_id: str | None = None,
    ) -> str:
        actor = ensure_permitted(actor, Action.PAY_BOOKING)
        if amount <= 0:
            raise ValidationFailedError("Amount must be positive")

        receipt = booking_id or str(uuid4())
        if booking_id:
            booking = self._get_booking(booking_id)
            ensure_owner(actor, booking.user_email, "booking")
            if booking.status is not BookingStatus.ACCEPTED:
                raise InvalidStateTransitionError(
                    from_state=booking.status.value,
                    to_state=BookingStatus.PAID.value,
                )
            # Departed bookings never reach the processor.
            ensure_not_departed(
                booking.departure_date,
                booking.departure_time,
                self.clock(),
                self.utc_offset_minutes,
            )
            if booking.total_price != amount:
                raise ValidationFailedError(
                    f"Amount {amount} does not match booking total {booking.total_price}"
                )

        client_secret = self._gateway().create_intent(amount, receipt)
        logger.info(
            "Payment intent created. receipt=%s amount=%s",
            receipt,
            to_major_units(amount),
        )
        return client_secret

    def verify_charge(
        self,
        transaction_id: str,
        order_id: str | None,
        signature: str | None,
    ) -> None:
        """Check the processor's signature before a booking is marked paid."""
        if not signature:
            if self.require_signature:
                raise PaymentConfirmationFailedError("Payment signature is required")
            return
        if not order_id:
            raise PaymentConfirmationFailedError("Order id is required with a signature")
        self._gateway().verify_signature(order_id, transaction_id, signature)

    def record_transaction(
        self,
        actor: RoleInfo | None,
        transaction_id: str,
        booking_id: str,
        amount: int,
        payment_date: datetime | None = None,
        status: str = "completed",
    ) -> tuple[Transaction, bool]:
        """
        Append the transaction for a paid booking, keyed by the processor
        charge id. Replaying the same record returns the stored one.
        Returns ``(record, created)``.
        """
        actor = ensure_permitted(actor, Action.PAY_BOOKING)
        booking = self._get_booking(booking_id)
        ensure_owner(actor, booking.user_email, "booking")
        return self._append(booking, transaction_id, amount, payment_date, status)

    def list_transactions(self, actor: RoleInfo | None, user_email: str) -> list[Transaction]:
        actor = ensure_permitted(actor, Action.BROWSE_TICKETS)
        if actor.role is not Role.ADMIN:
            ensure_owner(actor, user_email, "transaction history")
        return self.transaction_repository.list_by_user(user_email)

    def unrecorded_payments(self, actor: RoleInfo | None) -> list[Booking]:
        ensure_permitted(actor, Action.RECONCILE_PAYMENTS)
        return self.booking_repository.list_paid_without_transaction()

    def reconcile(self, actor: RoleInfo | None, booking_id: str) -> Transaction:
        """Write the missing record of a paid booking from its stored charge id."""
        actor = ensure_permitted(actor, Action.RECONCILE_PAYMENTS)
        booking = self._get_booking(booking_id)
        if booking.status is not BookingStatus.PAID or not booking.transaction_id:
            raise InvalidStateTransitionError(
                from_state=booking.status.value,
                to_state="reconciled",
            )
        record, created = self._append(
            booking,
            booking.transaction_id,
            booking.total_price,
            None,
            "completed",
        )
        if created:
            logger.warning(
                "Reconciled missing transaction. booking_id=%s transaction_id=%s by=%s",
                booking.id,
                booking.transaction_id,
                actor.email,
            )
        return record

    def _append(
        self,
        booking: Booking,
        transaction_id: str,
        amount: int,
        payment_date: datetime | None,
        status: str,
    ) -> tuple[Transaction, bool]:
        existing = self.transaction_repository.get_by_transaction_id(transaction_id)
        if existing:
            if existing.booking_id != booking.id or existing.amount != amount:
                raise IdempotencyConflictError(
                    f"Transaction {transaction_id} already recorded for another payment"
                )
            return existing, False

        if booking.status is not BookingStatus.PAID or booking.transaction_id != transaction_id:
            raise InvalidStateTransitionError(
                from_state=booking.status.value,
                to_state="recorded",
            )
        if amount != booking.total_price:
            raise ValidationFailedError(
                f"Amount {amount} does not match booking total {booking.total_price}"
            )

        # A concurrent writer with the same charge id loses on the unique
        # constraint; the request's unit of work is rolled back by the caller.
        try:
            record = self.transaction_repository.append(
                transaction_id=transaction_id,
                user_email=booking.user_email,
                booking_id=booking.id,
                ticket_title=booking.ticket_title,
                amount=amount,
                payment_date=payment_date or self.clock(),
                status=status,
            )
        except IntegrityError as exc:
            raise IdempotencyConflictError(
                f"Duplicate transaction record detected for {transaction_id}"
            ) from exc

        logger.info(
            "Transaction recorded. transaction_id=%s booking_id=%s",
            transaction_id,
            booking.id,
        )
        return record, True

    def _get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    def _gateway(self) -> RazorpayGateway:
        if self.gateway is None:
            self.gateway = RazorpayGateway.from_env()
        return self.gateway
