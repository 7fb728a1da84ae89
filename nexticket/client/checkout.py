import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Protocol

from nexticket.api.schemas.schemas import BookingResponse, TransactionResponse
from nexticket import config
from nexticket.client.session import SessionContext
from nexticket.client.workflows import BookingCommands, is_transient
from nexticket.domain.exceptions import (
    BookingExpiredError,
    IntentCreationFailedError,
    InvalidStateTransitionError,
    NetworkError,
    NexTicketError,
    PartialPaymentRecordError,
    PaymentConfirmationFailedError,
    UnappliedChargeError,
)
from nexticket.domain.roles import Action, ensure_owner
from nexticket.domain.schedule import has_departed, utc_now
from nexticket.domain.state_machine import BookingStatus

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"


@dataclass(frozen=True)
class ProcessorConfirmation:
    """Outcome reported by the payment processor's client library."""

    status: str
    charge_id: str | None = None
    signature: str | None = None
    error: str | None = None


class PaymentProcessor(Protocol):
    """
    The processor's confirmation widget. It collects the payment method
    itself; the core only ever sees the outcome.
    """

    def confirm(self, client_secret: str, payment_method: Any) -> ProcessorConfirmation:
        ...


@dataclass(frozen=True)
class PaymentIntent:
    booking: BookingResponse
    client_secret: str


@dataclass(frozen=True)
class PaymentReceipt:
    booking: BookingResponse
    transaction: TransactionResponse


class PaymentConfirmationSequence:
    """
    Two-phase checkout of an accepted booking.

    ``begin`` asks the backend for a payment intent sized to the booking.
    ``confirm`` hands it to the processor and, once the charge succeeded,
    marks the booking paid and appends the transaction record. A failed
    confirmation changes nothing and the same intent can be confirmed
    again.
    """

    def __init__(
        self,
        session: SessionContext,
        processor: PaymentProcessor,
        clock: Callable[[], datetime] = utc_now,
        utc_offset_minutes: int = config.DEPARTURE_UTC_OFFSET_MINUTES,
    ):
        self.session = session
        self.processor = processor
        self.clock = clock
        self.utc_offset_minutes = utc_offset_minutes
        self.bookings = BookingCommands(session)

    def begin(self, booking: BookingResponse) -> PaymentIntent:
        actor = self.session.require(Action.PAY_BOOKING)
        ensure_owner(actor, booking.user_email, "booking")
        if booking.status is not BookingStatus.ACCEPTED:
            raise InvalidStateTransitionError(
                from_state=booking.status.value,
                to_state=BookingStatus.PAID.value,
            )
        if has_departed(booking.departure_date, booking.departure_time, self.clock(), self.utc_offset_minutes):
            raise BookingExpiredError(f"Booking {booking.id} departed; payment is closed")

        try:
            data = self.session.backend.post(
                "/api/create-payment-intent",
                json={"amount": booking.total_price, "bookingId": booking.id},
                user_email=self.session.email,
            )
        except NetworkError as exc:
            raise IntentCreationFailedError(
                f"Could not start payment for booking {booking.id}"
            ) from exc

        return PaymentIntent(booking=booking, client_secret=data["clientSecret"])

    def confirm(self, intent: PaymentIntent, payment_method: Any) -> PaymentReceipt:
        outcome = self._confirm_with_processor(intent, payment_method)

        booking = self._mark_paid(intent, outcome)
        transaction = self._record(booking, outcome.charge_id)
        logger.info(
            "Payment completed. booking_id=%s transaction_id=%s",
            booking.id,
            outcome.charge_id,
        )
        return PaymentReceipt(booking=booking, transaction=transaction)

    def _confirm_with_processor(self, intent: PaymentIntent, payment_method: Any) -> ProcessorConfirmation:
        try:
            outcome = self.processor.confirm(intent.client_secret, payment_method)
        except PaymentConfirmationFailedError:
            raise
        except Exception as exc:
            raise PaymentConfirmationFailedError(f"Payment processor error: {exc}") from exc

        if outcome.status != SUCCEEDED or not outcome.charge_id:
            raise PaymentConfirmationFailedError(
                outcome.error or f"Payment {outcome.status}",
                status=outcome.status,
            )
        return outcome

    def _mark_paid(self, intent: PaymentIntent, outcome: ProcessorConfirmation) -> BookingResponse:
        try:
            return self._pay_with_retry(intent, outcome)
        except NexTicketError as exc:
            logger.error(
                "Charge captured but booking not marked paid. booking_id=%s transaction_id=%s: %s",
                intent.booking.id,
                outcome.charge_id,
                exc,
            )
            raise UnappliedChargeError(intent.booking.id, outcome.charge_id) from exc

    def _pay_with_retry(self, intent: PaymentIntent, outcome: ProcessorConfirmation) -> BookingResponse:
        # pay is idempotent for the same charge id, so a lost response can be
        # repeated once without a double transition.
        try:
            return self._pay(intent, outcome)
        except NetworkError:
            logger.warning("Marking booking %s paid failed, retrying once", intent.booking.id)
            return self._pay(intent, outcome)

    def _pay(self, intent: PaymentIntent, outcome: ProcessorConfirmation) -> BookingResponse:
        return self.bookings.pay(
            intent.booking.id,
            transaction_id=outcome.charge_id,
            order_id=intent.client_secret,
            signature=outcome.signature,
        )

    def _record(self, booking: BookingResponse, transaction_id: str) -> TransactionResponse:
        payload = {
            "transactionId": transaction_id,
            "userEmail": booking.user_email,
            "bookingId": booking.id,
            "ticketTitle": booking.ticket_title,
            "amount": booking.total_price,
            "paymentDate": self.clock().isoformat(),
            "status": "completed",
        }

        last_error: NexTicketError | None = None
        for attempt in (1, 2):
            try:
                data = self.session.backend.post(
                    "/api/transactions",
                    json=payload,
                    user_email=self.session.email,
                )
                return TransactionResponse.model_validate(data)
            except NexTicketError as exc:
                last_error = exc
                logger.warning(
                    "Transaction write failed (attempt %s/2). booking_id=%s transaction_id=%s: %s",
                    attempt,
                    booking.id,
                    transaction_id,
                    exc,
                )
                if not is_transient(exc):
                    break

        logger.error(
            "Booking paid without a transaction record. booking_id=%s transaction_id=%s",
            booking.id,
            transaction_id,
        )
        raise PartialPaymentRecordError(booking.id, transaction_id) from last_error
