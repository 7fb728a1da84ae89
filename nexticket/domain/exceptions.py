

class NexTicketError(Exception):
    """
    Base exception for all domain-level errors
    inside the NexTicket booking core.

    ``code`` is the stable kind name carried over the wire so the client
    can rebuild the same exception type from an error envelope.
    """

    code = "NexTicketError"
    http_status = 400

    def __init__(self, message: str = "", **details):
        self.details = details
        super().__init__(message or self.code)

    @property
    def message(self) -> str:
        return str(self)

    @classmethod
    def from_payload(cls, message: str, details: dict | None = None) -> "NexTicketError":
        return cls(message, **(details or {}))


class AuthRequiredError(NexTicketError):
    """Raised when a gated action is attempted without an identity."""

    code = "AuthRequired"
    http_status = 401


class RoleMismatchError(NexTicketError):
    """Raised when the caller's role (or ownership) does not allow the action."""

    code = "RoleMismatch"
    http_status = 403


class VendorSuspendedError(RoleMismatchError):
    """Raised when a fraud-flagged vendor attempts a vendor action."""

    code = "VendorSuspended"


class RoleLookupFailedError(NexTicketError):
    code = "RoleLookupFailed"
    http_status = 502


class NotFoundError(NexTicketError):
    """Raised when a ticket, booking or user does not exist."""

    code = "NotFound"
    http_status = 404


class InvalidStateTransitionError(NexTicketError):
    """
    Raised when an illegal state transition is attempted.
    """

    code = "InvalidStateTransition"
    http_status = 409

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message, from_state=from_state, to_state=to_state)

    @classmethod
    def from_payload(cls, message: str, details: dict | None = None) -> "InvalidStateTransitionError":
        details = details or {}
        return cls(
            from_state=details.get("from_state", "?"),
            to_state=details.get("to_state", "?"),
        )


class VerificationFailedError(NexTicketError):
    """Raised when a ticket verification call could not be completed."""

    code = "VerificationFailed"
    http_status = 502


class TicketLockedError(NexTicketError):
    """Raised when a vendor edits or deletes a frozen ticket."""

    code = "TicketLocked"
    http_status = 409


class SlotLimitExceededError(NexTicketError):
    """Raised when every advertisement slot is already taken."""

    code = "SlotLimitExceeded"
    http_status = 409


class InsufficientInventoryError(NexTicketError):
    """Raised when the ticket has fewer units left than requested."""

    code = "InsufficientInventory"
    http_status = 409


class BookingExpiredError(NexTicketError):
    """Raised when the ticket has already departed."""

    code = "BookingExpired"
    http_status = 410


class IdempotencyConflictError(NexTicketError):
    """Raised when an idempotent request conflicts with previous data."""

    code = "IdempotencyConflict"
    http_status = 409


class ValidationFailedError(NexTicketError):
    code = "ValidationFailed"
    http_status = 422


class IntentCreationFailedError(NexTicketError):
    code = "IntentCreationFailed"
    http_status = 502


class PaymentConfirmationFailedError(NexTicketError):
    """Raised when the processor did not report a succeeded payment."""

    code = "PaymentConfirmationFailed"
    http_status = 402


class PartialPaymentRecordError(NexTicketError):
    """
    Raised when a booking was marked paid but its transaction record
    could not be written. The booking stays paid; the record must be
    reconciled from the charge id stored on the booking.
    """

    code = "PartialPaymentRecord"
    http_status = 500

    def __init__(self, booking_id: str, transaction_id: str):
        self.booking_id = booking_id
        self.transaction_id = transaction_id
        super().__init__(
            f"Booking {booking_id} is paid but transaction "
            f"{transaction_id} was not recorded",
            booking_id=booking_id,
            transaction_id=transaction_id,
        )

    @classmethod
    def from_payload(cls, message: str, details: dict | None = None) -> "PartialPaymentRecordError":
        details = details or {}
        return cls(details.get("booking_id", "?"), details.get("transaction_id", "?"))


class UnappliedChargeError(NexTicketError):
    """
    Raised when the processor captured a charge but the booking could not
    be marked paid. The charge id is the only link to the money and must
    be kept for a refund or a manual fix.
    """

    code = "UnappliedCharge"
    http_status = 500

    def __init__(self, booking_id: str, transaction_id: str):
        self.booking_id = booking_id
        self.transaction_id = transaction_id
        super().__init__(
            f"Charge {transaction_id} was captured but booking "
            f"{booking_id} was not marked paid",
            booking_id=booking_id,
            transaction_id=transaction_id,
        )

    @classmethod
    def from_payload(cls, message: str, details: dict | None = None) -> "UnappliedChargeError":
        details = details or {}
        return cls(details.get("booking_id", "?"), details.get("transaction_id", "?"))


class NetworkError(NexTicketError):
    """Raised when the backend cannot be reached."""

    code = "NetworkError"
    http_status = 503


_ERRORS_BY_CODE: dict[str, type[NexTicketError]] = {}


def _register(cls: type[NexTicketError]) -> None:
    _ERRORS_BY_CODE[cls.code] = cls
    for sub in cls.__subclasses__():
        _register(sub)


_register(NexTicketError)


def error_from_payload(
    code: str | None,
    message: str,
    details: dict | None = None,
) -> NexTicketError:
    """Rebuild a typed error from the ``error`` field of a response envelope."""
    cls = _ERRORS_BY_CODE.get(code or "", NexTicketError)
    return cls.from_payload(message, details)
