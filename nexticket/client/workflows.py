import logging
from urllib.parse import quote

from nexticket.api.schemas.schemas import (
    AdvertiseResponse,
    BookingResponse,
    PaginationResponse,
    TicketResponse,
    VendorStatsResponse,
)
from nexticket.client.session import SessionContext
from nexticket.domain.advertising import check_toggle
from nexticket.domain.exceptions import (
    NetworkError,
    NexTicketError,
    VerificationFailedError,
)
from nexticket.domain.roles import Action
from nexticket.domain.state_machine import VerificationStatus
from nexticket.domain.tickets import TicketDraft

logger = logging.getLogger(__name__)


def _tickets(data) -> list[TicketResponse]:
    return [TicketResponse.model_validate(item) for item in data]


def _bookings(data) -> list[BookingResponse]:
    return [BookingResponse.model_validate(item) for item in data]


def is_transient(exc: NexTicketError) -> bool:
    return isinstance(exc, NetworkError) or type(exc) is NexTicketError or exc.http_status >= 500


class _Commands:
    """
    Base for role-gated commands. The local role check runs before the
    request; the backend repeats it authoritatively.
    """

    def __init__(self, session: SessionContext):
        self.session = session
        self.backend = session.backend


class TicketCommands(_Commands):

    def browse(
        self,
        from_location: str | None = None,
        to_location: str | None = None,
        transport_type: str | None = None,
        sort_by: str | None = None,
        page: int = 1,
        limit: int = 9,
    ) -> tuple[list[TicketResponse], PaginationResponse]:
        params = {
            "fromLocation": from_location,
            "toLocation": to_location,
            "transportType": transport_type,
            "sortBy": sort_by,
            "page": page,
            "limit": limit,
        }
        envelope = self.backend.get_envelope(
            "/api/tickets",
            params={key: value for key, value in params.items() if value is not None},
        )
        return _tickets(envelope["data"]), PaginationResponse.model_validate(envelope["pagination"])

    def latest(self) -> list[TicketResponse]:
        return _tickets(self.backend.get("/api/tickets/latest"))

    def advertised(self) -> list[TicketResponse]:
        return _tickets(self.backend.get("/api/tickets/advertised"))

    def get(self, ticket_id: str) -> TicketResponse:
        data = self.backend.get(f"/api/tickets/{ticket_id}", user_email=self.session.email)
        return TicketResponse.model_validate(data)

    def mine(self) -> list[TicketResponse]:
        self.session.require(Action.ADD_TICKET)
        data = self.backend.get(
            f"/api/tickets/vendor/{quote(self.session.email)}",
            user_email=self.session.email,
        )
        return _tickets(data)

    def create(self, draft: TicketDraft) -> TicketResponse:
        self.session.require(Action.ADD_TICKET)
        data = self.backend.post("/api/tickets", json=draft.to_payload(), user_email=self.session.email)
        return TicketResponse.model_validate(data)

    def update(self, ticket_id: str, changes: dict) -> TicketResponse:
        """``changes`` uses the wire (camelCase) field names."""
        self.session.require(Action.EDIT_TICKET)
        data = self.backend.patch(
            f"/api/tickets/{ticket_id}",
            json=changes,
            user_email=self.session.email,
        )
        return TicketResponse.model_validate(data)

    def delete(self, ticket_id: str) -> str:
        self.session.require(Action.DELETE_TICKET)
        self.backend.delete(f"/api/tickets/{ticket_id}", user_email=self.session.email)
        return ticket_id

    def vendor_stats(self, vendor_email: str | None = None) -> VendorStatsResponse:
        self.session.require(Action.VIEW_VENDOR_STATS)
        email = vendor_email or self.session.email
        data = self.backend.get(f"/api/stats/vendor/{quote(email)}", user_email=self.session.email)
        return VendorStatsResponse.model_validate(data)


class ModerationCommands(_Commands):
    """Admin ticket verification and advertisement curation."""

    def pending(self) -> list[TicketResponse]:
        self.session.require(Action.VERIFY_TICKET)
        return _tickets(self.backend.get("/api/tickets/pending", user_email=self.session.email))

    def all_tickets(self) -> list[TicketResponse]:
        self.session.require(Action.VERIFY_TICKET)
        return _tickets(self.backend.get("/api/tickets/all-admin", user_email=self.session.email))

    def verify(self, ticket_id: str, decision: VerificationStatus) -> TicketResponse:
        self.session.require(Action.VERIFY_TICKET)
        try:
            data = self.backend.patch(
                f"/api/tickets/{ticket_id}/verify",
                json={"verificationStatus": VerificationStatus(decision).value},
                user_email=self.session.email,
            )
        except NexTicketError as exc:
            if not is_transient(exc):
                raise
            raise VerificationFailedError(
                f"Could not {decision.value} ticket {ticket_id}: {exc.message}",
                ticket_id=ticket_id,
            ) from exc
        return TicketResponse.model_validate(data)

    def toggle_advertise(
        self,
        ticket: TicketResponse,
        desired: bool,
        advertised_count: int,
    ) -> AdvertiseResponse:
        """
        Precheck against the slot count the caller last saw, then ask the
        backend, which re-checks under its own lock.
        """
        self.session.require(Action.ADVERTISE_TICKET)
        changed = check_toggle(
            verification_status=ticket.verification_status,
            currently_advertised=ticket.is_advertised,
            desired=desired,
            advertised_count=advertised_count,
        )
        if not changed:
            logger.debug("Advertise toggle is a no-op. ticket_id=%s", ticket.id)

        data = self.backend.patch(
            f"/api/tickets/{ticket.id}/advertise",
            json={"isAdvertised": desired},
            user_email=self.session.email,
        )
        return AdvertiseResponse.model_validate(data)


class BookingCommands(_Commands):

    def create(self, ticket_id: str, quantity: int) -> BookingResponse:
        self.session.require(Action.CREATE_BOOKING)
        data = self.backend.post(
            "/api/bookings",
            json={"ticketId": ticket_id, "bookingQuantity": quantity},
            user_email=self.session.email,
        )
        return BookingResponse.model_validate(data)

    def mine(self) -> list[BookingResponse]:
        self.session.require(Action.CREATE_BOOKING)
        data = self.backend.get(
            f"/api/bookings/user/{quote(self.session.email)}",
            user_email=self.session.email,
        )
        return _bookings(data)

    def requests(self) -> list[BookingResponse]:
        """Bookings placed on the signed-in vendor's tickets."""
        self.session.require(Action.DECIDE_BOOKING)
        data = self.backend.get(
            f"/api/bookings/vendor/{quote(self.session.email)}",
            user_email=self.session.email,
        )
        return _bookings(data)

    def accept(self, booking_id: str) -> BookingResponse:
        return self._decide(booking_id, "accept")

    def reject(self, booking_id: str) -> BookingResponse:
        return self._decide(booking_id, "reject")

    def pay(
        self,
        booking_id: str,
        transaction_id: str,
        order_id: str | None = None,
        signature: str | None = None,
    ) -> BookingResponse:
        self.session.require(Action.PAY_BOOKING)
        data = self.backend.patch(
            f"/api/bookings/{booking_id}/pay",
            json={
                "transactionId": transaction_id,
                "orderId": order_id,
                "signature": signature,
            },
            user_email=self.session.email,
        )
        return BookingResponse.model_validate(data)

    def _decide(self, booking_id: str, decision: str) -> BookingResponse:
        self.session.require(Action.DECIDE_BOOKING)
        data = self.backend.patch(
            f"/api/bookings/{booking_id}/{decision}",
            user_email=self.session.email,
        )
        return BookingResponse.model_validate(data)
