import logging
import math

from fastapi import APIRouter, Depends, Header, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from nexticket.infrastructure.db.session import SessionLocal
from nexticket.application.booking_service import BookingService
from nexticket.application.payment_service import PaymentService
from nexticket.application.stats_service import StatsService
from nexticket.application.ticket_service import TicketService
from nexticket.application.user_service import UserService
from nexticket.api.schemas.schemas import (
    AdvertiseRequest,
    AdvertiseResponse,
    BookingCreateRequest,
    BookingResponse,
    FraudRequest,
    PaginationResponse,
    PayRequest,
    PaymentIntentRequest,
    PaymentIntentResponse,
    RoleUpdateRequest,
    TicketCreateRequest,
    TicketResponse,
    TicketUpdateRequest,
    TransactionCreateRequest,
    TransactionResponse,
    UserResponse,
    UserUpsertRequest,
    VendorStatsResponse,
    VerifyRequest,
)
from nexticket.domain.advertising import slots_available
from nexticket.domain.exceptions import RoleMismatchError
from nexticket.domain.roles import RoleInfo
from nexticket.domain.schedule import utc_now
from nexticket.domain.state_machine import VerificationStatus
from nexticket.domain.tickets import TicketDraft
from nexticket.infrastructure.payments.razorpay_gateway import RazorpayGateway


router = APIRouter(prefix="/api")
logger = logging.getLogger(__name__)


# -----------------------------
# Dependencies
# -----------------------------
def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_clock():
    return utc_now


def get_payment_gateway() -> RazorpayGateway | None:
    # Built lazily by PaymentService so browsing works without keys.
    return None


def get_actor(
    x_user_email: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> RoleInfo | None:
    """
    Identity is asserted by the upstream identity provider in the
    ``X-User-Email`` header; the role always comes from our own records.
    """
    actor = UserService(db).resolve(x_user_email)
    if x_user_email and actor is None:
        logger.debug("Unknown identity in request header. email=%s", x_user_email)
    return actor


def _ok(data, **extra):
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json", by_alias=True)
    elif isinstance(data, list):
        data = [
            item.model_dump(mode="json", by_alias=True) if isinstance(item, BaseModel) else item
            for item in data
        ]
    return {"success": True, "data": data, **extra}


def _tickets(items) -> list[TicketResponse]:
    return [TicketResponse.model_validate(item) for item in items]


def _bookings(items) -> list[BookingResponse]:
    return [BookingResponse.model_validate(item) for item in items]


# -----------------------------
# Users
# -----------------------------
@router.post("/users")
def upsert_user(request: UserUpsertRequest, db: Session = Depends(get_db)):
    user = UserService(db).sign_in(request.email, request.name, request.photo_url)
    return _ok(UserResponse.model_validate(user))


@router.get("/users")
def list_users(
    db: Session = Depends(get_db),
    actor: RoleInfo | None = Depends(get_actor),
):
    users = UserService(db).list_users(actor)
    return _ok([UserResponse.model_validate(user) for user in users])


@router.get("/users/{email}")
def get_user(
    email: str,
    x_user_email: str | None = Header(default=None),
    db: Session = Depends(get_db),
    actor: RoleInfo | None = Depends(get_actor),
):
    user = UserService(db).get_user(actor, email, caller_email=x_user_email)
    return _ok(UserResponse.model_validate(user))


@router.patch("/users/{email}/role")
def update_user_role(
    email: str,
    request: RoleUpdateRequest,
    db: Session = Depends(get_db),
    actor: RoleInfo | None = Depends(get_actor),
):
    user = UserService(db).change_role(actor, email, request.role)
    return _ok(UserResponse.model_validate(user))


@router.patch("/users/{email}/fraud")
def mark_vendor_fraud(
    email: str,
    request: FraudRequest,
    db: Session = Depends(get_db),
    actor: RoleInfo | None = Depends(get_actor),
):
    user = UserService(db).mark_fraud(actor, email)
    return _ok(UserResponse.model_validate(user))


# -----------------------------
# Tickets
# -----------------------------
@router.get("/tickets")
def browse_tickets(
    from_location: str | None = Query(default=None, alias="fromLocation"),
    to_location: str | None = Query(default=None, alias="toLocation"),
    transport_type: str | None = Query(default=None, alias="transportType"),
    sort_by: str | None = Query(default=None, alias="sortBy"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=9, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    items, total = TicketService(db).browse(
        from_location=from_location,
        to_location=to_location,
        transport_type=transport_type,
        sort_by=sort_by,
        page=page,
        limit=limit,
    )
    pagination = PaginationResponse(
        current_page=page,
        total_pages=max(1, math.ceil(total / limit)),
        total_tickets=total,
    )
    return _ok(_tickets(items), pagination=pagination.model_dump(by_alias=True))


@router.get("/tickets/latest")
def latest_tickets(db: Session = Depends(get_db)):
    return _ok(_tickets(TicketService(db).latest()))


@router.get("/tickets/advertised")
def advertised_tickets(db: Session = Depends(get_db)):
    return _ok(_tickets(TicketService(db).advertised()))


@router.get("/tickets/pending")
def pending_tickets(
    db: Session = Depends(get_db),
    actor: RoleInfo | None = Depends(get_actor),
):
    return _ok(_tickets(TicketService(db).pending_tickets(actor)))


@router.get("/tickets/all-admin")
def all_tickets_admin(
    db: Session = Depends(get_db),
    actor: RoleInfo | None = Depends(get_actor),
):
    return _ok(_tickets(TicketService(db).all_tickets(actor)))


@router.get("/tickets/vendor/{email}")
def vendor_tickets(
    email: str,
    db: Session = Depends(get_db),
    actor: RoleInfo | None = Depends(get_actor),
):
    return _ok(_tickets(TicketService(db).vendor_tickets(actor, email)))


@router.get("/tickets/{ticket_id}")
def get_ticket(
    ticket_id: str,
    db: Session = Depends(get_db),
    actor: RoleInfo | None = Depends(get_actor),
):
    return _ok(TicketResponse.model_validate(TicketService(db).get_ticket(actor, ticket_id)))


@router.post("/tickets", status_code=status.HTTP_201_CREATED)
def create_ticket(
    request: TicketCreateRequest,
    db: Session = Depends(get_db),
    actor: RoleInfo | None = Depends(get_actor),
    clock=Depends(get_clock),
):
    draft = TicketDraft(
        title=request.title,
        from_location=request.from_location,
        to_location=request.to_location,
        transport_type=request.transport_type,
        price_per_unit=request.price_per_unit,
        quantity=request.quantity,
        departure_date=request.departure_date,
        departure_time=request.departure_time,
        perks=tuple(request.perks),
        image_url=request.image_url,
    )
    ticket = TicketService(db, clock=clock).create_ticket(actor, draft)
    return _ok(TicketResponse.model_validate(ticket))


@router.patch("/tickets/{ticket_id}")
def update_ticket(
    ticket_id: str,
    request: TicketUpdateRequest,
    db: Session = Depends(get_db),
    actor: RoleInfo | None = Depends(get_actor),
):
    changes = request.model_dump(exclude_unset=True)
    ticket = TicketService(db).update_ticket(actor, ticket_id, changes)
    return _ok(TicketResponse.model_validate(ticket))


@router.delete("/tickets/{ticket_id}")
def delete_ticket(
    ticket_id: str,
    db: Session = Depends(get_db),
    actor: RoleInfo | None = Depends(get_actor),
):
    TicketService(db).delete_ticket(actor, ticket_id)
    return _ok({"id": ticket_id})


@router.patch("/tickets/{ticket_id}/verify")
def verify_ticket(
    ticket_id: str,
    request: VerifyRequest,
    db: Session = Depends(get_db),
    actor: RoleInfo | None = Depends(get_actor),
):
    ticket = TicketService(db).verify_ticket(
        actor,
        ticket_id,
        VerificationStatus(request.verification_status),
    )
    return _ok(TicketResponse.model_validate(ticket))


@router.patch("/tickets/{ticket_id}/advertise")
def advertise_ticket(
    ticket_id: str,
    request: AdvertiseRequest,
    db: Session = Depends(get_db),
    actor: RoleInfo | None = Depends(get_actor),
):
    ticket, count = TicketService(db).toggle_advertise(actor, ticket_id, request.is_advertised)
    return _ok(
        AdvertiseResponse(
            ticket=TicketResponse.model_validate(ticket),
            advertised_count=count,
            slots_available=slots_available(count),
        )
    )


# -----------------------------
# Bookings
# -----------------------------
@router.post("/bookings", status_code=status.HTTP_201_CREATED)
def create_booking(
    request: BookingCreateRequest,
    db: Session = Depends(get_db),
    actor: RoleInfo | None = Depends(get_actor),
    clock=Depends(get_clock),
):
    booking = BookingService(db, clock=clock).create_booking(
        actor,
        ticket_id=request.ticket_id,
        quantity=request.booking_quantity,
    )
    return _ok(BookingResponse.model_validate(booking))


@router.get("/bookings/user/{email}")
def user_bookings(
    email: str,
    db: Session = Depends(get_db),
    actor: RoleInfo | None = Depends(get_actor),
):
    return _ok(_bookings(BookingService(db).list_for_user(actor, email)))


@router.get("/bookings/vendor/{email}")
def vendor_bookings(
    email: str,
    db: Session = Depends(get_db),
    actor: RoleInfo | None = Depends(get_actor),
):
    return _ok(_bookings(BookingService(db).list_for_vendor(actor, email)))


@router.patch("/bookings/{booking_id}/accept")
def accept_booking(
    booking_id: str,
    db: Session = Depends(get_db),
    actor: RoleInfo | None = Depends(get_actor),
):
    booking = BookingService(db).accept_booking(actor, booking_id)
    return _ok(BookingResponse.model_validate(booking))


@router.patch("/bookings/{booking_id}/reject")
def reject_booking(
    booking_id: str,
    db: Session = Depends(get_db),
    actor: RoleInfo | None = Depends(get_actor),
):
    booking = BookingService(db).reject_booking(actor, booking_id)
    return _ok(BookingResponse.model_validate(booking))


@router.patch("/bookings/{booking_id}/pay")
def pay_booking(
    booking_id: str,
    request: PayRequest,
    db: Session = Depends(get_db),
    actor: RoleInfo | None = Depends(get_actor),
    clock=Depends(get_clock),
    gateway: RazorpayGateway | None = Depends(get_payment_gateway),
):
    PaymentService(db, gateway=gateway, clock=clock).verify_charge(
        transaction_id=request.transaction_id,
        order_id=request.order_id,
        signature=request.signature,
    )
    booking = BookingService(db, clock=clock).pay_booking(
        actor,
        booking_id,
        transaction_id=request.transaction_id,
    )
    return _ok(BookingResponse.model_validate(booking))


# -----------------------------
# Payments
# -----------------------------
@router.post("/create-payment-intent")
def create_payment_intent(
    request: PaymentIntentRequest,
    db: Session = Depends(get_db),
    actor: RoleInfo | None = Depends(get_actor),
    gateway: RazorpayGateway | None = Depends(get_payment_gateway),
    clock=Depends(get_clock),
):
    client_secret = PaymentService(db, gateway=gateway, clock=clock).create_intent(
        actor,
        amount=request.amount,
        booking_id=request.booking_id,
    )
    return _ok(PaymentIntentResponse(client_secret=client_secret))


@router.post("/transactions")
def record_transaction(
    request: TransactionCreateRequest,
    db: Session = Depends(get_db),
    actor: RoleInfo | None = Depends(get_actor),
    clock=Depends(get_clock),
):
    if actor is not None and actor.email.lower() != request.user_email.lower():
        raise RoleMismatchError("Transactions can only be recorded for yourself")

    record, created = PaymentService(db, clock=clock).record_transaction(
        actor,
        transaction_id=request.transaction_id,
        booking_id=request.booking_id,
        amount=request.amount,
        payment_date=request.payment_date,
        status=request.status,
    )
    return _ok(TransactionResponse.model_validate(record), created=created)


@router.get("/transactions/{email}")
def user_transactions(
    email: str,
    db: Session = Depends(get_db),
    actor: RoleInfo | None = Depends(get_actor),
):
    records = PaymentService(db).list_transactions(actor, email)
    return _ok([TransactionResponse.model_validate(record) for record in records])


@router.get("/reconciliation/unrecorded-payments")
def unrecorded_payments(
    db: Session = Depends(get_db),
    actor: RoleInfo | None = Depends(get_actor),
):
    return _ok(_bookings(PaymentService(db).unrecorded_payments(actor)))


@router.post("/reconciliation/{booking_id}")
def reconcile_payment(
    booking_id: str,
    db: Session = Depends(get_db),
    actor: RoleInfo | None = Depends(get_actor),
    clock=Depends(get_clock),
):
    record = PaymentService(db, clock=clock).reconcile(actor, booking_id)
    return _ok(TransactionResponse.model_validate(record))


# -----------------------------
# Stats
# -----------------------------
@router.get("/stats/vendor/{email}")
def vendor_stats(
    email: str,
    db: Session = Depends(get_db),
    actor: RoleInfo | None = Depends(get_actor),
):
    stats = StatsService(db).vendor_stats(actor, email)
    return _ok(
        VendorStatsResponse(
            total_revenue=stats.total_revenue,
            total_tickets_sold=stats.total_tickets_sold,
            total_tickets_added=stats.total_tickets_added,
            pending_bookings=stats.pending_bookings,
        )
    )
