from datetime import date, datetime, time
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from nexticket.domain.roles import Role
from nexticket.domain.state_machine import BookingStatus, VerificationStatus

TransportType = Literal["Bus", "Train", "Launch", "Plane"]


class CamelModel(BaseModel):
    """Wire models use camelCase keys; Python code uses snake_case."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# -----------------------------
# Requests
# -----------------------------
class UserUpsertRequest(CamelModel):
    email: str
    name: str | None = None
    photo_url: str | None = Field(default=None, alias="photoURL")


class RoleUpdateRequest(CamelModel):
    role: Role


class FraudRequest(CamelModel):
    is_fraud: Literal[True] = True


class TicketCreateRequest(CamelModel):
    title: str = Field(min_length=1)
    from_location: str = Field(min_length=1)
    to_location: str = Field(min_length=1)
    transport_type: TransportType
    price_per_unit: int = Field(gt=0, description="Minor currency units")
    quantity: int = Field(ge=0)
    perks: list[str] = Field(default_factory=list)
    image_url: str | None = Field(default=None, alias="imageURL")
    departure_date: date
    departure_time: time


class TicketUpdateRequest(CamelModel):
    title: str | None = Field(default=None, min_length=1)
    from_location: str | None = None
    to_location: str | None = None
    transport_type: TransportType | None = None
    price_per_unit: int | None = Field(default=None, gt=0)
    quantity: int | None = Field(default=None, ge=0)
    perks: list[str] | None = None
    image_url: str | None = Field(default=None, alias="imageURL")
    departure_date: date | None = None
    departure_time: time | None = None


class VerifyRequest(CamelModel):
    verification_status: Literal["approved", "rejected"]


class AdvertiseRequest(CamelModel):
    is_advertised: bool


class BookingCreateRequest(CamelModel):
    ticket_id: str
    booking_quantity: int = Field(ge=1)


class PayRequest(CamelModel):
    transaction_id: str = Field(min_length=1)
    order_id: str | None = None
    signature: str | None = None


class PaymentIntentRequest(CamelModel):
    amount: int = Field(gt=0, description="Minor currency units")
    booking_id: str | None = None


class TransactionCreateRequest(CamelModel):
    transaction_id: str = Field(min_length=1)
    user_email: str
    booking_id: str
    ticket_title: str
    amount: int = Field(gt=0)
    payment_date: datetime | None = None
    status: str = "completed"


# -----------------------------
# Responses
# -----------------------------
class UserResponse(CamelModel):
    id: str
    email: str
    name: str | None = Field(default=None, validation_alias="display_name")
    photo_url: str | None = Field(default=None, alias="photoURL")
    role: Role
    is_fraud: bool


class TicketResponse(CamelModel):
    id: str
    title: str
    from_location: str
    to_location: str
    transport_type: str
    price_per_unit: int
    quantity: int
    perks: list[str]
    image_url: str | None = Field(default=None, alias="imageURL")
    vendor_name: str | None
    vendor_email: str
    verification_status: VerificationStatus
    is_advertised: bool
    departure_date: date
    departure_time: time
    created_at: datetime | None = None


class BookingResponse(CamelModel):
    id: str
    ticket_id: str | None
    ticket_title: str
    user_email: str
    vendor_email: str
    booking_quantity: int
    total_price: int
    from_location: str
    to_location: str
    departure_date: date
    departure_time: time
    status: BookingStatus
    transaction_id: str | None = None
    created_at: datetime | None = None


class TransactionResponse(CamelModel):
    id: str
    transaction_id: str
    user_email: str
    booking_id: str
    ticket_title: str
    amount: int
    payment_date: datetime
    status: str


class AdvertiseResponse(CamelModel):
    ticket: TicketResponse
    advertised_count: int
    slots_available: int


class PaginationResponse(CamelModel):
    current_page: int
    total_pages: int
    total_tickets: int


class VendorStatsResponse(CamelModel):
    total_revenue: int
    total_tickets_sold: int
    total_tickets_added: int
    pending_bookings: int


class PaymentIntentResponse(CamelModel):
    client_secret: str
