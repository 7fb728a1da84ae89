from datetime import datetime, timezone

from nexticket.domain.roles import Role
from nexticket.domain.state_machine import VerificationStatus


def _as(email):
    return {"X-User-Email": email}


def _book(client, user, ticket_id, quantity):
    return client.post(
        "/api/bookings",
        json={"ticketId": ticket_id, "bookingQuantity": quantity},
        headers=_as(user),
    )


def _ticket(client, ticket_id):
    return client.get(f"/api/tickets/{ticket_id}").json()["data"]


def test_booking_flow(client, people, make_ticket):
    ticket_id = make_ticket(people["vendor"], quantity=5, price_per_unit=50_000)

    response = _book(client, people["user"], ticket_id, 3)

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    booking = body["data"]
    assert booking["status"] == "pending"
    assert booking["totalPrice"] == 150_000
    assert booking["vendorEmail"] == people["vendor"]
    # Stock is not held at creation.
    assert _ticket(client, ticket_id)["quantity"] == 5

    accept_response = client.patch(
        f"/api/bookings/{booking['id']}/accept",
        headers=_as(people["vendor"]),
    )
    assert accept_response.status_code == 200
    assert accept_response.json()["data"]["status"] == "accepted"
    assert _ticket(client, ticket_id)["quantity"] == 2

    pay_response = client.patch(
        f"/api/bookings/{booking['id']}/pay",
        json={"transactionId": "pay_001"},
        headers=_as(people["user"]),
    )
    assert pay_response.status_code == 200
    paid = pay_response.json()["data"]
    assert paid["status"] == "paid"
    assert paid["transactionId"] == "pay_001"
    assert paid["totalPrice"] == 150_000


def test_acceptance_fails_when_stock_ran_out(client, people, make_ticket):
    ticket_id = make_ticket(people["vendor"], quantity=5)
    first = _book(client, people["user"], ticket_id, 3).json()["data"]
    second = _book(client, people["user"], ticket_id, 3).json()["data"]

    assert client.patch(f"/api/bookings/{first['id']}/accept", headers=_as(people["vendor"])).status_code == 200

    response = client.patch(f"/api/bookings/{second['id']}/accept", headers=_as(people["vendor"]))

    assert response.status_code == 409
    assert response.json()["error"] == "InsufficientInventory"
    bookings = client.get(
        f"/api/bookings/vendor/{people['vendor']}",
        headers=_as(people["vendor"]),
    ).json()["data"]
    assert {b["id"]: b["status"] for b in bookings}[second["id"]] == "pending"
    assert _ticket(client, ticket_id)["quantity"] == 2


def test_rejected_booking_cannot_be_paid(client, people, make_ticket):
    ticket_id = make_ticket(people["vendor"], quantity=5)
    booking = _book(client, people["user"], ticket_id, 2).json()["data"]

    reject_response = client.patch(
        f"/api/bookings/{booking['id']}/reject",
        headers=_as(people["vendor"]),
    )
    assert reject_response.json()["data"]["status"] == "rejected"
    assert _ticket(client, ticket_id)["quantity"] == 5

    pay_response = client.patch(
        f"/api/bookings/{booking['id']}/pay",
        json={"transactionId": "pay_002"},
        headers=_as(people["user"]),
    )
    assert pay_response.status_code == 409
    body = pay_response.json()
    assert body["success"] is False
    assert body["error"] == "InvalidStateTransition"
    assert body["details"] == {"from_state": "rejected", "to_state": "paid"}


def test_accept_after_departure_succeeds_but_pay_expires(client, clock, people, make_ticket):
    ticket_id = make_ticket(people["vendor"], quantity=5)
    booking = _book(client, people["user"], ticket_id, 1).json()["data"]

    # Departure is 2026-01-20 08:30 at UTC+6.
    clock.now = datetime(2026, 1, 20, 3, 0, tzinfo=timezone.utc)

    accept_response = client.patch(
        f"/api/bookings/{booking['id']}/accept",
        headers=_as(people["vendor"]),
    )
    assert accept_response.status_code == 200

    pay_response = client.patch(
        f"/api/bookings/{booking['id']}/pay",
        json={"transactionId": "pay_003"},
        headers=_as(people["user"]),
    )
    assert pay_response.status_code == 410
    assert pay_response.json()["error"] == "BookingExpired"

    mine = client.get(f"/api/bookings/user/{people['user']}", headers=_as(people["user"])).json()["data"]
    assert mine[0]["status"] == "accepted"


def test_departed_ticket_cannot_be_booked(client, clock, people, make_ticket):
    ticket_id = make_ticket(people["vendor"])
    clock.now = datetime(2026, 2, 1, tzinfo=timezone.utc)

    response = _book(client, people["user"], ticket_id, 1)

    assert response.status_code == 410
    assert response.json()["error"] == "BookingExpired"


def test_booking_quantity_bounds(client, people, make_ticket):
    ticket_id = make_ticket(people["vendor"], quantity=2)

    too_many = _book(client, people["user"], ticket_id, 3)
    assert too_many.status_code == 409
    assert too_many.json()["error"] == "InsufficientInventory"

    zero = _book(client, people["user"], ticket_id, 0)
    assert zero.status_code == 422
    assert zero.json()["error"] == "ValidationFailed"


def test_only_approved_tickets_can_be_booked(client, people, make_ticket):
    ticket_id = make_ticket(people["vendor"], status=VerificationStatus.PENDING)

    response = _book(client, people["user"], ticket_id, 1)

    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"


def test_roles_are_enforced_on_booking_actions(client, people, make_user, make_ticket):
    other_vendor = make_user("other.vendor@nexticket.test", Role.VENDOR)
    ticket_id = make_ticket(people["vendor"])

    anonymous = client.post("/api/bookings", json={"ticketId": ticket_id, "bookingQuantity": 1})
    assert anonymous.status_code == 401
    assert anonymous.json()["error"] == "AuthRequired"

    vendor_booking = _book(client, people["vendor"], ticket_id, 1)
    assert vendor_booking.status_code == 403
    assert vendor_booking.json()["error"] == "RoleMismatch"

    booking = _book(client, people["user"], ticket_id, 1).json()["data"]
    foreign_accept = client.patch(f"/api/bookings/{booking['id']}/accept", headers=_as(other_vendor))
    assert foreign_accept.status_code == 403

    self_accept = client.patch(f"/api/bookings/{booking['id']}/accept", headers=_as(people["user"]))
    assert self_accept.status_code == 403


def test_pay_is_idempotent_for_the_same_charge(client, people, make_ticket):
    ticket_id = make_ticket(people["vendor"])
    booking = _book(client, people["user"], ticket_id, 1).json()["data"]
    client.patch(f"/api/bookings/{booking['id']}/accept", headers=_as(people["vendor"]))

    pay = {"transactionId": "pay_004"}
    first = client.patch(f"/api/bookings/{booking['id']}/pay", json=pay, headers=_as(people["user"]))
    again = client.patch(f"/api/bookings/{booking['id']}/pay", json=pay, headers=_as(people["user"]))
    other = client.patch(
        f"/api/bookings/{booking['id']}/pay",
        json={"transactionId": "pay_005"},
        headers=_as(people["user"]),
    )

    assert first.status_code == 200
    assert again.status_code == 200
    assert again.json()["data"]["transactionId"] == "pay_004"
    assert other.status_code == 409
    assert other.json()["error"] == "InvalidStateTransition"


def test_total_price_is_a_snapshot(client, people, make_ticket):
    ticket_id = make_ticket(people["vendor"], price_per_unit=40_000)
    booking = _book(client, people["user"], ticket_id, 2).json()["data"]

    update = client.patch(
        f"/api/tickets/{ticket_id}",
        json={"pricePerUnit": 99_000},
        headers=_as(people["vendor"]),
    )
    assert update.status_code == 200

    mine = client.get(f"/api/bookings/user/{people['user']}", headers=_as(people["user"])).json()["data"]
    assert mine[0]["id"] == booking["id"]
    assert mine[0]["totalPrice"] == 80_000


def test_booking_lists_are_private(client, people):
    response = client.get(f"/api/bookings/user/{people['user']}", headers=_as(people["vendor"]))
    assert response.status_code == 403

    admin_view = client.get(f"/api/bookings/user/{people['user']}", headers=_as(people["admin"]))
    assert admin_view.status_code == 200
    assert admin_view.json()["data"] == []
