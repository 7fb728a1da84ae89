import pytest

from nexticket.domain.roles import Role
from nexticket.domain.state_machine import VerificationStatus


def _as(email):
    return {"X-User-Email": email}


def _new_ticket_payload(**overrides):
    payload = {
        "title": "Subarna Express Snigdha",
        "fromLocation": "Dhaka",
        "toLocation": "Chattogram",
        "transportType": "Train",
        "pricePerUnit": 80_500,
        "quantity": 40,
        "perks": ["AC", "AC", "Snacks"],
        "imageURL": "https://img.nexticket.test/subarna.jpg",
        "departureDate": "2026-02-01",
        "departureTime": "07:00:00",
    }
    payload.update(overrides)
    return payload


def _advertise(client, admin, ticket_id, desired):
    return client.patch(
        f"/api/tickets/{ticket_id}/advertise",
        json={"isAdvertised": desired},
        headers=_as(admin),
    )


def _verify(client, admin, ticket_id, decision):
    return client.patch(
        f"/api/tickets/{ticket_id}/verify",
        json={"verificationStatus": decision},
        headers=_as(admin),
    )


def test_vendor_ticket_starts_pending(client, people):
    response = client.post("/api/tickets", json=_new_ticket_payload(), headers=_as(people["vendor"]))

    assert response.status_code == 201
    ticket = response.json()["data"]
    assert ticket["verificationStatus"] == "pending"
    assert ticket["isAdvertised"] is False
    assert ticket["vendorEmail"] == people["vendor"]
    assert ticket["perks"] == ["AC", "Snacks"]
    assert ticket["imageURL"] == "https://img.nexticket.test/subarna.jpg"

    pending = client.get("/api/tickets/pending", headers=_as(people["admin"])).json()["data"]
    assert [t["id"] for t in pending] == [ticket["id"]]


def test_ticket_with_past_departure_is_refused(client, people):
    response = client.post(
        "/api/tickets",
        json=_new_ticket_payload(departureDate="2026-01-01"),
        headers=_as(people["vendor"]),
    )

    assert response.status_code == 422
    assert response.json()["error"] == "ValidationFailed"


def test_only_vendors_add_tickets(client, people):
    response = client.post("/api/tickets", json=_new_ticket_payload(), headers=_as(people["user"]))

    assert response.status_code == 403
    assert response.json()["error"] == "RoleMismatch"


def test_pending_queue_is_admin_only(client, people):
    response = client.get("/api/tickets/pending", headers=_as(people["vendor"]))

    assert response.status_code == 403


def test_verify_twice_does_not_flip_state(client, people, make_ticket):
    ticket_id = make_ticket(people["vendor"], status=VerificationStatus.PENDING)

    first = _verify(client, people["admin"], ticket_id, "approved")
    assert first.status_code == 200
    assert first.json()["data"]["verificationStatus"] == "approved"

    again = _verify(client, people["admin"], ticket_id, "approved")
    assert again.status_code == 409
    assert again.json()["error"] == "InvalidStateTransition"

    flip = _verify(client, people["admin"], ticket_id, "rejected")
    assert flip.status_code == 409

    ticket = client.get(f"/api/tickets/{ticket_id}").json()["data"]
    assert ticket["verificationStatus"] == "approved"


def test_verify_requires_admin(client, people, make_ticket):
    ticket_id = make_ticket(people["vendor"], status=VerificationStatus.PENDING)

    response = _verify(client, people["vendor"], ticket_id, "approved")

    assert response.status_code == 403
    pending = client.get("/api/tickets/pending", headers=_as(people["admin"])).json()["data"]
    assert [t["id"] for t in pending] == [ticket_id]


def test_rejected_ticket_is_frozen_for_vendor(client, people, make_ticket):
    ticket_id = make_ticket(people["vendor"], status=VerificationStatus.PENDING)
    _verify(client, people["admin"], ticket_id, "rejected")

    update = client.patch(
        f"/api/tickets/{ticket_id}",
        json={"quantity": 10},
        headers=_as(people["vendor"]),
    )
    delete = client.delete(f"/api/tickets/{ticket_id}", headers=_as(people["vendor"]))

    assert update.status_code == 409
    assert update.json()["error"] == "TicketLocked"
    assert delete.status_code == 409
    assert delete.json()["error"] == "TicketLocked"


def test_pending_ticket_hidden_from_public(client, people, make_ticket):
    ticket_id = make_ticket(people["vendor"], status=VerificationStatus.PENDING)

    assert client.get(f"/api/tickets/{ticket_id}").status_code == 404
    assert client.get(f"/api/tickets/{ticket_id}", headers=_as(people["vendor"])).status_code == 200
    assert client.get(f"/api/tickets/{ticket_id}", headers=_as(people["admin"])).status_code == 200


def test_seventh_advertisement_hits_the_slot_limit(client, people, make_ticket):
    advertised = [make_ticket(people["vendor"], is_advertised=True, title=f"Route {n}") for n in range(6)]
    seventh = make_ticket(people["vendor"], title="Route 7")

    refused = _advertise(client, people["admin"], seventh, True)

    assert refused.status_code == 409
    assert refused.json()["error"] == "SlotLimitExceeded"
    assert len(client.get("/api/tickets/advertised").json()["data"]) == 6

    freed = _advertise(client, people["admin"], advertised[0], False)
    assert freed.status_code == 200
    assert freed.json()["data"]["advertisedCount"] == 5
    assert freed.json()["data"]["slotsAvailable"] == 1

    accepted = _advertise(client, people["admin"], seventh, True)
    assert accepted.status_code == 200
    assert accepted.json()["data"]["ticket"]["isAdvertised"] is True
    assert accepted.json()["data"]["advertisedCount"] == 6


def test_advertise_same_value_is_a_noop(client, people, make_ticket):
    ticket_id = make_ticket(people["vendor"], is_advertised=True)

    response = _advertise(client, people["admin"], ticket_id, True)

    assert response.status_code == 200
    assert response.json()["data"]["advertisedCount"] == 1


@pytest.mark.parametrize("status", [VerificationStatus.PENDING, VerificationStatus.REJECTED])
def test_unapproved_ticket_cannot_be_advertised(client, people, make_ticket, status):
    ticket_id = make_ticket(people["vendor"], status=status)

    response = _advertise(client, people["admin"], ticket_id, True)

    assert response.status_code == 409
    assert response.json()["error"] == "InvalidStateTransition"


def test_advertising_is_admin_only(client, people, make_ticket):
    ticket_id = make_ticket(people["vendor"])

    response = _advertise(client, people["vendor"], ticket_id, True)

    assert response.status_code == 403


def test_delete_waits_for_open_bookings(client, people, make_ticket):
    ticket_id = make_ticket(people["vendor"], is_advertised=True)
    booking = client.post(
        "/api/bookings",
        json={"ticketId": ticket_id, "bookingQuantity": 1},
        headers=_as(people["user"]),
    ).json()["data"]

    locked = client.delete(f"/api/tickets/{ticket_id}", headers=_as(people["vendor"]))
    assert locked.status_code == 409
    assert locked.json()["error"] == "TicketLocked"

    client.patch(f"/api/bookings/{booking['id']}/reject", headers=_as(people["vendor"]))
    deleted = client.delete(f"/api/tickets/{ticket_id}", headers=_as(people["vendor"]))

    assert deleted.status_code == 200
    assert client.get("/api/tickets/advertised").json()["data"] == []


def test_only_owner_deletes(client, people, make_user, make_ticket):
    other = make_user("rival@nexticket.test", Role.VENDOR)
    ticket_id = make_ticket(people["vendor"])

    response = client.delete(f"/api/tickets/{ticket_id}", headers=_as(other))

    assert response.status_code == 403


def test_browse_filters_sorts_and_paginates(client, people, make_ticket):
    make_ticket(people["vendor"], price_per_unit=30_000, title="Cheap")
    make_ticket(people["vendor"], price_per_unit=90_000, title="Premium")
    make_ticket(people["vendor"], price_per_unit=60_000, title="Standard")
    make_ticket(people["vendor"], status=VerificationStatus.PENDING, title="Unreviewed")

    response = client.get(
        "/api/tickets",
        params={"fromLocation": "dha", "sortBy": "price-high", "page": 1, "limit": 2},
    )

    body = response.json()
    assert [t["title"] for t in body["data"]] == ["Premium", "Standard"]
    assert body["pagination"] == {"currentPage": 1, "totalPages": 2, "totalTickets": 3}

    cheap_first = client.get("/api/tickets", params={"sortBy": "price-low"}).json()["data"]
    assert cheap_first[0]["title"] == "Cheap"

    none = client.get("/api/tickets", params={"transportType": "Plane"}).json()
    assert none["data"] == []
    assert none["pagination"]["totalTickets"] == 0


def test_unknown_sort_order_is_rejected(client):
    response = client.get("/api/tickets", params={"sortBy": "newest"})

    assert response.status_code == 422


def test_fraud_vendor_listings_disappear(client, people, make_ticket):
    ticket_id = make_ticket(people["vendor"], is_advertised=True)

    response = client.patch(
        f"/api/users/{people['vendor']}/fraud",
        json={"isFraud": True},
        headers=_as(people["admin"]),
    )

    assert response.status_code == 200
    assert response.json()["data"]["isFraud"] is True
    assert client.get("/api/tickets").json()["data"] == []
    assert client.get("/api/tickets/advertised").json()["data"] == []

    booking = client.post(
        "/api/bookings",
        json={"ticketId": ticket_id, "bookingQuantity": 1},
        headers=_as(people["user"]),
    )
    assert booking.status_code == 404

    suspended = client.post("/api/tickets", json=_new_ticket_payload(), headers=_as(people["vendor"]))
    assert suspended.status_code == 403
    assert suspended.json()["error"] == "VendorSuspended"
