from datetime import date, time, timedelta

from sqlalchemy import select

from nexticket.domain.money import to_minor_units
from nexticket.domain.roles import Role
from nexticket.domain.schedule import utc_now
from nexticket.domain.state_machine import VerificationStatus
from nexticket.infrastructure.db.models import Base, Ticket, User
from nexticket.infrastructure.db.session import engine, get_db_session


def _day(days_from_now: int) -> date:
    return (utc_now() + timedelta(days=days_from_now)).date()


def seed_users(db) -> None:
    user_defs = [
        {"email": "admin@nexticket.test", "display_name": "Site Admin", "role": Role.ADMIN},
        {"email": "green.line@nexticket.test", "display_name": "Green Line Paribahan", "role": Role.VENDOR},
        {"email": "rafi@nexticket.test", "display_name": "Rafi Ahmed", "role": Role.USER},
    ]

    for item in user_defs:
        existing = db.execute(
            select(User).where(User.email == item["email"])
        ).scalar_one_or_none()
        if existing:
            existing.display_name = item["display_name"]
            existing.role = item["role"]
            continue
        db.add(User(**item))
    db.flush()


def seed_tickets(db) -> None:
    vendor_email = "green.line@nexticket.test"
    ticket_defs = [
        {
            "title": "Dhaka to Chattogram AC Sleeper",
            "from_location": "Dhaka",
            "to_location": "Chattogram",
            "transport_type": "Bus",
            "price": "1450",
            "quantity": 36,
            "perks": ["AC", "Blanket", "Water"],
            "departure_date": _day(5),
            "departure_time": time(22, 30),
            "advertised": True,
        },
        {
            "title": "Subarna Express Snigdha",
            "from_location": "Dhaka",
            "to_location": "Chattogram",
            "transport_type": "Train",
            "price": "805",
            "quantity": 60,
            "perks": ["AC"],
            "departure_date": _day(7),
            "departure_time": time(7, 0),
            "advertised": False,
        },
        {
            "title": "MV Sundarban-16 Cabin",
            "from_location": "Dhaka",
            "to_location": "Barishal",
            "transport_type": "Launch",
            "price": "2200.50",
            "quantity": 12,
            "perks": ["Cabin", "Dinner"],
            "departure_date": _day(3),
            "departure_time": time(20, 0),
            "advertised": False,
        },
    ]

    for item in ticket_defs:
        existing = db.execute(
            select(Ticket).where(Ticket.title == item["title"])
        ).scalar_one_or_none()
        ticket = existing or Ticket(title=item["title"], vendor_email=vendor_email)
        ticket.vendor_name = "Green Line Paribahan"
        ticket.from_location = item["from_location"]
        ticket.to_location = item["to_location"]
        ticket.transport_type = item["transport_type"]
        ticket.price_per_unit = to_minor_units(item["price"])
        ticket.quantity = item["quantity"]
        ticket.perks = item["perks"]
        ticket.departure_date = item["departure_date"]
        ticket.departure_time = item["departure_time"]
        ticket.verification_status = VerificationStatus.APPROVED
        ticket.is_advertised = item["advertised"]
        if not existing:
            db.add(ticket)


def main() -> None:
    Base.metadata.create_all(bind=engine)
    with get_db_session() as db:
        seed_users(db)
        seed_tickets(db)
    print("Seed complete: admin, vendor and user accounts plus three approved tickets added.")


if __name__ == "__main__":
    main()
