import os
from datetime import date, datetime, time, timezone

# The app module builds its engine at import time; keep tests off Postgres.
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
import requests
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from nexticket.api.routes.routes import get_clock, get_db, get_payment_gateway
from nexticket.client.backend import BackendClient
from nexticket.client.session import Identity, SessionContext
from nexticket.domain.exceptions import IntentCreationFailedError, PaymentConfirmationFailedError
from nexticket.domain.roles import Role
from nexticket.domain.state_machine import VerificationStatus
from nexticket.infrastructure.db.models import Base, Ticket, User
from nexticket.main import app

# 2026-01-10 12:00 at UTC+6
NOW = datetime(2026, 1, 10, 6, 0, tzinfo=timezone.utc)
DEPARTURE_DATE = date(2026, 1, 20)
DEPARTURE_TIME = time(8, 30)


class FrozenClock:

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeGateway:
    """Stands in for Razorpay: order ids are predictable, signatures are ``sig:<order>:<payment>``."""

    def __init__(self):
        self.orders = []
        self.fail = False

    def create_intent(self, amount_minor: int, receipt: str) -> str:
        if self.fail:
            raise IntentCreationFailedError("Failed to initialize payment")
        order_id = f"order_{len(self.orders) + 1}"
        self.orders.append((order_id, amount_minor, receipt))
        return order_id

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> None:
        if signature != f"sig:{order_id}:{payment_id}":
            raise PaymentConfirmationFailedError("Invalid payment signature")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(session_factory, clock, gateway):
    def override_get_db():
        db = session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(session_factory):
    def _make_user(email: str, role: Role = Role.USER, is_fraud: bool = False) -> str:
        with session_factory() as db:
            db.add(User(email=email, display_name=email.split("@")[0], role=role, is_fraud=is_fraud))
            db.commit()
        return email

    return _make_user


@pytest.fixture
def make_ticket(session_factory):
    def _make_ticket(
        vendor_email: str,
        quantity: int = 5,
        price_per_unit: int = 50_000,
        status: VerificationStatus = VerificationStatus.APPROVED,
        is_advertised: bool = False,
        departure_date: date = DEPARTURE_DATE,
        departure_time: time = DEPARTURE_TIME,
        title: str = "Dhaka to Sylhet Express",
    ) -> str:
        with session_factory() as db:
            ticket = Ticket(
                title=title,
                from_location="Dhaka",
                to_location="Sylhet",
                transport_type="Bus",
                price_per_unit=price_per_unit,
                quantity=quantity,
                perks=["AC"],
                vendor_name="Green Line",
                vendor_email=vendor_email,
                verification_status=status,
                is_advertised=is_advertised,
                departure_date=departure_date,
                departure_time=departure_time,
            )
            db.add(ticket)
            db.commit()
            return ticket.id

    return _make_ticket


@pytest.fixture
def people(make_user):
    """One account per role."""
    return {
        "admin": make_user("admin@nexticket.test", Role.ADMIN),
        "vendor": make_user("vendor@nexticket.test", Role.VENDOR),
        "user": make_user("user@nexticket.test", Role.USER),
    }


class FlakySession:
    """
    Wraps the in-process client and drops selected requests on the floor,
    the way a lost connection would.
    """

    def __init__(self, inner):
        self.inner = inner
        self.calls = []
        self._failures = {}

    def fail(self, method: str, path: str, times: int = 1) -> None:
        self._failures[(method, path)] = times

    def request(self, method, url, **kwargs):
        self.calls.append((method, url))
        for (fail_method, path), remaining in self._failures.items():
            if fail_method == method and path in url and remaining > 0:
                self._failures[(fail_method, path)] = remaining - 1
                raise requests.ConnectionError(f"connection dropped: {method} {url}")
        return self.inner.request(method, url, **kwargs)

    def count(self, method: str, path: str) -> int:
        return sum(1 for call_method, url in self.calls if call_method == method and path in url)


@pytest.fixture
def flaky(client):
    return FlakySession(client)


@pytest.fixture
def backend(flaky):
    return BackendClient("http://testserver", session=flaky, timeout=5)


@pytest.fixture
def sign_in(backend):
    def _sign_in(email: str) -> SessionContext:
        context = SessionContext(backend)
        context.sign_in(Identity(email=email))
        return context

    return _sign_in
