"""
Shared fixtures: a file-backed SQLite database per test, a controllable clock,
and a TestClient wired to both with a sandbox payment gateway.
"""
import os

# Settings are read at import time; set them before any app import.
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SLOT_TIMEZONE", "UTC")
os.environ.setdefault("ESCROW_WINDOW_MINUTES", "5")

from datetime import timedelta

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from app.core.security import create_access_token
from app.db.session import Base, get_db, make_engine
from app.main import app
from app.models.audit_log import AuditLog  # noqa: F401
from app.models.charge import Charge  # noqa: F401
from app.models.booking import Booking  # noqa: F401
from app.models.booking_event import BookingEvent  # noqa: F401
from app.models.broadcast import Broadcast  # noqa: F401
from app.models.refund import Refund  # noqa: F401
from app.api.deps import get_booking_engine, get_payment_gateway
from app.services.booking_engine import BookingEngine, Party, Service, Slot
from app.services.clock import utcnow
from app.services.payment_gateway import GatewayConfig, PaymentGatewayClient, PaymentResult


class FrozenClock:
    """Callable clock for BookingEngine(now=...); moves only when told to."""

    def __init__(self, at):
        self.at = at

    def __call__(self):
        return self.at

    def advance(self, **kwargs):
        self.at = self.at + timedelta(**kwargs)
        return self.at


@pytest.fixture
def clock():
    # Yesterday 09:00 UTC: bookings made on this clock are long overdue in real time.
    start = utcnow().replace(hour=9, minute=0, second=0, microsecond=0) - timedelta(days=1)
    return FrozenClock(start)


@pytest.fixture
def tomorrow(clock):
    return (clock() + timedelta(days=1)).date().isoformat()


@pytest.fixture
def db_engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'escrow.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db(session_factory) -> Session:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def engine(db, clock):
    return BookingEngine(db, now=clock)


@pytest.fixture
def paid():
    return PaymentResult(transaction_id="txn-1", outcome="success")


@pytest.fixture
def make_booking(engine, tomorrow):
    """Create a held booking; keyword overrides for customer, shop, time, price, key, txn."""
    counter = {"n": 0}

    def _make(customer="cust-1", shop="shop-1", time="14:00", price="45", key=None, txn=None, day=None):
        counter["n"] += 1
        payment = PaymentResult(transaction_id=txn or f"txn-{counter['n']}", outcome="success")
        return engine.create(
            Party(customer, "Ada"),
            Party(shop, "Fade Factory"),
            Service("Executive Haircut", price),
            Slot(day or tomorrow, time),
            payment,
            idempotency_key=key,
        )

    return _make


@pytest.fixture
def sandbox_gateway():
    return PaymentGatewayClient(GatewayConfig(
        host="apitest.invalid",
        merchant_id="",
        key_id="",
        secret_key_b64="",
        sandbox=True,
    ))


@pytest.fixture
def client(session_factory, clock, sandbox_gateway):
    def _db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    def _engine(db: Session = Depends(get_db)):
        return BookingEngine(db, now=clock)

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_booking_engine] = _engine
    app.dependency_overrides[get_payment_gateway] = lambda: sandbox_gateway
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    def _headers(user_id: str, role: str, name: str = "") -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id, role, name=name)}"}

    return _headers
