from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from memberpay.config import config
from memberpay.database import Base, get_db, get_session_factory
from memberpay.main import app
from memberpay.models.event import Event
from memberpay.models.payment import Payment
from memberpay.models.plan import Plan
from memberpay.models.promo_code import PromoCode
from memberpay.models.user import User
from memberpay.services.payment_gateway import reset_gateways
from memberpay.utils.auth import create_access_token


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    monkeypatch.setitem(config, "APP_ENV", "testing")
    monkeypatch.setitem(config, "PAYMENT_GATEWAY", "mock")
    monkeypatch.setitem(config, "WEBHOOK_SECRET", "")
    monkeypatch.setitem(config, "FRONTEND_URL", "http://frontend.test")
    reset_gateways()
    yield
    reset_gateways()


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
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_user(db, email="member@example.com", role="user", phone="254712345678"):
    user = User(email=email, first_name="Wanjiku", last_name="Kamau", phone=phone, role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


def payments_for(db, payable_type):
    return db.query(Payment).filter(Payment.payable_type == payable_type).all()


@pytest.fixture
def user(db):
    return make_user(db)


@pytest.fixture
def admin(db):
    return make_user(db, email="admin@example.com", role="admin")


@pytest.fixture
def plan(db):
    plan = Plan(
        name="Professional",
        slug="professional",
        price=Decimal("2500.00"),
        currency="KES",
        invoice_period="month",
        ticket_discount_percent=Decimal("10"),
        features=["Lab bookings"],
    )
    db.add(plan)
    db.commit()
    db.refresh(plan)
    return plan


@pytest.fixture
def other_plan(db):
    plan = Plan(name="Community", slug="community", price=Decimal("500.00"), currency="KES")
    db.add(plan)
    db.commit()
    db.refresh(plan)
    return plan


@pytest.fixture
def event(db):
    event = Event(
        title="Founders Meetup",
        status="published",
        is_paid=True,
        price=Decimal("1000.00"),
        currency="KES",
        capacity=5,
    )
    db.add(event)
    db.commit()
    db.refresh(event)
    return event


@pytest.fixture
def promo(db, event):
    promo = PromoCode(code="EARLY20", type="percent", value=Decimal("20"), max_uses=10)
    db.add(promo)
    db.commit()
    db.refresh(promo)
    return promo
