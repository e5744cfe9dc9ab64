import itertools
from datetime import datetime, timedelta

import pytest

from app import create_app
from config import TestConfig
from models import db
from models.booking import Booking, BookingStatus
from models.service import Service
from models.user import User, UserRole
from security.password import hash_password

PASSWORD = "correct-horse-42"


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    counter = itertools.count(1)

    def _make(role=UserRole.CUSTOMER, email=None, verified=True, **fields):
        user = User(
            email=email or f"{role.value}{next(counter)}@example.com",
            password_hash=hash_password(PASSWORD),
            role=role,
            email_verified=verified,
            **fields,
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def business(make_user):
    return make_user(UserRole.BUSINESS, full_name="Bo Barber", business_name="Fade Barbers")


@pytest.fixture
def other_business(make_user):
    return make_user(UserRole.BUSINESS, business_name="Nail Studio")


@pytest.fixture
def customer(make_user):
    return make_user(UserRole.CUSTOMER, full_name="Casey Customer")


@pytest.fixture
def other_customer(make_user):
    return make_user(UserRole.CUSTOMER, full_name="Robin Other")


@pytest.fixture
def admin(make_user):
    return make_user(UserRole.ADMIN, full_name="Ada Admin")


@pytest.fixture
def service(business):
    svc = Service(business_id=business.id, name="Haircut", price=3500, duration=60)
    db.session.add(svc)
    db.session.commit()
    return svc


@pytest.fixture
def tomorrow_at():
    base = (datetime.utcnow() + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)

    def _at(hour, minute=0):
        return base.replace(hour=hour, minute=minute)

    return _at


@pytest.fixture
def add_booking():
    """Insert a booking row directly, bypassing the workflow."""
    def _add(service, customer, start, status=BookingStatus.CONFIRMED):
        booking = Booking(
            business_id=service.business_id,
            service_id=service.id,
            customer_id=customer.id,
            date=start.date(),
            start_time=start,
            end_time=start + timedelta(minutes=service.duration),
            status=status,
            total_amount=service.price,
        )
        db.session.add(booking)
        db.session.commit()
        return booking

    return _add


@pytest.fixture
def sent_emails(monkeypatch):
    sent = []

    def fake_send(email, status, summary):
        sent.append({"email": email, "status": status, "summary": summary})
        return True

    monkeypatch.setattr("services.notifications.send_status_update", fake_send)
    return sent


@pytest.fixture
def login(client):
    """Log ``user`` in on the shared test client; returns CSRF headers."""
    def _login(user):
        resp = client.post("/auth/login", json={"email": user.email, "password": PASSWORD})
        assert resp.status_code == 200, resp.get_json()
        return {"X-CSRF-Token": client.get_cookie("csrf_token").value}

    return _login
