"""Pytest configuration and shared fixtures."""

import contextlib
import os
import tempfile

_fd, _DB_PATH = tempfile.mkstemp(suffix=".db")
os.close(_fd)

# Must be set before the storefront modules read their configuration
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_PATH}"
os.environ["REQUIRE_EMAIL_VERIFICATION"] = "true"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = ""
os.environ["CLOUDFLARE_ACCOUNT_ID"] = ""
os.environ["R2_BUCKET_URL"] = ""
os.environ["NOTIFY_FORCE_TO"] = ""

import pytest
from fastapi.testclient import TestClient

from storefront import emailer
from storefront.auth import create_access_token, get_password_hash
from storefront.crud import products as product_crud
from storefront.crud.users import create_user
from storefront.database import Base, SessionLocal, engine
from storefront.main import app

PASSWORD = "secret-pass-1"


@pytest.fixture(scope="session", autouse=True)
def _remove_db_file():
    yield
    engine.dispose()
    with contextlib.suppress(OSError, PermissionError):
        os.remove(_DB_PATH)


@pytest.fixture
def db():
    """Fresh schema and session for every test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db):
    return TestClient(app)


@pytest.fixture
def sent_emails(monkeypatch):
    """Capture outgoing mail instead of talking to SMTP."""
    outbox = []

    def fake_send_email(*, to_email, subject, body):
        outbox.append({"to": to_email, "subject": subject, "body": body})

    monkeypatch.setattr(emailer, "send_email", fake_send_email)
    return outbox


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role="customer", email_verified=True, name=None, email=None, password=PASSWORD):
        counter["n"] += 1
        return create_user(
            db,
            name=name or f"Person {counter['n']}",
            email=email or f"person{counter['n']}@example.com",
            hashed_password=get_password_hash(password),
            role=role,
            email_verified=email_verified,
        )

    return _make


def headers_for(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}


@pytest.fixture
def admin(make_user):
    return make_user(role="admin", name="Admin", email="admin@example.com")


@pytest.fixture
def admin_headers(admin):
    return headers_for(admin)


@pytest.fixture
def staff_headers(make_user):
    return headers_for(make_user(role="user", name="Shop Staff", email="staff@example.com"))


@pytest.fixture
def customer_headers(make_user):
    return headers_for(make_user(role="customer", name="Shopper", email="shopper@example.com"))


@pytest.fixture
def make_product(db):
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        data = {
            "name": f"Product {counter['n']}",
            "category": "Spices",
            "price": 90,
            "mrp": 100,
            "stock": 10,
            "weight": 500,
            "gst_percentage": 5,
            "tax_inclusive": False,
        }
        data.update(overrides)
        return product_crud.create_product(db, data)

    return _make
