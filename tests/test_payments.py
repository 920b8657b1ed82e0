"""Tests for Stripe checkout with the Stripe API stubbed out."""

import hashlib
import hmac
import json
import time
from decimal import Decimal
from types import SimpleNamespace

import pytest
import stripe

from storefront import config, emailer, payments
from storefront.crud import orders as order_crud
from storefront.models import Order, Product

CUSTOMER = {"first_name": "Dev", "last_name": "Patel", "email": "dev@example.com", "city": "Surat"}


@pytest.fixture
def stripe_keys(monkeypatch):
    monkeypatch.setattr(config, "STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setattr(config, "STRIPE_WEBHOOK_SECRET", "whsec_123")


@pytest.fixture
def intents(monkeypatch, stripe_keys):
    """PaymentIntents by id; retrieve() reads from here."""
    store = {}

    def retrieve(payment_intent_id):
        if payment_intent_id not in store:
            raise stripe.InvalidRequestError("No such payment_intent", "id")
        return store[payment_intent_id]

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", retrieve)
    return store


def test_minor_units():
    assert payments.to_minor_units(Decimal("10.005")) == 1001
    assert payments.to_minor_units("499") == 49900
    assert payments.from_minor_units(1999) == Decimal("19.99")
    assert payments.from_minor_units(None) == Decimal("0.00")


def test_stripe_must_be_configured():
    with pytest.raises(payments.PaymentConfigError):
        payments.retrieve_payment_intent("pi_1")


def test_create_payment_intent(monkeypatch, stripe_keys):
    captured = {}

    def create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id="pi_new", client_secret="pi_new_secret", amount=kwargs["amount"], currency=kwargs["currency"])

    monkeypatch.setattr(stripe.PaymentIntent, "create", create)
    intent = payments.create_payment_intent(Decimal("250.50"), "rcpt-1", notes={"cart": 3})
    assert intent.id == "pi_new"
    assert captured["amount"] == 25050
    assert captured["currency"] == "inr"
    assert captured["metadata"] == {"cart": "3", "receipt": "rcpt-1"}


def test_stripe_errors_are_wrapped(intents):
    with pytest.raises(payments.PaymentError, match="Failed to fetch payment"):
        payments.retrieve_payment_intent("pi_missing")


def test_create_route(client, monkeypatch, stripe_keys):
    monkeypatch.setattr(
        stripe.PaymentIntent,
        "create",
        lambda **kwargs: SimpleNamespace(id="pi_9", client_secret="secret_9", amount=kwargs["amount"], currency=kwargs["currency"]),
    )
    response = client.post("/payments/create", json={"amount": "120.00", "receipt": "cart-7"})
    assert response.status_code == 201
    assert response.json() == {
        "success": True,
        "payment_intent_id": "pi_9",
        "client_secret": "secret_9",
        "amount": 12000,
        "currency": "inr",
        "receipt": "cart-7",
    }


def test_create_route_without_keys(client):
    response = client.post("/payments/create", json={"amount": "120.00", "receipt": "cart-7"})
    assert response.status_code == 500


def _verify(client, product, payment_intent_id="pi_ok", quantity=2):
    return client.post(
        "/payments/verify",
        json={
            "payment_intent_id": payment_intent_id,
            "customer": CUSTOMER,
            "items": [{"product_id": product.id, "quantity": quantity}],
        },
    )


def test_verify_places_order_once(client, db, intents, make_product, sent_emails):
    product = make_product(stock=5, price=100, mrp=100, weight=0, gst_percentage=0)
    intents["pi_ok"] = SimpleNamespace(id="pi_ok", status="succeeded", amount=20000)

    response = _verify(client, product)
    assert response.status_code == 200
    body = response.json()
    assert body["payment_id"] == "pi_ok"
    assert body["email_sent"] is True
    assert body["redirect_url"] == f"/order-success?orderId={body['order_id']}&paymentId=pi_ok"

    order = db.get(Order, body["order_id"])
    assert order.status == "confirmed"
    assert order.payment_status == "completed"
    assert order.payment_method == "stripe"
    assert sent_emails[0]["to"] == "dev@example.com"
    assert f"ORD-{order.id:06d}" in sent_emails[0]["subject"]

    again = _verify(client, product)
    assert again.json()["order_id"] == body["order_id"]
    assert db.query(Order).count() == 1
    db.expire_all()
    assert db.get(Product, product.id).stock == 3


def test_verify_rejects_unpaid_intent(client, intents, make_product):
    product = make_product(stock=5, price=100, mrp=100, weight=0, gst_percentage=0)
    intents["pi_ok"] = SimpleNamespace(id="pi_ok", status="requires_payment_method", amount=20000)
    response = _verify(client, product)
    assert response.status_code == 400
    assert response.json()["detail"] == "Payment verification failed"


def test_verify_rejects_amount_mismatch(client, db, intents, make_product):
    product = make_product(stock=5, price=100, mrp=100, weight=0, gst_percentage=0)
    intents["pi_ok"] = SimpleNamespace(id="pi_ok", status="succeeded", amount=100)
    response = _verify(client, product)
    assert response.status_code == 400
    assert db.query(Order).count() == 0


def test_verify_reports_stock_conflict(client, intents, make_product):
    product = make_product(stock=1, price=100, mrp=100, weight=0, gst_percentage=0)
    intents["pi_ok"] = SimpleNamespace(id="pi_ok", status="succeeded", amount=20000)
    response = _verify(client, product)
    assert response.status_code == 409
    assert "Stock validation failed" in response.json()["detail"]


def test_verify_survives_email_failure(client, intents, make_product, monkeypatch):
    def broken(order):
        raise OSError("smtp down")

    monkeypatch.setattr(emailer, "send_order_confirmation_email", broken)
    product = make_product(stock=5, price=100, mrp=100, weight=0, gst_percentage=0)
    intents["pi_ok"] = SimpleNamespace(id="pi_ok", status="succeeded", amount=20000)
    response = _verify(client, product)
    assert response.status_code == 200
    assert response.json()["email_sent"] is False


def test_webhook_signature_is_checked(client, monkeypatch, stripe_keys):
    def reject(payload, sig_header, secret):
        raise stripe.SignatureVerificationError("bad signature", sig_header)

    monkeypatch.setattr(stripe.Webhook, "construct_event", reject)
    assert client.post("/payments/webhook", content=b"{}").status_code == 400
    response = client.post("/payments/webhook", content=b"{}", headers={"stripe-signature": "t=1,v1=x"})
    assert response.status_code == 400


def _signed_headers(payload: bytes, secret: str = "whsec_123") -> dict:
    timestamp = int(time.time())
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return {"stripe-signature": f"t={timestamp},v1={signature}", "content-type": "application/json"}


def _event(event_type: str, intent: dict) -> bytes:
    return json.dumps(
        {"id": "evt_1", "object": "event", "type": event_type, "data": {"object": {"object": "payment_intent", **intent}}}
    ).encode()


def test_webhook_marks_payment(client, db, intents, make_product, sent_emails):
    product = make_product(stock=5, price=100, mrp=100, weight=0, gst_percentage=0)
    intents["pi_ok"] = SimpleNamespace(id="pi_ok", status="succeeded", amount=20000)
    order_id = _verify(client, product).json()["order_id"]

    payload = _event("payment_intent.payment_failed", {"id": "pi_ok", "last_payment_error": {"message": "card declined"}})
    response = client.post("/payments/webhook", content=payload, headers=_signed_headers(payload))
    assert response.status_code == 200
    assert response.json() == {"received": True}
    db.expire_all()
    assert db.get(Order, order_id).payment_status == "failed"

    payload = _event("payment_intent.succeeded", {"id": "pi_ok"})
    response = client.post("/payments/webhook", content=payload, headers=_signed_headers(payload))
    assert response.json() == {"received": True}
    db.expire_all()
    assert db.get(Order, order_id).payment_status == "completed"

    payload = _event("payment_intent.succeeded", {"id": "pi_unknown"})
    response = client.post("/payments/webhook", content=payload, headers=_signed_headers(payload))
    assert response.json() == {"received": True}


def test_webhook_rejects_wrong_secret(client, stripe_keys):
    payload = _event("payment_intent.succeeded", {"id": "pi_ok"})
    response = client.post("/payments/webhook", content=payload, headers=_signed_headers(payload, secret="whsec_other"))
    assert response.status_code == 400


def test_concurrent_verify_returns_existing_order(client, db, intents, make_product, monkeypatch):
    product = make_product(stock=5, price=100, mrp=100, weight=0, gst_percentage=0)
    intents["pi_ok"] = SimpleNamespace(id="pi_ok", status="succeeded", amount=20000)
    first = _verify(client, product).json()

    # The second request checks for an existing order before the first one commits
    lookup = order_crud.get_order_by_payment_id
    calls = []

    def racing_lookup(session, payment_id):
        calls.append(payment_id)
        return None if len(calls) == 1 else lookup(session, payment_id)

    monkeypatch.setattr(order_crud, "get_order_by_payment_id", racing_lookup)
    response = _verify(client, product)
    assert response.status_code == 200
    assert response.json()["order_id"] == first["order_id"]
    assert response.json()["email_sent"] is False
    assert db.query(Order).count() == 1
    db.expire_all()
    assert db.get(Product, product.id).stock == 3
