from decimal import Decimal
from types import SimpleNamespace

import pytest

from storefront import config, emailer


class FakeSMTP:
    sent = []

    def __init__(self, host, port, timeout=None):
        self.host, self.port = host, port
        self.tls = False
        self.credentials = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.tls = True

    def login(self, username, password):
        self.credentials = (username, password)

    def send_message(self, msg):
        FakeSMTP.sent.append((self, msg))


def test_send_email_uses_smtp_settings(monkeypatch):
    FakeSMTP.sent = []
    monkeypatch.setattr(emailer.smtplib, "SMTP", FakeSMTP)
    monkeypatch.setattr(config, "SMTP_USE_TLS", True)
    monkeypatch.setattr(config, "SMTP_USERNAME", "mailer")
    monkeypatch.setattr(config, "SMTP_PASSWORD", "pw")

    emailer.send_email(to_email="buyer@example.com", subject="Hello", body="Body text")

    server, msg = FakeSMTP.sent[0]
    assert server.tls is True
    assert server.credentials == ("mailer", "pw")
    assert msg["To"] == "buyer@example.com"
    assert msg["From"] == config.SMTP_FROM
    assert msg.get_content().strip() == "Body text"


def test_force_to_overrides_recipient(monkeypatch):
    monkeypatch.setattr(config, "NOTIFY_FORCE_TO", "qa@example.com")
    assert emailer.pick_recipient("buyer@example.com") == "qa@example.com"
    monkeypatch.setattr(config, "NOTIFY_FORCE_TO", "")
    assert emailer.pick_recipient(" buyer@example.com ") == "buyer@example.com"


def test_message_needs_a_recipient(monkeypatch):
    monkeypatch.setattr(config, "NOTIFY_FORCE_TO", "")
    with pytest.raises(ValueError, match="No recipient"):
        emailer.build_message("  ", "Hello", "Body text")
    monkeypatch.setattr(config, "NOTIFY_FORCE_TO", "qa@example.com")
    assert emailer.build_message(None, "Hello", "Body text")["To"] == "qa@example.com"


def test_order_confirmation_body(sent_emails):
    order = SimpleNamespace(
        id=7,
        customer=SimpleNamespace(first_name="Lata", email="lata@example.com"),
        items=[SimpleNamespace(product_name="Cumin", quantity=2, total=Decimal("180.00"))],
        subtotal=Decimal("180.00"),
        coupon_code="FLAT50",
        coupon_discount=Decimal("50.00"),
        shipping=Decimal("100.00"),
        tax=Decimal("9.00"),
        total=Decimal("239.00"),
        payment_id="pi_7",
    )
    emailer.send_order_confirmation_email(order)

    mail = sent_emails[0]
    assert mail["to"] == "lata@example.com"
    assert mail["subject"] == "Order confirmation ORD-000007"
    assert "Cumin x 2" in mail["body"]
    assert "Discount (FLAT50): -₹50.00" in mail["body"]
    assert "Total: ₹239.00" in mail["body"]
