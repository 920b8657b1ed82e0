from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Optional
from urllib.parse import urlencode

from . import config
from .slugs import order_number

logger = logging.getLogger(__name__)


def build_message(to_email: Optional[str], subject: str, body: str) -> EmailMessage:
    """Address a plain-text message; NOTIFY_FORCE_TO redirects every recipient."""
    recipient = pick_recipient(to_email)
    if not recipient:
        raise ValueError(f"No recipient for email '{subject}'")
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = config.SMTP_FROM
    msg["To"] = recipient
    msg.set_content(body)
    return msg


def send_email(*, to_email: str, subject: str, body: str) -> None:
    msg = build_message(to_email, subject, body)
    with smtplib.SMTP(config.SMTP_HOST, config.SMTP_PORT, timeout=10) as server:
        if config.SMTP_USE_TLS:
            server.starttls()
        if config.SMTP_USERNAME and config.SMTP_PASSWORD:
            server.login(config.SMTP_USERNAME, config.SMTP_PASSWORD)
        server.send_message(msg)
    logger.info("Sent '%s' to %s", subject, msg["To"])


def pick_recipient(user_email: Optional[str]) -> str:
    return config.NOTIFY_FORCE_TO or (user_email or "").strip()


def _link(path: str, **params) -> str:
    return f"{config.SITE_URL}{path}?{urlencode(params)}"


def send_verification_email(*, to_email: str, name: str, token: str) -> None:
    body = "\n".join(
        [
            f"Hi {name},",
            "",
            "Thanks for signing up. Please confirm your email address by opening the link below:",
            "",
            _link("/users/verify-email", token=token),
            "",
            "If you did not create an account, you can ignore this email.",
        ]
    )
    send_email(to_email=to_email, subject="Verify your email address", body=body)


def send_password_reset_email(*, to_email: str, name: str, token: str) -> None:
    body = "\n".join(
        [
            f"Hi {name},",
            "",
            "We received a request to reset your password. Use the link below to choose a new one:",
            "",
            _link("/reset-password", token=token),
            "",
            "If you did not ask for this, no action is needed.",
        ]
    )
    send_email(to_email=to_email, subject="Reset your password", body=body)


def send_order_confirmation_email(order) -> None:
    customer = order.customer
    lines = [
        f"Hi {customer.first_name},",
        "",
        f"Thank you for your order {order_number(order.id)}.",
        "",
    ]
    for item in order.items:
        lines.append(f"  {item.product_name} x {item.quantity}  ₹{item.total}")
    lines += [
        "",
        f"Subtotal: ₹{order.subtotal}",
    ]
    if order.coupon_code:
        lines.append(f"Discount ({order.coupon_code}): -₹{order.coupon_discount}")
    lines += [
        f"Shipping: ₹{order.shipping}",
        f"Tax: ₹{order.tax}",
        f"Total: ₹{order.total}",
        "",
        f"Payment ID: {order.payment_id or '-'}",
        "We will let you know when your order ships.",
    ]
    send_email(
        to_email=customer.email,
        subject=f"Order confirmation {order_number(order.id)}",
        body="\n".join(lines),
    )
