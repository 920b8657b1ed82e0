from __future__ import annotations

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

import stripe

from . import config

logger = logging.getLogger(__name__)


class PaymentError(Exception):
    pass


class PaymentConfigError(PaymentError):
    pass


def _stripe_required() -> None:
    if not config.STRIPE_SECRET_KEY:
        raise PaymentConfigError("Stripe is not configured. Set STRIPE_SECRET_KEY and STRIPE_PUBLISHABLE_KEY.")
    stripe.api_key = config.STRIPE_SECRET_KEY


def to_minor_units(amount: Any) -> int:
    # Convert decimal currency to integer minor units (e.g., paise)
    dec = Decimal(str(amount))
    minor = (dec * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(minor)


def from_minor_units(amount: Optional[int]) -> Decimal:
    return (Decimal(int(amount or 0)) / 100).quantize(Decimal("0.01"))


def create_payment_intent(amount: Any, receipt: str, currency: Optional[str] = None, notes: Optional[dict] = None):
    _stripe_required()
    metadata = {str(k): str(v) for k, v in (notes or {}).items()}
    metadata["receipt"] = receipt
    try:
        return stripe.PaymentIntent.create(
            amount=to_minor_units(amount),
            currency=(currency or config.STRIPE_CURRENCY).lower(),
            automatic_payment_methods={"enabled": True},
            metadata=metadata,
            description=f"Receipt {receipt}",
        )
    except stripe.StripeError as e:
        logger.error("PaymentIntent creation failed for %s: %s", receipt, e)
        raise PaymentError(f"Failed to create payment: {e}") from e


def retrieve_payment_intent(payment_intent_id: str):
    _stripe_required()
    try:
        return stripe.PaymentIntent.retrieve(payment_intent_id)
    except stripe.StripeError as e:
        logger.error("PaymentIntent %s lookup failed: %s", payment_intent_id, e)
        raise PaymentError(f"Failed to fetch payment: {e}") from e


def construct_webhook_event(payload: bytes, sig_header: Optional[str]):
    """Verify the Stripe-Signature header and decode the event."""
    _stripe_required()
    if not config.STRIPE_WEBHOOK_SECRET:
        raise PaymentConfigError("STRIPE_WEBHOOK_SECRET is not configured")
    if not sig_header:
        raise PaymentError("Missing Stripe-Signature header")
    try:
        return stripe.Webhook.construct_event(
            payload=payload,
            sig_header=sig_header,
            secret=config.STRIPE_WEBHOOK_SECRET,
        )
    except (ValueError, stripe.SignatureVerificationError) as e:
        raise PaymentError(f"Webhook signature verification failed: {str(e)}") from e
