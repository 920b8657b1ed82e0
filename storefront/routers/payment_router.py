import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import config, emailer, payments
from ..crud import orders as order_crud
from ..database import get_db
from ..schemas import PaymentCreate, PaymentVerify
from ..slugs import order_number

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def _raise_for_payment_error(e: payments.PaymentError):
    if isinstance(e, payments.PaymentConfigError):
        raise HTTPException(status_code=500, detail=str(e))
    raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


def _field(obj, key):
    """Read a key from a Stripe event object or a plain dict."""
    try:
        return obj[key]
    except (KeyError, TypeError):
        return None


def _verified_response(db_order, email_sent: bool) -> dict:
    return {
        "success": True,
        "order_id": db_order.id,
        "order_number": order_number(db_order.id),
        "customer_id": db_order.customer_id,
        "payment_id": db_order.payment_id,
        "email_sent": email_sent,
        "redirect_url": "/order-success?" + urlencode({"orderId": db_order.id, "paymentId": db_order.payment_id}),
    }


@router.get("/config")
def payment_config():
    return {"publishable_key": config.STRIPE_PUBLISHABLE_KEY, "currency": config.STRIPE_CURRENCY}


@router.post("/create", status_code=status.HTTP_201_CREATED)
def create_payment(body: PaymentCreate):
    """Create a Stripe PaymentIntent the storefront confirms with Stripe.js."""
    try:
        intent = payments.create_payment_intent(body.amount, body.receipt, currency=body.currency, notes=body.notes)
    except payments.PaymentError as e:
        _raise_for_payment_error(e)
    return {
        "success": True,
        "payment_intent_id": intent.id,
        "client_secret": intent.client_secret,
        "amount": intent.amount,
        "currency": intent.currency,
        "receipt": body.receipt,
    }


@router.post("/verify")
def verify_payment(body: PaymentVerify, db: Session = Depends(get_db)):
    """Turn a succeeded PaymentIntent into an order.

    Safe to call more than once for the same payment.
    """
    existing = order_crud.get_order_by_payment_id(db, body.payment_intent_id)
    if existing:
        return _verified_response(existing, email_sent=False)

    try:
        intent = payments.retrieve_payment_intent(body.payment_intent_id)
    except payments.PaymentError as e:
        _raise_for_payment_error(e)
    if intent.status != "succeeded":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Payment verification failed")

    try:
        quote = order_crud.quote_cart(db, [i.model_dump() for i in body.items], body.coupon_code)
    except order_crud.OrderError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if payments.to_minor_units(quote["total"]) != intent.amount:
        logger.error(
            "Payment %s amount %s does not match order total %s", intent.id, intent.amount, quote["total"]
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Payment amount does not match order total")

    try:
        db_order = order_crud.create_order(
            db,
            body.customer.model_dump(),
            quote,
            payment_status="completed",
            payment_method="stripe",
            payment_id=intent.id,
            notes=body.notes,
        )
    except order_crud.OrderError as e:
        logger.error("Payment %s captured but order could not be placed: %s", intent.id, e)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except IntegrityError:
        # Another request placed the order for this payment first
        db.rollback()
        existing = order_crud.get_order_by_payment_id(db, intent.id)
        if not existing:
            raise
        return _verified_response(existing, email_sent=False)

    email_sent = True
    try:
        emailer.send_order_confirmation_email(db_order)
    except Exception:
        email_sent = False
        logger.exception("Failed to send confirmation email for order %s", db_order.id)

    logger.info("Order %s placed for payment %s", db_order.id, intent.id)
    return _verified_response(db_order, email_sent=email_sent)


@router.post("/webhook", include_in_schema=False)
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """Stripe webhook endpoint.

    Configure this URL in Stripe (or via stripe-cli) and set STRIPE_WEBHOOK_SECRET.
    """
    payload = await request.body()
    try:
        event = payments.construct_webhook_event(payload, request.headers.get("stripe-signature"))
    except payments.PaymentConfigError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except payments.PaymentError as e:
        raise HTTPException(status_code=400, detail=str(e))

    event_type = _field(event, "type")
    data_object = _field(_field(event, "data"), "object")
    payment_id = _field(data_object, "id")

    if event_type == "payment_intent.succeeded" and payment_id:
        if not order_crud.mark_payment_status(db, payment_id, "completed"):
            logger.info("Payment %s succeeded before its order was placed", payment_id)
    elif event_type == "payment_intent.payment_failed" and payment_id:
        last_err = _field(data_object, "last_payment_error")
        logger.warning("Payment %s failed: %s", payment_id, _field(last_err, "message"))
        order_crud.mark_payment_status(db, payment_id, "failed")

    return {"received": True}
