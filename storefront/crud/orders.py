import logging
import re
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..models import Customer, Order, OrderItem, OrderStatusHistory, Product
from ..pricing import calculate_cart_totals, money, to_decimal
from ..schemas import ADMIN_ORDER_STATUSES
from .customers import upsert_customer
from .products import StockError, process_stock_deduction, restore_stock
from .promotions import find_applicable_promotion, record_usage

logger = logging.getLogger(__name__)

_ORDER_NUMBER = re.compile(r"^(?:ORD-?)?0*(\d+)$", re.IGNORECASE)


class OrderError(Exception):
    pass


def quote_cart(db: Session, items: Iterable[dict], coupon_code: Optional[str] = None) -> dict:
    """Price a cart from catalog data.

    Quantities of repeated products are merged. An invalid promotion code does
    not fail the quote; its message is returned with a zero discount.
    """
    merged: dict[str, int] = {}
    for item in items:
        pid = str(item["product_id"])
        merged[pid] = merged.get(pid, 0) + int(item["quantity"])

    lines = []
    for pid, qty in merged.items():
        product = db.query(Product).filter(Product.id == pid, Product.is_active.is_(True)).first()
        if product is None:
            raise OrderError(f"Product {pid} not found or inactive")
        lines.append(
            {
                "product_id": product.id,
                "product_name": product.name,
                "price": money(product.price),
                "quantity": qty,
                "total": money(to_decimal(product.price) * qty),
                "weight": product.weight or 0,
                "gst_percentage": product.gst_percentage,
                "tax_inclusive": bool(product.tax_inclusive),
            }
        )

    totals = calculate_cart_totals(lines)
    quote = {
        "items": lines,
        "coupon_code": None,
        "coupon_message": None,
        "promotion": None,
        **totals,
    }
    if coupon_code:
        result = find_applicable_promotion(db, coupon_code, totals["subtotal"])
        quote["coupon_message"] = result["message"]
        if result["valid"]:
            quote.update(calculate_cart_totals(lines, discount=result["discount_amount"]))
            quote["coupon_code"] = result["promotion"].code
            quote["promotion"] = result["promotion"]
    return quote


def create_order(
    db: Session,
    customer_data: dict,
    quote: dict,
    *,
    payment_status: str = "pending",
    payment_method: Optional[str] = None,
    payment_id: Optional[str] = None,
    notes: Optional[str] = None,
) -> Order:
    """Deduct stock, then record the customer, order and line items.

    Stock is committed before the order rows are written; if anything after
    that fails the deducted quantities are put back and the error re-raised.
    """
    items = quote["items"]
    try:
        process_stock_deduction(db, items)
    except StockError as e:
        raise OrderError(f"Stock validation failed: {e}") from e

    try:
        customer = upsert_customer(db, customer_data)
        status = "confirmed" if payment_status == "completed" else "pending"
        db_order = Order(
            customer_id=customer.id,
            subtotal=quote["subtotal"],
            coupon_code=quote.get("coupon_code"),
            coupon_discount=quote.get("discount") or Decimal("0"),
            shipping=quote["shipping"],
            tax=quote["tax"],
            total=quote["total"],
            status=status,
            payment_status=payment_status,
            payment_method=payment_method,
            payment_id=payment_id,
            notes=notes,
        )
        db.add(db_order)
        db.flush()  # Get order ID without committing

        for item in items:
            db.add(
                OrderItem(
                    order_id=db_order.id,
                    product_id=item["product_id"],
                    product_name=item["product_name"],
                    price=item["price"],
                    quantity=item["quantity"],
                    total=money(to_decimal(item["price"]) * item["quantity"]),
                )
            )
        db.add(OrderStatusHistory(order_id=db_order.id, status=status, notes="Order placed"))
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Order creation failed, restoring stock")
        restore_stock(db, items)
        raise

    promotion = quote.get("promotion")
    if promotion is not None and quote.get("discount"):
        try:
            record_usage(
                db,
                promotion,
                order_id=db_order.id,
                customer_email=customer_data.get("email"),
                discount_amount=quote["discount"],
            )
        except Exception:
            db.rollback()
            logger.exception("Failed to record usage of %s for order %s", quote.get("coupon_code"), db_order.id)

    db.refresh(db_order)
    return db_order


def get_order(db: Session, order_id: int) -> Optional[Order]:
    return db.query(Order).filter(Order.id == order_id).first()


def get_order_by_payment_id(db: Session, payment_id: str) -> Optional[Order]:
    return db.query(Order).filter(Order.payment_id == payment_id).first()


def get_orders(
    db: Session,
    *,
    search: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[dict], int]:
    item_count = (
        db.query(func.count(OrderItem.id))
        .filter(OrderItem.order_id == Order.id)
        .correlate(Order)
        .scalar_subquery()
    )
    query = db.query(Order, Customer, item_count.label("item_count")).join(Customer, Order.customer_id == Customer.id)
    if status:
        query = query.filter(Order.status == status)
    if search:
        pattern = f"%{search}%"
        conditions = [
            Customer.first_name.ilike(pattern),
            Customer.last_name.ilike(pattern),
            Customer.email.ilike(pattern),
            (Customer.first_name + " " + Customer.last_name).ilike(pattern),
        ]
        number = _ORDER_NUMBER.match(search.strip())
        if number:
            conditions.append(Order.id == int(number.group(1)))
        query = query.filter(or_(*conditions))

    total = query.count()
    rows = query.order_by(Order.created_at.desc(), Order.id.desc()).offset(offset).limit(limit).all()
    return [{"order": o, "customer": c, "item_count": int(n or 0)} for o, c, n in rows], total


def get_order_stats(db: Session) -> dict:
    total_orders = db.query(func.count(Order.id)).scalar() or 0
    revenue = (
        db.query(func.coalesce(func.sum(Order.total), 0))
        .filter(Order.status != "cancelled")
        .scalar()
    )
    pending = db.query(func.count(Order.id)).filter(Order.status == "pending").scalar() or 0
    completed = db.query(func.count(Order.id)).filter(Order.status == "delivered").scalar() or 0
    return {
        "total_orders": int(total_orders),
        "total_revenue": money(revenue),
        "pending_orders": int(pending),
        "completed_orders": int(completed),
    }


def _item_lines(db_order: Order) -> list[dict]:
    return [{"product_id": i.product_id, "quantity": i.quantity} for i in db_order.items]


def update_order_status(
    db: Session,
    order_id: int,
    status: str,
    *,
    notes: Optional[str] = None,
    changed_by: Optional[int] = None,
) -> Optional[Order]:
    if status not in ADMIN_ORDER_STATUSES:
        raise ValueError(f"Invalid status. Must be one of: {', '.join(ADMIN_ORDER_STATUSES)}")
    if status == "cancelled":
        return cancel_order(db, order_id, notes=notes, changed_by=changed_by)

    db_order = get_order(db, order_id)
    if not db_order:
        return None
    if db_order.status == "cancelled":
        raise ValueError("Cancelled orders cannot change status")
    db_order.status = status
    db.add(OrderStatusHistory(order_id=db_order.id, status=status, notes=notes, changed_by=changed_by))
    db.commit()
    db.refresh(db_order)
    return db_order


def cancel_order(
    db: Session,
    order_id: int,
    *,
    notes: Optional[str] = None,
    changed_by: Optional[int] = None,
) -> Optional[Order]:
    """Cancel an order and put its stock back.

    Cancelling an already cancelled order is a no-op.
    """
    db_order = get_order(db, order_id)
    if not db_order:
        return None
    if db_order.status == "cancelled":
        return db_order

    db_order.status = "cancelled"
    db.add(OrderStatusHistory(order_id=db_order.id, status="cancelled", notes=notes, changed_by=changed_by))
    db.commit()

    failed = restore_stock(db, _item_lines(db_order))
    if failed:
        logger.warning("Order %s cancelled but stock was not restored for %s", order_id, failed)
    db.refresh(db_order)
    return db_order


def delete_order(db: Session, order_id: int) -> Optional[Order]:
    db_order = get_order(db, order_id)
    if not db_order:
        return None

    # Cancelled orders already gave their stock back
    if db_order.status != "cancelled":
        failed = restore_stock(db, _item_lines(db_order))
        if failed:
            logger.warning("Deleting order %s without restoring stock for %s", order_id, failed)

    db.delete(db_order)
    db.commit()
    return db_order


def get_order_history(db: Session, order_id: int) -> list[OrderStatusHistory]:
    return (
        db.query(OrderStatusHistory)
        .filter(OrderStatusHistory.order_id == order_id)
        .order_by(OrderStatusHistory.id)
        .all()
    )


def mark_payment_status(db: Session, payment_id: str, payment_status: str) -> Optional[Order]:
    """Apply a gateway-reported payment outcome to the order paid with it."""
    db_order = get_order_by_payment_id(db, payment_id)
    if not db_order:
        return None
    if db_order.payment_status == payment_status:
        return db_order
    db_order.payment_status = payment_status
    if payment_status == "completed" and db_order.status == "pending":
        db_order.status = "confirmed"
        db.add(OrderStatusHistory(order_id=db_order.id, status="confirmed", notes="Payment confirmed"))
    db.commit()
    db.refresh(db_order)
    return db_order
