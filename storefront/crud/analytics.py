import datetime as dt
from collections import OrderedDict

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import Customer, Order, OrderItem
from ..pricing import money, to_decimal


def _since(days: int) -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc) - dt.timedelta(days=days)


def _period_format(days: int) -> str:
    if days <= 7:
        return "%Y-%m-%d"
    if days <= 30:
        return "%Y-W%W"
    return "%Y-%m"


def get_sales_by_period(db: Session, days: int = 365) -> list[dict]:
    """Order count and revenue bucketed by day, week or month.

    The bucket size follows the window: up to a week is daily, up to a month
    weekly, anything longer monthly. Cancelled orders are excluded.
    """
    fmt = _period_format(days)
    rows = (
        db.query(Order.created_at, Order.total)
        .filter(Order.created_at >= _since(days), Order.status != "cancelled")
        .order_by(Order.created_at)
        .all()
    )
    buckets: "OrderedDict[str, dict]" = OrderedDict()
    for created_at, total in rows:
        period = created_at.strftime(fmt)
        bucket = buckets.setdefault(period, {"period": period, "order_count": 0, "total_revenue": to_decimal(0)})
        bucket["order_count"] += 1
        bucket["total_revenue"] += to_decimal(total)
    return [{**b, "total_revenue": money(b["total_revenue"])} for b in buckets.values()]


def get_product_sales(db: Session, days: int = 30, limit: int = 10) -> list[dict]:
    revenue = func.sum(OrderItem.total).label("total_revenue")
    rows = (
        db.query(
            OrderItem.product_name,
            func.sum(OrderItem.quantity).label("total_quantity"),
            revenue,
            func.count(func.distinct(OrderItem.order_id)).label("order_count"),
        )
        .join(Order, Order.id == OrderItem.order_id)
        .filter(Order.created_at >= _since(days), Order.status != "cancelled")
        .group_by(OrderItem.product_name)
        .order_by(revenue.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "product_name": name,
            "total_quantity": int(quantity or 0),
            "total_revenue": money(total),
            "order_count": int(count or 0),
        }
        for name, quantity, total, count in rows
    ]


def get_recent_orders(db: Session, limit: int = 10) -> list[dict]:
    rows = (
        db.query(Order, Customer)
        .join(Customer, Order.customer_id == Customer.id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "id": order.id,
            "customer_name": f"{customer.first_name} {customer.last_name}".strip(),
            "customer_email": customer.email,
            "total": order.total,
            "status": order.status,
            "created_at": order.created_at,
        }
        for order, customer in rows
    ]
