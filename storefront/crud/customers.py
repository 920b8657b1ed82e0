from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..models import Customer, Order, OrderItem

CUSTOMER_FIELDS = ("first_name", "last_name", "phone", "address", "city", "state", "postal_code", "country")


def get_customer(db: Session, customer_id: int) -> Optional[Customer]:
    return db.query(Customer).filter(Customer.id == customer_id).first()


def get_customer_by_email(db: Session, email: str) -> Optional[Customer]:
    return (
        db.query(Customer)
        .filter(func.lower(Customer.email) == (email or "").strip().lower())
        .first()
    )


def upsert_customer(db: Session, customer_data: dict) -> Customer:
    """Create the customer or refresh contact details of the existing one.

    Flushes only; the caller owns the transaction.
    """
    email = customer_data["email"].strip().lower()
    customer = get_customer_by_email(db, email)
    if customer is None:
        customer = Customer(email=email)
        db.add(customer)
    for field in CUSTOMER_FIELDS:
        value = customer_data.get(field)
        if value is not None:
            setattr(customer, field, value)
    db.flush()
    return customer


def get_customers(
    db: Session,
    *,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[dict], int]:
    order_count = func.count(Order.id).label("order_count")
    total_spent = func.coalesce(func.sum(Order.total), 0).label("total_spent")

    query = db.query(Customer, order_count, total_spent).outerjoin(Order, Order.customer_id == Customer.id)
    count_query = db.query(Customer)
    if search:
        pattern = f"%{search}%"
        condition = or_(
            Customer.first_name.ilike(pattern),
            Customer.last_name.ilike(pattern),
            Customer.email.ilike(pattern),
            (Customer.first_name + " " + Customer.last_name).ilike(pattern),
        )
        query = query.filter(condition)
        count_query = count_query.filter(condition)

    rows = (
        query.group_by(Customer.id)
        .order_by(Customer.last_name, Customer.first_name)
        .offset(offset)
        .limit(limit)
        .all()
    )
    customers = [
        {"customer": customer, "order_count": int(count or 0), "total_spent": spent}
        for customer, count, spent in rows
    ]
    return customers, count_query.count()


def get_customer_recent_orders(db: Session, customer_id: int, limit: int = 20) -> list[dict]:
    item_count = func.count(OrderItem.id).label("item_count")
    rows = (
        db.query(Order, item_count)
        .outerjoin(OrderItem, OrderItem.order_id == Order.id)
        .filter(Order.customer_id == customer_id)
        .group_by(Order.id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "id": order.id,
            "created_at": order.created_at,
            "total": order.total,
            "status": order.status,
            "item_count": int(count or 0),
        }
        for order, count in rows
    ]


def delete_customer(db: Session, customer_id: int) -> Optional[Customer]:
    """Delete a customer together with their orders, items and status history."""
    customer = get_customer(db, customer_id)
    if customer:
        db.delete(customer)
        db.commit()
    return customer
