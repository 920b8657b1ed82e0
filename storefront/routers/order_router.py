import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ..auth import get_current_admin, get_current_staff
from ..crud import analytics
from ..crud import orders as crud
from ..database import get_db
from ..models import Order, User
from ..schemas import ADMIN_ORDER_STATUSES, OrderHistoryOut, OrderItemOut, OrderStatus, OrderStatusUpdate, Pagination, QuoteRequest
from ..slugs import order_number

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/orders",
    tags=["Orders"]
)


def serialize_quote(quote: dict) -> dict:
    return {
        "items": [
            {k: line[k] for k in ("product_id", "product_name", "price", "quantity", "total")}
            for line in quote["items"]
        ],
        "subtotal": quote["subtotal"],
        "tax": quote["tax"],
        "shipping": quote["shipping"],
        "discount": quote["discount"],
        "total": quote["total"],
        "coupon_code": quote["coupon_code"],
        "coupon_message": quote["coupon_message"],
    }


def _order_summary(order: Order, customer, item_count: int) -> dict:
    return {
        "id": order.id,
        "order_number": order_number(order.id),
        "customer_id": customer.id,
        "customer_name": f"{customer.first_name} {customer.last_name}".strip(),
        "customer_email": customer.email,
        "item_count": item_count,
        "subtotal": order.subtotal,
        "coupon_code": order.coupon_code,
        "coupon_discount": order.coupon_discount,
        "total": order.total,
        "status": order.status,
        "payment_status": order.payment_status,
        "created_at": order.created_at,
    }


def order_detail(order: Order) -> dict:
    customer = order.customer
    return {
        **_order_summary(order, customer, len(order.items)),
        "shipping": order.shipping,
        "tax": order.tax,
        "payment_method": order.payment_method,
        "payment_id": order.payment_id,
        "notes": order.notes,
        "updated_at": order.updated_at,
        "customer": {
            "first_name": customer.first_name,
            "last_name": customer.last_name,
            "email": customer.email,
            "phone": customer.phone,
            "address": customer.address,
            "city": customer.city,
            "state": customer.state,
            "postal_code": customer.postal_code,
            "country": customer.country,
        },
        "items": [OrderItemOut.model_validate(i) for i in order.items],
    }


@router.post("/quote")
def quote_order(body: QuoteRequest, db: Session = Depends(get_db)):
    """Price a cart server-side (catalog prices, tax, shipping, promotion code)."""
    try:
        quote = crud.quote_cart(db, [i.model_dump() for i in body.items], body.coupon_code)
    except crud.OrderError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return serialize_quote(quote)


@router.get("/")
def list_orders(
    search: Optional[str] = Query(None, description="**Search** by customer name, email or order number"),
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_staff: User = Depends(get_current_staff),
    db: Session = Depends(get_db),
):
    rows, total = crud.get_orders(
        db,
        search=search,
        status=status_filter.value if status_filter else None,
        limit=limit,
        offset=offset,
    )
    return {
        "orders": [_order_summary(r["order"], r["customer"], r["item_count"]) for r in rows],
        "pagination": Pagination(total=total, limit=limit, offset=offset, has_more=offset + limit < total),
        "statuses": [s.value for s in OrderStatus],
        "stats": crud.get_order_stats(db),
    }


@router.get("/recent")
def recent_orders(
    limit: int = Query(10, ge=1, le=100),
    current_staff: User = Depends(get_current_staff),
    db: Session = Depends(get_db),
):
    orders = analytics.get_recent_orders(db, limit=limit)
    for o in orders:
        o["order_number"] = order_number(o["id"])
    return {"orders": orders}


@router.get("/monthly-stats")
def monthly_stats(
    days: str = Query("365", description="**Window** in days (positive integer)"),
    current_staff: User = Depends(get_current_staff),
    db: Session = Depends(get_db),
):
    if not days.isdigit() or int(days) <= 0:
        raise HTTPException(status_code=400, detail="Invalid days parameter. Must be a positive integer.")
    return {"days": int(days), "data": analytics.get_sales_by_period(db, days=int(days))}


@router.get("/product-sales")
def product_sales(
    days: str = Query("30", description="**Window** in days (positive integer)"),
    current_staff: User = Depends(get_current_staff),
    db: Session = Depends(get_db),
):
    if not days.isdigit() or int(days) <= 0:
        raise HTTPException(status_code=400, detail="Invalid days parameter. Must be a positive integer.")
    return {"days": int(days), "data": analytics.get_product_sales(db, days=int(days))}


@router.get("/{order_id}")
def get_order(
    order_id: int,
    current_staff: User = Depends(get_current_staff),
    db: Session = Depends(get_db),
):
    db_order = crud.get_order(db, order_id)
    if not db_order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order_detail(db_order)


@router.get("/{order_id}/history", response_model=list[OrderHistoryOut])
def get_order_history(
    order_id: int,
    current_staff: User = Depends(get_current_staff),
    db: Session = Depends(get_db),
):
    if not crud.get_order(db, order_id):
        raise HTTPException(status_code=404, detail="Order not found")
    return crud.get_order_history(db, order_id)


@router.patch("/{order_id}/status")
def update_order_status(
    order_id: int,
    body: OrderStatusUpdate,
    current_admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    if body.status not in ADMIN_ORDER_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid status. Must be one of: {', '.join(ADMIN_ORDER_STATUSES)}",
        )
    try:
        db_order = crud.update_order_status(
            db, order_id, body.status, notes=body.notes, changed_by=current_admin.id
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if not db_order:
        raise HTTPException(status_code=404, detail="Order not found")
    logger.info("Order %s set to %s by user %s", order_id, body.status, current_admin.id)
    return {"success": True, "order": order_detail(db_order)}


@router.post("/{order_id}/cancel")
def cancel_order(
    order_id: int,
    current_staff: User = Depends(get_current_staff),
    db: Session = Depends(get_db),
):
    db_order = crud.cancel_order(db, order_id, changed_by=current_staff.id)
    if not db_order:
        raise HTTPException(status_code=404, detail="Order not found")
    return {"success": True, "message": "Order cancelled successfully", "order": order_detail(db_order)}


@router.delete("/{order_id}")
def delete_order(
    order_id: int,
    current_admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    db_order = crud.delete_order(db, order_id)
    if not db_order:
        raise HTTPException(status_code=404, detail="Order not found")
    return {"success": True, "message": f"Order {order_number(order_id)} deleted"}
