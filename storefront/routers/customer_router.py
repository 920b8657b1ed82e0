from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..auth import get_current_admin, get_current_staff
from ..crud import customers as crud
from ..database import get_db
from ..models import User
from ..schemas import CustomerOut, Pagination
from ..slugs import order_number

router = APIRouter(prefix="/customers", tags=["Customers"])


@router.get("/")
def list_customers(
    search: Optional[str] = Query(None, description="**Search** by name or email"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_staff: User = Depends(get_current_staff),
    db: Session = Depends(get_db),
):
    rows, total = crud.get_customers(db, search=search, limit=limit, offset=offset)
    return {
        "customers": [
            {
                **CustomerOut.model_validate(r["customer"]).model_dump(),
                "order_count": r["order_count"],
                "total_spent": r["total_spent"],
            }
            for r in rows
        ],
        "pagination": Pagination(total=total, limit=limit, offset=offset, has_more=offset + limit < total),
    }


@router.get("/{customer_id}")
def get_customer(
    customer_id: int,
    current_staff: User = Depends(get_current_staff),
    db: Session = Depends(get_db),
):
    customer = crud.get_customer(db, customer_id)
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")
    recent = crud.get_customer_recent_orders(db, customer_id)
    for o in recent:
        o["order_number"] = order_number(o["id"])
    return {
        "customer": CustomerOut.model_validate(customer),
        "recent_orders": recent,
    }


@router.delete("/{customer_id}")
def delete_customer(
    customer_id: int,
    current_admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    """Delete a customer with all of their orders (Admin only)."""
    customer = crud.get_customer(db, customer_id)
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")
    email = customer.email
    crud.delete_customer(db, customer_id)
    return {"success": True, "message": f"Customer {email} deleted"}
