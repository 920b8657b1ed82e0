"""Routes for coupons and discounts; both resources expose the same API."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ..auth import get_current_staff
from ..crud import promotions as crud
from ..database import get_db
from ..models import Coupon, Discount, User
from ..schemas import (
    Pagination,
    PromotionCreate,
    PromotionOut,
    PromotionUpdate,
    PromotionValidateRequest,
    PromotionValidateResponse,
)


def make_router(model: crud.PromotionModel) -> APIRouter:
    label = crud.label_for(model)
    plural = f"{label}s"
    router = APIRouter(prefix=f"/{plural}", tags=[plural.capitalize()])

    @router.get("/")
    def list_promotions(
        is_active: Optional[bool] = Query(None),
        search: Optional[str] = Query(None, description="**Search** in code or description"),
        limit: int = Query(50, ge=1, le=200),
        offset: int = Query(0, ge=0),
        current_staff: User = Depends(get_current_staff),
        db: Session = Depends(get_db),
    ):
        items, total = crud.get_promotions(db, model, is_active=is_active, search=search, limit=limit, offset=offset)
        return {
            plural: [PromotionOut.model_validate(p) for p in items],
            "pagination": Pagination(total=total, limit=limit, offset=offset, has_more=offset + limit < total),
        }

    @router.post("/", response_model=PromotionOut, status_code=status.HTTP_201_CREATED)
    def create_promotion(
        body: PromotionCreate,
        current_staff: User = Depends(get_current_staff),
        db: Session = Depends(get_db),
    ):
        try:
            return crud.create_promotion(db, model, body.model_dump())
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @router.post("/validate", response_model=PromotionValidateResponse)
    def validate_promotion(body: PromotionValidateRequest, db: Session = Depends(get_db)):
        result = crud.validate_promotion(db, model, body.code, body.order_amount)
        return {
            "valid": result["valid"],
            "message": result["message"],
            "discount_amount": result["discount_amount"],
            "promotion": result["promotion"] if result["valid"] else None,
        }

    @router.get("/{promotion_id}", response_model=PromotionOut)
    def get_promotion(
        promotion_id: int,
        current_staff: User = Depends(get_current_staff),
        db: Session = Depends(get_db),
    ):
        promotion = crud.get_promotion(db, model, promotion_id)
        if not promotion:
            raise HTTPException(status_code=404, detail=f"{label.capitalize()} not found")
        return promotion

    @router.patch("/{promotion_id}", response_model=PromotionOut)
    def update_promotion(
        promotion_id: int,
        body: PromotionUpdate,
        current_staff: User = Depends(get_current_staff),
        db: Session = Depends(get_db),
    ):
        try:
            promotion = crud.update_promotion(db, model, promotion_id, body.model_dump(exclude_unset=True))
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        if not promotion:
            raise HTTPException(status_code=404, detail=f"{label.capitalize()} not found")
        return promotion

    @router.delete("/{promotion_id}")
    def delete_promotion(
        promotion_id: int,
        current_staff: User = Depends(get_current_staff),
        db: Session = Depends(get_db),
    ):
        promotion = crud.delete_promotion(db, model, promotion_id)
        if not promotion:
            raise HTTPException(status_code=404, detail=f"{label.capitalize()} not found")
        return {"success": True, "message": f"{label.capitalize()} deleted successfully"}

    return router


coupon_router = make_router(Coupon)
discount_router = make_router(Discount)
