"""Coupons and discounts.

Both tables share one shape, so every function takes the model class
(``Coupon`` or ``Discount``) it should operate on.
"""
import datetime as dt
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Type, Union

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import Coupon, CouponUsage, Discount, DiscountUsage
from ..pricing import to_decimal

logger = logging.getLogger(__name__)

Promotion = Union[Coupon, Discount]
PromotionModel = Type[Union[Coupon, Discount]]

USAGE_MODELS = {Coupon: CouponUsage, Discount: DiscountUsage}
LABELS = {Coupon: "coupon", Discount: "discount"}
DISCOUNT_TYPES = ("percentage", "fixed")
# An explicit null on these means unlimited
CLEARABLE_FIELDS = ("max_discount_amount", "usage_limit")


def label_for(model: PromotionModel) -> str:
    return LABELS[model]


def _as_utc(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def _plain(value: Decimal) -> str:
    value = to_decimal(value)
    if value == value.to_integral_value():
        return str(value.quantize(Decimal("1")))
    return format(value.normalize(), "f")


def _normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def get_promotion(db: Session, model: PromotionModel, promotion_id: int):
    return db.query(model).filter(model.id == promotion_id).first()


def get_promotion_by_code(db: Session, model: PromotionModel, code: str, active_only: bool = False):
    query = db.query(model).filter(model.code == _normalize_code(code))
    if active_only:
        query = query.filter(model.is_active.is_(True))
    return query.first()


def get_promotions(
    db: Session,
    model: PromotionModel,
    *,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
):
    query = db.query(model)
    if is_active is not None:
        query = query.filter(model.is_active.is_(is_active))
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(model.code.ilike(pattern), model.description.ilike(pattern)))
    total = query.count()
    items = query.order_by(model.created_at.desc(), model.id.desc()).offset(offset).limit(limit).all()
    return items, total


def _check_rules(data: dict) -> None:
    if data["discount_type"] not in DISCOUNT_TYPES:
        raise ValueError('Invalid discount type. Must be "percentage" or "fixed"')
    value = to_decimal(data["discount_value"])
    if value <= 0:
        raise ValueError("Discount value must be greater than 0")
    if data["discount_type"] == "percentage" and value > 100:
        raise ValueError("Percentage discount cannot exceed 100%")
    if _as_utc(data["valid_to"]) <= _as_utc(data["valid_from"]):
        raise ValueError("Valid to date must be after valid from date")


def create_promotion(db: Session, model: PromotionModel, data: dict):
    data = {**data, "code": _normalize_code(data["code"])}
    if not data["code"]:
        raise ValueError("Code is required")
    _check_rules(data)
    if get_promotion_by_code(db, model, data["code"]):
        raise ValueError(f"A {label_for(model)} with this code already exists")

    promotion = model(**data)
    db.add(promotion)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValueError(f"A {label_for(model)} with this code already exists")
    db.refresh(promotion)
    return promotion


def update_promotion(db: Session, model: PromotionModel, promotion_id: int, update_data: dict):
    promotion = get_promotion(db, model, promotion_id)
    if not promotion:
        return None

    update_data = {k: v for k, v in update_data.items() if v is not None or k in CLEARABLE_FIELDS}
    if "code" in update_data:
        update_data["code"] = _normalize_code(update_data["code"])
        existing = get_promotion_by_code(db, model, update_data["code"])
        if existing and existing.id != promotion.id:
            raise ValueError(f"A {label_for(model)} with this code already exists")

    merged = {
        "discount_type": update_data.get("discount_type", promotion.discount_type),
        "discount_value": update_data.get("discount_value", promotion.discount_value),
        "valid_from": update_data.get("valid_from", promotion.valid_from),
        "valid_to": update_data.get("valid_to", promotion.valid_to),
    }
    _check_rules(merged)

    for key, value in update_data.items():
        setattr(promotion, key, value)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValueError(f"A {label_for(model)} with this code already exists")
    db.refresh(promotion)
    return promotion


def delete_promotion(db: Session, model: PromotionModel, promotion_id: int):
    promotion = get_promotion(db, model, promotion_id)
    if promotion:
        db.delete(promotion)
        db.commit()
    return promotion


def calculate_discount(promotion: Promotion, order_amount) -> Decimal:
    order_amount = to_decimal(order_amount)
    value = to_decimal(promotion.discount_value)
    if promotion.discount_type == "percentage":
        discount = order_amount * value / 100
        if promotion.max_discount_amount is not None:
            discount = min(discount, to_decimal(promotion.max_discount_amount))
    else:
        discount = value
    discount = min(discount, order_amount)
    return discount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def validate_promotion(
    db: Session,
    model: PromotionModel,
    code: str,
    order_amount,
    now: Optional[dt.datetime] = None,
) -> dict:
    """Check a code against an order amount.

    Returns ``{"valid", "message", "discount_amount", "promotion"}``; the first
    failing rule decides the message.
    """
    label = label_for(model)
    now = _as_utc(now) or dt.datetime.now(dt.timezone.utc)
    order_amount = to_decimal(order_amount)

    def invalid(message, promotion=None):
        return {"valid": False, "message": message, "discount_amount": Decimal("0"), "promotion": promotion}

    promotion = get_promotion_by_code(db, model, code)
    if not promotion:
        return invalid(f"Invalid {label} code")
    if not promotion.is_active:
        return invalid(f"This {label} is not active", promotion)
    if now < _as_utc(promotion.valid_from):
        return invalid(f"This {label} is not yet valid", promotion)
    if now > _as_utc(promotion.valid_to):
        return invalid(f"This {label} has expired", promotion)
    if order_amount < to_decimal(promotion.minimum_order_amount):
        return invalid(f"Minimum order amount of ₹{_plain(promotion.minimum_order_amount)} required", promotion)
    if promotion.usage_limit is not None and promotion.used_count >= promotion.usage_limit:
        return invalid(f"This {label} has reached its usage limit", promotion)

    discount = calculate_discount(promotion, order_amount)
    return {
        "valid": True,
        "message": f"{label.capitalize()} applied! You saved ₹{discount:.2f}",
        "discount_amount": discount,
        "promotion": promotion,
    }


def find_applicable_promotion(db: Session, code: str, order_amount, now: Optional[dt.datetime] = None) -> dict:
    """Validate a checkout code against discounts first, then coupons."""
    result = validate_promotion(db, Discount, code, order_amount, now=now)
    if result["valid"] or result["promotion"] is not None:
        return result
    return validate_promotion(db, Coupon, code, order_amount, now=now)


def record_usage(
    db: Session,
    promotion: Promotion,
    *,
    order_id: Optional[int],
    customer_email: Optional[str],
    discount_amount,
) -> None:
    usage_model = USAGE_MODELS[type(promotion)]
    promotion.usages.append(
        usage_model(
            order_id=order_id,
            customer_email=customer_email,
            discount_amount=to_decimal(discount_amount),
        )
    )
    promotion.used_count = type(promotion).used_count + 1
    db.commit()
