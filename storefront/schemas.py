from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"
    CUSTOMER = "customer"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# Statuses an admin may set by hand; "confirmed" is reserved for paid checkouts
ADMIN_ORDER_STATUSES = ["pending", "processing", "shipped", "delivered", "cancelled"]


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class Pagination(BaseModel):
    total: int
    limit: int
    offset: int
    has_more: bool


# -----------------------------
# Users
# -----------------------------

class UserOut(BaseModel):
    id: int
    name: str
    username: str
    email: EmailStr
    role: Role
    email_verified: bool
    image: Optional[str] = None
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class UserListResponse(BaseModel):
    users: List[UserOut]
    pagination: Pagination


class Token(BaseModel):
    access_token: str
    token_type: str


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    username: Optional[str] = Field(None, min_length=3, max_length=50)
    email: Optional[EmailStr] = None
    role: Optional[Role] = None
    email_verified: Optional[bool] = None
    image: Optional[str] = None

    model_config = ConfigDict(use_enum_values=True)


class RoleUpdate(BaseModel):
    role: Role

    model_config = ConfigDict(use_enum_values=True)


class VerificationUpdate(BaseModel):
    email_verified: bool = True


class AvatarUpdate(BaseModel):
    image: str = Field(..., min_length=1)
    user_id: Optional[int] = None


# -----------------------------
# Products
# -----------------------------

class ProductBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    category: str = Field(..., min_length=1, max_length=100)
    subcategory: Optional[str] = None
    price: Decimal = Field(..., gt=0)
    mrp: Decimal = Field(..., gt=0)
    stock: int = Field(0, ge=0)
    weight: int = Field(0, ge=0, description="Weight in grams")
    dimensions: Optional[str] = None
    main_image: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    tags: Optional[str] = None
    gst_percentage: Decimal = Field(Decimal("5"), ge=0, le=100)
    tax_inclusive: bool = False
    is_active: bool = True
    featured: bool = False


class ProductCreate(ProductBase):
    slug: Optional[str] = None


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    slug: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    price: Optional[Decimal] = Field(None, gt=0)
    mrp: Optional[Decimal] = Field(None, gt=0)
    stock: Optional[int] = Field(None, ge=0)
    weight: Optional[int] = Field(None, ge=0)
    dimensions: Optional[str] = None
    main_image: Optional[str] = None
    images: Optional[List[str]] = None
    tags: Optional[str] = None
    gst_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    tax_inclusive: Optional[bool] = None
    is_active: Optional[bool] = None
    featured: Optional[bool] = None


class ProductOut(ProductBase):
    id: str
    slug: Optional[str] = None
    sku: Optional[str] = None
    images: Optional[List[str]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ProductListResponse(BaseModel):
    products: List[ProductOut]
    pagination: Pagination
    categories: List[str] = []


class StockUpdate(BaseModel):
    stock: int = Field(..., ge=0)


# -----------------------------
# Customers
# -----------------------------

class CustomerIn(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field("", max_length=100)
    email: EmailStr
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = "India"


class CustomerOut(CustomerIn):
    id: int
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# -----------------------------
# Orders / checkout
# -----------------------------

class CartItem(BaseModel):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)


class QuoteRequest(BaseModel):
    items: List[CartItem] = Field(..., min_length=1)
    coupon_code: Optional[str] = None


class OrderItemOut(BaseModel):
    id: int
    product_id: Optional[str] = None
    product_name: str
    price: Decimal
    quantity: int
    total: Decimal

    model_config = {"from_attributes": True}


class OrderStatusUpdate(BaseModel):
    status: str
    notes: Optional[str] = None


class OrderHistoryOut(BaseModel):
    id: int
    status: str
    notes: Optional[str] = None
    changed_by: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# -----------------------------
# Coupons / discounts
# -----------------------------

class PromotionBase(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    description: str = ""
    discount_type: DiscountType
    discount_value: Decimal = Field(..., gt=0)
    minimum_order_amount: Decimal = Field(Decimal("0"), ge=0)
    max_discount_amount: Optional[Decimal] = Field(None, gt=0)
    is_active: bool = True
    valid_from: datetime
    valid_to: datetime
    usage_limit: Optional[int] = Field(None, gt=0)

    model_config = ConfigDict(use_enum_values=True)


class PromotionCreate(PromotionBase):
    pass


class PromotionUpdate(BaseModel):
    code: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(None, gt=0)
    minimum_order_amount: Optional[Decimal] = Field(None, ge=0)
    max_discount_amount: Optional[Decimal] = Field(None, gt=0)
    is_active: Optional[bool] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    usage_limit: Optional[int] = Field(None, gt=0)

    model_config = ConfigDict(use_enum_values=True)


class PromotionOut(BaseModel):
    id: int
    code: str
    description: str
    discount_type: DiscountType
    discount_value: Decimal
    minimum_order_amount: Decimal
    max_discount_amount: Optional[Decimal] = None
    is_active: bool
    valid_from: datetime
    valid_to: datetime
    usage_limit: Optional[int] = None
    used_count: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PromotionValidateRequest(BaseModel):
    code: str = Field(..., min_length=1)
    order_amount: Decimal = Field(..., ge=0)
    customer_email: Optional[EmailStr] = None


class PromotionValidateResponse(BaseModel):
    valid: bool
    message: str
    discount_amount: Decimal = Decimal("0")
    promotion: Optional[PromotionOut] = None


# -----------------------------
# Payments
# -----------------------------

class PaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    receipt: str = Field(..., min_length=1)
    currency: Optional[str] = None
    notes: Dict[str, Any] = Field(default_factory=dict)


class PaymentVerify(BaseModel):
    payment_intent_id: str = Field(..., min_length=1)
    customer: CustomerIn
    items: List[CartItem] = Field(..., min_length=1)
    coupon_code: Optional[str] = None
    notes: Optional[str] = None
