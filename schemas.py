"""
Database Schemas

Jewellery storefront models.
Each Pydantic model corresponds to a MongoDB collection (lowercased class name).
Documents are stored with snake_case field names; the API speaks camelCase.
"""
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Annotated, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, PlainSerializer, field_validator, model_validator
from pydantic.alias_generators import to_camel

CENTS = Decimal("0.01")


def to_money(value) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


# Decimal internally, plain JSON number on the wire
Money = Annotated[
    Decimal,
    AfterValidator(to_money),
    PlainSerializer(float, return_type=float, when_used="json"),
]


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# naive datetimes from clients are taken as UTC
UtcDatetime = Annotated[datetime, AfterValidator(to_utc)]


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=True)


class OrderStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class CouponType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


# ----- Products -----

class ProductIn(ApiModel):
    name: str = Field(..., min_length=1, description="Product name")
    description: str = Field("", description="Product description")
    price: Money = Field(..., gt=0, description="Price in INR")
    images: List[str] = Field(..., min_length=1, description="Ordered image URLs")
    category: Optional[str] = Field(None, description="MALE, FEMALE, METAL_ART or FEATURED")
    type: Optional[str] = Field(None, description="e.g. 'rings', 'earrings', 'chains'")
    stock: Optional[int] = Field(None, ge=0, description="Available quantity, absent means untracked")

    @field_validator("type")
    @classmethod
    def lowercase_type(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else v


class ProductUpdate(ApiModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[Money] = Field(None, gt=0)
    images: Optional[List[str]] = Field(None, min_length=1)
    category: Optional[str] = None
    type: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)


class Product(ProductIn):
    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ----- Cart -----

class CartItemIn(ApiModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    custom_size: Optional[str] = None
    custom_image: Optional[str] = Field(None, description="URL of the customer's reference image")


class CartQuantityUpdate(ApiModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    custom_size: Optional[str] = None


class CartItem(ApiModel):
    id: str
    user_id: str
    product_id: str
    quantity: int = Field(..., ge=1)
    custom_size: Optional[str] = None
    custom_image: Optional[str] = None
    product: Optional[Product] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StockIssue(ApiModel):
    product_id: str
    product_name: str
    available: int
    requested: int


# ----- Favourites -----

class FavoriteIn(ApiModel):
    product_id: str = Field(..., min_length=1)


class Favorite(ApiModel):
    id: str
    user_id: str
    product_id: str
    product: Optional[Product] = None
    created_at: Optional[datetime] = None


# ----- Coupons -----

class CouponIn(ApiModel):
    code: str = Field(..., min_length=1)
    type: CouponType
    value: Money = Field(..., gt=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    valid_from: UtcDatetime
    valid_until: UtcDatetime
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()

    @model_validator(mode="after")
    def check_bounds(self):
        if self.type == CouponType.PERCENTAGE and self.value > 100:
            raise ValueError("percentage value must be at most 100")
        if self.valid_from >= self.valid_until:
            raise ValueError("validUntil must be after validFrom")
        return self


class CouponUpdate(ApiModel):
    code: Optional[str] = Field(None, min_length=1)
    type: Optional[CouponType] = None
    value: Optional[Money] = Field(None, gt=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    valid_from: Optional[UtcDatetime] = None
    valid_until: Optional[UtcDatetime] = None
    is_active: Optional[bool] = None

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v else v


class Coupon(ApiModel):
    id: str
    code: str
    type: CouponType
    value: Money
    is_active: bool = True
    usage_limit: Optional[int] = None
    used_count: int = Field(0, ge=0)
    valid_from: UtcDatetime
    valid_until: UtcDatetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CouponQuote(ApiModel):
    coupon: Coupon
    amount: Money
    discount: Money
    total: Money


# ----- Orders -----

class ShippingInfo(ApiModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    notes: str = ""


class CheckoutRequest(ApiModel):
    shipping_info: ShippingInfo
    coupon_code: Optional[str] = None


class OrderItem(ApiModel):
    product_id: str
    name: str
    image: Optional[str] = None
    price: Money
    quantity: int = Field(..., ge=1)
    custom_size: Optional[str] = None
    custom_image: Optional[str] = None


class PaymentDetails(ApiModel):
    gateway_order_id: Optional[str] = None
    payment_id: Optional[str] = None
    signature: Optional[str] = None
    verified_at: Optional[datetime] = None


class Order(ApiModel):
    id: str
    user_id: str
    items: List[OrderItem]
    subtotal: Money
    shipping: Money
    discount: Money = Decimal("0.00")
    total_amount: Money
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_details: PaymentDetails = Field(default_factory=PaymentDetails)
    shipping_info: ShippingInfo
    applied_coupon_id: Optional[str] = None
    applied_coupon_code: Optional[str] = None
    coupon_reconciliation: Optional[str] = None
    order_date: datetime
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    tracking_number: Optional[str] = None
    admin_notes: Optional[str] = None


class OrderStatusUpdate(ApiModel):
    status: OrderStatus
    tracking_number: Optional[str] = None
    admin_notes: Optional[str] = None


class OrderStats(ApiModel):
    total: int = 0
    pending: int = 0
    completed: int = 0
    shipped: int = 0
    delivered: int = 0
    cancelled: int = 0
    total_revenue: Money = Decimal("0.00")


class AdminOrderList(ApiModel):
    orders: List[Order]
    stats: OrderStats


# ----- Payments -----

class PaymentIntentRequest(ApiModel):
    order_id: str


class PaymentIntent(ApiModel):
    order_id: str
    gateway_order_id: str
    amount: int = Field(..., description="Amount in paise")
    currency: str
    key_id: Optional[str] = None


class PaymentVerification(ApiModel):
    order_id: str
    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)


# ----- Admin statistics -----

class SalesStats(ApiModel):
    total_orders: int = 0
    total_earnings: Money = Decimal("0.00")
    last_updated: Optional[datetime] = None


class DailySalesStats(ApiModel):
    date: str
    orders: int = 0
    earnings: Money = Decimal("0.00")
    last_updated: Optional[datetime] = None


class AdminStats(ApiModel):
    overall: SalesStats
    daily: List[DailySalesStats]
