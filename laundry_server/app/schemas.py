# laundry_server/app/schemas.py
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Literal
from pydantic import BaseModel, Field

PaymentMethod = Literal["card", "upi", "cod"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]
DiscountType = Literal["percentage", "fixed"]


class AddressIn(BaseModel):
    street: str
    area: str
    city: str
    pincode: str
    landmark: Optional[str] = None


class CustomerInfoIn(BaseModel):
    first_name: str
    last_name: str
    email: str
    phone: str
    address: AddressIn


# quantity / price rules are enforced by the pricing layer (400, not 422)
class OrderItemIn(BaseModel):
    service_id: str
    service_name: Optional[str] = None
    item_name: str
    quantity: int
    unit_price: Decimal
    instructions: Optional[str] = None


class ScheduleIn(BaseModel):
    pickup_date: date
    delivery_date: date
    time_slot: str
    instructions: Optional[str] = None


class OrderIn(BaseModel):
    customer_info: CustomerInfoIn
    items: list[OrderItemIn]
    schedule: ScheduleIn
    payment_method: PaymentMethod
    promo_code: Optional[str] = None
    express_charge: Decimal = Decimal("0")


class StatusIn(BaseModel):
    status: str


class PaymentStatusIn(BaseModel):
    payment_status: PaymentStatus


class NoteIn(BaseModel):
    message: str = Field(..., min_length=1)


class RatingIn(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = None


class PromoValidateIn(BaseModel):
    promo_code: str = Field(..., min_length=1)
    order_amount: Decimal = Decimal("0")
    service_ids: Optional[list[str]] = None


class PromoIn(BaseModel):
    code: str = Field(..., min_length=1)
    description: str
    discount_type: DiscountType
    discount_value: Decimal = Field(..., ge=0)
    max_discount: Optional[Decimal] = Field(None, ge=0)
    min_order_amount: Decimal = Field(Decimal("0"), ge=0)
    max_usage: Optional[int] = Field(None, ge=1)
    max_usage_per_user: int = Field(1, ge=1)
    valid_from: Optional[datetime] = None
    valid_until: datetime
    is_active: bool = True
    applicable_services: list[str] = []
    excluded_services: list[str] = []
    new_users_only: bool = False
    existing_users_only: bool = False


class PromoUpdate(BaseModel):
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(None, ge=0)
    max_discount: Optional[Decimal] = Field(None, ge=0)
    min_order_amount: Optional[Decimal] = Field(None, ge=0)
    max_usage: Optional[int] = Field(None, ge=1)
    max_usage_per_user: Optional[int] = Field(None, ge=1)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: Optional[bool] = None
    applicable_services: Optional[list[str]] = None
    excluded_services: Optional[list[str]] = None
    new_users_only: Optional[bool] = None
    existing_users_only: Optional[bool] = None
