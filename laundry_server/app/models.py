# laundry_server/app/models.py
from sqlalchemy import (Column, Integer, String, DateTime, Date, Text, Boolean, Numeric,
                        ForeignKey, JSON)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .db import Base

ORDER_STATUSES = (
    "pending",
    "confirmed",
    "picked-up",
    "in-progress",
    "ready",
    "out-for-delivery",
    "delivered",
    "completed",
    "cancelled",
)
TERMINAL_STATUSES = ("delivered", "completed", "cancelled")
PAYMENT_METHODS = ("card", "upi", "cod")
PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded")
DISCOUNT_TYPES = ("percentage", "fixed")

Money = Numeric(12, 2)


# customer profile; only the running counters are touched by order creation
class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=True)
    email = Column(String, unique=True, index=True, nullable=True)
    total_orders = Column(Integer, nullable=False, default=0)
    total_spent = Column(Money, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Order(Base):
    __tablename__ = "orders"
    id = Column(Integer, primary_key=True)
    order_number = Column(String, unique=True, index=True, nullable=False)
    customer_id = Column(Integer, index=True, nullable=True)
    # snapshot at order time: name, email, phone, address{...}
    customer_info = Column(JSON, nullable=False)

    pickup_date = Column(Date, nullable=False)
    delivery_date = Column(Date, nullable=False)
    time_slot = Column(String, nullable=False)
    schedule_instructions = Column(Text, nullable=True)

    subtotal = Column(Money, nullable=False, default=0)
    delivery_fee = Column(Money, nullable=False, default=0)
    express_charge = Column(Money, nullable=False, default=0)
    tax = Column(Money, nullable=False, default=0)
    discount = Column(Money, nullable=False, default=0)
    total = Column(Money, nullable=False, default=0)

    payment_method = Column(String, nullable=False)
    payment_status = Column(String, nullable=False, default="pending")
    status = Column(String, index=True, nullable=False, default="pending")
    promo_code = Column(String, nullable=True)
    tracking_steps = Column(JSON, nullable=False, default=list)

    actual_delivery = Column(DateTime(timezone=True), nullable=True)
    rating = Column(Integer, nullable=True)
    review = Column(Text, nullable=True)
    notes = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan",
                         order_by="OrderItem.id")


class OrderItem(Base):
    __tablename__ = "order_items"
    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), index=True, nullable=False)
    service_id = Column(String, nullable=False)
    service_name = Column(String, nullable=True)
    item_name = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Money, nullable=False)
    instructions = Column(Text, nullable=True)

    order = relationship("Order", back_populates="items")


class PromoCode(Base):
    __tablename__ = "promo_codes"
    id = Column(Integer, primary_key=True)
    code = Column(String, unique=True, index=True, nullable=False)
    description = Column(Text, nullable=False)
    discount_type = Column(String, nullable=False)  # 'percentage' | 'fixed'
    discount_value = Column(Money, nullable=False)
    max_discount = Column(Money, nullable=True)
    min_order_amount = Column(Money, nullable=False, default=0)
    max_usage = Column(Integer, nullable=True)  # None means unlimited
    usage_count = Column(Integer, nullable=False, default=0)
    max_usage_per_user = Column(Integer, nullable=False, default=1)
    valid_from = Column(DateTime, nullable=False, server_default=func.now())
    valid_until = Column(DateTime, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    applicable_services = Column(JSON, nullable=False, default=list)
    excluded_services = Column(JSON, nullable=False, default=list)
    new_users_only = Column(Boolean, nullable=False, default=False)
    existing_users_only = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    usages = relationship("PromoUsage", back_populates="promo", order_by="PromoUsage.id")


# append-only redemption history
class PromoUsage(Base):
    __tablename__ = "promo_usages"
    id = Column(Integer, primary_key=True)
    promo_id = Column(Integer, ForeignKey("promo_codes.id"), index=True, nullable=False)
    user_id = Column(Integer, index=True, nullable=True)
    order_id = Column(Integer, nullable=True)
    discount_applied = Column(Money, nullable=False, default=0)
    used_at = Column(DateTime(timezone=True), server_default=func.now())

    promo = relationship("PromoCode", back_populates="usages")


# audit trail, written best-effort; "changes" holds the fields the action touched
class AuditEvent(Base):
    __tablename__ = "audit_events"
    id = Column(Integer, primary_key=True)
    entity = Column(String, nullable=False)  # 'order' | 'promo'
    entity_id = Column(Integer, index=True, nullable=False)
    action = Column(String, nullable=False)
    actor_id = Column(Integer, nullable=True)  # None for anonymous callers
    changes = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
