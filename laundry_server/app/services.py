# laundry_server/app/services.py
import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from . import config
from . import promos as promo_engine
from .db import SessionLocal
from .errors import (ValidationError, InvalidStatus, NotFound, Conflict, CapacityExceeded,
                     AlreadyTerminal, PromoRejected)
from .models import (Order, OrderItem, PromoCode, ORDER_STATUSES, TERMINAL_STATUSES,
                     PAYMENT_METHODS, PAYMENT_STATUSES, DISCOUNT_TYPES)
from .pricing import CartLine, calculate_summary, with_discount, recompute_total
from .repositories import OrderRepository, PromoRepository, UserProfileRepository, AuditRepository
from .tracking import OrderTracker
from .utils import KeyedLocks, new_order_number, to_money, utcnow, as_naive_utc

logger = logging.getLogger("laundry.orders")

# transitions on one order id are applied one at a time within this process
_ORDER_LOCKS = KeyedLocks()


@dataclass
class CreatedOrder:
    order: Order
    promo_applied: bool = False
    promo_error: Optional[str] = None


def _paged(rows, total, page, limit) -> dict:
    return {
        "count": len(rows),
        "total": total,
        "page": int(page),
        "pages": math.ceil(total / limit) if limit else 0,
        "items": rows,
    }


class OrderService:

    def __init__(self, db, tracker: Optional[OrderTracker] = None, session_factory=SessionLocal):
        self.db = db
        self.tracker = tracker or OrderTracker(strict=config.STRICT_TRANSITIONS)
        self.orders = OrderRepository(db)
        self.promos = PromoRepository(db, session_factory=session_factory)
        self.users = UserProfileRepository(db)
        self.audit = AuditRepository(db)

    # ---------------------------
    # Create
    # ---------------------------
    def create_order(self, customer_info: dict, items: list[dict], schedule: dict, payment_method: str,
                     promo_code: Optional[str] = None, user_id: Optional[int] = None,
                     express_charge=0) -> CreatedOrder:
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"invalid payment method: {payment_method}")

        lines = [CartLine(item.get("quantity"), item.get("unit_price"), item.get("service_id"))
                 for item in items]
        summary = calculate_summary(lines, express_charge=express_charge)

        promo = None
        if promo_code:
            promo = self.promos.find_by_code(promo_code)
            if promo is None:
                raise NotFound(f"invalid promo code: {promo_code}")
            prior_orders = self.orders.count_for_customer(user_id) if user_id is not None else None
            # eligibility is judged on the pre-discount subtotal
            check = promo_engine.validate(promo, user_id, summary.subtotal,
                                          service_ids=[line.service_id for line in lines],
                                          prior_orders=prior_orders)
            if not check.ok:
                raise PromoRejected(check.reason, check.message)
            summary = with_discount(summary, promo_engine.calculate_discount(promo, summary.subtotal))

        steps = self.tracker.initialize()
        order = None
        for attempt in range(1, config.ORDER_NUMBER_ATTEMPTS + 1):
            candidate = Order(
                order_number=new_order_number(),
                customer_id=user_id,
                customer_info=customer_info,
                pickup_date=schedule["pickup_date"],
                delivery_date=schedule["delivery_date"],
                time_slot=schedule["time_slot"],
                schedule_instructions=schedule.get("instructions"),
                subtotal=summary.subtotal,
                delivery_fee=summary.delivery_fee,
                express_charge=summary.express_charge,
                tax=summary.tax,
                discount=summary.discount,
                total=summary.total,
                payment_method=payment_method,
                payment_status="pending",
                status="pending",
                promo_code=promo.code if promo is not None else None,
                tracking_steps=steps,
                notes=[],
                items=[OrderItem(service_id=item.get("service_id"),
                                 service_name=item.get("service_name"),
                                 item_name=item.get("item_name"),
                                 quantity=int(item.get("quantity")),
                                 unit_price=to_money(item.get("unit_price")),
                                 instructions=item.get("instructions"))
                       for item in items],
            )
            try:
                order = self.orders.create(candidate)
                break
            except Conflict:
                logger.warning("order number collision on attempt %d, regenerating", attempt)
                if attempt == config.ORDER_NUMBER_ATTEMPTS:
                    raise

        result = CreatedOrder(order=order)
        if promo is not None:
            result = self._redeem(order, promo, user_id)

        if user_id is not None:
            # fire-and-forget: the order stands even if the profile update fails
            try:
                self.users.increment_order_stats(user_id, order.total)
            except Exception:
                self.db.rollback()
                logger.exception("failed to update order stats for user %s", user_id)

        self.audit.record("order", order.id, "create", user_id, order_number=order.order_number,
                          total=str(order.total), promo_code=order.promo_code)
        logger.info("order %s created (total %s)", order.order_number, order.total)
        return result

    def _redeem(self, order: Order, promo: PromoCode, user_id) -> CreatedOrder:
        try:
            promo_engine.record_usage(self.promos, promo, user_id, order.id, order.discount)
        except (CapacityExceeded, NotFound) as exc:
            # the order is kept; only the discount is withdrawn
            order.discount = Decimal("0.00")
            order.promo_code = None
            order.total = recompute_total(order)
            order = self.orders.update(order)
            return CreatedOrder(order=order, promo_applied=False, promo_error=exc.message)
        finally:
            self.db.expire(promo)
        return CreatedOrder(order=order, promo_applied=True)

    # ---------------------------
    # Read
    # ---------------------------
    def get_order(self, order_id: int) -> Order:
        order = self.orders.find_by_id(order_id)
        if order is None:
            raise NotFound("order not found")
        return order

    def get_by_number(self, order_number: str) -> Order:
        order = self.orders.find_by_number(order_number)
        if order is None:
            raise NotFound("order not found")
        return order

    def list_orders(self, customer_id=None, status=None, page: int = 1, limit: int = 10) -> dict:
        if status and status not in ORDER_STATUSES:
            raise InvalidStatus(f"invalid status: {status}")
        rows, total = self.orders.list(customer_id=customer_id, status=status, page=page, limit=limit)
        return _paged(rows, total, page, limit)

    # ---------------------------
    # Status changes
    # ---------------------------
    def set_status(self, order_id: int, new_status: str, actor=None) -> Order:
        with _ORDER_LOCKS.hold(order_id):
            order = self._load_for_update(order_id)
            if new_status not in ORDER_STATUSES:
                self.db.rollback()
                raise InvalidStatus(f"invalid status: {new_status}")
            return self._apply_status(order, new_status, actor)

    def cancel(self, order_id: int, requester_id=None) -> Order:
        with _ORDER_LOCKS.hold(order_id):
            order = self._load_for_update(order_id)
            if order.customer_id is not None and order.customer_id != requester_id:
                self.db.rollback()
                raise NotFound("order not found")
            if order.status in TERMINAL_STATUSES:
                self.db.rollback()
                raise AlreadyTerminal(f"order cannot be cancelled once {order.status}")
            return self._apply_status(order, "cancelled", requester_id)

    def _load_for_update(self, order_id: int) -> Order:
        order = self.orders.find_for_update(order_id)
        if order is None:
            self.db.rollback()
            raise NotFound("order not found")
        return order

    def _apply_status(self, order: Order, new_status: str, actor) -> Order:
        previous = order.status
        try:
            steps = self.tracker.transition(order.tracking_steps, previous, new_status)
        except ValidationError:
            self.db.rollback()
            raise
        order.status = new_status
        order.tracking_steps = steps
        if new_status == "delivered":
            order.actual_delivery = utcnow()
        order.total = recompute_total(order)
        order = self.orders.update(order)
        self.audit.record("order", order.id, "status", actor, from_status=previous, to_status=new_status)
        logger.info("order %s: %s -> %s", order.order_number, previous, new_status)
        return order

    # ---------------------------
    # Administrative edits
    # ---------------------------
    def set_payment_status(self, order_id: int, payment_status: str, actor=None) -> Order:
        if payment_status not in PAYMENT_STATUSES:
            raise ValidationError(f"invalid payment status: {payment_status}")
        order = self.get_order(order_id)
        order.payment_status = payment_status
        order = self.orders.update(order)
        self.audit.record("order", order.id, "payment", actor, payment_status=payment_status)
        return order

    def add_note(self, order_id: int, message: str, added_by=None) -> Order:
        if not (message or "").strip():
            raise ValidationError("note message is required")
        with _ORDER_LOCKS.hold(order_id):
            order = self._load_for_update(order_id)
            notes = list(order.notes or [])
            notes.append({"message": message.strip(), "added_by": added_by, "timestamp": utcnow().isoformat()})
            order.notes = notes
            return self.orders.update(order)

    def rate_order(self, order_id: int, rating: int, review: Optional[str] = None, requester_id=None) -> Order:
        if not 1 <= int(rating) <= 5:
            raise ValidationError("rating must be between 1 and 5")
        order = self.get_order(order_id)
        if order.customer_id is not None and order.customer_id != requester_id:
            raise NotFound("order not found")
        if order.status not in ("delivered", "completed"):
            raise ValidationError("only delivered orders can be rated")
        order.rating = int(rating)
        order.review = review
        return self.orders.update(order)

    def export_rows(self) -> list[dict]:
        rows = []
        for o in self.orders.all():
            info = o.customer_info or {}
            rows.append({
                "id": o.id,
                "order_number": o.order_number,
                "customer": f"{info.get('first_name', '')} {info.get('last_name', '')}".strip(),
                "phone": info.get("phone"),
                "status": o.status,
                "payment_method": o.payment_method,
                "payment_status": o.payment_status,
                "subtotal": float(o.subtotal),
                "discount": float(o.discount),
                "total": float(recompute_total(o)),
                "promo_code": o.promo_code,
                "pickup_date": o.pickup_date.isoformat() if o.pickup_date else None,
                "created_at": o.created_at.isoformat() if o.created_at else None,
            })
        return rows


class PromoService:

    EDITABLE = ("description", "discount_type", "discount_value", "max_discount", "min_order_amount",
                "max_usage", "max_usage_per_user", "valid_from", "valid_until", "is_active",
                "applicable_services", "excluded_services", "new_users_only", "existing_users_only")
    CLEARABLE = ("max_discount", "max_usage")

    def __init__(self, db, session_factory=SessionLocal):
        self.db = db
        self.promos = PromoRepository(db, session_factory=session_factory)
        self.orders = OrderRepository(db)
        self.audit = AuditRepository(db)

    @staticmethod
    def _check(promo: PromoCode) -> None:
        if promo.discount_type not in DISCOUNT_TYPES:
            raise ValidationError(f"invalid discount type: {promo.discount_type}")
        if promo.discount_value is None:
            raise ValidationError("discount value is required")
        if to_money(promo.discount_value) < 0:
            raise ValidationError("discount value cannot be negative")
        if promo.discount_type == "percentage" and to_money(promo.discount_value) > 100:
            raise ValidationError("percentage discount cannot exceed 100")
        if promo.discount_type == "fixed" and promo.max_discount is not None:
            raise ValidationError("a discount cap only applies to percentage promos")
        if promo.max_usage is not None and promo.max_usage < 1:
            raise ValidationError("max usage must be at least 1; leave it unset for unlimited")
        if promo.new_users_only and promo.existing_users_only:
            raise ValidationError("a promo cannot be limited to both new and existing users")
        if as_naive_utc(promo.valid_until) <= as_naive_utc(promo.valid_from):
            raise ValidationError("valid_until must be after valid_from")

    def create_promo(self, data: dict, actor=None) -> PromoCode:
        code = (data.get("code") or "").strip().upper()
        if not code.isalnum():
            raise ValidationError("promo code must be alphanumeric")
        if self.promos.find_by_code(code) is not None:
            raise Conflict(f"promo code {code} already exists")
        fields = {k: data[k] for k in self.EDITABLE if data.get(k) is not None}
        fields.setdefault("valid_from", utcnow())
        fields["valid_from"] = as_naive_utc(fields["valid_from"])
        if "valid_until" in fields:
            fields["valid_until"] = as_naive_utc(fields["valid_until"])
        promo = PromoCode(code=code, usage_count=0, **fields)
        promo.max_usage_per_user = promo.max_usage_per_user or 1
        promo.min_order_amount = to_money(promo.min_order_amount)
        if promo.valid_until is None:
            raise ValidationError("expiry date is required")
        self._check(promo)
        promo = self.promos.create(promo)
        self.audit.record("promo", promo.id, "create", actor, code=code)
        logger.info("promo %s created", code)
        return promo

    def get_promo(self, promo_id: int) -> PromoCode:
        promo = self.promos.find_by_id(promo_id)
        if promo is None:
            raise NotFound("promo code not found")
        return promo

    def list_promos(self, active=None, page: int = 1, limit: int = 10) -> dict:
        rows, total = self.promos.list(active=active, page=page, limit=limit)
        return _paged(rows, total, page, limit)

    def update_promo(self, promo_id: int, changes: dict, actor=None) -> PromoCode:
        promo = self.get_promo(promo_id)
        applied = []
        for key in self.EDITABLE:
            if key not in changes:
                continue
            value = changes[key]
            # only the caps may be cleared; None elsewhere means "leave as is"
            if value is None and key not in self.CLEARABLE:
                continue
            if key in ("valid_from", "valid_until"):
                value = as_naive_utc(value)
            setattr(promo, key, value)
            applied.append(key)
        if promo.discount_type == "fixed" and "max_discount" not in changes:
            promo.max_discount = None
        try:
            self._check(promo)
        except ValidationError:
            self.db.rollback()
            raise
        promo = self.promos.update(promo)
        self.audit.record("promo", promo.id, "update", actor, fields=applied)
        return promo

    def deactivate_promo(self, promo_id: int, actor=None) -> PromoCode:
        # promo codes are never deleted, only switched off
        promo = self.get_promo(promo_id)
        promo.is_active = False
        promo = self.promos.update(promo)
        self.audit.record("promo", promo.id, "deactivate", actor, is_active=False)
        return promo

    def preview(self, code: str, user_id=None, order_amount=0, service_ids=None):
        promo = self.promos.find_by_code(code)
        if promo is None:
            raise NotFound("invalid promo code")
        prior_orders = self.orders.count_for_customer(user_id) if user_id is not None else None
        check = promo_engine.validate(promo, user_id, order_amount, service_ids=service_ids,
                                      prior_orders=prior_orders)
        discount = promo_engine.calculate_discount(promo, order_amount) if check.ok else Decimal("0.00")
        return promo, check, discount

    def usage_stats(self, promo_id: int) -> dict:
        promo = self.get_promo(promo_id)
        usages = list(promo.usages)
        return {
            "total_usage": promo.usage_count,
            "max_usage": promo.max_usage,
            "remaining_usage": (promo.max_usage - promo.usage_count) if promo.max_usage is not None else "Unlimited",
            "total_discount_given": float(sum((to_money(u.discount_applied) for u in usages), Decimal("0.00"))),
            "unique_users": len({u.user_id for u in usages if u.user_id is not None}),
            "recent_usage": [
                {
                    "user_id": u.user_id,
                    "order_id": u.order_id,
                    "discount_applied": float(u.discount_applied),
                    "used_at": u.used_at.isoformat() if u.used_at else None,
                }
                for u in reversed(usages[-10:])
            ],
        }
