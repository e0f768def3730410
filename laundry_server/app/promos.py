# laundry_server/app/promos.py
"""Promo-code eligibility and discount rules.

``validate`` and ``calculate_discount`` are pure: they look only at the promo
row handed in (including its loaded usage history) and never touch the
database. Redemption goes through ``record_usage``, which delegates to the
repository's atomic conditional increment.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Union

from .errors import CapacityExceeded, NotFound
from .utils import to_money, utcnow, as_naive_utc

logger = logging.getLogger("laundry.promos")


class IneligibleReason(str, enum.Enum):
    NOT_ACTIVE = "NotActive"
    OUT_OF_WINDOW = "OutOfWindow"
    BELOW_MINIMUM = "BelowMinimum"
    USAGE_CAP_REACHED = "UsageCapReached"
    USER_CAP_REACHED = "UserCapReached"
    SERVICE_NOT_APPLICABLE = "ServiceNotApplicable"
    USER_NOT_ELIGIBLE = "UserNotEligible"


class RedemptionOutcome(str, enum.Enum):
    SUCCESS = "success"
    USAGE_CAP_REACHED = "UsageCapReached"
    USER_CAP_REACHED = "UserCapReached"


@dataclass(frozen=True)
class Eligible:
    ok = True
    message: str = "Promo code is valid"


@dataclass(frozen=True)
class Ineligible:
    reason: IneligibleReason
    message: str
    ok = False


Eligibility = Union[Eligible, Ineligible]


def user_usage_count(promo, user_id) -> int:
    return sum(1 for usage in (promo.usages or []) if usage.user_id == user_id)


def validate(promo, user_id=None, order_amount=0, *, now: Optional[datetime] = None,
             service_ids: Optional[Iterable[str]] = None,
             prior_orders: Optional[int] = None) -> Eligibility:
    now = as_naive_utc(now) if now is not None else utcnow()
    amount = to_money(order_amount)

    if not promo.is_active:
        return Ineligible(IneligibleReason.NOT_ACTIVE, "Promo code is not active")

    valid_from = as_naive_utc(promo.valid_from) if promo.valid_from else None
    valid_until = as_naive_utc(promo.valid_until) if promo.valid_until else None
    if (valid_from and now < valid_from) or (valid_until and now > valid_until):
        return Ineligible(IneligibleReason.OUT_OF_WINDOW, "Promo code has expired or is not yet valid")

    minimum = to_money(promo.min_order_amount)
    if amount < minimum:
        return Ineligible(IneligibleReason.BELOW_MINIMUM, f"Minimum order amount is {minimum}")

    if promo.max_usage is not None and (promo.usage_count or 0) >= promo.max_usage:
        return Ineligible(IneligibleReason.USAGE_CAP_REACHED, "Promo code usage limit exceeded")

    if user_id is not None:
        per_user = promo.max_usage_per_user if promo.max_usage_per_user is not None else 1
        if user_usage_count(promo, user_id) >= per_user:
            return Ineligible(IneligibleReason.USER_CAP_REACHED, "You have already used this promo code")

    if service_ids is not None:
        services = set(service_ids)
        excluded = set(promo.excluded_services or [])
        allowed = set(promo.applicable_services or [])
        if services & excluded or (allowed and not services & allowed):
            return Ineligible(IneligibleReason.SERVICE_NOT_APPLICABLE,
                              "Promo code does not apply to the selected services")

    if prior_orders is not None:
        if promo.new_users_only and prior_orders > 0:
            return Ineligible(IneligibleReason.USER_NOT_ELIGIBLE, "Promo code is for new customers only")
        if promo.existing_users_only and prior_orders == 0:
            return Ineligible(IneligibleReason.USER_NOT_ELIGIBLE, "Promo code is for returning customers only")

    return Eligible()


def calculate_discount(promo, order_amount) -> Decimal:
    amount = to_money(order_amount)
    if amount <= 0:
        return Decimal("0.00")
    value = to_money(promo.discount_value)
    if promo.discount_type == "percentage":
        discount = amount * value / Decimal(100)
        if promo.max_discount is not None and discount > to_money(promo.max_discount):
            discount = to_money(promo.max_discount)
    else:
        discount = value
    return to_money(min(discount, amount))


def record_usage(repository, promo, user_id, order_id, discount_applied) -> None:
    outcome = repository.conditional_increment_usage(promo.id, user_id, order_id, discount_applied)
    if outcome is None:
        raise NotFound(f"promo code {promo.code} no longer exists")
    if outcome is not RedemptionOutcome.SUCCESS:
        logger.warning("redemption of %s refused for order %s: %s", promo.code, order_id, outcome.value)
        raise CapacityExceeded(outcome)
    logger.info("promo %s redeemed on order %s (discount %s)", promo.code, order_id, discount_applied)
