# laundry_server/app/pricing.py
from dataclasses import dataclass, asdict, replace
from decimal import Decimal
from typing import Iterable, NamedTuple

from .errors import InvalidCart
from .utils import to_money, round_half_up

# business rules, not constants of nature
FREE_DELIVERY_ABOVE = Decimal("500")
DELIVERY_FEE = Decimal("50")
TAX_RATE = Decimal("0.18")


class CartLine(NamedTuple):
    quantity: int
    unit_price: Decimal
    service_id: str | None = None


@dataclass(frozen=True)
class PriceSummary:
    subtotal: Decimal
    delivery_fee: Decimal
    express_charge: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal

    def as_dict(self) -> dict:
        return {k: float(v) for k, v in asdict(self).items()}


def compute_total(subtotal, delivery_fee, express_charge, tax, discount) -> Decimal:
    total = to_money(subtotal) + to_money(delivery_fee) + to_money(express_charge) \
        + to_money(tax) - to_money(discount)
    return max(total, Decimal("0.00"))


def calculate_summary(items: Iterable[CartLine], discount=0, express_charge=0) -> PriceSummary:
    lines = list(items)
    if not lines:
        raise InvalidCart("at least one item is required")
    subtotal = Decimal("0.00")
    for line in lines:
        if line.quantity is None or int(line.quantity) < 1:
            raise InvalidCart("quantity must be at least 1")
        price = to_money(line.unit_price)
        if price < 0:
            raise InvalidCart("unit price cannot be negative")
        subtotal += int(line.quantity) * price

    discount = to_money(discount)
    express_charge = to_money(express_charge)
    if discount < 0:
        raise InvalidCart("discount cannot be negative")
    if express_charge < 0:
        raise InvalidCart("express charge cannot be negative")

    # strictly greater: a subtotal of exactly 500 still pays delivery
    delivery_fee = Decimal("0.00") if subtotal > FREE_DELIVERY_ABOVE else to_money(DELIVERY_FEE)
    tax = to_money(round_half_up(TAX_RATE * (subtotal + delivery_fee)))
    total = compute_total(subtotal, delivery_fee, express_charge, tax, discount)
    return PriceSummary(subtotal=subtotal, delivery_fee=delivery_fee, express_charge=express_charge,
                        tax=tax, discount=discount, total=total)


def with_discount(summary: PriceSummary, discount) -> PriceSummary:
    """Same cart, different discount; everything but the total is unchanged."""
    discount = to_money(discount)
    if discount < 0:
        raise InvalidCart("discount cannot be negative")
    total = compute_total(summary.subtotal, summary.delivery_fee, summary.express_charge,
                          summary.tax, discount)
    return replace(summary, discount=discount, total=total)


def recompute_total(order) -> Decimal:
    # never trust a stored total; derive it from the stored components
    return compute_total(order.subtotal, order.delivery_fee, order.express_charge,
                         order.tax, order.discount)
