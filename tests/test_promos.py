"""
Tests for promo-code eligibility and discount rules (no database).
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from laundry_server.app import promos
from laundry_server.app.errors import CapacityExceeded, NotFound
from laundry_server.app.models import PromoCode, PromoUsage
from laundry_server.app.promos import IneligibleReason, RedemptionOutcome

NOW = datetime(2026, 10, 18, 12, 0, 0)


def promo(**overrides) -> PromoCode:
    fields = dict(
        id=1,
        code="FIRST20",
        description="20% off",
        discount_type="percentage",
        discount_value=Decimal("20"),
        max_discount=Decimal("200"),
        min_order_amount=Decimal("300"),
        max_usage=None,
        usage_count=0,
        max_usage_per_user=1,
        valid_from=NOW - timedelta(days=7),
        valid_until=NOW + timedelta(days=7),
        is_active=True,
        applicable_services=[],
        excluded_services=[],
        new_users_only=False,
        existing_users_only=False,
    )
    usages = overrides.pop("usages", [])
    fields.update(overrides)
    p = PromoCode(**fields)
    p.usages = [PromoUsage(user_id=uid, discount_applied=Decimal("10")) for uid in usages]
    return p


def reason(result):
    assert not result.ok
    return result.reason


class TestValidate:

    def test_eligible(self):
        assert promos.validate(promo(), 7, 450, now=NOW).ok

    def test_inactive_checked_first(self):
        p = promo(is_active=False, valid_until=NOW - timedelta(days=1))
        assert reason(promos.validate(p, None, 0, now=NOW)) is IneligibleReason.NOT_ACTIVE

    def test_expired(self):
        p = promo(valid_until=NOW - timedelta(seconds=1))
        assert reason(promos.validate(p, None, 450, now=NOW)) is IneligibleReason.OUT_OF_WINDOW

    def test_not_yet_valid(self):
        p = promo(valid_from=NOW + timedelta(hours=1))
        assert reason(promos.validate(p, None, 450, now=NOW)) is IneligibleReason.OUT_OF_WINDOW

    def test_window_bounds_are_inclusive(self):
        p = promo(valid_from=NOW, valid_until=NOW)
        assert promos.validate(p, None, 450, now=NOW).ok

    def test_below_minimum(self):
        assert reason(promos.validate(promo(), None, "299.99", now=NOW)) is IneligibleReason.BELOW_MINIMUM

    def test_usage_cap(self):
        p = promo(max_usage=5, usage_count=5)
        assert reason(promos.validate(p, None, 450, now=NOW)) is IneligibleReason.USAGE_CAP_REACHED

    def test_unlimited_usage(self):
        assert promos.validate(promo(max_usage=None, usage_count=10_000), None, 450, now=NOW).ok

    def test_user_cap(self):
        p = promo(usages=[7])
        assert reason(promos.validate(p, 7, 450, now=NOW)) is IneligibleReason.USER_CAP_REACHED

    def test_user_cap_is_per_user(self):
        p = promo(usages=[7])
        assert promos.validate(p, 8, 450, now=NOW).ok

    def test_anonymous_skips_user_cap(self):
        assert promos.validate(promo(usages=[7]), None, 450, now=NOW).ok

    def test_higher_per_user_cap(self):
        p = promo(usages=[7, 7], max_usage_per_user=3)
        assert promos.validate(p, 7, 450, now=NOW).ok

    def test_global_cap_before_user_cap(self):
        p = promo(usages=[7], max_usage=1, usage_count=1)
        assert reason(promos.validate(p, 7, 450, now=NOW)) is IneligibleReason.USAGE_CAP_REACHED

    def test_excluded_service(self):
        p = promo(excluded_services=["dry-clean"])
        result = promos.validate(p, None, 450, now=NOW, service_ids=["wash-iron", "dry-clean"])
        assert reason(result) is IneligibleReason.SERVICE_NOT_APPLICABLE

    def test_applicable_services(self):
        p = promo(applicable_services=["wash-iron"])
        assert promos.validate(p, None, 450, now=NOW, service_ids=["wash-iron"]).ok
        assert reason(promos.validate(p, None, 450, now=NOW, service_ids=["dry-clean"])) \
            is IneligibleReason.SERVICE_NOT_APPLICABLE

    def test_new_users_only(self):
        p = promo(new_users_only=True)
        assert promos.validate(p, 7, 450, now=NOW, prior_orders=0).ok
        assert reason(promos.validate(p, 7, 450, now=NOW, prior_orders=2)) is IneligibleReason.USER_NOT_ELIGIBLE

    def test_existing_users_only(self):
        p = promo(existing_users_only=True)
        assert reason(promos.validate(p, 7, 450, now=NOW, prior_orders=0)) is IneligibleReason.USER_NOT_ELIGIBLE

    def test_aware_datetimes(self):
        from datetime import timezone
        assert promos.validate(promo(), None, 450, now=NOW.replace(tzinfo=timezone.utc)).ok


class TestCalculateDiscount:

    def test_percentage(self):
        assert promos.calculate_discount(promo(), 450) == Decimal("90")

    def test_percentage_cap(self):
        p = promo(discount_value=Decimal("50"), max_discount=Decimal("200"))
        assert promos.calculate_discount(p, 1000) == Decimal("200")

    def test_percentage_without_cap(self):
        p = promo(discount_value=Decimal("50"), max_discount=None)
        assert promos.calculate_discount(p, 1000) == Decimal("500")

    def test_fixed(self):
        p = promo(discount_type="fixed", discount_value=Decimal("100"), max_discount=None)
        assert promos.calculate_discount(p, 450) == Decimal("100")

    @pytest.mark.parametrize("discount_type,value,amount", [
        ("fixed", "100", "60"),
        ("percentage", "100", "75.50"),
        ("fixed", "0", "10"),
        ("percentage", "150", "40"),
    ])
    def test_never_exceeds_amount(self, discount_type, value, amount):
        p = promo(discount_type=discount_type, discount_value=Decimal(value), max_discount=None)
        assert promos.calculate_discount(p, amount) <= Decimal(amount)

    def test_zero_amount(self):
        assert promos.calculate_discount(promo(), 0) == 0


class FakeRepo:

    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = []

    def conditional_increment_usage(self, promo_id, user_id, order_id, discount):
        self.calls.append((promo_id, user_id, order_id, discount))
        return self.outcome


class TestRecordUsage:

    def test_success(self):
        repo = FakeRepo(RedemptionOutcome.SUCCESS)
        promos.record_usage(repo, promo(), 7, 42, Decimal("90"))
        assert repo.calls == [(1, 7, 42, Decimal("90"))]

    def test_cap_reached(self):
        with pytest.raises(CapacityExceeded) as exc:
            promos.record_usage(FakeRepo(RedemptionOutcome.USER_CAP_REACHED), promo(), 7, 42, 90)
        assert exc.value.outcome is RedemptionOutcome.USER_CAP_REACHED

    def test_promo_gone(self):
        with pytest.raises(NotFound):
            promos.record_usage(FakeRepo(None), promo(), 7, 42, 90)
