"""
Shared fixtures for the laundry order backend tests.

The database URL is pointed at a throwaway SQLite file before any application
module is imported; every test gets a freshly created schema.
"""

import os
import tempfile
from datetime import date, timedelta
from decimal import Decimal

_TMP_DIR = tempfile.mkdtemp(prefix="laundry-tests-")
os.environ["LAUNDRY_DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"

import pytest

from laundry_server.app.db import SessionLocal, init_db, drop_db
from laundry_server.app.models import PromoCode, User
from laundry_server.app.utils import utcnow


# ═══════════════════════════════════════════════════════════════════════════
#  Sample payloads
# ═══════════════════════════════════════════════════════════════════════════

CUSTOMER = {
    "first_name": "Asha",
    "last_name": "Rao",
    "email": "asha@example.com",
    "phone": "9876543210",
    "address": {"street": "12 MG Road", "area": "Indiranagar", "city": "Bengaluru", "pincode": "560038"},
}

SCHEDULE = {
    "pickup_date": date(2026, 11, 2),
    "delivery_date": date(2026, 11, 4),
    "time_slot": "Morning (9 AM - 12 PM)",
}

# subtotal 450: two shirts at 100 and one suit at 250
CART = [
    {"service_id": "wash-iron", "service_name": "Wash & Iron", "item_name": "Shirt",
     "quantity": 2, "unit_price": Decimal("100")},
    {"service_id": "dry-clean", "service_name": "Dry Clean", "item_name": "Suit",
     "quantity": 1, "unit_price": Decimal("250")},
]


# ═══════════════════════════════════════════════════════════════════════════
#  Database fixtures
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def db():
    init_db()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        drop_db()


@pytest.fixture
def client(db):
    from fastapi.testclient import TestClient
    from laundry_server.app.api import app

    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_promo(db):
    def _make(**overrides) -> PromoCode:
        now = utcnow()
        fields = dict(
            code="FIRST20",
            description="20% off your first order",
            discount_type="percentage",
            discount_value=Decimal("20"),
            max_discount=Decimal("200"),
            min_order_amount=Decimal("300"),
            max_usage=None,
            usage_count=0,
            max_usage_per_user=1,
            valid_from=now - timedelta(days=1),
            valid_until=now + timedelta(days=30),
            is_active=True,
            applicable_services=[],
            excluded_services=[],
            new_users_only=False,
            existing_users_only=False,
        )
        fields.update(overrides)
        promo = PromoCode(**fields)
        db.add(promo)
        db.commit()
        db.refresh(promo)
        return promo
    return _make


@pytest.fixture
def make_user(db):
    def _make(**overrides) -> User:
        fields = dict(name="Asha Rao", email=None, total_orders=0, total_spent=Decimal("0"))
        fields.update(overrides)
        user = User(**fields)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make
