"""
End-to-end tests through the FastAPI app.
"""

from datetime import timedelta

from laundry_server.app import api
from laundry_server.app.utils import utcnow

from conftest import CUSTOMER


def order_payload(**overrides):
    payload = {
        "customer_info": CUSTOMER,
        "items": [
            {"service_id": "wash-iron", "item_name": "Shirt", "quantity": 2, "unit_price": 100},
            {"service_id": "dry-clean", "item_name": "Suit", "quantity": 1, "unit_price": 250},
        ],
        "schedule": {"pickup_date": "2026-11-02", "delivery_date": "2026-11-04",
                     "time_slot": "Morning (9 AM - 12 PM)"},
        "payment_method": "cod",
    }
    payload.update(overrides)
    return payload


def promo_payload(**overrides):
    payload = {
        "code": "first20",
        "description": "20% off your first order",
        "discount_type": "percentage",
        "discount_value": 20,
        "max_discount": 200,
        "min_order_amount": 300,
        "valid_from": (utcnow() - timedelta(days=1)).isoformat(),
        "valid_until": (utcnow() + timedelta(days=30)).isoformat(),
    }
    payload.update(overrides)
    return payload


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


class TestOrders:

    def test_create_and_fetch(self, client):
        res = client.post("/api/orders", json=order_payload())
        assert res.status_code == 201
        order = res.json()["order"]
        assert order["summary"] == {"subtotal": 450.0, "delivery_fee": 50.0, "express_charge": 0.0,
                                    "tax": 90.0, "discount": 0.0, "total": 590.0}
        assert order["status"] == "pending"
        assert len(order["tracking_steps"]) == 6

        by_id = client.get(f"/api/orders/{order['id']}").json()
        by_number = client.get(f"/api/orders/number/{order['order_number']}").json()
        assert by_id["order_number"] == by_number["order_number"] == order["order_number"]

    def test_create_with_promo(self, client):
        assert client.post("/api/promos", json=promo_payload()).status_code == 201
        res = client.post("/api/orders", json=order_payload(promo_code="FIRST20"),
                          headers={"X-User-Id": "7"})
        body = res.json()
        assert res.status_code == 201
        assert body["promo_applied"] is True
        assert body["order"]["summary"]["discount"] == 90.0
        assert body["order"]["summary"]["total"] == 500.0
        assert body["order"]["customer_id"] == 7

        again = client.post("/api/orders", json=order_payload(promo_code="FIRST20"),
                            headers={"X-User-Id": "7"})
        assert again.status_code == 400
        assert again.json()["reason"] == "UserCapReached"

    def test_empty_cart(self, client):
        res = client.post("/api/orders", json=order_payload(items=[]))
        assert res.status_code == 400
        assert "item" in res.json()["detail"]

    def test_unknown_promo(self, client):
        assert client.post("/api/orders", json=order_payload(promo_code="NOPE")).status_code == 404

    def test_missing_order(self, client):
        assert client.get("/api/orders/999").status_code == 404

    def test_status_and_cancel(self, client):
        order = client.post("/api/orders", json=order_payload()).json()["order"]
        res = client.put(f"/api/orders/{order['id']}/status", json={"status": "ready"})
        assert res.status_code == 200
        assert res.json()["order"]["status"] == "ready"

        assert client.put(f"/api/orders/{order['id']}/status", json={"status": "lost"}).status_code == 400

        res = client.put(f"/api/orders/{order['id']}/cancel")
        assert res.json()["order"]["status"] == "cancelled"
        assert client.put(f"/api/orders/{order['id']}/cancel").status_code == 400

    def test_list_own_orders(self, client):
        client.post("/api/orders", json=order_payload(), headers={"X-User-Id": "1"})
        client.post("/api/orders", json=order_payload(), headers={"X-User-Id": "2"})
        res = client.get("/api/orders", headers={"X-User-Id": "1"})
        assert res.json()["total"] == 1

    def test_notes_payment_rating(self, client):
        order = client.post("/api/orders", json=order_payload()).json()["order"]
        oid = order["id"]
        notes = client.post(f"/api/orders/{oid}/notes", json={"message": "handle with care"}).json()["notes"]
        assert notes[0]["message"] == "handle with care"
        paid = client.put(f"/api/orders/{oid}/payment", json={"payment_status": "paid"})
        assert paid.json()["order"]["payment_status"] == "paid"
        assert client.post(f"/api/orders/{oid}/rating", json={"rating": 5}).status_code == 400
        client.put(f"/api/orders/{oid}/status", json={"status": "delivered"})
        assert client.post(f"/api/orders/{oid}/rating", json={"rating": 5}).json()["rating"] == 5

    def test_export_csv(self, client):
        order = client.post("/api/orders", json=order_payload()).json()["order"]
        res = client.get("/api/orders/export")
        assert res.status_code == 200
        assert res.headers["content-type"].startswith("text/csv")
        assert order["order_number"] in res.text

    def test_xlsx_without_openpyxl_falls_back_to_csv(self, client, monkeypatch):
        monkeypatch.setattr(api, "OPENPYXL_AVAILABLE", False)
        order = client.post("/api/orders", json=order_payload()).json()["order"]
        res = client.get("/api/orders/export", params={"fmt": "xlsx"})
        assert res.status_code == 200
        assert res.headers["content-type"].startswith("text/csv")
        assert order["order_number"] in res.text


class TestPromos:

    def test_validate(self, client):
        client.post("/api/promos", json=promo_payload())
        res = client.post("/api/promos/validate", json={"promo_code": "first20", "order_amount": 450})
        assert res.status_code == 200
        assert res.json()["discount"] == 90.0

        low = client.post("/api/promos/validate", json={"promo_code": "FIRST20", "order_amount": 100})
        assert low.status_code == 400
        assert low.json()["reason"] == "BelowMinimum"

    def test_zero_usage_cap_rejected(self, client):
        assert client.post("/api/promos", json=promo_payload(max_usage=0)).status_code == 422

    def test_clear_usage_cap(self, client):
        pid = client.post("/api/promos", json=promo_payload(max_usage=5)).json()["promo_code"]["id"]
        res = client.put(f"/api/promos/{pid}", json={"max_usage": None})
        assert res.status_code == 200
        assert res.json()["promo_code"]["max_usage"] is None

    def test_duplicate_code(self, client):
        client.post("/api/promos", json=promo_payload())
        assert client.post("/api/promos", json=promo_payload(code="FIRST20")).status_code == 409

    def test_update_deactivate_and_stats(self, client):
        promo = client.post("/api/promos", json=promo_payload()).json()["promo_code"]
        pid = promo["id"]
        updated = client.put(f"/api/promos/{pid}", json={"max_usage": 50}).json()["promo_code"]
        assert updated["max_usage"] == 50

        client.post("/api/orders", json=order_payload(promo_code="FIRST20"), headers={"X-User-Id": "3"})
        stats = client.get(f"/api/promos/{pid}/stats").json()["stats"]
        assert stats["total_usage"] == 1
        assert stats["remaining_usage"] == 49

        assert client.delete(f"/api/promos/{pid}").status_code == 200
        assert client.get(f"/api/promos/{pid}").json()["is_active"] is False
        listed = client.get("/api/promos", params={"active": "false"}).json()
        assert [p["code"] for p in listed["items"]] == ["FIRST20"]
