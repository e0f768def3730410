# laundry_server/app/api.py
from typing import Optional
from fastapi import FastAPI, Depends, Header, Query, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
import io, csv
try:
    import pandas as pd
    PANDAS_AVAILABLE = True
except Exception:
    PANDAS_AVAILABLE = False
try:
    import openpyxl  # noqa: F401  engine for pd.ExcelWriter
    OPENPYXL_AVAILABLE = True
except Exception:
    OPENPYXL_AVAILABLE = False

from .db import get_db, init_db
from .errors import LaundryError
from .models import Order, PromoCode
from .pricing import recompute_total
from .schemas import (OrderIn, StatusIn, PaymentStatusIn, NoteIn, RatingIn, PromoValidateIn,
                      PromoIn, PromoUpdate)
from .services import OrderService, PromoService

app = FastAPI(title="Laundry Order API")


# Startup: init DB
@app.on_event("startup")
def on_startup():
    init_db()


@app.exception_handler(LaundryError)
async def laundry_error_handler(request: Request, exc: LaundryError):
    body = {"detail": exc.message}
    reason = getattr(exc, "reason", None)
    if reason is not None:
        body["reason"] = reason.value
    return JSONResponse(status_code=exc.status_code, content=body)


def _iso(value):
    return value.isoformat() if value else None


def order_to_dict(o: Order) -> dict:
    return {
        "id": o.id,
        "order_number": o.order_number,
        "customer_id": o.customer_id,
        "customer_info": o.customer_info,
        "items": [
            {
                "service_id": i.service_id,
                "service_name": i.service_name,
                "item_name": i.item_name,
                "quantity": i.quantity,
                "unit_price": float(i.unit_price),
                "instructions": i.instructions,
            }
            for i in o.items
        ],
        "schedule": {
            "pickup_date": _iso(o.pickup_date),
            "delivery_date": _iso(o.delivery_date),
            "time_slot": o.time_slot,
            "instructions": o.schedule_instructions,
        },
        "summary": {
            "subtotal": float(o.subtotal),
            "delivery_fee": float(o.delivery_fee),
            "express_charge": float(o.express_charge),
            "tax": float(o.tax),
            "discount": float(o.discount),
            "total": float(recompute_total(o)),
        },
        "payment_method": o.payment_method,
        "payment_status": o.payment_status,
        "status": o.status,
        "promo_code": o.promo_code,
        "tracking_steps": o.tracking_steps,
        "estimated_delivery": _iso(o.delivery_date),
        "actual_delivery": _iso(o.actual_delivery),
        "rating": o.rating,
        "review": o.review,
        "notes": o.notes or [],
        "created_at": _iso(o.created_at),
        "updated_at": _iso(o.updated_at),
    }


def promo_to_dict(p: PromoCode) -> dict:
    return {
        "id": p.id,
        "code": p.code,
        "description": p.description,
        "discount_type": p.discount_type,
        "discount_value": float(p.discount_value),
        "max_discount": float(p.max_discount) if p.max_discount is not None else None,
        "min_order_amount": float(p.min_order_amount),
        "max_usage": p.max_usage,
        "usage_count": p.usage_count,
        "max_usage_per_user": p.max_usage_per_user,
        "valid_from": _iso(p.valid_from),
        "valid_until": _iso(p.valid_until),
        "is_active": p.is_active,
        "applicable_services": p.applicable_services or [],
        "excluded_services": p.excluded_services or [],
        "new_users_only": p.new_users_only,
        "existing_users_only": p.existing_users_only,
        "created_at": _iso(p.created_at),
    }


@app.get("/health")
def health():
    return {"ok": True}

# ---------------------------
# Create order
# ---------------------------
@app.post("/api/orders", status_code=201)
def create_order(body: OrderIn, db: Session = Depends(get_db), x_user_id: Optional[int] = Header(None)):
    created = OrderService(db).create_order(
        customer_info=body.customer_info.model_dump(),
        items=[item.model_dump() for item in body.items],
        schedule=body.schedule.model_dump(),
        payment_method=body.payment_method,
        promo_code=body.promo_code,
        user_id=x_user_id,
        express_charge=body.express_charge,
    )
    return {
        "ok": True,
        "order": order_to_dict(created.order),
        "promo_applied": created.promo_applied,
        "promo_error": created.promo_error,
    }

# ---------------------------
# List orders (own orders when a user id is given)
# ---------------------------
@app.get("/api/orders")
def list_orders(status: Optional[str] = None, page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=200),
                db: Session = Depends(get_db), x_user_id: Optional[int] = Header(None)):
    result = OrderService(db).list_orders(customer_id=x_user_id, status=status, page=page, limit=limit)
    result["items"] = [order_to_dict(o) for o in result["items"]]
    return result

# ---------------------------
# Export (csv, or xlsx when pandas and openpyxl are installed)
# ---------------------------
@app.get("/api/orders/export")
def export_orders(fmt: str = "csv", db: Session = Depends(get_db)):
    rows = OrderService(db).export_rows()

    if fmt == "csv" or not (PANDAS_AVAILABLE and OPENPYXL_AVAILABLE):
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=rows[0].keys() if rows else ["id", "order_number"])
        writer.writeheader()
        if rows:
            writer.writerows(rows)
        return Response(content=buffer.getvalue(), media_type="text/csv",
                        headers={"Content-Disposition": 'attachment; filename="orders.csv"'})
    else:
        df = pd.DataFrame(rows)
        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            df.to_excel(writer, index=False, sheet_name="orders")
        buffer.seek(0)
        return Response(content=buffer.read(),
                        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                        headers={"Content-Disposition": 'attachment; filename="orders.xlsx"'})

@app.get("/api/orders/number/{order_number}")
def get_order_by_number(order_number: str, db: Session = Depends(get_db)):
    return order_to_dict(OrderService(db).get_by_number(order_number))

@app.get("/api/orders/{order_id}")
def get_order(order_id: int, db: Session = Depends(get_db)):
    return order_to_dict(OrderService(db).get_order(order_id))

# ---------------------------
# Status, cancellation, admin edits
# ---------------------------
@app.put("/api/orders/{order_id}/status")
def update_status(order_id: int, body: StatusIn, db: Session = Depends(get_db),
                  x_user_id: Optional[int] = Header(None)):
    order = OrderService(db).set_status(order_id, body.status, actor=x_user_id)
    return {"ok": True, "order": order_to_dict(order)}

@app.put("/api/orders/{order_id}/cancel")
def cancel_order(order_id: int, db: Session = Depends(get_db), x_user_id: Optional[int] = Header(None)):
    order = OrderService(db).cancel(order_id, requester_id=x_user_id)
    return {"ok": True, "order": order_to_dict(order)}

@app.put("/api/orders/{order_id}/payment")
def update_payment(order_id: int, body: PaymentStatusIn, db: Session = Depends(get_db),
                   x_user_id: Optional[int] = Header(None)):
    order = OrderService(db).set_payment_status(order_id, body.payment_status, actor=x_user_id)
    return {"ok": True, "order": order_to_dict(order)}

@app.post("/api/orders/{order_id}/notes")
def add_note(order_id: int, body: NoteIn, db: Session = Depends(get_db), x_user_id: Optional[int] = Header(None)):
    order = OrderService(db).add_note(order_id, body.message, added_by=x_user_id)
    return {"ok": True, "notes": order.notes}

@app.post("/api/orders/{order_id}/rating")
def rate_order(order_id: int, body: RatingIn, db: Session = Depends(get_db), x_user_id: Optional[int] = Header(None)):
    order = OrderService(db).rate_order(order_id, body.rating, body.review, requester_id=x_user_id)
    return {"ok": True, "rating": order.rating, "review": order.review}

# ---------------------------
# Promo codes
# ---------------------------
@app.post("/api/promos/validate")
def validate_promo(body: PromoValidateIn, db: Session = Depends(get_db), x_user_id: Optional[int] = Header(None)):
    promo, check, discount = PromoService(db).preview(body.promo_code, user_id=x_user_id,
                                                      order_amount=body.order_amount,
                                                      service_ids=body.service_ids)
    if not check.ok:
        return JSONResponse(status_code=400, content={"ok": False, "valid": False,
                                                      "reason": check.reason.value,
                                                      "detail": check.message})
    return {
        "ok": True,
        "valid": True,
        "discount": float(discount),
        "promo_code": {
            "code": promo.code,
            "description": promo.description,
            "discount_type": promo.discount_type,
            "discount_value": float(promo.discount_value),
            "max_discount": float(promo.max_discount) if promo.max_discount is not None else None,
            "min_order_amount": float(promo.min_order_amount),
        },
    }

@app.get("/api/promos")
def list_promos(active: Optional[bool] = None, page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=200),
                db: Session = Depends(get_db)):
    result = PromoService(db).list_promos(active=active, page=page, limit=limit)
    result["items"] = [promo_to_dict(p) for p in result["items"]]
    return result

@app.post("/api/promos", status_code=201)
def create_promo(body: PromoIn, db: Session = Depends(get_db), x_user_id: Optional[int] = Header(None)):
    promo = PromoService(db).create_promo(body.model_dump(), actor=x_user_id)
    return {"ok": True, "promo_code": promo_to_dict(promo)}

@app.get("/api/promos/{promo_id}")
def get_promo(promo_id: int, db: Session = Depends(get_db)):
    return promo_to_dict(PromoService(db).get_promo(promo_id))

@app.put("/api/promos/{promo_id}")
def update_promo(promo_id: int, body: PromoUpdate, db: Session = Depends(get_db),
                 x_user_id: Optional[int] = Header(None)):
    promo = PromoService(db).update_promo(promo_id, body.model_dump(exclude_unset=True), actor=x_user_id)
    return {"ok": True, "promo_code": promo_to_dict(promo)}

@app.delete("/api/promos/{promo_id}")
def deactivate_promo(promo_id: int, db: Session = Depends(get_db), x_user_id: Optional[int] = Header(None)):
    PromoService(db).deactivate_promo(promo_id, actor=x_user_id)
    return {"ok": True, "message": "promo code deactivated"}

@app.get("/api/promos/{promo_id}/stats")
def promo_stats(promo_id: int, db: Session = Depends(get_db)):
    return {"ok": True, "stats": PromoService(db).usage_stats(promo_id)}
# EOF
