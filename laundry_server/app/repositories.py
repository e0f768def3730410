# laundry_server/app/repositories.py
import logging
from sqlalchemy import update, or_, func
from sqlalchemy.exc import IntegrityError

from .db import SessionLocal
from .errors import Conflict
from .models import Order, PromoCode, PromoUsage, User, AuditEvent
from .promos import RedemptionOutcome
from .utils import to_money

logger = logging.getLogger("laundry.db")


def _page(query, page: int, limit: int):
    page = max(int(page), 1)
    limit = max(int(limit), 1)
    total = query.count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return rows, total


class OrderRepository:

    def __init__(self, db):
        self.db = db

    def create(self, order: Order) -> Order:
        self.db.add(order)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            # unique constraint on order_number caught a collision
            raise Conflict(f"order number {order.order_number} already exists")
        self.db.refresh(order)
        return order

    def find_by_id(self, order_id: int) -> Order | None:
        return self.db.query(Order).filter(Order.id == order_id).first()

    def find_by_number(self, order_number: str) -> Order | None:
        return self.db.query(Order).filter(Order.order_number == order_number).first()

    def find_for_update(self, order_id: int) -> Order | None:
        # row lock where the dialect has one; sqlite serializes writers anyway
        return (self.db.query(Order)
                .filter(Order.id == order_id)
                .populate_existing()
                .with_for_update()
                .one_or_none())

    def update(self, order: Order) -> Order:
        self.db.add(order)
        self.db.commit()
        self.db.refresh(order)
        return order

    def list(self, customer_id=None, status=None, page: int = 1, limit: int = 10):
        q = self.db.query(Order)
        if customer_id is not None:
            q = q.filter(Order.customer_id == customer_id)
        if status:
            q = q.filter(Order.status == status)
        return _page(q.order_by(Order.created_at.desc(), Order.id.desc()), page, limit)

    def all(self):
        return self.db.query(Order).order_by(Order.created_at, Order.id).all()

    def count_for_customer(self, customer_id) -> int:
        return self.db.query(func.count(Order.id)).filter(Order.customer_id == customer_id).scalar() or 0


class _Refused(Exception):
    def __init__(self, outcome):
        self.outcome = outcome


class PromoRepository:

    def __init__(self, db, session_factory=SessionLocal):
        self.db = db
        self.session_factory = session_factory

    def find_by_code(self, code: str) -> PromoCode | None:
        return self.db.query(PromoCode).filter(PromoCode.code == (code or "").strip().upper()).first()

    def find_by_id(self, promo_id: int) -> PromoCode | None:
        return self.db.query(PromoCode).filter(PromoCode.id == promo_id).first()

    def create(self, promo: PromoCode) -> PromoCode:
        self.db.add(promo)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise Conflict(f"promo code {promo.code} already exists")
        self.db.refresh(promo)
        return promo

    def update(self, promo: PromoCode) -> PromoCode:
        self.db.add(promo)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise Conflict(f"promo code {promo.code} already exists")
        self.db.refresh(promo)
        return promo

    def list(self, active=None, page: int = 1, limit: int = 10):
        q = self.db.query(PromoCode)
        if active is not None:
            q = q.filter(PromoCode.is_active == active)
        return _page(q.order_by(PromoCode.created_at.desc(), PromoCode.id.desc()), page, limit)

    def conditional_increment_usage(self, promo_id: int, user_id, order_id, discount_applied):
        """
        Atomically redeem one use of a promo. Runs in its own session and
        transaction. The conditional UPDATE takes the row (or database) write
        lock first, so the per-user count read afterwards cannot race another
        redemption of the same code.

        Returns a RedemptionOutcome, or None when the promo no longer exists.
        """
        db = self.session_factory()
        try:
            with db.begin():
                result = db.execute(
                    update(PromoCode)
                    .where(PromoCode.id == promo_id)
                    .where(or_(PromoCode.max_usage.is_(None), PromoCode.usage_count < PromoCode.max_usage))
                    .values(usage_count=PromoCode.usage_count + 1)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    exists = db.query(PromoCode.id).filter(PromoCode.id == promo_id).first()
                    if exists is None:
                        return None
                    raise _Refused(RedemptionOutcome.USAGE_CAP_REACHED)

                if user_id is not None:
                    per_user = db.query(PromoCode.max_usage_per_user).filter(PromoCode.id == promo_id).scalar()
                    used = (db.query(func.count(PromoUsage.id))
                            .filter(PromoUsage.promo_id == promo_id, PromoUsage.user_id == user_id)
                            .scalar())
                    if used >= (per_user if per_user is not None else 1):
                        raise _Refused(RedemptionOutcome.USER_CAP_REACHED)

                db.add(PromoUsage(promo_id=promo_id, user_id=user_id, order_id=order_id,
                                  discount_applied=to_money(discount_applied)))
            return RedemptionOutcome.SUCCESS
        except _Refused as refused:
            # the with-block already rolled the increment back
            return refused.outcome
        finally:
            db.close()


class UserProfileRepository:

    def __init__(self, db):
        self.db = db

    def increment_order_stats(self, user_id: int, amount_spent) -> bool:
        result = self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(total_orders=User.total_orders + 1,
                    total_spent=User.total_spent + to_money(amount_spent))
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount == 0:
            logger.warning("no profile for user %s; order stats not updated", user_id)
            return False
        return True


class AuditRepository:

    def __init__(self, db):
        self.db = db

    def record(self, entity: str, entity_id: int, action: str, actor=None, **changes) -> None:
        # best-effort: an audit failure never undoes the audited action
        try:
            self.db.add(AuditEvent(entity=entity, entity_id=entity_id, action=action,
                                   actor_id=actor, changes=changes))
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("audit write failed for %s %s (%s)", entity, entity_id, action)
