import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional

from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError

from database import COUPONS, DocumentStore, Session, create_document, to_str_id, utcnow
from errors import (
    CouponExpired,
    CouponInactive,
    CouponLimitReached,
    CouponNotFound,
    CouponNotYetValid,
    DuplicateCoupon,
    InvalidRequest,
)
from schemas import Coupon, CouponIn, CouponQuote, CouponType, CouponUpdate, to_money

logger = logging.getLogger(__name__)


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


class CouponValidator:
    """Coupon.used_count is only ever changed by `consume`."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    def _check(self, coupon: Coupon, now: datetime) -> Coupon:
        if not coupon.is_active:
            raise CouponInactive(coupon.code)
        if now < coupon.valid_from:
            raise CouponNotYetValid(coupon.code, coupon.valid_from)
        if now > coupon.valid_until:
            raise CouponExpired(coupon.code, coupon.valid_until)
        if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
            raise CouponLimitReached(coupon.code, coupon.usage_limit)
        return coupon

    def validate(self, session: Session, code: str, now: Optional[datetime] = None) -> Coupon:
        code = normalize_code(code)
        doc = session.find_one(COUPONS, {"code": code})
        if doc is None:
            raise CouponNotFound(code)
        return self._check(Coupon(**to_str_id(doc)), now or self.clock())

    @staticmethod
    def compute_discount(coupon: Coupon, base_amount: Decimal) -> Decimal:
        base_amount = to_money(base_amount)
        if base_amount <= 0:
            return Decimal("0.00")
        if coupon.type == CouponType.PERCENTAGE:
            discount = base_amount * Decimal(coupon.value) / Decimal(100)
        else:
            discount = Decimal(coupon.value)
        return to_money(min(discount, base_amount))

    def consume(self, session: Session, coupon_id: str, now: Optional[datetime] = None) -> Coupon:
        now = now or self.clock()
        doc = session.find_one(COUPONS, {"_id": coupon_id})
        if doc is None:
            raise CouponNotFound(coupon_id)
        coupon = self._check(Coupon(**to_str_id(doc)), now)

        used = coupon.used_count + 1
        changes = {"used_count": used, "updated_at": now}
        if coupon.usage_limit is not None and used >= coupon.usage_limit:
            changes["is_active"] = False
        # compare-and-set on the count we checked
        matched = session.update_one(
            COUPONS,
            {"_id": coupon_id, "used_count": coupon.used_count, "is_active": True},
            {"$set": changes},
        )
        if not matched:
            raise CouponLimitReached(coupon.code, coupon.usage_limit)
        logger.info("coupon consumed: code=%s used=%s limit=%s", coupon.code, used, coupon.usage_limit)
        return coupon.model_copy(update={"used_count": used, "is_active": changes.get("is_active", True)})


class CouponService:
    """Admin CRUD and storefront lookup for coupons."""

    def __init__(self, store: DocumentStore, validator: CouponValidator):
        self.store = store
        self.validator = validator

    def list_coupons(self) -> List[Coupon]:
        docs = self.store.find(COUPONS, {}, sort=[("created_at", ASCENDING)])
        return [Coupon(**to_str_id(d)) for d in docs]

    def quote(self, code: str, amount: Decimal) -> CouponQuote:
        coupon = self.validator.validate(self.store, code)
        discount = self.validator.compute_discount(coupon, amount)
        return CouponQuote(coupon=coupon, amount=amount, discount=discount, total=max(to_money(amount) - discount, Decimal("0.00")))

    def create(self, payload: CouponIn) -> Coupon:
        def txn(session: Session) -> str:
            if session.find_one(COUPONS, {"code": payload.code}) is not None:
                raise DuplicateCoupon(payload.code)
            data = payload.model_dump()
            data["used_count"] = 0
            return create_document(session, COUPONS, data)

        try:
            coupon_id = self.store.run_transaction(txn)
        except DuplicateKeyError:
            raise DuplicateCoupon(payload.code)
        logger.info("coupon created: code=%s type=%s value=%s", payload.code, payload.type, payload.value)
        return Coupon(**to_str_id(self.store.find_one(COUPONS, {"_id": coupon_id})))

    def update(self, coupon_id: str, payload: CouponUpdate) -> Coupon:
        updates = payload.model_dump(exclude_none=True)

        def txn(session: Session) -> None:
            doc = session.find_one(COUPONS, {"_id": coupon_id})
            if doc is None:
                raise CouponNotFound(coupon_id)
            merged = {**doc, **updates}
            if merged["valid_from"] >= merged["valid_until"]:
                raise InvalidRequest("validUntil", "validUntil must be after validFrom")
            if merged["type"] == CouponType.PERCENTAGE and Decimal(merged["value"]) > 100:
                raise InvalidRequest("value", "percentage value must be at most 100")
            if "code" in updates and updates["code"] != doc["code"]:
                if session.find_one(COUPONS, {"code": updates["code"]}) is not None:
                    raise DuplicateCoupon(updates["code"])
            if not updates:
                return
            session.update_one(COUPONS, {"_id": coupon_id}, {"$set": {**updates, "updated_at": utcnow()}})

        try:
            self.store.run_transaction(txn)
        except DuplicateKeyError:
            raise DuplicateCoupon(updates.get("code", coupon_id))
        logger.info("coupon updated: id=%s fields=%s", coupon_id, sorted(updates))
        return Coupon(**to_str_id(self.store.find_one(COUPONS, {"_id": coupon_id})))

    def delete(self, coupon_id: str) -> None:
        # orders keep their applied_coupon_id/code; the reference is weak
        if not self.store.delete_one(COUPONS, {"_id": coupon_id}):
            raise CouponNotFound(coupon_id)
        logger.info("coupon deleted: id=%s", coupon_id)
