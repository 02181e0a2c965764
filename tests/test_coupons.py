"""Tests for coupon validation, discounting and consumption."""
import threading
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import NOW
from database import COUPONS
from errors import (
    CouponExpired,
    CouponInactive,
    CouponLimitReached,
    CouponNotFound,
    CouponNotYetValid,
    DuplicateCoupon,
    InvalidRequest,
)
from schemas import Coupon, CouponIn, CouponUpdate


def _coupon(store, code):
    return store.find_one(COUPONS, {"code": code})


def test_validate_normalizes_code(store, validator):
    coupon = validator.validate(store, "  save10 ", NOW)
    assert coupon.code == "SAVE10"
    assert coupon.id == "save10"


@pytest.mark.parametrize(
    "code, error",
    [
        ("NOPE", CouponNotFound),
        ("PAUSED", CouponInactive),
        ("SOON", CouponNotYetValid),
        ("OLD", CouponExpired),
        ("MAXED", CouponLimitReached),
    ],
)
def test_validate_rejections(store, validator, code, error):
    with pytest.raises(error) as exc:
        validator.validate(store, code, NOW)
    assert exc.value.fields["coupon"] == code


def test_inactive_is_reported_before_expiry(store, validator):
    store.update_one(COUPONS, {"code": "OLD"}, {"$set": {"is_active": False}})
    with pytest.raises(CouponInactive):
        validator.validate(store, "OLD", NOW)


def test_window_bounds_are_inclusive(store, validator):
    validator.validate(store, "SOON", NOW + timedelta(days=1))
    validator.validate(store, "SOON", NOW + timedelta(days=10))
    with pytest.raises(CouponExpired):
        validator.validate(store, "SOON", NOW + timedelta(days=10, seconds=1))


def test_percentage_discount(store, validator):
    coupon = validator.validate(store, "SAVE10", NOW)
    assert validator.compute_discount(coupon, Decimal("1050.00")) == Decimal("105.00")


def test_percentage_discount_rounds_half_up(store, validator):
    coupon = validator.validate(store, "OPEN15", NOW)
    # 15% of 333.33 = 49.9995
    assert validator.compute_discount(coupon, Decimal("333.33")) == Decimal("50.00")


def test_fixed_discount_is_capped_at_base(store, validator):
    coupon = validator.validate(store, "FLAT200", NOW)
    assert validator.compute_discount(coupon, Decimal("1000.00")) == Decimal("200.00")
    assert validator.compute_discount(coupon, Decimal("150.00")) == Decimal("150.00")
    assert validator.compute_discount(coupon, Decimal("0")) == Decimal("0.00")


def test_consume_increments_and_deactivates_at_limit(store, validator):
    store.run_transaction(lambda s: validator.consume(s, "flat200", NOW))
    store.run_transaction(lambda s: validator.consume(s, "flat200", NOW))
    doc = _coupon(store, "FLAT200")
    assert doc["used_count"] == 2
    assert doc["is_active"] is True

    consumed = store.run_transaction(lambda s: validator.consume(s, "flat200", NOW))
    assert consumed.used_count == 3
    assert consumed.is_active is False
    doc = _coupon(store, "FLAT200")
    assert doc["used_count"] == 3
    assert doc["is_active"] is False

    with pytest.raises(CouponInactive):
        store.run_transaction(lambda s: validator.consume(s, "flat200", NOW))
    assert _coupon(store, "FLAT200")["used_count"] == 3


def test_consume_rechecks_time_window(store, validator):
    with pytest.raises(CouponExpired):
        store.run_transaction(lambda s: validator.consume(s, "save10", NOW + timedelta(days=31)))
    assert _coupon(store, "SAVE10")["used_count"] == 0


def test_unlimited_coupon_stays_active(store, validator):
    for _ in range(5):
        store.run_transaction(lambda s: validator.consume(s, "open15", NOW))
    doc = _coupon(store, "OPEN15")
    assert doc["used_count"] == 5
    assert doc["is_active"] is True


def test_concurrent_consume_never_exceeds_limit(store, validator):
    barrier = threading.Barrier(10)
    outcomes = []

    def worker():
        barrier.wait()
        try:
            store.run_transaction(lambda s: validator.consume(s, "flat200", NOW))
            outcomes.append(True)
        except (CouponLimitReached, CouponInactive):
            outcomes.append(False)

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count(True) == 3
    doc = _coupon(store, "FLAT200")
    assert doc["used_count"] == 3
    assert doc["is_active"] is False


# ----- Admin / storefront service -----

def test_quote_matches_checkout_pricing(coupons):
    quote = coupons.quote("save10", Decimal("1050.00"))
    assert quote.discount == Decimal("105.00")
    assert quote.total == Decimal("945.00")


def test_create_coupon_normalizes_and_starts_unused(coupons):
    created = coupons.create(
        CouponIn(code=" diwali ", type="fixed", value="250", valid_from=NOW, valid_until=NOW + timedelta(days=5))
    )
    assert isinstance(created, Coupon)
    assert created.code == "DIWALI"
    assert created.used_count == 0
    assert created.is_active is True


def test_create_duplicate_code_rejected(coupons):
    with pytest.raises(DuplicateCoupon):
        coupons.create(
            CouponIn(code="save10", type="percentage", value="5", valid_from=NOW, valid_until=NOW + timedelta(days=1))
        )


def test_coupon_in_rejects_bad_window_and_percentage():
    with pytest.raises(ValueError):
        CouponIn(code="X", type="percentage", value="120", valid_from=NOW, valid_until=NOW + timedelta(days=1))
    with pytest.raises(ValueError):
        CouponIn(code="X", type="fixed", value="10", valid_from=NOW, valid_until=NOW)


def test_update_checks_merged_window(coupons):
    with pytest.raises(InvalidRequest):
        coupons.update("save10", CouponUpdate(valid_until=NOW - timedelta(days=40)))

    updated = coupons.update("save10", CouponUpdate(value="20", usage_limit=5))
    assert updated.value == Decimal("20.00")
    assert updated.usage_limit == 5


def test_update_to_existing_code_rejected(coupons):
    with pytest.raises(DuplicateCoupon):
        coupons.update("save10", CouponUpdate(code="flat200"))


def test_delete_coupon(coupons, store):
    coupons.delete("old")
    assert _coupon(store, "OLD") is None
    with pytest.raises(CouponNotFound):
        coupons.delete("old")
