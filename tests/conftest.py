"""Pytest fixtures: an in-memory store seeded with a small catalogue and coupons."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from carts import CartService
from checkout import CheckoutOrchestrator
from coupons import CouponService, CouponValidator
from database import COUPONS, PRODUCTS, create_document
from inventory import InventoryLedger
from memstore import MemoryStore
from orders import OrderQueries, OrderStateMachine
from payments import PaymentVerifier, to_minor_units
from schemas import CartItemIn, ShippingInfo

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
SECRET = "rzp_test_secret"
SHIPPING_FEE = Decimal("50.00")


def fixed_clock():
    return NOW


def _coupon(code, type_, value, usage_limit=None, used_count=0, is_active=True, starts=-30, ends=30):
    return {
        "_id": code.lower(),
        "code": code,
        "type": type_,
        "value": Decimal(value),
        "usage_limit": usage_limit,
        "used_count": used_count,
        "is_active": is_active,
        "valid_from": NOW + timedelta(days=starts),
        "valid_until": NOW + timedelta(days=ends),
    }


@pytest.fixture
def store() -> MemoryStore:
    store = MemoryStore()

    create_document(store, PRODUCTS, {"_id": "RING001", "name": "Silver Band", "price": Decimal("500.00"),
                                      "images": ["https://img.example/ring.jpg"], "category": "FEMALE",
                                      "type": "rings", "stock": 5})
    create_document(store, PRODUCTS, {"_id": "CHAIN01", "name": "Gold Chain", "price": Decimal("1200.00"),
                                      "images": ["https://img.example/chain.jpg"], "category": "MALE",
                                      "type": "chains", "stock": 1})
    create_document(store, PRODUCTS, {"_id": "ART001", "name": "Brass Peacock", "price": Decimal("300.00"),
                                      "images": ["https://img.example/peacock.jpg"], "category": "METAL_ART",
                                      "type": "art"})  # stock untracked
    create_document(store, PRODUCTS, {"_id": "EARR01", "name": "Jhumka", "price": Decimal("333.33"),
                                      "images": ["https://img.example/jhumka.jpg"], "category": "FEMALE",
                                      "type": "earrings", "stock": 0})  # Out of stock

    create_document(store, COUPONS, _coupon("SAVE10", "percentage", "10", usage_limit=1))
    create_document(store, COUPONS, _coupon("FLAT200", "fixed", "200.00", usage_limit=3))
    create_document(store, COUPONS, _coupon("OPEN15", "percentage", "15"))
    create_document(store, COUPONS, _coupon("OLD", "fixed", "100.00", starts=-60, ends=-1))
    create_document(store, COUPONS, _coupon("SOON", "fixed", "100.00", starts=1, ends=10))
    create_document(store, COUPONS, _coupon("PAUSED", "fixed", "100.00", is_active=False))
    create_document(store, COUPONS, _coupon("MAXED", "fixed", "100.00", usage_limit=2, used_count=2))

    return store


@pytest.fixture
def ledger() -> InventoryLedger:
    return InventoryLedger()


@pytest.fixture
def validator() -> CouponValidator:
    return CouponValidator(clock=fixed_clock)


@pytest.fixture
def verifier() -> PaymentVerifier:
    return PaymentVerifier(SECRET)


@pytest.fixture
def carts(store) -> CartService:
    return CartService(store)


@pytest.fixture
def coupons(store, validator) -> CouponService:
    return CouponService(store, validator)


@pytest.fixture
def checkout(store, ledger, validator) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(store, ledger, validator, SHIPPING_FEE, clock=fixed_clock)


@pytest.fixture
def orders(store, ledger, validator, verifier) -> OrderStateMachine:
    return OrderStateMachine(store, ledger, validator, verifier, clock=fixed_clock)


@pytest.fixture
def queries(store) -> OrderQueries:
    return OrderQueries(store)


@pytest.fixture
def shipping() -> ShippingInfo:
    return ShippingInfo(
        first_name="Asha",
        last_name="Rao",
        address="12 MG Road",
        city="Bengaluru",
        state="KA",
        zip="560001",
        phone="+919800000000",
    )


@pytest.fixture
def fill_cart(carts):
    def fill(user_id, *lines):
        for line in lines:
            product_id, quantity = line[0], line[1]
            custom_size = line[2] if len(line) > 2 else None
            carts.add_item(user_id, CartItemIn(product_id=product_id, quantity=quantity, custom_size=custom_size))
    return fill


class FakeGateway:
    def __init__(self):
        self.configured = True
        self.created = []

    def create_payment_intent(self, amount, currency, receipt=None):
        gateway_order = {
            "id": f"order_gw{len(self.created) + 1}",
            "amount": to_minor_units(amount),
            "currency": currency,
            "receipt": receipt,
        }
        self.created.append(gateway_order)
        return gateway_order


class FakeNotifier:
    def __init__(self):
        self.completed = []
        self.shipped = []

    def order_completed(self, order):
        self.completed.append(order.id)

    def order_shipped(self, order):
        self.shipped.append(order.id)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()
