import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional

from pymongo import ASCENDING

from coupons import CouponValidator
from database import CART, ORDERS, PRODUCTS, DocumentStore, Session, create_document, to_str_id, utcnow
from errors import EmptyCart, ProductGone
from inventory import InventoryLedger
from schemas import Coupon, Order, OrderItem, OrderStatus, PaymentStatus, ShippingInfo, to_money

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class OrderAmounts:
    subtotal: Decimal
    shipping: Decimal
    discount: Decimal
    total: Decimal


def calculate_amounts(items: List[OrderItem], shipping: Decimal, coupon: Optional[Coupon] = None) -> OrderAmounts:
    subtotal = to_money(sum((item.price * item.quantity for item in items), Decimal("0")))
    shipping = to_money(shipping)
    base = subtotal + shipping
    discount = CouponValidator.compute_discount(coupon, base) if coupon else Decimal("0.00")
    total = to_money(max(base - discount, Decimal("0")))
    return OrderAmounts(subtotal=subtotal, shipping=shipping, discount=discount, total=total)


def snapshot_item(line: dict, product: dict) -> OrderItem:
    images = product.get("images") or []
    return OrderItem(
        product_id=line["product_id"],
        name=product.get("name") or "Unknown Product",
        image=images[0] if images else None,
        price=product["price"],
        quantity=line["quantity"],
        custom_size=line.get("custom_size"),
        custom_image=line.get("custom_image"),
    )


class CheckoutOrchestrator:
    """
    Turns a user's cart into a pending order.

    Everything runs in one transaction: pricing from live products, coupon
    validation, stock reservation, the order insert and the cart clear. Any
    failure leaves no order, no reservation and the cart untouched. The coupon
    is validated here but only consumed when the payment is confirmed.
    """

    def __init__(
        self,
        store: DocumentStore,
        ledger: InventoryLedger,
        coupons: CouponValidator,
        shipping_fee: Decimal,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.ledger = ledger
        self.coupons = coupons
        self.shipping_fee = shipping_fee
        self.clock = clock

    def create_order(self, user_id: str, shipping_info: ShippingInfo, coupon_code: Optional[str] = None) -> Order:
        def txn(session: Session) -> str:
            now = self.clock()
            cart = session.find(CART, {"user_id": user_id}, sort=[("created_at", ASCENDING)])
            if not cart:
                raise EmptyCart(user_id)

            items = []
            for line in cart:
                product = session.find_one(PRODUCTS, {"_id": line["product_id"]})
                if product is None:
                    raise ProductGone(line["product_id"])
                items.append(snapshot_item(line, product))

            coupon = self.coupons.validate(session, coupon_code, now) if coupon_code else None
            amounts = calculate_amounts(items, self.shipping_fee, coupon)

            self.ledger.reserve(session, [(item.product_id, item.quantity) for item in items])

            order = {
                "user_id": user_id,
                "items": [item.model_dump() for item in items],
                "subtotal": amounts.subtotal,
                "shipping": amounts.shipping,
                "discount": amounts.discount,
                "total_amount": amounts.total,
                "status": OrderStatus.PENDING.value,
                "payment_status": PaymentStatus.PENDING.value,
                "payment_details": {"gateway_order_id": None, "payment_id": None, "signature": None, "verified_at": None},
                "shipping_info": shipping_info.model_dump(),
                "applied_coupon_id": coupon.id if coupon else None,
                "applied_coupon_code": coupon.code if coupon else None,
                "order_date": now,
                "created_at": now,
                "updated_at": now,
            }
            order_id = create_document(session, ORDERS, order)
            session.delete_many(CART, {"user_id": user_id})
            return order_id

        order_id = self.store.run_transaction(txn)
        order = Order(**to_str_id(self.store.find_one(ORDERS, {"_id": order_id})))
        logger.info(
            "order created: id=%s user=%s items=%s total=%s coupon=%s",
            order.id, user_id, len(order.items), order.total_amount, order.applied_coupon_code,
        )
        return order
