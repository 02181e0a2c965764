"""
Order lifecycle.

    pending --(verified payment)--> completed --> shipped --> delivered
       \\--(cancel)--> cancelled

`pending` means awaiting payment and `completed` means payment verified.
`cancelled` and `delivered` are terminal. Every transition is a conditional
update on the current status inside a transaction, so side effects (stock
release, coupon consumption, sales counters) happen at most once per order.
"""
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set

from pymongo import DESCENDING

from coupons import CouponValidator
from database import ORDERS, DocumentStore, Session, get_documents, to_str_id, utcnow
from errors import CouponError, Forbidden, GatewayOrderMismatch, InvalidTransition, OrderNotFound
from inventory import InventoryLedger
from payments import PaymentVerifier
from schemas import AdminOrderList, Order, OrderStats, OrderStatus, OrderStatusUpdate, PaymentStatus, to_money
from stats import record_sale

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[str, Set[str]] = {
    OrderStatus.PENDING.value: {OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value},
    OrderStatus.COMPLETED.value: {OrderStatus.SHIPPED.value},
    OrderStatus.SHIPPED.value: {OrderStatus.DELIVERED.value},
    OrderStatus.DELIVERED.value: set(),
    OrderStatus.CANCELLED.value: set(),
}

TIMESTAMP_FIELDS = {
    OrderStatus.COMPLETED.value: "completed_at",
    OrderStatus.SHIPPED.value: "shipped_at",
    OrderStatus.DELIVERED.value: "delivered_at",
    OrderStatus.CANCELLED.value: "cancelled_at",
}


def _value(status) -> str:
    return getattr(status, "value", status)


def can_transition(current: str, target: str) -> bool:
    return _value(target) in TRANSITIONS.get(_value(current), set())


def _load(session: Session, order_id: str, user_id: Optional[str] = None) -> dict:
    doc = session.find_one(ORDERS, {"_id": order_id})
    if doc is None:
        raise OrderNotFound(order_id)
    if user_id is not None and doc.get("user_id") != user_id:
        raise Forbidden("Unauthorized access to order", orderId=order_id)
    return doc


class OrderStateMachine:
    def __init__(
        self,
        store: DocumentStore,
        ledger: InventoryLedger,
        coupons: CouponValidator,
        verifier: PaymentVerifier,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.ledger = ledger
        self.coupons = coupons
        self.verifier = verifier
        self.clock = clock

    def _reload(self, order_id: str) -> Order:
        return Order(**to_str_id(self.store.find_one(ORDERS, {"_id": order_id})))

    def _flip(self, session: Session, doc: dict, target: str, changes: dict) -> None:
        current = doc["status"]
        target = _value(target)
        if not can_transition(current, target):
            raise InvalidTransition(current, target)
        matched = session.update_one(
            ORDERS,
            {"_id": doc["_id"], "status": current},
            {"$set": {"status": target, TIMESTAMP_FIELDS[target]: changes["updated_at"], **changes}},
        )
        if not matched:
            # someone else moved the order first
            latest = session.find_one(ORDERS, {"_id": doc["_id"]}) or doc
            raise InvalidTransition(latest["status"], target)

    def record_gateway_order(self, order_id: str, gateway_order_id: str, user_id: Optional[str] = None) -> Order:
        """
        Attach the gateway order a payment will be taken against. The first one
        recorded sticks: a later intent for the same order keeps it, so a
        payment made through an earlier checkout window still confirms.
        """

        def txn(session: Session) -> bool:
            doc = _load(session, order_id, user_id)
            if doc["status"] != OrderStatus.PENDING:
                raise InvalidTransition(doc["status"], OrderStatus.COMPLETED)
            return bool(
                session.update_one(
                    ORDERS,
                    {"_id": order_id, "status": OrderStatus.PENDING.value, "payment_details.gateway_order_id": None},
                    {"$set": {"payment_details.gateway_order_id": gateway_order_id, "updated_at": self.clock()}},
                )
            )

        if self.store.run_transaction(txn):
            logger.info("gateway order attached: order=%s gateway_order=%s", order_id, gateway_order_id)
        else:
            logger.info("gateway order already attached, keeping it: order=%s unused=%s", order_id, gateway_order_id)
        return self._reload(order_id)

    def confirm_payment(
        self,
        order_id: str,
        gateway_order_id: str,
        payment_id: str,
        signature: str,
        user_id: Optional[str] = None,
        on_completed: Optional[Callable[[Order], None]] = None,
    ) -> Order:
        """
        pending -> completed. Only reachable through a valid gateway signature.

        A coupon that can no longer be consumed (a racing order took the last
        use) does not stop completion: the payment has been captured. The
        problem is written to `coupon_reconciliation` for manual follow-up.

        `on_completed` runs after the commit, and only when this call completed the order.
        """
        self.verifier.verify(gateway_order_id, payment_id, signature)

        def txn(session: Session) -> bool:
            now = self.clock()
            doc = _load(session, order_id, user_id)
            details = doc.get("payment_details") or {}
            recorded = details.get("gateway_order_id")
            # the signature only proves payment for the gateway order issued to this order
            if recorded != gateway_order_id:
                raise GatewayOrderMismatch(order_id, gateway_order_id)
            if doc["status"] != OrderStatus.PENDING and details.get("payment_id") == payment_id:
                # repeated callback for the same payment
                return False

            changes = {
                "payment_status": PaymentStatus.SUCCESS.value,
                "payment_details": {
                    "gateway_order_id": gateway_order_id,
                    "payment_id": payment_id,
                    "signature": signature,
                    "verified_at": now,
                },
                "updated_at": now,
            }
            if doc.get("applied_coupon_id") and can_transition(doc["status"], OrderStatus.COMPLETED):
                try:
                    self.coupons.consume(session, doc["applied_coupon_id"], now)
                except CouponError as e:
                    logger.warning(
                        "coupon reconciliation needed: order=%s coupon=%s reason=%s",
                        order_id, doc.get("applied_coupon_code"), e.message,
                    )
                    changes["coupon_reconciliation"] = e.message
            self._flip(session, doc, OrderStatus.COMPLETED, changes)
            record_sale(session, to_money(doc["total_amount"]), now)
            return True

        completed = self.store.run_transaction(txn)
        order = self._reload(order_id)
        if completed:
            logger.info("order completed: id=%s payment=%s", order_id, payment_id)
            if on_completed is not None:
                on_completed(order)
        else:
            logger.info("payment already recorded: order=%s payment=%s", order_id, payment_id)
        return order

    def cancel(self, order_id: str, user_id: Optional[str] = None, admin_notes: Optional[str] = None) -> Order:
        """pending -> cancelled, returning the reserved stock exactly once."""

        def txn(session: Session) -> None:
            doc = _load(session, order_id, user_id)
            changes = {"updated_at": self.clock()}
            if admin_notes is not None:
                changes["admin_notes"] = admin_notes
            self._flip(session, doc, OrderStatus.CANCELLED, changes)
            self.ledger.release(session, [(i["product_id"], i["quantity"]) for i in doc.get("items", [])])

        self.store.run_transaction(txn)
        logger.info("order cancelled: id=%s", order_id)
        return self._reload(order_id)

    def ship(self, order_id: str, tracking_number: Optional[str] = None, admin_notes: Optional[str] = None) -> Order:
        return self._advance(order_id, OrderStatus.SHIPPED, tracking_number=tracking_number, admin_notes=admin_notes)

    def deliver(self, order_id: str, admin_notes: Optional[str] = None) -> Order:
        return self._advance(order_id, OrderStatus.DELIVERED, admin_notes=admin_notes)

    def _advance(self, order_id: str, target: str, **extra) -> Order:
        def txn(session: Session) -> None:
            doc = _load(session, order_id)
            changes = {"updated_at": self.clock()}
            changes.update({k: v for k, v in extra.items() if v is not None})
            self._flip(session, doc, target, changes)

        self.store.run_transaction(txn)
        logger.info("order %s: id=%s", _value(target), order_id)
        return self._reload(order_id)

    def annotate(self, order_id: str, tracking_number: Optional[str] = None, admin_notes: Optional[str] = None) -> Order:
        changes = {"updated_at": self.clock()}
        if tracking_number:
            changes["tracking_number"] = tracking_number
        if admin_notes is not None:
            changes["admin_notes"] = admin_notes
        if not self.store.update_one(ORDERS, {"_id": order_id}, {"$set": changes}):
            raise OrderNotFound(order_id)
        return self._reload(order_id)

    def apply_admin_update(self, order_id: str, payload: OrderStatusUpdate) -> Order:
        current = _load(self.store, order_id)["status"]
        target = payload.status
        if target == current:
            return self.annotate(order_id, payload.tracking_number, payload.admin_notes)
        if target == OrderStatus.SHIPPED:
            return self.ship(order_id, payload.tracking_number, payload.admin_notes)
        if target == OrderStatus.DELIVERED:
            return self.deliver(order_id, payload.admin_notes)
        if target == OrderStatus.CANCELLED:
            return self.cancel(order_id, admin_notes=payload.admin_notes)
        # completed is only reachable through a verified payment
        raise InvalidTransition(current, target)


class OrderQueries:
    def __init__(self, store: DocumentStore):
        self.store = store

    def get(self, order_id: str, user_id: Optional[str] = None) -> Order:
        return Order(**to_str_id(_load(self.store, order_id, user_id)))

    def list_for_user(self, user_id: str) -> List[Order]:
        docs = self.store.find(ORDERS, {"user_id": user_id}, sort=[("order_date", DESCENDING)])
        return [Order(**to_str_id(d)) for d in docs]

    def admin_list(self, status: Optional[str] = None, limit: int = 100, offset: int = 0) -> AdminOrderList:
        filt = {}
        if status and status != "all":
            filt["status"] = status
        docs = self.store.find(ORDERS, filt, sort=[("order_date", DESCENDING)], skip=offset, limit=limit)
        return AdminOrderList(orders=[Order(**to_str_id(d)) for d in docs], stats=self.stats())

    def stats(self) -> OrderStats:
        stats = OrderStats()
        revenue = to_money(0)
        for doc in get_documents(self.store, ORDERS):
            stats.total += 1
            status = doc.get("status", OrderStatus.PENDING.value)
            setattr(stats, status, getattr(stats, status) + 1)
            if status != OrderStatus.CANCELLED:
                revenue += to_money(doc.get("total_amount", 0))
        stats.total_revenue = revenue
        return stats
