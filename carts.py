import logging
from typing import List, Optional

from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError

from database import CART, PRODUCTS, DocumentStore, Session, create_document, to_str_id, utcnow
from errors import CartItemNotFound, ProductNotFound
from schemas import CartItem, CartItemIn, CartQuantityUpdate, Product, StockIssue

logger = logging.getLogger(__name__)


def _cart_key(user_id: str, product_id: str, custom_size: Optional[str]) -> dict:
    return {"user_id": user_id, "product_id": product_id, "custom_size": custom_size}


class CartService:
    def __init__(self, store: DocumentStore):
        self.store = store

    def list_items(self, user_id: str) -> List[CartItem]:
        items = []
        for doc in self.store.find(CART, {"user_id": user_id}, sort=[("created_at", ASCENDING)]):
            product = self.store.find_one(PRODUCTS, {"_id": doc["product_id"]})
            item = CartItem(**to_str_id(doc))
            if product is not None:
                item.product = Product(**to_str_id(product))
            items.append(item)
        return items

    def add_item(self, user_id: str, payload: CartItemIn) -> CartItem:
        key = _cart_key(user_id, payload.product_id, payload.custom_size)

        def txn(session: Session) -> None:
            if session.find_one(PRODUCTS, {"_id": payload.product_id}) is None:
                raise ProductNotFound(payload.product_id)
            # same product + customization merges into one row
            merged = session.update_one(
                CART, key, {"$inc": {"quantity": payload.quantity}, "$set": {"updated_at": utcnow()}}
            )
            if merged:
                if payload.custom_image:
                    session.update_one(CART, key, {"$set": {"custom_image": payload.custom_image}})
                return
            create_document(session, CART, {**key, "quantity": payload.quantity, "custom_image": payload.custom_image})

        try:
            self.store.run_transaction(txn)
        except DuplicateKeyError:
            # a concurrent add created the row first; merge into it
            self.store.run_transaction(txn)
        logger.info("cart add: user=%s product=%s qty=%s", user_id, payload.product_id, payload.quantity)
        return CartItem(**to_str_id(self.store.find_one(CART, key)))

    def set_quantity(self, user_id: str, payload: CartQuantityUpdate) -> CartItem:
        key = _cart_key(user_id, payload.product_id, payload.custom_size)
        matched = self.store.update_one(CART, key, {"$set": {"quantity": payload.quantity, "updated_at": utcnow()}})
        if not matched:
            raise CartItemNotFound(payload.product_id)
        return CartItem(**to_str_id(self.store.find_one(CART, key)))

    def remove_item(self, user_id: str, product_id: str, custom_size: Optional[str] = None) -> None:
        if not self.store.delete_one(CART, _cart_key(user_id, product_id, custom_size)):
            raise CartItemNotFound(product_id)
        logger.info("cart remove: user=%s product=%s", user_id, product_id)

    def stock_issues(self, user_id: str) -> List[StockIssue]:
        """Read-only pre-check; the reservation at checkout is authoritative."""
        requested = {}
        for doc in self.store.find(CART, {"user_id": user_id}):
            requested[doc["product_id"]] = requested.get(doc["product_id"], 0) + doc["quantity"]

        issues = []
        for product_id, quantity in requested.items():
            product = self.store.find_one(PRODUCTS, {"_id": product_id})
            if product is None:
                issues.append(StockIssue(product_id=product_id, product_name="Unknown Product", available=0, requested=quantity))
                continue
            stock = product.get("stock")
            if stock is not None and stock < quantity:
                issues.append(StockIssue(product_id=product_id, product_name=product["name"], available=stock, requested=quantity))
        return issues
