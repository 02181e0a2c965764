import logging
from typing import List, Optional

from pymongo import DESCENDING

from database import PRODUCTS, DocumentStore, create_document, to_str_id, utcnow
from errors import ProductNotFound
from schemas import Product, ProductIn, ProductUpdate

logger = logging.getLogger(__name__)


class ProductService:
    """Admin catalogue CRUD. Stock changes from orders go through InventoryLedger."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def list_products(self, category: Optional[str] = None) -> List[Product]:
        filt = {"category": category.upper()} if category else {}
        docs = self.store.find(PRODUCTS, filt, sort=[("created_at", DESCENDING)])
        return [Product(**to_str_id(d)) for d in docs]

    def get(self, product_id: str) -> Product:
        doc = self.store.find_one(PRODUCTS, {"_id": product_id})
        if not doc:
            raise ProductNotFound(product_id)
        return Product(**to_str_id(doc))

    def create(self, payload: ProductIn) -> Product:
        data = payload.model_dump()
        if data.get("category"):
            data["category"] = data["category"].upper()
        inserted_id = create_document(self.store, PRODUCTS, data)
        logger.info("product created: id=%s name=%s", inserted_id, payload.name)
        return self.get(inserted_id)

    def update(self, product_id: str, payload: ProductUpdate) -> Product:
        updates = payload.model_dump(exclude_unset=True)
        # stock may be explicitly cleared to stop tracking it
        unset = {k: "" for k, v in updates.items() if v is None and k == "stock"}
        updates = {k: v for k, v in updates.items() if v is not None}
        if updates.get("category"):
            updates["category"] = updates["category"].upper()
        if updates.get("type"):
            updates["type"] = updates["type"].lower()
        change = {"$set": {**updates, "updated_at": utcnow()}}
        if unset:
            change["$unset"] = unset
        if not self.store.update_one(PRODUCTS, {"_id": product_id}, change):
            raise ProductNotFound(product_id)
        logger.info("product updated: id=%s fields=%s", product_id, sorted(updates) + sorted(unset))
        return self.get(product_id)

    def delete(self, product_id: str) -> None:
        # orders keep their item snapshots
        if not self.store.delete_one(PRODUCTS, {"_id": product_id}):
            raise ProductNotFound(product_id)
        logger.info("product deleted: id=%s", product_id)
