import logging
from typing import List

from pymongo import DESCENDING

from database import FAVORITES, PRODUCTS, DocumentStore, to_str_id, utcnow
from errors import ProductNotFound
from schemas import Favorite, Product

logger = logging.getLogger(__name__)


class FavoriteService:
    """Per-user wishlist. One row per (user, product)."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def list_favorites(self, user_id: str) -> List[Favorite]:
        favorites = []
        for doc in self.store.find(FAVORITES, {"user_id": user_id}, sort=[("created_at", DESCENDING)]):
            favorite = Favorite(**to_str_id(doc))
            product = self.store.find_one(PRODUCTS, {"_id": doc["product_id"]})
            if product is not None:
                favorite.product = Product(**to_str_id(product))
            favorites.append(favorite)
        return favorites

    def add(self, user_id: str, product_id: str) -> Favorite:
        if self.store.find_one(PRODUCTS, {"_id": product_id}) is None:
            raise ProductNotFound(product_id)
        key = {"user_id": user_id, "product_id": product_id}
        # adding twice keeps the first row
        self.store.update_one(FAVORITES, key, {"$setOnInsert": {"created_at": utcnow()}}, upsert=True)
        logger.info("favorite added: user=%s product=%s", user_id, product_id)
        return Favorite(**to_str_id(self.store.find_one(FAVORITES, key)))

    def remove(self, user_id: str, product_id: str) -> bool:
        removed = bool(self.store.delete_one(FAVORITES, {"user_id": user_id, "product_id": product_id}))
        if removed:
            logger.info("favorite removed: user=%s product=%s", user_id, product_id)
        return removed
