import logging
from collections import OrderedDict
from typing import Iterable, List, Tuple

from database import PRODUCTS, Session, utcnow
from errors import InsufficientStock

logger = logging.getLogger(__name__)

StockLine = Tuple[str, int]


def _merge(items: Iterable[StockLine]) -> List[StockLine]:
    # several cart lines can point at one product (different custom sizes)
    totals: "OrderedDict[str, int]" = OrderedDict()
    for product_id, quantity in items:
        if quantity <= 0:
            raise ValueError(f"quantity must be > 0 for {product_id}")
        totals[product_id] = totals.get(product_id, 0) + quantity
    return list(totals.items())


class InventoryLedger:
    """
    Product.stock is only ever changed here. Both operations must run inside the
    caller's transaction: a reservation that fails part way relies on the
    transaction abort to undo the lines already decremented.
    """

    def reserve(self, session: Session, items: Iterable[StockLine]) -> None:
        for product_id, quantity in _merge(items):
            matched = session.update_one(
                PRODUCTS,
                {"_id": product_id, "stock": {"$gte": quantity}},
                {"$inc": {"stock": -quantity}, "$set": {"updated_at": utcnow()}},
            )
            if matched:
                logger.info("stock reserved: product=%s qty=%s", product_id, quantity)
                continue

            product = session.find_one(PRODUCTS, {"_id": product_id})
            if product is None:
                # the product vanished between lookup and reservation
                raise InsufficientStock(product_id, available=0, requested=quantity)
            stock = product.get("stock")
            if stock is None:
                logger.debug("stock untracked: product=%s", product_id)
                continue
            logger.info("stock short: product=%s available=%s requested=%s", product_id, stock, quantity)
            raise InsufficientStock(product_id, available=stock, requested=quantity)

    def release(self, session: Session, items: Iterable[StockLine]) -> None:
        for product_id, quantity in _merge(items):
            matched = session.update_one(
                PRODUCTS,
                {"_id": product_id, "stock": {"$ne": None}},
                {"$inc": {"stock": quantity}, "$set": {"updated_at": utcnow()}},
            )
            if matched:
                logger.info("stock released: product=%s qty=%s", product_id, quantity)
            else:
                logger.info("stock not restored (product gone or untracked): product=%s", product_id)
