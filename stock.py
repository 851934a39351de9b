"""
Stock ledger

Per-variant stock counts. Admins overwrite counts directly; checkout takes
and gives back units with conditional updates so two orders can never both
claim the last unit.
"""
import logging
from enum import Enum
from typing import Dict, List, Optional

from database import DocumentStore
from schemas import ProductVariant

logger = logging.getLogger(__name__)

LOW_STOCK_THRESHOLD = 10


class StockLevel(str, Enum):
    OUT_OF_STOCK = "out of stock"
    LOW_STOCK = "low stock"
    IN_STOCK = "in stock"


def classify_stock(stock: int) -> StockLevel:
    if stock < 0:
        raise ValueError(f"Stock cannot be negative: {stock}")
    if stock == 0:
        return StockLevel.OUT_OF_STOCK
    if stock < LOW_STOCK_THRESHOLD:
        return StockLevel.LOW_STOCK
    return StockLevel.IN_STOCK


class VariantNotFound(Exception):
    def __init__(self, variant_id: str):
        self.variant_id = variant_id
        super().__init__(f"Variant not found: {variant_id}")


class StockLedger:
    collection = "variant"

    def __init__(self, store: DocumentStore):
        self.store = store

    def get(self, variant_id: str) -> ProductVariant:
        doc = self.store.get(self.collection, variant_id)
        if doc is None:
            raise VariantNotFound(variant_id)
        return ProductVariant(**doc)

    def set_stock(self, variant_id: str, stock: int) -> ProductVariant:
        if stock < 0:
            raise ValueError("Stock cannot be negative")
        if not self.store.update(self.collection, variant_id, {"stock": stock}):
            raise VariantNotFound(variant_id)
        logger.info("Stock for %s set to %d", variant_id, stock)
        return self.get(variant_id)

    def reserve(self, variant_id: str, quantity: int) -> bool:
        """Take `quantity` units if the variant is active and has that many left."""
        return self.store.increment(
            self.collection, variant_id, "stock", -quantity,
            conditions={"active": True, "stock": {"$gte": quantity}},
        )

    def release(self, variant_id: str, quantity: int) -> None:
        if not self.store.increment(self.collection, variant_id, "stock", quantity):
            logger.warning("Could not return %d units to %s: variant is gone", quantity, variant_id)

    def variants(self, level: Optional[StockLevel] = None, search: Optional[str] = None) -> List[ProductVariant]:
        filters: Dict = {}
        if level == StockLevel.OUT_OF_STOCK:
            filters["stock"] = 0
        elif level == StockLevel.LOW_STOCK:
            filters["stock"] = {"$gt": 0, "$lt": LOW_STOCK_THRESHOLD}
        elif level == StockLevel.IN_STOCK:
            filters["stock"] = {"$gte": LOW_STOCK_THRESHOLD}
        docs = self.store.list(self.collection, filters, sort=[("stock", 1)])
        found = [ProductVariant(**d) for d in docs]
        if search:
            needle = search.lower()
            found = [v for v in found if needle in v.sku.lower()]
        return found

    def low_stock_alerts(self) -> List[ProductVariant]:
        docs = self.store.list(self.collection, {"stock": {"$lt": LOW_STOCK_THRESHOLD}}, sort=[("stock", 1)])
        return [ProductVariant(**d) for d in docs]

    def summary(self) -> Dict[str, int]:
        counts = {level.value: 0 for level in StockLevel}
        for doc in self.store.list(self.collection):
            counts[classify_stock(doc.get("stock", 0)).value] += 1
        counts["total"] = sum(counts.values())
        return counts
