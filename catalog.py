"""
Catalog: products, their variants and reviews.
"""
import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId

from database import DocumentStore
from identifiers import new_product_id, new_variant_id, suggest_sku
from schemas import Product, ProductVariant, Review
from stock import StockLedger, VariantNotFound

logger = logging.getLogger(__name__)


class ProductNotFound(Exception):
    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class InvalidAttributes(ValueError):
    pass


class Catalog:
    products = "product"
    variants = "variant"
    reviews = "review"

    def __init__(self, store: DocumentStore):
        self.store = store

    # Products

    def get_product(self, product_id: str) -> Product:
        doc = self.store.get(self.products, product_id)
        if doc is None:
            raise ProductNotFound(product_id)
        return Product(**doc)

    def list_products(
        self,
        category: Optional[str] = None,
        skin_type: Optional[str] = None,
        status: Optional[str] = "published",
    ) -> List[Product]:
        filters: Dict[str, Any] = {}
        if category:
            filters["category"] = category
        if skin_type:
            filters["skin_type"] = skin_type.lower()
        if status:
            filters["status"] = status
        return [Product(**d) for d in self.store.list(self.products, filters, sort=[("created_at", -1)])]

    def create_product(self, product: Product) -> Product:
        product = product.model_copy(update={"id": new_product_id()})
        self.store.put(self.products, product.id, product.model_dump(exclude={"id"}))
        return product

    def update_product(self, product_id: str, changes: Dict[str, Any]) -> Product:
        current = self.get_product(product_id)
        changes = {
            k: v for k, v in changes.items()
            if k in Product.model_fields and k not in ("id", "rating", "review_count")
        }
        updated = Product(**{**current.model_dump(), **changes})
        # Only the edited keys are written; rating and review_count belong to refresh_rating.
        if changes:
            self.store.update(self.products, product_id, {k: getattr(updated, k) for k in changes})
        return self.get_product(product_id)

    def delete_product(self, product_id: str) -> int:
        """Delete a product and its variants. Returns the number of variants removed."""
        self.get_product(product_id)
        removed = self.store.delete_many(self.variants, {"product_id": product_id})
        self.store.delete(self.products, product_id)
        logger.info("Deleted product %s and %d variants", product_id, removed)
        return removed

    # Variants

    def variants_for(self, product_id: str, active_only: bool = False) -> List[ProductVariant]:
        filters: Dict[str, Any] = {"product_id": product_id}
        if active_only:
            filters["active"] = True
        docs = self.store.list(self.variants, filters, sort=[("created_at", 1)])
        return [ProductVariant(**d) for d in docs]

    def get_variant(self, variant_id: str) -> ProductVariant:
        doc = self.store.get(self.variants, variant_id)
        if doc is None:
            raise VariantNotFound(variant_id)
        return ProductVariant(**doc)

    def suggest_sku(self, product_id: str) -> str:
        product = self.get_product(product_id)
        return suggest_sku(product.brand, len(self.variants_for(product_id)))

    def _check_attributes(self, product: Product, attributes: Dict[str, str]) -> None:
        if not product.attribute_keys:
            return
        unknown = [k for k in attributes if k not in product.attribute_keys]
        if unknown:
            raise InvalidAttributes(
                f"Unknown attributes for {product.name}: {', '.join(unknown)}"
                f" (expected {', '.join(product.attribute_keys)})"
            )

    def create_variant(self, variant: ProductVariant) -> ProductVariant:
        product = self.get_product(variant.product_id)
        self._check_attributes(product, variant.attributes)
        sku = variant.sku.strip() or suggest_sku(product.brand, len(self.variants_for(product.id)))
        variant = variant.model_copy(update={"id": new_variant_id(), "sku": sku})
        self.store.put(self.variants, variant.id, variant.model_dump(exclude={"id"}))
        logger.info("Created variant %s (%s) for %s", variant.id, sku, product.id)
        return variant

    def update_variant(self, variant_id: str, changes: Dict[str, Any]) -> ProductVariant:
        """Apply an admin edit to a variant.

        Only the edited keys are written, so a checkout reserving units
        between the read and the write keeps its decrement. A `stock` key is
        an absolute count and goes through StockLedger.set_stock.
        """
        current = self.get_variant(variant_id)
        changes = {
            k: v for k, v in changes.items()
            if k in ProductVariant.model_fields and k not in ("id", "product_id")
        }
        if "attributes" in changes:
            self._check_attributes(self.get_product(current.product_id), changes["attributes"])
        updated = ProductVariant(**{**current.model_dump(), **changes})
        stock = changes.pop("stock", None)
        if changes:
            self.store.update(self.variants, variant_id, {k: getattr(updated, k) for k in changes})
        if stock is not None:
            StockLedger(self.store).set_stock(variant_id, updated.stock)
        return self.get_variant(variant_id)

    def delete_variant(self, variant_id: str) -> None:
        if not self.store.delete(self.variants, variant_id):
            raise VariantNotFound(variant_id)

    # Reviews

    def reviews_for(self, product_id: str) -> List[dict]:
        return self.store.list(self.reviews, {"product_id": product_id}, sort=[("created_at", -1)])

    def add_review(self, review: Review) -> str:
        self.get_product(review.product_id)
        review_id = str(ObjectId())
        self.store.put(self.reviews, review_id, review.model_dump())
        self.refresh_rating(review.product_id)
        return review_id

    def refresh_rating(self, product_id: str) -> Product:
        revs = self.reviews_for(product_id)
        avg = sum(r.get("rating", 0) for r in revs) / len(revs) if revs else 0.0
        self.store.update(self.products, product_id, {"rating": round(avg, 2), "review_count": len(revs)})
        return self.get_product(product_id)
