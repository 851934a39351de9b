"""
Cart ledger

One ledger per browsing session. Lines are pinned to the product and
variant as they were when added; every change is written back to the
session's storage slot.
"""
import logging
from typing import Iterator, List, Optional

from pydantic import TypeAdapter, ValidationError

from database import DocumentStore, StoreError
from schemas import CartItem, Product, ProductSnapshot, ProductVariant, VariantSnapshot

logger = logging.getLogger(__name__)

CART_STORAGE_KEY = "skinhub-cart"

_cart_items = TypeAdapter(List[CartItem])


class DocumentCartSlot:
    """The `skinhub-cart` slot of one session, kept in the cart collection."""

    collection = "cart"

    def __init__(self, store: DocumentStore, session_id: str, key: str = CART_STORAGE_KEY):
        self.store = store
        self.session_id = session_id
        self.key = key

    def read(self) -> Optional[str]:
        doc = self.store.get(self.collection, self.session_id)
        return doc.get(self.key) if doc else None

    def write(self, payload: str) -> None:
        self.store.put(self.collection, self.session_id, {self.key: payload})

    def clear(self) -> None:
        self.store.delete(self.collection, self.session_id)


class CartLedger:
    def __init__(self, slot):
        self.slot = slot
        self.items: List[CartItem] = self._load()

    def _load(self) -> List[CartItem]:
        try:
            raw = self.slot.read()
        except StoreError:
            logger.warning("Could not read stored cart, starting empty")
            return []
        if not raw:
            return []
        try:
            return _cart_items.validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable stored cart")
            return []

    def _save(self) -> None:
        self.slot.write(_cart_items.dump_json(self.items).decode())

    def __iter__(self) -> Iterator[CartItem]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def find(self, variant_id: str) -> Optional[CartItem]:
        return next((item for item in self.items if item.variant_id == variant_id), None)

    def add_item(self, product: Product, variant: ProductVariant, quantity: int = 1) -> CartItem:
        if quantity < 1:
            raise ValueError("Quantity must be at least 1")
        item = self.find(variant.id)
        if item:
            item.quantity += quantity
        else:
            item = CartItem(
                product_id=product.id,
                variant_id=variant.id,
                product=ProductSnapshot.of(product),
                variant=VariantSnapshot.of(variant),
                quantity=quantity,
            )
            self.items.append(item)
        self._save()
        return item

    def update_quantity(self, variant_id: str, quantity: int) -> None:
        if quantity <= 0:
            self.remove_item(variant_id)
            return
        item = self.find(variant_id)
        if item:
            item.quantity = quantity
            self._save()

    def remove_item(self, variant_id: str) -> None:
        remaining = [item for item in self.items if item.variant_id != variant_id]
        if len(remaining) != len(self.items):
            self.items = remaining
            self._save()

    def clear_cart(self) -> None:
        self.items = []
        self.slot.clear()

    def get_total(self) -> float:
        return round(sum(item.line_total for item in self.items), 2)

    def get_item_count(self) -> int:
        return sum(item.quantity for item in self.items)
