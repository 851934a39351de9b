"""
Checkout

Turns a session's cart into an order. Preconditions are checked in a fixed
order (address, then cart, then payment method) and nothing is written when
one fails. Stock for every line is then taken with a conditional decrement;
if any line cannot be covered, units already taken are given back.
"""
import logging
import os
from typing import List, Optional

from cart import CartLedger
from database import DocumentStore, StoreError
from identifiers import new_order_id
from schemas import Address, CartItem, Order, StoreSettings
from stock import StockLedger

logger = logging.getLogger(__name__)

DELIVERY_CHARGES = float(os.getenv("DELIVERY_CHARGES", "100"))
FREE_DELIVERY_THRESHOLD = float(os.getenv("FREE_DELIVERY_THRESHOLD", "1000"))

SETTINGS_COLLECTION = "settings"
SETTINGS_ID = "store"


class CheckoutError(Exception):
    """A checkout precondition failed; the customer can fix it and retry."""


class AddressRequired(CheckoutError):
    def __init__(self):
        super().__init__("Please select a delivery address")


class EmptyCart(CheckoutError):
    def __init__(self):
        super().__init__("Your cart is empty")


class PaymentMethodUnavailable(CheckoutError):
    pass


class ItemUnavailable(CheckoutError):
    def __init__(self, item: CartItem):
        self.variant_id = item.variant_id
        super().__init__(f"{item.product.name} ({item.variant.sku}) is no longer available")


class InsufficientStock(CheckoutError):
    def __init__(self, item: CartItem, available: int):
        self.variant_id = item.variant_id
        self.requested = item.quantity
        self.available = available
        super().__init__(
            f"Insufficient stock for {item.product.name} ({item.variant.sku}): "
            f"{available} left, {item.quantity} requested. Please refresh your cart."
        )


def load_settings(store: DocumentStore) -> StoreSettings:
    defaults = {"delivery_charges": DELIVERY_CHARGES, "free_delivery_threshold": FREE_DELIVERY_THRESHOLD}
    doc = store.get(SETTINGS_COLLECTION, SETTINGS_ID) or {}
    return StoreSettings(**{**defaults, **doc})


def save_settings(store: DocumentStore, settings: StoreSettings) -> StoreSettings:
    store.put(SETTINGS_COLLECTION, SETTINGS_ID, settings.model_dump())
    return settings


def shipping_fee(subtotal: float, settings: StoreSettings) -> float:
    return 0.0 if subtotal > settings.free_delivery_threshold else settings.delivery_charges


class CheckoutValidator:
    orders = "order"

    def __init__(self, store: DocumentStore, stock: Optional[StockLedger] = None):
        self.store = store
        self.stock = stock or StockLedger(store)

    def validate(
        self,
        cart: CartLedger,
        address: Optional[Address],
        payment_method: str,
        settings: StoreSettings,
    ) -> None:
        if address is None:
            raise AddressRequired()
        if not len(cart):
            raise EmptyCart()
        if payment_method == "cod":
            if not settings.cod_enabled:
                raise PaymentMethodUnavailable("Cash on delivery is currently unavailable")
            if cart.get_total() < settings.cod_minimum_order:
                raise PaymentMethodUnavailable(
                    f"Cash on delivery requires a minimum order of Rs. {settings.cod_minimum_order:.2f}"
                )

    def _reserve(self, items: List[CartItem]) -> List[CartItem]:
        taken: List[CartItem] = []
        try:
            for item in items:
                if not self.stock.reserve(item.variant_id, item.quantity):
                    live = self.store.get(StockLedger.collection, item.variant_id)
                    if live is None or not live.get("active", False):
                        raise ItemUnavailable(item)
                    raise InsufficientStock(item, live.get("stock", 0))
                taken.append(item)
        except Exception:
            self._release(taken)
            raise
        return taken

    def _release(self, items: List[CartItem]) -> None:
        for item in items:
            self.stock.release(item.variant_id, item.quantity)

    def place_order(
        self,
        cart: CartLedger,
        user_id: str,
        address: Optional[Address],
        payment_method: str = "cod",
    ) -> Order:
        settings = load_settings(self.store)
        self.validate(cart, address, payment_method, settings)

        subtotal = cart.get_total()
        fee = shipping_fee(subtotal, settings)
        items = [item.model_copy(deep=True) for item in cart.items]
        order = Order(
            id=new_order_id(),
            user_id=user_id,
            items=items,
            subtotal=subtotal,
            shipping_fee=fee,
            total=round(subtotal + fee, 2),
            shipping_address=address.model_copy(),
            payment_method=payment_method,
            payment_status="pending",
            status="pending",
        )

        taken = self._reserve(order.items)
        try:
            self.store.put(self.orders, order.id, order.model_dump(exclude={"id"}))
        except Exception:
            self._release(taken)
            raise

        # The order is written and its stock taken; failures past this point
        # are logged and must not reach the customer as a retryable error.
        try:
            order = Order(**self.store.get(self.orders, order.id))
        except StoreError:
            logger.exception("Order %s placed but could not be read back", order.id)
        try:
            cart.clear_cart()
        except StoreError:
            logger.exception("Order %s placed but the cart for it could not be cleared", order.id)
        logger.info("Order %s placed by %s: %d items, total %.2f", order.id, user_id, len(items), order.total)
        return order
