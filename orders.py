"""
Order lifecycle

    pending -> confirmed -> processing -> shipped -> delivered
         \\______________________________________-> cancelled

Customers may cancel from pending or confirmed. Admins may set any status,
but moving backwards or out of delivered/cancelled is a correction: it has
to be asked for explicitly and is logged as such. After creation only
status, payment_status and tracking_number ever change.
"""
import logging
from enum import Enum
from typing import List, Optional

from bson import ObjectId

from database import DocumentStore
from schemas import ActivityLog, Order, UserOut

logger = logging.getLogger(__name__)

ORDER_STATUSES = ("pending", "confirmed", "processing", "shipped", "delivered", "cancelled")
FORWARD_PATH = ("pending", "confirmed", "processing", "shipped", "delivered")
TERMINAL_STATUSES = frozenset({"delivered", "cancelled"})
CANCELLABLE_STATUSES = frozenset({"pending", "confirmed"})
PAYMENT_STATUSES = ("pending", "paid", "failed")
MUTABLE_FIELDS = frozenset({"status", "payment_status", "tracking_number"})


class OrderError(Exception):
    pass


class OrderNotFound(OrderError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class CannotCancel(OrderError):
    def __init__(self, status: str):
        self.status = status
        super().__init__(f"This order cannot be cancelled (status: {status})")


class InvalidTransition(OrderError):
    pass


class TrackingNumberRequired(OrderError):
    def __init__(self):
        super().__init__("A tracking number is required to ship an order")


class TransitionKind(str, Enum):
    UNCHANGED = "unchanged"
    FORWARD = "forward"
    CANCEL = "cancel"
    CORRECTION = "correction"


def classify_transition(current: str, target: str) -> TransitionKind:
    if target not in ORDER_STATUSES:
        raise InvalidTransition(f"Unknown order status: {target}")
    if current == target:
        return TransitionKind.UNCHANGED
    if current in TERMINAL_STATUSES:
        return TransitionKind.CORRECTION
    if target == "cancelled":
        return TransitionKind.CANCEL
    if FORWARD_PATH.index(target) > FORWARD_PATH.index(current):
        return TransitionKind.FORWARD
    return TransitionKind.CORRECTION


class OrderLifecycle:
    collection = "order"
    logs = "activitylog"

    def __init__(self, store: DocumentStore):
        self.store = store

    def get(self, order_id: str) -> Order:
        doc = self.store.get(self.collection, order_id)
        if doc is None:
            raise OrderNotFound(order_id)
        return Order(**doc)

    def orders_for(self, user_id: str) -> List[Order]:
        docs = self.store.list(self.collection, {"user_id": user_id}, sort=[("created_at", -1)])
        return [Order(**d) for d in docs]

    def list(self, status: Optional[str] = None, payment_method: Optional[str] = None) -> List[Order]:
        filters = {}
        if status:
            filters["status"] = status
        if payment_method:
            filters["payment_method"] = payment_method
        docs = self.store.list(self.collection, filters, sort=[("created_at", -1)])
        return [Order(**d) for d in docs]

    def _write(self, order: Order, changes: dict) -> Order:
        if not set(changes) <= MUTABLE_FIELDS:
            raise ValueError(f"Order fields cannot change: {sorted(set(changes) - MUTABLE_FIELDS)}")
        self.store.update(self.collection, order.id, changes)
        return self.get(order.id)

    def _record(self, actor: UserOut, action: str, order: Order, **details) -> None:
        entry = ActivityLog(
            action=action,
            entity_type="order",
            entity_id=order.id,
            user_id=actor.id,
            user_name=actor.name,
            details={k: (None if v is None else str(v)) for k, v in details.items()},
        )
        self.store.put(self.logs, str(ObjectId()), entry.model_dump())

    # Customer

    def cancel(self, order_id: str, user_id: str) -> Order:
        order = self.get(order_id)
        if order.user_id != user_id:
            raise OrderNotFound(order_id)
        if order.status not in CANCELLABLE_STATUSES:
            raise CannotCancel(order.status)
        logger.info("Order %s cancelled by customer %s", order_id, user_id)
        return self._write(order, {"status": "cancelled"})

    # Admin

    def set_status(
        self,
        order_id: str,
        status: str,
        actor: UserOut,
        tracking_number: Optional[str] = None,
        correction: bool = False,
    ) -> Order:
        order = self.get(order_id)
        kind = classify_transition(order.status, status)
        if kind == TransitionKind.UNCHANGED and not tracking_number:
            return order
        if kind == TransitionKind.CORRECTION:
            if not correction:
                raise InvalidTransition(
                    f"Moving an order from {order.status} to {status} is a correction; confirm it explicitly"
                )
            logger.warning("Order %s corrected from %s to %s by %s", order_id, order.status, status, actor.id)
        else:
            logger.info("Order %s moved from %s to %s by %s", order_id, order.status, status, actor.id)

        changes = {"status": status}
        if status == "shipped" and tracking_number:
            changes["tracking_number"] = tracking_number
        updated = self._write(order, changes)
        self._record(actor, "order_status", order, previous=order.status, status=status, kind=kind.value,
                     tracking_number=changes.get("tracking_number"))
        return updated

    def confirm(self, order_id: str, actor: UserOut) -> Order:
        order = self.get(order_id)
        if order.status != "pending":
            raise InvalidTransition(f"Only pending orders can be confirmed (status: {order.status})")
        return self.set_status(order_id, "confirmed", actor)

    def ship(self, order_id: str, tracking_number: str, actor: UserOut) -> Order:
        order = self.get(order_id)
        if order.status not in ("confirmed", "processing"):
            raise InvalidTransition(f"Only confirmed or processing orders can be shipped (status: {order.status})")
        if not (tracking_number or "").strip():
            raise TrackingNumberRequired()
        return self.set_status(order_id, "shipped", actor, tracking_number=tracking_number.strip())

    def deliver(self, order_id: str, actor: UserOut) -> Order:
        order = self.get(order_id)
        if order.status != "shipped":
            raise InvalidTransition(f"Only shipped orders can be delivered (status: {order.status})")
        return self.set_status(order_id, "delivered", actor)

    def update_tracking(self, order_id: str, tracking_number: str, actor: UserOut) -> Order:
        order = self.get(order_id)
        if order.status != "shipped":
            raise InvalidTransition("Tracking numbers can only be changed on shipped orders")
        if not (tracking_number or "").strip():
            raise TrackingNumberRequired()
        return self.set_status(order_id, "shipped", actor, tracking_number=tracking_number.strip())

    def set_payment_status(self, order_id: str, payment_status: str, actor: UserOut) -> Order:
        if payment_status not in PAYMENT_STATUSES:
            raise InvalidTransition(f"Unknown payment status: {payment_status}")
        order = self.get(order_id)
        if order.payment_status == payment_status:
            return order
        updated = self._write(order, {"payment_status": payment_status})
        self._record(actor, "payment_status", order, previous=order.payment_status, payment_status=payment_status)
        logger.info("Order %s payment marked %s by %s", order_id, payment_status, actor.id)
        return updated

    def activity(self, order_id: Optional[str] = None) -> List[dict]:
        filters = {"entity_id": order_id} if order_id else {}
        return self.store.list(self.logs, filters, sort=[("created_at", -1)])
