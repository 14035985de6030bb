import logging
from typing import Dict, Optional, Set

from sqlalchemy.orm import Session, sessionmaker

from smartshop.core.errors import InvalidTransition, NotFound, PermissionDenied
from smartshop.db.models import Order, OrderStatus, PaymentStatus, utcnow
from smartshop.kafka import producer
from smartshop.repo.catalog import CatalogRepository
from smartshop.repo.orders import OrderRepository

log = logging.getLogger(__name__)

TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPING, OrderStatus.CANCELLED},
    OrderStatus.SHIPPING: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

TIMESTAMP_FIELDS = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.PROCESSING: "processed_at",
    OrderStatus.SHIPPING: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}

# statuses a customer may still cancel on their own
CUSTOMER_CANCELLABLE = {OrderStatus.PENDING, OrderStatus.CONFIRMED}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS[current]


class OrderLifecycle:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def update_order_status(self, order_number: str, new_status: OrderStatus,
                            admin_notes: Optional[str] = None) -> Order:
        new_status = OrderStatus(new_status)
        with self.session_factory.begin() as db:
            order = self._get(db, order_number)
            previous = order.status
            if not can_transition(previous, new_status):
                raise InvalidTransition(order_number, previous.value, new_status.value)
            applied = self._apply(db, order, new_status, admin_notes)

        if applied:
            log.info("order %s: %s -> %s", order_number, previous.value, new_status.value)
            self._emit("order.status_changed", order_number, previous, new_status)
        return self._load(order_number)

    def cancel_order(self, order_number: str, reason: Optional[str] = None, *,
                     actor_id: Optional[int] = None, is_admin: bool = True) -> Order:
        """Cancel and put the stock back. Cancelling twice is a no-op."""
        with self.session_factory.begin() as db:
            order = self._get(db, order_number)
            if not is_admin and order.user_id != actor_id:
                raise PermissionDenied("You can only cancel your own orders", order_number=order_number)
            previous = order.status
            if previous == OrderStatus.CANCELLED:
                log.info("order %s already cancelled, nothing to restore", order_number)
                return order
            allowed = TRANSITIONS[previous]
            if not is_admin and previous not in CUSTOMER_CANCELLABLE:
                allowed = set()
            if OrderStatus.CANCELLED not in allowed:
                raise InvalidTransition(order_number, previous.value, OrderStatus.CANCELLED.value)
            applied = self._apply(db, order, OrderStatus.CANCELLED, reason)

        if not applied:
            log.info("order %s was cancelled concurrently, nothing to restore", order_number)
            return self._load(order_number)
        log.info("order %s cancelled (was %s)", order_number, previous.value)
        self._emit("order.cancelled", order_number, previous, OrderStatus.CANCELLED, reason=reason)
        return self._load(order_number)

    def update_payment_status(self, order_number: str, payment_status: PaymentStatus) -> Order:
        # orthogonal to fulfilment: no cross-check against order.status
        payment_status = PaymentStatus(payment_status)
        with self.session_factory.begin() as db:
            repo = OrderRepository(db)
            if not repo.set_payment_status(order_number, {"payment_status": payment_status, "updated_at": utcnow()}):
                raise NotFound(f"Order {order_number} not found", order_number=order_number)
        producer.emit_order_event({
            "type": "order.payment_status_changed",
            "order_number": order_number,
            "payment_status": payment_status.value,
        })
        return self._load(order_number)

    # -- internals -------------------------------------------------------

    def _apply(self, db: Session, order: Order, target: OrderStatus, notes: Optional[str]) -> bool:
        """Write the transition. False when a concurrent cancel already got there first."""
        now = utcnow()
        values = {"status": target, TIMESTAMP_FIELDS[target]: now, "updated_at": now}
        if notes:
            values["admin_notes"] = notes
        if target == OrderStatus.DELIVERED:
            values["payment_status"] = PaymentStatus.PAID

        repo = OrderRepository(db)
        # the WHERE on the old status makes a racing second writer match zero rows
        if not repo.transition(order.order_number, [order.status], values):
            current = repo.status_of(order.order_number)
            if current == target == OrderStatus.CANCELLED:
                return False
            raise InvalidTransition(order.order_number, current.value if current else "unknown", target.value)

        if target == OrderStatus.CANCELLED:
            self._restore_stock(db, order)
        return True

    def _restore_stock(self, db: Session, order: Order):
        catalog = CatalogRepository(db)
        for item in OrderRepository(db).items_for(order.id):
            if not catalog.increment_stock(item.product_id, item.quantity):
                log.warning("order %s: product %s is gone, %d units not restored",
                            order.order_number, item.product_id, item.quantity)
        log.info("stock restored for order %s", order.order_number)

    def _get(self, db: Session, order_number: str) -> Order:
        order = OrderRepository(db).get_by_number(order_number)
        if order is None:
            raise NotFound(f"Order {order_number} not found", order_number=order_number)
        return order

    def _load(self, order_number: str) -> Order:
        with self.session_factory() as db:
            return self._get(db, order_number)

    def _emit(self, event_type: str, order_number: str, previous: OrderStatus, status: OrderStatus, **extra):
        producer.emit_order_event({
            "type": event_type,
            "order_number": order_number,
            "previous_status": previous.value,
            "status": status.value,
            **extra,
        })
