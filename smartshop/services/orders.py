"""Checkout: turn a user's cart into an order in a single transaction.

Everything from the cart read to the cart delete happens inside one
``session_factory.begin()`` block, so an exception at any step leaves no
order, no order items, no stock change and the cart untouched.
"""
import itertools
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from smartshop.core.errors import EmptyCart, InsufficientStock, NotFound, OrderNumberTaken, ProductMissing
from smartshop.db.models import Order, OrderItem, OrderStatus, PaymentMethod, PaymentStatus, Product, utcnow
from smartshop.kafka import producer
from smartshop.repo.carts import CartRepository
from smartshop.repo.catalog import CatalogRepository
from smartshop.repo.orders import OrderRepository
from smartshop.repo.paging import Page

log = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 3

_sequence = itertools.count(1)


def generate_order_number(order_count: int, now: Optional[datetime] = None) -> str:
    """``DH<year><last 8 digits of epoch ms><count+1><2-digit sequence>``.

    The count is racy between concurrent checkouts; the per-process sequence
    separates same-millisecond calls and the unique index on
    ``orders.order_number`` is what actually guarantees uniqueness.
    """
    now = now or utcnow()
    millis = int(now.replace(tzinfo=timezone.utc).timestamp() * 1000)
    seq = next(_sequence) % 100
    return f"DH{now.year}{str(millis)[-8:]}{order_count + 1:03d}{seq:02d}"


def product_snapshot(product: Product) -> Dict[str, Any]:
    return {
        "description": product.description,
        "images": list(product.images or []),
        "brand": product.brand.name if product.brand else "Unknown",
        "category": product.category.name if product.category else "Unknown",
    }


class OrderPipeline:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def place_order(self, user_id: int, customer_info: Dict[str, Any], payment_method: PaymentMethod,
                    customer_notes: Optional[str] = None) -> Order:
        for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
            try:
                order_number = self._place(user_id, customer_info, PaymentMethod(payment_method), customer_notes)
                break
            except OrderNumberTaken:
                if attempt == ORDER_NUMBER_ATTEMPTS:
                    raise
                log.warning("order number collision for user %s, retrying checkout (attempt %d)", user_id, attempt)

        order = self.get_order(order_number)
        log.info("order %s placed by user %s total=%s", order.order_number, user_id, order.total_amount_cents)
        producer.emit_order_event({
            "type": "order.created",
            "order_number": order.order_number,
            "user_id": user_id,
            "amount_cents": order.total_amount_cents,
            "items": [
                {"product_id": it.product_id, "qty": it.quantity, "unit_price_cents": it.unit_price_cents}
                for it in order.items
            ],
        })
        return order

    def _place(self, user_id: int, customer_info: Dict[str, Any], payment_method: PaymentMethod,
               customer_notes: Optional[str]) -> str:
        with self.session_factory.begin() as db:
            carts = CartRepository(db)
            catalog = CatalogRepository(db)
            orders = OrderRepository(db)

            # 1. cart lines with their products
            lines = carts.lines(user_id)
            if not lines:
                raise EmptyCart()

            # 2. stock check, totals, item drafts
            subtotal = 0
            drafts: List[OrderItem] = []
            for line in lines:
                item, product = line.item, line.product.resolved
                if product is None:
                    raise ProductMissing(line.product.id, cart_item_id=item.id, product_name=item.product_name)
                if product.stock < item.quantity:
                    raise InsufficientStock(product.id, product.name, item.quantity, product.stock)
                line_total = item.unit_price_cents * item.quantity
                subtotal += line_total
                drafts.append(OrderItem(
                    product_id=product.id,
                    product_name=product.name,
                    product_sku=product.sku,
                    quantity=item.quantity,
                    unit_price_cents=item.unit_price_cents,
                    total_price_cents=line_total,
                    product_snapshot=product_snapshot(product),
                ))

            # 3-4. order header and items
            order = Order(
                order_number=generate_order_number(orders.count()),
                user_id=user_id,
                customer_info=dict(customer_info),
                payment_method=payment_method,
                payment_status=PaymentStatus.PENDING,
                status=OrderStatus.PENDING,
                subtotal_cents=subtotal,
                total_amount_cents=subtotal,
                customer_notes=customer_notes,
                order_date=utcnow(),
            )
            try:
                orders.add(order, drafts)
            except IntegrityError as exc:
                if "order_number" in str(exc.orig):
                    raise OrderNumberTaken(order.order_number) from exc
                raise

            # 5. guarded decrement; a concurrent checkout may have won the stock since step 2
            for line in lines:
                if not catalog.decrement_stock(line.product.id, line.item.quantity):
                    product = line.product.resolved
                    raise InsufficientStock(product.id, product.name, line.item.quantity,
                                            catalog.current_stock(product.id))

            # 6. empty the cart
            carts.clear(user_id)
            return order.order_number

    def get_order(self, order_number: str) -> Order:
        with self.session_factory() as db:
            order = OrderRepository(db).get_by_number(order_number)
            if order is None:
                raise NotFound(f"Order {order_number} not found", order_number=order_number)
            return order

    def list_orders_for_user(self, user_id: int, *, first: int = 10, offset: int = 0,
                             order_by: Optional[str] = "DATE_DESC") -> Page[Order]:
        with self.session_factory() as db:
            return OrderRepository(db).list_for_user(user_id, first=first, offset=offset, order_by=order_by)

    def list_orders(self, *, first: int = 10, offset: int = 0, order_by: Optional[str] = "DATE_DESC",
                    condition: Optional[Dict[str, Any]] = None, search: Optional[str] = None) -> Page[Order]:
        with self.session_factory() as db:
            return OrderRepository(db).list_all(first=first, offset=offset, order_by=order_by,
                                                condition=condition, search=search)

    def items_summary(self, order_number: str) -> Dict[str, int]:
        order = self.get_order(order_number)
        return {
            "total_items": len(order.items),
            "total_quantity": sum(it.quantity for it in order.items),
            "total_value_cents": sum(it.total_price_cents for it in order.items),
        }
