import threading

import pytest
from sqlalchemy import create_engine

from smartshop.core.errors import InvalidTransition, NotFound, PermissionDenied
from smartshop.db.models import OrderStatus, PaymentMethod, PaymentStatus
from smartshop.services.cart import CartService
from smartshop.services.catalog import CatalogService
from smartshop.services.lifecycle import OrderLifecycle, can_transition
from smartshop.services.orders import OrderPipeline

from conftest import build_factory


@pytest.fixture
def lifecycle(session_factory):
    return OrderLifecycle(session_factory)


@pytest.fixture
def place(session_factory, make_product, add_to_cart, customer):
    pipeline = OrderPipeline(session_factory)

    def _place(user_id=7, qty=2, stock=10, product_id=None):
        pid = product_id or make_product(stock=stock)
        add_to_cart(user_id, pid, qty)
        return pipeline.place_order(user_id, customer, PaymentMethod.COD).order_number, pid
    return _place


def test_transition_table():
    assert can_transition(OrderStatus.PENDING, OrderStatus.CONFIRMED)
    assert can_transition(OrderStatus.SHIPPING, OrderStatus.CANCELLED)
    assert not can_transition(OrderStatus.PENDING, OrderStatus.DELIVERED)
    assert not can_transition(OrderStatus.SHIPPING, OrderStatus.CONFIRMED)
    assert not can_transition(OrderStatus.DELIVERED, OrderStatus.CANCELLED)


def test_walk_to_delivered_sets_timestamps_and_payment(lifecycle, place, events):
    number, _ = place()
    for status in (OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.SHIPPING):
        lifecycle.update_order_status(number, status)
    order = lifecycle.update_order_status(number, OrderStatus.DELIVERED, admin_notes="signed by customer")

    assert order.status == OrderStatus.DELIVERED
    assert order.payment_status == PaymentStatus.PAID
    assert order.admin_notes == "signed by customer"
    assert order.confirmed_at and order.processed_at and order.shipped_at and order.delivered_at
    assert order.cancelled_at is None
    changes = [e for e in events if e["type"] == "order.status_changed"]
    assert [(e["previous_status"], e["status"]) for e in changes][-1] == ("shipping", "delivered")


def test_skipping_ahead_is_rejected(lifecycle, place):
    number, _ = place()
    with pytest.raises(InvalidTransition) as exc:
        lifecycle.update_order_status(number, OrderStatus.DELIVERED)
    assert exc.value.extra["current"] == "pending"


def test_unknown_order(lifecycle):
    with pytest.raises(NotFound):
        lifecycle.update_order_status("DH-missing", OrderStatus.CONFIRMED)


def test_cancel_restores_stock_once(lifecycle, place, stock_of, events):
    number, pid = place(qty=3, stock=5)
    assert stock_of(pid) == 2

    first = lifecycle.cancel_order(number, "changed my mind")
    second = lifecycle.cancel_order(number, "again")

    assert first.status == OrderStatus.CANCELLED and first.cancelled_at is not None
    assert second.status == OrderStatus.CANCELLED
    assert stock_of(pid) == 5
    assert [e["type"] for e in events].count("order.cancelled") == 1


def test_cancel_through_status_update_restores_stock(lifecycle, place, stock_of):
    number, pid = place(qty=1, stock=1)
    lifecycle.update_order_status(number, OrderStatus.CONFIRMED)
    lifecycle.update_order_status(number, OrderStatus.CANCELLED, admin_notes="out of stock at warehouse")
    assert stock_of(pid) == 1


def test_delivered_order_cannot_be_cancelled(lifecycle, place, stock_of):
    number, pid = place(qty=1, stock=3)
    for status in (OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.SHIPPING, OrderStatus.DELIVERED):
        lifecycle.update_order_status(number, status)
    with pytest.raises(InvalidTransition):
        lifecycle.cancel_order(number)
    assert stock_of(pid) == 2


def test_stock_is_conserved_across_orders_and_cancellations(lifecycle, place, make_product, stock_of):
    pid = make_product(stock=20)
    numbers = [place(user_id=u, qty=u, product_id=pid)[0] for u in (1, 2, 3, 4)]
    lifecycle.cancel_order(numbers[1])
    lifecycle.cancel_order(numbers[3])
    lifecycle.cancel_order(numbers[3])
    assert stock_of(pid) == 20 - (1 + 3)


def test_customer_cancel_rules(lifecycle, place):
    mine, _ = place(user_id=7)
    theirs, _ = place(user_id=8)

    with pytest.raises(PermissionDenied):
        lifecycle.cancel_order(theirs, actor_id=7, is_admin=False)

    lifecycle.update_order_status(mine, OrderStatus.CONFIRMED)
    lifecycle.update_order_status(mine, OrderStatus.PROCESSING)
    with pytest.raises(InvalidTransition):
        lifecycle.cancel_order(mine, actor_id=7, is_admin=False)

    assert lifecycle.cancel_order(mine, "admin override").status == OrderStatus.CANCELLED


def test_payment_status_is_independent(lifecycle, place, events):
    number, _ = place()
    order = lifecycle.update_payment_status(number, PaymentStatus.REFUNDED)
    assert order.payment_status == PaymentStatus.REFUNDED
    assert order.status == OrderStatus.PENDING
    assert events[-1] == {
        "type": "order.payment_status_changed",
        "order_number": number,
        "payment_status": "refunded",
    }
    with pytest.raises(NotFound):
        lifecycle.update_payment_status("DH-missing", PaymentStatus.PAID)


def test_concurrent_cancels_restore_stock_once(tmp_path, customer, events):
    engine = create_engine(f"sqlite:///{tmp_path / 'cancel.db'}", connect_args={"timeout": 30})
    factory = build_factory(engine)
    catalog = CatalogService(factory)
    pid = catalog.create_product({"name": "Pixel 8", "sku": "PX-8", "price_cents": 100, "stock": 5}).id
    CartService(factory).add_item(1, pid, 2)
    number = OrderPipeline(factory).place_order(1, customer, PaymentMethod.COD).order_number
    assert catalog.get_product(pid).stock == 3

    lifecycle = OrderLifecycle(factory)
    start = threading.Barrier(2)
    outcomes = []

    def cancel():
        start.wait()
        try:
            outcomes.append(lifecycle.cancel_order(number, "duplicate click"))
        except Exception as exc:
            outcomes.append(exc)

    threads = [threading.Thread(target=cancel) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert [getattr(o, "status", o) for o in outcomes] == [OrderStatus.CANCELLED, OrderStatus.CANCELLED]
    assert catalog.get_product(pid).stock == 5
    assert [e["type"] for e in events].count("order.cancelled") == 1
    engine.dispose()
