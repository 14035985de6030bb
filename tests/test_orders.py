import logging
import threading
from datetime import datetime

import pytest
from sqlalchemy import create_engine, func, select

from smartshop.core.errors import EmptyCart, InsufficientStock, NotFound, OrderNumberTaken, ProductMissing
from smartshop.db.models import CartItem, Order, OrderItem, OrderStatus, PaymentMethod, PaymentStatus
from smartshop.repo.carts import CartRepository
from smartshop.services.cart import CartService
from smartshop.services.catalog import CatalogService
from smartshop.services import orders as orders_module
from smartshop.services.orders import OrderPipeline, generate_order_number

from conftest import build_factory


@pytest.fixture
def pipeline(session_factory):
    return OrderPipeline(session_factory)


def _count(session_factory, model):
    with session_factory() as db:
        return db.execute(select(func.count()).select_from(model)).scalar_one()


def test_place_order_happy_path(pipeline, make_product, add_to_cart, stock_of, customer, session_factory, events):
    a = make_product(price_cents=100, stock=5, brand="Apple", category="Phones")
    b = make_product(price_cents=50, stock=1)
    add_to_cart(7, a, 2)
    add_to_cart(7, b, 1)

    order = pipeline.place_order(7, customer, PaymentMethod.COD, "leave at the door")

    assert order.subtotal_cents == 250
    assert order.total_amount_cents == 250
    assert order.status == OrderStatus.PENDING
    assert order.payment_status == PaymentStatus.PENDING
    assert order.order_number.startswith(f"DH{order.order_date.year}")
    assert order.customer_info["full_name"] == customer["full_name"]
    assert [(it.product_id, it.quantity, it.total_price_cents) for it in order.items] == [(a, 2, 200), (b, 1, 50)]
    assert order.items[0].product_snapshot["brand"] == "Apple"
    assert order.items[1].product_snapshot["category"] == "Unknown"
    assert stock_of(a) == 3
    assert stock_of(b) == 0
    assert CartService(session_factory).get_cart(7).lines == []
    assert [e["type"] for e in events] == ["order.created"]
    assert events[0]["order_number"] == order.order_number


def test_insufficient_stock_leaves_everything_untouched(pipeline, make_product, add_to_cart, stock_of,
                                                        customer, session_factory, events):
    c = make_product(name="Pixel 8", stock=2)
    add_to_cart(7, c, 3)

    with pytest.raises(InsufficientStock) as exc:
        pipeline.place_order(7, customer, PaymentMethod.COD)

    assert exc.value.extra["product_name"] == "Pixel 8"
    assert exc.value.extra["requested"] == 3
    assert exc.value.extra["available"] == 2
    assert "Available: 2, Requested: 3" in str(exc.value)
    assert stock_of(c) == 2
    assert _count(session_factory, CartItem) == 1
    assert _count(session_factory, Order) == 0
    assert events == []


def test_empty_cart(pipeline, customer):
    with pytest.raises(EmptyCart):
        pipeline.place_order(7, customer, PaymentMethod.COD)


def test_missing_product_is_reported(pipeline, make_product, add_to_cart, customer, session_factory):
    pid = make_product()
    add_to_cart(7, pid, 1, product_name="Old phone")
    CatalogService(session_factory).delete_product(pid)

    with pytest.raises(ProductMissing) as exc:
        pipeline.place_order(7, customer, PaymentMethod.COD)
    assert exc.value.extra["product_id"] == pid
    assert "Old phone" in str(exc.value)


def test_cart_price_is_locked_in(pipeline, make_product, add_to_cart, customer):
    pid = make_product(price_cents=120)
    add_to_cart(7, pid, 1, unit_price_cents=100)
    order = pipeline.place_order(7, customer, PaymentMethod.BANK_TRANSFER)
    assert order.total_amount_cents == 100
    assert order.payment_method == PaymentMethod.BANK_TRANSFER


def test_failure_before_commit_rolls_back(pipeline, make_product, add_to_cart, stock_of, customer,
                                          session_factory, monkeypatch):
    pid = make_product(stock=5)
    add_to_cart(7, pid, 2)

    def boom(self, user_id):
        raise RuntimeError("disk full")

    monkeypatch.setattr(CartRepository, "clear", boom)
    with pytest.raises(RuntimeError):
        pipeline.place_order(7, customer, PaymentMethod.COD)

    assert stock_of(pid) == 5
    assert _count(session_factory, Order) == 0
    assert _count(session_factory, OrderItem) == 0
    assert _count(session_factory, CartItem) == 1


def test_order_numbers_are_distinct_within_the_same_millisecond():
    now = datetime(2025, 3, 1, 12, 0, 0)
    numbers = [generate_order_number(41, now) for _ in range(50)]
    assert len(set(numbers)) == 50
    assert all(n.startswith("DH2025") and len(n) == 2 + 4 + 8 + 3 + 2 for n in numbers)


def test_many_orders_get_distinct_numbers(pipeline, make_product, add_to_cart, customer):
    pid = make_product(stock=100)
    numbers = []
    for user_id in range(1, 21):
        add_to_cart(user_id, pid, 1)
        numbers.append(pipeline.place_order(user_id, customer, PaymentMethod.COD).order_number)
    assert len(set(numbers)) == 20


def test_order_number_collision_retries_the_checkout(pipeline, make_product, add_to_cart, stock_of, customer,
                                                     session_factory, monkeypatch, caplog):
    pid = make_product(stock=10)
    add_to_cart(7, pid, 1)
    taken = pipeline.place_order(7, customer, PaymentMethod.COD).order_number

    numbers = iter([taken, "DHFRESH"])
    monkeypatch.setattr(orders_module, "generate_order_number", lambda count, now=None: next(numbers))
    add_to_cart(8, pid, 2)
    with caplog.at_level(logging.WARNING, logger="smartshop.services.orders"):
        order = pipeline.place_order(8, customer, PaymentMethod.COD)

    assert order.order_number == "DHFRESH"
    assert [it.quantity for it in order.items] == [2]
    assert stock_of(pid) == 7
    assert _count(session_factory, Order) == 2
    assert _count(session_factory, OrderItem) == 2
    assert _count(session_factory, CartItem) == 0
    assert "order number collision" in caplog.text


def test_order_number_conflict_is_typed_after_last_attempt(pipeline, make_product, add_to_cart, stock_of, customer,
                                                           session_factory, monkeypatch, events):
    pid = make_product(stock=10)
    add_to_cart(7, pid, 1)
    taken = pipeline.place_order(7, customer, PaymentMethod.COD).order_number

    calls = []

    def always_taken(count, now=None):
        calls.append(count)
        return taken

    monkeypatch.setattr(orders_module, "generate_order_number", always_taken)
    add_to_cart(8, pid, 2)
    with pytest.raises(OrderNumberTaken) as exc:
        pipeline.place_order(8, customer, PaymentMethod.COD)

    assert len(calls) == orders_module.ORDER_NUMBER_ATTEMPTS
    assert exc.value.status_code == 503
    assert exc.value.to_dict()["code"] == "order_number_conflict"
    assert stock_of(pid) == 9
    assert _count(session_factory, Order) == 1
    assert _count(session_factory, CartItem) == 1
    assert [e["type"] for e in events] == ["order.created"]

def test_reads(pipeline, make_product, add_to_cart, customer):
    pid = make_product(stock=10, price_cents=30)
    placed = []
    for _ in range(3):
        add_to_cart(7, pid, 2)
        placed.append(pipeline.place_order(7, customer, PaymentMethod.COD).order_number)
    add_to_cart(8, pid, 1)
    pipeline.place_order(8, customer, PaymentMethod.COD)

    page = pipeline.list_orders_for_user(7, first=2, offset=0, order_by="DATE_ASC")
    assert page.total_count == 3
    assert len(page.items) == 2 and {o.order_number for o in page.items} <= set(placed)
    assert page.has_next_page

    assert pipeline.list_orders(search=placed[1]).total_count == 1
    assert pipeline.list_orders(condition={"user_id": 8}).total_count == 1
    assert pipeline.list_orders(search="le loi").total_count == 4

    assert pipeline.items_summary(placed[0]) == {"total_items": 1, "total_quantity": 2, "total_value_cents": 60}
    with pytest.raises(NotFound):
        pipeline.get_order("DH-nope")


def test_concurrent_checkout_for_last_unit(tmp_path, customer):
    engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}", connect_args={"timeout": 30})
    factory = build_factory(engine)
    catalog = CatalogService(factory)
    pid = catalog.create_product({"name": "Last one", "sku": "LAST-1", "price_cents": 100, "stock": 1}).id
    carts = CartService(factory)
    carts.add_item(1, pid, 1)
    carts.add_item(2, pid, 1)

    pipeline = OrderPipeline(factory)
    start = threading.Barrier(2)
    outcomes = {}

    def checkout(user_id):
        start.wait()
        try:
            outcomes[user_id] = pipeline.place_order(user_id, customer, PaymentMethod.COD)
        except InsufficientStock as exc:
            outcomes[user_id] = exc

    threads = [threading.Thread(target=checkout, args=(uid,)) for uid in (1, 2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    won = [o for o in outcomes.values() if isinstance(o, Order)]
    lost = [o for o in outcomes.values() if isinstance(o, InsufficientStock)]
    assert len(won) == 1 and len(lost) == 1
    assert catalog.get_product(pid).stock == 0
    engine.dispose()


def test_concurrent_checkouts_get_distinct_numbers(tmp_path, customer):
    engine = create_engine(f"sqlite:///{tmp_path / 'numbers.db'}", connect_args={"timeout": 30})
    factory = build_factory(engine)
    catalog = CatalogService(factory)
    pid = catalog.create_product({"name": "Redmi 13", "sku": "RM-13", "price_cents": 100, "stock": 100}).id
    users = list(range(1, 9))
    carts = CartService(factory)
    for user_id in users:
        carts.add_item(user_id, pid, 1)

    pipeline = OrderPipeline(factory)
    start = threading.Barrier(len(users))
    numbers, errors = [], []

    def checkout(user_id):
        start.wait()
        try:
            numbers.append(pipeline.place_order(user_id, customer, PaymentMethod.COD).order_number)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=checkout, args=(uid,)) for uid in users]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(numbers) == len(set(numbers)) == len(users)
    assert catalog.get_product(pid).stock == 100 - len(users)
    engine.dispose()
