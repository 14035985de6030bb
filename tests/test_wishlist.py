import pytest

from smartshop.core.errors import DuplicateKey, NotFound
from smartshop.services.wishlist import WishlistService


@pytest.fixture
def wishlist(session_factory):
    return WishlistService(session_factory)


@pytest.fixture
def filled(wishlist, make_product):
    """Four items for user 1, display orders 1..4."""
    pids = [make_product(name=f"Phone {i}") for i in range(1, 5)]
    items = [wishlist.add(1, pid) for pid in pids]
    return [item.id for item in items]


def _order(wishlist, user_id=1):
    return [(it.id, it.display_order) for it in wishlist.list_items(user_id).items]


def test_add_appends_and_snapshots(wishlist, make_product):
    pid = make_product(name="Galaxy Z Flip", price_cents=2500, brand="Samsung")
    first = wishlist.add(1, pid)
    assert first.display_order == 1
    assert first.product_snapshot["name"] == "Galaxy Z Flip"
    assert first.product_snapshot["brand"] == "Samsung"
    assert wishlist.add(1, make_product()).display_order == 2
    assert wishlist.count(1) == 2
    assert wishlist.contains(1, pid)
    with pytest.raises(DuplicateKey):
        wishlist.add(1, pid)
    with pytest.raises(NotFound):
        wishlist.add(1, 999)


def test_remove(wishlist, make_product):
    a, b, c = make_product(), make_product(), make_product()
    for pid in (a, b, c):
        wishlist.add(1, pid)
    assert wishlist.remove(1, a) is True
    assert wishlist.remove(1, a) is False
    assert wishlist.remove_many(1, [b, c]) is True
    assert wishlist.count(1) == 0
    assert wishlist.remove_many(1, []) is False


def test_move_item_up_shifts_the_ones_between(wishlist, filled):
    a, b, c, d = filled
    wishlist.update_display_order(d, 1, 2)
    assert _order(wishlist) == [(a, 1), (d, 2), (b, 3), (c, 4)]


def test_move_item_down_shifts_the_ones_between(wishlist, filled):
    a, b, c, d = filled
    wishlist.update_display_order(a, 1, 3)
    assert _order(wishlist) == [(b, 1), (c, 2), (a, 3), (d, 4)]


def test_display_order_is_clamped(wishlist, filled):
    a, b, c, d = filled
    wishlist.update_display_order(b, 1, 99)
    assert _order(wishlist) == [(a, 1), (c, 2), (d, 3), (b, 4)]


def test_swap_with_neighbour(wishlist, filled):
    a, b, c, d = filled
    wishlist.move_up(c, 1)
    assert _order(wishlist) == [(a, 1), (c, 2), (b, 3), (d, 4)]
    wishlist.move_down(a, 1)
    assert _order(wishlist) == [(c, 1), (a, 2), (b, 3), (d, 4)]
    assert wishlist.move_up(c, 1).display_order == 1
    assert wishlist.move_down(d, 1).display_order == 4


def test_items_belong_to_their_owner(wishlist, filled):
    with pytest.raises(NotFound):
        wishlist.move_up(filled[1], 2)
