import pytest

from smartshop.core.errors import DuplicateKey, NotFound, ValidationFailed
from smartshop.services.reviews import ReviewService


@pytest.fixture
def reviews(session_factory):
    return ReviewService(session_factory)


def test_one_review_per_product(reviews, make_product):
    pid = make_product()
    review = reviews.create_review(1, pid, 5, "great battery")
    assert review.is_verified
    assert reviews.can_review(1, pid)["can_review"] is False
    assert reviews.can_review(2, pid) == {"can_review": True, "reason": None}
    with pytest.raises(DuplicateKey):
        reviews.create_review(1, pid, 4)


def test_rating_bounds_and_product(reviews, make_product):
    pid = make_product()
    with pytest.raises(ValidationFailed):
        reviews.create_review(1, pid, 6)
    with pytest.raises(NotFound):
        reviews.create_review(1, 999, 3)


def test_stats(reviews, make_product):
    pid = make_product()
    for user_id, rating in [(1, 5), (2, 4), (3, 4), (4, 1)]:
        reviews.create_review(user_id, pid, rating)
    stats = reviews.stats(pid)
    assert stats["total_reviews"] == 4
    assert stats["average_rating"] == 3.5
    assert stats["rating_distribution"] == {"one": 1, "two": 0, "three": 0, "four": 2, "five": 1}


def test_stats_for_unreviewed_product(reviews, make_product):
    assert reviews.stats(make_product()) == {
        "total_reviews": 0,
        "average_rating": 0,
        "rating_distribution": {"one": 0, "two": 0, "three": 0, "four": 0, "five": 0},
    }


def test_listing_and_rating_filter(reviews, make_product):
    pid = make_product()
    for user_id, rating in [(1, 5), (2, 3), (3, 5)]:
        reviews.create_review(user_id, pid, rating)
    assert reviews.list_for_product(pid).total_count == 3
    assert reviews.list_for_product(pid, rating=5).total_count == 2
    assert reviews.list_all(first=2).has_next_page


def test_admin_reply_and_clear(reviews, make_product):
    pid = make_product()
    review = reviews.create_review(1, pid, 2, "screen scratched")
    assert reviews.list_pending_reply().total_count == 1

    replied = reviews.add_admin_reply(review.id, "Sorry, we will replace it")
    assert replied.admin_reply_updated_at is not None
    assert reviews.list_pending_reply().total_count == 0

    cleared = reviews.add_admin_reply(review.id, "")
    assert cleared.admin_reply is None and cleared.admin_reply_updated_at is None
    with pytest.raises(NotFound):
        reviews.add_admin_reply(999, "hi")
