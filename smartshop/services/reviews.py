import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from smartshop.core.errors import DuplicateKey, NotFound, ValidationFailed
from smartshop.db.models import Product, Review, utcnow
from smartshop.repo.aggregate import rollup, row_count
from smartshop.repo.paging import Page, paginate

log = logging.getLogger(__name__)

RATING_FIELDS = {1: "one", 2: "two", 3: "three", 4: "four", 5: "five"}


def empty_distribution() -> Dict[str, int]:
    return {name: 0 for name in RATING_FIELDS.values()}


class ReviewService:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def create_review(self, user_id: int, product_id: int, rating: int, comment: str = "",
                      images: Optional[List[str]] = None, order_id: Optional[int] = None) -> Review:
        if not 0 <= rating <= 5:
            raise ValidationFailed("Rating must be between 0 and 5", rating=rating)
        with self.session_factory.begin() as db:
            if db.get(Product, product_id) is None:
                raise NotFound(f"Product {product_id} not found", product_id=product_id)
            if self._find(db, user_id, product_id) is not None:
                raise DuplicateKey("You have already reviewed this product", product_id=product_id)
            review = Review(
                user_id=user_id,
                product_id=product_id,
                order_id=order_id,
                rating=rating,
                comment=comment or "",
                images=list(images or []),
                is_verified=True,
            )
            db.add(review)
            try:
                db.flush()
            except IntegrityError:
                raise DuplicateKey("You have already reviewed this product", product_id=product_id)
            return review

    def can_review(self, user_id: int, product_id: int) -> Dict[str, Any]:
        with self.session_factory() as db:
            if self._find(db, user_id, product_id) is not None:
                return {"can_review": False, "reason": "Already reviewed this product"}
        return {"can_review": True, "reason": None}

    def list_for_product(self, product_id: int, rating: Optional[int] = None, *,
                         first: int = 10, offset: int = 0) -> Page[Review]:
        stmt = select(Review).where(Review.product_id == product_id, Review.is_verified.is_(True))
        if rating is not None:
            stmt = stmt.where(Review.rating == rating)
        with self.session_factory() as db:
            return paginate(db, stmt, first=first, offset=offset, order=Review.created_at.desc())

    def stats(self, product_id: int) -> Dict[str, Any]:
        with self.session_factory() as db:
            rows = rollup(
                db, Review,
                keys={"rating": Review.rating},
                measures={"reviews": row_count()},
                where=[Review.product_id == product_id, Review.is_verified.is_(True)],
            )
            average = db.execute(
                select(func.avg(Review.rating))
                .where(Review.product_id == product_id, Review.is_verified.is_(True))
            ).scalar_one()

        distribution = empty_distribution()
        total_reviews = 0
        for row in rows:
            total_reviews += row["reviews"]
            # 0-star ratings count as "five"
            distribution[RATING_FIELDS.get(row["rating"], "five")] += row["reviews"]
        return {
            "total_reviews": total_reviews,
            "average_rating": round(float(average), 1) if average is not None else 0,
            "rating_distribution": distribution,
        }

    def add_admin_reply(self, review_id: int, reply: Optional[str]) -> Review:
        """Set the admin reply; an empty reply removes it."""
        with self.session_factory.begin() as db:
            review = db.get(Review, review_id)
            if review is None:
                raise NotFound(f"Review {review_id} not found", review_id=review_id)
            review.admin_reply = reply or None
            review.admin_reply_updated_at = utcnow() if reply else None
            db.flush()
            return review

    def list_all(self, *, first: int = 20, offset: int = 0) -> Page[Review]:
        with self.session_factory() as db:
            return paginate(db, select(Review), first=first, offset=offset, order=Review.created_at.desc())

    def list_pending_reply(self, *, first: int = 10, offset: int = 0) -> Page[Review]:
        stmt = select(Review).where(or_(Review.admin_reply.is_(None), Review.admin_reply == ""))
        with self.session_factory() as db:
            return paginate(db, stmt, first=first, offset=offset, order=Review.created_at.desc())

    def _find(self, db, user_id: int, product_id: int) -> Optional[Review]:
        stmt = select(Review).where(Review.user_id == user_id, Review.product_id == product_id)
        return db.execute(stmt).scalar_one_or_none()
