import logging
from typing import Any, Dict, List

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from smartshop.core.errors import DuplicateKey, NotFound
from smartshop.db.models import Product, WishlistItem
from smartshop.repo.paging import Page

log = logging.getLogger(__name__)


def wishlist_snapshot(product: Product) -> Dict[str, Any]:
    return {
        "name": product.name,
        "price_cents": product.price_cents,
        "original_price_cents": product.original_price_cents,
        "images": list(product.images or []),
        "sku": product.sku,
        "brand": product.brand.name if product.brand else None,
        "category": product.category.name if product.category else None,
    }


def _ordered(user_id: int):
    return (select(WishlistItem)
            .where(WishlistItem.user_id == user_id)
            .order_by(WishlistItem.display_order.asc(), WishlistItem.added_at.desc(), WishlistItem.id.desc()))


class WishlistService:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def list_items(self, user_id: int, *, first: int = 20, offset: int = 0) -> Page[WishlistItem]:
        with self.session_factory() as db:
            total = self._count(db, user_id)
            items = list(db.execute(_ordered(user_id).offset(offset).limit(first)).scalars())
        return Page(items=items, total_count=total, first=first, offset=offset)

    def count(self, user_id: int) -> int:
        with self.session_factory() as db:
            return self._count(db, user_id)

    def contains(self, user_id: int, product_id: int) -> bool:
        with self.session_factory() as db:
            return self._find(db, user_id, product_id) is not None

    def add(self, user_id: int, product_id: int) -> WishlistItem:
        with self.session_factory.begin() as db:
            product = db.get(Product, product_id)
            if product is None:
                raise NotFound(f"Product {product_id} not found", product_id=product_id)
            if self._find(db, user_id, product_id) is not None:
                raise DuplicateKey("Product already in wishlist", product_id=product_id)
            highest = db.execute(
                select(func.max(WishlistItem.display_order)).where(WishlistItem.user_id == user_id)
            ).scalar_one()
            item = WishlistItem(
                user_id=user_id,
                product_id=product_id,
                display_order=(highest or 0) + 1,
                product_snapshot=wishlist_snapshot(product),
            )
            db.add(item)
            try:
                db.flush()
            except IntegrityError:
                raise DuplicateKey("Product already in wishlist", product_id=product_id)
            return item

    def remove(self, user_id: int, product_id: int) -> bool:
        return self.remove_many(user_id, [product_id])

    def remove_many(self, user_id: int, product_ids: List[int]) -> bool:
        if not product_ids:
            return False
        with self.session_factory.begin() as db:
            res = db.execute(
                delete(WishlistItem)
                .where(WishlistItem.user_id == user_id, WishlistItem.product_id.in_(product_ids))
                .execution_options(synchronize_session=False)
            )
            return res.rowcount > 0

    def update_display_order(self, item_id: int, user_id: int, new_order: int) -> WishlistItem:
        """Move one item to position ``new_order`` and shift the ones in between.

        Moving up pushes the items from the target slot to the old slot down by
        one; moving down pulls the items after the old slot up by one.
        """
        with self.session_factory.begin() as db:
            item = self._owned(db, item_id, user_id)
            current = item.display_order
            items = list(db.execute(_ordered(user_id)).scalars())
            new_order = max(1, min(new_order, len(items)))
            if current == new_order:
                return item
            current_index = next(i for i, it in enumerate(items) if it.id == item.id)
            new_index = new_order - 1
            if new_order < current:
                for other in items[new_index:current_index]:
                    other.display_order += 1
            else:
                for other in items[current_index + 1:new_index + 1]:
                    other.display_order -= 1
            item.display_order = new_order
            db.flush()
            return item

    def move_up(self, item_id: int, user_id: int) -> WishlistItem:
        return self._swap(item_id, user_id, -1)

    def move_down(self, item_id: int, user_id: int) -> WishlistItem:
        return self._swap(item_id, user_id, +1)

    def _swap(self, item_id: int, user_id: int, step: int) -> WishlistItem:
        with self.session_factory.begin() as db:
            item = self._owned(db, item_id, user_id)
            neighbour = db.execute(
                select(WishlistItem).where(
                    WishlistItem.user_id == user_id,
                    WishlistItem.display_order == item.display_order + step,
                )
            ).scalars().first()
            if neighbour is None:
                return item
            neighbour.display_order, item.display_order = item.display_order, neighbour.display_order
            db.flush()
            return item

    def _owned(self, db: Session, item_id: int, user_id: int) -> WishlistItem:
        item = db.execute(
            select(WishlistItem).where(WishlistItem.id == item_id, WishlistItem.user_id == user_id)
        ).scalar_one_or_none()
        if item is None:
            raise NotFound("Wishlist item not found", item_id=item_id)
        return item

    def _find(self, db: Session, user_id: int, product_id: int):
        stmt = select(WishlistItem).where(WishlistItem.user_id == user_id, WishlistItem.product_id == product_id)
        return db.execute(stmt).scalar_one_or_none()

    def _count(self, db: Session, user_id: int) -> int:
        return db.execute(select(func.count(WishlistItem.id)).where(WishlistItem.user_id == user_id)).scalar_one()
