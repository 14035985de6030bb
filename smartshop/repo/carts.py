from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from smartshop.db.models import CartItem, Product
from smartshop.repo.refs import Ref


@dataclass
class CartLine:
    item: CartItem
    product: Ref[Product]

    @property
    def line_total_cents(self) -> int:
        return self.item.unit_price_cents * self.item.quantity


class CartRepository:
    def __init__(self, db: Session):
        self.db = db

    def lines(self, user_id: int) -> List[CartLine]:
        stmt = (select(CartItem, Product)
                .outerjoin(Product, Product.id == CartItem.product_id)
                .where(CartItem.user_id == user_id)
                .order_by(CartItem.added_at, CartItem.id))
        return [CartLine(item=item, product=Ref(item.product_id, product))
                for item, product in self.db.execute(stmt).unique().all()]

    def find(self, user_id: int, product_id: int) -> Optional[CartItem]:
        stmt = select(CartItem).where(CartItem.user_id == user_id, CartItem.product_id == product_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def insert(self, user_id: int, product: Product, quantity: int) -> CartItem:
        item = CartItem(
            user_id=user_id,
            product_id=product.id,
            product_name=product.name,
            quantity=quantity,
            unit_price_cents=product.price_cents,
        )
        self.db.add(item)
        self.db.flush()
        return item

    def set_quantity(self, user_id: int, product_id: int, quantity: int) -> bool:
        res = self.db.execute(
            update(CartItem)
            .where(CartItem.user_id == user_id, CartItem.product_id == product_id)
            .values(quantity=quantity)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    def delete(self, user_id: int, product_id: int) -> bool:
        res = self.db.execute(
            delete(CartItem)
            .where(CartItem.user_id == user_id, CartItem.product_id == product_id)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount > 0

    def clear(self, user_id: int) -> int:
        res = self.db.execute(
            delete(CartItem).where(CartItem.user_id == user_id).execution_options(synchronize_session=False)
        )
        return res.rowcount

    def item_count(self, user_id: int) -> int:
        stmt = select(func.coalesce(func.sum(CartItem.quantity), 0)).where(CartItem.user_id == user_id)
        return int(self.db.execute(stmt).scalar_one())
