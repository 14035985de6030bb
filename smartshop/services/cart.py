import logging
from dataclasses import dataclass, field
from typing import List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from smartshop.core.errors import DuplicateKey, NotFound, ValidationFailed
from smartshop.repo.carts import CartLine, CartRepository
from smartshop.repo.catalog import CatalogRepository
from smartshop.repo.refs import Ref

log = logging.getLogger(__name__)


@dataclass
class CartValidation:
    valid_items: List[CartLine] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass
class CartView:
    lines: List[CartLine]

    @property
    def total_items(self) -> int:
        return sum(line.item.quantity for line in self.lines)

    @property
    def total_amount_cents(self) -> int:
        return sum(line.line_total_cents for line in self.lines)


def _check_quantity(quantity: int):
    if quantity < 1:
        raise ValidationFailed("Quantity must be at least 1", quantity=quantity)


class CartService:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get_cart(self, user_id: int) -> CartView:
        with self.session_factory() as db:
            return CartView(lines=CartRepository(db).lines(user_id))

    def item_count(self, user_id: int) -> int:
        with self.session_factory() as db:
            return CartRepository(db).item_count(user_id)

    def add_item(self, user_id: int, product_id: int, quantity: int) -> CartLine:
        _check_quantity(quantity)
        with self.session_factory.begin() as db:
            carts = CartRepository(db)
            product = CatalogRepository(db).find_product_by_id(product_id)
            if product is None:
                raise NotFound(f"Product {product_id} not found", product_id=product_id)
            if carts.find(user_id, product_id) is not None:
                raise DuplicateKey("Item already exists in cart", product_id=product_id)
            try:
                item = carts.insert(user_id, product, quantity)
            except IntegrityError:
                raise DuplicateKey("Item already exists in cart", product_id=product_id)
            return CartLine(item=item, product=Ref(product.id, product))

    def update_quantity(self, user_id: int, product_id: int, quantity: int) -> CartLine:
        _check_quantity(quantity)
        with self.session_factory.begin() as db:
            carts = CartRepository(db)
            if not carts.set_quantity(user_id, product_id, quantity):
                raise NotFound("Cart item not found", product_id=product_id)
            return _line_for(carts, user_id, product_id)

    def add_or_increment(self, user_id: int, product_id: int, quantity: int) -> CartLine:
        """Add-to-cart as the storefront does it: existing lines grow instead of failing."""
        with self.session_factory() as db:
            existing = CartRepository(db).find(user_id, product_id)
        if existing is None:
            return self.add_item(user_id, product_id, quantity)
        return self.update_quantity(user_id, product_id, existing.quantity + quantity)

    def remove_item(self, user_id: int, product_id: int) -> bool:
        with self.session_factory.begin() as db:
            return CartRepository(db).delete(user_id, product_id)

    def clear(self, user_id: int) -> bool:
        with self.session_factory.begin() as db:
            return CartRepository(db).clear(user_id) > 0

    def validate(self, user_id: int) -> CartValidation:
        """Read-only pre-flight check; checkout re-validates inside its own transaction."""
        result = CartValidation()
        with self.session_factory() as db:
            for line in CartRepository(db).lines(user_id):
                item, product = line.item, line.product.resolved
                if product is None:
                    result.errors.append(f"Product {item.product_name} no longer exists")
                    continue
                if not product.is_active:
                    result.errors.append(f"Product {item.product_name} is no longer available")
                    continue
                if product.stock < item.quantity:
                    result.errors.append(
                        f"{item.product_name}: Only {product.stock} items available "
                        f"(you have {item.quantity} in cart)"
                    )
                    continue
                if item.unit_price_cents != product.price_cents:
                    result.warnings.append(
                        f"{item.product_name}: Price changed from {item.unit_price_cents} to {product.price_cents}"
                    )
                result.valid_items.append(line)
        return result


def _line_for(carts: CartRepository, user_id: int, product_id: int) -> CartLine:
    for line in carts.lines(user_id):
        if line.item.product_id == product_id:
            return line
    raise NotFound("Cart item not found", product_id=product_id)
