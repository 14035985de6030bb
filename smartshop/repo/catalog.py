from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from smartshop.db.models import Brand, Category, Product
from smartshop.repo.paging import Page, build_sort, paginate

PRODUCT_COLUMNS = {
    "ID": Product.id,
    "NAME": Product.name,
    "PRICE": Product.price_cents,
    "STOCK": Product.stock,
    "CREATED": Product.created_at,
}
CATEGORY_COLUMNS = {"ID": Category.id, "NAME": Category.name, "CREATED": Category.created_at}
BRAND_COLUMNS = {
    "ID": Brand.id,
    "NAME": Brand.name,
    "FOUNDED": Brand.founded_year,
    "CREATED": Brand.created_at,
}


class CatalogRepository:
    def __init__(self, db: Session):
        self.db = db

    # -- products --------------------------------------------------------

    def find_product_by_id(self, product_id: int) -> Optional[Product]:
        return self.db.get(Product, product_id)

    def current_stock(self, product_id: int) -> Optional[int]:
        return self.db.execute(select(Product.stock).where(Product.id == product_id)).scalar_one_or_none()

    def decrement_stock(self, product_id: int, qty: int) -> bool:
        """Compare-and-decrement: only succeeds while ``stock >= qty``."""
        res = self.db.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= qty)
            .values(stock=Product.stock - qty)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    def increment_stock(self, product_id: int, qty: int) -> bool:
        res = self.db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock + qty)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    def list_products(self, *, first: int = 10, offset: int = 0, order_by: Optional[str] = "CREATED_DESC",
                      condition: Optional[Dict[str, Any]] = None) -> Page[Product]:
        stmt = select(Product)
        c = condition or {}
        if c.get("name"):
            stmt = stmt.where(Product.name.ilike(f"%{c['name'].strip()}%"))
        if c.get("brand_id") is not None:
            stmt = stmt.where(Product.brand_id == c["brand_id"])
        if c.get("category_id") is not None:
            stmt = stmt.where(Product.category_id == c["category_id"])
        if c.get("min_price") is not None:
            stmt = stmt.where(Product.price_cents >= c["min_price"])
        if c.get("max_price") is not None:
            stmt = stmt.where(Product.price_cents <= c["max_price"])
        if c.get("is_active") is not None:
            stmt = stmt.where(Product.is_active == c["is_active"])
        if c.get("is_featured") is not None:
            stmt = stmt.where(Product.is_featured == c["is_featured"])
        order = build_sort(order_by, PRODUCT_COLUMNS, Product.created_at)
        return paginate(self.db, stmt, first=first, offset=offset, order=order)

    def search_products(self, term: str, *, first: int = 10, offset: int = 0,
                        order_by: Optional[str] = "CREATED_DESC", brand_names: Optional[List[str]] = None,
                        exclude_brand_names: Optional[List[str]] = None,
                        min_price: Optional[int] = None, max_price: Optional[int] = None) -> Page[Product]:
        stmt = select(Product).where(Product.is_active.is_(True))
        for word in (term or "").split():
            like = f"%{word}%"
            stmt = stmt.where(or_(Product.name.ilike(like), Product.description.ilike(like), Product.sku.ilike(like)))
        if brand_names:
            stmt = stmt.join(Brand, Product.brand_id == Brand.id).where(Brand.name.in_(brand_names))
        if exclude_brand_names:
            excluded = select(Brand.id).where(Brand.name.in_(exclude_brand_names))
            stmt = stmt.where(or_(Product.brand_id.is_(None), Product.brand_id.not_in(excluded)))
        if min_price is not None:
            stmt = stmt.where(Product.price_cents >= min_price)
        if max_price is not None:
            stmt = stmt.where(Product.price_cents <= max_price)
        order = build_sort(order_by, PRODUCT_COLUMNS, Product.created_at)
        return paginate(self.db, stmt, first=first, offset=offset, order=order)

    def featured_products(self, limit: int = 10) -> List[Product]:
        stmt = (select(Product)
                .where(Product.is_featured.is_(True), Product.is_active.is_(True))
                .order_by(Product.created_at.desc())
                .limit(limit))
        return list(self.db.execute(stmt).unique().scalars())

    def products_by_ids(self, ids: List[int]) -> List[Product]:
        if not ids:
            return []
        return list(self.db.execute(select(Product).where(Product.id.in_(ids))).unique().scalars())

    def sku_taken(self, sku: str) -> bool:
        return self.db.execute(select(Product.id).where(Product.sku == sku)).first() is not None

    # -- categories ------------------------------------------------------

    def list_categories(self, *, first: int = 10, offset: int = 0, order_by: Optional[str] = "CREATED_DESC",
                        condition: Optional[Dict[str, Any]] = None) -> Page[Category]:
        stmt = select(Category)
        c = condition or {}
        if c.get("name"):
            stmt = stmt.where(Category.name.ilike(f"%{c['name'].strip()}%"))
        if c.get("is_active") is not None:
            stmt = stmt.where(Category.is_active == c["is_active"])
        order = build_sort(order_by, CATEGORY_COLUMNS, Category.created_at)
        return paginate(self.db, stmt, first=first, offset=offset, order=order)

    def category_by_name(self, name: str) -> Optional[Category]:
        return self.db.execute(select(Category).where(Category.name == name)).scalar_one_or_none()

    # -- brands ----------------------------------------------------------

    def list_brands(self, *, first: int = 10, offset: int = 0, order_by: Optional[str] = "CREATED_DESC",
                    condition: Optional[Dict[str, Any]] = None) -> Page[Brand]:
        stmt = select(Brand)
        c = condition or {}
        if c.get("name"):
            stmt = stmt.where(Brand.name.ilike(f"%{c['name'].strip()}%"))
        if c.get("country"):
            stmt = stmt.where(Brand.country.ilike(f"%{c['country'].strip()}%"))
        if c.get("is_active") is not None:
            stmt = stmt.where(Brand.is_active == c["is_active"])
        order = build_sort(order_by, BRAND_COLUMNS, Brand.created_at)
        return paginate(self.db, stmt, first=first, offset=offset, order=order)

    def brand_by_name(self, name: str) -> Optional[Brand]:
        return self.db.execute(select(Brand).where(Brand.name == name)).scalar_one_or_none()

    def featured_brands(self) -> List[Brand]:
        stmt = (select(Brand)
                .where(Brand.is_featured.is_(True), Brand.is_active.is_(True))
                .order_by(Brand.created_at.desc()))
        return list(self.db.execute(stmt).scalars())

    def brands_by_category(self, category_id: int) -> List[Brand]:
        stmt = (select(Brand)
                .where(Brand.categories.any(Category.id == category_id), Brand.is_active.is_(True))
                .order_by(Brand.name))
        return list(self.db.execute(stmt).scalars())
