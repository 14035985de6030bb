import logging
import re
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from smartshop.core.errors import DuplicateKey, NotFound, ValidationFailed
from smartshop.db.models import Brand, Category, Product
from smartshop.repo.catalog import CatalogRepository
from smartshop.repo.paging import Page

log = logging.getLogger(__name__)


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def reject_nulls(model, changes: Dict[str, Any]):
    nulls = sorted(k for k, v in changes.items() if v is None and not model.__table__.c[k].nullable)
    if nulls:
        raise ValidationFailed(f"{', '.join(nulls)} cannot be null", fields=nulls)


class CatalogService:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    # -- products --------------------------------------------------------

    def list_products(self, **kwargs) -> Page[Product]:
        with self.session_factory() as db:
            return CatalogRepository(db).list_products(**kwargs)

    def search_products(self, term: str, **kwargs) -> Page[Product]:
        with self.session_factory() as db:
            return CatalogRepository(db).search_products(term, **kwargs)

    def featured_products(self, limit: int = 10) -> List[Product]:
        with self.session_factory() as db:
            return CatalogRepository(db).featured_products(limit)

    def get_product(self, product_id: int) -> Product:
        with self.session_factory() as db:
            product = CatalogRepository(db).find_product_by_id(product_id)
            if product is None:
                raise NotFound(f"Product {product_id} not found", product_id=product_id)
            return product

    def products_by_ids(self, ids: List[int]) -> List[Product]:
        with self.session_factory() as db:
            return CatalogRepository(db).products_by_ids(ids)

    def create_product(self, data: Dict[str, Any]) -> Product:
        if data.get("stock", 0) < 0:
            raise ValidationFailed("Stock cannot be negative")
        with self.session_factory.begin() as db:
            if CatalogRepository(db).sku_taken(data["sku"]):
                raise DuplicateKey("SKU already exists", sku=data["sku"])
            product = Product(**data)
            db.add(product)
            db.flush()
            product_id = product.id
        log.info("product %s created (sku=%s)", product_id, data["sku"])
        return self.get_product(product_id)

    def update_product(self, product_id: int, changes: Dict[str, Any]) -> Product:
        reject_nulls(Product, changes)
        if changes.get("stock") is not None and changes["stock"] < 0:
            raise ValidationFailed("Stock cannot be negative")
        with self.session_factory.begin() as db:
            product = db.get(Product, product_id)
            if product is None:
                raise NotFound(f"Product {product_id} not found", product_id=product_id)
            if "sku" in changes and changes["sku"] != product.sku and CatalogRepository(db).sku_taken(changes["sku"]):
                raise DuplicateKey("SKU already exists", sku=changes["sku"])
            for k, v in changes.items():
                setattr(product, k, v)
        return self.get_product(product_id)

    def delete_product(self, product_id: int) -> bool:
        with self.session_factory.begin() as db:
            product = db.get(Product, product_id)
            if product is None:
                return False
            db.delete(product)
        log.info("product %s deleted", product_id)
        return True

    def add_product_image(self, product_id: int, url: str) -> Product:
        with self.session_factory.begin() as db:
            product = db.get(Product, product_id)
            if product is None:
                raise NotFound(f"Product {product_id} not found", product_id=product_id)
            product.images = [*(product.images or []), url]
        return self.get_product(product_id)

    # -- categories ------------------------------------------------------

    def list_categories(self, **kwargs) -> Page[Category]:
        with self.session_factory() as db:
            return CatalogRepository(db).list_categories(**kwargs)

    def create_category(self, data: Dict[str, Any]) -> Category:
        with self.session_factory.begin() as db:
            if CatalogRepository(db).category_by_name(data["name"]) is not None:
                raise DuplicateKey("Category already exists", name=data["name"])
            category = Category(**data)
            db.add(category)
            db.flush()
            return category

    def update_category(self, category_id: int, changes: Dict[str, Any]) -> Category:
        reject_nulls(Category, changes)
        with self.session_factory.begin() as db:
            category = db.get(Category, category_id)
            if category is None:
                raise NotFound(f"Category {category_id} not found", category_id=category_id)
            for k, v in changes.items():
                setattr(category, k, v)
            db.flush()
            return category

    def delete_category(self, category_id: int) -> bool:
        with self.session_factory.begin() as db:
            category = db.get(Category, category_id)
            if category is None:
                return False
            for product in db.execute(select(Product).where(Product.category_id == category_id)).unique().scalars():
                product.category_id = None
            db.delete(category)
        return True

    # -- brands ----------------------------------------------------------

    def list_brands(self, **kwargs) -> Page[Brand]:
        with self.session_factory() as db:
            return CatalogRepository(db).list_brands(**kwargs)

    def featured_brands(self) -> List[Brand]:
        with self.session_factory() as db:
            return CatalogRepository(db).featured_brands()

    def brands_by_category(self, category_id: int) -> List[Brand]:
        with self.session_factory() as db:
            return CatalogRepository(db).brands_by_category(category_id)

    def create_brand(self, data: Dict[str, Any], category_ids: Optional[List[int]] = None) -> Brand:
        with self.session_factory.begin() as db:
            if CatalogRepository(db).brand_by_name(data["name"]) is not None:
                raise DuplicateKey("Brand already exists", name=data["name"])
            brand = Brand(**{"slug": slugify(data["name"]), **data})
            if category_ids:
                brand.categories = list(db.execute(select(Category).where(Category.id.in_(category_ids))).scalars())
            db.add(brand)
            db.flush()
            return brand

    def update_brand(self, brand_id: int, changes: Dict[str, Any]) -> Brand:
        reject_nulls(Brand, changes)
        with self.session_factory.begin() as db:
            brand = db.get(Brand, brand_id)
            if brand is None:
                raise NotFound(f"Brand {brand_id} not found", brand_id=brand_id)
            for k, v in changes.items():
                setattr(brand, k, v)
            db.flush()
            return brand

    def delete_brand(self, brand_id: int) -> bool:
        with self.session_factory.begin() as db:
            brand = db.get(Brand, brand_id)
            if brand is None:
                return False
            for product in db.execute(select(Product).where(Product.brand_id == brand_id)).unique().scalars():
                product.brand_id = None
            db.delete(brand)
        return True
