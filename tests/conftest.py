import os

# the engine in smartshop.db.session is built at import time
os.environ["POSTGRES_DSN"] = "sqlite://"
os.environ.setdefault("JWT_SECRET", "test-secret")

import itertools

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from smartshop.core.security import create_access_token, hash_password
from smartshop.db.models import Brand, Category, CartItem, Product, User
from smartshop.db.session import Base
from smartshop.kafka import producer

_sku = itertools.count(1)


def build_factory(engine):
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_factory(engine)


@pytest.fixture(autouse=True)
def events(monkeypatch):
    """Every message handed to Kafka, in order."""
    sent = []
    monkeypatch.setattr(producer, "send", lambda topic, key, value: sent.append(value))
    return sent


@pytest.fixture
def make_product(session_factory):
    def _make(price_cents=100, stock=10, name=None, brand=None, category=None, **extra):
        n = next(_sku)
        with session_factory.begin() as db:
            brand_obj = category_obj = None
            if brand:
                brand_obj = db.query(Brand).filter_by(name=brand).one_or_none() or Brand(
                    name=brand, slug=brand.lower())
            if category:
                category_obj = db.query(Category).filter_by(name=category).one_or_none() or Category(name=category)
            product = Product(
                name=name or f"Product {n}",
                sku=f"SKU-{n:04d}",
                price_cents=price_cents,
                stock=stock,
                brand=brand_obj,
                category=category_obj,
                **extra,
            )
            db.add(product)
            db.flush()
            return product.id
    return _make


@pytest.fixture
def add_to_cart(session_factory):
    """Put a line straight into the cart, bypassing the service checks."""
    def _add(user_id, product_id, quantity, unit_price_cents=None, product_name="line"):
        with session_factory.begin() as db:
            if unit_price_cents is None:
                unit_price_cents = db.get(Product, product_id).price_cents
            db.add(CartItem(user_id=user_id, product_id=product_id, quantity=quantity,
                            unit_price_cents=unit_price_cents, product_name=product_name))
    return _add


@pytest.fixture
def stock_of(session_factory):
    def _stock(product_id):
        with session_factory() as db:
            return db.get(Product, product_id).stock
    return _stock


@pytest.fixture
def customer():
    return {"full_name": "Nguyen Van A", "phone": "0901234567", "address": "12 Le Loi", "city": "HCMC"}


@pytest.fixture
def make_user(session_factory):
    def _make(email="buyer@example.com", role="customer", password="password123"):
        with session_factory.begin() as db:
            user = User(email=email, username=email.split("@")[0], password_hash=hash_password(password), role=role)
            db.add(user)
            db.flush()
            return user.id
    return _make


@pytest.fixture
def auth_header():
    def _header(user_id, role="customer"):
        token, _ = create_access_token(str(user_id), role)
        return {"Authorization": f"Bearer {token}"}
    return _header


@pytest.fixture
def client(session_factory):
    from smartshop.api.deps import get_session_factory
    from smartshop.main import app

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
