from fastapi import Depends
from sqlalchemy.orm import Session, sessionmaker

from smartshop.db.session import SessionLocal
from smartshop.services.assistant import ShoppingAssistant
from smartshop.services.cart import CartService
from smartshop.services.catalog import CatalogService
from smartshop.services.lifecycle import OrderLifecycle
from smartshop.services.orders import OrderPipeline
from smartshop.services.reports import ReportingAggregator
from smartshop.services.reviews import ReviewService
from smartshop.services.wishlist import WishlistService


def get_session_factory() -> sessionmaker:
    return SessionLocal


def get_db(factory: sessionmaker = Depends(get_session_factory)):
    db: Session = factory()
    try: yield db
    finally: db.close()


def catalog_service(factory: sessionmaker = Depends(get_session_factory)) -> CatalogService:
    return CatalogService(factory)


def cart_service(factory: sessionmaker = Depends(get_session_factory)) -> CartService:
    return CartService(factory)


def order_pipeline(factory: sessionmaker = Depends(get_session_factory)) -> OrderPipeline:
    return OrderPipeline(factory)


def order_lifecycle(factory: sessionmaker = Depends(get_session_factory)) -> OrderLifecycle:
    return OrderLifecycle(factory)


def reporting(factory: sessionmaker = Depends(get_session_factory)) -> ReportingAggregator:
    return ReportingAggregator(factory)


def review_service(factory: sessionmaker = Depends(get_session_factory)) -> ReviewService:
    return ReviewService(factory)


def wishlist_service(factory: sessionmaker = Depends(get_session_factory)) -> WishlistService:
    return WishlistService(factory)


def shopping_assistant(factory: sessionmaker = Depends(get_session_factory)) -> ShoppingAssistant:
    return ShoppingAssistant(factory)
