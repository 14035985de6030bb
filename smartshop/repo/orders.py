from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from smartshop.db.models import Order, OrderItem, OrderStatus
from smartshop.repo.paging import Page, build_sort, paginate

ORDER_COLUMNS = {
    "DATE": Order.order_date,
    "STATUS": Order.status,
    "TOTAL": Order.total_amount_cents,
}


class OrderRepository:
    def __init__(self, db: Session):
        self.db = db

    def count(self) -> int:
        return self.db.execute(select(func.count(Order.id))).scalar_one()

    def add(self, order: Order, items: List[OrderItem]) -> Order:
        self.db.add(order)
        self.db.flush()
        for item in items:
            item.order_id = order.id
            self.db.add(item)
        self.db.flush()
        return order

    def get_by_number(self, order_number: str) -> Optional[Order]:
        return self.db.execute(select(Order).where(Order.order_number == order_number)).scalar_one_or_none()

    def get(self, order_id: int) -> Optional[Order]:
        return self.db.get(Order, order_id)

    def status_of(self, order_number: str) -> Optional[OrderStatus]:
        return self.db.execute(select(Order.status).where(Order.order_number == order_number)).scalar_one_or_none()

    def items_for(self, order_id: int) -> List[OrderItem]:
        stmt = select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id)
        return list(self.db.execute(stmt).scalars())

    def transition(self, order_number: str, expected: Iterable[OrderStatus], values: Dict[str, Any]) -> bool:
        """Write ``values`` only if the order is still in one of ``expected``."""
        res = self.db.execute(
            update(Order)
            .where(Order.order_number == order_number, Order.status.in_(list(expected)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    def set_payment_status(self, order_number: str, values: Dict[str, Any]) -> bool:
        res = self.db.execute(
            update(Order)
            .where(Order.order_number == order_number)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    def list_for_user(self, user_id: int, *, first: int = 10, offset: int = 0,
                      order_by: Optional[str] = "DATE_DESC") -> Page[Order]:
        stmt = select(Order).where(Order.user_id == user_id)
        order = build_sort(order_by, ORDER_COLUMNS, Order.order_date)
        return paginate(self.db, stmt, first=first, offset=offset, order=order, clamp_offset=True)

    def list_all(self, *, first: int = 10, offset: int = 0, order_by: Optional[str] = "DATE_DESC",
                 condition: Optional[Dict[str, Any]] = None, search: Optional[str] = None) -> Page[Order]:
        stmt = select(Order)
        c = condition or {}
        if c.get("status"):
            stmt = stmt.where(Order.status == c["status"])
        if c.get("payment_status"):
            stmt = stmt.where(Order.payment_status == c["payment_status"])
        if c.get("payment_method"):
            stmt = stmt.where(Order.payment_method == c["payment_method"])
        if c.get("user_id") is not None:
            stmt = stmt.where(Order.user_id == c["user_id"])
        if c.get("date_from"):
            stmt = stmt.where(Order.order_date >= c["date_from"])
        if c.get("date_to"):
            stmt = stmt.where(Order.order_date <= c["date_to"])
        if search and search.strip():
            like = f"%{search.strip()}%"
            stmt = stmt.where(or_(
                Order.order_number.ilike(like),
                Order.customer_info["full_name"].as_string().ilike(like),
                Order.customer_info["phone"].as_string().ilike(like),
                Order.customer_info["address"].as_string().ilike(like),
            ))
        order = build_sort(order_by, ORDER_COLUMNS, Order.order_date)
        return paginate(self.db, stmt, first=first, offset=offset, order=order, clamp_offset=True)
