"""Read-only dashboard rollups over orders and order items."""
import logging
from datetime import datetime, time
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import extract, func, or_, select
from sqlalchemy.orm import sessionmaker

from smartshop.db.models import Brand, Category, Order, OrderItem, OrderStatus, Product, utcnow
from smartshop.repo.aggregate import distinct_count, rollup, rollup_one, row_count, total

log = logging.getLogger(__name__)

# every order that has not been cancelled counts towards revenue
COUNTED_STATUSES = [s for s in OrderStatus if s != OrderStatus.CANCELLED]

DateRange = Tuple[datetime, datetime]


def _range_filters(column, date_range: Optional[DateRange]) -> list:
    if not date_range:
        return []
    start, end = date_range
    return [column >= start, column <= end]


def _counted(date_range: Optional[DateRange]) -> list:
    return [Order.status.in_(COUNTED_STATUSES), *_range_filters(Order.order_date, date_range)]


def year_range(year: int) -> DateRange:
    return datetime(year, 1, 1), datetime(year, 12, 31, 23, 59, 59, 999999)


class ReportingAggregator:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get_order_stats(self, date_range: Optional[DateRange] = None) -> Dict[str, Any]:
        today = datetime.combine(utcnow().date(), time.min)
        with self.session_factory() as db:
            by_status_rows = rollup(
                db, Order,
                keys={"status": Order.status},
                measures={"orders": row_count()},
                where=_range_filters(Order.order_date, date_range),
            )
            revenue = rollup_one(db, Order, measures={"revenue": total(Order.total_amount_cents)},
                                 where=_counted(date_range))
            today_orders = rollup_one(db, Order, measures={"orders": row_count()},
                                      where=[Order.order_date >= today])

        by_status = {s.value: 0 for s in OrderStatus}
        for row in by_status_rows:
            by_status[OrderStatus(row["status"]).value] = int(row["orders"])
        return {
            "total_orders": sum(by_status.values()),
            "total_revenue_cents": int(revenue.get("revenue") or 0),
            "by_status": by_status,
            "today_orders": int(today_orders.get("orders") or 0),
        }

    def monthly_report(self, year: int) -> List[Dict[str, Any]]:
        rng = year_range(year)
        month_of_order = extract("month", Order.order_date)
        with self.session_factory() as db:
            order_rows = rollup(
                db, Order,
                keys={"month": month_of_order},
                measures={"revenue": total(Order.total_amount_cents), "order_count": row_count()},
                where=_counted(rng),
            )
            product_rows = rollup(
                db, OrderItem,
                keys={"month": month_of_order},
                measures={"product_count": total(OrderItem.quantity)},
                joins=[(Order, Order.id == OrderItem.order_id, False)],
                where=_counted(rng),
            )

        orders_by_month = {int(r["month"]): r for r in order_rows}
        products_by_month = {int(r["month"]): r for r in product_rows}
        report = []
        for month in range(1, 13):
            o = orders_by_month.get(month, {})
            p = products_by_month.get(month, {})
            report.append({
                "month": month,
                "year": year,
                "revenue_cents": int(o.get("revenue") or 0),
                "order_count": int(o.get("order_count") or 0),
                "product_count": int(p.get("product_count") or 0),
            })
        log.info("monthly report generated for %s", year)
        return report

    def sales_report(self, date_range: DateRange, *, first: int = 10, offset: int = 0,
                     search: Optional[str] = None) -> Dict[str, Any]:
        where = _counted(date_range)
        if search and search.strip():
            like = f"%{search.strip()}%"
            where.append(or_(OrderItem.product_name.ilike(like), OrderItem.product_sku.ilike(like)))
        order_join = [(Order, Order.id == OrderItem.order_id, False)]
        catalog_joins = order_join + [
            (Product, Product.id == OrderItem.product_id, True),
            (Brand, Brand.id == Product.brand_id, True),
            (Category, Category.id == Product.category_id, True),
        ]
        revenue = total(OrderItem.total_price_cents)

        with self.session_factory() as db:
            grand_total = rollup_one(db, Order, measures={"revenue": total(Order.total_amount_cents)},
                                     where=_counted(date_range))
            count_row = rollup_one(db, OrderItem, measures={"products": distinct_count(OrderItem.product_id)},
                                   joins=order_join, where=where)
            rows = rollup(
                db, OrderItem,
                keys={"product_id": OrderItem.product_id},
                measures={
                    "product_name": func.max(OrderItem.product_name),
                    "product_sku": func.max(OrderItem.product_sku),
                    "category": func.max(Category.name),
                    "brand": func.max(Brand.name),
                    "quantity_sold": total(OrderItem.quantity),
                    "revenue": revenue,
                },
                joins=catalog_joins,
                where=where,
                order_by=[revenue.desc(), OrderItem.product_id],
                offset=offset,
                limit=first,
            )

        total_revenue = int(grand_total.get("revenue") or 0)
        total_count = int(count_row.get("products") or 0)
        nodes = []
        for r in rows:
            product_revenue = int(r["revenue"] or 0)
            nodes.append({
                "product_id": r["product_id"],
                "product_name": r["product_name"] or "Unknown Product",
                "product_sku": r["product_sku"] or "N/A",
                "category": r["category"] or "Unknown",
                "brand": r["brand"] or "Unknown",
                "quantity_sold": int(r["quantity_sold"] or 0),
                "revenue_cents": product_revenue,
                "revenue_percentage": (product_revenue / total_revenue * 100) if total_revenue else 0.0,
            })
        return {
            "nodes": nodes,
            "total_count": total_count,
            "has_next_page": offset + first < total_count,
            "has_previous_page": offset > 0,
        }

    def report_stats(self, date_range: DateRange) -> Dict[str, Any]:
        with self.session_factory() as db:
            stats = rollup_one(db, Order,
                               measures={"revenue": total(Order.total_amount_cents), "orders": row_count()},
                               where=_counted(date_range))
            products = rollup_one(db, OrderItem, measures={"quantity": total(OrderItem.quantity)},
                                  joins=[(Order, Order.id == OrderItem.order_id, False)],
                                  where=_counted(date_range))
        revenue = int(stats.get("revenue") or 0)
        orders = int(stats.get("orders") or 0)
        return {
            "total_revenue_cents": revenue,
            "total_orders": orders,
            "total_products": int(products.get("quantity") or 0),
            "average_order_value_cents": round(revenue / orders, 2) if orders else 0,
        }

    def product_orders(self, product_id: int, date_range: DateRange) -> List[Dict[str, Any]]:
        stmt = (select(Order.order_number, Order.order_date, Order.status, Order.customer_info,
                       OrderItem.quantity, OrderItem.unit_price_cents, OrderItem.total_price_cents)
                .join(Order, Order.id == OrderItem.order_id)
                .where(OrderItem.product_id == product_id, *_counted(date_range))
                .order_by(Order.order_date.desc()))
        with self.session_factory() as db:
            rows = [dict(r._mapping) for r in db.execute(stmt)]
        return [
            {
                "order_number": r["order_number"],
                "order_date": r["order_date"].date().isoformat(),
                "status": OrderStatus(r["status"]).value,
                "customer_info": {
                    "full_name": (r["customer_info"] or {}).get("full_name", ""),
                    "phone": (r["customer_info"] or {}).get("phone", ""),
                },
                "quantity": r["quantity"],
                "unit_price_cents": r["unit_price_cents"],
                "total_price_cents": r["total_price_cents"],
            }
            for r in rows
        ]
