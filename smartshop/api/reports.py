from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends

from smartshop.api.deps import reporting
from smartshop.core.errors import ValidationFailed
from smartshop.db.models import as_naive_utc, utcnow
from smartshop.services.reports import ReportingAggregator, year_range

router = APIRouter()  # main.py mounts at /reports behind require_admin


def _range(date_from: Optional[datetime], date_to: Optional[datetime], *, required: bool = True):
    date_from, date_to = as_naive_utc(date_from), as_naive_utc(date_to)
    if date_from is None and date_to is None:
        return year_range(utcnow().year) if required else None
    start = date_from or datetime.min
    end = date_to or utcnow()
    if start > end:
        raise ValidationFailed("date_from must not be after date_to")
    return start, end


@router.get('/order-stats')
def order_stats(date_from: Optional[datetime] = None, date_to: Optional[datetime] = None,
                agg: ReportingAggregator = Depends(reporting)):
    return agg.get_order_stats(_range(date_from, date_to, required=False))

@router.get('/monthly/{year}')
def monthly_report(year: int, agg: ReportingAggregator = Depends(reporting)):
    return agg.monthly_report(year)

@router.get('/sales')
def sales_report(date_from: Optional[datetime] = None, date_to: Optional[datetime] = None,
                 first: int = 10, offset: int = 0, search: Optional[str] = None,
                 agg: ReportingAggregator = Depends(reporting)):
    return agg.sales_report(_range(date_from, date_to), first=first, offset=offset, search=search)

@router.get('/stats')
def report_stats(date_from: Optional[datetime] = None, date_to: Optional[datetime] = None,
                 agg: ReportingAggregator = Depends(reporting)):
    return agg.report_stats(_range(date_from, date_to))

@router.get('/products/{product_id}/orders')
def product_orders(product_id: int, date_from: Optional[datetime] = None, date_to: Optional[datetime] = None,
                   agg: ReportingAggregator = Depends(reporting)):
    return agg.product_orders(product_id, _range(date_from, date_to))
