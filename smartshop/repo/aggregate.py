"""Group-by/sum/count rollups expressed as plain SQLAlchemy selects.

Reports describe *what* to group and measure; this module turns that into a
single SELECT so the same report runs on any dialect SQLAlchemy supports.
"""
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session


def total(column):
    return func.coalesce(func.sum(column), 0)


def row_count():
    return func.count()


def distinct_count(column):
    return func.count(func.distinct(column))


def rollup(
    db: Session,
    source,
    *,
    measures: Dict[str, Any],
    keys: Optional[Dict[str, Any]] = None,
    joins: Iterable[Tuple[Any, Any, bool]] = (),
    where: Sequence[Any] = (),
    order_by: Sequence[Any] = (),
    offset: Optional[int] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    keys = keys or {}
    columns = [expr.label(name) for name, expr in keys.items()]
    columns += [expr.label(name) for name, expr in measures.items()]
    stmt = select(*columns).select_from(source)
    for target, onclause, outer in joins:
        stmt = stmt.join(target, onclause, isouter=outer)
    if where:
        stmt = stmt.where(*where)
    if keys:
        stmt = stmt.group_by(*keys.values())
    if order_by:
        stmt = stmt.order_by(*order_by)
    if offset:
        stmt = stmt.offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)
    return [dict(row._mapping) for row in db.execute(stmt)]


def rollup_one(db: Session, source, **kwargs) -> Dict[str, Any]:
    rows = rollup(db, source, **kwargs)
    return rows[0] if rows else {}
