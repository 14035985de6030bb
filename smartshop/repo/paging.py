from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    items: List[T]
    total_count: int
    first: int
    offset: int
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_next_page(self) -> bool:
        return self.offset + self.first < self.total_count

    @property
    def has_previous_page(self) -> bool:
        return self.offset > 0


def build_sort(order_by: Optional[str], column_mapping: Dict[str, Any], default):
    """Translate ``FIELD_DIR`` (e.g. ``PRICE_ASC``) into an ORDER BY clause."""
    if not order_by:
        return default.desc()
    field_name, _, direction = order_by.rpartition("_")
    column = column_mapping.get(field_name, default)
    return column.asc() if direction == "ASC" else column.desc()


def paginate(db: Session, stmt: Select, *, first: int, offset: int, order, clamp_offset: bool = False) -> Page:
    total = db.execute(select(func.count()).select_from(stmt.order_by(None).subquery())).scalar_one()
    if clamp_offset:
        offset = min(offset, max(0, total - 1))
    rows = db.execute(stmt.order_by(order).offset(offset).limit(first)).unique().scalars().all()
    return Page(items=list(rows), total_count=total, first=first, offset=offset)
