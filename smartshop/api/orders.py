from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends

from smartshop.api.deps import order_lifecycle, order_pipeline
from smartshop.api.schemas import (
    CancelIn, OrderItemsSummary, OrderRead, PageOut, PaymentStatusUpdate, PlaceOrderIn, StatusUpdate, page_out,
)
from smartshop.core.auth import current_user_id, get_current_identity, is_admin, require_admin
from smartshop.core.errors import PermissionDenied
from smartshop.db.models import OrderStatus, PaymentMethod, PaymentStatus, as_naive_utc
from smartshop.services.lifecycle import OrderLifecycle
from smartshop.services.orders import OrderPipeline

router = APIRouter()  # main.py mounts at /orders


def _visible(order, identity: dict):
    if not is_admin(identity) and str(order.user_id) != str(identity.get('sub')):
        raise PermissionDenied("You can only view your own orders", order_number=order.order_number)
    return order


@router.post('/checkout', response_model=OrderRead, status_code=201)
def checkout(payload: PlaceOrderIn, user_id: int = Depends(current_user_id),
             pipeline: OrderPipeline = Depends(order_pipeline)) -> Any:
    return pipeline.place_order(
        user_id,
        payload.customer_info.model_dump(),
        payload.payment_method,
        payload.customer_notes,
    )

@router.get('/mine', response_model=PageOut[OrderRead])
def my_orders(first: int = 10, offset: int = 0, order_by: str = 'DATE_DESC',
              user_id: int = Depends(current_user_id), pipeline: OrderPipeline = Depends(order_pipeline)):
    return page_out(pipeline.list_orders_for_user(user_id, first=first, offset=offset, order_by=order_by), OrderRead)

@router.get('', response_model=PageOut[OrderRead], dependencies=[Depends(require_admin)])
def list_orders(first: int = 10, offset: int = 0, order_by: str = 'DATE_DESC',
                status: Optional[OrderStatus] = None, payment_status: Optional[PaymentStatus] = None,
                payment_method: Optional[PaymentMethod] = None, user_id: Optional[int] = None,
                date_from: Optional[datetime] = None, date_to: Optional[datetime] = None,
                search: Optional[str] = None, pipeline: OrderPipeline = Depends(order_pipeline)):
    condition = {
        'status': status, 'payment_status': payment_status, 'payment_method': payment_method,
        'user_id': user_id, 'date_from': as_naive_utc(date_from), 'date_to': as_naive_utc(date_to),
    }
    page = pipeline.list_orders(first=first, offset=offset, order_by=order_by, condition=condition, search=search)
    return page_out(page, OrderRead)

@router.get('/{order_number}', response_model=OrderRead)
def get_order(order_number: str, identity: dict = Depends(get_current_identity),
              pipeline: OrderPipeline = Depends(order_pipeline)):
    return _visible(pipeline.get_order(order_number), identity)

@router.get('/{order_number}/summary', response_model=OrderItemsSummary)
def items_summary(order_number: str, identity: dict = Depends(get_current_identity),
                  pipeline: OrderPipeline = Depends(order_pipeline)):
    _visible(pipeline.get_order(order_number), identity)
    return pipeline.items_summary(order_number)

@router.patch('/{order_number}/status', response_model=OrderRead, dependencies=[Depends(require_admin)])
def update_status(order_number: str, payload: StatusUpdate, lifecycle: OrderLifecycle = Depends(order_lifecycle)):
    return lifecycle.update_order_status(order_number, payload.status, payload.admin_notes)

@router.patch('/{order_number}/payment-status', response_model=OrderRead, dependencies=[Depends(require_admin)])
def update_payment_status(order_number: str, payload: PaymentStatusUpdate,
                          lifecycle: OrderLifecycle = Depends(order_lifecycle)):
    return lifecycle.update_payment_status(order_number, payload.payment_status)

@router.post('/{order_number}/cancel', response_model=OrderRead)
def cancel_order(order_number: str, payload: CancelIn, identity: dict = Depends(get_current_identity),
                 user_id: int = Depends(current_user_id),
                 lifecycle: OrderLifecycle = Depends(order_lifecycle)):
    return lifecycle.cancel_order(
        order_number,
        payload.reason,
        actor_id=user_id,
        is_admin=is_admin(identity),
    )
