from fastapi import APIRouter, Depends

from smartshop.api.deps import cart_service
from smartshop.api.schemas import CartAdd, CartLineRead, CartQuantity, CartRead, CartValidationRead, cart_line_out
from smartshop.core.auth import current_user_id
from smartshop.services.cart import CartService

router = APIRouter()  # main.py mounts at /cart


@router.get('', response_model=CartRead)
def get_cart(user_id: int = Depends(current_user_id), svc: CartService = Depends(cart_service)):
    cart = svc.get_cart(user_id)
    return CartRead(
        items=[cart_line_out(line) for line in cart.lines],
        total_items=cart.total_items,
        total_amount_cents=cart.total_amount_cents,
    )

@router.get('/count')
def cart_count(user_id: int = Depends(current_user_id), svc: CartService = Depends(cart_service)):
    return {'count': svc.item_count(user_id)}

@router.post('/items', response_model=CartLineRead, status_code=201)
def add_to_cart(payload: CartAdd, user_id: int = Depends(current_user_id), svc: CartService = Depends(cart_service)):
    return cart_line_out(svc.add_or_increment(user_id, payload.product_id, payload.quantity))

@router.patch('/items/{product_id}', response_model=CartLineRead)
def update_quantity(product_id: int, payload: CartQuantity, user_id: int = Depends(current_user_id),
                    svc: CartService = Depends(cart_service)):
    return cart_line_out(svc.update_quantity(user_id, product_id, payload.quantity))

@router.delete('/items/{product_id}')
def remove_item(product_id: int, user_id: int = Depends(current_user_id), svc: CartService = Depends(cart_service)):
    return {'removed': svc.remove_item(user_id, product_id)}

@router.delete('')
def clear_cart(user_id: int = Depends(current_user_id), svc: CartService = Depends(cart_service)):
    return {'cleared': svc.clear(user_id)}

@router.get('/validate', response_model=CartValidationRead)
def validate_cart(user_id: int = Depends(current_user_id), svc: CartService = Depends(cart_service)):
    result = svc.validate(user_id)
    return CartValidationRead(
        is_valid=result.is_valid,
        errors=result.errors,
        warnings=result.warnings,
        valid_items=[cart_line_out(line) for line in result.valid_items],
    )
