from fastapi import APIRouter, Depends

from smartshop.api.deps import wishlist_service
from smartshop.api.schemas import (
    DisplayOrderUpdate, PageOut, WishlistAdd, WishlistItemRead, WishlistRemoveMany, page_out,
)
from smartshop.core.auth import current_user_id
from smartshop.services.wishlist import WishlistService

router = APIRouter()  # main.py mounts at /wishlist


@router.get('', response_model=PageOut[WishlistItemRead])
def list_wishlist(first: int = 20, offset: int = 0, user_id: int = Depends(current_user_id),
                  svc: WishlistService = Depends(wishlist_service)):
    return page_out(svc.list_items(user_id, first=first, offset=offset), WishlistItemRead)

@router.get('/count')
def wishlist_count(user_id: int = Depends(current_user_id), svc: WishlistService = Depends(wishlist_service)):
    return {'count': svc.count(user_id)}

@router.get('/contains/{product_id}')
def wishlist_contains(product_id: int, user_id: int = Depends(current_user_id),
                      svc: WishlistService = Depends(wishlist_service)):
    return {'in_wishlist': svc.contains(user_id, product_id)}

@router.post('', response_model=WishlistItemRead, status_code=201)
def add_to_wishlist(payload: WishlistAdd, user_id: int = Depends(current_user_id),
                    svc: WishlistService = Depends(wishlist_service)):
    return svc.add(user_id, payload.product_id)

@router.delete('/{product_id}')
def remove_from_wishlist(product_id: int, user_id: int = Depends(current_user_id),
                         svc: WishlistService = Depends(wishlist_service)):
    return {'removed': svc.remove(user_id, product_id)}

@router.post('/remove')
def remove_many(payload: WishlistRemoveMany, user_id: int = Depends(current_user_id),
                svc: WishlistService = Depends(wishlist_service)):
    return {'removed': svc.remove_many(user_id, payload.product_ids)}

@router.patch('/items/{item_id}/order', response_model=WishlistItemRead)
def update_display_order(item_id: int, payload: DisplayOrderUpdate, user_id: int = Depends(current_user_id),
                         svc: WishlistService = Depends(wishlist_service)):
    return svc.update_display_order(item_id, user_id, payload.display_order)

@router.post('/items/{item_id}/up', response_model=WishlistItemRead)
def move_up(item_id: int, user_id: int = Depends(current_user_id), svc: WishlistService = Depends(wishlist_service)):
    return svc.move_up(item_id, user_id)

@router.post('/items/{item_id}/down', response_model=WishlistItemRead)
def move_down(item_id: int, user_id: int = Depends(current_user_id), svc: WishlistService = Depends(wishlist_service)):
    return svc.move_down(item_id, user_id)
