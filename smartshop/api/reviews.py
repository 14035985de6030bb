from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from smartshop.api.deps import review_service
from smartshop.api.schemas import AdminReply, PageOut, ReviewCreate, ReviewRead, page_out
from smartshop.core.auth import current_user_id, require_admin
from smartshop.services.reviews import ReviewService
from smartshop.services.storage import ALLOWED_IMAGE_TYPES, file_extension, upload_bytes

router = APIRouter()  # main.py mounts at /reviews


@router.post('', response_model=ReviewRead, status_code=201)
def create_review(payload: ReviewCreate, user_id: int = Depends(current_user_id),
                  svc: ReviewService = Depends(review_service)):
    return svc.create_review(user_id, payload.product_id, payload.rating, payload.comment,
                             payload.images, payload.order_id)

@router.post('/images', dependencies=[Depends(current_user_id)])
async def upload_review_image(file: UploadFile = File(...)):
    if file.content_type not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(status_code=415, detail='Unsupported image type')
    content = await file.read()
    key, url = upload_bytes(content, file.content_type, ext=file_extension(file.filename), prefix='reviews')
    return {'key': key, 'url': url}

@router.get('/products/{product_id}', response_model=PageOut[ReviewRead])
def product_reviews(product_id: int, rating: Optional[int] = None, first: int = 10, offset: int = 0,
                    svc: ReviewService = Depends(review_service)):
    return page_out(svc.list_for_product(product_id, rating, first=first, offset=offset), ReviewRead)

@router.get('/products/{product_id}/stats')
def review_stats(product_id: int, svc: ReviewService = Depends(review_service)):
    return svc.stats(product_id)

@router.get('/products/{product_id}/can-review')
def can_review(product_id: int, user_id: int = Depends(current_user_id),
               svc: ReviewService = Depends(review_service)):
    return svc.can_review(user_id, product_id)

@router.get('', response_model=PageOut[ReviewRead], dependencies=[Depends(require_admin)])
def all_reviews(first: int = 20, offset: int = 0, svc: ReviewService = Depends(review_service)):
    return page_out(svc.list_all(first=first, offset=offset), ReviewRead)

@router.get('/pending-reply', response_model=PageOut[ReviewRead], dependencies=[Depends(require_admin)])
def pending_reply(first: int = 10, offset: int = 0, svc: ReviewService = Depends(review_service)):
    return page_out(svc.list_pending_reply(first=first, offset=offset), ReviewRead)

@router.put('/{review_id}/reply', response_model=ReviewRead, dependencies=[Depends(require_admin)])
def admin_reply(review_id: int, payload: AdminReply, svc: ReviewService = Depends(review_service)):
    return svc.add_admin_reply(review_id, payload.reply)
