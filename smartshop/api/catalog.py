from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from smartshop.api.deps import catalog_service
from smartshop.api.schemas import (
    BrandCreate, BrandRead, BrandUpdate, CategoryCreate, CategoryRead, CategoryUpdate,
    PageOut, ProductCreate, ProductRead, ProductUpdate, page_out,
)
from smartshop.core.auth import require_admin
from smartshop.core.errors import NotFound
from smartshop.services.catalog import CatalogService
from smartshop.services.storage import ALLOWED_IMAGE_TYPES, file_extension, upload_bytes

router = APIRouter()  # main.py mounts at /catalog


# -- categories ------------------------------------------------------------

@router.get('/categories', response_model=PageOut[CategoryRead])
def list_categories(first: int = 10, offset: int = 0, order_by: str = 'CREATED_DESC',
                    name: Optional[str] = None, is_active: Optional[bool] = None,
                    svc: CatalogService = Depends(catalog_service)):
    page = svc.list_categories(first=first, offset=offset, order_by=order_by,
                               condition={'name': name, 'is_active': is_active})
    return page_out(page, CategoryRead)

@router.post('/categories', response_model=CategoryRead, status_code=201, dependencies=[Depends(require_admin)])
def create_category(payload: CategoryCreate, svc: CatalogService = Depends(catalog_service)):
    return svc.create_category(payload.model_dump())

@router.patch('/categories/{category_id}', response_model=CategoryRead, dependencies=[Depends(require_admin)])
def update_category(category_id: int, payload: CategoryUpdate, svc: CatalogService = Depends(catalog_service)):
    return svc.update_category(category_id, payload.model_dump(exclude_unset=True))

@router.delete('/categories/{category_id}', dependencies=[Depends(require_admin)])
def delete_category(category_id: int, svc: CatalogService = Depends(catalog_service)):
    if not svc.delete_category(category_id):
        raise NotFound(f"Category {category_id} not found", category_id=category_id)
    return {'status': 'ok'}


# -- brands ----------------------------------------------------------------

@router.get('/brands', response_model=PageOut[BrandRead])
def list_brands(first: int = 10, offset: int = 0, order_by: str = 'CREATED_DESC',
                name: Optional[str] = None, country: Optional[str] = None, is_active: Optional[bool] = None,
                svc: CatalogService = Depends(catalog_service)):
    page = svc.list_brands(first=first, offset=offset, order_by=order_by,
                           condition={'name': name, 'country': country, 'is_active': is_active})
    return page_out(page, BrandRead)

@router.get('/brands/featured', response_model=List[BrandRead])
def featured_brands(svc: CatalogService = Depends(catalog_service)):
    return svc.featured_brands()

@router.get('/categories/{category_id}/brands', response_model=List[BrandRead])
def brands_by_category(category_id: int, svc: CatalogService = Depends(catalog_service)):
    return svc.brands_by_category(category_id)

@router.post('/brands', response_model=BrandRead, status_code=201, dependencies=[Depends(require_admin)])
def create_brand(payload: BrandCreate, svc: CatalogService = Depends(catalog_service)):
    data = payload.model_dump(exclude={'category_ids'})
    return svc.create_brand(data, payload.category_ids)

@router.patch('/brands/{brand_id}', response_model=BrandRead, dependencies=[Depends(require_admin)])
def update_brand(brand_id: int, payload: BrandUpdate, svc: CatalogService = Depends(catalog_service)):
    return svc.update_brand(brand_id, payload.model_dump(exclude_unset=True))

@router.delete('/brands/{brand_id}', dependencies=[Depends(require_admin)])
def delete_brand(brand_id: int, svc: CatalogService = Depends(catalog_service)):
    if not svc.delete_brand(brand_id):
        raise NotFound(f"Brand {brand_id} not found", brand_id=brand_id)
    return {'status': 'ok'}


# -- products --------------------------------------------------------------

@router.get('/products', response_model=PageOut[ProductRead])
def list_products(first: int = 10, offset: int = 0, order_by: str = 'CREATED_DESC',
                  name: Optional[str] = None, brand_id: Optional[int] = None, category_id: Optional[int] = None,
                  min_price: Optional[int] = None, max_price: Optional[int] = None,
                  is_active: Optional[bool] = None, is_featured: Optional[bool] = None,
                  svc: CatalogService = Depends(catalog_service)):
    condition = {
        'name': name, 'brand_id': brand_id, 'category_id': category_id,
        'min_price': min_price, 'max_price': max_price,
        'is_active': is_active, 'is_featured': is_featured,
    }
    page = svc.list_products(first=first, offset=offset, order_by=order_by, condition=condition)
    return page_out(page, ProductRead)

@router.get('/products/search', response_model=PageOut[ProductRead])
def search_products(q: str = '', first: int = 10, offset: int = 0, order_by: str = 'CREATED_DESC',
                    svc: CatalogService = Depends(catalog_service)):
    return page_out(svc.search_products(q, first=first, offset=offset, order_by=order_by), ProductRead)

@router.get('/products/featured', response_model=List[ProductRead])
def featured_products(limit: int = 10, svc: CatalogService = Depends(catalog_service)):
    return svc.featured_products(limit)

@router.get('/products/{product_id}', response_model=ProductRead)
def get_product(product_id: int, svc: CatalogService = Depends(catalog_service)):
    return svc.get_product(product_id)

@router.post('/products', response_model=ProductRead, status_code=201, dependencies=[Depends(require_admin)])
def create_product(payload: ProductCreate, svc: CatalogService = Depends(catalog_service)):
    return svc.create_product(payload.model_dump())

@router.patch('/products/{product_id}', response_model=ProductRead, dependencies=[Depends(require_admin)])
def update_product(product_id: int, payload: ProductUpdate, svc: CatalogService = Depends(catalog_service)):
    return svc.update_product(product_id, payload.model_dump(exclude_unset=True))

@router.delete('/products/{product_id}', dependencies=[Depends(require_admin)])
def delete_product(product_id: int, svc: CatalogService = Depends(catalog_service)):
    if not svc.delete_product(product_id):
        raise NotFound(f"Product {product_id} not found", product_id=product_id)
    return {'status': 'ok'}

@router.post('/products/{product_id}/images', response_model=ProductRead, dependencies=[Depends(require_admin)])
async def upload_product_image(product_id: int, file: UploadFile = File(...),
                               svc: CatalogService = Depends(catalog_service)):
    if file.content_type not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(status_code=415, detail='Unsupported image type')
    svc.get_product(product_id)
    content = await file.read()
    _, url = upload_bytes(content, file.content_type, ext=file_extension(file.filename))
    return svc.add_product_image(product_id, url)
