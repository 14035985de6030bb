from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, EmailStr, Field

from smartshop.db.models import OrderStatus, PaymentMethod, PaymentStatus

T = TypeVar("T")


class PageOut(BaseModel, Generic[T]):
    items: List[T]
    total_count: int
    has_next_page: bool
    has_previous_page: bool


def page_out(page, schema) -> Dict[str, Any]:
    return {
        "items": [schema.model_validate(it) for it in page.items],
        "total_count": page.total_count,
        "has_next_page": page.has_next_page,
        "has_previous_page": page.has_previous_page,
    }


# -- auth ----------------------------------------------------------------

class RegisterPayload(BaseModel):
    email: EmailStr
    username: str = Field(min_length=3, max_length=64)
    password: str = Field(min_length=8)
    first_name: str = ''
    last_name: str = ''

class LoginPayload(BaseModel):
    email: EmailStr
    password: str

class UserRead(BaseModel):
    id: int
    email: EmailStr
    username: str
    first_name: str
    last_name: str
    role: str
    class Config: from_attributes = True

class TokenOut(BaseModel):
    access_token: str
    token_type: str = 'bearer'
    expires_at: datetime


# -- catalog -------------------------------------------------------------

class CategoryCreate(BaseModel):
    name: str
    description: str = ''
    is_active: bool = True
class CategoryUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None
class CategoryRead(CategoryCreate):
    id: int
    class Config: from_attributes = True

class BrandCreate(BaseModel):
    name: str
    description: str = ''
    country: str = ''
    founded_year: Optional[int] = None
    is_featured: bool = False
    is_active: bool = True
    category_ids: List[int] = []
class BrandUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    country: Optional[str] = None
    founded_year: Optional[int] = None
    is_featured: Optional[bool] = None
    is_active: Optional[bool] = None
class BrandRead(BaseModel):
    id: int
    name: str
    slug: str
    description: str
    country: str
    founded_year: Optional[int] = None
    is_featured: bool
    is_active: bool
    class Config: from_attributes = True

class NamedRef(BaseModel):
    id: int
    name: str
    class Config: from_attributes = True

class ProductBase(BaseModel):
    name: str
    sku: str
    description: Optional[str] = ''
    price_cents: int = Field(ge=0)
    original_price_cents: Optional[int] = Field(default=None, ge=0)
    stock: int = Field(default=0, ge=0)
    is_active: bool = True
    is_featured: bool = False
    specifications: Dict[str, Any] = {}
    brand_id: Optional[int] = None
    category_id: Optional[int] = None
class ProductCreate(ProductBase): pass
class ProductUpdate(BaseModel):
    name: Optional[str] = None
    sku: Optional[str] = None
    description: Optional[str] = None
    price_cents: Optional[int] = Field(default=None, ge=0)
    original_price_cents: Optional[int] = Field(default=None, ge=0)
    stock: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None
    specifications: Optional[Dict[str, Any]] = None
    brand_id: Optional[int] = None
    category_id: Optional[int] = None
class ProductRead(ProductBase):
    id: int
    images: List[str] = []
    brand: Optional[NamedRef] = None
    category: Optional[NamedRef] = None
    class Config: from_attributes = True


# -- cart ----------------------------------------------------------------

class CartAdd(BaseModel):
    product_id: int
    quantity: int = Field(default=1, ge=1)

class CartQuantity(BaseModel):
    quantity: int = Field(ge=1)

class CartLineRead(BaseModel):
    id: int
    product_id: int
    product_name: str
    quantity: int
    unit_price_cents: int
    line_total_cents: int
    product_missing: bool
    product: Optional[ProductRead] = None

class CartRead(BaseModel):
    items: List[CartLineRead]
    total_items: int
    total_amount_cents: int

class CartValidationRead(BaseModel):
    is_valid: bool
    errors: List[str]
    warnings: List[str]
    valid_items: List[CartLineRead]


def cart_line_out(line) -> CartLineRead:
    product = line.product.resolved
    return CartLineRead(
        id=line.item.id,
        product_id=line.item.product_id,
        product_name=line.item.product_name,
        quantity=line.item.quantity,
        unit_price_cents=line.item.unit_price_cents,
        line_total_cents=line.line_total_cents,
        product_missing=line.product.missing,
        product=ProductRead.model_validate(product) if product is not None else None,
    )


# -- orders --------------------------------------------------------------

class CustomerInfo(BaseModel):
    full_name: str = Field(min_length=1)
    phone: str = Field(min_length=6, max_length=20)
    address: str = Field(min_length=1)
    city: str = Field(min_length=1)
    notes: Optional[str] = None

class PlaceOrderIn(BaseModel):
    customer_info: CustomerInfo
    payment_method: PaymentMethod = PaymentMethod.COD
    customer_notes: Optional[str] = None

class OrderItemRead(BaseModel):
    product_id: int
    product_name: str
    product_sku: str
    quantity: int
    unit_price_cents: int
    total_price_cents: int
    product_snapshot: Dict[str, Any] = {}
    class Config: from_attributes = True

class OrderRead(BaseModel):
    id: int
    order_number: str
    user_id: int
    customer_info: Dict[str, Any]
    status: OrderStatus
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    subtotal_cents: int
    total_amount_cents: int
    currency: str
    order_date: datetime
    confirmed_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    customer_notes: Optional[str] = None
    admin_notes: Optional[str] = None
    items: List[OrderItemRead] = []
    class Config: from_attributes = True

class StatusUpdate(BaseModel):
    status: OrderStatus
    admin_notes: Optional[str] = None

class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatus

class CancelIn(BaseModel):
    reason: Optional[str] = None

class OrderItemsSummary(BaseModel):
    total_items: int
    total_quantity: int
    total_value_cents: int


# -- reviews -------------------------------------------------------------

class ReviewCreate(BaseModel):
    product_id: int
    rating: int = Field(ge=0, le=5)
    comment: str = ''
    images: List[str] = []
    order_id: Optional[int] = None

class ReviewRead(BaseModel):
    id: int
    product_id: int
    user_id: int
    order_id: Optional[int] = None
    rating: int
    comment: str
    images: List[str] = []
    is_verified: bool
    admin_reply: Optional[str] = None
    admin_reply_updated_at: Optional[datetime] = None
    created_at: datetime
    class Config: from_attributes = True

class AdminReply(BaseModel):
    reply: Optional[str] = None


# -- wishlist ------------------------------------------------------------

class WishlistAdd(BaseModel):
    product_id: int

class WishlistRemoveMany(BaseModel):
    product_ids: List[int]

class DisplayOrderUpdate(BaseModel):
    display_order: int = Field(ge=1)

class WishlistItemRead(BaseModel):
    id: int
    product_id: int
    display_order: int
    product_snapshot: Dict[str, Any] = {}
    added_at: datetime
    class Config: from_attributes = True


# -- assistant -----------------------------------------------------------

class ChatIn(BaseModel):
    message: str = Field(min_length=1, max_length=2000)

class CompareIn(BaseModel):
    product_ids: List[int] = Field(min_length=2, max_length=3)
    preferences: Optional[str] = None

class ImageIn(BaseModel):
    image_base64: str
    media_type: str = 'image/jpeg'
