from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class ShopError(Exception):
    status_code = 400
    code = "shop_error"

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.extra}


class NotFound(ShopError):
    status_code = 404
    code = "not_found"


class DuplicateKey(ShopError):
    status_code = 409
    code = "duplicate_key"


class EmptyCart(ShopError):
    code = "empty_cart"

    def __init__(self, message: str = "Cart is empty"):
        super().__init__(message)


class ProductMissing(ShopError):
    status_code = 409
    code = "product_missing"

    def __init__(self, product_id: int, cart_item_id: Optional[int] = None, product_name: Optional[str] = None):
        label = product_name or f"#{product_id}"
        super().__init__(
            f"Product {label} no longer exists",
            product_id=product_id,
            cart_item_id=cart_item_id,
        )


class InsufficientStock(ShopError):
    status_code = 409
    code = "insufficient_stock"

    def __init__(self, product_id: int, product_name: str, requested: int, available: Optional[int]):
        if available is None:
            message = f"Insufficient stock for {product_name}. Requested: {requested}"
        else:
            message = f"Insufficient stock for {product_name}. Available: {available}, Requested: {requested}"
        super().__init__(
            message,
            product_id=product_id,
            product_name=product_name,
            requested=requested,
            available=available,
        )


class InvalidTransition(ShopError):
    status_code = 409
    code = "invalid_transition"

    def __init__(self, order_number: str, current: str, target: str):
        super().__init__(
            f"Order {order_number} cannot move from {current} to {target}",
            order_number=order_number,
            current=current,
            target=target,
        )


class OrderNumberTaken(ShopError):
    status_code = 503
    code = "order_number_conflict"

    def __init__(self, order_number: str):
        super().__init__(f"Order number {order_number} is already taken, please retry", order_number=order_number)


class ValidationFailed(ShopError):
    status_code = 422
    code = "validation_failed"


class PermissionDenied(ShopError):
    status_code = 403
    code = "forbidden"


def install_error_handlers(app: FastAPI):
    @app.exception_handler(ShopError)
    async def _shop_error(request: Request, exc: ShopError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
