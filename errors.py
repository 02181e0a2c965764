"""
Error taxonomy for the checkout / payment / coupon core.

Every error carries the HTTP status it maps to, a stable machine readable code
and the fields that name the offending item, coupon or field. The HTTP layer
turns them into JSON with a single exception handler.
"""
from typing import Any, Dict, Optional


class CommerceError(Exception):
    status_code = 400
    code = "commerce_error"

    def __init__(self, message: str, **fields: Any):
        super().__init__(message)
        self.message = message
        self.fields = fields

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.code, "detail": self.message}
        body.update(self.fields)
        return body


# ----- Validation -----

class InvalidRequest(CommerceError):
    status_code = 400
    code = "invalid_request"

    def __init__(self, field: str, reason: str):
        super().__init__(f"{field}: {reason}", field=field, reason=reason)


class EmptyCart(CommerceError):
    status_code = 400
    code = "empty_cart"

    def __init__(self, user_id: str):
        super().__init__("Cart is empty", userId=user_id)


# ----- Not found -----

class NotFound(CommerceError):
    status_code = 404
    code = "not_found"


class ProductGone(NotFound):
    code = "product_gone"

    def __init__(self, product_id: str):
        super().__init__(f"Product {product_id} no longer exists", productId=product_id)


class ProductNotFound(NotFound):
    code = "product_not_found"

    def __init__(self, product_id: str):
        super().__init__(f"Product {product_id} not found", productId=product_id)


class OrderNotFound(NotFound):
    code = "order_not_found"

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found", orderId=order_id)


class CartItemNotFound(NotFound):
    code = "cart_item_not_found"

    def __init__(self, product_id: str):
        super().__init__(f"Cart item for product {product_id} not found", productId=product_id)


# ----- Coupons -----

class CouponError(CommerceError):
    status_code = 400
    code = "coupon_error"

    def __init__(self, message: str, coupon: str, **fields: Any):
        super().__init__(message, coupon=coupon, **fields)


class CouponNotFound(CouponError):
    status_code = 404
    code = "coupon_not_found"

    def __init__(self, coupon: str):
        super().__init__(f"Coupon {coupon} not found or invalid", coupon)


class CouponInactive(CouponError):
    code = "coupon_inactive"

    def __init__(self, coupon: str):
        super().__init__(f"Coupon {coupon} is not active", coupon)


class CouponNotYetValid(CouponError):
    code = "coupon_not_yet_valid"

    def __init__(self, coupon: str, valid_from: Any):
        super().__init__(f"Coupon {coupon} is not valid yet", coupon, validFrom=str(valid_from))


class CouponExpired(CouponError):
    code = "coupon_expired"

    def __init__(self, coupon: str, valid_until: Any):
        super().__init__(f"Coupon {coupon} has expired", coupon, validUntil=str(valid_until))


class CouponLimitReached(CouponError):
    status_code = 409
    code = "coupon_limit_reached"

    def __init__(self, coupon: str, usage_limit: Optional[int]):
        super().__init__(f"Coupon {coupon} has reached its usage limit", coupon, usageLimit=usage_limit)


class DuplicateCoupon(CouponError):
    status_code = 409
    code = "duplicate_coupon"

    def __init__(self, coupon: str):
        super().__init__(f"Coupon code {coupon} already exists", coupon)


# ----- Conflicts -----

class InsufficientStock(CommerceError):
    status_code = 409
    code = "insufficient_stock"

    def __init__(self, product_id: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for {product_id}: available={available}, requested={requested}",
            productId=product_id,
            available=available,
            requested=requested,
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class InvalidTransition(CommerceError):
    status_code = 409
    code = "invalid_transition"

    def __init__(self, current: str, target: str):
        current = str(getattr(current, "value", current))
        target = str(getattr(target, "value", target))
        super().__init__(f"Cannot move order from {current} to {target}", **{"from": current, "to": target})
        self.current = current
        self.target = target


# ----- Payments -----

class PaymentError(CommerceError):
    status_code = 400
    code = "payment_error"


class SignatureMismatch(PaymentError):
    code = "signature_mismatch"

    def __init__(self, gateway_order_id: str):
        super().__init__("Payment verification failed", gatewayOrderId=gateway_order_id)


class GatewayOrderMismatch(PaymentError):
    code = "gateway_order_mismatch"

    def __init__(self, order_id: str, gateway_order_id: str):
        super().__init__(
            f"Gateway order {gateway_order_id} does not belong to order {order_id}",
            orderId=order_id,
            gatewayOrderId=gateway_order_id,
        )


class GatewayUnavailable(PaymentError):
    status_code = 502
    code = "gateway_unavailable"


class GatewayNotConfigured(PaymentError):
    status_code = 503
    code = "gateway_not_configured"

    def __init__(self):
        super().__init__("Payment gateway configuration error")


# ----- Infrastructure -----

class DatabaseUnavailable(CommerceError):
    status_code = 503
    code = "database_unavailable"

    def __init__(self):
        super().__init__("Database not configured")


# ----- Access -----

class Unauthorized(CommerceError):
    status_code = 401
    code = "unauthorized"


class Forbidden(CommerceError):
    status_code = 403
    code = "forbidden"
