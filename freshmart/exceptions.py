"""
Custom exceptions for the FreshMart cart service.

Three families are surfaced to users: validation errors (bad form input),
business-rule errors (coupon, stock, order state) and transport errors
(order service or Redis unreachable).
"""
from typing import Optional


class FreshMartError(Exception):
    """Base exception for cart, checkout and order operations"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# Validation

class ValidationError(FreshMartError):
    """Raised when request input is missing or malformed"""
    pass


class CheckoutStepError(ValidationError):
    """Raised when a checkout step cannot be completed or entered"""
    pass


# Business rules

class BusinessRuleError(FreshMartError):
    """Raised when a request is well-formed but not allowed"""
    pass


class CouponRejectedError(BusinessRuleError):
    """Raised when a coupon cannot be applied"""

    INVALID_CODE = "invalid code"
    MINIMUM_NOT_MET = "minimum order not met"
    EXPIRED = "expired or inactive"
    USAGE_LIMIT = "usage limit reached"

    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or f"Coupon rejected: {reason}")


class StockLimitError(BusinessRuleError):
    """Raised when a requested quantity is outside [1, available stock]"""

    def __init__(self, product_id: str, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        if requested < 1:
            super().__init__("Quantity must be at least 1")
        else:
            super().__init__(f"Only {available} items available in stock")


class EmptyCartError(BusinessRuleError):
    def __init__(self):
        super().__init__("Cart is empty")


class InvalidTransitionError(BusinessRuleError):
    """Raised when an order status change is not in the transition table"""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Order cannot move from {current} to {requested}")


class OrderRejectedError(BusinessRuleError):
    """Raised when the order service refuses a submission"""
    pass


# Not found

class NotFoundError(FreshMartError):
    pass


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found or out of stock: {product_id}")


class CartItemNotFoundError(NotFoundError):
    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Item not found in cart: {product_id}")


class OrderNotFoundError(NotFoundError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class AddressNotFoundError(NotFoundError):
    def __init__(self, address_id: str):
        self.address_id = address_id
        super().__init__(f"Address not found: {address_id}")


class DeliveryPartnerNotFoundError(NotFoundError):
    def __init__(self, partner_id: str):
        self.partner_id = partner_id
        super().__init__(f"Delivery partner not found: {partner_id}")


class CheckoutNotFoundError(NotFoundError):
    def __init__(self):
        super().__init__("No checkout in progress")


# Concurrency

class CartConflictError(FreshMartError):
    """Raised when a cart was modified since the version the client holds"""

    def __init__(self, expected: int, current: Optional[int] = None):
        self.expected = expected
        self.current = current
        super().__init__(
            f"Cart was modified elsewhere (expected version {expected}); reload and retry"
        )


# Transport

class TransportError(FreshMartError):
    pass


class OrderServiceError(TransportError):
    """Raised on network failure or unexpected response from the order API"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class StoreUnavailableError(TransportError):
    """Raised when Redis connection fails"""
    pass
