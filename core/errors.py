"""
Exception types raised by the ordering pipeline
"""
from typing import Any, Dict, List, Optional


class FeedMeError(Exception):
    """Base exception for all ordering errors."""

    status_code = 500
    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to response dictionary"""
        return {
            "success": False,
            "error": self.message,
            "error_code": self.error_code
        }


class ValidationError(FeedMeError):
    """Raised when input is malformed or missing. Carries per-field messages."""

    status_code = 400
    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, errors: Optional[List[Dict[str, str]]] = None):
        self.errors = errors or []
        super().__init__(message)

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, [{"field": field, "message": message}])

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["errors"] = self.errors
        return result


class NotFoundError(FeedMeError):
    """Raised when a cart, order or meal does not exist."""

    status_code = 404
    error_code = "NOT_FOUND"


class ItemNotFound(NotFoundError):
    """Raised when a meal is not present in the customer's cart."""

    error_code = "ITEM_NOT_FOUND"

    def __init__(self, meal_id: str):
        self.meal_id = meal_id
        super().__init__(f"Item not found in cart: {meal_id}")


class EmptyCart(FeedMeError):
    """Raised when an order is requested from an empty cart."""

    status_code = 400
    error_code = "EMPTY_CART"

    def __init__(self, customer_id: str):
        self.customer_id = customer_id
        super().__init__("Cart is empty")


class InvalidQuantity(FeedMeError):
    """Raised when a line item quantity is below 1."""

    status_code = 400
    error_code = "INVALID_QUANTITY"

    def __init__(self, quantity: Any):
        self.quantity = quantity
        super().__init__(f"Quantity must be at least 1, got {quantity}")


class InvalidTransition(FeedMeError):
    """Raised when a tracking change would move an order backwards or out of a terminal state."""

    status_code = 409
    error_code = "INVALID_TRANSITION"


class Forbidden(FeedMeError):
    """Raised when the authenticated principal lacks the required role."""

    status_code = 403
    error_code = "FORBIDDEN"


class GatewayError(FeedMeError):
    """Base for payment gateway failures. Carries the affected order, if any."""

    def __init__(self, message: str, order_id: Optional[str] = None):
        self.order_id = order_id
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["order_id"] = self.order_id
        return result


class GatewayUnavailable(GatewayError):
    """Raised on network errors or timeouts. The payment outcome is unknown; retry later."""

    status_code = 503
    error_code = "GATEWAY_UNAVAILABLE"
    retryable = True

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["retryable"] = True
        return result


class GatewayRejected(GatewayError):
    """Raised when the gateway answers with a definitive failure."""

    status_code = 502
    error_code = "GATEWAY_REJECTED"
    retryable = False

    def __init__(self, message: str, order_id: Optional[str] = None,
                 gateway_code: Optional[str] = None):
        self.gateway_code = gateway_code
        super().__init__(message, order_id)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["gateway_code"] = self.gateway_code
        return result
