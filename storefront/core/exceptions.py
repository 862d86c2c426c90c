from fastapi import status
from typing import Any, List, Optional


class APIError(Exception):
    """Base for every error the services raise on purpose.

    The global handler in ``main`` renders these into the standard error
    envelope, so routers let them propagate untouched.
    """

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "API_ERROR"
    default_message: str = "Request failed"

    def __init__(
        self,
        message: Optional[str] = None,
        errors: Optional[List[Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.errors = errors if errors is not None else [{"code": self.code}]
        super().__init__(self.message)


class InvalidArgument(APIError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_ARGUMENT"
    default_message = "Invalid request"


class NotFound(APIError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    default_message = "Resource not found"


class Unauthorized(APIError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHORIZED"
    default_message = "Not authenticated"


class Forbidden(APIError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"
    default_message = "Not authorized"


class Conflict(APIError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"
    default_message = "Request conflicts with existing records"


class InsufficientStock(Conflict):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_name: str, available: int):
        self.available = available
        super().__init__(
            f"Insufficient stock for {product_name}. Only {available} items available",
            errors=[{"code": self.code, "available": available}],
        )


class EmptyCart(APIError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "EMPTY_CART"
    default_message = "Cart is empty"


class PaymentDeclined(APIError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "PAYMENT_DECLINED"
    default_message = "Payment was not completed"


class PaymentProviderError(APIError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "PAYMENT_PROVIDER_ERROR"
    default_message = "Payment provider is unavailable. Please retry."


class InconsistentState(APIError):
    """Payment was captured but no order could be recorded for it."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "INCONSISTENT_STATE"
    default_message = (
        "Your payment was received but the order could not be created. "
        "Our support team has been notified and will contact you."
    )

    def __init__(self, intent_reference: str, cause: Optional[BaseException] = None):
        self.intent_reference = intent_reference
        self.cause = cause
        super().__init__(
            errors=[{"code": self.code, "payment_intent_id": intent_reference}],
        )
