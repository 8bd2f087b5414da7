"""Error kinds surfaced by the order and payment workflows.

Every failure that reaches a view is one of the :class:`StoreError`
subclasses below. Views turn them into JSON responses with
:func:`storefront.http.error_response`; anything else is treated as an
internal error.
"""


class StoreError(Exception):
    status_code = 500
    code = "error"

    def __init__(self, message: str = "", **extra):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.extra = extra

    def as_dict(self) -> dict:
        return {"error": self.message, "code": self.code, **self.extra}


# ---------- 4xx: caller problems, no state change ----------
class ValidationError(StoreError):
    status_code = 400
    code = "validation_error"


class InvalidRegion(ValidationError):
    code = "invalid_region"


class EmptyCart(ValidationError):
    code = "empty_cart"


class NotFoundError(StoreError):
    status_code = 404
    code = "not_found"


class OrderNotFound(NotFoundError):
    code = "order_not_found"


class ProductNotFound(NotFoundError):
    code = "product_not_found"


class ConflictError(StoreError):
    status_code = 409
    code = "conflict"


class InsufficientStock(ConflictError):
    code = "insufficient_stock"


class DuplicatePayment(ConflictError):
    code = "duplicate_payment"


class SignatureError(StoreError):
    status_code = 401
    code = "invalid_signature"


class InvalidSignature(SignatureError):
    pass


# ---------- gateway ----------
class GatewayError(StoreError):
    status_code = 502
    code = "gateway_error"
    retryable = False


class GatewayTimeout(GatewayError):
    status_code = 503
    code = "gateway_timeout"
    retryable = True


class PaymentInitializationFailed(GatewayError):
    """The order exists but the gateway refused (or never answered) initialize."""
    code = "payment_initialization_failed"


class PartialFailureWarning(Warning):
    """Inventory bookkeeping failed after a payment was already recorded."""
