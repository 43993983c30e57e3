"""Typed errors raised by the order and payment services.

Every error carries a stable ``code`` and the HTTP status the API layer
answers with; none of them are meant to be swallowed.
"""


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    code = "STOREFRONT_ERROR"
    http_status = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(StorefrontError):
    """Malformed input: bad amount, empty item list, unsupported currency/method."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        return data


class NotFound(StorefrontError):
    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, entity: str, key):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity.capitalize()} not found: {key}")


class ItemUnavailable(StorefrontError):
    """Requested quantity exceeds current stock when the order is checked."""

    code = "ITEM_UNAVAILABLE"
    http_status = 409

    def __init__(self, product_id, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Product {product_id} unavailable: requested {requested}, in stock {available}"
        )


class InsufficientStock(StorefrontError):
    """The atomic reservation found less stock than requested (lost a race)."""

    code = "INSUFFICIENT_STOCK"
    http_status = 409

    def __init__(self, product_id, requested: int):
        self.product_id = product_id
        self.requested = requested
        super().__init__(f"Insufficient stock for product {product_id} (requested {requested})")


class InvalidTransition(StorefrontError):
    code = "INVALID_TRANSITION"
    http_status = 409

    def __init__(self, entity: str, current: str, target: str, reason: str | None = None):
        self.entity = entity
        self.current = current
        self.target = target
        msg = f"Cannot move {entity} from '{current}' to '{target}'"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class PaymentExpired(InvalidTransition):
    code = "PAYMENT_EXPIRED"

    def __init__(self, payment_id: str, target: str):
        self.payment_id = payment_id
        super().__init__("payment", "pending", target, reason=f"payment {payment_id} has expired")


class RefundExceedsBalance(StorefrontError):
    code = "REFUND_EXCEEDS_BALANCE"
    http_status = 422

    def __init__(self, requested, refundable):
        self.requested = requested
        self.refundable = refundable
        super().__init__(f"Refund amount ({requested}) exceeds refundable amount ({refundable})")


class RefundFailed(StorefrontError):
    """The gateway refused a refund that an order cancel/refund depends on."""

    code = "REFUND_FAILED"
    http_status = 502

    def __init__(self, payment_id: str, reason: str | None = None):
        self.payment_id = payment_id
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Refund on payment {payment_id} was declined by the gateway{detail}")


class AmountOutOfRange(StorefrontError):
    code = "AMOUNT_OUT_OF_RANGE"
    http_status = 422

    def __init__(self, amount, min_amount, max_amount, currency: str = ""):
        self.amount = amount
        self.min_amount = min_amount
        self.max_amount = max_amount
        unit = f" {currency}" if currency else ""
        if amount < min_amount:
            msg = f"Amount must be at least {min_amount}{unit}"
        else:
            msg = f"Amount cannot exceed {max_amount}{unit}"
        super().__init__(msg)


class IdentifierExhausted(StorefrontError):
    code = "IDENTIFIER_EXHAUSTED"
    http_status = 503

    def __init__(self, scope: str, attempts: int):
        self.scope = scope
        self.attempts = attempts
        super().__init__(f"Unable to generate a unique identifier for {scope} after {attempts} attempts")
