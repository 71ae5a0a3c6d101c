"""Error kinds raised by the market service core.

Every business-rule violation maps to a stable machine-readable ``code`` and an
HTTP status, so routers never inspect message text.
"""

import enum
from typing import Any, Optional


class ErrorCode(str, enum.Enum):
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_OWNER = "NOT_OWNER"
    ROLE_NOT_PERMITTED = "ROLE_NOT_PERMITTED"
    NOT_FOUND = "NOT_FOUND"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    VARIANT_NOT_FOUND = "VARIANT_NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    INVALID_ORDER_STATUS = "INVALID_ORDER_STATUS"
    CONFLICT = "CONFLICT"
    PAYMENT_KEY_ALREADY_USED = "PAYMENT_KEY_ALREADY_USED"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    PRODUCT_UNAVAILABLE = "PRODUCT_UNAVAILABLE"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    ORDER_EXPIRED = "ORDER_EXPIRED"


class MarketError(Exception):
    """Base exception for market business-rule violations."""

    code: ErrorCode = ErrorCode.VALIDATION_ERROR
    status_code: int = 400

    def __init__(
        self,
        message: str,
        *,
        code: Optional[ErrorCode] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "ok": False,
            "code": self.code.value,
            "message": self.message,
        }
        if self.details:
            body["details"] = self.details
        return body


class Forbidden(MarketError):
    code = ErrorCode.FORBIDDEN
    status_code = 403


class OwnershipViolation(Forbidden):
    """The actor is not the buyer/seller the action requires."""

    code = ErrorCode.NOT_OWNER


class RoleNotPermitted(Forbidden):
    """The transition is legal but not one this role may drive."""

    code = ErrorCode.ROLE_NOT_PERMITTED


class NotFound(MarketError):
    code = ErrorCode.NOT_FOUND
    status_code = 404


class InvalidTransition(MarketError):
    """Raised when the state machine forbids ``from_status -> to_status``."""

    code = ErrorCode.INVALID_TRANSITION
    status_code = 400

    def __init__(self, from_status, to_status, allowed):
        self.from_status = from_status
        self.to_status = to_status
        self.allowed = tuple(allowed)
        allowed_text = ", ".join(s.value for s in self.allowed)
        super().__init__(
            f"Invalid order status transition: {from_status.value} -> "
            f"{to_status.value}. Allowed transitions from {from_status.value}: "
            f"[{allowed_text}]",
            details={
                "from": from_status.value,
                "to": to_status.value,
                "allowed": [s.value for s in self.allowed],
            },
        )


class InvalidState(MarketError):
    code = ErrorCode.INVALID_ORDER_STATUS
    status_code = 400


class Conflict(MarketError):
    """Optimistic-concurrency loss. Retry with a fresh read."""

    code = ErrorCode.CONFLICT
    status_code = 409


class PaymentKeyReused(Conflict):
    code = ErrorCode.PAYMENT_KEY_ALREADY_USED


class OutOfStock(MarketError):
    code = ErrorCode.OUT_OF_STOCK
    status_code = 409


class ProductUnavailable(MarketError):
    code = ErrorCode.PRODUCT_UNAVAILABLE
    status_code = 400


class AmountMismatch(MarketError):
    code = ErrorCode.AMOUNT_MISMATCH
    status_code = 400


class ValidationError(MarketError):
    code = ErrorCode.VALIDATION_ERROR
    status_code = 400


class OrderExpired(MarketError):
    code = ErrorCode.ORDER_EXPIRED
    status_code = 410
