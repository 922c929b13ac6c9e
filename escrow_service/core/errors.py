"""
Typed failures for the escrow lifecycle.

Every failure carries a stable ErrorKind and a human-readable message.
The set of kinds is closed: callers can branch on ``error.kind`` exhaustively.
"""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Closed set of failure kinds."""

    INVALID_ARGUMENT = "invalid_argument"
    ORDER_NOT_FOUND = "order_not_found"
    PRECONDITION_FAILED = "precondition_failed"
    PAYMENT_DECLINED = "payment_declined"
    ALREADY_RELEASED = "already_released"
    ALREADY_REFUNDED = "already_refunded"
    INTERNAL = "internal"


class EscrowError(Exception):
    """Base exception for escrow lifecycle failures."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, order_id: Optional[str] = None):
        self.message = message
        self.order_id = order_id
        super().__init__(message)

    def to_dict(self) -> dict[str, str]:
        return {"error": self.kind.value, "message": self.message}


class InvalidArgument(EscrowError):
    """Missing or malformed input. No state change."""

    kind = ErrorKind.INVALID_ARGUMENT


class OrderNotFound(EscrowError):
    kind = ErrorKind.ORDER_NOT_FOUND

    def __init__(self, order_id: str):
        super().__init__("Order not found", order_id=order_id)


class PreconditionFailed(EscrowError):
    """Order exists but is in the wrong state for the transition."""

    kind = ErrorKind.PRECONDITION_FAILED


class PaymentDeclined(EscrowError):
    """Gateway rejected the charge (or it timed out). Safe to retry."""

    kind = ErrorKind.PAYMENT_DECLINED


class AlreadyReleased(EscrowError):
    kind = ErrorKind.ALREADY_RELEASED


class AlreadyRefunded(EscrowError):
    kind = ErrorKind.ALREADY_REFUNDED


class InternalError(EscrowError):
    """Store infrastructure failure."""

    kind = ErrorKind.INTERNAL


class NotificationError(Exception):
    """Raised by a notification emitter when a record could not be written."""

    pass
