"""Core escrow lifecycle logic."""
from .commands import (
    CapturePaymentRequest,
    CaptureResult,
    PaymentSnapshot,
    RefundRequest,
    RefundResult,
    ReleaseEscrowRequest,
    ReleaseResult,
    VerifyPaymentRequest,
)
from .controller import EscrowLifecycleController
from .errors import (
    AlreadyRefunded,
    AlreadyReleased,
    ErrorKind,
    EscrowError,
    InternalError,
    InvalidArgument,
    NotificationError,
    OrderNotFound,
    PaymentDeclined,
    PreconditionFailed,
)
from .models import (
    Notification,
    NotificationStatus,
    NotificationType,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from .gateway import ChargeResult, GatewayRouter, PaymentGateway
from .notifications import InMemoryNotificationEmitter, NotificationEmitter
from .order_store import InMemoryOrderStore, OrderStore

__all__ = [
    "EscrowLifecycleController",
    "CapturePaymentRequest",
    "CaptureResult",
    "PaymentSnapshot",
    "RefundRequest",
    "RefundResult",
    "ReleaseEscrowRequest",
    "ReleaseResult",
    "VerifyPaymentRequest",
    "ErrorKind",
    "EscrowError",
    "InvalidArgument",
    "OrderNotFound",
    "PreconditionFailed",
    "PaymentDeclined",
    "AlreadyReleased",
    "AlreadyRefunded",
    "InternalError",
    "NotificationError",
    "Order",
    "OrderStatus",
    "PaymentStatus",
    "PaymentMethod",
    "Notification",
    "NotificationType",
    "NotificationStatus",
    "OrderStore",
    "InMemoryOrderStore",
    "NotificationEmitter",
    "InMemoryNotificationEmitter",
    "ChargeResult",
    "GatewayRouter",
    "PaymentGateway",
]
