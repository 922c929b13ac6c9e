"""
Domain model for orders held in escrow.

An order carries two independent state axes:
- status: fulfilment progress (pending -> confirmed -> shipped -> delivered)
- payment_status: money progress (pending -> paid -> refunded)

plus the escrow_released flag, which can only flip once and only for a
delivered, paid order.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def quantize_money(amount: Decimal) -> Decimal:
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class OrderStatus(str, Enum):
    """Fulfilment status, advanced outside the escrow lifecycle."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"

    @property
    def rank(self) -> int:
        return list(OrderStatus).index(self)


class PaymentStatus(str, Enum):
    """Payment status. Refunded is terminal."""

    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    """Payment method tag used to route a charge to a provider adapter."""

    TELEBIRR = "telebirr"
    CBE_BIRR = "cbe_birr"
    CASH = "cash"

    @property
    def display_name(self) -> str:
        return {
            PaymentMethod.TELEBIRR: "Telebirr",
            PaymentMethod.CBE_BIRR: "CBE Birr",
            PaymentMethod.CASH: "Cash",
        }[self]


class NotificationType(str, Enum):
    PAYMENT = "payment"
    SYSTEM = "system"
    MESSAGE = "message"


class NotificationStatus(str, Enum):
    UNREAD = "unread"
    READ = "read"


# Lifecycle timestamps that may be written exactly once.
WRITE_ONCE_FIELDS = ("payment_completed_at", "escrow_released_at", "refund_requested_at")


class Order(BaseModel):
    """
    Snapshot of an order record.

    Snapshots are immutable; the store produces a new snapshot for every
    accepted compare-and-update.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    buyer_id: str
    seller_id: str
    total_amount: Decimal
    currency: str = "ETB"
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_method: Optional[PaymentMethod] = None
    payment_id: Optional[str] = None
    escrow_released: bool = False
    refund_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    payment_completed_at: Optional[datetime] = None
    escrow_released_at: Optional[datetime] = None
    refund_requested_at: Optional[datetime] = None

    @field_validator("total_amount")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        """Money is kept at 2 decimal places; the rounded total must be positive."""
        amount = quantize_money(v)
        if amount <= 0:
            raise ValueError("Order total must be positive")
        return amount

    def invariant_violations(self) -> list[str]:
        """Return the escrow invariants this snapshot breaks (empty when valid)."""
        violations = []
        if self.escrow_released and not (
            self.status == OrderStatus.DELIVERED and self.payment_status == PaymentStatus.PAID
        ):
            violations.append("escrow released for an order that is not delivered and paid")
        has_charge = self.payment_status in (PaymentStatus.PAID, PaymentStatus.REFUNDED)
        if has_charge != (self.payment_id is not None):
            violations.append("payment_id must be set exactly when the order has been charged")
        if self.payment_status == PaymentStatus.REFUNDED and self.payment_completed_at is None:
            violations.append("refunded order was never paid")
        for name in WRITE_ONCE_FIELDS:
            value = getattr(self, name)
            if value is not None and value < self.created_at:
                violations.append(f"{name} precedes order creation")
        return violations


class Notification(BaseModel):
    """Notification addressed to a single user."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    recipient_id: str
    type: NotificationType
    title: str
    body: str
    status: NotificationStatus = NotificationStatus.UNREAD
    created_at: datetime = Field(default_factory=utcnow)
