"""SQLAlchemy database models for the escrow service."""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class OrderRecord(Base):
    """
    Orders table.

    Payment and escrow columns are only ever changed through conditional
    UPDATE statements (see repositories.SqlOrderStore.compare_and_update).
    """

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="ETB")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", index=True
    )
    payment_method: Mapped[str | None] = mapped_column(String(20), nullable=True)
    payment_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    escrow_released: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    refund_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )
    payment_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    escrow_released_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    refund_requested_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint("total_amount > 0", name="positive_total"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'shipped', 'delivered')",
            name="valid_order_status",
        ),
        CheckConstraint(
            "payment_status IN ('pending', 'paid', 'refunded')",
            name="valid_payment_status",
        ),
        CheckConstraint(
            "NOT escrow_released OR (status = 'delivered' AND payment_status = 'paid')",
            name="escrow_release_requires_delivered_paid",
        ),
        CheckConstraint("length(currency) = 3", name="valid_currency"),
        Index("idx_orders_seller_escrow", "seller_id", "escrow_released"),
    )

    def __repr__(self) -> str:
        """String representation of OrderRecord."""
        return (
            f"<OrderRecord(id={self.id}, status={self.status}, "
            f"payment_status={self.payment_status}, escrow_released={self.escrow_released})>"
        )


class NotificationRecord(Base):
    """
    Notifications table.

    Immutable once written, apart from the unread -> read flag.
    """

    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    recipient_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="unread")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "type IN ('payment', 'system', 'message')", name="valid_notification_type"
        ),
        CheckConstraint("status IN ('unread', 'read')", name="valid_notification_status"),
        Index("idx_notifications_recipient_created", "recipient_id", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation of NotificationRecord."""
        return (
            f"<NotificationRecord(id={self.id}, recipient_id={self.recipient_id}, "
            f"type={self.type})>"
        )
