"""
Pydantic schemas for API request/response models.

The escrow operation records themselves live in escrow_service.core.commands
and are used directly as request/response bodies.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from escrow_service.core.models import (
    Notification,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    quantize_money,
)


class CreateOrderRequest(BaseModel):
    """Request schema for order intake."""

    order_id: Optional[str] = Field(default=None, description="Client-chosen order id")
    buyer_id: str = Field(..., min_length=1, description="Buyer user id")
    seller_id: str = Field(..., min_length=1, description="Seller user id")
    total_amount: Decimal = Field(..., gt=0, description="Order total")

    @field_validator("total_amount")
    @classmethod
    def validate_total_amount(cls, v: Decimal) -> Decimal:
        """Reject totals that round to zero at 2 decimal places."""
        if quantize_money(v) <= 0:
            raise ValueError("Order total must be at least 0.01")
        return v

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "order_id": "o1",
                    "buyer_id": "buyer_1",
                    "seller_id": "seller_1",
                    "total_amount": "1000.00",
                }
            ]
        }
    }


class UpdateOrderStatusRequest(BaseModel):
    """Request schema for a fulfilment status change."""

    status: OrderStatus = Field(..., description="New fulfilment status")


class RefundBody(BaseModel):
    reason: Optional[str] = Field(default=None, description="Refund reason")


class OrderResponse(BaseModel):
    """Response schema for an order."""

    id: str
    buyer_id: str
    seller_id: str
    total_amount: Decimal
    currency: str
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: Optional[PaymentMethod] = None
    payment_id: Optional[str] = None
    escrow_released: bool
    refund_reason: Optional[str] = None
    created_at: datetime
    payment_completed_at: Optional[datetime] = None
    escrow_released_at: Optional[datetime] = None
    refund_requested_at: Optional[datetime] = None

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        return cls(**order.model_dump())


class NotificationResponse(BaseModel):
    id: str
    recipient_id: str
    type: str
    title: str
    body: str
    status: str
    created_at: datetime

    @classmethod
    def from_notification(cls, notification: Notification) -> "NotificationResponse":
        return cls(**notification.model_dump(mode="json"))


class ErrorResponse(BaseModel):
    """Body returned for every typed failure."""

    error: str = Field(..., description="Stable error kind")
    message: str = Field(..., description="Human-readable message")


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
