"""
Request and result records for the four escrow operations.

Requests are deliberately permissive (every field optional) so that missing
input reaches the controller and is reported as InvalidArgument rather than
failing somewhere in transport parsing.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from .models import PaymentMethod, PaymentStatus


class CapturePaymentRequest(BaseModel):
    """Charge the buyer for an order through a mobile-money provider."""

    order_id: Optional[str] = Field(default=None, description="Order identifier")
    amount: Optional[Decimal] = Field(default=None, description="Amount to charge")
    payer_reference: Optional[str] = Field(
        default=None, description="Phone number (Telebirr) or account number (CBE Birr)"
    )
    method: Optional[PaymentMethod] = Field(default=None, description="Payment method")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "order_id": "o1",
                    "amount": "1000.00",
                    "payer_reference": "+251911000000",
                    "method": "telebirr",
                }
            ]
        }
    }


class VerifyPaymentRequest(BaseModel):
    order_id: Optional[str] = None


class RefundRequest(BaseModel):
    order_id: Optional[str] = None
    reason: Optional[str] = Field(default=None, description="Why the buyer wants a refund")


class ReleaseEscrowRequest(BaseModel):
    order_id: Optional[str] = None


class OperationResult(BaseModel):
    """Common shape of a successful mutating operation."""

    success: bool = True
    order_id: str
    message: str
    notifications_failed: List[str] = Field(
        default_factory=list,
        description="Recipients whose notification could not be written",
    )

    @property
    def degraded(self) -> bool:
        """True when the transition committed but some notifications were lost."""
        return bool(self.notifications_failed)


class CaptureResult(OperationResult):
    payment_id: str


class RefundResult(OperationResult):
    pass


class ReleaseResult(OperationResult):
    pass


class PaymentSnapshot(BaseModel):
    """Read-only projection of an order's payment fields."""

    order_id: str
    payment_status: PaymentStatus
    payment_method: Optional[PaymentMethod] = None
    payment_id: Optional[str] = None
    payment_completed_at: Optional[datetime] = None
