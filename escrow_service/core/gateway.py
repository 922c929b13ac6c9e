"""
Payment Gateway Adapter interface.

The controller only sees ``PaymentGateway.charge`` and a router that picks
the adapter for an order's payment method. Provider implementations live in
``escrow_service.integrations``.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping, Optional, Protocol

from .models import PaymentMethod


@dataclass(frozen=True)
class ChargeResult:
    """Outcome of a single charge attempt."""

    ok: bool
    provider_txn_id: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def approved(cls, provider_txn_id: str) -> ChargeResult:
        return cls(ok=True, provider_txn_id=provider_txn_id)

    @classmethod
    def declined(cls, reason: str) -> ChargeResult:
        return cls(ok=False, reason=reason)


class PaymentGateway(Protocol):
    """Interface for a payment provider."""

    async def charge(
        self, method: PaymentMethod, payer_reference: str, amount: Decimal
    ) -> ChargeResult:
        ...


class GatewayRouter:
    """Routes a charge to the adapter registered for its payment method."""

    def __init__(self, adapters: Optional[Mapping[PaymentMethod, PaymentGateway]] = None):
        self._adapters: dict[PaymentMethod, PaymentGateway] = dict(adapters or {})

    def register(self, method: PaymentMethod, adapter: PaymentGateway) -> None:
        self._adapters[method] = adapter

    def adapter_for(self, method: PaymentMethod) -> Optional[PaymentGateway]:
        return self._adapters.get(method)

    @property
    def methods(self) -> list[PaymentMethod]:
        return list(self._adapters)
