"""
Mock mobile-money providers (Telebirr, CBE Birr).

These are placeholders: a real integration only has to implement
``PaymentGateway.charge``. The mock decides each outcome through an
injectable OutcomePolicy so tests can force approvals or declines
deterministically.
"""
from __future__ import annotations

import asyncio
import random
import time
from decimal import Decimal
from typing import Callable, Optional, Protocol

import structlog

from escrow_service.config import Settings
from escrow_service.core.gateway import ChargeResult, GatewayRouter
from escrow_service.core.models import PaymentMethod

logger = structlog.get_logger(__name__)


class OutcomePolicy(Protocol):
    """Decides whether a mock charge is approved."""

    def approve(self) -> bool:
        ...


class ProbabilityPolicy:
    """Approve with a fixed probability. Seed the RNG for reproducible runs."""

    def __init__(self, success_rate: float, rng: Optional[random.Random] = None):
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError("success_rate must be between 0 and 1")
        self.success_rate = success_rate
        self.rng = rng or random.Random()

    def approve(self) -> bool:
        return self.rng.random() < self.success_rate


class AlwaysApprove:
    def approve(self) -> bool:
        return True


class AlwaysDecline:
    def approve(self) -> bool:
        return False


def _epoch_millis() -> int:
    return int(time.time() * 1000)


class MockMobileMoneyGateway:
    """
    Simulated mobile-money provider.

    Provider transaction ids are ``<prefix><epoch-ms>`` (e.g. TB1700000000000).
    Ids issued by one gateway are strictly increasing, so two approvals in the
    same millisecond still get distinct ids.
    """

    def __init__(
        self,
        method: PaymentMethod,
        txn_prefix: str,
        decline_reason: str,
        policy: OutcomePolicy,
        simulated_delay_seconds: float = 0.0,
        clock_ms: Callable[[], int] = _epoch_millis,
    ):
        self.method = method
        self.txn_prefix = txn_prefix
        self.decline_reason = decline_reason
        self.policy = policy
        self.simulated_delay_seconds = simulated_delay_seconds
        self.clock_ms = clock_ms
        self.calls = 0
        self._last_txn_ms = 0

    def _next_txn_id(self) -> str:
        txn_ms = max(self.clock_ms(), self._last_txn_ms + 1)
        self._last_txn_ms = txn_ms
        return f"{self.txn_prefix}{txn_ms}"

    async def charge(
        self, method: PaymentMethod, payer_reference: str, amount: Decimal
    ) -> ChargeResult:
        self.calls += 1

        if self.simulated_delay_seconds > 0:
            await asyncio.sleep(self.simulated_delay_seconds)

        if not self.policy.approve():
            logger.info(
                "mock_gateway_declined",
                method=method.value,
                amount=str(amount),
            )
            return ChargeResult.declined(self.decline_reason)

        provider_txn_id = self._next_txn_id()
        logger.info(
            "mock_gateway_approved",
            method=method.value,
            amount=str(amount),
            provider_txn_id=provider_txn_id,
        )
        return ChargeResult.approved(provider_txn_id)


def telebirr_gateway(
    policy: OutcomePolicy,
    simulated_delay_seconds: float = 0.0,
    clock_ms: Callable[[], int] = _epoch_millis,
) -> MockMobileMoneyGateway:
    return MockMobileMoneyGateway(
        method=PaymentMethod.TELEBIRR,
        txn_prefix="TB",
        decline_reason="Payment failed. Please try again.",
        policy=policy,
        simulated_delay_seconds=simulated_delay_seconds,
        clock_ms=clock_ms,
    )


def cbe_birr_gateway(
    policy: OutcomePolicy,
    simulated_delay_seconds: float = 0.0,
    clock_ms: Callable[[], int] = _epoch_millis,
) -> MockMobileMoneyGateway:
    return MockMobileMoneyGateway(
        method=PaymentMethod.CBE_BIRR,
        txn_prefix="CBE",
        decline_reason="Payment failed. Insufficient funds or invalid account.",
        policy=policy,
        simulated_delay_seconds=simulated_delay_seconds,
        clock_ms=clock_ms,
    )


def build_mock_router(
    settings: Settings, rng: Optional[random.Random] = None
) -> GatewayRouter:
    """Router with the simulated Telebirr and CBE Birr providers."""
    delay = settings.gateway_simulated_delay_seconds
    return GatewayRouter(
        {
            PaymentMethod.TELEBIRR: telebirr_gateway(
                ProbabilityPolicy(settings.telebirr_success_rate, rng), delay
            ),
            PaymentMethod.CBE_BIRR: cbe_birr_gateway(
                ProbabilityPolicy(settings.cbe_birr_success_rate, rng), delay
            ),
        }
    )
