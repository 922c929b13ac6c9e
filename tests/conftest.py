"""
Pytest configuration and fixtures.
"""
import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable

import pytest

from escrow_service.config import Settings
from escrow_service.core import (
    ChargeResult,
    EscrowLifecycleController,
    GatewayRouter,
    InMemoryNotificationEmitter,
    InMemoryOrderStore,
    Notification,
    NotificationError,
    NotificationType,
    Order,
    PaymentMethod,
    PaymentStatus,
)
from escrow_service.integrations import AlwaysApprove
from escrow_service.integrations.mobile_money import (
    MockMobileMoneyGateway,
    cbe_birr_gateway,
    telebirr_gateway,
)

CREATED_AT = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
NOW = datetime(2024, 1, 2, 12, 0, tzinfo=timezone.utc)

BUYER_ID = "buyer_1"
SELLER_ID = "seller_1"


class FailingNotificationEmitter(InMemoryNotificationEmitter):
    """Emitter whose writes always fail."""

    async def emit(
        self,
        recipient_id: str,
        type: NotificationType,
        title: str,
        body: str,
    ) -> Notification:
        raise NotificationError("notifications table unavailable")


class SlowGateway:
    """Gateway that never answers within the controller timeout."""

    def __init__(self, delay_seconds: float = 5.0):
        self.delay_seconds = delay_seconds
        self.calls = 0

    async def charge(self, method: PaymentMethod, payer_reference: str, amount: Decimal) -> ChargeResult:
        self.calls += 1
        await asyncio.sleep(self.delay_seconds)
        return ChargeResult.approved("TB_TOO_LATE")


class ExplodingGateway:
    """Gateway whose transport blows up."""

    async def charge(self, method: PaymentMethod, payer_reference: str, amount: Decimal) -> ChargeResult:
        raise ConnectionError("provider unreachable")


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite://",
        app_name="escrow-service-test",
        app_env="test",
        log_level="DEBUG",
        gateway_timeout_seconds=1.0,
        gateway_simulated_delay_seconds=0.0,
    )


@pytest.fixture
def order_store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def notifier() -> InMemoryNotificationEmitter:
    return InMemoryNotificationEmitter()


@pytest.fixture
def telebirr() -> MockMobileMoneyGateway:
    return telebirr_gateway(AlwaysApprove())


@pytest.fixture
def cbe_birr() -> MockMobileMoneyGateway:
    return cbe_birr_gateway(AlwaysApprove())


@pytest.fixture
def gateways(telebirr: MockMobileMoneyGateway, cbe_birr: MockMobileMoneyGateway) -> GatewayRouter:
    return GatewayRouter({PaymentMethod.TELEBIRR: telebirr, PaymentMethod.CBE_BIRR: cbe_birr})


@pytest.fixture
def controller(
    order_store: InMemoryOrderStore,
    notifier: InMemoryNotificationEmitter,
    gateways: GatewayRouter,
) -> EscrowLifecycleController:
    """Controller over in-memory fakes with a fixed clock."""
    return EscrowLifecycleController(
        order_store=order_store,
        notifier=notifier,
        gateways=gateways,
        gateway_timeout_seconds=1.0,
        clock=lambda: NOW,
    )


@pytest.fixture
def make_order(order_store: InMemoryOrderStore) -> Callable[..., Awaitable[Order]]:
    """
    Factory adding an order to the in-memory store.

    Paid and refunded orders get a consistent payment id and completion time.
    """

    async def _make(**overrides: Any) -> Order:
        fields: dict[str, Any] = {
            "buyer_id": BUYER_ID,
            "seller_id": SELLER_ID,
            "total_amount": Decimal("1000.00"),
            "created_at": CREATED_AT,
        }
        if overrides.get("payment_status") in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
            fields.update(
                payment_method=PaymentMethod.TELEBIRR,
                payment_id=f"TB{uuid.uuid4().hex[:12]}",
                payment_completed_at=CREATED_AT + timedelta(minutes=5),
            )
        fields.update(overrides)
        return await order_store.add(Order(**fields))

    return _make
