"""
Integration tests for the SQLAlchemy order store and notification emitter.

Runs against an in-memory SQLite database through aiosqlite.
"""
from datetime import timedelta
from decimal import Decimal
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from escrow_service.core import (
    CapturePaymentRequest,
    EscrowLifecycleController,
    GatewayRouter,
    InvalidArgument,
    NotificationError,
    NotificationType,
    Order,
    OrderNotFound,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ReleaseEscrowRequest,
)
from escrow_service.core.fulfilment import advance_fulfilment
from escrow_service.database import Base
from escrow_service.database.repositories import SqlNotificationEmitter, SqlOrderStore
from escrow_service.integrations import AlwaysApprove
from escrow_service.integrations.mobile_money import telebirr_gateway
from escrow_service.monitoring.health import HealthCheck

from conftest import CREATED_AT, NOW


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], Any]:
    """Create a fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await engine.dispose()


@pytest.fixture
def sql_store(session_factory) -> SqlOrderStore:
    return SqlOrderStore(session_factory)


@pytest.fixture
def sql_notifier(session_factory) -> SqlNotificationEmitter:
    return SqlNotificationEmitter(session_factory)


def new_order(**overrides: Any) -> Order:
    fields: dict[str, Any] = {
        "id": "o1",
        "buyer_id": "buyer_1",
        "seller_id": "seller_1",
        "total_amount": Decimal("1000.00"),
        "created_at": CREATED_AT,
    }
    fields.update(overrides)
    return Order(**fields)


class TestSqlOrderStore:
    """Test suite for SqlOrderStore."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_add_and_get(self, sql_store) -> None:
        await sql_store.add(new_order())

        order = await sql_store.get("o1")

        assert order.total_amount == Decimal("1000.00")
        assert order.status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.PENDING
        assert order.payment_method is None
        assert order.created_at == CREATED_AT
        assert order.created_at.tzinfo is not None

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_get_unknown_order(self, sql_store) -> None:
        with pytest.raises(OrderNotFound):
            await sql_store.get("missing")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_add_duplicate(self, sql_store) -> None:
        await sql_store.add(new_order())

        with pytest.raises(InvalidArgument, match="already exists"):
            await sql_store.add(new_order())

    @pytest.mark.integration
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [{"total_amount": Decimal("0.00")}, {"currency": "BIRR"}],
        ids=["zero_total", "bad_currency"],
    )
    async def test_add_constraint_violation_is_not_a_duplicate(self, sql_store, overrides) -> None:
        # model_copy skips validation, so the row reaches the database CHECK constraints.
        invalid = new_order(id="fresh").model_copy(update=overrides)

        with pytest.raises(InvalidArgument, match="violates order constraints"):
            await sql_store.add(invalid)

        with pytest.raises(OrderNotFound):
            await sql_store.get("fresh")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_compare_and_update(self, sql_store) -> None:
        await sql_store.add(new_order())

        updated = await sql_store.compare_and_update(
            "o1",
            expected={"payment_status": PaymentStatus.PENDING},
            changes={
                "payment_status": PaymentStatus.PAID,
                "payment_method": PaymentMethod.TELEBIRR,
                "payment_id": "TB1700000000000",
                "payment_completed_at": NOW,
            },
        )

        assert updated is not None
        assert updated.payment_status == PaymentStatus.PAID
        assert updated.payment_method == PaymentMethod.TELEBIRR
        assert updated.payment_completed_at == NOW
        assert await sql_store.get("o1") == updated

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_compare_and_update_mismatch(self, sql_store) -> None:
        await sql_store.add(new_order())

        updated = await sql_store.compare_and_update(
            "o1",
            expected={"payment_status": PaymentStatus.PAID, "escrow_released": False},
            changes={"payment_status": PaymentStatus.REFUNDED},
        )

        assert updated is None
        assert (await sql_store.get("o1")).payment_status == PaymentStatus.PENDING

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_write_once_timestamp_is_protected(self, sql_store) -> None:
        first = CREATED_AT + timedelta(minutes=5)
        await sql_store.add(
            new_order(
                payment_status=PaymentStatus.PAID,
                payment_method=PaymentMethod.TELEBIRR,
                payment_id="TB1",
                payment_completed_at=first,
            )
        )

        updated = await sql_store.compare_and_update(
            "o1",
            expected={"payment_status": PaymentStatus.PAID},
            changes={"payment_completed_at": NOW},
        )

        assert updated is None
        assert (await sql_store.get("o1")).payment_completed_at == first

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_compare_and_update_unknown_order(self, sql_store) -> None:
        with pytest.raises(OrderNotFound):
            await sql_store.compare_and_update(
                "missing",
                expected={"status": OrderStatus.PENDING},
                changes={"status": OrderStatus.CONFIRMED},
            )

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_lifecycle_against_sql(self, sql_store, sql_notifier, gateways) -> None:
        controller = EscrowLifecycleController(
            order_store=sql_store,
            notifier=sql_notifier,
            gateways=gateways,
            clock=lambda: NOW,
        )
        await sql_store.add(new_order())

        captured = await controller.capture_payment(
            CapturePaymentRequest(
                order_id="o1",
                amount=Decimal("1000"),
                payer_reference="+251911000000",
                method=PaymentMethod.TELEBIRR,
            )
        )
        await advance_fulfilment(sql_store, "o1", OrderStatus.DELIVERED)
        released = await controller.release_escrow_payment(ReleaseEscrowRequest(order_id="o1"))

        assert not captured.degraded
        assert not released.degraded
        order = await sql_store.get("o1")
        assert order.payment_id == captured.payment_id
        assert order.escrow_released is True
        assert order.escrow_released_at == NOW
        assert order.invariant_violations() == []

        seller_titles = {n.title for n in await sql_notifier.list_for("seller_1")}
        assert seller_titles == {"Payment Received", "Payment Released"}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_captures_in_the_same_millisecond(self, sql_store, sql_notifier) -> None:
        telebirr = telebirr_gateway(AlwaysApprove(), clock_ms=lambda: 1700000000000)
        controller = EscrowLifecycleController(
            order_store=sql_store,
            notifier=sql_notifier,
            gateways=GatewayRouter({PaymentMethod.TELEBIRR: telebirr}),
            clock=lambda: NOW,
        )
        await sql_store.add(new_order(id="a"))
        await sql_store.add(new_order(id="b"))

        results = [
            await controller.capture_payment(
                CapturePaymentRequest(
                    order_id=order_id,
                    amount=Decimal("1000.00"),
                    payer_reference="+251911000000",
                    method=PaymentMethod.TELEBIRR,
                )
            )
            for order_id in ("a", "b")
        ]

        assert telebirr.calls == 2
        assert results[0].payment_id != results[1].payment_id
        for order_id, result in zip(("a", "b"), results):
            order = await sql_store.get(order_id)
            assert order.payment_status == PaymentStatus.PAID
            assert order.payment_id == result.payment_id


class TestSqlNotificationEmitter:
    """Test suite for SqlNotificationEmitter."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_emit_and_list(self, sql_notifier) -> None:
        emitted = await sql_notifier.emit("u1", NotificationType.PAYMENT, "Payment Received", "body")
        await sql_notifier.emit("u2", NotificationType.SYSTEM, "Other", "body")

        [stored] = await sql_notifier.list_for("u1")

        assert stored.id == emitted.id
        assert stored.type == NotificationType.PAYMENT
        assert stored.title == "Payment Received"
        assert stored.created_at.tzinfo is not None

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_recipient_required(self, sql_notifier) -> None:
        with pytest.raises(NotificationError):
            await sql_notifier.emit("", NotificationType.SYSTEM, "title", "body")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self, sql_notifier, mocker) -> None:
        attempts = {"count": 0}
        real_factory = sql_notifier.session_factory

        def flaky_factory():
            attempts["count"] += 1
            if attempts["count"] == 1:
                raise OperationalError("INSERT", {}, Exception("database is locked"))
            return real_factory()

        mocker.patch.object(sql_notifier, "session_factory", side_effect=flaky_factory)

        await sql_notifier.emit("u1", NotificationType.SYSTEM, "title", "body")

        assert attempts["count"] == 2
        assert len(await sql_notifier.list_for("u1")) == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_persistent_errors_become_notification_error(self, sql_notifier, mocker) -> None:
        mocker.patch.object(
            sql_notifier,
            "session_factory",
            side_effect=OperationalError("INSERT", {}, Exception("disk I/O error")),
        )

        with pytest.raises(NotificationError, match="Failed to store notification"):
            await sql_notifier.emit("u1", NotificationType.SYSTEM, "title", "body")


class TestHealthCheck:
    """Test suite for HealthCheck."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_database_healthy(self, session_factory) -> None:
        health = HealthCheck(session_factory=lambda: session_factory)

        result = await health.check_all()

        assert result["status"] == "healthy"
        assert result["checks"]["database"]["status"] == "healthy"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_database_unhealthy(self) -> None:
        def broken_factory():
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))

        health = HealthCheck(session_factory=broken_factory)

        result = await health.readiness()

        assert result["status"] == "unhealthy"
        assert "connection refused" in result["checks"]["database"]["error"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_missing_schema_is_not_ready(self) -> None:
        engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
        empty = async_sessionmaker(engine, class_=AsyncSession)
        health = HealthCheck(session_factory=lambda: empty)

        result = await health.readiness()

        assert result["status"] == "unhealthy"
        assert result["checks"]["database"]["status"] == "healthy"
        assert result["checks"]["schema"]["status"] == "unhealthy"
        await engine.dispose()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_liveness(self) -> None:
        assert (await HealthCheck().liveness())["status"] == "alive"
