"""
Escrow Lifecycle Controller.

State machine over (status, payment_status, escrow_released):

    capture   payment_status pending -> paid          notify seller
    refund    payment_status paid -> refunded          notify buyer
    release   escrow_released false -> true            notify seller and buyer
              (requires status delivered and payment paid)

Every mutating operation follows the same shape:
1. Validate input
2. Read the order and check the precondition against the current snapshot
3. (capture only) Call the gateway with no lock held
4. Apply the transition with a single compare-and-update
5. Fan out notifications, best-effort

A crash between 4 and 5 leaves a valid order with a missing notification,
never a half-applied or duplicated financial transition.
"""
from __future__ import annotations

import asyncio
import time
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, NoReturn, TypeVar

import structlog

from escrow_service.monitoring.metrics import metrics

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
from .errors import (
    AlreadyRefunded,
    AlreadyReleased,
    ErrorKind,
    EscrowError,
    InvalidArgument,
    PaymentDeclined,
    PreconditionFailed,
)
from .gateway import ChargeResult, GatewayRouter, PaymentGateway
from .models import (
    NotificationType,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    utcnow,
)
from .notifications import NotificationEmitter
from .order_store import OrderStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def check_capturable(order: Order) -> None:
    if order.payment_status == PaymentStatus.PAID:
        raise PreconditionFailed("Order payment already completed", order_id=order.id)
    if order.payment_status != PaymentStatus.PENDING:
        raise PreconditionFailed(
            f"Cannot capture payment with status: {order.payment_status.value}",
            order_id=order.id,
        )


def check_refundable(order: Order) -> None:
    if order.payment_status == PaymentStatus.REFUNDED:
        raise AlreadyRefunded("Refund already requested", order_id=order.id)
    if order.payment_status != PaymentStatus.PAID:
        raise PreconditionFailed("Order payment not completed", order_id=order.id)
    if order.escrow_released:
        raise PreconditionFailed(
            "Escrow payment already released to the seller", order_id=order.id
        )


def check_releasable(order: Order) -> None:
    if order.status != OrderStatus.DELIVERED:
        raise PreconditionFailed(
            "Order must be delivered to release escrow", order_id=order.id
        )
    if order.escrow_released:
        raise AlreadyReleased("Escrow payment already released", order_id=order.id)
    if order.payment_status != PaymentStatus.PAID:
        raise PreconditionFailed("Order payment not completed", order_id=order.id)


class EscrowLifecycleController:
    """
    Orchestrates capture, verification, refund and escrow release.

    The controller owns no state; the order store, notification emitter,
    gateway router and clock are injected.
    """

    def __init__(
        self,
        order_store: OrderStore,
        notifier: NotificationEmitter,
        gateways: GatewayRouter,
        gateway_timeout_seconds: float = 10.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            order_store: Store exposing an atomic compare-and-update
            notifier: Best-effort notification emitter
            gateways: Payment adapters keyed by payment method
            gateway_timeout_seconds: Upper bound for one charge attempt
            clock: Source of timezone-aware timestamps
        """
        self.order_store = order_store
        self.notifier = notifier
        self.gateways = gateways
        self.gateway_timeout_seconds = gateway_timeout_seconds
        self.clock = clock

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def capture_payment(self, request: CapturePaymentRequest) -> CaptureResult:
        """
        Charge the buyer and move the order from pending to paid.

        The gateway is called at most once per invocation. Retrying a declined
        payment is the caller's decision.

        Raises:
            InvalidArgument: Missing fields, non-positive amount, unsupported method
            OrderNotFound: Unknown order
            PreconditionFailed: Payment no longer pending
            PaymentDeclined: Gateway declined or timed out, or amount mismatch
        """
        return await self._instrumented("capture_payment", self._capture(request))

    async def verify_payment_status(self, request: VerifyPaymentRequest) -> PaymentSnapshot:
        """Read-only projection of the order's payment fields."""
        return await self._instrumented("verify_payment_status", self._verify(request))

    async def request_refund(self, request: RefundRequest) -> RefundResult:
        """
        Move a paid order to refunded. Refund is terminal.

        Raises:
            OrderNotFound, AlreadyRefunded, PreconditionFailed
        """
        return await self._instrumented("request_refund", self._refund(request))

    async def release_escrow_payment(self, request: ReleaseEscrowRequest) -> ReleaseResult:
        """
        Release escrowed funds to the seller after delivery.

        Raises:
            OrderNotFound, PreconditionFailed, AlreadyReleased
        """
        return await self._instrumented("release_escrow_payment", self._release(request))

    # ------------------------------------------------------------------
    # Implementations
    # ------------------------------------------------------------------

    async def _capture(self, request: CapturePaymentRequest) -> CaptureResult:
        if request.payer_reference is not None:
            request = request.model_copy(
                update={"payer_reference": request.payer_reference.strip()}
            )
        missing = [
            name
            for name in ("order_id", "amount", "payer_reference", "method")
            if getattr(request, name) in (None, "")
        ]
        if missing:
            raise InvalidArgument(
                "Missing required parameters: " + ", ".join(missing),
                order_id=request.order_id,
            )
        if request.amount <= 0:
            raise InvalidArgument("Amount must be positive", order_id=request.order_id)

        order_id: str = request.order_id
        method: PaymentMethod = request.method
        amount = Decimal(request.amount)

        logger.info(
            "payment_capture_started",
            order_id=order_id,
            method=method.value,
            amount=str(amount),
            payer_reference=request.payer_reference,
        )

        order = await self.order_store.get(order_id)
        check_capturable(order)

        if amount != order.total_amount:
            raise PaymentDeclined(
                f"Amount {amount} does not match order total {order.total_amount}",
                order_id=order_id,
            )

        adapter = self.gateways.adapter_for(method)
        if adapter is None:
            raise InvalidArgument(
                f"Payment method {method.value} is not supported", order_id=order_id
            )

        charge = await self._charge(adapter, order_id, method, request.payer_reference, amount)
        if not charge.ok:
            raise PaymentDeclined(
                charge.reason or "Payment failed. Please try again.", order_id=order_id
            )

        try:
            updated = await self.order_store.compare_and_update(
                order_id,
                expected={"payment_status": PaymentStatus.PENDING},
                changes={
                    "payment_status": PaymentStatus.PAID,
                    "payment_method": method,
                    "payment_id": charge.provider_txn_id,
                    "payment_completed_at": self._timestamp(order),
                },
            )
        except Exception as e:
            # Charged, but the order was not marked paid.
            logger.error(
                "capture_commit_failed",
                order_id=order_id,
                provider_txn_id=charge.provider_txn_id,
                method=method.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise
        if updated is None:
            # Charged, but another capture committed first.
            logger.error(
                "capture_lost_race",
                order_id=order_id,
                provider_txn_id=charge.provider_txn_id,
                method=method.value,
            )
            await self._raise_for_conflict(order_id, check_capturable)

        logger.info(
            "payment_captured",
            order_id=order_id,
            payment_id=updated.payment_id,
        )

        failed = await self._notify(
            order_id,
            [
                (
                    updated.seller_id,
                    NotificationType.PAYMENT,
                    "Payment Received",
                    f"Payment of {updated.currency} {updated.total_amount} "
                    f"received via {method.display_name}",
                )
            ],
        )
        return CaptureResult(
            order_id=order_id,
            payment_id=updated.payment_id,
            message="Payment successful",
            notifications_failed=failed,
        )

    async def _verify(self, request: VerifyPaymentRequest) -> PaymentSnapshot:
        if not request.order_id:
            raise InvalidArgument("Missing required parameters: order_id")

        order = await self.order_store.get(request.order_id)
        return PaymentSnapshot(
            order_id=order.id,
            payment_status=order.payment_status,
            payment_method=order.payment_method,
            payment_id=order.payment_id,
            payment_completed_at=order.payment_completed_at,
        )

    async def _refund(self, request: RefundRequest) -> RefundResult:
        if not request.order_id:
            raise InvalidArgument("Missing required parameters: order_id")

        order_id = request.order_id
        order = await self.order_store.get(order_id)
        check_refundable(order)

        updated = await self.order_store.compare_and_update(
            order_id,
            expected={"payment_status": PaymentStatus.PAID, "escrow_released": False},
            changes={
                "payment_status": PaymentStatus.REFUNDED,
                "refund_reason": request.reason,
                "refund_requested_at": self._timestamp(order),
            },
        )
        if updated is None:
            await self._raise_for_conflict(order_id, check_refundable)

        logger.info("refund_requested", order_id=order_id, reason=request.reason)

        failed = await self._notify(
            order_id,
            [
                (
                    updated.buyer_id,
                    NotificationType.SYSTEM,
                    "Refund Initiated",
                    "Your refund has been initiated. "
                    "It will be processed within 5-7 business days.",
                )
            ],
        )
        return RefundResult(
            order_id=order_id,
            message="Refund request submitted successfully",
            notifications_failed=failed,
        )

    async def _release(self, request: ReleaseEscrowRequest) -> ReleaseResult:
        if not request.order_id:
            raise InvalidArgument("Missing required parameters: order_id")

        order_id = request.order_id
        order = await self.order_store.get(order_id)
        check_releasable(order)

        updated = await self.order_store.compare_and_update(
            order_id,
            expected={
                "status": OrderStatus.DELIVERED,
                "payment_status": PaymentStatus.PAID,
                "escrow_released": False,
            },
            changes={
                "escrow_released": True,
                "escrow_released_at": self._timestamp(order),
            },
        )
        if updated is None:
            await self._raise_for_conflict(order_id, check_releasable)

        logger.info("escrow_released", order_id=order_id, seller_id=updated.seller_id)

        failed = await self._notify(
            order_id,
            [
                (
                    updated.seller_id,
                    NotificationType.PAYMENT,
                    "Payment Released",
                    f"Payment of {updated.total_amount} {updated.currency} "
                    "has been released to your account",
                ),
                (
                    updated.buyer_id,
                    NotificationType.SYSTEM,
                    "Payment Released",
                    "Payment has been released to the seller",
                ),
            ],
        )
        return ReleaseResult(
            order_id=order_id,
            message="Escrow payment released successfully",
            notifications_failed=failed,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _charge(
        self,
        adapter: PaymentGateway,
        order_id: str,
        method: PaymentMethod,
        payer_reference: str,
        amount: Decimal,
    ) -> ChargeResult:
        """Single gateway attempt. Timeouts and adapter errors fail closed."""
        start_time = time.perf_counter()
        try:
            charge = await asyncio.wait_for(
                adapter.charge(method, payer_reference, amount),
                timeout=self.gateway_timeout_seconds,
            )
        except asyncio.TimeoutError:
            metrics.record_gateway_charge(
                method.value, "timeout", time.perf_counter() - start_time
            )
            logger.error(
                "gateway_charge_timeout",
                order_id=order_id,
                method=method.value,
                timeout_seconds=self.gateway_timeout_seconds,
            )
            raise PaymentDeclined(
                "Payment provider did not respond in time", order_id=order_id
            )
        except EscrowError:
            raise
        except Exception as e:
            metrics.record_gateway_charge(method.value, "error", time.perf_counter() - start_time)
            logger.error(
                "gateway_charge_error",
                order_id=order_id,
                method=method.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PaymentDeclined("Payment processing failed", order_id=order_id) from e

        outcome = "approved" if charge.ok else "declined"
        metrics.record_gateway_charge(method.value, outcome, time.perf_counter() - start_time)
        return charge

    async def _raise_for_conflict(
        self, order_id: str, check: Callable[[Order], None]
    ) -> NoReturn:
        """
        A compare-and-update lost to a concurrent writer.

        Re-read and report whatever failure the fresh snapshot implies.
        """
        fresh = await self.order_store.get(order_id)
        check(fresh)
        raise PreconditionFailed("Order changed concurrently, please retry", order_id=order_id)

    def _timestamp(self, order: Order) -> datetime:
        """Lifecycle timestamps never precede order creation."""
        return max(self.clock(), order.created_at)

    async def _notify(
        self,
        order_id: str,
        messages: list[tuple[str, NotificationType, str, str]],
    ) -> list[str]:
        """
        Emit notifications after a committed transition.

        Returns the recipients whose notification was lost.
        """
        failed = []
        for recipient_id, notification_type, title, body in messages:
            try:
                await self.notifier.emit(recipient_id, notification_type, title, body)
            except Exception as e:
                failed.append(recipient_id)
                metrics.record_notification_failure(notification_type.value)
                logger.error(
                    "notification_emit_failed",
                    order_id=order_id,
                    recipient_id=recipient_id,
                    type=notification_type.value,
                    title=title,
                    error=str(e),
                    error_type=type(e).__name__,
                )
        return failed

    async def _instrumented(self, operation: str, call: Awaitable[T]) -> T:
        start_time = time.perf_counter()
        try:
            result = await call
        except EscrowError as e:
            metrics.record_operation(operation, e.kind.value, time.perf_counter() - start_time)
            logger.warning(
                f"{operation}_rejected",
                order_id=e.order_id,
                error_kind=e.kind.value,
                error=e.message,
            )
            raise
        except Exception as e:
            metrics.record_operation(
                operation, ErrorKind.INTERNAL.value, time.perf_counter() - start_time
            )
            logger.error(
                f"{operation}_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        outcome = "degraded" if getattr(result, "degraded", False) else "success"
        metrics.record_operation(operation, outcome, time.perf_counter() - start_time)
        return result
