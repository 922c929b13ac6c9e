"""
Property-style tests: random operation sequences never break the escrow
invariants.
"""
import random
from decimal import Decimal

import pytest

from escrow_service.core import (
    CapturePaymentRequest,
    EscrowError,
    EscrowLifecycleController,
    GatewayRouter,
    InMemoryNotificationEmitter,
    InMemoryOrderStore,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    RefundRequest,
    ReleaseEscrowRequest,
)
from escrow_service.core.fulfilment import advance_fulfilment
from escrow_service.core.models import WRITE_ONCE_FIELDS
from escrow_service.integrations import ProbabilityPolicy
from escrow_service.integrations.mobile_money import cbe_birr_gateway, telebirr_gateway

from conftest import CREATED_AT, NOW

PAYMENT_RANK = {PaymentStatus.PENDING: 0, PaymentStatus.PAID: 1, PaymentStatus.REFUNDED: 2}
ORDER_IDS = ["o1", "o2", "o3"]


async def random_step(rng: random.Random, controller, store) -> None:
    order_id = rng.choice(ORDER_IDS + ["missing"])
    operation = rng.choice(["capture", "refund", "release", "advance"])

    if operation == "capture":
        order = await store.get(order_id) if order_id != "missing" else None
        amount = order.total_amount if order and rng.random() < 0.8 else Decimal("1.00")
        await controller.capture_payment(
            CapturePaymentRequest(
                order_id=order_id,
                amount=amount,
                payer_reference="+251911000000",
                method=rng.choice(list(PaymentMethod)),
            )
        )
    elif operation == "refund":
        await controller.request_refund(RefundRequest(order_id=order_id, reason="random"))
    elif operation == "release":
        await controller.release_escrow_payment(ReleaseEscrowRequest(order_id=order_id))
    else:
        await advance_fulfilment(store, order_id, rng.choice(list(OrderStatus)))


class TestEscrowInvariants:
    """Random sequences of operations against the in-memory store."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", range(8))
    async def test_random_sequences_preserve_invariants(self, seed: int) -> None:
        rng = random.Random(seed)
        store = InMemoryOrderStore()
        notifier = InMemoryNotificationEmitter()
        controller = EscrowLifecycleController(
            order_store=store,
            notifier=notifier,
            gateways=GatewayRouter(
                {
                    PaymentMethod.TELEBIRR: telebirr_gateway(ProbabilityPolicy(0.7, rng)),
                    PaymentMethod.CBE_BIRR: cbe_birr_gateway(ProbabilityPolicy(0.7, rng)),
                }
            ),
            clock=lambda: NOW,
        )
        for order_id in ORDER_IDS:
            await store.add(
                Order(
                    id=order_id,
                    buyer_id=f"buyer_{order_id}",
                    seller_id=f"seller_{order_id}",
                    total_amount=Decimal(rng.randint(1, 5000)),
                    created_at=CREATED_AT,
                )
            )

        previous = {order.id: order for order in store.all()}
        for _ in range(60):
            try:
                await random_step(rng, controller, store)
            except EscrowError:
                pass

            for order in store.all():
                before = previous[order.id]
                assert order.invariant_violations() == []
                assert order.status.rank >= before.status.rank
                assert PAYMENT_RANK[order.payment_status] >= PAYMENT_RANK[before.payment_status]
                assert order.escrow_released >= before.escrow_released
                if before.payment_id is not None:
                    assert order.payment_id == before.payment_id
                for field in WRITE_ONCE_FIELDS:
                    if getattr(before, field) is not None:
                        assert getattr(order, field) == getattr(before, field)
                previous[order.id] = order

        released = [o for o in store.all() if o.escrow_released]
        seller_releases = [
            n for n in notifier.sent if n.title == "Payment Released" and n.recipient_id.startswith("seller_")
        ]
        assert len(seller_releases) == len(released)
