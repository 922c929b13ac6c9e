"""
Order Store - durable keyed record of orders.

The only write primitive is compare_and_update: the expected field values are
checked and the changes applied as one atomic step. Precondition checks in the
lifecycle controller are re-stated as ``expected`` so that two concurrent
transitions on the same order cannot both succeed.

Lifecycle timestamps are write-once at this level too: a change that would
overwrite an already-set timestamp is treated as a failed comparison.
"""
from __future__ import annotations

import asyncio
from typing import Any, Mapping, Optional, Protocol

import structlog

from .errors import InvalidArgument, OrderNotFound
from .models import WRITE_ONCE_FIELDS, Order

logger = structlog.get_logger(__name__)


class OrderStore(Protocol):
    """Interface for order persistence (PostgreSQL, in-memory, ...)."""

    async def get(self, order_id: str) -> Order:
        """Return the current snapshot. Raises OrderNotFound."""
        ...

    async def compare_and_update(
        self,
        order_id: str,
        expected: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> Optional[Order]:
        """
        Atomically apply ``changes`` if every field in ``expected`` matches.

        Returns the updated snapshot, or None when a comparison failed.
        Raises OrderNotFound when the order does not exist.
        """
        ...

    async def add(self, order: Order) -> Order:
        """Insert a new order (order intake, outside the escrow lifecycle)."""
        ...


def _matches(order: Order, expected: Mapping[str, Any]) -> bool:
    return all(getattr(order, field) == value for field, value in expected.items())


def _overwrites_timestamp(order: Order, changes: Mapping[str, Any]) -> bool:
    return any(
        field in changes and getattr(order, field) is not None for field in WRITE_ONCE_FIELDS
    )


class InMemoryOrderStore:
    """
    In-memory order store for testing and local development.

    The lock is held only around the compare-and-write, never across a
    gateway call.
    """

    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}
        self._lock = asyncio.Lock()

    async def get(self, order_id: str) -> Order:
        order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def compare_and_update(
        self,
        order_id: str,
        expected: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> Optional[Order]:
        async with self._lock:
            current = self._orders.get(order_id)
            if current is None:
                raise OrderNotFound(order_id)

            if not _matches(current, expected) or _overwrites_timestamp(current, changes):
                logger.info(
                    "order_compare_and_update_conflict",
                    order_id=order_id,
                    expected=sorted(expected),
                )
                return None

            updated = current.model_copy(update=dict(changes))
            self._orders[order_id] = updated
            return updated

    async def add(self, order: Order) -> Order:
        async with self._lock:
            if order.id in self._orders:
                raise InvalidArgument(f"Order {order.id} already exists", order_id=order.id)
            self._orders[order.id] = order
        return order

    def all(self) -> list[Order]:
        """Helper for testing: snapshot of every stored order."""
        return list(self._orders.values())
