"""
SQL implementations of the Order Store and Notification Emitter.

compare_and_update is a single conditional UPDATE:

    UPDATE orders SET ... WHERE id = :id AND <expected columns> AND <timestamps IS NULL>

A rowcount of zero means the order changed underneath the caller (or does not
exist), so two concurrent escrow releases cannot both commit.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from escrow_service.core.errors import (
    InternalError,
    InvalidArgument,
    NotificationError,
    OrderNotFound,
)
from escrow_service.core.models import (
    WRITE_ONCE_FIELDS,
    Notification,
    NotificationType,
    Order,
)
from escrow_service.database.models import NotificationRecord, OrderRecord

logger = structlog.get_logger(__name__)

ORDER_COLUMNS = (
    "id",
    "buyer_id",
    "seller_id",
    "total_amount",
    "currency",
    "status",
    "payment_status",
    "payment_method",
    "payment_id",
    "escrow_released",
    "refund_reason",
    "created_at",
    "payment_completed_at",
    "escrow_released_at",
    "refund_requested_at",
)


def _to_column(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone=True columns.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_domain(record: OrderRecord) -> Order:
    data = {name: getattr(record, name) for name in ORDER_COLUMNS}
    for name in ("created_at", *WRITE_ONCE_FIELDS):
        data[name] = _aware(data[name])
    return Order(**data)


class SqlOrderStore:
    """Order store backed by SQLAlchemy async sessions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get(self, order_id: str) -> Order:
        try:
            async with self.session_factory() as db:
                record = await db.get(OrderRecord, order_id)
                if record is None:
                    raise OrderNotFound(order_id)
                return _to_domain(record)
        except SQLAlchemyError as e:
            logger.error("order_store_get_failed", order_id=order_id, error=str(e))
            raise InternalError("Order store unavailable", order_id=order_id) from e

    async def compare_and_update(
        self,
        order_id: str,
        expected: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> Optional[Order]:
        conditions = [OrderRecord.id == order_id]
        for field, value in expected.items():
            column = getattr(OrderRecord, field)
            conditions.append(column.is_(None) if value is None else column == _to_column(value))
        for field in WRITE_ONCE_FIELDS:
            if field in changes:
                conditions.append(getattr(OrderRecord, field).is_(None))

        stmt = (
            update(OrderRecord)
            .where(*conditions)
            .values({field: _to_column(value) for field, value in changes.items()})
            .execution_options(synchronize_session=False)
        )

        try:
            async with self.session_factory() as db:
                async with db.begin():
                    result = await db.execute(stmt)
                    if result.rowcount == 0:
                        if await db.get(OrderRecord, order_id) is None:
                            raise OrderNotFound(order_id)
                        logger.info(
                            "order_compare_and_update_conflict",
                            order_id=order_id,
                            expected=sorted(expected),
                        )
                        return None

                    record = (
                        await db.execute(
                            select(OrderRecord)
                            .where(OrderRecord.id == order_id)
                            .execution_options(populate_existing=True)
                        )
                    ).scalar_one()
                    return _to_domain(record)
        except SQLAlchemyError as e:
            logger.error(
                "order_store_update_failed",
                order_id=order_id,
                error=str(e),
            )
            raise InternalError("Order store unavailable", order_id=order_id) from e

    async def add(self, order: Order) -> Order:
        record = OrderRecord(**{name: _to_column(getattr(order, name)) for name in ORDER_COLUMNS})
        try:
            async with self.session_factory() as db:
                async with db.begin():
                    db.add(record)
        except IntegrityError as e:
            if await self._exists(order.id):
                raise InvalidArgument(f"Order {order.id} already exists", order_id=order.id) from e
            logger.warning("order_rejected_by_constraints", order_id=order.id, error=str(e.orig))
            raise InvalidArgument(
                f"Order {order.id} violates order constraints", order_id=order.id
            ) from e
        except SQLAlchemyError as e:
            logger.error("order_store_add_failed", order_id=order.id, error=str(e))
            raise InternalError("Order store unavailable", order_id=order.id) from e
        return order

    async def _exists(self, order_id: str) -> bool:
        try:
            async with self.session_factory() as db:
                return await db.get(OrderRecord, order_id) is not None
        except SQLAlchemyError as e:
            logger.error("order_store_get_failed", order_id=order_id, error=str(e))
            raise InternalError("Order store unavailable", order_id=order_id) from e


class SqlNotificationEmitter:
    """
    Notification emitter writing to the notifications table.

    Transient database errors are retried a few times; anything that still
    fails is reported as NotificationError.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @retry(
        retry=retry_if_exception_type(OperationalError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1.0),
        reraise=True,
    )
    async def _insert(self, notification: Notification) -> None:
        async with self.session_factory() as db:
            async with db.begin():
                db.add(
                    NotificationRecord(
                        id=notification.id,
                        recipient_id=notification.recipient_id,
                        type=notification.type.value,
                        title=notification.title,
                        body=notification.body,
                        status=notification.status.value,
                        created_at=notification.created_at,
                    )
                )

    async def emit(
        self,
        recipient_id: str,
        type: NotificationType,
        title: str,
        body: str,
    ) -> Notification:
        if not recipient_id:
            raise NotificationError("Notification recipient is required")

        notification = Notification(
            id=str(uuid.uuid4()),
            recipient_id=recipient_id,
            type=type,
            title=title,
            body=body,
        )
        try:
            await self._insert(notification)
        except SQLAlchemyError as e:
            raise NotificationError(f"Failed to store notification: {str(e)}") from e

        logger.info(
            "notification_emitted",
            notification_id=notification.id,
            recipient_id=recipient_id,
            type=type.value,
        )
        return notification

    async def list_for(self, recipient_id: str) -> list[Notification]:
        stmt = (
            select(NotificationRecord)
            .where(NotificationRecord.recipient_id == recipient_id)
            .order_by(NotificationRecord.created_at.desc())
        )
        try:
            async with self.session_factory() as db:
                records = (await db.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            logger.error("notification_list_failed", recipient_id=recipient_id, error=str(e))
            raise InternalError("Notification store unavailable") from e

        return [
            Notification(
                id=r.id,
                recipient_id=r.recipient_id,
                type=r.type,
                title=r.title,
                body=r.body,
                status=r.status,
                created_at=_aware(r.created_at),
            )
            for r in records
        ]
