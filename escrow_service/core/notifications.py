"""Notification Emitter - appends notification records addressed to users."""
from __future__ import annotations

from typing import Protocol

from .errors import NotificationError
from .models import Notification, NotificationType


class NotificationEmitter(Protocol):
    """
    Interface for notification delivery.

    Emission is best-effort: implementations raise NotificationError and the
    caller decides whether that matters.
    """

    async def emit(
        self,
        recipient_id: str,
        type: NotificationType,
        title: str,
        body: str,
    ) -> Notification:
        ...

    async def list_for(self, recipient_id: str) -> list[Notification]:
        """Notifications for one user, newest first."""
        ...


class InMemoryNotificationEmitter:
    """In-memory emitter for testing and local development."""

    def __init__(self) -> None:
        self._notifications: list[Notification] = []

    async def emit(
        self,
        recipient_id: str,
        type: NotificationType,
        title: str,
        body: str,
    ) -> Notification:
        if not recipient_id:
            raise NotificationError("Notification recipient is required")
        notification = Notification(recipient_id=recipient_id, type=type, title=title, body=body)
        self._notifications.append(notification)
        return notification

    async def list_for(self, recipient_id: str) -> list[Notification]:
        return [n for n in reversed(self._notifications) if n.recipient_id == recipient_id]

    @property
    def sent(self) -> list[Notification]:
        """Helper for testing: every notification in emission order."""
        return list(self._notifications)
