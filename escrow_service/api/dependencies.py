"""
FastAPI dependency providers.

Tests replace get_order_store, get_notifier and get_gateway_router through
``app.dependency_overrides`` to run the API against in-memory fakes.
"""
from fastapi import Depends

from escrow_service.config import get_settings
from escrow_service.core.controller import EscrowLifecycleController
from escrow_service.core.gateway import GatewayRouter
from escrow_service.core.notifications import NotificationEmitter
from escrow_service.core.order_store import OrderStore
from escrow_service.database.connection import get_session_factory
from escrow_service.database.repositories import SqlNotificationEmitter, SqlOrderStore
from escrow_service.integrations.mobile_money import build_mock_router

_gateway_router: GatewayRouter | None = None


def get_order_store() -> OrderStore:
    return SqlOrderStore(get_session_factory())


def get_notifier() -> NotificationEmitter:
    return SqlNotificationEmitter(get_session_factory())


def get_gateway_router() -> GatewayRouter:
    """Process-wide router, so mock outcome RNGs are not reseeded per request."""
    global _gateway_router
    if _gateway_router is None:
        _gateway_router = build_mock_router(get_settings())
    return _gateway_router


def get_controller(
    order_store: OrderStore = Depends(get_order_store),
    notifier: NotificationEmitter = Depends(get_notifier),
    gateways: GatewayRouter = Depends(get_gateway_router),
) -> EscrowLifecycleController:
    return EscrowLifecycleController(
        order_store=order_store,
        notifier=notifier,
        gateways=gateways,
        gateway_timeout_seconds=get_settings().gateway_timeout_seconds,
    )
