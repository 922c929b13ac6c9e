"""
API routes for the escrow lifecycle.
"""
from typing import Any, Dict, List

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from escrow_service.config import get_settings
from escrow_service.core.commands import (
    CapturePaymentRequest,
    CaptureResult,
    PaymentSnapshot,
    RefundRequest,
    RefundResult,
    ReleaseEscrowRequest,
    ReleaseResult,
    VerifyPaymentRequest,
)
from escrow_service.core.controller import EscrowLifecycleController
from escrow_service.core.fulfilment import advance_fulfilment
from escrow_service.core.models import Order
from escrow_service.core.notifications import NotificationEmitter
from escrow_service.core.order_store import OrderStore
from escrow_service.monitoring.health import HealthCheck

from .dependencies import get_controller, get_notifier, get_order_store
from .schemas import (
    CreateOrderRequest,
    ErrorResponse,
    HealthCheckResponse,
    NotificationResponse,
    OrderResponse,
    RefundBody,
    UpdateOrderStatusRequest,
)

logger = structlog.get_logger(__name__)

# Create routers
payment_router = APIRouter(prefix="/payments", tags=["payments"])
order_router = APIRouter(prefix="/orders", tags=["orders"])
notification_router = APIRouter(tags=["notifications"])
monitoring_router = APIRouter(tags=["monitoring"])

health_check = HealthCheck()

ERROR_RESPONSES: Dict[int | str, Dict[str, Any]] = {
    400: {"model": ErrorResponse, "description": "Invalid argument"},
    404: {"model": ErrorResponse, "description": "Order not found"},
    409: {"model": ErrorResponse, "description": "Order is in the wrong state"},
}


@payment_router.post(
    "/capture",
    response_model=CaptureResult,
    summary="Capture a payment",
    description="Charge the buyer through Telebirr or CBE Birr and hold the funds in escrow",
    responses={**ERROR_RESPONSES, 402: {"model": ErrorResponse, "description": "Payment declined"}},
)
async def capture_payment(
    request: CapturePaymentRequest,
    controller: EscrowLifecycleController = Depends(get_controller),
) -> CaptureResult:
    logger.info(
        "api_capture_payment_request",
        order_id=request.order_id,
        method=request.method.value if request.method else None,
    )
    return await controller.capture_payment(request)


@payment_router.get(
    "/{order_id}",
    response_model=PaymentSnapshot,
    summary="Verify payment status",
    responses=ERROR_RESPONSES,
)
async def verify_payment_status(
    order_id: str,
    controller: EscrowLifecycleController = Depends(get_controller),
) -> PaymentSnapshot:
    return await controller.verify_payment_status(VerifyPaymentRequest(order_id=order_id))


@payment_router.post(
    "/{order_id}/refund",
    response_model=RefundResult,
    summary="Request a refund",
    description="Move a paid, unreleased order to refunded",
    responses=ERROR_RESPONSES,
)
async def request_refund(
    order_id: str,
    body: RefundBody | None = None,
    controller: EscrowLifecycleController = Depends(get_controller),
) -> RefundResult:
    reason = body.reason if body else None
    logger.info("api_refund_request", order_id=order_id, reason=reason)
    return await controller.request_refund(RefundRequest(order_id=order_id, reason=reason))


@payment_router.post(
    "/{order_id}/release",
    response_model=ReleaseResult,
    summary="Release escrow",
    description="Release escrowed funds to the seller once the order is delivered",
    responses=ERROR_RESPONSES,
)
async def release_escrow_payment(
    order_id: str,
    controller: EscrowLifecycleController = Depends(get_controller),
) -> ReleaseResult:
    logger.info("api_release_escrow_request", order_id=order_id)
    return await controller.release_escrow_payment(ReleaseEscrowRequest(order_id=order_id))


@order_router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an order",
    responses=ERROR_RESPONSES,
)
async def create_order(
    request: CreateOrderRequest,
    store: OrderStore = Depends(get_order_store),
) -> OrderResponse:
    fields: Dict[str, Any] = {
        "buyer_id": request.buyer_id,
        "seller_id": request.seller_id,
        "total_amount": request.total_amount,
        "currency": get_settings().currency,
    }
    if request.order_id:
        fields["id"] = request.order_id

    order = await store.add(Order(**fields))
    logger.info("order_created", order_id=order.id, total_amount=str(order.total_amount))
    return OrderResponse.from_order(order)


@order_router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get an order",
    responses=ERROR_RESPONSES,
)
async def get_order(
    order_id: str,
    store: OrderStore = Depends(get_order_store),
) -> OrderResponse:
    return OrderResponse.from_order(await store.get(order_id))


@order_router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Advance fulfilment status",
    description="Move an order forward: pending, confirmed, shipped, delivered",
    responses=ERROR_RESPONSES,
)
async def update_order_status(
    order_id: str,
    request: UpdateOrderStatusRequest,
    store: OrderStore = Depends(get_order_store),
) -> OrderResponse:
    order = await advance_fulfilment(store, order_id, request.status)
    return OrderResponse.from_order(order)


@notification_router.get(
    "/users/{user_id}/notifications",
    response_model=List[NotificationResponse],
    summary="List a user's notifications",
)
async def list_notifications(
    user_id: str,
    notifier: NotificationEmitter = Depends(get_notifier),
) -> List[NotificationResponse]:
    notifications = await notifier.list_for(user_id)
    return [NotificationResponse.from_notification(n) for n in notifications]


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health() -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
)
async def liveness() -> Dict[str, Any]:
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
)
async def readiness() -> Dict[str, Any]:
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
