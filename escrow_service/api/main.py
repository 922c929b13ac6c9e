"""
FastAPI application for the escrow service.

Every typed lifecycle failure leaves the API as
``{"error": <kind>, "message": <text>}`` with the status from
ERROR_STATUS_CODES. Requests carry an X-Request-ID that is bound into the
structlog context for the duration of the request.
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from escrow_service import __version__
from escrow_service.config import Settings, get_settings
from escrow_service.core.errors import ErrorKind, EscrowError
from escrow_service.database.connection import close_db, init_db
from escrow_service.monitoring.logging import setup_logging
from escrow_service.monitoring.metrics import metrics

from .routes import monitoring_router, notification_router, order_router, payment_router

logger = structlog.get_logger(__name__)

ERROR_STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.INVALID_ARGUMENT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.ORDER_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.PRECONDITION_FAILED: status.HTTP_409_CONFLICT,
    ErrorKind.PAYMENT_DECLINED: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorKind.ALREADY_RELEASED: status.HTTP_409_CONFLICT,
    ErrorKind.ALREADY_REFUNDED: status.HTTP_409_CONFLICT,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """Create tables on startup, dispose of the engine on shutdown."""
    settings = get_settings()
    logger.info(
        "application_startup",
        app_name=settings.app_name,
        env=settings.app_env,
        currency=settings.currency,
    )

    try:
        await init_db()
    except Exception as e:
        logger.error("database_initialization_failed", error=str(e))
        raise
    logger.info("database_initialized")

    yield

    logger.info("application_shutdown")
    try:
        await close_db()
    except Exception as e:
        logger.error("database_shutdown_error", error=str(e))


async def request_context_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Bind a request id, time the request and record HTTP metrics."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )
    start_time = time.perf_counter()

    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(
            "request_failed",
            error=str(e),
            duration_seconds=time.perf_counter() - start_time,
        )
        raise
    else:
        duration = time.perf_counter() - start_time
        response.headers["X-Request-ID"] = request_id
        metrics.record_http_request(request.method, response.status_code, duration)
        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_seconds=duration,
        )
        return response
    finally:
        structlog.contextvars.clear_contextvars()


async def escrow_error_handler(request: Request, exc: EscrowError) -> JSONResponse:
    """Map a typed lifecycle failure to its HTTP status."""
    status_code = ERROR_STATUS_CODES[exc.kind]
    if status_code >= 500:
        logger.error("escrow_internal_error", error=exc.message, order_id=exc.order_id)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies are reported as invalid_argument."""
    fields = [".".join(str(part) for part in err["loc"] if part != "body") for err in exc.errors()]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": ErrorKind.INVALID_ARGUMENT.value,
            "message": "Invalid parameters: " + ", ".join(f for f in fields if f),
        },
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": ErrorKind.INTERNAL.value,
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI application."""
    settings = settings or get_settings()
    setup_logging(settings)

    application = FastAPI(
        title="Escrow Payment Service",
        description=(
            "Marketplace order payments held in escrow. Captures payments through "
            "Telebirr and CBE Birr, releases funds to sellers after delivery and "
            "accepts refund requests."
        ),
        version=__version__,
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.middleware("http")(request_context_middleware)

    application.add_exception_handler(EscrowError, escrow_error_handler)
    application.add_exception_handler(RequestValidationError, validation_error_handler)
    application.add_exception_handler(Exception, unhandled_error_handler)

    for router in (payment_router, order_router, notification_router, monitoring_router):
        application.include_router(router)

    @application.get("/", tags=["root"])
    async def root() -> dict[str, Any]:
        """Service information."""
        return {
            "service": settings.app_name,
            "version": __version__,
            "status": "operational",
            "environment": settings.app_env,
            "currency": settings.currency,
            "docs": "/docs",
            "health": "/health",
            "metrics": "/metrics",
        }

    return application


app = create_app()


def run() -> None:
    """Console entry point (escrow-api)."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "escrow_service.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.api_workers,
    )


if __name__ == "__main__":
    run()
