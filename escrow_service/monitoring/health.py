"""
Health checks for liveness/readiness probes.

Readiness requires the database to answer and the escrow tables to exist
(init_db has run). Liveness never touches dependencies.
"""
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from escrow_service.database.connection import get_session_factory
from escrow_service.database.models import OrderRecord

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when a health check fails."""

    pass


class HealthCheck:
    """
    Health check service for the escrow service's dependencies.

    The session factory is resolved lazily so tests can substitute one.
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], async_sessionmaker[AsyncSession]]] = None,
    ) -> None:
        self._session_factory = session_factory or get_session_factory

    async def _probe(self, service: str, query: Any, ok_message: str) -> Dict[str, Any]:
        try:
            session_factory = self._session_factory()
            async with session_factory() as db:
                (await db.execute(query)).scalar()
        except Exception as e:
            logger.error("health_check_failed", service=service, error=str(e))
            raise HealthCheckError(f"{service} check failed: {str(e)}") from e

        return {"status": "healthy", "service": service, "message": ok_message}

    async def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Raises:
            HealthCheckError: If the database does not answer
        """
        return await self._probe("database", text("SELECT 1"), "Database connection successful")

    async def check_schema(self) -> Dict[str, Any]:
        """
        Check that the orders table is queryable.

        Raises:
            HealthCheckError: If the table is missing or unreadable
        """
        return await self._probe(
            "schema",
            select(func.count()).select_from(OrderRecord),
            "Escrow tables present",
        )

    async def check_all(self) -> Dict[str, Any]:
        """Run all health checks."""
        probes: Dict[str, Callable[[], Awaitable[Dict[str, Any]]]] = {
            "database": self.check_database,
            "schema": self.check_schema,
        }
        checks: Dict[str, Any] = {}
        for name, probe in probes.items():
            try:
                checks[name] = await probe()
            except HealthCheckError as e:
                checks[name] = {"status": "unhealthy", "service": name, "error": str(e)}

        healthy = all(check["status"] == "healthy" for check in checks.values())
        return {"status": "healthy" if healthy else "unhealthy", "checks": checks}

    async def liveness(self) -> Dict[str, Any]:
        """Liveness probe: the process is up."""
        return {"status": "alive", "message": "Application is running"}

    async def readiness(self) -> Dict[str, Any]:
        """Readiness probe: verifies all dependencies are available."""
        return await self.check_all()
