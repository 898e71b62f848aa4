"""
Health check service for the telemetry endpoint.

This module provides the HealthCheckService class that reports whether
the process is alive and whether its backing stores answer. The
relational store is critical: the endpoint cannot accept reports
without it. The device cache is not; without it the service runs
degraded on store lookups.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

STORAGE_DEPENDENCY = "database"
CACHE_DEPENDENCY = "cache"
CRITICAL_DEPENDENCIES = (STORAGE_DEPENDENCY,)


def utc_timestamp(value: Optional[datetime] = None) -> str:
    """Render a UTC time as ISO 8601 with a Z suffix."""
    value = value or datetime.now(timezone.utc)
    return value.isoformat().replace("+00:00", "Z")


@dataclass
class DependencyHealth:
    """
    Health status of a single dependency.

    Attributes:
        name: The name of the dependency (e.g., "database", "cache")
        healthy: Whether the dependency is healthy and responding
        response_time_ms: The time taken to check the dependency in milliseconds
        error: Optional error message if the dependency check failed
    """
    name: str
    healthy: bool
    response_time_ms: float
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            "name": self.name,
            "healthy": self.healthy,
            "response_time_ms": round(self.response_time_ms, 2),
        }
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass
class HealthStatus:
    """
    Overall health status of the service.

    Attributes:
        status: Overall status - "healthy", "degraded", or "unhealthy"
        timestamp: When the health check was performed
        dependencies: List of individual dependency health statuses
    """
    status: str
    timestamp: datetime
    dependencies: list[DependencyHealth] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "timestamp": utc_timestamp(self.timestamp),
            "dependencies": [dep.to_dict() for dep in self.dependencies],
        }


class HealthCheckService:
    """
    Service for checking the health of the telemetry endpoint.

    Attributes:
        repository: The durable store, checked via ping()
        cache: Optional device cache, checked via ping()
        check_timeout: Timeout in seconds for each dependency check
    """

    def __init__(
        self,
        repository: Any,
        cache: Optional[Any] = None,
        check_timeout: float = 5.0
    ):
        self.repository = repository
        self.cache = cache
        self.check_timeout = check_timeout

    async def check_readiness(self) -> HealthStatus:
        """
        Check all dependencies concurrently.

        Returns:
            HealthStatus: The aggregate status with per-dependency details
        """
        checks = [self._check_dependency(STORAGE_DEPENDENCY, self.repository.ping)]
        if self.cache is not None:
            checks.append(self._check_dependency(CACHE_DEPENDENCY, self.cache.ping))

        dependencies = list(await asyncio.gather(*checks))

        return HealthStatus(
            status=self._determine_overall_status(dependencies),
            timestamp=datetime.now(timezone.utc),
            dependencies=dependencies
        )

    async def check_liveness(self) -> dict[str, Any]:
        """Liveness check: the process is running. No dependency is contacted."""
        return {
            "status": "alive",
            "timestamp": utc_timestamp()
        }

    async def _check_dependency(
        self,
        name: str,
        ping: Callable[[], Awaitable[bool]]
    ) -> DependencyHealth:
        """
        Ping one dependency with a timeout, measuring response time.

        Returns:
            DependencyHealth: Never raises; failures are reported in the result
        """
        start_time = time.perf_counter()

        try:
            result = await asyncio.wait_for(ping(), timeout=self.check_timeout)
            elapsed_ms = (time.perf_counter() - start_time) * 1000

            if result:
                logger.debug(f"{name} health check passed in {elapsed_ms:.2f}ms")
                return DependencyHealth(name=name, healthy=True, response_time_ms=elapsed_ms)

            logger.warning(f"{name} ping returned False after {elapsed_ms:.2f}ms")
            return DependencyHealth(
                name=name,
                healthy=False,
                response_time_ms=elapsed_ms,
                error=f"{name} ping returned False"
            )

        except asyncio.TimeoutError:
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            error_msg = f"{name} health check timed out after {self.check_timeout} seconds"
            logger.warning(error_msg)
            return DependencyHealth(name=name, healthy=False, response_time_ms=elapsed_ms, error=error_msg)

        except Exception as e:
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            error_msg = f"{name} health check failed: {e}"
            logger.error(error_msg)
            return DependencyHealth(name=name, healthy=False, response_time_ms=elapsed_ms, error=error_msg)

    def _determine_overall_status(self, dependencies: list[DependencyHealth]) -> str:
        """
        Determine the overall status.

        - "healthy": all dependencies are healthy
        - "degraded": only non-critical dependencies are unhealthy
        - "unhealthy": a critical dependency (the database) is unhealthy
        """
        unhealthy = [dep.name for dep in dependencies if not dep.healthy]
        if not unhealthy:
            return "healthy"
        if any(name in CRITICAL_DEPENDENCIES for name in unhealthy):
            return "unhealthy"
        return "degraded"
