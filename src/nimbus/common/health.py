"""Readiness checks for the assistant's capabilities."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable

from nimbus.common.logging import get_logger


class HealthStatus(Enum):
    """Health status enum."""

    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class HealthCheck:
    """Individual health check definition."""

    name: str
    check_fn: Callable[[], Awaitable[bool]]
    timeout_seconds: float = 5.0
    critical: bool = True  # non-critical failures only degrade


@dataclass
class HealthResult:
    """Result of a single health check."""

    name: str
    status: HealthStatus
    message: str = ""
    latency_ms: float = 0.0


@dataclass
class AggregatedHealth:
    """Combined status of every registered check."""

    status: HealthStatus
    checks: list[HealthResult]
    message: str = ""
    timestamp: float = field(default_factory=time.time)


class HealthChecker:
    """Runs registered checks concurrently and folds them into one status."""

    def __init__(self, service_name: str) -> None:
        self.service_name = service_name
        self._checks: list[HealthCheck] = []
        self._last_result: AggregatedHealth | None = None
        self.logger = get_logger("health_checker", service=service_name)

    def add_check(
        self,
        name: str,
        check_fn: Callable[[], Awaitable[bool]],
        timeout_seconds: float = 5.0,
        critical: bool = True,
    ) -> None:
        """Register a check.

        Args:
            name: Check name.
            check_fn: Async function returning True when healthy.
            timeout_seconds: Time allowed before the check counts as failed.
            critical: If True, failure makes the aggregate UNHEALTHY.
        """
        self._checks.append(HealthCheck(name, check_fn, timeout_seconds, critical))

    def remove_check(self, name: str) -> None:
        """Remove a check by name."""
        self._checks = [c for c in self._checks if c.name != name]

    async def _run_check(self, check: HealthCheck) -> HealthResult:
        failed = HealthStatus.UNHEALTHY if check.critical else HealthStatus.DEGRADED
        start_time = time.monotonic()

        try:
            ok = await asyncio.wait_for(check.check_fn(), timeout=check.timeout_seconds)
        except asyncio.TimeoutError:
            return HealthResult(
                name=check.name,
                status=failed,
                message=f"Timeout after {check.timeout_seconds}s",
                latency_ms=check.timeout_seconds * 1000,
            )
        except Exception as e:
            self.logger.warning("health_check_error", check=check.name, error=str(e))
            return HealthResult(
                name=check.name,
                status=failed,
                message=str(e),
                latency_ms=(time.monotonic() - start_time) * 1000,
            )

        return HealthResult(
            name=check.name,
            status=HealthStatus.HEALTHY if ok else failed,
            message="" if ok else "Not ready",
            latency_ms=(time.monotonic() - start_time) * 1000,
        )

    async def check(self) -> AggregatedHealth:
        """Run all checks and aggregate the results."""
        if not self._checks:
            return AggregatedHealth(
                status=HealthStatus.HEALTHY,
                checks=[],
                message="No checks configured",
            )

        results = list(await asyncio.gather(*[self._run_check(c) for c in self._checks]))

        unhealthy = [r.name for r in results if r.status == HealthStatus.UNHEALTHY]
        degraded = [r.name for r in results if r.status == HealthStatus.DEGRADED]

        if unhealthy:
            status = HealthStatus.UNHEALTHY
            message = f"Unhealthy checks: {', '.join(unhealthy)}"
        elif degraded:
            status = HealthStatus.DEGRADED
            message = f"Degraded checks: {', '.join(degraded)}"
        else:
            status = HealthStatus.HEALTHY
            message = "All checks passed"

        self._last_result = AggregatedHealth(status=status, checks=results, message=message)
        return self._last_result

    @property
    def last_result(self) -> AggregatedHealth | None:
        """Result of the most recent check() call."""
        return self._last_result
