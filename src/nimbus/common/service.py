"""Base class for long-running assistant processes."""

from __future__ import annotations

import asyncio
import signal
from abc import ABC, abstractmethod
from enum import Enum

from nimbus.common.health import HealthChecker, HealthStatus
from nimbus.common.logging import get_logger, setup_logging
from nimbus.config import Config, load_config


class ServiceState(Enum):
    """Service state enum."""

    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"


class BaseService(ABC):
    """Lifecycle shell shared by the assistant front ends.

    Provides:
    - Logging setup from configuration
    - setup() / serve() / teardown() sequencing with guaranteed teardown
    - Health checking
    - Signal-driven graceful shutdown
    """

    def __init__(
        self,
        name: str,
        config: Config | None = None,
        mock_mode: bool = False,
    ) -> None:
        """Initialize the service.

        Args:
            name: Service name.
            config: Configuration object. Loaded from file if None.
            mock_mode: Use mock capabilities instead of hardware.
        """
        self.name = name
        self.config = config or load_config()
        self.mock_mode = mock_mode or self.config.mock_mode

        setup_logging(
            level=self.config.device.log_level,
            json_output=self.config.device.mode == "production",
            service_name=name,
        )
        self.logger = get_logger(name, service=name)

        self._state = ServiceState.STOPPED
        self._health_checker = HealthChecker(name)
        self._shutdown_event = asyncio.Event()

    @property
    def state(self) -> ServiceState:
        """Get current service state."""
        return self._state

    @property
    def health_checker(self) -> HealthChecker:
        return self._health_checker

    @abstractmethod
    async def setup(self) -> None:
        """Acquire service resources."""

    @abstractmethod
    async def teardown(self) -> None:
        """Release service resources."""

    async def serve(self) -> None:
        """Main body of the service; by default waits for shutdown."""
        await self._shutdown_event.wait()

    async def check_health(self) -> HealthStatus:
        """Overall health from the registered checks and the service state."""
        if self._state == ServiceState.ERROR:
            return HealthStatus.UNHEALTHY
        if self._state != ServiceState.RUNNING:
            return HealthStatus.DEGRADED

        result = await self._health_checker.check()
        return result.status

    async def start(self) -> None:
        """Run the service until serve() returns or shutdown is requested."""
        self.logger.info("starting_service", mock_mode=self.mock_mode)
        self._state = ServiceState.STARTING

        try:
            await self.setup()
            self._state = ServiceState.RUNNING
            self.logger.info("service_started")
            await self.serve()
        except Exception as e:
            self._state = ServiceState.ERROR
            self.logger.exception("service_failed", error=str(e))
            raise
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop the service gracefully."""
        if self._state in (ServiceState.STOPPING, ServiceState.STOPPED):
            return

        failed = self._state == ServiceState.ERROR
        self.logger.info("stopping_service")
        self._state = ServiceState.STOPPING

        try:
            await self.teardown()
            self._state = ServiceState.ERROR if failed else ServiceState.STOPPED
            self.logger.info("service_stopped")
        except Exception as e:
            self._state = ServiceState.ERROR
            self.logger.exception("service_stop_failed", error=str(e))

    def shutdown(self) -> None:
        """Signal the service to shut down."""
        self._shutdown_event.set()

    def run(self) -> None:
        """Run the service (blocking) with SIGINT/SIGTERM handling."""
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.shutdown)

        try:
            loop.run_until_complete(self.start())
        finally:
            loop.close()
