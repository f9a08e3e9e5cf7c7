"""Common utilities for Nimbus Assist."""

from nimbus.common.logging import get_logger, setup_logging
from nimbus.common.service import BaseService, ServiceState
from nimbus.common.health import HealthChecker, HealthStatus
from nimbus.common.events import EventBus, Event

__all__ = [
    "get_logger",
    "setup_logging",
    "BaseService",
    "ServiceState",
    "HealthChecker",
    "HealthStatus",
    "EventBus",
    "Event",
]
