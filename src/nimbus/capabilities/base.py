"""Shared capability contract and error types."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class CapabilityError(RuntimeError):
    """Base error raised by a capability backend."""


class CapabilityUnavailableError(CapabilityError):
    """The capability is not initialized or its hardware is not ready."""


class CaptureError(CapabilityError):
    """The camera failed to produce an image."""


class DetectionError(CapabilityError):
    """The detector failed to process an image."""


class Capability(ABC):
    """Something the pipeline borrows from the platform.

    Backends acquire their hardware or model in setup() and release it in
    teardown(). A backend whose setup fails reports ``ready == False``
    instead of raising, so the pipeline can tell the user.
    """

    name: str = "capability"

    async def setup(self) -> None:
        """Acquire the underlying resource."""

    async def teardown(self) -> None:
        """Release the underlying resource."""

    @property
    @abstractmethod
    def ready(self) -> bool:
        """Whether the capability can serve requests right now."""

    def get_status(self) -> dict[str, Any]:
        """Backend status for diagnostics."""
        return {"name": self.name, "ready": self.ready, "backend": type(self).__name__}

    async def check_ready(self) -> bool:
        """Health-check hook."""
        return self.ready
