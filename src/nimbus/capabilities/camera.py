"""Still-image camera capture backends."""

from __future__ import annotations

import asyncio
import io
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from nimbus.capabilities.base import (
    Capability,
    CapabilityUnavailableError,
    CaptureError,
)
from nimbus.common.logging import get_logger
from nimbus.config import Config


@dataclass
class Frame:
    """Captured still image."""

    frame_id: str
    data: bytes
    width: int
    height: int
    format: str
    timestamp: float
    metadata: dict = field(default_factory=dict)


def _new_frame(data: bytes, width: int, height: int, **metadata: Any) -> Frame:
    return Frame(
        frame_id=str(uuid.uuid4()),
        data=data,
        width=width,
        height=height,
        format="jpeg",
        timestamp=time.time(),
        metadata=metadata,
    )


class CameraBackend(Capability):
    """Abstract camera backend."""

    name = "camera"

    async def capture(self) -> Frame:
        """Capture one JPEG still."""
        raise NotImplementedError


class MockCameraBackend(CameraBackend):
    """Camera that returns a solid-color test image."""

    def __init__(self, ready: bool = True, error: Exception | None = None) -> None:
        self._ready = ready
        self.error = error
        self.capture_count = 0

    @property
    def ready(self) -> bool:
        return self._ready

    @ready.setter
    def ready(self, value: bool) -> None:
        self._ready = value

    async def capture(self) -> Frame:
        """Capture a mock frame."""
        if not self._ready:
            raise CapabilityUnavailableError("Camera not initialized")
        if self.error is not None:
            raise self.error

        self.capture_count += 1

        from PIL import Image

        img = Image.new("RGB", (640, 480), color=(73, 109, 137))
        buffer = io.BytesIO()
        img.save(buffer, format="JPEG", quality=85)

        return _new_frame(buffer.getvalue(), 640, 480, frame_number=self.capture_count)


class OpenCVCameraBackend(CameraBackend):
    """USB/laptop camera through OpenCV."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self._capture = None
        self._lock = asyncio.Lock()
        self.logger = get_logger("opencv_camera_backend")

    @property
    def ready(self) -> bool:
        return self._capture is not None and self._capture.isOpened()

    async def setup(self) -> None:
        """Open the video device."""
        try:
            import cv2
        except ImportError:
            self.logger.warning("opencv_not_available")
            return

        loop = asyncio.get_running_loop()
        capture = await loop.run_in_executor(
            None, cv2.VideoCapture, self.config.camera.device_index
        )
        if not capture.isOpened():
            self.logger.warning(
                "camera_open_failed", device_index=self.config.camera.device_index
            )
            capture.release()
            return

        width, height = self.config.camera.resolution
        capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        self._capture = capture
        self.logger.info("opencv_camera_initialized", device_index=self.config.camera.device_index)

    async def teardown(self) -> None:
        """Release the video device."""
        if self._capture is not None:
            self._capture.release()
            self._capture = None

    def _grab_jpeg(self) -> tuple[bytes, int, int]:
        import cv2

        ok, image = self._capture.read()
        if not ok or image is None:
            raise CaptureError("Camera returned no frame")

        ok, encoded = cv2.imencode(
            ".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), self.config.camera.quality]
        )
        if not ok:
            raise CaptureError("JPEG encoding failed")

        height, width = image.shape[:2]
        return encoded.tobytes(), width, height

    async def capture(self) -> Frame:
        """Capture a frame from the video device."""
        if not self.ready:
            raise CapabilityUnavailableError("Camera not initialized")

        async with self._lock:
            loop = asyncio.get_running_loop()
            data, width, height = await loop.run_in_executor(None, self._grab_jpeg)

        return _new_frame(data, width, height, device_index=self.config.camera.device_index)


class PiCameraBackend(CameraBackend):
    """Raspberry Pi camera backend using picamera2."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self._camera = None
        self.logger = get_logger("pi_camera_backend")

    @property
    def ready(self) -> bool:
        return self._camera is not None

    async def setup(self) -> None:
        """Configure and start the Pi camera for still capture."""
        try:
            from picamera2 import Picamera2
        except ImportError:
            self.logger.warning("picamera2_not_available")
            return

        try:
            camera = Picamera2()
            still = camera.create_still_configuration(
                main={"size": tuple(self.config.camera.resolution)}
            )
            camera.configure(still)
            camera.start()
        except Exception as e:
            self.logger.exception("pi_camera_setup_failed", error=str(e))
            return

        self._camera = camera
        self.logger.info("pi_camera_initialized")

    async def teardown(self) -> None:
        """Stop and close the Pi camera."""
        if self._camera is not None:
            self._camera.stop()
            self._camera.close()
            self._camera = None

    def _grab_jpeg(self) -> tuple[bytes, int, int, dict]:
        from PIL import Image

        array = self._camera.capture_array()
        img = Image.fromarray(array).convert("RGB")
        buffer = io.BytesIO()
        img.save(buffer, format="JPEG", quality=self.config.camera.quality)

        metadata = self._camera.capture_metadata()
        return buffer.getvalue(), img.width, img.height, {
            "exposure": metadata.get("ExposureTime", 0),
            "gain": metadata.get("AnalogueGain", 1.0),
        }

    async def capture(self) -> Frame:
        """Capture a frame from the Pi camera."""
        if not self.ready:
            raise CapabilityUnavailableError("Camera not initialized")

        loop = asyncio.get_running_loop()
        try:
            data, width, height, metadata = await loop.run_in_executor(None, self._grab_jpeg)
        except Exception as e:
            raise CaptureError(f"Pi camera capture failed: {e}") from e

        return _new_frame(data, width, height, **metadata)
