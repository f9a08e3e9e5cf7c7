"""On-device object detection backends."""

from __future__ import annotations

import asyncio
import io
import time
from dataclasses import dataclass, field
from typing import Iterable

from nimbus.capabilities.base import (
    Capability,
    CapabilityUnavailableError,
    DetectionError,
)
from nimbus.common.logging import get_logger
from nimbus.config import Config


@dataclass(frozen=True)
class Label:
    """One candidate classification for a detected object."""

    text: str
    confidence: float = 1.0


@dataclass(frozen=True)
class BoundingBox:
    """Normalized bounding box."""

    x_min: float
    y_min: float
    x_max: float
    y_max: float


@dataclass
class DetectedObject:
    """A physical object found in one image.

    Labels are kept in descending confidence order. A region the detector
    could not classify has no labels.
    """

    labels: list[Label] = field(default_factory=list)
    bbox: BoundingBox | None = None

    def __post_init__(self) -> None:
        self.labels = sorted(self.labels, key=lambda label: -label.confidence)

    @property
    def top_label(self) -> Label | None:
        return self.labels[0] if self.labels else None

    @classmethod
    def of(cls, *texts: str) -> DetectedObject:
        """Object whose labels are ranked in the order given."""
        count = len(texts)
        return cls(labels=[Label(text, (count - i) / count) for i, text in enumerate(texts)])


@dataclass
class DetectionResult:
    """Detections for exactly one captured frame."""

    frame_id: str
    objects: list[DetectedObject]
    inference_time_ms: int = 0
    model_used: str = ""

    def __len__(self) -> int:
        return len(self.objects)

    def __iter__(self):
        return iter(self.objects)


class ObjectDetector(Capability):
    """Abstract object detector."""

    name = "detector"

    async def detect(self, image_data: bytes, frame_id: str = "") -> DetectionResult:
        """Detect objects in a JPEG image."""
        raise NotImplementedError


class MockObjectDetector(ObjectDetector):
    """Detector that returns a fixed scene."""

    def __init__(
        self,
        objects: Iterable[DetectedObject] | None = None,
        ready: bool = True,
        error: Exception | None = None,
    ) -> None:
        if objects is None:
            objects = [
                DetectedObject([Label("person", 0.92)], BoundingBox(0.1, 0.2, 0.5, 0.8)),
                DetectedObject([Label("chair", 0.81)], BoundingBox(0.6, 0.3, 0.9, 0.9)),
                DetectedObject([Label("chair", 0.77)], BoundingBox(0.0, 0.4, 0.2, 0.9)),
            ]
        self.objects = list(objects)
        self._ready = ready
        self.error = error
        self.calls = 0

    @property
    def ready(self) -> bool:
        return self._ready

    async def detect(self, image_data: bytes, frame_id: str = "") -> DetectionResult:
        """Return the configured scene."""
        self.calls += 1
        if not self._ready:
            raise CapabilityUnavailableError("Detector not initialized")
        if self.error is not None:
            raise self.error

        await asyncio.sleep(0)
        return DetectionResult(
            frame_id=frame_id,
            objects=list(self.objects),
            model_used="mock",
        )


class YoloObjectDetector(ObjectDetector):
    """Detector backed by an ultralytics YOLO model."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self._model = None
        self._lock = asyncio.Lock()
        self._frame_count = 0
        self.logger = get_logger("yolo_object_detector")

    @property
    def ready(self) -> bool:
        return self._model is not None

    async def setup(self) -> None:
        """Load the model weights."""
        try:
            from ultralytics import YOLO
        except ImportError:
            self.logger.warning("ultralytics_not_available")
            return

        loop = asyncio.get_running_loop()
        try:
            self._model = await loop.run_in_executor(None, YOLO, self.config.detector.model)
        except Exception as e:
            self.logger.exception("yolo_model_load_failed", model=self.config.detector.model, error=str(e))
            return

        self.logger.info("yolo_model_loaded", model=self.config.detector.model)

    async def teardown(self) -> None:
        """Drop the model."""
        self._model = None

    def _infer(self, image_data: bytes) -> list[DetectedObject]:
        from PIL import Image

        img = Image.open(io.BytesIO(image_data)).convert("RGB")
        results = self._model(
            img,
            conf=self.config.detector.min_confidence,
            max_det=self.config.detector.max_detections,
            verbose=False,
        )

        objects: list[DetectedObject] = []
        for result in results:
            names = result.names
            for box in result.boxes:
                class_id = int(box.cls[0])
                x1, y1, x2, y2 = (float(v) for v in box.xyxyn[0])
                objects.append(
                    DetectedObject(
                        labels=[Label(str(names[class_id]), float(box.conf[0]))],
                        bbox=BoundingBox(x1, y1, x2, y2),
                    )
                )
        return objects

    async def detect(self, image_data: bytes, frame_id: str = "") -> DetectionResult:
        """Run YOLO inference on an image."""
        if not self.ready:
            raise CapabilityUnavailableError("Detector not initialized")

        start_time = time.time()
        loop = asyncio.get_running_loop()
        async with self._lock:
            try:
                objects = await loop.run_in_executor(None, self._infer, image_data)
            except Exception as e:
                raise DetectionError(f"Inference failed: {e}") from e

        self._frame_count += 1
        return DetectionResult(
            frame_id=frame_id,
            objects=objects,
            inference_time_ms=int((time.time() - start_time) * 1000),
            model_used=self.config.detector.model,
        )

    def get_status(self) -> dict:
        status = super().get_status()
        status.update(model=self.config.detector.model, frames_processed=self._frame_count)
        return status
