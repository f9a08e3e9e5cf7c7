"""Platform capabilities used by the scene-description pipeline."""

from __future__ import annotations

from dataclasses import dataclass

from nimbus.capabilities.base import (
    Capability,
    CapabilityError,
    CapabilityUnavailableError,
    CaptureError,
    DetectionError,
)
from nimbus.capabilities.camera import (
    CameraBackend,
    Frame,
    MockCameraBackend,
    OpenCVCameraBackend,
    PiCameraBackend,
)
from nimbus.capabilities.detector import (
    BoundingBox,
    DetectedObject,
    DetectionResult,
    Label,
    MockObjectDetector,
    ObjectDetector,
    YoloObjectDetector,
)
from nimbus.capabilities.recognizer import (
    MockSpeechRecognizer,
    SpeechRecognizer,
    Utterance,
    WhisperSpeechRecognizer,
)
from nimbus.capabilities.synthesizer import (
    MockSpeechSynthesizer,
    PiperSpeechSynthesizer,
    SpeechSynthesizer,
)
from nimbus.config import Config


@dataclass
class Capabilities:
    """The four capabilities the pipeline controller owns."""

    recognizer: SpeechRecognizer
    synthesizer: SpeechSynthesizer
    camera: CameraBackend
    detector: ObjectDetector

    def in_setup_order(self) -> list[Capability]:
        return [self.synthesizer, self.recognizer, self.camera, self.detector]


def create_capabilities(config: Config, mock_mode: bool | None = None) -> Capabilities:
    """Build capability backends from configuration.

    Args:
        config: Configuration.
        mock_mode: Use mock backends. Defaults to ``config.mock_mode``.
    """
    if mock_mode is None:
        mock_mode = config.mock_mode

    if mock_mode:
        return Capabilities(
            recognizer=MockSpeechRecognizer(),
            synthesizer=MockSpeechSynthesizer(),
            camera=MockCameraBackend(),
            detector=MockObjectDetector(),
        )

    if config.camera.backend == "picamera":
        camera: CameraBackend = PiCameraBackend(config)
    else:
        camera = OpenCVCameraBackend(config)

    return Capabilities(
        recognizer=WhisperSpeechRecognizer(config),
        synthesizer=PiperSpeechSynthesizer(config),
        camera=camera,
        detector=YoloObjectDetector(config),
    )


__all__ = [
    "BoundingBox",
    "CameraBackend",
    "Capabilities",
    "Capability",
    "CapabilityError",
    "CapabilityUnavailableError",
    "CaptureError",
    "DetectedObject",
    "DetectionError",
    "DetectionResult",
    "Frame",
    "Label",
    "MockCameraBackend",
    "MockObjectDetector",
    "MockSpeechRecognizer",
    "MockSpeechSynthesizer",
    "ObjectDetector",
    "OpenCVCameraBackend",
    "PiCameraBackend",
    "PiperSpeechSynthesizer",
    "SpeechRecognizer",
    "SpeechSynthesizer",
    "Utterance",
    "WhisperSpeechRecognizer",
    "YoloObjectDetector",
    "create_capabilities",
]
