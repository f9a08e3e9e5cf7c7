"""Pytest configuration and fixtures for Nimbus Assist tests."""

from __future__ import annotations

import pytest

from nimbus.capabilities import (
    Capabilities,
    MockCameraBackend,
    MockObjectDetector,
    MockSpeechRecognizer,
    MockSpeechSynthesizer,
)
from nimbus.common.logging import setup_logging
from nimbus.config import Config
from nimbus.core.pipeline import PipelineController


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add custom command line options."""
    parser.addoption(
        "--hil",
        action="store_true",
        default=False,
        help="Run hardware-in-the-loop tests (requires camera, mic and speaker)",
    )
    parser.addoption(
        "--slow",
        action="store_true",
        default=False,
        help="Run slow tests",
    )


def pytest_configure(config: pytest.Config) -> None:
    """Configure test markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "hil: Hardware-in-the-loop tests")
    config.addinivalue_line("markers", "slow: Slow running tests")


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Modify test collection based on options."""
    if not config.getoption("--hil"):
        skip_hil = pytest.mark.skip(reason="Need --hil option to run")
        for item in items:
            if "hil" in item.keywords:
                item.add_marker(skip_hil)

    if not config.getoption("--slow"):
        skip_slow = pytest.mark.skip(reason="Need --slow option to run")
        for item in items:
            if "slow" in item.keywords:
                item.add_marker(skip_slow)


@pytest.fixture(autouse=True)
def structured_logging() -> None:
    """Point log output at the current test's stderr."""
    setup_logging(level="DEBUG")


@pytest.fixture
def config() -> Config:
    """Get test configuration with short listening windows."""
    cfg = Config()
    cfg.mock_mode = True
    cfg.device.mode = "development"
    cfg.device.log_level = "DEBUG"
    cfg.speech.listen_for_seconds = 0.5
    cfg.speech.pause_for_seconds = 0.2
    return cfg


@pytest.fixture
def hil_config(request: pytest.FixtureRequest) -> Config:
    """Get configuration for HIL tests (real hardware)."""
    cfg = Config()
    cfg.mock_mode = not request.config.getoption("--hil")
    cfg.device.mode = "development"
    cfg.device.log_level = "DEBUG"
    return cfg


# Capability fixtures


@pytest.fixture
def recognizer() -> MockSpeechRecognizer:
    return MockSpeechRecognizer()


@pytest.fixture
def synthesizer() -> MockSpeechSynthesizer:
    return MockSpeechSynthesizer()


@pytest.fixture
def camera() -> MockCameraBackend:
    return MockCameraBackend()


@pytest.fixture
def detector() -> MockObjectDetector:
    return MockObjectDetector()


@pytest.fixture
def capabilities(
    recognizer: MockSpeechRecognizer,
    synthesizer: MockSpeechSynthesizer,
    camera: MockCameraBackend,
    detector: MockObjectDetector,
) -> Capabilities:
    return Capabilities(
        recognizer=recognizer,
        synthesizer=synthesizer,
        camera=camera,
        detector=detector,
    )


@pytest.fixture
async def controller(capabilities: Capabilities, config: Config):
    """Started pipeline controller over mock capabilities."""
    async with PipelineController.from_capabilities(capabilities, config) as controller:
        yield controller


@pytest.fixture
def mock_image_bytes() -> bytes:
    """Create mock JPEG image."""
    from PIL import Image
    import io

    img = Image.new("RGB", (640, 480), color=(73, 109, 137))
    buffer = io.BytesIO()
    img.save(buffer, format="JPEG", quality=85)
    return buffer.getvalue()
