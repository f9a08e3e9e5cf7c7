"""Tests for capability backends."""

import asyncio
import io
import os
import sys

import pytest

from nimbus.capabilities import (
    CapabilityUnavailableError,
    Capabilities,
    DetectedObject,
    DetectionResult,
    Label,
    MockCameraBackend,
    MockObjectDetector,
    MockSpeechRecognizer,
    MockSpeechSynthesizer,
    OpenCVCameraBackend,
    PiCameraBackend,
    PiperSpeechSynthesizer,
    Utterance,
    WhisperSpeechRecognizer,
    YoloObjectDetector,
    create_capabilities,
)
from nimbus.config import Config


class TestDetectedObject:
    """Tests for detection result types."""

    def test_labels_sorted_by_confidence(self):
        obj = DetectedObject(labels=[Label("cat", 0.2), Label("dog", 0.7), Label("fox", 0.5)])
        assert [label.text for label in obj.labels] == ["dog", "fox", "cat"]
        assert obj.top_label == Label("dog", 0.7)

    def test_no_labels(self):
        assert DetectedObject().top_label is None

    def test_of_keeps_given_order(self):
        obj = DetectedObject.of("cup", "mug", "glass")
        assert [label.text for label in obj.labels] == ["cup", "mug", "glass"]

    def test_result_is_iterable(self):
        result = DetectionResult(frame_id="f", objects=[DetectedObject.of("cup")])
        assert len(result) == 1
        assert [o.top_label.text for o in result] == ["cup"]


class TestMockCamera:
    """Tests for MockCameraBackend."""

    @pytest.mark.asyncio
    async def test_capture_jpeg(self):
        from PIL import Image

        camera = MockCameraBackend()
        frame = await camera.capture()

        assert frame.frame_id
        assert frame.format == "jpeg"
        assert (frame.width, frame.height) == (640, 480)
        assert Image.open(io.BytesIO(frame.data)).size == (640, 480)
        assert camera.capture_count == 1

    @pytest.mark.asyncio
    async def test_not_ready(self):
        camera = MockCameraBackend(ready=False)
        with pytest.raises(CapabilityUnavailableError):
            await camera.capture()

    def test_status(self):
        status = MockCameraBackend().get_status()
        assert status == {"name": "camera", "ready": True, "backend": "MockCameraBackend"}


class TestMockDetector:
    """Tests for MockObjectDetector."""

    @pytest.mark.asyncio
    async def test_default_scene(self, mock_image_bytes: bytes):
        detector = MockObjectDetector()
        result = await detector.detect(mock_image_bytes, "frame-1")

        assert result.frame_id == "frame-1"
        assert [o.top_label.text for o in result] == ["person", "chair", "chair"]
        assert detector.calls == 1

    @pytest.mark.asyncio
    async def test_not_ready(self, mock_image_bytes: bytes):
        detector = MockObjectDetector(ready=False)
        with pytest.raises(CapabilityUnavailableError):
            await detector.detect(mock_image_bytes)


class TestMockRecognizer:
    """Tests for MockSpeechRecognizer."""

    @pytest.mark.asyncio
    async def test_default_script(self):
        recognizer = MockSpeechRecognizer()
        utterances = [u async for u in recognizer.start(5.0, 2.0)]

        assert [u.is_final for u in utterances] == [False, True]
        assert utterances[-1].text == "what's in front of me"
        assert recognizer.sessions == 1

    @pytest.mark.asyncio
    async def test_stop_ends_session(self):
        recognizer = MockSpeechRecognizer(
            script=[Utterance("one", False), Utterance("two", True)]
        )
        received = []
        async for utterance in recognizer.start(5.0, 2.0):
            received.append(utterance)
            await recognizer.stop()

        assert [u.text for u in received] == ["one"]
        assert recognizer.stop_calls == 1

    def test_unavailable(self):
        assert MockSpeechRecognizer(available=False).available is False


class TestMockSynthesizer:
    """Tests for MockSpeechSynthesizer."""

    @pytest.mark.asyncio
    async def test_records_speech(self):
        synthesizer = MockSpeechSynthesizer()
        await synthesizer.speak("hello")
        await synthesizer.speak("world")

        assert synthesizer.spoken == ["hello", "world"]
        assert synthesizer.last_spoken == "world"


class TestCreateCapabilities:
    """Tests for create_capabilities()."""

    def test_mock_mode(self):
        capabilities = create_capabilities(Config(mock_mode=True))

        assert isinstance(capabilities.camera, MockCameraBackend)
        assert isinstance(capabilities.detector, MockObjectDetector)
        assert isinstance(capabilities.recognizer, MockSpeechRecognizer)
        assert isinstance(capabilities.synthesizer, MockSpeechSynthesizer)

    def test_hardware_backends(self):
        capabilities = create_capabilities(Config(), mock_mode=False)

        assert isinstance(capabilities.camera, OpenCVCameraBackend)
        assert isinstance(capabilities.detector, YoloObjectDetector)
        assert isinstance(capabilities.recognizer, WhisperSpeechRecognizer)
        assert isinstance(capabilities.synthesizer, PiperSpeechSynthesizer)

    def test_picamera_backend(self):
        config = Config()
        config.camera.backend = "picamera"

        capabilities = create_capabilities(config, mock_mode=False)
        assert isinstance(capabilities.camera, PiCameraBackend)

    def test_hardware_backends_not_ready_before_setup(self):
        capabilities = create_capabilities(Config(), mock_mode=False)
        assert not any(c.ready for c in capabilities.in_setup_order())

    def test_setup_order(self):
        capabilities: Capabilities = create_capabilities(Config(mock_mode=True))
        assert [c.name for c in capabilities.in_setup_order()] == [
            "synthesizer",
            "recognizer",
            "camera",
            "detector",
        ]


@pytest.mark.hil
class TestHardwareCapabilities:
    """Hardware-in-the-loop capability checks."""

    @pytest.mark.asyncio
    async def test_camera_capture(self, hil_config: Config):
        capabilities = create_capabilities(hil_config)
        await capabilities.camera.setup()
        try:
            frame = await capabilities.camera.capture()
            assert frame.data
        finally:
            await capabilities.camera.teardown()


def fake_binary(directory, name: str, body: str) -> None:
    path = directory / name
    path.write_text("#!/bin/sh\n" + body + "\n")
    path.chmod(0o755)


@pytest.mark.skipif(sys.platform == "win32", reason="Needs POSIX shell scripts")
class TestPiperSynthesizer:
    """Tests for PiperSpeechSynthesizer with stand-in engines on PATH."""

    @pytest.fixture
    def engines(self, tmp_path, monkeypatch):
        bin_dir = tmp_path / "bin"
        bin_dir.mkdir()
        espeak_log = tmp_path / "espeak.log"
        fake_binary(bin_dir, "espeak-ng", f'echo "$@" >> "{espeak_log}"\nprintf RIFF')
        monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}/usr/bin{os.pathsep}/bin")
        return bin_dir, espeak_log

    @pytest.fixture
    def piper(self, monkeypatch):
        synth = PiperSpeechSynthesizer(Config())
        played: list[bytes] = []
        monkeypatch.setattr(synth, "_play", played.append)
        return synth, played

    @pytest.mark.asyncio
    async def test_stop_during_synthesis_plays_nothing(self, engines, piper):
        bin_dir, espeak_log = engines
        fake_binary(bin_dir, "piper", "exec sleep 5")
        synth, played = piper

        speaking = asyncio.create_task(synth.speak("a cat are in front."))
        await asyncio.sleep(0.3)
        await synth.stop()
        await asyncio.wait_for(speaking, timeout=2.0)

        assert played == []
        assert not espeak_log.exists()

    @pytest.mark.asyncio
    async def test_piper_output_is_played(self, engines, piper):
        bin_dir, espeak_log = engines
        fake_binary(bin_dir, "piper", "cat > /dev/null\nprintf WAVE")
        synth, played = piper

        await synth.speak("a cat are in front.")

        assert played == [b"WAVE"]
        assert not espeak_log.exists()

    @pytest.mark.asyncio
    async def test_piper_failure_falls_back_to_espeak(self, engines, piper):
        bin_dir, espeak_log = engines
        fake_binary(bin_dir, "piper", "cat > /dev/null\nexit 1")
        synth, played = piper

        await synth.speak("a cat are in front.")

        assert played == [b"RIFF"]
        assert "a cat are in front." in espeak_log.read_text()

    @pytest.mark.asyncio
    async def test_missing_piper_falls_back_to_espeak(self, engines, piper, monkeypatch):
        bin_dir, espeak_log = engines
        monkeypatch.setenv("PATH", str(bin_dir))
        synth, played = piper

        await synth.speak("hello")

        assert played == [b"RIFF"]
