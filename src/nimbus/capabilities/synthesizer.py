"""Text-to-speech backends."""

from __future__ import annotations

import asyncio
import io
import wave

from nimbus.capabilities.base import Capability
from nimbus.common.logging import get_logger
from nimbus.config import Config


class SpeechSynthesizer(Capability):
    """Abstract speech synthesizer.

    ``speak()`` returns once the utterance has finished playing. Engines that
    cannot report completion return as soon as playback has been handed off.
    ``stop()`` cuts off whatever is currently playing.
    """

    name = "synthesizer"

    async def speak(self, text: str) -> None:
        raise NotImplementedError

    async def stop(self) -> None:
        """Stop any utterance in progress."""


class MockSpeechSynthesizer(SpeechSynthesizer):
    """Synthesizer that records what it was asked to say."""

    def __init__(self, ready: bool = True, error: Exception | None = None) -> None:
        self._ready = ready
        self.error = error
        self.spoken: list[str] = []
        self.stop_calls = 0
        self.logger = get_logger("mock_speech_synthesizer")

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def last_spoken(self) -> str | None:
        return self.spoken[-1] if self.spoken else None

    async def speak(self, text: str) -> None:
        if self.error is not None:
            raise self.error
        self.spoken.append(text)
        self.logger.info("mock_speak", text=text)
        await asyncio.sleep(0)

    async def stop(self) -> None:
        self.stop_calls += 1


class PiperSpeechSynthesizer(SpeechSynthesizer):
    """Piper TTS (espeak-ng fallback) played through sounddevice.

    Every ``stop()`` advances a generation counter. An utterance whose
    generation is stale when synthesis returns is dropped, so a killed
    engine is never retried and never played.
    """

    def __init__(self, config: Config) -> None:
        self.config = config
        self._processes: set[asyncio.subprocess.Process] = set()
        self._generation = 0
        self._playback_available = False
        self.logger = get_logger("piper_speech_synthesizer")

    @property
    def ready(self) -> bool:
        return self._playback_available

    async def setup(self) -> None:
        """Check that an output device is present."""
        try:
            import sounddevice as sd
        except ImportError:
            self.logger.warning("sounddevice_not_available")
            return

        try:
            sd.query_devices(kind="output")
        except Exception as e:
            self.logger.warning("speaker_not_available", error=str(e))
            return

        self._playback_available = True

    async def teardown(self) -> None:
        await self.stop()

    async def _run(self, *cmd: str, stdin: bytes | None = None) -> bytes:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE if stdin is not None else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        self._processes.add(process)
        try:
            stdout, stderr = await process.communicate(stdin)
        finally:
            self._processes.discard(process)

        if process.returncode != 0:
            raise RuntimeError(f"{cmd[0]} failed: {stderr.decode(errors='replace')}")
        return stdout

    async def synthesize(self, text: str) -> bytes | None:
        """Render text to WAV bytes.

        Returns:
            None if ``stop()`` was called while synthesizing.
        """
        speech = self.config.speech
        voice = speech.tts_voice if speech.tts_voice != "default" else "en_US-lessac-medium"
        generation = self._generation

        try:
            return await self._run(
                "piper",
                "--model", voice,
                "--length_scale", f"{1.0 / speech.tts_speed:.2f}",
                "--output_file", "-",
                stdin=text.encode(),
            )
        except FileNotFoundError:
            self.logger.warning("piper_not_available_using_espeak")
        except RuntimeError as e:
            if generation != self._generation:
                return None
            self.logger.warning("piper_failed_using_espeak", error=str(e))

        try:
            return await self._run(
                "espeak-ng",
                "-v", "en",
                "-s", str(int(175 * speech.tts_speed)),
                "-p", str(int(50 * speech.tts_pitch)),
                "--stdout",
                text,
            )
        except RuntimeError:
            if generation != self._generation:
                return None
            raise

    def _play(self, audio_data: bytes) -> None:
        import numpy as np
        import sounddevice as sd

        with io.BytesIO(audio_data) as f, wave.open(f, "rb") as wf:
            sample_rate = wf.getframerate()
            audio = np.frombuffer(wf.readframes(wf.getnframes()), dtype=np.int16)

        sd.play(audio, sample_rate)
        sd.wait()

    async def speak(self, text: str) -> None:
        """Synthesize and play text, returning when playback ends."""
        generation = self._generation
        audio_data = await self.synthesize(text)
        if audio_data is None or generation != self._generation:
            self.logger.info("speech_stopped_before_playback", text=text)
            return

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._play, audio_data)

    async def stop(self) -> None:
        """Kill pending synthesis and cut playback."""
        self._generation += 1
        for process in list(self._processes):
            if process.returncode is None:
                process.kill()

        if self._playback_available:
            import sounddevice as sd

            sd.stop()
