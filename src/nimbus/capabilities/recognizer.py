"""Speech-to-text backends."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import AsyncGenerator, Iterable

from nimbus.capabilities.base import Capability, CapabilityUnavailableError
from nimbus.common.logging import get_logger
from nimbus.config import Config


@dataclass(frozen=True)
class Utterance:
    """A chunk of recognized speech."""

    text: str
    is_final: bool
    confidence: float = 1.0


class SpeechRecognizer(Capability):
    """Abstract speech recognizer.

    ``start()`` opens one listening session and yields partial utterances
    followed by at most one final utterance. The stream ends on its own after
    ``max_duration`` seconds, or ``trailing_silence`` seconds after the
    speaker goes quiet, or when ``stop()`` is called. Stopping ends audio
    capture; a backend that transcribes after capture may still yield the
    final utterance for what it already heard.
    """

    name = "recognizer"

    @property
    def available(self) -> bool:
        """Availability reported at initialization."""
        return self.ready

    def start(
        self,
        max_duration: float,
        trailing_silence: float,
    ) -> AsyncGenerator[Utterance, None]:
        raise NotImplementedError

    async def stop(self) -> None:
        """End audio capture for the current session, if any."""


class MockSpeechRecognizer(SpeechRecognizer):
    """Recognizer that replays a scripted session."""

    DEFAULT_SCRIPT = (
        Utterance("what's in", is_final=False, confidence=0.6),
        Utterance("what's in front of me", is_final=True, confidence=0.95),
    )

    def __init__(
        self,
        script: Iterable[Utterance] | None = None,
        available: bool = True,
        delay: float = 0.0,
    ) -> None:
        self.script = list(self.DEFAULT_SCRIPT if script is None else script)
        self._available = available
        self.delay = delay
        self.sessions = 0
        self.stop_calls = 0
        self._stopped = asyncio.Event()

    @property
    def ready(self) -> bool:
        return self._available

    async def start(
        self,
        max_duration: float,
        trailing_silence: float,
    ) -> AsyncGenerator[Utterance, None]:
        if not self._available:
            raise CapabilityUnavailableError("Speech recognizer not initialized")

        self.sessions += 1
        self._stopped = asyncio.Event()
        for utterance in self.script:
            if self.delay:
                try:
                    await asyncio.wait_for(self._stopped.wait(), timeout=self.delay)
                except asyncio.TimeoutError:
                    pass
            if self._stopped.is_set():
                return
            yield utterance

    async def stop(self) -> None:
        self.stop_calls += 1
        self._stopped.set()


class WhisperSpeechRecognizer(SpeechRecognizer):
    """Microphone capture via sounddevice, transcription via faster-whisper."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self._model = None
        self._stop_event: asyncio.Event | None = None
        self.logger = get_logger("whisper_speech_recognizer")

    @property
    def ready(self) -> bool:
        return self._model is not None

    async def setup(self) -> None:
        """Load the Whisper model and check that a microphone exists."""
        try:
            import sounddevice as sd
            from faster_whisper import WhisperModel
        except ImportError as e:
            self.logger.warning("speech_recognition_not_available", error=str(e))
            return

        try:
            sd.query_devices(kind="input")
        except Exception as e:
            self.logger.warning("microphone_not_available", error=str(e))
            return

        loop = asyncio.get_running_loop()
        try:
            self._model = await loop.run_in_executor(
                None,
                lambda: WhisperModel(self.config.speech.stt_model, device="cpu", compute_type="int8"),
            )
        except Exception as e:
            self.logger.exception("whisper_setup_failed", error=str(e))
            return

        self.logger.info("whisper_model_loaded", model=self.config.speech.stt_model)

    async def teardown(self) -> None:
        await self.stop()
        self._model = None

    def _transcribe_sync(self, audio) -> str:
        segments, _ = self._model.transcribe(
            audio,
            language=self.config.speech.stt_language,
            vad_filter=True,
        )
        return " ".join(segment.text.strip() for segment in segments).strip()

    async def _transcribe(self, chunks: list) -> str:
        import numpy as np

        audio = np.concatenate(chunks)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._transcribe_sync, audio)

    async def start(
        self,
        max_duration: float,
        trailing_silence: float,
    ) -> AsyncGenerator[Utterance, None]:
        if not self.ready:
            raise CapabilityUnavailableError("Speech recognizer not initialized")

        import numpy as np
        import sounddevice as sd

        speech = self.config.speech
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        stop_event = self._stop_event = asyncio.Event()

        def on_audio(indata, frames, time_info, status) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, indata[:, 0].copy())

        chunks: list = []
        started = last_voice = last_partial = loop.time()
        heard_voice = False

        with sd.InputStream(
            samplerate=speech.sample_rate,
            channels=1,
            dtype="float32",
            blocksize=int(speech.sample_rate * speech.chunk_size_ms / 1000),
            callback=on_audio,
        ):
            while not stop_event.is_set():
                now = loop.time()
                if now - started >= max_duration:
                    break
                if heard_voice and now - last_voice >= trailing_silence:
                    break

                try:
                    chunk = await asyncio.wait_for(queue.get(), timeout=0.2)
                except asyncio.TimeoutError:
                    continue

                chunks.append(chunk)
                if float(np.sqrt(np.mean(chunk**2))) >= speech.silence_threshold:
                    last_voice = loop.time()
                    heard_voice = True

                in_window = loop.time() - started < max_duration
                if speech.partial_results and heard_voice and in_window and now - last_partial >= 1.0:
                    last_partial = now
                    text = await self._transcribe(chunks)
                    if text:
                        yield Utterance(text, is_final=False, confidence=0.5)

        if not heard_voice:
            return

        text = await self._transcribe(chunks)
        if text:
            yield Utterance(text, is_final=True, confidence=0.9)

    async def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
