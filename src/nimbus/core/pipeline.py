"""Command-driven scene description pipeline.

The controller is a small state machine:

    IDLE -> LISTENING -> INTERPRETING -> CAPTURING -> DETECTING
         -> COMPOSING -> SPEAKING -> IDLE

A "scan" trigger enters at CAPTURING. Failures pass through FAILED and are
always spoken before the controller returns to IDLE.

Every cycle runs in its own task under a session token. The token is bumped
whenever a cycle is superseded (stop, cancel, shutdown), and every response
from a capability is checked against the current token before it is applied,
so a late response from an old cycle is dropped instead of being spoken.

Triggers that arrive while a cycle is active are ignored: they return False,
log ``trigger_ignored`` and publish nothing. The one exception is "speak"
while LISTENING, which stops listening.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncGenerator, AsyncIterator, Coroutine

import structlog

from nimbus.capabilities import (
    CameraBackend,
    Capabilities,
    Capability,
    CapabilityUnavailableError,
    DetectionResult,
    ObjectDetector,
    SpeechRecognizer,
    SpeechSynthesizer,
    Utterance,
)
from nimbus.common.events import Event, EventBus
from nimbus.common.health import AggregatedHealth, HealthChecker
from nimbus.common.logging import get_logger
from nimbus.config import Config
from nimbus.core.intents import CommandInterpreter, Intent
from nimbus.core.scene import describe

SPEECH_NOT_AVAILABLE = "Speech not available"
USAGE_HINT = "Say: what's in front of me"
CAMERA_NOT_READY = "Camera not ready"
SCENE_FAILURE = "Sorry, I had trouble seeing the scene."

STATE_TOPIC = "pipeline.state"


class PipelineState(Enum):
    """Pipeline controller state."""

    IDLE = "idle"
    LISTENING = "listening"
    INTERPRETING = "interpreting"
    CAPTURING = "capturing"
    DETECTING = "detecting"
    COMPOSING = "composing"
    SPEAKING = "speaking"
    FAILED = "failed"


class FailureReason(Enum):
    """Why a cycle ended in FAILED."""

    CAPABILITY_UNAVAILABLE = "capability_unavailable"
    CAPTURE_OR_DETECTION_FAILURE = "capture_or_detection_failure"


@dataclass(frozen=True)
class StateChange:
    """One published pipeline transition.

    A LISTENING change repeated within the same session carries a partial
    transcript and is progress, not a new state.
    """

    state: PipelineState
    session: int
    reason: FailureReason | None = None
    message: str | None = None
    transcript: str | None = None
    detail: str | None = None
    timestamp: float = field(default_factory=time.time)


class PipelineController:
    """Owns the pipeline state and the four capabilities."""

    def __init__(
        self,
        recognizer: SpeechRecognizer,
        synthesizer: SpeechSynthesizer,
        camera: CameraBackend,
        detector: ObjectDetector,
        config: Config | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.config = config or Config()
        self._recognizer = recognizer
        self._synthesizer = synthesizer
        self._camera = camera
        self._detector = detector
        self._interpreter = CommandInterpreter(self.config.commands.extra_phrases)
        self._events = event_bus or EventBus()
        self.logger = get_logger("pipeline")

        self._state = PipelineState.IDLE
        self._session = 0
        self._task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._started = False

        self.last_heard = ""
        self.last_spoken: str | None = None

        self._health_checker = HealthChecker("pipeline")
        for capability in self._capabilities():
            self._health_checker.add_check(
                capability.name,
                capability.check_ready,
                critical=capability is self._camera or capability is self._detector,
            )

    @classmethod
    def from_capabilities(
        cls,
        capabilities: Capabilities,
        config: Config | None = None,
        event_bus: EventBus | None = None,
    ) -> PipelineController:
        return cls(
            recognizer=capabilities.recognizer,
            synthesizer=capabilities.synthesizer,
            camera=capabilities.camera,
            detector=capabilities.detector,
            config=config,
            event_bus=event_bus,
        )

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def session(self) -> int:
        """Token of the current cycle."""
        return self._session

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def history(self) -> list[StateChange]:
        """Published state changes, oldest first."""
        events = self._events.get_history(STATE_TOPIC, limit=self._events.history_limit)
        return [event.data["change"] for event in events]

    def _capabilities(self) -> list[Capability]:
        return [self._synthesizer, self._recognizer, self._camera, self._detector]

    # Lifecycle

    async def start(self) -> None:
        """Acquire every capability. Safe to call twice."""
        if self._started:
            return

        acquired: list[Capability] = []
        try:
            for capability in self._capabilities():
                await capability.setup()
                acquired.append(capability)
        except BaseException:
            await self._release(reversed(acquired))
            raise

        self._started = True
        self.logger.info(
            "pipeline_started",
            capabilities={c.name: c.ready for c in self._capabilities()},
        )

    async def shutdown(self) -> None:
        """Abort any cycle and release every capability."""
        if not self._started:
            return

        await self.cancel()

        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        await self._release(reversed(self._capabilities()))
        self._started = False
        self.logger.info("pipeline_stopped")

    async def _release(self, capabilities) -> None:
        for capability in capabilities:
            try:
                await capability.teardown()
            except Exception as e:
                self.logger.exception("capability_teardown_failed", capability=capability.name, error=str(e))

    async def __aenter__(self) -> PipelineController:
        await self.start()
        return self

    async def __aexit__(self, *args) -> None:
        await self.shutdown()

    async def check_health(self) -> AggregatedHealth:
        """Readiness of each capability."""
        return await self._health_checker.check()

    # Triggers

    async def trigger_speak(self) -> bool:
        """Start listening for a command, or stop if already listening.

        Returns:
            False if the trigger was ignored because a cycle is active.
        """
        if self._state is PipelineState.LISTENING:
            await self.stop_listening()
            return True
        if self._state is not PipelineState.IDLE:
            return self._ignore("speak")

        token = self._next_session()
        if not self._recognizer.available:
            self.logger.warning("speech_recognizer_unavailable", session=token)
            await self._transition(
                token,
                PipelineState.FAILED,
                reason=FailureReason.CAPABILITY_UNAVAILABLE,
                message=SPEECH_NOT_AVAILABLE,
            )
            self._launch(token, self._speak(token, SPEECH_NOT_AVAILABLE))
            return True

        await self._transition(token, PipelineState.LISTENING)
        self._launch(token, self._listen_cycle(token))
        return True

    async def trigger_scan(self) -> bool:
        """Describe the scene now, skipping the voice command.

        Returns:
            False if the trigger was ignored because a cycle is active.
        """
        if self._state is not PipelineState.IDLE:
            return self._ignore("scan")

        token = self._next_session()
        await self._transition(token, PipelineState.CAPTURING)
        self._launch(token, self._capture_and_describe(token))
        return True

    async def stop_listening(self) -> None:
        """End the listening session without interpreting anything."""
        if self._state is not PipelineState.LISTENING:
            return

        task = self._task
        token = self._next_session()
        self.logger.info("listening_stopped", session=token)
        await self._transition(token, PipelineState.IDLE, detail="stopped")
        await self._cancel_task(task)
        await self._recognizer.stop()

    async def cancel(self) -> None:
        """Supersede the active cycle and return to IDLE.

        Listening and speech are cut off. A capture or detection already in
        flight runs to completion, and its result is discarded.
        """
        if self._state is PipelineState.IDLE:
            return

        previous = self._state
        task = self._task
        token = self._next_session()
        self.logger.info("pipeline_cancelled", session=token, state=previous.value)
        await self._transition(token, PipelineState.IDLE, detail="cancelled")

        if previous is PipelineState.LISTENING:
            await self._cancel_task(task)
            await self._recognizer.stop()
        await self._synthesizer.stop()

    async def join(self) -> None:
        """Wait until every launched cycle task has finished."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def states(self) -> AsyncIterator[StateChange]:
        """Stream state changes from the moment iteration begins.

        Each iteration holds its own subscription, released when the
        consumer stops iterating.
        """
        queue: asyncio.Queue[StateChange] = asyncio.Queue()

        async def enqueue(event: Event) -> None:
            queue.put_nowait(event.data["change"])

        unsubscribe = self._events.subscribe(STATE_TOPIC, enqueue)
        try:
            while True:
                yield await queue.get()
        finally:
            unsubscribe()

    # Session bookkeeping

    def _next_session(self) -> int:
        self._session += 1
        return self._session

    def _is_current(self, token: int) -> bool:
        return token == self._session

    def _ignore(self, trigger: str) -> bool:
        self.logger.info("trigger_ignored", trigger=trigger, state=self._state.value)
        return False

    def _launch(self, token: int, cycle: Coroutine) -> None:
        task = asyncio.create_task(self._run_cycle(token, cycle), name=f"pipeline-session-{token}")
        self._task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        # A task cancelled before its first step never awaits the cycle.
        task.add_done_callback(lambda _: cycle.close())

    async def _run_cycle(self, token: int, cycle: Coroutine) -> None:
        with structlog.contextvars.bound_contextvars(session=token):
            try:
                await cycle
            except Exception as e:
                self.logger.exception("pipeline_cycle_failed", error=str(e))
                await self._transition(token, PipelineState.IDLE, detail="error")

    async def _cancel_task(self, task: asyncio.Task | None) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _transition(self, token: int, state: PipelineState, **fields) -> bool:
        if not self._is_current(token):
            self.logger.debug(
                "stale_response_discarded",
                session=token,
                current_session=self._session,
                state=state.value,
            )
            return False

        change = StateChange(state=state, session=token, **fields)
        previous = self._state
        self._state = state

        if previous is state:
            self.logger.debug("pipeline_progress", state=state.value, transcript=change.transcript)
        else:
            self.logger.info(
                "pipeline_state_changed",
                from_state=previous.value,
                to_state=state.value,
                session=token,
                reason=change.reason.value if change.reason else None,
                detail=change.detail,
            )

        await self._events.publish(
            Event(
                topic=STATE_TOPIC,
                data={"change": change, "state": state.value, "session": token},
                source="pipeline",
            )
        )
        return True

    # Cycles

    async def _listen_cycle(self, token: int) -> None:
        if not self._is_current(token):
            return

        detail = "timeout"
        try:
            utterance = await self._await_final_utterance(token)
        except Exception as e:
            self.logger.exception("speech_recognition_failed", error=str(e))
            utterance = None
            detail = "recognizer_error"

        if not self._is_current(token):
            return
        if utterance is None:
            await self._transition(token, PipelineState.IDLE, detail=detail)
            return

        await self._transition(token, PipelineState.INTERPRETING, transcript=utterance.text)
        intent = self._interpreter.interpret(utterance.text)
        self.logger.info("command_interpreted", text=utterance.text, intent=intent.value)

        if intent is Intent.UNRECOGNIZED:
            await self._speak(token, USAGE_HINT)
            return

        if await self._transition(token, PipelineState.CAPTURING):
            await self._capture_and_describe(token)

    async def _await_final_utterance(self, token: int) -> Utterance | None:
        speech = self.config.speech
        stream = self._recognizer.start(speech.listen_for_seconds, speech.pause_for_seconds)
        reader = asyncio.ensure_future(self._next_final(token, stream))
        window = speech.listen_for_seconds + speech.pause_for_seconds
        try:
            done, _ = await asyncio.wait({reader}, timeout=window)
            if not done:
                # Capture ends here; the final transcription may still be running.
                self.logger.info("listen_window_elapsed", window_seconds=window)
                await self._recognizer.stop()
                done, _ = await asyncio.wait({reader}, timeout=speech.transcribe_timeout_seconds)
            if not done:
                self.logger.info(
                    "listen_timeout",
                    window_seconds=window,
                    transcribe_timeout_seconds=speech.transcribe_timeout_seconds,
                )
                return None
            return reader.result()
        finally:
            if not reader.done():
                reader.cancel()
                await asyncio.gather(reader, return_exceptions=True)
            await stream.aclose()
            await self._recognizer.stop()

    async def _next_final(
        self,
        token: int,
        stream: AsyncGenerator[Utterance, None],
    ) -> Utterance | None:
        async for utterance in stream:
            if not self._is_current(token):
                self.logger.debug("stale_response_discarded", session=token, current_session=self._session)
                return None

            self.last_heard = utterance.text.lower()
            if utterance.is_final:
                return utterance
            await self._transition(token, PipelineState.LISTENING, transcript=utterance.text)

        return None

    async def _capture_and_describe(self, token: int) -> None:
        if not self._camera.ready:
            self.logger.warning("camera_not_ready")
            await self._fail(token, FailureReason.CAPABILITY_UNAVAILABLE, CAMERA_NOT_READY)
            return

        try:
            frame = await self._camera.capture()
        except CapabilityUnavailableError as e:
            self.logger.warning("camera_not_ready", error=str(e))
            await self._fail(token, FailureReason.CAPABILITY_UNAVAILABLE, CAMERA_NOT_READY)
            return
        except Exception as e:
            self.logger.exception("scene_failure", stage="capture", error=str(e))
            await self._fail(token, FailureReason.CAPTURE_OR_DETECTION_FAILURE, SCENE_FAILURE)
            return

        if not await self._transition(token, PipelineState.DETECTING):
            return

        try:
            result = await self._detector.detect(frame.data, frame.frame_id)
        except Exception as e:
            self.logger.exception("scene_failure", stage="detect", error=str(e))
            await self._fail(token, FailureReason.CAPTURE_OR_DETECTION_FAILURE, SCENE_FAILURE)
            return

        if not await self._transition(token, PipelineState.COMPOSING):
            return

        sentence = self._compose(result)
        await self._speak(token, sentence)

    def _compose(self, result: DetectionResult) -> str:
        sentence = describe(result)
        self.logger.info(
            "scene_described",
            frame_id=result.frame_id,
            object_count=len(result),
            inference_time_ms=result.inference_time_ms,
            sentence=sentence,
        )
        return sentence

    async def _fail(self, token: int, reason: FailureReason, message: str) -> None:
        if await self._transition(token, PipelineState.FAILED, reason=reason, message=message):
            await self._speak(token, message)

    async def _speak(self, token: int, text: str) -> None:
        if not await self._transition(token, PipelineState.SPEAKING, message=text):
            return

        self.last_spoken = text
        try:
            await self._synthesizer.stop()
            await self._synthesizer.speak(text)
        except Exception as e:
            self.logger.exception("speech_output_failed", error=str(e))

        await self._transition(token, PipelineState.IDLE, detail="completed")
