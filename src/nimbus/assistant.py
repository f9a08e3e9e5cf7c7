"""Interactive assistant: push-to-talk front end for the pipeline.

Usage:
    # With mock capabilities (development)
    nimbus run --mock

    # With camera, microphone and speaker
    nimbus run

Keys: Enter scans the scene, "s" starts or stops listening, "q" quits.
"""

from __future__ import annotations

import asyncio
import threading

from rich.console import Console

from nimbus.capabilities import Capabilities, create_capabilities
from nimbus.common.health import HealthStatus
from nimbus.common.service import BaseService
from nimbus.config import Config
from nimbus.core.pipeline import PipelineController, PipelineState, StateChange

IDLE_PROMPT = "Tap the mic and ask: What's in front of me?"
LISTENING_PROMPT = "Listening... say: \"What's in front of me?\""


def status_line(change: StateChange, last_heard: str = "") -> str:
    """Text the front end shows for a state change."""
    if change.state is PipelineState.LISTENING:
        if change.transcript:
            return f"{LISTENING_PROMPT} ({change.transcript})"
        return LISTENING_PROMPT
    if change.state is PipelineState.IDLE:
        return f"You said: {last_heard}" if last_heard else IDLE_PROMPT
    if change.state is PipelineState.SPEAKING:
        return f"Speaking: {change.message}"
    if change.state is PipelineState.FAILED:
        return f"Problem: {change.message}"
    return f"{change.state.value.capitalize()}..."


class Assistant(BaseService):
    """Runs the pipeline controller behind a keyboard push-to-talk loop."""

    def __init__(
        self,
        config: Config | None = None,
        mock_mode: bool = False,
        capabilities: Capabilities | None = None,
        console: Console | None = None,
    ) -> None:
        super().__init__("nimbus-assistant", config, mock_mode)
        self.console = console or Console()
        self.capabilities = capabilities or create_capabilities(self.config, self.mock_mode)
        self.controller = PipelineController.from_capabilities(self.capabilities, self.config)
        self._render_task: asyncio.Task | None = None
        self._reader: threading.Thread | None = None

        for capability in self.capabilities.in_setup_order():
            self.health_checker.add_check(
                capability.name,
                capability.check_ready,
                critical=capability.name in ("camera", "detector"),
            )

    async def setup(self) -> None:
        """Acquire capabilities and start rendering state changes."""
        await self.controller.start()
        self._render_task = asyncio.create_task(self._render_states())

        health = await self.health_checker.check()
        if health.status is not HealthStatus.HEALTHY:
            self.logger.warning("assistant_degraded", message=health.message)

        self.console.print(f"[bold]{IDLE_PROMPT}[/]")

    async def teardown(self) -> None:
        """Release capabilities even if the loop crashed."""
        try:
            await self.controller.shutdown()
        finally:
            if self._render_task is not None:
                self._render_task.cancel()
                await asyncio.gather(self._render_task, return_exceptions=True)
                self._render_task = None

    async def _render_states(self) -> None:
        async for change in self.controller.states():
            style = "red" if change.state is PipelineState.FAILED else "cyan"
            self.console.print(f"[{style}]{status_line(change, self.controller.last_heard)}[/]")

    async def handle_key(self, key: str) -> bool:
        """Dispatch one line of keyboard input.

        Returns:
            False when the user asked to quit.
        """
        key = key.strip().lower()
        if key == "q":
            return False
        if key == "s":
            await self.controller.trigger_speak()
        elif key == "":
            await self.controller.trigger_scan()
        else:
            self.console.print("[dim]Enter = scan, s = speak/stop, q = quit[/]")
        return True

    def _read_keys(self, loop: asyncio.AbstractEventLoop, keys: asyncio.Queue) -> None:
        """Blocking stdin reader, run on a daemon thread."""
        while True:
            try:
                line = input()
            except (EOFError, OSError):
                line = None

            try:
                loop.call_soon_threadsafe(keys.put_nowait, line)
            except RuntimeError:
                return  # loop already closed
            if line is None:
                return

    async def serve(self) -> None:
        """Read keys until quit, EOF or shutdown."""
        loop = asyncio.get_running_loop()
        keys: asyncio.Queue[str | None] = asyncio.Queue()
        self._reader = threading.Thread(
            target=self._read_keys,
            args=(loop, keys),
            name="nimbus-keys",
            daemon=True,
        )
        self._reader.start()
        self.console.print("\n[Push-to-Talk] Enter = scan, s = speak/stop, q = quit\n")

        while not self._shutdown_event.is_set():
            read = asyncio.ensure_future(keys.get())
            shutdown = asyncio.ensure_future(self._shutdown_event.wait())
            done, _ = await asyncio.wait({read, shutdown}, return_when=asyncio.FIRST_COMPLETED)
            shutdown.cancel()

            if read not in done:
                read.cancel()
                break

            key = read.result()
            if key is None or not await self.handle_key(key):
                break

        await self.controller.join()


async def main(config: Config | None = None, mock: bool = False) -> None:
    """Run the assistant until the user quits."""
    assistant = Assistant(config=config, mock_mode=mock)
    await assistant.start()
