"""Nimbus Assist CLI - nimbus command line tool."""

from __future__ import annotations

import asyncio
import json
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from nimbus import __version__
from nimbus.capabilities import create_capabilities
from nimbus.common.logging import setup_logging
from nimbus.config import Config, load_config
from nimbus.core.intents import Intent, interpret as interpret_text
from nimbus.core.pipeline import PipelineController

app = typer.Typer(
    name="nimbus",
    help="Nimbus Assist: spoken scene descriptions",
    no_args_is_help=True,
)
console = Console()

STATUS_STYLES = {
    "healthy": "green",
    "degraded": "yellow",
    "unhealthy": "red",
}


def get_config(config_path: Optional[str] = None, mock: bool = False) -> Config:
    """Get configuration, forcing mock mode when asked."""
    cfg = load_config(config_path)
    if mock:
        cfg.mock_mode = True
    setup_logging(
        level=cfg.device.log_level,
        json_output=cfg.device.mode == "production",
        service_name="nimbus-cli",
    )
    return cfg


def build_controller(cfg: Config) -> PipelineController:
    """Controller over the backends the configuration selects."""
    return PipelineController.from_capabilities(create_capabilities(cfg), cfg)


async def run_cycle(cfg: Config, trigger: str) -> Optional[str]:
    """Run one pipeline cycle and return what was spoken."""
    async with build_controller(cfg) as controller:
        if trigger == "speak":
            await controller.trigger_speak()
        else:
            await controller.trigger_scan()
        await controller.join()
        return controller.last_spoken


@app.command()
def run(
    mock: bool = typer.Option(False, "--mock", help="Use mock capabilities"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Config file"),
):
    """Start the push-to-talk assistant."""
    from nimbus.assistant import Assistant

    cfg = get_config(config_path, mock)
    Assistant(config=cfg, mock_mode=cfg.mock_mode, console=console).run()


@app.command()
def scan(
    mock: bool = typer.Option(False, "--mock", help="Use mock capabilities"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Config file"),
):
    """Describe the scene once, without a voice command."""
    cfg = get_config(config_path, mock)

    try:
        spoken = asyncio.run(run_cycle(cfg, "scan"))
    except Exception as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    console.print(spoken or "[dim]Nothing was spoken[/]")


@app.command()
def listen(
    mock: bool = typer.Option(False, "--mock", help="Use mock capabilities"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Config file"),
):
    """Listen for one voice command and answer it."""
    cfg = get_config(config_path, mock)

    try:
        spoken = asyncio.run(run_cycle(cfg, "speak"))
    except Exception as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    console.print(spoken or "[dim]Nothing was heard[/]")


@app.command()
def interpret(text: str):
    """Show how a transcript would be interpreted."""
    intent = interpret_text(text)
    style = "green" if intent is Intent.DESCRIBE_SCENE else "yellow"
    console.print(f"[{style}]{intent.value}[/]")


@app.command()
def status(
    mock: bool = typer.Option(False, "--mock", help="Use mock capabilities"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Config file"),
):
    """Acquire every capability and report its readiness."""
    cfg = get_config(config_path, mock)

    async def _status():
        async with build_controller(cfg) as controller:
            return await controller.check_health()

    try:
        health = asyncio.run(_status())
    except Exception as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    overall = health.status.value
    console.print(
        Panel(
            f"[bold {STATUS_STYLES.get(overall, 'white')}]{overall.upper()}[/]",
            title="Capability Status",
        )
    )

    table = Table(title="Capabilities")
    table.add_column("Capability", style="cyan")
    table.add_column("Health")
    table.add_column("Message")

    for check in health.checks:
        style = STATUS_STYLES.get(check.status.value, "white")
        table.add_row(check.name, f"[{style}]{check.status.value}[/]", check.message or "")

    console.print(table)


@app.command()
def version():
    """Show version information."""
    console.print(f"[bold]Nimbus Assist[/] v{__version__}")


@app.command()
def config(
    json_output: bool = typer.Option(False, "--json-output", help="Print as JSON"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Config file"),
):
    """Show configuration."""
    cfg = load_config(config_path)

    if json_output:
        print(json.dumps(cfg.model_dump(), indent=2, default=str))
        return

    console.print("[bold]Configuration[/]")
    console.print(f"  Device: {cfg.device.name}")
    console.print(f"  Mode: {cfg.device.mode}")
    console.print(f"  Mock Mode: {cfg.mock_mode}")
    console.print("\n[bold]Speech[/]")
    console.print(f"  Listen: {cfg.speech.listen_for_seconds}s (pause {cfg.speech.pause_for_seconds}s)")
    console.print(f"  STT Model: {cfg.speech.stt_model}")
    console.print(f"  TTS Voice: {cfg.speech.tts_voice}")
    console.print("\n[bold]Vision[/]")
    console.print(f"  Camera: {cfg.camera.backend} #{cfg.camera.device_index}")
    console.print(f"  Detector: {cfg.detector.model} (min confidence {cfg.detector.min_confidence})")


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
