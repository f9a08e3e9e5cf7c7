"""Configuration management for Nimbus Assist."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DeviceConfig(BaseModel):
    """Device configuration."""

    name: str = "nimbus"
    mode: Literal["production", "development"] = "development"
    log_level: str = "INFO"


class SpeechConfig(BaseModel):
    """Speech recognition and synthesis configuration."""

    # Listening window: hard cap and trailing-silence cutoff
    listen_for_seconds: float = 5.0
    pause_for_seconds: float = 2.0
    partial_results: bool = True
    # Extra time for the final transcription once the window has closed
    transcribe_timeout_seconds: float = 5.0

    stt_model: str = "tiny"
    stt_language: str = "en"
    sample_rate: int = 16000
    chunk_size_ms: int = 100
    silence_threshold: float = 0.01

    tts_voice: str = "default"
    tts_speed: float = 0.85
    tts_pitch: float = 1.0


class CameraConfig(BaseModel):
    """Camera capture configuration."""

    backend: Literal["opencv", "picamera"] = "opencv"
    device_index: int = 0
    resolution: list[int] = [720, 480]
    quality: int = 85


class DetectorConfig(BaseModel):
    """Object detector configuration."""

    model: str = "yolov8n.pt"
    min_confidence: float = 0.5
    max_detections: int = 20


class CommandConfig(BaseModel):
    """Voice command configuration."""

    extra_phrases: list[str] = Field(default_factory=list)


class Config(BaseSettings):
    """Main configuration for Nimbus Assist."""

    model_config = SettingsConfigDict(
        env_prefix="NIMBUS_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    device: DeviceConfig = Field(default_factory=DeviceConfig)
    speech: SpeechConfig = Field(default_factory=SpeechConfig)
    camera: CameraConfig = Field(default_factory=CameraConfig)
    detector: DetectorConfig = Field(default_factory=DetectorConfig)
    commands: CommandConfig = Field(default_factory=CommandConfig)

    # Mock capabilities for development
    mock_mode: bool = False

    @classmethod
    def from_yaml(cls, path: Path | str) -> Config:
        """Load configuration from YAML file."""
        path = Path(path)
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    def to_yaml(self, path: Path | str) -> None:
        """Save configuration to YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            yaml.dump(self.model_dump(), f, default_flow_style=False)


def load_config(
    config_path: Path | str | None = None,
    env_override: bool = True,
) -> Config:
    """Load configuration from file and environment.

    Args:
        config_path: Path to config file. If None, searches standard locations.
        env_override: Whether to allow environment variables to override config.

    Returns:
        Loaded configuration.
    """
    search_paths = [
        Path("/etc/nimbus/config.yaml"),
        Path.home() / ".config" / "nimbus" / "config.yaml",
        Path("config.yaml"),
        Path("configs/nimbus.yaml"),
    ]

    if config_path:
        search_paths.insert(0, Path(config_path))

    config_file: Path | None = None
    for path in search_paths:
        if path.exists():
            config_file = path
            break

    if config_file:
        config = Config.from_yaml(config_file)
    else:
        config = Config()

    if env_override:
        if os.environ.get("NIMBUS_MOCK_MODE", "").lower() in ("1", "true", "yes"):
            config.mock_mode = True

        log_level = os.environ.get("NIMBUS_LOG_LEVEL")
        if log_level:
            config.device.log_level = log_level.upper()

    return config


def get_default_config() -> dict[str, Any]:
    """Get default configuration as dictionary."""
    return Config().model_dump()
