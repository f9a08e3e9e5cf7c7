"""Scene-description core: command interpretation, sentence building, pipeline."""

from nimbus.core.intents import CommandInterpreter, Intent, interpret, normalize
from nimbus.core.pipeline import (
    FailureReason,
    PipelineController,
    PipelineState,
    StateChange,
)
from nimbus.core.scene import aggregate, compose, describe, join_for_speech

__all__ = [
    "CommandInterpreter",
    "FailureReason",
    "Intent",
    "PipelineController",
    "PipelineState",
    "StateChange",
    "aggregate",
    "compose",
    "describe",
    "interpret",
    "join_for_speech",
    "normalize",
]
