"""Voice command interpretation."""

from __future__ import annotations

import re
from enum import Enum
from typing import Iterable


class Intent(Enum):
    """What the user asked for."""

    DESCRIBE_SCENE = "describe_scene"
    UNRECOGNIZED = "unrecognized"


DESCRIBE_SCENE_PHRASES: tuple[str, ...] = (
    "what's in front",
    "what is in front",
    "whats in front",
    "what is ahead",
    "what's ahead",
)

_APOSTROPHES = str.maketrans({"’": "'", "‘": "'", "`": "'"})
_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize(text: str) -> str:
    """Case-fold, drop punctuation and collapse whitespace.

    "What's  in FRONT?" and "whats in front" both become "whats in front".
    """
    text = text.translate(_APOSTROPHES).casefold()
    text = _PUNCTUATION.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


class CommandInterpreter:
    """Maps recognized text to an Intent by fixed-phrase substring matching.

    Speech recognizers often add filler around the command ("um, what's in
    front of me please"), so a phrase anywhere in the text is a match.
    """

    def __init__(self, extra_phrases: Iterable[str] = ()) -> None:
        phrases = [normalize(p) for p in (*DESCRIBE_SCENE_PHRASES, *extra_phrases)]
        self.phrases: tuple[str, ...] = tuple(dict.fromkeys(p for p in phrases if p))

    def interpret(self, text: str) -> Intent:
        normalized = normalize(text)
        if normalized and any(phrase in normalized for phrase in self.phrases):
            return Intent.DESCRIBE_SCENE
        return Intent.UNRECOGNIZED


_default_interpreter = CommandInterpreter()


def interpret(text: str) -> Intent:
    """Interpret text using the built-in phrase list."""
    return _default_interpreter.interpret(text)
