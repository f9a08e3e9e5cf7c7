"""Turn a detection result into one spoken sentence."""

from __future__ import annotations

from typing import Iterable, Sequence

from nimbus.capabilities.detector import DetectedObject

GENERIC_LABEL = "object"
NOTHING_DETECTED = "I do not see anything clearly in front."
SENTENCE_SUFFIX = " are in front."

LabelCounts = list[tuple[str, int]]


def object_label(obj: DetectedObject) -> str:
    """Normalized text of the object's most confident label."""
    top = obj.top_label
    text = top.text.strip().lower() if top is not None else ""
    return text or GENERIC_LABEL


def aggregate(objects: Iterable[DetectedObject]) -> LabelCounts:
    """Count labels, first-seen label first.

    Accepts a DetectionResult or any iterable of DetectedObject. An empty
    input gives an empty list, which means nothing was detected.
    """
    counts: dict[str, int] = {}
    for obj in objects:
        label = object_label(obj)
        counts[label] = counts.get(label, 0) + 1
    return list(counts.items())


def render_count(label: str, count: int) -> str:
    # Naive plural: "person" -> "persons"
    return f"a {label}" if count == 1 else f"{count} {label}s"


def join_for_speech(phrases: Sequence[str]) -> str:
    """Join phrases as an English list with a serial comma."""
    if not phrases:
        return "Nothing"
    if len(phrases) == 1:
        return phrases[0]
    if len(phrases) == 2:
        return f"{phrases[0]} and {phrases[1]}"
    return ", ".join(phrases[:-1]) + ", and " + phrases[-1]


def compose(counts: Iterable[tuple[str, int]]) -> str:
    """Sentence for a list of (label, count) pairs.

    >>> compose([("cat", 2), ("dog", 1)])
    '2 cats and a dog are in front.'
    """
    phrases = [render_count(label, count) for label, count in counts]
    return join_for_speech(phrases) + SENTENCE_SUFFIX


def describe(objects: Iterable[DetectedObject]) -> str:
    """What the assistant says about a detection result."""
    counts = aggregate(objects)
    if not counts:
        return NOTHING_DETECTED
    return compose(counts)
