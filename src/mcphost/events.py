"""Streaming events emitted while a turn is aggregated and dispatched."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class StreamEvent:
    """Base for all streaming events."""


@dataclass
class ThinkingStartedEvent(StreamEvent):
    """First reasoning fragment of a turn arrived."""


@dataclass
class ReasoningDeltaEvent(StreamEvent):
    """Reasoning text fragment from the provider stream."""

    content: str = ""


@dataclass
class AnswerStartedEvent(StreamEvent):
    """First answer fragment of a turn arrived."""


@dataclass
class AnswerDeltaEvent(StreamEvent):
    """Answer text fragment from the provider stream."""

    content: str = ""


@dataclass
class UsageEvent(StreamEvent):
    """Token usage reported by a usage-only chunk."""

    usage: Any = None


@dataclass
class RunItemEvent(StreamEvent):
    """A discrete step in the loop.

    ``name`` values: ``"tool_call"``, ``"tool_skipped"``, ``"message"``,
    ``"error"``.
    """

    name: str = ""
    data: dict = field(default_factory=dict)


@dataclass
class RunCompleteEvent(StreamEvent):
    """Final event, always the last one yielded."""

    result: Any = None
