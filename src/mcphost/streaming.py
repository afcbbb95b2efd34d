"""Streaming primitives for provider responses.

Providers yield :class:`ResponseChunk` objects. A :class:`TurnAccumulator`
owns everything accumulated during one model turn and rebuilds complete
tool calls from argument fragments spread over many chunks.

Opening fragments carry a tool name. Continuation fragments are matched to
the most recently opened call through an explicit ``last_opened`` pointer
rather than by their own index, since providers do not reliably repeat
the index on continuations.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterable
from dataclasses import dataclass, field
from typing import Any

from mcphost.errors import MalformedToolArguments
from mcphost.events import (
    AnswerDeltaEvent,
    AnswerStartedEvent,
    ReasoningDeltaEvent,
    StreamEvent,
    ThinkingStartedEvent,
    UsageEvent,
)

logger = logging.getLogger(__name__)

FINISH_TOOL_CALLS = "tool_calls"


@dataclass
class Usage:
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


@dataclass
class ToolCallFragment:
    """A fragment of a tool call from a streaming chunk."""

    index: int
    call_id: str | None = None
    name: str | None = None
    arguments_delta: str | None = None


@dataclass
class ResponseChunk:
    """Normalised streaming chunk from any provider.

    ``has_choices`` is False for usage-only chunks, which carry no delta.
    """

    reasoning_delta: str | None = None
    content_delta: str | None = None
    tool_call_fragments: list[ToolCallFragment] | None = None
    finish_reason: str | None = None
    usage: Usage | None = None
    has_choices: bool = True


@dataclass
class PendingToolCall:
    """A tool call still receiving argument fragments."""

    index: int
    id: str
    name: str
    arguments: str = ""


@dataclass
class CompletedToolCall:
    """A tool call whose fragments have all arrived.

    ``args`` is the parsed argument object, or ``None`` when the text did
    not parse, in which case ``error`` says why.
    """

    id: str
    name: str
    arguments: str = ""
    args: dict | None = None
    error: MalformedToolArguments | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def arguments_json(self) -> str:
        if self.args is None:
            return "{}"
        return json.dumps(self.args, ensure_ascii=False)


@dataclass
class AggregatedTurn:
    reasoning: str = ""
    answer: str = ""
    tool_calls: list[CompletedToolCall] = field(default_factory=list)
    usage: Usage | None = None


def parse_arguments(call: PendingToolCall) -> CompletedToolCall:
    """Parse a pending call's argument text into a completed call."""
    raw = call.arguments
    completed = CompletedToolCall(id=call.id, name=call.name, arguments=raw)
    if not raw.strip():
        completed.args = {}
        return completed
    try:
        parsed: Any = json.loads(raw)
    except json.JSONDecodeError as e:
        completed.error = MalformedToolArguments(call.id, call.name, raw, str(e))
        return completed
    if not isinstance(parsed, dict):
        completed.error = MalformedToolArguments(
            call.id, call.name, raw,
            f"expected a JSON object, got {type(parsed).__name__}",
        )
        return completed
    completed.args = parsed
    return completed


class TurnAccumulator:
    """Accumulates one model turn, chunk by chunk.

    ``thinking`` and ``answering`` only drive presentation events; they
    never influence what is accumulated.
    """

    def __init__(self) -> None:
        self.reasoning = ""
        self.answer = ""
        self.pending: list[PendingToolCall] = []
        self.last_opened: int | None = None
        self.thinking = False
        self.answering = False
        self.usage: Usage | None = None

    def feed(self, chunk: ResponseChunk) -> list[StreamEvent]:
        """Apply one chunk and return the events it produced."""
        events: list[StreamEvent] = []

        if not chunk.has_choices:
            if chunk.usage is not None:
                self.usage = chunk.usage
                events.append(UsageEvent(usage=chunk.usage))
            return events

        if chunk.reasoning_delta:
            if not self.thinking:
                self.thinking = True
                events.append(ThinkingStartedEvent())
            self.reasoning += chunk.reasoning_delta
            events.append(ReasoningDeltaEvent(content=chunk.reasoning_delta))
        elif chunk.content_delta:
            if not self.answering:
                self.answering = True
                events.append(AnswerStartedEvent())
            self.answer += chunk.content_delta
            events.append(AnswerDeltaEvent(content=chunk.content_delta))

        if chunk.usage is not None:
            self.usage = chunk.usage

        # terminal marker, not new data
        if chunk.finish_reason == FINISH_TOOL_CALLS:
            return events

        for fragment in chunk.tool_call_fragments or []:
            self.feed_fragment(fragment)
        return events

    def feed_fragment(self, fragment: ToolCallFragment) -> None:
        delta = fragment.arguments_delta or ""
        if fragment.name:
            self.pending.append(PendingToolCall(
                index=fragment.index,
                id=fragment.call_id or "",
                name=fragment.name,
                arguments=delta,
            ))
            self.last_opened = len(self.pending) - 1
            return

        if self.last_opened is None:
            logger.warning(
                f"Dropping continuation fragment for slot {fragment.index}: "
                "no tool call has been opened"
            )
            return
        self.pending[self.last_opened].arguments += delta

    def finish(self) -> AggregatedTurn:
        """Parse every pending call and return the turn's artifacts."""
        calls = [parse_arguments(p) for p in self.pending]
        for call in calls:
            if call.error is not None:
                logger.warning(f"Malformed arguments for {call.name}: {call.error.reason}")
        return AggregatedTurn(
            reasoning=self.reasoning,
            answer=self.answer,
            tool_calls=calls,
            usage=self.usage,
        )


async def aggregate(chunks: AsyncIterable[ResponseChunk]) -> AggregatedTurn:
    """Drain *chunks* into a fresh accumulator and return the turn."""
    acc = TurnAccumulator()
    async for chunk in chunks:
        acc.feed(chunk)
    return acc.finish()
