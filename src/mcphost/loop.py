"""The multi-turn orchestration loop.

The loop is a small state machine. :meth:`OrchestrationLoop.step` is the
transition function: it performs the work of the current state, yields
the events that work produced, and moves :attr:`LoopContext.state` on.

Messages produced during a turn are staged on the context and committed
to the conversation in one :meth:`Conversation.extend` call once the turn
has fully succeeded. A turn that fails or is cancelled commits nothing.
"""

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum

from mcphost.conversation import Conversation
from mcphost.dispatcher import ToolDispatcher
from mcphost.errors import TransportError
from mcphost.events import RunCompleteEvent, RunItemEvent, StreamEvent
from mcphost.instrumentation import (
    completion_span,
    record_error,
    record_usage,
    session_span,
)
from mcphost.message import Message
from mcphost.provider import ModelProvider
from mcphost.registry import ToolRegistry
from mcphost.streaming import AggregatedTurn, ResponseChunk, TurnAccumulator

logger = logging.getLogger(__name__)

DEFAULT_STEERING = (
    "pls use user's language to answer the question, if the user's language "
    "is not chinese, pls translate the answer to user's language"
)
MAX_TURNS_MESSAGE = "Maximum turns reached. Please try again."


def _unexpected(error: Exception) -> TransportError:
    """Wrap a non-transport provider failure so it ends the turn cleanly."""
    logger.exception(f"Unexpected error while streaming the model turn: {error!r}")
    wrapped = TransportError(str(error) or type(error).__name__)
    wrapped.__cause__ = error
    return wrapped


class LoopState(Enum):
    AWAITING_TURN = "awaiting_turn"
    AGGREGATING = "aggregating"
    DISPATCHING = "dispatching"
    DONE = "done"


@dataclass
class LoopContext:
    """Everything the loop owns while answering one user query."""

    query: str
    conversation: Conversation
    state: LoopState = LoopState.AWAITING_TURN
    staged: list[Message] = field(default_factory=list)
    stream: AsyncIterator[ResponseChunk] | None = None
    first_chunk: ResponseChunk | None = None
    turn: AggregatedTurn | None = None
    turns: int = 0
    answer: str = ""
    error: Exception | None = None

    def request_messages(self) -> list[dict]:
        return self.conversation.dump() + [m.model_dump() for m in self.staged]

    def commit(self) -> None:
        self.conversation.extend(self.staged)
        self.staged = []


@dataclass
class LoopResult:
    """The result of answering one user query."""

    answer: str
    turns: int
    error: Exception | None = None
    last_message: Message | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class OrchestrationLoop:
    """Drives model turns and tool dispatch until the model answers.

    Termination is always the model returning a turn with no tool calls,
    a transport failure, or ``max_turns`` being reached. Tools that signal
    completion are dispatched like any other.

    Args:
        provider: Streaming model endpoint.
        registry: Tools offered to the model and their providers.
        dispatcher: Tool dispatcher; sequential by default.
        steering: User-role instruction appended after every tool round.
            ``None`` disables it.
        max_turns: Maximum number of model turns per query.
    """

    def __init__(
        self,
        provider: ModelProvider,
        registry: ToolRegistry,
        dispatcher: ToolDispatcher | None = None,
        steering: str | None = DEFAULT_STEERING,
        max_turns: int = 50,
    ):
        self.provider = provider
        self.registry = registry
        self.dispatcher = dispatcher or ToolDispatcher()
        self.steering = steering
        self.max_turns = max_turns

    async def run(self, query: str, conversation: Conversation) -> LoopResult:
        """Answer *query*, mutating *conversation* in place."""
        result: LoopResult | None = None
        async for event in self.iter(query, conversation):
            if isinstance(event, RunCompleteEvent):
                result = event.result
        if result is None:
            raise RuntimeError("iter() ended without emitting RunCompleteEvent")
        return result

    async def iter(
        self, query: str, conversation: Conversation,
    ) -> AsyncIterator[StreamEvent]:
        """Streaming entry point; the last event is a RunCompleteEvent."""
        ctx = LoopContext(query=query, conversation=conversation)
        async with session_span(query, self.provider.model) as span:
            try:
                while ctx.state is not LoopState.DONE:
                    async for event in self.step(ctx):
                        yield event
            finally:
                await self._close_stream(ctx)
            if ctx.error is not None:
                record_error(span, ctx.error)

        last = conversation[-1] if len(conversation) else None
        yield RunCompleteEvent(result=LoopResult(
            answer=ctx.answer, turns=ctx.turns, error=ctx.error,
            last_message=last,
        ))

    async def step(self, ctx: LoopContext) -> AsyncIterator[StreamEvent]:
        """Run the current state and advance ``ctx.state``."""
        if ctx.state is LoopState.AWAITING_TURN:
            handler = self._await_turn
        elif ctx.state is LoopState.AGGREGATING:
            handler = self._aggregate
        elif ctx.state is LoopState.DISPATCHING:
            handler = self._dispatch
        else:
            return
        async for event in handler(ctx):
            yield event

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    async def _await_turn(self, ctx: LoopContext) -> AsyncIterator[StreamEvent]:
        if ctx.turns >= self.max_turns:
            logger.warning(f"Stopping after {ctx.turns} turns")
            ctx.staged.append(Message.assistant(MAX_TURNS_MESSAGE))
            ctx.commit()
            ctx.answer = MAX_TURNS_MESSAGE
            ctx.state = LoopState.DONE
            yield RunItemEvent(name="message", data={"content": MAX_TURNS_MESSAGE})
            return

        if ctx.turns == 0:
            ctx.staged.append(Message.user(ctx.query))

        ctx.turns += 1
        ctx.stream = self.provider.stream_complete(
            ctx.request_messages(),
            self.registry.tool_schemas() or None,
        )
        try:
            # the request is only sent once the first chunk is pulled
            ctx.first_chunk = await anext(ctx.stream)
        except StopAsyncIteration:
            ctx.first_chunk = None
        except TransportError as e:
            async for event in self._fail(ctx, e):
                yield event
            return
        except Exception as e:
            async for event in self._fail(ctx, _unexpected(e)):
                yield event
            return
        ctx.state = LoopState.AGGREGATING

    async def _aggregate(self, ctx: LoopContext) -> AsyncIterator[StreamEvent]:
        acc = TurnAccumulator()
        async with completion_span(
            self.provider.system, self.provider.model, turn=ctx.turns,
        ) as span:
            try:
                if ctx.first_chunk is not None:
                    for event in acc.feed(ctx.first_chunk):
                        yield event
                    ctx.first_chunk = None
                async for chunk in ctx.stream:
                    for event in acc.feed(chunk):
                        yield event
            except TransportError as e:
                record_error(span, e)
                async for event in self._fail(ctx, e):
                    yield event
                return
            except Exception as e:
                error = _unexpected(e)
                record_error(span, error)
                async for event in self._fail(ctx, error):
                    yield event
                return
            ctx.turn = acc.finish()
            record_usage(span, ctx.turn.usage, self.provider.model)
        ctx.stream = None
        ctx.state = LoopState.DISPATCHING

    async def _dispatch(self, ctx: LoopContext) -> AsyncIterator[StreamEvent]:
        turn = ctx.turn
        if not turn.tool_calls:
            ctx.staged.append(Message.assistant(turn.answer))
            ctx.commit()
            ctx.answer = turn.answer
            ctx.state = LoopState.DONE
            yield RunItemEvent(name="message", data={"content": turn.answer})
            return

        result = await self.dispatcher.dispatch(turn.tool_calls, self.registry)
        for outcome in result.outcomes:
            if outcome.skipped:
                yield RunItemEvent(name="tool_skipped", data={
                    "tool_name": outcome.call.name, "call_id": outcome.call.id,
                })
            else:
                yield RunItemEvent(name="tool_call", data={
                    "tool_name": outcome.call.name, "call_id": outcome.call.id,
                    "output": outcome.content, "is_error": outcome.is_error,
                })

        ctx.staged.extend(result.messages)
        if self.steering:
            ctx.staged.append(Message.user(self.steering))
        ctx.commit()
        ctx.turn = None
        ctx.state = LoopState.AWAITING_TURN

    async def _fail(self, ctx: LoopContext, error: Exception) -> AsyncIterator[StreamEvent]:
        logger.error(f"Turn {ctx.turns} aborted: {error}")
        await self._close_stream(ctx)
        ctx.staged = []
        ctx.error = error
        ctx.state = LoopState.DONE
        yield RunItemEvent(name="error", data={"message": str(error)})

    async def _close_stream(self, ctx: LoopContext) -> None:
        stream, ctx.stream = ctx.stream, None
        if stream is not None and hasattr(stream, "aclose"):
            await stream.aclose()
