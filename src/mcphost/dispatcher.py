import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from mcphost.errors import ProviderInvocationError, UnresolvedTool
from mcphost.instrumentation import record_error, tool_span
from mcphost.message import ToolCallRequestMessage, ToolCallResultMessage
from mcphost.registry import ToolRegistry
from mcphost.streaming import CompletedToolCall

logger = logging.getLogger(__name__)


@dataclass
class ToolOutcome:
    """What happened to a single tool call.

    ``skipped`` calls had no registered provider and produced no message.
    """

    call: CompletedToolCall
    content: str | None = None
    is_error: bool = False
    skipped: bool = False


@dataclass
class DispatchResult:
    assistant_record: ToolCallRequestMessage
    tool_messages: list[ToolCallResultMessage] = field(default_factory=list)
    outcomes: list[ToolOutcome] = field(default_factory=list)

    @property
    def messages(self) -> list:
        """Assistant record followed by the tool results, ready to append."""
        return [self.assistant_record, *self.tool_messages]


def error_payload(message: str) -> str:
    return json.dumps({"error": message}, ensure_ascii=False)


def serialize_result(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, ensure_ascii=False, default=str)


class ToolDispatcher:
    """Runs the completed tool calls of one turn.

    Every failure is contained to its own call: malformed arguments and
    provider errors become ``{"error": ...}`` results, unknown tools are
    skipped with a warning. Results always come back in call order.

    Args:
        parallel: Invoke resolvable calls concurrently. Result order is
            unchanged.
    """

    def __init__(self, parallel: bool = False):
        self.parallel = parallel

    async def dispatch(
        self, calls: list[CompletedToolCall], registry: ToolRegistry,
    ) -> DispatchResult:
        if self.parallel and len(calls) > 1:
            outcomes = list(await asyncio.gather(
                *(self._dispatch_one(c, registry) for c in calls)
            ))
        else:
            outcomes = []
            for call in calls:
                outcomes.append(await self._dispatch_one(call, registry))

        tool_messages = [
            ToolCallResultMessage(content=o.content, tool_call_id=o.call.id)
            for o in outcomes
            if not o.skipped
        ]
        return DispatchResult(
            assistant_record=ToolCallRequestMessage(tool_calls=list(calls)),
            tool_messages=tool_messages,
            outcomes=outcomes,
        )

    async def _dispatch_one(
        self, call: CompletedToolCall, registry: ToolRegistry,
    ) -> ToolOutcome:
        if call.error is not None:
            logger.warning(f"Not calling {call.name}: {call.error}")
            return ToolOutcome(
                call=call, content=error_payload(str(call.error)), is_error=True,
            )

        provider = registry.resolve(call.name)
        if provider is None:
            logger.warning(str(UnresolvedTool(call.name)))
            return ToolOutcome(call=call, skipped=True)

        logger.info(f"Calling tool {call.name} on {provider.name}")
        logger.info(f"Parameters: {json.dumps(call.args, ensure_ascii=False)}")
        async with tool_span(call.name, call.id, server=provider.name) as span:
            try:
                result = await provider.invoke(call.name, call.args)
            except ProviderInvocationError as e:
                logger.error(f"Tool {call.name} failed: {e}")
                record_error(span, e)
                return ToolOutcome(
                    call=call, content=error_payload(str(e)), is_error=True,
                )
            except Exception as e:
                err = ProviderInvocationError(call.name, str(e) or type(e).__name__)
                logger.error(f"Tool {call.name} raised: {e!r}")
                record_error(span, err)
                return ToolOutcome(
                    call=call, content=error_payload(str(err)), is_error=True,
                )

        return ToolOutcome(call=call, content=serialize_result(result))
