import json
from typing import Any

import pytest

from mcphost.provider import ModelProvider
from mcphost.registry import ToolRegistry
from mcphost.streaming import ResponseChunk, ToolCallFragment, Usage
from mcphost.tools import ToolProvider, ToolSpec


# ---------------------------------------------------------------------------
# Chunk builders (mirror what the OpenAI stream normaliser produces)
# ---------------------------------------------------------------------------

def reasoning(text: str) -> ResponseChunk:
    return ResponseChunk(reasoning_delta=text)


def answer(text: str) -> ResponseChunk:
    return ResponseChunk(content_delta=text)


def tool_open(index: int, call_id: str, name: str, args: str = "") -> ResponseChunk:
    return ResponseChunk(tool_call_fragments=[
        ToolCallFragment(index=index, call_id=call_id, name=name, arguments_delta=args)
    ])


def tool_cont(index: int, args: str) -> ResponseChunk:
    return ResponseChunk(tool_call_fragments=[
        ToolCallFragment(index=index, arguments_delta=args)
    ])


def finish_tool_calls() -> ResponseChunk:
    return ResponseChunk(finish_reason="tool_calls")


def usage_chunk(prompt: int = 10, completion: int = 5) -> ResponseChunk:
    return ResponseChunk(
        usage=Usage(prompt_tokens=prompt, completion_tokens=completion,
                    total_tokens=prompt + completion),
        has_choices=False,
    )


def split_tool_call(
    name: str, args: dict, call_id: str = "call_1", index: int = 0, parts: int = 3,
) -> list[ResponseChunk]:
    """One opening chunk followed by *parts* continuation chunks."""
    text = json.dumps(args)
    size = max(1, -(-len(text) // parts))
    pieces = [text[i:i + size] for i in range(0, len(text), size)]
    return [tool_open(index, call_id, name)] + [tool_cont(index, p) for p in pieces]


def text_turn(text: str) -> list[ResponseChunk]:
    return [answer(text), ResponseChunk(finish_reason="stop")]


async def achunks(chunks: list[ResponseChunk]):
    for chunk in chunks:
        yield chunk


# ---------------------------------------------------------------------------
# Mock model provider
# ---------------------------------------------------------------------------

class MockProvider(ModelProvider):
    """Provider that streams pre-queued turns. No network calls.

    Each queued turn is a list of chunks. An exception instead of a list
    fails the request; an exception inside a list fails mid-stream.
    """

    system = "mock"

    def __init__(self, turns: list | None = None):
        self.model = "mock-model"
        self.turns: list = list(turns or [])
        self.call_log: list[dict] = []
        self.completions: list[str] = []

    async def stream_complete(self, messages, tools=None):
        self.call_log.append({"messages": messages, "tools": tools})
        turn = self.turns.pop(0)
        if isinstance(turn, BaseException):
            raise turn
        for item in turn:
            if isinstance(item, BaseException):
                raise item
            yield item

    async def complete(self, messages):
        self.call_log.append({"messages": messages, "tools": None})
        return self.completions.pop(0)


# ---------------------------------------------------------------------------
# Recording tool provider
# ---------------------------------------------------------------------------

class RecordingToolProvider(ToolProvider):
    """Tool provider whose tools are plain values or callables.

    A callable is called with the arguments; an exception instance is
    raised. Every invocation is logged.
    """

    def __init__(self, name: str = "fake", tools: dict[str, Any] | None = None):
        self.name = name
        self.tools = tools or {}
        self.invocations: list[tuple[str, dict]] = []
        self.closed = False

    async def list_tools(self) -> list[ToolSpec]:
        return [ToolSpec(name=n, description=f"{n} tool") for n in self.tools]

    async def invoke(self, name: str, args: dict) -> Any:
        self.invocations.append((name, args))
        behaviour = self.tools[name]
        if isinstance(behaviour, BaseException):
            raise behaviour
        if callable(behaviour):
            return behaviour(**args)
        return behaviour

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def mock_provider():
    return MockProvider()


@pytest.fixture
def weather_provider():
    return RecordingToolProvider("weather", {"get_weather": {"tempC": 18}})


@pytest.fixture
def registry(weather_provider):
    reg = ToolRegistry()
    reg.register(weather_provider, [ToolSpec(name="get_weather", description="Weather")])
    return reg
