from unittest.mock import AsyncMock

import httpx
import pytest
from openai import APIConnectionError
from openai.types.chat import ChatCompletion, ChatCompletionChunk

from mcphost.errors import TransportError
from mcphost.provider import (
    DASHSCOPE_BASE_URL,
    DashScopeProvider,
    OpenAICompatibleProvider,
    OpenAIProvider,
    normalize_chunk,
)


# ---------------------------------------------------------------------------
# Fake OpenAI stream objects
# ---------------------------------------------------------------------------

def make_chunk(delta=None, finish_reason=None, usage=None, choices=True):
    data = {
        "id": "chunk", "object": "chat.completion.chunk",
        "created": 0, "model": "m", "choices": [],
    }
    if choices:
        data["choices"] = [{
            "index": 0, "delta": delta or {}, "finish_reason": finish_reason,
        }]
    if usage is not None:
        data["usage"] = usage
    return ChatCompletionChunk.model_validate(data)


def make_completion(content):
    return ChatCompletion.model_validate({
        "id": "c", "object": "chat.completion", "created": 0, "model": "m",
        "choices": [{
            "index": 0, "finish_reason": "stop",
            "message": {"role": "assistant", "content": content},
        }],
    })


async def fake_stream(chunks):
    for chunk in chunks:
        yield chunk


def connection_error():
    return APIConnectionError(request=httpx.Request("POST", "http://model.test"))


# ---------------------------------------------------------------------------
# normalize_chunk
# ---------------------------------------------------------------------------

class TestNormalizeChunk:
    def test_answer_delta(self):
        chunk = normalize_chunk(make_chunk({"content": "hi"}))
        assert chunk.content_delta == "hi"
        assert chunk.reasoning_delta is None
        assert chunk.has_choices

    def test_reasoning_content_extra_field(self):
        chunk = normalize_chunk(make_chunk({"reasoning_content": "hmm", "content": None}))
        assert chunk.reasoning_delta == "hmm"
        assert chunk.content_delta is None

    def test_tool_call_fragments(self):
        chunk = normalize_chunk(make_chunk({"tool_calls": [{
            "index": 0, "id": "call_1", "type": "function",
            "function": {"name": "get_weather", "arguments": ""},
        }]}))
        frag = chunk.tool_call_fragments[0]
        assert frag.index == 0
        assert frag.call_id == "call_1"
        assert frag.name == "get_weather"
        assert frag.arguments_delta == ""

    def test_continuation_fragment_has_no_name(self):
        chunk = normalize_chunk(make_chunk({"tool_calls": [{
            "index": 0, "function": {"arguments": '{"city"'},
        }]}))
        frag = chunk.tool_call_fragments[0]
        assert frag.name is None
        assert frag.call_id is None
        assert frag.arguments_delta == '{"city"'

    def test_finish_reason_comes_from_choice(self):
        chunk = normalize_chunk(make_chunk({}, finish_reason="tool_calls"))
        assert chunk.finish_reason == "tool_calls"

    def test_usage_only_chunk(self):
        chunk = normalize_chunk(make_chunk(
            choices=False,
            usage={"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15},
        ))
        assert not chunk.has_choices
        assert chunk.usage.prompt_tokens == 12
        assert chunk.usage.total_tokens == 15


# ---------------------------------------------------------------------------
# stream_complete / complete
# ---------------------------------------------------------------------------

class TestOpenAICompatibleProvider:
    def test_strips_trailing_slash(self):
        p = OpenAICompatibleProvider(model="m", base_url="http://localhost:11434/v1/")
        assert p.base_url == "http://localhost:11434/v1"

    def test_defaults_api_key_to_dummy(self):
        p = OpenAICompatibleProvider(model="m", base_url="http://localhost/v1")
        assert p.client.api_key == "DUMMY"

    @pytest.mark.asyncio
    async def test_stream_request_with_tools(self, monkeypatch):
        provider = OpenAICompatibleProvider(model="m", base_url="http://localhost/v1")
        mock_create = AsyncMock(return_value=fake_stream([
            make_chunk({"content": "Sun"}), make_chunk({"content": "ny"}),
        ]))
        monkeypatch.setattr(provider.client.chat.completions, "create", mock_create)

        messages = [{"role": "user", "content": "hi"}]
        tools = [{"type": "function", "function": {"name": "f"}}]
        chunks = [c async for c in provider.stream_complete(messages, tools)]

        assert [c.content_delta for c in chunks] == ["Sun", "ny"]
        mock_create.assert_called_once_with(
            model="m", messages=messages, stream=True,
            stream_options={"include_usage": True},
            tools=tools, parallel_tool_calls=True,
        )

    @pytest.mark.asyncio
    async def test_stream_request_without_tools(self, monkeypatch):
        provider = OpenAICompatibleProvider(model="m", base_url="http://localhost/v1")
        mock_create = AsyncMock(return_value=fake_stream([]))
        monkeypatch.setattr(provider.client.chat.completions, "create", mock_create)

        _ = [c async for c in provider.stream_complete([], None)]

        _, kwargs = mock_create.call_args
        assert "tools" not in kwargs
        assert "parallel_tool_calls" not in kwargs

    @pytest.mark.asyncio
    async def test_request_failure_is_transport_error(self, monkeypatch):
        provider = OpenAICompatibleProvider(model="m", base_url="http://localhost/v1")
        monkeypatch.setattr(
            provider.client.chat.completions, "create",
            AsyncMock(side_effect=connection_error()),
        )

        with pytest.raises(TransportError):
            _ = [c async for c in provider.stream_complete([], None)]

    @pytest.mark.asyncio
    async def test_mid_stream_failure_is_transport_error(self, monkeypatch):
        async def broken():
            yield make_chunk({"content": "partial"})
            raise connection_error()

        provider = OpenAICompatibleProvider(model="m", base_url="http://localhost/v1")
        monkeypatch.setattr(
            provider.client.chat.completions, "create",
            AsyncMock(return_value=broken()),
        )

        received = []
        with pytest.raises(TransportError):
            async for chunk in provider.stream_complete([], None):
                received.append(chunk)
        assert [c.content_delta for c in received] == ["partial"]

    @pytest.mark.asyncio
    async def test_complete_returns_text(self, monkeypatch):
        provider = OpenAICompatibleProvider(model="m", base_url="http://localhost/v1")
        mock_create = AsyncMock(return_value=make_completion("Done."))
        monkeypatch.setattr(provider.client.chat.completions, "create", mock_create)

        assert await provider.complete([{"role": "user", "content": "ok?"}]) == "Done."
        _, kwargs = mock_create.call_args
        assert "tools" not in kwargs
        assert "stream" not in kwargs


class TestNamedProviders:
    def test_openai_provider_reads_env(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-from-env")
        p = OpenAIProvider()
        assert p.client.api_key == "sk-from-env"

    def test_dashscope_defaults(self, monkeypatch):
        monkeypatch.setenv("DASHSCOPE_API_KEY", "ds-key")
        p = DashScopeProvider()
        assert p.model == "qwen3-235b-a22b"
        assert p.base_url == DASHSCOPE_BASE_URL
        assert p.extra_body == {"enable_thinking": True}
        assert p.client.api_key == "ds-key"

    def test_dashscope_requires_key(self, monkeypatch):
        monkeypatch.delenv("DASHSCOPE_API_KEY", raising=False)
        with pytest.raises(ValueError, match="DASHSCOPE_API_KEY"):
            DashScopeProvider()

    @pytest.mark.asyncio
    async def test_dashscope_complete_disables_thinking(self, monkeypatch):
        p = DashScopeProvider(api_key="k")
        mock_create = AsyncMock(return_value=make_completion("ok"))
        monkeypatch.setattr(p.client.chat.completions, "create", mock_create)

        await p.complete([])

        _, kwargs = mock_create.call_args
        assert kwargs["extra_body"] == {"enable_thinking": False}
        assert p.extra_body == {"enable_thinking": True}
