import logging
import os
from collections.abc import AsyncIterator

from openai import APIError, AsyncOpenAI

from mcphost.errors import TransportError
from mcphost.streaming import ResponseChunk, ToolCallFragment, Usage

logger = logging.getLogger(__name__)

DASHSCOPE_BASE_URL = "https://dashscope.aliyuncs.com/compatible-mode/v1"


def _usage(raw) -> Usage | None:
    if raw is None:
        return None
    return Usage(
        prompt_tokens=getattr(raw, "prompt_tokens", None),
        completion_tokens=getattr(raw, "completion_tokens", None),
        total_tokens=getattr(raw, "total_tokens", None),
    )


def normalize_chunk(chunk) -> ResponseChunk:
    """Convert an OpenAI ``ChatCompletionChunk`` into a :class:`ResponseChunk`.

    ``reasoning_content`` is not part of the OpenAI schema; thinking models
    served through compatible endpoints send it as an extra delta field.
    """
    usage = _usage(getattr(chunk, "usage", None))
    if not chunk.choices:
        return ResponseChunk(usage=usage, has_choices=False)

    choice = chunk.choices[0]
    delta = choice.delta
    if delta is None:
        return ResponseChunk(finish_reason=choice.finish_reason, usage=usage)

    fragments = None
    if delta.tool_calls:
        fragments = [
            ToolCallFragment(
                index=tc.index,
                call_id=tc.id,
                name=tc.function.name if tc.function else None,
                arguments_delta=tc.function.arguments if tc.function else None,
            )
            for tc in delta.tool_calls
        ]
    return ResponseChunk(
        reasoning_delta=getattr(delta, "reasoning_content", None),
        content_delta=delta.content,
        tool_call_fragments=fragments,
        finish_reason=choice.finish_reason,
        usage=usage,
    )


class ModelProvider:
    """Base class for streaming chat-completion endpoints."""

    system = "unknown"
    model = ""

    async def stream_complete(
            self,
            messages: list[dict],
            tools: list[dict] | None = None,
    ) -> AsyncIterator[ResponseChunk]:
        """Stream one model turn as normalised chunks.

        Raises:
            TransportError: If the endpoint cannot be reached, either when
                the request is made or while the stream is read.
        """
        raise NotImplementedError
        yield  # pragma: no cover

    async def complete(self, messages: list[dict]) -> str:
        """Non-streaming completion without tools; returns the reply text."""
        raise NotImplementedError


class OpenAICompatibleProvider(ModelProvider):
    """Any endpoint that speaks the OpenAI chat-completions protocol.

    Args:
        model: Model name sent with every request.
        base_url: Endpoint root, e.g. ``http://localhost:11434/v1``.
        api_key: API key; ``"DUMMY"`` when omitted, for local servers.
        extra_body: Extra request fields the endpoint understands.
    """

    system = "openai_compatible"

    def __init__(
        self,
        model: str,
        base_url: str | None = None,
        api_key: str | None = None,
        extra_body: dict | None = None,
        max_retries: int = 5,
        timeout: float = 600.0,
    ):
        self.model = model
        self.base_url = base_url.rstrip("/") if base_url else None
        self.extra_body = extra_body or {}
        self.client = AsyncOpenAI(
            base_url=self.base_url,
            api_key=api_key or "DUMMY",
            max_retries=max_retries,
            timeout=timeout,
        )

    def _request_kwargs(self, messages, tools) -> dict:
        kwargs = dict(
            model=self.model,
            messages=messages,
            stream=True,
            stream_options={"include_usage": True},
        )
        if tools:
            kwargs["tools"] = tools
            kwargs["parallel_tool_calls"] = True
        if self.extra_body:
            kwargs["extra_body"] = self.extra_body
        return kwargs

    async def stream_complete(
            self,
            messages: list[dict],
            tools: list[dict] | None = None,
    ) -> AsyncIterator[ResponseChunk]:
        try:
            stream = await self.client.chat.completions.create(
                **self._request_kwargs(messages, tools)
            )
        except APIError as e:
            logger.error(f"Model request to {self.model} failed: {e}")
            raise TransportError(f"model request failed: {e}") from e

        try:
            async for chunk in stream:
                yield normalize_chunk(chunk)
        except APIError as e:
            logger.error(f"Model stream from {self.model} broke: {e}")
            raise TransportError(f"model stream failed: {e}") from e

    async def complete(self, messages: list[dict]) -> str:
        kwargs = dict(model=self.model, messages=messages)
        extra_body = self._complete_extra_body()
        if extra_body:
            kwargs["extra_body"] = extra_body
        try:
            response = await self.client.chat.completions.create(**kwargs)
        except APIError as e:
            logger.error(f"Model request to {self.model} failed: {e}")
            raise TransportError(f"model request failed: {e}") from e
        return response.choices[0].message.content or ""

    def _complete_extra_body(self) -> dict:
        return self.extra_body


class OpenAIProvider(OpenAICompatibleProvider):

    system = "openai"

    def __init__(self, model: str = "gpt-4o", api_key: str | None = None, **kwargs):
        if not api_key:
            api_key = os.getenv("OPENAI_API_KEY")
        super().__init__(model=model, api_key=api_key, **kwargs)


class DashScopeProvider(OpenAICompatibleProvider):
    """Qwen models through DashScope's OpenAI-compatible mode.

    Thinking is enabled by default, so turns stream ``reasoning_content``
    before the answer.
    """

    system = "dashscope"

    def __init__(
        self,
        model: str = "qwen3-235b-a22b",
        api_key: str | None = None,
        enable_thinking: bool = True,
        base_url: str = DASHSCOPE_BASE_URL,
        **kwargs,
    ):
        if not api_key:
            api_key = os.getenv("DASHSCOPE_API_KEY")
        if not api_key:
            raise ValueError("DASHSCOPE_API_KEY is not set")
        extra_body = {"enable_thinking": enable_thinking}
        extra_body.update(kwargs.pop("extra_body", None) or {})
        super().__init__(
            model=model, base_url=base_url, api_key=api_key,
            extra_body=extra_body, **kwargs,
        )

    def _complete_extra_body(self) -> dict:
        # non-streaming calls reject enable_thinking=True
        return {**self.extra_body, "enable_thinking": False}
