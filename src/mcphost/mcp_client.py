"""Tool provider backed by a remote MCP server."""

import logging
from contextlib import AsyncExitStack
from typing import Any

from mcp import ClientSession
from mcp.client.sse import sse_client
from mcp.client.streamable_http import streamablehttp_client

from mcphost.errors import ProviderInvocationError, TransportError
from mcphost.tools import ToolProvider, ToolSpec

logger = logging.getLogger(__name__)


def mcp_tool_to_spec(tool) -> ToolSpec:
    """Convert an MCP ``Tool`` into a :class:`ToolSpec`.

    Extra properties are disallowed so the model cannot invent arguments.
    """
    parameters = dict(tool.inputSchema or {})
    parameters.setdefault("type", "object")
    parameters.setdefault("properties", {})
    parameters["additionalProperties"] = False
    return ToolSpec(
        name=tool.name,
        description=tool.description or "",
        parameters=parameters,
    )


def result_to_value(result) -> Any:
    """Extract the useful payload from an MCP ``CallToolResult``.

    Structured content wins when the server sends it; otherwise the text
    parts are joined with newlines.
    """
    structured = getattr(result, "structuredContent", None)
    if structured is not None:
        return structured
    parts: list[str] = []
    for item in result.content or []:
        text = getattr(item, "text", None)
        parts.append(text if text is not None else str(item))
    return "\n".join(parts)


class MCPToolProvider(ToolProvider):
    """Connects to one MCP server over HTTP.

    ``connect()`` tries the streamable HTTP transport first and falls back
    to SSE for older servers.

    Args:
        name: Server name from the configuration.
        url: Server endpoint URL.
    """

    def __init__(self, name: str, url: str):
        self.name = name
        self.url = url
        self.session: ClientSession | None = None
        self.transport: str | None = None
        self._stack: AsyncExitStack | None = None

    @property
    def is_connected(self) -> bool:
        return self.session is not None

    async def _open(self, transport: str) -> None:
        stack = AsyncExitStack()
        try:
            if transport == "streamable_http":
                read, write, _ = await stack.enter_async_context(
                    streamablehttp_client(self.url)
                )
            else:
                read, write = await stack.enter_async_context(sse_client(self.url))
            session = await stack.enter_async_context(ClientSession(read, write))
            await session.initialize()
        except BaseException:
            await stack.aclose()
            raise
        self._stack = stack
        self.session = session
        self.transport = transport

    async def connect(self) -> None:
        try:
            await self._open("streamable_http")
        except Exception as e:
            logger.info(
                f"[{self.name}] Streamable HTTP connection failed ({e}), "
                "falling back to SSE transport"
            )
            try:
                await self._open("sse")
            except Exception as sse_error:
                raise TransportError(
                    f"cannot connect to {self.name} at {self.url}: {sse_error}"
                ) from sse_error
        logger.info(f"[{self.name}] connected to server over {self.transport}")

    def _require_session(self, action: str) -> ClientSession:
        if self.session is None:
            logger.error(f"[{self.name}] cannot {action} when not connected to server")
            raise TransportError(f"{self.name} is not connected")
        return self.session

    async def list_tools(self) -> list[ToolSpec]:
        session = self._require_session("list tools")
        result = await session.list_tools()
        specs = [mcp_tool_to_spec(t) for t in result.tools]
        logger.info(f"[{self.name}] converted tool number: {len(specs)}")
        return specs

    async def invoke(self, name: str, args: dict) -> Any:
        session = self._require_session(f"call tool {name}")
        logger.info(f"[{self.name}] calling tool {name}")
        result = await session.call_tool(name, arguments=args)
        value = result_to_value(result)
        if result.isError:
            raise ProviderInvocationError(name, str(value))
        return value

    async def close(self) -> None:
        if self._stack is not None:
            await self._stack.aclose()
        self._stack = None
        self.session = None
