import logging
from collections.abc import AsyncIterator

from mcphost.builtin_tools import builtin_provider
from mcphost.config import HostConfig, ModelConfig
from mcphost.conversation import Conversation
from mcphost.dispatcher import ToolDispatcher
from mcphost.errors import MCPHostError, TransportError
from mcphost.events import RunCompleteEvent, StreamEvent
from mcphost.loop import LoopResult, OrchestrationLoop
from mcphost.mcp_client import MCPToolProvider
from mcphost.message import Message
from mcphost.provider import (
    DashScopeProvider,
    ModelProvider,
    OpenAICompatibleProvider,
    OpenAIProvider,
)
from mcphost.registry import ToolRegistry
from mcphost.tools import ToolProvider

logger = logging.getLogger(__name__)


def build_provider(config: ModelConfig) -> ModelProvider:
    """Instantiate the model provider named in *config*."""
    kwargs = {"model": config.model, "api_key": config.api_key()}
    if config.provider == "dashscope":
        if config.base_url:
            kwargs["base_url"] = config.base_url
        return DashScopeProvider(enable_thinking=config.enable_thinking, **kwargs)
    if config.provider == "openai":
        return OpenAIProvider(**kwargs)
    return OpenAICompatibleProvider(base_url=config.base_url, **kwargs)


class MCPHost:
    """A chat session over a set of MCP servers and built-in tools.

    Usage::

        async with MCPHost(load_config("server-config.json")) as host:
            conversation = Conversation()
            result = await host.run_turn("What's the weather?", conversation)

    Args:
        config: Servers, model and loop settings.
        provider: Model provider; built from ``config.model`` when omitted.
        extra_providers: Additional tool providers registered after the
            MCP servers and before the built-in tools.
    """

    def __init__(
        self,
        config: HostConfig,
        provider: ModelProvider | None = None,
        extra_providers: list[ToolProvider] | None = None,
    ):
        self.config = config
        self.provider = provider or build_provider(config.model)
        self.extra_providers = extra_providers or []
        self.registry = ToolRegistry()
        self.providers: list[ToolProvider] = []
        self.loop = OrchestrationLoop(
            provider=self.provider,
            registry=self.registry,
            dispatcher=ToolDispatcher(parallel=config.parallel_tool_calls),
            steering=config.steering_instruction,
            max_turns=config.max_turns,
        )

    def _server_provider(self, name: str, url: str) -> ToolProvider:
        return MCPToolProvider(name, url)

    async def connect(self) -> None:
        """Connect every configured server and build the tool registry.

        Servers that fail to connect are logged and skipped.

        Raises:
            TransportError: If no server connected and
                ``config.require_servers`` is set.
        """
        logger.info("connecting to servers...")
        connected = 0
        for name, server in self.config.servers.items():
            logger.info(f"trying to connect to server: {name} ({server.url})")
            provider = self._server_provider(name, server.url)
            try:
                await provider.connect()
                specs = await provider.list_tools()
            except Exception as e:
                logger.error(f"failed to connect to server {name}: {e}")
                await self._close_quietly(provider)
                continue
            self.providers.append(provider)
            self.registry.register(provider, specs)
            connected += 1
            logger.info(
                f"successfully connected to server {name} and got tools: "
                f"{', '.join(s.name for s in specs)}"
            )

        for provider in [*self.extra_providers, builtin_provider()]:
            specs = await provider.list_tools()
            self.providers.append(provider)
            self.registry.register(provider, specs)
            logger.info(f"{provider.name} tools: {[s.name for s in specs]}")

        if connected == 0 and self.config.require_servers:
            raise TransportError("failed to connect to any server")
        logger.info(
            f"connected to {connected} servers, {len(self.registry)} tools available"
        )

    async def iter_turn(
        self, query: str, conversation: Conversation,
    ) -> AsyncIterator[StreamEvent]:
        async for event in self.loop.iter(query, conversation):
            yield event

    async def run_turn(self, query: str, conversation: Conversation) -> LoopResult:
        """Answer *query*, appending the turn's messages to *conversation*.

        In-turn failures are reported on the returned result, never raised.
        """
        result: LoopResult | None = None
        async for event in self.iter_turn(query, conversation):
            if isinstance(event, RunCompleteEvent):
                result = event.result
        return result

    async def confirm(self, conversation: Conversation) -> str:
        """Run one non-streaming turn without tools and append the reply."""
        reply = await self.provider.complete(conversation.dump())
        conversation.append(Message.assistant(reply))
        return reply

    async def shutdown(self) -> None:
        logger.info("cleaning up connection resources...")
        for provider in self.providers:
            await self._close_quietly(provider)
        self.providers = []
        logger.info("connection resources cleaned up")

    async def _close_quietly(self, provider: ToolProvider) -> None:
        try:
            await provider.close()
        except Exception as e:
            logger.error(f"failed to close {provider.name}: {e}")

    async def __aenter__(self) -> "MCPHost":
        try:
            await self.connect()
        except MCPHostError:
            await self.shutdown()
            raise
        return self

    async def __aexit__(self, *exc) -> None:
        await self.shutdown()
