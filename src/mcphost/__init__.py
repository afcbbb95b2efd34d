from mcphost.config import HostConfig, ModelConfig, ServerConfig, load_config
from mcphost.conversation import Conversation
from mcphost.dispatcher import DispatchResult, ToolDispatcher
from mcphost.errors import (
    MalformedToolArguments,
    MCPHostError,
    ProviderInvocationError,
    TransportError,
    UnresolvedTool,
)
from mcphost.host import MCPHost
from mcphost.instrumentation import instrument, uninstrument
from mcphost.loop import LoopResult, LoopState, OrchestrationLoop
from mcphost.message import Message, MessageRole
from mcphost.registry import ToolRegistry
from mcphost.streaming import (
    AggregatedTurn,
    CompletedToolCall,
    ResponseChunk,
    ToolCallFragment,
    TurnAccumulator,
    aggregate,
)
from mcphost.tools import LocalToolProvider, Tool, ToolProvider, ToolSpec, tool

__all__ = [
    "AggregatedTurn",
    "CompletedToolCall",
    "Conversation",
    "DispatchResult",
    "HostConfig",
    "LocalToolProvider",
    "LoopResult",
    "LoopState",
    "MCPHost",
    "MCPHostError",
    "MalformedToolArguments",
    "Message",
    "MessageRole",
    "ModelConfig",
    "OrchestrationLoop",
    "ProviderInvocationError",
    "ResponseChunk",
    "ServerConfig",
    "Tool",
    "ToolCallFragment",
    "ToolDispatcher",
    "ToolProvider",
    "ToolRegistry",
    "ToolSpec",
    "TransportError",
    "TurnAccumulator",
    "UnresolvedTool",
    "aggregate",
    "instrument",
    "load_config",
    "tool",
    "uninstrument",
]
