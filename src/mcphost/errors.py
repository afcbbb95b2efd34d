"""Error taxonomy for the host.

Only :class:`TransportError` ends a turn. The others are recovered inside
the turn and surfaced to the model as ordinary tool content.
"""


class MCPHostError(Exception):
    """Base class for all mcphost errors."""


class TransportError(MCPHostError):
    """The model endpoint or a tool server could not be reached."""


class MalformedToolArguments(MCPHostError):
    """A tool call's accumulated arguments are not a JSON object.

    Args:
        call_id: Id of the offending tool call.
        name: Name of the requested tool.
        raw: The concatenated argument text as received.
        reason: Why parsing failed.
    """

    def __init__(self, call_id: str, name: str, raw: str, reason: str):
        super().__init__(f"invalid arguments for {name}: {reason}")
        self.call_id = call_id
        self.name = name
        self.raw = raw
        self.reason = reason


class UnresolvedTool(MCPHostError):
    """No provider is registered for the requested tool name."""

    def __init__(self, name: str):
        super().__init__(f"no provider registered for tool '{name}'")
        self.name = name


class ProviderInvocationError(MCPHostError):
    """A provider was reachable but the tool call failed."""

    def __init__(self, name: str, message: str):
        super().__init__(f"tool call failed: {message}")
        self.name = name
