"""Conversation messages and their chat-completions wire shape."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, field_serializer


class MessageRole(Enum):
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    TOOL = "tool"


class Message(BaseModel):
    """One entry of the conversation log. Messages never change once made."""

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str

    @field_serializer("role")
    def serialize_role(self, role: MessageRole) -> str:
        return role.value

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role=MessageRole.ASSISTANT, content=content)


def tool_call_wire(call) -> dict:
    """A completed tool call as it appears in an assistant message."""
    return {
        "id": call.id,
        "type": "function",
        "function": {"name": call.name, "arguments": call.arguments_json()},
    }


class ToolCallRequestMessage(Message):
    """Assistant record of every tool call issued in one turn.

    ``tool_calls`` holds :class:`~mcphost.streaming.CompletedToolCall`
    objects, including calls that were malformed or unresolved.
    """

    role: MessageRole = MessageRole.ASSISTANT
    content: str = ""
    tool_calls: list

    @field_serializer("tool_calls")
    def serialize_tool_calls(self, tool_calls: list) -> list[dict]:
        return [tool_call_wire(c) for c in tool_calls]


class ToolCallResultMessage(Message):
    role: MessageRole = MessageRole.TOOL
    tool_call_id: str
