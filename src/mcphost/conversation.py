from pydantic import BaseModel, Field, SerializeAsAny

from mcphost.message import Message


class Conversation(BaseModel):
    """Ordered message log sent to the model on every turn.

    The log only grows. The orchestration loop commits a whole turn at a
    time through :meth:`extend`, so a failed or cancelled turn leaves it
    untouched.
    """

    messages: list[SerializeAsAny[Message]] = Field(default_factory=list)

    def append(self, message: Message) -> None:
        self.messages.append(message)

    def extend(self, messages: list[Message]) -> None:
        self.messages.extend(messages)

    def dump(self) -> list[dict]:
        """Messages in the wire shape expected by chat-completion APIs."""
        return [m.model_dump() for m in self.messages]

    def __len__(self) -> int:
        return len(self.messages)

    def __getitem__(self, index):
        return self.messages[index]
