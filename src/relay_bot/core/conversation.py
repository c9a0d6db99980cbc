"""Conversation sessions: the ordered message history of one exchange."""

from dataclasses import dataclass, field
from enum import Enum


class Role(str, Enum):
    """Author role of a conversation message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    """A single turn in a conversation.

    ``id`` is the transport event id (inbound event, or the echo id of our own
    outbound reply). The synthetic system prompt has no id.
    """

    role: Role
    content: str
    id: str | None = None
    parent_id: str | None = None


@dataclass
class Conversation:
    """Ordered message history handed to the completion backend.

    The first message is always the system prompt. Messages are only ever
    appended, never reordered or removed.
    """

    messages: list[Message] = field(default_factory=list)

    @classmethod
    def start(cls, system_prompt: str, event_id: str, question: str) -> "Conversation":
        """Create a conversation seeded with the system prompt and one user turn."""
        conv = cls(messages=[Message(role=Role.SYSTEM, content=system_prompt)])
        conv.add(Message(role=Role.USER, content=question, id=event_id))
        return conv

    def add(self, message: Message) -> None:
        """Append a turn to the end of the history."""
        if not message.content.strip():
            raise ValueError("Conversation messages must have content")
        self.messages.append(message)

    def contains(self, message_id: str | None) -> bool:
        """Check whether a message with this id is part of the conversation."""
        if message_id is None:
            return False
        return any(m.id == message_id for m in self.messages)

    def message_ids(self) -> list[str]:
        """Ids of all messages that have one, in order."""
        return [m.id for m in self.messages if m.id is not None]

    def to_completion_messages(self) -> list[dict[str, str]]:
        """Map every stored message to a role/content pair, in append order."""
        return [{"role": m.role.value, "content": m.content} for m in self.messages]

    @property
    def system_prompt(self) -> str | None:
        if self.messages and self.messages[0].role == Role.SYSTEM:
            return self.messages[0].content
        return None

    @property
    def last(self) -> Message | None:
        return self.messages[-1] if self.messages else None

    def __len__(self) -> int:
        return len(self.messages)
