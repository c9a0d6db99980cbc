"""Core bot logic."""

from .addressing import AddressingResolver, InboundMessage, Outcome, Resolution, extract_address_token
from .completion import AnthropicCompleter, Completer, GeminiCompleter, create_completer
from .conversation import Conversation, Message, Role
from .conversation_store import ConversationStore
from .coordinator import BotCoordinator, EventOutcome, EventState, Transport
from .names import NameRegistry
from .rendering import RenderedMessage, render

__all__ = [
    "AddressingResolver",
    "AnthropicCompleter",
    "BotCoordinator",
    "Completer",
    "Conversation",
    "ConversationStore",
    "EventOutcome",
    "EventState",
    "GeminiCompleter",
    "InboundMessage",
    "Message",
    "NameRegistry",
    "Outcome",
    "RenderedMessage",
    "Resolution",
    "Role",
    "Transport",
    "create_completer",
    "extract_address_token",
    "render",
]
