"""Decides whether an inbound message is for a given persona."""

import logging
from dataclasses import dataclass
from enum import Enum

from relay_bot.config import PersonaConfig
from relay_bot.core.conversation import Conversation, Message, Role
from relay_bot.core.conversation_store import ConversationStore
from relay_bot.core.names import NameRegistry

logger = logging.getLogger(__name__)

ADDRESS_DELIMITER = ": "


@dataclass(frozen=True)
class InboundMessage:
    """A message event delivered by the transport."""

    event_id: str
    sender: str
    room_id: str
    body: str
    in_reply_to: str | None = None


class Outcome(str, Enum):
    """Classification of an inbound message for one persona."""

    IGNORED_SELF = "ignored_self"
    IGNORED_KNOWN = "ignored_known"
    APPENDED = "appended"
    STARTED_ADDRESSED = "started_addressed"
    STARTED_UNADDRESSED = "started_unaddressed"
    IGNORED_NOT_FOR_US = "ignored_not_for_us"

    @property
    def is_ignored(self) -> bool:
        return self in (Outcome.IGNORED_SELF, Outcome.IGNORED_KNOWN, Outcome.IGNORED_NOT_FOR_US)

    @property
    def starts_conversation(self) -> bool:
        return self in (Outcome.STARTED_ADDRESSED, Outcome.STARTED_UNADDRESSED)


@dataclass
class Resolution:
    """Result of resolving a message against a persona."""

    outcome: Outcome
    conversation: Conversation | None = None
    address_token: str | None = None  # lowercased, if the body carried one

    def __str__(self) -> str:
        token = f" token={self.address_token}" if self.address_token else ""
        size = f" size={len(self.conversation)}" if self.conversation is not None else ""
        return f"Resolution({self.outcome.value}{token}{size})"


def extract_address_token(body: str) -> str | None:
    """Extract the addressee from a ``"<name>: "`` prefix.

    Splits on the first ``": "``. The candidate is trimmed and lowercased;
    only single-word candidates count, so an ordinary sentence that happens
    to contain a colon is not treated as an address.

    Returns:
        The lowercased name, or None if the body is not addressed.
    """
    head, sep, _ = body.partition(ADDRESS_DELIMITER)
    if not sep:
        return None
    candidate = head.strip().lower()
    if not candidate or " " in candidate:
        return None
    return candidate


class AddressingResolver:
    """Classifies inbound messages for one persona.

    Rules, first match wins:
    1. Our own messages are ignored
    2. Event ids already in the store are ignored (duplicate delivery)
    3. Replies to a tracked message continue that conversation
    4. "<display name>: ..." starts a new conversation
    5. Anything else without an address token starts one if the persona
       answers unaddressed messages and the sender is not another of our
       personas
    6. Otherwise the message is not for us
    """

    def __init__(self, persona: PersonaConfig, name_registry: NameRegistry | None = None):
        self._persona = persona
        self._name_registry = name_registry
        self._own_name = persona.display_name.strip().lower()

    def classify(self, message: InboundMessage, store: ConversationStore) -> Resolution:
        """Classify a message without touching the store.

        For ``APPENDED`` the returned conversation is the one that would be
        continued; for the other outcomes it is None.
        """
        if message.sender == self._persona.user_id:
            return Resolution(outcome=Outcome.IGNORED_SELF)

        if message.event_id in store:
            return Resolution(outcome=Outcome.IGNORED_KNOWN)

        # Conversations never hold empty turns
        if not message.body.strip():
            return Resolution(outcome=Outcome.IGNORED_NOT_FOR_US)

        token = extract_address_token(message.body)

        # A threaded reply is never re-addressed
        if message.in_reply_to:
            parent = store.find_by_message_id(message.in_reply_to)
            if parent is not None:
                return Resolution(outcome=Outcome.APPENDED, conversation=parent, address_token=token)

        if self._persona.addressing_enabled and token == self._own_name:
            return Resolution(outcome=Outcome.STARTED_ADDRESSED, address_token=token)

        # Only reached without a tracked parent
        if (
            token is None
            and self._persona.answer_unaddressed
            and not self._from_sibling(message)
        ):
            return Resolution(outcome=Outcome.STARTED_UNADDRESSED)

        return Resolution(outcome=Outcome.IGNORED_NOT_FOR_US, address_token=token)

    def _from_sibling(self, message: InboundMessage) -> bool:
        # Another persona in this process; unaddressed posts from it are never answered
        return self._name_registry is not None and self._name_registry.is_persona(message.sender)

    def resolve(self, message: InboundMessage, store: ConversationStore) -> Resolution:
        """Classify a message and apply the resulting store mutation."""
        resolution = self.classify(message, store)

        if resolution.outcome == Outcome.APPENDED:
            assert resolution.conversation is not None
            store.append(
                resolution.conversation,
                Message(
                    role=Role.USER,
                    content=message.body,
                    id=message.event_id,
                    parent_id=message.in_reply_to,
                ),
            )
        elif resolution.outcome.starts_conversation:
            conversation = Conversation.start(
                system_prompt=self._persona.system_prompt,
                event_id=message.event_id,
                question=message.body,
            )
            store.register(conversation)
            resolution.conversation = conversation

        logger.info(
            f"CLASSIFY: [{self._persona.name}] {message.event_id} -> {resolution}"
        )
        return resolution
