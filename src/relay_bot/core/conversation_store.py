"""In-memory registry of active conversations, indexed by message id."""

import logging
from collections import OrderedDict
from itertools import count

from relay_bot.core.conversation import Conversation, Message
from relay_bot.errors import DuplicateMessageError

logger = logging.getLogger(__name__)


class ConversationStore:
    """Tracks the conversations of one persona.

    Conversations live in an arena keyed by a slot number; a message id index
    maps every tracked message id to its slot, so lookups are O(1). A message
    id belongs to at most one conversation.

    Nothing is removed unless ``max_conversations`` is set, in which case the
    least recently touched conversation is evicted once the bound is exceeded.
    """

    def __init__(self, max_conversations: int | None = None):
        if max_conversations is not None and max_conversations < 1:
            raise ValueError("max_conversations must be at least 1")
        self._max_conversations = max_conversations
        self._arena: OrderedDict[int, Conversation] = OrderedDict()
        self._index: dict[str, int] = {}
        self._slot_of: dict[int, int] = {}  # id(conversation) -> slot
        self._next_slot = count()

    def find_by_message_id(self, message_id: str | None) -> Conversation | None:
        """Return the conversation containing a message with this id, if any."""
        if message_id is None:
            return None
        slot = self._index.get(message_id)
        if slot is None:
            return None
        return self._arena[slot]

    def register(self, conversation: Conversation) -> None:
        """Start tracking a newly created conversation."""
        if id(conversation) in self._slot_of:
            raise ValueError("Conversation is already registered")

        ids = conversation.message_ids()
        for message_id in ids:
            if message_id in self._index:
                logger.warning(f"DUPLICATE_ID: {message_id} already tracked, rejecting conversation")
                raise DuplicateMessageError(message_id)

        slot = next(self._next_slot)
        self._arena[slot] = conversation
        self._slot_of[id(conversation)] = slot
        for message_id in ids:
            self._index[message_id] = slot

        logger.debug(f"Registered conversation slot={slot} (tracking {len(self._arena)})")
        self._evict_if_needed()

    def append(self, conversation: Conversation, message: Message) -> None:
        """Append a message to a tracked conversation and index its id."""
        slot = self._slot_of.get(id(conversation))
        if slot is None:
            raise KeyError("Conversation is not tracked by this store")

        if message.id is not None:
            owner = self._index.get(message.id)
            if owner is not None and owner != slot:
                logger.warning(f"DUPLICATE_ID: {message.id} belongs to slot={owner}, rejecting append")
                raise DuplicateMessageError(message.id)

        conversation.add(message)
        if message.id is not None:
            self._index[message.id] = slot
        self._arena.move_to_end(slot)

    def conversations(self) -> list[Conversation]:
        """Snapshot of tracked conversations, least recently touched first."""
        return list(self._arena.values())

    def _evict_if_needed(self) -> None:
        if self._max_conversations is None:
            return
        while len(self._arena) > self._max_conversations:
            slot, evicted = self._arena.popitem(last=False)
            del self._slot_of[id(evicted)]
            for message_id in evicted.message_ids():
                if self._index.get(message_id) == slot:
                    del self._index[message_id]
            logger.info(f"EVICT: conversation slot={slot} ({len(evicted)} messages)")

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._index

    def __len__(self) -> int:
        return len(self._arena)
