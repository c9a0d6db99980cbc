"""Tests for the in-memory conversation store."""

import pytest

from relay_bot.core.conversation import Conversation, Message, Role
from relay_bot.core.conversation_store import ConversationStore
from relay_bot.errors import DuplicateMessageError


def _reply(event_id: str, parent_id: str, content: str = "reply") -> Message:
    return Message(role=Role.USER, content=content, id=event_id, parent_id=parent_id)


class TestLookup:
    """Tests for finding conversations by message id."""

    def test_empty_store(self):
        """An empty store finds nothing."""
        store = ConversationStore()
        assert store.find_by_message_id("$1") is None
        assert len(store) == 0

    def test_find_registered(self):
        """A registered conversation is found by its seed id."""
        store = ConversationStore()
        conv = Conversation.start("prompt", "$1", "question")
        store.register(conv)
        assert store.find_by_message_id("$1") is conv
        assert "$1" in store
        assert len(store) == 1

    def test_none_never_matches(self):
        """The system prompt's missing id is not a lookup key."""
        store = ConversationStore()
        store.register(Conversation.start("prompt", "$1", "question"))
        assert store.find_by_message_id(None) is None

    def test_find_appended(self):
        """Appended message ids resolve to their conversation."""
        store = ConversationStore()
        first = Conversation.start("prompt", "$1", "question")
        second = Conversation.start("prompt", "$2", "other question")
        store.register(first)
        store.register(second)

        store.append(first, _reply("$3", "$1"))

        assert store.find_by_message_id("$3") is first
        assert store.find_by_message_id("$2") is second
        assert len(first) == 3


class TestIntegrity:
    """Tests for the one-conversation-per-id rule."""

    def test_register_twice_rejected(self):
        """The same conversation cannot be registered twice."""
        store = ConversationStore()
        conv = Conversation.start("prompt", "$1", "question")
        store.register(conv)
        with pytest.raises(ValueError):
            store.register(conv)

    def test_register_duplicate_id_rejected(self):
        """A new conversation may not reuse a tracked id."""
        store = ConversationStore()
        store.register(Conversation.start("prompt", "$1", "question"))
        with pytest.raises(DuplicateMessageError) as exc_info:
            store.register(Conversation.start("prompt", "$1", "question again"))
        assert exc_info.value.message_id == "$1"
        assert len(store) == 1

    def test_append_id_from_other_conversation_rejected(self):
        """Appending an id owned by another conversation is rejected."""
        store = ConversationStore()
        first = Conversation.start("prompt", "$1", "question")
        second = Conversation.start("prompt", "$2", "question")
        store.register(first)
        store.register(second)

        with pytest.raises(DuplicateMessageError):
            store.append(second, _reply("$1", "$2"))
        assert len(second) == 2
        assert store.find_by_message_id("$1") is first

    def test_append_untracked_rejected(self):
        """Only tracked conversations can be appended to."""
        store = ConversationStore()
        with pytest.raises(KeyError):
            store.append(Conversation.start("prompt", "$1", "q"), _reply("$2", "$1"))

    def test_append_empty_content_not_indexed(self):
        """A rejected empty turn leaves no index entry behind."""
        store = ConversationStore()
        conv = Conversation.start("prompt", "$1", "question")
        store.register(conv)
        with pytest.raises(ValueError):
            store.append(conv, _reply("$2", "$1", content=""))
        assert "$2" not in store


class TestEviction:
    """Tests for the optional conversation bound."""

    def test_unbounded_by_default(self):
        """Without a bound nothing is ever evicted."""
        store = ConversationStore()
        for i in range(100):
            store.register(Conversation.start("prompt", f"${i}", "question"))
        assert len(store) == 100
        assert "$0" in store

    def test_invalid_bound(self):
        """The bound must allow at least one conversation."""
        with pytest.raises(ValueError):
            ConversationStore(max_conversations=0)

    def test_oldest_evicted(self):
        """The least recently touched conversation goes first."""
        store = ConversationStore(max_conversations=2)
        first = Conversation.start("prompt", "$1", "question")
        store.register(first)
        store.append(first, _reply("$1b", "$1"))
        store.register(Conversation.start("prompt", "$2", "question"))
        store.register(Conversation.start("prompt", "$3", "question"))

        assert len(store) == 2
        assert store.find_by_message_id("$1") is None
        assert "$1b" not in store
        assert "$2" in store
        assert "$3" in store

    def test_append_refreshes(self):
        """Appending to a conversation protects it from eviction."""
        store = ConversationStore(max_conversations=2)
        first = Conversation.start("prompt", "$1", "question")
        store.register(first)
        store.register(Conversation.start("prompt", "$2", "question"))
        store.append(first, _reply("$1b", "$1"))
        store.register(Conversation.start("prompt", "$3", "question"))

        assert store.find_by_message_id("$1") is first
        assert "$2" not in store
        assert store.conversations()[-1].message_ids() == ["$3"]
