"""Tests for conversation sessions."""

import pytest

from relay_bot.core.conversation import Conversation, Message, Role


class TestConversationStart:
    """Tests for starting a conversation."""

    def test_start_seeds_system_and_question(self):
        """A new conversation holds the system prompt and the question."""
        conv = Conversation.start("prompt", "$1", "Bot: question")
        assert len(conv) == 2
        assert conv.messages[0] == Message(role=Role.SYSTEM, content="prompt")
        assert conv.messages[1].role == Role.USER
        assert conv.messages[1].content == "Bot: question"
        assert conv.messages[1].id == "$1"

    def test_system_prompt_property(self):
        """The system prompt is exposed separately."""
        conv = Conversation.start("prompt", "$1", "question")
        assert conv.system_prompt == "prompt"
        assert Conversation().system_prompt is None


class TestConversationContains:
    """Tests for message id membership."""

    @pytest.mark.parametrize(
        ("messages", "expected"),
        [
            ([], False),
            ([Message(role=Role.USER, content="content", id="other")], False),
            ([Message(role=Role.USER, content="content", id="id")], True),
        ],
        ids=["empty", "not contains", "contains"],
    )
    def test_contains(self, messages, expected):
        """Membership is by exact message id."""
        conv = Conversation(messages=list(messages))
        assert conv.contains("id") is expected

    def test_system_prompt_has_no_id(self):
        """The id-less system prompt never matches a lookup."""
        conv = Conversation.start("prompt", "$1", "question")
        assert conv.contains(None) is False
        assert conv.message_ids() == ["$1"]


class TestConversationAdd:
    """Tests for appending turns."""

    def test_add_appends_in_order(self):
        """Turns are kept in append order."""
        conv = Conversation.start("prompt", "$1", "question")
        conv.add(Message(role=Role.ASSISTANT, content="answer", id="$2", parent_id="$1"))
        conv.add(Message(role=Role.USER, content="follow-up", id="$3", parent_id="$2"))
        assert [m.id for m in conv.messages] == [None, "$1", "$2", "$3"]
        assert conv.last.content == "follow-up"

    def test_add_rejects_empty_content(self):
        """Empty turns are never stored."""
        conv = Conversation.start("prompt", "$1", "question")
        with pytest.raises(ValueError):
            conv.add(Message(role=Role.USER, content="", id="$2"))
        assert len(conv) == 2

    def test_add_rejects_whitespace_content(self):
        """Whitespace-only turns are never stored."""
        conv = Conversation.start("prompt", "$1", "question")
        with pytest.raises(ValueError):
            conv.add(Message(role=Role.USER, content="   \n ", id="$2"))
        assert len(conv) == 2

    def test_messages_are_immutable(self):
        """Messages cannot be edited once created."""
        msg = Message(role=Role.USER, content="hi", id="$1")
        with pytest.raises(AttributeError):
            msg.content = "changed"  # type: ignore[misc]


class TestCompletionMessages:
    """Tests for the completion view of a conversation."""

    def test_roles_and_order(self):
        """Every turn maps to a role/content pair, system prompt first."""
        conv = Conversation.start("prompt", "$1", "Bot: what is 2+2?")
        conv.add(Message(role=Role.ASSISTANT, content="4", id="$2", parent_id="$1"))
        assert conv.to_completion_messages() == [
            {"role": "system", "content": "prompt"},
            {"role": "user", "content": "Bot: what is 2+2?"},
            {"role": "assistant", "content": "4"},
        ]
