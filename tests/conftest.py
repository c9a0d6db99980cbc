"""Pytest configuration and fixtures."""

from collections.abc import Callable
from pathlib import Path

import pytest

from relay_bot.config import Config, PersonaConfig
from relay_bot.core.conversation import Conversation
from relay_bot.core.logging import reset_session_stats
from relay_bot.core.names import NameRegistry
from relay_bot.core.rendering import RenderedMessage
from relay_bot.errors import CompletionFailure, SendFailure, TransportJoinFailure


class FakeTransport:
    """In-memory stand-in for a persona's Matrix connection."""

    def __init__(self, fail_send: bool = False, fail_join: bool = False, id_prefix: str = "$out"):
        self.fail_send = fail_send
        self.id_prefix = id_prefix
        self.fail_join = fail_join
        self.sent: list[tuple[str, RenderedMessage, str]] = []
        self.joined: list[str] = []
        self._counter = 0

    async def send_reply(self, room_id: str, message: RenderedMessage, in_reply_to: str) -> str:
        if self.fail_send:
            raise SendFailure(room_id, "homeserver unreachable")
        self._counter += 1
        self.sent.append((room_id, message, in_reply_to))
        return f"{self.id_prefix}{self._counter}"

    async def join(self, room_id: str) -> None:
        if self.fail_join:
            raise TransportJoinFailure(room_id, "forbidden")
        self.joined.append(room_id)


class FakeCompleter:
    """Completion backend returning canned replies."""

    model = "fake-model"

    def __init__(self, replies: list[str] | None = None, fail: bool = False):
        self.replies = list(replies or ["4"])
        self.fail = fail
        self.calls: list[list[dict[str, str]]] = []

    async def complete(self, conversation: Conversation) -> str:
        self.calls.append(conversation.to_completion_messages())
        if self.fail:
            raise CompletionFailure("backend exploded")
        if len(self.replies) > 1:
            return self.replies.pop(0)
        return self.replies[0]


@pytest.fixture(autouse=True)
def fresh_session_stats():
    """Each test starts with zeroed session counters."""
    reset_session_stats()
    yield
    reset_session_stats()


@pytest.fixture
def make_persona() -> Callable[..., PersonaConfig]:
    """Factory for persona configs with test defaults."""

    def _make(**overrides) -> PersonaConfig:
        values = {
            "name": "bot",
            "user_id": "@bot:example.org",
            "display_name": "Bot",
            "access_token": "token",
            "system_prompt": "prompt",
        }
        values.update(overrides)
        return PersonaConfig(**values)

    return _make


@pytest.fixture
def persona(make_persona) -> PersonaConfig:
    """A persona that only answers when addressed."""
    return make_persona()


@pytest.fixture
def name_registry() -> NameRegistry:
    return NameRegistry()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def completer() -> FakeCompleter:
    return FakeCompleter()


@pytest.fixture
def default_config() -> Config:
    """Provide a default configuration for testing."""
    return Config()


@pytest.fixture
def temp_config_file(tmp_path: Path) -> Path:
    """Create a temporary config file."""
    config_content = """
matrix:
  homeserver: "https://matrix.test"

llm:
  provider: anthropic
  anthropic_api_key: "test-key"
  max_tokens: 256

personas:
  - name: alice
    user_id: "@alice:matrix.test"
    display_name: Alice
    access_token: "alice-token"
  - name: bob
    user_id: "@bob:matrix.test"
    display_name: Bob
    password: "bob-password"
    answer_unaddressed: true
    system_prompt: "You are Bob."

tracing:
  enabled: false
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)
    return config_path
