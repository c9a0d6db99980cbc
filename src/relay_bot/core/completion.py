"""Completion backends: conversation in, reply text out."""

import logging
from typing import Protocol

import anthropic
from google import genai
from google.genai import types

from relay_bot.config import LLMConfig
from relay_bot.core.conversation import Conversation, Role
from relay_bot.core.logging import (
    get_session_stats,
    log_completion_reply,
    log_completion_request,
    log_completion_round,
)
from relay_bot.errors import CompletionFailure, ConfigError

logger = logging.getLogger(__name__)

DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-5-20250929"
DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"


class Completer(Protocol):
    """Anything that can turn a conversation into a reply."""

    model: str

    async def complete(self, conversation: Conversation) -> str:
        """Return the reply text, or raise CompletionFailure."""
        ...


class AnthropicCompleter:
    """Completes conversations with Claude."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_ANTHROPIC_MODEL,
        max_tokens: int = 1024,
        timeout_seconds: float = 60.0,
    ):
        """Initialize the completer.

        Args:
            api_key: Anthropic API key
            model: Claude model to use
            max_tokens: Output token limit per reply
            timeout_seconds: Request timeout; the core never retries
        """
        self._client = anthropic.AsyncAnthropic(
            api_key=api_key,
            timeout=timeout_seconds,
            max_retries=0,
        )
        self.model = model
        self._max_tokens = max_tokens

    async def complete(self, conversation: Conversation) -> str:
        system_prompt = conversation.system_prompt
        messages = [
            m for m in conversation.to_completion_messages() if m["role"] != Role.SYSTEM.value
        ]

        log_completion_request("anthropic", self.model, conversation)

        try:
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=self._max_tokens,
                system=system_prompt if system_prompt else anthropic.NOT_GIVEN,
                messages=messages,
            )
        except anthropic.APIError as e:
            raise CompletionFailure(f"Anthropic request failed: {e}") from e

        get_session_stats().increment_api_call(self.model)
        log_completion_round(
            backend="anthropic",
            model=self.model,
            tokens_in=response.usage.input_tokens,
            tokens_out=response.usage.output_tokens,
            stop_reason=response.stop_reason,
        )

        # Truncated output is discarded rather than sent half-finished
        if response.stop_reason == "max_tokens":
            raise CompletionFailure(f"{self.model} hit max_tokens ({self._max_tokens})")

        text = "".join(block.text for block in response.content if block.type == "text").strip()
        log_completion_reply("anthropic", self.model, text, detail=response.stop_reason)
        if not text:
            raise CompletionFailure(f"{self.model} returned an empty reply")
        return text


class GeminiCompleter:
    """Completes conversations with Gemini."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_GEMINI_MODEL,
        max_tokens: int = 1024,
        timeout_seconds: float = 60.0,
    ):
        self._client = genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=int(timeout_seconds * 1000)),
        )
        self.model = model
        self._max_tokens = max_tokens

    @staticmethod
    def _to_contents(conversation: Conversation) -> list[types.Content]:
        """Map turns to Gemini contents; assistant turns use the "model" role."""
        contents = []
        for message in conversation.messages:
            if message.role == Role.SYSTEM:
                continue
            role = "model" if message.role == Role.ASSISTANT else "user"
            contents.append(
                types.Content(role=role, parts=[types.Part.from_text(text=message.content)])
            )
        return contents

    async def complete(self, conversation: Conversation) -> str:
        system_prompt = conversation.system_prompt

        log_completion_request("gemini", self.model, conversation)

        try:
            response = await self._client.aio.models.generate_content(
                model=self.model,
                contents=self._to_contents(conversation),
                config=types.GenerateContentConfig(
                    system_instruction=system_prompt,
                    max_output_tokens=self._max_tokens,
                ),
            )
        except Exception as e:
            raise CompletionFailure(f"Gemini request failed: {e}") from e

        get_session_stats().increment_api_call(self.model)
        usage = response.usage_metadata
        log_completion_round(
            backend="gemini",
            model=self.model,
            tokens_in=usage.prompt_token_count if usage else None,
            tokens_out=usage.candidates_token_count if usage else None,
        )

        text = (response.text or "").strip()
        log_completion_reply(
            "gemini", self.model, text, detail=getattr(response, "prompt_feedback", None)
        )
        if not text:
            raise CompletionFailure(f"{self.model} returned an empty reply")
        return text


def create_completer(config: LLMConfig) -> Completer:
    """Build the configured completion backend.

    Raises:
        ConfigError: If the selected provider has no API key
    """
    if config.provider == "anthropic":
        if not config.anthropic_api_key:
            raise ConfigError("ANTHROPIC_API_KEY must be set for the anthropic provider")
        return AnthropicCompleter(
            api_key=config.anthropic_api_key.get_secret_value(),
            model=config.model or DEFAULT_ANTHROPIC_MODEL,
            max_tokens=config.max_tokens,
            timeout_seconds=config.timeout_seconds,
        )

    if not config.google_api_key:
        raise ConfigError("GOOGLE_API_KEY must be set for the gemini provider")
    return GeminiCompleter(
        api_key=config.google_api_key.get_secret_value(),
        model=config.model or DEFAULT_GEMINI_MODEL,
        max_tokens=config.max_tokens,
        timeout_seconds=config.timeout_seconds,
    )
