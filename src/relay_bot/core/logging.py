"""Logging utilities for relay-bot."""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, fields
from threading import Lock
from typing import Any, Generator

from relay_bot.core.conversation import Conversation

# When set, full completion transcripts go to the ai_debug logger
_ai_debug: bool = False
_ai_debug_lock = Lock()

_ai_logger = logging.getLogger("relay_bot.ai_debug")
_llm_logger = logging.getLogger("relay_bot.llm")

RULE = "=" * 80


def set_ai_debug(enabled: bool) -> None:
    """Enable or disable transcript logging of completion calls."""
    global _ai_debug
    with _ai_debug_lock:
        _ai_debug = enabled


def is_ai_debug() -> bool:
    with _ai_debug_lock:
        return _ai_debug


def log_completion_request(backend: str, model: str, conversation: Conversation) -> None:
    """Dump the conversation about to be sent to a backend (AI debug only).

    Each turn is printed as ``[role] content``, tagged with its event id when
    it has one, so a transcript can be matched against room history.
    """
    if not is_ai_debug():
        return

    lines = [RULE, f"COMPLETION REQUEST: {backend} model={model} turns={len(conversation)}", RULE]
    for message in conversation.messages:
        tag = f" {message.id}" if message.id else ""
        lines.append(f"[{message.role.value}{tag}] {message.content}")
    _ai_logger.info("\n".join(lines))


def log_completion_reply(backend: str, model: str, text: str | None, detail: Any = None) -> None:
    """Dump a backend's reply (AI debug only).

    ``detail`` is printed when there is no usable text, to show why.
    """
    if not is_ai_debug():
        return

    lines = [f"COMPLETION REPLY: {backend} model={model}"]
    if text:
        lines.append(text)
    elif detail is not None:
        lines.append(f"(no text) {detail}")
    lines.append(RULE)
    _ai_logger.info("\n".join(lines))


def log_completion_round(
    backend: str,
    model: str,
    tokens_in: int | None,
    tokens_out: int | None,
    stop_reason: str | None = None,
) -> None:
    """One-line summary of every completion call (always on)."""
    stop = f" stop={stop_reason}" if stop_reason else ""
    _llm_logger.info(
        f"LLM_ROUND [{backend}] model={model} in={tokens_in or '?'} out={tokens_out or '?'}{stop}"
    )


@dataclass
class SessionStats:
    """Process-wide event counters, shared by every persona.

    Only the int fields are counters; ``increment`` rejects anything else.
    """

    events_received: int = 0
    events_ignored: int = 0
    conversations_started: int = 0
    conversations_continued: int = 0
    replies_sent: int = 0
    completion_failures: int = 0
    send_failures: int = 0
    join_failures: int = 0
    rooms_joined: int = 0
    api_calls: dict[str, int] = field(default_factory=dict)
    _lock: Lock = field(default_factory=Lock, repr=False)

    def increment(self, counter: str, amount: int = 1) -> None:
        if counter not in _COUNTERS:
            raise ValueError(f"Unknown counter: {counter}")
        with self._lock:
            setattr(self, counter, getattr(self, counter) + amount)

    def increment_api_call(self, model: str) -> None:
        with self._lock:
            self.api_calls[model] = self.api_calls.get(model, 0) + 1

    def summary(self) -> dict[str, Any]:
        """Counters grouped for the debug API."""
        with self._lock:
            handled = self.conversations_started + self.conversations_continued
            return {
                "received": self.events_received,
                "ignored": self.events_ignored,
                "started": self.conversations_started,
                "continued": self.conversations_continued,
                "replied": self.replies_sent,
                "reply_rate": f"{100 * self.replies_sent / max(1, handled):.0f}%",
                "rooms_joined": self.rooms_joined,
                "failures": {
                    "completion": self.completion_failures,
                    "send": self.send_failures,
                    "join": self.join_failures,
                },
                "api_calls": dict(self.api_calls),
            }

    def summary_line(self) -> str:
        with self._lock:
            failed = self.completion_failures + self.send_failures + self.join_failures
            return (
                f"received={self.events_received} ignored={self.events_ignored} "
                f"started={self.conversations_started} continued={self.conversations_continued} "
                f"replied={self.replies_sent} failed={failed}"
            )


_COUNTERS = frozenset(f.name for f in fields(SessionStats) if f.type is int or f.type == "int")

_session_stats = SessionStats()
_stats_lock = Lock()


def get_session_stats() -> SessionStats:
    with _stats_lock:
        return _session_stats


def reset_session_stats() -> None:
    """Start counting from zero (tests, or a restarted session)."""
    global _session_stats
    with _stats_lock:
        _session_stats = SessionStats()


@contextmanager
def log_timing(
    logger: logging.Logger, operation: str, slow_ms: float | None = None
) -> Generator[None, None, None]:
    """Time the wrapped block.

    Logs at DEBUG, or at WARNING when ``slow_ms`` is given and exceeded:

        with log_timing(logger, "[alice] Completion", slow_ms=20_000):
            reply = await completer.complete(conversation)
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        if slow_ms is not None and elapsed_ms > slow_ms:
            logger.warning(f"SLOW: {operation} took {elapsed_ms:.0f}ms")
        else:
            logger.debug(f"{operation} completed in {elapsed_ms:.2f}ms")
