"""Per-persona event handling: classify, complete, send, link."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from relay_bot.config import PersonaConfig
from relay_bot.core.addressing import AddressingResolver, InboundMessage, Outcome, Resolution
from relay_bot.core.completion import Completer
from relay_bot.core.conversation import Message, Role
from relay_bot.core.conversation_store import ConversationStore
from relay_bot.core.logging import get_session_stats, log_timing
from relay_bot.core.names import NameRegistry
from relay_bot.core.rendering import RenderedMessage, render
from relay_bot.errors import (
    CompletionFailure,
    DuplicateMessageError,
    SendFailure,
    TransportJoinFailure,
)
from relay_bot.tracing import EventTrace, TraceStore

logger = logging.getLogger(__name__)

# How often to log session stats (every N events)
STATS_LOG_INTERVAL = 50

# How much of a reply to show in log lines
LOG_PREVIEW_LENGTH = 30

# Completions slower than this are logged as warnings
SLOW_COMPLETION_MS = 20_000


class Transport(Protocol):
    """What the coordinator needs from the chat transport."""

    async def send_reply(self, room_id: str, message: RenderedMessage, in_reply_to: str) -> str:
        """Send a threaded reply and return its event id, or raise SendFailure."""
        ...

    async def join(self, room_id: str) -> None:
        """Join a room, or raise TransportJoinFailure."""
        ...


class EventState(str, Enum):
    """Where an inbound event ended up.

    RECEIVED -> IGNORED
    RECEIVED -> CLASSIFIED -> COMPLETION_REQUESTED -> COMPLETION_FAILED
                                                  -> COMPLETED -> SEND_FAILED
                                                               -> SENT -> LINKED
    """

    RECEIVED = "received"
    IGNORED = "ignored"
    CLASSIFIED = "classified"
    COMPLETION_REQUESTED = "completion_requested"
    COMPLETION_FAILED = "completion_failed"
    COMPLETED = "completed"
    SEND_FAILED = "send_failed"
    SENT = "sent"
    LINKED = "linked"


@dataclass
class EventOutcome:
    """Result of handling one inbound event."""

    state: EventState
    resolution: Resolution | None = None
    reply: str | None = None
    outbound_event_id: str | None = None
    error: Exception | None = None

    @property
    def replied(self) -> bool:
        return self.state in (EventState.SENT, EventState.LINKED)


def _preview(text: str) -> str:
    if len(text) > LOG_PREVIEW_LENGTH:
        return text[:LOG_PREVIEW_LENGTH] + "..."
    return text


class BotCoordinator:
    """Owns one persona's conversations and handles its inbound events.

    Events for one persona are handled one at a time, in delivery order, so
    the conversation store is never mutated concurrently.
    """

    def __init__(
        self,
        persona: PersonaConfig,
        completer: Completer,
        name_registry: NameRegistry,
        transport: Transport | None = None,
        trace_store: TraceStore | None = None,
        renderer: Callable[[str], RenderedMessage] = render,
    ):
        """Initialize the coordinator.

        Args:
            persona: Identity and behaviour of this persona
            completer: Completion backend
            name_registry: Registry shared between all personas
            transport: Chat transport (can be attached later)
            trace_store: Where event traces are saved (optional)
            renderer: Markdown renderer for replies
        """
        self.persona = persona
        self.store = ConversationStore(max_conversations=persona.max_conversations)
        self._resolver = AddressingResolver(persona, name_registry)
        self._completer = completer
        self._transport = transport
        self._trace_store = trace_store
        self._renderer = renderer
        self._name_registry = name_registry
        name_registry.register(persona.display_name, persona.user_id)

    def attach_transport(self, transport: Transport) -> None:
        """Attach the transport once the client for this persona exists."""
        self._transport = transport

    @property
    def name(self) -> str:
        return self.persona.name

    async def handle_invite(self, room_id: str, inviter: str) -> bool:
        """Accept a room invite if auto-join is enabled.

        Join failures are logged and swallowed; the room is simply not joined.
        """
        if not self.persona.auto_join:
            logger.info(f"[{self.name}] Ignoring invite to {room_id} from {inviter} (auto_join off)")
            return False
        if self._transport is None:
            raise RuntimeError("Not connected")

        stats = get_session_stats()
        try:
            await self._transport.join(room_id)
        except TransportJoinFailure as e:
            logger.error(f"JOIN_FAILED: [{self.name}] {room_id} (inviter {inviter}): {e.reason}")
            stats.increment("join_failures")
            return False

        logger.info(f"[{self.name}] Joined {room_id} after invite from {inviter}")
        stats.increment("rooms_joined")
        return True

    async def handle_message(self, message: InboundMessage) -> EventOutcome:
        """Run one inbound message event through the state machine."""
        logger.info(f"MSG_RECEIVED: [{self.name}] {message.room_id} <{message.sender}> {message.body}")

        stats = get_session_stats()
        stats.increment("events_received")
        if stats.events_received % STATS_LOG_INTERVAL == 0:
            logger.info(f"SESSION_STATS: {stats.summary_line()}")

        trace = EventTrace(
            persona=self.name,
            room_id=message.room_id,
            event_id=message.event_id,
            trigger_text=message.body,
        )

        outcome = EventOutcome(state=EventState.RECEIVED)
        try:
            outcome = self._classify(message, trace)
            if outcome.state == EventState.CLASSIFIED:
                outcome = await self._complete(outcome, trace)
            if outcome.state == EventState.COMPLETED:
                outcome = await self._send(message, outcome, trace)
            if outcome.state == EventState.SENT:
                outcome = self._link(message, outcome, trace)
        finally:
            # Unexpected errors still leave a trace, stuck in the last state reached
            trace.final_state = outcome.state.value
            trace.reply = outcome.reply
            if self._trace_store is not None:
                self._trace_store.save(trace)
        return outcome

    def _classify(self, message: InboundMessage, trace: EventTrace) -> EventOutcome:
        resolution = self._resolver.resolve(message, self.store)
        trace.add_step(
            stage="classify",
            inputs={
                "sender": message.sender,
                "body": message.body,
                "in_reply_to": message.in_reply_to,
            },
            outputs={
                "outcome": resolution.outcome.value,
                "address_token": resolution.address_token,
                "conversation_size": (
                    len(resolution.conversation) if resolution.conversation is not None else None
                ),
            },
            decision=resolution.outcome.value,
        )

        stats = get_session_stats()
        if resolution.outcome.is_ignored:
            stats.increment("events_ignored")
            return EventOutcome(state=EventState.IGNORED, resolution=resolution)

        if resolution.outcome == Outcome.APPENDED:
            stats.increment("conversations_continued")
        else:
            stats.increment("conversations_started")
        return EventOutcome(state=EventState.CLASSIFIED, resolution=resolution)

    async def _complete(self, outcome: EventOutcome, trace: EventTrace) -> EventOutcome:
        assert outcome.resolution is not None and outcome.resolution.conversation is not None
        conversation = outcome.resolution.conversation
        outcome.state = EventState.COMPLETION_REQUESTED

        try:
            with log_timing(logger, f"[{self.name}] Completion", slow_ms=SLOW_COMPLETION_MS):
                reply = await self._completer.complete(conversation)
        except CompletionFailure as e:
            # The user's turn stays in the conversation; nothing is sent
            logger.error(f"COMPLETION_FAILED: [{self.name}] {e}")
            get_session_stats().increment("completion_failures")
            trace.add_step(
                stage="complete",
                inputs={"messages": len(conversation)},
                outputs={"error": str(e)},
                decision="failed",
                model=self._completer.model,
            )
            outcome.state = EventState.COMPLETION_FAILED
            outcome.error = e
            return outcome

        trace.add_step(
            stage="complete",
            inputs={"messages": len(conversation)},
            outputs={"reply": reply},
            decision="ok",
            model=self._completer.model,
        )
        outcome.state = EventState.COMPLETED
        outcome.reply = reply
        return outcome

    async def _send(
        self, message: InboundMessage, outcome: EventOutcome, trace: EventTrace
    ) -> EventOutcome:
        assert outcome.reply is not None
        if self._transport is None:
            raise RuntimeError("Not connected")

        rendered = self._renderer(outcome.reply)
        try:
            outbound_id = await self._transport.send_reply(
                message.room_id, rendered, in_reply_to=message.event_id
            )
        except SendFailure as e:
            # Reply is lost and no assistant turn is recorded
            logger.error(f"SEND_FAILED: [{self.name}] {e}")
            get_session_stats().increment("send_failures")
            trace.add_step(
                stage="send",
                inputs={"room_id": message.room_id, "in_reply_to": message.event_id},
                outputs={"error": str(e)},
                decision="failed",
            )
            outcome.state = EventState.SEND_FAILED
            outcome.error = e
            return outcome

        trace.add_step(
            stage="send",
            inputs={"room_id": message.room_id, "in_reply_to": message.event_id},
            outputs={"event_id": outbound_id},
            decision="ok",
        )
        logger.info(
            f"REPLY_SENT: [{self.name}] parent={message.event_id} "
            f"id={outbound_id} content={_preview(outcome.reply)}"
        )
        get_session_stats().increment("replies_sent")
        outcome.state = EventState.SENT
        outcome.outbound_event_id = outbound_id
        return outcome

    def _link(self, message: InboundMessage, outcome: EventOutcome, trace: EventTrace) -> EventOutcome:
        assert outcome.resolution is not None and outcome.resolution.conversation is not None
        assert outcome.reply is not None and outcome.outbound_event_id is not None
        conversation = outcome.resolution.conversation

        try:
            self.store.append(
                conversation,
                Message(
                    role=Role.ASSISTANT,
                    content=outcome.reply,
                    id=outcome.outbound_event_id,
                    parent_id=message.event_id,
                ),
            )
        except (DuplicateMessageError, KeyError) as e:
            # Sent, but replies to it will not find this conversation
            logger.error(f"LINK_FAILED: [{self.name}] {outcome.outbound_event_id}: {e}")
            trace.add_step(
                stage="link",
                inputs={"event_id": outcome.outbound_event_id},
                outputs={"error": str(e)},
                decision="failed",
            )
            outcome.error = e
            return outcome

        trace.add_step(
            stage="link",
            inputs={"event_id": outcome.outbound_event_id},
            outputs={"conversation_size": len(conversation)},
            decision="ok",
        )
        outcome.state = EventState.LINKED
        return outcome
