"""Matrix client connections, one per persona."""

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any

import aiohttp
from nio import (
    AsyncClient,
    InviteMemberEvent,
    JoinResponse,
    LoginResponse,
    MatrixRoom,
    RoomMessageText,
    RoomSendResponse,
    WhoamiResponse,
)
from nio.exceptions import LocalProtocolError

from relay_bot.config import MatrixConfig, PersonaConfig
from relay_bot.core.addressing import InboundMessage
from relay_bot.core.rendering import RenderedMessage
from relay_bot.errors import ConfigError, SendFailure, TransportJoinFailure

logger = logging.getLogger(__name__)

SYNC_TIMEOUT_MS = 30000

MessageHandler = Callable[[InboundMessage], Coroutine[Any, Any, Any]]
InviteHandler = Callable[[str, str], Coroutine[Any, Any, Any]]


def get_reply_parent(content: dict[str, Any]) -> str | None:
    """Read the ``m.in_reply_to`` event id from message content, if any."""
    relates_to = content.get("m.relates_to")
    if not isinstance(relates_to, dict):
        return None
    in_reply_to = relates_to.get("m.in_reply_to")
    if not isinstance(in_reply_to, dict):
        return None
    event_id = in_reply_to.get("event_id")
    return event_id if isinstance(event_id, str) and event_id else None


def strip_reply_fallback(body: str) -> str:
    """Remove the quoted ``> <@user> ...`` block clients prepend to replies."""
    lines = body.split("\n")
    if not lines or not lines[0].startswith("> "):
        return body
    i = 0
    while i < len(lines) and lines[i].startswith(">"):
        i += 1
    # Fallback is separated from the reply by one blank line
    if i < len(lines) and lines[i] == "":
        i += 1
    return "\n".join(lines[i:])


class PersonaClient:
    """Matrix connection for a single persona."""

    def __init__(
        self,
        persona: PersonaConfig,
        matrix_config: MatrixConfig,
        on_message: MessageHandler | None = None,
        on_invite: InviteHandler | None = None,
        client: AsyncClient | None = None,
    ):
        self.persona = persona
        self._matrix_config = matrix_config
        self._on_message = on_message
        self._on_invite = on_invite
        self._client = client or AsyncClient(matrix_config.homeserver, persona.user_id)
        self._started_at_ms = int(time.time() * 1000)

    @property
    def name(self) -> str:
        return self.persona.name

    async def login(self) -> None:
        """Authenticate with the access token if configured, else the password.

        Raises:
            ConfigError: If the credentials are rejected
        """
        if self.persona.access_token is not None:
            self._client.access_token = self.persona.access_token.get_secret_value()
            response = await self._client.whoami()
            if not isinstance(response, WhoamiResponse):
                raise ConfigError(f"[{self.name}] Access token rejected: {response}")
            if response.device_id:
                self._client.device_id = response.device_id
        else:
            assert self.persona.password is not None
            response = await self._client.login(
                self.persona.password.get_secret_value(),
                device_name=self._matrix_config.device_name,
            )
            if not isinstance(response, LoginResponse):
                raise ConfigError(f"[{self.name}] Login failed: {response}")

        logger.info(f"[{self.name}] Logged in as {self.persona.user_id}")
        self._started_at_ms = int(time.time() * 1000)
        self._client.add_event_callback(self._handle_message_event, RoomMessageText)
        self._client.add_event_callback(self._handle_invite_event, InviteMemberEvent)

    def _is_backlog(self, server_timestamp: int) -> bool:
        """Events from before we started belong to the initial sync backlog."""
        return server_timestamp < self._started_at_ms

    async def _handle_message_event(self, room: MatrixRoom, event: RoomMessageText) -> None:
        if self._is_backlog(event.server_timestamp):
            logger.debug(f"[{self.name}] Skipping backlog event {event.event_id}")
            return

        content = event.source.get("content", {})
        in_reply_to = get_reply_parent(content)
        body = strip_reply_fallback(event.body) if in_reply_to else event.body

        msg = InboundMessage(
            event_id=event.event_id,
            sender=event.sender,
            room_id=room.room_id,
            body=body,
            in_reply_to=in_reply_to,
        )
        logger.debug(f"[{self.name}] Received: {msg}")

        if self._on_message:
            try:
                await self._on_message(msg)
            except Exception:
                logger.exception(f"[{self.name}] Error handling message {event.event_id}")

    async def _handle_invite_event(self, room: MatrixRoom, event: InviteMemberEvent) -> None:
        if event.state_key != self.persona.user_id or event.membership != "invite":
            return

        logger.info(f"[{self.name}] Invited to {room.room_id} by {event.sender}")
        if self._on_invite:
            try:
                await self._on_invite(room.room_id, event.sender)
            except Exception:
                logger.exception(f"[{self.name}] Error handling invite to {room.room_id}")

    async def join(self, room_id: str) -> None:
        """Join a room.

        Raises:
            TransportJoinFailure: If the homeserver refuses or is unreachable
        """
        try:
            response = await self._client.join(room_id)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportJoinFailure(room_id, str(e)) from e
        if not isinstance(response, JoinResponse):
            raise TransportJoinFailure(room_id, getattr(response, "message", str(response)))

    async def send_reply(self, room_id: str, message: RenderedMessage, in_reply_to: str) -> str:
        """Send a rendered reply threaded to ``in_reply_to``.

        Returns:
            The event id of the sent message

        Raises:
            SendFailure: If the homeserver refuses or is unreachable
        """
        content = message.to_content(in_reply_to=in_reply_to)
        try:
            response = await self._client.room_send(
                room_id=room_id,
                message_type="m.room.message",
                content=content,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, LocalProtocolError) as e:
            raise SendFailure(room_id, str(e)) from e
        if not isinstance(response, RoomSendResponse):
            raise SendFailure(room_id, getattr(response, "message", str(response)))
        return response.event_id

    async def sync_forever(self) -> None:
        """Run the sync loop until cancelled."""
        await self._client.sync_forever(timeout=SYNC_TIMEOUT_MS, full_state=True)

    async def close(self) -> None:
        await self._client.close()


@dataclass
class MatrixClient:
    """Manages the connections of every persona."""

    config: MatrixConfig
    _clients: dict[str, PersonaClient] = field(default_factory=dict, init=False)

    def add_persona(
        self,
        persona: PersonaConfig,
        on_message: MessageHandler | None = None,
        on_invite: InviteHandler | None = None,
    ) -> PersonaClient:
        """Create the connection for a persona."""
        if persona.name in self._clients:
            raise ValueError(f"Persona already added: {persona.name}")
        client = PersonaClient(
            persona=persona,
            matrix_config=self.config,
            on_message=on_message,
            on_invite=on_invite,
        )
        self._clients[persona.name] = client
        return client

    async def connect(self) -> None:
        """Log every persona in."""
        for client in self._clients.values():
            logger.info(f"Logging in {client.name}...")
            await client.login()
        logger.info(f"{len(self._clients)} persona(s) logged in")

    async def run_forever(self) -> None:
        """Run every persona's sync loop concurrently."""
        if not self._clients:
            raise RuntimeError("No personas added")
        await asyncio.gather(*(client.sync_forever() for client in self._clients.values()))

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()

    def get(self, name: str) -> PersonaClient:
        """Get a persona's connection by persona name."""
        return self._clients[name]
