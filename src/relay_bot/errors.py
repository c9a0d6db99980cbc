"""Error kinds raised across the relay bot."""


class RelayBotError(Exception):
    """Base class for relay bot errors."""


class ConfigError(RelayBotError):
    """Startup configuration is missing or invalid. Fatal."""


class TransportJoinFailure(RelayBotError):
    """Accepting a room invite failed."""

    def __init__(self, room_id: str, reason: str):
        super().__init__(f"Failed to join {room_id}: {reason}")
        self.room_id = room_id
        self.reason = reason


class CompletionFailure(RelayBotError):
    """The completion backend returned an error or an unusable reply."""


class SendFailure(RelayBotError):
    """Delivering an outbound message failed."""

    def __init__(self, room_id: str, reason: str):
        super().__init__(f"Failed to send to {room_id}: {reason}")
        self.room_id = room_id
        self.reason = reason


class DuplicateMessageError(RelayBotError):
    """A message id would belong to two different conversations."""

    def __init__(self, message_id: str):
        super().__init__(f"Message {message_id} is already tracked by another conversation")
        self.message_id = message_id
