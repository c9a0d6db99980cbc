"""Shared registry of persona names and user ids."""

import logging
from threading import Lock

logger = logging.getLogger(__name__)


class NameRegistry:
    """Thread-safe set of the personas known to this process.

    One instance is shared by reference between all personas. Each persona
    registers its display name and Matrix user id once at startup; reads
    happen on every catch-all decision.
    """

    def __init__(self) -> None:
        self._names: set[str] = set()
        self._user_ids: set[str] = set()
        self._lock = Lock()

    def register(self, display_name: str, user_id: str | None = None) -> bool:
        """Add a display name (case-insensitive) and optionally its user id.

        Returns False if the display name was already known.
        """
        key = display_name.strip().lower()
        with self._lock:
            if user_id is not None:
                self._user_ids.add(user_id)
            if key in self._names:
                logger.warning(f"Display name {display_name!r} is registered twice")
                return False
            self._names.add(key)
            return True

    def is_known(self, name: str) -> bool:
        """Check whether a name belongs to one of our personas."""
        with self._lock:
            return name.strip().lower() in self._names

    def is_persona(self, user_id: str) -> bool:
        """Check whether a Matrix user id belongs to one of our personas."""
        with self._lock:
            return user_id in self._user_ids

    def names(self) -> list[str]:
        """Sorted snapshot of registered names (lowercased)."""
        with self._lock:
            return sorted(self._names)

    def __len__(self) -> int:
        with self._lock:
            return len(self._names)
