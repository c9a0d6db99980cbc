"""Debug server and observability tools."""

from relay_bot.debug.server import create_app

__all__ = ["create_app"]
