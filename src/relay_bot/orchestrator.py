"""Main orchestrator tying all components together."""

import asyncio
import logging

import uvicorn

from relay_bot.config import Config
from relay_bot.core import BotCoordinator, Completer, NameRegistry, create_completer
from relay_bot.core.logging import get_session_stats
from relay_bot.debug.server import create_app
from relay_bot.errors import ConfigError
from relay_bot.matrix.client import MatrixClient
from relay_bot.tracing import TraceStore

logger = logging.getLogger(__name__)


class Orchestrator:
    """Builds one coordinator per persona and runs their connections."""

    def __init__(
        self,
        config: Config,
        completer: Completer | None = None,
        matrix: MatrixClient | None = None,
    ):
        """Initialize the orchestrator with all components.

        Args:
            config: Application configuration
            completer: Completion backend (built from config if omitted)
            matrix: Matrix connection manager (built from config if omitted)

        Raises:
            ConfigError: If no personas are configured or an API key is missing
        """
        if not config.personas:
            raise ConfigError("At least one persona must be configured")

        self._config = config
        self._completer = completer or create_completer(config.llm)
        self._names = NameRegistry()

        self._trace_store: TraceStore | None = None
        if config.tracing.enabled:
            self._trace_store = TraceStore(config.tracing.db_path)
            self._trace_store.prune(keep_last=config.tracing.keep_last)

        self._matrix = matrix or MatrixClient(config.matrix)
        self._coordinators: list[BotCoordinator] = []
        for persona in config.personas:
            coordinator = BotCoordinator(
                persona=persona,
                completer=self._completer,
                name_registry=self._names,
                trace_store=self._trace_store,
            )
            client = self._matrix.add_persona(
                persona,
                on_message=coordinator.handle_message,
                on_invite=coordinator.handle_invite,
            )
            coordinator.attach_transport(client)
            self._coordinators.append(coordinator)

        logger.info(
            f"Orchestrator initialized with {len(self._coordinators)} persona(s): "
            f"{', '.join(c.persona.display_name for c in self._coordinators)}"
        )

    @property
    def coordinators(self) -> list[BotCoordinator]:
        return list(self._coordinators)

    @property
    def name_registry(self) -> NameRegistry:
        return self._names

    async def start(self) -> None:
        """Start the debug server (if enabled) and run every persona."""
        if self._config.debug.enabled:
            app = create_app(
                coordinators=self._coordinators,
                trace_store=self._trace_store,
                name_registry=self._names,
            )
            server_config = uvicorn.Config(
                app,
                host=self._config.debug.host,
                port=self._config.debug.port,
                log_level="warning",
            )
            server = uvicorn.Server(server_config)
            asyncio.create_task(server.serve())
            logger.info(
                f"Debug server started on http://{self._config.debug.host}:{self._config.debug.port}"
            )

        logger.info("Connecting to Matrix...")
        await self._matrix.connect()
        logger.info("Connected! Syncing forever...")
        try:
            await self._matrix.run_forever()
        finally:
            logger.info(f"SESSION_STATS: {get_session_stats().summary_line()}")
            await self._matrix.close()
            if self._trace_store is not None:
                self._trace_store.close()
