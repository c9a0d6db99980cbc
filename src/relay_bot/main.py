"""Main entry point for relay-bot."""

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv
from pydantic import SecretStr

from relay_bot.config import Config, load_config
from relay_bot.core.completion import create_completer
from relay_bot.core.logging import set_ai_debug
from relay_bot.errors import ConfigError
from relay_bot.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

# LLMConfig field -> environment variables checked in order
API_KEY_ENV_VARS: dict[str, tuple[str, ...]] = {
    "anthropic_api_key": ("ANTHROPIC_API_KEY",),
    "google_api_key": ("GOOGLE_API_KEY", "GEMINI_API_KEY"),
}

QUIET_LOGGERS = ("nio", "aiohttp", "httpx", "httpcore", "anthropic", "google_genai")


def setup_logging(debug: bool = False) -> None:
    """Configure logging for the application."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def load_api_keys_from_env(config: Config) -> Config:
    """Fill provider API keys the config file left empty from the usual env vars."""
    for field_name, env_vars in API_KEY_ENV_VARS.items():
        if getattr(config.llm, field_name):
            continue
        value = next((os.environ[v] for v in env_vars if os.environ.get(v)), None)
        if value:
            setattr(config.llm, field_name, SecretStr(value))
    return config


def describe_config(config: Config) -> list[str]:
    """Human-readable startup summary, one line per item."""
    lines = [
        f"Homeserver: {config.matrix.homeserver}",
        f"Completion: {config.llm.provider} ({config.llm.model or 'default model'})",
    ]
    for persona in config.personas:
        mode = "addressed + unaddressed" if persona.answer_unaddressed else "addressed only"
        if not persona.addressing_enabled:
            mode = "unaddressed only" if persona.answer_unaddressed else "replies only"
        lines.append(f"Persona {persona.name}: {persona.user_id} as {persona.display_name!r} ({mode})")
    return lines


def check_runnable(config: Config) -> None:
    """Raise ConfigError for problems that would stop the bot at startup."""
    if not config.personas:
        raise ConfigError("At least one persona must be configured")
    create_completer(config.llm)


async def async_main(config: Config) -> None:
    """Run the bot until the sync loops stop."""
    orchestrator = Orchestrator(config)
    await orchestrator.start()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Relay-Bot: Matrix chat relay to a language model",
    )
    parser.add_argument(
        "-c", "--config",
        default=os.environ.get("RELAY_CONFIG"),
        help="Path to config file (default: $RELAY_CONFIG or config.yaml)",
    )
    parser.add_argument(
        "-d", "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--debug-ai",
        action="store_true",
        help="Log every conversation sent to the completion backend",
    )
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Validate the configuration, print a summary and exit",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point (sync wrapper)."""
    load_dotenv()
    args = build_parser().parse_args(argv)
    setup_logging(args.debug)

    if args.debug_ai:
        set_ai_debug(True)
        logger.info("AI debug logging enabled - every completion transcript will be logged")

    try:
        config = load_api_keys_from_env(load_config(args.config))
        for line in describe_config(config):
            logger.info(line)
        if args.check_config:
            check_runnable(config)
            logger.info("Configuration OK")
            return
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    logger.info("Starting Relay-Bot...")
    try:
        asyncio.run(async_main(config))
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
