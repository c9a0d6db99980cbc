"""Configuration loading and validation."""

from pathlib import Path
from typing import Annotated, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from relay_bot.errors import ConfigError

DEFAULT_SYSTEM_PROMPT = (
    "You are a chatbot that helps people by responding to their questions with short messages."
)


class MatrixConfig(BaseModel):
    """Matrix homeserver connection configuration."""

    homeserver: str = "https://matrix.org"
    device_name: str = "relay-bot"


class PersonaConfig(BaseModel):
    """Identity and behaviour of one bot persona. Immutable once loaded."""

    model_config = ConfigDict(frozen=True)

    name: str
    user_id: str
    display_name: str
    access_token: SecretStr | None = None
    password: SecretStr | None = None
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    addressing_enabled: bool = True
    answer_unaddressed: bool = False
    auto_join: bool = True
    max_conversations: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _check_credentials(self) -> "PersonaConfig":
        if self.access_token is None and self.password is None:
            raise ValueError(f"persona {self.name!r} needs an access_token or a password")
        if not self.display_name.strip():
            raise ValueError(f"persona {self.name!r} has an empty display_name")
        return self


class LLMConfig(BaseModel):
    """Completion backend configuration."""

    provider: Literal["anthropic", "gemini"] = "anthropic"
    anthropic_api_key: SecretStr | None = None
    google_api_key: SecretStr | None = None
    model: str | None = None  # None picks the provider default
    max_tokens: Annotated[int, Field(ge=1)] = 1024
    timeout_seconds: Annotated[float, Field(gt=0)] = 60.0


class TracingConfig(BaseModel):
    """Per-event trace storage."""

    enabled: bool = True
    db_path: Path = Path("./data/traces.db")
    keep_last: Annotated[int, Field(ge=1)] = 500


class DebugConfig(BaseModel):
    """Read-only debug API."""

    enabled: bool = False
    host: str = "127.0.0.1"
    port: Annotated[int, Field(ge=1, le=65535)] = 8080


class Config(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    matrix: MatrixConfig = Field(default_factory=MatrixConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    personas: list[PersonaConfig] = Field(default_factory=list)
    tracing: TracingConfig = Field(default_factory=TracingConfig)
    debug: DebugConfig = Field(default_factory=DebugConfig)

    @model_validator(mode="after")
    def _check_unique_personas(self) -> "Config":
        names = [p.name for p in self.personas]
        if len(names) != len(set(names)):
            raise ValueError("persona names must be unique")
        user_ids = [p.user_id for p in self.personas]
        if len(user_ids) != len(set(user_ids)):
            raise ValueError("persona user_ids must be unique")
        return self


def load_config(config_path: Path | str | None = None) -> Config:
    """Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
    1. YAML config file
    2. Environment variables (RELAY_* prefix)
    3. Default values

    API keys missing from both are filled in later by ``load_api_keys_from_env``.

    Args:
        config_path: Path to YAML config file. If None, tries ./config.yaml

    Returns:
        Validated configuration object

    Raises:
        ConfigError: If the file cannot be parsed or validation fails
    """
    if config_path is None:
        config_path = Path("config.yaml")
    else:
        config_path = Path(config_path)

    yaml_config: dict = {}
    if config_path.exists():
        try:
            with open(config_path) as f:
                yaml_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse {config_path}: {e}") from e

    if not isinstance(yaml_config, dict):
        raise ConfigError(f"{config_path} must contain a mapping at the top level")

    # "llm:" with no values parses as None
    yaml_config = {k: v for k, v in yaml_config.items() if v is not None}

    try:
        return Config(**yaml_config)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def get_display_names(config: Config) -> list[str]:
    """Display names of every configured persona."""
    return [p.display_name for p in config.personas]
