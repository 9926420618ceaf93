"""
Agent Configuration.

Settings are read from environment variables (and an optional `.env` file),
or from a YAML file with the environment filling in whatever it leaves out.
Configuration is read-only once the agent has started.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import AliasChoices, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError

AGENT_VERSION = "1.1.0"

DEFAULT_API_URL = "http://localhost:3001"
DEFAULT_REPORT_INTERVAL = 60
DEFAULT_SERVER_NAME = "Unknown Server"

REQUIRED_MESSAGE = "SERVER_ID and API_TOKEN environment variables are required"


@dataclass(frozen=True)
class AgentIdentity:
    """Who this agent is, as presented to the control server."""
    server_id: str
    api_token: str
    agent_version: str


class AgentConfig(BaseSettings):
    """Agent settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
        populate_by_name=True,
        frozen=True,
    )

    # Identity
    server_id: str = Field(min_length=1)
    api_token: str = Field(min_length=1)
    server_name: str = DEFAULT_SERVER_NAME

    # Control server
    api_url: str = DEFAULT_API_URL
    report_interval: int = Field(
        default=DEFAULT_REPORT_INTERVAL,
        gt=0,
        validation_alias=AliasChoices("INTERVAL", "interval", "report_interval"),
    )

    # External site probe
    site_url: str = ""

    # Self-update target, resolved from the running process when unset
    executable_path: Optional[Path] = None

    # Logging
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @field_validator("report_interval", mode="before")
    @classmethod
    def _parse_interval(cls, value: Any) -> Any:
        # Unparsable values fall back to the default rather than failing startup
        try:
            return int(value)
        except (TypeError, ValueError):
            return DEFAULT_REPORT_INTERVAL

    @field_validator("api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @classmethod
    def from_yaml(cls, path: str) -> "AgentConfig":
        """Load configuration from YAML file."""
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"{path}: expected a mapping at the top level")
        return cls(**data)

    def identity(self, version: str = AGENT_VERSION) -> AgentIdentity:
        """Build the immutable identity presented to the control server."""
        return AgentIdentity(
            server_id=self.server_id,
            api_token=self.api_token,
            agent_version=version,
        )


def load_config(path: Optional[str] = None) -> AgentConfig:
    """
    Load and validate the agent configuration.

    Raises ConfigError when required settings are missing or invalid; the
    caller is expected to treat that as fatal.
    """
    try:
        if path:
            return AgentConfig.from_yaml(path)
        return AgentConfig()
    except ValidationError as e:
        fields = {str(err["loc"][0]) for err in e.errors() if err["loc"]}
        if fields & {"server_id", "api_token"}:
            raise ConfigError(REQUIRED_MESSAGE) from e
        raise ConfigError(f"invalid configuration: {e}") from e
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e
