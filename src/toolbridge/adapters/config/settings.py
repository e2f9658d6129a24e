"""Configuration management using Pydantic Settings."""

import json
from functools import cached_property
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """HTTP server configuration."""

    model_config = SettingsConfigDict(
        env_prefix="TOOLBRIDGE_SERVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = Field(
        default="127.0.0.1",
        description="Server bind address",
    )

    port: int = Field(
        default=8080,
        ge=1024,
        le=65535,
        description="Server port",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    cors_origins: str = Field(
        default="http://localhost:3000",
        description=(
            "Comma-separated list of allowed CORS origins "
            "(* for all, not recommended for production)"
        ),
    )


class UpstreamSettings(BaseSettings):
    """Upstream completion service (OpenAI-compatible) configuration."""

    model_config = SettingsConfigDict(
        env_prefix="TOOLBRIDGE_UPSTREAM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    base_url: str = Field(
        default="http://localhost:11434/v1",
        description="Base URL of the upstream API (the part before /chat/completions)",
    )

    api_key: SecretStr = Field(
        default=SecretStr(""),
        description="Bearer token sent to the upstream, empty to send none",
    )

    request_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        le=3600,
        description="Timeout for a single upstream HTTP request",
    )

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base_url so paths can be appended with a leading slash."""
        return v.rstrip("/")


def _parse_patterns(raw: str) -> list[str]:
    raw = raw.strip()
    if not raw:
        return []
    if raw.startswith("["):
        try:
            items = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"excluded_file_patterns is not valid JSON: {e}") from e
    else:
        items = raw.split(",")
    return [str(item).strip() for item in items if str(item).strip()]


class BridgeSettings(BaseSettings):
    """Tool-call bridging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="TOOLBRIDGE_BRIDGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    excluded_file_patterns: str = Field(
        default="",
        description=(
            "File-name patterns whose fenced blocks are stripped from prompts "
            '(comma-separated, or a JSON list such as ["secrets", ".env"])'
        ),
    )

    tool_call_timeout_seconds: float | None = Field(
        default=300.0,
        gt=0,
        description="Idle timeout for a pending tool call (unset to disable)",
    )

    bridge_server_name: str = Field(
        default="xcode-bridge",
        min_length=1,
        description="MCP server name upstream agents see for bridged tools",
    )

    @field_validator("excluded_file_patterns")
    @classmethod
    def validate_excluded_file_patterns(cls, v: str) -> str:
        """Reject malformed pattern lists at startup rather than per request."""
        _parse_patterns(v)
        return v

    @cached_property
    def excluded_patterns(self) -> list[str]:
        """Parsed excluded_file_patterns, blanks dropped."""
        return _parse_patterns(self.excluded_file_patterns)


class Settings(BaseSettings):
    """Root settings container.

    Aggregates all subsettings into a single object.

    Example:
        >>> settings = Settings()
        >>> settings.server.port
        8080
        >>> settings.bridge.bridge_server_name
        'xcode-bridge'
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    server: ServerSettings = Field(default_factory=ServerSettings)
    upstream: UpstreamSettings = Field(default_factory=UpstreamSettings)
    bridge: BridgeSettings = Field(default_factory=BridgeSettings)


# Singleton instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create settings singleton.

    Loads configuration from environment variables and .env file.

    Returns:
        Settings instance.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Reload settings (for testing).

    Forces reload of configuration from environment.

    Returns:
        Fresh Settings instance.
    """
    global _settings
    _settings = Settings()
    return _settings
