"""Configuration system for identikit using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.identikit] section (project-level)
3. ./identikit.toml (project-level, explicit)
4. ~/.config/identikit/config.toml (user-level, overrides project)
5. Environment variables (highest priority)

Environment variables use IDENTIKIT_ prefix with nested delimiter __.
Example: IDENTIKIT_API__BASE_URL, IDENTIKIT_AUTH__POPUP_TIMEOUT
"""

from __future__ import annotations

import os
import sys

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomli as tomllib  # type: ignore[import-not-found]
    except ImportError:
        tomllib = None


def _user_config_dir() -> Path:
    """Return the per-user identikit configuration directory."""
    if sys.platform == "win32":
        return Path(os.environ.get("APPDATA", "~")).expanduser() / "identikit"
    return Path("~/.config/identikit").expanduser()


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    # Project-level pyproject.toml [tool.identikit] (lowest file priority)
    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    # Explicit identikit.toml (project-level)
    project_toml = Path("identikit.toml")
    if project_toml.exists():
        files.append(project_toml)

    # User-level config (overrides project configs)
    user_config = _user_config_dir() / "config.toml"
    if user_config.exists():
        files.append(user_config)

    # Environment variable override for config file (highest file priority)
    env_config = os.environ.get("IDENTIKIT_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    if tomllib is None:
        return {}

    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            content = config_file.read_text(encoding="utf-8")
            data = tomllib.loads(content)
        except (OSError, tomllib.TOMLDecodeError):
            continue  # Unreadable or invalid config files are skipped

        # Handle pyproject.toml [tool.identikit] section
        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("identikit", {})

        merged = _deep_merge(merged, data)

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class ApiSettings(BaseSettings):
    """Identity service connection settings.

    Environment prefix: IDENTIKIT_API__
    Example: IDENTIKIT_API__BASE_URL=https://api.example.com
    """

    model_config = SettingsConfigDict(
        env_prefix="IDENTIKIT_API__",
        extra="ignore",
    )

    base_url: str = Field(
        default="https://api.scum.dog",
        description="Base URL of the identity service",
    )
    timeout: float = Field(default=10.0, gt=0, description="Per-request timeout in seconds")
    user_agent: str = Field(
        default="identikit-python/1.0",
        description="User-Agent header sent with every request",
    )

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Endpoints are appended with a leading slash."""
        return v.rstrip("/")


class AuthSettings(BaseSettings):
    """Login orchestration settings.

    Environment prefix: IDENTIKIT_AUTH__
    Example: IDENTIKIT_AUTH__POPUP_TIMEOUT=120

    TOML section: [tool.identikit.auth]
    """

    model_config = SettingsConfigDict(
        env_prefix="IDENTIKIT_AUTH__",
        extra="ignore",
    )

    # Authorization URL acquisition
    max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts made to obtain an authorization URL",
    )
    retry_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Base delay in seconds between acquisition attempts",
    )
    max_retry_delay: float = Field(
        default=30.0,
        ge=0.0,
        description="Upper bound for the exponential network backoff",
    )

    # Popup orchestration
    popup_timeout: float = Field(
        default=300.0,
        gt=0,
        description="Seconds before an unfinished popup login is abandoned",
    )
    poll_interval: float = Field(
        default=2.0,
        gt=0,
        description="Seconds between status polls for polling providers",
    )
    closed_check_interval: float = Field(
        default=1.0,
        gt=0,
        description="Seconds between checks for a manually closed popup",
    )
    blocked_check_delay: float = Field(
        default=0.1,
        ge=0.0,
        description="Delay before the popup is first checked for being blocked",
    )
    message_max_age: float = Field(
        default=30.0,
        gt=0,
        description="Cross-window messages older than this (seconds) are ignored",
    )
    polling_providers: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["itchio", "google"],
        description="Providers whose completion is also polled via a poll id",
    )
    popup_width: int = Field(default=500, ge=200, description="Popup width in pixels")
    popup_height: int = Field(default=600, ge=200, description="Popup height in pixels")

    # Token lifetime
    token_max_age_days: float = Field(
        default=30.0,
        gt=0,
        description="Days a persisted session token is trusted",
    )

    @field_validator("polling_providers", mode="before")
    @classmethod
    def parse_comma_separated(cls, v: Any) -> list[str]:
        """Parse comma-separated string into list."""
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v or []

    @property
    def token_max_age_ms(self) -> float:
        """Maximum persisted-token age in epoch milliseconds."""
        return self.token_max_age_days * 24 * 60 * 60 * 1000


class StorageSettings(BaseSettings):
    """Token and session storage settings.

    Environment prefix: IDENTIKIT_STORAGE__
    Example: IDENTIKIT_STORAGE__BACKEND=keyring
    """

    model_config = SettingsConfigDict(
        env_prefix="IDENTIKIT_STORAGE__",
        extra="ignore",
    )

    backend: Literal["memory", "file", "keyring"] = Field(
        default="file",
        description="Durable storage backend for the session token",
    )
    path: str = Field(
        default_factory=lambda: str(_user_config_dir() / "storage.json"),
        description="JSON file used by the file backend",
    )
    session_backend: Literal["memory", "file"] = Field(
        default="memory",
        description="Short-lived storage for redirect recovery state",
    )
    session_path: str = Field(
        default_factory=lambda: str(_user_config_dir() / "session.json"),
        description="JSON file used by the file session backend",
    )
    keyring_service: str = Field(
        default="identikit",
        description="Service name used by the keyring backend",
    )


class LogSettings(BaseSettings):
    """Logging settings.

    Environment prefix: IDENTIKIT_LOG__
    Example: IDENTIKIT_LOG__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="IDENTIKIT_LOG__",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    format: str = "%(name)s - %(levelname)s - %(message)s"


_SECTIONS: list[tuple[str, str, str]] = [
    ("Identity Service", "api", "API"),
    ("Authentication", "auth", "AUTH"),
    ("Storage", "storage", "STORAGE"),
    ("Logging", "log", "LOG"),
]


def _format_value(value: Any, *, toml: bool) -> str:
    """Render a settings value for TOML or shell output."""
    if isinstance(value, list):
        if toml:
            return "[" + ", ".join(f'"{v}"' for v in value) + "]"
        return ",".join(str(v) for v in value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str) and toml:
        return f'"{value}"'
    return str(value)


class IdentikitSettings(BaseSettings):
    """Main settings aggregating all configuration sections.

    Environment prefix: IDENTIKIT__

    Configuration sources (in order of precedence):
    1. Built-in defaults
    2. pyproject.toml [tool.identikit] section
    3. ./identikit.toml (project-level)
    4. ~/.config/identikit/config.toml (user-level, overrides project)
    5. Environment variables (highest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="IDENTIKIT__",
        env_nested_delimiter="__",
        extra="ignore",
    )

    api: ApiSettings = Field(default_factory=ApiSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    def __init__(self, **data: Any) -> None:
        # Explicit keyword arguments take precedence over TOML files
        merged = _deep_merge(_load_toml_config(), data)
        super().__init__(**merged)

    def to_toml(self) -> str:
        """Export settings as TOML string."""
        lines = ["# identikit Configuration", "# Generated by: identikit config --toml", ""]
        all_data = self.model_dump()
        for _, section_name, _ in _SECTIONS:
            lines.append(f"[{section_name}]")
            for field_name, field_value in all_data[section_name].items():
                lines.append(f"{field_name} = {_format_value(field_value, toml=True)}")
            lines.append("")
        return "\n".join(lines)

    def to_env(self) -> str:
        """Export settings as shell environment variables."""
        lines = [
            "# identikit Environment Variables",
            "# Generated by: identikit config --env",
            "",
        ]
        all_data = self.model_dump()
        for _, section_name, env_prefix in _SECTIONS:
            for field_name, field_value in all_data[section_name].items():
                env_name = f"IDENTIKIT_{env_prefix}__{field_name.upper()}"
                lines.append(f'export {env_name}="{_format_value(field_value, toml=False)}"')
        return "\n".join(lines)

    def show(self) -> str:
        """Format settings as a readable table."""
        lines = ["identikit Configuration", "=" * 60]
        all_data = self.model_dump()
        for display_name, section_name, _ in _SECTIONS:
            lines.append(f"\n{display_name}")
            lines.append("-" * 40)
            for field_name, field_value in all_data[section_name].items():
                value_str = str(field_value)
                if len(value_str) > 50:
                    value_str = value_str[:47] + "..."
                lines.append(f"  {field_name:22} = {value_str}")
        return "\n".join(lines)


@lru_cache(maxsize=1)
def get_settings() -> IdentikitSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return IdentikitSettings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()


def reload_settings() -> IdentikitSettings:
    """Reload settings from all sources."""
    clear_settings()
    return get_settings()


def config_sources() -> list[Path]:
    """List configuration files that currently contribute settings."""
    return _find_config_files()
