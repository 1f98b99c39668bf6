"""Settings for the authgraph engine, loaded from the environment."""

from __future__ import annotations

import json
from collections.abc import Callable
from functools import lru_cache
from typing import Annotated, Any, Literal, TypeVar

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

ALLOWED_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
ALLOWED_LOG_FORMATS = frozenset({"console", "json"})

RuleRemovalPolicy = Literal["delete_items", "detach"]

T = TypeVar("T")


def authgraph_settings_config() -> SettingsConfigDict:
    """Return the standard ``BaseSettings`` config dict."""

    return SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="AUTHGRAPH_",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
        str_strip_whitespace=True,
    )


def create_settings_accessors(
    settings_type: type[T],
) -> tuple[Callable[[], T], Callable[[], T]]:
    """Create ``get_settings`` and ``reload_settings`` helpers for a settings class."""

    @lru_cache(maxsize=1)
    def _build() -> T:
        return settings_type()

    def get_settings() -> T:
        return _build()

    def reload_settings() -> T:
        _build.cache_clear()
        return _build()

    return get_settings, reload_settings


def normalize_log_format(value: str, *, env_var: str = "AUTHGRAPH_LOG_FORMAT") -> str:
    normalized = value.strip().lower()
    if normalized not in ALLOWED_LOG_FORMATS:
        allowed = ", ".join(sorted(ALLOWED_LOG_FORMATS))
        raise ValueError(f"{env_var} must be one of: {allowed}.")
    return normalized


def normalize_log_level(value: str, *, env_var: str = "AUTHGRAPH_LOG_LEVEL") -> str:
    normalized = value.strip().upper()
    if normalized not in ALLOWED_LOG_LEVELS:
        allowed = ", ".join(sorted(ALLOWED_LOG_LEVELS))
        raise ValueError(f"{env_var} must be one of: {allowed}.")
    return normalized


def _split_names(value: Any) -> list[str]:
    """Accept a JSON array, a comma/whitespace separated string, or a sequence."""

    if value is None:
        return []
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return []
        if raw.startswith("["):
            try:
                decoded = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise ValueError("AUTHGRAPH_DEFAULT_ROLES is not a valid JSON array.") from exc
            return _split_names(decoded)
        parts = raw.replace(",", " ").split()
        return list(dict.fromkeys(parts))
    if isinstance(value, (list, tuple, set, frozenset)):
        names = [str(item).strip() for item in value]
        return list(dict.fromkeys(name for name in names if name))
    raise ValueError("AUTHGRAPH_DEFAULT_ROLES must be a list of role names.")


class Settings(BaseSettings):
    """Engine configuration loaded from ``AUTHGRAPH_*`` environment variables."""

    model_config = authgraph_settings_config()

    database_url: str = Field(
        default="sqlite:///./var/authgraph.sqlite",
        description="SQLAlchemy database URL.",
    )
    database_echo: bool = Field(default=False, description="Enable SQLAlchemy engine echo.")

    god_id: str | None = Field(
        default=None,
        description="User id for which every access check succeeds. Unset disables the bypass.",
    )
    default_roles: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Roles implicitly granted to every user (comma list or JSON array).",
    )
    rule_removal: RuleRemovalPolicy = Field(
        default="delete_items",
        description="What removing a rule does to items that reference it.",
    )

    log_level: str = Field(default="INFO", description="Root log level.")
    log_format: str = Field(default="console", description="Log output format (console or json).")

    @field_validator("god_id", mode="before")
    @classmethod
    def _normalize_god_id(cls, value: object) -> object:
        if value is None:
            return None
        candidate = str(value).strip()
        return candidate or None

    @field_validator("default_roles", mode="before")
    @classmethod
    def _parse_default_roles(cls, value: object) -> list[str]:
        return _split_names(value)

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> str:
        return normalize_log_level(str(value))

    @field_validator("log_format", mode="before")
    @classmethod
    def _normalize_log_format(cls, value: object) -> str:
        return normalize_log_format(str(value))


get_settings, reload_settings = create_settings_accessors(Settings)


__all__ = [
    "ALLOWED_LOG_FORMATS",
    "ALLOWED_LOG_LEVELS",
    "RuleRemovalPolicy",
    "Settings",
    "authgraph_settings_config",
    "create_settings_accessors",
    "get_settings",
    "normalize_log_format",
    "normalize_log_level",
    "reload_settings",
]
