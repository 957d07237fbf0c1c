from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from .integrations import ReadeckConfig

if TYPE_CHECKING:
    from pydantic.fields import FieldInfo

logger = logging.getLogger(__name__)


class RuntimeConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    vault_path: str = Field(default=".", validation_alias="VAULT_PATH")
    state_file: str = Field(
        default=".readeck-sync.json",
        validation_alias=AliasChoices("STATE_FILE", "READECK_STATE_FILE"),
    )
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, validation_alias="LOG_FILE")

    @field_validator("log_level", mode="before")
    @classmethod
    def _validate_log_level(cls, value: Any) -> str:
        log_level = str(value or "INFO").upper()
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if log_level not in valid_levels:
            msg = f"Invalid log level: {value}. Must be one of {valid_levels}"
            raise ValueError(msg)
        return log_level

    @field_validator("vault_path", "state_file", mode="before")
    @classmethod
    def _validate_path(cls, value: Any) -> str:
        trimmed = str(value or "").strip()
        if "\x00" in trimmed:
            msg = "Path contains invalid characters"
            raise ValueError(msg)
        return trimmed or "."

    @field_validator("log_file", mode="before")
    @classmethod
    def _validate_log_file(cls, value: Any) -> str | None:
        if value is None:
            return None
        trimmed = str(value).strip()
        return trimmed or None


@dataclass(frozen=True)
class AppConfig:
    readeck: ReadeckConfig
    runtime: RuntimeConfig


_SECTIONS: dict[str, type[BaseModel]] = {"readeck": ReadeckConfig, "runtime": RuntimeConfig}


def _field_aliases(field: FieldInfo) -> tuple[str, ...]:
    alias = field.validation_alias
    if isinstance(alias, AliasChoices):
        return tuple(choice for choice in alias.choices if isinstance(choice, str))
    return (alias,) if isinstance(alias, str) else ()


def _section_values(model: type[BaseModel], source: dict[str, Any]) -> dict[str, Any]:
    """Pick the fields of ``model`` out of flat ``source`` by their variable names."""
    values: dict[str, Any] = {}
    for name, field in model.model_fields.items():
        for alias in _field_aliases(field):
            if alias in source:
                values[name] = source[alias]
                break
    return values


class Settings(BaseSettings):
    """Application settings loaded automatically from environment variables.

    Each section reads its own flat variables (``READECK_*``, ``VAULT_PATH``...)
    through the validation aliases of its fields.
    """

    model_config = SettingsConfigDict(
        extra="ignore",
        populate_by_name=True,
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    readeck: ReadeckConfig = Field(default_factory=ReadeckConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)

    @model_validator(mode="before")
    @classmethod
    def _sections_from_env(cls, data: Any) -> Any:
        """Fill each section from its flat variables; explicit section values win."""
        if not isinstance(data, dict):
            return data
        source = {**os.environ, **data}
        result = dict(data)
        for section, model in _SECTIONS.items():
            from_env = _section_values(model, source)
            explicit = data.get(section)
            if explicit is None:
                result[section] = from_env
            elif isinstance(explicit, dict):
                result[section] = {**from_env, **explicit}
        return result

    def as_app_config(self) -> AppConfig:
        return AppConfig(readeck=self.readeck, runtime=self.runtime)


def load_config(**overrides: Any) -> AppConfig:
    """Load application configuration from environment variables.

    Uses pydantic-settings to automatically load from:
    1. Environment variables
    2. .env file (if present)

    Args:
        overrides: Nested section dicts (``readeck={...}``) that win over the environment.

    Returns:
        Immutable AppConfig instance with all configuration sections.

    Raises:
        RuntimeError: If configuration validation fails.
    """
    try:
        settings = Settings(**overrides)
    except ValidationError as exc:
        logger.error("config_validation_failed", extra={"errors": exc.errors(include_url=False)})
        msg = f"Invalid configuration: {exc}"
        raise RuntimeError(msg) from exc

    return settings.as_app_config()


def require_api_url(config: AppConfig) -> str:
    """Return the configured API URL or fail with an actionable message."""
    if not config.readeck.api_url:
        msg = "Readeck API URL not configured. Set READECK_API_URL."
        raise RuntimeError(msg)
    return config.readeck.api_url
