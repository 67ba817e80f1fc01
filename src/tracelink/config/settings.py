"""Settings and configuration management."""

import logging
import re
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

logger = logging.getLogger(__name__)

# Regex for ${ENV_VAR} placeholders in YAML values
_ENV_VAR_PLACEHOLDER_RE = re.compile(r"^\$\{[A-Z_][A-Z0-9_]*\}$")

# YAML config search paths (checked in order, first found wins)
_YAML_SEARCH_PATHS = [
    Path("tracelink.yaml"),
    Path("config/tracelink.yaml"),
    Path.home() / ".config" / "tracelink" / "tracelink.yaml",
]

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _find_yaml_config() -> Path | None:
    """Find the first tracelink.yaml in search paths."""
    for path in _YAML_SEARCH_PATHS:
        if path.is_file():
            return path
    return None


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class TracelinkSettings(BaseSettings):
    """Tracing settings.

    Priority chain: init kwargs > env vars > .env file > tracelink.yaml > defaults
    Environment variables use the TRACELINK_ prefix (e.g. TRACELINK_CURRENT_ORIGIN).
    """

    model_config = SettingsConfigDict(
        env_prefix="TRACELINK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customise settings source priority.

        Priority: init kwargs > env vars > .env file > tracelink.yaml > file secrets > defaults
        """
        sources: list[PydanticBaseSettingsSource] = [
            init_settings,
            env_settings,
            dotenv_settings,
        ]

        yaml_path = _find_yaml_config()
        if yaml_path:
            sources.append(
                YamlConfigSettingsSource(
                    settings_cls,
                    yaml_file=yaml_path,
                    yaml_file_encoding="utf-8",
                )
            )

        sources.append(file_secret_settings)
        return tuple(sources)

    @model_validator(mode="before")
    @classmethod
    def _resolve_env_var_placeholders(cls, data: dict) -> dict:
        """Drop unresolved ${VAR} placeholders so field defaults apply."""
        if not isinstance(data, dict):
            return data
        return {
            key: value
            for key, value in data.items()
            if not (isinstance(value, str) and _ENV_VAR_PLACEHOLDER_RE.match(value))
        }

    # Service
    service_name: str = Field("tracelink", description="Service name reported on spans")
    current_origin: str = Field(
        "http://localhost",
        description="Origin (scheme://host[:port]) of the instrumented application",
    )
    user_agent: str = Field("tracelink-python", description="Value reported as http.user_agent")

    # Propagation
    propagate_trace_header_cors_urls: str | None = Field(
        None,
        description="Comma-separated cross-origin origins/URLs allowed to receive trace headers",
    )
    propagate_trace_header_cors_pattern: str | None = Field(
        None,
        description="Regex matched against the full URL of cross-origin requests",
    )
    ignore_urls: str | None = Field(
        None, description="Comma-separated URLs/origins that are never traced"
    )
    ignore_urls_pattern: str | None = Field(None, description="Regex for URLs that are never traced")

    # Timing reconciliation
    max_timing_wait_ms: float = Field(
        300.0,
        ge=0,
        description="Maximum wait for network timing data after a request completes",
    )
    timing_poll_interval_ms: float = Field(
        50.0, gt=0, description="Interval between timing data polls"
    )
    timing_buffer_size: int = Field(250, gt=0, description="Timing buffer capacity in samples")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_format: str = Field("text", description="Log format: 'text' or 'json'")
    log_trace_context: bool = Field(True, description="Stamp active trace ids on log records")

    @field_validator("propagate_trace_header_cors_pattern", "ignore_urls_pattern")
    @classmethod
    def _validate_pattern(cls, value: str | None) -> str | None:
        if value:
            try:
                re.compile(value)
            except re.error as e:
                raise ValueError(f"invalid regular expression: {e}") from e
        return value

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}")
        return level

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, value: str) -> str:
        fmt = value.lower()
        if fmt not in ("text", "json"):
            raise ValueError("log_format must be 'text' or 'json'")
        return fmt

    @model_validator(mode="after")
    def _check_poll_interval(self) -> "TracelinkSettings":
        if self.max_timing_wait_ms and self.timing_poll_interval_ms > self.max_timing_wait_ms:
            logger.warning(
                "timing_poll_interval_ms (%s) exceeds max_timing_wait_ms (%s); "
                "timing data will be polled at most twice",
                self.timing_poll_interval_ms,
                self.max_timing_wait_ms,
            )
        return self

    @property
    def cors_urls(self) -> list[str]:
        """Parsed propagate_trace_header_cors_urls."""
        return _split_csv(self.propagate_trace_header_cors_urls)

    @property
    def ignored_urls(self) -> list[str]:
        """Parsed ignore_urls."""
        return _split_csv(self.ignore_urls)


@lru_cache
def get_settings() -> TracelinkSettings:
    """Get cached settings instance."""
    return TracelinkSettings()
