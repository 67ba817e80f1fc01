"""Configuration module for tracelink."""

from .logging import (
    JSONFormatter,
    TextFormatter,
    TraceContextFilter,
    configure_logging,
    configure_logging_from_settings,
)
from .settings import TracelinkSettings, get_settings

__all__ = [
    "TracelinkSettings",
    "get_settings",
    "configure_logging",
    "configure_logging_from_settings",
    "JSONFormatter",
    "TextFormatter",
    "TraceContextFilter",
]
