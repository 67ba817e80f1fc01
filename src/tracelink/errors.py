"""Tracelink Error Hierarchy.

Structured exception types for the tracing core.
"""

from __future__ import annotations


class TracelinkError(Exception):
    """Base error for all tracelink exceptions."""

    code = "TRACELINK_ERROR"

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


# Span Errors
class SpanError(TracelinkError):
    """Base error for span misuse."""

    code = "SPAN_ERROR"


class SpanAlreadyEndedError(SpanError):
    """A span was mutated or ended after it had already ended."""

    code = "SPAN_ALREADY_ENDED"

    def __init__(self, message: str, span_name: str = None, span_id: str = None):
        super().__init__(message, {"span_name": span_name, "span_id": span_id})
        self.span_name = span_name
        self.span_id = span_id


class InvalidAttributeError(SpanError):
    """Attribute key or value is not allowed on a span or event."""

    code = "INVALID_ATTRIBUTE"

    def __init__(self, message: str, key: str = None):
        super().__init__(message, {"key": key})
        self.key = key


# Configuration Errors
class ConfigurationError(TracelinkError):
    """Configuration value could not be used."""

    code = "CONFIGURATION_ERROR"

    def __init__(self, message: str, setting: str = None):
        super().__init__(message, {"setting": setting})
        self.setting = setting
