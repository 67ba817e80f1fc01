"""Span data model.

Implements B3/W3C compatible identities:
- 128-bit trace IDs (32 hex chars)
- 64-bit span IDs (16 hex chars)

A Span is mutable between start and end. end() freezes it and hands it to
the span processor exactly once; any later mutation raises
SpanAlreadyEndedError.
"""

from __future__ import annotations

import logging
import re
import secrets
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from tracelink.errors import InvalidAttributeError, SpanAlreadyEndedError

if TYPE_CHECKING:
    from tracelink.export import SpanProcessor
    from tracelink.timing import Clock

logger = logging.getLogger(__name__)

INVALID_TRACE_ID = "0" * 32
INVALID_SPAN_ID = "0" * 16

_TRACE_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")
_SPAN_ID_PATTERN = re.compile(r"^[0-9a-f]{16}$")

AttributeValue = str | bool | int | float
_ALLOWED_VALUE_TYPES = (str, bool, int, float)


def _generate_trace_id() -> str:
    """Generate a 128-bit trace ID (32 hex chars)."""
    trace_id = secrets.token_hex(16)
    while trace_id == INVALID_TRACE_ID:
        trace_id = secrets.token_hex(16)
    return trace_id


def _generate_span_id() -> str:
    """Generate a 64-bit span ID (16 hex chars)."""
    span_id = secrets.token_hex(8)
    while span_id == INVALID_SPAN_ID:
        span_id = secrets.token_hex(8)
    return span_id


def is_valid_trace_id(trace_id: str) -> bool:
    return bool(_TRACE_ID_PATTERN.match(trace_id)) and trace_id != INVALID_TRACE_ID


def is_valid_span_id(span_id: str) -> bool:
    return bool(_SPAN_ID_PATTERN.match(span_id)) and span_id != INVALID_SPAN_ID


class SpanKind(str, Enum):
    INTERNAL = "internal"
    SERVER = "server"
    CLIENT = "client"
    PRODUCER = "producer"
    CONSUMER = "consumer"


class StatusCode(str, Enum):
    UNSET = "unset"
    OK = "ok"
    ERROR = "error"


@dataclass(frozen=True)
class SpanStatus:
    code: StatusCode = StatusCode.UNSET
    description: str | None = None


@dataclass(frozen=True)
class SpanContext:
    """Immutable identity of a span, as carried across boundaries."""

    trace_id: str
    span_id: str
    sampled: bool = True
    # Origin of the context, not part of its identity
    is_remote: bool = field(default=False, compare=False)

    @property
    def is_valid(self) -> bool:
        return is_valid_trace_id(self.trace_id) and is_valid_span_id(self.span_id)


INVALID_SPAN_CONTEXT = SpanContext(INVALID_TRACE_ID, INVALID_SPAN_ID, sampled=False)


def validate_attributes(attributes: Mapping[str, Any] | None) -> dict[str, AttributeValue]:
    """Check attribute keys and values, returning an insertion-ordered copy."""
    result: dict[str, AttributeValue] = {}
    if not attributes:
        return result
    for key, value in attributes.items():
        _check_attribute(key, value)
        result[key] = value
    return result


def _check_attribute(key: Any, value: Any) -> None:
    if not isinstance(key, str) or not key:
        raise InvalidAttributeError(f"Attribute key must be a non-empty string: {key!r}", key=key)
    if not isinstance(value, _ALLOWED_VALUE_TYPES):
        raise InvalidAttributeError(
            f"Attribute {key!r} has unsupported type {type(value).__name__}",
            key=key,
        )


@dataclass(frozen=True)
class Event:
    """A timestamped annotation on a span."""

    name: str
    timestamp: float
    attributes: dict[str, AttributeValue] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "timestamp": self.timestamp,
            "attributes": dict(self.attributes),
        }


class NonRecordingSpan:
    """Stand-in span for a SpanContext that is not recorded locally.

    Placed into a Context to act as the parent of new spans, typically for a
    context extracted from incoming propagation headers.
    """

    def __init__(self, span_context: SpanContext):
        self._span_context = span_context

    @property
    def span_context(self) -> SpanContext:
        return self._span_context

    def is_recording(self) -> bool:
        return False

    def __repr__(self) -> str:
        return f"NonRecordingSpan({self._span_context!r})"


class Span:
    """A single span in a trace.

    Represents a unit of work within a distributed trace.
    """

    def __init__(
        self,
        name: str,
        span_context: SpanContext,
        clock: Clock,
        kind: SpanKind = SpanKind.INTERNAL,
        parent_span_id: str | None = None,
        start_time: float | None = None,
        attributes: Mapping[str, Any] | None = None,
        processor: SpanProcessor | None = None,
        service_name: str | None = None,
    ):
        self.name = name
        self.service_name = service_name
        self._span_context = span_context
        self.kind = kind
        self.parent_span_id = parent_span_id
        self._clock = clock
        self.start_time = start_time if start_time is not None else clock.now()
        self.end_time: float | None = None
        self.status = SpanStatus()
        self._attributes = validate_attributes(attributes)
        self._events: list[Event] = []
        self._processor = processor

    @property
    def span_context(self) -> SpanContext:
        return self._span_context

    @property
    def trace_id(self) -> str:
        return self._span_context.trace_id

    @property
    def span_id(self) -> str:
        return self._span_context.span_id

    @property
    def attributes(self) -> dict[str, AttributeValue]:
        return dict(self._attributes)

    @property
    def events(self) -> tuple[Event, ...]:
        return tuple(self._events)

    @property
    def ended(self) -> bool:
        return self.end_time is not None

    @property
    def duration_ms(self) -> float:
        if self.end_time is None:
            return 0
        return self.end_time - self.start_time

    def is_recording(self) -> bool:
        return not self.ended

    def _ensure_open(self, action: str) -> None:
        if self.ended:
            raise SpanAlreadyEndedError(
                f"Cannot {action}: span '{self.name}' has already ended",
                span_name=self.name,
                span_id=self.span_id,
            )

    def set_attribute(self, key: str, value: AttributeValue) -> Span:
        """Set a span attribute."""
        self._ensure_open("set attribute")
        _check_attribute(key, value)
        self._attributes[key] = value
        return self

    def set_attributes(self, attributes: Mapping[str, AttributeValue]) -> Span:
        self._ensure_open("set attributes")
        self._attributes.update(validate_attributes(attributes))
        return self

    def add_event(
        self,
        name: str,
        attributes: Mapping[str, AttributeValue] | None = None,
        timestamp: float | None = None,
    ) -> Span:
        """Add an event to the span.

        Event timestamps never go backwards: a timestamp earlier than the
        previous event is clamped to it.
        """
        self._ensure_open("add event")
        ts = timestamp if timestamp is not None else self._clock.now()
        if self._events and ts < self._events[-1].timestamp:
            logger.debug(
                "Clamping out-of-order event %s on span %s (%.3f < %.3f)",
                name,
                self.name,
                ts,
                self._events[-1].timestamp,
            )
            ts = self._events[-1].timestamp
        self._events.append(Event(name, ts, validate_attributes(attributes)))
        return self

    def set_status(self, code: StatusCode, description: str | None = None) -> Span:
        self._ensure_open("set status")
        self.status = SpanStatus(code, description if code is StatusCode.ERROR else None)
        return self

    def record_exception(self, exc: BaseException) -> Span:
        """Record an exception as an event."""
        return self.add_event(
            "exception",
            {
                "exception.type": type(exc).__name__,
                "exception.message": str(exc),
            },
        )

    def end(self, end_time: float | None = None) -> None:
        """Mark span as completed and hand it downstream."""
        self._ensure_open("end span")
        ts = end_time if end_time is not None else self._clock.now()
        if ts < self.start_time:
            logger.debug("End time before start time on span %s, clamping", self.name)
            ts = self.start_time
        self.end_time = ts
        if self._processor is not None:
            self._processor.on_end(self)

    def to_dict(self) -> dict[str, Any]:
        """Convert span to dictionary for logging/export."""
        return {
            "trace_id": self.trace_id,
            "span_id": self.span_id,
            "parent_span_id": self.parent_span_id,
            "name": self.name,
            "service_name": self.service_name,
            "kind": self.kind.value,
            "start_time": self._clock.to_datetime(self.start_time).isoformat(),
            "end_time": (
                self._clock.to_datetime(self.end_time).isoformat()
                if self.end_time is not None
                else None
            ),
            "duration_ms": self.duration_ms,
            "status": self.status.code.value,
            "status_description": self.status.description,
            "sampled": self._span_context.sampled,
            "attributes": dict(self._attributes),
            "events": [
                {
                    "name": event.name,
                    "timestamp": self._clock.to_datetime(event.timestamp).isoformat(),
                    "attributes": dict(event.attributes),
                }
                for event in self._events
            ],
        }

    def __repr__(self) -> str:
        return (
            f"Span(name={self.name!r}, trace_id={self.trace_id!r}, "
            f"span_id={self.span_id!r}, ended={self.ended})"
        )
