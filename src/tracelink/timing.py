"""Clock and network timing data.

All timestamps handled by the tracing core are milliseconds relative to a
shared monotonic time origin, the same convention browser resource timing
uses. NetworkTimingSample mirrors one resource timing entry; TimingSource is
the polled interface the reconciliation engine reads samples from.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from tracelink.config.settings import TracelinkSettings

logger = logging.getLogger(__name__)

DEFAULT_TIMELINE_BUFFER_SIZE = 250


class Clock:
    """Monotonic millisecond clock anchored to a wall-clock time origin."""

    def __init__(self):
        self._base = time.perf_counter()
        self.time_origin = time.time() * 1000

    def now(self) -> float:
        """Milliseconds elapsed since the time origin."""
        return (time.perf_counter() - self._base) * 1000

    def to_datetime(self, timestamp: float) -> datetime:
        """Convert an origin-relative timestamp to an aware UTC datetime."""
        epoch_ms = self.time_origin + timestamp
        return datetime(1970, 1, 1, tzinfo=UTC) + timedelta(milliseconds=epoch_ms)


class PerformanceTimingNames(str, Enum):
    """Network phase names, used verbatim as span event names."""

    FETCH_START = "fetchStart"
    DOMAIN_LOOKUP_START = "domainLookupStart"
    DOMAIN_LOOKUP_END = "domainLookupEnd"
    CONNECT_START = "connectStart"
    SECURE_CONNECTION_START = "secureConnectionStart"
    CONNECT_END = "connectEnd"
    REQUEST_START = "requestStart"
    RESPONSE_START = "responseStart"
    RESPONSE_END = "responseEnd"


# Phase order for span events, mapped to the sample attribute holding the value
NETWORK_PHASES: tuple[tuple[PerformanceTimingNames, str], ...] = (
    (PerformanceTimingNames.FETCH_START, "fetch_start"),
    (PerformanceTimingNames.DOMAIN_LOOKUP_START, "domain_lookup_start"),
    (PerformanceTimingNames.DOMAIN_LOOKUP_END, "domain_lookup_end"),
    (PerformanceTimingNames.CONNECT_START, "connect_start"),
    (PerformanceTimingNames.SECURE_CONNECTION_START, "secure_connection_start"),
    (PerformanceTimingNames.CONNECT_END, "connect_end"),
    (PerformanceTimingNames.REQUEST_START, "request_start"),
    (PerformanceTimingNames.RESPONSE_START, "response_start"),
    (PerformanceTimingNames.RESPONSE_END, "response_end"),
)


@dataclass(frozen=True)
class NetworkTimingSample:
    """Vendor-neutral resource timing entry for one network exchange.

    Times are origin-relative milliseconds; 0 means the phase was not
    observed (e.g. no DNS lookup on a reused connection).
    """

    name: str
    fetch_start: float = 0
    domain_lookup_start: float = 0
    domain_lookup_end: float = 0
    connect_start: float = 0
    connect_end: float = 0
    secure_connection_start: float = 0
    request_start: float = 0
    response_start: float = 0
    response_end: float = 0
    encoded_body_size: int = 0
    decoded_body_size: int = 0
    transfer_size: int = 0
    initiator_type: str = ""

    @property
    def timing_fields(self) -> dict[str, float]:
        """All phase timestamps keyed by attribute name, in phase order."""
        return {attr: getattr(self, attr) for _, attr in NETWORK_PHASES}

    @property
    def end(self) -> float:
        """Latest known timestamp of the exchange."""
        return self.response_end or self.fetch_start


@runtime_checkable
class TimingSource(Protocol):
    """Polled source of recent network timing samples."""

    def query_recent_samples(self) -> Sequence[NetworkTimingSample]: ...


class PerformanceTimeline:
    """Bounded in-memory timing buffer.

    Collaborators that observe network phases record samples here; the
    reconciliation engine polls it. When the buffer is full the oldest entry
    is dropped.
    """

    def __init__(self, buffer_size: int = DEFAULT_TIMELINE_BUFFER_SIZE):
        self.buffer_size = buffer_size
        self._entries: deque[NetworkTimingSample] = deque(maxlen=buffer_size)
        self._lock = threading.Lock()
        self._dropped = 0

    @classmethod
    def from_settings(cls, settings: TracelinkSettings) -> PerformanceTimeline:
        return cls(buffer_size=settings.timing_buffer_size)

    def record(self, sample: NetworkTimingSample) -> None:
        with self._lock:
            if len(self._entries) == self.buffer_size:
                self._dropped += 1
                logger.debug("Timing buffer full, dropping oldest sample")
            self._entries.append(sample)

    def query_recent_samples(self) -> list[NetworkTimingSample]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_stats(self) -> dict[str, int]:
        """Get buffer statistics."""
        with self._lock:
            return {"buffered": len(self._entries), "dropped": self._dropped}


def add_span_network_events(span, sample: NetworkTimingSample, secure: bool) -> int:
    """Add one event per observed network phase of ``sample`` to ``span``.

    secureConnectionStart is only emitted for secure connections. Returns the
    number of events added.
    """
    added = 0
    for phase, attr in NETWORK_PHASES:
        if phase is PerformanceTimingNames.SECURE_CONNECTION_START and not secure:
            continue
        value = getattr(sample, attr)
        if value:
            span.add_event(phase.value, timestamp=value)
            added += 1
    return added
