"""Span processors and exporters.

Provides:
- SpanExporter interface (export / shutdown)
- ConsoleSpanExporter (for debugging)
- InMemorySpanExporter (for tests and local inspection)
- SimpleSpanProcessor, which hands every ended span to an exporter once

Batching and shipping to a backend belong to exporter implementations.
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from abc import ABC, abstractmethod
from collections.abc import Sequence
from enum import Enum
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from tracelink.span import Span

logger = logging.getLogger(__name__)


class ExportResult(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class SpanExporter(ABC):
    """Abstract base for span exporters."""

    @abstractmethod
    def export(self, spans: Sequence[Span]) -> ExportResult:
        """Export ended spans.

        Args:
            spans: Ended, read-only spans

        Returns:
            ExportResult.SUCCESS if export succeeded
        """
        pass

    @abstractmethod
    def shutdown(self) -> None:
        """Shutdown the exporter."""
        pass


class ConsoleSpanExporter(SpanExporter):
    """Exporter that prints spans to console (for debugging)."""

    def __init__(self, pretty: bool = True, out: TextIO | None = None):
        """Initialize console exporter.

        Args:
            pretty: Use pretty-printed JSON
            out: Stream to write to (default stdout)
        """
        self.pretty = pretty
        self.out = out or sys.stdout

    def export(self, spans: Sequence[Span]) -> ExportResult:
        """Print spans to console."""
        for span in spans:
            if self.pretty:
                self.out.write(json.dumps(span.to_dict(), indent=2, default=str) + "\n")
            else:
                self.out.write(json.dumps(span.to_dict(), default=str) + "\n")
        return ExportResult.SUCCESS

    def shutdown(self) -> None:
        """No-op for console exporter."""
        pass


class InMemorySpanExporter(SpanExporter):
    """Exporter that keeps exported spans in a list."""

    def __init__(self):
        self._spans: list[Span] = []
        self._lock = threading.Lock()
        self._stopped = False
        self.export_calls = 0

    def export(self, spans: Sequence[Span]) -> ExportResult:
        if self._stopped:
            return ExportResult.FAILURE
        with self._lock:
            self.export_calls += 1
            self._spans.extend(spans)
        return ExportResult.SUCCESS

    def get_finished_spans(self) -> tuple[Span, ...]:
        with self._lock:
            return tuple(self._spans)

    def clear(self) -> None:
        with self._lock:
            self._spans.clear()
            self.export_calls = 0

    def shutdown(self) -> None:
        self._stopped = True


class SpanProcessor(ABC):
    """Hooks invoked on span start and end."""

    def on_start(self, span: Span) -> None:
        pass

    @abstractmethod
    def on_end(self, span: Span) -> None:
        pass

    def shutdown(self) -> None:
        pass


class SimpleSpanProcessor(SpanProcessor):
    """Exports each ended span immediately, one export call per span.

    Exporter failures are logged and counted; they are never retried here.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter
        self._stats = {
            "exported": 0,
            "errors": 0,
        }

    def on_end(self, span: Span) -> None:
        try:
            result = self.exporter.export([span])
        except Exception as e:
            self._stats["errors"] += 1
            logger.warning(f"Span export error: {e}")
            return

        if result is ExportResult.SUCCESS:
            self._stats["exported"] += 1
        else:
            self._stats["errors"] += 1
            logger.warning(f"Span export failed for span {span.name}")

    def shutdown(self) -> None:
        self.exporter.shutdown()
        logger.info("Stopped span processor")

    def get_stats(self) -> dict[str, int]:
        """Get export statistics."""
        return self._stats.copy()


class MultiSpanProcessor(SpanProcessor):
    """Fans span lifecycle calls out to several processors in order."""

    def __init__(self, processors: Sequence[SpanProcessor] = ()):
        self._processors: list[SpanProcessor] = list(processors)

    def add(self, processor: SpanProcessor) -> None:
        self._processors.append(processor)

    def on_start(self, span: Span) -> None:
        for processor in self._processors:
            processor.on_start(span)

    def on_end(self, span: Span) -> None:
        for processor in self._processors:
            processor.on_end(span)

    def shutdown(self) -> None:
        for processor in self._processors:
            processor.shutdown()
