"""Tests for logging configuration module."""

import json
import logging
import sys
from io import StringIO

import pytest

from tracelink.config.logging import (
    JSONFormatter,
    TextFormatter,
    TraceContextFilter,
    configure_logging,
    configure_logging_from_settings,
)
from tracelink.config.settings import TracelinkSettings
from tracelink.context import ContextManager, set_global_context_manager
from tracelink.export import InMemorySpanExporter, SimpleSpanProcessor
from tracelink.tracer import Tracer


def _record(msg="Test message", level=logging.INFO, name="test", args=()):
    return logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=args,
        exc_info=None,
    )


@pytest.fixture
def global_tracer():
    """Tracer bound to a fresh process-global context manager."""
    set_global_context_manager(ContextManager())
    yield Tracer("logging-test", processor=SimpleSpanProcessor(InMemorySpanExporter()))
    set_global_context_manager(None)


class TestTraceContextFilter:
    """Tests for TraceContextFilter class."""

    def test_filter_always_returns_true(self, global_tracer):
        assert TraceContextFilter().filter(_record()) is True

    def test_no_active_span_adds_nothing(self, global_tracer):
        record = _record()

        TraceContextFilter().filter(record)

        assert not hasattr(record, "trace_id")
        assert not hasattr(record, "span_id")

    def test_stamps_active_span(self, global_tracer):
        root = global_tracer.start_span("root")
        child = global_tracer.with_span(root, global_tracer.start_span, "child")
        record = _record()

        with global_tracer.use_span(child):
            TraceContextFilter().filter(record)

        assert record.trace_id == root.trace_id
        assert record.span_id == child.span_id
        assert record.parent_span_id == root.span_id

    def test_explicit_extra_wins(self, global_tracer):
        span = global_tracer.start_span("root")
        record = _record()
        record.span_id = "explicit"

        with global_tracer.use_span(span):
            TraceContextFilter().filter(record)

        assert record.span_id == "explicit"
        assert record.trace_id == span.trace_id


class TestJSONFormatter:
    """Tests for JSONFormatter class."""

    @pytest.fixture
    def formatter(self):
        """Create JSONFormatter instance."""
        return JSONFormatter()

    def test_format_includes_required_fields(self, formatter):
        """Format includes timestamp, level, logger, message."""
        parsed = json.loads(formatter.format(_record("Warning message", logging.WARNING, "test.logger")))

        assert parsed["timestamp"].endswith("+00:00")
        assert parsed["level"] == "WARNING"
        assert parsed["logger"] == "test.logger"
        assert parsed["message"] == "Warning message"

    def test_includes_trace_fields_when_present(self, formatter):
        record = _record()
        record.trace_id = "a" * 32
        record.span_id = "b" * 16
        record.outcome = "preflight"

        parsed = json.loads(formatter.format(record))

        assert parsed["trace_id"] == "a" * 32
        assert parsed["span_id"] == "b" * 16
        assert parsed["outcome"] == "preflight"
        assert "parent_span_id" not in parsed

    def test_includes_http_fields(self, formatter):
        """Includes HTTP-related fields when present."""
        record = _record("HTTP request")
        setattr(record, "http.method", "POST")
        setattr(record, "http.url", "https://api.example.com/items")
        setattr(record, "http.status_code", 201)

        parsed = json.loads(formatter.format(record))

        assert parsed["http.method"] == "POST"
        assert parsed["http.url"] == "https://api.example.com/items"
        assert parsed["http.status_code"] == 201

    def test_includes_exception_info(self, formatter):
        try:
            raise ValueError("Test error")
        except ValueError:
            record = _record("Error occurred", logging.ERROR)
            record.exc_info = sys.exc_info()

        parsed = json.loads(formatter.format(record))

        assert "ValueError: Test error" in parsed["exception"]

    def test_formats_message_with_args(self, formatter):
        parsed = json.loads(formatter.format(_record("Closed %s (%s)", args=("GET", "single"))))

        assert parsed["message"] == "Closed GET (single)"


class TestTextFormatter:
    def test_format_includes_all_parts(self):
        output = TextFormatter().format(_record("Hello", logging.WARNING, "tracelink.test"))

        assert " - tracelink.test - WARNING - Hello" in output


class TestConfigureLogging:
    """Tests for configure_logging function."""

    def setup_method(self):
        """Reset root logger before each test."""
        root = logging.getLogger()
        for handler in root.handlers[:]:
            root.removeHandler(handler)

    def test_sets_log_level(self):
        configure_logging(level="debug")
        assert logging.getLogger().level == logging.DEBUG

    def test_invalid_level_defaults_to_info(self):
        configure_logging(level="INVALID")
        assert logging.getLogger().level == logging.INFO

    def test_uses_text_formatter_by_default(self):
        configure_logging()
        root = logging.getLogger()

        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, TextFormatter)
        assert root.handlers[0].stream == sys.stdout

    def test_uses_json_formatter(self):
        configure_logging(format="json")
        assert isinstance(logging.getLogger().handlers[0].formatter, JSONFormatter)

    def test_trace_filter_toggle(self):
        configure_logging()
        assert any(isinstance(f, TraceContextFilter) for f in logging.getLogger().handlers[0].filters)

        configure_logging(inject_trace_context=False)
        assert logging.getLogger().handlers[0].filters == []

    def test_removes_existing_handlers(self):
        root = logging.getLogger()
        root.addHandler(logging.StreamHandler())
        root.addHandler(logging.StreamHandler())

        configure_logging()

        assert len(root.handlers) == 1

    def test_silences_asyncio(self):
        configure_logging(level="DEBUG")
        assert logging.getLogger("asyncio").level == logging.WARNING

    def test_json_output_carries_active_trace(self, global_tracer):
        stream = StringIO()
        configure_logging(level="INFO", format="json")
        logging.getLogger().handlers[0].stream = stream
        span = global_tracer.start_span("request")

        with global_tracer.use_span(span):
            logging.getLogger("tracelink.test").info("inside span")

        parsed = json.loads(stream.getvalue().strip())
        assert parsed["message"] == "inside span"
        assert parsed["trace_id"] == span.trace_id
        assert parsed["span_id"] == span.span_id


class TestConfigureLoggingFromSettings:
    """Tests for applying logging settings."""

    def setup_method(self):
        """Reset root logger before each test."""
        root = logging.getLogger()
        for handler in root.handlers[:]:
            root.removeHandler(handler)

    def test_applies_level_format_and_filter(self):
        settings = TracelinkSettings.model_construct(
            log_level="DEBUG", log_format="json", log_trace_context=False
        )

        configure_logging_from_settings(settings)

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
        assert root.handlers[0].filters == []

    def test_defaults_keep_trace_filter(self):
        settings = TracelinkSettings.model_construct(
            log_level="WARNING", log_format="text", log_trace_context=True
        )

        configure_logging_from_settings(settings)

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert isinstance(root.handlers[0].formatter, TextFormatter)
        assert any(isinstance(f, TraceContextFilter) for f in root.handlers[0].filters)
