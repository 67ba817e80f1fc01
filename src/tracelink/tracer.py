"""Tracer: creates spans bound to the active context.

The current span lives in the active Context under SPAN_KEY. Starting a span
never changes the active context; with_span()/use_span() activate it for a
bounded causal extent.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Generator, Mapping
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from tracelink.context import Context, ContextManager, create_key, get_context_manager
from tracelink.export import MultiSpanProcessor, SpanProcessor
from tracelink.span import (
    NonRecordingSpan,
    Span,
    SpanContext,
    SpanKind,
    StatusCode,
    _generate_span_id,
    _generate_trace_id,
)
from tracelink.timing import Clock

if TYPE_CHECKING:
    from tracelink.config.settings import TracelinkSettings

logger = logging.getLogger(__name__)

SPAN_KEY = create_key("tracelink.current_span")


def set_span_in_context(span: Span | NonRecordingSpan, context: Context | None = None) -> Context:
    """Return a context derived from ``context`` with ``span`` as current span."""
    base = context if context is not None else get_context_manager().active()
    return base.set_value(SPAN_KEY, span)


def get_current_span(context: Context | None = None) -> Span | NonRecordingSpan | None:
    """Get the current span of ``context`` (default: the active context)."""
    ctx = context if context is not None else get_context_manager().active()
    return ctx.get_value(SPAN_KEY)


def get_trace_logging_context(context: Context | None = None) -> dict[str, Any]:
    """Get trace context for logging.

    Returns dict with trace_id and span_id if available.
    """
    span = get_current_span(context)
    if span is None or not span.span_context.is_valid:
        return {}

    result = {
        "trace_id": span.span_context.trace_id,
        "span_id": span.span_context.span_id,
    }
    parent_span_id = getattr(span, "parent_span_id", None)
    if parent_span_id:
        result["parent_span_id"] = parent_span_id
    return result


class Tracer:
    """Creates spans as children of the active (or given) context.

    Usage:
        tracer = Tracer("my-component", processor=SimpleSpanProcessor(exporter))
        root = tracer.start_span("root")
        tracer.with_span(root, do_work)
        root.end()
    """

    def __init__(
        self,
        name: str,
        processor: SpanProcessor | None = None,
        context_manager: ContextManager | None = None,
        clock: Clock | None = None,
        service_name: str | None = None,
    ):
        self.name = name
        self.service_name = service_name
        self._processor = MultiSpanProcessor([processor] if processor else [])
        self._context_manager = context_manager
        self.clock = clock or Clock()

    @classmethod
    def from_settings(
        cls,
        settings: TracelinkSettings,
        processor: SpanProcessor | None = None,
        context_manager: ContextManager | None = None,
        clock: Clock | None = None,
    ) -> Tracer:
        """Create a tracer named after, and reporting, the configured service."""
        return cls(
            settings.service_name,
            processor=processor,
            context_manager=context_manager,
            clock=clock,
            service_name=settings.service_name,
        )

    @property
    def context_manager(self) -> ContextManager:
        return self._context_manager or get_context_manager()

    def add_span_processor(self, processor: SpanProcessor) -> None:
        self._processor.add(processor)

    def shutdown(self) -> None:
        self._processor.shutdown()

    def active_context(self) -> Context:
        return self.context_manager.active()

    def start_span(
        self,
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        context: Context | None = None,
        attributes: Mapping[str, Any] | None = None,
        start_time: float | None = None,
    ) -> Span:
        """Start a new span.

        Args:
            name: Span name
            kind: Span kind
            context: Parent context (default: the active context)
            attributes: Initial attributes
            start_time: Origin-relative start timestamp in ms (default: now)

        Returns:
            The started span. A missing or invalid parent starts a new trace.
        """
        parent_ctx = context if context is not None else self.active_context()
        parent = parent_ctx.get_value(SPAN_KEY)
        parent_span_context: SpanContext | None = parent.span_context if parent else None

        if parent_span_context is None or not parent_span_context.is_valid:
            span_context = SpanContext(trace_id=_generate_trace_id(), span_id=_generate_span_id())
            parent_span_id = None
        else:
            span_context = SpanContext(
                trace_id=parent_span_context.trace_id,
                span_id=_generate_span_id(),
                sampled=parent_span_context.sampled,
            )
            parent_span_id = parent_span_context.span_id

        span = Span(
            name=name,
            span_context=span_context,
            clock=self.clock,
            kind=kind,
            parent_span_id=parent_span_id,
            start_time=start_time,
            attributes=attributes,
            processor=self._processor,
            service_name=self.service_name,
        )
        self._processor.on_start(span)
        logger.debug(
            "Started span %s",
            name,
            extra={
                "trace_id": span.trace_id,
                "span_id": span.span_id,
                "parent_span_id": parent_span_id,
            },
        )
        return span

    def with_span(self, span: Span | NonRecordingSpan, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Call ``fn`` with ``span`` as the current span. Does not end the span."""
        ctx = set_span_in_context(span, self.active_context())
        return self.context_manager.with_active(ctx, fn, *args, **kwargs)

    @contextmanager
    def use_span(self, span: Span | NonRecordingSpan) -> Generator[Span | NonRecordingSpan, None, None]:
        """Make ``span`` current for the block. Does not end the span."""
        ctx = set_span_in_context(span, self.active_context())
        with self.context_manager.use(ctx):
            yield span

    @contextmanager
    def start_as_current_span(
        self,
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Mapping[str, Any] | None = None,
    ) -> Generator[Span, None, None]:
        """Start a span, make it current, and end it when the block exits.

        Usage:
            with tracer.start_as_current_span("database-query") as span:
                span.set_attribute("rows", 42)
        """
        span = self.start_span(name, kind=kind, attributes=attributes)
        try:
            with self.use_span(span):
                yield span
        except Exception as e:
            if span.is_recording():
                span.record_exception(e)
                span.set_status(StatusCode.ERROR, str(e))
                span.end()
            raise
        else:
            if span.is_recording():
                span.end()
