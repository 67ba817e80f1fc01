"""Causal tracing core for asynchronous request instrumentation.

Provides:
- Active context propagation across sync and async continuations
- Span model and tracer (128-bit trace IDs, 64-bit span IDs)
- B3 multi-header propagation (X-B3-TraceId, X-B3-SpanId, X-B3-Sampled)
- Cross-origin header injection policy
- Reconciliation of network timing data with traced requests, including
  CORS preflight detection
"""

__version__ = "0.1.0"

from tracelink.context import (
    ROOT_CONTEXT,
    Context,
    ContextManager,
    create_key,
    get_context_manager,
    set_global_context_manager,
)
from tracelink.errors import (
    ConfigurationError,
    InvalidAttributeError,
    SpanAlreadyEndedError,
    SpanError,
    TracelinkError,
)
from tracelink.export import (
    ConsoleSpanExporter,
    ExportResult,
    InMemorySpanExporter,
    MultiSpanProcessor,
    SimpleSpanProcessor,
    SpanExporter,
    SpanProcessor,
)
from tracelink.hooks import EventNames, RequestHooks
from tracelink.instrumentation import (
    PREFLIGHT_SPAN_NAME,
    InstrumentationConfig,
    RequestInstrumentation,
    RequestState,
    TracedRequest,
)
from tracelink.policy import InjectionPolicy, parse_origin, should_inject
from tracelink.propagation import (
    X_B3_SAMPLED,
    X_B3_SPAN_ID,
    X_B3_TRACE_ID,
    B3Propagator,
    extract_b3_context,
    inject_b3_headers,
)
from tracelink.reconcile import ReconcileOutcome
from tracelink.span import (
    Event,
    NonRecordingSpan,
    Span,
    SpanContext,
    SpanKind,
    SpanStatus,
    StatusCode,
)
from tracelink.timing import (
    Clock,
    NetworkTimingSample,
    PerformanceTimeline,
    PerformanceTimingNames,
    TimingSource,
)
from tracelink.tracer import (
    Tracer,
    get_current_span,
    get_trace_logging_context,
    set_span_in_context,
)

__all__ = [
    # Context
    "Context",
    "ContextManager",
    "ROOT_CONTEXT",
    "create_key",
    "get_context_manager",
    "set_global_context_manager",
    # Spans
    "Span",
    "SpanContext",
    "SpanKind",
    "SpanStatus",
    "StatusCode",
    "Event",
    "NonRecordingSpan",
    # Tracer
    "Tracer",
    "get_current_span",
    "set_span_in_context",
    "get_trace_logging_context",
    # Export
    "SpanExporter",
    "ExportResult",
    "ConsoleSpanExporter",
    "InMemorySpanExporter",
    "SpanProcessor",
    "SimpleSpanProcessor",
    "MultiSpanProcessor",
    # Propagation
    "B3Propagator",
    "inject_b3_headers",
    "extract_b3_context",
    "X_B3_TRACE_ID",
    "X_B3_SPAN_ID",
    "X_B3_SAMPLED",
    # Policy
    "InjectionPolicy",
    "should_inject",
    "parse_origin",
    # Timing
    "Clock",
    "NetworkTimingSample",
    "PerformanceTimeline",
    "PerformanceTimingNames",
    "TimingSource",
    "ReconcileOutcome",
    # Instrumentation
    "EventNames",
    "RequestHooks",
    "InstrumentationConfig",
    "RequestInstrumentation",
    "RequestState",
    "TracedRequest",
    "PREFLIGHT_SPAN_NAME",
    # Errors
    "TracelinkError",
    "SpanError",
    "SpanAlreadyEndedError",
    "InvalidAttributeError",
    "ConfigurationError",
]
