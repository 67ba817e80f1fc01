"""Trace context propagation via B3 multi-header format.

Headers:
- X-B3-TraceId: 32 lowercase hex chars
- X-B3-SpanId: 16 lowercase hex chars
- X-B3-Sampled: "1" or "0"

Extraction is all-or-nothing: a missing or malformed field yields None,
never a partially populated context.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, MutableMapping

from tracelink.context import Context, get_context_manager
from tracelink.span import (
    NonRecordingSpan,
    SpanContext,
    is_valid_span_id,
    is_valid_trace_id,
)
from tracelink.tracer import get_current_span, set_span_in_context

logger = logging.getLogger(__name__)

X_B3_TRACE_ID = "X-B3-TraceId"
X_B3_SPAN_ID = "X-B3-SpanId"
X_B3_SAMPLED = "X-B3-Sampled"

B3_HEADERS = (X_B3_TRACE_ID, X_B3_SPAN_ID, X_B3_SAMPLED)

_SAMPLED_VALUES = {"1": True, "0": False}


def _get_header(carrier: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup."""
    if name in carrier:
        return carrier[name]
    lowered = name.lower()
    for key, value in carrier.items():
        if isinstance(key, str) and key.lower() == lowered:
            return value
    return None


def inject_b3_headers(
    span_context: SpanContext,
    carrier: MutableMapping[str, str],
) -> MutableMapping[str, str]:
    """Write B3 headers for ``span_context`` into ``carrier``.

    Args:
        span_context: Identity of the span making the outgoing call
        carrier: Outgoing header mapping, modified in place

    Returns:
        The same carrier, for chaining
    """
    if not span_context.is_valid:
        logger.debug("Not injecting invalid span context")
        return carrier

    carrier[X_B3_TRACE_ID] = span_context.trace_id
    carrier[X_B3_SPAN_ID] = span_context.span_id
    carrier[X_B3_SAMPLED] = "1" if span_context.sampled else "0"
    return carrier


def extract_b3_context(carrier: Mapping[str, str]) -> SpanContext | None:
    """Parse B3 headers from ``carrier``.

    Args:
        carrier: Incoming header mapping (names matched case-insensitively)

    Returns:
        A remote SpanContext if all three headers are present and well
        formed, None otherwise
    """
    try:
        trace_id = _get_header(carrier, X_B3_TRACE_ID)
        span_id = _get_header(carrier, X_B3_SPAN_ID)
        sampled = _get_header(carrier, X_B3_SAMPLED)
    except (AttributeError, TypeError):
        logger.debug("Carrier is not a header mapping")
        return None

    if not all(isinstance(value, str) for value in (trace_id, span_id, sampled)):
        return None

    trace_id = trace_id.strip().lower()
    span_id = span_id.strip().lower()
    sampled = sampled.strip()

    if not is_valid_trace_id(trace_id):
        logger.debug("Malformed %s header", X_B3_TRACE_ID)
        return None
    if not is_valid_span_id(span_id):
        logger.debug("Malformed %s header", X_B3_SPAN_ID)
        return None
    if sampled not in _SAMPLED_VALUES:
        logger.debug("Malformed %s header", X_B3_SAMPLED)
        return None

    return SpanContext(
        trace_id=trace_id,
        span_id=span_id,
        sampled=_SAMPLED_VALUES[sampled],
        is_remote=True,
    )


class B3Propagator:
    """Context-level B3 propagator.

    Usage:
        propagator = B3Propagator()
        headers = propagator.inject({})               # from the active span
        ctx = propagator.extract(request.headers)     # remote parent in ctx
    """

    @property
    def fields(self) -> tuple[str, ...]:
        return B3_HEADERS

    def inject(
        self,
        carrier: MutableMapping[str, str],
        context: Context | None = None,
    ) -> MutableMapping[str, str]:
        span = get_current_span(context)
        if span is None:
            return carrier
        return inject_b3_headers(span.span_context, carrier)

    def extract(self, carrier: Mapping[str, str], context: Context | None = None) -> Context:
        """Return ``context`` with the remote parent as current span.

        ``context`` defaults to the active context. If nothing valid was found,
        it is returned unchanged.
        """
        base = context if context is not None else get_context_manager().active()
        span_context = extract_b3_context(carrier)
        if span_context is None:
            return base
        return set_span_in_context(NonRecordingSpan(span_context), base)
