"""Tests for B3 header propagation."""

import pytest

from tracelink.context import ROOT_CONTEXT, ContextManager, create_key, set_global_context_manager
from tracelink.propagation import (
    B3_HEADERS,
    X_B3_SAMPLED,
    X_B3_SPAN_ID,
    X_B3_TRACE_ID,
    B3Propagator,
    extract_b3_context,
    inject_b3_headers,
)
from tracelink.span import INVALID_SPAN_CONTEXT, NonRecordingSpan, SpanContext
from tracelink.tracer import get_current_span, set_span_in_context

TRACE_ID = "4bf92f3577b34da6a3ce929d0e0e4736"
SPAN_ID = "00f067aa0ba902b7"


def _headers(**overrides):
    headers = {X_B3_TRACE_ID: TRACE_ID, X_B3_SPAN_ID: SPAN_ID, X_B3_SAMPLED: "1"}
    for name, value in overrides.items():
        key = {"trace_id": X_B3_TRACE_ID, "span_id": X_B3_SPAN_ID, "sampled": X_B3_SAMPLED}[name]
        if value is None:
            headers.pop(key)
        else:
            headers[key] = value
    return headers


# =============================================================================
# Injection Tests
# =============================================================================


class TestInject:
    """Tests for writing B3 headers."""

    def test_inject_sampled(self):
        carrier = inject_b3_headers(SpanContext(TRACE_ID, SPAN_ID), {})

        assert carrier == {
            "X-B3-TraceId": TRACE_ID,
            "X-B3-SpanId": SPAN_ID,
            "X-B3-Sampled": "1",
        }

    def test_inject_not_sampled(self):
        carrier = inject_b3_headers(SpanContext(TRACE_ID, SPAN_ID, sampled=False), {})

        assert carrier[X_B3_SAMPLED] == "0"

    def test_inject_keeps_existing_headers(self):
        carrier = {"Content-Type": "application/json"}

        inject_b3_headers(SpanContext(TRACE_ID, SPAN_ID), carrier)

        assert carrier["Content-Type"] == "application/json"
        assert len(carrier) == 4

    def test_invalid_context_is_not_injected(self):
        assert inject_b3_headers(INVALID_SPAN_CONTEXT, {}) == {}

    @pytest.mark.parametrize("sampled", [True, False])
    def test_round_trip(self, sampled):
        original = SpanContext(TRACE_ID, SPAN_ID, sampled=sampled)

        extracted = extract_b3_context(inject_b3_headers(original, {}))

        assert extracted == original
        assert extracted.is_remote is True
        assert original.is_remote is False


# =============================================================================
# Extraction Tests
# =============================================================================


class TestExtract:
    """Tests for parsing B3 headers."""

    def test_extract_valid(self):
        ctx = extract_b3_context(_headers())

        assert ctx.trace_id == TRACE_ID
        assert ctx.span_id == SPAN_ID
        assert ctx.sampled is True
        assert ctx.is_remote is True

    def test_header_names_are_case_insensitive(self):
        carrier = {"x-b3-traceid": TRACE_ID, "X-B3-SPANID": SPAN_ID, "x-b3-sampled": "0"}

        ctx = extract_b3_context(carrier)

        assert ctx is not None
        assert ctx.sampled is False

    def test_uppercase_ids_are_normalized(self):
        ctx = extract_b3_context(_headers(trace_id=TRACE_ID.upper(), span_id=f" {SPAN_ID} "))

        assert ctx.trace_id == TRACE_ID
        assert ctx.span_id == SPAN_ID

    @pytest.mark.parametrize("missing", ["trace_id", "span_id", "sampled"])
    def test_missing_header_yields_nothing(self, missing):
        assert extract_b3_context(_headers(**{missing: None})) is None

    @pytest.mark.parametrize(
        "overrides",
        [
            {"trace_id": TRACE_ID[:-1]},
            {"trace_id": TRACE_ID + "0"},
            {"trace_id": "z" * 32},
            {"trace_id": "0" * 32},
            {"span_id": SPAN_ID[:-1]},
            {"span_id": "g" * 16},
            {"span_id": "0" * 16},
            {"sampled": "true"},
            {"sampled": "2"},
            {"sampled": ""},
        ],
    )
    def test_malformed_header_yields_nothing(self, overrides):
        assert extract_b3_context(_headers(**overrides)) is None

    def test_empty_carrier(self):
        assert extract_b3_context({}) is None

    def test_non_string_value(self):
        carrier = _headers()
        carrier[X_B3_SAMPLED] = 1

        assert extract_b3_context(carrier) is None


# =============================================================================
# Propagator Tests
# =============================================================================


class TestB3Propagator:
    """Tests for context-level inject/extract."""

    def test_fields(self):
        assert B3Propagator().fields == B3_HEADERS

    def test_inject_from_context(self):
        span = NonRecordingSpan(SpanContext(TRACE_ID, SPAN_ID))
        ctx = set_span_in_context(span, ROOT_CONTEXT)

        carrier = B3Propagator().inject({}, ctx)

        assert carrier[X_B3_TRACE_ID] == TRACE_ID
        assert carrier[X_B3_SPAN_ID] == SPAN_ID

    def test_inject_without_span(self):
        assert B3Propagator().inject({}, ROOT_CONTEXT) == {}

    def test_extract_sets_remote_parent(self):
        ctx = B3Propagator().extract(_headers(), ROOT_CONTEXT)

        span = get_current_span(ctx)
        assert isinstance(span, NonRecordingSpan)
        assert span.span_context.is_remote
        assert span.span_context.trace_id == TRACE_ID

    def test_extract_invalid_returns_base(self):
        assert B3Propagator().extract({}, ROOT_CONTEXT) is ROOT_CONTEXT

    def test_extracted_parent_is_used_by_tracer(self, tracer):
        ctx = B3Propagator().extract(_headers(), ROOT_CONTEXT)

        span = tracer.start_span("server", context=ctx)

        assert span.trace_id == TRACE_ID
        assert span.parent_span_id == SPAN_ID

    def test_extract_defaults_to_active_context(self):
        manager = ContextManager()
        set_global_context_manager(manager)
        key = create_key("request-id")
        try:
            with manager.use(ROOT_CONTEXT.set_value(key, "abc")):
                ctx = B3Propagator().extract(_headers())
        finally:
            set_global_context_manager(None)

        assert ctx.get_value(key) == "abc"
        assert get_current_span(ctx).span_context.trace_id == TRACE_ID
