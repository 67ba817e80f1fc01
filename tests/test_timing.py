"""Tests for the clock, timing samples and the timing buffer."""

from datetime import UTC, datetime

from tracelink.timing import (
    NETWORK_PHASES,
    Clock,
    NetworkTimingSample,
    PerformanceTimeline,
    TimingSource,
    add_span_network_events,
)

URL = "https://api.example.com/items"


class TestClock:
    def test_now_is_monotonic(self):
        clock = Clock()
        first = clock.now()
        second = clock.now()

        assert 0 <= first <= second

    def test_to_datetime(self, clock):
        dt = clock.to_datetime(1500)

        assert dt == datetime.fromtimestamp(1_700_000_001.5, tz=UTC)


class TestNetworkTimingSample:
    """Tests for sample helpers."""

    def test_timing_fields_in_phase_order(self, sample):
        fields = sample(URL).timing_fields

        assert list(fields) == [attr for _, attr in NETWORK_PHASES]

    def test_end_prefers_response_end(self, sample):
        assert sample(URL).end == 20.5
        assert NetworkTimingSample(URL, fetch_start=3).end == 3


class TestPerformanceTimeline:
    """Tests for the bounded timing buffer."""

    def test_is_timing_source(self, timeline):
        assert isinstance(timeline, TimingSource)

    def test_record_and_query(self, timeline, sample):
        entry = sample(URL)
        timeline.record(entry)

        assert timeline.query_recent_samples() == [entry]

    def test_oldest_dropped_when_full(self, sample):
        timeline = PerformanceTimeline(buffer_size=2)
        entries = [sample(URL, fetch_start=i + 1) for i in range(3)]
        for entry in entries:
            timeline.record(entry)

        assert timeline.query_recent_samples() == entries[1:]
        assert timeline.get_stats() == {"buffered": 2, "dropped": 1}

    def test_clear(self, timeline, sample):
        timeline.record(sample(URL))
        timeline.clear()

        assert timeline.query_recent_samples() == []


class TestNetworkEvents:
    """Tests for converting a sample into span events."""

    def test_secure_connection_emits_all_phases(self, tracer, sample):
        span = tracer.start_span("req")

        added = add_span_network_events(span, sample(URL), secure=True)

        assert added == 9
        assert [e.name for e in span.events] == [
            "fetchStart",
            "domainLookupStart",
            "domainLookupEnd",
            "connectStart",
            "secureConnectionStart",
            "connectEnd",
            "requestStart",
            "responseStart",
            "responseEnd",
        ]
        assert span.events[0].timestamp == 10.1

    def test_insecure_connection_skips_secure_phase(self, tracer, sample):
        span = tracer.start_span("req")

        added = add_span_network_events(span, sample(URL), secure=False)

        assert added == 8
        assert "secureConnectionStart" not in [e.name for e in span.events]

    def test_unobserved_phases_skipped(self, tracer, sample):
        span = tracer.start_span("req")
        reused = sample(URL, domain_lookup_start=0, domain_lookup_end=0)

        assert add_span_network_events(span, reused, secure=True) == 7
