"""Pytest configuration and fixtures."""

import sys
from dataclasses import replace
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from tracelink.context import ContextManager
from tracelink.export import InMemorySpanExporter, SimpleSpanProcessor
from tracelink.timing import Clock, NetworkTimingSample, PerformanceTimeline
from tracelink.tracer import Tracer


class FakeClock(Clock):
    """Clock whose time only moves when a test says so."""

    def __init__(self, now: float = 0.0):
        super().__init__()
        self.time_origin = 1_700_000_000_000.0
        self.current = now

    def now(self) -> float:
        return self.current

    def advance(self, ms: float) -> float:
        self.current += ms
        return self.current


def make_sample(name: str, **overrides) -> NetworkTimingSample:
    """Timing sample shaped like a browser resource entry for an XHR."""
    values = dict(
        fetch_start=10.1,
        domain_lookup_start=11,
        domain_lookup_end=12,
        connect_start=13,
        secure_connection_start=14,
        connect_end=15,
        request_start=16,
        response_start=17,
        response_end=20.5,
        initiator_type="xmlhttprequest",
    )
    values.update(overrides)
    return NetworkTimingSample(name=name, **values)


def shift_sample(sample: NetworkTimingSample, offset: float) -> NetworkTimingSample:
    """Copy with every observed phase moved by offset ms; unobserved phases stay 0."""
    return replace(
        sample,
        **{attr: value + offset for attr, value in sample.timing_fields.items() if value},
    )


def make_main_sample(name: str, offset: float = 30, **overrides) -> NetworkTimingSample:
    """Sample for the actual request following a preflight, every phase shifted."""
    return shift_sample(make_sample(name, **overrides), offset)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def context_manager():
    return ContextManager()


@pytest.fixture
def exporter():
    return InMemorySpanExporter()


@pytest.fixture
def tracer(exporter, context_manager, clock):
    return Tracer(
        "test-tracer",
        processor=SimpleSpanProcessor(exporter),
        context_manager=context_manager,
        clock=clock,
    )


@pytest.fixture
def timeline():
    return PerformanceTimeline()


@pytest.fixture
def sample():
    """Factory for timing samples, see make_sample."""
    return make_sample


@pytest.fixture
def main_sample():
    """Factory for shifted main-request samples, see make_main_sample."""
    return make_main_sample
