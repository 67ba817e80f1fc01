"""Request instrumentation: the per-request tracing state machine.

States:
    CREATED -> OPENED -> SENT -> AWAITING_TIMING -> CLOSED
                                       |
                                       +-> COMPLETED_NO_TIMING -> CLOSED

A terminal hook does not close the span right away. Network timing for the
request shows up in the timing source some time later, without any
notification, so the request polls the source at a fixed interval. Two or
more matching samples settle the request at once. A lone sample may still be
the preflight leg of a request whose main leg is not recorded yet, so it is
only used once the bounded wait runs out. Running out with nothing matched is
a degraded but valid completion: the span closes with its open/send/terminal
events only. Abort short-circuits the wait.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import MutableMapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

from tracelink.context import Context, ContextManager
from tracelink.errors import SpanAlreadyEndedError
from tracelink.export import SpanProcessor
from tracelink.hooks import EventNames
from tracelink.policy import AllowRule, InjectionPolicy, compile_allow_rule, url_matches
from tracelink.propagation import inject_b3_headers
from tracelink.reconcile import (
    NO_TIMING,
    ReconcileOutcome,
    Resolution,
    resolve,
    select_candidates,
)
from tracelink.span import Span, SpanKind, StatusCode
from tracelink.timing import (
    Clock,
    NetworkTimingSample,
    PerformanceTimeline,
    TimingSource,
    add_span_network_events,
)
from tracelink.tracer import Tracer, set_span_in_context

if TYPE_CHECKING:
    from tracelink.config.settings import TracelinkSettings

logger = logging.getLogger(__name__)

PREFLIGHT_SPAN_NAME = "CORS Preflight"
DEFAULT_COMPONENT = "http-request"
DEFAULT_USER_AGENT = "tracelink-python"


class RequestState(str, Enum):
    CREATED = "created"
    OPENED = "opened"
    SENT = "sent"
    AWAITING_TIMING = "awaiting_timing"
    COMPLETED_NO_TIMING = "completed_no_timing"
    CLOSED = "closed"


class AttributeNames:
    COMPONENT = "component"
    HTTP_METHOD = "http.method"
    HTTP_URL = "http.url"
    HTTP_STATUS_CODE = "http.status_code"
    HTTP_STATUS_TEXT = "http.status_text"
    HTTP_HOST = "http.host"
    HTTP_SCHEME = "http.scheme"
    HTTP_USER_AGENT = "http.user_agent"
    HTTP_RESPONSE_CONTENT_LENGTH = "http.response_content_length"


@dataclass
class InstrumentationConfig:
    """Runtime configuration for request instrumentation."""

    # Origin of the calling application (e.g., "https://app.example.com")
    current_origin: str = "http://localhost"
    # Cross-origin targets that may receive propagation headers
    propagate_trace_header_cors_urls: AllowRule | None = None
    # Requests matching these are not traced at all
    ignore_urls: AllowRule | None = None
    # Upper bound on waiting for timing samples after a terminal hook
    max_timing_wait_ms: float = 300.0
    # Interval between timing source polls
    poll_interval_ms: float = 50.0
    # Reported as http.user_agent
    user_agent: str = DEFAULT_USER_AGENT
    # Reported as component
    component: str = DEFAULT_COMPONENT

    @classmethod
    def from_settings(cls, settings: TracelinkSettings) -> InstrumentationConfig:
        return cls(
            current_origin=settings.current_origin,
            propagate_trace_header_cors_urls=compile_allow_rule(
                settings.cors_urls,
                settings.propagate_trace_header_cors_pattern,
            ),
            ignore_urls=compile_allow_rule(settings.ignored_urls, settings.ignore_urls_pattern),
            max_timing_wait_ms=settings.max_timing_wait_ms,
            poll_interval_ms=settings.timing_poll_interval_ms,
            user_agent=settings.user_agent,
        )


class RequestInstrumentation:
    """Creates traced requests and holds what they share.

    Usage:
        instrumentation = RequestInstrumentation(tracer, timeline, config)
        request = instrumentation.create_request()
        request.on_open("GET", url)
        headers = request.on_headers_prepared({})
        request.on_send()
        ...
        request.on_load(200, "OK")
        await request.wait_closed()
    """

    def __init__(
        self,
        tracer: Tracer,
        timing_source: TimingSource,
        config: InstrumentationConfig | None = None,
    ):
        self.tracer = tracer
        self.timing_source = timing_source
        self.config = config or InstrumentationConfig()
        self.policy = InjectionPolicy(
            self.config.current_origin,
            self.config.propagate_trace_header_cors_urls,
        )
        self._enabled = True
        self._in_flight = 0
        self._used_samples: set[NetworkTimingSample] = set()
        self._stats: dict[str, int] = {outcome.value: 0 for outcome in ReconcileOutcome}

    @classmethod
    def from_settings(
        cls,
        settings: TracelinkSettings | None = None,
        processor: SpanProcessor | None = None,
        timing_source: TimingSource | None = None,
        context_manager: ContextManager | None = None,
        clock: Clock | None = None,
    ) -> RequestInstrumentation:
        """Build the tracer, timing buffer and runtime config from settings.

        Usage:
            instrumentation = RequestInstrumentation.from_settings(
                processor=SimpleSpanProcessor(ConsoleSpanExporter())
            )
            instrumentation.timing_source.record(sample)
        """
        from tracelink.config.settings import get_settings

        settings = settings or get_settings()
        tracer = Tracer.from_settings(
            settings,
            processor=processor,
            context_manager=context_manager,
            clock=clock,
        )
        if timing_source is None:
            timing_source = PerformanceTimeline.from_settings(settings)
        return cls(tracer, timing_source, InstrumentationConfig.from_settings(settings))

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        """Stop tracing new requests. Requests already open finish normally."""
        self._enabled = False

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def create_request(self) -> TracedRequest:
        return TracedRequest(self)

    def is_ignored(self, url: str) -> bool:
        return not self._enabled or url_matches(url, self.config.ignore_urls)

    def get_stats(self) -> dict[str, int]:
        """Get closed request counts by reconciliation outcome."""
        return self._stats.copy()

    def _request_opened(self) -> None:
        self._in_flight += 1

    def _request_closed(self, outcome: ReconcileOutcome) -> None:
        self._stats[outcome.value] += 1
        self._in_flight -= 1
        if self._in_flight == 0:
            self._used_samples.clear()

    def _mark_used(self, samples: list[NetworkTimingSample]) -> None:
        self._used_samples.update(samples)


class TracedRequest:
    """One traced request, driven by the hook contract."""

    def __init__(self, instrumentation: RequestInstrumentation):
        self._instrumentation = instrumentation
        self._tracer = instrumentation.tracer
        self._state = RequestState.CREATED
        self._ignored = False
        self._span: Span | None = None
        self._parent_context: Context | None = None
        self._method = ""
        self._url = ""
        self._terminal: tuple[EventNames, float] | None = None
        self._status: tuple[StatusCode, str | None] = (StatusCode.UNSET, None)
        self._outcome: ReconcileOutcome | None = None
        self._task: asyncio.Task | None = None
        self._abort_event: asyncio.Event | None = None

    @property
    def state(self) -> RequestState:
        return self._state

    @property
    def span(self) -> Span | None:
        return self._span

    @property
    def url(self) -> str:
        return self._url

    @property
    def ignored(self) -> bool:
        return self._ignored

    @property
    def outcome(self) -> ReconcileOutcome | None:
        return self._outcome

    @property
    def closed(self) -> bool:
        return self._state is RequestState.CLOSED

    def _log_extra(self) -> dict[str, Any]:
        if self._span is None:
            return {"http.url": self._url}
        return {
            "trace_id": self._span.trace_id,
            "span_id": self._span.span_id,
            "parent_span_id": self._span.parent_span_id,
            "http.method": self._method,
            "http.url": self._url,
        }

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def on_open(self, method: str, url: str) -> None:
        if self._state is not RequestState.CREATED or self._ignored:
            logger.warning("Ignoring repeated open for %s", url)
            return

        instrumentation = self._instrumentation
        self._method = method.upper()
        self._url = instrumentation.policy.resolve(url)
        if instrumentation.is_ignored(self._url):
            self._ignored = True
            logger.debug("Not tracing ignored URL %s", self._url)
            return

        self._parent_context = self._tracer.active_context()
        self._span = self._tracer.start_span(
            self._url,
            kind=SpanKind.CLIENT,
            context=self._parent_context,
            attributes={
                AttributeNames.COMPONENT: instrumentation.config.component,
                AttributeNames.HTTP_METHOD: self._method,
                AttributeNames.HTTP_URL: self._url,
            },
        )
        self._span.add_event(EventNames.METHOD_OPEN.value, timestamp=self._span.start_time)
        self._state = RequestState.OPENED
        instrumentation._request_opened()

    def on_headers_prepared(self, carrier: MutableMapping[str, str]) -> MutableMapping[str, str]:
        if self._span is None:
            return carrier
        if self._state is not RequestState.OPENED:
            logger.debug("Headers prepared in state %s, not injecting", self._state.value)
            return carrier

        if self._instrumentation.policy.should_inject(self._url):
            inject_b3_headers(self._span.span_context, carrier)
        else:
            logger.debug("Skipping trace headers for %s", self._url, extra=self._log_extra())
        return carrier

    def on_send(self) -> None:
        if self._span is None:
            return
        if self._state is not RequestState.OPENED:
            logger.warning("Ignoring send in state %s", self._state.value, extra=self._log_extra())
            return
        if self._span.is_recording():
            self._span.add_event(EventNames.METHOD_SEND.value)
        self._state = RequestState.SENT

    def on_load(self, status_code: int, status_text: str = "") -> None:
        if not self._accepts_terminal(EventNames.EVENT_LOAD):
            return
        self._set_span_attributes(
            {
                AttributeNames.HTTP_STATUS_CODE: status_code,
                AttributeNames.HTTP_STATUS_TEXT: status_text,
            }
        )
        if status_code >= 400:
            self._complete(EventNames.EVENT_ERROR, StatusCode.ERROR, f"HTTP {status_code}")
        else:
            self._complete(EventNames.EVENT_LOAD, StatusCode.OK)

    def on_error(self) -> None:
        if self._accepts_terminal(EventNames.EVENT_ERROR):
            self._complete(EventNames.EVENT_ERROR, StatusCode.ERROR, "network error")

    def on_timeout(self) -> None:
        if self._accepts_terminal(EventNames.EVENT_TIMEOUT):
            self._complete(EventNames.EVENT_TIMEOUT, StatusCode.ERROR, "timeout")

    def on_abort(self) -> None:
        if self._span is None:
            return

        if self._state is RequestState.AWAITING_TIMING:
            # Replaces the pending terminal event; the poller sees CLOSED and exits
            self._record_terminal(EventNames.EVENT_ABORT, StatusCode.ERROR, "aborted")
            self._close(Resolution(ReconcileOutcome.ABORTED))
            if self._abort_event is not None:
                self._abort_event.set()
        elif self._accepts_terminal(EventNames.EVENT_ABORT):
            self._record_terminal(EventNames.EVENT_ABORT, StatusCode.ERROR, "aborted")
            self._close(Resolution(ReconcileOutcome.ABORTED))

    async def wait_closed(self) -> None:
        """Wait until the span has been reconciled and closed."""
        if self._task is not None:
            await self._task

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _accepts_terminal(self, event: EventNames) -> bool:
        if self._span is None:
            return False
        if self._state in (RequestState.OPENED, RequestState.SENT):
            return True
        logger.warning(
            "Ignoring %s hook in state %s",
            event.value,
            self._state.value,
            extra=self._log_extra(),
        )
        return False

    def _set_span_attributes(self, attributes: dict[str, Any]) -> None:
        if self._span.is_recording():
            self._span.set_attributes(attributes)
        else:
            logger.debug("Span already ended, dropping attributes", extra=self._log_extra())

    def _record_terminal(
        self,
        event: EventNames,
        code: StatusCode,
        description: str | None = None,
    ) -> None:
        first = self._terminal is None
        self._terminal = (event, self._tracer.clock.now())
        self._status = (code, description)
        if first:
            parts = urlsplit(self._url)
            self._set_span_attributes(
                {
                    AttributeNames.HTTP_HOST: parts.netloc,
                    AttributeNames.HTTP_SCHEME: parts.scheme,
                    AttributeNames.HTTP_USER_AGENT: self._instrumentation.config.user_agent,
                }
            )

    def _complete(
        self,
        event: EventNames,
        code: StatusCode,
        description: str | None = None,
    ) -> None:
        self._record_terminal(event, code, description)
        self._state = RequestState.AWAITING_TIMING

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            logger.debug("No running event loop, reconciling once", extra=self._log_extra())
            resolution = self._try_reconcile()
            if not resolution.matched:
                self._state = RequestState.COMPLETED_NO_TIMING
            self._close(resolution)
            return

        self._abort_event = asyncio.Event()
        self._task = loop.create_task(self._await_timing())

    async def _await_timing(self) -> None:
        config = self._instrumentation.config
        loop = asyncio.get_running_loop()
        deadline = loop.time() + config.max_timing_wait_ms / 1000
        interval = config.poll_interval_ms / 1000
        resolution = NO_TIMING

        while self._state is RequestState.AWAITING_TIMING:
            resolution = self._try_reconcile()
            # A lone sample may still be the preflight leg of a later main leg
            if resolution.matched and resolution.outcome is not ReconcileOutcome.SINGLE:
                self._close(resolution)
                return

            remaining = deadline - loop.time()
            if remaining <= 0:
                break

            try:
                await asyncio.wait_for(self._abort_event.wait(), timeout=min(interval, remaining))
            except TimeoutError:
                continue

        if self._state is not RequestState.AWAITING_TIMING:
            return
        if not resolution.matched:
            logger.debug("No timing data within deadline", extra=self._log_extra())
            self._state = RequestState.COMPLETED_NO_TIMING
        self._close(resolution)

    def _try_reconcile(self) -> Resolution:
        try:
            samples = self._instrumentation.timing_source.query_recent_samples()
        except Exception as e:
            logger.warning(f"Timing source query failed: {e}", extra=self._log_extra())
            return NO_TIMING

        candidates = select_candidates(
            samples,
            self._url,
            window_start=self._span.start_time,
            window_end=self._terminal[1],
            used=self._instrumentation._used_samples,
        )
        return resolve(candidates)

    def _close(self, resolution: Resolution) -> None:
        if self._state is RequestState.CLOSED:
            return

        self._outcome = resolution.outcome
        self._state = RequestState.CLOSED
        self._instrumentation._mark_used(list(resolution.samples))
        try:
            self._finish_span(resolution)
        except SpanAlreadyEndedError as e:
            logger.warning(f"Span ended outside instrumentation: {e}", extra=self._log_extra())
        finally:
            self._instrumentation._request_closed(resolution.outcome)

    def _finish_span(self, resolution: Resolution) -> None:
        span = self._span
        event, timestamp = self._terminal
        secure = urlsplit(self._url).scheme == "https"

        if resolution.preflight is not None:
            self._end_preflight_span(resolution.preflight, secure)

        if resolution.main is not None:
            add_span_network_events(span, resolution.main, secure)
            if resolution.main.encoded_body_size:
                span.set_attribute(
                    AttributeNames.HTTP_RESPONSE_CONTENT_LENGTH,
                    resolution.main.encoded_body_size,
                )

        span.add_event(event.value, timestamp=timestamp)
        span.set_status(*self._status)
        span.end(timestamp)

        logger.debug(
            f"Closed {self._method} {self._url} ({resolution.outcome.value})",
            extra={
                **self._log_extra(),
                "outcome": resolution.outcome.value,
                "duration_ms": span.duration_ms,
            },
        )

    def _end_preflight_span(self, sample: NetworkTimingSample, secure: bool) -> None:
        context = set_span_in_context(self._span, self._parent_context)
        preflight = self._tracer.start_span(
            PREFLIGHT_SPAN_NAME,
            kind=SpanKind.INTERNAL,
            context=context,
            start_time=sample.fetch_start,
        )
        add_span_network_events(preflight, sample, secure)
        preflight.end(sample.end)
