"""Matching of network timing samples to traced requests.

Timing samples arrive out of band and are not tied to a request, so a
request is matched to samples by URL and time window. When two samples match
the same request they are either two legs of one logical request (a CORS
preflight exchange followed by the actual request) or duplicate telemetry of
one exchange:

- earlier and later leg with every phase of the later sample at or after the
  matching phase of the earlier one, a positive fetchStart offset, and the
  later leg starting after the earlier one finished -> PREFLIGHT
- phases consistently ordered but the legs overlap or coincide -> DUPLICATE
- some phases earlier, some later -> AMBIGUOUS

DUPLICATE and AMBIGUOUS both fall back to a single span built from the
earliest sample.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterable
from dataclasses import dataclass, field
from enum import Enum

from tracelink.timing import NetworkTimingSample

logger = logging.getLogger(__name__)


class ReconcileOutcome(str, Enum):
    NO_TIMING = "no_timing"
    SINGLE = "single"
    PREFLIGHT = "preflight"
    DUPLICATE = "duplicate"
    AMBIGUOUS = "ambiguous"
    ABORTED = "aborted"


@dataclass(frozen=True)
class Resolution:
    """Which samples feed which span."""

    outcome: ReconcileOutcome
    main: NetworkTimingSample | None = None
    preflight: NetworkTimingSample | None = None
    discarded: tuple[NetworkTimingSample, ...] = field(default_factory=tuple)

    @property
    def matched(self) -> bool:
        return self.main is not None

    @property
    def samples(self) -> tuple[NetworkTimingSample, ...]:
        """Every sample this resolution consumes, discarded ones included."""
        legs = tuple(s for s in (self.preflight, self.main) if s is not None)
        return legs + self.discarded


NO_TIMING = Resolution(ReconcileOutcome.NO_TIMING)


def select_candidates(
    samples: Iterable[NetworkTimingSample],
    url: str,
    window_start: float,
    window_end: float,
    used: Collection[NetworkTimingSample] = (),
) -> list[NetworkTimingSample]:
    """Filter samples belonging to a request and order them by fetchStart.

    Args:
        samples: Everything the timing source returned, possibly stale
        url: Exact request URL
        window_start: Request start (span start time)
        window_end: Time the terminal hook fired
        used: Samples already consumed by other requests

    Returns:
        Matching samples sorted by fetch_start
    """
    candidates = [
        sample
        for sample in samples
        if sample.name == url
        and sample.fetch_start >= window_start
        and sample.end <= window_end
        and sample not in used
    ]
    candidates.sort(key=lambda s: s.fetch_start)
    return candidates


def classify_pair(earlier: NetworkTimingSample, later: NetworkTimingSample) -> ReconcileOutcome:
    """Classify two samples for the same URL, ``earlier`` by fetchStart."""
    earlier_fields = earlier.timing_fields
    later_fields = later.timing_fields

    for attr, earlier_value in earlier_fields.items():
        later_value = later_fields[attr]
        if earlier_value and later_value and later_value < earlier_value:
            return ReconcileOutcome.AMBIGUOUS

    if later.fetch_start - earlier.fetch_start <= 0:
        return ReconcileOutcome.DUPLICATE
    if later.fetch_start < earlier.end:
        return ReconcileOutcome.DUPLICATE
    return ReconcileOutcome.PREFLIGHT


def resolve(candidates: list[NetworkTimingSample]) -> Resolution:
    """Decide how the candidate samples map onto spans.

    ``candidates`` must be sorted by fetch_start (see select_candidates).
    """
    if not candidates:
        return NO_TIMING

    earliest = candidates[0]
    if len(candidates) == 1:
        return Resolution(ReconcileOutcome.SINGLE, main=earliest)

    fallback = ReconcileOutcome.DUPLICATE
    for later in candidates[1:]:
        outcome = classify_pair(earliest, later)
        if outcome is ReconcileOutcome.PREFLIGHT:
            discarded = tuple(s for s in candidates[1:] if s is not later)
            return Resolution(
                ReconcileOutcome.PREFLIGHT,
                main=later,
                preflight=earliest,
                discarded=discarded,
            )
        if outcome is ReconcileOutcome.AMBIGUOUS:
            fallback = ReconcileOutcome.AMBIGUOUS

    logger.debug(
        "Falling back to earliest of %d timing samples for %s (%s)",
        len(candidates),
        earliest.name,
        fallback.value,
    )
    return Resolution(fallback, main=earliest, discarded=tuple(candidates[1:]))
