"""Trailing-window selection over the segment registry."""

from __future__ import annotations

import time
from typing import Callable, Iterable, List, Optional

from replay.buffer.registry import SegmentRegistry
from replay.buffer.segments import Segment, TimestampSource


def select_window(
    segments: Iterable[Segment],
    now: float,
    buffer_duration: float,
    wrap_aware: bool = False,
) -> List[Segment]:
    """Return the segments created within ``buffer_duration`` seconds of ``now``.

    The result is ordered by sequence number. With ``wrap_aware`` the
    sequence-ordered list is rotated to begin at the oldest segment, which
    restores chronological order once the encoder has wrapped around.

    Args:
        segments: Candidate segments
        now: Reference time (seconds since the epoch)
        buffer_duration: Window length in seconds
        wrap_aware: Rotate across the wraparound boundary

    Returns:
        Ordered list, empty when nothing qualifies
    """
    cutoff = now - buffer_duration
    window = sorted(
        (s for s in segments if cutoff <= s.created_at <= now),
        key=lambda s: s.sequence_number,
    )

    if wrap_aware and len(window) > 1:
        oldest = min(range(len(window)), key=lambda i: (window[i].created_at, i))
        window = window[oldest:] + window[:oldest]

    return window


def drop_open_segment(window: List[Segment], now: float, max_age: float) -> List[Segment]:
    """Remove the segment the encoder is most likely still writing.

    That is the newest segment when it was only seen on disk (never
    reported closed) and was modified less than ``max_age`` seconds ago.
    Its trailer is not written yet, so it cannot be remuxed.
    """
    if not window or max_age <= 0:
        return window
    newest = max(window, key=lambda s: s.created_at)
    if newest.timestamp_source is TimestampSource.NOTIFICATION or now - newest.created_at >= max_age:
        return window
    return [s for s in window if s is not newest]


class WindowSelector:
    """Computes "the last N seconds" from a registry."""

    def __init__(
        self,
        registry: SegmentRegistry,
        buffer_duration: float,
        wrap_aware: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry
        self.buffer_duration = buffer_duration
        self._wrap_aware = wrap_aware
        self._clock = clock

    def select(self, now: Optional[float] = None) -> List[Segment]:
        now = self._clock() if now is None else now
        return select_window(self._registry.segments(), now, self.buffer_duration, self._wrap_aware)

    def count(self, now: Optional[float] = None) -> int:
        return len(self.select(now))


__all__ = ["WindowSelector", "drop_open_segment", "select_window"]
