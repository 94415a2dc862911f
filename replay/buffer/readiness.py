"""One-way latch that holds exports back until the buffer has content."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ReadinessGate:
    """Becomes ready the first time the windowed segment count reaches the minimum.

    Once ready it stays ready, even if the count later drops as segments
    age out of the window. Only ``reset()`` (disconnect, stop, restart)
    closes it again.
    """

    def __init__(self, min_segments: int, clock: Callable[[], float] = time.time) -> None:
        if min_segments < 1:
            raise ValueError("min_segments must be at least 1")
        self.required = min_segments
        self._clock = clock
        self._lock = threading.Lock()
        self._ready = False
        self._ready_since: Optional[float] = None
        self._last_count = 0

    def observe(self, segment_count: int) -> bool:
        """Feed the current windowed segment count; returns readiness."""
        with self._lock:
            self._last_count = segment_count
            if not self._ready and segment_count >= self.required:
                self._ready = True
                self._ready_since = self._clock()
                logger.info(f"Buffer ready: {segment_count}/{self.required} segments")
            return self._ready

    def is_ready(self) -> bool:
        with self._lock:
            return self._ready

    def reset(self) -> None:
        with self._lock:
            self._ready = False
            self._ready_since = None
            self._last_count = 0

    @property
    def last_count(self) -> int:
        with self._lock:
            return self._last_count

    @property
    def ready_since(self) -> Optional[float]:
        with self._lock:
            return self._ready_since


__all__ = ["ReadinessGate"]
