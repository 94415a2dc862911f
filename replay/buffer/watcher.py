"""inotify-based watcher reporting segment files as the encoder closes them."""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Callable, Optional

import inotify.adapters
import inotify.constants

from replay.buffer.segments import SegmentNaming

logger = logging.getLogger(__name__)

SegmentCallback = Callable[[str, float], None]
"""Callback invoked when a segment file is completed.

Args:
    name: Segment file name
    timestamp: Notification time (seconds since the epoch)
"""

WATCH_MASK = inotify.constants.IN_CLOSE_WRITE | inotify.constants.IN_MOVED_TO
SEGMENT_EVENTS = ("IN_CLOSE_WRITE", "IN_MOVED_TO")


class SegmentWatcher:
    """Watches the buffer directory and reports closed segment files.

    The event loop runs on its own thread and wakes up every
    ``poll_timeout`` seconds to check for ``stop()``. ``stop()`` does not
    join the thread, so it is safe to call while holding a lock that the
    callback also takes.
    """

    def __init__(
        self,
        directory: Path,
        naming: SegmentNaming,
        on_segment: SegmentCallback,
        clock: Callable[[], float] = time.time,
        poll_timeout: float = 0.5,
    ) -> None:
        self._directory = Path(directory)
        self._naming = naming
        self._on_segment = on_segment
        self._clock = clock
        self._poll_timeout = poll_timeout
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> bool:
        """Begin watching.

        Returns:
            False if inotify is unavailable; callers then rely on reconciliation
        """
        if self._thread is not None and self._thread.is_alive():
            return True

        try:
            watcher = inotify.adapters.Inotify()
            watcher.add_watch(str(self._directory), mask=WATCH_MASK)
        except Exception as e:
            logger.warning(
                f"Directory notifications unavailable for {self._directory}, "
                f"relying on directory listing: {e}"
            )
            return False

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, args=(watcher,), name="SegmentWatcher", daemon=True
        )
        self._thread.start()
        logger.debug(f"Watching {self._directory} for segments")
        return True

    def stop(self) -> None:
        self._stop_event.set()

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set()

    def _run(self, watcher: "inotify.adapters.Inotify") -> None:
        try:
            for event in watcher.event_gen(timeout_s=self._poll_timeout, yield_nones=True):
                if self._stop_event.is_set():
                    break
                if event is None:
                    continue

                _, type_names, _, filename = event
                if not any(name in type_names for name in SEGMENT_EVENTS):
                    continue
                if not self._naming.matches(filename):
                    continue

                try:
                    self._on_segment(filename, self._clock())
                except Exception as e:
                    logger.error(f"Segment callback failed for {filename}: {e}", exc_info=True)
        except Exception as e:
            logger.error(f"Segment watcher stopped unexpectedly: {e}", exc_info=True)
        finally:
            try:
                watcher.remove_watch(str(self._directory))
            except Exception as e:
                # Directory removed or watch already gone
                logger.debug(f"remove_watch failed: {e}")


__all__ = ["SegmentWatcher", "SegmentCallback"]
