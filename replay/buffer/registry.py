"""Segment registry: which segment files exist and when they were written."""

from __future__ import annotations

import logging
import os
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

from replay.buffer.segments import Segment, SegmentNaming, TimestampSource, delete_segment_files

logger = logging.getLogger(__name__)


class SegmentRegistry:
    """Map of segment file name to Segment, fed by notifications and the filesystem.

    Directory-change notifications can be late, coalesced or missed entirely,
    so ``reconcile_with_filesystem()`` lists the buffer directory, adds
    anything the notifications did not deliver and refreshes entries whose
    file was rewritten on a later lap of the ring. After a reconcile the
    registry never holds fewer segments than exist on disk.

    Thread Safety:
        All methods are thread-safe. ``clear()`` bumps a generation counter;
        a reconcile that was listing the directory when ``clear()`` ran
        discards its results instead of resurrecting stale entries.
    """

    def __init__(
        self,
        buffer_dir: Path,
        naming: Optional[SegmentNaming] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.buffer_dir = Path(buffer_dir)
        self.naming = naming or SegmentNaming()
        self._clock = clock
        self._entries: Dict[str, Segment] = {}
        self._lock = threading.RLock()
        self._generation = 0

    def record(
        self,
        name: str,
        timestamp: Optional[float] = None,
        source: TimestampSource = TimestampSource.NOTIFICATION,
    ) -> Optional[Segment]:
        """Record (or refresh) a segment's creation time.

        Returns:
            The stored Segment, or None if ``name`` is not a segment file
        """
        sequence = self.naming.parse(name)
        if sequence is None:
            return None

        segment = Segment(
            name=name,
            sequence_number=sequence,
            path=self.buffer_dir / name,
            created_at=self._clock() if timestamp is None else timestamp,
            timestamp_source=source,
        )
        with self._lock:
            self._entries[name] = segment
        return segment

    def reconcile_with_filesystem(self) -> int:
        """Bring the registry in line with the segment files on disk.

        Unknown files get their mtime as creation time, or "now" flagged as
        ``FALLBACK`` when stat fails. Known entries are re-stated too: the
        encoder rewrites the same names on every lap of the ring, so an
        entry whose file has a newer mtime is replaced. Known entries whose
        file is gone are dropped.

        Returns:
            Number of segments added
        """
        with self._lock:
            generation = self._generation
            known = set(self._entries)

        try:
            names = [n for n in os.listdir(self.buffer_dir) if self.naming.matches(n)]
        except FileNotFoundError:
            names = []
        except OSError as e:
            logger.error(f"Cannot list buffer directory {self.buffer_dir}: {e}")
            return 0

        found: List[Segment] = []
        for name in names:
            path = self.buffer_dir / name
            try:
                created_at = path.stat().st_mtime
                source = TimestampSource.MTIME
            except FileNotFoundError:
                # Deleted between listing and stat
                continue
            except OSError as e:
                if name in known:
                    logger.warning(f"stat failed for {name}, keeping recorded time: {e}")
                    continue
                logger.warning(f"stat failed for {name}, using current time: {e}")
                created_at = self._clock()
                source = TimestampSource.FALLBACK

            found.append(
                Segment(
                    name=name,
                    sequence_number=self.naming.parse(name),
                    path=path,
                    created_at=created_at,
                    timestamp_source=source,
                )
            )

        on_disk = set(names)
        with self._lock:
            if generation != self._generation:
                logger.debug("Registry cleared during reconcile, discarding results")
                return 0

            added = 0
            refreshed = 0
            for segment in found:
                current = self._entries.get(segment.name)
                if current is None:
                    if segment.name in known:
                        # Forgotten while we were listing
                        continue
                    self._entries[segment.name] = segment
                    added += 1
                elif segment.created_at > current.created_at:
                    self._entries[segment.name] = segment
                    refreshed += 1

            for name in known - on_disk:
                self._entries.pop(name, None)

        if added or refreshed:
            logger.debug(f"Reconcile added {added} and refreshed {refreshed} segments")
        return added

    def forget(self, name: str) -> bool:
        with self._lock:
            return self._entries.pop(name, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._generation += 1

    def purge(self) -> int:
        """Clear the registry and delete every segment file in the buffer directory.

        Raises:
            FileSystemError: If the buffer directory cannot be listed
        """
        with self._lock:
            self.clear()
            return delete_segment_files(self.buffer_dir, self.naming)

    def segments(self) -> List[Segment]:
        with self._lock:
            return list(self._entries.values())

    def get(self, name: str) -> Optional[Segment]:
        with self._lock:
            return self._entries.get(name)

    def count_since(self, cutoff: float) -> int:
        with self._lock:
            return sum(1 for s in self._entries.values() if s.created_at >= cutoff)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._entries


__all__ = ["SegmentRegistry"]
