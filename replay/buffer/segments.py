"""Segment records and segment file naming."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from exceptions import FileSystemError

logger = logging.getLogger(__name__)


class TimestampSource(Enum):
    """Where a segment's creation time came from."""

    NOTIFICATION = "notification"  # Directory-change event, observed as the file closed
    MTIME = "mtime"  # File modification time, read during reconciliation
    FALLBACK = "fallback"  # stat failed; time of reconciliation


@dataclass(frozen=True)
class Segment:
    name: str
    sequence_number: int
    path: Path
    created_at: float
    timestamp_source: TimestampSource = TimestampSource.NOTIFICATION

    @property
    def trusted(self) -> bool:
        return self.timestamp_source is not TimestampSource.FALLBACK


class SegmentNaming:
    """Recognizes segment files and parses their sequence number.

    The number is parsed numerically so ``segment7.mp4``, ``segment007.mp4``
    and ``segment0007.mp4`` all carry sequence number 7.
    """

    def __init__(self, prefix: str = "segment", extension: str = ".mp4") -> None:
        self.prefix = prefix
        self.extension = extension
        self._pattern = re.compile(rf"^{re.escape(prefix)}(\d+){re.escape(extension)}$")

    @classmethod
    def from_config(cls, buffer_config) -> "SegmentNaming":
        return cls(buffer_config.segment_prefix, buffer_config.segment_extension)

    def parse(self, name: str) -> Optional[int]:
        match = self._pattern.match(name)
        if match is None:
            return None
        return int(match.group(1))

    def matches(self, name: Optional[str]) -> bool:
        return bool(name) and self._pattern.match(name) is not None


def delete_segment_files(directory: Path, naming: SegmentNaming) -> int:
    """Delete every segment file in ``directory``.

    Files that vanish or cannot be removed are logged and skipped.

    Returns:
        Number of files deleted

    Raises:
        FileSystemError: If the directory exists but cannot be listed
    """
    try:
        names = os.listdir(directory)
    except FileNotFoundError:
        return 0
    except OSError as e:
        raise FileSystemError(f"Cannot list buffer directory {directory}: {e}", path=str(directory))

    deleted = 0
    for name in names:
        if not naming.matches(name):
            continue
        try:
            os.unlink(os.path.join(directory, name))
            deleted += 1
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not delete segment {name}: {e}")

    if deleted:
        logger.debug(f"Deleted {deleted} segment files from {directory}")
    return deleted


__all__ = ["Segment", "SegmentNaming", "TimestampSource", "delete_segment_files"]
