"""Export pipeline: join the trailing window of segments into one clip.

The pipeline writes an ffmpeg concat list naming each segment in window
order, hands it to a Remuxer (stream copy, no re-encode), and always removes
the list afterwards. Output names come from the export time and are never
reused, even by concurrent exports started in the same millisecond.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Set

from encoder.encoder_process import Remuxer
from exceptions import ExportEncodeError, ExportError
from replay.buffer.segments import Segment

logger = logging.getLogger(__name__)


class ExportStatus(Enum):
    SAVED = "saved"
    NOT_RECORDING = "not_recording"  # No active session (idle, stopped, or waiting for device)
    JUST_STARTED = "just_started"  # Session younger than the minimum recording time
    WARMING_UP = "warming_up"  # Readiness gate still closed
    EMPTY_WINDOW = "empty_window"  # No segment in the trailing window
    FAILED = "failed"  # Remux failed; terminal for this attempt


@dataclass(frozen=True)
class ExportResult:
    """Outcome of an export request.

    Everything except SAVED and FAILED means "not ready yet, retry later".
    """

    status: ExportStatus
    message: str
    path: Optional[Path] = None
    segment_count: int = 0
    current_segments: int = 0
    required_segments: int = 0
    elapsed_s: Optional[float] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is ExportStatus.SAVED

    @property
    def is_error(self) -> bool:
        return self.status is ExportStatus.FAILED

    @property
    def retryable(self) -> bool:
        return not (self.ok or self.is_error)

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "status": self.status.value,
            "message": self.message,
            "filePath": str(self.path) if self.path else None,
        }
        if self.status is ExportStatus.SAVED:
            data["segments"] = self.segment_count
        if self.status is ExportStatus.WARMING_UP:
            data["current"] = self.current_segments
            data["required"] = self.required_segments
        if self.elapsed_s is not None:
            data["elapsedSeconds"] = round(self.elapsed_s, 3)
        if self.error:
            data["error"] = self.error
        return data


def escape_concat_path(path: str) -> str:
    """Quote a path for an ffmpeg concat list entry."""
    return path.replace("'", "'\\''")


def build_descriptor(segments: Sequence[Segment]) -> str:
    """Concat list naming each segment by absolute path, one per line, in order."""
    lines = [f"file '{escape_concat_path(Path(s.path).resolve().as_posix())}'" for s in segments]
    return "\n".join(lines) + "\n"


def export_stamp(timestamp: float) -> str:
    """UTC timestamp usable in a file name, e.g. 2024-05-01T12-30-05-123Z."""
    dt = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H-%M-%S-") + f"{dt.microsecond // 1000:03d}Z"


class ExportPipeline:
    """Builds one output file from an ordered window of segments."""

    def __init__(
        self,
        buffer_dir: Path,
        output_dir: Path,
        remuxer: Remuxer,
        filename_prefix: str = "recording",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.buffer_dir = Path(buffer_dir)
        self.output_dir = Path(output_dir)
        self._remuxer = remuxer
        self._prefix = filename_prefix
        self._clock = clock
        self._lock = threading.Lock()
        self._reserved: Set[str] = set()

    def export(self, segments: Sequence[Segment]) -> Path:
        """Join ``segments`` (already in window order) into a new output file.

        Returns:
            Path of the written file

        Raises:
            ExportError: If ``segments`` is empty or the output or list file
                cannot be prepared
            ExportEncodeError: If the remux step fails
        """
        if not segments:
            raise ExportError("No segments to export")

        stamp = export_stamp(self._clock())
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            output_file = self._reserve(self.output_dir, f"{self._prefix}-{stamp}", ".mp4")
        except OSError as e:
            raise ExportError(f"Cannot prepare output directory {self.output_dir}: {e}")
        try:
            list_file = self._reserve(self.buffer_dir, f"filelist-{stamp}", ".txt")
        except OSError as e:
            self._release(output_file)
            raise ExportError(f"Cannot prepare segment list in {self.buffer_dir}: {e}")

        logger.info(f"Exporting {len(segments)} segments to {output_file}")
        start = time.monotonic()
        try:
            try:
                list_file.write_text(build_descriptor(segments))
            except OSError as e:
                raise ExportError(f"Cannot write segment list {list_file}: {e}")

            self._remuxer.concat(list_file, output_file)

        except ExportEncodeError as e:
            logger.error(f"Export to {output_file} failed: {e}")
            raise

        finally:
            try:
                list_file.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Could not remove segment list {list_file}: {e}")
            self._release(output_file, list_file)

        elapsed_ms = (time.monotonic() - start) * 1000
        logger.info(f"Export completed in {elapsed_ms:.0f}ms: {output_file}")
        return output_file

    def _reserve(self, directory: Path, stem: str, suffix: str) -> Path:
        with self._lock:
            candidate = directory / f"{stem}{suffix}"
            n = 1
            while str(candidate) in self._reserved or candidate.exists():
                candidate = directory / f"{stem}-{n}{suffix}"
                n += 1
            self._reserved.add(str(candidate))
            return candidate

    def _release(self, *paths: Path) -> None:
        with self._lock:
            for path in paths:
                self._reserved.discard(str(path))


__all__ = [
    "ExportPipeline",
    "ExportResult",
    "ExportStatus",
    "build_descriptor",
    "escape_concat_path",
    "export_stamp",
]
