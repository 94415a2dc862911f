"""Simulated encoder and remuxer for supervisor testing without ffmpeg."""

from __future__ import annotations

import itertools
import os
import re
import threading
from pathlib import Path
from typing import List, Optional

from exceptions import ExportEncodeError, ProcessSpawnError

from .encoder_process import EncoderProcess, EncoderStats, ErrorCallback, Remuxer

_LIST_LINE = re.compile(r"^file '(?P<path>.*)'$")
_pids = itertools.count(10_000)


class SimulatedEncoder(EncoderProcess):
    """Writes placeholder segment files into the buffer directory.

    With ``interval`` set, a background thread writes one segment per
    interval, wrapping after ``segment_count`` files. Without it, segments are
    written only through ``write_segment()``, which keeps tests deterministic.
    """

    def __init__(
        self,
        buffer_dir: Path,
        segment_pattern: str = "segment%03d.mp4",
        segment_count: int = 120,
        interval: Optional[float] = None,
        payload_size: int = 188,
        spawn_error: Optional[str] = None,
    ) -> None:
        self._buffer_dir = Path(buffer_dir)
        self._segment_pattern = segment_pattern
        self._segment_count = segment_count
        self._interval = interval
        self._payload_size = payload_size
        self._spawn_error = spawn_error

        self._on_error: Optional[ErrorCallback] = None
        self._running = False
        self._kill_requested = False
        self._exit_code: Optional[int] = None
        self._next_index = 0
        self._pid: Optional[int] = None
        self._stop_event = threading.Event()
        self._writer_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.written: List[Path] = []

    def start(self, on_error: ErrorCallback) -> None:
        if self._spawn_error:
            raise ProcessSpawnError(self._spawn_error, diagnostics=self._spawn_error)

        self._buffer_dir.mkdir(parents=True, exist_ok=True)
        self._on_error = on_error
        self._pid = next(_pids)
        self._running = True

        if self._interval:
            self._writer_thread = threading.Thread(
                target=self._write_loop, name=f"SimulatedEncoder-{self._pid}", daemon=True
            )
            self._writer_thread.start()

    def _write_loop(self) -> None:
        while not self._stop_event.wait(self._interval):
            self.write_segment()

    def write_segment(self) -> Optional[Path]:
        """Write the next segment file, as the encoder does when closing one."""
        with self._lock:
            if not self._running:
                return None
            index = self._next_index
            self._next_index = (self._next_index + 1) % self._segment_count

        path = self._buffer_dir / (self._segment_pattern % index)
        path.write_bytes(index.to_bytes(4, "big") + os.urandom(self._payload_size))
        self.written.append(path)
        return path

    def write_segments(self, count: int) -> List[Path]:
        return [p for p in (self.write_segment() for _ in range(count)) if p is not None]

    def emit_error(self, diagnostics: str, exit_code: int = 1) -> None:
        """Exit unexpectedly, delivering ``diagnostics`` like a crashed encoder."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._exit_code = exit_code
        self._stop_event.set()
        if self._on_error is not None:
            self._on_error(diagnostics)

    def kill(self) -> None:
        self._stop(exit_code=-9)

    def terminate(self, timeout: float) -> None:
        self._stop(exit_code=-15)

    def _stop(self, exit_code: int) -> None:
        with self._lock:
            self._kill_requested = True
            if self._running:
                self._exit_code = exit_code
            self._running = False
        self._stop_event.set()

    def is_running(self) -> bool:
        return self._running

    def get_stats(self) -> EncoderStats:
        return EncoderStats(
            pid=self._pid,
            running=self._running,
            exit_code=self._exit_code,
            kill_requested=self._kill_requested,
        )


class SimulatedRemuxer(Remuxer):
    """Concatenates listed files byte-for-byte.

    The list file is deleted by the export pipeline, so its content is kept
    in ``descriptors`` for inspection.
    """

    def __init__(self, fail_with: Optional[str] = None) -> None:
        self.fail_with = fail_with
        self.descriptors: List[str] = []
        self.calls = 0

    def concat(self, list_file: Path, output_file: Path) -> None:
        self.calls += 1
        content = Path(list_file).read_text()
        self.descriptors.append(content)

        if self.fail_with:
            raise ExportEncodeError(self.fail_with)

        sources = []
        for line in content.splitlines():
            match = _LIST_LINE.match(line)
            if not match:
                raise ExportEncodeError(f"Malformed list entry: {line!r}")
            sources.append(Path(match.group("path").replace("'\\''", "'")))

        try:
            with open(output_file, "wb") as out:
                for source in sources:
                    out.write(source.read_bytes())
        except OSError as e:
            Path(output_file).unlink(missing_ok=True)
            raise ExportEncodeError(f"Simulated remux failed: {e}")


__all__ = ["SimulatedEncoder", "SimulatedRemuxer"]
