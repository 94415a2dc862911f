"""ffmpeg-based segment encoder and concat remuxer."""

from __future__ import annotations

import logging
import subprocess
import threading
from collections import deque
from pathlib import Path
from typing import Deque, List, Optional

import psutil

from configs.settings import AppConfig
from exceptions import ExportEncodeError, ProcessSpawnError

from .encoder_process import EncoderProcess, EncoderStats, ErrorCallback, Remuxer

logger = logging.getLogger(__name__)

DIAGNOSTIC_TAIL_LINES = 40


def build_segment_command(config: AppConfig) -> List[str]:
    """Build the ffmpeg command line for continuous segment recording."""
    enc = config.encoder
    buf = config.buffer
    segment_pattern = str(Path(buf.buffer_dir) / buf.segment_pattern)

    return [
        enc.ffmpeg_path,
        "-hide_banner",
        "-nostats",
        "-loglevel", "warning",
        "-f", config.device.input_format,
        "-framerate", str(enc.fps),
        "-video_size", enc.resolution,
        "-i", config.device.path,
        "-c:v", enc.codec,
        "-b:v", enc.bitrate,
        "-preset", enc.preset,
        "-tune", "zerolatency",
        "-profile:v", "baseline",
        "-level", "3.1",
        "-pix_fmt", "yuv420p",
        # Segment muxer writes a fixed ring of files
        "-f", "segment",
        "-segment_time", f"{buf.segment_duration_s:g}",
        "-segment_wrap", str(buf.segment_count),
        "-reset_timestamps", "1",
        "-avoid_negative_ts", "make_zero",
        "-flush_packets", "1",
        "-fflags", "+genpts",
        "-y",
        segment_pattern,
    ]


def build_concat_command(
    ffmpeg_path: str, list_file: Path, output_file: Path, faststart: bool = True
) -> List[str]:
    """Build the ffmpeg command line for a stream-copy concat of a list file."""
    cmd = [
        ffmpeg_path,
        "-hide_banner",
        "-nostats",
        "-loglevel", "error",
        "-f", "concat",
        "-safe", "0",
        "-i", str(list_file),
        "-c", "copy",
    ]
    if faststart:
        cmd += ["-movflags", "+faststart"]
    cmd += ["-y", str(output_file)]
    return cmd


def _signal_process_tree(pid: int, graceful: bool, timeout: float) -> None:
    """Terminate or kill a process and its children."""
    try:
        parent = psutil.Process(pid)
        procs = [parent] + parent.children(recursive=True)
    except psutil.NoSuchProcess:
        return

    for proc in procs:
        try:
            if graceful:
                proc.terminate()
            else:
                proc.kill()
        except psutil.NoSuchProcess:
            pass

    if not graceful:
        return

    _, alive = psutil.wait_procs(procs, timeout=timeout)
    for proc in alive:
        logger.warning(f"Encoder process {proc.pid} ignored SIGTERM for {timeout}s, killing")
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass


class FfmpegSegmentEncoder(EncoderProcess):
    """Runs ffmpeg's segment muxer against the capture device."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config
        self._process: Optional[subprocess.Popen] = None
        self._reader_thread: Optional[threading.Thread] = None
        self._diagnostics: Deque[str] = deque(maxlen=DIAGNOSTIC_TAIL_LINES)
        self._kill_requested = False
        self._exit_code: Optional[int] = None

    @property
    def command(self) -> List[str]:
        return build_segment_command(self._config)

    def start(self, on_error: ErrorCallback) -> None:
        if self._process is not None:
            raise ProcessSpawnError("Encoder already started")

        cmd = self.command
        logger.debug(f"Spawning encoder: {' '.join(cmd)}")

        try:
            self._process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
            )
        except OSError as e:
            raise ProcessSpawnError(f"Failed to spawn {cmd[0]}: {e}", diagnostics=str(e))

        logger.info(
            f"ffmpeg (pid {self._process.pid}) recording segments from {self._config.device.path}"
        )

        self._reader_thread = threading.Thread(
            target=self._read_diagnostics,
            args=(self._process, on_error),
            name=f"EncoderStderr-{self._process.pid}",
            daemon=True,
        )
        self._reader_thread.start()

    def _read_diagnostics(self, process: subprocess.Popen, on_error: ErrorCallback) -> None:
        """Collect stderr until the process exits, then report unexpected exits."""
        assert process.stderr is not None
        for line in process.stderr:
            line = line.rstrip()
            if line:
                self._diagnostics.append(line)
                logger.debug(f"ffmpeg: {line}")

        self._exit_code = process.wait()
        process.stderr.close()

        if self._kill_requested:
            logger.debug(f"Encoder pid {process.pid} exited after kill (code {self._exit_code})")
            return

        diagnostics = "\n".join(self._diagnostics) or f"ffmpeg exited with code {self._exit_code}"
        try:
            on_error(diagnostics)
        except Exception as e:
            logger.error(f"Encoder error callback failed: {e}", exc_info=True)

    def kill(self) -> None:
        self._kill_requested = True
        if self._process is None or self._process.poll() is not None:
            return
        _signal_process_tree(self._process.pid, graceful=False, timeout=0.0)

    def terminate(self, timeout: float) -> None:
        self._kill_requested = True
        if self._process is None or self._process.poll() is not None:
            return
        _signal_process_tree(self._process.pid, graceful=True, timeout=timeout)

    def is_running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def get_stats(self) -> EncoderStats:
        return EncoderStats(
            pid=self._process.pid if self._process else None,
            running=self.is_running(),
            exit_code=self._exit_code,
            kill_requested=self._kill_requested,
        )


class FfmpegRemuxer(Remuxer):
    """Joins segments with ffmpeg's concat demuxer, without re-encoding."""

    def __init__(self, ffmpeg_path: str = "ffmpeg", timeout: float = 60.0, faststart: bool = True) -> None:
        self._ffmpeg_path = ffmpeg_path
        self._timeout = timeout
        self._faststart = faststart

    def concat(self, list_file: Path, output_file: Path) -> None:
        cmd = build_concat_command(self._ffmpeg_path, list_file, output_file, self._faststart)
        logger.debug(f"Running remux: {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            self._discard(output_file)
            raise ExportEncodeError(f"Remux timed out after {self._timeout}s")
        except OSError as e:
            self._discard(output_file)
            raise ExportEncodeError(f"Failed to run {self._ffmpeg_path}: {e}")

        if result.returncode != 0:
            self._discard(output_file)
            stderr = (result.stderr or "").strip()[-500:]
            raise ExportEncodeError(f"Remux failed with code {result.returncode}: {stderr}")

        if not output_file.exists() or output_file.stat().st_size == 0:
            self._discard(output_file)
            raise ExportEncodeError(f"Remux produced no output: {output_file}")

    @staticmethod
    def _discard(output_file: Path) -> None:
        try:
            output_file.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove partial export {output_file}: {e}")


__all__ = [
    "FfmpegRemuxer",
    "FfmpegSegmentEncoder",
    "build_concat_command",
    "build_segment_command",
]
