"""Encoder abstraction for segment recording and remux backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

ErrorCallback = Callable[[str], None]
"""Callback invoked when the encoder exits without being asked to.

Args:
    diagnostics: Tail of the process diagnostic output
"""


@dataclass(frozen=True)
class EncoderStats:
    pid: Optional[int]
    running: bool
    exit_code: Optional[int]
    kill_requested: bool


class EncoderProcess(ABC):
    """One run of the external segment encoder.

    ``start()`` returning normally is the start event. Errors after that are
    delivered asynchronously through the error callback, from a thread owned
    by the backend.
    """

    @abstractmethod
    def start(self, on_error: ErrorCallback) -> None:
        """Spawn the encoder or raise ProcessSpawnError."""

    @abstractmethod
    def kill(self) -> None:
        """Force-terminate the encoder without waiting for it to exit."""

    @abstractmethod
    def terminate(self, timeout: float) -> None:
        """Ask the encoder to exit, force-killing it after ``timeout`` seconds."""

    @abstractmethod
    def is_running(self) -> bool:
        """Return True while the encoder process is alive."""

    @abstractmethod
    def get_stats(self) -> EncoderStats:
        """Return process diagnostics."""


class Remuxer(ABC):
    @abstractmethod
    def concat(self, list_file: Path, output_file: Path) -> None:
        """Losslessly join the files listed in ``list_file`` into ``output_file``.

        Raises ExportEncodeError on failure; no partial output is left behind.
        """
