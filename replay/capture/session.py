"""Capture session record and the results returned by supervisor operations."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from encoder.encoder_process import EncoderProcess


class SessionState(Enum):
    IDLE = "idle"
    STARTING = "starting"
    RECORDING = "recording"
    DISCONNECTED = "disconnected"
    STOPPING = "stopping"


@dataclass
class CaptureSession:
    """One run of the encoder.

    ``session_id`` increases with every spawn; callbacks tagged with an older
    id belong to a previous process and are ignored.
    """

    session_id: int
    state: SessionState = SessionState.STARTING
    started_at: Optional[float] = None
    encoder: Optional[EncoderProcess] = None
    is_buffer_ready: bool = False
    last_sequence_seen: Optional[int] = None


class StartStatus(Enum):
    STARTED = "started"
    ALREADY_ACTIVE = "already_active"
    WAITING_FOR_DEVICE = "waiting_for_device"
    FAILED = "failed"


@dataclass(frozen=True)
class StartResult:
    status: StartStatus
    message: str
    state: SessionState
    session_id: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (StartStatus.STARTED, StartStatus.ALREADY_ACTIVE)

    @property
    def is_error(self) -> bool:
        return self.status is StartStatus.FAILED

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "status": self.status.value,
            "message": self.message,
            "state": self.state.value,
        }
        if self.status is StartStatus.WAITING_FOR_DEVICE:
            data["waitingForDevice"] = True
        if self.error:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class StopResult:
    stopped: bool
    message: str
    segments_deleted: int = 0

    @property
    def is_error(self) -> bool:
        return False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "status": "stopped" if self.stopped else "idle",
            "message": self.message,
            "segmentsDeleted": self.segments_deleted,
        }


@dataclass(frozen=True)
class SupervisorStatus:
    """Point-in-time snapshot of the supervisor."""

    state: SessionState
    session_id: Optional[int]
    started_at: Optional[float]
    elapsed_s: Optional[float]
    buffer_ready: bool
    segments_in_window: int
    required_segments: int
    waiting_for_device: bool
    auto_reconnect: bool
    encoder_pid: Optional[int]
    last_error: Optional[Dict[str, Any]] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "recording": self.state is SessionState.RECORDING,
            "sessionId": self.session_id,
            "startedAt": self.started_at,
            "elapsedSeconds": round(self.elapsed_s, 3) if self.elapsed_s is not None else None,
            "bufferReady": self.buffer_ready,
            "segments": self.segments_in_window,
            "requiredSegments": self.required_segments,
            "waitingForDevice": self.waiting_for_device,
            "autoReconnect": self.auto_reconnect,
            "encoderPid": self.encoder_pid,
            "lastError": self.last_error,
        }


__all__ = [
    "CaptureSession",
    "SessionState",
    "StartResult",
    "StartStatus",
    "StopResult",
    "SupervisorStatus",
]
