"""Capture session supervision: encoder lifecycle, device loss and reconnection."""

from replay.capture.classifier import FailureKind, classify_failure
from replay.capture.reconnection import ReconnectionManager, ReconnectState
from replay.capture.session import (
    CaptureSession,
    SessionState,
    StartResult,
    StartStatus,
    StopResult,
    SupervisorStatus,
)
from replay.capture.supervisor import CaptureSupervisor

__all__ = [
    "CaptureSession",
    "CaptureSupervisor",
    "FailureKind",
    "ReconnectState",
    "ReconnectionManager",
    "SessionState",
    "StartResult",
    "StartStatus",
    "StopResult",
    "SupervisorStatus",
    "classify_failure",
]
