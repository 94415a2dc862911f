"""Classify encoder diagnostics as device loss or generic failure."""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Tuple

DEVICE_ERROR_PATTERNS: Tuple[str, ...] = (
    "no such file or directory",
    "device or resource busy",
    "input/output error",
    "no such device",
    "cannot open video device",
    "permission denied",
    "connection refused",
    "device not found",
    "inappropriate ioctl for device",
)


class FailureKind(Enum):
    DEVICE = "device"  # Capture device gone or unusable; wait for it to come back
    ENCODER = "encoder"  # Anything else; restart after a delay


def classify_failure(
    diagnostics: str, patterns: Iterable[str] = DEVICE_ERROR_PATTERNS
) -> FailureKind:
    """Match diagnostic text case-insensitively against device error patterns."""
    text = (diagnostics or "").lower()
    if any(pattern in text for pattern in patterns):
        return FailureKind.DEVICE
    return FailureKind.ENCODER


__all__ = ["DEVICE_ERROR_PATTERNS", "FailureKind", "classify_failure"]
