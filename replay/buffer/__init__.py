"""Segment ring buffer bookkeeping.

This module tracks segment files written by the encoder, selects the
trailing window for export, and gates exports until enough segments exist.
"""

from replay.buffer.readiness import ReadinessGate
from replay.buffer.registry import SegmentRegistry
from replay.buffer.segments import Segment, SegmentNaming, TimestampSource, delete_segment_files
from replay.buffer.window import WindowSelector, drop_open_segment, select_window

__all__ = [
    "ReadinessGate",
    "Segment",
    "SegmentNaming",
    "SegmentRegistry",
    "TimestampSource",
    "WindowSelector",
    "delete_segment_files",
    "drop_open_segment",
    "select_window",
]
