"""Event bus for device, encoder, buffer and export problems.

The capture supervisor and the reconnection logic publish here. The
launcher subscribes to log events as they happen and summarizes the
problem counts at shutdown; ``CaptureSupervisor.status()`` reports the
most recent problem back to the kiosk.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    INFO = "info"  # Recovery or state change, not a failure
    WARNING = "warning"  # Recording goes on, or will resume by itself
    ERROR = "error"  # An operation failed
    CRITICAL = "critical"  # Recording cannot continue


class ErrorCategory(Enum):
    DEVICE = "device"
    ENCODER = "encoder"
    BUFFER = "buffer"
    EXPORT = "export"
    FILESYSTEM = "filesystem"
    SYSTEM = "system"


_LOG_LEVELS = {
    ErrorSeverity.INFO: logging.INFO,
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


@dataclass(frozen=True)
class ErrorEvent:
    """Something the supervisor wants surfaced, with its context."""

    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    source: str
    timestamp: float = field(default_factory=time.time)
    exception: Optional[Exception] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_problem(self) -> bool:
        return self.severity is not ErrorSeverity.INFO

    def as_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "message": self.message,
            "source": self.source,
            "timestamp": self.timestamp,
        }

    def __str__(self) -> str:
        suffix = f" ({type(self.exception).__name__})" if self.exception else ""
        return f"[{self.severity.value.upper()}] {self.category.value}/{self.source}: {self.message}{suffix}"


Subscriber = Callable[[ErrorEvent], None]


class ErrorEventBus:
    """Publish-subscribe bus that also remembers recent events.

    Subscribers registered for a category see only that category; those
    registered with ``category=None`` see everything. They run on the
    publishing thread, outside the bus lock, and one failing subscriber
    does not stop the others.

    Problem counts and ``last_problem()`` ignore INFO events.
    """

    def __init__(self, recent_size: int = 50) -> None:
        self._lock = threading.Lock()
        self._subscribers: Dict[Optional[ErrorCategory], List[Subscriber]] = {}
        self._recent: Deque[ErrorEvent] = deque(maxlen=recent_size)
        self._problem_counts: Counter = Counter()
        self._last_problem: Optional[ErrorEvent] = None

    def subscribe(self, callback: Subscriber, category: Optional[ErrorCategory] = None) -> None:
        with self._lock:
            self._subscribers.setdefault(category, []).append(callback)

    def unsubscribe(self, callback: Subscriber, category: Optional[ErrorCategory] = None) -> None:
        with self._lock:
            callbacks = self._subscribers.get(category, [])
            if callback in callbacks:
                callbacks.remove(callback)

    def publish(self, event: ErrorEvent) -> None:
        with self._lock:
            self._recent.append(event)
            if event.is_problem:
                self._problem_counts[event.category] += 1
                self._last_problem = event
            callbacks = self._subscribers.get(event.category, []) + self._subscribers.get(None, [])

        logger.log(_LOG_LEVELS[event.severity], str(event), exc_info=event.exception)

        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                name = getattr(callback, "__name__", repr(callback))
                logger.error(f"Event subscriber {name} failed: {e}", exc_info=True)

    def recent(self, category: Optional[ErrorCategory] = None, limit: Optional[int] = None) -> List[ErrorEvent]:
        """Most recent events, oldest first."""
        with self._lock:
            events = list(self._recent)
        if category is not None:
            events = [e for e in events if e.category is category]
        return events[-limit:] if limit else events

    def problem_counts(self) -> Dict[ErrorCategory, int]:
        with self._lock:
            return dict(self._problem_counts)

    def last_problem(self) -> Optional[ErrorEvent]:
        with self._lock:
            return self._last_problem


_error_bus: Optional[ErrorEventBus] = None
_bus_lock = threading.Lock()


def get_error_bus() -> ErrorEventBus:
    """Process-wide bus used when a component is not given one."""
    global _error_bus
    with _bus_lock:
        if _error_bus is None:
            _error_bus = ErrorEventBus()
        return _error_bus


def publish_error(
    category: ErrorCategory,
    severity: ErrorSeverity,
    message: str,
    source: str,
    exception: Optional[Exception] = None,
    bus: Optional[ErrorEventBus] = None,
    **metadata: Any,
) -> ErrorEvent:
    """Build an event and publish it on ``bus`` (the process-wide bus if None)."""
    event = ErrorEvent(
        category=category,
        severity=severity,
        message=message,
        source=source,
        exception=exception,
        metadata=metadata,
    )
    (bus or get_error_bus()).publish(event)
    return event


__all__ = [
    "ErrorCategory",
    "ErrorEvent",
    "ErrorEventBus",
    "ErrorSeverity",
    "Subscriber",
    "get_error_bus",
    "publish_error",
]
