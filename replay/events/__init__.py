"""Problem reporting shared by the supervisor, reconnection and launcher."""

from replay.events.error_bus import (
    ErrorCategory,
    ErrorEvent,
    ErrorEventBus,
    ErrorSeverity,
    Subscriber,
    get_error_bus,
    publish_error,
)

__all__ = [
    "ErrorCategory",
    "ErrorEvent",
    "ErrorEventBus",
    "ErrorSeverity",
    "Subscriber",
    "get_error_bus",
    "publish_error",
]
