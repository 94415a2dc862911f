"""Lifecycle management for startup, shutdown, and cleanup."""

from replay.lifecycle.cleanup_manager import (
    CleanupManager,
    CleanupTask,
    get_cleanup_manager,
)

__all__ = [
    "CleanupManager",
    "CleanupTask",
    "get_cleanup_manager",
]
