"""Cleanup manager for shutdown of the recorder and its encoder process."""

from __future__ import annotations

import atexit
import logging
import signal
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_SIGNALS = tuple(
    sig for sig in (getattr(signal, name, None) for name in ("SIGINT", "SIGTERM", "SIGQUIT")) if sig
)


@dataclass
class CleanupTask:
    """Task to execute during cleanup."""

    name: str
    callback: Callable[[], None]
    timeout: float = 5.0
    critical: bool = False  # If True, failure marks the shutdown unsuccessful


class CleanupManager:
    """Runs registered cleanup tasks once, at exit or on a termination signal.

    An orphaned encoder keeps the capture device busy and keeps writing into
    the buffer directory, so the recorder registers its stop routine here.
    """

    def __init__(self, default_timeout: float = 10.0):
        self._tasks: List[CleanupTask] = []
        self._default_timeout = default_timeout
        self._lock = threading.Lock()
        self._cleanup_in_progress = False
        self._completed = False

    def register_cleanup(
        self,
        name: str,
        callback: Callable[[], None],
        timeout: Optional[float] = None,
        critical: bool = False,
    ) -> None:
        """Register cleanup task.

        Args:
            name: Task name
            callback: Cleanup callback function
            timeout: Timeout for this task (uses default if None)
            critical: Whether failure of this task fails the cleanup
        """
        with self._lock:
            self._tasks.append(
                CleanupTask(
                    name=name,
                    callback=callback,
                    timeout=timeout or self._default_timeout,
                    critical=critical,
                )
            )
            logger.debug(f"Registered cleanup task: {name}")

    def unregister_cleanup(self, name: str) -> bool:
        with self._lock:
            for i, task in enumerate(self._tasks):
                if task.name == name:
                    self._tasks.pop(i)
                    logger.debug(f"Unregistered cleanup task: {name}")
                    return True
        return False

    def cleanup(self) -> bool:
        """Execute all cleanup tasks in registration order.

        Returns:
            True if all critical tasks succeeded
        """
        with self._lock:
            if self._cleanup_in_progress or self._completed:
                logger.debug("Cleanup already run or in progress")
                return False
            self._cleanup_in_progress = True
            tasks = self._tasks.copy()

        logger.info("Starting cleanup...")
        all_critical_succeeded = True
        start_time = time.time()

        for task in tasks:
            task_start = time.time()
            logger.info(f"Executing cleanup task: {task.name}")

            try:
                if self._run_with_timeout(task.callback, task.timeout):
                    elapsed = time.time() - task_start
                    logger.info(f"Cleanup task '{task.name}' completed in {elapsed:.2f}s")
                else:
                    logger.error(f"Cleanup task '{task.name}' timed out after {task.timeout}s")
                    if task.critical:
                        all_critical_succeeded = False

            except Exception as e:
                logger.error(f"Cleanup task '{task.name}' failed: {e}", exc_info=True)
                if task.critical:
                    all_critical_succeeded = False

        logger.info(f"Cleanup completed in {time.time() - start_time:.2f}s")

        with self._lock:
            self._cleanup_in_progress = False
            self._completed = True
        return all_critical_succeeded

    def _run_with_timeout(self, callback: Callable[[], None], timeout: float) -> bool:
        """Run callback in a worker thread; True if it finished before timeout."""
        result = {"completed": False, "exception": None}

        def wrapper():
            try:
                callback()
                result["completed"] = True
            except Exception as e:
                result["exception"] = e

        thread = threading.Thread(target=wrapper, name="CleanupTask", daemon=True)
        thread.start()
        thread.join(timeout=timeout)

        if result["exception"]:
            raise result["exception"]

        return result["completed"]

    def install(
        self,
        signals: Iterable[int] = DEFAULT_SIGNALS,
        on_signal: Optional[Callable[[int], None]] = None,
    ) -> None:
        """Run cleanup at interpreter exit and on the given signals.

        Must be called from the main thread.

        Args:
            signals: Signals that trigger cleanup
            on_signal: Called with the signal number after cleanup ran
        """
        atexit.register(self.cleanup)

        def handler(signum, frame):
            logger.info(f"Received signal {signum}, shutting down")
            self.cleanup()
            if on_signal is not None:
                on_signal(signum)

        for sig in signals:
            signal.signal(sig, handler)


# Global cleanup manager instance
_cleanup_manager: Optional[CleanupManager] = None
_manager_lock = threading.Lock()


def get_cleanup_manager() -> CleanupManager:
    """Get global cleanup manager instance."""
    global _cleanup_manager
    if _cleanup_manager is None:
        with _manager_lock:
            if _cleanup_manager is None:
                _cleanup_manager = CleanupManager()
                logger.debug("Created global cleanup manager")
    return _cleanup_manager


__all__ = [
    "CleanupTask",
    "CleanupManager",
    "get_cleanup_manager",
]
