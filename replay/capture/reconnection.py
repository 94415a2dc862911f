"""Device reconnection: poll until the capture device returns, then resume."""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable, Optional

from replay.events import ErrorCategory, ErrorEventBus, ErrorSeverity, publish_error

logger = logging.getLogger(__name__)


class ReconnectState(Enum):
    """Reconnection state."""

    INACTIVE = "inactive"
    WAITING = "waiting"


ResumeCallback = Callable[[threading.Event], bool]
"""Callback invoked once the device is visible again.

Args:
    cancel_event: Set when the wait is cancelled; long waits inside the
        callback should honor it

Returns:
    True if capture resumed, False to keep waiting
"""


class ReconnectionManager:
    """Waits for the capture device to reappear and hands control back.

    Only one poll loop runs at a time: ``begin()`` while already WAITING is a
    no-op. ``cancel()`` never joins the loop thread, so it can be called
    from inside the resume callback or while holding the caller's lock.
    """

    def __init__(
        self,
        probe: Callable[[], bool],
        resume: ResumeCallback,
        poll_interval: float = 1.0,
        device: str = "",
        bus: Optional[ErrorEventBus] = None,
    ):
        """Initialize reconnection manager.

        Args:
            probe: Returns True when the device is present and usable
            resume: Called after the device is seen again
            poll_interval: Seconds between probes
            device: Device path, for log and event messages
            bus: Error bus to publish on (the global bus if None)
        """
        self._probe = probe
        self._resume = resume
        self._poll_interval = poll_interval
        self._device = device
        self._bus = bus

        self._lock = threading.Lock()
        self._state = ReconnectState.INACTIVE
        self._cancel_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._attempts = 0

    @property
    def state(self) -> ReconnectState:
        with self._lock:
            return self._state

    @property
    def is_waiting(self) -> bool:
        return self.state is ReconnectState.WAITING

    @property
    def attempts(self) -> int:
        """Probes performed by the current (or last) wait."""
        with self._lock:
            return self._attempts

    def begin(self) -> bool:
        """Start waiting for the device.

        Returns:
            True if a new poll loop was started, False if one is already running
        """
        with self._lock:
            if self._state is ReconnectState.WAITING:
                logger.debug("Reconnection already in progress")
                return False

            cancel_event = threading.Event()
            self._cancel_event = cancel_event
            self._state = ReconnectState.WAITING
            self._attempts = 0
            self._thread = threading.Thread(
                target=self._poll_loop,
                args=(cancel_event,),
                name="DeviceReconnect",
                daemon=True,
            )
            self._thread.start()

        logger.info(f"Waiting for device {self._device} (polling every {self._poll_interval}s)")
        return True

    def cancel(self) -> None:
        with self._lock:
            if self._cancel_event is not None:
                self._cancel_event.set()
            was_waiting = self._state is ReconnectState.WAITING
            self._state = ReconnectState.INACTIVE
            self._cancel_event = None
            self._thread = None

        if was_waiting:
            logger.info("Reconnection polling cancelled")

    def _poll_loop(self, cancel_event: threading.Event) -> None:
        while not cancel_event.wait(self._poll_interval):
            with self._lock:
                self._attempts += 1
                attempt = self._attempts

            try:
                available = self._probe()
            except Exception as e:
                logger.warning(f"Device probe failed (attempt {attempt}): {e}")
                continue

            if not available:
                continue

            logger.info(f"Device {self._device} is back after {attempt} probes, resuming capture")
            try:
                resumed = self._resume(cancel_event)
            except Exception as e:
                logger.error(f"Resume after reconnection failed: {e}", exc_info=True)
                resumed = False

            # Checked before the cancel flag: a successful resume cancels the wait itself
            if resumed:
                publish_error(
                    category=ErrorCategory.DEVICE,
                    severity=ErrorSeverity.INFO,
                    message=f"Device {self._device} reconnected, recording resumed",
                    source="ReconnectionManager",
                    bus=self._bus,
                    device=self._device,
                    attempts=attempt,
                )
                break

            if cancel_event.is_set():
                break

            logger.warning("Capture did not resume after reconnection, still waiting")

        with self._lock:
            # A newer loop may have replaced this one after a cancel
            if self._cancel_event is cancel_event:
                self._state = ReconnectState.INACTIVE
                self._cancel_event = None
                self._thread = None


__all__ = ["ReconnectState", "ReconnectionManager", "ResumeCallback"]
