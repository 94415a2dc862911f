"""Capture supervisor: owns the encoder session, the segment buffer and exports.

State machine::

    IDLE -> STARTING -> RECORDING -> DISCONNECTED -> (reconnect) -> RECORDING
                                  -> STOPPING -> IDLE
                                  -> IDLE (encoder error, optional auto-restart)

Every trigger (public calls, encoder callbacks, segment notifications, the
device monitor, the reconnection loop and the auto-restart timer) goes
through a method that takes ``self._lock``. Callbacks carry the session id
they were created for and are dropped once that session is gone.
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional

from configs.settings import AppConfig
from encoder.encoder_process import EncoderProcess, Remuxer
from exceptions import EncoderError, ExportError, FileSystemError
from replay.buffer import ReadinessGate, SegmentNaming, SegmentRegistry, WindowSelector, drop_open_segment
from replay.buffer.watcher import SegmentCallback, SegmentWatcher
from replay.capture.classifier import FailureKind, classify_failure
from replay.capture.reconnection import ReconnectionManager
from replay.capture.session import (
    CaptureSession,
    SessionState,
    StartResult,
    StartStatus,
    StopResult,
    SupervisorStatus,
)
from replay.events import ErrorCategory, ErrorEventBus, ErrorSeverity, get_error_bus, publish_error
from replay.export import ExportPipeline, ExportResult, ExportStatus

logger = logging.getLogger(__name__)

EncoderFactory = Callable[[], EncoderProcess]
WatcherFactory = Callable[..., SegmentWatcher]

ACTIVE_STATES = (SessionState.STARTING, SessionState.RECORDING)


class CaptureSupervisor:
    """Keeps a rolling buffer of segments recorded and exports its tail on demand.

    Args:
        config: Application configuration
        probe: Returns True when the capture device is usable
        encoder_factory: Builds a fresh encoder for every session
        remuxer: Joins segments into the exported file
        watcher_factory: Builds the directory watcher, called as
            ``factory(buffer_dir, naming, on_segment, clock=clock)``. None
            disables notifications; the buffer is then discovered by listing
            the directory only.
        clock: Wall clock, seconds since the epoch
        bus: Error bus to publish on (the global bus if None)
    """

    def __init__(
        self,
        config: AppConfig,
        probe: Callable[[], bool],
        encoder_factory: EncoderFactory,
        remuxer: Remuxer,
        watcher_factory: Optional[WatcherFactory] = SegmentWatcher,
        clock: Callable[[], float] = time.time,
        bus: Optional[ErrorEventBus] = None,
    ) -> None:
        self._config = config
        self._probe = probe
        self._encoder_factory = encoder_factory
        self._watcher_factory = watcher_factory
        self._clock = clock
        self._bus = bus

        buf = config.buffer
        self.buffer_dir = Path(buf.buffer_dir)
        self.output_dir = Path(buf.output_dir)
        self._naming = SegmentNaming.from_config(buf)
        self._registry = SegmentRegistry(self.buffer_dir, self._naming, clock=clock)
        self._window = WindowSelector(
            self._registry, buf.buffer_duration_s, wrap_aware=buf.wrap_aware_ordering, clock=clock
        )
        self._gate = ReadinessGate(buf.min_segments_required, clock=clock)
        self._pipeline = ExportPipeline(
            self.buffer_dir,
            self.output_dir,
            remuxer,
            filename_prefix=config.export.filename_prefix,
            clock=clock,
        )
        self._reconnect = ReconnectionManager(
            probe=self._probe_device,
            resume=self._resume_after_reconnect,
            poll_interval=config.reconnect.poll_interval_s,
            device=config.device.path,
            bus=bus,
        )

        self._lock = threading.RLock()
        self._state = SessionState.IDLE
        self._session: Optional[CaptureSession] = None
        self._session_counter = 0
        self._auto_reconnect = config.reconnect.auto_reconnect
        self._watcher: Optional[SegmentWatcher] = None
        self._monitor_stop: Optional[threading.Event] = None
        self._restart_timer: Optional[threading.Timer] = None

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def registry(self) -> SegmentRegistry:
        return self._registry

    @property
    def is_waiting_for_device(self) -> bool:
        return self._reconnect.is_waiting

    def start_recording(self) -> StartResult:
        """Start a capture session.

        Returns a structured result in every case: STARTED, ALREADY_ACTIVE
        (nothing changed), WAITING_FOR_DEVICE (reconnection polling begins
        when enabled) or FAILED (the encoder could not be spawned).
        """
        return self._start()

    def stop_recording(self) -> StopResult:
        with self._lock:
            self._reconnect.cancel()
            self._cancel_restart_timer()

            previous = self._state
            if previous is SessionState.IDLE and self._session is None:
                self._registry.clear()
                self._gate.reset()
                return StopResult(stopped=False, message="Recording was not active")

            self._state = SessionState.STOPPING
            self._end_session(force=False)
            self._registry.clear()
            self._gate.reset()
            self._state = SessionState.IDLE

        logger.info(f"Recording stopped (was {previous.value})")
        return StopResult(stopped=True, message="Recording stopped")

    def cleanup_and_stop(self) -> StopResult:
        """Stop everything and delete all buffered segment files.

        Automatic restarts are suppressed while this runs; the auto-reconnect
        setting in effect before the call is restored afterwards.
        """
        with self._lock:
            previous_auto = self._auto_reconnect
            self._auto_reconnect = False
            try:
                result = self.stop_recording()
                deleted = self._purge_buffer()
            finally:
                self._auto_reconnect = previous_auto

        logger.info(f"Cleanup complete: {deleted} segment files removed")
        return StopResult(
            stopped=result.stopped,
            message="Recording stopped and buffer cleared",
            segments_deleted=deleted,
        )

    def export_window(self) -> ExportResult:
        """Export the last ``buffer_duration_s`` seconds to a single file.

        Not-ready conditions come back as retryable results; only a failed
        remux is reported as an error.
        """
        with self._lock:
            not_ready = self._check_recording()
            if not_ready is not None:
                return not_ready
            session_id = self._session.session_id

        delay = self._config.export.pre_export_delay_s
        if delay > 0:
            time.sleep(delay)

        self._registry.reconcile_with_filesystem()

        with self._lock:
            session = self._session
            if session is None or session.session_id != session_id or self._state is not SessionState.RECORDING:
                return ExportResult(ExportStatus.NOT_RECORDING, "Recording stopped during export")

            now = self._clock()
            window = drop_open_segment(self._window.select(now), now, self._config.buffer.segment_duration_s)
            ready = self._observe_window(session, len(window))
            if not ready:
                return ExportResult(
                    ExportStatus.WARMING_UP,
                    f"Buffer warming up ({len(window)}/{self._gate.required} segments)",
                    current_segments=len(window),
                    required_segments=self._gate.required,
                    elapsed_s=now - session.started_at,
                )
            if not window:
                return ExportResult(
                    ExportStatus.EMPTY_WINDOW,
                    "No segments in the buffer window yet",
                    elapsed_s=now - session.started_at,
                )

        try:
            path = self._pipeline.export(window)
        except ExportError as e:
            publish_error(
                category=ErrorCategory.EXPORT,
                severity=ErrorSeverity.ERROR,
                message=f"Export failed: {e}",
                source="CaptureSupervisor",
                exception=e,
                bus=self._bus,
                segments=len(window),
            )
            return ExportResult(
                ExportStatus.FAILED,
                "Export failed",
                segment_count=len(window),
                error=str(e),
            )

        return ExportResult(
            ExportStatus.SAVED,
            f"Saved {len(window)} segments",
            path=path,
            segment_count=len(window),
        )

    save_last_minute = export_window

    def is_device_connected(self) -> bool:
        return self._probe_device()

    def set_auto_reconnect(self, enabled: bool) -> bool:
        """Enable or disable reconnection polling and restart after errors."""
        with self._lock:
            self._auto_reconnect = bool(enabled)
            if not self._auto_reconnect:
                self._reconnect.cancel()
                self._cancel_restart_timer()
            elif self._state is SessionState.DISCONNECTED:
                self._reconnect.begin()

            logger.info(f"Auto-reconnect {'enabled' if self._auto_reconnect else 'disabled'}")
            return self._auto_reconnect

    def notify_device_lost(self, reason: str = "Device reported lost") -> bool:
        """Report device loss from outside (e.g. a udev hook).

        Returns:
            True if an active session was torn down
        """
        with self._lock:
            if self._state in ACTIVE_STATES and self._session is not None:
                self._handle_device_lost(reason)
                return True
            if self._state is SessionState.DISCONNECTED and self._auto_reconnect:
                self._reconnect.begin()
            return False

    def refresh_buffer(self) -> int:
        """Reconcile the registry with the buffer directory and update readiness.

        Returns:
            Number of segments in the current window
        """
        self._registry.reconcile_with_filesystem()
        with self._lock:
            count = self._window.count()
            if self._session is not None and self._state is SessionState.RECORDING:
                self._observe_window(self._session, count)
            return count

    def status(self) -> SupervisorStatus:
        last_problem = (self._bus or get_error_bus()).last_problem()
        with self._lock:
            session = self._session
            now = self._clock()
            started_at = session.started_at if session else None
            encoder_pid = None
            if session is not None and session.encoder is not None:
                encoder_pid = session.encoder.get_stats().pid
            return SupervisorStatus(
                state=self._state,
                session_id=session.session_id if session else None,
                started_at=started_at,
                elapsed_s=(now - started_at) if started_at is not None else None,
                buffer_ready=self._gate.is_ready(),
                segments_in_window=self._window.count(now),
                required_segments=self._gate.required,
                waiting_for_device=self._reconnect.is_waiting,
                auto_reconnect=self._auto_reconnect,
                encoder_pid=encoder_pid,
                last_error=last_problem.as_dict() if last_problem else None,
            )

    # ------------------------------------------------------------------
    # Session start
    # ------------------------------------------------------------------

    def _start(self, cancel_event: Optional[threading.Event] = None) -> StartResult:
        from_reconnect = cancel_event is not None

        with self._lock:
            early = self._check_can_start(cancel_event)
            if early is not None:
                return early
            if not from_reconnect:
                self._reconnect.cancel()
            self._cancel_restart_timer()

        # Probing can block for the probe timeout; keep it outside the lock
        available = self._probe_device()

        with self._lock:
            early = self._check_can_start(cancel_event)
            if early is not None:
                return early

            if not available:
                return self._enter_waiting(from_reconnect)

            return self._spawn_session(from_reconnect)

    def _check_can_start(self, cancel_event: Optional[threading.Event]) -> Optional[StartResult]:
        if self._state in ACTIVE_STATES:
            return StartResult(
                StartStatus.ALREADY_ACTIVE,
                "Recording already active",
                state=self._state,
                session_id=self._session.session_id if self._session else None,
            )
        if cancel_event is not None and (
            cancel_event.is_set() or self._state is not SessionState.DISCONNECTED
        ):
            return StartResult(
                StartStatus.FAILED,
                "Reconnection cancelled",
                state=self._state,
                error="cancelled",
            )
        return None

    def _enter_waiting(self, from_reconnect: bool) -> StartResult:
        device = self._config.device.path
        logger.warning(f"Capture device {device} not available")

        self._state = SessionState.DISCONNECTED
        self._registry.clear()
        self._gate.reset()

        if not from_reconnect:
            publish_error(
                category=ErrorCategory.DEVICE,
                severity=ErrorSeverity.WARNING,
                message=f"Capture device {device} not available, waiting for it",
                source="CaptureSupervisor",
                bus=self._bus,
                device=device,
            )
            if self._auto_reconnect:
                self._reconnect.begin()

        return StartResult(
            StartStatus.WAITING_FOR_DEVICE,
            "Device not connected, waiting for it",
            state=self._state,
        )

    def _spawn_session(self, from_reconnect: bool) -> StartResult:
        self._state = SessionState.STARTING
        self._session_counter += 1
        session = CaptureSession(session_id=self._session_counter)
        self._session = session

        try:
            self.buffer_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            return self._spawn_failed(session, EncoderError(f"Cannot create buffer directory: {e}"), from_reconnect)

        removed = self._purge_buffer()
        self._gate.reset()
        if removed:
            logger.debug(f"Removed {removed} stale segments before starting")

        session_id = session.session_id
        try:
            encoder = self._encoder_factory()
            encoder.start(on_error=lambda diagnostics: self._on_encoder_error(session_id, diagnostics))
        except EncoderError as e:
            return self._spawn_failed(session, e, from_reconnect)

        session.encoder = encoder
        session.started_at = self._clock()
        session.state = SessionState.RECORDING
        self._state = SessionState.RECORDING
        self._registry.clear()
        self._gate.reset()
        self._start_observation(session_id)

        if from_reconnect:
            self._reconnect.cancel()

        logger.info(f"Recording started (session {session_id})")
        return StartResult(
            StartStatus.STARTED,
            "Recording started",
            state=self._state,
            session_id=session_id,
        )

    def _spawn_failed(self, session: CaptureSession, error: Exception, from_reconnect: bool) -> StartResult:
        logger.error(f"Failed to start encoder for session {session.session_id}: {error}")
        self._session = None
        self._state = SessionState.DISCONNECTED if from_reconnect else SessionState.IDLE

        publish_error(
            category=ErrorCategory.ENCODER,
            severity=ErrorSeverity.ERROR,
            message=f"Failed to start encoder: {error}",
            source="CaptureSupervisor",
            exception=error,
            bus=self._bus,
            session_id=session.session_id,
        )

        if not from_reconnect:
            self._schedule_restart()

        return StartResult(
            StartStatus.FAILED,
            "Failed to start recording",
            state=self._state,
            session_id=session.session_id,
            error=str(error),
        )

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def _on_encoder_error(self, session_id: int, diagnostics: str) -> None:
        with self._lock:
            if not self._is_current(session_id):
                logger.debug(f"Ignoring encoder error from stale session {session_id}")
                return

            if classify_failure(diagnostics) is FailureKind.DEVICE:
                self._handle_device_lost(f"Encoder lost the device: {_last_line(diagnostics)}")
                return

            logger.error(f"Encoder exited unexpectedly (session {session_id}): {_last_line(diagnostics)}")
            publish_error(
                category=ErrorCategory.ENCODER,
                severity=ErrorSeverity.ERROR,
                message="Encoder exited unexpectedly",
                source="CaptureSupervisor",
                bus=self._bus,
                session_id=session_id,
                diagnostics=diagnostics,
            )
            self._end_session(force=True)
            self._registry.clear()
            self._gate.reset()
            self._state = SessionState.IDLE
            self._schedule_restart()

    def _on_segment(self, session_id: int, name: str, timestamp: float) -> None:
        with self._lock:
            if not self._is_current(session_id):
                return
            segment = self._registry.record(name, timestamp)
            if segment is None:
                return
            self._session.last_sequence_seen = segment.sequence_number
            self._observe_window(self._session, self._window.count(timestamp))

    def _handle_device_lost(self, reason: str) -> None:
        device = self._config.device.path
        logger.warning(f"Device {device} disconnected: {reason}")

        self._end_session(force=True)
        self._registry.clear()
        self._gate.reset()
        self._state = SessionState.DISCONNECTED

        publish_error(
            category=ErrorCategory.DEVICE,
            severity=ErrorSeverity.ERROR,
            message=f"Capture device {device} disconnected",
            source="CaptureSupervisor",
            bus=self._bus,
            device=device,
            reason=reason,
        )

        if self._auto_reconnect:
            self._reconnect.begin()

    def _resume_after_reconnect(self, cancel_event: threading.Event) -> bool:
        with self._lock:
            if self._state is SessionState.RECORDING:
                return True
            if cancel_event.is_set() or self._state is not SessionState.DISCONNECTED:
                return False
            self._purge_buffer()
            self._gate.reset()

        if cancel_event.wait(self._config.reconnect.settle_delay_s):
            return False

        result = self._start(cancel_event)
        return result.status in (StartStatus.STARTED, StartStatus.ALREADY_ACTIVE)

    def _monitor_loop(self, session_id: int, stop_event: threading.Event) -> None:
        interval = self._config.reconnect.monitor_interval_s
        while not stop_event.wait(interval):
            if not self._probe_device():
                with self._lock:
                    if self._is_current(session_id):
                        self._handle_device_lost("Device no longer present")
                break

            try:
                self.refresh_buffer()
            except Exception as e:
                logger.error(f"Buffer refresh failed: {e}", exc_info=True)

    def _auto_restart(self) -> None:
        with self._lock:
            if self._restart_timer is None or threading.current_thread() is not self._restart_timer:
                return
            self._restart_timer = None
            if not self._auto_reconnect or self._state is not SessionState.IDLE:
                return

        logger.info("Restarting recording after encoder error")
        self.start_recording()

    # ------------------------------------------------------------------
    # Helpers (call with self._lock held)
    # ------------------------------------------------------------------

    def _is_current(self, session_id: int) -> bool:
        return (
            self._session is not None
            and self._session.session_id == session_id
            and self._state in ACTIVE_STATES
        )

    def _check_recording(self) -> Optional[ExportResult]:
        if self._state is not SessionState.RECORDING or self._session is None:
            if self._state is SessionState.DISCONNECTED:
                message = "Device disconnected, waiting for it to reconnect"
            else:
                message = "Recording is not active"
            return ExportResult(ExportStatus.NOT_RECORDING, message)

        elapsed = self._clock() - self._session.started_at
        min_elapsed = self._config.buffer.min_recording_s
        if elapsed < min_elapsed:
            return ExportResult(
                ExportStatus.JUST_STARTED,
                f"Recording started {elapsed:.1f}s ago, wait at least {min_elapsed:g}s",
                elapsed_s=elapsed,
            )
        return None

    def _purge_buffer(self) -> int:
        try:
            return self._registry.purge()
        except FileSystemError as e:
            publish_error(
                category=ErrorCategory.FILESYSTEM,
                severity=ErrorSeverity.WARNING,
                message=f"Could not clear the segment buffer: {e}",
                source="CaptureSupervisor",
                exception=e,
                bus=self._bus,
                path=e.path,
            )
            return 0

    def _observe_window(self, session: CaptureSession, count: int) -> bool:
        session.is_buffer_ready = self._gate.observe(count)
        return session.is_buffer_ready

    def _start_observation(self, session_id: int) -> None:
        if self._watcher_factory is not None:
            watcher = self._watcher_factory(
                self.buffer_dir,
                self._naming,
                self._segment_callback(session_id),
                clock=self._clock,
            )
            if watcher.start():
                self._watcher = watcher

        stop_event = threading.Event()
        self._monitor_stop = stop_event
        threading.Thread(
            target=self._monitor_loop,
            args=(session_id, stop_event),
            name=f"DeviceMonitor-{session_id}",
            daemon=True,
        ).start()

    def _segment_callback(self, session_id: int) -> SegmentCallback:
        def on_segment(name: str, timestamp: float) -> None:
            self._on_segment(session_id, name, timestamp)

        return on_segment

    def _stop_observation(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
        if self._monitor_stop is not None:
            self._monitor_stop.set()
            self._monitor_stop = None

    def _end_session(self, force: bool) -> None:
        self._stop_observation()
        session = self._session
        self._session = None
        if session is None or session.encoder is None:
            return

        encoder = session.encoder
        policy = self._config.encoder.kill_policy
        if force or policy == "force":
            encoder.kill()
        else:
            timeout = self._config.encoder.graceful_timeout_s
            threading.Thread(
                target=encoder.terminate,
                args=(timeout,),
                name=f"EncoderStop-{session.session_id}",
                daemon=True,
            ).start()

    def _schedule_restart(self) -> None:
        reconnect = self._config.reconnect
        if not (reconnect.auto_restart_on_error and self._auto_reconnect):
            return

        self._cancel_restart_timer()
        timer = threading.Timer(reconnect.auto_restart_delay_s, self._auto_restart)
        timer.daemon = True
        timer.name = "AutoRestart"
        self._restart_timer = timer
        timer.start()
        logger.info(f"Restart scheduled in {reconnect.auto_restart_delay_s:g}s")

    def _cancel_restart_timer(self) -> None:
        if self._restart_timer is not None:
            self._restart_timer.cancel()
            self._restart_timer = None

    def _probe_device(self) -> bool:
        try:
            return bool(self._probe())
        except Exception as e:
            logger.warning(f"Device probe raised, treating device as absent: {e}")
            return False


def _last_line(text: str) -> str:
    lines: List[str] = [line for line in (text or "").splitlines() if line.strip()]
    return lines[-1] if lines else ""


__all__ = ["CaptureSupervisor", "EncoderFactory", "WatcherFactory"]
