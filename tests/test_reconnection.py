"""Tests for device reconnection polling and failure classification."""

import threading
import time
import unittest

from replay.capture import FailureKind, ReconnectionManager, ReconnectState, classify_failure
from replay.events import ErrorCategory, ErrorEventBus, ErrorSeverity


class TestReconnectionManager(unittest.TestCase):
    """Test suite for ReconnectionManager."""

    def setUp(self):
        self.present = False
        self.resume_calls = 0
        self.resume_result = True
        self.resumed = threading.Event()
        self.bus = ErrorEventBus()
        self.mgr = ReconnectionManager(
            probe=lambda: self.present,
            resume=self._resume,
            poll_interval=0.01,
            device="/dev/video0",
            bus=self.bus,
        )

    def tearDown(self):
        self.mgr.cancel()
        time.sleep(0.05)

    def _resume(self, cancel_event):
        self.resume_calls += 1
        self.resumed.set()
        return self.resume_result

    def _wait_inactive(self, timeout=2.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline and self.mgr.is_waiting:
            time.sleep(0.01)

    def test_initial_state(self):
        self.assertEqual(self.mgr.state, ReconnectState.INACTIVE)
        self.assertFalse(self.mgr.is_waiting)

    def test_begin_enters_waiting(self):
        self.assertTrue(self.mgr.begin())
        self.assertEqual(self.mgr.state, ReconnectState.WAITING)

    def test_begin_is_single_flight(self):
        self.mgr.begin()
        self.assertFalse(self.mgr.begin())

    def test_polls_until_device_returns(self):
        self.mgr.begin()
        time.sleep(0.1)
        self.assertEqual(self.resume_calls, 0)
        self.assertGreater(self.mgr.attempts, 1)

        self.present = True
        self.assertTrue(self.resumed.wait(timeout=2.0))
        self._wait_inactive()

        self.assertEqual(self.resume_calls, 1)
        self.assertEqual(self.mgr.state, ReconnectState.INACTIVE)

    def test_successful_resume_published(self):
        self.present = True
        self.mgr.begin()
        self.resumed.wait(timeout=2.0)
        self._wait_inactive()

        events = self.bus.recent(category=ErrorCategory.DEVICE)
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].severity, ErrorSeverity.INFO)

    def test_failed_resume_keeps_waiting(self):
        self.present = True
        self.resume_result = False
        self.mgr.begin()

        deadline = time.monotonic() + 2.0
        while self.resume_calls < 3 and time.monotonic() < deadline:
            time.sleep(0.01)

        self.assertGreaterEqual(self.resume_calls, 3)
        self.assertTrue(self.mgr.is_waiting)

    def test_resume_exception_keeps_waiting(self):
        def exploding_resume(cancel_event):
            self.resume_calls += 1
            raise RuntimeError("start failed")

        self.mgr._resume = exploding_resume
        self.present = True
        self.mgr.begin()

        deadline = time.monotonic() + 2.0
        while self.resume_calls < 2 and time.monotonic() < deadline:
            time.sleep(0.01)

        self.assertGreaterEqual(self.resume_calls, 2)
        self.assertTrue(self.mgr.is_waiting)

    def test_probe_exception_keeps_polling(self):
        calls = []

        def flaky_probe():
            calls.append(1)
            if len(calls) < 3:
                raise OSError("EIO")
            return True

        self.mgr._probe = flaky_probe
        self.mgr.begin()

        self.assertTrue(self.resumed.wait(timeout=2.0))
        self.assertGreaterEqual(len(calls), 3)

    def test_cancel_stops_polling(self):
        self.mgr.begin()
        self.mgr.cancel()
        self.present = True
        time.sleep(0.1)

        self.assertEqual(self.resume_calls, 0)
        self.assertFalse(self.mgr.is_waiting)

    def test_restart_after_cancel(self):
        self.mgr.begin()
        self.mgr.cancel()

        self.assertTrue(self.mgr.begin())
        self.present = True
        self.assertTrue(self.resumed.wait(timeout=2.0))

    def test_cancel_inside_resume(self):
        def resume_then_cancel(cancel_event):
            self.resume_calls += 1
            self.mgr.cancel()
            return True

        self.mgr._resume = resume_then_cancel
        self.present = True
        self.mgr.begin()
        self._wait_inactive()
        deadline = time.monotonic() + 2.0
        while not self.bus.recent(category=ErrorCategory.DEVICE) and time.monotonic() < deadline:
            time.sleep(0.01)

        self.assertEqual(self.resume_calls, 1)
        self.assertFalse(self.mgr.is_waiting)
        events = self.bus.recent(category=ErrorCategory.DEVICE)
        self.assertEqual([e.severity for e in events], [ErrorSeverity.INFO])


class TestClassifyFailure(unittest.TestCase):
    def test_device_patterns(self):
        for text in (
            "[video4linux2,v4l2 @ 0x55] Cannot open video device /dev/video0: No such file or directory",
            "/dev/video0: Device or resource busy",
            "ioctl(VIDIOC_DQBUF): Input/output error",
            "Cannot open video device /dev/video0: No such device",
            "/dev/video0: Permission denied",
            "tcp://cam: Connection refused",
        ):
            self.assertIs(classify_failure(text), FailureKind.DEVICE, text)

    def test_other_errors(self):
        for text in ("Conversion failed!", "Invalid argument", "", None):
            self.assertIs(classify_failure(text), FailureKind.ENCODER, text)

    def test_case_insensitive(self):
        self.assertIs(classify_failure("NO SUCH DEVICE"), FailureKind.DEVICE)


if __name__ == "__main__":
    unittest.main()
