"""Tests for the inotify segment watcher and its use by the supervisor."""

from __future__ import annotations

import os
import sys
import threading
import time

import pytest

from replay.buffer import SegmentNaming

pytestmark = pytest.mark.skipif(not sys.platform.startswith("linux"), reason="inotify is Linux only")

if sys.platform.startswith("linux"):
    from replay.buffer.watcher import SegmentWatcher


class TestSegmentWatcher:
    def test_reports_closed_segments_only(self, tmp_path):
        seen = []
        got_segment = threading.Event()

        def on_segment(name, timestamp):
            seen.append((name, timestamp))
            got_segment.set()

        watcher = SegmentWatcher(tmp_path, SegmentNaming(), on_segment, clock=lambda: 77.0, poll_timeout=0.05)
        assert watcher.start()
        try:
            (tmp_path / "filelist-1.txt").write_text("ignored")
            (tmp_path / "segment005.mp4").write_bytes(b"data")

            assert got_segment.wait(timeout=3)
            time.sleep(0.1)
        finally:
            watcher.stop()

        assert seen == [("segment005.mp4", 77.0)]

    def test_renamed_segment_reported(self, tmp_path):
        got_segment = threading.Event()
        seen = []

        def on_segment(name, timestamp):
            seen.append(name)
            got_segment.set()

        watcher = SegmentWatcher(tmp_path, SegmentNaming(), on_segment, poll_timeout=0.05)
        watcher.start()
        try:
            tmp = tmp_path / "partial.tmp"
            tmp.write_bytes(b"x")
            os.rename(tmp, tmp_path / "segment001.mp4")

            assert got_segment.wait(timeout=3)
        finally:
            watcher.stop()

        assert seen == ["segment001.mp4"]

    def test_callback_error_does_not_stop_watcher(self, tmp_path):
        calls = []
        second = threading.Event()

        def on_segment(name, timestamp):
            calls.append(name)
            if len(calls) == 1:
                raise RuntimeError("callback broke")
            second.set()

        watcher = SegmentWatcher(tmp_path, SegmentNaming(), on_segment, poll_timeout=0.05)
        watcher.start()
        try:
            (tmp_path / "segment000.mp4").write_bytes(b"a")
            time.sleep(0.2)
            (tmp_path / "segment001.mp4").write_bytes(b"b")

            assert second.wait(timeout=3)
        finally:
            watcher.stop()

    def test_stop(self, tmp_path):
        watcher = SegmentWatcher(tmp_path, SegmentNaming(), lambda n, t: None, poll_timeout=0.05)
        watcher.start()
        assert watcher.is_running()

        watcher.stop()

        assert not watcher.is_running()

    def test_missing_directory_reports_unavailable(self, tmp_path):
        watcher = SegmentWatcher(tmp_path / "missing", SegmentNaming(), lambda n, t: None)
        assert watcher.start() is False


class TestSupervisorNotifications:
    def test_segments_registered_from_notifications(self, harness_factory):
        harness = harness_factory()
        harness.supervisor._watcher_factory = SegmentWatcher
        harness.supervisor.start_recording()

        harness.encoder.write_segments(5)

        deadline = time.monotonic() + 3
        while len(harness.supervisor.registry) < 5 and time.monotonic() < deadline:
            time.sleep(0.02)

        assert len(harness.supervisor.registry) == 5
        assert harness.supervisor.status().buffer_ready is True
