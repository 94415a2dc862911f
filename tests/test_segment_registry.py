"""Tests for segment naming, the registry and trailing-window selection."""

from __future__ import annotations

import os
import threading
from pathlib import Path

import pytest

from exceptions import FileSystemError
from replay.buffer import (
    ReadinessGate,
    Segment,
    SegmentNaming,
    SegmentRegistry,
    TimestampSource,
    WindowSelector,
    delete_segment_files,
    drop_open_segment,
    select_window,
)


def _segment(seq, created_at, name=None):
    name = name or f"segment{seq:03d}.mp4"
    return Segment(name=name, sequence_number=seq, path=Path("/buf") / name, created_at=created_at)


class TestSegmentNaming:
    def test_parses_padded_and_unpadded(self):
        naming = SegmentNaming()
        assert naming.parse("segment7.mp4") == 7
        assert naming.parse("segment007.mp4") == 7
        assert naming.parse("segment0119.mp4") == 119

    @pytest.mark.parametrize(
        "name",
        ["filelist-2024.txt", "segment.mp4", "segment001.ts", "xsegment001.mp4", "segment001.mp4.tmp", ""],
    )
    def test_rejects_other_files(self, name):
        naming = SegmentNaming()
        assert naming.parse(name) is None
        assert not naming.matches(name)

    def test_custom_prefix_and_extension(self):
        naming = SegmentNaming(prefix="chunk_", extension=".ts")
        assert naming.parse("chunk_12.ts") == 12
        assert naming.parse("segment12.mp4") is None


class TestSegmentRegistry:
    def test_record_and_lookup(self, tmp_path):
        registry = SegmentRegistry(tmp_path)

        segment = registry.record("segment003.mp4", 100.0)

        assert segment.sequence_number == 3
        assert segment.path == tmp_path / "segment003.mp4"
        assert segment.timestamp_source is TimestampSource.NOTIFICATION
        assert "segment003.mp4" in registry
        assert registry.get("segment003.mp4").created_at == 100.0

    def test_record_ignores_non_segments(self, tmp_path):
        registry = SegmentRegistry(tmp_path)
        assert registry.record("filelist-1.txt", 1.0) is None
        assert len(registry) == 0

    def test_record_refreshes_existing_entry(self, tmp_path):
        registry = SegmentRegistry(tmp_path)
        registry.record("segment001.mp4", 1.0)
        registry.record("segment001.mp4", 5.0)

        assert len(registry) == 1
        assert registry.get("segment001.mp4").created_at == 5.0

    def test_reconcile_adds_missed_files_with_mtime(self, tmp_path):
        registry = SegmentRegistry(tmp_path)
        path = tmp_path / "segment004.mp4"
        path.write_bytes(b"data")
        os.utime(path, (1234.0, 1234.0))
        (tmp_path / "filelist-x.txt").write_text("file 'a'")

        added = registry.reconcile_with_filesystem()

        assert added == 1
        segment = registry.get("segment004.mp4")
        assert segment.created_at == 1234.0
        assert segment.timestamp_source is TimestampSource.MTIME
        assert segment.trusted
        assert len(registry) == 1

    def test_reconcile_keeps_newer_notification_timestamps(self, tmp_path):
        registry = SegmentRegistry(tmp_path)
        path = tmp_path / "segment001.mp4"
        path.write_bytes(b"x")
        os.utime(path, (50.0, 50.0))
        registry.record("segment001.mp4", 99.0)

        assert registry.reconcile_with_filesystem() == 0
        segment = registry.get("segment001.mp4")
        assert segment.created_at == 99.0
        assert segment.timestamp_source is TimestampSource.NOTIFICATION

    def test_reconcile_refreshes_rewritten_segments(self, tmp_path):
        registry = SegmentRegistry(tmp_path)
        path = tmp_path / "segment001.mp4"
        path.write_bytes(b"first lap")
        os.utime(path, (100.0, 100.0))
        registry.reconcile_with_filesystem()

        # Ring wrapped: same name, newer contents
        path.write_bytes(b"second lap")
        os.utime(path, (160.0, 160.0))

        assert registry.reconcile_with_filesystem() == 0
        segment = registry.get("segment001.mp4")
        assert segment.created_at == 160.0
        assert segment.timestamp_source is TimestampSource.MTIME

    def test_reconcile_refreshes_stale_notification(self, tmp_path):
        registry = SegmentRegistry(tmp_path)
        path = tmp_path / "segment001.mp4"
        path.write_bytes(b"x")
        os.utime(path, (300.0, 300.0))
        registry.record("segment001.mp4", 200.0)

        registry.reconcile_with_filesystem()

        assert registry.get("segment001.mp4").created_at == 300.0

    def test_reconcile_never_reports_fewer_than_disk(self, tmp_path):
        registry = SegmentRegistry(tmp_path)
        for i in range(7):
            (tmp_path / f"segment{i:03d}.mp4").write_bytes(b"x")
        registry.record("segment002.mp4", 1.0)

        registry.reconcile_with_filesystem()

        assert len(registry) == 7

    def test_reconcile_drops_deleted_files(self, tmp_path):
        registry = SegmentRegistry(tmp_path)
        path = tmp_path / "segment001.mp4"
        path.write_bytes(b"x")
        registry.reconcile_with_filesystem()
        path.unlink()

        registry.reconcile_with_filesystem()

        assert len(registry) == 0

    def test_reconcile_missing_directory(self, tmp_path):
        registry = SegmentRegistry(tmp_path / "missing")
        assert registry.reconcile_with_filesystem() == 0

    def test_stat_failure_falls_back_to_now(self, tmp_path, monkeypatch):
        registry = SegmentRegistry(tmp_path, clock=lambda: 500.0)
        (tmp_path / "segment001.mp4").write_bytes(b"x")

        def failing_stat(self, *args, **kwargs):
            raise PermissionError("denied")

        monkeypatch.setattr(Path, "stat", failing_stat)
        registry.reconcile_with_filesystem()
        monkeypatch.undo()

        segment = registry.get("segment001.mp4")
        assert segment.created_at == 500.0
        assert segment.timestamp_source is TimestampSource.FALLBACK
        assert not segment.trusted

    def test_clear_during_reconcile_discards_results(self, tmp_path, monkeypatch):
        registry = SegmentRegistry(tmp_path)
        (tmp_path / "segment001.mp4").write_bytes(b"x")
        real_listdir = os.listdir

        def listdir_then_clear(path):
            names = real_listdir(path)
            registry.clear()
            return names

        monkeypatch.setattr("replay.buffer.registry.os.listdir", listdir_then_clear)

        assert registry.reconcile_with_filesystem() == 0
        assert len(registry) == 0

    def test_purge_deletes_segment_files_only(self, tmp_path):
        registry = SegmentRegistry(tmp_path)
        for i in range(3):
            (tmp_path / f"segment{i:03d}.mp4").write_bytes(b"x")
        other = tmp_path / "keep.txt"
        other.write_text("x")
        registry.reconcile_with_filesystem()

        assert registry.purge() == 3
        assert len(registry) == 0
        assert list(tmp_path.iterdir()) == [other]

    def test_concurrent_record_and_clear(self, tmp_path):
        registry = SegmentRegistry(tmp_path)
        errors = []

        def writer():
            try:
                for i in range(500):
                    registry.record(f"segment{i % 50:03d}.mp4", float(i))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer) for _ in range(4)]
        for t in threads:
            t.start()
        for _ in range(100):
            registry.clear()
            registry.segments()
        for t in threads:
            t.join()

        assert errors == []
        assert len(registry) <= 50

    def test_delete_segment_files_missing_dir(self, tmp_path):
        assert delete_segment_files(tmp_path / "nope", SegmentNaming()) == 0

    def test_delete_segment_files_unlistable_dir(self, tmp_path):
        not_a_dir = tmp_path / "buffer"
        not_a_dir.write_text("x")

        with pytest.raises(FileSystemError) as exc_info:
            delete_segment_files(not_a_dir, SegmentNaming())
        assert exc_info.value.path == str(not_a_dir)


class TestSelectWindow:
    def test_filters_by_age_inclusive(self):
        segments = [_segment(0, 39.0), _segment(1, 40.0), _segment(2, 70.0), _segment(3, 100.0), _segment(4, 101.0)]

        window = select_window(segments, now=100.0, buffer_duration=60.0)

        assert [s.sequence_number for s in window] == [1, 2, 3]

    def test_sorted_numerically_by_sequence(self):
        segments = [
            _segment(10, 95.0, name="segment10.mp4"),
            _segment(9, 96.0, name="segment9.mp4"),
            _segment(100, 97.0, name="segment100.mp4"),
        ]

        window = select_window(segments, now=100.0, buffer_duration=60.0)

        assert [s.sequence_number for s in window] == [9, 10, 100]

    def test_empty_when_nothing_qualifies(self):
        assert select_window([], now=100.0, buffer_duration=60.0) == []
        assert select_window([_segment(0, 10.0)], now=100.0, buffer_duration=60.0) == []

    def test_wrap_aware_rotates_to_oldest(self):
        # Ring of 4 that has wrapped: 2 and 3 are older than 0 and 1
        segments = [_segment(0, 98.0), _segment(1, 99.0), _segment(2, 96.0), _segment(3, 97.0)]

        plain = select_window(segments, now=100.0, buffer_duration=60.0)
        wrapped = select_window(segments, now=100.0, buffer_duration=60.0, wrap_aware=True)

        assert [s.sequence_number for s in plain] == [0, 1, 2, 3]
        assert [s.sequence_number for s in wrapped] == [2, 3, 0, 1]

    def test_selector_uses_registry_and_clock(self, tmp_path):
        registry = SegmentRegistry(tmp_path)
        registry.record("segment001.mp4", 50.0)
        registry.record("segment002.mp4", 95.0)
        selector = WindowSelector(registry, buffer_duration=10.0, clock=lambda: 100.0)

        assert [s.name for s in selector.select()] == ["segment002.mp4"]
        assert selector.count(now=60.0) == 1

    def test_drop_open_segment_removes_fresh_unconfirmed_newest(self):
        closed = [_segment(0, 90.0), _segment(1, 95.0)]
        writing = Segment("segment002.mp4", 2, Path("/buf/segment002.mp4"), 99.8, TimestampSource.MTIME)

        assert drop_open_segment(closed + [writing], now=100.0, max_age=0.5) == closed

    def test_drop_open_segment_keeps_closed_or_old_newest(self):
        notified = [_segment(0, 95.0), _segment(1, 99.9)]
        aged = [
            _segment(0, 95.0),
            Segment("segment001.mp4", 1, Path("/buf/segment001.mp4"), 99.0, TimestampSource.MTIME),
        ]

        assert drop_open_segment(notified, now=100.0, max_age=0.5) == notified
        assert drop_open_segment(aged, now=100.0, max_age=0.5) == aged
        assert drop_open_segment([], now=100.0, max_age=0.5) == []


class TestReadinessGate:
    def test_latches_at_minimum(self):
        gate = ReadinessGate(min_segments=5, clock=lambda: 42.0)

        for count in range(5):
            assert gate.observe(count) is False
        assert gate.observe(5) is True
        assert gate.ready_since == 42.0

        for count in (0, 2, 4):
            assert gate.observe(count) is True
        assert gate.last_count == 4

    def test_reset_closes_gate(self):
        gate = ReadinessGate(min_segments=1)
        gate.observe(3)

        gate.reset()

        assert not gate.is_ready()
        assert gate.ready_since is None

    def test_rejects_zero_minimum(self):
        with pytest.raises(ValueError):
            ReadinessGate(min_segments=0)
