"""Shared fixtures for recorder tests."""

from __future__ import annotations

import time
from dataclasses import replace
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from configs.settings import (
    AppConfig,
    BufferConfig,
    EncoderConfig,
    ExportConfig,
    ReconnectConfig,
)
from encoder import SimulatedEncoder, SimulatedRemuxer
from replay.capture import CaptureSupervisor
from replay.events import ErrorEventBus


class FakeProbe:
    """Device probe whose answer the test controls."""

    def __init__(self, present: bool = True) -> None:
        self.present = present
        self.calls = 0

    def __call__(self) -> bool:
        self.calls += 1
        return self.present


class FakeClock:
    """Wall clock that can be moved forward.

    Stays close to real time so segment mtimes fall inside the window.
    """

    def __init__(self) -> None:
        self.offset = 0.0

    def __call__(self) -> float:
        return time.time() + self.offset

    def advance(self, seconds: float) -> None:
        self.offset += seconds


class CallbackEncoder(SimulatedEncoder):
    """Simulated encoder that keeps its error callback reachable after exit."""

    def start(self, on_error):
        super().start(on_error)
        self.error_callback = on_error


def wait_until(predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def make_config(
    tmp_path: Path,
    buffer: Optional[Dict] = None,
    reconnect: Optional[Dict] = None,
    encoder: Optional[Dict] = None,
    export: Optional[Dict] = None,
) -> AppConfig:
    buffer_config = BufferConfig(
        buffer_dir=str(tmp_path / "buffer"),
        output_dir=str(tmp_path / "recordings"),
        buffer_duration_s=10.0,
        segment_duration_s=0.5,
        min_segments_required=5,
        min_recording_s=5.0,
    )
    reconnect_config = ReconnectConfig(
        auto_reconnect=True,
        poll_interval_s=0.02,
        settle_delay_s=0.0,
        monitor_interval_s=10.0,
        auto_restart_on_error=False,
        auto_restart_delay_s=0.05,
    )
    return AppConfig(
        buffer=replace(buffer_config, **(buffer or {})),
        reconnect=replace(reconnect_config, **(reconnect or {})),
        encoder=replace(EncoderConfig(), **(encoder or {})),
        export=replace(ExportConfig(), **(export or {})),
    )


class SupervisorHarness:
    """A supervisor wired to simulated backends, plus handles on them."""

    def __init__(self, tmp_path: Path, spawn_error: Optional[str] = None, remux_error: Optional[str] = None, **overrides) -> None:
        self.config = make_config(tmp_path, **overrides)
        self.probe = FakeProbe()
        self.clock = FakeClock()
        self.bus = ErrorEventBus()
        self.remuxer = SimulatedRemuxer(fail_with=remux_error)
        self.encoders: List[CallbackEncoder] = []
        self.spawn_error = spawn_error
        self.buffer_dir = Path(self.config.buffer.buffer_dir)
        self.output_dir = Path(self.config.buffer.output_dir)

        self.supervisor = CaptureSupervisor(
            self.config,
            probe=self.probe,
            encoder_factory=self._make_encoder,
            remuxer=self.remuxer,
            watcher_factory=None,
            clock=self.clock,
            bus=self.bus,
        )

    def _make_encoder(self) -> CallbackEncoder:
        buf = self.config.buffer
        encoder = CallbackEncoder(
            self.buffer_dir,
            segment_pattern=buf.segment_pattern,
            segment_count=buf.segment_count,
            spawn_error=self.spawn_error,
        )
        self.encoders.append(encoder)
        return encoder

    @property
    def encoder(self) -> CallbackEncoder:
        return self.encoders[-1]

    def segment_files(self) -> List[Path]:
        if not self.buffer_dir.exists():
            return []
        return sorted(self.buffer_dir.glob("segment*.mp4"))


@pytest.fixture
def harness_factory(tmp_path):
    created: List[SupervisorHarness] = []

    def factory(**kwargs) -> SupervisorHarness:
        harness = SupervisorHarness(tmp_path, **kwargs)
        created.append(harness)
        return harness

    yield factory

    for harness in created:
        harness.supervisor.set_auto_reconnect(False)
        harness.supervisor.stop_recording()


@pytest.fixture
def harness(harness_factory) -> SupervisorHarness:
    return harness_factory()
