"""Wiring of the capture supervisor from configuration."""

from __future__ import annotations

from typing import Optional

from configs.settings import AppConfig
from encoder import (
    DeviceProbe,
    FfmpegRemuxer,
    FfmpegSegmentEncoder,
    SimulatedEncoder,
    SimulatedRemuxer,
)
from replay.capture import CaptureSupervisor
from replay.events import ErrorEventBus


def build_supervisor(
    config: AppConfig,
    simulate: bool = False,
    bus: Optional[ErrorEventBus] = None,
) -> CaptureSupervisor:
    """Create a supervisor backed by ffmpeg, or by simulated backends.

    In simulation the device is always present and the encoder writes a
    placeholder segment every ``segment_duration_s`` seconds.
    """
    buf = config.buffer

    if simulate:
        def encoder_factory() -> SimulatedEncoder:
            return SimulatedEncoder(
                buf.buffer_dir,
                segment_pattern=buf.segment_pattern,
                segment_count=buf.segment_count,
                interval=buf.segment_duration_s,
            )

        return CaptureSupervisor(
            config,
            probe=lambda: True,
            encoder_factory=encoder_factory,
            remuxer=SimulatedRemuxer(),
            bus=bus,
        )

    probe = DeviceProbe(
        config.device.path,
        timeout=config.device.probe_timeout_s,
        query_capabilities=config.device.query_capabilities,
    )
    remuxer = FfmpegRemuxer(
        config.encoder.ffmpeg_path,
        timeout=config.export.remux_timeout_s,
        faststart=config.export.faststart,
    )
    return CaptureSupervisor(
        config,
        probe=probe,
        encoder_factory=lambda: FfmpegSegmentEncoder(config),
        remuxer=remuxer,
        bus=bus,
    )


__all__ = ["build_supervisor"]
