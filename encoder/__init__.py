"""Encoder module."""

from .device_probe import DeviceProbe
from .encoder_process import EncoderProcess, EncoderStats, Remuxer
from .ffmpeg_backend import FfmpegRemuxer, FfmpegSegmentEncoder
from .simulated_encoder import SimulatedEncoder, SimulatedRemuxer

__all__ = [
    "DeviceProbe",
    "EncoderProcess",
    "EncoderStats",
    "FfmpegRemuxer",
    "FfmpegSegmentEncoder",
    "Remuxer",
    "SimulatedEncoder",
    "SimulatedRemuxer",
]
