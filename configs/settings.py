"""Configuration loading for the replay recorder."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from configs.validator import validate_config
from exceptions import InvalidConfigError
from log_config.logger import get_logger

logger = get_logger(__name__)

DEVICE_ENV_VAR = "VIDEO_DEVICE"


@dataclass(frozen=True)
class DeviceConfig:
    path: str = "/dev/video0"
    input_format: str = "v4l2"
    probe_timeout_s: float = 2.0
    query_capabilities: bool = True  # VIDIOC_QUERYCAP on top of the existence check


@dataclass(frozen=True)
class EncoderConfig:
    ffmpeg_path: str = "ffmpeg"
    width: int = 1280
    height: int = 720
    fps: int = 30
    codec: str = "libx264"
    bitrate: str = "2500k"
    preset: str = "ultrafast"
    kill_policy: str = "force"  # "force" (SIGKILL) or "graceful" (SIGTERM, then SIGKILL)
    graceful_timeout_s: float = 3.0

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass(frozen=True)
class BufferConfig:
    buffer_dir: str = "/dev/shm/buffer"
    output_dir: str = "recordings"
    buffer_duration_s: float = 60.0
    segment_duration_s: float = 0.5
    segment_prefix: str = "segment"
    segment_extension: str = ".mp4"
    min_segments_required: int = 5
    min_recording_s: float = 5.0
    wrap_aware_ordering: bool = False

    @property
    def segment_count(self) -> int:
        """Number of segment files before the encoder wraps around."""
        return math.ceil(self.buffer_duration_s / self.segment_duration_s)

    @property
    def segment_pattern(self) -> str:
        """printf-style pattern handed to the encoder's segment muxer."""
        width = max(3, len(str(self.segment_count - 1)))
        return f"{self.segment_prefix}%0{width}d{self.segment_extension}"


@dataclass(frozen=True)
class ReconnectConfig:
    auto_reconnect: bool = True
    poll_interval_s: float = 1.0
    settle_delay_s: float = 1.0
    monitor_interval_s: float = 1.0
    auto_restart_on_error: bool = True
    auto_restart_delay_s: float = 2.0


@dataclass(frozen=True)
class ExportConfig:
    remux_timeout_s: float = 60.0
    faststart: bool = True
    pre_export_delay_s: float = 0.0
    filename_prefix: str = "recording"


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    log_dir: Optional[str] = "logs"
    rotation: str = "50 MB"
    retention: str = "10 days"


@dataclass(frozen=True)
class AppConfig:
    device: DeviceConfig = field(default_factory=DeviceConfig)
    encoder: EncoderConfig = field(default_factory=EncoderConfig)
    buffer: BufferConfig = field(default_factory=BufferConfig)
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def config_from_dict(data: Optional[Dict[str, Any]], env: Optional[Dict[str, str]] = None) -> AppConfig:
    """Validate a raw configuration mapping and build an AppConfig.

    Args:
        data: Parsed configuration (None is treated as empty)
        env: Environment used for overrides (defaults to os.environ)

    Returns:
        Validated AppConfig instance

    Raises:
        ConfigValidationError: If the mapping fails schema validation
        InvalidConfigError: If the configuration objects cannot be built
    """
    data = dict(data or {})
    validate_config(data)

    env = os.environ if env is None else env
    device_data = dict(data["device"])
    if env.get(DEVICE_ENV_VAR):
        logger.info(f"Device path overridden by {DEVICE_ENV_VAR}: {env[DEVICE_ENV_VAR]}")
        device_data["path"] = env[DEVICE_ENV_VAR]

    try:
        config = AppConfig(
            device=DeviceConfig(**device_data),
            encoder=EncoderConfig(**data["encoder"]),
            buffer=BufferConfig(**data["buffer"]),
            reconnect=ReconnectConfig(**data["reconnect"]),
            export=ExportConfig(**data["export"]),
            logging=LoggingConfig(**data["logging"]),
        )
    except TypeError as e:
        logger.error(f"Failed to construct configuration objects: {e}")
        raise InvalidConfigError(f"Failed to construct configuration: {e}")

    if config.buffer.min_segments_required > config.buffer.segment_count:
        raise InvalidConfigError(
            f"min_segments_required ({config.buffer.min_segments_required}) exceeds the "
            f"{config.buffer.segment_count} segments the buffer can hold"
        )

    return config


def load_config(path: Path) -> AppConfig:
    """Load and validate configuration from YAML file.

    Args:
        path: Path to configuration file

    Returns:
        Validated AppConfig instance

    Raises:
        ConfigError: If configuration is invalid or cannot be loaded
    """
    try:
        logger.info(f"Loading configuration from {path}")
        if not path.exists():
            raise InvalidConfigError(f"Configuration file not found: {path}")

        data = yaml.safe_load(path.read_text())

    except yaml.YAMLError as e:
        logger.error(f"Failed to parse YAML configuration: {e}")
        raise InvalidConfigError(f"Failed to parse configuration file: {e}")

    if data is not None and not isinstance(data, dict):
        raise InvalidConfigError(f"Configuration root must be a mapping, got {type(data).__name__}")

    config = config_from_dict(data)
    logger.info(
        f"Configuration loaded successfully: {config.device.path} "
        f"{config.encoder.resolution}@{config.encoder.fps}fps, "
        f"{config.buffer.buffer_duration_s:g}s buffer of {config.buffer.segment_count} segments"
    )
    return config


__all__ = [
    "AppConfig",
    "BufferConfig",
    "DeviceConfig",
    "EncoderConfig",
    "ExportConfig",
    "LoggingConfig",
    "ReconnectConfig",
    "config_from_dict",
    "load_config",
]
