from pathlib import Path

import pytest

from configs.settings import BufferConfig, config_from_dict, load_config
from configs.validator import validate_config
from exceptions import ConfigValidationError, InvalidConfigError


def test_load_default_config() -> None:
    config = load_config(Path("configs/default.yaml"))

    assert config.device.path == "/dev/video0"
    assert config.encoder.resolution == "1280x720"
    assert config.buffer.buffer_duration_s == 60
    assert config.buffer.segment_count == 120
    assert config.buffer.segment_pattern == "segment%03d.mp4"
    assert config.buffer.min_segments_required == 5
    assert config.reconnect.auto_restart_delay_s == 2.0


def test_empty_mapping_gets_defaults() -> None:
    config = config_from_dict({}, env={})

    assert config.encoder.kill_policy == "force"
    assert config.export.filename_prefix == "recording"
    assert config.logging.log_dir == "logs"


def test_partial_section_filled() -> None:
    data = {"buffer": {"buffer_duration_s": 30}}

    validate_config(data)

    assert data["buffer"]["segment_duration_s"] == 0.5
    assert "device" in data


def test_defaults_not_shared_between_configs() -> None:
    first, second = {}, {}
    validate_config(first)
    validate_config(second)

    first["device"]["path"] = "/dev/video5"
    assert second["device"]["path"] == "/dev/video0"


def test_env_overrides_device_path() -> None:
    config = config_from_dict({}, env={"VIDEO_DEVICE": "/dev/video2"})
    assert config.device.path == "/dev/video2"


@pytest.mark.parametrize(
    "data",
    [
        {"encoder": {"kill_policy": "polite"}},
        {"buffer": {"segment_duration_s": 0}},
        {"buffer": {"min_segments_required": 0}},
        {"reconnect": {"poll_interval_s": -1}},
        {"export": {"filename_prefix": "../escape"}},
        {"unknown_section": {}},
        {"device": {"pth": "/dev/video0"}},
    ],
)
def test_invalid_values_rejected(data) -> None:
    with pytest.raises(ConfigValidationError) as exc_info:
        config_from_dict(data, env={})
    assert exc_info.value.validation_errors


def test_min_segments_beyond_ring_rejected() -> None:
    data = {"buffer": {"buffer_duration_s": 2, "segment_duration_s": 1, "min_segments_required": 5}}

    with pytest.raises(InvalidConfigError, match="min_segments_required"):
        config_from_dict(data, env={})


def test_segment_pattern_widens_for_large_rings() -> None:
    buf = BufferConfig(buffer_duration_s=600, segment_duration_s=0.5)
    assert buf.segment_count == 1200
    assert buf.segment_pattern == "segment%04d.mp4"


def test_load_rejects_bad_yaml(tmp_path: Path) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text("device: [unclosed")

    with pytest.raises(InvalidConfigError):
        load_config(path)


def test_load_rejects_non_mapping(tmp_path: Path) -> None:
    path = tmp_path / "list.yaml"
    path.write_text("- 1\n- 2\n")

    with pytest.raises(InvalidConfigError, match="mapping"):
        load_config(path)


def test_load_missing_file(tmp_path: Path) -> None:
    with pytest.raises(InvalidConfigError, match="not found"):
        load_config(tmp_path / "missing.yaml")
