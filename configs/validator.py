"""Configuration validation using JSON Schema."""

from __future__ import annotations

import copy
from typing import Any, Dict

import jsonschema
from jsonschema import Draft7Validator, validators

from exceptions import ConfigValidationError
from log_config.logger import get_logger

logger = get_logger(__name__)

# JSON Schema for default.yaml configuration
CONFIG_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "properties": {
        "device": {
            "type": "object",
            "default": {},
            "properties": {
                "path": {"type": "string", "minLength": 1, "default": "/dev/video0"},
                "input_format": {"type": "string", "default": "v4l2"},
                "probe_timeout_s": {"type": "number", "exclusiveMinimum": 0, "maximum": 30, "default": 2.0},
                "query_capabilities": {"type": "boolean", "default": True},
            },
            "additionalProperties": False,
        },
        "encoder": {
            "type": "object",
            "default": {},
            "properties": {
                "ffmpeg_path": {"type": "string", "minLength": 1, "default": "ffmpeg"},
                "width": {"type": "integer", "minimum": 160, "maximum": 3840, "default": 1280},
                "height": {"type": "integer", "minimum": 120, "maximum": 2160, "default": 720},
                "fps": {"type": "integer", "minimum": 1, "maximum": 120, "default": 30},
                "codec": {"type": "string", "default": "libx264"},
                "bitrate": {"type": "string", "pattern": "^[0-9]+[kKmM]?$", "default": "2500k"},
                "preset": {"type": "string", "default": "ultrafast"},
                "kill_policy": {"type": "string", "enum": ["force", "graceful"], "default": "force"},
                "graceful_timeout_s": {"type": "number", "minimum": 0, "maximum": 30, "default": 3.0},
            },
            "additionalProperties": False,
        },
        "buffer": {
            "type": "object",
            "default": {},
            "properties": {
                "buffer_dir": {"type": "string", "minLength": 1, "default": "/dev/shm/buffer"},
                "output_dir": {"type": "string", "minLength": 1, "default": "recordings"},
                "buffer_duration_s": {"type": "number", "exclusiveMinimum": 0, "maximum": 3600, "default": 60},
                "segment_duration_s": {"type": "number", "exclusiveMinimum": 0, "maximum": 60, "default": 0.5},
                "segment_prefix": {"type": "string", "pattern": "^[A-Za-z_-]+$", "default": "segment"},
                "segment_extension": {"type": "string", "pattern": "^\\.[A-Za-z0-9]+$", "default": ".mp4"},
                "min_segments_required": {"type": "integer", "minimum": 1, "default": 5},
                "min_recording_s": {"type": "number", "minimum": 0, "default": 5.0},
                "wrap_aware_ordering": {"type": "boolean", "default": False},
            },
            "additionalProperties": False,
        },
        "reconnect": {
            "type": "object",
            "default": {},
            "properties": {
                "auto_reconnect": {"type": "boolean", "default": True},
                "poll_interval_s": {"type": "number", "exclusiveMinimum": 0, "maximum": 60, "default": 1.0},
                "settle_delay_s": {"type": "number", "minimum": 0, "maximum": 60, "default": 1.0},
                "monitor_interval_s": {"type": "number", "exclusiveMinimum": 0, "maximum": 60, "default": 1.0},
                "auto_restart_on_error": {"type": "boolean", "default": True},
                "auto_restart_delay_s": {"type": "number", "minimum": 0, "maximum": 300, "default": 2.0},
            },
            "additionalProperties": False,
        },
        "export": {
            "type": "object",
            "default": {},
            "properties": {
                "remux_timeout_s": {"type": "number", "exclusiveMinimum": 0, "maximum": 600, "default": 60.0},
                "faststart": {"type": "boolean", "default": True},
                "pre_export_delay_s": {"type": "number", "minimum": 0, "maximum": 30, "default": 0.0},
                "filename_prefix": {"type": "string", "pattern": "^[A-Za-z0-9_-]+$", "default": "recording"},
            },
            "additionalProperties": False,
        },
        "logging": {
            "type": "object",
            "default": {},
            "properties": {
                "level": {
                    "type": "string",
                    "enum": ["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"],
                    "default": "INFO",
                },
                "log_dir": {"type": ["string", "null"], "default": "logs"},
                "rotation": {"type": "string", "default": "50 MB"},
                "retention": {"type": "string", "default": "10 days"},
            },
            "additionalProperties": False,
        },
    },
    "additionalProperties": False,
}


def extend_with_default(validator_class):
    """Extend JSON Schema validator to set default values."""
    validate_properties = validator_class.VALIDATORS["properties"]

    def set_defaults(validator, properties, instance, schema):
        if isinstance(instance, dict):
            for prop, subschema in properties.items():
                if "default" in subschema:
                    instance.setdefault(prop, copy.deepcopy(subschema["default"]))

        for error in validate_properties(validator, properties, instance, schema):
            yield error

    return validators.extend(validator_class, {"properties": set_defaults})


DefaultValidatingValidator = extend_with_default(Draft7Validator)


def validate_config(config: Dict[str, Any]) -> None:
    """Validate configuration against JSON Schema.

    Missing sections and keys are filled in place with their defaults.

    Args:
        config: Configuration dictionary

    Raises:
        ConfigValidationError: If configuration is invalid
    """
    try:
        validator = DefaultValidatingValidator(CONFIG_SCHEMA)
        errors = list(validator.iter_errors(config))

        if errors:
            error_messages = []
            for error in errors:
                path = " -> ".join(str(p) for p in error.path) if error.path else "root"
                error_messages.append(f"{path}: {error.message}")

            logger.error(f"Configuration validation failed with {len(errors)} errors")
            for msg in error_messages:
                logger.error(f"  - {msg}")

            raise ConfigValidationError(
                f"Configuration validation failed with {len(errors)} error(s). See logs for details.",
                validation_errors=error_messages,
            )

        logger.info("Configuration validation passed")

    except jsonschema.exceptions.SchemaError as e:
        logger.error(f"Invalid schema: {e}")
        raise ConfigValidationError(f"Invalid schema definition: {e}")


__all__ = ["validate_config", "CONFIG_SCHEMA"]
