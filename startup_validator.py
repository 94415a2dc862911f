"""Startup validation for the replay recorder.

Checks system requirements and configuration before starting capture.
"""

from __future__ import annotations

import os
import shutil
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from loguru import logger

from configs.settings import AppConfig


def validate_python_version() -> Tuple[bool, Optional[str]]:
    """Check if Python version meets requirements.

    Returns:
        Tuple of (is_valid, error_message)
    """
    required_major = 3
    required_minor = 9

    current_major = sys.version_info.major
    current_minor = sys.version_info.minor

    if (current_major, current_minor) < (required_major, required_minor):
        return False, (
            f"Python {required_major}.{required_minor}+ is required.\n"
            f"Current version: Python {current_major}.{current_minor}"
        )

    return True, None


def validate_dependencies() -> Tuple[bool, Optional[str]]:
    """Check if required Python packages are installed.

    Returns:
        Tuple of (is_valid, error_message)
    """
    missing_packages = []

    required_packages = {
        "yaml": "PyYAML",
        "loguru": "loguru",
        "jsonschema": "jsonschema",
        "psutil": "psutil",
        "inotify": "inotify",
    }

    for module_name, package_name in required_packages.items():
        try:
            __import__(module_name)
        except ImportError:
            missing_packages.append(package_name)

    if missing_packages:
        return False, (
            f"Missing required packages: {', '.join(missing_packages)}\n\n"
            "Install them with: pip install -e ."
        )

    return True, None


def check_ffmpeg(ffmpeg_path: str) -> Tuple[bool, Optional[str]]:
    """Check that the encoder binary can be found."""
    if shutil.which(ffmpeg_path) is None:
        return False, (
            f"ffmpeg not found: {ffmpeg_path}\n\n"
            "Install ffmpeg or set encoder.ffmpeg_path in the configuration."
        )
    return True, None


def check_device(device_path: str) -> Tuple[List[str], List[str]]:
    """Check for the capture device.

    A missing device is only a warning: the recorder waits for it.

    Returns:
        Tuple of (warnings, info_messages)
    """
    warnings = []
    info = []

    if os.path.exists(device_path):
        info.append(f"Capture device found: {device_path}")
    else:
        warnings.append(
            f"Capture device not found: {device_path}\n\n"
            "Recording will start automatically when it is connected."
        )

    return warnings, info


def check_directories(config: AppConfig) -> List[str]:
    """Create buffer, output and log directories.

    Returns:
        Error messages for directories that cannot be created or written
    """
    errors = []
    dirs = [config.buffer.buffer_dir, config.buffer.output_dir]
    if config.logging.log_dir:
        dirs.append(config.logging.log_dir)

    for dir_path in dirs:
        path = Path(dir_path)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            errors.append(f"Cannot create directory {path}: {e}")
            continue

        if not os.access(path, os.W_OK):
            errors.append(f"Directory is not writable: {path}")
        else:
            logger.debug(f"Ensured directory exists: {path}")

    return errors


def validate_environment(config: AppConfig, simulate: bool = False) -> Tuple[List[str], List[str]]:
    """Validate complete environment before launching.

    Args:
        config: Loaded configuration
        simulate: Skip the ffmpeg and device checks

    Returns:
        Tuple of (errors, warnings)
        - errors: Critical issues that prevent launching
        - warnings: Non-critical issues that should be addressed
    """
    errors: List[str] = []
    warnings: List[str] = []

    logger.info("Validating startup environment...")

    is_valid, error_msg = validate_python_version()
    if not is_valid:
        errors.append(error_msg)
        return errors, warnings

    is_valid, error_msg = validate_dependencies()
    if not is_valid:
        errors.append(error_msg)
        return errors, warnings

    logger.debug("Dependencies: OK")

    if not simulate:
        is_valid, error_msg = check_ffmpeg(config.encoder.ffmpeg_path)
        if not is_valid:
            errors.append(error_msg)

        device_warnings, device_info = check_device(config.device.path)
        warnings.extend(device_warnings)
        for msg in device_info:
            logger.debug(msg)

    errors.extend(check_directories(config))

    if not errors and not warnings:
        logger.info("Environment validation: PASSED (all checks OK)")
    elif not errors:
        logger.info(f"Environment validation: PASSED ({len(warnings)} warnings)")
    else:
        logger.error(f"Environment validation: FAILED ({len(errors)} errors)")

    return errors, warnings


__all__ = [
    "check_device",
    "check_directories",
    "check_ffmpeg",
    "validate_dependencies",
    "validate_environment",
    "validate_python_version",
]
