"""Custom exception classes for the kiosk replay recorder."""

from __future__ import annotations

from typing import Optional


class ReplayError(Exception):
    """Base exception for all replay recorder errors."""

    pass


class DeviceError(ReplayError):
    """Base exception for capture device errors."""

    def __init__(self, message: str, device: Optional[str] = None):
        self.device = device
        super().__init__(message)


class DeviceUnavailableError(DeviceError):
    """Raised when the capture device is absent or wedged."""

    pass


class EncoderError(ReplayError):
    """Base exception for encoder process errors."""

    def __init__(self, message: str, diagnostics: str = ""):
        self.diagnostics = diagnostics
        super().__init__(message)


class ProcessSpawnError(EncoderError):
    """Raised when the encoder process cannot be started."""

    pass


class ExportError(ReplayError):
    """Base exception for export errors."""

    pass


class ExportEncodeError(ExportError):
    """Raised when the remux step fails."""

    pass


class FileSystemError(ReplayError):
    """Raised when the buffer directory itself cannot be read."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message)


class ConfigError(ReplayError):
    """Base exception for configuration errors."""

    pass


class InvalidConfigError(ConfigError):
    """Raised when configuration file is invalid or corrupted."""

    pass


class ConfigValidationError(ConfigError):
    """Raised when configuration fails schema validation."""

    def __init__(self, message: str, validation_errors: Optional[list] = None):
        self.validation_errors = validation_errors or []
        super().__init__(message)
