"""Capture device availability probe."""

from __future__ import annotations

import errno
import logging
import os
import sys

from exceptions import DeviceUnavailableError

from .timeout_utils import run_with_timeout

logger = logging.getLogger(__name__)

# _IOR('V', 0, struct v4l2_capability), sizeof(struct v4l2_capability) == 104
VIDIOC_QUERYCAP = 0x80685600
V4L2_CAPABILITY_SIZE = 104

# A device node that answers with one of these is present but unusable
ABSENT_ERRNOS = frozenset({errno.ENOENT, errno.ENODEV, errno.ENXIO, errno.EBUSY, errno.EIO, errno.EACCES})
# The node does not speak V4L2 (e.g. a plain file in tests): fall back to existence
UNSUPPORTED_ERRNOS = frozenset({errno.ENOTTY, errno.EINVAL})


class DeviceProbe:
    """Answers "is the capture device usable right now?".

    The existence of the device node is checked first. On Linux, a
    VIDIOC_QUERYCAP ioctl then rules out a node that exists but is wedged,
    busy or returning I/O errors. The query runs under a timeout so a hung
    driver reads as absent rather than blocking the caller.
    """

    def __init__(self, path: str, timeout: float = 2.0, query_capabilities: bool = True) -> None:
        self.path = path
        self._timeout = timeout
        self._query = query_capabilities and sys.platform.startswith("linux")

    def is_available(self) -> bool:
        if not os.path.exists(self.path):
            return False
        if not self._query:
            return True

        try:
            return run_with_timeout(
                self._query_capabilities,
                self._timeout,
                f"Capability query on {self.path}",
                device=self.path,
            )
        except DeviceUnavailableError:
            return False

    __call__ = is_available

    def _query_capabilities(self) -> bool:
        import fcntl

        try:
            fd = os.open(self.path, os.O_RDWR | os.O_NONBLOCK)
        except OSError as e:
            if e.errno in ABSENT_ERRNOS:
                logger.debug(f"Device {self.path} unusable: {e.strerror}")
                return False
            raise

        try:
            buf = bytearray(V4L2_CAPABILITY_SIZE)
            fcntl.ioctl(fd, VIDIOC_QUERYCAP, buf, True)
            return True
        except OSError as e:
            if e.errno in UNSUPPORTED_ERRNOS:
                return True
            if e.errno in ABSENT_ERRNOS:
                logger.debug(f"Device {self.path} failed capability query: {e.strerror}")
                return False
            raise
        finally:
            os.close(fd)


__all__ = ["DeviceProbe", "VIDIOC_QUERYCAP"]
