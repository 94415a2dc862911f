"""Timeout utilities for device operations that may hang."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Any, Callable, Optional, TypeVar

from exceptions import DeviceUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_with_timeout(
    func: Callable[..., T],
    timeout_seconds: float,
    error_message: str = "Operation timed out",
    *args: Any,
    device: Optional[str] = None,
    **kwargs: Any,
) -> T:
    """Run function with timeout, raise DeviceUnavailableError if exceeded.

    A wedged device node can block ``open()`` or an ioctl indefinitely. The
    worker thread is abandoned on timeout instead of joined, so the caller
    gets control back even if the call never returns.

    Args:
        func: Function to run
        timeout_seconds: Timeout in seconds
        error_message: Error message if timeout occurs
        *args: Positional arguments for func
        device: Device path reported in the raised error
        **kwargs: Keyword arguments for func

    Returns:
        Result of func

    Raises:
        DeviceUnavailableError: If operation times out
        Exception: Any exception raised by func
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="DeviceTimeout")
    try:
        future = executor.submit(func, *args, **kwargs)

        try:
            return future.result(timeout=timeout_seconds)
        except FutureTimeoutError:
            logger.error(f"{error_message} after {timeout_seconds}s")
            raise DeviceUnavailableError(
                f"{error_message} after {timeout_seconds}s",
                device=device,
            )
    finally:
        executor.shutdown(wait=False)


__all__ = ["run_with_timeout"]
