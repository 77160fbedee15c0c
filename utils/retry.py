# -*- coding: utf-8 -*-
"""
Retry helpers.

``next_delay`` is the single back-off policy used for package deletion and
device-transfer retries. ``retry_call`` is the bounded loop around it.
"""

import time
from datetime import timedelta
from typing import Callable, Optional, Tuple, Type, TypeVar

from utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_BASE_DELAY_MS = 200


def next_delay(attempt: int, base_ms: int = DEFAULT_BASE_DELAY_MS) -> timedelta:
    """
    Delay to wait before retry number ``attempt`` (1-based).

    Grows linearly with the attempt: 200ms, 400ms, 600ms, ...

    Args:
        attempt: Attempt that just failed (1 for the first failure)
        base_ms: Base delay in milliseconds

    Returns:
        Delay as a timedelta (zero for attempt < 1)
    """
    if attempt < 1:
        return timedelta(0)
    return timedelta(milliseconds=base_ms * attempt)


def retry_call(
    func: Callable[[], T],
    attempts: int = 3,
    retry_on: Tuple[Type[BaseException], ...] = (OSError,),
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
    base_ms: int = DEFAULT_BASE_DELAY_MS,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``func`` up to ``attempts`` times.

    Only exceptions in ``retry_on`` are retried; the last one is re-raised
    once the attempts are used up.

    Args:
        func: Zero-argument callable
        attempts: Maximum number of calls
        retry_on: Exception types treated as transient
        on_retry: Hook called with (attempt, error) before each sleep
        base_ms: Base delay passed to next_delay
        sleep: Sleep function (seconds)
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    attempt = 1
    while True:
        try:
            return func()
        except retry_on as e:
            if attempt >= attempts:
                raise
            delay = next_delay(attempt, base_ms)
            logger.warning(
                f"Attempt {attempt}/{attempts} failed: {e}; retrying in "
                f"{delay.total_seconds():.2f}s"
            )
            if on_retry is not None:
                on_retry(attempt, e)
            sleep(delay.total_seconds())
            attempt += 1
