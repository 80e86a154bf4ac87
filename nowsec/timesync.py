"""Checking whether the system clock has been set, and waiting for it."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

__all__ = [
    "REF_TIME",
    "POLL_INTERVAL",
    "TimeSyncError",
    "timesync_check",
    "timesync_wait",
]

logger = logging.getLogger("esp_timesync")

REF_TIME = 1577808000  # 2020-01-01 00:00:00
POLL_INTERVAL = 2.0


class TimeSyncError(Exception):
    """Raised when the clock is not set within the time allowed."""


def timesync_check(now: Optional[float] = None) -> bool:
    """Whether ``now`` (the current time by default) lies after 2020-01-01."""
    if now is None:
        now = time.time()
    return now > REF_TIME


def timesync_wait(
    wait_seconds: float,
    clock: Callable[[], float] = time.time,
    sleep: Callable[[float], None] = time.sleep,
) -> float:
    """Poll ``clock`` until it is set, for at most ``wait_seconds``.

    Returns the time read once the clock is set; raises TimeSyncError
    when it is still unset after the wait.
    """
    logger.warning("Waiting for time to be synchronized. This may take time.")
    remaining = wait_seconds

    while remaining > 0:
        if timesync_check(clock()):
            break
        logger.debug("Time not synchronized yet. Retrying...")
        step = min(remaining, POLL_INTERVAL)
        remaining -= step
        sleep(step)

    now = clock()
    if not timesync_check(now):
        logger.error(
            "Time not synchronized within the provided time: %s", wait_seconds
        )
        raise TimeSyncError(f"time not synchronized within {wait_seconds} seconds")

    logger.info(
        "The current UTC time is: %s", time.strftime("%c", time.localtime(now))
    )
    return now