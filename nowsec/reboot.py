"""Counting of restarts, kept across boots in persistent storage."""

from __future__ import annotations

import enum
import logging
import os
import struct
from dataclasses import dataclass

from nowsec.storage import KeyNotFoundError, Storage

__all__ = [
    "REBOOT_RECORD_KEY",
    "ResetReason",
    "RebootRecord",
    "RebootTracker",
    "is_exception",
]

logger = logging.getLogger("esp_reboot")

REBOOT_RECORD_KEY = "reboot_record"

_RECORD_FORMAT = struct.Struct("<IIi")
_COREDUMP_LEN = struct.Struct("<i")


class ResetReason(enum.IntEnum):
    """Why the chip last started."""

    NO_MEAN = 0
    POWERON_RESET = 1
    SW_RESET = 3
    OWDT_RESET = 4
    DEEPSLEEP_RESET = 5
    SDIO_RESET = 6
    TG0WDT_SYS_RESET = 7
    TG1WDT_SYS_RESET = 8
    RTCWDT_SYS_RESET = 9
    INTRUSION_RESET = 10
    TGWDT_CPU_RESET = 11
    SW_CPU_RESET = 12
    RTCWDT_CPU_RESET = 13
    EXT_CPU_RESET = 14
    RTCWDT_BROWN_OUT_RESET = 15
    RTCWDT_RTC_RESET = 16


# Restarts for these reasons do not count as a run of quick restarts.
_BREAKING_REASONS = frozenset(
    {ResetReason.DEEPSLEEP_RESET, ResetReason.RTCWDT_BROWN_OUT_RESET}
)


@dataclass
class RebootRecord:
    """The restart counters as they are stored."""

    total_count: int = 0
    unbroken_count: int = 0
    reason: int = ResetReason.NO_MEAN

    def pack(self) -> bytes:
        return _RECORD_FORMAT.pack(
            self.total_count, self.unbroken_count, int(self.reason)
        )

    @classmethod
    def unpack(cls, data: bytes) -> "RebootRecord":
        if len(data) != _RECORD_FORMAT.size:
            raise ValueError(
                f"reboot record has {_RECORD_FORMAT.size} bytes, got {len(data)}"
            )
        total, unbroken, reason = _RECORD_FORMAT.unpack(data)
        return cls(total, unbroken, reason)


class RebootTracker:
    """Counts total restarts and restarts that follow each other quickly.

    ``start`` is called once per boot. ``clear_unbroken`` is meant to be
    called once the device has run long enough that the run of quick
    restarts counts as broken.
    """

    def __init__(
        self, storage: Storage, reason: int, fallback_count: int = 0
    ) -> None:
        self._storage = storage
        self._reason = int(reason)
        self.fallback_count = fallback_count
        self.record = RebootRecord(reason=self._reason)

    def _save(self) -> None:
        self._storage.set(REBOOT_RECORD_KEY, self.record.pack())

    def start(self) -> None:
        """Load the stored counters, count this boot and store them again."""
        try:
            self.record = RebootRecord.unpack(self._storage.get(REBOOT_RECORD_KEY))
        except KeyNotFoundError:
            self.record = RebootRecord()
        self.record.reason = self._reason
        self.record.total_count += 1

        if self._reason not in _BREAKING_REASONS:
            self.record.unbroken_count += 1
            logger.debug("reboot unbroken count: %d", self.record.unbroken_count)
        else:
            self.record.unbroken_count = 1
            logger.warning("reboot reason: %d", self._reason)

        self._save()

    def clear_unbroken(self) -> None:
        """Reset the count of quick restarts and store it."""
        self.record.unbroken_count = 0
        self._save()
        logger.info(
            "num: %d, reason: %d", self.record.total_count, self.record.reason
        )

    def should_fall_back(self) -> bool:
        """Whether quick restarts reached the fallback threshold."""
        return bool(self.fallback_count) and (
            self.record.unbroken_count >= self.fallback_count
        )

    def unbroken_count(self) -> int:
        return self.record.unbroken_count

    def total_count(self) -> int:
        return self.record.total_count


def is_exception(
    coredump_path: str | os.PathLike[str], erase_coredump: bool = False
) -> bool:
    """Whether the coredump area holds a dump from a crash.

    The area starts with the dump length; a positive length means a dump
    is present. With ``erase_coredump`` the whole area is then erased.
    """
    try:
        with open(coredump_path, "rb") as area:
            head = area.read(_COREDUMP_LEN.size)
    except OSError:
        return False

    if len(head) < _COREDUMP_LEN.size:
        return False
    (length,) = _COREDUMP_LEN.unpack(head)
    if length <= 0:
        return False

    if erase_coredump:
        try:
            size = os.path.getsize(coredump_path)
            with open(coredump_path, "r+b") as area:
                area.write(b"\xff" * size)
        except OSError as exc:
            logger.warning("erase coredump failed: %s", exc)
            return False

    return True