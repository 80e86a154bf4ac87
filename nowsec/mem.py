"""Bookkeeping of outstanding allocations, for tracking down leaks."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass

__all__ = ["MemoryRecord", "MemoryTracker", "DEFAULT_CAPACITY"]

logger = logging.getLogger("esp_mem")

DEFAULT_CAPACITY = 256


@dataclass(frozen=True)
class MemoryRecord:
    """One allocation that has not been released yet."""

    ptr: int
    size: int
    tag: str
    line: int
    timestamp: int


class MemoryTracker:
    """A fixed number of slots holding allocations that are still live.

    Records keep the slot order: a released slot is reused by the next
    allocation, so the listing follows slots rather than insertion time.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._slots: list[MemoryRecord | None] = [None] * capacity
        self._count = 0
        self._lock = threading.Lock()
        self._started = time.monotonic()

    def _timestamp(self) -> int:
        return int((time.monotonic() - self._started) * 1000)

    def __len__(self) -> int:
        return self._count

    def add_record(self, ptr: int, size: int, tag: str, line: int) -> None:
        """Remember an allocation; incomplete records are ignored."""
        if not ptr or not size or not tag:
            return

        logger.debug("<%s : %d> Alloc ptr: %#x, size: %d", tag, line, ptr, size)

        if self._count >= self.capacity:
            logger.error("The buffer space of the memory record is full")
            logger.info("%s", self.format_record())
            return

        with self._lock:
            free_slot = next(
                (index for index, slot in enumerate(self._slots) if slot is None),
                None,
            )
            if free_slot is not None:
                self._slots[free_slot] = MemoryRecord(
                    ptr, size, tag, line, self._timestamp()
                )
                self._count += 1

    def remove_record(self, ptr: int, tag: str, line: int) -> None:
        """Forget the first live record of an allocation at ``ptr``."""
        if not ptr:
            return

        logger.debug("<%s : %d> Free ptr: %#x", tag, line, ptr)

        with self._lock:
            match = next(
                (
                    index
                    for index, slot in enumerate(self._slots)
                    if slot is not None and slot.ptr == ptr
                ),
                None,
            )
            if match is not None:
                self._slots[match] = None
                self._count -= 1

    def records(self) -> list[MemoryRecord]:
        """Live records in slot order."""
        with self._lock:
            return [slot for slot in self._slots if slot is not None]

    def total_size(self) -> int:
        """Sum of the sizes of all live records."""
        return sum(record.size for record in self.records())

    def format_record(self) -> str:
        """A report of every live record followed by a summary line."""
        live = self.records()
        if not live:
            return "Memory record is empty"

        lines = [
            f"({record.timestamp}) <{record.tag}: {record.line}> "
            f"ptr: {record.ptr:#x}, size: {record.size}"
            for record in live
        ]
        lines.append(
            f"Memory record, num: {len(live)}, "
            f"size: {sum(record.size for record in live)}"
        )
        return "\n".join(lines)