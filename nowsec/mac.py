"""Conversion of MAC addresses between text and bytes."""

from __future__ import annotations

import re
from typing import Union

__all__ = ["MAC_LEN", "mac_str2hex", "mac_hex2str"]

MAC_LEN = 6

BytesLike = Union[bytes, bytearray, memoryview]

# Each field is one or two hex digits, optionally preceded by whitespace,
# fields separated by colons. Anything after the sixth field is ignored.
_MAC_PATTERN = re.compile(
    r"\s*([0-9A-Fa-f]{1,2})"
    + r":\s*([0-9A-Fa-f]{1,2})" * (MAC_LEN - 1)
)


def mac_str2hex(mac_str: str) -> bytes:
    """Parse ``"xx:xx:xx:xx:xx:xx"`` into six bytes.

    Raises ValueError when the text does not hold six hex fields.
    """
    if not isinstance(mac_str, str):
        raise TypeError("mac_str must be a string")
    match = _MAC_PATTERN.match(mac_str)
    if match is None:
        raise ValueError(f"not a MAC address: {mac_str!r}")
    return bytes(int(field, 16) for field in match.groups())


def mac_hex2str(mac: BytesLike) -> str:
    """Format six bytes as lower-case ``"xx:xx:xx:xx:xx:xx"``."""
    raw = bytes(mac)
    if len(raw) != MAC_LEN:
        raise ValueError(f"a MAC address has {MAC_LEN} bytes, got {len(raw)}")
    return ":".join(f"{octet:02x}" for octet in raw)