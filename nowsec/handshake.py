"""Messages exchanged while handing a key from an initiator to responders."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass, field
from typing import Union

__all__ = [
    "ADDR_LEN",
    "SecType",
    "SecVersion",
    "SecInfo",
    "SecResponder",
    "SecPacket",
    "SecResult",
]

ADDR_LEN = 6

BytesLike = Union[bytes, bytearray, memoryview]

_INFO_FORMAT = struct.Struct("<BB6s")
_PACKET_HEAD = struct.Struct("<BB")


class SecType(enum.IntEnum):
    """Kind of a security packet."""

    REQUEST = 0  # request security information
    INFO = 1  # security information
    HANDSHAKE = 2  # handshake packet to get the key
    KEY = 3  # packet holding the application key
    KEY_RESP = 4  # confirms the application key arrived
    REST = 5  # reset security information


class SecVersion(enum.IntEnum):
    """Security version of a device."""

    NONE = 0
    V1_0 = 1
    V1_1 = 2


def _check_addr(addr: BytesLike, what: str) -> bytes:
    raw = bytes(addr)
    if len(raw) != ADDR_LEN:
        raise ValueError(f"{what} must have {ADDR_LEN} bytes, got {len(raw)}")
    return raw


@dataclass
class SecInfo:
    """Security information of a responder, or a request for it."""

    type: int = SecType.REQUEST
    sec_ver: int = SecVersion.NONE
    client_mac: bytes = bytes(ADDR_LEN)

    def __post_init__(self) -> None:
        self.client_mac = _check_addr(self.client_mac, "client_mac")

    def pack(self) -> bytes:
        """Encode as type, version and client address."""
        return _INFO_FORMAT.pack(int(self.type), int(self.sec_ver), self.client_mac)

    @classmethod
    def unpack(cls, data: BytesLike) -> "SecInfo":
        """Decode the first eight bytes of ``data``."""
        raw = bytes(data)
        if len(raw) < _INFO_FORMAT.size:
            raise ValueError(
                f"security info needs {_INFO_FORMAT.size} bytes, got {len(raw)}"
            )
        kind, version, mac = _INFO_FORMAT.unpack_from(raw)
        return cls(kind, version, mac)


@dataclass
class SecResponder:
    """A responder found by a scan."""

    mac: bytes
    rssi: int = 0
    channel: int = 0
    sec_ver: int = SecVersion.NONE

    def __post_init__(self) -> None:
        self.mac = _check_addr(self.mac, "mac")


@dataclass
class SecPacket:
    """A handshake or key packet: a type byte, a size byte and the message."""

    type: int
    data: bytes = b""

    def __post_init__(self) -> None:
        self.data = bytes(self.data)
        if len(self.data) > 0xFF:
            raise ValueError("packet data is longer than 255 bytes")

    def pack(self) -> bytes:
        return _PACKET_HEAD.pack(int(self.type), len(self.data)) + self.data

    @classmethod
    def unpack(cls, data: BytesLike) -> "SecPacket":
        """Decode a packet; bytes after the message are ignored."""
        raw = bytes(data)
        if len(raw) < _PACKET_HEAD.size:
            raise ValueError("packet is shorter than its header")
        kind, size = _PACKET_HEAD.unpack_from(raw)
        body = raw[_PACKET_HEAD.size : _PACKET_HEAD.size + size]
        if len(body) != size:
            raise ValueError(f"packet announces {size} bytes, holds {len(body)}")
        return cls(kind, body)


@dataclass
class SecResult:
    """Which devices have and have not received the key."""

    unfinished_addrs: list[bytes] = field(default_factory=list)
    succeeded_addrs: list[bytes] = field(default_factory=list)
    requested_addrs: list[bytes] = field(default_factory=list)