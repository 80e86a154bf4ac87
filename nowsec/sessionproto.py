"""Wire format of the session setup messages of security scheme 1."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterator, Optional, Union

__all__ = [
    "SECURITY_VERSION",
    "Sec1MsgType",
    "SessionData",
    "ProtoError",
]

SECURITY_VERSION = 1

BytesLike = Union[bytes, bytearray, memoryview]

_WIRE_VARINT = 0
_WIRE_FIXED64 = 1
_WIRE_LEN = 2
_WIRE_FIXED32 = 5

# Field numbers.
_SESSION_SEC_VER = 2
_SESSION_SEC1 = 11
_SEC1_MSG = 1
_SEC1_SC0 = 20
_SEC1_SR0 = 21
_SEC1_SC1 = 22
_SEC1_SR1 = 23


class ProtoError(ValueError):
    """Raised when a message cannot be decoded."""


class Sec1MsgType(enum.IntEnum):
    """Step of the scheme 1 session setup."""

    SESSION_COMMAND0 = 0
    SESSION_RESPONSE0 = 1
    SESSION_COMMAND1 = 2
    SESSION_RESPONSE1 = 3


def _encode_varint(value: int) -> bytes:
    value &= (1 << 64) - 1
    out = bytearray()
    while True:
        low = value & 0x7F
        value >>= 7
        if value:
            out.append(low | 0x80)
        else:
            out.append(low)
            return bytes(out)


def _key(field: int, wire: int) -> bytes:
    return _encode_varint((field << 3) | wire)


def _varint_field(field: int, value: int) -> bytes:
    if not value:
        return b""
    return _key(field, _WIRE_VARINT) + _encode_varint(int(value))


def _bytes_field(field: int, value: bytes, always: bool = False) -> bytes:
    if not value and not always:
        return b""
    return _key(field, _WIRE_LEN) + _encode_varint(len(value)) + bytes(value)


def _read_varint(data: bytes, pos: int) -> tuple[int, int]:
    result = 0
    shift = 0
    while True:
        if pos >= len(data):
            raise ProtoError("truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result & ((1 << 64) - 1), pos
        shift += 7
        if shift >= 70:
            raise ProtoError("varint too long")


def _take(data: bytes, pos: int, size: int) -> tuple[bytes, int]:
    end = pos + size
    if end > len(data):
        raise ProtoError("truncated field")
    return data[pos:end], end


def _fields(data: bytes) -> Iterator[tuple[int, int, Union[int, bytes]]]:
    pos = 0
    while pos < len(data):
        key, pos = _read_varint(data, pos)
        field, wire = key >> 3, key & 0x07
        if field == 0:
            raise ProtoError("invalid field number 0")
        value: Union[int, bytes]
        if wire == _WIRE_VARINT:
            value, pos = _read_varint(data, pos)
        elif wire == _WIRE_FIXED64:
            value, pos = _take(data, pos, 8)
        elif wire == _WIRE_LEN:
            length, pos = _read_varint(data, pos)
            value, pos = _take(data, pos, length)
        elif wire == _WIRE_FIXED32:
            value, pos = _take(data, pos, 4)
        else:
            raise ProtoError(f"unsupported wire type {wire}")
        yield field, wire, value


def _as_int(field: int, wire: int, value: Union[int, bytes]) -> int:
    if wire != _WIRE_VARINT or not isinstance(value, int):
        raise ProtoError(f"field {field} must be a varint")
    return value


def _as_bytes(field: int, wire: int, value: Union[int, bytes]) -> bytes:
    if wire != _WIRE_LEN or not isinstance(value, bytes):
        raise ProtoError(f"field {field} must be length-delimited")
    return value


# For each payload field: the field numbers of its status, and of its
# byte fields mapped to attribute names.
_PAYLOADS: dict[int, tuple[Optional[int], dict[int, str]]] = {
    _SEC1_SC0: (None, {1: "client_pubkey"}),
    _SEC1_SR0: (1, {2: "device_pubkey", 3: "device_random"}),
    _SEC1_SC1: (None, {2: "client_verify_data"}),
    _SEC1_SR1: (1, {3: "device_verify_data"}),
}

_PAYLOAD_OF_MSG = {
    Sec1MsgType.SESSION_COMMAND0: _SEC1_SC0,
    Sec1MsgType.SESSION_RESPONSE0: _SEC1_SR0,
    Sec1MsgType.SESSION_COMMAND1: _SEC1_SC1,
    Sec1MsgType.SESSION_RESPONSE1: _SEC1_SR1,
}


@dataclass
class SessionData:
    """A session setup message.

    ``msg`` is None when the message carries no scheme 1 payload; the
    byte fields that belong to ``msg`` are the ones that get encoded.
    """

    sec_ver: int = 0
    msg: Optional[Sec1MsgType] = None
    status: int = 0
    client_pubkey: bytes = b""
    device_pubkey: bytes = b""
    device_random: bytes = b""
    client_verify_data: bytes = b""
    device_verify_data: bytes = b""

    def _pack_sec1(self) -> bytes:
        assert self.msg is not None
        msg = Sec1MsgType(self.msg)
        payload_field = _PAYLOAD_OF_MSG[msg]
        status_field, byte_fields = _PAYLOADS[payload_field]
        body = b""
        if status_field is not None:
            body += _varint_field(status_field, self.status)
        for number, name in sorted(byte_fields.items()):
            body += _bytes_field(number, getattr(self, name))
        return _varint_field(_SEC1_MSG, msg) + _bytes_field(
            payload_field, body, always=True
        )

    def pack(self) -> bytes:
        """Encode the message."""
        out = _varint_field(_SESSION_SEC_VER, self.sec_ver)
        if self.msg is not None:
            out += _bytes_field(_SESSION_SEC1, self._pack_sec1(), always=True)
        return out

    @classmethod
    def unpack(cls, data: BytesLike) -> "SessionData":
        """Decode a message; raises ProtoError on malformed input."""
        raw = bytes(data)
        values: dict[str, object] = {}
        sec1: Optional[bytes] = None
        for field, wire, value in _fields(raw):
            if field == _SESSION_SEC_VER:
                values["sec_ver"] = _as_int(field, wire, value)
            elif field == _SESSION_SEC1:
                sec1 = _as_bytes(field, wire, value)

        if sec1 is not None:
            msg_value = 0
            for field, wire, value in _fields(sec1):
                if field == _SEC1_MSG:
                    msg_value = _as_int(field, wire, value)
                elif field in _PAYLOADS:
                    status_field, byte_fields = _PAYLOADS[field]
                    body = _as_bytes(field, wire, value)
                    for sub_field, sub_wire, sub_value in _fields(body):
                        if sub_field == status_field:
                            values["status"] = _as_int(sub_field, sub_wire, sub_value)
                        elif sub_field in byte_fields:
                            values[byte_fields[sub_field]] = _as_bytes(
                                sub_field, sub_wire, sub_value
                            )
            try:
                values["msg"] = Sec1MsgType(msg_value)
            except ValueError as exc:
                raise ProtoError(f"unknown message type {msg_value}") from exc

        return cls(**values)  # type: ignore[arg-type]