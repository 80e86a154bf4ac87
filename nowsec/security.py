"""Authenticated encryption of frames with AES-128-CCM under an exchanged key."""

from __future__ import annotations

import enum
import logging
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESCCM

__all__ = [
    "APP_KEY_LEN",
    "KEY_LEN",
    "IV_LEN",
    "TAG_LEN",
    "EVENT_SEC_OK",
    "EVENT_SEC_FAIL",
    "SecurityError",
    "SecState",
    "Security",
]

logger = logging.getLogger("espnow_sec")

APP_KEY_LEN = 32  # Exchanged key length
KEY_LEN = 16  # Secret key length
IV_LEN = 8  # Nonce length
TAG_LEN = 4  # Authentication tag length

EVENT_SEC_OK = 0x600
EVENT_SEC_FAIL = 0x601

BytesLike = Union[bytes, bytearray, memoryview]


class SecurityError(Exception):
    """Raised when encryption or decryption cannot be done."""


class SecState(enum.IntEnum):
    """Progress of the security handshake."""

    UNFINISHED = 0
    OVER = 1


class Security:
    """A secret key and nonce taken from an application key.

    Until ``set_key`` has been called, encryption and decryption fail.
    """

    def __init__(self) -> None:
        self.key_len = KEY_LEN
        self.iv_len = IV_LEN
        self.tag_len = TAG_LEN
        self.state = SecState.UNFINISHED
        self.key = bytes(KEY_LEN)
        self.iv = bytes(IV_LEN)

    def set_key(self, app_key: BytesLike) -> None:
        """Take the key and nonce from the start of a 32-byte application key."""
        raw = bytes(app_key)
        if len(raw) != APP_KEY_LEN:
            raise ValueError(
                f"application key must have {APP_KEY_LEN} bytes, got {len(raw)}"
            )
        key = raw[: self.key_len]
        # Fails early on a key the cipher does not accept.
        AESCCM(key, tag_length=self.tag_len)
        self.key = key
        self.iv = raw[self.key_len : self.key_len + self.iv_len]
        self.state = SecState.OVER

    def _cipher(self, tag_len: int) -> AESCCM:
        try:
            return AESCCM(self.key, tag_length=tag_len)
        except ValueError as exc:
            raise ValueError(f"unsupported tag length {tag_len}: {exc}") from exc

    def _check_ready(self) -> None:
        if self.state != SecState.OVER:
            logger.error("Security state is not over")
            raise SecurityError("security state is not over")

    def encrypt(self, data: BytesLike, tag_len: int = TAG_LEN) -> bytes:
        """Encrypt ``data``; the tag of ``tag_len`` bytes is appended."""
        plain = bytes(data)
        if not plain:
            raise ValueError("data must not be empty")
        if tag_len <= 0:
            raise ValueError("tag length must be positive")
        self._check_ready()

        return self._cipher(tag_len).encrypt(self.iv, plain, None)

    def decrypt(self, data: BytesLike, tag_len: int = TAG_LEN) -> bytes:
        """Check and strip the trailing tag of ``data`` and decrypt the rest."""
        sealed = bytes(data)
        if not sealed:
            raise ValueError("data must not be empty")
        if tag_len <= 0:
            raise ValueError("tag length must be positive")
        if len(sealed) <= tag_len:
            raise ValueError("data is not longer than the tag")
        self._check_ready()

        try:
            return self._cipher(tag_len).decrypt(self.iv, sealed, None)
        except InvalidTag as exc:
            logger.error("Authenticated decryption failed")
            raise SecurityError("authentication failed") from exc

    def clear(self) -> None:
        """Forget the key and go back to the unfinished state."""
        self.key = bytes(KEY_LEN)
        self.iv = bytes(IV_LEN)
        self.key_len = KEY_LEN
        self.iv_len = IV_LEN
        self.tag_len = TAG_LEN
        self.state = SecState.UNFINISHED