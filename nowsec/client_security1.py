"""Client side of security scheme 1: X25519 key exchange and AES-256-CTR.

The client sends its public key (command 0) and gets back the device's
public key and a random nonce (response 0). Both sides derive a shared
key from the exchange, optionally mixed with the SHA-256 of a proof of
possession. The client then proves knowledge of the key by encrypting
the device's public key (command 1) and checks the device's proof
(response 1). After that the session encrypts and decrypts data with
one continuous AES-CTR stream.
"""

from __future__ import annotations

import enum
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Optional, Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from nowsec.sessionproto import (
    SECURITY_VERSION,
    ProtoError,
    Sec1MsgType,
    SessionData,
)

__all__ = [
    "PUBLIC_KEY_LEN",
    "SZ_RANDOM",
    "HandshakeError",
    "SessionState",
    "ClientSecurity1",
]

logger = logging.getLogger("client_security1")

PUBLIC_KEY_LEN = 32
SZ_RANDOM = 16

BytesLike = Union[bytes, bytearray, memoryview]
Pop = Union[str, bytes, bytearray, memoryview, None]


class HandshakeError(Exception):
    """Raised when a session cannot be set up or used."""


class SessionState(enum.IntEnum):
    """Progress of one session setup."""

    RESP0 = 0  # waiting for response 0
    RESP1 = 1  # waiting for response 1
    DONE = 2  # session established


@dataclass
class _Session:
    id: int
    state: SessionState = SessionState.RESP0
    device_pubkey: bytes = b""
    sym_key: bytes = b""
    rand: bytes = b""
    stream: Optional[object] = None

    def crypt(self, data: bytes) -> bytes:
        assert self.stream is not None
        return self.stream.update(data)  # type: ignore[attr-defined]


def _pop_bytes(pop: Pop) -> bytes:
    if pop is None:
        return b""
    if isinstance(pop, str):
        return pop.encode("utf-8")
    return bytes(pop)


class ClientSecurity1:
    """Client key pair shared by any number of sessions, keyed by session id."""

    version = SECURITY_VERSION

    def __init__(self) -> None:
        self._private_key: Optional[X25519PrivateKey] = None
        self.client_pubkey = b""
        self._sessions: dict[int, _Session] = {}

    def write_command0(self) -> bytes:
        """Generate a fresh client key pair and encode command 0."""
        logger.debug("Start to write setup0_command")
        self._private_key = X25519PrivateKey.generate()
        self.client_pubkey = self._private_key.public_key().public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw
        )
        request = SessionData(
            sec_ver=self.version,
            msg=Sec1MsgType.SESSION_COMMAND0,
            client_pubkey=self.client_pubkey,
        )
        logger.debug("Write setup0_command done")
        return request.pack()

    def new_session(self, session_id: int) -> None:
        """Start a session with ``session_id``, replacing any earlier one."""
        if session_id in self._sessions:
            logger.error("Closing old session with id %u", session_id)
        self._sessions[session_id] = _Session(session_id)

    def close_session(self, session_id: int) -> None:
        """Forget the session; raises HandshakeError if there is none."""
        if self._sessions.pop(session_id, None) is None:
            logger.error("Attempt to close invalid session")
            raise HandshakeError(f"no session with id {session_id}")

    def _session(self, session_id: int) -> _Session:
        try:
            return self._sessions[session_id]
        except KeyError:
            logger.error("Session with ID %d not found", session_id)
            raise HandshakeError(f"no session with id {session_id}") from None

    def session_state(self, session_id: int) -> SessionState:
        """The setup progress of a session."""
        return self._session(session_id).state

    def handle_response(
        self, session_id: int, pop: Pop, data: BytesLike
    ) -> Optional[bytes]:
        """Process a device response and return the next command.

        Returns None once the session is established by response 1.
        """
        session = self._session(session_id)
        try:
            response = SessionData.unpack(data)
        except ProtoError as exc:
            logger.error("Unable to unpack setup_req")
            raise HandshakeError(f"cannot decode response: {exc}") from exc

        if response.sec_ver != self.version:
            logger.error("Security version mismatch. Closing connection")
            raise HandshakeError(
                f"security version {response.sec_ver}, expected {self.version}"
            )

        if response.msg == Sec1MsgType.SESSION_RESPONSE0:
            return self._handle_response0(session, response, _pop_bytes(pop))
        if response.msg == Sec1MsgType.SESSION_RESPONSE1:
            self._handle_response1(session, response)
            return None
        logger.error("Invalid security message type")
        raise HandshakeError(f"unexpected message type {response.msg!r}")

    def _handle_response0(
        self, session: _Session, response: SessionData, pop: bytes
    ) -> bytes:
        if session.state != SessionState.RESP0:
            raise HandshakeError(
                f"session in state {session.state.name}, expected RESP0"
            )
        if self._private_key is None:
            logger.error("Session not init")
            raise HandshakeError("command 0 has not been written")
        if len(response.device_pubkey) != PUBLIC_KEY_LEN:
            logger.error("Device public key length as not as expected")
            raise HandshakeError("device public key has the wrong length")
        if len(response.device_random) != SZ_RANDOM:
            logger.error("Device random data length is not as expected")
            raise HandshakeError("device random data has the wrong length")

        try:
            shared = self._private_key.exchange(
                X25519PublicKey.from_public_bytes(response.device_pubkey)
            )
        except ValueError as exc:
            raise HandshakeError(f"key exchange failed: {exc}") from exc

        if pop:
            logger.debug("Adding proof of possession")
            digest = hashlib.sha256(pop).digest()
            shared = bytes(a ^ b for a, b in zip(shared, digest))

        session.device_pubkey = response.device_pubkey
        session.sym_key = shared
        session.rand = response.device_random
        session.stream = Cipher(
            algorithms.AES(session.sym_key), modes.CTR(session.rand)
        ).encryptor()

        verify = session.crypt(session.device_pubkey)
        session.state = SessionState.RESP1
        logger.debug("Session setup phase1 done")
        return SessionData(
            sec_ver=self.version,
            msg=Sec1MsgType.SESSION_COMMAND1,
            client_verify_data=verify,
        ).pack()

    def _handle_response1(self, session: _Session, response: SessionData) -> None:
        if session.state != SessionState.RESP1:
            raise HandshakeError(
                f"session in state {session.state.name}, expected RESP1"
            )
        if len(response.device_verify_data) != PUBLIC_KEY_LEN:
            raise HandshakeError("device verify data has the wrong length")
        check = session.crypt(response.device_verify_data)
        if not hmac.compare_digest(check, self.client_pubkey):
            logger.error("Key mismatch. Close connection")
            raise HandshakeError("device verification failed")
        session.state = SessionState.DONE
        logger.debug("Secure session established successfully")

    def _established(self, session_id: int) -> _Session:
        session = self._session(session_id)
        if session.state != SessionState.DONE:
            logger.error("Secure session not established")
            raise HandshakeError("secure session not established")
        return session

    def encrypt(self, session_id: int, data: BytesLike) -> bytes:
        """Encrypt with the session's stream (the same as decrypting)."""
        return self._established(session_id).crypt(bytes(data))

    def decrypt(self, session_id: int, data: BytesLike) -> bytes:
        """Decrypt with the session's stream (the same as encrypting)."""
        return self._established(session_id).crypt(bytes(data))