"""Responder side of the key hand-out: answer scans and take a key.

A responder answers requests for its security information. It runs the
scheme 1 session setup with the first initiator that starts one, and
stores the application key that arrives over that session. Once
configured it ignores further handshakes until its information is
reset.

The server end of the session setup lives in a protocomm object. It
routes the ``espnow-session`` endpoint to its security scheme and
``espnow-config`` to the handler the responder registers.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Protocol, Union

from nowsec.client_security1 import HandshakeError
from nowsec.handshake import ADDR_LEN, SecInfo, SecPacket, SecType, SecVersion
from nowsec.initiator import DataType, FrameHead
from nowsec.mac import mac_hex2str
from nowsec.security import APP_KEY_LEN, EVENT_SEC_FAIL, EVENT_SEC_OK

__all__ = [
    "SESSION_ENDPOINT",
    "CONFIG_ENDPOINT",
    "VERSION_ENDPOINT",
    "PROTOCOL_VERSION",
    "ResponderTransport",
    "Protocomm",
    "Responder",
]

logger = logging.getLogger("espnow_sec_resp")

BytesLike = Union[bytes, bytearray, memoryview]

SESSION_ENDPOINT = "espnow-session"
CONFIG_ENDPOINT = "espnow-config"
VERSION_ENDPOINT = "espnow-ver"
PROTOCOL_VERSION = "v0.1"

_EMPTY_ADDR = bytes(ADDR_LEN)


class ResponderTransport(Protocol):
    """What the responder needs to answer; ``send`` raises OSError on failure."""

    def send(
        self, data_type: DataType, dest: bytes, data: bytes, frame: FrameHead
    ) -> None: ...


class Protocomm(Protocol):
    """Server end of the session setup, with named endpoints."""

    def set_version(self, ep_name: str, version: str) -> None: ...

    def add_endpoint(
        self, ep_name: str, handler: Callable[[int, bytes], bytes]
    ) -> None: ...

    def open_session(self, session_id: int) -> None: ...

    def close_session(self, session_id: int) -> None: ...

    def req_handle(self, ep_name: str, session_id: int, data: bytes) -> bytes: ...


class Responder:
    """Answers an initiator and receives the application key from it."""

    def __init__(
        self,
        transport: ResponderTransport,
        protocomm: Protocomm,
        on_key: Optional[Callable[[bytes], None]] = None,
        on_event: Optional[Callable[[int], None]] = None,
    ) -> None:
        self.transport = transport
        self.on_key = on_key
        self.on_event = on_event
        self.info = SecInfo(type=SecType.INFO)
        self.app_key = bytes(APP_KEY_LEN)
        self.status_frame = FrameHead()
        protocomm.set_version(VERSION_ENDPOINT, PROTOCOL_VERSION)
        protocomm.add_endpoint(CONFIG_ENDPOINT, self.config_handler)
        self._protocomm: Optional[Protocomm] = protocomm

    @property
    def running(self) -> bool:
        return self._protocomm is not None

    def _post(self, event: int) -> None:
        if self.on_event is not None:
            self.on_event(event)

    def process(self, src_addr: BytesLike, data: BytesLike) -> None:
        """Handle a security frame from ``src_addr``.

        Frames arriving after ``stop`` are ignored.
        """
        src = bytes(src_addr)
        if len(src) != ADDR_LEN:
            raise ValueError(f"an address has {ADDR_LEN} bytes, got {len(src)}")
        raw = bytes(data)
        if not raw:
            raise ValueError("empty frame")
        if self._protocomm is None:
            return

        kind = raw[0]
        if kind == SecType.REQUEST:
            logger.debug("ESPNOW_SEC_TYPE_INFO")
            self._send_info(src)
        elif kind == SecType.REST:
            logger.debug("ESPNOW_SEC_TYPE_REST")
            self.info = SecInfo(type=SecType.INFO)
        elif kind == SecType.HANDSHAKE:
            logger.debug("ESPNOW_SEC_TYPE_HANDSHAKE")
            self._handle(SESSION_ENDPOINT, SecType.HANDSHAKE, src, raw)
        elif kind == SecType.KEY:
            logger.debug("ESPNOW_SEC_TYPE_KEY")
            self._handle(CONFIG_ENDPOINT, SecType.KEY_RESP, src, raw)

    def _send_info(self, src: bytes) -> None:
        self.info.type = SecType.INFO
        self.transport.send(
            DataType.SECURITY_STATUS, src, self.info.pack(), self.status_frame
        )
        logger.debug(
            "Security information: version %d, client %s",
            self.info.sec_ver,
            mac_hex2str(self.info.client_mac),
        )

    def _handle(self, ep_name: str, resp_type: SecType, src: bytes, raw: bytes) -> None:
        protocomm = self._protocomm
        assert protocomm is not None
        session_id = src[5]

        if self.info.sec_ver != SecVersion.NONE:
            return
        client = self.info.client_mac
        if client != _EMPTY_ADDR and client != src:
            return

        packet = SecPacket.unpack(raw)

        if client == _EMPTY_ADDR:
            self.info.client_mac = src
            protocomm.open_session(session_id)

        try:
            reply = protocomm.req_handle(ep_name, session_id, packet.data)
        except Exception as exc:
            logger.error("espnow-session handler failed: %s", exc)
            self._post(EVENT_SEC_FAIL)
            self.info.client_mac = _EMPTY_ADDR
            protocomm.close_session(session_id)
            raise HandshakeError(f"{ep_name} handler failed: {exc}") from exc

        frame = FrameHead(
            retransmit_count=1,
            broadcast=False,
            filter_adjacent_channel=True,
            forward_ttl=0,
        )
        try:
            self.transport.send(
                DataType.SECURITY, src, SecPacket(resp_type, reply).pack(), frame
            )
        except OSError as exc:
            logger.warning("espnow-session send failed: %s", exc)
            raise

    def config_handler(self, session_id: int, data: BytesLike) -> bytes:
        """Take the application key from ``data`` and echo ``data`` back."""
        raw = bytes(data)
        if len(raw) < APP_KEY_LEN:
            raise ValueError(
                f"key message needs {APP_KEY_LEN} bytes, got {len(raw)}"
            )
        self.app_key = raw[:APP_KEY_LEN]
        self.info.sec_ver = SecVersion.V1_0
        logger.info("Get APP key")

        if self.on_key is not None:
            try:
                self.on_key(self.app_key)
            except Exception:
                self._post(EVENT_SEC_FAIL)
                raise
        self._post(EVENT_SEC_OK)
        return raw

    def stop(self) -> None:
        """Stop answering frames and let go of the protocomm object."""
        self._protocomm = None