"""Initiator side of the key hand-out: find responders and give them a key.

The initiator scans for responders by broadcasting a request for their
security information. It then runs a scheme 1 session setup with a batch
of responders at a time and sends each of them the application key,
encrypted under its session. A responder that confirms the key counts
as succeeded; the others are tried again in later rounds.

Frames travel through a transport. Frames that arrive for the initiator
are handed to ``on_status`` (replies to a scan) and ``on_security``
(handshake replies), which may be called from another thread.
"""

from __future__ import annotations

import enum
import logging
import queue
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Protocol, Union

from nowsec.client_security1 import ClientSecurity1, HandshakeError, Pop
from nowsec.handshake import (
    ADDR_LEN,
    SecInfo,
    SecPacket,
    SecResponder,
    SecResult,
    SecType,
    SecVersion,
)
from nowsec.mac import mac_hex2str
from nowsec.security import APP_KEY_LEN

__all__ = [
    "ADDR_BROADCAST",
    "ADDR_GROUP_SEC",
    "MAX_SESSIONS",
    "SEND_RETRY_NUM",
    "SEND_FORWARD_TTL",
    "SEND_FORWARD_RSSI",
    "DataType",
    "FrameHead",
    "Transport",
    "Initiator",
]

logger = logging.getLogger("espnow_sec_init")

BytesLike = Union[bytes, bytearray, memoryview]

ADDR_BROADCAST = b"\xff" * ADDR_LEN
# Group address that the responders of one round are gathered under.
ADDR_GROUP_SEC = bytes.fromhex("6c6c6c6c6c6c")

# Sessions run at the same time; more are handled in later rounds.
MAX_SESSIONS = 100

SEND_RETRY_NUM = 1
SEND_FORWARD_TTL = 0
SEND_FORWARD_RSSI = -65

SCAN_RETRANSMIT_COUNT = 10
DEFAULT_SCAN_ROUNDS = 5


class DataType(enum.IntEnum):
    """Kind of data a frame carries."""

    SECURITY_STATUS = 1
    SECURITY = 2


@dataclass
class FrameHead:
    """How a frame is to be sent."""

    retransmit_count: int = 0
    broadcast: bool = False
    group: bool = False
    filter_adjacent_channel: bool = False
    forward_ttl: int = 0
    forward_rssi: int = 0
    magic: int = 0


class Transport(Protocol):
    """What the initiator needs to reach responders.

    ``send`` and ``set_group`` raise OSError when they fail.
    """

    def send(
        self, data_type: DataType, dest: bytes, data: bytes, frame: FrameHead
    ) -> None: ...

    def set_group(self, addrs: list[bytes], group: bytes, add: bool) -> None: ...


def _check_addr(addr: BytesLike) -> bytes:
    raw = bytes(addr)
    if len(raw) != ADDR_LEN:
        raise ValueError(f"an address has {ADDR_LEN} bytes, got {len(raw)}")
    return raw


def _swap_remove(addrs: list[bytes], addr: bytes) -> bool:
    """Remove ``addr``, moving the last address into its place."""
    try:
        index = addrs.index(addr)
    except ValueError:
        return False
    last = addrs.pop()
    if index < len(addrs):
        addrs[index] = last
    return True


class Initiator:
    """Scans for responders and hands them an application key."""

    def __init__(self, transport: Transport, own_mac: BytesLike) -> None:
        self.transport = transport
        self.own_mac = _check_addr(own_mac)
        self.scan_interval = 0.5
        self.recv_timeout = 0.1
        self.sleep: Callable[[float], None] = time.sleep
        self.clock: Callable[[], float] = time.monotonic
        self._lock = threading.Lock()
        self._scanning = False
        self._responders: list[SecResponder] = []
        self._queue: Optional[queue.Queue[tuple[bytes, bytes]]] = None
        self._running = False

    def on_status(
        self, src_addr: BytesLike, data: BytesLike, channel: int, rssi: int
    ) -> None:
        """Take a responder's security information while a scan runs."""
        raw = bytes(data)
        if not raw or raw[0] != SecType.INFO:
            return
        try:
            src = _check_addr(src_addr)
            info = SecInfo.unpack(raw)
        except ValueError as exc:
            logger.warning("Malformed security information: %s", exc)
            return

        with self._lock:
            if not self._scanning:
                return
            if any(known.mac == src for known in self._responders):
                return
            if info.sec_ver == SecVersion.V1_0 and info.client_mac == self.own_mac:
                logger.debug(
                    "Device security has been configured by this client, skip."
                )
                return
            self._responders.append(
                SecResponder(mac=src, rssi=rssi, channel=channel, sec_ver=info.sec_ver)
            )

        logger.debug(
            "Device %s, channel: %d, rssi: %d, version: %d, client: %s",
            mac_hex2str(src),
            channel,
            rssi,
            info.sec_ver,
            mac_hex2str(info.client_mac),
        )

    def scan(self, rounds: int = DEFAULT_SCAN_ROUNDS) -> list[SecResponder]:
        """Broadcast requests for security information and collect replies."""
        request = bytes([SecType.REQUEST])
        frame = FrameHead(
            retransmit_count=SCAN_RETRANSMIT_COUNT,
            broadcast=True,
            magic=random.getrandbits(32),
            filter_adjacent_channel=True,
            forward_ttl=SEND_FORWARD_TTL,
            forward_rssi=SEND_FORWARD_RSSI,
        )

        with self._lock:
            self._responders = []
            self._scanning = True
        try:
            for _ in range(rounds):
                self.transport.send(DataType.SECURITY, ADDR_BROADCAST, request, frame)
                self.sleep(self.scan_interval)
        finally:
            with self._lock:
                self._scanning = False

        with self._lock:
            return list(self._responders)

    def on_security(self, src_addr: BytesLike, data: BytesLike) -> bool:
        """Queue a handshake reply; False when none is expected or room is out."""
        pending = self._queue
        if pending is None:
            return False
        try:
            pending.put_nowait((_check_addr(src_addr), bytes(data)))
        except queue.Full:
            logger.warning("Send sec queue failed")
            return False
        except ValueError as exc:
            logger.warning("Dropped frame: %s", exc)
            return False
        return True

    def start(
        self,
        app_key: BytesLike,
        pop: Pop,
        addrs: Iterable[BytesLike],
        wait: Optional[float] = None,
    ) -> SecResult:
        """Hand ``app_key`` to every address; report who got it.

        ``wait`` is the time given to each round; by default it grows
        with the number of responders in the round.
        """
        key = bytes(app_key)
        if len(key) != APP_KEY_LEN:
            raise ValueError(
                f"application key must have {APP_KEY_LEN} bytes, got {len(key)}"
            )
        if pop is None:
            raise ValueError("a proof of possession is required")
        targets = [_check_addr(addr) for addr in addrs]
        if not targets:
            raise ValueError("no addresses given")

        self._queue = queue.Queue(maxsize=len(targets))
        self._running = True
        try:
            return self._run(key, pop, targets, wait)
        finally:
            self._running = False
            self._queue = None

    def stop(self) -> None:
        """Make a running ``start`` finish as soon as it can."""
        self._running = False

    def _run(
        self, key: bytes, pop: Pop, targets: list[bytes], wait: Optional[float]
    ) -> SecResult:
        result = SecResult(unfinished_addrs=list(targets))
        batches, rest = divmod(len(targets), MAX_SESSIONS)
        rounds = batches + (1 if rest == 0 else 2)

        for count in range(rounds):
            if not result.unfinished_addrs or not self._running:
                break
            current = result.unfinished_addrs[:MAX_SESSIONS]
            round_wait = wait if wait is not None else 1.2 + 0.3 * len(current)
            logger.info(
                "count: %d, requested_num: %d, unfinished_num: %d, successed_num: %d",
                count,
                len(current),
                len(result.unfinished_addrs),
                len(result.succeeded_addrs),
            )

            client = ClientSecurity1()
            for session_id in range(len(current)):
                client.new_session(session_id)
            try:
                self._run_round(client, current, pop, key, round_wait, result)
            finally:
                for session_id in range(len(current)):
                    try:
                        client.close_session(session_id)
                    except HandshakeError:
                        pass

        return result

    def _run_round(
        self,
        client: ClientSecurity1,
        current: list[bytes],
        pop: Pop,
        key: bytes,
        round_wait: float,
        result: SecResult,
    ) -> None:
        group_frame = FrameHead(
            retransmit_count=SEND_RETRY_NUM,
            broadcast=True,
            group=True,
            filter_adjacent_channel=True,
            forward_ttl=SEND_FORWARD_TTL,
            forward_rssi=SEND_FORWARD_RSSI,
        )
        try:
            self.transport.set_group(current, ADDR_GROUP_SEC, True)
            command0 = client.write_command0()
            self.transport.send(
                DataType.SECURITY,
                ADDR_GROUP_SEC,
                SecPacket(SecType.HANDSHAKE, command0).pack(),
                group_frame,
            )
            self.transport.set_group(current, ADDR_GROUP_SEC, False)
        except OSError as exc:
            logger.warning("espnow-session cm0 send failed: %s", exc)
            return

        unicast = FrameHead(
            retransmit_count=SEND_RETRY_NUM,
            filter_adjacent_channel=True,
            forward_ttl=SEND_FORWARD_TTL,
            forward_rssi=SEND_FORWARD_RSSI,
        )
        pending = self._queue
        assert pending is not None
        succeeded = 0
        deadline = self.clock() + round_wait

        while self.clock() < deadline and succeeded < len(current) and self._running:
            try:
                src, data = pending.get(timeout=self.recv_timeout)
            except queue.Empty:
                continue

            try:
                session_id = current.index(src)
            except ValueError:
                logger.warning("addr %s not searched", mac_hex2str(src))
                continue
            try:
                packet = SecPacket.unpack(data)
            except ValueError as exc:
                logger.warning("Malformed packet from %s: %s", mac_hex2str(src), exc)
                continue

            if packet.type == SecType.KEY_RESP:
                if src in result.succeeded_addrs:
                    continue
                logger.debug("Session %d successful, mac %s", session_id, mac_hex2str(src))
                _swap_remove(result.unfinished_addrs, src)
                result.succeeded_addrs.append(src)
                succeeded += 1
            elif packet.type == SecType.HANDSHAKE:
                try:
                    reply = client.handle_response(session_id, pop, packet.data)
                    if reply:
                        response = SecPacket(SecType.HANDSHAKE, reply)
                    else:
                        response = SecPacket(
                            SecType.KEY, client.encrypt(session_id, key)
                        )
                except HandshakeError as exc:
                    logger.error("espnow-session handler failed: %s", exc)
                    continue
                try:
                    self.transport.send(
                        DataType.SECURITY, src, response.pack(), unicast
                    )
                except OSError as exc:
                    logger.warning("espnow-session send failed: %s", exc)