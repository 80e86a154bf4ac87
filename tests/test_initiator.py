import hashlib
import os

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from nowsec.handshake import SecInfo, SecPacket, SecType, SecVersion
from nowsec.initiator import (
    ADDR_BROADCAST,
    ADDR_GROUP_SEC,
    DataType,
    Initiator,
)
from nowsec.sessionproto import Sec1MsgType, SessionData

OWN_MAC = bytes.fromhex("0200000000aa")
MAC_A = bytes.fromhex("020000000001")
MAC_B = bytes.fromhex("020000000002")
MAC_C = bytes.fromhex("020000000003")
OTHER_CLIENT = bytes.fromhex("0200000000bb")

APP_KEY = bytes(range(32))


class FakeDevice:
    def __init__(self, mac, pop="secret", sec_ver=SecVersion.NONE,
                 client_mac=bytes(6), channel=1, rssi=-40):
        self.mac = mac
        self.pop = pop
        self.sec_ver = sec_ver
        self.client_mac = client_mac
        self.channel = channel
        self.rssi = rssi
        self.received_key = None
        self._stream = None

    def handle(self, payload):
        if payload[:1] == bytes([SecType.REQUEST]):
            info = SecInfo(SecType.INFO, self.sec_ver, self.client_mac)
            return DataType.SECURITY_STATUS, info.pack()
        packet = SecPacket.unpack(payload)
        if packet.type == SecType.HANDSHAKE:
            request = SessionData.unpack(packet.data)
            if request.msg == Sec1MsgType.SESSION_COMMAND0:
                return self._response0(request)
            if request.msg == Sec1MsgType.SESSION_COMMAND1:
                return self._response1(request)
        if packet.type == SecType.KEY:
            self.received_key = self._stream.update(packet.data)
            return DataType.SECURITY, SecPacket(SecType.KEY_RESP, packet.data).pack()
        return None

    def _response0(self, request):
        private = X25519PrivateKey.generate()
        self._pubkey = private.public_key().public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw
        )
        self._client_pubkey = request.client_pubkey
        shared = private.exchange(X25519PublicKey.from_public_bytes(request.client_pubkey))
        digest = hashlib.sha256(self.pop.encode()).digest()
        shared = bytes(a ^ b for a, b in zip(shared, digest))
        rand = os.urandom(16)
        self._stream = Cipher(algorithms.AES(shared), modes.CTR(rand)).encryptor()
        reply = SessionData(sec_ver=1, msg=Sec1MsgType.SESSION_RESPONSE0,
                            device_pubkey=self._pubkey, device_random=rand)
        return DataType.SECURITY, SecPacket(SecType.HANDSHAKE, reply.pack()).pack()

    def _response1(self, request):
        check = self._stream.update(request.client_verify_data)
        if check != self._pubkey:
            return None
        verify = self._stream.update(self._client_pubkey)
        reply = SessionData(sec_ver=1, msg=Sec1MsgType.SESSION_RESPONSE1,
                            device_verify_data=verify)
        return DataType.SECURITY, SecPacket(SecType.HANDSHAKE, reply.pack()).pack()


class FakeTransport:
    def __init__(self, devices):
        self.devices = {device.mac: device for device in devices}
        self.initiator = None
        self.sent = []
        self.groups = []
        self.members = set()
        self.on_send = None

    def set_group(self, addrs, group, add):
        self.groups.append((list(addrs), group, add))
        self.members = set(addrs) if add else set()

    def send(self, data_type, dest, data, frame):
        self.sent.append((data_type, dest, data, frame))
        if self.on_send is not None:
            self.on_send()
        if dest == ADDR_BROADCAST:
            targets = list(self.devices)
        elif dest == ADDR_GROUP_SEC:
            targets = [mac for mac in self.devices if mac in self.members]
        else:
            targets = [dest] if dest in self.devices else []
        for mac in targets:
            device = self.devices[mac]
            reply = device.handle(data)
            if reply is None:
                continue
            reply_type, payload = reply
            if reply_type == DataType.SECURITY_STATUS:
                self.initiator.on_status(mac, payload, device.channel, device.rssi)
            else:
                self.initiator.on_security(mac, payload)


def make(devices):
    transport = FakeTransport(devices)
    initiator = Initiator(transport, OWN_MAC)
    transport.initiator = initiator
    initiator.scan_interval = 0
    initiator.sleep = lambda seconds: None
    initiator.recv_timeout = 0.01
    return transport, initiator


def test_scan_collects_unconfigured_and_foreign_devices():
    devices = [
        FakeDevice(MAC_A, channel=6, rssi=-30),
        FakeDevice(MAC_B, sec_ver=SecVersion.V1_0, client_mac=OWN_MAC),
        FakeDevice(MAC_C, sec_ver=SecVersion.V1_0, client_mac=OTHER_CLIENT, rssi=-50),
    ]
    transport, initiator = make(devices)
    found = initiator.scan(3)
    assert [r.mac for r in found] == [MAC_A, MAC_C]
    assert (found[0].channel, found[0].rssi) == (6, -30)
    assert found[1].sec_ver == SecVersion.V1_0
    assert found[1].rssi == -50


def test_scan_sends_one_request_per_round():
    transport, initiator = make([FakeDevice(MAC_A)])
    initiator.scan(4)
    assert len(transport.sent) == 4
    for data_type, dest, data, frame in transport.sent:
        assert data_type == DataType.SECURITY
        assert dest == ADDR_BROADCAST
        assert data == bytes([SecType.REQUEST])
        assert frame.broadcast


def test_status_outside_scan_is_ignored():
    transport, initiator = make([])
    info = SecInfo(SecType.INFO, SecVersion.NONE, bytes(6)).pack()
    initiator.on_status(MAC_A, info, 1, -20)
    assert initiator.scan(1) == []


def test_security_frame_without_start_is_not_queued():
    transport, initiator = make([])
    assert initiator.on_security(MAC_A, b"\x04\x00") is False


def test_start_hands_key_to_every_device():
    devices = [FakeDevice(MAC_A), FakeDevice(MAC_B)]
    transport, initiator = make(devices)
    result = initiator.start(APP_KEY, "secret", [MAC_A, MAC_B], wait=2.0)
    assert sorted(result.succeeded_addrs) == [MAC_A, MAC_B]
    assert result.unfinished_addrs == []
    assert all(device.received_key == APP_KEY for device in devices)


def test_start_gathers_round_into_group_and_releases_it():
    transport, initiator = make([FakeDevice(MAC_A)])
    initiator.start(APP_KEY, "secret", [MAC_A], wait=2.0)
    assert transport.groups == [
        ([MAC_A], ADDR_GROUP_SEC, True),
        ([MAC_A], ADDR_GROUP_SEC, False),
    ]
    first = SecPacket.unpack(transport.sent[0][2])
    assert first.type == SecType.HANDSHAKE
    assert SessionData.unpack(first.data).msg == Sec1MsgType.SESSION_COMMAND0


def test_device_with_other_pop_stays_unfinished():
    good = FakeDevice(MAC_A)
    bad = FakeDevice(MAC_B, pop="password")
    transport, initiator = make([good, bad])
    result = initiator.start(APP_KEY, "secret", [MAC_A, MAC_B], wait=0.1)
    assert result.succeeded_addrs == [MAC_A]
    assert result.unfinished_addrs == [MAC_B]
    assert bad.received_key is None


def test_stop_ends_start_early():
    transport, initiator = make([FakeDevice(MAC_A)])
    transport.on_send = initiator.stop
    result = initiator.start(APP_KEY, "secret", [MAC_A], wait=0.5)
    assert result.succeeded_addrs == []
    assert result.unfinished_addrs == [MAC_A]
    assert len(transport.sent) == 1


def test_send_failure_leaves_devices_unfinished():
    transport, initiator = make([FakeDevice(MAC_A)])

    def fail():
        raise OSError("radio down")

    transport.on_send = fail
    result = initiator.start(APP_KEY, "secret", [MAC_A], wait=0.05)
    assert result.unfinished_addrs == [MAC_A]
    assert result.succeeded_addrs == []


@pytest.mark.parametrize("key", [b"", bytes(16), bytes(33)])
def test_start_rejects_wrong_key_length(key):
    transport, initiator = make([])
    with pytest.raises(ValueError):
        initiator.start(key, "secret", [MAC_A])


def test_start_rejects_empty_address_list():
    transport, initiator = make([])
    with pytest.raises(ValueError):
        initiator.start(APP_KEY, "secret", [])


def test_start_rejects_missing_pop():
    transport, initiator = make([])
    with pytest.raises(ValueError):
        initiator.start(APP_KEY, None, [MAC_A])


def test_initiator_rejects_bad_own_mac():
    with pytest.raises(ValueError):
        Initiator(FakeTransport([]), b"\x01\x02")