import pytest

from nowsec.sessionproto import (
    SECURITY_VERSION,
    ProtoError,
    Sec1MsgType,
    SessionData,
)

PUBKEY = b"\x01" * 32


def test_command0_wire_bytes():
    message = SessionData(
        sec_ver=SECURITY_VERSION,
        msg=Sec1MsgType.SESSION_COMMAND0,
        client_pubkey=PUBKEY,
    )
    assert message.pack() == b"\x10\x01\x5a\x25\xa2\x01\x22\x0a\x20" + PUBKEY


def test_empty_message_packs_to_nothing():
    assert SessionData().pack() == b""
    assert SessionData.unpack(b"") == SessionData()


@pytest.mark.parametrize(
    "message",
    [
        SessionData(sec_ver=1, msg=Sec1MsgType.SESSION_COMMAND0, client_pubkey=PUBKEY),
        SessionData(
            sec_ver=1,
            msg=Sec1MsgType.SESSION_RESPONSE0,
            status=2,
            device_pubkey=b"\x02" * 32,
            device_random=b"\x03" * 16,
        ),
        SessionData(
            sec_ver=1,
            msg=Sec1MsgType.SESSION_COMMAND1,
            client_verify_data=b"\x04" * 32,
        ),
        SessionData(
            sec_ver=1,
            msg=Sec1MsgType.SESSION_RESPONSE1,
            device_verify_data=b"\x05" * 32,
        ),
        SessionData(sec_ver=1, msg=Sec1MsgType.SESSION_RESPONSE1),
    ],
)
def test_round_trip(message):
    assert SessionData.unpack(message.pack()) == message


def test_only_fields_of_message_type_are_encoded():
    message = SessionData(
        sec_ver=1,
        msg=Sec1MsgType.SESSION_COMMAND1,
        client_pubkey=PUBKEY,
        client_verify_data=b"\x04" * 32,
    )
    decoded = SessionData.unpack(message.pack())
    assert decoded.client_pubkey == b""
    assert decoded.client_verify_data == b"\x04" * 32


def test_message_without_payload_has_no_msg():
    decoded = SessionData.unpack(SessionData(sec_ver=1).pack())
    assert decoded.msg is None
    assert decoded.sec_ver == 1


def test_unknown_fields_are_skipped():
    message = SessionData(sec_ver=1, msg=Sec1MsgType.SESSION_COMMAND0, client_pubkey=PUBKEY)
    extra = b"\x08\x07" + b"\x1a\x02ab" + b"\x25\x00\x00\x00\x00"
    assert SessionData.unpack(message.pack() + extra) == message


def test_truncated_input_raises():
    packed = SessionData(
        sec_ver=1, msg=Sec1MsgType.SESSION_COMMAND0, client_pubkey=PUBKEY
    ).pack()
    with pytest.raises(ProtoError):
        SessionData.unpack(packed[:-5])


def test_truncated_varint_raises():
    with pytest.raises(ProtoError):
        SessionData.unpack(b"\x10\x80")


def test_unsupported_wire_type_raises():
    with pytest.raises(ProtoError):
        SessionData.unpack(b"\x13")


def test_wrong_wire_type_for_known_field_raises():
    with pytest.raises(ProtoError):
        SessionData.unpack(b"\x12\x00")


def test_unknown_message_type_raises():
    packed = SessionData(sec_ver=1, msg=Sec1MsgType.SESSION_COMMAND0).pack()
    bad = packed.replace(b"\x5a", b"\x5a", 1)
    # Build a payload whose msg field holds a value no step uses.
    payload = b"\x08\x09"
    bad = b"\x10\x01\x5a" + bytes([len(payload)]) + payload
    assert packed.startswith(b"\x10\x01\x5a")
    with pytest.raises(ProtoError):
        SessionData.unpack(bad)