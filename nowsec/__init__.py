"""AES-CCM frame security, an X25519 key hand-out between initiator and responders, and device bookkeeping helpers."""

__version__ = "0.1.0"

__all__ = [
    "client_security1",
    "handshake",
    "initiator",
    "mac",
    "mem",
    "reboot",
    "responder",
    "security",
    "sessionproto",
    "storage",
    "timesync",
]