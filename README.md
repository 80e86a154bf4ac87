# nowsec

Security for small peer-to-peer wireless networks, with some device
bookkeeping helpers.

## What is in it

- `nowsec.security`: `Security` encrypts and decrypts frames with AES-CCM.
  You give `set_key` a 32-byte application key. The first 16 bytes become the
  AES-128 key and the next 8 bytes become the nonce.
- `nowsec.sessionproto`: `SessionData` and `Sec1MsgType` encode and decode the
  messages that set up a scheme 1 session.
- `nowsec.client_security1`: `ClientSecurity1` is the client side of the
  scheme 1 session setup. It performs an X25519 key exchange. The shared key
  can be mixed with the SHA-256 of a proof of possession. Once the session is
  set up, data is encrypted with AES-256-CTR.
- `nowsec.handshake` defines the packets of the key hand-out:
  - `SecInfo`
  - `SecPacket`
  - `SecResponder`
  - `SecResult`
  - `SecType`
  - `SecVersion`
- `nowsec.initiator`: `Initiator` finds responders and hands them an
  application key.
- `nowsec.responder`: `Responder` answers scans and receives the key.
- `nowsec.storage`: `Storage` is a persistent store of binary blobs, kept in an
  SQLite file. Blobs are stored by namespace and key.
- `nowsec.reboot`:
  - `RebootTracker` counts all restarts, and also runs of restarts that follow
    each other quickly. It keeps these counts in a `Storage`.
  - `is_exception` checks a coredump file for a dump.
- `nowsec.timesync`: `timesync_check` tells whether the clock is later than
  2020-01-01. `timesync_wait` polls the clock until that is true.
- `nowsec.mac`: `mac_str2hex` and `mac_hex2str` convert MAC addresses between
  text and bytes.
- `nowsec.mem`: `MemoryTracker` holds a fixed number of slots. Each slot records
  an allocation that has not been released.

## Install

```
pip install nowsec
```

## Encrypting a frame

```python
from nowsec.security import Security

sec = Security()
sec.set_key(bytes(range(32)))  # made-up key material
sealed = sec.encrypt(b"hello", tag_len=4)
assert sec.decrypt(sealed, tag_len=4) == b"hello"
```

Errors from `encrypt` and `decrypt`:

- `SecurityError` is raised when no key has been set.
- `SecurityError` is also raised when `decrypt` finds that the tag does not
  verify.
- `ValueError` is raised for empty data, a tag length that is not positive or
  not supported, or sealed data that is no longer than the tag.

Call `clear` to drop the key.

## MAC addresses

```python
from nowsec.mac import mac_str2hex, mac_hex2str

raw = mac_str2hex("02:00:00:00:00:01")
assert mac_hex2str(raw) == "02:00:00:00:00:01"
```

`mac_str2hex` raises `ValueError` when the text does not hold six hex fields.

## Persistent storage

```python
from nowsec.storage import Storage, KeyNotFoundError

store = Storage("state.db", "espnow")
store.set("counter", b"\x01\x00")
store.get("counter", 0)     # 0 accepts a stored value of any size
store.erase("counter")      # erase(None) clears the whole namespace
```

Errors:

- Reading a missing key raises `KeyNotFoundError`.
- Other failures raise `StorageError`. These include keys that are empty or
  longer than 15 characters, empty values, and stored values longer than the
  requested length.

## Counting restarts

Call `RebootTracker(storage, reason, fallback_count).start()` once per boot.

- `start` loads the stored counters, counts this boot and stores them again.
- A restart for `ResetReason.DEEPSLEEP_RESET` or
  `ResetReason.RTCWDT_BROWN_OUT_RESET` starts a new run of quick restarts.
- `should_fall_back` tells whether the current run has reached
  `fallback_count`.
- Call `clear_unbroken` once the device has been up long enough.

## Running a key hand-out

Both sides need a transport object that sends frames for them:

- `Initiator` needs `send(data_type, dest, data, frame)` and
  `set_group(addrs, group, add)`.
- `Responder` needs `send`.

Both methods raise `OSError` on failure. Frames that arrive must be passed in:

- On the initiator, pass them to `Initiator.on_status` (replies to a scan) and
  `Initiator.on_security` (handshake replies).
- On the responder, pass them to `Responder.process`.

On the initiator:

1. `Initiator.scan()` broadcasts requests for security information and returns
   the `SecResponder`s that replied. Devices that report they were already
   configured by this initiator's own MAC are left out.
2. `Initiator.start(app_key, pop, addrs)` sets up a session with the devices and
   sends each of them the key, encrypted. It handles up to 100 devices per
   round and retries the rest in later rounds.
3. It returns a `SecResult`. Its `succeeded_addrs` and `unfinished_addrs` say
   who got the key.

`Initiator.stop()` ends a running `start` early.

On the responder, `Responder(transport, protocomm, on_key, on_event)` does the
following:

- It registers the `espnow-ver` and `espnow-config` endpoints on the protocomm
  object.
- It takes the key from the first initiator that sets up a session.
- It calls `on_key` with the key.
- It reports `EVENT_SEC_OK` or `EVENT_SEC_FAIL` to `on_event`.

## What it does not do

- It has no radio or network transport. The caller supplies the `send` and
  `set_group` objects.
- It has no server end of the scheme 1 session setup. `Responder` needs a
  protocomm object from the caller, with these methods:
  - `set_version`
  - `add_endpoint`
  - `open_session`
  - `close_session`
  - `req_handle`

  That object must handle the `espnow-session` endpoint itself.
- There is no command-line program.