"""
Transfer Wire Protocol

Design Decision: Message Format
===============================

Options Considered:
1. JSON over UDP (what the DHT layer of a P2P node would use)
   - Flexible, but every message pays for keys and quoting
2. Length-prefixed binary header + raw payload
   - Compact, but needs framing code on both sides
3. Whitespace-delimited ASCII lines, base64 payload
   - Trivial to parse and to debug with netcat/tcpdump
   - One datagram is one message, so no framing at all

Decision: ASCII lines, base64 payload
- Datagram boundary = message boundary
- Binary data is text-safe after base64 and sits at the end of the line
- Interoperates with other implementations of the same protocol

Messages:
```
Control channel (well-known port)
  DOWNLOAD <filename>
  OK <filename> SIZE <bytes> PORT <port>
  ERR <filename> NOT_FOUND | NO_PORT_AVAILABLE

Data channel (one port per transfer)
  FILE <filename> GET START <start> END <end>
  FILE <filename> OK START <start> END <end> DATA <base64>
  FILE <filename> CLOSE
  FILE <filename> CLOSE_OK
```

Every parser either returns one of the message dataclasses below or raises
MalformedMessage. Receivers drop malformed datagrams without answering.
"""

import base64
import binascii
from enum import Enum
from dataclasses import dataclass
from typing import Union

# Protocol constants shared by every implementation in a deployment
BLOCK_SIZE = 1000            # bytes requested per GET
MAX_RETRIES = 5              # retransmissions after the first send
BASE_TIMEOUT = 0.5           # seconds, doubled on every retry
PORT_RANGE = (50000, 51000)  # data-channel ports, end exclusive
PORT_PROBE_ATTEMPTS = 10


class MalformedMessage(ValueError):
    """A datagram that is not a message this side understands."""


class MessageType(Enum):
    """Wire message kinds."""
    # Control channel
    DOWNLOAD = "DOWNLOAD"
    OK = "OK"
    ERR = "ERR"

    # Data channel
    FILE = "FILE"
    GET = "GET"
    CLOSE = "CLOSE"
    CLOSE_OK = "CLOSE_OK"


class ErrorReason(Enum):
    """Why the server refused a DOWNLOAD."""
    NOT_FOUND = "NOT_FOUND"
    NO_PORT_AVAILABLE = "NO_PORT_AVAILABLE"


def is_valid_filename(filename: str) -> bool:
    """Filenames travel as a single token, so they can't be empty or contain whitespace."""
    return (bool(filename) and ' ' not in filename
            and filename.isascii() and filename.isprintable())


def _decode(data: bytes) -> list:
    try:
        text = data.decode('ascii')
    except UnicodeDecodeError:
        raise MalformedMessage("message is not ASCII")
    parts = text.split()
    if not parts:
        raise MalformedMessage("empty message")
    return parts


def _to_int(token: str) -> int:
    if not token.isdigit():
        raise MalformedMessage(f"expected unsigned integer, got {token!r}")
    return int(token)


def encode_payload(data: bytes) -> str:
    """Encode a block of file data for the DATA field."""
    return base64.b64encode(data).decode('ascii')


def decode_payload(text: str) -> bytes:
    """Decode a DATA field, raising MalformedMessage on bad base64."""
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedMessage(f"bad payload encoding: {e}")


# === Control channel ===

@dataclass(frozen=True)
class DownloadRequest:
    filename: str

    def to_bytes(self) -> bytes:
        return f"DOWNLOAD {self.filename}".encode('ascii')


@dataclass(frozen=True)
class ControlOk:
    filename: str
    size: int
    port: int

    def to_bytes(self) -> bytes:
        return f"OK {self.filename} SIZE {self.size} PORT {self.port}".encode('ascii')


@dataclass(frozen=True)
class ControlErr:
    filename: str
    reason: ErrorReason

    def to_bytes(self) -> bytes:
        return f"ERR {self.filename} {self.reason.value}".encode('ascii')


ControlResponse = Union[ControlOk, ControlErr]


def parse_control_request(data: bytes) -> DownloadRequest:
    """Parse a datagram received on the control channel."""
    parts = _decode(data)
    if parts[0] != MessageType.DOWNLOAD.value or len(parts) != 2:
        raise MalformedMessage(f"not a DOWNLOAD request: {parts[0]!r}")
    return DownloadRequest(filename=parts[1])


def parse_control_response(data: bytes) -> ControlResponse:
    """Parse the server's answer to a DOWNLOAD request."""
    parts = _decode(data)
    kind = parts[0]

    if kind == MessageType.OK.value:
        if len(parts) != 6 or parts[2] != 'SIZE' or parts[4] != 'PORT':
            raise MalformedMessage("bad OK response")
        port = _to_int(parts[5])
        if not 0 < port < 65536:
            raise MalformedMessage(f"port out of range: {port}")
        return ControlOk(filename=parts[1], size=_to_int(parts[3]), port=port)

    if kind == MessageType.ERR.value:
        if len(parts) != 3:
            raise MalformedMessage("bad ERR response")
        try:
            reason = ErrorReason(parts[2])
        except ValueError:
            raise MalformedMessage(f"unknown error reason: {parts[2]!r}")
        return ControlErr(filename=parts[1], reason=reason)

    raise MalformedMessage(f"not a control response: {kind!r}")


# === Data channel ===

@dataclass(frozen=True)
class ChunkGet:
    filename: str
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def to_bytes(self) -> bytes:
        return f"FILE {self.filename} GET START {self.start} END {self.end}".encode('ascii')


@dataclass(frozen=True)
class ChunkClose:
    filename: str

    def to_bytes(self) -> bytes:
        return f"FILE {self.filename} CLOSE".encode('ascii')


@dataclass(frozen=True)
class ChunkData:
    """
    A block of file data.

    The declared range always matches the data carried: a short read at
    end-of-file shrinks `end`, it is never padded.
    """
    filename: str
    start: int
    end: int
    data: bytes

    def __post_init__(self):
        if not self.data:
            raise ValueError("a chunk response must carry data")
        if self.end - self.start + 1 != len(self.data):
            raise ValueError(
                f"range {self.start}-{self.end} does not match {len(self.data)} bytes"
            )

    @classmethod
    def for_block(cls, filename: str, start: int, data: bytes) -> 'ChunkData':
        """Build the response for `data` read at offset `start`."""
        return cls(filename=filename, start=start, end=start + len(data) - 1, data=data)

    def to_bytes(self) -> bytes:
        return (
            f"FILE {self.filename} OK START {self.start} END {self.end} "
            f"DATA {encode_payload(self.data)}"
        ).encode('ascii')


@dataclass(frozen=True)
class ChunkCloseOk:
    filename: str

    def to_bytes(self) -> bytes:
        return f"FILE {self.filename} CLOSE_OK".encode('ascii')


ChunkRequest = Union[ChunkGet, ChunkClose]
ChunkResponse = Union[ChunkData, ChunkCloseOk]


def _file_parts(data: bytes) -> list:
    parts = _decode(data)
    if parts[0] != MessageType.FILE.value or len(parts) < 3:
        raise MalformedMessage("not a FILE message")
    return parts


def parse_chunk_request(data: bytes) -> ChunkRequest:
    """Parse a datagram received on a data channel."""
    parts = _file_parts(data)
    filename, op = parts[1], parts[2]

    if op == MessageType.CLOSE.value and len(parts) == 3:
        return ChunkClose(filename=filename)

    if op == MessageType.GET.value:
        if len(parts) != 7 or parts[3] != 'START' or parts[5] != 'END':
            raise MalformedMessage("bad GET request")
        start, end = _to_int(parts[4]), _to_int(parts[6])
        if start > end:
            raise MalformedMessage(f"empty range {start}-{end}")
        return ChunkGet(filename=filename, start=start, end=end)

    raise MalformedMessage(f"unknown FILE operation: {op!r}")


def parse_chunk_response(data: bytes) -> ChunkResponse:
    """Parse the session's answer to a GET or CLOSE."""
    parts = _file_parts(data)
    filename, op = parts[1], parts[2]

    if op == MessageType.CLOSE_OK.value and len(parts) == 3:
        return ChunkCloseOk(filename=filename)

    if op == MessageType.OK.value:
        if (len(parts) != 9 or parts[3] != 'START'
                or parts[5] != 'END' or parts[7] != 'DATA'):
            raise MalformedMessage("bad chunk OK response")
        try:
            return ChunkData(
                filename=filename,
                start=_to_int(parts[4]),
                end=_to_int(parts[6]),
                data=decode_payload(parts[8]),
            )
        except MalformedMessage:
            raise
        except ValueError as e:
            raise MalformedMessage(str(e))

    raise MalformedMessage(f"unknown FILE response: {op!r}")
