"""Wire protocol between the scan supervisor and its worker.

Every message is the UTF-8 text ``type:payload`` preceded by its byte
length as a 4-byte big-endian unsigned integer. The payload is split off
at the first colon only, so it may itself contain colons, commas or
newlines.

Master to worker:
    scan:<comma separated format names>
    quit:

Worker to master:
    state:ready | state:scanning | state:finished
    name:<identifier about to be probed>
    progress:<decimal fraction>
"""

import math
import struct
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO

from plugscan.core.errors import ConnectionLostError, ProtocolError

HEADER = struct.Struct(">I")
MAX_MESSAGE_SIZE = 1024 * 1024
_DISCARD_CHUNK = 64 * 1024


class MessageType(str, Enum):
    """Message types understood by either side."""

    SCAN = "scan"
    QUIT = "quit"
    STATE = "state"
    NAME = "name"
    PROGRESS = "progress"


class WorkerState(str, Enum):
    """Payloads of ``state`` messages."""

    READY = "ready"
    SCANNING = "scanning"
    FINISHED = "finished"


@dataclass(frozen=True)
class Message:
    """A typed envelope carried in one frame."""

    type: str
    payload: str = ""

    @classmethod
    def scan(cls, formats: list[str]) -> "Message":
        return cls(MessageType.SCAN.value, ",".join(formats))

    @classmethod
    def quit(cls) -> "Message":
        return cls(MessageType.QUIT.value)

    @classmethod
    def state(cls, state: WorkerState) -> "Message":
        return cls(MessageType.STATE.value, state.value)

    @classmethod
    def name(cls, identifier: str) -> "Message":
        return cls(MessageType.NAME.value, identifier)

    @classmethod
    def progress(cls, fraction: float) -> "Message":
        return cls(MessageType.PROGRESS.value, repr(round(float(fraction), 6)))

    def formats(self) -> list[str]:
        """Format names carried by a ``scan`` message."""
        return [name.strip() for name in self.payload.split(",") if name.strip()]

    def fraction(self) -> float:
        """Fraction carried by a ``progress`` message.

        Raises:
            ProtocolError: If the payload is not a finite number
        """
        try:
            value = float(self.payload.strip())
        except ValueError:
            raise ProtocolError(f"Invalid progress payload: {self.payload!r}")
        if not math.isfinite(value):
            raise ProtocolError(f"Invalid progress payload: {self.payload!r}")
        return value

    def body(self) -> bytes:
        return f"{self.type}:{self.payload}".encode("utf-8")

    def encode(self) -> bytes:
        """Frame the message for the wire."""
        body = self.body()
        if len(body) > MAX_MESSAGE_SIZE:
            raise ProtocolError(f"Message of {len(body)} bytes exceeds {MAX_MESSAGE_SIZE}")
        return HEADER.pack(len(body)) + body

    @classmethod
    def decode(cls, body: bytes) -> "Message":
        """Parse a frame body (without the length prefix).

        A body without a colon is a message with an empty payload.

        Raises:
            ProtocolError: If the body is not UTF-8 or has no type
        """
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError:
            raise ProtocolError("Message is not valid UTF-8", raw=body)

        message_type, _, payload = text.partition(":")
        if not message_type:
            raise ProtocolError("Message has no type", raw=body)
        return cls(message_type, payload)

    def __str__(self) -> str:
        return f"{self.type}:{self.payload}"


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining:
        try:
            chunk = stream.read(remaining)
        except (OSError, ValueError) as e:
            raise ConnectionLostError(f"Read failed: {e}")
        if not chunk:
            raise ConnectionLostError()
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def read_message(stream: BinaryIO) -> Message:
    """Read one framed message.

    Oversized frames are drained so the stream stays in sync.

    Raises:
        ConnectionLostError: On end of stream, including mid-frame
        ProtocolError: If the frame is oversized or malformed
    """
    (size,) = HEADER.unpack(_read_exact(stream, HEADER.size))

    if size > MAX_MESSAGE_SIZE:
        remaining = size
        while remaining:
            remaining -= len(_read_exact(stream, min(remaining, _DISCARD_CHUNK)))
        raise ProtocolError(f"Dropped oversized message of {size} bytes")

    return Message.decode(_read_exact(stream, size))


def write_message(stream: BinaryIO, message: Message) -> None:
    """Write one framed message and flush.

    Raises:
        ConnectionLostError: If the peer has gone away
    """
    data = message.encode()
    try:
        stream.write(data)
        stream.flush()
    except (OSError, ValueError) as e:
        raise ConnectionLostError(f"Write failed: {e}")
