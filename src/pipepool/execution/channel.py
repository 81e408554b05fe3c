"""Duplex channel — two OS pipes forming one manager ↔ worker link.

Wire format:
    Every message is a single 4-byte signed little-endian integer.
    Manager → worker carries the requested duration, worker → manager echoes
    it back on completion. The value 0 is reserved for the stop sentinel.

ARCHITECTURE
────────────
::

    manager                                   worker
    ───────                                   ──────
    DuplexChannel.send() ──► request pipe ──► stdin  (read_exactly)
    DuplexChannel.receive() ◄── response pipe ◄── stdout (write_exactly)
          ▲
          └── available() — FIONREAD, never blocks

    open_channel() returns the manager ends (non-inheritable) wrapped in a
    DuplexChannel, and the worker ends (inheritable) as WorkerEnds. The
    manager closes WorkerEnds right after spawning the child.

The manager only calls :meth:`DuplexChannel.receive` once
:meth:`DuplexChannel.has_record` says a full record is buffered, so reading
never stalls behind a slow worker.

Requires a POSIX platform (``fcntl`` / ``termios``).
"""

from __future__ import annotations

import fcntl
import os
import struct
import termios
from dataclasses import dataclass
from types import TracebackType

from pipepool.core.errors import ProtocolViolation, StartupFailure, TransportFailure
from pipepool.execution.models import Message, MessageKind

RECORD = struct.Struct("<i")
RECORD_SIZE = RECORD.size

SENTINEL = 0


# ── Codec ────────────────────────────────────────────────────────────────


def encode_message(message: Message) -> bytes:
    """Encode a message as one wire record."""
    if message.is_stop:
        return RECORD.pack(SENTINEL)
    if message.duration <= 0:
        raise ProtocolViolation(f"RUN message needs a positive duration, got {message.duration}")
    return RECORD.pack(message.duration)


def decode_message(data: bytes) -> Message:
    """Decode one wire record."""
    if len(data) != RECORD_SIZE:
        raise ProtocolViolation(f"Expected {RECORD_SIZE}-byte record, got {len(data)} bytes")
    (value,) = RECORD.unpack(data)
    if value == SENTINEL:
        return Message.stop()
    if value < 0:
        raise ProtocolViolation(f"Negative duration on the wire: {value}")
    return Message(MessageKind.RUN, value)


# ── Raw fd helpers ───────────────────────────────────────────────────────


def read_exactly(fd: int, size: int) -> bytes:
    """Block until ``size`` bytes were read from ``fd``.

    Raises:
        TransportFailure: EOF before the first byte, or the read failed.
        ProtocolViolation: EOF after a partial record.
    """
    chunks: list[bytes] = []
    remaining = size
    while remaining:
        try:
            chunk = os.read(fd, remaining)
        except OSError as exc:
            raise TransportFailure(f"Read failed on fd {fd}", cause=exc) from exc
        if not chunk:
            received = size - remaining
            if received:
                raise ProtocolViolation(f"Partial record: {received} of {size} bytes before EOF")
            raise TransportFailure(f"EOF on fd {fd}")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def write_exactly(fd: int, data: bytes) -> None:
    """Block until all of ``data`` was written to ``fd``."""
    view = memoryview(data)
    while view:
        try:
            written = os.write(fd, view)
        except OSError as exc:
            raise TransportFailure(f"Write failed on fd {fd}", cause=exc) from exc
        if written <= 0:
            raise TransportFailure(f"Short write on fd {fd}")
        view = view[written:]


def bytes_available(fd: int) -> int:
    """Number of bytes readable from ``fd`` without blocking."""
    try:
        raw = fcntl.ioctl(fd, termios.FIONREAD, b"\0" * 4)
    except OSError as exc:
        raise TransportFailure(f"FIONREAD failed on fd {fd}", cause=exc) from exc
    return struct.unpack("i", raw)[0]


# ── Channel ──────────────────────────────────────────────────────────────


@dataclass
class WorkerEnds:
    """The pipe ends handed to the worker process."""

    request_fd: int
    response_fd: int
    closed: bool = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for fd in (self.request_fd, self.response_fd):
            try:
                os.close(fd)
            except OSError:
                pass


class DuplexChannel:
    """Manager side of a worker link.

    Owns the write end of the request pipe and the read end of the response
    pipe. Closing is idempotent.
    """

    def __init__(self, request_fd: int, response_fd: int) -> None:
        self._request_fd = request_fd
        self._response_fd = response_fd
        self._closed = False
        # Set once the response stream hit EOF (the worker process is gone).
        self.peer_closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def fileno(self) -> int:
        """Response stream descriptor, for readiness multiplexing."""
        return self._response_fd

    def send(self, message: Message) -> None:
        if self._closed:
            raise TransportFailure("Channel is closed")
        write_exactly(self._request_fd, encode_message(message))

    def available(self) -> int:
        if self._closed:
            return 0
        return bytes_available(self._response_fd)

    def has_record(self) -> bool:
        return self.available() >= RECORD_SIZE

    def receive(self) -> Message:
        if self._closed:
            raise TransportFailure("Channel is closed")
        return decode_message(read_exactly(self._response_fd, RECORD_SIZE))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for fd in (self._request_fd, self._response_fd):
            try:
                os.close(fd)
            except OSError:
                pass

    def __enter__(self) -> DuplexChannel:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"DuplexChannel(request_fd={self._request_fd}, response_fd={self._response_fd}, {state})"


def open_channel() -> tuple[DuplexChannel, WorkerEnds]:
    """Create the two pipes of one link.

    Raises:
        StartupFailure: A pipe could not be created.
    """
    try:
        request_read, request_write = os.pipe()
    except OSError as exc:
        raise StartupFailure("Could not create request pipe", cause=exc) from exc
    try:
        response_read, response_write = os.pipe()
    except OSError as exc:
        os.close(request_read)
        os.close(request_write)
        raise StartupFailure("Could not create response pipe", cause=exc) from exc

    os.set_inheritable(request_write, False)
    os.set_inheritable(response_read, False)
    os.set_inheritable(request_read, True)
    os.set_inheritable(response_write, True)

    channel = DuplexChannel(request_fd=request_write, response_fd=response_read)
    ends = WorkerEnds(request_fd=request_read, response_fd=response_write)
    return channel, ends


__all__ = [
    "RECORD",
    "RECORD_SIZE",
    "SENTINEL",
    "encode_message",
    "decode_message",
    "read_exactly",
    "write_exactly",
    "bytes_available",
    "WorkerEnds",
    "DuplexChannel",
    "open_channel",
]
