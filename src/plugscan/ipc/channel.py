"""Bidirectional message channel over a pair of byte streams."""

import threading
from collections.abc import Callable
from typing import BinaryIO

from plugscan.core import logging as log
from plugscan.core.errors import ConnectionLostError, ProtocolError
from plugscan.ipc.protocol import Message, read_message, write_message


class MessageChannel:
    """Framed message channel between two processes.

    Sending is thread-safe. Receiving happens either by calling
    ``receive`` or on a reader thread started with ``start_reader``,
    which owns (and finally closes) the input stream.
    """

    def __init__(self, reader: BinaryIO, writer: BinaryIO, name: str = "peer") -> None:
        """Initialize the channel.

        Args:
            reader: Stream the peer writes to
            writer: Stream the peer reads from
            name: Peer name for log messages
        """
        self._reader = reader
        self._writer = writer
        self.name = name
        self._send_lock = threading.Lock()
        self._closed = threading.Event()
        self._reader_thread: threading.Thread | None = None

    @property
    def is_connected(self) -> bool:
        return not self._closed.is_set()

    def send(self, message: Message) -> bool:
        """Send a message.

        Returns:
            False if the channel is closed or the peer went away
        """
        with self._send_lock:
            if self._closed.is_set():
                return False
            try:
                write_message(self._writer, message)
            except ConnectionLostError as e:
                log.debug(f"Send to {self.name} failed: {e}", type=message.type)
                self._closed.set()
                return False
        return True

    def receive(self) -> Message:
        """Block until the next message arrives.

        Raises:
            ConnectionLostError: If the peer closed the stream
            ProtocolError: If a malformed frame arrived
        """
        return read_message(self._reader)

    def start_reader(
        self,
        on_message: Callable[[Message], None],
        on_connection_lost: Callable[[], None],
    ) -> threading.Thread:
        """Deliver incoming messages on a background thread.

        Malformed messages are logged and skipped. ``on_connection_lost``
        is called exactly once when the stream ends.
        """
        thread = threading.Thread(
            target=self._read_loop,
            args=(on_message, on_connection_lost),
            name=f"plugscan-reader-{self.name}",
            daemon=True,
        )
        self._reader_thread = thread
        thread.start()
        return thread

    def _read_loop(
        self,
        on_message: Callable[[Message], None],
        on_connection_lost: Callable[[], None],
    ) -> None:
        try:
            while True:
                try:
                    message = self.receive()
                except ProtocolError as e:
                    log.warning(f"Ignoring malformed message from {self.name}: {e}")
                    continue
                except ConnectionLostError:
                    break
                on_message(message)
        finally:
            self._closed.set()
            self._close_stream(self._reader)
            on_connection_lost()

    def close(self) -> None:
        """Close the outgoing stream, which the peer sees as end of input."""
        with self._send_lock:
            self._closed.set()
            self._close_stream(self._writer)
        if self._reader_thread is None:
            self._close_stream(self._reader)

    @staticmethod
    def _close_stream(stream: BinaryIO) -> None:
        try:
            stream.close()
        except (OSError, ValueError):
            pass
