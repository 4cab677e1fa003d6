"""Framed messaging between the scan supervisor and worker processes."""

from plugscan.ipc.channel import MessageChannel
from plugscan.ipc.protocol import (
    MAX_MESSAGE_SIZE,
    Message,
    MessageType,
    WorkerState,
    read_message,
    write_message,
)

__all__ = [
    "MAX_MESSAGE_SIZE",
    "Message",
    "MessageChannel",
    "MessageType",
    "WorkerState",
    "read_message",
    "write_message",
]
