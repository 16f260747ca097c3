"""IPC envelope, client registry, transports, server, and client."""

from __future__ import annotations

from taskipc.ipc.client import IPCClient
from taskipc.ipc.errors import (
    ClientNotConnectedError,
    IPCError,
    ServerAlreadyListeningError,
    ServerBindError,
)
from taskipc.ipc.events import (
    ClientConnected,
    ClientDisconnected,
    EventEmitter,
    TaskCommandReceived,
)
from taskipc.ipc.messages import (
    AckMessage,
    IpcMessage,
    IpcMessageType,
    IpcOrigin,
    TaskCommandMessage,
    TaskEventMessage,
)
from taskipc.ipc.server import IPCServer

__all__ = [
    "AckMessage",
    "ClientConnected",
    "ClientDisconnected",
    "ClientNotConnectedError",
    "EventEmitter",
    "IPCClient",
    "IPCError",
    "IPCServer",
    "IpcMessage",
    "IpcMessageType",
    "IpcOrigin",
    "ServerAlreadyListeningError",
    "ServerBindError",
    "TaskCommandMessage",
    "TaskEventMessage",
    "TaskCommandReceived",
]
