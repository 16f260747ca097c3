"""Exceptions raised by the IPC server and client."""

from __future__ import annotations


class IPCError(Exception):
    """Base class for taskipc IPC failures."""


class ServerAlreadyListeningError(IPCError, RuntimeError):
    """Raised when ``listen()`` is called on a server that is already listening."""

    def __init__(self, address: str) -> None:
        super().__init__(f"Server is already listening on {address}")
        self.address = address


class ServerBindError(IPCError, OSError):
    """Raised when the server cannot bind its endpoint."""

    def __init__(self, address: str, reason: str) -> None:
        super().__init__(f"Failed to bind IPC endpoint {address}: {reason}")
        self.address = address
        self.reason = reason


class ClientNotConnectedError(IPCError, ConnectionError):
    """Raised when a client operation needs an open connection."""


__all__ = [
    "ClientNotConnectedError",
    "IPCError",
    "ServerAlreadyListeningError",
    "ServerBindError",
]
