"""Per-peer connection handle wrapping an asyncio stream pair."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from taskipc.ipc.messages import encode_message

if TYPE_CHECKING:
    from taskipc.ipc.messages import IpcMessage


class ClientConnection:
    """Handle used by the server to read from and write to one peer.

    Identity is the handle itself: the registry matches connections with
    ``is``, never by peer address.
    """

    __slots__ = ("_reader", "_writer", "peer")

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer
        self.peer = writer.get_extra_info("peername") or "unknown"

    def write_message(self, message: IpcMessage) -> None:
        """Queue *message* on the transport buffer without waiting for a flush."""
        if self._writer.is_closing():
            msg = f"Connection to {self.peer} is closing"
            raise ConnectionResetError(msg)
        self._writer.write(encode_message(message))

    async def read_line(self) -> bytes:
        return await self._reader.readline()

    def is_closing(self) -> bool:
        return self._writer.is_closing()

    def close(self) -> None:
        self._writer.close()

    async def wait_closed(self) -> None:
        try:
            await self._writer.wait_closed()
        except (ConnectionError, OSError):
            pass

    def __repr__(self) -> str:
        return f"ClientConnection(peer={self.peer!r})"


__all__ = ["ClientConnection"]
