"""IPC client that connects to a running taskipc server and exchanges envelopes."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from taskipc.ipc.constants import MAX_LINE_BYTES
from taskipc.ipc.errors import ClientNotConnectedError
from taskipc.ipc.messages import (
    AckMessage,
    TaskCommandMessage,
    coerce_message,
    decode_line,
    encode_message,
)
from taskipc.ipc.transports import TCPLoopbackTransport, UnixSocketTransport
from taskipc.paths import get_default_socket_path

if TYPE_CHECKING:
    from collections.abc import Mapping

    from taskipc.ipc.messages import IpcMessage
    from taskipc.ipc.transports import Transport

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30.0


class IPCClient:
    """Async IPC client for talking to an :class:`~taskipc.ipc.server.IPCServer`.

    ``connect()`` waits for the server's ``ack`` and records the assigned
    client id; afterwards the client can send task commands and read
    whatever the server pushes.

    Usage::

        async with IPCClient("/tmp/app.sock") as client:
            await client.send_task_command({"cmd": "run", "id": 7})
            message = await client.receive(timeout=5)
    """

    def __init__(
        self,
        address: str | None = None,
        *,
        port: int | None = None,
        transport: Transport | None = None,
        timeout: float = _DEFAULT_TIMEOUT,
        max_line_bytes: int = MAX_LINE_BYTES,
    ) -> None:
        self._address = address or str(get_default_socket_path())
        self._port = port
        self._transport = transport or self._transport_for(self._address, port)
        self._timeout = timeout
        self._max_line_bytes = max_line_bytes
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._ack: AckMessage | None = None

    async def __aenter__(self) -> IPCClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    @property
    def is_connected(self) -> bool:
        """Whether the client currently holds an open connection."""
        return self._writer is not None and not self._writer.is_closing()

    @property
    def client_id(self) -> str | None:
        """Id assigned by the server, available after ``connect()``."""
        return self._ack.data.client_id if self._ack is not None else None

    @property
    def server_pid(self) -> int | None:
        return self._ack.data.pid if self._ack is not None else None

    @property
    def server_ppid(self) -> int | None:
        return self._ack.data.ppid if self._ack is not None else None

    async def connect(self) -> str:
        """Open a connection and wait for the server's acknowledgement.

        Returns:
            The client id assigned by the server.

        Raises:
            ConnectionError: If the server closes the connection or sends
                something other than an ``ack`` first.
            TimeoutError: If no acknowledgement arrives in time.
        """
        if self.is_connected and self._ack is not None:
            return self._ack.data.client_id

        self._reader, self._writer = await self._transport.connect(
            self._address,
            self._port,
            limit=self._max_line_bytes + 1,
        )
        try:
            first = await self.receive(timeout=self._timeout)
        except TimeoutError:
            await self.close()
            raise

        if not isinstance(first, AckMessage):
            await self.close()
            msg = f"Expected ack from server, got {first.type!r}"
            raise ConnectionError(msg)

        self._ack = first
        logger.debug(
            "IPC client connected: address=%s client_id=%s server_pid=%d",
            self._address,
            first.data.client_id,
            first.data.pid,
        )
        return first.data.client_id

    async def close(self) -> None:
        """Close the connection to the server."""
        if self._writer is not None:
            try:
                self._writer.close()
                await self._writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            self._writer = None
            self._reader = None
            self._ack = None
            logger.debug("IPC client disconnected")

    async def send(self, message: IpcMessage | Mapping[str, Any]) -> None:
        """Write one envelope to the server.

        Raises:
            ClientNotConnectedError: If the client is not connected.
            pydantic.ValidationError: If a mapping is not a valid envelope.
        """
        if not self.is_connected or self._writer is None:
            msg = "Client is not connected; call connect() first"
            raise ClientNotConnectedError(msg)

        self._writer.write(encode_message(coerce_message(message)))
        await self._writer.drain()

    async def send_raw(self, payload: bytes) -> None:
        """Write pre-framed bytes as-is; used to exercise server-side validation."""
        if not self.is_connected or self._writer is None:
            msg = "Client is not connected; call connect() first"
            raise ClientNotConnectedError(msg)

        self._writer.write(payload)
        await self._writer.drain()

    async def send_task_command(self, data: dict[str, Any]) -> None:
        """Send a ``taskCommand`` envelope tagged with this client's id."""
        await self.send(TaskCommandMessage(client_id=self.client_id, data=data))

    async def receive(self, timeout: float | None = None) -> IpcMessage:
        """Return the next valid envelope from the server.

        Invalid lines are logged and skipped.

        Raises:
            ClientNotConnectedError: If the client is not connected.
            ConnectionError: If the server closes the connection.
            TimeoutError: If nothing valid arrives within *timeout* seconds.
        """
        async with asyncio.timeout(timeout):
            while True:
                raw = await self._read_line()
                message = decode_line(raw)
                if message is not None:
                    return message

    async def _read_line(self) -> bytes:
        if self._reader is None:
            msg = "Client is not connected; call connect() first"
            raise ClientNotConnectedError(msg)

        try:
            raw = await self._reader.readline()
        except ValueError as exc:
            await self.close()
            msg = "IPC message exceeded stream framing limit"
            raise ConnectionError(msg) from exc

        if not raw:
            await self.close()
            msg = "Connection closed by server"
            raise ConnectionError(msg)
        return raw

    @staticmethod
    def _transport_for(address: str, port: int | None) -> Transport:
        """Pick TCP when a port is given, otherwise a Unix socket at *address*."""
        if port is not None:
            return TCPLoopbackTransport(host=address, port=port)
        return UnixSocketTransport(path=address)


__all__ = ["IPCClient"]
