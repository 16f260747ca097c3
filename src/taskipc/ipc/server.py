"""IPC server that accepts connections, assigns client ids, and routes messages."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import TYPE_CHECKING, Any

from taskipc.ipc.connection import ClientConnection
from taskipc.ipc.constants import MAX_LINE_BYTES
from taskipc.ipc.errors import ServerAlreadyListeningError, ServerBindError
from taskipc.ipc.events import (
    ClientConnected,
    ClientDisconnected,
    EventEmitter,
    TaskCommandReceived,
)
from taskipc.ipc.messages import (
    AckData,
    AckMessage,
    IpcOrigin,
    TaskCommandMessage,
    coerce_message,
    decode_line,
)
from taskipc.ipc.registry import ClientRegistry
from taskipc.ipc.transports import transport_for_preference
from taskipc.paths import get_default_socket_path

if TYPE_CHECKING:
    from collections.abc import Mapping

    from taskipc.config import TaskIPCConfig
    from taskipc.ipc.events import EventFilter, EventHandler
    from taskipc.ipc.messages import IpcMessage
    from taskipc.ipc.transports import ServerHandle, Transport

logger = logging.getLogger(__name__)


class IPCServer:
    """Asynchronous local IPC server.

    Every accepted connection is registered under a random client id and
    greeted with an ``ack`` envelope carrying that id and the host's
    pid/ppid.  Inbound lines are validated; client ``taskCommand`` envelopes
    are surfaced as :class:`TaskCommandReceived` events and everything else
    is logged and dropped.  The host pushes messages back with
    :meth:`send` and :meth:`broadcast`.

    All callbacks run on the event loop thread and never await between
    touching the registry and emitting the matching event.

    Usage::

        server = IPCServer("/tmp/app.sock")
        server.events.add_handler(on_command, TaskCommandReceived)
        await server.listen()
        ...
        server.broadcast(TaskEventMessage(data={"status": "done"}))
        await server.stop()
    """

    def __init__(
        self,
        socket_path: str | None = None,
        *,
        transport: Transport | None = None,
        transport_preference: str = "auto",
        max_line_bytes: int = MAX_LINE_BYTES,
        events: EventEmitter | None = None,
    ) -> None:
        self._socket_path = socket_path or str(get_default_socket_path())
        self._transport = transport or transport_for_preference(
            transport_preference, self._socket_path
        )
        self._max_line_bytes = max_line_bytes
        self._events = events or EventEmitter()
        self._registry: ClientRegistry[ClientConnection] = ClientRegistry()
        self._handle: ServerHandle | None = None
        self._stopping = False

    @classmethod
    def from_config(cls, config: TaskIPCConfig, **kwargs: Any) -> IPCServer:
        """Build a server from the ``[server]`` section of *config*."""
        return cls(
            config.server.resolved_socket_path(),
            transport_preference=config.server.transport,
            max_line_bytes=config.server.max_line_bytes,
            **kwargs,
        )

    @property
    def socket_path(self) -> str:
        return self._socket_path

    @property
    def is_listening(self) -> bool:
        """Whether the server is currently accepting connections."""
        return self._handle is not None

    @property
    def handle(self) -> ServerHandle | None:
        """The server handle, available after ``listen()``."""
        return self._handle

    @property
    def events(self) -> EventEmitter:
        return self._events

    @property
    def registry(self) -> ClientRegistry[ClientConnection]:
        return self._registry

    @property
    def client_count(self) -> int:
        return self._registry.count()

    def on(self, event_type: EventFilter, handler: EventHandler) -> None:
        """Shorthand for ``events.add_handler(handler, event_type)``."""
        self._events.add_handler(handler, event_type)

    # ------------------------------------------------------------------
    # Listener
    # ------------------------------------------------------------------

    async def listen(self) -> ServerHandle:
        """Bind the endpoint and begin accepting connections.

        Raises:
            ServerAlreadyListeningError: If the server is already listening.
            ServerBindError: If the endpoint cannot be bound.
        """
        if self._handle is not None:
            raise ServerAlreadyListeningError(self._handle.address)

        self._stopping = False
        try:
            self._handle = await self._transport.start_server(
                self._client_connected,
                limit=self._max_line_bytes + 1,
            )
        except OSError as exc:
            raise ServerBindError(self._socket_path, str(exc)) from exc

        logger.info(
            "IPC server listening: transport=%s address=%s port=%s",
            self._handle.transport_type,
            self._handle.address,
            self._handle.port,
        )
        return self._handle

    async def stop(self) -> None:
        """Stop accepting, disconnect every client, and close the endpoint.

        Each live client produces exactly one ``ClientDisconnected`` event.
        """
        if self._handle is None:
            return

        self._stopping = True
        if self._handle.stop_accepting is not None:
            self._handle.stop_accepting()

        connections = self._registry.broadcast_targets()
        for connection in connections:
            self._on_disconnect(connection)
            connection.close()
        for connection in connections:
            await connection.wait_closed()

        if self._handle.close is not None:
            await self._handle.close()
        self._handle = None
        logger.info("IPC server stopped")

    async def _client_connected(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Drive one connection: greet, read JSON lines until EOF, then unregister."""
        connection = ClientConnection(reader, writer)
        if self._stopping:
            logger.debug("Refusing %s: server is stopping", connection.peer)
            connection.close()
            await connection.wait_closed()
            return

        self._on_connect(connection)
        try:
            while True:
                try:
                    raw = await connection.read_line()
                except ValueError:
                    logger.warning(
                        "Oversized message from %s (limit %d bytes); closing connection",
                        connection.peer,
                        self._max_line_bytes,
                    )
                    break
                if not raw:
                    break  # Client disconnected
                self._on_line(connection, raw)
        except (ConnectionError, OSError):
            logger.debug("Connection error from %s", connection.peer, exc_info=True)
        finally:
            self._on_disconnect(connection)
            connection.close()
            await connection.wait_closed()

    def _on_connect(self, connection: ClientConnection) -> None:
        client_id = self._registry.add(connection)
        logger.info("Client connected: client_id=%s clients=%d", client_id, self.client_count)

        ack = AckMessage(data=AckData(client_id=client_id, pid=os.getpid(), ppid=os.getppid()))
        try:
            connection.write_message(ack)
        except (ConnectionError, OSError) as exc:
            # Never announced, so no Disconnect event either.
            logger.warning("Failed to acknowledge %s: %s", client_id, exc)
            self._registry.remove(connection)
            connection.close()
            return

        self._events.emit(ClientConnected(client_id=client_id))

    def _on_disconnect(self, connection: ClientConnection) -> None:
        client_id = self._registry.remove(connection)
        if client_id is None:
            return

        logger.info("Client disconnected: client_id=%s clients=%d", client_id, self.client_count)
        self._events.emit(ClientDisconnected(client_id=client_id))

    def _on_line(self, connection: ClientConnection, raw: bytes) -> None:
        message = decode_line(raw)
        if message is None:
            return
        self._route(connection, message)

    # ------------------------------------------------------------------
    # Router
    # ------------------------------------------------------------------

    def _route(self, connection: ClientConnection, message: IpcMessage) -> None:
        if message.origin != IpcOrigin.CLIENT:
            logger.warning("Unhandled message from %s: %s", connection.peer, _describe(message))
            return

        match message:
            case TaskCommandMessage():
                client_id = self._registry.client_id_for(connection)
                if client_id is None:
                    logger.debug("Dropping task command from unregistered %s", connection.peer)
                    return
                if message.client_id is not None and message.client_id != client_id:
                    logger.warning(
                        "Task command claims client_id=%s but arrived from %s; using %s",
                        message.client_id,
                        client_id,
                        client_id,
                    )
                self._events.emit(TaskCommandReceived(client_id=client_id, payload=message.data))
            case _:
                logger.warning("Unhandled message from %s: %s", connection.peer, _describe(message))

    def broadcast(self, message: IpcMessage | Mapping[str, Any]) -> int:
        """Deliver *message* to every connected client.

        Returns:
            The number of clients the message was written to.

        Raises:
            pydantic.ValidationError: If a mapping is not a valid envelope.
        """
        envelope = coerce_message(message)
        delivered = 0
        for connection in self._registry.broadcast_targets():
            if self._deliver(connection, envelope):
                delivered += 1
        logger.debug("Broadcast %s to %d client(s)", envelope.type, delivered)
        return delivered

    def send(
        self,
        target: str | ClientConnection,
        message: IpcMessage | Mapping[str, Any],
    ) -> bool:
        """Deliver *message* to one client, addressed by id or by connection.

        Returns:
            ``True`` if the message was written; ``False`` if the client id is
            unknown or the write failed.  Neither case raises.

        Raises:
            pydantic.ValidationError: If a mapping is not a valid envelope.
        """
        envelope = coerce_message(message)
        if isinstance(target, str):
            connection = self._registry.get(target)
            if connection is None:
                logger.warning("No connected client %s; dropping %s", target, envelope.type)
                return False
        else:
            connection = target
        return self._deliver(connection, envelope)

    def _deliver(self, connection: ClientConnection, message: IpcMessage) -> bool:
        try:
            connection.write_message(message)
        except (ConnectionError, OSError) as exc:
            logger.warning("Failed to write to %s: %s", connection.peer, exc)
            self._on_disconnect(connection)
            connection.close()
            return False
        return True


def _describe(message: IpcMessage) -> str:
    return message.model_dump_json(by_alias=True)


__all__ = ["IPCServer"]
