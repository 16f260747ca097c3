"""IPC transport implementations.

Provides Unix socket transport on POSIX and TCP loopback fallback on Windows.
``DefaultTransport`` is automatically set to the best choice for the current platform.
"""

from __future__ import annotations

import asyncio
import contextlib
import errno
import logging
import os
import platform
import stat
import sys
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeAlias

from taskipc.ipc.constants import STREAM_LIMIT_BYTES
from taskipc.paths import get_default_socket_path

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine
    from typing import Any

    ClientHandler = Callable[
        [asyncio.StreamReader, asyncio.StreamWriter],
        Coroutine[Any, Any, None],
    ]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ServerHandle:
    """Handle returned after starting a transport server.

    Attributes:
        transport_type: Identifier string (``socket`` or ``tcp``).
        address: The connection address (file path or hostname).
        port: TCP port when applicable; ``None`` for socket transport.
        stop_accepting: Closes the listening socket without waiting on live
            connections.
        close: Async callable to shut down the server gracefully.  Waits for
            every live connection to finish.
    """

    transport_type: str
    address: str
    port: int | None = None
    stop_accepting: Callable[[], None] | None = None
    close: Callable[[], Coroutine[Any, Any, None]] | None = None


# ---------------------------------------------------------------------------
# Unix socket transport
# ---------------------------------------------------------------------------


class UnixSocketTransport:
    """IPC transport over Unix domain sockets.

    Only available on macOS and Linux.  On Windows this class raises
    ``NotImplementedError`` at construction time.
    """

    def __init__(self, path: str | None = None) -> None:
        if platform.system() == "Windows":
            msg = "Unix sockets are not supported on Windows"
            raise NotImplementedError(msg)
        self._path = path or str(get_default_socket_path())

    @property
    def path(self) -> str:
        return self._path

    async def start_server(
        self,
        handler: ClientHandler,
        *,
        limit: int = STREAM_LIMIT_BYTES,
    ) -> ServerHandle:
        """Bind a Unix socket server at the configured path.

        A stale socket file left by a dead server is removed before binding.

        Raises:
            OSError: ``EADDRINUSE`` if another server is still accepting on
                the path, ``EEXIST`` if the path is not a socket.
        """
        await _remove_stale_socket(self._path)

        parent = os.path.dirname(self._path)
        if parent:
            os.makedirs(parent, exist_ok=True)

        server = await asyncio.start_unix_server(handler, path=self._path, limit=limit)
        os.chmod(self._path, 0o600)
        bound = os.stat(self._path)

        logger.info("Unix socket server listening on %s", self._path)

        async def _close() -> None:
            server.close()
            await server.wait_closed()
            # Leave the path alone if another server has since bound it.
            with contextlib.suppress(FileNotFoundError):
                current = os.stat(self._path)
                if (current.st_dev, current.st_ino) == (bound.st_dev, bound.st_ino):
                    os.unlink(self._path)
            logger.info("Unix socket server stopped")

        return ServerHandle(
            transport_type="socket",
            address=self._path,
            port=None,
            stop_accepting=server.close,
            close=_close,
        )

    async def connect(
        self,
        address: str | None = None,
        port: int | None = None,
        *,
        limit: int = STREAM_LIMIT_BYTES,
    ) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        """Open a connection to the Unix socket at *address* (default: own path)."""
        target = address or self._path
        reader, writer = await asyncio.open_unix_connection(target, limit=limit)
        logger.debug("Connected to Unix socket at %s", target)
        return reader, writer


async def _remove_stale_socket(path: str) -> None:
    try:
        mode = os.stat(path).st_mode
    except FileNotFoundError:
        return
    if not stat.S_ISSOCK(mode):
        raise FileExistsError(errno.EEXIST, "Path exists and is not a socket", path)

    try:
        _, writer = await asyncio.open_unix_connection(path)
    except FileNotFoundError:
        return
    except ConnectionRefusedError:
        logger.info("Removing stale socket %s", path)
        with contextlib.suppress(FileNotFoundError):
            os.unlink(path)
        return

    writer.close()
    with contextlib.suppress(ConnectionError, OSError):
        await writer.wait_closed()
    raise OSError(errno.EADDRINUSE, "Another server is listening on this socket", path)


# ---------------------------------------------------------------------------
# TCP loopback transport
# ---------------------------------------------------------------------------

_LOCALHOST = "127.0.0.1"


class TCPLoopbackTransport:
    """IPC transport over a TCP socket bound to localhost.

    Stands in for a named pipe where Unix sockets are unavailable.  A random
    port is chosen by the OS unless one is given.
    """

    def __init__(self, host: str | None = None, port: int = 0) -> None:
        self._host = host or _LOCALHOST
        self._port = port

    async def start_server(
        self,
        handler: ClientHandler,
        *,
        limit: int = STREAM_LIMIT_BYTES,
    ) -> ServerHandle:
        """Bind a TCP server on localhost."""
        server = await asyncio.start_server(
            handler,
            host=self._host,
            port=self._port,
            limit=limit,
        )

        addrs = server.sockets[0].getsockname() if server.sockets else (self._host, 0)
        bound_port: int = addrs[1]

        logger.info("TCP loopback server listening on %s:%d", self._host, bound_port)

        async def _close() -> None:
            server.close()
            await server.wait_closed()
            logger.info("TCP loopback server stopped")

        return ServerHandle(
            transport_type="tcp",
            address=self._host,
            port=bound_port,
            stop_accepting=server.close,
            close=_close,
        )

    async def connect(
        self,
        address: str | None = None,
        port: int | None = None,
        *,
        limit: int = STREAM_LIMIT_BYTES,
    ) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        """Open a TCP connection to *address*:*port*.

        Raises:
            ValueError: If no port is known.
        """
        target_port = port or self._port
        if not target_port:
            msg = "TCP transport requires a port"
            raise ValueError(msg)

        host = address or self._host
        reader, writer = await asyncio.open_connection(host, target_port, limit=limit)
        logger.debug("Connected to TCP server at %s:%d", host, target_port)
        return reader, writer


# ---------------------------------------------------------------------------
# Default transport selection
# ---------------------------------------------------------------------------

Transport: TypeAlias = UnixSocketTransport | TCPLoopbackTransport

if sys.platform == "win32":
    DefaultTransport: type[Transport] = TCPLoopbackTransport
else:
    DefaultTransport = UnixSocketTransport


def transport_for_preference(preference: str, socket_path: str | None = None) -> Transport:
    """Instantiate a transport from a preference string (``auto|socket|tcp``)."""
    if preference == "tcp":
        return TCPLoopbackTransport()
    if preference == "socket" or DefaultTransport is UnixSocketTransport:
        return UnixSocketTransport(path=socket_path)
    return TCPLoopbackTransport()


__all__ = [
    "DefaultTransport",
    "ServerHandle",
    "TCPLoopbackTransport",
    "Transport",
    "UnixSocketTransport",
    "transport_for_preference",
]
