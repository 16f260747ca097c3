"""Live mapping from assigned client ids to their connection handles."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Generic, TypeVar

from taskipc.ipc.constants import CLIENT_ID_BYTES

if TYPE_CHECKING:
    from collections.abc import Callable


def new_client_id() -> str:
    """Return a fresh 12-character hex id from a cryptographically secure source."""
    return secrets.token_hex(CLIENT_ID_BYTES)


ConnT = TypeVar("ConnT")


class ClientRegistry(Generic[ConnT]):
    """Single source of truth for which clients are connected right now.

    Only the server's connect/disconnect handlers mutate the registry, and
    they run on the event loop thread, so no locking is needed.  Ids are not
    checked for collisions: 48 random bits are plenty for local peers.
    """

    def __init__(self, id_factory: Callable[[], str] = new_client_id) -> None:
        self._id_factory = id_factory
        self._clients: dict[str, ConnT] = {}

    def add(self, connection: ConnT) -> str:
        """Register *connection* under a new random id and return the id."""
        client_id = self._id_factory()
        self._clients[client_id] = connection
        return client_id

    def remove(self, connection: ConnT) -> str | None:
        """Remove the entry holding *connection*; return its id, or None if absent."""
        client_id = self.client_id_for(connection)
        if client_id is not None:
            del self._clients[client_id]
        return client_id

    def get(self, client_id: str) -> ConnT | None:
        return self._clients.get(client_id)

    def client_id_for(self, connection: ConnT) -> str | None:
        """Reverse lookup by handle identity."""
        for client_id, candidate in self._clients.items():
            if candidate is connection:
                return client_id
        return None

    def count(self) -> int:
        return len(self._clients)

    def ids(self) -> list[str]:
        return list(self._clients)

    def broadcast_targets(self) -> list[ConnT]:
        """Snapshot of live connections in registration order."""
        return list(self._clients.values())

    def __len__(self) -> int:
        return len(self._clients)

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._clients


__all__ = ["ClientRegistry", "new_client_id"]
