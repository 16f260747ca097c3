"""taskipc: local socket IPC server for routing task commands between processes."""

from taskipc.ipc import IPCClient, IPCServer

__version__ = "0.1.0"

__all__ = ["IPCClient", "IPCServer"]
