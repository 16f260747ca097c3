"""XDG-compliant path helpers for taskipc configuration and runtime files."""

from __future__ import annotations

import os
from pathlib import Path

from platformdirs import user_config_dir, user_data_dir

_SOCKET_NAME = "ipc.sock"


def get_data_dir() -> Path:
    """Get the data directory for taskipc (exported logs, runtime files)."""
    override = os.environ.get("TASKIPC_DATA_DIR")
    if override:
        return Path(override).resolve()
    return Path(user_data_dir("taskipc"))


def get_config_dir() -> Path:
    """Get the config directory for taskipc (config.toml)."""
    override = os.environ.get("TASKIPC_CONFIG_DIR")
    if override:
        return Path(override).resolve()
    return Path(user_config_dir("taskipc"))


def get_config_path() -> Path:
    """Get the path to the main config file."""
    return get_config_dir() / "config.toml"


def get_runtime_dir() -> Path:
    """Get the runtime directory that houses the server socket.

    Kept short where possible: Unix socket paths are limited to ~104 bytes
    on macOS and 108 on Linux.
    """
    override = os.environ.get("TASKIPC_RUNTIME_DIR")
    if override:
        return Path(override).resolve()
    return get_data_dir() / "run"


def get_default_socket_path() -> Path:
    """Get the default path of the server's Unix domain socket."""
    return get_runtime_dir() / _SOCKET_NAME


def get_debug_log_path() -> Path:
    """Get the path to the debug log export file."""
    return get_data_dir() / "debug.log"

