"""Configuration loader for taskipc."""

from __future__ import annotations

import os
import tempfile
import tomllib
from pathlib import Path
from typing import Literal, TypeAlias

import tomlkit
from pydantic import BaseModel, Field, field_validator

from taskipc.ipc.constants import MAX_LINE_BYTES
from taskipc.paths import get_config_path, get_default_socket_path

TransportPreferenceLiteral: TypeAlias = Literal["auto", "socket", "tcp"]
LogLevelLiteral: TypeAlias = Literal["DEBUG", "INFO", "WARNING", "ERROR"]

TRANSPORT_PREFERENCE_VALUES = frozenset({"auto", "socket", "tcp"})
LOG_LEVEL_VALUES = frozenset({"DEBUG", "INFO", "WARNING", "ERROR"})


def atomic_write(path: Path, content: str) -> None:
    """Write file atomically to avoid partial/corrupt writes."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp_")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        Path(tmp_path).replace(path)
    except Exception:
        Path(tmp_path).unlink(missing_ok=True)
        raise


class ServerConfig(BaseModel):
    """Settings for the listening socket."""

    socket_path: str | None = Field(
        default=None,
        description="Path of the Unix domain socket (None = runtime dir default)",
    )
    transport: TransportPreferenceLiteral = Field(
        default="auto",
        description="Transport preference: auto (platform default), socket, or tcp",
    )
    max_line_bytes: int = Field(
        default=MAX_LINE_BYTES,
        gt=0,
        description="Maximum size of a single JSON line before the peer is dropped",
    )

    @field_validator("transport", mode="before")
    @classmethod
    def validate_transport(cls, value: object) -> str:
        """Coerce invalid transport values to 'auto'."""
        match value:
            case str() as transport if transport in TRANSPORT_PREFERENCE_VALUES:
                return transport
            case _:
                pass
        return "auto"

    def resolved_socket_path(self) -> str:
        """Return the configured socket path, or the runtime default."""
        if self.socket_path:
            return str(Path(self.socket_path).expanduser())
        return str(get_default_socket_path())


class LoggingConfig(BaseModel):
    """Logging verbosity settings."""

    level: LogLevelLiteral = Field(default="INFO")

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, value: object) -> str:
        """Accept lowercase level names; fall back to INFO for unknown values."""
        match value:
            case str() as level if level.upper() in LOG_LEVEL_VALUES:
                return level.upper()
            case _:
                pass
        return "INFO"


class TaskIPCConfig(BaseModel):
    """Root configuration model."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: Path | None = None) -> TaskIPCConfig:
        """Load configuration from TOML file or use defaults."""
        if config_path is None:
            config_path = get_config_path()

        if config_path.exists():
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
            return cls.model_validate(data)

        return cls()

    def save(self, path: Path) -> None:
        """Serialize current config to TOML file.

        Args:
            path: Path to write config file (created if missing)
        """
        doc = tomlkit.document()

        server_table = tomlkit.table()
        for key, value in self.server.model_dump().items():
            if value is not None:
                server_table[key] = value
        doc["server"] = server_table

        logging_table = tomlkit.table()
        for key, value in self.logging.model_dump().items():
            if value is not None:
                logging_table[key] = value
        doc["logging"] = logging_table

        atomic_write(path, tomlkit.dumps(doc))


__all__ = ["LoggingConfig", "ServerConfig", "TaskIPCConfig", "atomic_write"]
