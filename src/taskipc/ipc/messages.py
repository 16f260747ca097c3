"""Wire envelope models and validation for IPC messages.

Every message exchanged over the socket is a JSON object with a ``type``,
an ``origin`` and, depending on the type, a ``data`` payload.  Field names
are camelCase on the wire (``clientId``, ``relayClientId``).

Inbound values pass through :func:`parse_message` (or :func:`decode_line`
for raw framed bytes) before anything else looks at them; anything that is
not a well-formed envelope is logged and dropped.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class IpcMessageType(StrEnum):
    ACK = "ack"
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    TASK_COMMAND = "taskCommand"
    TASK_EVENT = "taskEvent"


class IpcOrigin(StrEnum):
    CLIENT = "client"
    SERVER = "server"


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AckData(_WireModel):
    """Identity handed to a client right after it connects."""

    client_id: str = Field(description="Identifier assigned to the connection")
    pid: int = Field(description="Process id of the server host")
    ppid: int = Field(description="Parent process id of the server host")


class AckMessage(_WireModel):
    type: Literal["ack"] = "ack"
    origin: Literal["server"] = "server"
    data: AckData


class ConnectMessage(_WireModel):
    type: Literal["connect"] = "connect"
    origin: Literal["server", "client"]
    data: None = None


class DisconnectMessage(_WireModel):
    type: Literal["disconnect"] = "disconnect"
    origin: Literal["server", "client"]
    data: None = None


class TaskCommandMessage(_WireModel):
    """Client instruction for the host application; ``data`` is opaque here."""

    type: Literal["taskCommand"] = "taskCommand"
    origin: Literal["client"] = "client"
    client_id: str | None = None
    data: dict[str, Any]


class TaskEventMessage(_WireModel):
    """Server notification pushed to one or all clients."""

    type: Literal["taskEvent"] = "taskEvent"
    origin: Literal["server"] = "server"
    relay_client_id: str | None = None
    data: dict[str, Any]


IpcMessage = Annotated[
    AckMessage | ConnectMessage | DisconnectMessage | TaskCommandMessage | TaskEventMessage,
    Field(discriminator="type"),
]

IpcMessageAdapter: TypeAdapter[IpcMessage] = TypeAdapter(IpcMessage)

_MESSAGE_CLASSES = (
    AckMessage,
    ConnectMessage,
    DisconnectMessage,
    TaskCommandMessage,
    TaskEventMessage,
)


def parse_message(value: object) -> IpcMessage | None:
    """Validate a decoded value as an envelope.

    Returns the typed envelope, or ``None`` when the value is not an object or
    does not match the schema.  Both cases are logged; neither raises.
    """
    if not isinstance(value, dict):
        logger.warning("Dropping invalid message: expected an object, got %s", type(value).__name__)
        return None

    try:
        return IpcMessageAdapter.validate_python(value)
    except ValidationError as exc:
        logger.warning(
            "Dropping invalid message payload: %s (%d error(s)): %s",
            _type_label(value),
            exc.error_count(),
            exc.errors(include_url=False, include_input=False),
        )
        return None
    except RecursionError:
        logger.warning(
            "Dropping invalid message payload: %s (nested too deeply)", _type_label(value)
        )
        return None


def _type_label(value: dict[str, Any]) -> str:
    kind = value.get("type")
    if not isinstance(kind, str):
        return "<missing type>"
    return kind[:64]


def decode_line(raw: bytes) -> IpcMessage | None:
    """Decode one framed JSON line and validate it.

    Blank lines are ignored silently; undecodable lines are logged and dropped.
    """
    line = raw.strip()
    if not line:
        return None

    try:
        value = json.loads(line)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("Dropping undecodable message (%d bytes): %s", len(raw), exc)
        return None
    except RecursionError:
        logger.warning("Dropping undecodable message (%d bytes): nested too deeply", len(raw))
        return None

    return parse_message(value)


def coerce_message(message: IpcMessage | Mapping[str, Any]) -> IpcMessage:
    """Return *message* as a typed envelope, validating mappings.

    Raises:
        pydantic.ValidationError: If a mapping does not match the schema.
    """
    if isinstance(message, _MESSAGE_CLASSES):
        return message
    return IpcMessageAdapter.validate_python(dict(message))


def encode_message(message: IpcMessage) -> bytes:
    """Serialise an envelope as a newline-terminated JSON line."""
    payload = {
        key: value
        for key, value in message.model_dump(mode="json", by_alias=True).items()
        if value is not None
    }
    return (json.dumps(payload, separators=(",", ":")) + "\n").encode("utf-8")


__all__ = [
    "AckData",
    "AckMessage",
    "ConnectMessage",
    "DisconnectMessage",
    "IpcMessage",
    "IpcMessageAdapter",
    "IpcMessageType",
    "IpcOrigin",
    "TaskCommandMessage",
    "TaskEventMessage",
    "coerce_message",
    "decode_line",
    "encode_message",
    "parse_message",
]
