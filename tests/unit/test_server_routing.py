"""Listener callbacks and routing, driven without a real socket."""

from __future__ import annotations

import json
import logging
import os
import sys

import pytest
from pydantic import ValidationError

from taskipc.config import ServerConfig, TaskIPCConfig
from taskipc.ipc.events import (
    ClientConnected,
    ClientDisconnected,
    IPCEvent,
    TaskCommandReceived,
)
from taskipc.ipc.messages import AckMessage, TaskEventMessage
from taskipc.ipc.server import IPCServer
from tests.helpers import FakeConnection

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="Unix sockets unavailable")


def _line(payload: object) -> bytes:
    return (json.dumps(payload) + "\n").encode("utf-8")


@pytest.fixture
def server() -> IPCServer:
    return IPCServer("/tmp/taskipc-unit-never-bound.sock")


@pytest.fixture
def events(server: IPCServer) -> list[IPCEvent]:
    seen: list[IPCEvent] = []
    server.events.add_handler(seen.append)
    return seen


def test_connect_registers_acks_then_emits(server: IPCServer, events: list[IPCEvent]) -> None:
    order: list[str] = []
    conn = FakeConnection()
    server.events.add_handler(lambda e: order.append(f"event:{len(conn.sent)}"))

    server._on_connect(conn)

    client_id = server.registry.client_id_for(conn)
    assert client_id is not None
    assert len(conn.sent) == 1
    ack = conn.sent[0]
    assert isinstance(ack, AckMessage)
    assert ack.data.client_id == client_id
    assert ack.data.pid == os.getpid()
    assert ack.data.ppid == os.getppid()
    assert [type(e) for e in events] == [ClientConnected]
    assert events[0].client_id == client_id
    # Ack is written before the Connect event fires.
    assert order == ["event:1"]


def test_failed_ack_unregisters_without_events(server: IPCServer, events: list[IPCEvent]) -> None:
    conn = FakeConnection()
    conn.fail_writes = True

    server._on_connect(conn)
    server._on_disconnect(conn)

    assert server.client_count == 0
    assert conn.closed
    assert events == []


def test_task_command_emits_once_with_connection_id(
    server: IPCServer, events: list[IPCEvent]
) -> None:
    conn = FakeConnection()
    server._on_connect(conn)
    client_id = server.registry.client_id_for(conn)

    server._on_line(
        conn,
        _line({"type": "taskCommand", "origin": "client", "data": {"cmd": "run", "id": 7}}),
    )

    commands = [e for e in events if isinstance(e, TaskCommandReceived)]
    assert len(commands) == 1
    assert commands[0].client_id == client_id
    assert commands[0].payload == {"cmd": "run", "id": 7}


def test_spoofed_client_id_is_ignored(
    server: IPCServer, events: list[IPCEvent], caplog: pytest.LogCaptureFixture
) -> None:
    conn = FakeConnection()
    server._on_connect(conn)
    client_id = server.registry.client_id_for(conn)

    with caplog.at_level(logging.WARNING, logger="taskipc.ipc.server"):
        server._on_line(
            conn,
            _line(
                {
                    "type": "taskCommand",
                    "origin": "client",
                    "clientId": "ffffffffffff",
                    "data": {},
                }
            ),
        )

    command = events[-1]
    assert isinstance(command, TaskCommandReceived)
    assert command.client_id == client_id
    assert "ffffffffffff" in caplog.text


@pytest.mark.parametrize(
    "raw",
    [
        _line("not-an-object"),
        _line([1, 2, 3]),
        _line(None),
        b"{broken\n",
        _line({"type": "taskCommand", "origin": "client"}),
        _line({"type": "nope", "origin": "client", "data": {}}),
    ],
)
def test_invalid_input_fires_nothing_and_keeps_client(
    server: IPCServer, events: list[IPCEvent], raw: bytes
) -> None:
    conn = FakeConnection()
    server._on_connect(conn)
    events.clear()

    server._on_line(conn, raw)

    assert events == []
    assert server.client_count == 1
    assert not conn.closed


@pytest.mark.parametrize(
    "payload",
    [
        {"type": "connect", "origin": "client"},
        {"type": "disconnect", "origin": "client"},
        {"type": "taskEvent", "origin": "server", "data": {}},
        {"type": "ack", "origin": "server", "data": {"clientId": "x", "pid": 1, "ppid": 1}},
    ],
)
def test_unhandled_types_are_logged_and_dropped(
    server: IPCServer,
    events: list[IPCEvent],
    caplog: pytest.LogCaptureFixture,
    payload: dict[str, object],
) -> None:
    conn = FakeConnection()
    server._on_connect(conn)
    events.clear()

    with caplog.at_level(logging.WARNING, logger="taskipc.ipc.server"):
        server._on_line(conn, _line(payload))

    assert events == []
    assert "Unhandled message" in caplog.text


def test_deeply_nested_line_is_dropped_and_client_stays(
    server: IPCServer, events: list[IPCEvent], caplog: pytest.LogCaptureFixture
) -> None:
    conn = FakeConnection()
    server._on_connect(conn)
    client_id = server.registry.client_id_for(conn)
    events.clear()

    with caplog.at_level(logging.WARNING, logger="taskipc.ipc.messages"):
        server._on_line(conn, b"[" * 200_000 + b"\n")

    assert events == []
    assert server.registry.client_id_for(conn) == client_id
    assert not conn.closed
    assert "nested too deeply" in caplog.text

    server._on_line(conn, _line({"type": "taskCommand", "origin": "client", "data": {"n": 1}}))
    assert [type(e) for e in events] == [TaskCommandReceived]


def test_disconnect_fires_exactly_once(server: IPCServer, events: list[IPCEvent]) -> None:
    conn = FakeConnection()
    server._on_connect(conn)
    client_id = server.registry.client_id_for(conn)

    server._on_disconnect(conn)
    server._on_disconnect(conn)

    disconnects = [e for e in events if isinstance(e, ClientDisconnected)]
    assert [e.client_id for e in disconnects] == [client_id]
    assert server.client_count == 0


def test_broadcast_reaches_only_live_clients(server: IPCServer) -> None:
    a, b, c = FakeConnection("a"), FakeConnection("b"), FakeConnection("c")
    for conn in (a, b, c):
        server._on_connect(conn)
    server._on_disconnect(a)

    delivered = server.broadcast(TaskEventMessage(data={"status": "done"}))

    assert delivered == 2
    assert [m.type for m in a.sent] == ["ack"]
    assert [m.type for m in b.sent] == ["ack", "taskEvent"]
    assert [m.type for m in c.sent] == ["ack", "taskEvent"]


def test_broadcast_accepts_mapping_and_validates(server: IPCServer) -> None:
    conn = FakeConnection()
    server._on_connect(conn)

    assert server.broadcast({"type": "taskEvent", "origin": "server", "data": {"n": 1}}) == 1
    with pytest.raises(ValidationError):
        server.broadcast({"type": "taskEvent", "origin": "client", "data": {}})


def test_broadcast_drops_clients_whose_write_fails(
    server: IPCServer, events: list[IPCEvent]
) -> None:
    good, bad = FakeConnection("good"), FakeConnection("bad")
    server._on_connect(good)
    server._on_connect(bad)
    bad_id = server.registry.client_id_for(bad)
    bad.fail_writes = True

    delivered = server.broadcast(TaskEventMessage(data={}))

    assert delivered == 1
    assert server.registry.get(bad_id) is None
    assert bad.closed
    assert [e.client_id for e in events if isinstance(e, ClientDisconnected)] == [bad_id]


def test_send_by_id_and_by_connection(server: IPCServer) -> None:
    a, b = FakeConnection("a"), FakeConnection("b")
    server._on_connect(a)
    server._on_connect(b)
    a_id = server.registry.client_id_for(a)

    assert server.send(a_id, TaskEventMessage(data={"to": "a"})) is True
    assert server.send(b, TaskEventMessage(data={"to": "b"})) is True

    assert [m.data for m in a.sent[1:]] == [{"to": "a"}]
    assert [m.data for m in b.sent[1:]] == [{"to": "b"}]


def test_send_to_unknown_id_is_quiet_no_op(
    server: IPCServer, caplog: pytest.LogCaptureFixture
) -> None:
    conn = FakeConnection()
    server._on_connect(conn)

    with caplog.at_level(logging.WARNING, logger="taskipc.ipc.server"):
        result = server.send("000000000000", TaskEventMessage(data={}))

    assert result is False
    assert len(conn.sent) == 1
    assert "000000000000" in caplog.text


def test_send_after_disconnect_is_not_delivered(server: IPCServer) -> None:
    conn = FakeConnection()
    server._on_connect(conn)
    client_id = server.registry.client_id_for(conn)
    server._on_disconnect(conn)

    assert server.send(client_id, TaskEventMessage(data={})) is False
    assert len(conn.sent) == 1


def test_from_config_uses_server_section() -> None:
    config = TaskIPCConfig(server=ServerConfig(socket_path="/tmp/cfg.sock", max_line_bytes=1024))

    server = IPCServer.from_config(config)

    assert server.socket_path == "/tmp/cfg.sock"
    assert server._max_line_bytes == 1024
    assert not server.is_listening


def test_on_registers_filtered_handler(server: IPCServer) -> None:
    connects: list[IPCEvent] = []
    server.on(ClientConnected, connects.append)

    conn = FakeConnection()
    server._on_connect(conn)
    server._on_disconnect(conn)

    assert [type(e) for e in connects] == [ClientConnected]
