"""CLI entry point for taskipc."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from taskipc import __version__
from taskipc.config import TaskIPCConfig
from taskipc.ipc.client import IPCClient
from taskipc.ipc.errors import IPCError
from taskipc.ipc.events import ClientConnected, ClientDisconnected, TaskCommandReceived
from taskipc.ipc.server import IPCServer
from taskipc.log import export_logs_to_file, setup_logging
from taskipc.paths import get_config_path, get_debug_log_path

if TYPE_CHECKING:
    from taskipc.ipc.events import IPCEvent

logger = logging.getLogger("taskipc.cli")

_LOG_LEVELS = click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False)


def _load_config(config_path: Path | None) -> TaskIPCConfig:
    try:
        return TaskIPCConfig.load(config_path)
    except (OSError, ValueError) as exc:
        raise click.ClickException(f"Invalid config: {exc}") from exc


def _log_event(event: IPCEvent) -> None:
    match event:
        case ClientConnected(client_id=client_id):
            logger.info("connect %s", client_id)
        case ClientDisconnected(client_id=client_id):
            logger.info("disconnect %s", client_id)
        case TaskCommandReceived(client_id=client_id, payload=payload):
            logger.info("taskCommand %s %s", client_id, json.dumps(payload, sort_keys=True))


@click.group()
@click.version_option(__version__, prog_name="taskipc")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to config.toml (default: user config dir).",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """Local socket IPC server for routing task commands."""
    ctx.obj = _load_config(config_path)


async def _serve(server: IPCServer) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    server.events.add_handler(_log_event)
    await server.listen()
    try:
        await stop.wait()
    finally:
        await server.stop()


@cli.command()
@click.option("--socket", "socket_path", default=None, help="Socket path to bind.")
@click.option("--log-level", type=_LOG_LEVELS, default=None, help="Override logging level.")
@click.option(
    "--export-log",
    is_flag=True,
    help="Write the captured log buffer to the debug log file on exit.",
)
@click.pass_obj
def serve(
    config: TaskIPCConfig,
    socket_path: str | None,
    log_level: str | None,
    export_log: bool,
) -> None:
    """Run the IPC server in the foreground until interrupted."""
    setup_logging(log_level or config.logging.level)
    if socket_path:
        config.server.socket_path = socket_path

    server = IPCServer.from_config(config)
    try:
        asyncio.run(_serve(server))
    except IPCError as exc:
        raise click.ClickException(str(exc)) from exc
    except KeyboardInterrupt:
        pass
    finally:
        if export_log:
            count = export_logs_to_file(get_debug_log_path())
            click.echo(f"Exported {count} log entries to {get_debug_log_path()}")


async def _send(address: str, payload: dict[str, Any], timeout: float) -> str:
    async with IPCClient(address, timeout=timeout) as client:
        await client.send_task_command(payload)
        return client.client_id or ""


@cli.command()
@click.argument("payload")
@click.option("--socket", "socket_path", default=None, help="Socket path to connect to.")
@click.option("--timeout", type=float, default=5.0, show_default=True)
@click.pass_obj
def send(config: TaskIPCConfig, payload: str, socket_path: str | None, timeout: float) -> None:
    """Connect, send one task command with PAYLOAD (a JSON object), and exit."""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f"not valid JSON: {exc}", param_hint="PAYLOAD") from exc
    if not isinstance(data, dict):
        raise click.BadParameter("must be a JSON object", param_hint="PAYLOAD")

    address = socket_path or config.server.resolved_socket_path()
    try:
        client_id = asyncio.run(_send(address, data, timeout))
    except (ConnectionError, OSError, TimeoutError) as exc:
        click.secho(f"Could not reach server at {address}: {exc}", fg="red", err=True)
        sys.exit(1)
    click.echo(client_id)


@cli.command()
@click.pass_obj
def paths(config: TaskIPCConfig) -> None:
    """Show config and socket locations."""
    click.echo(f"  Config:    {get_config_path()}")
    click.echo(f"  Socket:    {config.server.resolved_socket_path()}")
    click.echo(f"  Debug log: {get_debug_log_path()}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
