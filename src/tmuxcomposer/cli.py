"""tmuxcomposer command line entry point.

Commands:
    watch-session   Stream session-changed events for one tmux session
    automate        Answer agent prompts across all sessions
    list-matchers   Show the trigger rule table

Logs go to stderr; events are written to stdout as JSON lines and,
with ``--serve``, broadcast over a WebSocket.
"""

import asyncio
import json
import signal
from typing import Protocol

import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from . import __version__, config
from .adapters.tmux.client import TmuxClient
from .adapters.tmux.socket import SocketOptions
from .automation.automator import Automator
from .automation.matcher import TriggerRule, load_rules, load_rules_file
from .detect.factory import STRATEGIES, create_detector
from .events import EventEmitter, stdout_sink
from .telemetry import get_logger, setup_logging
from .watcher import SessionWatcher
from .web.server import EventServer

logger = get_logger(__name__)


class _Runnable(Protocol):
    async def run(self) -> int: ...

    def stop(self) -> None: ...


async def _run_until_done(component: _Runnable, server: EventServer | None, host: str, port: int) -> int:
    """Run a component with SIGINT/SIGTERM wired to its stop()."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, component.stop)

    server_task = asyncio.create_task(server.serve(host, port)) if server else None
    try:
        return await component.run()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        if server is not None and server_task is not None:
            server.stop()
            await asyncio.gather(server_task, return_exceptions=True)


def _build_emitter(server: EventServer | None, quiet: bool) -> EventEmitter:
    emitter = EventEmitter()
    if not quiet:
        emitter.add_sink(stdout_sink)
    if server is not None:
        emitter.add_sink(server.publish)
    return emitter


def _load_rules_or_fail(path: str | None) -> list[TriggerRule]:
    try:
        return load_rules_file(path) if path else load_rules()
    except (ValidationError, ValueError, OSError) as e:
        raise click.ClickException(f"Invalid matcher rules: {e}")


serve_option = click.option("--serve", is_flag=True, help="Also broadcast events over WebSocket.")
host_option = click.option("--host", default=config.EVENT_SERVER_HOST, show_default=True, help="Event server host.")
port_option = click.option("--port", default=config.EVENT_SERVER_PORT, show_default=True, type=int, help="Event server port.")
quiet_option = click.option("--quiet", is_flag=True, help="Do not write events to stdout.")


@click.group()
@click.version_option(__version__, prog_name="tmuxcomposer")
@click.option("-L", "socket_name", help="tmux socket name (as tmux -L).")
@click.option("-S", "socket_path", type=click.Path(dir_okay=False), help="tmux socket path (as tmux -S).")
@click.option("--log-level", default=None, help=f"Log level (default: {config.LOG_LEVEL}).")
@click.pass_context
def cli(ctx, socket_name, socket_path, log_level):
    """Tmux control-mode watcher and agent prompt automation."""
    if socket_name and socket_path:
        raise click.UsageError("-L and -S are mutually exclusive")
    setup_logging(log_level)
    ctx.obj = SocketOptions(socket_name=socket_name, socket_path=socket_path)


@cli.command("watch-session")
@click.option("-t", "--session", help="Session name or id (default: the current session).")
@click.option("--no-reconnect", is_flag=True, help="Exit when the control channel closes.")
@serve_option
@host_option
@port_option
@quiet_option
@click.pass_context
def watch_session(ctx, session, no_reconnect, serve, host, port, quiet):
    """Stream topology snapshots of one tmux session."""
    server = EventServer() if serve else None
    emitter = _build_emitter(server, quiet)
    watcher = SessionWatcher(
        TmuxClient(ctx.obj),
        emitter,
        session=session,
        reconnect=not no_reconnect,
    )
    ctx.exit(asyncio.run(_run_until_done(watcher, server, host, port)))


@cli.command()
@click.option(
    "--detector",
    type=click.Choice(STRATEGIES),
    default=config.DETECTOR_STRATEGY,
    show_default=True,
    help="How to tell which windows run the agent.",
)
@click.option("--skip", multiple=True, help="Matcher name to disable (repeatable).")
@click.option("--rules", "rules_path", type=click.Path(exists=True, dir_okay=False), help="JSON rule table.")
@click.option("--interval", type=float, default=config.POLL_INTERVAL, show_default=True, help="Poll interval in seconds.")
@click.option("--no-content", is_flag=True, help="Do not emit window-content events.")
@serve_option
@host_option
@port_option
@quiet_option
@click.pass_context
def automate(ctx, detector, skip, rules_path, interval, no_content, serve, host, port, quiet):
    """Answer agent prompts in every unattended tmux session."""
    rules = _load_rules_or_fail(rules_path)
    unknown = set(skip) - {rule.name for rule in rules}
    if unknown:
        raise click.BadParameter(f"unknown matcher(s): {', '.join(sorted(unknown))}", param_hint="--skip")

    client = TmuxClient(ctx.obj)
    server = EventServer() if serve else None
    emitter = _build_emitter(server, quiet)
    emitter.update_context(script="automate", socketPath=client.socket.resolve_path())
    automator = Automator(
        client,
        emitter,
        rules,
        create_detector(detector, client),
        skip={name: True for name in skip},
        poll_interval=interval,
        emit_content=not no_content,
    )
    ctx.exit(asyncio.run(_run_until_done(automator, server, host, port)))


@cli.command("list-matchers")
@click.option("--rules", "rules_path", type=click.Path(exists=True, dir_okay=False), help="JSON rule table.")
@click.option("--json", "as_json", is_flag=True, help="Print the validated table as JSON.")
def list_matchers(rules_path, as_json):
    """Show the trigger rule table in evaluation order."""
    rules = _load_rules_or_fail(rules_path)
    if as_json:
        click.echo(json.dumps([rule.model_dump() for rule in rules], ensure_ascii=False, indent=2))
        return

    table = Table(title="Matchers")
    table.add_column("Name")
    table.add_column("Mode")
    table.add_column("Trigger")
    table.add_column("Response")
    table.add_column("Once")
    for rule in rules:
        table.add_row(
            rule.name,
            rule.mode,
            " … ".join(rule.trigger),
            rule.response,
            "yes" if rule.run_once else "no",
        )
    Console().print(table)


if __name__ == "__main__":
    cli()
