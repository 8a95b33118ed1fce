"""CLI entry point for pomodeck.

Uses Click to expose the ``pomodeck`` command group.  The control
subcommands send one request to the running instance over its socket;
``serve`` runs the timer itself in the foreground.
"""

from __future__ import annotations

import logging
import signal
import sys
import threading
from pathlib import Path

import click

import pomodeck
from pomodeck.control.channel import send_request
from pomodeck.control.protocol import Request
from pomodeck.core.config import load_config
from pomodeck.core.errors import ChannelUnavailableError, PomodeckError, ProtocolError
from pomodeck.core.timer import ITERATIONS_PER_SESSION, Command, Phase, TimerState
from pomodeck.host import TimerHost

EXIT_ERROR = 1
EXIT_UNREACHABLE = 2

_PHASE_CHOICES = [p.value for p in Phase] + ["short-break", "long-break"]


def _describe(state: TimerState) -> str:
    """One-line summary, e.g. ``work 12:34 running [2/4] sessions=1``."""
    status = "running" if state.running else "paused"
    return (
        f"{state.phase.value} {state.remaining_formatted} {status} "
        f"[{state.iteration}/{ITERATIONS_PER_SESSION}] sessions={state.sessions_completed}"
    )


def _send(ctx: click.Context, request: Request) -> None:
    """Send *request*, print the resulting state, and exit non-zero on failure."""
    socket_path: Path | None = ctx.obj.get("socket") if ctx.obj else None
    try:
        response = send_request(request, socket_path=socket_path)
    except ChannelUnavailableError as exc:
        click.echo(str(exc), err=True)
        sys.exit(EXIT_UNREACHABLE)
    except ProtocolError as exc:
        click.echo(str(exc), err=True)
        sys.exit(EXIT_ERROR)

    if not response.ok:
        click.echo(f"Error: {response.error}", err=True)
        sys.exit(EXIT_ERROR)
    if response.state is None:
        click.echo("Error: response carried no timer state", err=True)
        sys.exit(EXIT_ERROR)
    click.echo(_describe(response.state))


@click.group()
@click.version_option(version=pomodeck.__version__, prog_name="pomodeck")
@click.option(
    "--socket",
    "socket_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Control socket of the running instance.",
)
@click.pass_context
def cli(ctx: click.Context, socket_path: Path | None) -> None:
    """pomodeck: a pomodoro timer for button-grid displays."""
    ctx.ensure_object(dict)
    ctx.obj["socket"] = socket_path


@cli.command()
@click.pass_context
def toggle(ctx: click.Context) -> None:
    """Toggle the timer between running and paused."""
    _send(ctx, Request(Command.toggle()))


@cli.command()
@click.pass_context
def start(ctx: click.Context) -> None:
    """Start the timer."""
    _send(ctx, Request(Command.start()))


@cli.command()
@click.pass_context
def stop(ctx: click.Context) -> None:
    """Stop (pause) the timer."""
    _send(ctx, Request(Command.stop()))


@cli.command()
@click.pass_context
def reset(ctx: click.Context) -> None:
    """Reset to the beginning of a work phase."""
    _send(ctx, Request(Command.reset()))


@cli.command()
@click.pass_context
def skip(ctx: click.Context) -> None:
    """Skip to the next phase."""
    _send(ctx, Request(Command.skip()))


@cli.command("set-time")
@click.argument("phase", type=click.Choice(_PHASE_CHOICES, case_sensitive=False))
@click.argument("seconds", type=float)
@click.pass_context
def set_time(ctx: click.Context, phase: str, seconds: float) -> None:
    """Set the length of PHASE to SECONDS."""
    value: float = int(seconds) if seconds.is_integer() else seconds
    _send(ctx, Request(Command.set_time(Phase.parse(phase), value)))


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the running timer's state."""
    _send(ctx, Request())


@cli.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="JSON config file (default: ~/.config/pomodeck/config.json).",
)
@click.option("-v", "--verbose", is_flag=True, help="Log at debug level.")
@click.pass_context
def serve(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """Run the timer in the foreground until interrupted."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = load_config(config_path)
        if ctx.obj.get("socket") is not None:
            config.socket_path = ctx.obj["socket"]
        host = TimerHost.from_config(config)
    except PomodeckError as exc:
        click.echo(str(exc), err=True)
        sys.exit(EXIT_ERROR)

    stop_event = threading.Event()
    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, lambda *_: stop_event.set())
    try:
        host.run(stop_event)
    except PomodeckError as exc:
        click.echo(str(exc), err=True)
        sys.exit(EXIT_ERROR)
