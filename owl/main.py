"""
owl.main
------------
AUTHOR: carter-vin

Command line entrypoint.

Usage:
    owl [+Name:value]... COMMAND [ARGS]...

e.g. `owl +Host:127.0.0.1 +Port:9090 rsync -avz /home/user root@host:/home`

Options (`+Name:value`, case sensitive):
- Conf       configuration file, e.g. +Conf:/usr/local/owl.toml
- Host       host to deliver heartbeats to, e.g. +Host:192.168.0.90
- Port       port to deliver heartbeats to, e.g. +Port:20304
- Name       display name, defaults to the command's base name
- Heartbeat  delay between heartbeats in milliseconds, e.g. +Heartbeat:10000
- Log        event log sink: `stderr` or a JSONL file path (off by default)

Key contract:
- `owl --help` shows usage; arguments after COMMAND belong to COMMAND
- exit code equals the command's exit code (128 + signal when killed)
"""

from __future__ import annotations

import typer

from owl.config import resolve_config
from owl.exceptions import ConfigError, SpawnError
from owl.logging import configure_event_sink
from owl.watch import run_watch

EXIT_CONFIG_ERROR = 2

app = typer.Typer(
    add_completion=False,
    help="owl: wrap a command and broadcast its run state over UDP",
)


# -----------------------------
# CLI COMMAND
# -----------------------------
@app.command(
    context_settings={
        # Stop parsing at COMMAND so its own flags (even --help) pass through
        "allow_interspersed_args": False,
        "ignore_unknown_options": True,
    },
)
def watch(
    argv: list[str] = typer.Argument(
        None,
        metavar="[+Name:value]... COMMAND [ARGS]...",
        help="owl options followed by the command to run and its arguments.",
        show_default=False,
    ),
) -> None:
    """
    Run COMMAND and send its run state periodically over UDP.
    """
    try:
        config = resolve_config(argv or [])
    except ConfigError as e:
        typer.echo(f"owl: {e}", err=True)
        raise typer.Exit(code=EXIT_CONFIG_ERROR)

    if config is None:
        typer.echo("No command provided. Try: owl --help")
        return

    configure_event_sink(config.event_log)
    try:
        code = run_watch(config)
    except SpawnError as e:
        typer.echo(f"owl: {e}", err=True)
        raise typer.Exit(code=e.exit_code)
    finally:
        configure_event_sink(None)

    raise typer.Exit(code=code)


# run command if invoked directly
if __name__ == "__main__":
    app()
