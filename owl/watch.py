"""
owl.watch
AUTHOR: carter-vin

Run coordinator: wires config, supervisor, heartbeat loop and transmitter.

Flow:
    open socket -> install signal forwarding -> spawn -> start loop
    -> wait for child -> stop loop -> close socket -> child's exit code

Failure semantics:
- SpawnError propagates; nothing is ever sent
- everything after spawn is absorbed; the exit code mirrors the child
"""

from __future__ import annotations

import os

from owl.collectors.state import StateSampler
from owl.config import Config
from owl.emit import Transmitter, UdpTarget
from owl.exceptions import SpawnError
from owl.heartbeat import HeartbeatLoop, Sender
from owl.logging import emit_event
from owl.supervisor import ChildSupervisor, ExitOutcome
from owl.version import WATCHER_VERSION


def run_watch(
    config: Config,
    *,
    transmitter: Sender | None = None,
    sampler: StateSampler | None = None,
    supervisor: ChildSupervisor | None = None,
) -> int:
    """
    Supervise config.command until it exits

    Returns the exit code the watcher should exit with.
    """
    watcher_pid = os.getpid()
    supervisor = supervisor or ChildSupervisor()

    owned = None
    if transmitter is None:
        owned = Transmitter(UdpTarget(config.host, config.port)).open()
        transmitter = owned

    emit_event(
        "watch_start",
        watcher_version=WATCHER_VERSION,
        watcher_pid=watcher_pid,
        target=f"{config.host}:{config.port}",
        interval_ms=config.heartbeat_interval_ms,
        name=config.display_name,
        config_path=str(config.config_path) if config.config_path else None,
    )

    for option in config.ignored_options:
        emit_event("config_ignored", watcher_version=WATCHER_VERSION, option=option)

    outcome: ExitOutcome | None = None
    loop: HeartbeatLoop | None = None

    try:
        with supervisor.forwarding_signals():
            try:
                child = supervisor.spawn(config.command, config.args)
            except SpawnError as e:
                emit_event(
                    "spawn_failed",
                    watcher_version=WATCHER_VERSION,
                    command=config.command,
                    error_type=type(e.__cause__ or e).__name__,
                    message=str(e),
                )
                raise

            loop = HeartbeatLoop(
                child_pid=child.pid,
                watcher_pid=watcher_pid,
                name=config.display_name,
                interval_ms=config.heartbeat_interval_ms,
                transmitter=transmitter,
                sampler=sampler,
            )
            supervisor.add_exit_listener(loop.cancel)
            loop.start()

            outcome = supervisor.wait()

        loop.stop()

        emit_event(
            "child_exited",
            watcher_version=WATCHER_VERSION,
            pid=child.pid,
            returncode=outcome.returncode,
            exit_code=outcome.exit_code,
            signal=outcome.signal.name if outcome.signal else None,
            heartbeats_sent=loop.sent,
            heartbeats_failed=loop.failed,
        )
        return outcome.exit_code

    finally:
        if owned is not None:
            owned.close()
        emit_event(
            "watch_shutdown",
            watcher_version=WATCHER_VERSION,
            exit_code=outcome.exit_code if outcome else None,
        )
