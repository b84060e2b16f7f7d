"""
owl.supervisor
AUTHOR: carter-vin

Child process ownership: spawn, wait, signal forwarding.

Threads:
- waiter thread: blocks in the OS wait, records the ExitOutcome exactly once,
  then publishes the one-shot "child exited" notification
- caller thread (main): wait() drains the shutdown request channel and
  forwards each requested signal to the child's process group

Signal handlers never touch the heartbeat loop. They only push the signal
number onto the request channel; the loop reacts to the exit notification.

Limitation: a child that daemonizes (forks and lets its parent exit) looks
exactly like a child that exited. Detached descendants are not tracked.
"""

from __future__ import annotations

import errno
import os
import signal
import subprocess
import sys
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from queue import SimpleQueue
from typing import Callable, Iterator, Sequence

from owl.exceptions import SpawnError
from owl.logging import emit_event
from owl.version import WATCHER_VERSION

UNIX_SIGNAL_EXIT_CODE = 128
EXIT_NOT_FOUND = 127
EXIT_CANNOT_EXECUTE = 126

FORWARDED_SIGNALS = (
    signal.SIGINT,
    signal.SIGTERM,
    signal.SIGHUP,
    signal.SIGQUIT,
    signal.SIGUSR1,
    signal.SIGUSR2,
    signal.SIGWINCH,
)

# Marks the end of the request channel
_EXITED = None


@dataclass(frozen=True)
class ExitOutcome:
    """
    How the child terminated

    returncode follows subprocess: negative signal number when killed.
    """

    returncode: int

    @property
    def signal(self) -> signal.Signals | None:
        if self.returncode >= 0:
            return None
        try:
            return signal.Signals(-self.returncode)
        except ValueError:
            return None

    @property
    def exit_code(self) -> int:
        """
        Exit code the watcher itself should exit with
        """
        if self.returncode >= 0:
            return self.returncode
        return UNIX_SIGNAL_EXIT_CODE - self.returncode


class ChildStatus(str, Enum):
    RUNNING = "running"
    EXITED = "exited"


class ChildProcess:
    """
    The spawned command.

    pid is fixed at spawn; outcome is set once by the supervisor.
    """

    def __init__(self, pid: int, argv: Sequence[str]) -> None:
        self._pid = pid
        self._argv = tuple(argv)
        self._outcome: ExitOutcome | None = None

    @property
    def pid(self) -> int:
        return self._pid

    @property
    def argv(self) -> tuple[str, ...]:
        return self._argv

    @property
    def outcome(self) -> ExitOutcome | None:
        return self._outcome

    @property
    def exit_code(self) -> int | None:
        return None if self._outcome is None else self._outcome.exit_code

    @property
    def status(self) -> ChildStatus:
        return ChildStatus.RUNNING if self._outcome is None else ChildStatus.EXITED

    def _set_outcome(self, outcome: ExitOutcome) -> None:
        if self._outcome is None:
            self._outcome = outcome

    def __repr__(self) -> str:
        return f"ChildProcess(pid={self._pid}, status={self.status.value})"


def _spawn_error(command: str, e: OSError) -> SpawnError:
    if isinstance(e, FileNotFoundError) or e.errno == errno.ENOENT:
        return SpawnError(command, "command not found", exit_code=EXIT_NOT_FOUND)
    if isinstance(e, PermissionError):
        return SpawnError(command, "permission denied", exit_code=EXIT_CANNOT_EXECUTE)
    if e.errno == errno.ENOEXEC:
        return SpawnError(command, "exec format error", exit_code=EXIT_CANNOT_EXECUTE)
    return SpawnError(command, e.strerror or str(e), exit_code=EXIT_CANNOT_EXECUTE)


def _terminal_fd() -> int | None:
    """
    stdin fd when it is a terminal whose foreground group is ours
    """
    try:
        fd = sys.stdin.fileno()
        if not os.isatty(fd):
            return None
        if os.tcgetpgrp(fd) != os.getpgrp():
            return None
    except (AttributeError, ValueError, OSError):
        return None
    return fd


def _set_foreground(fd: int, pgid: int) -> bool:
    """
    tcsetpgrp from a (soon) background group needs SIGTTOU ignored
    """
    previous = signal.signal(signal.SIGTTOU, signal.SIG_IGN)
    try:
        os.tcsetpgrp(fd, pgid)
        return True
    except OSError:
        return False
    finally:
        signal.signal(signal.SIGTTOU, previous)


class ChildSupervisor:
    """
    Owns exactly one child process for the run.

    Nothing else may signal, kill or reap the child.
    """

    def __init__(self) -> None:
        self.exited = threading.Event()
        self._requests: SimpleQueue[int | None] = SimpleQueue()
        self._popen: subprocess.Popen | None = None
        self._child: ChildProcess | None = None
        self._waiter: threading.Thread | None = None
        self._listeners: list[Callable[[ExitOutcome], None]] = []
        self._lock = threading.Lock()
        self._terminal: int | None = None

    @property
    def child(self) -> ChildProcess | None:
        return self._child

    def spawn(self, command: str, args: Sequence[str] = ()) -> ChildProcess:
        """
        Start command with args in a new process group

        stdin/stdout/stderr are inherited unmodified.
        Raises SpawnError if the executable cannot be started.
        """
        if self._popen is not None:
            raise RuntimeError("child already spawned")

        argv = [command, *args]
        try:
            popen = subprocess.Popen(argv, process_group=0)
        except OSError as e:
            raise _spawn_error(command, e) from e

        self._popen = popen
        self._child = ChildProcess(popen.pid, argv)

        fd = _terminal_fd()
        if fd is not None and _set_foreground(fd, popen.pid):
            self._terminal = fd
            # Child may have touched the terminal before the handover
            self.forward(signal.SIGCONT, quiet=True)

        self._waiter = threading.Thread(
            target=self._wait_child,
            daemon=True,
            name="ChildWaiter",
        )
        self._waiter.start()

        emit_event(
            "child_spawned",
            watcher_version=WATCHER_VERSION,
            pid=popen.pid,
            command=command,
            argc=len(args),
        )
        return self._child

    def _wait_child(self) -> None:
        """Waiter thread: the only place the child is reaped."""
        assert self._popen is not None and self._child is not None
        outcome = ExitOutcome(returncode=self._popen.wait())

        with self._lock:
            self._child._set_outcome(outcome)
            listeners = list(self._listeners)
            self.exited.set()

        self._requests.put(_EXITED)

        for listener in listeners:
            listener(outcome)

    def add_exit_listener(self, listener: Callable[[ExitOutcome], None]) -> None:
        """
        Call listener(outcome) once the child has exited

        Runs immediately when the child is already gone.
        """
        with self._lock:
            outcome = self._child.outcome if self._child is not None else None
            if outcome is None:
                self._listeners.append(listener)
                return
        listener(outcome)

    def request_shutdown(self, signum: int) -> None:
        """
        Queue signum for forwarding (safe to call from a signal handler)
        """
        self._requests.put(signum)

    def forward(self, signum: int, *, quiet: bool = False) -> bool:
        """
        Send signum to the child's process group

        Returns False when there is nobody left to signal.
        """
        if self._popen is None:
            return False
        # Once reaped the pid may be reused; never signal it again
        if self.exited.is_set() or self._popen.returncode is not None:
            return False
        try:
            os.killpg(self._popen.pid, signum)
        except ProcessLookupError:
            return False
        except PermissionError:
            return False

        if not quiet:
            emit_event(
                "signal_forwarded",
                watcher_version=WATCHER_VERSION,
                pid=self._popen.pid,
                signal=signal.Signals(signum).name,
            )
        return True

    def wait(self) -> ExitOutcome:
        """
        Block until the child terminates, forwarding requested signals

        Safe to call again after exit; returns the same outcome.
        """
        if self._child is None or self._waiter is None:
            raise RuntimeError("no child spawned")

        while not self.exited.is_set():
            signum = self._requests.get()
            if signum is _EXITED:
                break
            self.forward(signum)

        self._waiter.join()
        self._release_terminal()

        outcome = self._child.outcome
        assert outcome is not None
        return outcome

    def _release_terminal(self) -> None:
        if self._terminal is None:
            return
        _set_foreground(self._terminal, os.getpgrp())
        self._terminal = None

    @contextmanager
    def forwarding_signals(self, signals: Sequence[int] = FORWARDED_SIGNALS) -> Iterator[None]:
        """
        Route the given signals into the request channel for the block

        Must run on the main thread (Python signal handler rule).
        Previous handlers are restored on exit.
        """

        def _handler(signum: int, frame: object) -> None:
            self.request_shutdown(signum)

        previous: dict[int, object] = {}
        try:
            for signum in signals:
                previous[signum] = signal.signal(signum, _handler)
            yield
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler)
