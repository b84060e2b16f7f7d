"""
owl.collectors.state
AUTHOR: carter-vin

Run state collector
- psutil for cross-platform process status
- coarse, fixed vocabulary (the wire only carries these six names)
- advisory only: the supervisor's exit notification is authoritative

Read failures degrade to Unknown; the caller is never interrupted.
"""

from __future__ import annotations

from enum import Enum

import psutil

from owl.exceptions import SampleError
from owl.logging import emit_event
from owl.version import WATCHER_VERSION


class ProcessState(str, Enum):
    """Coarse run state; the value is the wire text."""

    RUNNING = "Running"
    SLEEPING = "Sleeping"
    WAITING = "Waiting"
    STOPPED = "Stopped"
    ZOMBIE = "Zombie"
    UNKNOWN = "Unknown"

    def __str__(self) -> str:
        return self.value


_STATUS_MAP: dict[str, ProcessState] = {
    psutil.STATUS_RUNNING: ProcessState.RUNNING,
    psutil.STATUS_SLEEPING: ProcessState.SLEEPING,
    psutil.STATUS_DISK_SLEEP: ProcessState.WAITING,
    psutil.STATUS_IDLE: ProcessState.WAITING,
    psutil.STATUS_WAITING: ProcessState.WAITING,
    psutil.STATUS_LOCKED: ProcessState.WAITING,
    psutil.STATUS_STOPPED: ProcessState.STOPPED,
    psutil.STATUS_TRACING_STOP: ProcessState.STOPPED,
    psutil.STATUS_ZOMBIE: ProcessState.ZOMBIE,
}


def status_to_state(status: str | None) -> ProcessState:
    """
    Map a psutil status string to ProcessState
    """
    if not status:
        return ProcessState.UNKNOWN
    return _STATUS_MAP.get(status, ProcessState.UNKNOWN)


class StateSampler:
    """
    Sample the run state of a single pid.

    The psutil handle is cached so repeated samples only read the
    status file (sub-millisecond on Linux).
    """

    def __init__(self) -> None:
        self._proc: psutil.Process | None = None

    def _process(self, pid: int) -> psutil.Process:
        if self._proc is None or self._proc.pid != pid:
            self._proc = psutil.Process(pid)
        return self._proc

    def read(self, pid: int) -> ProcessState:
        """
        Read the state of pid

        Raises SampleError when the process cannot be inspected.
        """
        try:
            return status_to_state(self._process(pid).status())
        except psutil.ZombieProcess:
            return ProcessState.ZOMBIE
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            raise SampleError(f"cannot read state of pid {pid}: {type(e).__name__}") from e
        except OSError as e:
            raise SampleError(f"cannot read state of pid {pid}: {e}") from e

    def sample(self, pid: int) -> ProcessState:
        """
        Read the state of pid, Unknown on any read failure
        """
        try:
            return self.read(pid)
        except SampleError as e:
            emit_event(
                "sample_failed",
                watcher_version=WATCHER_VERSION,
                pid=pid,
                error_type=type(e.__cause__ or e).__name__,
                message=str(e),
            )
            return ProcessState.UNKNOWN
