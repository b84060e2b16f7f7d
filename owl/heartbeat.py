"""
owl.heartbeat
AUTHOR: carter-vin

Fixed-period heartbeat loop.

Tick pipeline:
    sample(child_pid) -> HeartbeatRecord -> encode -> send

Contract:
- first tick fires at start(), then every interval (monotonic deadlines)
- a failed send is logged and skipped; the next tick still fires on schedule
- cancel() is idempotent; an in-flight tick finishes, no new tick starts
- the loop never signals or reaps the child
"""

from __future__ import annotations

import threading
import time
from typing import Protocol

from owl.collectors.state import ProcessState, StateSampler
from owl.exceptions import SendError
from owl.logging import emit_event
from owl.model import HeartbeatRecord, encode
from owl.version import WATCHER_VERSION


class Sender(Protocol):
    def send(self, payload: bytes) -> int: ...


class HeartbeatLoop:
    """
    Runs the tick pipeline on a daemon thread until cancelled.
    """

    def __init__(
        self,
        *,
        child_pid: int,
        watcher_pid: int,
        name: str,
        interval_ms: int,
        transmitter: Sender,
        sampler: StateSampler | None = None,
    ) -> None:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be > 0")

        self.child_pid = child_pid
        self.watcher_pid = watcher_pid
        self.name = name
        self._interval_s = interval_ms / 1000.0
        self._transmitter = transmitter
        self._sampler = sampler or StateSampler()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

        self.sent = 0
        self.failed = 0
        self.last_state: ProcessState | None = None

    @property
    def is_running(self) -> bool:
        """Check if the loop thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the heartbeat thread."""
        if self._thread is not None or self._stop_event.is_set():
            return

        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name="HeartbeatLoop",
        )
        self._thread.start()

    def cancel(self, *_: object) -> None:
        """
        Request the loop to stop

        Accepts and ignores arguments so it can be registered directly
        as a supervisor exit listener.
        """
        self._stop_event.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def stop(self, timeout: float | None = 5.0) -> None:
        """Cancel and wait for the in-flight tick to finish."""
        self.cancel()
        self.join(timeout=timeout)

    def tick(self) -> bool:
        """
        Run one heartbeat

        Returns True when the datagram left the socket.
        """
        state = self._sampler.sample(self.child_pid)
        self.last_state = state

        record = HeartbeatRecord(
            watcher_pid=self.watcher_pid,
            child_pid=self.child_pid,
            name=self.name,
            state=state,
        )
        payload = encode(record)

        try:
            self._transmitter.send(payload)
        except SendError as e:
            self.failed += 1
            emit_event(
                "send_failed",
                watcher_version=WATCHER_VERSION,
                child_pid=self.child_pid,
                error_type=type(e.__cause__ or e).__name__,
                message=str(e),
            )
            return False

        self.sent += 1
        emit_event(
            "heartbeat_sent",
            watcher_version=WATCHER_VERSION,
            child_pid=self.child_pid,
            state=state.value,
            bytes=len(payload),
        )
        return True

    def _run(self) -> None:
        """Main loop running in the background thread."""
        next_tick = time.monotonic()

        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception as e:
                # Supervision must outlive any single tick
                self.failed += 1
                emit_event(
                    "send_failed",
                    watcher_version=WATCHER_VERSION,
                    child_pid=self.child_pid,
                    error_type=type(e).__name__,
                    message=str(e),
                )

            # Deadlines stay on the original grid; missed ones are skipped
            next_tick += self._interval_s
            now = time.monotonic()
            if next_tick <= now:
                missed = int((now - next_tick) // self._interval_s) + 1
                next_tick += missed * self._interval_s

            # Wait for the next deadline or until cancelled
            self._stop_event.wait(timeout=next_tick - now)
