"""
Contract tests for the heartbeat loop cadence and failure isolation.
"""

import os
import threading
import time

import pytest

from owl.collectors.state import ProcessState
from owl.exceptions import SendError
from owl.heartbeat import HeartbeatLoop
from owl.model import decode
from owl.supervisor import ChildSupervisor


class RecordingTransmitter:
    """Collects payloads instead of sending them."""

    def __init__(self, fail_on: set[int] | None = None) -> None:
        self.payloads: list[bytes] = []
        self.attempts = 0
        self._fail_on = fail_on or set()
        self._lock = threading.Lock()

    def send(self, payload: bytes) -> int:
        with self._lock:
            self.attempts += 1
            if self.attempts in self._fail_on:
                raise SendError("simulated: network is unreachable")
            self.payloads.append(payload)
        return len(payload)


class FixedSampler:
    def __init__(self, state: ProcessState = ProcessState.SLEEPING) -> None:
        self.state = state
        self.calls = 0

    def sample(self, pid: int) -> ProcessState:
        self.calls += 1
        return self.state


def _loop(transmitter, *, interval_ms=50, sampler=None, child_pid=1281) -> HeartbeatLoop:
    return HeartbeatLoop(
        child_pid=child_pid,
        watcher_pid=1280,
        name="rsync",
        interval_ms=interval_ms,
        transmitter=transmitter,
        sampler=sampler or FixedSampler(),
    )


def test_tick_builds_expected_payload() -> None:
    transmitter = RecordingTransmitter()
    loop = _loop(transmitter)

    assert loop.tick() is True
    assert transmitter.payloads == [b"1280||1281||rsync||Sleeping"]
    assert loop.sent == 1
    assert loop.last_state is ProcessState.SLEEPING


def test_interval_must_be_positive() -> None:
    with pytest.raises(ValueError, match="interval_ms"):
        _loop(RecordingTransmitter(), interval_ms=0)


def test_send_error_does_not_stop_loop() -> None:
    """
    The second tick fails; later ticks still fire on schedule.
    """
    transmitter = RecordingTransmitter(fail_on={2})
    loop = _loop(transmitter, interval_ms=50)

    loop.start()
    time.sleep(0.5)
    loop.stop()

    assert loop.failed == 1
    assert transmitter.attempts >= 5
    assert loop.sent == transmitter.attempts - 1


def test_unexpected_tick_error_does_not_stop_loop() -> None:
    class _ExplodingOnce(FixedSampler):
        def sample(self, pid):
            self.calls += 1
            if self.calls == 1:
                raise RuntimeError("boom")
            return self.state

    transmitter = RecordingTransmitter()
    loop = _loop(transmitter, interval_ms=50, sampler=_ExplodingOnce())

    loop.start()
    time.sleep(0.3)
    loop.stop()

    assert loop.failed == 1
    assert len(transmitter.payloads) >= 2


def test_cancel_is_idempotent_and_stops_ticks() -> None:
    transmitter = RecordingTransmitter()
    loop = _loop(transmitter, interval_ms=20)

    loop.start()
    time.sleep(0.1)
    loop.cancel()
    loop.cancel()
    loop.join(timeout=2.0)

    assert not loop.is_running
    count = len(transmitter.payloads)
    time.sleep(0.1)
    assert len(transmitter.payloads) == count

    # Cancelled loops never restart
    loop.start()
    assert not loop.is_running


def test_first_tick_is_immediate() -> None:
    transmitter = RecordingTransmitter()
    loop = _loop(transmitter, interval_ms=10_000)

    loop.start()
    deadline = time.monotonic() + 2.0
    while not transmitter.payloads and time.monotonic() < deadline:
        time.sleep(0.01)
    loop.stop()

    assert len(transmitter.payloads) == 1


def test_datagram_count_tracks_child_lifetime() -> None:
    """
    A child living ~10 intervals yields ~10 heartbeats, none after exit.
    """
    interval_ms = 100
    supervisor = ChildSupervisor()
    child = supervisor.spawn("sleep", ["1"])

    transmitter = RecordingTransmitter()
    loop = HeartbeatLoop(
        child_pid=child.pid,
        watcher_pid=os.getpid(),
        name="sleep",
        interval_ms=interval_ms,
        transmitter=transmitter,
    )

    at_exit: list[int] = []
    supervisor.add_exit_listener(loop.cancel)
    supervisor.add_exit_listener(lambda outcome: at_exit.append(len(transmitter.payloads)))

    loop.start()
    outcome = supervisor.wait()
    loop.join(timeout=2.0)

    assert outcome.exit_code == 0
    assert not loop.is_running

    sent = len(transmitter.payloads)
    assert 8 <= sent <= 12
    # At most the in-flight tick completes after the exit notification
    assert sent - at_exit[0] <= 1

    records = [decode(p) for p in transmitter.payloads]
    assert {r.child_pid for r in records} == {child.pid}
    assert {r.watcher_pid for r in records} == {os.getpid()}
    assert all(r.name == "sleep" for r in records)
