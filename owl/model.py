"""
owl.model
AUTHOR: carter-vin

Heartbeat record + wire codec.

Wire format (one UDP datagram, UTF-8, no framing):

    watcherPid||childPid||name||state

e.g. `1280||1281||rsync||Sleeping`

Design goals:
- Fixed field order, no trailing delimiter
- Explicit structure (no accidental serialization via __dict__)
- decode() is the exact inverse of encode(); used to verify the wire,
  the watcher itself never decodes

Known limitation: names are not escaped. A name containing pipes still
decodes here (pids come off the left, state off the right) but a name
with `||` breaks the four-field shape for any other consumer.
"""

from __future__ import annotations

from dataclasses import dataclass

from owl.collectors.state import ProcessState
from owl.exceptions import DecodeError

DELIMITER = "||"
FIELD_COUNT = 4
ENCODING = "utf-8"


@dataclass(frozen=True)
class HeartbeatRecord:
    """
    Logical payload of one heartbeat
    - watcher_pid: pid of owl itself, constant for the run
    - child_pid: pid of the wrapped command
    - name: display name
    - state: sampled run state
    """

    watcher_pid: int
    child_pid: int
    name: str
    state: ProcessState


def validate_record(record: HeartbeatRecord) -> None:
    """
    Validate record content

    Raises ValueError on invalid
    """
    if record.watcher_pid < 1:
        raise ValueError("watcher_pid must be >= 1")
    if record.child_pid < 1:
        raise ValueError("child_pid must be >= 1")
    if not isinstance(record.state, ProcessState):
        raise ValueError(f"state must be one of: {[s.value for s in ProcessState]}")


def encode(record: HeartbeatRecord) -> bytes:
    """
    Serialize a HeartbeatRecord to the wire payload
    """
    validate_record(record)
    fields = (
        str(record.watcher_pid),
        str(record.child_pid),
        record.name,
        record.state.value,
    )
    return DELIMITER.join(fields).encode(ENCODING)


def _parse_pid(value: str, field: str) -> int:
    # Plain ASCII digits only, as str(int) renders them
    if not (value.isascii() and value.isdigit()):
        raise DecodeError(f"{field} is not a decimal pid: {value!r}")
    pid = int(value)
    if pid < 1:
        raise DecodeError(f"{field} must be >= 1, got {pid}")
    return pid


def decode(payload: bytes) -> HeartbeatRecord:
    """
    Parse a wire payload back into a HeartbeatRecord

    Raises DecodeError on malformed input.
    """
    try:
        text = payload.decode(ENCODING)
    except UnicodeDecodeError as e:
        raise DecodeError(f"payload is not valid {ENCODING}: {e}") from e

    # State is split off the right and pids off the left, so pipes
    # anywhere inside the name stay with the name
    head, sep, state_text = text.rpartition(DELIMITER)
    parts = head.split(DELIMITER, 2) if sep else []
    if len(parts) < FIELD_COUNT - 1:
        raise DecodeError(f"expected {FIELD_COUNT} fields, got {len(parts) + 1}")

    watcher_pid = _parse_pid(parts[0], "watcher_pid")
    child_pid = _parse_pid(parts[1], "child_pid")
    name = parts[2]

    try:
        state = ProcessState(state_text)
    except ValueError:
        raise DecodeError(f"unknown state: {state_text!r}") from None

    return HeartbeatRecord(
        watcher_pid=watcher_pid,
        child_pid=child_pid,
        name=name,
        state=state,
    )
