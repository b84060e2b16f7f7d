"""
owl.logging
AUTHOR: carter-vin

Structured JSON event logging for operators

Contract:
- One JSON object per line
- Stable event vocabulary (allowlist)
- UTC timestamps only

The wrapped command owns stdout/stderr, so events are off by default.
Sink is chosen at startup (`+Log:stderr` or `+Log:/path/events.jsonl`).
"""

from __future__ import annotations

import json
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

# Event types
VALID_EVENT_TYPES = {
    "watch_start",
    "config_ignored",
    "child_spawned",
    "spawn_failed",
    "signal_forwarded",
    "heartbeat_sent",
    "sample_failed",
    "send_failed",
    "child_exited",
    "watch_shutdown",
}

STDERR_SINK = "stderr"

_sink: str | None = None
_lock = threading.Lock()


def _truncate_message(value: str, *, limit: int = 200) -> str:
    """
    Cap message length to keep events compact
    """
    if len(value) <= limit:
        return value
    return value[:limit] + f"...[truncated {len(value) - limit} chars]"


# Time: current in UTC ISO 8601
def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def configure_event_sink(sink: str | None) -> None:
    """
    Select where events go

    - None: drop events
    - "stderr": write to the current sys.stderr
    - anything else: path of a JSONL file, appended
    """
    global _sink
    _sink = sink or None


def _write_line(line: str) -> None:
    # Resolve sys.stderr at write time so redirection (and capsys) is honored
    if _sink == STDERR_SINK:
        sys.stderr.write(line + "\n")
        sys.stderr.flush()
        return

    path = Path(_sink)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open(mode="a", encoding="utf-8", newline="\n") as f:
        f.write(line)
        f.write("\n")


def emit_event(event_type: str, *, watcher_version: str, **fields: Any) -> None:
    """
    Emit structured event line to the configured sink

    Rules:
    - event_type in VALID_EVENT_TYPES (checked even when the sink is off)
    - event_type, watcher_version, timestamp always present
    - sort_keys + compact separators for format
    - a failing sink never breaks the caller
    """
    if event_type not in VALID_EVENT_TYPES:
        raise ValueError(f"invalid event_type: {event_type}")

    if _sink is None:
        return

    if "message" in fields and isinstance(fields["message"], str):
        # Avoid emitting long strings in event fields
        fields["message"] = _truncate_message(fields["message"])

    payload: dict[str, Any] = {
        "event_type": event_type,
        "utc_now": utc_now_iso(),
        "watcher_version": watcher_version,
        **fields,
    }

    line = json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )

    # Events arrive from the heartbeat, waiter and main threads
    with _lock:
        try:
            _write_line(line)
        except OSError:
            pass
