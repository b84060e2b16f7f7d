"""
End-to-end contract tests: CLI -> child -> UDP collector.
"""

import json
from pathlib import Path

from typer.testing import CliRunner

from owl.main import app
from owl.model import decode


def _invoke(args: list[str]):
    runner = CliRunner()
    with runner.isolated_filesystem():
        result = runner.invoke(app, args)
        events_path = Path("events.jsonl")
        events = (
            [json.loads(line) for line in events_path.read_text(encoding="utf-8").splitlines()]
            if events_path.exists()
            else []
        )
    return result, events


def test_child_exit_code_and_heartbeats(udp_collector) -> None:
    result, events = _invoke(
        [
            "+Host:127.0.0.1",
            f"+Port:{udp_collector.port}",
            "+Heartbeat:50",
            "+Name:Awesome_Job",
            "+Log:events.jsonl",
            "sh",
            "-c",
            "sleep 0.4; exit 3",
        ]
    )

    assert result.exit_code == 3

    records = [decode(p) for p in udp_collector.drain()]
    assert len(records) >= 4
    assert all(r.name == "Awesome_Job" for r in records)
    assert len({r.child_pid for r in records}) == 1

    event_types = [e["event_type"] for e in events]
    assert event_types[0] == "watch_start"
    assert "child_spawned" in event_types
    assert "heartbeat_sent" in event_types
    assert event_types[-2:] == ["child_exited", "watch_shutdown"]

    exited = next(e for e in events if e["event_type"] == "child_exited")
    assert exited["exit_code"] == 3
    assert exited["heartbeats_sent"] == len(records)


def test_signal_killed_child_maps_to_128_plus_signal(udp_collector) -> None:
    result, _ = _invoke(
        [
            "+Host:127.0.0.1",
            f"+Port:{udp_collector.port}",
            "+Heartbeat:50",
            "sh",
            "-c",
            "kill -9 $$",
        ]
    )

    assert result.exit_code == 137


def test_spawn_error_sends_nothing(udp_collector) -> None:
    result, events = _invoke(
        [
            "+Host:127.0.0.1",
            f"+Port:{udp_collector.port}",
            "+Heartbeat:20",
            "+Log:events.jsonl",
            "/nonexistent/owl-test-command",
        ]
    )

    assert result.exit_code == 127
    assert "command not found" in result.output
    assert udp_collector.drain() == []

    event_types = [e["event_type"] for e in events]
    assert "spawn_failed" in event_types
    assert "heartbeat_sent" not in event_types


def test_command_flags_pass_through() -> None:
    """
    --help after COMMAND belongs to COMMAND, not owl
    """
    result, _ = _invoke(["+Port:9", "sh", "-c", 'test "$1" = --help', "sh", "--help"])

    assert result.exit_code == 0
    assert "Usage" not in result.output


def test_no_command_prints_hint() -> None:
    result, _ = _invoke([])

    assert result.exit_code == 0
    assert "No command provided" in result.output


def test_invalid_heartbeat_exits_before_spawn(tmp_path) -> None:
    marker = tmp_path / "spawned"
    result, _ = _invoke(["+Heartbeat:0", "sh", "-c", f"touch {marker}"])

    assert result.exit_code == 2
    assert "heartbeat interval must be > 0" in result.output
    assert not marker.exists()
