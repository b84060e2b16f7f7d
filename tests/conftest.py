"""
Shared fixtures for owl contract tests
"""

from __future__ import annotations

import socket
import threading
import time
from typing import Iterator

import pytest

from owl.logging import configure_event_sink


class UdpCollector:
    """
    Minimal heartbeat listener on 127.0.0.1 with an OS-assigned port
    """

    def __init__(self) -> None:
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.settimeout(0.05)
        self.port = self.sock.getsockname()[1]
        self.payloads: list[bytes] = []
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                data, _ = self.sock.recvfrom(65535)
            except socket.timeout:
                continue
            except OSError:
                return
            self.payloads.append(data)

    def drain(self, settle_s: float = 0.2) -> list[bytes]:
        time.sleep(settle_s)
        return list(self.payloads)

    def close(self) -> None:
        self._stop.set()
        self._thread.join(timeout=1.0)
        self.sock.close()


@pytest.fixture
def udp_collector() -> Iterator[UdpCollector]:
    collector = UdpCollector()
    try:
        yield collector
    finally:
        collector.close()


@pytest.fixture(autouse=True)
def _reset_event_sink() -> Iterator[None]:
    configure_event_sink(None)
    yield
    configure_event_sink(None)
