"""
owl.emit

AUTHOR: carter-vin

OUTPUT:
- one UDP datagram per heartbeat
- fire-and-forget, no retries, no acknowledgement

Design goals:
- Open the socket once, reuse it for every send
- Resolve the destination once; retry resolution on the next send if it failed
- Provide explicit error surfaces (SendError) so the caller decides
  how to handle failures (the heartbeat loop logs and keeps going)
"""

from __future__ import annotations

import socket
from dataclasses import dataclass
from typing import Any

from owl.exceptions import SendError

DEFAULT_REMOTE_HOST = "0.0.0.0"
DEFAULT_REMOTE_PORT = 39576


@dataclass(frozen=True)
class UdpTarget:
    """
    Heartbeat destination.
    """

    host: str = DEFAULT_REMOTE_HOST
    port: int = DEFAULT_REMOTE_PORT

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


class Transmitter:
    """
    Owns a single datagram socket bound to an OS-assigned local port.

    Only the heartbeat thread calls send(); no locking.
    """

    def __init__(self, target: UdpTarget) -> None:
        self.target = target
        self._sock: socket.socket | None = None
        self._family: int | None = None
        self._address: Any = None

    @property
    def is_open(self) -> bool:
        return self._sock is not None

    def _resolve(self) -> tuple[int, Any]:
        """
        Resolve target into (family, sockaddr) via getaddrinfo
        """
        try:
            infos = socket.getaddrinfo(
                self.target.host,
                self.target.port,
                type=socket.SOCK_DGRAM,
            )
        except (socket.gaierror, UnicodeError) as e:
            raise SendError(f"cannot resolve {self.target}: {e}") from e
        if not infos:
            raise SendError(f"cannot resolve {self.target}: no addresses")
        family, _, _, _, sockaddr = infos[0]
        return family, sockaddr

    def open(self) -> "Transmitter":
        """
        Create the socket

        Resolution failure is not fatal here; send() retries it.
        Socket creation failure raises OSError to the caller.
        """
        if self._sock is not None:
            return self

        try:
            self._family, self._address = self._resolve()
        except SendError:
            self._family, self._address = None, None

        self._sock = socket.socket(self._family or socket.AF_INET, socket.SOCK_DGRAM)
        return self

    def send(self, payload: bytes) -> int:
        """
        Send payload as a single datagram

        Failure semantics:
        - raises SendError on resolution or OS send errors
        - never retries
        """
        if self._sock is None:
            raise SendError("transmitter is not open")

        if self._address is None:
            family, address = self._resolve()
            if family != self._sock.family:
                self._sock.close()
                self._sock = socket.socket(family, socket.SOCK_DGRAM)
            self._family, self._address = family, address

        try:
            return self._sock.sendto(payload, self._address)
        except OSError as e:
            raise SendError(f"send to {self.target} failed: {e}") from e

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def __enter__(self) -> "Transmitter":
        return self.open()

    def __exit__(self, *exc: object) -> None:
        self.close()
