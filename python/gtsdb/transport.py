"""Transport adapters for the TSDB line protocol."""

from __future__ import annotations

import socket
from typing import Protocol


class Transport(Protocol):
    """Abstract transport interface."""

    def read(self, n: int) -> bytes: ...
    def write(self, data: bytes) -> None: ...
    def close(self) -> None: ...


class TCPTransport:
    """TCP stream transport (client mode).

    ``read`` blocks until data arrives and returns ``b""`` once the peer has
    closed its side.  Socket errors propagate as ``OSError``.
    """

    def __init__(self, host: str, port: int, timeout: float = 5.0):
        self.host = host
        self.port = port
        self._sock = socket.create_connection((host, port), timeout=timeout)
        # Connect timeout only: reads park in the reader thread until data
        # or EOF, query deadlines are enforced by the router.
        self._sock.settimeout(None)
        self._sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

    def read(self, n: int) -> bytes:
        return self._sock.recv(n)

    def write(self, data: bytes) -> None:
        self._sock.sendall(data)

    def shutdown(self) -> None:
        """Half-close the write side so queued bytes are flushed to the peer."""
        try:
            self._sock.shutdown(socket.SHUT_WR)
        except OSError:
            # Peer already gone; nothing left to flush.
            pass

    def close(self) -> None:
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._sock.close()
