"""Connection lifecycle for a single TSDB stream.

States:
  DISCONNECTED -> CONNECTING -> CONNECTED -> CLOSING -> DISCONNECTED

A failed connect returns to DISCONNECTED.  A read that hits EOF or a
transport fault tears the connection down to DISCONNECTED as well, so no
further writes are attempted on a dead stream.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from enum import Enum
from typing import Callable

from .errors import (
    ConnectionClosedError, NotConnectedError, ProtocolParseError,
    TransportError, TSDBConnectionError,
)
from .framing import LineDecoder
from .transport import Transport, TCPTransport

logger = logging.getLogger(__name__)

TransportFactory = Callable[[str, int, float], Transport]


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"


class Connection:
    """Owns one transport and turns its byte stream into lines.

    Writes may come from any thread and are serialized internally.  Reads
    must come from a single reader (the router's read loop).
    """

    def __init__(self, host: str, port: int, *, timeout: float = 5.0,
                 max_line_bytes: int = 1_048_576,
                 read_chunk_size: int = 65536,
                 transport_factory: TransportFactory = TCPTransport):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.read_chunk_size = read_chunk_size
        self._transport_factory = transport_factory
        self._transport: Transport | None = None
        self._state = ConnectionState.DISCONNECTED
        self._state_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._decoder = LineDecoder(max_line_bytes=max_line_bytes)
        self._lines: deque[str | None] = deque()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def connect(self) -> None:
        with self._state_lock:
            if self._state is ConnectionState.CONNECTED:
                return
            if self._state is not ConnectionState.DISCONNECTED:
                raise TSDBConnectionError(
                    f"cannot connect while {self._state.value}")
            self._state = ConnectionState.CONNECTING

        try:
            transport = self._transport_factory(self.host, self.port,
                                                self.timeout)
        except OSError as e:
            with self._state_lock:
                self._state = ConnectionState.DISCONNECTED
            raise TSDBConnectionError(
                f"connect to {self.host}:{self.port} failed: {e}") from e

        with self._state_lock:
            self._transport = transport
            self._decoder.reset()
            self._lines.clear()
            self._state = ConnectionState.CONNECTED
        logger.info("connected to %s:%d", self.host, self.port)

    def close(self) -> None:
        """Flush and release the transport.  Closing twice is a no-op."""
        with self._state_lock:
            if self._state is not ConnectionState.CONNECTED:
                return
            self._state = ConnectionState.CLOSING
            transport = self._transport

        try:
            shutdown = getattr(transport, "shutdown", None)
            if shutdown is not None:
                with self._write_lock:
                    shutdown()
        finally:
            self._release(transport)
        logger.info("closed connection to %s:%d", self.host, self.port)

    def write(self, data: bytes) -> None:
        transport = self._require_transport()
        with self._write_lock:
            try:
                transport.write(data)
            except OSError as e:
                raise TransportError(f"write failed: {e}") from e
        logger.debug("sent %r", data)

    def read_line(self) -> str:
        """Return the next complete line, reading from the transport as needed.

        Raises ProtocolParseError in place of a line that was dropped for
        exceeding ``max_line_bytes``; the stream stays usable afterwards.
        """
        while not self._lines:
            transport = self._require_transport()
            try:
                data = transport.read(self.read_chunk_size)
            except OSError as e:
                if not self.connected:
                    raise NotConnectedError("connection closed locally") from e
                self._release(transport)
                raise TransportError(f"read failed: {e}") from e
            if not data:
                if not self.connected:
                    raise NotConnectedError("connection closed locally")
                self._release(transport)
                raise ConnectionClosedError(
                    f"{self.host}:{self.port} closed the connection")
            self._lines.extend(self._decoder.feed(data))

        line = self._lines.popleft()
        if line is None:
            raise ProtocolParseError(
                f"line exceeds max_line_bytes "
                f"{self._decoder.max_line_bytes}")
        logger.debug("received %r", line)
        return line

    def _require_transport(self) -> Transport:
        transport = self._transport
        if self._state is not ConnectionState.CONNECTED or transport is None:
            raise NotConnectedError(
                f"not connected to {self.host}:{self.port}")
        return transport

    def _release(self, transport: Transport | None) -> None:
        with self._state_lock:
            if self._transport is not transport:
                return
            self._transport = None
            self._state = ConnectionState.DISCONNECTED
        if transport is not None:
            try:
                transport.close()
            except OSError:
                logger.debug("error closing transport", exc_info=True)

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, *exc):
        self.close()
