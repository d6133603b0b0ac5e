"""Response routing for a shared query/push stream.

One reader thread pulls lines off the connection and hands each one to the
framing strategy.  Lines routed as RESPONSE complete the single in-flight
query; lines routed as PUSH are decoded and queued for a dispatcher thread
that runs subscriber callbacks, so slow callbacks never stall the reader.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable

from .connection import Connection
from .errors import (
    ConnectionClosedError, NotConnectedError, ProtocolParseError,
    QueryTimeoutError, TSDBError,
)
from .framing import FramingStrategy, LegacyFraming, Route
from .protocol import DataPoint, decode_push_line

logger = logging.getLogger(__name__)

DataCallback = Callable[[DataPoint], Any]
ErrorCallback = Callable[[TSDBError], Any]

_STOP = object()
_JOIN_TIMEOUT = 5.0


class _PendingRequest:
    __slots__ = ("line", "done", "response", "error")

    def __init__(self, line: str):
        self.line = line
        self.done = threading.Event()
        self.response: str | None = None
        self.error: BaseException | None = None


class ResponseRouter:
    """Serializes queries and fans out push notifications for one connection."""

    def __init__(self, connection: Connection,
                 framing: FramingStrategy | None = None):
        self._conn = connection
        self.framing = framing or LegacyFraming()
        self._turn = threading.Lock()
        self._lock = threading.Lock()
        self._pending: _PendingRequest | None = None
        self._abandoned = 0
        self._failure: BaseException | None = None
        self._events: queue.Queue = queue.Queue()
        self._data_callbacks: list[DataCallback] = []
        self._error_callbacks: list[ErrorCallback] = []
        self._reader: threading.Thread | None = None
        self._dispatcher: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._reader is not None and self._reader.is_alive()

    @property
    def failure(self) -> BaseException | None:
        """Error that stopped the read loop, if any."""
        return self._failure

    @property
    def abandoned(self) -> int:
        """Given-up queries whose responses have not been discarded yet."""
        return self._abandoned

    def on_data(self, callback: DataCallback) -> None:
        self._data_callbacks.append(callback)

    def on_error(self, callback: ErrorCallback) -> None:
        self._error_callbacks.append(callback)

    def start(self) -> None:
        if self.running:
            return
        # Reap threads left over from a stream the peer closed.
        self.stop()
        with self._lock:
            self._pending = None
            self._abandoned = 0
            self._failure = None
        self._events = queue.Queue()
        peer = f"{self._conn.host}:{self._conn.port}"
        self._reader = threading.Thread(
            target=self._read_loop, name=f"gtsdb-reader-{peer}", daemon=True)
        self._dispatcher = threading.Thread(
            target=self._dispatch_loop, args=(self._events,),
            name=f"gtsdb-dispatch-{peer}", daemon=True)
        self._dispatcher.start()
        self._reader.start()

    def stop(self) -> None:
        """Wait for the read loop to exit and flush queued push events.

        The connection must already be closed so the reader wakes up.
        """
        current = threading.current_thread()
        reader, self._reader = self._reader, None
        dispatcher, self._dispatcher = self._dispatcher, None

        if reader is not None and reader is not current:
            reader.join(_JOIN_TIMEOUT)
            if reader.is_alive():
                logger.warning("reader thread did not exit within %.1fs",
                               _JOIN_TIMEOUT)
        if dispatcher is not None:
            self._events.put(_STOP)
            if dispatcher is not current:
                dispatcher.join(_JOIN_TIMEOUT)

    def request(self, line: str, timeout: float | None = None) -> str:
        """Send a query line and block until its response line arrives."""
        with self._turn:
            pending = _PendingRequest(line)
            with self._lock:
                self._pending = pending
            try:
                self._conn.write(line.encode("utf-8"))
            except BaseException:
                with self._lock:
                    if self._pending is pending:
                        self._pending = None
                raise

            try:
                answered = pending.done.wait(timeout)
            except BaseException:
                # Interrupted wait: the answer is still coming, drop it.
                self._abandon(pending)
                raise
            if not answered and self._abandon(pending):
                raise QueryTimeoutError(
                    f"no response to {line.strip()!r} within {timeout}s")

            if pending.error is not None:
                raise pending.error
            assert pending.response is not None
            return pending.response

    def _abandon(self, pending: _PendingRequest) -> bool:
        """Give up on *pending* so its late response is discarded.

        Returns False if the request completed in the meantime.
        """
        with self._lock:
            if pending.done.is_set():
                return False
            if self._pending is pending:
                self._pending = None
            self._abandoned += 1
            return True

    # -----------------------------------------------------------------------
    # Reader thread
    # -----------------------------------------------------------------------

    def _read_loop(self) -> None:
        while True:
            try:
                line = self._conn.read_line()
            except NotConnectedError as e:
                self._fail(e)
                break
            except ProtocolParseError as e:
                self._reject(e)
                continue
            except TSDBError as e:
                logger.warning("read loop stopped: %s", e)
                self._fail(e)
                self._events.put(e)
                break
            except Exception as e:
                logger.exception("read loop crashed")
                self._fail(ConnectionClosedError(f"read loop crashed: {e}"))
                break
            self._route(line)
        logger.debug("read loop exited")

    def _route(self, line: str) -> None:
        with self._lock:
            in_flight = self._pending is not None or self._abandoned > 0
            route = self.framing.route(line, in_flight)
            if route is Route.RESPONSE:
                self._complete(line)
                return

        if not line.strip():
            logger.debug("ignoring blank line outside a query")
            return
        try:
            point = decode_push_line(line)
        except ProtocolParseError as e:
            self._events.put(e)
        else:
            self._events.put(point)

    def _complete(self, line: str) -> None:
        # Caller holds self._lock.
        if self._abandoned:
            self._abandoned -= 1
            logger.warning("discarding late response %r to a timed-out query",
                           line)
            return
        pending = self._pending
        if pending is None:
            logger.warning("dropping response %r with no query in flight",
                           line)
            return
        self._pending = None
        pending.response = line
        pending.done.set()

    def _reject(self, exc: ProtocolParseError) -> None:
        # A dropped line still takes the place of one response.
        with self._lock:
            if self._abandoned:
                self._abandoned -= 1
                logger.warning("discarding unreadable late response: %s", exc)
                return
            pending, self._pending = self._pending, None
            if pending is not None:
                pending.error = exc
                pending.done.set()
                return
        self._events.put(exc)

    def _fail(self, exc: BaseException) -> None:
        with self._lock:
            if self._failure is None:
                self._failure = exc
            pending, self._pending = self._pending, None
            if pending is not None:
                pending.error = exc
                pending.done.set()

    # -----------------------------------------------------------------------
    # Dispatcher thread
    # -----------------------------------------------------------------------

    def _dispatch_loop(self, events: queue.Queue) -> None:
        while True:
            event = events.get()
            if event is _STOP:
                break
            if isinstance(event, TSDBError):
                callbacks: list = list(self._error_callbacks)
                if not callbacks:
                    logger.warning("push stream error: %s", event)
            else:
                callbacks = list(self._data_callbacks)
            for callback in callbacks:
                try:
                    callback(event)
                except Exception:
                    logger.exception("subscription callback %r failed",
                                     callback)
