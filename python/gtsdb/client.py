"""High-level TSDB client: measurements, aggregates and subscriptions."""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Union

import numpy as np

from .config import ClientConfig
from .connection import Connection, ConnectionState, TransportFactory
from .errors import NoDataError, NoValidMeasurementsError
from .framing import FramingStrategy
from .protocol import (
    DataPoint, QueryResult, decode_response, encode_query,
    encode_subscribe, encode_unsubscribe, encode_write,
)
from .router import DataCallback, ErrorCallback, ResponseRouter
from .transport import TCPTransport

logger = logging.getLogger(__name__)

TimeLike = Union[int, float, datetime]
DurationLike = Union[int, float, timedelta]


@dataclass
class Series:
    """Column view of a history query."""

    timestamps: np.ndarray  # int64, seconds
    values: np.ndarray  # float64

    def __len__(self) -> int:
        return len(self.timestamps)


def _to_epoch(t: TimeLike) -> int:
    if isinstance(t, datetime):
        return int(t.timestamp())
    return int(t)


def _to_seconds(d: DurationLike) -> int:
    if isinstance(d, timedelta):
        return int(d.total_seconds())
    return int(d)


class TSDBClient:
    """Client for one TSDB connection.

    Usage::

        with TSDBClient("localhost", 5555) as client:
            client.record_measurement("sensor1", 25.5)
            latest = client.get_latest_measurement("sensor1")

    Query calls block until the server answers or ``config.query_timeout``
    expires.  The protocol has no correlation ids, so queries must not be
    issued while push notifications may be arriving on the same connection:
    a push landing between a query and its answer is taken as the answer.
    """

    def __init__(self, host: str | None = None, port: int | None = None, *,
                 config: ClientConfig | None = None,
                 framing: FramingStrategy | None = None,
                 transport_factory: TransportFactory = TCPTransport,
                 clock: Callable[[], float] = time.time):
        config = config or ClientConfig()
        overrides = {}
        if host is not None:
            overrides["host"] = host
        if port is not None:
            overrides["port"] = port
        if overrides:
            config = dataclasses.replace(config, **overrides)

        self.config = config
        self._clock = clock
        self._conn = Connection(
            config.host, config.port,
            timeout=config.connect_timeout,
            max_line_bytes=config.max_line_bytes,
            read_chunk_size=config.read_chunk_size,
            transport_factory=transport_factory,
        )
        self._router = ResponseRouter(self._conn, framing)
        self._subscriptions: set[str] = set()
        self._sub_lock = threading.Lock()

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._conn.state

    @property
    def connected(self) -> bool:
        return self._conn.connected

    def connect(self) -> None:
        self._conn.connect()
        self._router.start()

    def close(self) -> None:
        """Close the connection and flush pending push callbacks.  Idempotent."""
        try:
            self._conn.close()
        finally:
            self._router.stop()
            with self._sub_lock:
                self._subscriptions.clear()

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, *exc):
        self.close()

    def _now(self) -> int:
        return int(self._clock())

    # -----------------------------------------------------------------------
    # Raw protocol operations
    # -----------------------------------------------------------------------

    def write_data(self, key: str, timestamp: TimeLike, value: float) -> None:
        """Write one data point.  No acknowledgement is returned."""
        line = encode_write(key, _to_epoch(timestamp), value)
        self._conn.write(line.encode("utf-8"))

    def read_data(self, key: str, start_time: TimeLike, end_time: TimeLike,
                  downsampling: int = 0) -> QueryResult:
        """Run a range query.  ``downsampling`` of 0 asks for raw points."""
        line = encode_query(key, _to_epoch(start_time), _to_epoch(end_time),
                            downsampling)
        response = self._router.request(line, self.config.query_timeout)
        result = decode_response(response)
        if result.skipped:
            logger.debug("query for %s: skipped %d of %d records",
                         key, result.skipped, result.records)
        return result

    # -----------------------------------------------------------------------
    # Measurements
    # -----------------------------------------------------------------------

    def record_measurement(self, sensor_id: str, value: float) -> None:
        """Write *value* for *sensor_id* stamped with the current time."""
        self.write_data(sensor_id, self._now(), value)

    def get_latest_measurement(self, sensor_id: str) -> DataPoint:
        """Return the most recent point in the lookback window.

        Relies on the server returning points in ascending time order.
        """
        end = self._now()
        start = end - self.config.latest_window_seconds
        result = self.read_data(sensor_id, start, end, 0)
        if not result.points:
            raise NoDataError(f"no data found for sensor {sensor_id}")
        return result.points[-1]

    def get_average_measurement(self, sensor_id: str,
                                duration: DurationLike) -> float:
        """Mean of the raw values over the last *duration* seconds.

        Raises NoDataError if the server returned nothing and
        NoValidMeasurementsError if no returned record has a usable value.
        """
        seconds = _to_seconds(duration)
        if seconds < 0:
            raise ValueError("duration must be >= 0")
        end = self._now()
        result = self.read_data(sensor_id, end - seconds, end, 0)
        if result.records == 0:
            raise NoDataError(
                f"no data found for sensor {sensor_id} "
                f"in the last {seconds}s")
        # Only the value field matters here; a bad timestamp is tolerated.
        if not result.values:
            raise NoValidMeasurementsError(
                f"no valid measurements for sensor {sensor_id} "
                f"({result.records} malformed records)")
        values = np.asarray(result.values, dtype=np.float64)
        return float(values.mean())

    def get_measurement_history(self, sensor_id: str, start_time: TimeLike,
                                end_time: TimeLike,
                                interval: DurationLike) -> list[DataPoint]:
        """Downsampled points in server order.

        The downsampling interval is clamped to at least one second; history
        never asks for raw points.
        """
        downsampling = max(1, _to_seconds(interval))
        return self.read_data(sensor_id, start_time, end_time,
                              downsampling).points

    def get_measurement_series(self, sensor_id: str, start_time: TimeLike,
                               end_time: TimeLike,
                               interval: DurationLike) -> Series:
        """Like get_measurement_history, as numpy timestamp/value arrays."""
        points = self.get_measurement_history(sensor_id, start_time,
                                              end_time, interval)
        return Series(
            timestamps=np.array([p.timestamp for p in points], dtype=np.int64),
            values=np.array([p.value for p in points], dtype=np.float64),
        )

    # -----------------------------------------------------------------------
    # Subscriptions
    # -----------------------------------------------------------------------

    @property
    def subscriptions(self) -> frozenset[str]:
        with self._sub_lock:
            return frozenset(self._subscriptions)

    def subscribe(self, key: str) -> None:
        """Ask the server to push updates for *key*.  Not acknowledged."""
        with self._sub_lock:
            if key in self._subscriptions:
                return
            self._conn.write(encode_subscribe(key).encode("utf-8"))
            self._subscriptions.add(key)
        logger.info("subscribed to %s", key)

    def unsubscribe(self, key: str) -> None:
        """Stop push updates for *key*.  Unknown keys are ignored."""
        with self._sub_lock:
            if key not in self._subscriptions:
                return
            self._conn.write(encode_unsubscribe(key).encode("utf-8"))
            self._subscriptions.discard(key)
        logger.info("unsubscribed from %s", key)

    def on_subscription_data(self, callback: DataCallback) -> None:
        """Call *callback* with each pushed DataPoint, in arrival order.

        Callbacks run on the dispatcher thread.  They must not issue queries
        on this client while subscriptions are active.
        """
        self._router.on_data(callback)

    def on_subscription_error(self, callback: ErrorCallback) -> None:
        """Call *callback* with ProtocolParseError for malformed push lines,
        and with the connection error if the stream ends unexpectedly."""
        self._router.on_error(callback)
