"""Line protocol encoding and decoding.

Client -> server:
  key,timestamp,value\\n                 write one point
  key,start,end,downsampling\\n          range query (0 = raw points)
  subscribe,key\\n / unsubscribe,key\\n

Server -> client:
  key,ts,value|key,ts,value|...\\n       query response
  key,ts,value\\n                        push notification
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .errors import ProtocolParseError

logger = logging.getLogger(__name__)

FIELD_SEP = ","
RECORD_SEP = "|"
LINE_END = "\n"

SUBSCRIBE = "subscribe"
UNSUBSCRIBE = "unsubscribe"

_FORBIDDEN_KEY_CHARS = (FIELD_SEP, RECORD_SEP, "\n", "\r")


@dataclass(frozen=True)
class DataPoint:
    key: str
    timestamp: int  # seconds since epoch
    value: float

    def to_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc)


@dataclass
class QueryResult:
    points: list[DataPoint] = field(default_factory=list)
    values: list[float] = field(default_factory=list)
    records: int = 0
    skipped: int = 0


def _check_key(key: str) -> str:
    if not key:
        raise ValueError("key must not be empty")
    for ch in _FORBIDDEN_KEY_CHARS:
        if ch in key:
            raise ValueError(f"key {key!r} contains reserved character {ch!r}")
    return key


def encode_write(key: str, timestamp: int, value: float) -> str:
    """Format a write line.  ``repr`` keeps the float exact on re-parse."""
    return f"{_check_key(key)},{int(timestamp)},{float(value)!r}{LINE_END}"


def encode_query(key: str, start_time: int, end_time: int,
                 downsampling: int) -> str:
    return (f"{_check_key(key)},{int(start_time)},{int(end_time)},"
            f"{int(downsampling)}{LINE_END}")


def encode_subscribe(key: str) -> str:
    return f"{SUBSCRIBE},{_check_key(key)}{LINE_END}"


def encode_unsubscribe(key: str) -> str:
    return f"{UNSUBSCRIBE},{_check_key(key)}{LINE_END}"


def _split_fields(record: str) -> tuple[str, int, float]:
    parts = record.strip().split(FIELD_SEP)
    if len(parts) != 3:
        raise ValueError(f"expected 3 fields, got {len(parts)}")
    key, ts, value = parts
    return key, int(ts), float(value)


def parse_record(record: str) -> DataPoint | None:
    """Parse one ``key,timestamp,value`` record, or None if malformed."""
    try:
        key, ts, value = _split_fields(record)
    except ValueError:
        return None
    return DataPoint(key, ts, value)


def parse_value(record: str) -> float | None:
    """Value field of a three-field record, ignoring the timestamp."""
    parts = record.strip().split(FIELD_SEP)
    if len(parts) != 3:
        return None
    try:
        return float(parts[2])
    except ValueError:
        return None


def decode_response(line: str) -> QueryResult:
    """Decode a query response line, counting records that were skipped.

    A blank line is an empty result (zero records).  Malformed records are
    dropped from ``points`` and counted in ``skipped``; ``values`` keeps the
    value of every record whose value field parses, whatever its timestamp.
    """
    line = line.strip()
    if not line:
        return QueryResult()

    records = line.split(RECORD_SEP)
    result = QueryResult(records=len(records))
    for record in records:
        value = parse_value(record)
        if value is not None:
            result.values.append(value)
        point = parse_record(record)
        if point is None:
            logger.debug("skipping malformed record %r", record)
            result.skipped += 1
            continue
        result.points.append(point)
    return result


def decode_query_response(line: str) -> list[DataPoint]:
    """Decode a query response line into its well-formed data points."""
    return decode_response(line).points


def decode_push_line(line: str) -> DataPoint:
    """Decode a push notification.  Raises ProtocolParseError if malformed."""
    try:
        key, ts, value = _split_fields(line)
    except ValueError as e:
        raise ProtocolParseError(f"malformed push line {line!r}: {e}",
                                 line) from e
    return DataPoint(key, ts, value)
