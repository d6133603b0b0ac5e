"""gtsdb - Client for a line-protocol time-series database."""

from .protocol import (
    DataPoint, QueryResult, encode_write, encode_query, encode_subscribe,
    encode_unsubscribe, decode_query_response, decode_response,
    decode_push_line, parse_record, parse_value,
)
from .framing import FramingStrategy, LegacyFraming, LineDecoder, Route
from .transport import Transport, TCPTransport
from .connection import Connection, ConnectionState
from .router import ResponseRouter
from .config import ClientConfig
from .client import TSDBClient, Series
from .errors import (
    TSDBError, TSDBConnectionError, NotConnectedError, ConnectionClosedError,
    TransportError, QueryTimeoutError, ProtocolParseError, NoDataError,
    NoValidMeasurementsError,
)

__all__ = [
    "DataPoint", "QueryResult", "encode_write", "encode_query",
    "encode_subscribe", "encode_unsubscribe", "decode_query_response",
    "decode_response", "decode_push_line", "parse_record", "parse_value",
    "FramingStrategy", "LegacyFraming", "LineDecoder", "Route",
    "Transport", "TCPTransport",
    "Connection", "ConnectionState", "ResponseRouter",
    "ClientConfig", "TSDBClient", "Series",
    "TSDBError", "TSDBConnectionError", "NotConnectedError",
    "ConnectionClosedError", "TransportError", "QueryTimeoutError",
    "ProtocolParseError", "NoDataError", "NoValidMeasurementsError",
]
