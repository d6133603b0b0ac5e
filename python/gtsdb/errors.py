"""Exception hierarchy for the gtsdb client.

Every error derives from TSDBError and, where one fits, the closest builtin
so ``except ConnectionError`` / ``except TimeoutError`` still work.
"""

from __future__ import annotations


class TSDBError(Exception):
    """Base class for all gtsdb errors."""


class TSDBConnectionError(TSDBError, ConnectionError):
    """Connecting to the server failed."""


class NotConnectedError(TSDBError):
    """Operation attempted while the connection is not established."""


class ConnectionClosedError(TSDBError, ConnectionError):
    """The server closed the stream."""


class TransportError(TSDBError, OSError):
    """Socket-level fault while reading or writing."""


class QueryTimeoutError(TSDBError, TimeoutError):
    """No response arrived within the query timeout."""


class ProtocolParseError(TSDBError, ValueError):
    """An inbound line could not be decoded or was too long to keep."""

    def __init__(self, message: str, line: str = ""):
        super().__init__(message)
        self.line = line


class NoDataError(TSDBError, LookupError):
    """The server returned no records for a query that expects data."""


class NoValidMeasurementsError(TSDBError, ValueError):
    """The server returned records but none of them could be parsed."""
