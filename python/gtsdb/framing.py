"""Stream framing: line reassembly and response/push attribution.

The protocol carries query responses and push notifications on the same
stream with no type tag and no correlation id.  Which of the two a line is
gets decided by a FramingStrategy so the guess can be swapped for a real
framing without touching the client.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum

logger = logging.getLogger(__name__)


class Route(Enum):
    RESPONSE = "response"
    PUSH = "push"


class FramingStrategy(ABC):
    """Decides whether an inbound line answers the in-flight query."""

    @abstractmethod
    def route(self, line: str, in_flight: bool) -> Route:
        """Return the destination for *line*."""


class LegacyFraming(FramingStrategy):
    """Attribution rule of the unframed wire protocol.

    While a query is in flight the next line is taken as its response;
    otherwise the line is a push notification.  A push that arrives between
    sending a query and receiving its answer is misattributed, so callers
    must not interleave queries with active subscriptions.
    """

    def route(self, line: str, in_flight: bool) -> Route:
        return Route.RESPONSE if in_flight else Route.PUSH


class LineDecoder:
    """Reassembles newline-terminated lines from arbitrary byte chunks.

    A line longer than ``max_line_bytes`` is dropped as a whole and reported
    as ``None`` in its place, so callers can tell that a line went missing.
    """

    def __init__(self, max_line_bytes: int = 1_048_576,
                 encoding: str = "utf-8"):
        self.max_line_bytes = max_line_bytes
        self.encoding = encoding
        self._buf = bytearray()
        self._discarding = False

    def feed(self, data: bytes) -> list[str | None]:
        """Feed raw bytes, return any complete lines (without terminator).

        Oversized lines come back as ``None``.
        """
        self._buf.extend(data)
        lines: list[str | None] = []

        while True:
            idx = self._buf.find(b"\n")
            if idx < 0:
                break
            if self._discarding or idx > self.max_line_bytes:
                del self._buf[:idx + 1]
                self._discarding = False
                logger.warning("dropped line longer than max_line_bytes %d",
                               self.max_line_bytes)
                lines.append(None)
                continue
            raw = bytes(self._buf[:idx])
            del self._buf[:idx + 1]
            if raw.endswith(b"\r"):
                raw = raw[:-1]
            lines.append(raw.decode(self.encoding, errors="replace"))

        if len(self._buf) > self.max_line_bytes:
            # Skip the rest of this line up to its newline.
            logger.warning(
                "partial line of %d bytes exceeds max_line_bytes %d, "
                "discarding until end of line",
                len(self._buf), self.max_line_bytes)
            self._buf.clear()
            self._discarding = True

        return lines

    @property
    def pending(self) -> int:
        """Bytes buffered waiting for a newline."""
        return len(self._buf)

    @property
    def discarding(self) -> bool:
        """True while the tail of an oversized line is being skipped."""
        return self._discarding

    def reset(self):
        """Clear internal buffer."""
        self._buf.clear()
        self._discarding = False
