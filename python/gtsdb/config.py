"""Client configuration."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_PORT = 5555


@dataclass(frozen=True)
class ClientConfig:
    host: str = "localhost"
    port: int = DEFAULT_PORT
    connect_timeout: float = 5.0
    query_timeout: float | None = 5.0  # None waits forever
    max_line_bytes: int = 1_048_576
    latest_window_seconds: int = 3600
    read_chunk_size: int = 65536

    def __post_init__(self):
        if self.port <= 0 or self.port > 65535:
            raise ValueError(f"port out of range: {self.port}")
        if self.query_timeout is not None and self.query_timeout <= 0:
            raise ValueError("query_timeout must be > 0 or None")
        if self.latest_window_seconds <= 0:
            raise ValueError("latest_window_seconds must be > 0")
