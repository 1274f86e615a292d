"""Per-client connection and request-rate limiting."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Union

__all__ = [
    "RateLimitConfig",
    "RateLimitExceeded",
    "RateLimiterStats",
    "RateLimiter",
]

PeerAddress = Union[str, tuple]


@dataclass(frozen=True)
class RateLimitConfig:
    """Limits applied per client address and across the whole server."""

    requests_per_second: int = 100
    max_concurrent_connections: int = 10
    max_total_connections: int = 1000
    window_seconds: int = 1

    @classmethod
    def permissive(cls) -> "RateLimitConfig":
        """Loose limits for development and testing."""
        return cls(
            requests_per_second=10_000,
            max_concurrent_connections=100,
            max_total_connections=10_000,
            window_seconds=1,
        )

    @classmethod
    def strict(cls) -> "RateLimitConfig":
        """Tight limits for production."""
        return cls(
            requests_per_second=50,
            max_concurrent_connections=5,
            max_total_connections=500,
            window_seconds=1,
        )


class RateLimitExceeded(Exception):
    """Raised when a connection or request is over its limit."""


@dataclass(frozen=True)
class RateLimiterStats:
    total_connections: int
    active_clients: int
    config: RateLimitConfig


@dataclass
class _ClientState:
    request_times: list[float] = field(default_factory=list)
    concurrent_connections: int = 0

    def admit_request(self, config: RateLimitConfig, now: float) -> bool:
        window = config.window_seconds
        self.request_times = [t for t in self.request_times if now - t < window]
        if len(self.request_times) >= config.requests_per_second:
            return False
        self.request_times.append(now)
        return True


def _client_id(peer_addr: PeerAddress) -> str:
    """Render a peer address as ``host:port``, bracketing IPv6 hosts."""
    if isinstance(peer_addr, str):
        return peer_addr
    host, port = peer_addr[0], peer_addr[1]
    if ":" in str(host):
        return f"[{host}]:{port}"
    return f"{host}:{port}"


class RateLimiter:
    """Tracks connections and request times for each client address."""

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config if config is not None else RateLimitConfig()
        self._clock = clock
        self._clients: dict[str, _ClientState] = {}
        self._total_connections = 0
        self._lock = asyncio.Lock()

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    async def check_connection(self, peer_addr: PeerAddress) -> None:
        """Admit a new connection or raise RateLimitExceeded."""
        client_id = _client_id(peer_addr)
        async with self._lock:
            if self._total_connections >= self._config.max_total_connections:
                raise RateLimitExceeded(
                    "Server at maximum capacity: "
                    f"{self._config.max_total_connections} connections"
                )
            state = self._clients.setdefault(client_id, _ClientState())
            if state.concurrent_connections >= self._config.max_concurrent_connections:
                raise RateLimitExceeded(
                    f"Too many concurrent connections from {client_id}. "
                    f"Max: {self._config.max_concurrent_connections}"
                )
            state.concurrent_connections += 1
            self._total_connections += 1

    async def close_connection(self, peer_addr: PeerAddress) -> None:
        """Record that a connection from ``peer_addr`` has closed."""
        client_id = _client_id(peer_addr)
        async with self._lock:
            state = self._clients.get(client_id)
            if state is not None and state.concurrent_connections > 0:
                state.concurrent_connections -= 1
            if self._total_connections > 0:
                self._total_connections -= 1

    async def check_request(self, peer_addr: PeerAddress) -> None:
        """Admit one request within the sliding window or raise RateLimitExceeded."""
        client_id = _client_id(peer_addr)
        now = self._clock()
        async with self._lock:
            state = self._clients.setdefault(client_id, _ClientState())
            if not state.admit_request(self._config, now):
                raise RateLimitExceeded(
                    f"Rate limit exceeded: {self._config.requests_per_second} requests/sec"
                )

    async def get_stats(self) -> RateLimiterStats:
        async with self._lock:
            active = sum(
                1 for state in self._clients.values() if state.concurrent_connections > 0
            )
            return RateLimiterStats(
                total_connections=self._total_connections,
                active_clients=active,
                config=replace(self._config),
            )