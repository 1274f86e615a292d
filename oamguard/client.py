"""Client for the JSON-over-TCP query service."""

from __future__ import annotations

import asyncio
import json
import socket
from dataclasses import dataclass
from typing import Any

__all__ = [
    "JsonRpcClientError",
    "QueryResponse",
    "SchemaResponse",
    "JsonRpcClient",
]

_CONNECT_TIMEOUT = 0.5
_STATUS_ERROR = 3


class JsonRpcClientError(Exception):
    """Raised when the server cannot be reached or its reply cannot be used."""


@dataclass(frozen=True)
class QueryResponse:
    status: int
    row_count: int
    execution_ms: int
    error_message: str
    timestamp: str


@dataclass(frozen=True)
class SchemaResponse:
    schema_id: str
    database_type: str
    generated_at: str


def _normalize_address(address: str) -> str:
    for prefix in ("http://", "https://"):
        if address.startswith(prefix):
            return address[len(prefix):]
    return address


def _split_host_port(address: str) -> tuple[str, int]:
    host, sep, port_text = address.rpartition(":")
    if not sep or not host or not port_text.isdigit():
        raise JsonRpcClientError("Invalid address format")
    port = int(port_text)
    if port > 65535:
        raise JsonRpcClientError("Invalid address format")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise JsonRpcClientError("Invalid address format")
    return host, port


async def _resolve(address: str) -> tuple[str, int]:
    host, port = _split_host_port(address)
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    except (socket.gaierror, UnicodeError) as exc:
        raise JsonRpcClientError("Invalid address format") from exc
    if not infos:
        raise JsonRpcClientError("Could not resolve address")
    sockaddr = infos[0][4]
    return sockaddr[0], sockaddr[1]


def _to_i32(value: int) -> int:
    return (value + 2**31) % 2**32 - 2**31


def _get_int(response: Any, key: str, default: int) -> int:
    value = response.get(key) if isinstance(response, dict) else None
    if isinstance(value, int) and not isinstance(value, bool):
        return _to_i32(value)
    return default


def _get_str(response: Any, key: str) -> str:
    value = response.get(key) if isinstance(response, dict) else None
    return value if isinstance(value, str) else ""


class JsonRpcClient:
    """Sends one JSON request per TCP connection and reads the reply to EOF."""

    def __init__(self, address: str) -> None:
        self._address = address
        self._connected = True

    @property
    def address(self) -> str:
        return self._address

    @classmethod
    async def connect(cls, address: str) -> "JsonRpcClient":
        """Check the server is reachable and return a client for it."""
        normalized = _normalize_address(address)
        host, port = await _resolve(normalized)
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), _CONNECT_TIMEOUT
            )
        except (OSError, asyncio.TimeoutError) as exc:
            raise JsonRpcClientError("Failed to connect to server") from exc
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return cls(normalized)

    def is_connected(self) -> bool:
        return self._connected

    async def _send_request(self, request: dict) -> Any:
        host, port = await _resolve(self._address)
        try:
            reader, writer = await asyncio.open_connection(host, port)
        except OSError as exc:
            raise JsonRpcClientError("Failed to connect to server") from exc
        try:
            try:
                writer.write(
                    json.dumps(request, separators=(",", ":"), sort_keys=True).encode()
                )
                await writer.drain()
            except OSError as exc:
                raise JsonRpcClientError("Failed to send request") from exc
            try:
                payload = await reader.read()
            except OSError as exc:
                raise JsonRpcClientError("Failed to read response") from exc
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass
        if not payload:
            raise JsonRpcClientError("Failed to read response")
        try:
            return json.loads(payload.decode("utf-8", errors="replace"))
        except ValueError as exc:
            raise JsonRpcClientError("Failed to parse response") from exc

    async def get_schema(self, db_identifier: str) -> SchemaResponse:
        response = await self._send_request(
            {"method": "get_schema", "db_identifier": db_identifier}
        )
        return SchemaResponse(
            schema_id=_get_str(response, "schema_id"),
            database_type=_get_str(response, "database_type"),
            generated_at=_get_str(response, "generated_at"),
        )

    async def execute_query(
        self, db_identifier: str, query: str, limit: int, timeout_seconds: int
    ) -> QueryResponse:
        response = await self._send_request(
            {
                "method": "execute_query",
                "db_identifier": db_identifier,
                "query": query,
                "limit": limit,
                "timeout_seconds": timeout_seconds,
            }
        )
        return QueryResponse(
            status=_get_int(response, "status", _STATUS_ERROR),
            row_count=_get_int(response, "row_count", 0),
            execution_ms=_get_int(response, "execution_ms", 0),
            error_message=_get_str(response, "error_message"),
            timestamp=_get_str(response, "timestamp"),
        )