# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/streamcache-python/LICENSE
# ==============================================================================

"""Request transports.

The engine only needs one coroutine per HTTP call::

    await transport.request(endpoint, body, method="GET", query={...})

:class:`HttpxTransport` implements it on top of :class:`httpx.AsyncClient` for
JSON APIs that follow Rails conventions: bracketed query parameters and
``422`` responses carrying ``{"errors": {field: [{"error": ...}]}}``.  Any
object with a compatible ``request`` method, or a bare callable with the same
signature, can be handed to the engine instead.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

import httpx
import orjson as oj
from pydantic import ValidationError as PydanticValidationError

from .errors import TransportError, ValidationError


@runtime_checkable
class Transport(Protocol):
    async def request(
        self,
        endpoint: str,
        body: Any,
        *,
        method: str,
        query: Mapping[str, Any] | None = None,
    ) -> Any:  # pragma: no cover - protocol
        ...


def encode_query(query: Mapping[str, Any] | None, prefix: str | None = None) -> list[tuple[str, str]]:
    """Flatten *query* into Rails-style pairs.

    ``{"page": {"size": 2}, "ids": ["a", "b"]}`` becomes
    ``[("page[size]", "2"), ("ids[]", "a"), ("ids[]", "b")]``.
    """
    pairs: list[tuple[str, str]] = []
    if not query:
        return pairs
    for key, value in query.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if isinstance(value, Mapping):
            pairs.extend(encode_query(value, name))
        elif isinstance(value, (list, tuple)):
            pairs.extend((f"{name}[]", _scalar(item)) for item in value)
        elif value is not None:
            pairs.append((name, _scalar(value)))
    return pairs


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class HttpxTransport:
    """JSON transport backed by a shared :class:`httpx.AsyncClient`."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float = 30,
    ) -> None:
        if client is None and base_url is None:
            raise ValueError("either base_url or client is required")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url or "", timeout=timeout)
        self._headers = {"Accept": "application/json", **(headers or {})}

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpxTransport":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def request(
        self,
        endpoint: str,
        body: Any,
        *,
        method: str,
        query: Mapping[str, Any] | None = None,
    ) -> Any:
        headers = dict(self._headers)
        content: bytes | None = None
        if body is not None:
            content = oj.dumps(body)
            headers["Content-Type"] = "application/json"

        try:
            response = await self._client.request(
                method,
                endpoint,
                params=encode_query(query) or None,
                content=content,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {endpoint} failed: {exc}") from exc

        payload = _decode(response)
        if response.is_success:
            return payload
        raise _error_for(method, endpoint, response.status_code, payload)


def _decode(response: httpx.Response) -> Any:
    if response.status_code == 204 or not response.content:
        return None
    try:
        return oj.loads(response.content)
    except oj.JSONDecodeError:
        if response.is_success:
            raise TransportError(
                f"response from {response.request.url} is not JSON", status=response.status_code
            ) from None
        return None


def _error_for(method: str, endpoint: str, status: int, payload: Any) -> Exception:
    errors = payload.get("errors") if isinstance(payload, Mapping) else None
    if 400 <= status < 500 and isinstance(errors, Mapping):
        try:
            return ValidationError(errors, status=status)
        except PydanticValidationError:
            pass
    return TransportError(f"{method} {endpoint} returned {status}", status=status, payload=payload)


__all__ = ["Transport", "HttpxTransport", "encode_query"]
