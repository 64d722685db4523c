# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/streamcache-python/LICENSE
# ==============================================================================

"""High-level entrypoint.

:func:`open_engine` wires an HTTPX client, an :class:`HttpxTransport` and a
running :class:`StreamEngine` together so applications can start caching with
a single ``async with`` block.  Leaving the block cancels in-flight fetches,
discards every stream and closes the HTTP client.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable, Mapping
from contextlib import asynccontextmanager

import httpx

from .config import EngineConfig
from .engine import StreamEngine
from .transport import HttpxTransport


def _default_client_factory(**kwargs) -> httpx.AsyncClient:
    return httpx.AsyncClient(**kwargs)


@asynccontextmanager
async def open_engine(
    base_url: str,
    *,
    headers: Mapping[str, str] | None = None,
    timeout: float = 30,
    auth: httpx.Auth | None = None,
    config: EngineConfig | None = None,
    httpx_client_factory: Callable[..., httpx.AsyncClient] = _default_client_factory,
) -> AsyncGenerator[StreamEngine, None]:
    """Open a running stream engine against *base_url*.

    Args:
        base_url: API root, for example ``"https://demo.example.org"``.
        headers: Extra headers sent with every request.
        timeout: Per-request timeout in seconds.
        auth: Optional HTTPX authentication handler.
        config: Engine configuration; defaults to :meth:`EngineConfig.from_env`.
        httpx_client_factory: Builds the ``httpx.AsyncClient``; tests pass one
            bound to ``httpx.MockTransport``.

    Yields:
        StreamEngine: An engine ready for ``get`` and mutations.
    """
    async with httpx_client_factory(base_url=base_url, timeout=timeout, auth=auth) as client:
        transport = HttpxTransport(client=client, headers=headers)
        async with StreamEngine(transport, config=config or EngineConfig.from_env()) as engine:
            yield engine


__all__ = ["open_engine"]
