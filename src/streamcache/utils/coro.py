# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/streamcache-python/LICENSE
# ==============================================================================

"""Helpers for calling user-supplied callables that may or may not be async."""

from __future__ import annotations

from collections.abc import Callable
import inspect
from typing import Any


async def maybe_await(value: Any) -> Any:
    """Await *value* if it is awaitable, otherwise return it unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value


async def maybe_await_with_args(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Call *fn* and await the result when it produced an awaitable."""
    return await maybe_await(fn(*args, **kwargs))


__all__ = ["maybe_await", "maybe_await_with_args"]
