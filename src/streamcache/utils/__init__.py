# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/streamcache-python/LICENSE
# ==============================================================================

"""Utility helpers for streamcache."""

from __future__ import annotations

from .coro import maybe_await, maybe_await_with_args
from .freeze import FrozenDict, deep_freeze, thaw
from .logger import get_logger, setup_logger


__all__ = [
    "FrozenDict",
    "deep_freeze",
    "thaw",
    "get_logger",
    "setup_logger",
    "maybe_await",
    "maybe_await_with_args",
]
