# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/streamcache-python/LICENSE
# ==============================================================================

"""Client-side resource synchronization cache."""

from __future__ import annotations

from .config import EngineConfig
from .connection import open_engine
from .engine import StreamEngine
from .envelope import Collection, Single, StreamType, Unknown
from .errors import FieldError, IdentityMismatchError, StreamCacheError, TransportError, ValidationError
from .identity import StreamIdentity, resolve_identity
from .stream import Stream, Subscription
from .transport import HttpxTransport, Transport
from .utils import FrozenDict, deep_freeze, thaw


__all__ = [
    "EngineConfig",
    "StreamEngine",
    "open_engine",
    "Stream",
    "Subscription",
    "StreamIdentity",
    "resolve_identity",
    "StreamType",
    "Single",
    "Collection",
    "Unknown",
    "Transport",
    "HttpxTransport",
    "StreamCacheError",
    "TransportError",
    "ValidationError",
    "IdentityMismatchError",
    "FieldError",
    "FrozenDict",
    "deep_freeze",
    "thaw",
]
