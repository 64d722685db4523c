# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/streamcache-python/LICENSE
# ==============================================================================

"""Stream identity.

A stream id is the canonical key of one ``(endpoint, query, cacheable)``
triple.  Logically equal requests must map to the same id regardless of key
order or empty filler values, and distinct requests must never collide:

* the endpoint loses its trailing slash;
* query members that are ``None``, ``""``, empty lists or empty objects are
  dropped (recursively), unless named in ``skip_sanitization_for``;
* the surviving query is serialized with sorted keys;
* non-cacheable streams get a ``|cached=false`` suffix so they never share an
  entry with a cacheable twin.

Free-text searches are never cacheable, whatever the caller asked for.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
import re
from typing import Any, Final

import orjson as oj

from .utils.freeze import FrozenDict, deep_freeze


UUID_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
SEARCH_KEY: Final[str] = "search"
NON_CACHEABLE_SUFFIX: Final[str] = "|cached=false"


@dataclass(frozen=True, slots=True)
class StreamIdentity:
    stream_id: str
    endpoint: str
    query: FrozenDict | None
    cacheable: bool

    @property
    def is_query_stream(self) -> bool:
        return self.query is not None

    @property
    def last_segment(self) -> str:
        return self.endpoint.rsplit("/", 1)[-1]

    @property
    def is_single_item(self) -> bool:
        """True when the endpoint addresses one resource by UUID."""
        return self.query is None and is_uuid(self.last_segment)


def is_uuid(value: str) -> bool:
    return bool(UUID_PATTERN.match(value))


def normalize_endpoint(endpoint: str) -> str:
    stripped = endpoint.strip()
    if not stripped:
        raise ValueError("endpoint must be a non-empty string")
    return stripped.rstrip("/") or "/"


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, set, frozenset, Mapping)):
        return len(value) == 0
    return False


def _sanitize_value(value: Any, keep: frozenset[str]) -> Any:
    if isinstance(value, Mapping):
        return sanitize_query(value, keep)
    if isinstance(value, (list, tuple)):
        cleaned = (_sanitize_value(item, keep) for item in value)
        return [item for item in cleaned if not _is_empty(item)]
    return value


def sanitize_query(query: Mapping[str, Any] | None, skip_sanitization_for: Iterable[str] = ()) -> dict[str, Any]:
    """Drop empty members from *query*, recursing into nested objects and lists.

    Keys named in *skip_sanitization_for* survive with their value untouched
    at any nesting depth.
    """
    if not query:
        return {}
    keep = frozenset(skip_sanitization_for)
    sanitized: dict[str, Any] = {}
    for key, value in query.items():
        if key in keep:
            sanitized[key] = value
            continue
        cleaned = _sanitize_value(value, keep)
        if not _is_empty(cleaned):
            sanitized[key] = cleaned
    return sanitized


def is_search_query(query: Mapping[str, Any] | None) -> bool:
    return bool(query) and not _is_empty(query.get(SEARCH_KEY))  # type: ignore[union-attr]


def serialize_query(query: Mapping[str, Any]) -> str:
    return oj.dumps(query, option=oj.OPT_SORT_KEYS | oj.OPT_NON_STR_KEYS, default=_json_default).decode()


def _json_default(value: Any) -> Any:
    if isinstance(value, FrozenDict):
        return dict(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    raise TypeError(f"query value of type {type(value).__name__} is not serializable")


def resolve_identity(
    endpoint: str,
    query: Mapping[str, Any] | None = None,
    *,
    cacheable: bool = True,
    skip_sanitization_for: Iterable[str] = (),
) -> StreamIdentity:
    """Compute the :class:`StreamIdentity` of a read request.

    Pure function of its inputs; calling it twice with logically equal
    arguments yields identical identities.
    """
    normalized = normalize_endpoint(endpoint)
    sanitized = sanitize_query(query, skip_sanitization_for)
    resolved_cacheable = cacheable and not is_search_query(sanitized)

    stream_id = f"{normalized}?{serialize_query(sanitized)}" if sanitized else normalized
    if not resolved_cacheable:
        stream_id += NON_CACHEABLE_SUFFIX

    return StreamIdentity(
        stream_id=stream_id,
        endpoint=normalized,
        query=deep_freeze(sanitized) if sanitized else None,
        cacheable=resolved_cacheable,
    )


__all__ = [
    "StreamIdentity",
    "is_uuid",
    "normalize_endpoint",
    "resolve_identity",
    "sanitize_query",
    "serialize_query",
]
