# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/streamcache-python/LICENSE
# ==============================================================================

"""Immutable JSON values.

Snapshots handed to subscribers are shared by every consumer of a stream, so
they must not be mutable by reference.  :func:`deep_freeze` converts decoded
JSON into read-only containers: objects become :class:`FrozenDict` and arrays
become tuples.  Patches build new values from old ones instead of editing
them in place.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any


class FrozenDict(Mapping[str, Any]):
    """Hashable, read-only mapping.

    Compares equal to any mapping with the same items, so tests and callers
    can compare snapshots against plain ``dict`` literals.
    """

    __slots__ = ("_data", "_hash")

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self._data: dict[str, Any] = dict(*args, **kwargs)
        self._hash: int | None = None

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, FrozenDict):
            return self._data == other._data
        if isinstance(other, Mapping):
            return self._data == dict(other)
        return NotImplemented

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash(frozenset(self._data.items()))
        return self._hash

    def __repr__(self) -> str:
        return f"FrozenDict({self._data!r})"

    def set(self, key: str, value: Any) -> "FrozenDict":
        """Return a copy with *key* bound to *value*."""
        return FrozenDict({**self._data, key: deep_freeze(value)})

    def discard(self, key: str) -> "FrozenDict":
        """Return a copy without *key*."""
        if key not in self._data:
            return self
        return FrozenDict({k: v for k, v in self._data.items() if k != key})


def deep_freeze(value: Any) -> Any:
    if isinstance(value, FrozenDict):
        return value
    if isinstance(value, Mapping):
        return FrozenDict({key: deep_freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(deep_freeze(item) for item in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(deep_freeze(item) for item in value)
    return value


def thaw(value: Any) -> Any:
    """Return a mutable deep copy of a frozen value."""
    if isinstance(value, Mapping):
        return {key: thaw(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [thaw(item) for item in value]
    if isinstance(value, frozenset):
        return {thaw(item) for item in value}
    return value


__all__ = ["FrozenDict", "deep_freeze", "thaw"]
