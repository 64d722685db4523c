# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/streamcache-python/LICENSE
# ==============================================================================

"""Payload classification.

API responses are JSON:API-style documents: ``{"data": ..., "included": [...],
"links": {...}}``.  Each emission is classified exactly once into a tagged
union so patch logic never has to re-inspect the payload's shape:

* :class:`Single` – ``data`` is one object with an ``id``;
* :class:`Collection` – ``data`` is a list of objects that all carry an ``id``;
* :class:`Unknown` – anything else (including ``None``).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from .errors import IdentityMismatchError
from .utils.freeze import FrozenDict


class StreamType(str, Enum):
    SINGLE_OBJECT = "singleObject"
    ARRAY_OF_OBJECTS = "arrayOfObjects"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class Single:
    resource: FrozenDict

    type = StreamType.SINGLE_OBJECT

    @property
    def resource_ids(self) -> frozenset[str]:
        return frozenset((str(self.resource["id"]),))


@dataclass(frozen=True, slots=True)
class Collection:
    resources: tuple[FrozenDict, ...]

    type = StreamType.ARRAY_OF_OBJECTS

    @property
    def resource_ids(self) -> frozenset[str]:
        return frozenset(str(resource["id"]) for resource in self.resources)


@dataclass(frozen=True, slots=True)
class Unknown:
    payload: Any = None

    type = StreamType.UNKNOWN

    @property
    def resource_ids(self) -> frozenset[str]:
        return frozenset()


Envelope = Union[Single, Collection, Unknown]


def has_id(item: Any) -> bool:
    return isinstance(item, Mapping) and item.get("id") not in (None, "")


def classify(payload: Any, *, stream_id: str | None = None) -> Envelope:
    """Classify a frozen payload.

    Raises:
        IdentityMismatchError: ``data`` holds resources without an ``id``.
    """
    if not isinstance(payload, Mapping) or "data" not in payload:
        return Unknown(payload)

    data = payload["data"]
    if isinstance(data, tuple):
        if not all(has_id(item) for item in data):
            raise IdentityMismatchError(stream_id, "collection member without id")
        return Collection(data)
    if isinstance(data, Mapping):
        if not has_id(data):
            raise IdentityMismatchError(stream_id, "resource without id")
        return Single(data)  # type: ignore[arg-type]
    return Unknown(payload)


def split_included(payload: Any) -> tuple[Any, tuple[FrozenDict, ...]]:
    """Detach side-loaded resources from *payload*.

    Returns the payload without its ``included`` member together with the
    included resources that carry an ``id``.
    """
    if not isinstance(payload, FrozenDict) or "included" not in payload:
        return payload, ()
    included = payload["included"] or ()
    return payload.discard("included"), tuple(item for item in included if has_id(item))


__all__ = ["StreamType", "Single", "Collection", "Unknown", "Envelope", "classify", "has_id", "split_included"]
