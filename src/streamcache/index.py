# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/streamcache-python/LICENSE
# ==============================================================================

"""Resource index: last known ``{"data": resource}`` envelope per resource id.

Entries seed single-item streams before their fetch resolves
(stale-while-revalidate) and receive side-loaded ``included`` resources.
Writes only come from authoritative responses or from snapshots derived from
validated mutation responses, so the policy is last-writer-wins.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from .utils.freeze import FrozenDict, deep_freeze


class ResourceIndex:
    def __init__(self) -> None:
        self._entries: dict[str, FrozenDict] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self._entries

    def write(self, resource_id: str, envelope: Mapping[str, Any]) -> FrozenDict:
        frozen = deep_freeze(envelope)
        self._entries[str(resource_id)] = frozen
        return frozen

    def write_resources(self, resources: Iterable[Mapping[str, Any]]) -> None:
        """Store each resource under its own id, wrapped in an envelope."""
        for resource in resources:
            self.write(str(resource["id"]), {"data": resource})

    def read(self, resource_id: str) -> FrozenDict | None:
        return self._entries.get(resource_id)

    def discard(self, resource_id: str) -> None:
        self._entries.pop(resource_id, None)

    def clear(self) -> None:
        self._entries.clear()


__all__ = ["ResourceIndex"]
