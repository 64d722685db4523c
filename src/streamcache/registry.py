# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/streamcache-python/LICENSE
# ==============================================================================

"""Stream registry and secondary indices.

The registry owns every live stream, keyed by stream id, plus four reverse
indices used to target invalidation:

* endpoint → stream ids, split by whether the stream carries a query;
* resource id → stream ids, split the same way.

A stream id appears under a resource id if and only if the stream's most
recent snapshot contains that resource.  :meth:`StreamRegistry.record_snapshot`
diffs each emission against the previous one so stale entries are pruned on
every emission rather than only at teardown.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable

from .identity import StreamIdentity
from .stream import Stream
from .utils.logger import get_logger


_Index = defaultdict[str, set[str]]


def _link(index: _Index, key: str, stream_id: str) -> None:
    index[key].add(stream_id)


def _unlink(index: _Index, key: str, stream_id: str) -> None:
    members = index.get(key)
    if members is None:
        return
    members.discard(stream_id)
    if not members:
        del index[key]


class StreamRegistry:
    def __init__(self) -> None:
        self._streams: dict[str, Stream] = {}
        self._recorded: dict[str, frozenset[str]] = {}
        self._by_endpoint_with_query: _Index = defaultdict(set)
        self._by_endpoint_without_query: _Index = defaultdict(set)
        self._by_resource_with_query: _Index = defaultdict(set)
        self._by_resource_without_query: _Index = defaultdict(set)
        self._logger = get_logger("streamcache.registry")

    def __len__(self) -> int:
        return len(self._streams)

    def __contains__(self, stream_id: object) -> bool:
        return stream_id in self._streams

    def __iter__(self):
        return iter(list(self._streams.values()))

    def get(self, stream_id: str) -> Stream | None:
        return self._streams.get(stream_id)

    def get_or_create(self, identity: StreamIdentity, factory: Callable[[StreamIdentity], Stream]) -> tuple[Stream, bool]:
        """Return the stream for *identity*, building it with *factory* if absent."""
        existing = self._streams.get(identity.stream_id)
        if existing is not None:
            return existing, False

        stream = factory(identity)
        self._streams[identity.stream_id] = stream
        self._recorded[identity.stream_id] = frozenset()
        _link(self._endpoint_index(stream), stream.endpoint, stream.id)
        self._logger.debug("Created stream %s", stream.id)
        return stream, True

    def record_snapshot(self, stream_id: str, resource_ids: Iterable[str]) -> None:
        stream = self._streams.get(stream_id)
        if stream is None:
            return
        current = frozenset(resource_ids)
        previous = self._recorded.get(stream_id, frozenset())
        if current == previous:
            return

        index = self._resource_index(stream)
        for resource_id in previous - current:
            _unlink(index, resource_id, stream_id)
        for resource_id in current - previous:
            _link(index, resource_id, stream_id)
        self._recorded[stream_id] = current

    def teardown(self, stream_id: str) -> Stream | None:
        """Remove a stream from the registry and every index it appears in."""
        stream = self._streams.pop(stream_id, None)
        if stream is None:
            return None

        for resource_id in self._recorded.pop(stream_id, frozenset()):
            _unlink(self._resource_index(stream), resource_id, stream_id)
        _unlink(self._endpoint_index(stream), stream.endpoint, stream_id)
        stream.close()
        self._logger.debug("Tore down stream %s", stream_id)
        return stream

    def is_active(self, stream_id: str) -> bool:
        stream = self._streams.get(stream_id)
        return stream is not None and stream.is_active

    def clear(self) -> None:
        for stream_id in list(self._streams):
            self.teardown(stream_id)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def ids_for_endpoint(self, endpoint: str, *, with_query: bool | None = None) -> set[str]:
        """Stream ids on *endpoint*; ``with_query=None`` means both kinds."""
        ids: set[str] = set()
        if with_query in (True, None):
            ids |= self._by_endpoint_with_query.get(endpoint, set())
        if with_query in (False, None):
            ids |= self._by_endpoint_without_query.get(endpoint, set())
        return ids

    def ids_for_resource(self, resource_id: str, *, with_query: bool | None = None) -> set[str]:
        ids: set[str] = set()
        if with_query in (True, None):
            ids |= self._by_resource_with_query.get(resource_id, set())
        if with_query in (False, None):
            ids |= self._by_resource_without_query.get(resource_id, set())
        return ids

    def ids_matching_endpoint(self, fragment: str) -> set[str]:
        """Stream ids whose endpoint contains *fragment*."""
        return {stream.id for stream in self._streams.values() if fragment in stream.endpoint}

    def snapshot(self) -> dict[str, dict[str, frozenset[str]]]:
        """Copy of the four indices, for debugging and tests."""

        def _copy(index: _Index) -> dict[str, frozenset[str]]:
            return {key: frozenset(members) for key, members in index.items()}

        return {
            "endpoint_with_query": _copy(self._by_endpoint_with_query),
            "endpoint_without_query": _copy(self._by_endpoint_without_query),
            "resource_with_query": _copy(self._by_resource_with_query),
            "resource_without_query": _copy(self._by_resource_without_query),
        }

    def _endpoint_index(self, stream: Stream) -> _Index:
        return self._by_endpoint_with_query if stream.identity.is_query_stream else self._by_endpoint_without_query

    def _resource_index(self, stream: Stream) -> _Index:
        return self._by_resource_with_query if stream.identity.is_query_stream else self._by_resource_without_query


__all__ = ["StreamRegistry"]
