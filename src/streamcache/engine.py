# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/streamcache-python/LICENSE
# ==============================================================================

"""Stream engine: the public surface of the cache.

Reads go through :meth:`StreamEngine.get`, which returns the shared
:class:`~streamcache.stream.Stream` for a request, creating and fetching it on
first use.  Writes go through :meth:`add`, :meth:`update` and :meth:`delete`,
which call the API and then propagate the result to every affected stream:

* when the new state is derivable locally (append to a plain collection,
  replace or remove a known resource) the cached snapshot is patched;
* otherwise (query-bearing or non-cacheable streams, unknown payload shapes)
  the stream is re-fetched.

:meth:`fetch_all_with` and :meth:`reset` cover bulk re-synchronization after
operations the patch rules cannot model and after identity changes.

The engine must be entered (``async with engine``) before use; it owns the
task group in which background fetches run.  All registry and index
mutations happen synchronously inside engine methods or fetch completions,
so no locking is needed under cooperative scheduling.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from contextlib import AsyncExitStack
from functools import partial
import logging
from typing import Any
import weakref

import anyio
import anyio.abc

from .config import EngineConfig
from .envelope import Collection, Envelope, Single, StreamType, has_id, split_included
from .errors import StreamCacheError, TransportError
from .identity import StreamIdentity, is_uuid, normalize_endpoint, resolve_identity
from .index import ResourceIndex
from .registry import StreamRegistry
from .stream import Stream
from .utils import deep_freeze, get_logger, maybe_await_with_args, thaw
from .utils.freeze import FrozenDict


def _append(resource: FrozenDict, snapshot: FrozenDict) -> FrozenDict:
    resource_id = str(resource["id"])
    kept = tuple(item for item in snapshot["data"] if str(item["id"]) != resource_id)
    return snapshot.set("data", (*kept, resource))


def _replace(resource_id: str, resource: FrozenDict, snapshot: FrozenDict) -> FrozenDict:
    return snapshot.set(
        "data", tuple(resource if str(item["id"]) == resource_id else item for item in snapshot["data"])
    )


def _remove(resource_id: str, snapshot: FrozenDict) -> FrozenDict:
    return snapshot.set("data", tuple(item for item in snapshot["data"] if str(item["id"]) != resource_id))


class StreamEngine:
    """Deduplicated, reference-counted, push-based resource cache."""

    def __init__(
        self,
        transport: Any,
        *,
        config: EngineConfig | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self._send: Callable[..., Any] = getattr(transport, "request", transport)
        self._registry = StreamRegistry()
        self._resources = ResourceIndex()
        self._parked: weakref.WeakValueDictionary[str, Stream] = weakref.WeakValueDictionary()
        self._logger = logger or get_logger("streamcache.engine")
        self._exit_stack: AsyncExitStack | None = None
        self._task_group: anyio.abc.TaskGroup | None = None
        self._in_flight = 0
        self._idle: anyio.Event | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "StreamEngine":
        if self._task_group is not None:
            raise RuntimeError("StreamEngine is already running")
        stack = AsyncExitStack()
        self._task_group = await stack.enter_async_context(anyio.create_task_group())
        self._exit_stack = stack
        self._idle = anyio.Event()
        self._idle.set()
        return self

    async def __aexit__(self, *exc_info: Any) -> bool | None:
        stack, task_group = self._exit_stack, self._task_group
        self._exit_stack = None
        self._task_group = None
        try:
            if task_group is not None:
                task_group.cancel_scope.cancel()
            if stack is not None:
                return await stack.__aexit__(*exc_info)
            return None
        finally:
            self._registry.clear()
            self._parked.clear()
            self._resources.clear()
            self._in_flight = 0

    @property
    def running(self) -> bool:
        return self._task_group is not None

    async def drain(self) -> None:
        """Wait until no fetch is in flight."""
        while self._in_flight and self._idle is not None:
            await self._idle.wait()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def stream_ids(self) -> frozenset[str]:
        return frozenset(stream.id for stream in self._registry)

    def stream(self, stream_id: str) -> Stream | None:
        return self._registry.get(stream_id)

    def cached(self, resource_id: str) -> FrozenDict | None:
        """Last known envelope for *resource_id* in the resource index."""
        return self._resources.read(resource_id)

    def index_snapshot(self) -> dict[str, dict[str, frozenset[str]]]:
        return self._registry.snapshot()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(
        self,
        endpoint: str,
        *,
        query: Mapping[str, Any] | None = None,
        body: Mapping[str, Any] | None = None,
        cacheable: bool = True,
        skip_sanitization_for: Iterable[str] = (),
        local_properties: Mapping[str, Any] | None = None,
        on_each_emit: Callable[[Any], Any] | None = None,
    ) -> Stream:
        """Return the shared stream for a read request.

        A fresh cacheable stream starts fetching right away and stays warm.
        A fresh non-cacheable stream is only registered once its first
        subscriber attaches, and is torn down when its last subscriber
        leaves; until then the engine holds it weakly.

        ``local_properties`` are merged into every resource the stream emits
        and ``on_each_emit`` transforms each emitted snapshot.  Both are fixed
        when the stream is created; later calls for the same request share
        the first caller's stream.
        """
        self._ensure_running()
        identity = resolve_identity(
            endpoint, query, cacheable=cacheable, skip_sanitization_for=skip_sanitization_for
        )
        build = partial(
            self._build_stream, body=body, local_properties=local_properties, on_each_emit=on_each_emit
        )
        if not identity.cacheable:
            return self._registry.get(identity.stream_id) or self._parked_stream(identity, build)

        stream, created = self._registry.get_or_create(identity, build)
        if created:
            stream.keep_alive()
        return stream

    async def invalidate(
        self,
        endpoint: str,
        *,
        query: Mapping[str, Any] | None = None,
        cacheable: bool = True,
        skip_sanitization_for: Iterable[str] = (),
    ) -> None:
        """Drop an idle stream, or re-fetch it when someone still listens."""
        self._ensure_running()
        identity = resolve_identity(
            endpoint, query, cacheable=cacheable, skip_sanitization_for=skip_sanitization_for
        )
        stream = self._registry.get(identity.stream_id)
        if stream is None:
            return
        if stream.is_active:
            await self._refetch_all([stream])
        else:
            self._registry.teardown(stream.id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def add(self, endpoint: str, body: Any, *, wait_for_refetches: bool = False) -> Any:
        """Create a resource and propagate it to the collections on *endpoint*.

        Cacheable query-less collections get the new resource appended;
        every other stream on the endpoint is re-fetched.

        Raises:
            ValidationError: The API rejected the body; no cache is touched.
            TransportError: The request failed; no cache is touched.
        """
        self._ensure_running()
        endpoint = normalize_endpoint(endpoint)
        response = await self._write(endpoint, body, method="POST")
        resource = self._absorb(response)

        refetch = self._registry.ids_for_endpoint(endpoint, with_query=True)
        for stream_id in sorted(self._registry.ids_for_endpoint(endpoint, with_query=False)):
            stream = self._registry.get(stream_id)
            if stream is None:
                continue
            if stream.cacheable and stream.type is StreamType.ARRAY_OF_OBJECTS and resource is not None:
                stream.patch(partial(_append, resource))
            else:
                refetch.add(stream_id)

        await self._propagate(refetch, wait_for_refetches)
        return response

    async def update(self, endpoint: str, resource_id: str, body: Any, *, wait_for_refetches: bool = False) -> Any:
        """Partially update a resource and propagate the new representation.

        Cacheable query-less streams holding the resource are patched in
        place; non-cacheable and query-bearing ones are re-fetched.

        Raises:
            ValidationError: The API rejected the body; no cache is touched.
            TransportError: The request failed; no cache is touched.
        """
        self._ensure_running()
        endpoint = normalize_endpoint(endpoint)
        resource_id = str(resource_id)
        response = await self._write(endpoint, body, method="PATCH")
        resource = self._absorb(response)
        payload, _ = split_included(response)

        refetch = self._query_streams_for(endpoint, resource_id)
        for stream_id in sorted(self._registry.ids_for_resource(resource_id)):
            stream = self._registry.get(stream_id)
            if stream is None:
                continue
            if resource is None or not stream.cacheable or stream.identity.is_query_stream:
                refetch.add(stream_id)
            elif stream.type is StreamType.SINGLE_OBJECT:
                stream.patch(payload)
            elif stream.type is StreamType.ARRAY_OF_OBJECTS:
                stream.patch(partial(_replace, resource_id, resource))
            else:
                refetch.add(stream_id)

        await self._propagate(refetch, wait_for_refetches)
        return response

    async def delete(self, endpoint: str, resource_id: str, *, wait_for_refetches: bool = False) -> Any:
        """Delete a resource and remove it from every stream that holds it.

        Collections drop the resource, single-item streams addressing it emit
        ``None``, and query-bearing streams on the endpoint are re-fetched.

        Raises:
            ValidationError: The API refused the deletion.
            TransportError: The request failed, including an already-absent id.
        """
        self._ensure_running()
        endpoint = normalize_endpoint(endpoint)
        resource_id = str(resource_id)
        response = await self._write(endpoint, None, method="DELETE")
        self._resources.discard(resource_id)

        refetch = self._query_streams_for(endpoint, resource_id)
        for stream_id in sorted(self._registry.ids_for_resource(resource_id)):
            stream = self._registry.get(stream_id)
            if stream is None:
                continue
            if stream.type is StreamType.SINGLE_OBJECT:
                stream.patch(None)
            elif stream.type is StreamType.ARRAY_OF_OBJECTS:
                stream.patch(partial(_remove, resource_id))
            else:
                refetch.add(stream_id)

        await self._propagate(refetch, wait_for_refetches)
        return response

    # ------------------------------------------------------------------
    # Bulk re-synchronization
    # ------------------------------------------------------------------

    async def fetch_all_with(
        self,
        *,
        data_ids: Iterable[str] = (),
        api_endpoints: Iterable[str] = (),
        partial_api_endpoints: Iterable[str] = (),
        only_fetch_active_streams: bool = False,
    ) -> None:
        """Re-fetch every stream touching the given resources or endpoints.

        Resolves the union of streams holding any of *data_ids*, streams on
        any of *api_endpoints*, and streams whose endpoint contains any of
        *partial_api_endpoints*, then awaits all re-fetches in parallel.
        """
        self._ensure_running()
        stream_ids: set[str] = set()
        for resource_id in data_ids:
            stream_ids |= self._registry.ids_for_resource(str(resource_id))
        for endpoint in api_endpoints:
            stream_ids |= self._registry.ids_for_endpoint(normalize_endpoint(endpoint))
        for fragment in partial_api_endpoints:
            stream_ids |= self._registry.ids_matching_endpoint(fragment)

        streams = self._resolve(stream_ids)
        if only_fetch_active_streams:
            streams = [stream for stream in streams if stream.is_active]
        await self._refetch_all(streams)

    async def reset(self, current_user: Any = None) -> None:
        """Re-scope the cache to a new identity.

        The auth stream is re-seeded with *current_user*; the tenant stream
        and every stream with a live subscriber are re-fetched; everything
        else is torn down.  The resource index is emptied first so no data
        from the previous identity can seed a later read.
        """
        self._ensure_running()
        self._resources.clear()
        auth_id = resolve_identity(self.config.auth_endpoint).stream_id
        tenant_id = resolve_identity(self.config.tenant_endpoint).stream_id

        refetch: list[Stream] = []
        for stream in self._registry:
            if stream.id == auth_id:
                stream.seed(current_user)
            elif stream.id == tenant_id or stream.is_active:
                refetch.append(stream)
            else:
                self._registry.teardown(stream.id)

        self._logger.info(
            "Reset cache: re-fetching %d stream(s), keeping %d", len(refetch), len(self._registry)
        )
        await self._refetch_all(refetch)

    # ------------------------------------------------------------------
    # Stream hooks
    # ------------------------------------------------------------------

    def _build_stream(
        self,
        identity: StreamIdentity,
        *,
        body: Any,
        local_properties: Mapping[str, Any] | None,
        on_each_emit: Callable[[Any], Any] | None,
    ) -> Stream:
        return Stream(
            identity,
            body=body,
            local_properties=local_properties,
            on_each_emit=on_each_emit,
            on_start=self._start_stream,
            on_snapshot=self._record_snapshot,
            on_idle=self._release_stream,
        )

    def _parked_stream(self, identity: StreamIdentity, build: Callable[[StreamIdentity], Stream]) -> Stream:
        stream = self._parked.get(identity.stream_id)
        if stream is None:
            stream = build(identity)
            self._parked[identity.stream_id] = stream
        return stream

    def _start_stream(self, stream: Stream) -> None:
        identity = stream.identity
        if self._parked.get(stream.id) is stream:
            del self._parked[stream.id]
            self._registry.get_or_create(identity, lambda _identity: stream)
        if identity.cacheable and identity.is_single_item:
            seed = self._resources.read(identity.last_segment)
            if seed is not None:
                stream.emit(seed)
        self._schedule_fetch(stream)

    def _record_snapshot(self, stream: Stream, envelope: Envelope, included: tuple[FrozenDict, ...]) -> None:
        if self._registry.get(stream.id) is not stream:
            return
        self._registry.record_snapshot(stream.id, envelope.resource_ids)
        if isinstance(envelope, Single):
            self._resources.write_resources((envelope.resource,))
        elif isinstance(envelope, Collection):
            self._resources.write_resources(envelope.resources)
        self._resources.write_resources(included)

    def _release_stream(self, stream: Stream) -> None:
        if not stream.cacheable and self._registry.get(stream.id) is stream:
            self._registry.teardown(stream.id)

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    def _ensure_running(self) -> None:
        if self._task_group is None:
            raise RuntimeError("StreamEngine is not running; enter it with 'async with'")

    def _begin_work(self) -> None:
        if self._in_flight == 0:
            self._idle = anyio.Event()
        self._in_flight += 1

    def _end_work(self) -> None:
        self._in_flight = max(self._in_flight - 1, 0)
        if self._in_flight == 0 and self._idle is not None:
            self._idle.set()

    def _schedule_fetch(self, stream: Stream) -> None:
        assert self._task_group is not None
        self._begin_work()
        self._task_group.start_soon(self._fetch, stream, name=f"fetch {stream.id}")

    async def _refetch_all(self, streams: Iterable[Stream]) -> None:
        pending = list(streams)
        if not pending:
            return
        for _ in pending:
            self._begin_work()
        async with anyio.create_task_group() as tg:
            for stream in pending:
                tg.start_soon(self._fetch, stream, name=f"refetch {stream.id}")

    async def _propagate(self, stream_ids: Iterable[str], wait: bool) -> None:
        streams = self._resolve(stream_ids)
        if wait:
            await self._refetch_all(streams)
            return
        for stream in streams:
            self._schedule_fetch(stream)

    async def _fetch(self, stream: Stream) -> None:
        sequence = stream.begin_fetch()
        try:
            try:
                payload = await self._request_with_retry(
                    stream.endpoint,
                    thaw(stream.body) if stream.body is not None else None,
                    method="GET",
                    query=thaw(stream.query) if stream.query is not None else None,
                )
            except StreamCacheError as exc:
                if self._registry.get(stream.id) is not stream or not stream.accept(sequence):
                    return
                self._logger.error(
                    "Fetch of stream %s failed: %s",
                    stream.id,
                    exc,
                    extra={"context": {"stream_id": stream.id, "endpoint": stream.endpoint}},
                )
                stream.fail(exc)
                self._registry.teardown(stream.id)
                return

            if self._registry.get(stream.id) is not stream:
                self._logger.debug("Discarding response for torn-down stream %s", stream.id)
                return
            if not stream.accept(sequence):
                self._logger.debug("Discarding superseded response for stream %s", stream.id)
                return
            stream.emit(payload)
        finally:
            self._end_work()

    async def _request_with_retry(self, endpoint: str, body: Any, *, method: str, query: Any) -> Any:
        attempt = 0
        while True:
            try:
                return await self._request(endpoint, body, method=method, query=query)
            except TransportError as exc:
                if attempt >= self.config.retries:
                    raise
                attempt += 1
                self._logger.warning(
                    "%s %s failed (%s); retry %d/%d", method, endpoint, exc, attempt, self.config.retries
                )
                if self.config.retry_backoff:
                    await anyio.sleep(self.config.retry_backoff * 2 ** (attempt - 1))

    async def _request(self, endpoint: str, body: Any, *, method: str, query: Any = None) -> Any:
        try:
            return await maybe_await_with_args(self._send, endpoint, body, method=method, query=query)
        except StreamCacheError:
            raise
        except Exception as exc:
            raise TransportError(f"{method} {endpoint} failed: {exc}") from exc

    async def _write(self, endpoint: str, body: Any, *, method: str) -> Any:
        return deep_freeze(await self._request(endpoint, thaw(body), method=method))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _absorb(self, response: Any) -> FrozenDict | None:
        """Index the resource and side-loads of a write response; return the resource."""
        payload, included = split_included(response)
        self._resources.write_resources(included)
        resource = payload.get("data") if isinstance(payload, Mapping) else None
        if not has_id(resource):
            return None
        self._resources.write_resources((resource,))
        return resource

    def _query_streams_for(self, endpoint: str, resource_id: str) -> set[str]:
        """Query-bearing streams on *endpoint* and on its collection endpoint."""
        stream_ids = self._registry.ids_for_endpoint(endpoint, with_query=True)
        collection, _, last = endpoint.rpartition("/")
        if collection and (last == resource_id or is_uuid(last)):
            stream_ids |= self._registry.ids_for_endpoint(collection, with_query=True)
        return stream_ids

    def _resolve(self, stream_ids: Iterable[str]) -> list[Stream]:
        return [stream for stream_id in sorted(stream_ids) if (stream := self._registry.get(stream_id)) is not None]


__all__ = ["StreamEngine"]
