# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/streamcache-python/LICENSE
# ==============================================================================

"""Push-source for one cached request.

A :class:`Stream` multicasts immutable snapshots to its observers and replays
the latest one to late subscribers.  Every emission goes through a single
accumulator (:meth:`Stream.emit`) which accepts either a new payload or a pure
function of the previous one, classifies the result, reports it to the owning
engine, and suppresses consecutive duplicates.

Subscriber bookkeeping is explicit.  Cacheable streams hold one internal
keep-alive subscription, so they count as *active* only above one subscriber;
cold streams notify the engine when their last subscriber leaves.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Mapping
import itertools
import logging
import math
from typing import Any

import anyio

from .envelope import Envelope, StreamType, Unknown, classify, split_included
from .errors import IdentityMismatchError
from .identity import StreamIdentity
from .utils.freeze import FrozenDict, deep_freeze
from .utils.logger import get_logger


Observer = Callable[[Any], None]
ErrorObserver = Callable[[BaseException], None]
Patch = Callable[[Any], Any]

StartHook = Callable[["Stream"], None]
SnapshotHook = Callable[["Stream", Envelope, tuple[FrozenDict, ...]], None]
IdleHook = Callable[["Stream"], None]

_UNSET: Any = object()


def _noop(_value: Any) -> None:
    return None


class Subscription:
    """Handle returned by :meth:`Stream.subscribe`."""

    __slots__ = ("_stream", "_token", "closed")

    def __init__(self, stream: "Stream", token: int | None) -> None:
        self._stream = stream
        self._token = token
        self.closed = token is None

    def unsubscribe(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._stream._detach(self._token)  # type: ignore[arg-type]

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unsubscribe()


class Stream:
    def __init__(
        self,
        identity: StreamIdentity,
        *,
        body: Any = None,
        on_start: StartHook,
        on_snapshot: SnapshotHook,
        on_idle: IdleHook,
        local_properties: Mapping[str, Any] | None = None,
        on_each_emit: Patch | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.identity = identity
        self.body = deep_freeze(body) if body is not None else None
        self.type = StreamType.UNKNOWN
        self.resource_ids: frozenset[str] = frozenset()
        self._on_start = on_start
        self._on_snapshot = on_snapshot
        self._on_idle = on_idle
        self._local_properties = deep_freeze(local_properties) if local_properties else None
        self._on_each_emit = on_each_emit
        self._logger = logger or get_logger("streamcache.stream")
        self._base: Any = _UNSET
        self._value: Any = _UNSET
        self._observers: dict[int, tuple[Observer, ErrorObserver | None]] = {}
        self._tokens = itertools.count()
        self._keep_alive: Subscription | None = None
        self._started = False
        self._closed = False
        self._issued = 0
        self._applied = 0

    def __repr__(self) -> str:
        return f"Stream({self.id!r}, type={self.type.value}, subscribers={self.subscriber_count})"

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def id(self) -> str:
        return self.identity.stream_id

    @property
    def endpoint(self) -> str:
        return self.identity.endpoint

    @property
    def query(self) -> FrozenDict | None:
        return self.identity.query

    @property
    def cacheable(self) -> bool:
        return self.identity.cacheable

    @property
    def subscriber_count(self) -> int:
        return len(self._observers)

    @property
    def is_active(self) -> bool:
        """At least one subscriber besides the internal keep-alive."""
        threshold = 1 if self._keep_alive is not None else 0
        return self.subscriber_count > threshold

    @property
    def has_value(self) -> bool:
        return self._value is not _UNSET

    @property
    def value(self) -> Any:
        """Latest snapshot, or ``None`` before the first emission."""
        return None if self._value is _UNSET else self._value

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Subscription lifecycle
    # ------------------------------------------------------------------

    def subscribe(self, on_next: Observer, on_error: ErrorObserver | None = None) -> Subscription:
        """Attach an observer.

        The first subscriber starts the stream (seed and/or fetch); later ones
        immediately receive the latest snapshot.  A closed stream only replays
        its final value: failed streams are never restarted.
        """
        if self._closed:
            if self.has_value:
                on_next(self._value)
            return Subscription(self, None)

        token = next(self._tokens)
        self._observers[token] = (on_next, on_error)
        if not self._started:
            self._started = True
            self._on_start(self)
        elif self.has_value:
            on_next(self._value)
        return Subscription(self, token)

    def keep_alive(self) -> None:
        """Hold an internal subscription so the stream stays warm."""
        if self._keep_alive is None and not self._closed:
            self._keep_alive = self.subscribe(_noop)

    def _detach(self, token: int) -> None:
        if self._observers.pop(token, None) is None:
            return
        if not self._observers and not self._closed:
            self._on_idle(self)

    def close(self) -> None:
        """Drop every observer; later emissions are ignored."""
        self._closed = True
        self._keep_alive = None
        self._observers.clear()

    async def values(self) -> AsyncIterator[Any]:
        """Iterate over snapshots until the stream fails or the caller stops."""
        send, receive = anyio.create_memory_object_stream[Any](math.inf)

        def _on_error(_exc: BaseException) -> None:
            send.close()

        subscription = self.subscribe(send.send_nowait, _on_error)
        try:
            async with receive:
                async for value in receive:
                    yield value
        finally:
            subscription.unsubscribe()
            send.close()

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def begin_fetch(self) -> int:
        """Reserve a sequence number for a fetch about to be issued."""
        self._issued += 1
        return self._issued

    def accept(self, sequence: int) -> bool:
        """Whether the response to fetch *sequence* may still be applied."""
        if self._closed or sequence < self._applied:
            return False
        self._applied = sequence
        return True

    def seed(self, payload: Any) -> bool:
        """Emit *payload* and discard responses of fetches issued before it."""
        self.accept(self.begin_fetch())
        return self.emit(payload)

    def patch(self, update: Any) -> bool:
        """Apply a locally derived *update*, superseding fetches already in flight.

        Functions are skipped while there is nothing to patch, and then leave
        pending fetches alone.
        """
        if callable(update) and (self._base is _UNSET or self._base is None):
            return False
        return self.seed(update)

    def emit(self, update: Any) -> bool:
        """Run *update* through the accumulator.

        *update* is either a payload or a pure function of the latest
        undecorated snapshot.  Functions are skipped while there is nothing to
        patch.  The resource index and the secondary indices see the payload
        as the API returned it; observers see it after ``local_properties``
        and ``on_each_emit`` were applied.  Returns ``True`` when observers
        were notified.
        """
        if self._closed:
            return False
        if callable(update):
            if self._base is _UNSET or self._base is None:
                return False
            update = update(self._base)

        payload, included = split_included(deep_freeze(update))
        envelope: Envelope
        try:
            envelope = classify(payload, stream_id=self.id)
        except IdentityMismatchError as exc:
            self._logger.warning("Identity mismatch, marking stream unknown: %s", exc)
            envelope = Unknown(payload)

        self.type = envelope.type
        self.resource_ids = envelope.resource_ids
        self._base = payload
        self._on_snapshot(self, envelope, included)

        view = self._decorate(payload)
        if self._value is not _UNSET and self._value == view:
            return False
        self._value = view
        for on_next, _ in list(self._observers.values()):
            try:
                on_next(view)
            except Exception:
                self._logger.exception("Observer of stream %s raised", self.id)
        return True

    def _decorate(self, payload: Any) -> Any:
        if payload is None:
            return None
        if self._local_properties and isinstance(payload, FrozenDict):
            data = payload.get("data")
            if isinstance(data, tuple):
                payload = payload.set("data", tuple(self._with_local_properties(item) for item in data))
            elif isinstance(data, Mapping):
                payload = payload.set("data", self._with_local_properties(data))
        if self._on_each_emit is not None:
            payload = deep_freeze(self._on_each_emit(payload))
        return payload

    def _with_local_properties(self, item: Any) -> Any:
        if not isinstance(item, Mapping):
            return item
        return FrozenDict({**item, **self._local_properties})

    def fail(self, exc: BaseException) -> None:
        """Emit the terminal ``None`` marker and notify error observers."""
        if self._closed:
            return
        self.emit(None)
        for _, on_error in list(self._observers.values()):
            if on_error is None:
                continue
            try:
                on_error(exc)
            except Exception:
                self._logger.exception("Error observer of stream %s raised", self.id)


__all__ = ["Stream", "Subscription", "Observer", "ErrorObserver"]
