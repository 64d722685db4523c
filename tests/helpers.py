# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/streamcache-python/LICENSE
# ==============================================================================

"""Shared test doubles for engine tests."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import copy
from dataclasses import dataclass
import json
from typing import Any

import anyio
import anyio.lowlevel

from streamcache import EngineConfig, StreamEngine
from streamcache.errors import TransportError


PROJECT_A = "0f8fad5b-d9cb-469f-a165-70867728950e"
PROJECT_B = "7c9e6679-7425-40de-944b-e07fc1f90ae7"
PROJECT_C = "c9bf9e57-1685-4c89-bafb-ff5af830be8a"
PROJECT_D = "16fd2706-8baf-433b-82eb-8c7fada847da"


def project(resource_id: str, title: str = "Untitled") -> dict[str, Any]:
    return {"id": resource_id, "type": "project", "attributes": {"title": title}}


def collection(*resources: dict[str, Any], **extra: Any) -> dict[str, Any]:
    return {"data": list(resources), **extra}


def single(resource: dict[str, Any], **extra: Any) -> dict[str, Any]:
    return {"data": resource, **extra}


def _query_key(query: Any) -> str | None:
    return json.dumps(query, sort_keys=True) if query else None


@dataclass
class Call:
    method: str
    endpoint: str
    body: Any
    query: Any


class FakeTransport:
    """In-memory API that records calls and replays programmed responses.

    Each route holds a queue of responses; the last one repeats.  A response
    may be a payload, an exception instance (raised), or a callable receiving
    the :class:`Call`.  Routes can be gated so responses wait for a test to
    release them.
    """

    def __init__(self) -> None:
        self.calls: list[Call] = []
        self._routes: dict[tuple[str, str, str | None], list[Any]] = {}
        self._gates: dict[tuple[str, str], anyio.Event] = {}

    def on(self, method: str, endpoint: str, *responses: Any, query: Any = None) -> "FakeTransport":
        self._routes[(method, endpoint, _query_key(query))] = list(responses)
        return self

    def gate(self, method: str, endpoint: str) -> anyio.Event:
        event = anyio.Event()
        self._gates[(method, endpoint)] = event
        return event

    def count(self, method: str, endpoint: str | None = None) -> int:
        return sum(1 for call in self.calls if call.method == method and endpoint in (None, call.endpoint))

    async def request(self, endpoint: str, body: Any, *, method: str, query: Any = None) -> Any:
        call = Call(method, endpoint, copy.deepcopy(body), copy.deepcopy(query))
        self.calls.append(call)
        await anyio.lowlevel.checkpoint()

        gate = self._gates.get((method, endpoint))
        if gate is not None:
            await gate.wait()

        responses = self._routes.get((method, endpoint, _query_key(query)))
        if responses is None:
            responses = self._routes.get((method, endpoint, None))
        if not responses:
            raise TransportError(f"no route for {method} {endpoint}", status=404)

        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            response = response(call)
        return copy.deepcopy(response)


@asynccontextmanager
async def running_engine(transport: FakeTransport, **config: Any) -> AsyncIterator[StreamEngine]:
    async with StreamEngine(transport, config=EngineConfig(**config)) as engine:
        yield engine


class Recorder:
    """Observer collecting every value and error it receives."""

    def __init__(self) -> None:
        self.values: list[Any] = []
        self.errors: list[BaseException] = []

    def __call__(self, value: Any) -> None:
        self.values.append(value)

    def on_error(self, exc: BaseException) -> None:
        self.errors.append(exc)

    @property
    def last(self) -> Any:
        return self.values[-1]
