# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/streamcache-python/LICENSE
# ==============================================================================

"""Bulk re-synchronization: fetch_all_with, reset and invalidate."""

from __future__ import annotations

import logging

import pytest

from tests.helpers import (
    PROJECT_A,
    PROJECT_B,
    PROJECT_C,
    PROJECT_D,
    FakeTransport,
    Recorder,
    collection,
    project,
    running_engine,
    single,
)


AUTH = "/web_api/v1/users/me"
TENANT = "/web_api/v1/app_configuration"


def user(user_id: str) -> dict:
    return single({"id": user_id, "type": "user", "attributes": {"email": f"{user_id}@example.org"}})


@pytest.fixture
def api(transport: FakeTransport) -> FakeTransport:
    transport.on("GET", "/projects", collection(project(PROJECT_A), project(PROJECT_B), project(PROJECT_C)))
    transport.on("GET", "/projects", collection(project(PROJECT_C), project(PROJECT_A)), query={"sort": "new"})
    transport.on("GET", f"/projects/{PROJECT_B}", single(project(PROJECT_B)))
    transport.on("GET", "/users", collection({"id": "u1", "type": "user"}))
    return transport


async def _open_streams(engine) -> None:
    engine.get("/projects")
    engine.get("/projects", query={"sort": "new"})
    engine.get(f"/projects/{PROJECT_B}")
    engine.get("/users")
    await engine.drain()


@pytest.mark.anyio
async def test_fetch_all_with_data_ids(api: FakeTransport) -> None:
    async with running_engine(api) as engine:
        await _open_streams(engine)

        await engine.fetch_all_with(data_ids=[PROJECT_A])

        assert api.count("GET", "/projects") == 4
        assert api.count("GET", f"/projects/{PROJECT_B}") == 1
        assert api.count("GET", "/users") == 1


@pytest.mark.anyio
async def test_fetch_all_with_endpoints_and_fragments(api: FakeTransport) -> None:
    async with running_engine(api) as engine:
        await _open_streams(engine)

        await engine.fetch_all_with(api_endpoints=["/projects/"])
        assert api.count("GET", "/projects") == 4
        assert api.count("GET", f"/projects/{PROJECT_B}") == 1

        await engine.fetch_all_with(partial_api_endpoints=["project"])
        assert api.count("GET", "/projects") == 6
        assert api.count("GET", f"/projects/{PROJECT_B}") == 2
        assert api.count("GET", "/users") == 1


@pytest.mark.anyio
async def test_fetch_all_with_union_is_fetched_once(api: FakeTransport) -> None:
    async with running_engine(api) as engine:
        await _open_streams(engine)

        await engine.fetch_all_with(
            data_ids=[PROJECT_B],
            api_endpoints=["/projects"],
            partial_api_endpoints=["/projects"],
        )

        assert api.count("GET", "/projects") == 4
        assert api.count("GET", f"/projects/{PROJECT_B}") == 2


@pytest.mark.anyio
async def test_fetch_all_with_only_active_streams(api: FakeTransport) -> None:
    async with running_engine(api) as engine:
        await _open_streams(engine)
        engine.get(f"/projects/{PROJECT_B}").subscribe(Recorder())

        await engine.fetch_all_with(partial_api_endpoints=["/projects"], only_fetch_active_streams=True)

        assert api.count("GET", f"/projects/{PROJECT_B}") == 2
        assert api.count("GET", "/projects") == 2


@pytest.mark.anyio
async def test_reset_rescopes_streams(api: FakeTransport, caplog: pytest.LogCaptureFixture) -> None:
    api.on("GET", AUTH, user("u1"))
    api.on("GET", TENANT, single({"id": "tenant", "type": "app_configuration"}))
    api.on(
        "GET",
        f"/projects/{PROJECT_D}",
        single(project(PROJECT_D, "Before")),
        single(project(PROJECT_D, "After")),
    )

    async with running_engine(api) as engine:
        auth = engine.get(AUTH)
        engine.get(TENANT)
        listing = Recorder()
        engine.get("/projects").subscribe(listing)
        engine.get(f"/projects/{PROJECT_D}")
        await engine.drain()
        assert engine.cached(PROJECT_D) is not None

        with caplog.at_level(logging.INFO, logger="streamcache.engine"):
            await engine.reset(current_user=user("u2"))

        assert auth.value["data"]["id"] == "u2"
        assert api.count("GET", AUTH) == 1
        assert api.count("GET", TENANT) == 2
        assert api.count("GET", "/projects") == 2
        assert len(listing.values) == 1

        assert f"/projects/{PROJECT_D}" not in engine.stream_ids
        assert engine.cached(PROJECT_D) is None
        assert any("Reset cache" in record.getMessage() for record in caplog.records)

        fresh = Recorder()
        engine.get(f"/projects/{PROJECT_D}").subscribe(fresh)
        await engine.drain()
        assert [value["data"]["attributes"]["title"] for value in fresh.values] == ["After"]


@pytest.mark.anyio
async def test_reset_on_logout_nulls_auth_stream(api: FakeTransport) -> None:
    api.on("GET", AUTH, user("u1"))

    async with running_engine(api) as engine:
        recorder = Recorder()
        engine.get(AUTH).subscribe(recorder)
        await engine.drain()

        await engine.reset()

        assert recorder.last is None
        assert AUTH in engine.stream_ids
        assert api.count("GET", AUTH) == 1


@pytest.mark.anyio
async def test_invalidate_drops_idle_stream(api: FakeTransport) -> None:
    async with running_engine(api) as engine:
        stream = engine.get("/projects")
        await engine.drain()

        await engine.invalidate("/projects")

        assert stream.closed
        assert "/projects" not in engine.stream_ids
        assert engine.index_snapshot()["resource_without_query"] == {}

        replacement = engine.get("/projects")
        await engine.drain()
        assert replacement is not stream
        assert api.count("GET", "/projects") == 2


@pytest.mark.anyio
async def test_invalidate_refetches_active_stream(api: FakeTransport) -> None:
    async with running_engine(api) as engine:
        stream = engine.get("/projects", query={"sort": "new"})
        stream.subscribe(Recorder())
        await engine.drain()

        await engine.invalidate("/projects", query={"sort": "new"})
        await engine.invalidate("/never-opened")

        assert engine.stream("/projects?{\"sort\":\"new\"}") is stream
        assert api.count("GET", "/projects") == 2
