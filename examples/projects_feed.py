"""Watch a project collection while creating, renaming and deleting items.

Run against any Rails-style JSON API::

    STREAMCACHE_LOG_LEVEL=DEBUG python examples/projects_feed.py https://demo.example.org
"""

from __future__ import annotations

import sys

import anyio

from streamcache import ValidationError, open_engine


ENDPOINT = "/web_api/v1/projects"


def show(snapshot: object) -> None:
    if snapshot is None:
        print("-- stream failed --")
        return
    titles = [item["attributes"]["title"] for item in snapshot["data"]]  # type: ignore[index]
    print(f"{len(titles)} project(s): {', '.join(titles)}")


async def main(base_url: str) -> None:
    async with open_engine(base_url) as engine:
        with engine.get(ENDPOINT).subscribe(show):
            await engine.drain()

            created = await engine.add(ENDPOINT, {"project": {"title": "Parks"}})
            project_id = created["data"]["id"]

            await engine.update(f"{ENDPOINT}/{project_id}", project_id, {"project": {"title": "Parks & Trails"}})

            try:
                await engine.add(ENDPOINT, {"project": {"title": ""}})
            except ValidationError as exc:
                print("rejected:", exc.json)

            await engine.delete(f"{ENDPOINT}/{project_id}", project_id, wait_for_refetches=True)


if __name__ == "__main__":
    anyio.run(main, sys.argv[1] if len(sys.argv) > 1 else "http://localhost:3000")
