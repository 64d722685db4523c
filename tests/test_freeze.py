from __future__ import annotations

import pytest

from streamcache.utils.freeze import FrozenDict, deep_freeze, thaw


def test_deep_freeze_converts_nested_containers() -> None:
    frozen = deep_freeze({"data": [{"id": "1", "tags": ["a", "b"]}], "links": {"self": "/x"}})
    assert isinstance(frozen, FrozenDict)
    assert isinstance(frozen["data"], tuple)
    assert isinstance(frozen["data"][0], FrozenDict)
    assert frozen["data"][0]["tags"] == ("a", "b")


def test_frozen_values_reject_mutation() -> None:
    frozen = deep_freeze({"data": {"id": "1"}})
    with pytest.raises(TypeError):
        frozen["data"] = None  # type: ignore[index]
    with pytest.raises(TypeError):
        frozen["data"]["id"] = "2"  # type: ignore[index]


def test_frozen_dict_equals_plain_mapping_and_hashes() -> None:
    frozen = deep_freeze({"id": "1", "attributes": {"title": "Parks"}})
    assert frozen == {"id": "1", "attributes": {"title": "Parks"}}
    assert hash(frozen) == hash(deep_freeze({"attributes": {"title": "Parks"}, "id": "1"}))


def test_set_and_discard_return_copies() -> None:
    original = deep_freeze({"data": (), "included": ()})
    updated = original.set("data", [{"id": "1"}])
    assert original["data"] == ()
    assert updated["data"] == (FrozenDict(id="1"),)
    assert "included" not in updated.discard("included")
    assert original.discard("missing") is original


def test_thaw_returns_mutable_copy() -> None:
    frozen = deep_freeze({"data": [{"id": "1"}]})
    plain = thaw(frozen)
    plain["data"].append({"id": "2"})
    assert plain == {"data": [{"id": "1"}, {"id": "2"}]}
    assert len(frozen["data"]) == 1
