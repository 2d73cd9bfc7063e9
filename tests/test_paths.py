from __future__ import annotations

import pytest

from pyripple import paths


def test_normalize_strips_redundant_slashes() -> None:
    assert paths.normalize("/groups//g1/name/") == "groups/g1/name"
    assert paths.normalize("/") == paths.ROOT


def test_join_accepts_fragments_with_slashes() -> None:
    assert paths.join("solutions", "g1/s1", "upvotesCount") == "solutions/g1/s1/upvotesCount"


@pytest.mark.parametrize("bad", ["groups/g.1", "a#b", "x/$y", "tags/[c]", "ctl/\x07"])
def test_invalid_segments_are_rejected(bad: str) -> None:
    with pytest.raises(ValueError):
        paths.normalize(bad)


def test_parent_and_key() -> None:
    assert paths.parent("groups/g1/name") == "groups/g1"
    assert paths.parent("groups") == ""
    assert paths.parent("") is None
    assert paths.key("groups/g1") == "g1"
    assert paths.key("") is None


def test_ancestry() -> None:
    assert paths.is_ancestor("", "groups/g1")
    assert paths.is_ancestor("groups", "groups/g1")
    assert paths.is_ancestor("groups/g1", "groups/g1")
    assert not paths.is_ancestor("groups/g1", "groups/g10")
    assert paths.ancestors("groups/g1/name") == ["", "groups", "groups/g1"]
    assert paths.ancestors("") == []
    assert paths.relative("groups", "groups/g1/name") == ["g1", "name"]
    with pytest.raises(ValueError):
        paths.relative("users", "groups/g1")


def test_forum_schema_locations() -> None:
    assert paths.solution_upvote("s1", "u1") == "upvotes/solutions/s1/u1"
    assert paths.solution_upvotes_count("g1", "s1") == "solutions/g1/s1/upvotesCount"
    assert paths.group_stats("g1") == "groupStats/g1"
    assert paths.group_stats("g1", "u1") == "groupStats/g1/u1"
    assert paths.index_by_tag("dp", "s1") == "indexByTag/dp/s1"
    assert "indexByTag" in paths.EPHEMERAL_ROOTS
    assert "solutions" not in paths.EPHEMERAL_ROOTS
