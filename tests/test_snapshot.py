from __future__ import annotations

from datetime import datetime

import pytest
from pydantic import ValidationError

from pyripple.snapshot import Snapshot


def test_snapshot_normalizes_path_and_is_frozen() -> None:
    snapshot = Snapshot(path="/groups/g1/", value={"name": "Algo"})

    assert snapshot.path == "groups/g1"
    assert snapshot.key == "g1"
    assert snapshot.exists
    assert snapshot.received_at.tzinfo is not None
    with pytest.raises(ValidationError):
        snapshot.value = None  # type: ignore[misc]


def test_naive_timestamps_become_utc() -> None:
    snapshot = Snapshot(path="a", value=1, received_at=datetime(2026, 1, 1))
    assert snapshot.received_at.utcoffset() is not None


def test_child_and_children() -> None:
    snapshot = Snapshot(path="groupMembers", value={"g1": {"u1": True, "u2": True}, "g2": {"u3": True}})

    child = snapshot.child("g1/u2")
    assert child.path == "groupMembers/g1/u2"
    assert child.value is True
    assert not snapshot.child("missing").exists

    assert [c.key for c in snapshot.children()] == ["g1", "g2"]


def test_as_mapping_of_absent_or_scalar_value_is_empty() -> None:
    assert Snapshot(path="a").as_mapping() == {}
    assert Snapshot(path="a", value=3).as_mapping() == {}
    assert list(Snapshot(path="a").children()) == []
