"""Immutable value snapshots.

A snapshot is the value observed at a path at one point in time.  The store
exposes no version numbers, so snapshots carry none; ordering is only the
arrival order on a single subscription.
"""

from __future__ import annotations

import copy
from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pyripple import paths


class Snapshot(BaseModel):
    """A value observed at ``path``."""

    model_config = ConfigDict(frozen=True)

    path: str
    value: Any = None
    received_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("path")
    @classmethod
    def _normalize_path(cls, value: str) -> str:
        return paths.normalize(value)

    @field_validator("received_at")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @property
    def exists(self) -> bool:
        return self.value is not None

    @property
    def key(self) -> str | None:
        return paths.key(self.path)

    def child(self, key: str) -> Snapshot:
        """Snapshot of a direct or nested child (``key`` may contain slashes)."""
        node = self.value
        for segment in paths.split(key):
            node = node.get(segment) if isinstance(node, dict) else None
        return Snapshot(path=paths.join(self.path, key), value=copy.deepcopy(node), received_at=self.received_at)

    def as_mapping(self) -> dict[str, Any]:
        """The value as a mapping; absent or scalar values become ``{}``."""
        if isinstance(self.value, dict):
            return copy.deepcopy(self.value)
        return {}

    def children(self) -> Iterator[Snapshot]:
        for key in self.as_mapping():
            yield self.child(key)
