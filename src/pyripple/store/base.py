"""Live-value store capability.

This is the only external boundary of the cache layer.  Any hierarchical
key-value store with change notification and per-path compare-and-swap
satisfies it; :class:`pyripple.store.memory.InMemoryStore` and
:class:`pyripple.store.rest.RestStore` are the bundled implementations.
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from pyripple._constants import SERVER_TIMESTAMP
from pyripple.exceptions import StoreError

ValueCallback = Callable[[Any], None]
ErrorCallback = Callable[[StoreError], None]
Unsubscribe = Callable[[], None]


@dataclass(frozen=True)
class CasResult:
    """Outcome of one compare-and-swap attempt.

    ``value`` is what the store holds after the attempt: the new value when
    ``applied``, otherwise the conflicting current value.
    """

    applied: bool
    value: Any


class LiveStore(Protocol):
    """Structural store interface used by subscriptions and counters.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementations concrete.
    """

    async def read(self, path: str) -> Any:
        ...

    def subscribe(self, path: str, on_value: ValueCallback, on_error: ErrorCallback) -> Unsubscribe:
        ...

    async def compare_and_swap(self, path: str, expected: Any, new_value: Any) -> CasResult:
        ...

    async def write(self, path: str, value: Any) -> None:
        ...

    async def update(self, changes: Mapping[str, Any]) -> None:
        ...


def is_server_timestamp(value: Any) -> bool:
    return isinstance(value, dict) and value == SERVER_TIMESTAMP


def resolve_server_values(value: Any, now_ms: int) -> Any:
    """Return a copy of *value* with server-timestamp placeholders filled in."""
    if is_server_timestamp(value):
        return now_ms
    if isinstance(value, dict):
        return {k: resolve_server_values(v, now_ms) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_server_values(v, now_ms) for v in value]
    return copy.deepcopy(value)


def prune_empty(value: Any) -> Any:
    """Drop ``None`` leaves and empty mappings; an empty tree becomes ``None``.

    The hosted store never holds empty objects or nulls, so a value is
    normalised this way before it is stored or compared.
    """
    if isinstance(value, dict):
        pruned = {}
        for k, v in value.items():
            child = prune_empty(v)
            if child is not None:
                pruned[str(k)] = child
        return pruned or None
    if isinstance(value, list):
        items = [child for child in (prune_empty(v) for v in value) if child is not None]
        return items or None
    return value


def same_value(a: Any, b: Any) -> bool:
    """Type-aware structural equality for stored values.

    Unlike ``==``, ``1``, ``1.0`` and ``True`` are different values here, as
    they are different JSON values on the wire.
    """
    if type(a) is not type(b):
        return False
    if isinstance(a, dict):
        return a.keys() == b.keys() and all(same_value(v, b[k]) for k, v in a.items())
    if isinstance(a, list):
        return len(a) == len(b) and all(same_value(x, y) for x, y in zip(a, b, strict=True))
    return bool(a == b)
