"""In-process live-value store.

Behaves like the hosted realtime database as seen from one client:
hierarchical values, change notification on every affected path, per-path
compare-and-swap and multi-path atomic updates.  Used by tests and for
local development; nothing is persisted.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from pyripple import paths
from pyripple.exceptions import StoreError, StorePermissionError
from pyripple.store.base import (
    CasResult,
    ErrorCallback,
    Unsubscribe,
    ValueCallback,
    prune_empty,
    resolve_server_values,
    same_value,
)

_logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(slots=True)
class _Listener:
    listener_id: int
    path: str
    on_value: ValueCallback
    on_error: ErrorCallback
    last_value: Any
    active: bool = True


class InMemoryStore:
    """Hierarchical in-memory store with change notification.

    Every public coroutine yields to the event loop once before touching the
    tree, so concurrent tasks interleave the way remote clients do.  All
    notifications are queued with ``loop.call_soon`` in FIFO order, carrying
    the value captured at the time of the change.
    """

    def __init__(
        self,
        initial: Mapping[str, Any] | None = None,
        *,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self._root: Any = prune_empty(copy.deepcopy(dict(initial))) if initial else None
        self._clock_ms = clock_ms
        self._listeners: dict[int, _Listener] = {}
        self._ids = itertools.count(1)
        self._denied: set[str] = set()
        self._fail_next: dict[str, StoreError] = {}

    # ------------------------------------------------------------------
    # Tree helpers
    # ------------------------------------------------------------------

    def _get(self, path: str) -> Any:
        node = self._root
        for segment in paths.split(path):
            if not isinstance(node, dict):
                return None
            node = node.get(segment)
            if node is None:
                return None
        return node

    def _set(self, path: str, value: Any) -> None:
        segments = paths.split(path)
        value = prune_empty(value)
        if not segments:
            self._root = value
            return

        if value is None:
            self._delete(segments)
            return

        if not isinstance(self._root, dict):
            self._root = {}
        node = self._root
        for segment in segments[:-1]:
            child = node.get(segment)
            if not isinstance(child, dict):
                child = {}
                node[segment] = child
            node = child
        node[segments[-1]] = value

    def _delete(self, segments: list[str]) -> None:
        trail: list[tuple[dict[str, Any], str]] = []
        node = self._root
        for segment in segments:
            if not isinstance(node, dict) or segment not in node:
                return
            trail.append((node, segment))
            node = node[segment]
        container, segment = trail[-1]
        del container[segment]
        # Empty objects do not exist in the store; prune emptied ancestors.
        for container, segment in reversed(trail[:-1]):
            if container[segment]:
                break
            del container[segment]
        if not self._root:
            self._root = None

    def _check_allowed(self, path: str) -> None:
        for denied in self._denied:
            if paths.is_ancestor(denied, path):
                raise StorePermissionError(f"Permission denied at {path!r}", path=path, status_code=401)

    def _pop_injected_failure(self, path: str) -> None:
        error = self._fail_next.pop(path, None)
        if error is not None:
            _logger.debug("Injected failure path=%s error=%s", path, error)
            raise error

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _deliver_value(self, listener: _Listener, value: Any) -> None:
        if listener.active:
            listener.on_value(value)

    def _deliver_error(self, listener: _Listener, error: StoreError) -> None:
        listener.on_error(error)

    def _notify_changed(self) -> None:
        loop = asyncio.get_running_loop()
        for listener in list(self._listeners.values()):
            current = self._get(listener.path)
            if same_value(current, listener.last_value):
                continue
            listener.last_value = copy.deepcopy(current)
            loop.call_soon(self._deliver_value, listener, copy.deepcopy(current))

    # ------------------------------------------------------------------
    # LiveStore API
    # ------------------------------------------------------------------

    async def read(self, path: str) -> Any:
        path = paths.normalize(path)
        await asyncio.sleep(0)
        self._check_allowed(path)
        return copy.deepcopy(self._get(path))

    def subscribe(self, path: str, on_value: ValueCallback, on_error: ErrorCallback) -> Unsubscribe:
        path = paths.normalize(path)
        loop = asyncio.get_running_loop()
        listener = _Listener(
            listener_id=next(self._ids),
            path=path,
            on_value=on_value,
            on_error=on_error,
            last_value=None,
        )
        try:
            self._check_allowed(path)
        except StorePermissionError as exc:
            listener.active = False
            loop.call_soon(self._deliver_error, listener, exc)
            return lambda: None

        current = self._get(path)
        listener.last_value = copy.deepcopy(current)
        self._listeners[listener.listener_id] = listener
        loop.call_soon(self._deliver_value, listener, copy.deepcopy(current))
        _logger.debug("Listener %d attached path=%s", listener.listener_id, path)

        def _unsubscribe() -> None:
            if not listener.active:
                return
            listener.active = False
            self._listeners.pop(listener.listener_id, None)
            _logger.debug("Listener %d detached path=%s", listener.listener_id, path)

        return _unsubscribe

    async def write(self, path: str, value: Any) -> None:
        path = paths.normalize(path)
        await asyncio.sleep(0)
        self._check_allowed(path)
        self._pop_injected_failure(path)
        self._set(path, resolve_server_values(value, self._clock_ms()))
        self._notify_changed()

    async def update(self, changes: Mapping[str, Any]) -> None:
        normalized = {paths.normalize(p): v for p, v in changes.items()}
        for path in normalized:
            for ancestor in paths.ancestors(path):
                if ancestor in normalized:
                    raise ValueError(f"Update paths overlap: {ancestor!r} is an ancestor of {path!r}")
        await asyncio.sleep(0)
        for path in normalized:
            self._check_allowed(path)
        for path in normalized:
            self._pop_injected_failure(path)
        now_ms = self._clock_ms()
        for path, value in normalized.items():
            self._set(path, resolve_server_values(value, now_ms))
        self._notify_changed()

    async def compare_and_swap(self, path: str, expected: Any, new_value: Any) -> CasResult:
        path = paths.normalize(path)
        await asyncio.sleep(0)
        self._check_allowed(path)
        self._pop_injected_failure(path)
        current = self._get(path)
        if not same_value(prune_empty(copy.deepcopy(expected)), current):
            return CasResult(applied=False, value=copy.deepcopy(current))
        self._set(path, resolve_server_values(new_value, self._clock_ms()))
        self._notify_changed()
        return CasResult(applied=True, value=copy.deepcopy(self._get(path)))

    # ------------------------------------------------------------------
    # Test/dev controls
    # ------------------------------------------------------------------

    def deny(self, path: str) -> None:
        """Revoke access at and below *path*; active listeners there fail."""
        path = paths.normalize(path)
        self._denied.add(path)
        loop = asyncio.get_running_loop()
        for listener in list(self._listeners.values()):
            if not paths.is_ancestor(path, listener.path):
                continue
            listener.active = False
            self._listeners.pop(listener.listener_id, None)
            error = StorePermissionError(
                f"Listener at {listener.path!r} cancelled: permission revoked",
                path=listener.path,
                status_code=401,
            )
            loop.call_soon(self._deliver_error, listener, error)

    def allow(self, path: str) -> None:
        self._denied.discard(paths.normalize(path))

    def fail_next(self, path: str, error: StoreError) -> None:
        """Make the next write/CAS/update touching exactly *path* raise *error*."""
        self._fail_next[paths.normalize(path)] = error

    def listener_count(self, path: str | None = None) -> int:
        if path is None:
            return len(self._listeners)
        path = paths.normalize(path)
        return sum(1 for listener in self._listeners.values() if listener.path == path)

    def dump(self) -> Any:
        """Deep copy of the whole tree."""
        return copy.deepcopy(self._root)
