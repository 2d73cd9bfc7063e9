"""Path subscriptions.

A :class:`PathSubscription` wraps one live store listener.  It is both a
lazy, non-restartable async stream of :class:`~pyripple.snapshot.Snapshot`
objects and a synchronous fan-out point: derived views attach listeners
that run in the same callback turn the store delivers a value in.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import AsyncIterator, Callable
from enum import StrEnum
from typing import Any

from pyripple import paths
from pyripple.exceptions import StoreError, SubscriptionClosedError
from pyripple.snapshot import Snapshot
from pyripple.store.base import LiveStore

_logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[Snapshot], None]
StoreErrorCallback = Callable[[StoreError], None]

_CLOSED = object()


class SubscriptionState(StrEnum):
    OPEN = "open"
    CLOSED = "closed"
    ERRORED = "errored"


class PathSubscription:
    """Live snapshots of one path.

    The remote listener is attached on construction.  ``close()`` detaches
    it; after that no snapshot is delivered and further ``close()`` calls do
    nothing.  A store error is terminal: the subscription moves to
    ``ERRORED``, releases the remote listener and never delivers again.
    """

    def __init__(self, store: LiveStore, path: str) -> None:
        self._path = paths.normalize(path)
        self._state = SubscriptionState.OPEN
        self._latest: Snapshot | None = None
        self._error: StoreError | None = None
        self._listeners: dict[int, tuple[SnapshotCallback, StoreErrorCallback | None]] = {}
        self._listener_ids = itertools.count(1)
        self._queue: asyncio.Queue[Any] | None = None
        self._iterated = False
        _logger.debug("Subscribing path=%s", self._path)
        self._unsubscribe = store.subscribe(self._path, self._on_value, self._on_error)

    def __repr__(self) -> str:
        return f"PathSubscription(path={self._path!r}, state={self._state.value})"

    @property
    def path(self) -> str:
        return self._path

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def is_live(self) -> bool:
        return self._state == SubscriptionState.OPEN

    @property
    def latest(self) -> Snapshot | None:
        """Most recent snapshot, or ``None`` before the first delivery."""
        return self._latest

    @property
    def error(self) -> StoreError | None:
        return self._error

    # ------------------------------------------------------------------
    # Store callbacks
    # ------------------------------------------------------------------

    def _on_value(self, value: Any) -> None:
        if self._state != SubscriptionState.OPEN:
            return
        snapshot = Snapshot(path=self._path, value=value)
        self._latest = snapshot
        if self._queue is not None:
            self._queue.put_nowait(snapshot)
        for listener_id, (on_snapshot, _on_error) in list(self._listeners.items()):
            if listener_id not in self._listeners:
                continue
            try:
                on_snapshot(snapshot)
            except Exception:
                _logger.warning("Snapshot listener failed path=%s", self._path, exc_info=True)

    def _on_error(self, error: StoreError) -> None:
        if self._state != SubscriptionState.OPEN:
            return
        _logger.warning("Subscription error path=%s: %s", self._path, error)
        self._state = SubscriptionState.ERRORED
        self._error = error
        self._unsubscribe()
        if self._queue is not None:
            self._queue.put_nowait(error)
        listeners = list(self._listeners.values())
        self._listeners.clear()
        for _on_snapshot, on_error in listeners:
            if on_error is None:
                continue
            try:
                on_error(error)
            except Exception:
                _logger.warning("Error listener failed path=%s", self._path, exc_info=True)

    # ------------------------------------------------------------------
    # Listener fan-out
    # ------------------------------------------------------------------

    def add_listener(
        self,
        on_snapshot: SnapshotCallback,
        on_error: StoreErrorCallback | None = None,
        *,
        replay: bool = True,
    ) -> Callable[[], None]:
        """Attach synchronous callbacks; returns a function that detaches them.

        With ``replay`` the latest snapshot (or the terminal error) is
        delivered immediately, so a late joiner on a shared subscription
        does not wait for the next remote change.
        """
        if self._state == SubscriptionState.ERRORED:
            if replay and on_error is not None and self._error is not None:
                on_error(self._error)
            return lambda: None
        if self._state == SubscriptionState.CLOSED:
            raise SubscriptionClosedError(f"Subscription at {self._path!r} is closed")

        listener_id = next(self._listener_ids)
        self._listeners[listener_id] = (on_snapshot, on_error)
        if replay and self._latest is not None:
            on_snapshot(self._latest)

        def _remove() -> None:
            self._listeners.pop(listener_id, None)

        return _remove

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    # ------------------------------------------------------------------
    # Stream protocol
    # ------------------------------------------------------------------

    def __aiter__(self) -> AsyncIterator[Snapshot]:
        if self._iterated:
            raise SubscriptionClosedError(f"Snapshot stream at {self._path!r} cannot be restarted")
        if self._state == SubscriptionState.CLOSED:
            raise SubscriptionClosedError(f"Subscription at {self._path!r} is closed")
        self._iterated = True
        self._queue = asyncio.Queue()
        if self._state == SubscriptionState.ERRORED:
            self._queue.put_nowait(self._error)
        elif self._latest is not None:
            self._queue.put_nowait(self._latest)
        return self._iterate(self._queue)

    async def _iterate(self, queue: asyncio.Queue[Any]) -> AsyncIterator[Snapshot]:
        while True:
            item = await queue.get()
            if item is _CLOSED:
                return
            if isinstance(item, StoreError):
                raise item
            yield item

    def close(self) -> None:
        """Release the remote listener.  Idempotent."""
        self._listeners.clear()
        if self._state != SubscriptionState.OPEN:
            return
        self._state = SubscriptionState.CLOSED
        self._unsubscribe()
        if self._queue is not None:
            self._queue.put_nowait(_CLOSED)
        _logger.debug("Subscription closed path=%s", self._path)


SnapshotStream = PathSubscription


def subscribe(store: LiveStore, path: str) -> tuple[SnapshotStream, Callable[[], None]]:
    """Open a live subscription at *path*.

    Returns the snapshot stream and its ``close`` function.
    """
    subscription = PathSubscription(store, path)
    return subscription, subscription.close
