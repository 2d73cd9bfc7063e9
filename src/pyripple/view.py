"""Derived views over live paths.

A derived view is a pure function of the latest snapshots of a fixed set
of dependency paths.  The value is ``UNRESOLVED`` until every dependency
has delivered once, then recomputed synchronously, in the same callback
turn, each time a dependency value actually changes.

Absent dependency values (nothing stored at the path) are handed to
``compute`` as an empty mapping, so a view over an empty collection
resolves instead of waiting forever.
"""

from __future__ import annotations

import asyncio
import copy
import functools
import logging
from collections.abc import Callable, Hashable, Sequence
from enum import StrEnum
from typing import Any, Generic, TypeVar

from pyripple import paths
from pyripple.exceptions import RippleError, StoreError, ViewComputeError
from pyripple.registry import DEFAULT_SCOPE, SubscriptionRegistry
from pyripple.snapshot import Snapshot
from pyripple.store.base import same_value

_logger = logging.getLogger(__name__)

V = TypeVar("V")


class _Unresolved:
    _instance: _Unresolved | None = None

    def __new__(cls) -> _Unresolved:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNRESOLVED"

    def __bool__(self) -> bool:
        return False


#: Marker value of a view that has not resolved yet.
UNRESOLVED: Any = _Unresolved()

_UNSET = object()


class ViewState(StrEnum):
    PENDING = "pending"
    READY = "ready"
    ERROR = "error"
    CLOSED = "closed"


ViewCallback = Callable[["BaseViewHandle[Any]"], None]


class BaseViewHandle(Generic[V]):
    """State, notification and waiting shared by every view handle."""

    def __init__(self, name: str) -> None:
        self._name = name
        self._state = ViewState.PENDING
        self._value: Any = UNRESOLVED
        self._error: RippleError | None = None
        self._callbacks: list[ViewCallback] = []
        self._settled = asyncio.Event()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self._name!r}, state={self._state.value})"

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> ViewState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == ViewState.READY

    @property
    def error(self) -> RippleError | None:
        return self._error

    @property
    def value(self) -> V:
        """Latest computed value, or ``UNRESOLVED`` while pending.

        Raises the terminal error while the view is in the ``ERROR`` state;
        a stale value is never returned in its place.
        """
        if self._state == ViewState.ERROR and self._error is not None:
            raise self._error
        return self._value  # type: ignore[no-any-return]

    def subscribe(self, callback: ViewCallback) -> Callable[[], None]:
        """Call *callback* with this handle after every recompute or error."""
        self._callbacks.append(callback)

        def _remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _remove

    async def wait_ready(self, timeout: float | None = None) -> V:
        """Wait until the view resolved (or failed) and return its value."""
        await asyncio.wait_for(self._settled.wait(), timeout)
        return self.value

    def _notify(self) -> None:
        for callback in list(self._callbacks):
            try:
                callback(self)
            except Exception:
                _logger.warning("View callback failed view=%s", self._name, exc_info=True)

    def _publish(self, value: Any) -> None:
        self._value = value
        self._state = ViewState.READY
        self._error = None
        self._settled.set()
        self._notify()

    def _fail(self, error: RippleError) -> None:
        if self._state in {ViewState.ERROR, ViewState.CLOSED}:
            return
        _logger.warning("View %s failed: %s", self._name, error)
        self._state = ViewState.ERROR
        self._error = error
        self._value = UNRESOLVED
        self._settled.set()
        self._notify()

    def _reset_pending(self) -> None:
        self._state = ViewState.PENDING
        self._value = UNRESOLVED
        self._error = None
        self._settled.clear()

    def close(self) -> None:
        raise NotImplementedError


class ViewHandle(BaseViewHandle[V]):
    """Memoized computation over the latest values of ``deps``.

    ``compute`` is called positionally with one value per dependency, in
    declaration order.  It receives copies, so it cannot corrupt the cached
    inputs; it must not rely on hidden mutable state.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        deps: Sequence[str],
        compute: Callable[..., V],
        *,
        scope: Hashable = DEFAULT_SCOPE,
        name: str | None = None,
        absent_as_empty: bool = True,
    ) -> None:
        if not deps:
            raise ValueError("A derived view needs at least one dependency path")
        normalized = tuple(paths.normalize(p) for p in deps)
        super().__init__(name or getattr(compute, "__name__", "view"))
        self._registry = registry
        self._deps = normalized
        self._compute = compute
        self._scope = scope
        self._absent_as_empty = absent_as_empty
        self._latest: list[Any] = [_UNSET] * len(normalized)
        self._acquired: list[str] = []
        self._detach: list[Callable[[], None]] = []
        self.compute_count = 0
        self._open()

    @property
    def deps(self) -> tuple[str, ...]:
        return self._deps

    @property
    def scope(self) -> Hashable:
        return self._scope

    def _open(self) -> None:
        for index, path in enumerate(self._deps):
            subscription = self._registry.acquire(path, self._scope)
            self._acquired.append(path)
            self._detach.append(
                subscription.add_listener(
                    functools.partial(self._on_snapshot, index),
                    self._on_error,
                )
            )

    def _release(self) -> None:
        for detach in self._detach:
            detach()
        self._detach.clear()
        for path in self._acquired:
            self._registry.release(path, self._scope)
        self._acquired.clear()

    def _on_snapshot(self, index: int, snapshot: Snapshot) -> None:
        if self._state in {ViewState.ERROR, ViewState.CLOSED}:
            return
        value = snapshot.value
        if value is None and self._absent_as_empty:
            value = {}
        previous = self._latest[index]
        if previous is not _UNSET and same_value(previous, value):
            return
        self._latest[index] = value
        if any(item is _UNSET for item in self._latest):
            return
        self._recompute()

    def _on_error(self, error: StoreError) -> None:
        self._fail(error)

    def _recompute(self) -> None:
        inputs = [copy.deepcopy(item) for item in self._latest]
        try:
            result = self._compute(*inputs)
        except Exception as exc:
            error = ViewComputeError(f"View {self._name!r} compute failed: {exc}", view_name=self._name)
            error.__cause__ = exc
            self._fail(error)
            return
        self.compute_count += 1
        self._publish(result)

    def reopen(self) -> None:
        """Release every dependency and re-acquire it from a clean state."""
        if self._state == ViewState.CLOSED:
            raise RippleError(f"View {self._name!r} is closed")
        self._release()
        self._latest = [_UNSET] * len(self._deps)
        self._reset_pending()
        self._open()

    def close(self) -> None:
        """Release this view's subscriptions (shared ones stay alive).  Idempotent."""
        if self._state == ViewState.CLOSED:
            return
        self._release()
        self._state = ViewState.CLOSED
        self._callbacks.clear()
        _logger.debug("View closed name=%s", self._name)


class SwitchViewHandle(BaseViewHandle[V]):
    """View whose dependency path is chosen by the value at another path.

    ``select`` maps the source value (``None`` when absent) to the path to
    follow, or ``None`` for no target; the view then resolves to
    ``compute(None)``.  When the selected path changes the inner view is
    closed and a new one opened.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        source: str,
        select: Callable[[Any], str | None],
        compute: Callable[[Any], V],
        *,
        scope: Hashable = DEFAULT_SCOPE,
        name: str | None = None,
    ) -> None:
        super().__init__(name or getattr(compute, "__name__", "switch"))
        self._registry = registry
        self._compute = compute
        self._scope = scope
        self._target: str | None | object = _UNSET
        self._inner: ViewHandle[V] | None = None
        self._outer: ViewHandle[str | None] = ViewHandle(
            registry,
            [source],
            select,
            scope=scope,
            name=f"{self._name}:select",
            absent_as_empty=False,
        )
        self._outer.subscribe(self._on_outer)
        if self._outer.state != ViewState.PENDING:
            self._on_outer(self._outer)

    @property
    def target(self) -> str | None:
        return None if self._target is _UNSET else self._target  # type: ignore[return-value]

    def _close_inner(self) -> None:
        if self._inner is not None:
            self._inner.close()
            self._inner = None

    def _on_outer(self, outer: BaseViewHandle[Any]) -> None:
        if self._state == ViewState.CLOSED:
            return
        if outer.state == ViewState.ERROR:
            self._close_inner()
            assert outer.error is not None  # noqa: S101
            self._fail(outer.error)
            return
        if outer.state != ViewState.READY:
            return

        target = outer.value
        if target is not None:
            target = paths.normalize(target)
        if target == self._target:
            return
        self._target = target
        self._close_inner()
        _logger.debug("Switch view %s now follows %r", self._name, target)

        if target is None:
            try:
                result = self._compute(None)
            except Exception as exc:
                error = ViewComputeError(f"View {self._name!r} compute failed: {exc}", view_name=self._name)
                error.__cause__ = exc
                self._fail(error)
                return
            self._publish(result)
            return

        self._reset_pending()
        inner: ViewHandle[V] = ViewHandle(self._registry, [target], self._compute, scope=self._scope, name=self._name)
        self._inner = inner
        inner.subscribe(self._on_inner)
        if inner.state != ViewState.PENDING:
            self._on_inner(inner)

    def _on_inner(self, inner: BaseViewHandle[Any]) -> None:
        if inner is not self._inner or self._state == ViewState.CLOSED:
            return
        if inner.state == ViewState.ERROR:
            assert inner.error is not None  # noqa: S101
            self._fail(inner.error)
        elif inner.state == ViewState.READY:
            self._publish(inner.value)

    def reopen(self) -> None:
        """Drop the followed path and re-resolve it from the source."""
        if self._state == ViewState.CLOSED:
            raise RippleError(f"View {self._name!r} is closed")
        self._close_inner()
        self._target = _UNSET
        self._reset_pending()
        self._outer.reopen()

    def close(self) -> None:
        if self._state == ViewState.CLOSED:
            return
        self._close_inner()
        self._outer.close()
        self._state = ViewState.CLOSED
        self._callbacks.clear()


def derive(
    registry: SubscriptionRegistry,
    deps: Sequence[str],
    compute: Callable[..., V],
    *,
    scope: Hashable = DEFAULT_SCOPE,
    name: str | None = None,
) -> ViewHandle[V]:
    """Open a derived view over *deps* computed by *compute*."""
    return ViewHandle(registry, deps, compute, scope=scope, name=name)


def derive_switch(
    registry: SubscriptionRegistry,
    source: str,
    select: Callable[[Any], str | None],
    compute: Callable[[Any], V],
    *,
    scope: Hashable = DEFAULT_SCOPE,
    name: str | None = None,
) -> SwitchViewHandle[V]:
    """Open a view that follows the path selected from *source*'s value."""
    return SwitchViewHandle(registry, source, select, compute, scope=scope, name=name)
