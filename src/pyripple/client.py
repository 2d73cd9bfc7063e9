"""High-level async client wiring a store, a registry and a counter."""

from __future__ import annotations

import logging
from collections.abc import Callable, Hashable, Mapping, Sequence
from typing import Any, TypeVar

import aiohttp

from pyripple.config import RippleConfig
from pyripple.counter import Delta, TransactionalCounter
from pyripple.exceptions import RippleError
from pyripple.registry import DEFAULT_SCOPE, SubscriptionRegistry
from pyripple.store.base import LiveStore
from pyripple.store.rest import RestStore
from pyripple.subscription import PathSubscription
from pyripple.view import SwitchViewHandle, ViewHandle, derive, derive_switch

_logger = logging.getLogger(__name__)

V = TypeVar("V")


class RippleClient:
    """Async client for a realtime database.

    Usage::

        async with RippleClient(RippleConfig.from_env()) as client:
            members = client.derive(["groupMembers/g1"], sorted)
            await members.wait_ready()
            await client.counter.increment("userStats/u1/submissions")

    Pass ``store`` to run against another :class:`~pyripple.store.LiveStore`
    (for example :class:`~pyripple.store.InMemoryStore`); no HTTP session is
    opened in that case.
    """

    def __init__(
        self,
        config: RippleConfig | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        store: LiveStore | None = None,
    ) -> None:
        self._config = config or RippleConfig()
        self._external_session = session is not None
        self._http_session = session
        self._injected_store = store
        self._store: LiveStore | None = store
        self._owned_rest_store: RestStore | None = None
        self._registry: SubscriptionRegistry | None = None
        self._counter: TransactionalCounter | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> RippleClient:
        if self._store is None:
            self._config.require_database_url()
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._owned_rest_store = RestStore.from_session(self._config, self._http_session)
            self._store = self._owned_rest_store
        self._registry = SubscriptionRegistry(self._store)
        self._counter = TransactionalCounter.from_config(self._store, self._config)
        _logger.debug("Client opened store=%s", type(self._store).__name__)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._registry is not None:
            self._registry.close_all()
            self._registry = None
        if self._owned_rest_store is not None:
            await self._owned_rest_store.aclose()
            self._owned_rest_store = None
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._store = self._injected_store
        self._counter = None

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def config(self) -> RippleConfig:
        return self._config

    @property
    def store(self) -> LiveStore:
        if self._store is None or self._registry is None:
            raise RippleError("Client not initialized. Use 'async with RippleClient(...) as client:'")
        return self._store

    @property
    def registry(self) -> SubscriptionRegistry:
        if self._registry is None:
            raise RippleError("Client not initialized. Use 'async with RippleClient(...) as client:'")
        return self._registry

    @property
    def counter(self) -> TransactionalCounter:
        if self._counter is None:
            raise RippleError("Client not initialized. Use 'async with RippleClient(...) as client:'")
        return self._counter

    # ------------------------------------------------------------------
    # Live reads
    # ------------------------------------------------------------------

    def subscribe(self, path: str, scope: Hashable = DEFAULT_SCOPE) -> PathSubscription:
        """Shared subscription for *path*; pair with :meth:`release`."""
        return self.registry.acquire(path, scope)

    def release(self, path: str, scope: Hashable = DEFAULT_SCOPE) -> None:
        self.registry.release(path, scope)

    def derive(
        self,
        deps: Sequence[str],
        compute: Callable[..., V],
        *,
        scope: Hashable = DEFAULT_SCOPE,
        name: str | None = None,
    ) -> ViewHandle[V]:
        return derive(self.registry, deps, compute, scope=scope, name=name)

    def derive_switch(
        self,
        source: str,
        select: Callable[[Any], str | None],
        compute: Callable[[Any], V],
        *,
        scope: Hashable = DEFAULT_SCOPE,
        name: str | None = None,
    ) -> SwitchViewHandle[V]:
        return derive_switch(self.registry, source, select, compute, scope=scope, name=name)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def apply(self, path: str, delta: Delta) -> Any:
        return await self.counter.apply(path, delta)

    async def read(self, path: str) -> Any:
        return await self.store.read(path)

    async def write(self, path: str, value: Any) -> None:
        await self.store.write(path, value)

    async def update(self, changes: Mapping[str, Any]) -> None:
        await self.store.update(changes)
