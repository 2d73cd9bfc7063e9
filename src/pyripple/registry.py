"""Reference-counted subscription registry.

The registry is the only shared mutable structure of the cache layer.  It
maps ``(path, scope)`` keys to one live :class:`PathSubscription` and a
reference count, so independent consumers in the same scope share a single
remote listener and the listener is detached as soon as the last consumer
releases it.  Every mutation completes without awaiting, so no locking is
needed on a single event loop.
"""

from __future__ import annotations

import logging
from collections.abc import Hashable
from dataclasses import dataclass

from pyripple import paths
from pyripple.exceptions import RippleError
from pyripple.store.base import LiveStore
from pyripple.subscription import PathSubscription

_logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "default"

RegistryKey = tuple[str, Hashable]


@dataclass(slots=True)
class _Entry:
    subscription: PathSubscription
    refcount: int = 0


class SubscriptionRegistry:
    """Process-wide table of shared path subscriptions."""

    def __init__(self, store: LiveStore) -> None:
        self._store = store
        self._entries: dict[RegistryKey, _Entry] = {}

    @property
    def store(self) -> LiveStore:
        return self._store

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, tuple) or len(key) != 2:
            return False
        return (paths.normalize(key[0]), key[1]) in self._entries

    def acquire(self, path: str, scope: Hashable = DEFAULT_SCOPE) -> PathSubscription:
        """Take a reference to the subscription for ``(path, scope)``.

        Returns the existing stream while it is live.  A stream that ended
        in an error (or was closed underneath) is replaced by a fresh one;
        the reference count carries over so earlier holders still release
        symmetrically.
        """
        key = (paths.normalize(path), scope)
        entry = self._entries.get(key)
        if entry is None:
            entry = _Entry(subscription=PathSubscription(self._store, key[0]))
            self._entries[key] = entry
        elif not entry.subscription.is_live:
            _logger.debug("Replacing %s subscription path=%s scope=%s", entry.subscription.state, key[0], scope)
            entry.subscription.close()
            entry.subscription = PathSubscription(self._store, key[0])
        entry.refcount += 1
        _logger.debug("Acquired path=%s scope=%s refcount=%d", key[0], scope, entry.refcount)
        return entry.subscription

    def release(self, path: str, scope: Hashable = DEFAULT_SCOPE) -> None:
        """Drop a reference; the remote listener closes when none remain.

        Releasing a key that holds no reference is a no-op.
        """
        key = (paths.normalize(path), scope)
        entry = self._entries.get(key)
        if entry is None:
            _logger.debug("Release without acquire ignored path=%s scope=%s", key[0], scope)
            return
        entry.refcount -= 1
        _logger.debug("Released path=%s scope=%s refcount=%d", key[0], scope, entry.refcount)
        if entry.refcount <= 0:
            del self._entries[key]
            entry.subscription.close()

    def refcount(self, path: str, scope: Hashable = DEFAULT_SCOPE) -> int:
        entry = self._entries.get((paths.normalize(path), scope))
        return entry.refcount if entry is not None else 0

    def get(self, path: str, scope: Hashable = DEFAULT_SCOPE) -> PathSubscription | None:
        """Current subscription for the key without taking a reference."""
        entry = self._entries.get((paths.normalize(path), scope))
        return entry.subscription if entry is not None else None

    def active_keys(self) -> list[RegistryKey]:
        return list(self._entries)

    def close_all(self) -> None:
        """Close every subscription and forget all references."""
        entries = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            entry.subscription.close()
        if entries:
            _logger.debug("Registry closed %d subscriptions", len(entries))


_default_registry: SubscriptionRegistry | None = None


def get_registry(store: LiveStore | None = None) -> SubscriptionRegistry:
    """Return the process-wide registry, creating it for *store* on first use."""
    global _default_registry
    if _default_registry is None:
        if store is None:
            raise RippleError("No default registry yet; pass the store on first use")
        _default_registry = SubscriptionRegistry(store)
    elif store is not None and store is not _default_registry.store:
        raise RippleError("The default registry is bound to a different store; call reset_registry() first")
    return _default_registry


def reset_registry() -> None:
    """Close and discard the process-wide registry."""
    global _default_registry
    if _default_registry is not None:
        _default_registry.close_all()
    _default_registry = None
