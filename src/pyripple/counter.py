"""Optimistic compare-and-swap transactions.

``apply`` reads the current value, computes ``delta(current)``, and writes
it only if the stored value is still the one that was read.  On conflict
the conflicting value becomes the new input and the whole cycle repeats.

By default retries are unbounded and immediate, which is how the hosted
store's own transaction primitive behaves: callers must treat ``apply`` as
suspending until success or a store error.  ``max_retries`` and a doubling
backoff make the bound explicit when that is not acceptable.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Callable
from typing import Any

from pyripple import paths
from pyripple.config import RippleConfig
from pyripple.exceptions import ConflictExhaustedError
from pyripple.store.base import LiveStore

_logger = logging.getLogger(__name__)


class _Abort:
    def __repr__(self) -> str:
        return "ABORT"


#: Returned by a delta to end the transaction without writing.
ABORT: Any = _Abort()

Delta = Callable[[Any], Any]


class TransactionalCounter:
    """Read-modify-write transactions against one store."""

    def __init__(
        self,
        store: LiveStore,
        *,
        max_retries: int | None = None,
        backoff: float = 0.0,
        backoff_max: float = 2.0,
    ) -> None:
        if max_retries is not None and max_retries < 0:
            raise ValueError("max_retries must be >= 0 or None")
        self._store = store
        self._max_retries = max_retries
        self._backoff = backoff
        self._backoff_max = backoff_max
        self.conflicts = 0

    @classmethod
    def from_config(cls, store: LiveStore, config: RippleConfig) -> TransactionalCounter:
        return cls(
            store,
            max_retries=config.max_retries,
            backoff=config.retry_backoff,
            backoff_max=config.retry_backoff_max,
        )

    @property
    def max_retries(self) -> int | None:
        return self._max_retries

    async def apply(self, path: str, delta: Delta) -> Any:
        """Run *delta* as a compare-and-swap transaction at *path*.

        Returns the committed value (or the unchanged current value when the
        delta returned :data:`ABORT`).  Store errors propagate unchanged.

        Raises
        ------
        ConflictExhaustedError
            Only with ``max_retries`` set, once a conflict occurs after
            ``max_retries`` retries.
        """
        path = paths.normalize(path)
        current = await self._store.read(path)
        conflicts = 0
        delay = self._backoff
        while True:
            proposed = delta(copy.deepcopy(current))
            if proposed is ABORT:
                _logger.debug("Transaction aborted by delta path=%s", path)
                return current

            result = await self._store.compare_and_swap(path, current, proposed)
            if result.applied:
                if conflicts:
                    _logger.debug("Transaction committed path=%s after %d conflicts", path, conflicts)
                return result.value

            conflicts += 1
            self.conflicts += 1
            current = result.value
            _logger.debug("Transaction conflict path=%s attempt=%d", path, conflicts)
            if self._max_retries is not None and conflicts > self._max_retries:
                raise ConflictExhaustedError(
                    f"Transaction at {path!r} gave up after {conflicts} conflicts",
                    path=path,
                    attempts=conflicts,
                )
            if delay > 0:
                await asyncio.sleep(delay)
                delay = min(delay * 2, self._backoff_max)

    # ------------------------------------------------------------------
    # Common deltas
    # ------------------------------------------------------------------

    async def increment(self, path: str, by: int = 1) -> int:
        """Add *by* to a numeric leaf; absent or non-numeric counts as 0."""

        def _delta(current: Any) -> int:
            base = current if isinstance(current, (int, float)) and not isinstance(current, bool) else 0
            return base + by

        value: int = await self.apply(path, _delta)
        return value

    async def decrement_floor(self, path: str, by: int = 1, floor: int = 0) -> int:
        """Subtract *by* but never go below *floor*."""

        def _delta(current: Any) -> int:
            base = current if isinstance(current, (int, float)) and not isinstance(current, bool) else 0
            return max(floor, base - by)

        value: int = await self.apply(path, _delta)
        return value

    async def toggle(self, path: str) -> bool:
        """Flip a boolean flag leaf: truthy is deleted, absent becomes ``True``.

        Returns the flag state after the transaction.
        """
        value = await self.apply(path, lambda current: None if current else True)
        return bool(value)
