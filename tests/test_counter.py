from __future__ import annotations

import asyncio
from typing import Any

import pytest

from pyripple.config import RippleConfig
from pyripple.counter import ABORT, TransactionalCounter
from pyripple.exceptions import ConflictExhaustedError, StoreNetworkError
from pyripple.registry import SubscriptionRegistry
from pyripple.store.base import CasResult
from pyripple.store.memory import InMemoryStore
from pyripple.view import derive


class _AlwaysConflictingStore(InMemoryStore):
    """Every compare-and-swap loses against a concurrent writer."""

    def __init__(self) -> None:
        super().__init__()
        self.attempts = 0

    async def compare_and_swap(self, path: str, expected: Any, new_value: Any) -> CasResult:
        self.attempts += 1
        return CasResult(applied=False, value=self.attempts * 100)


@pytest.mark.asyncio
async def test_concurrent_increments_are_not_lost() -> None:
    store = InMemoryStore({"userStats": {"u1": {"submissions": 5}}})
    counter = TransactionalCounter(store)

    await asyncio.gather(*(counter.increment("userStats/u1/submissions") for _ in range(10)))

    assert await store.read("userStats/u1/submissions") == 15
    assert counter.conflicts > 0


@pytest.mark.asyncio
async def test_delta_sees_conflicting_value_on_retry() -> None:
    store = InMemoryStore({"n": 1})
    counter = TransactionalCounter(store)
    seen: list[Any] = []

    def _double(current: Any) -> Any:
        seen.append(current)
        return current * 2

    await asyncio.gather(counter.apply("n", _double), counter.increment("n", by=10))

    final = await store.read("n")
    assert final in {(1 * 2) + 10, (1 + 10) * 2}
    assert seen[-1] in {1, 11}


@pytest.mark.asyncio
async def test_bounded_retries_raise_conflict_exhausted() -> None:
    store = _AlwaysConflictingStore()
    counter = TransactionalCounter(store, max_retries=2)

    with pytest.raises(ConflictExhaustedError) as excinfo:
        await counter.increment("n")

    assert excinfo.value.attempts == 3
    assert excinfo.value.path == "n"
    assert store.attempts == 3


@pytest.mark.asyncio
async def test_from_config_applies_retry_policy() -> None:
    config = RippleConfig(max_retries=0, retry_backoff=0.001, retry_backoff_max=0.002)
    counter = TransactionalCounter.from_config(_AlwaysConflictingStore(), config)

    assert counter.max_retries == 0
    with pytest.raises(ConflictExhaustedError):
        await counter.increment("n")


@pytest.mark.asyncio
async def test_abort_leaves_value_untouched() -> None:
    store = InMemoryStore({"n": 4})
    counter = TransactionalCounter(store)

    result = await counter.apply("n", lambda current: ABORT if current > 3 else current + 1)

    assert result == 4
    assert await store.read("n") == 4


@pytest.mark.asyncio
async def test_decrement_never_goes_below_floor() -> None:
    store = InMemoryStore()
    counter = TransactionalCounter(store)

    assert await counter.decrement_floor("n") == 0
    assert await counter.increment("n", by=2) == 2
    assert await counter.decrement_floor("n", by=5) == 0


@pytest.mark.asyncio
async def test_toggle_flips_flag_and_deletes_it() -> None:
    store = InMemoryStore()
    counter = TransactionalCounter(store)

    assert await counter.toggle("bookmarks/u1/s1") is True
    assert await store.read("bookmarks/u1/s1") is True
    assert await counter.toggle("bookmarks/u1/s1") is False
    assert await store.read("bookmarks") is None


@pytest.mark.asyncio
async def test_store_errors_propagate() -> None:
    store = InMemoryStore()
    store.fail_next("n", StoreNetworkError("offline", path="n"))
    counter = TransactionalCounter(store)

    with pytest.raises(StoreNetworkError):
        await counter.increment("n")


@pytest.mark.asyncio
async def test_closing_a_view_does_not_cancel_an_in_flight_transaction() -> None:
    store = InMemoryStore({"count": 5})
    registry = SubscriptionRegistry(store)
    counter = TransactionalCounter(store)
    view = derive(registry, ["count"], lambda value: value)
    assert await view.wait_ready(timeout=1.0) == 5

    task = asyncio.create_task(counter.increment("count"))
    await asyncio.sleep(0)
    view.close()
    registry.close_all()
    await store.write("count", 7)

    assert await task == 8
    assert not task.cancelled()
    assert await store.read("count") == 8
    assert counter.conflicts == 1
    assert store.listener_count() == 0
