from __future__ import annotations

import asyncio

import pytest

from pyripple.exceptions import RippleError
from pyripple.registry import SubscriptionRegistry, get_registry, reset_registry
from pyripple.store.memory import InMemoryStore
from pyripple.subscription import SubscriptionState


async def _settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_same_key_shares_one_remote_listener() -> None:
    store = InMemoryStore()
    registry = SubscriptionRegistry(store)

    first = registry.acquire("groups/g1")
    second = registry.acquire("/groups/g1/")

    assert first is second
    assert registry.refcount("groups/g1") == 2
    assert store.listener_count("groups/g1") == 1
    assert ("groups/g1", "default") in registry


@pytest.mark.asyncio
async def test_scopes_are_isolated() -> None:
    store = InMemoryStore()
    registry = SubscriptionRegistry(store)

    a = registry.acquire("groups/g1", scope="tab-a")
    b = registry.acquire("groups/g1", scope="tab-b")

    assert a is not b
    assert store.listener_count("groups/g1") == 2
    assert len(registry) == 2


@pytest.mark.asyncio
async def test_last_release_closes_the_subscription() -> None:
    store = InMemoryStore()
    registry = SubscriptionRegistry(store)
    subscription = registry.acquire("a")
    registry.acquire("a")

    registry.release("a")
    assert subscription.is_live

    registry.release("a")
    assert subscription.state == SubscriptionState.CLOSED
    assert store.listener_count() == 0
    assert len(registry) == 0

    # Releasing again is ignored.
    registry.release("a")
    assert registry.refcount("a") == 0


@pytest.mark.asyncio
async def test_errored_subscription_is_replaced_on_acquire() -> None:
    store = InMemoryStore({"private": 1})
    registry = SubscriptionRegistry(store)
    broken = registry.acquire("private")
    await _settle()

    store.deny("private")
    await _settle()
    assert broken.state == SubscriptionState.ERRORED

    store.allow("private")
    fresh = registry.acquire("private")
    await _settle()

    assert fresh is not broken
    assert fresh.is_live
    assert fresh.latest is not None
    assert fresh.latest.value == 1
    assert registry.refcount("private") == 2

    registry.release("private")
    registry.release("private")
    assert store.listener_count() == 0


@pytest.mark.asyncio
async def test_close_all_tears_everything_down() -> None:
    store = InMemoryStore()
    registry = SubscriptionRegistry(store)
    subs = [registry.acquire(path) for path in ("a", "b", "c")]

    registry.close_all()

    assert all(s.state == SubscriptionState.CLOSED for s in subs)
    assert registry.active_keys() == []
    assert store.listener_count() == 0


@pytest.mark.asyncio
async def test_default_registry_is_bound_to_one_store() -> None:
    reset_registry()
    store = InMemoryStore()
    try:
        with pytest.raises(RippleError):
            get_registry()
        registry = get_registry(store)
        assert get_registry() is registry
        with pytest.raises(RippleError):
            get_registry(InMemoryStore())
    finally:
        reset_registry()
