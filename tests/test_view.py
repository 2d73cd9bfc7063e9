from __future__ import annotations

import asyncio
import random
from typing import Any

import pytest

from pyripple.exceptions import RippleError, StorePermissionError, ViewComputeError
from pyripple.registry import SubscriptionRegistry
from pyripple.store.memory import InMemoryStore
from pyripple.view import UNRESOLVED, ViewHandle, ViewState, derive, derive_switch


async def _settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def _total(a: Any, b: Any) -> int:
    return sum(a.values()) + sum(b.values())


@pytest.mark.asyncio
async def test_view_is_pending_until_every_dependency_delivered() -> None:
    store = InMemoryStore({"a": {"x": 1}, "b": {"y": 2}})
    registry = SubscriptionRegistry(store)
    view = derive(registry, ["a", "b"], _total)

    assert view.state == ViewState.PENDING
    assert view.value is UNRESOLVED
    assert await view.wait_ready(timeout=1.0) == 3
    assert view.compute_count == 1


@pytest.mark.asyncio
async def test_absent_dependency_is_computed_as_empty_mapping() -> None:
    store = InMemoryStore()
    registry = SubscriptionRegistry(store)
    calls: list[Any] = []

    def _members(raw: Any) -> list[str]:
        calls.append(raw)
        return sorted(raw)

    view = derive(registry, ["groupMembers/empty"], _members)
    await _settle()

    assert view.is_ready
    assert view.value == []
    assert calls == [{}]


@pytest.mark.asyncio
async def test_final_value_matches_final_inputs_after_random_updates() -> None:
    store = InMemoryStore({"a": {"x": 0}, "b": {"y": 0}})
    registry = SubscriptionRegistry(store)
    view = derive(registry, ["a", "b"], _total)
    rng = random.Random(7)

    for _ in range(25):
        path = rng.choice(["a/x", "a/z", "b/y"])
        await store.write(path, rng.randint(0, 9))
        if rng.random() < 0.5:
            await asyncio.sleep(0)
    await _settle()

    a = await store.read("a") or {}
    b = await store.read("b") or {}
    assert view.value == _total(a, b)


@pytest.mark.asyncio
async def test_identical_delivery_does_not_recompute() -> None:
    store = InMemoryStore({"a": {"x": 1}, "other": 0})
    registry = SubscriptionRegistry(store)
    view = derive(registry, ["a"], lambda a: dict(a))
    await _settle()

    await store.write("a/x", 1)
    await store.write("other", 5)
    await _settle()

    assert view.compute_count == 1

    await store.write("a/x", 2)
    await _settle()
    assert view.compute_count == 2
    assert view.value == {"x": 2}


@pytest.mark.asyncio
async def test_compute_receives_copies() -> None:
    store = InMemoryStore({"a": {"x": 1}})
    registry = SubscriptionRegistry(store)

    def _mutating(a: dict[str, Any]) -> int:
        a["x"] = 99
        return len(a)

    first = derive(registry, ["a"], _mutating)
    second = derive(registry, ["a"], lambda a: a["x"])
    await _settle()

    assert first.value == 1
    assert second.value == 1


@pytest.mark.asyncio
async def test_compute_exception_puts_view_in_error_state() -> None:
    store = InMemoryStore({"a": 1})
    registry = SubscriptionRegistry(store)

    def _broken(a: Any) -> Any:
        raise KeyError("missing")

    view = derive(registry, ["a"], _broken, name="broken")
    await _settle()

    assert view.state == ViewState.ERROR
    assert isinstance(view.error, ViewComputeError)
    assert isinstance(view.error.__cause__, KeyError)
    with pytest.raises(ViewComputeError):
        _ = view.value


@pytest.mark.asyncio
async def test_store_error_surfaces_and_reopen_recovers() -> None:
    store = InMemoryStore({"private": {"x": 1}})
    registry = SubscriptionRegistry(store)
    notified: list[ViewState] = []
    view = derive(registry, ["private"], lambda p: p["x"])
    view.subscribe(lambda handle: notified.append(handle.state))
    await _settle()

    store.deny("private")
    await _settle()

    assert view.state == ViewState.ERROR
    with pytest.raises(StorePermissionError):
        _ = view.value
    assert notified == [ViewState.READY, ViewState.ERROR]

    store.allow("private")
    view.reopen()
    assert await view.wait_ready(timeout=1.0) == 1


@pytest.mark.asyncio
async def test_close_keeps_shared_subscriptions_alive() -> None:
    store = InMemoryStore({"a": 1, "b": 2})
    registry = SubscriptionRegistry(store)
    one = derive(registry, ["a", "b"], lambda a, b: a + b)
    two: ViewHandle[int] = derive(registry, ["b"], lambda b: b * 10)
    await _settle()

    one.close()
    one.close()

    assert registry.refcount("a") == 0
    assert registry.refcount("b") == 1
    assert store.listener_count() == 1

    await store.write("b", 3)
    await _settle()
    assert two.value == 30
    assert one.state == ViewState.CLOSED

    two.close()
    assert store.listener_count() == 0


def test_view_needs_dependencies() -> None:
    registry = SubscriptionRegistry(InMemoryStore())
    with pytest.raises(ValueError):
        derive(registry, [], lambda: None)


@pytest.mark.asyncio
async def test_switch_view_follows_selected_path() -> None:
    store = InMemoryStore(
        {
            "groups": {"g1": {"todaysQuestionId": "q1"}},
            "groupQuestions": {"g1": {"q1": {"content": "Two sum"}, "q2": {"content": "LRU cache"}}},
        }
    )
    registry = SubscriptionRegistry(store)

    def _select(qid: Any) -> str | None:
        return f"groupQuestions/g1/{qid}" if qid else None

    def _content(record: Any) -> str | None:
        return record.get("content") if record else None

    view = derive_switch(registry, "groups/g1/todaysQuestionId", _select, _content)
    assert await view.wait_ready(timeout=1.0) == "Two sum"
    assert view.target == "groupQuestions/g1/q1"

    await store.write("groups/g1/todaysQuestionId", "q2")
    await _settle()
    assert view.value == "LRU cache"
    assert registry.refcount("groupQuestions/g1/q1") == 0

    await store.write("groups/g1/todaysQuestionId", None)
    await _settle()
    assert view.value is None
    assert view.target is None

    view.close()
    assert store.listener_count() == 0


@pytest.mark.asyncio
async def test_value_changing_only_its_type_recomputes() -> None:
    store = InMemoryStore({"flag": 1})
    registry = SubscriptionRegistry(store)
    view = derive(registry, ["flag"], lambda value: type(value).__name__)
    assert await view.wait_ready(timeout=1.0) == "int"

    await store.write("flag", True)
    await _settle()
    assert view.value == "bool"

    await store.write("flag", 1.0)
    await _settle()
    assert view.value == "float"
    assert view.compute_count == 3


@pytest.mark.asyncio
async def test_switch_view_reopen_recovers_after_store_error() -> None:
    store = InMemoryStore(
        {
            "groups": {"g1": {"todaysQuestionId": "q1"}},
            "groupQuestions": {"g1": {"q1": {"content": "Two sum"}}},
        }
    )
    registry = SubscriptionRegistry(store)
    view = derive_switch(
        registry,
        "groups/g1/todaysQuestionId",
        lambda qid: f"groupQuestions/g1/{qid}" if qid else None,
        lambda record: record.get("content") if record else None,
    )
    assert await view.wait_ready(timeout=1.0) == "Two sum"

    store.deny("groupQuestions")
    await _settle()
    assert view.state == ViewState.ERROR
    with pytest.raises(StorePermissionError):
        _ = view.value

    store.allow("groupQuestions")
    view.reopen()
    assert await view.wait_ready(timeout=1.0) == "Two sum"
    assert view.target == "groupQuestions/g1/q1"

    view.close()
    with pytest.raises(RippleError):
        view.reopen()
    assert store.listener_count() == 0
