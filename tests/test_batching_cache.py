from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import pytest

from functionary.cache.batching import CacheHub, IdentifyCache, StateCache
from functionary.core.logs import DebugLog
from functionary.core.types import Entity, IdentifyRecord, StateRecord
from functionary.surface.base import ExitHooks
from functionary.surface.memory import MemorySurfaceDelegate
from functionary.transport.client import DeliveryResult

from conftest import RecordingSender


def _identify(
    model: str,
    ids: list[Any],
    *,
    properties: dict[str, Any] | None = None,
    parent: Entity | None = None,
    children: list[Entity] | None = None,
) -> tuple[IdentifyRecord, Entity]:
    entity = Entity(model, ids)
    record = IdentifyRecord(
        model=model,
        ids=entity.str_ids(),
        properties=properties,
        parent=parent,
        children=children or [],
    )
    return record, entity


def _cache(sender: RecordingSender, surface: MemorySurfaceDelegate):  # type: ignore[no-untyped-def]

    def add(cache: IdentifyCache | StateCache, record: Any, entity: Entity, **kwargs: Any) -> None:
        cache.cache_or_send(record, entity, sender=sender, surface=surface, **kwargs)

    return add


@pytest.mark.parametrize(
    ("first", "second"),
    [(["a", "b"], ["b", "c"]), (["b", "c"], ["a", "b"])],
)
def test_overlapping_identify_calls_collapse_into_one_entry(
    hub: CacheHub,
    sender: RecordingSender,
    surface: MemorySurfaceDelegate,
    first: list[str],
    second: list[str],
) -> None:
    add = _cache(sender, surface)
    add(hub.identify, *_identify("customer", first))
    add(hub.identify, *_identify("customer", second))

    entries = hub.identify.entries
    assert len(entries) == 1
    assert set(entries[0].ids) == {"a", "b", "c"}


def test_alias_identify_merges_ids_and_properties(
    hub: CacheHub, sender: RecordingSender, surface: MemorySurfaceDelegate
) -> None:
    add = _cache(sender, surface)
    add(hub.identify, *_identify("customer", ["a"]))
    add(hub.identify, *_identify("customer", ["a", "b"], properties={"p": 1}))

    (entry,) = hub.identify.entries
    assert set(entry.ids) == {"a", "b"}
    assert entry.identify is not None
    assert entry.identify.properties == {"p": 1}


def test_properties_are_a_shallow_left_fold(
    hub: CacheHub, sender: RecordingSender, surface: MemorySurfaceDelegate
) -> None:
    add = _cache(sender, surface)
    updates = [{"plan": "free", "seats": 1}, {"seats": 5}, {"plan": "pro", "region": "eu"}]
    expected: dict[str, Any] = {}
    for update in updates:
        expected = {**expected, **update}
        add(hub.identify, *_identify("customer", [7], properties=update))

    (entry,) = hub.identify.entries
    assert entry.identify is not None
    assert entry.identify.properties == expected


def test_parent_is_last_write_wins_and_children_are_not_duplicated(
    hub: CacheHub, sender: RecordingSender, surface: MemorySurfaceDelegate
) -> None:
    add = _cache(sender, surface)
    child = Entity("customer", ["c-1"])
    add(hub.identify, *_identify("customer", ["x"], parent=Entity("organization", ["o-1"])))
    add(hub.identify, *_identify("customer", ["x"], parent=Entity("organization", ["o-2"])))
    add(hub.identify, *_identify("organization", ["o-2"], children=[child]))
    add(hub.identify, *_identify("organization", ["o-2"], children=[Entity("customer", ["c-1"])]))

    customer, organization = hub.identify.entries
    assert customer.identify is not None and organization.identify is not None
    assert customer.identify.parent == Entity("organization", ["o-2"])
    assert organization.identify.children == [child]


def test_models_never_share_an_entry(
    hub: CacheHub, sender: RecordingSender, surface: MemorySurfaceDelegate
) -> None:
    add = _cache(sender, surface)
    add(hub.state, StateRecord(name="a"), Entity("customer", [1]))
    add(hub.state, StateRecord(name="b"), Entity("organization", [1]))

    assert [entry.model for entry in hub.state.entries] == ["customer", "organization"]


def test_states_are_appended_not_merged(
    hub: CacheHub, sender: RecordingSender, surface: MemorySurfaceDelegate
) -> None:
    add = _cache(sender, surface)
    add(hub.state, StateRecord(name="clicked"), Entity("customer", ["a"]))
    add(hub.state, StateRecord(name="clicked"), Entity("customer", ["a", "b"]))

    (entry,) = hub.state.entries
    assert [state.name for state in entry.states] == ["clicked", "clicked"]
    assert entry.ids == ["a", "b"]
    assert hub.state.record_count == 2


def test_bridging_record_joins_only_the_first_entry(
    hub: CacheHub, sender: RecordingSender, surface: MemorySurfaceDelegate
) -> None:
    add = _cache(sender, surface)
    add(hub.state, StateRecord(name="one"), Entity("customer", ["a"]))
    add(hub.state, StateRecord(name="two"), Entity("customer", ["b"]))
    add(hub.state, StateRecord(name="bridge"), Entity("customer", ["a", "b"]))

    first, second = hub.state.entries
    assert first.ids == ["a", "b"]
    assert [state.name for state in first.states] == ["one", "bridge"]
    assert second.ids == ["b"]


def test_cap_flushes_exactly_once_at_the_limit(
    hub: CacheHub, sender: RecordingSender, surface: MemorySurfaceDelegate
) -> None:
    add = _cache(sender, surface)
    for index in range(301):
        add(hub.state, StateRecord(name=f"e{index}"), Entity("customer", [index % 7]))

    assert len(sender.state_calls) == 1
    assert sum(len(batch["states"]) for batch in sender.state_calls[0]) == 300
    assert hub.state.record_count == 1
    assert [state.name for state in hub.state.entries[0].states] == ["e300"]


def test_nothing_is_sent_before_the_timer_without_a_forced_flush(
    hub: CacheHub, sender: RecordingSender, surface: MemorySurfaceDelegate
) -> None:
    add = _cache(sender, surface)
    for index in range(299):
        add(hub.state, StateRecord(name="tick"), Entity("customer", [index]))

    assert sender.state_calls == []
    assert hub.state.scheduler.pending
    assert hub.state.record_count == 299


def test_force_flushes_immediately(
    hub: CacheHub, sender: RecordingSender, surface: MemorySurfaceDelegate
) -> None:
    add = _cache(sender, surface)
    add(hub.identify, *_identify("customer", [1], properties={"p": 1}), force=True)

    assert sender.identify_calls == [{"model": "customer", "ids": ["1"], "properties": {"p": 1}}]
    assert hub.identify.entries == []
    assert not hub.identify.scheduler.pending


def test_flush_sends_one_identify_per_entry_and_one_state_batch(
    hub: CacheHub, sender: RecordingSender, surface: MemorySurfaceDelegate
) -> None:
    add = _cache(sender, surface)
    add(hub.identify, *_identify("customer", ["a"]))
    add(hub.identify, *_identify("organization", ["o"]))
    add(hub.state, StateRecord(name="x", properties={"k": "v"}), Entity("customer", ["a"]))
    add(hub.state, StateRecord(name="y"), Entity("organization", ["o"]))

    hub.flush()

    assert [call["model"] for call in sender.identify_calls] == ["customer", "organization"]
    (batch,) = sender.state_calls
    assert [(item["model"], item["ids"]) for item in batch] == [
        ("customer", ["a"]),
        ("organization", ["o"]),
    ]
    assert batch[0]["states"][0]["name"] == "x"
    assert batch[0]["states"][0]["properties"] == {"k": "v"}
    assert "ts" in batch[0]["states"][0]
    assert hub.identify.entries == [] and hub.state.entries == []


def test_timer_start_registers_flush_with_the_exit_hook(
    hub: CacheHub, sender: RecordingSender
) -> None:
    hooks = ExitHooks(install_atexit=False)
    surface = MemorySurfaceDelegate(exit_hooks=hooks, signals=())
    add = _cache(sender, surface)

    add(hub.state, StateRecord(name="a"), Entity("customer", ["a"]))
    add(hub.state, StateRecord(name="b"), Entity("customer", ["a"]))
    assert len(hooks) == 1

    hooks.run()

    assert len(sender.state_calls) == 1
    assert not hub.state.scheduler.pending


def test_flush_inside_event_loop_does_not_block_and_drains(
    hub: CacheHub, sender: RecordingSender, surface: MemorySurfaceDelegate
) -> None:
    add = _cache(sender, surface)

    async def scenario() -> tuple[int, int]:
        add(hub.state, StateRecord(name="a"), Entity("customer", ["a"]))
        hub.state.flush()
        before = len(sender.state_calls)
        add(hub.state, StateRecord(name="b"), Entity("customer", ["a"]))
        await hub.state.drain()
        return before, len(sender.state_calls)

    before, after = asyncio.run(scenario())

    assert before == 0
    assert after == 1
    assert [state.name for state in hub.state.entries[0].states] == ["b"]


def test_unexpected_sender_failure_is_logged_not_raised(
    surface: MemorySurfaceDelegate, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.DEBUG, logger="functionary")

    class BrokenSender(RecordingSender):
        def send_states(self, batch: list[dict[str, Any]]) -> DeliveryResult:
            raise RuntimeError("socket on fire")

    cache = StateCache(log=DebugLog(enabled=True))
    cache.cache_or_send(
        StateRecord(name="a"),
        Entity("customer", ["a"]),
        sender=BrokenSender(),
        surface=surface,
        force=True,
    )

    assert cache.entries == []
    assert any("socket on fire" in record.getMessage() for record in caplog.records)


class StalledSender(RecordingSender):
    """Async delivery that never completes on its own."""

    async def asend_states(self, batch: list[dict[str, Any]]) -> DeliveryResult:
        await asyncio.sleep(60)
        return self.send_states(batch)


def test_trailing_timer_delivers_through_the_bound_sender(
    sender: RecordingSender, surface: MemorySurfaceDelegate
) -> None:
    hub = CacheHub.create(delay_s=0.05)
    add = _cache(sender, surface)
    add(hub.state, StateRecord(name="a"), Entity("customer", ["a"]))
    add(hub.state, StateRecord(name="b"), Entity("customer", ["a"]))

    deadline = time.monotonic() + 2.0
    while not sender.state_calls and time.monotonic() < deadline:
        time.sleep(0.01)

    (batch,) = sender.state_calls
    assert [state["name"] for state in batch[0]["states"]] == ["a", "b"]
    assert not hub.state.scheduler.pending
    assert hub.state.record_count == 0


def test_exit_hook_inside_event_loop_sends_before_returning(
    hub: CacheHub, sender: RecordingSender
) -> None:
    hooks = ExitHooks(install_atexit=False)
    add = _cache(sender, MemorySurfaceDelegate(exit_hooks=hooks, signals=()))

    async def scenario() -> int:
        add(hub.state, StateRecord(name="a"), Entity("customer", ["a"]))
        hooks.run()
        return len(sender.state_calls)

    assert asyncio.run(scenario()) == 1
    assert hub.state.entries == []


def test_batch_detached_when_the_loop_stops_is_sent_by_the_exit_hook(
    hub: CacheHub, sender: RecordingSender
) -> None:
    hooks = ExitHooks(install_atexit=False)
    add = _cache(sender, MemorySurfaceDelegate(exit_hooks=hooks, signals=()))

    async def scenario() -> None:
        add(hub.identify, *_identify("customer", ["a"], properties={"p": 1}), force=True)

    asyncio.run(scenario())
    hooks.run()
    hooks.run()

    assert sender.identify_calls == [{"model": "customer", "ids": ["a"], "properties": {"p": 1}}]


def test_delivery_cancelled_mid_flight_finishes_synchronously(
    hub: CacheHub, surface: MemorySurfaceDelegate
) -> None:
    sender = StalledSender()
    add = _cache(sender, surface)

    async def scenario() -> None:
        add(hub.state, StateRecord(name="a"), Entity("customer", ["a"]), force=True)
        await asyncio.sleep(0.01)

    asyncio.run(scenario())
    hub.state.flush_sync()

    assert len(sender.state_calls) == 1
    assert sender.state_calls[0][0]["states"][0]["name"] == "a"
