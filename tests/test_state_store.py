from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import pytest

from pystatesync.config import StateStoreConfig
from pystatesync.exceptions import UnknownStrategyError
from pystatesync.state.events import StateSnapshot, StateUpdate, UpdateSource
from pystatesync.state.store import StateStore


def _dt() -> datetime:
    return datetime(2026, 1, 1, tzinfo=UTC)


def test_version_increments_once_per_write_across_keys() -> None:
    store = StateStore(clock=_dt)

    store.set_state("a", 1)
    store.set_state("b", 2)
    store.set_state("a", 3)

    assert store.version == 3
    assert store.get_entry("a").version == 3
    assert store.get_entry("b").version == 2
    assert store.get_entry("a").timestamp == _dt()


def test_history_records_previous_value_and_is_bounded() -> None:
    store = StateStore(StateStoreConfig(history_size=2))

    store.set_state("a", 1)
    store.set_state("a", 2)
    store.set_state("a", 3)

    history = store.history
    assert len(history) == 2
    assert [record.update.value for record in history] == [2, 3]
    assert history[-1].previous_value == 2
    assert store.version == 3


def test_get_state_unknown_key_returns_none() -> None:
    store = StateStore()

    assert store.get_state("missing") is None
    assert store.get_state("missing", with_metadata=True) is None
    assert store.get_entry("missing") is None


def test_get_state_with_metadata_returns_snapshot() -> None:
    store = StateStore()
    store.set_state("a", {"x": 1})
    update_id = store.set_state("a", {"x": 2}, metadata={"origin": "ui"})
    store.set_state("b", 5)

    snapshot = store.get_state("a", with_metadata=True)

    assert isinstance(snapshot, StateSnapshot)
    assert snapshot.value == {"x": 2}
    assert snapshot.version == 2
    assert snapshot.last_update is not None
    assert snapshot.last_update.update.id == update_id
    assert snapshot.last_update.previous_value == {"x": 1}
    assert snapshot.last_update.update.metadata == {"origin": "ui"}


def test_returned_values_are_copies() -> None:
    store = StateStore()
    value = {"items": [1]}
    store.set_state("a", value)

    value["items"].append(2)
    read = store.get_state("a")
    read["items"].append(3)

    assert store.get_state("a") == {"items": [1]}


def test_subscribers_notified_in_priority_order() -> None:
    store = StateStore()
    calls: list[str] = []

    store.subscribe("a", lambda value, update: calls.append("low"), priority="low")
    store.subscribe("a", lambda value, update: calls.append("normal-1"))
    store.subscribe("a", lambda value, update: calls.append("high"), priority="high")
    store.subscribe("a", lambda value, update: calls.append("normal-2"))
    store.subscribe("b", lambda value, update: calls.append("other"), priority="high")

    store.set_state("a", 1)

    assert calls == ["high", "normal-1", "normal-2", "low"]


def test_wildcard_subscriber_receives_every_key() -> None:
    store = StateStore()
    seen: list[tuple[str, Any]] = []

    store.subscribe("*", lambda value, update: seen.append((update.key, value)))
    store.set_state("a", 1)
    store.set_state("b", 2)

    assert seen == [("a", 1), ("b", 2)]


def test_filter_rejection_skips_subscriber() -> None:
    store = StateStore()
    seen: list[Any] = []

    store.subscribe("a", lambda value, update: seen.append(value), filter=lambda value, update: value > 10)
    store.set_state("a", 5)
    store.set_state("a", 50)

    assert seen == [50]


def test_failing_subscriber_does_not_block_others_or_write() -> None:
    store = StateStore()
    seen: list[StateUpdate] = []

    def boom(value: Any, update: StateUpdate) -> None:
        raise RuntimeError("boom")

    store.subscribe("a", boom, priority="high")
    store.subscribe("a", lambda value, update: seen.append(update))

    store.set_state("a", 1)

    assert store.get_state("a") == 1
    assert len(seen) == 1
    assert seen[0].version == 1


def test_unsubscribe() -> None:
    store = StateStore()
    seen: list[Any] = []
    sub_id = store.subscribe("a", lambda value, update: seen.append(value))

    assert store.unsubscribe("a", sub_id) is True
    assert store.unsubscribe("a", sub_id) is False
    assert store.unsubscribe("other", sub_id) is False

    store.set_state("a", 1)
    assert seen == []


def test_subscribe_rejects_unknown_priority() -> None:
    store = StateStore()

    with pytest.raises(ValueError):
        store.subscribe("a", lambda value, update: None, priority="urgent")


def test_batch_shares_batch_id() -> None:
    store = StateStore()

    result = store.batch([{"key": "a", "value": 1, "source": "server"}, ("b", 2)])

    assert set(result.results) == {"a", "b"}
    batch_ids = {record.update.batch_id for record in store.history}
    assert batch_ids == {result.batch_id}
    assert store.get_entry("a").source == UpdateSource.SERVER
    assert store.version == 2


def test_batch_is_not_atomic() -> None:
    store = StateStore()

    with pytest.raises(KeyError):
        store.batch([("a", 1), {"value": 2}])

    assert store.get_state("a") == 1


def test_merge_detects_version_conflicts() -> None:
    store = StateStore()
    store.set_state("doc", {"version": 1, "title": "old", "tags": ["x"]})
    store.set_state("plain", 1)

    result = store.merge(
        {
            "doc": {"version": 2, "title": "new"},
            "plain": 2,
            "fresh": {"version": 1},
        },
        merge_strategy="merge-fields",
    )

    assert result.conflicts == 1
    assert result.updates == 2
    assert store.get_state("doc") == {"version": 2, "title": "new", "tags": ["x"]}
    assert store.get_entry("doc").source == UpdateSource.CONFLICT_RESOLUTION
    assert store.get_entry("plain").source == UpdateSource.MERGE
    assert store.get_state("fresh") == {"version": 1}


@pytest.mark.parametrize(
    ("strategy", "expected"),
    [
        ("last-write-wins", {"version": 2, "v": "incoming"}),
        ("server-wins", {"version": 1, "v": "current"}),
    ],
)
def test_merge_strategies(strategy: str, expected: dict[str, Any]) -> None:
    store = StateStore()
    store.set_state("k", {"version": 1, "v": "current"})

    store.merge({"k": {"version": 2, "v": "incoming"}}, merge_strategy=strategy)

    assert store.get_state("k") == expected


def test_merge_same_version_is_not_a_conflict() -> None:
    store = StateStore()
    store.set_state("k", {"version": 1, "v": "a"})

    result = store.merge({"k": {"version": 1, "v": "b"}}, merge_strategy="server-wins")

    assert result.conflicts == 0
    assert store.get_state("k") == {"version": 1, "v": "b"}


def test_merge_without_versioning_never_conflicts() -> None:
    store = StateStore(StateStoreConfig(enable_versioning=False))
    store.set_state("k", {"version": 1})

    result = store.merge({"k": {"version": 2}}, merge_strategy="server-wins")

    assert result.conflicts == 0
    assert store.get_state("k") == {"version": 2}


def test_merge_unknown_strategy_raises_before_writing() -> None:
    store = StateStore()

    with pytest.raises(UnknownStrategyError):
        store.merge({"k": 1}, merge_strategy="coin-flip")

    assert store.version == 0


def test_metadata_statistics_and_destroy() -> None:
    store = StateStore()
    store.subscribe("a", lambda value, update: None)
    store.set_state("a", 1)
    store.set_metadata("last_sync", {"status": "success"})

    assert store.get_metadata("last_sync") == {"status": "success"}
    assert store.get_metadata("missing", "dflt") == "dflt"
    assert "a" in store
    assert len(store) == 1
    assert store.keys() == ["a"]
    assert store.get_statistics() == {
        "state_size": 1,
        "history_length": 1,
        "subscriber_count": 1,
        "version": 1,
    }

    store.destroy()

    assert len(store) == 0
    assert store.history == ()
    assert store.get_metadata("last_sync") is None
    assert store.get_statistics()["subscriber_count"] == 0
