from __future__ import annotations

from typing import Any

import pytest

from pystatesync import apply_delta, compute_delta
from pystatesync.models.delta import ArrayDelta, FieldChange, IndexChange, ObjectDelta, ValueDelta


def test_object_delta_lists_changed_and_removed_fields() -> None:
    old = {"a": 1, "b": {"x": [1, 2]}, "gone": True}
    new = {"a": 1, "b": {"x": [1, 3]}, "added": "yes"}

    delta = compute_delta(old, new)

    assert isinstance(delta, ObjectDelta)
    assert delta.changes == {
        "b": FieldChange(old={"x": [1, 2]}, new={"x": [1, 3]}),
        "gone": FieldChange(old=True, removed=True),
        "added": FieldChange(old=None, new="yes"),
    }


def test_object_delta_ignores_key_order() -> None:
    delta = compute_delta({"a": {"x": 1, "y": 2}}, {"a": {"y": 2, "x": 1}})

    assert isinstance(delta, ObjectDelta)
    assert delta.changes == {}


def test_array_delta() -> None:
    delta = compute_delta([1, 2, 3], [1, 5, 3, 4])

    assert isinstance(delta, ArrayDelta)
    assert delta.added == [5, 4]
    assert delta.removed == [2]
    assert delta.modified == [IndexChange(index=1, old=2, new=5)]
    assert delta.appended == [4]
    assert delta.length == 4


def test_type_change_gives_value_delta() -> None:
    delta = compute_delta({"a": 1}, [1])

    assert isinstance(delta, ValueDelta)
    assert delta.old == {"a": 1}
    assert delta.new == [1]


@pytest.mark.parametrize(
    ("old", "new"),
    [
        ({"a": 1, "b": 2}, {"a": 1, "c": None}),
        ({}, {"nested": {"deep": [1, {"x": 2}]}}),
        ([1, 2, 3, 4], [1, 2]),
        (["a", "b"], ["b", "a", "c", "a"]),
        ([{"id": 1}], [{"id": 2}, {"id": 1}]),
        (None, {"a": 1}),
        ("text", 42),
        (1.5, 1.5),
        ({1: "x", "a": [1]}, {1: "y", "a": [1]}),
    ],
)
def test_apply_delta_reconstructs_new_value(old: Any, new: Any) -> None:
    assert apply_delta(old, compute_delta(old, new)) == new


def test_mapping_with_non_string_keys_gives_value_delta() -> None:
    delta = compute_delta({1: "x"}, {1: "y"})

    assert isinstance(delta, ValueDelta)
    assert delta.new == {1: "y"}


def test_nested_mixed_key_types_compare_by_value() -> None:
    old = {"a": {1: "x", "b": 2}}
    new = {"a": {"b": 2, 1: "x"}, "c": 1}

    delta = compute_delta(old, new)

    assert isinstance(delta, ObjectDelta)
    assert delta.changes == {"c": FieldChange(old=None, new=1)}


def test_apply_delta_accepts_serialized_delta() -> None:
    delta = compute_delta({"a": 1}, {"a": 2})

    payload = delta.model_dump(mode="json")

    assert apply_delta({"a": 1}, payload) == {"a": 2}


def test_apply_delta_does_not_mutate_previous() -> None:
    previous = {"a": [1]}

    apply_delta(previous, compute_delta(previous, {"a": [1, 2]}))

    assert previous == {"a": [1]}
