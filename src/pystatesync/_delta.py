"""Delta computation and replay between two values of a key."""

from __future__ import annotations

import copy
import json
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from typing import Any

from pydantic import TypeAdapter

from pystatesync.models._base import utcnow
from pystatesync.models.delta import ArrayDelta, Delta, FieldChange, IndexChange, ObjectDelta, ValueDelta
from pystatesync.models.value import DataType, TaggedValue

_DELTA_ADAPTER: TypeAdapter[Delta] = TypeAdapter(Delta)


def _canonical(value: Any) -> Any:
    if isinstance(value, Mapping):
        pairs = [[f"{type(key).__name__}:{key}", _canonical(item)] for key, item in value.items()]
        return {"map": sorted(pairs, key=lambda pair: pair[0])}
    if isinstance(value, (list, tuple)):
        return [_canonical(item) for item in value]
    return value


def _serialized(value: Any) -> str:
    # Mixed key types are ordered on their tagged text.
    return json.dumps(_canonical(value), default=str)


def _has_str_keys(*mappings: Mapping[Any, Any]) -> bool:
    return all(isinstance(key, str) for mapping in mappings for key in mapping)


def _contains(items: Sequence[Any], item: Any) -> bool:
    return any(item == existing for existing in items)


def _object_delta(old: Mapping[str, Any], new: Mapping[str, Any], timestamp: datetime) -> ObjectDelta:
    changes: dict[str, FieldChange] = {}
    for key in dict.fromkeys([*old, *new]):
        if key not in new:
            changes[key] = FieldChange(old=old[key], removed=True)
        elif key not in old or _serialized(old[key]) != _serialized(new[key]):
            changes[key] = FieldChange(old=old.get(key), new=new[key])
    return ObjectDelta(timestamp=timestamp, changes=changes)


def _array_delta(old: Sequence[Any], new: Sequence[Any], timestamp: datetime) -> ArrayDelta:
    shared = min(len(old), len(new))
    return ArrayDelta(
        timestamp=timestamp,
        added=[item for item in new if not _contains(old, item)],
        removed=[item for item in old if not _contains(new, item)],
        modified=[
            IndexChange(index=index, old=old[index], new=new[index])
            for index in range(shared)
            if _serialized(old[index]) != _serialized(new[index])
        ],
        appended=list(new[len(old) :]),
        length=len(new),
    )


def compute_delta(old: Any, new: Any, *, clock: Callable[[], datetime] = utcnow) -> Delta:
    """Describe how *new* differs from *old*.

    Two mappings give an :class:`ObjectDelta`, two lists an
    :class:`ArrayDelta`; anything else (including a change of shape or
    a mapping with non-string keys) gives a :class:`ValueDelta`.
    """
    before = TaggedValue.wrap(old)
    after = TaggedValue.wrap(new)
    timestamp = clock()
    if before.same_kind(after) and after.kind == DataType.OBJECT and _has_str_keys(old, new):
        return _object_delta(old, new, timestamp)
    if before.same_kind(after) and after.kind == DataType.ARRAY:
        return _array_delta(old, new, timestamp)
    return ValueDelta(timestamp=timestamp, old=copy.deepcopy(old), new=copy.deepcopy(new))


def apply_delta(previous: Any, delta: Delta | Mapping[str, Any]) -> Any:
    """Rebuild the new value from *previous* and *delta*.

    ``apply_delta(old, compute_delta(old, new)) == new`` for JSON-like
    values (tuples come back as lists).
    """
    if isinstance(delta, Mapping):
        delta = _DELTA_ADAPTER.validate_python(delta)

    if isinstance(delta, ObjectDelta):
        result = dict(copy.deepcopy(previous)) if isinstance(previous, Mapping) else {}
        for key, change in delta.changes.items():
            if change.removed:
                result.pop(key, None)
            else:
                result[key] = copy.deepcopy(change.new)
        return result

    if isinstance(delta, ArrayDelta):
        items = list(copy.deepcopy(previous)) if isinstance(previous, (list, tuple)) else []
        items = items[: delta.length]
        for change in delta.modified:
            if change.index < len(items):
                items[change.index] = copy.deepcopy(change.new)
        items.extend(copy.deepcopy(delta.appended))
        return items

    return copy.deepcopy(delta.new)
