"""Tagged payload values.

State values are arbitrary structured data.  Merge rules and deltas need
to know which shape they are dealing with, so values are classified once
into a :class:`DataType` and carried around as a :class:`TaggedValue`.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from pystatesync.models._base import SyncBaseModel


class DataType(StrEnum):
    SCALAR = "scalar"
    ARRAY = "array"
    OBJECT = "object"
    STRING = "string"

    @classmethod
    def of(cls, value: Any) -> DataType:
        """Classify *value*.

        ``str`` is a string, any mapping an object, lists and tuples are
        arrays.  Everything else (numbers, booleans, ``None``, ...) is a
        scalar.
        """
        if isinstance(value, str):
            return cls.STRING
        if isinstance(value, Mapping):
            return cls.OBJECT
        if isinstance(value, (list, tuple)):
            return cls.ARRAY
        return cls.SCALAR


class TaggedValue(SyncBaseModel):
    """A payload value together with its shape."""

    kind: DataType
    data: Any = None

    @classmethod
    def wrap(cls, value: Any) -> TaggedValue:
        if isinstance(value, TaggedValue):
            return value
        return cls(kind=DataType.of(value), data=value)

    def same_kind(self, other: TaggedValue) -> bool:
        return self.kind == other.kind
