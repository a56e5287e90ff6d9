"""Deltas between two successive values of a key.

Use :func:`pystatesync.compute_delta` to build one and
:func:`pystatesync.apply_delta` to replay it on the previous value.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import Field

from pystatesync.models._base import SyncBaseModel, UtcTimestamp, utcnow


class FieldChange(SyncBaseModel):
    old: Any = None
    new: Any = None
    removed: bool = False


class IndexChange(SyncBaseModel):
    index: int = Field(..., ge=0)
    old: Any = None
    new: Any = None


class ObjectDelta(SyncBaseModel):
    """Per-field changes of a mapping."""

    kind: Literal["object"] = "object"
    timestamp: UtcTimestamp = Field(default_factory=utcnow)
    changes: dict[str, FieldChange] = Field(default_factory=dict)


class ArrayDelta(SyncBaseModel):
    """Changes of a list.

    ``added``/``removed`` describe membership, ``modified`` the positions
    present in both versions whose item changed, ``appended`` the items
    past the previous length and ``length`` the new length.
    """

    kind: Literal["array"] = "array"
    timestamp: UtcTimestamp = Field(default_factory=utcnow)
    added: list[Any] = Field(default_factory=list)
    removed: list[Any] = Field(default_factory=list)
    modified: list[IndexChange] = Field(default_factory=list)
    appended: list[Any] = Field(default_factory=list)
    length: int = Field(0, ge=0)


class ValueDelta(SyncBaseModel):
    """Whole-value replacement."""

    kind: Literal["value"] = "value"
    timestamp: UtcTimestamp = Field(default_factory=utcnow)
    old: Any = None
    new: Any = None


Delta = Annotated[ObjectDelta | ArrayDelta | ValueDelta, Field(discriminator="kind")]
