"""State entries, update records and subscriber registrations.

Every write to a :class:`~pystatesync.state.store.StateStore` produces a
:class:`StateUpdate`.  The store keeps one :class:`StateEntry` per key and a
bounded ring of :class:`HistoryRecord`s.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import Field, field_validator

from pystatesync.models._base import Priority, SyncBaseModel, UtcTimestamp, utcnow


class UpdateSource(StrEnum):
    CLIENT = "client"
    SERVER = "server"
    MERGE = "merge"
    CONFLICT_RESOLUTION = "conflict-resolution"


class StateEntry(SyncBaseModel):
    """The live value of one key."""

    key: str
    value: Any = None
    version: int = Field(..., ge=0, description="Store-wide version assigned by the write")
    timestamp: UtcTimestamp = Field(default_factory=utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)
    source: UpdateSource = UpdateSource.CLIENT

    @field_validator("key")
    @classmethod
    def _require_key(cls, value: str) -> str:
        if not value:
            raise ValueError("key must be non-empty")
        return value


class StateUpdate(SyncBaseModel):
    """A normalized write applied to the store."""

    id: str
    key: str
    value: Any = None
    version: int
    timestamp: UtcTimestamp = Field(default_factory=utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)
    source: UpdateSource = UpdateSource.CLIENT
    batch_id: str | None = None

    def to_entry(self) -> StateEntry:
        return StateEntry(
            key=self.key,
            value=self.value,
            version=self.version,
            timestamp=self.timestamp,
            metadata=self.metadata,
            source=self.source,
        )


class HistoryRecord(SyncBaseModel):
    update: StateUpdate
    previous_value: Any = None


class StateSnapshot(SyncBaseModel):
    """Value of a key plus its version and the newest history record."""

    value: Any = None
    version: int
    last_update: HistoryRecord | None = None


class BatchUpdateResult(SyncBaseModel):
    batch_id: str
    results: dict[str, str] = Field(default_factory=dict, description="key -> update id")


class MergeResult(SyncBaseModel):
    conflicts: int = 0
    updates: int = 0


SubscriberCallback = Callable[[Any, StateUpdate], None]
SubscriberFilter = Callable[[Any, StateUpdate], bool]


@dataclass(slots=True)
class Subscriber:
    """A per-key change callback registered on a store.

    ``seq`` is the registration order, used to break priority ties.
    """

    id: str
    key: str
    callback: SubscriberCallback
    priority: str = Priority.NORMAL
    filter: SubscriberFilter | None = None
    seq: int = 0

    def accepts(self, value: Any, update: StateUpdate) -> bool:
        return self.filter is None or bool(self.filter(value, update))

