"""Models exchanged with the transport and reported by a sync cycle."""

from __future__ import annotations

from typing import Any

from pydantic import ConfigDict, Field

from pystatesync._constants import SyncStatus
from pystatesync.models._base import SyncBaseModel, SyncTimestamp, UtcTimestamp, utcnow
from pystatesync.models.conflict import Conflict, Resolution
from pystatesync.models.delta import Delta
from pystatesync.state.events import StateEntry


class SyncChange(StateEntry):
    """A dirty entry sent to the transport.

    ``delta`` is relative to the last synchronized value of the key and
    is ``None`` for keys that were never synchronized.
    """

    delta: Delta | None = None


class BatchReply(SyncBaseModel):
    """What the peer answered for one batch.

    ``errors`` items naming a ``key`` keep that key dirty.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    success: list[Any] = Field(default_factory=list)
    conflicts: list[Conflict] = Field(default_factory=list)
    errors: list[Any] = Field(default_factory=list)


class QueuedChange(SyncBaseModel):
    """A ``data-change`` notification waiting for the next cycle."""

    key: str
    value: Any = None
    version: int | None = None
    timestamp: UtcTimestamp = Field(default_factory=utcnow)
    delta: Delta | None = None


class ResolvedConflict(SyncBaseModel):
    original: Conflict
    resolution: Resolution


class SyncStats(SyncBaseModel):
    last_successful_sync: SyncTimestamp = None
    changes_processed: int = 0
    conflicts_resolved: int = 0
    errors: int = 0


class SyncReport(SyncBaseModel):
    """Outcome of one :meth:`SyncOrchestrator.sync` call."""

    status: SyncStatus
    timestamp: UtcTimestamp = Field(default_factory=utcnow)
    changes: int = 0
    batches: int = 0
    success: list[Any] = Field(default_factory=list)
    conflicts: list[ResolvedConflict] = Field(default_factory=list)
    errors: list[Any] = Field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == SyncStatus.SUCCESS
