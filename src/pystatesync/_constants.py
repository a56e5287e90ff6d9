"""Internal constants shared across the library."""

from __future__ import annotations

from enum import StrEnum


class EventType(StrEnum):
    """Event names published on the bus by the sync engine."""

    DATA_CHANGE = "data-change"
    SYNC_COMPLETE = "sync-complete"
    SYNC_ERROR = "sync-error"
    CONFLICT = "conflict"
    CONFLICT_RESOLVED = "conflict-resolved"
    BATCH_COMPLETE = "batch-complete"
    DELTA_APPLIED = "delta-applied"


class SyncState(StrEnum):
    """Lifecycle state of a :class:`~pystatesync.orchestrator.SyncOrchestrator`."""

    INITIAL = "initial"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"
    PARTIAL_SYNC = "partial-sync"


class SyncStatus(StrEnum):
    """Outcome of one sync cycle."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


# ------------------------------------------------------------------
# Strategy names
# ------------------------------------------------------------------

SERVER_WINS = "server-wins"
CLIENT_WINS = "client-wins"
LAST_WRITE_WINS = "last-write-wins"
AUTO_MERGE = "auto-merge"
MERGE_FIELDS = "merge-fields"

#: Strategies understood by :meth:`StateStore.merge`.
STORE_MERGE_STRATEGIES: frozenset[str] = frozenset({LAST_WRITE_WINS, SERVER_WINS, MERGE_FIELDS})

#: Key under which object merges stamp their provenance.
MERGE_METADATA_KEY = "_metadata"

#: Store metadata entry stamped after every completed sync cycle.
LAST_SYNC_METADATA = "last_sync"

DEFAULT_PRIORITY_LEVELS: tuple[str, ...] = ("high", "normal", "low")

#: Subscription pattern matching every key (store) or every registered event name (bus).
WILDCARD = "*"
