"""Versioned in-memory key/value store.

Every successful write bumps a single store-wide version counter, appends a
bounded history record and synchronously notifies the subscribers of the
key (and the ``"*"`` subscribers) in priority order.
"""

from __future__ import annotations

import copy
import logging
import uuid
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any

from pystatesync._constants import DEFAULT_PRIORITY_LEVELS, STORE_MERGE_STRATEGIES, WILDCARD
from pystatesync._redact import redact_for_log
from pystatesync.config import StateStoreConfig
from pystatesync.exceptions import UnknownStrategyError
from pystatesync.models._base import Priority, priority_rank, utcnow
from pystatesync.state.events import (
    BatchUpdateResult,
    HistoryRecord,
    MergeResult,
    StateEntry,
    StateSnapshot,
    StateUpdate,
    Subscriber,
    SubscriberCallback,
    SubscriberFilter,
    UpdateSource,
)
from pystatesync.state.policy import apply_merge_strategy, has_conflict

_logger = logging.getLogger(__name__)


class StateStore:
    """In-memory store for versioned application state.

    The store never merges implicitly: :meth:`set_state` replaces the value
    of a key, :meth:`merge` applies the configured merge policy to keys
    whose versions diverge.
    """

    def __init__(
        self,
        config: StateStoreConfig | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config or StateStoreConfig()
        self._clock = clock
        self._entries: dict[str, StateEntry] = {}
        self._history: deque[HistoryRecord] = deque(maxlen=self._config.history_size)
        self._subscribers: dict[str, dict[str, Subscriber]] = {}
        self._metadata: dict[str, Any] = {}
        self._version = 0
        self._seq = 0

    @property
    def config(self) -> StateStoreConfig:
        return self._config

    @property
    def version(self) -> int:
        """Store-wide version, incremented by every write."""
        return self._version

    @property
    def history(self) -> tuple[HistoryRecord, ...]:
        """History records, oldest first."""
        return tuple(self._history)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set_state(
        self,
        key: str,
        value: Any,
        *,
        metadata: Mapping[str, Any] | None = None,
        source: UpdateSource | str = UpdateSource.CLIENT,
        batch_id: str | None = None,
    ) -> str:
        """Write *value* under *key* and return the update id."""
        previous = self._entries.get(key)
        update = StateUpdate(
            id=f"upd_{uuid.uuid4().hex}",
            key=key,
            value=copy.deepcopy(value),
            version=self._version + 1,
            timestamp=self._clock(),
            metadata=dict(metadata or {}),
            source=UpdateSource(source),
            batch_id=batch_id,
        )
        entry = update.to_entry()

        self._version = update.version
        self._history.append(
            HistoryRecord(update=update, previous_value=previous.value if previous is not None else None)
        )
        self._entries[key] = entry

        if _logger.isEnabledFor(logging.DEBUG):
            _logger.debug(
                "State %s set to version %d by %s: %s",
                key,
                update.version,
                update.source,
                redact_for_log(value),
            )

        self._notify(key, update)
        return update.id

    def batch(self, updates: Iterable[Mapping[str, Any] | tuple[str, Any]]) -> BatchUpdateResult:
        """Apply several writes sharing one batch id.

        Items are ``{"key", "value", "metadata"?, "source"?}`` mappings or
        ``(key, value)`` tuples.  Writes are applied one by one; a failing
        item leaves the earlier writes in place and the exception propagates.
        """
        batch_id = f"bat_{uuid.uuid4().hex}"
        results: dict[str, str] = {}
        for item in updates:
            if isinstance(item, Mapping):
                key = item["key"]
                results[key] = self.set_state(
                    key,
                    item.get("value"),
                    metadata=item.get("metadata"),
                    source=item.get("source", UpdateSource.CLIENT),
                    batch_id=batch_id,
                )
            else:
                key, value = item
                results[key] = self.set_state(key, value, batch_id=batch_id)
        return BatchUpdateResult(batch_id=batch_id, results=results)

    def merge(self, incoming: Mapping[str, Any], *, merge_strategy: str | None = None) -> MergeResult:
        """Merge a remote state mapping into the store.

        Keys whose stored and incoming values carry different versions are
        resolved with *merge_strategy* (default: the configured one) and
        written with source ``conflict-resolution``.  Every other key is
        written as is with source ``merge``.
        """
        strategy = merge_strategy or self._config.merge_strategy
        if strategy not in STORE_MERGE_STRATEGIES:
            raise UnknownStrategyError(strategy)

        conflicts: dict[str, tuple[Any, Any]] = {}
        updates: dict[str, Any] = {}
        for key, value in incoming.items():
            current = self.get_state(key)
            if self._config.enable_versioning and has_conflict(current, value):
                conflicts[key] = (current, value)
            else:
                updates[key] = value

        for key, (current, value) in conflicts.items():
            resolved = apply_merge_strategy(current, value, strategy)
            self.set_state(key, resolved, source=UpdateSource.CONFLICT_RESOLUTION)
        for key, value in updates.items():
            self.set_state(key, value, source=UpdateSource.MERGE)

        if conflicts:
            _logger.debug("Merge resolved %d conflicting keys with %s", len(conflicts), strategy)
        return MergeResult(conflicts=len(conflicts), updates=len(updates))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_state(self, key: str, *, with_metadata: bool = False) -> Any:
        """Return the value of *key* (a :class:`StateSnapshot` with metadata)."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        value = copy.deepcopy(entry.value)
        if with_metadata:
            return StateSnapshot(value=value, version=entry.version, last_update=self.get_last_update(key))
        return value

    def get_entry(self, key: str) -> StateEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        return entry.model_copy(deep=True)

    def entries(self) -> list[StateEntry]:
        return [entry.model_copy(deep=True) for entry in self._entries.values()]

    def keys(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get_last_update(self, key: str) -> HistoryRecord | None:
        """Newest history record for *key* still retained, if any."""
        for record in reversed(self._history):
            if record.update.key == key:
                return record
        return None

    # ------------------------------------------------------------------
    # Store metadata
    # ------------------------------------------------------------------

    def set_metadata(self, name: str, value: Any) -> None:
        self._metadata[name] = copy.deepcopy(value)

    def get_metadata(self, name: str, default: Any = None) -> Any:
        if name not in self._metadata:
            return default
        return copy.deepcopy(self._metadata[name])

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def subscribe(
        self,
        key: str,
        callback: SubscriberCallback,
        *,
        priority: str = Priority.NORMAL,
        filter: SubscriberFilter | None = None,
    ) -> str:
        """Call *callback(value, update)* after every write to *key*.

        ``"*"`` subscribes to every key.  Returns the subscriber id.
        """
        priority_rank(priority, DEFAULT_PRIORITY_LEVELS)
        self._seq += 1
        subscriber = Subscriber(
            id=f"sub_{uuid.uuid4().hex}",
            key=key,
            callback=callback,
            priority=str(priority),
            filter=filter,
            seq=self._seq,
        )
        self._subscribers.setdefault(key, {})[subscriber.id] = subscriber
        return subscriber.id

    def unsubscribe(self, key: str, subscriber_id: str) -> bool:
        subscribers = self._subscribers.get(key)
        if not subscribers or subscriber_id not in subscribers:
            return False
        del subscribers[subscriber_id]
        if not subscribers:
            del self._subscribers[key]
        return True

    def _notify(self, key: str, update: StateUpdate) -> None:
        matching = list(self._subscribers.get(key, {}).values())
        if key != WILDCARD:
            matching.extend(self._subscribers.get(WILDCARD, {}).values())
        if not matching:
            return
        matching.sort(key=lambda sub: (-priority_rank(sub.priority, DEFAULT_PRIORITY_LEVELS), sub.seq))

        for subscriber in matching:
            value = copy.deepcopy(update.value)
            try:
                if not subscriber.accepts(value, update):
                    continue
                subscriber.callback(value, update)
            except Exception:
                _logger.warning("State subscriber %s failed for key %s", subscriber.id, key, exc_info=True)

    # ------------------------------------------------------------------
    # Introspection / teardown
    # ------------------------------------------------------------------

    def get_statistics(self) -> dict[str, int]:
        return {
            "state_size": len(self._entries),
            "history_length": len(self._history),
            "subscriber_count": sum(len(subs) for subs in self._subscribers.values()),
            "version": self._version,
        }

    def destroy(self) -> None:
        """Drop every entry, history record, subscriber and metadata item."""
        self._entries.clear()
        self._history.clear()
        self._subscribers.clear()
        self._metadata.clear()
