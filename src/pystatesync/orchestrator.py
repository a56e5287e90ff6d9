"""Sync orchestrator: batches dirty state to a transport and folds back conflicts."""

from __future__ import annotations

import asyncio
import contextlib
import copy
import logging
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pystatesync._constants import LAST_SYNC_METADATA, WILDCARD, EventType, SyncState, SyncStatus
from pystatesync._delta import apply_delta, compute_delta
from pystatesync._redact import redact_for_log
from pystatesync._transport import Transport
from pystatesync.bus import EventBus
from pystatesync.config import ConflictResolverConfig, SyncConfig
from pystatesync.exceptions import BatchTransportError
from pystatesync.models._base import utcnow
from pystatesync.models.conflict import Conflict, Resolution, ResolutionRecord, ResolutionSource
from pystatesync.models.delta import Delta, ValueDelta
from pystatesync.models.event import DeliveryInfo
from pystatesync.models.sync import BatchReply, QueuedChange, ResolvedConflict, SyncChange, SyncReport, SyncStats
from pystatesync.models.value import DataType
from pystatesync.resolver import ConflictResolver
from pystatesync.state.events import StateUpdate, UpdateSource
from pystatesync.state.store import StateStore

_logger = logging.getLogger(__name__)

_RESOLUTION_SOURCES: dict[ResolutionSource, UpdateSource] = {
    ResolutionSource.SERVER: UpdateSource.SERVER,
    ResolutionSource.CLIENT: UpdateSource.CLIENT,
    ResolutionSource.MERGED: UpdateSource.MERGE,
}

SyncCompleteCallback = Callable[[SyncStats], None]


@dataclass(slots=True)
class _SyncedValue:
    version: int
    value: Any


@dataclass(slots=True)
class _CycleOutcome:
    success: list[Any] = field(default_factory=list)
    conflicts: list[ResolvedConflict] = field(default_factory=list)
    errors: list[Any] = field(default_factory=list)


def _error_keys(errors: list[Any]) -> set[str]:
    """Keys named by reply errors or covered by a failed batch."""
    keys: set[str] = set()
    for error in errors:
        if isinstance(error, BatchTransportError):
            keys.update(error.keys)
        elif isinstance(error, Mapping) and error.get("key") is not None:
            keys.add(str(error["key"]))
    return keys


class SyncOrchestrator:
    """Runs sync cycles between a :class:`StateStore` and a remote peer.

    A cycle collects the entries changed since their last synchronized
    version, sends them in batches through *transport*, resolves the
    conflicts the peer reports and writes the resolutions back into the
    store.  Progress is published on the event bus (``batch-complete``,
    ``conflict-resolved``, ``sync-complete``/``sync-error``).

    Only one cycle runs at a time: calling :meth:`sync` while a cycle is in
    progress returns ``None`` immediately.
    """

    def __init__(
        self,
        transport: Transport,
        config: SyncConfig | None = None,
        *,
        event_bus: EventBus | None = None,
        state_store: StateStore | None = None,
        conflict_resolver: ConflictResolver | None = None,
        on_sync_complete: SyncCompleteCallback | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config or SyncConfig()
        self._transport = transport
        self._clock = clock
        self._bus = event_bus if event_bus is not None else EventBus(clock=clock)
        self._store = state_store if state_store is not None else StateStore(clock=clock)
        self._resolver = (
            conflict_resolver
            if conflict_resolver is not None
            else ConflictResolver(ConflictResolverConfig(max_retries=self._config.retry_attempts), clock=clock)
        )
        self._on_sync_complete = on_sync_complete

        self._state = SyncState.INITIAL
        self._is_syncing = False
        self._stats = SyncStats()
        self._last_sync_timestamp: datetime | None = None
        self._synced: dict[str, _SyncedValue] = {}
        self._queue: list[QueuedChange] = []
        self._pending_batches: dict[str, list[SyncChange]] = {}
        self._loop_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()

        self._bus_listeners = [
            (EventType.DATA_CHANGE, self._bus.subscribe(EventType.DATA_CHANGE, self._handle_data_change)),
            (EventType.CONFLICT, self._bus.subscribe(EventType.CONFLICT, self._handle_conflict_event)),
        ]
        self._store_subscription: str | None = None
        if self._store.config.auto_sync:
            self._store_subscription = self._store.subscribe(WILDCARD, self._forward_write)

    async def __aenter__(self) -> SyncOrchestrator:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> SyncConfig:
        return self._config

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def state_store(self) -> StateStore:
        return self._store

    @property
    def conflict_resolver(self) -> ConflictResolver:
        return self._resolver

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    @property
    def stats(self) -> SyncStats:
        return self._stats

    @property
    def last_sync_timestamp(self) -> datetime | None:
        return self._last_sync_timestamp

    @property
    def pending_changes(self) -> tuple[QueuedChange, ...]:
        """``data-change`` notifications not yet covered by a completed cycle."""
        return tuple(self._queue)

    # ------------------------------------------------------------------
    # Periodic loop
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Run :meth:`sync` every ``sync_interval`` seconds until :meth:`stop`."""
        if self._loop_task is not None and not self._loop_task.done():
            return
        self._loop_task = asyncio.create_task(self._run_periodic(), name="pystatesync-sync-loop")

    async def stop(self) -> None:
        task = self._loop_task
        self._loop_task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run_periodic(self) -> None:
        while True:
            await asyncio.sleep(self._config.sync_interval)
            await self.sync()

    async def flush(self) -> None:
        """Wait until every forwarded store write has been published."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # Change intake
    # ------------------------------------------------------------------

    def _forward_write(self, value: Any, update: StateUpdate) -> None:
        record = self._store.get_last_update(update.key)
        previous = record.previous_value if record is not None and record.update.id == update.id else None
        change = {"key": update.key, "value": value, "version": update.version, "previous": previous}
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._enqueue(change)
            return
        task = loop.create_task(self._bus.publish(EventType.DATA_CHANGE, change))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _handle_data_change(self, data: Any, info: DeliveryInfo) -> None:
        self._enqueue(data)

    def _delta_between(self, key: str, old: Any, new: Any) -> Delta:
        try:
            return compute_delta(old, new, clock=self._clock)
        except (TypeError, ValueError) as exc:
            _logger.warning("Delta for %s fell back to a full value: %s", key, exc)
            return ValueDelta(timestamp=self._clock(), old=copy.deepcopy(old), new=copy.deepcopy(new))

    def _enqueue(self, change: Mapping[str, Any]) -> None:
        delta = None
        if self._config.enable_delta_updates:
            delta = self._delta_between(change["key"], change.get("previous"), change.get("value"))
        self._queue.append(
            QueuedChange(
                key=change["key"],
                value=change.get("value"),
                version=change.get("version"),
                timestamp=self._clock(),
                delta=delta,
            )
        )

    # ------------------------------------------------------------------
    # Sync cycle
    # ------------------------------------------------------------------

    async def sync(self) -> SyncReport | None:
        """Run one sync cycle.

        Returns ``None`` when a cycle is already running or nothing is
        dirty.  Failures are reported through the returned report and a
        ``sync-error`` event, never raised.
        """
        if self._is_syncing:
            _logger.debug("Sync already in progress; skipping")
            return None
        self._is_syncing = True
        changes: list[SyncChange] = []
        try:
            changes = self._collect_changes()
            if not changes:
                return None
            self._state = SyncState.SYNCING
            batches = self._create_batches(changes)
            _logger.debug("Syncing %d changes in %d batches", len(changes), len(batches))
            outcome = await self._process_batches(batches)
            return await self._complete(changes, len(batches), outcome)
        except Exception as exc:
            return await self._handle_sync_error(exc, changes)
        finally:
            self._is_syncing = False

    def _collect_changes(self) -> list[SyncChange]:
        changes: list[SyncChange] = []
        for entry in self._store.entries():
            synced = self._synced.get(entry.key)
            if synced is not None and synced.version == entry.version:
                continue
            delta: Delta | None = None
            if self._config.enable_delta_updates and synced is not None:
                delta = self._delta_between(entry.key, synced.value, entry.value)
            changes.append(SyncChange(**entry.model_dump(), delta=delta))
        return changes

    def _create_batches(self, changes: list[SyncChange]) -> list[list[SyncChange]]:
        size = self._config.batch_size
        return [changes[i : i + size] for i in range(0, len(changes), size)]

    async def _process_batches(self, batches: list[list[SyncChange]]) -> _CycleOutcome:
        outcome = _CycleOutcome()
        for index, batch in enumerate(batches):
            batch_id = f"batch_{uuid.uuid4().hex}"
            self._pending_batches[batch_id] = batch
            try:
                raw_reply = await self._transport.send_batch(batch)
                reply = raw_reply if isinstance(raw_reply, BatchReply) else BatchReply.model_validate(raw_reply)
            except Exception as exc:
                keys = [change.key for change in batch]
                error = BatchTransportError(f"Batch {index} failed: {exc}", batch_index=index, keys=keys)
                error.__cause__ = exc
                _logger.warning("Sync batch %d (%d changes) failed: %s", index, len(batch), exc)
                outcome.errors.append(error)
                continue
            finally:
                self._pending_batches.pop(batch_id, None)

            for conflict in reply.conflicts:
                resolution = await self.handle_conflict(conflict)
                outcome.conflicts.append(ResolvedConflict(original=conflict, resolution=resolution))
            outcome.success.extend(reply.success)
            outcome.errors.extend(reply.errors)

            await self._bus.publish(
                EventType.BATCH_COMPLETE,
                {
                    "batch_id": batch_id,
                    "index": index,
                    "changes": len(batch),
                    "conflicts": len(reply.conflicts),
                    "errors": len(reply.errors),
                },
            )
        return outcome

    async def _complete(self, changes: list[SyncChange], batch_count: int, outcome: _CycleOutcome) -> SyncReport:
        timestamp = self._clock()
        status = SyncStatus.PARTIAL if outcome.errors else SyncStatus.SUCCESS

        skipped = _error_keys(outcome.errors)
        for change in changes:
            if change.key in skipped:
                continue
            current = self._synced.get(change.key)
            if current is not None and current.version > change.version:
                continue
            self._synced[change.key] = _SyncedValue(version=change.version, value=change.value)
        self._queue = [queued for queued in self._queue if not self._is_synced(queued)]

        self._stats = SyncStats(
            last_successful_sync=timestamp if status == SyncStatus.SUCCESS else self._stats.last_successful_sync,
            changes_processed=len(changes),
            conflicts_resolved=len(outcome.conflicts),
            errors=len(outcome.errors),
        )
        self._last_sync_timestamp = timestamp
        self._state = SyncState.SYNCED if status == SyncStatus.SUCCESS else SyncState.PARTIAL_SYNC
        self._store.set_metadata(
            LAST_SYNC_METADATA,
            {"timestamp": timestamp, "status": status.value, "stats": self._stats.model_dump()},
        )

        if self._on_sync_complete is not None:
            try:
                self._on_sync_complete(self._stats)
            except Exception:
                _logger.warning("on_sync_complete callback failed", exc_info=True)

        await self._bus.publish(
            EventType.SYNC_COMPLETE,
            {
                "timestamp": timestamp,
                "changes": len(changes),
                "conflicts": len(outcome.conflicts),
                "errors": len(outcome.errors),
            },
        )
        _logger.debug(
            "Sync cycle %s: %d changes, %d conflicts, %d errors",
            status,
            len(changes),
            len(outcome.conflicts),
            len(outcome.errors),
        )
        return SyncReport(
            status=status,
            timestamp=timestamp,
            changes=len(changes),
            batches=batch_count,
            success=outcome.success,
            conflicts=outcome.conflicts,
            errors=outcome.errors,
        )

    def _is_synced(self, queued: QueuedChange) -> bool:
        synced = self._synced.get(queued.key)
        if synced is None:
            return False
        return queued.version is None or queued.version <= synced.version

    async def _handle_sync_error(self, exc: Exception, changes: list[SyncChange]) -> SyncReport:
        timestamp = self._clock()
        self._state = SyncState.ERROR
        self._stats = self._stats.model_copy(update={"errors": self._stats.errors + 1})
        _logger.warning("Sync cycle failed: %s", exc, exc_info=True)
        await self._bus.publish(
            EventType.SYNC_ERROR,
            {"error": str(exc), "error_type": type(exc).__name__, "timestamp": timestamp},
        )
        return SyncReport(
            status=SyncStatus.FAILED,
            timestamp=timestamp,
            changes=len(changes),
            errors=[exc],
            error=str(exc),
        )

    # ------------------------------------------------------------------
    # Conflicts
    # ------------------------------------------------------------------

    async def handle_conflict(self, conflict: Conflict | Mapping[str, Any]) -> Resolution:
        """Resolve *conflict*, write the result and publish ``conflict-resolved``.

        Raises :class:`ResolutionExhaustedError` when the resolver gives up.
        """
        if not isinstance(conflict, Conflict):
            conflict = Conflict.model_validate(conflict)
        update: dict[str, Any] = {}
        if conflict.data_type is None:
            update["data_type"] = DataType.of(conflict.server_value)
        if conflict.key is not None and "key" not in conflict.metadata:
            update["metadata"] = {**conflict.metadata, "key": conflict.key, "version": conflict.version}
        if update:
            conflict = conflict.model_copy(update=update)

        resolution = self._resolver.resolve_conflict(conflict)
        if conflict.key is not None:
            self._apply_resolution(conflict.key, resolution)

        await self._bus.publish(
            EventType.CONFLICT_RESOLVED,
            {"key": conflict.key, "resolution": resolution, "timestamp": self._clock()},
        )
        return resolution

    def _apply_resolution(self, key: str, resolution: Resolution) -> None:
        self._store.set_state(
            key,
            resolution.value,
            metadata=resolution.metadata,
            source=_RESOLUTION_SOURCES[resolution.source],
        )
        if resolution.source == ResolutionSource.SERVER:
            entry = self._store.get_entry(key)
            if entry is not None:
                self._synced[key] = _SyncedValue(version=entry.version, value=entry.value)

    async def _handle_conflict_event(self, data: Any, info: DeliveryInfo) -> None:
        await self.handle_conflict(data)

    # ------------------------------------------------------------------
    # Deltas
    # ------------------------------------------------------------------

    async def apply_remote_delta(self, key: str, delta: Delta | Mapping[str, Any]) -> Any:
        """Apply a delta received from the peer to the stored value of *key*.

        The result is written with source ``server``, counts as
        synchronized and is announced with a ``delta-applied`` event.
        """
        value = apply_delta(self._store.get_state(key), delta)
        self._store.set_state(key, value, source=UpdateSource.SERVER)
        entry = self._store.get_entry(key)
        if entry is not None:
            self._synced[key] = _SyncedValue(version=entry.version, value=entry.value)
        if _logger.isEnabledFor(logging.DEBUG):
            _logger.debug("Applied remote delta to %s: %s", key, redact_for_log(value))
        await self._bus.publish(
            EventType.DELTA_APPLIED,
            {"key": key, "value": value, "version": entry.version if entry else None, "timestamp": self._clock()},
        )
        return value

    # ------------------------------------------------------------------
    # Introspection / teardown
    # ------------------------------------------------------------------

    def get_conflict_statistics(self) -> dict[str, Any]:
        return self._resolver.get_statistics()

    def get_conflict_history(
        self,
        *,
        strategy: str | None = None,
        since: datetime | float | None = None,
    ) -> list[ResolutionRecord]:
        return self._resolver.get_resolution_history(strategy=strategy, since=since)

    def destroy(self) -> None:
        """Stop the periodic loop and tear down every component."""
        if self._loop_task is not None:
            self._loop_task.cancel()
            self._loop_task = None
        for event_name, listener_id in self._bus_listeners:
            self._bus.unsubscribe(event_name, listener_id)
        if self._store_subscription is not None:
            self._store.unsubscribe(WILDCARD, self._store_subscription)
            self._store_subscription = None
        self._bus.destroy()
        self._store.destroy()
        self._resolver.destroy()
        self._queue.clear()
        self._pending_batches.clear()
        self._synced.clear()
