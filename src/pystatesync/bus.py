"""Priority-ordered, backpressure-aware async event bus."""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any

from pystatesync._constants import WILDCARD
from pystatesync._redact import redact_for_log
from pystatesync._storage import EventStorage, InMemoryEventStorage
from pystatesync.config import EventBusConfig
from pystatesync.exceptions import DeliveryTimeoutError, ListenerError
from pystatesync.models._base import Priority, parse_timestamp, priority_rank, utcnow
from pystatesync.models.event import (
    BatchPublishResult,
    Event,
    Listener,
    ListenerCallback,
    ListenerFilter,
    PublishRequest,
    delivery_info,
)

_logger = logging.getLogger(__name__)

DeliveryFailureHook = Callable[[Event, Exception], None]
ListenerErrorHook = Callable[[Listener, Event, Exception], None]


class EventBus:
    """Async publish/subscribe with per-event-name replay buffers.

    Parameters
    ----------
    config : EventBusConfig | None
        Bus configuration; defaults to :class:`EventBusConfig()`.
    storage : EventStorage | None
        Where events are saved when ``config.persistence`` is on.
    on_delivery_failure : callable | None
        ``(event, error)`` called when listeners miss the delivery timeout.
    on_listener_error : callable | None
        ``(listener, event, error)`` called when a listener raises.
    clock : callable
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        config: EventBusConfig | None = None,
        *,
        storage: EventStorage | None = None,
        on_delivery_failure: DeliveryFailureHook | None = None,
        on_listener_error: ListenerErrorHook | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config or EventBusConfig()
        self._storage: EventStorage = storage if storage is not None else InMemoryEventStorage()
        self._on_delivery_failure = on_delivery_failure
        self._on_listener_error = on_listener_error
        self._clock = clock
        self._listeners: dict[str, dict[str, Listener]] = {}
        self._buffers: dict[str, deque[Event]] = {}
        self._deliveries: dict[str, list[asyncio.Task[None]]] = {}
        self._inflight: set[asyncio.Task[None]] = set()
        self._seq = 0
        self._stats = {"published": 0, "delivered": 0, "failed": 0, "batched": 0}

    @property
    def config(self) -> EventBusConfig:
        return self._config

    @property
    def storage(self) -> EventStorage:
        return self._storage

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(
        self,
        pattern: str,
        callback: ListenerCallback,
        *,
        priority: str = Priority.NORMAL,
        filter: ListenerFilter | None = None,
        backpressure: bool = False,
    ) -> str:
        """Register *callback(data, info)* and return the listener id.

        ``"*"`` registers the listener under every event name that has
        listeners right now; names registered later are not covered.
        """
        priority_rank(priority, self._config.priority_levels)
        names = list(self._listeners) if pattern == WILDCARD else [pattern]
        listener_id = f"lst_{uuid.uuid4().hex}"
        self._seq += 1

        for name in names:
            listeners = self._listeners.setdefault(name, {})
            listeners[listener_id] = Listener(
                id=listener_id,
                event_name=name,
                callback=callback,
                priority=str(priority),
                filter=filter,
                backpressure=backpressure,
                seq=self._seq,
            )
            if len(listeners) > self._config.max_listeners:
                _logger.warning(
                    "Event %r has %d listeners (max_listeners=%d)",
                    name,
                    len(listeners),
                    self._config.max_listeners,
                )

        if not names:
            _logger.debug("Wildcard listener %s matched no registered event", listener_id)
        return listener_id

    def unsubscribe(self, event_name: str, listener_id: str) -> bool:
        listeners = self._listeners.get(event_name)
        if not listeners or listener_id not in listeners:
            return False
        del listeners[listener_id]
        if not listeners:
            del self._listeners[event_name]
        return True

    def listeners(self, event_name: str) -> list[Listener]:
        """Listeners of *event_name* in delivery order."""
        levels = self._config.priority_levels
        return sorted(
            self._listeners.get(event_name, {}).values(),
            key=lambda listener: (-priority_rank(listener.priority, levels), listener.seq),
        )

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def publish(
        self,
        name: str,
        data: Any = None,
        *,
        priority: str = Priority.NORMAL,
        metadata: Mapping[str, Any] | None = None,
        batch_id: str | None = None,
    ) -> str:
        """Publish an event and wait for its delivery (bounded by the timeout).

        Returns the event id.  Listener failures and delivery timeouts are
        recorded and reported to the hooks, never raised.
        """
        priority_rank(priority, self._config.priority_levels)
        event_metadata = dict(metadata or {})
        if batch_id is not None:
            event_metadata["batch_id"] = batch_id
        event = Event(
            id=f"evt_{uuid.uuid4().hex}",
            name=name,
            data=data,
            timestamp=self._clock(),
            priority=str(priority),
            metadata=event_metadata,
        )

        if self._config.persistence:
            await self._storage.save_event(event)

        buffer = self._buffers.get(name)
        if buffer is None:
            buffer = deque(maxlen=self._config.buffer_size)
            self._buffers[name] = buffer
        buffer.append(event)
        self._stats["published"] += 1

        if _logger.isEnabledFor(logging.DEBUG):
            _logger.debug("Publishing %s id=%s data=%s", name, event.id, redact_for_log(data))

        await self._deliver(event)
        return event.id

    async def batch_publish(self, events: Iterable[PublishRequest | Mapping[str, Any]]) -> BatchPublishResult:
        """Publish several events concurrently under one batch id."""
        requests = [
            event if isinstance(event, PublishRequest) else PublishRequest.model_validate(event) for event in events
        ]
        batch_id = f"batch_{uuid.uuid4().hex}"
        results = await asyncio.gather(
            *(
                self.publish(
                    request.name,
                    request.data,
                    priority=request.priority,
                    metadata=request.metadata,
                    batch_id=batch_id,
                )
                for request in requests
            )
        )
        self._stats["batched"] += len(requests)
        return BatchPublishResult(batch_id=batch_id, results=list(results), timestamp=self._clock())

    async def replay_events(self, event_name: str, since: datetime | float) -> BatchPublishResult:
        """Republish buffered *event_name* events with ``timestamp >= since``.

        Replayed events get new ids and ``metadata["replayed"] = True``.
        """
        threshold = parse_timestamp(since)
        requests = [
            PublishRequest(
                name=event.name,
                data=event.data,
                priority=event.priority,
                metadata={**event.metadata, "replayed": True},
            )
            for event in self.get_event_history(event_name)
            if event.timestamp >= threshold
        ]
        return await self.batch_publish(requests)

    def get_event_history(self, event_name: str) -> list[Event]:
        """Buffered events of *event_name*, oldest first."""
        return list(self._buffers.get(event_name, ()))

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _deliver(self, event: Event) -> None:
        # Tasks start in creation order, so invocation follows priority.
        tasks = [
            asyncio.create_task(self._notify(listener, event), name=f"{event.id}:{listener.id}")
            for listener in self.listeners(event.name)
        ]
        for task in tasks:
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
        self._deliveries[event.id] = tasks

        try:
            pending: set[asyncio.Task[None]] = set()
            if tasks:
                _, pending = await asyncio.wait(tasks, timeout=self._config.delivery_timeout)
            if pending:
                self._stats["failed"] += 1
                self._handle_delivery_failure(event, DeliveryTimeoutError(event.id, self._config.delivery_timeout))
            else:
                self._stats["delivered"] += 1
        finally:
            self._deliveries.pop(event.id, None)

    async def _notify(self, listener: Listener, event: Event) -> None:
        threshold = self._config.backpressure_threshold
        acquired = False
        try:
            if not listener.accepts(event.data):
                return
            if listener.backpressure:
                async with listener.capacity:
                    await listener.capacity.wait_for(lambda: listener.pending < threshold)
                    listener.pending += 1
                    acquired = True
            result = listener.callback(event.data, delivery_info(event))
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            self._handle_listener_error(listener, event, exc)
        finally:
            if acquired:
                async with listener.capacity:
                    listener.pending -= 1
                    listener.capacity.notify()

    def _handle_delivery_failure(self, event: Event, error: DeliveryTimeoutError) -> None:
        _logger.warning("Event delivery failed: %s (%s)", event.id, error)
        if self._on_delivery_failure is None:
            return
        try:
            self._on_delivery_failure(event, error)
        except Exception:
            _logger.debug("on_delivery_failure hook failed", exc_info=True)

    def _handle_listener_error(self, listener: Listener, event: Event, exc: Exception) -> None:
        _logger.warning("Listener %s failed handling %s", listener.id, event.name, exc_info=exc)
        if self._on_listener_error is None:
            return
        error = ListenerError(listener.id, event.name)
        error.__cause__ = exc
        try:
            self._on_listener_error(listener, event, error)
        except Exception:
            _logger.debug("on_listener_error hook failed", exc_info=True)

    # ------------------------------------------------------------------
    # Introspection / teardown
    # ------------------------------------------------------------------

    def get_statistics(self) -> dict[str, int]:
        return {
            **self._stats,
            "active_listeners": sum(len(listeners) for listeners in self._listeners.values()),
            "buffered_events": sum(len(buffer) for buffer in self._buffers.values()),
        }

    def destroy(self) -> None:
        """Drop listeners, buffers and stored events.

        Deliveries still in flight are abandoned, not awaited.
        """
        self._listeners.clear()
        self._buffers.clear()
        self._deliveries.clear()
        self._storage.destroy()
