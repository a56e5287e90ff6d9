"""Bus events, listener registrations and publish results."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import Field

from pystatesync.models._base import Priority, SyncBaseModel, UtcTimestamp, utcnow


class Event(SyncBaseModel):
    """One published event, as buffered for replay."""

    id: str
    name: str
    data: Any = None
    timestamp: UtcTimestamp = Field(default_factory=utcnow)
    priority: str = Priority.NORMAL
    metadata: dict[str, Any] = Field(default_factory=dict)


class DeliveryInfo(SyncBaseModel):
    """Passed to a listener next to the event payload."""

    event_id: str
    timestamp: UtcTimestamp
    metadata: dict[str, Any] = Field(default_factory=dict)


class PublishRequest(SyncBaseModel):
    """One entry of :meth:`EventBus.batch_publish`."""

    name: str
    data: Any = None
    priority: str = Priority.NORMAL
    metadata: dict[str, Any] = Field(default_factory=dict)


class BatchPublishResult(SyncBaseModel):
    batch_id: str
    results: list[str] = Field(default_factory=list, description="Event ids, in request order")
    timestamp: UtcTimestamp = Field(default_factory=utcnow)


ListenerCallback = Callable[[Any, DeliveryInfo], Awaitable[None] | None]
ListenerFilter = Callable[[Any], bool]


@dataclass(slots=True)
class Listener:
    """A bus subscription for one event name.

    A listener subscribed through ``"*"`` shares its ``id`` with the other
    names it was registered under; ``pending`` is tracked per name.
    """

    id: str
    event_name: str
    callback: ListenerCallback
    priority: str = Priority.NORMAL
    filter: ListenerFilter | None = None
    backpressure: bool = False
    seq: int = 0
    pending: int = 0
    capacity: asyncio.Condition = field(default_factory=asyncio.Condition, repr=False)

    def accepts(self, data: Any) -> bool:
        return self.filter is None or bool(self.filter(data))


def delivery_info(event: Event) -> DeliveryInfo:
    return DeliveryInfo(event_id=event.id, timestamp=event.timestamp, metadata=dict(event.metadata))

