"""Event persistence collaborator of the event bus."""

from __future__ import annotations

from typing import Protocol

from pystatesync.models.event import Event


class EventStorage(Protocol):
    """Where the bus saves published events when persistence is on."""

    async def save_event(self, event: Event) -> None: ...

    async def get_event(self, event_id: str) -> Event | None: ...

    def destroy(self) -> None: ...


class InMemoryEventStorage:
    """Default :class:`EventStorage` keeping events in a dict."""

    def __init__(self) -> None:
        self._events: dict[str, Event] = {}

    def __len__(self) -> int:
        return len(self._events)

    async def save_event(self, event: Event) -> None:
        self._events[event.id] = event

    async def get_event(self, event_id: str) -> Event | None:
        return self._events.get(event_id)

    def destroy(self) -> None:
        self._events.clear()
