"""Custom exception hierarchy for pystatesync."""

from __future__ import annotations

from collections.abc import Sequence


class StateSyncError(Exception):
    """Base exception for all pystatesync errors."""


class StateSyncConfigError(StateSyncError):
    """Invalid or missing configuration."""


class UnknownStrategyError(StateSyncError):
    """A resolution or merge strategy name has no registered implementation."""

    def __init__(self, strategy: str) -> None:
        self.strategy = strategy
        super().__init__(f"Unknown resolution strategy: {strategy}")


class ResolutionExhaustedError(StateSyncError):
    """Conflict resolution kept failing until the retry budget ran out.

    This is the only resolver failure that escapes to the caller.  Inside a
    sync cycle it aborts the cycle and is reported as a ``sync-error`` event.
    """

    def __init__(self, key: str | None, attempts: int) -> None:
        self.key = key
        self.attempts = attempts
        target = f" for key {key!r}" if key is not None else ""
        super().__init__(f"Failed to resolve conflict{target} after {attempts} attempts")


class DeliveryTimeoutError(StateSyncError):
    """Listeners did not finish handling an event within the delivery timeout.

    Recorded in bus statistics and passed to the delivery-failure hook.
    Never raised to the publisher.
    """

    def __init__(self, event_id: str, timeout: float) -> None:
        self.event_id = event_id
        self.timeout = timeout
        super().__init__(f"Event delivery timeout: {event_id} (after {timeout}s)")


class ListenerError(StateSyncError):
    """A bus listener raised while handling an event."""

    def __init__(self, listener_id: str, event_name: str) -> None:
        self.listener_id = listener_id
        self.event_name = event_name
        super().__init__(f"Listener {listener_id} failed handling {event_name!r}")


class BatchTransportError(StateSyncError):
    """Sending one sync batch failed.

    Isolated per batch: the remaining batches of the cycle are still sent.
    """

    def __init__(self, message: str, *, batch_index: int, keys: Sequence[str] = ()) -> None:
        self.batch_index = batch_index
        self.keys = tuple(keys)
        super().__init__(message)


class TransportError(StateSyncError):
    """HTTP-level failure (network, non-200, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)
