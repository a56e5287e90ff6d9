"""Component configuration for pystatesync."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Callable, Mapping
from typing import Any, TypeVar

from pystatesync._constants import (
    DEFAULT_PRIORITY_LEVELS,
    LAST_WRITE_WINS,
    SERVER_WINS,
    STORE_MERGE_STRATEGIES,
)
from pystatesync.exceptions import StateSyncConfigError

_ENV_PREFIX = "STATESYNC_"

_C = TypeVar("_C")


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_levels(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _from_env(
    cls: type[_C],
    env_map: Mapping[str, tuple[str, Callable[[str], Any]]],
    overrides: dict[str, Any],
) -> _C:
    """Build *cls* from ``STATESYNC_*`` variables; explicit overrides win."""
    env = os.environ
    kwargs: dict[str, Any] = {}
    for env_key, (field_name, convert) in env_map.items():
        raw = env.get(f"{_ENV_PREFIX}{env_key}")
        if raw is None or field_name in overrides:
            continue
        try:
            kwargs[field_name] = convert(raw)
        except ValueError as exc:
            raise StateSyncConfigError(f"Invalid value for {_ENV_PREFIX}{env_key}: {raw!r}") from exc
    kwargs.update(overrides)
    return cls(**kwargs)


def _bool_from_env(raw: str) -> bool:
    parsed = _env_bool(raw, default=False)
    if not parsed and raw.strip().lower() not in {"0", "false", "no", "n", "off"}:
        raise ValueError(raw)
    return parsed


def _require_positive(name: str, value: float) -> None:
    if value <= 0:
        raise StateSyncConfigError(f"{name} must be positive, got {value}")


@dataclasses.dataclass(frozen=True)
class EventBusConfig:
    """Event bus configuration.

    Parameters
    ----------
    max_listeners : int
        Listener count per event name above which a warning is logged.
    buffer_size : int
        Events kept per event name for replay (oldest evicted first).
    delivery_timeout : float
        Seconds a publish waits for its listeners before the delivery is
        recorded as failed.  Listeners are not cancelled.
    priority_levels : tuple[str, ...]
        Known priorities, highest first.
    persistence : bool
        Save every published event to the event storage.
    backpressure_threshold : int
        Maximum in-flight deliveries to one backpressure-enabled listener.
    """

    max_listeners: int = 100
    buffer_size: int = 1000
    delivery_timeout: float = 5.0
    priority_levels: tuple[str, ...] = DEFAULT_PRIORITY_LEVELS
    persistence: bool = False
    backpressure_threshold: int = 100

    def __post_init__(self) -> None:
        _require_positive("max_listeners", self.max_listeners)
        _require_positive("buffer_size", self.buffer_size)
        _require_positive("delivery_timeout", self.delivery_timeout)
        _require_positive("backpressure_threshold", self.backpressure_threshold)
        levels = tuple(str(level) for level in self.priority_levels)
        if not levels or len(set(levels)) != len(levels):
            raise StateSyncConfigError(f"priority_levels must be non-empty and unique, got {levels}")
        object.__setattr__(self, "priority_levels", levels)

    @classmethod
    def from_env(cls, **overrides: Any) -> EventBusConfig:
        """Create configuration from ``STATESYNC_BUS_*`` environment variables."""
        return _from_env(
            cls,
            {
                "BUS_MAX_LISTENERS": ("max_listeners", int),
                "BUS_BUFFER_SIZE": ("buffer_size", int),
                "BUS_DELIVERY_TIMEOUT": ("delivery_timeout", float),
                "BUS_PRIORITY_LEVELS": ("priority_levels", _env_levels),
                "BUS_PERSISTENCE": ("persistence", _bool_from_env),
                "BUS_BACKPRESSURE_THRESHOLD": ("backpressure_threshold", int),
            },
            overrides,
        )


@dataclasses.dataclass(frozen=True)
class StateStoreConfig:
    """State store configuration.

    Parameters
    ----------
    history_size : int
        Number of history records kept (oldest evicted first).
    merge_strategy : str
        Default strategy of :meth:`StateStore.merge`: ``last-write-wins``,
        ``server-wins`` or ``merge-fields``.
    enable_versioning : bool
        Detect version conflicts in :meth:`StateStore.merge`.
    auto_sync : bool
        Let an orchestrator forward every write as a ``data-change`` event.
    """

    history_size: int = 50
    merge_strategy: str = LAST_WRITE_WINS
    enable_versioning: bool = True
    auto_sync: bool = True

    def __post_init__(self) -> None:
        _require_positive("history_size", self.history_size)
        if self.merge_strategy not in STORE_MERGE_STRATEGIES:
            raise StateSyncConfigError(
                f"merge_strategy must be one of {sorted(STORE_MERGE_STRATEGIES)}, got {self.merge_strategy!r}"
            )

    @classmethod
    def from_env(cls, **overrides: Any) -> StateStoreConfig:
        """Create configuration from ``STATESYNC_STORE_*`` environment variables."""
        return _from_env(
            cls,
            {
                "STORE_HISTORY_SIZE": ("history_size", int),
                "STORE_MERGE_STRATEGY": ("merge_strategy", str),
                "STORE_ENABLE_VERSIONING": ("enable_versioning", _bool_from_env),
                "STORE_AUTO_SYNC": ("auto_sync", _bool_from_env),
            },
            overrides,
        )


@dataclasses.dataclass(frozen=True)
class ConflictResolverConfig:
    """Conflict resolver configuration.

    Parameters
    ----------
    default_strategy : str
        Strategy used when a conflict neither forces one nor has a merge
        rule for its data type.  Custom strategies registered later are
        allowed, so the name is only checked when resolving.
    max_retries : int
        Resolution attempts per conflict before giving up.
    enable_merge_rules : bool
        Register the built-in array/object/string merge rules.
    track_history : bool
        Record every resolution in the bounded history.
    history_size : int
        Number of resolution records kept.
    string_merge_delimiter : str
        Separator used by the string merge rule.
    """

    default_strategy: str = SERVER_WINS
    max_retries: int = 3
    enable_merge_rules: bool = True
    track_history: bool = True
    history_size: int = 100
    string_merge_delimiter: str = "\n"

    def __post_init__(self) -> None:
        if not self.default_strategy:
            raise StateSyncConfigError("default_strategy must be non-empty")
        _require_positive("max_retries", self.max_retries)
        _require_positive("history_size", self.history_size)

    @classmethod
    def from_env(cls, **overrides: Any) -> ConflictResolverConfig:
        """Create configuration from ``STATESYNC_RESOLVER_*`` environment variables."""
        return _from_env(
            cls,
            {
                "RESOLVER_DEFAULT_STRATEGY": ("default_strategy", str),
                "RESOLVER_MAX_RETRIES": ("max_retries", int),
                "RESOLVER_ENABLE_MERGE_RULES": ("enable_merge_rules", _bool_from_env),
                "RESOLVER_TRACK_HISTORY": ("track_history", _bool_from_env),
                "RESOLVER_HISTORY_SIZE": ("history_size", int),
            },
            overrides,
        )


@dataclasses.dataclass(frozen=True)
class SyncConfig:
    """Sync orchestrator configuration.

    Parameters
    ----------
    sync_interval : float
        Seconds between two periodic sync cycles.
    retry_attempts : int
        Resolution attempts per conflict for a resolver built by the
        orchestrator.
    batch_size : int
        Maximum entries per transport call.
    enable_delta_updates : bool
        Attach deltas to queued and outgoing changes.
    """

    sync_interval: float = 30.0
    retry_attempts: int = 3
    batch_size: int = 100
    enable_delta_updates: bool = True

    def __post_init__(self) -> None:
        _require_positive("sync_interval", self.sync_interval)
        _require_positive("retry_attempts", self.retry_attempts)
        _require_positive("batch_size", self.batch_size)

    @classmethod
    def from_env(cls, **overrides: Any) -> SyncConfig:
        """Create configuration from ``STATESYNC_SYNC_*`` environment variables."""
        return _from_env(
            cls,
            {
                "SYNC_INTERVAL": ("sync_interval", float),
                "SYNC_RETRY_ATTEMPTS": ("retry_attempts", int),
                "SYNC_BATCH_SIZE": ("batch_size", int),
                "SYNC_ENABLE_DELTA_UPDATES": ("enable_delta_updates", _bool_from_env),
            },
            overrides,
        )
