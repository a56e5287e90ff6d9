"""Conflict resolution strategies and resolution history."""

from __future__ import annotations

import functools
import logging
from collections import Counter, deque
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from pystatesync._constants import AUTO_MERGE, CLIENT_WINS, LAST_WRITE_WINS, SERVER_WINS
from pystatesync._merge import merge_arrays, merge_objects, merge_strings
from pystatesync.config import ConflictResolverConfig
from pystatesync.exceptions import ResolutionExhaustedError, UnknownStrategyError
from pystatesync.models._base import parse_timestamp, utcnow
from pystatesync.models.conflict import (
    Conflict,
    MergeRule,
    Resolution,
    ResolutionRecord,
    ResolutionSource,
    Strategy,
)
from pystatesync.models.value import DataType

_logger = logging.getLogger(__name__)

_OLDEST = datetime.min.replace(tzinfo=UTC)


class ConflictResolver:
    """Turns a :class:`Conflict` into a single :class:`Resolution`.

    Strategy selection, in order:

    1. ``conflict.forced_strategy``;
    2. ``auto-merge`` when a merge rule is registered for ``conflict.data_type``;
    3. ``config.default_strategy``.

    A failing strategy (including an unknown name) is retried up to
    ``config.max_retries`` attempts in total before
    :class:`ResolutionExhaustedError` is raised.
    """

    def __init__(
        self,
        config: ConflictResolverConfig | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config or ConflictResolverConfig()
        self._clock = clock
        self._history: deque[ResolutionRecord] = deque(maxlen=self._config.history_size)
        self._strategies: dict[str, Strategy] = {
            SERVER_WINS: self._server_wins,
            CLIENT_WINS: self._client_wins,
            LAST_WRITE_WINS: self._last_write_wins,
            AUTO_MERGE: self._auto_merge,
        }
        self._merge_rules: dict[str, MergeRule] = {}
        if self._config.enable_merge_rules:
            self._merge_rules[DataType.ARRAY] = merge_arrays
            self._merge_rules[DataType.OBJECT] = functools.partial(merge_objects, clock=self._clock)
            self._merge_rules[DataType.STRING] = functools.partial(
                merge_strings, delimiter=self._config.string_merge_delimiter
            )

    @property
    def config(self) -> ConflictResolverConfig:
        return self._config

    @property
    def strategies(self) -> tuple[str, ...]:
        return tuple(self._strategies)

    @property
    def merge_rules(self) -> tuple[str, ...]:
        return tuple(self._merge_rules)

    def has_strategy(self, name: str) -> bool:
        return name in self._strategies

    def register_custom_strategy(self, name: str, strategy: Strategy) -> None:
        """Register (or replace) a named strategy."""
        self._strategies[name] = strategy

    def register_merge_rule(self, data_type: DataType | str, rule: MergeRule) -> None:
        """Register (or replace) the ``auto-merge`` rule of *data_type*."""
        self._merge_rules[str(data_type)] = rule

    def determine_strategy(self, conflict: Conflict) -> str:
        if conflict.forced_strategy:
            return conflict.forced_strategy
        if conflict.data_type is not None and conflict.data_type in self._merge_rules:
            return AUTO_MERGE
        return self._config.default_strategy

    def resolve_conflict(self, conflict: Conflict | Mapping[str, Any]) -> Resolution:
        """Resolve *conflict*, retrying failed attempts."""
        if not isinstance(conflict, Conflict):
            conflict = Conflict.model_validate(conflict)
        strategy = self.determine_strategy(conflict)
        max_attempts = self._config.max_retries

        last_error: Exception | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                result = self._apply_strategy(strategy, conflict)
            except Exception as exc:
                last_error = exc
                _logger.debug(
                    "Resolution attempt %d/%d of key %s with %s failed",
                    attempt,
                    max_attempts,
                    conflict.key,
                    strategy,
                    exc_info=True,
                )
                continue
            self._track(strategy, result, conflict, attempt)
            _logger.debug("Resolved conflict on key %s with %s (%s)", conflict.key, strategy, result.source)
            return result

        raise ResolutionExhaustedError(conflict.key, max_attempts) from last_error

    def _apply_strategy(self, name: str, conflict: Conflict) -> Resolution:
        strategy = self._strategies.get(name)
        if strategy is None:
            raise UnknownStrategyError(name)
        result = strategy(conflict)
        if isinstance(result, Resolution):
            return result
        return Resolution.model_validate(result)

    # ------------------------------------------------------------------
    # Built-in strategies
    # ------------------------------------------------------------------

    @staticmethod
    def _server_wins(conflict: Conflict) -> Resolution:
        return Resolution(
            value=conflict.server_value,
            source=ResolutionSource.SERVER,
            metadata=conflict.server_metadata,
        )

    @staticmethod
    def _client_wins(conflict: Conflict) -> Resolution:
        return Resolution(
            value=conflict.client_value,
            source=ResolutionSource.CLIENT,
            metadata=conflict.client_metadata,
        )

    def _last_write_wins(self, conflict: Conflict) -> Resolution:
        server_time = conflict.server_timestamp or _OLDEST
        client_time = conflict.client_timestamp or _OLDEST
        if server_time >= client_time:
            return self._server_wins(conflict)
        return self._client_wins(conflict)

    def _auto_merge(self, conflict: Conflict) -> Resolution:
        rule = self._merge_rules.get(str(conflict.data_type)) if conflict.data_type is not None else None
        if rule is None:
            raise UnknownStrategyError(f"{AUTO_MERGE}:{conflict.data_type}")
        return rule(conflict.server_value, conflict.client_value, conflict)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def _track(self, strategy: str, result: Resolution, conflict: Conflict, attempts: int) -> None:
        if not self._config.track_history:
            return
        self._history.append(
            ResolutionRecord(
                timestamp=self._clock(),
                strategy=strategy,
                result=result,
                conflict=conflict,
                attempts=attempts,
            )
        )

    def get_resolution_history(
        self,
        *,
        strategy: str | None = None,
        since: datetime | float | None = None,
    ) -> list[ResolutionRecord]:
        """Tracked resolutions, oldest first, optionally filtered."""
        threshold = parse_timestamp(since)
        return [
            record
            for record in self._history
            if (strategy is None or record.strategy == strategy)
            and (threshold is None or record.timestamp >= threshold)
        ]

    def get_statistics(self) -> dict[str, Any]:
        """Resolution counts plus registry sizes.

        ``custom_strategies`` counts every registered strategy, the
        built-ins included.
        """
        return {
            "total_resolutions": len(self._history),
            "strategy_counts": dict(Counter(record.strategy for record in self._history)),
            "custom_strategies": len(self._strategies),
            "merge_rules": len(self._merge_rules),
        }

    def destroy(self) -> None:
        self._history.clear()
        self._strategies.clear()
        self._merge_rules.clear()
