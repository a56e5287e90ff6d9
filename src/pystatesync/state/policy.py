"""Deterministic state merge policy.

Decides when an incoming value conflicts with the stored one and how the
store-level merge strategies combine the two.  The richer, pluggable
strategies live in :mod:`pystatesync.resolver`.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any

from pystatesync._constants import LAST_WRITE_WINS, MERGE_FIELDS, SERVER_WINS
from pystatesync.exceptions import UnknownStrategyError


def version_of(value: Any) -> Any:
    """Version field carried by a value, or ``None``.

    Only mappings carry versions (``{"version": 3, ...}``).
    """
    if isinstance(value, Mapping):
        return value.get("version")
    return None


def has_conflict(current: Any, incoming: Any) -> bool:
    """Return True when both values carry a version and the versions differ.

    Values without a version (or with a falsy one) never conflict: the
    incoming value simply replaces the current one.
    """
    if current is None or incoming is None:
        return False
    current_version = version_of(current)
    incoming_version = version_of(incoming)
    if not current_version or not incoming_version:
        return False
    return bool(current_version != incoming_version)


def apply_merge_strategy(current: Any, incoming: Any, strategy: str) -> Any:
    """Combine *current* and *incoming* according to *strategy*.

    - ``last-write-wins``: the incoming value.
    - ``server-wins``: the value already stored.
    - ``merge-fields``: shallow merge, incoming fields overriding stored
      ones.  Falls back to the incoming value when either side is not a
      mapping.

    Raises :class:`UnknownStrategyError` for any other name.
    """
    if strategy == LAST_WRITE_WINS:
        return copy.deepcopy(incoming)
    if strategy == SERVER_WINS:
        return copy.deepcopy(current)
    if strategy == MERGE_FIELDS:
        if isinstance(current, Mapping) and isinstance(incoming, Mapping):
            return copy.deepcopy({**current, **incoming})
        return copy.deepcopy(incoming)
    raise UnknownStrategyError(strategy)
