"""Built-in merge rules used by the ``auto-merge`` strategy.

Each rule receives the server value, the client value and the conflict
and returns a merged :class:`Resolution`.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from typing import Any

from pystatesync._constants import MERGE_METADATA_KEY
from pystatesync.models.conflict import Conflict, Resolution, ResolutionSource


def _union(*sequences: Sequence[Any]) -> list[Any]:
    """Union in first-seen order; items need not be hashable.

    Items only match when their types match too, so ``1``, ``1.0`` and
    ``True`` stay distinct.
    """
    merged: list[Any] = []
    seen: set[tuple[type, Any]] = set()
    for sequence in sequences:
        for item in sequence:
            try:
                marker = (type(item), item)
                if marker in seen:
                    continue
                seen.add(marker)
            except TypeError:
                if any(type(item) is type(existing) and item == existing for existing in merged):
                    continue
            merged.append(item)
    return merged


def merge_arrays(server: Sequence[Any] | None, client: Sequence[Any] | None, conflict: Conflict) -> Resolution:
    server_items = list(server or [])
    client_items = list(client or [])
    merged = _union(server_items, client_items)
    return Resolution(
        value=merged,
        source=ResolutionSource.MERGED,
        metadata={
            "original_length": {"server": len(server_items), "client": len(client_items)},
            "merged_length": len(merged),
        },
    )


def merge_objects(
    server: Mapping[str, Any] | None,
    client: Mapping[str, Any] | None,
    conflict: Conflict,
    *,
    clock: Callable[[], datetime],
) -> Resolution:
    """Shallow merge, client fields overriding server fields."""
    merged: dict[str, Any] = {
        **(server or {}),
        **(client or {}),
        MERGE_METADATA_KEY: {
            "mergedAt": clock().timestamp(),
            "sources": ["server", "client"],
        },
    }
    return Resolution(value=merged, source=ResolutionSource.MERGED, metadata={"fields": list(merged)})


def merge_strings(server: str | None, client: str | None, conflict: Conflict, *, delimiter: str = "\n") -> Resolution:
    server_text = server or ""
    client_text = client or ""
    return Resolution(
        value=delimiter.join([server_text, client_text]),
        source=ResolutionSource.MERGED,
        metadata={"lengths": {"server": len(server_text), "client": len(client_text)}},
    )
