"""Base model, timestamp type and priority enum shared by every model.

Every pystatesync model inherits from :class:`SyncBaseModel` which is
frozen and forbids unknown fields.  Payload values themselves stay
untyped (``Any``); :mod:`pystatesync.models.value` tags them.

Timestamps coming from a remote peer are often epoch numbers rather than
datetimes.  :data:`SyncTimestamp` accepts epoch seconds **or** milliseconds
and naive datetimes, and always yields an aware UTC ``datetime``.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: Any) -> datetime | None:
    """Convert an epoch timestamp (seconds **or** milliseconds) to a UTC datetime.

    Datetimes pass through (naive ones are assumed to be UTC).  ISO strings
    are left for pydantic to parse.
    """
    if value is None:
        return value
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value
    if isinstance(value, bool):
        raise ValueError("timestamp must not be a boolean")
    if isinstance(value, (int, float)):
        ts = float(value)
        if ts >= _MS_THRESHOLD:
            ts /= 1000.0
        return datetime.fromtimestamp(ts, tz=UTC)
    return value


SyncTimestamp = Annotated[datetime | None, BeforeValidator(parse_timestamp)]
"""Annotated type that coerces epoch numbers (seconds or ms) to UTC datetimes."""

UtcTimestamp = Annotated[datetime, BeforeValidator(parse_timestamp)]
"""Same as :data:`SyncTimestamp` for required timestamps."""


class Priority(StrEnum):
    """Delivery/notification priority for subscribers and listeners."""

    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


def priority_rank(priority: str, levels: Sequence[str]) -> int:
    """Rank *priority* within *levels*; higher rank is notified first.

    *levels* is ordered from highest to lowest priority.

    Raises :class:`ValueError` for a priority that is not one of *levels*.
    """
    try:
        index = list(levels).index(str(priority))
    except ValueError:
        raise ValueError(f"priority must be one of {tuple(levels)}, got {priority!r}") from None
    return len(levels) - index


class SyncBaseModel(BaseModel):
    """Base for pystatesync data models."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
    )
