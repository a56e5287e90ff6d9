"""Conflict, resolution and resolution-history models.

A :class:`Conflict` usually arrives from the remote peer inside a batch
reply, so it accepts both the snake_case field names and the camelCase
wire names (``serverValue``, ``clientTimestamp``, ``forcedStrategy``...).
"""

from __future__ import annotations

from collections.abc import Callable
from enum import StrEnum
from typing import Any

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from pystatesync.models._base import SyncBaseModel, SyncTimestamp, UtcTimestamp, utcnow
from pystatesync.models.value import DataType


class ResolutionSource(StrEnum):
    SERVER = "server"
    CLIENT = "client"
    MERGED = "merged"


class Conflict(SyncBaseModel):
    """Two diverging values for the same key."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    key: str | None = None
    server_value: Any = None
    client_value: Any = None
    server_timestamp: SyncTimestamp = None
    client_timestamp: SyncTimestamp = None
    data_type: DataType | None = None
    forced_strategy: str | None = None
    server_metadata: dict[str, Any] | None = None
    client_metadata: dict[str, Any] | None = None
    version: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Resolution(SyncBaseModel):
    """The single value a conflict was resolved to."""

    value: Any = None
    source: ResolutionSource
    metadata: dict[str, Any] | None = None


class ResolutionRecord(SyncBaseModel):
    timestamp: UtcTimestamp = Field(default_factory=utcnow)
    strategy: str
    result: Resolution
    conflict: Conflict
    attempts: int = Field(1, ge=1)


Strategy = Callable[[Conflict], Resolution]
MergeRule = Callable[[Any, Any, Conflict], Resolution]
