"""Pydantic data models used by pystatesync."""

from pystatesync.models._base import Priority, SyncBaseModel, parse_timestamp
from pystatesync.models.conflict import (
    Conflict,
    MergeRule,
    Resolution,
    ResolutionRecord,
    ResolutionSource,
    Strategy,
)
from pystatesync.models.delta import ArrayDelta, Delta, FieldChange, IndexChange, ObjectDelta, ValueDelta
from pystatesync.models.event import BatchPublishResult, DeliveryInfo, Event, Listener, PublishRequest
from pystatesync.models.sync import BatchReply, QueuedChange, ResolvedConflict, SyncChange, SyncReport, SyncStats
from pystatesync.models.value import DataType, TaggedValue

__all__ = [
    "ArrayDelta",
    "BatchPublishResult",
    "BatchReply",
    "Conflict",
    "DataType",
    "Delta",
    "DeliveryInfo",
    "Event",
    "FieldChange",
    "IndexChange",
    "Listener",
    "MergeRule",
    "ObjectDelta",
    "Priority",
    "PublishRequest",
    "QueuedChange",
    "Resolution",
    "ResolutionRecord",
    "ResolutionSource",
    "ResolvedConflict",
    "Strategy",
    "SyncBaseModel",
    "SyncChange",
    "SyncReport",
    "SyncStats",
    "TaggedValue",
    "ValueDelta",
    "parse_timestamp",
]
