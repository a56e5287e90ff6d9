"""pystatesync - Async state synchronization engine."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pystatesync")
except PackageNotFoundError:
    __version__ = "0+local"
from pystatesync._constants import EventType, SyncState, SyncStatus
from pystatesync._delta import apply_delta, compute_delta
from pystatesync._storage import EventStorage, InMemoryEventStorage
from pystatesync._transport import HttpTransport, Transport
from pystatesync.bus import EventBus
from pystatesync.config import ConflictResolverConfig, EventBusConfig, StateStoreConfig, SyncConfig
from pystatesync.exceptions import (
    BatchTransportError,
    DeliveryTimeoutError,
    ListenerError,
    ResolutionExhaustedError,
    StateSyncConfigError,
    StateSyncError,
    TransportError,
    UnknownStrategyError,
)
from pystatesync.models import (
    ArrayDelta,
    BatchPublishResult,
    BatchReply,
    Conflict,
    DataType,
    Delta,
    DeliveryInfo,
    Event,
    FieldChange,
    IndexChange,
    Listener,
    ObjectDelta,
    Priority,
    PublishRequest,
    QueuedChange,
    Resolution,
    ResolutionRecord,
    ResolutionSource,
    ResolvedConflict,
    SyncChange,
    SyncReport,
    SyncStats,
    TaggedValue,
    ValueDelta,
)
from pystatesync.orchestrator import SyncOrchestrator
from pystatesync.resolver import ConflictResolver
from pystatesync.state import StateEntry, StateSnapshot, StateStore, StateUpdate, UpdateSource

__all__ = [
    "ArrayDelta",
    "BatchPublishResult",
    "BatchReply",
    "BatchTransportError",
    "Conflict",
    "ConflictResolver",
    "ConflictResolverConfig",
    "DataType",
    "Delta",
    "DeliveryInfo",
    "DeliveryTimeoutError",
    "Event",
    "EventBus",
    "EventBusConfig",
    "EventStorage",
    "EventType",
    "FieldChange",
    "HttpTransport",
    "InMemoryEventStorage",
    "IndexChange",
    "Listener",
    "ListenerError",
    "ObjectDelta",
    "Priority",
    "PublishRequest",
    "QueuedChange",
    "Resolution",
    "ResolutionExhaustedError",
    "ResolutionRecord",
    "ResolutionSource",
    "ResolvedConflict",
    "StateEntry",
    "StateSnapshot",
    "StateStore",
    "StateStoreConfig",
    "StateSyncConfigError",
    "StateSyncError",
    "StateUpdate",
    "SyncChange",
    "SyncConfig",
    "SyncOrchestrator",
    "SyncReport",
    "SyncState",
    "SyncStats",
    "SyncStatus",
    "TaggedValue",
    "Transport",
    "TransportError",
    "UnknownStrategyError",
    "UpdateSource",
    "ValueDelta",
    "__version__",
    "apply_delta",
    "compute_delta",
]
