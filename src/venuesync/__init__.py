"""venuesync - client-side data synchronization for venue operations."""

from contextlib import suppress

# Cache and coordination
from venuesync.cache import EntityCache
from venuesync.classifier import ErrorClassifier, format_message
from venuesync.client import QueryHandle, SyncClient
from venuesync.coordinator import FetchCoordinator
from venuesync.descriptors import QueryDescriptor

# Duration parsing
from venuesync.duration import parse_duration

# Errors
from venuesync.errors import ClassifiedError, DataSourceError, ErrorKind, SyncError
from venuesync.forms import FormErrors
from venuesync.mutations import MutationExecutor, is_provisional
from venuesync.notifications import LoggingNotificationSink, NotificationSink
from venuesync.pending import PendingMutation
from venuesync.policy import FreshnessPolicy, PolicyRegistry
from venuesync.realtime import RealtimeInvalidator
from venuesync.resources import (
    EntityResource,
    MutationResult,
    QueryResult,
    ResourceSpec,
    define_resources,
)
from venuesync.settings import SyncSettings

# Sources
from venuesync.sources import (
    ChangeFeed,
    DataSource,
    HttpDataSource,
    InMemoryChangeFeed,
    InMemoryDataSource,
)

# Core types
from venuesync.types import (
    CacheEntry,
    ChangeEvent,
    ChangeOperation,
    Duration,
    EntryState,
    MutationIntent,
    MutationKind,
    MutationState,
    Notification,
    NotificationLevel,
)

# Optional feed imports - only available when dependencies are installed
with suppress(ImportError):
    from venuesync.sources import RedisChangeFeed

__version__ = "0.1.0"

__all__ = [
    "CacheEntry",
    "ChangeEvent",
    "ChangeFeed",
    "ChangeOperation",
    "ClassifiedError",
    "DataSource",
    "DataSourceError",
    "Duration",
    "EntityCache",
    "EntityResource",
    "EntryState",
    "ErrorClassifier",
    "ErrorKind",
    "FetchCoordinator",
    "FormErrors",
    "FreshnessPolicy",
    "HttpDataSource",
    "InMemoryChangeFeed",
    "InMemoryDataSource",
    "LoggingNotificationSink",
    "MutationExecutor",
    "MutationIntent",
    "MutationKind",
    "MutationResult",
    "MutationState",
    "Notification",
    "NotificationLevel",
    "NotificationSink",
    "PendingMutation",
    "PolicyRegistry",
    "QueryDescriptor",
    "QueryHandle",
    "QueryResult",
    "RealtimeInvalidator",
    "RedisChangeFeed",
    "ResourceSpec",
    "SyncClient",
    "SyncError",
    "SyncSettings",
    "define_resources",
    "format_message",
    "is_provisional",
    "parse_duration",
]
