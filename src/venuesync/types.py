"""Core types for the venuesync data layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from venuesync.descriptors import QueryDescriptor

if TYPE_CHECKING:
    from venuesync.errors import ClassifiedError

T = TypeVar("T")

# Duration type alias
Duration = str | int | timedelta  # "10s", "5m", "1m30s", milliseconds or timedelta

# Entity records are plain mappings keyed by field name
Record = dict[str, Any]


class EntryState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    ERROR = "error"


class MutationKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class MutationState(str, Enum):
    IDLE = "idle"
    APPLYING = "applying"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"


class ChangeOperation(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[T]):
    """A cached read with metadata.

    ``value`` is what consumers see: the last server value with any pending
    optimistic projections applied on top. ``projections`` lists the ids of
    mutations whose projections are still pending.
    """

    descriptor: QueryDescriptor
    value: T | None
    fetched_at: int  # ms, from the cache clock
    state: EntryState
    stale_after: int  # ms
    retain_for: int  # ms
    has_value: bool = False
    stale: bool = False
    error: ClassifiedError | None = None
    projections: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class MutationIntent:
    """A create/update/delete request against one entity type."""

    kind: MutationKind
    entity_type: str
    payload: Record = field(default_factory=dict)
    entity_id: Any | None = None
    invalidates: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.kind is not MutationKind.CREATE and self.entity_id is None:
            raise ValueError(f"{self.kind.value} mutation requires an entity_id")


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """A bare "something changed" signal from the change feed."""

    entity_type: str
    operation: ChangeOperation
    entity_id: Any | None = None


@dataclass(frozen=True, slots=True)
class Notification:
    """A transient user-facing message (toast)."""

    level: NotificationLevel
    message: str
