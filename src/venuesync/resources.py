"""Per-entity wiring: the venue's entity types on top of :class:`SyncClient`.

Each resource bundles what the dashboards need for one entity type: list
and single reads, create/update/delete with local payload validation,
result objects instead of exceptions, and success toasts.
"""

from __future__ import annotations

from collections.abc import Mapping
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from venuesync.client import QueryHandle, SyncClient
from venuesync.descriptors import QueryDescriptor
from venuesync.errors import ClassifiedError, SyncError
from venuesync.forms import (
    FormErrors,
    dump_changes,
    field_errors_from,
    partial_errors,
    validation_error,
)
from venuesync.mutations import entity_label
from venuesync.notifications import notify_safely
from venuesync.schemas import (
    CustomerCreate,
    EventCreate,
    InventoryCategoryCreate,
    InventoryItemCreate,
    InventoryTransactionCreate,
    TransactionCreate,
)
from venuesync.types import Notification, NotificationLevel, Record

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class QueryResult(Generic[T]):
    """Outcome of a read. On failure ``data`` holds the last cached value, if any."""

    data: T | None
    error: ClassifiedError | None = None
    stale: bool = False

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class MutationResult(Generic[T]):
    """Outcome of a mutation."""

    success: bool
    data: T | None = None
    error: ClassifiedError | None = None


@dataclass(frozen=True, slots=True)
class ResourceSpec:
    """Static definition of an entity resource."""

    entity_type: str
    label: str | None = None
    schema: type[BaseModel] | None = None
    invalidates: tuple[str, ...] = ()
    read_only: bool = False


class EntityResource:
    """Reads and mutations for one entity type, returning result objects."""

    def __init__(self, client: SyncClient, spec: ResourceSpec) -> None:
        self._client = client
        self.spec = spec
        self.entity_type = spec.entity_type
        self.label = spec.label or entity_label(spec.entity_type).capitalize()

    def query(self, **filters: Any) -> QueryDescriptor:
        return QueryDescriptor.of(self.entity_type, **filters)

    def single(self, entity_id: Any) -> QueryDescriptor:
        return QueryDescriptor.single(self.entity_type, entity_id)

    def form(self) -> FormErrors:
        """Error state for a form editing this entity."""
        return FormErrors(self.spec.schema)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def list(self, **filters: Any) -> QueryResult[Any]:
        return await self._read(self.query(**filters))

    async def get(self, entity_id: Any) -> QueryResult[Record]:
        return await self._read(self.single(entity_id))

    async def refetch(self, **filters: Any) -> QueryResult[Any]:
        return await self._read(self.query(**filters), force=True)

    def mount(self, **filters: Any) -> AbstractAsyncContextManager[QueryHandle]:
        return self._client.mount(self.query(**filters))

    def mount_single(self, entity_id: Any) -> AbstractAsyncContextManager[QueryHandle]:
        return self._client.mount(self.single(entity_id))

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def create(self, payload: Mapping[str, Any]) -> MutationResult[Record]:
        self._require_writable()
        body = dict(payload)
        if self.spec.schema is not None:
            try:
                model = self.spec.schema.model_validate(body)
            except ValidationError as e:
                return MutationResult(False, error=validation_error(field_errors_from(e)))
            body = model.model_dump(mode="json", exclude_none=True)

        return await self._mutate(
            "created",
            self._client.create(
                self.entity_type, body, invalidates=self.spec.invalidates
            ),
        )

    async def update(
        self, entity_id: Any, changes: Mapping[str, Any]
    ) -> MutationResult[Record]:
        self._require_writable()
        if self.spec.schema is not None:
            errors = partial_errors(self.spec.schema, changes)
            if errors:
                return MutationResult(False, error=validation_error(errors))
            changes = dump_changes(self.spec.schema, changes)

        return await self._mutate(
            "updated",
            self._client.update(
                self.entity_type, entity_id, changes, invalidates=self.spec.invalidates
            ),
        )

    async def delete(self, entity_id: Any) -> MutationResult[None]:
        self._require_writable()
        return await self._mutate(
            "deleted",
            self._client.delete(
                self.entity_type, entity_id, invalidates=self.spec.invalidates
            ),
        )

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    async def _read(
        self, descriptor: QueryDescriptor, *, force: bool = False
    ) -> QueryResult[Any]:
        try:
            value = await self._client.read(descriptor, force=force)
        except SyncError as e:
            entry = self._client.cache.get(descriptor)
            cached = entry.value if entry is not None and entry.has_value else None
            return QueryResult(cached, error=e.error, stale=cached is not None)
        return QueryResult(value)

    async def _mutate(self, verb: str, operation: Any) -> MutationResult[Any]:
        try:
            data = await operation
        except SyncError as e:
            return MutationResult(False, error=e.error)
        notify_safely(
            self._client.sink,
            Notification(NotificationLevel.SUCCESS, f"{self.label} {verb} successfully!"),
        )
        return MutationResult(True, data=data)

    def _require_writable(self) -> None:
        if self.spec.read_only:
            raise TypeError(f"{self.entity_type} is read-only")


DEFAULT_RESOURCES: dict[str, ResourceSpec] = {
    "events": ResourceSpec("events", schema=EventCreate),
    "transactions": ResourceSpec(
        "financial_transactions", label="Transaction", schema=TransactionCreate
    ),
    "inventory_items": ResourceSpec(
        "inventory_items", label="Item", schema=InventoryItemCreate
    ),
    "inventory_categories": ResourceSpec(
        "inventory_categories", label="Category", schema=InventoryCategoryCreate
    ),
    "inventory_transactions": ResourceSpec(
        "inventory_transactions",
        label="Transaction",
        schema=InventoryTransactionCreate,
        invalidates=("inventory_items", "low_stock_items"),
    ),
    "customers": ResourceSpec("customers", schema=CustomerCreate),
    "dashboard_metrics": ResourceSpec("dashboard_metrics", read_only=True),
}


@dataclass
class Resources:
    """The venue's resources bound to one client."""

    client: SyncClient
    specs: Mapping[str, ResourceSpec] = field(default_factory=lambda: DEFAULT_RESOURCES)
    _bound: dict[str, EntityResource] = field(default_factory=dict, init=False)

    def __getitem__(self, name: str) -> EntityResource:
        if name not in self._bound:
            self._bound[name] = EntityResource(self.client, self.specs[name])
        return self._bound[name]

    def __getattr__(self, name: str) -> EntityResource:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name) from None


def define_resources(
    client: SyncClient, specs: Mapping[str, ResourceSpec] | None = None
) -> Resources:
    """Bind resource definitions to a client.

    Example:
        resources = define_resources(client)
        result = await resources.transactions.create({"amount": "50.00", ...})
    """
    return Resources(client, dict(specs or DEFAULT_RESOURCES))


__all__ = [
    "DEFAULT_RESOURCES",
    "EntityResource",
    "MutationResult",
    "QueryResult",
    "ResourceSpec",
    "Resources",
    "define_resources",
]
