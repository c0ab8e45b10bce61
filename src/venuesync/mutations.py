"""Mutation executor: optimistic create/update/delete with reconciliation.

Each mutation moves through ``idle -> applying -> confirmed | rolled_back``.
While applying, a provisional projection is layered over every affected
cache entry. Confirmation folds the server's canonical record into the
entry; failure drops the projection so the entry shows exactly what it
showed before.

Projections compose in call order. Confirmations arrive in network order;
a per-record sequence number keeps an older update confirmation from
overwriting a newer one that already landed.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

from venuesync.cache import EntityCache, Projection, Reconcile
from venuesync.classifier import ErrorClassifier
from venuesync.descriptors import QueryDescriptor
from venuesync.duration import parse_duration
from venuesync.errors import SyncError
from venuesync.pending import PendingMutation
from venuesync.sources.base import DataSource
from venuesync.types import (
    Duration,
    MutationIntent,
    MutationKind,
    MutationState,
    Record,
)

if TYPE_CHECKING:
    from venuesync.coordinator import FetchCoordinator

logger = logging.getLogger(__name__)

PROVISIONAL_PREFIX = "tmp-"

_PAGING_PARAMS = frozenset({"limit", "offset"})
_VERBS = {
    MutationKind.CREATE: "creating",
    MutationKind.UPDATE: "updating",
    MutationKind.DELETE: "deleting",
}


def is_provisional(record: Mapping[str, Any]) -> bool:
    """Whether a record is an optimistic placeholder awaiting confirmation."""
    return str(record.get("id", "")).startswith(PROVISIONAL_PREFIX)


def entity_label(entity_type: str) -> str:
    """Singular, human-readable name for an entity type."""
    label = entity_type.replace("_", " ")
    if label.endswith("ies"):
        return label[:-3] + "y"
    if label.endswith("s"):
        return label[:-1]
    return label


def matches_filters(record: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    """Whether a record belongs in a list filtered by ``filters``.

    Filters naming fields the record doesn't carry are assumed to match.
    """
    for name, value in filters.items():
        if name in _PAGING_PARAMS or name not in record:
            continue
        if record[name] != value:
            return False
    return True


# -----------------------------------------------------------------------------
# Value transforms (never mutate their input)
# -----------------------------------------------------------------------------


def _append(record: Record) -> Projection:
    def project(value: Any) -> Any:
        if not isinstance(value, list):
            return value
        return [*value, record]

    return project


def _merge_by_id(entity_id: Any, changes: Mapping[str, Any]) -> Projection:
    def project(value: Any) -> Any:
        if not isinstance(value, list):
            return value
        return [
            {**row, **changes, "id": entity_id} if row.get("id") == entity_id else row
            for row in value
        ]

    return project


def _replace_by_id(record: Record) -> Reconcile:
    def reconcile(value: Any) -> Any:
        if not isinstance(value, list):
            return value
        return [record if row.get("id") == record["id"] else row for row in value]

    return reconcile


def _remove_by_id(entity_id: Any) -> Projection:
    def project(value: Any) -> Any:
        if not isinstance(value, list):
            return value
        return [row for row in value if row.get("id") != entity_id]

    return project


def _insert_or_replace(record: Record) -> Reconcile:
    def reconcile(value: Any) -> Any:
        if not isinstance(value, list):
            return value
        if any(row.get("id") == record["id"] for row in value):
            return _replace_by_id(record)(value)
        return [*value, record]

    return reconcile


def _merge_single(changes: Mapping[str, Any]) -> Projection:
    def project(value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        return {**value, **changes}

    return project


def _constant(value: Any) -> Callable[[Any], Any]:
    return lambda _: value


class MutationExecutor:
    """Applies mutations optimistically against a shared cache."""

    def __init__(
        self,
        cache: EntityCache,
        source: DataSource,
        classifier: ErrorClassifier,
        *,
        timeout: Duration = "30s",
        coordinator: FetchCoordinator | None = None,
    ) -> None:
        self._cache = cache
        self._source = source
        self._classifier = classifier
        self._timeout = parse_duration(timeout) / 1000
        self._coordinator = coordinator
        self._sequence = itertools.count(1)
        self._confirmed: dict[tuple[str, Any], int] = {}
        self._pending: dict[str, PendingMutation] = {}

    @property
    def pending(self) -> list[PendingMutation]:
        """Mutations that have not settled yet, in call order."""
        return list(self._pending.values())

    def affected_descriptors(self, intent: MutationIntent) -> list[QueryDescriptor]:
        """Cached reads a mutation touches: its type's lists plus its own record."""
        affected = [
            d for d in self._cache.descriptors(intent.entity_type) if not d.is_single
        ]
        if intent.entity_id is not None:
            single = QueryDescriptor.single(intent.entity_type, intent.entity_id)
            if single in self._cache:
                affected.append(single)
        return affected

    def submit(self, intent: MutationIntent) -> PendingMutation:
        """Project the mutation into the cache now and start the write.

        Must be called from a running event loop. Await the returned handle
        for the canonical record.
        """
        sequence = next(self._sequence)
        pending = PendingMutation(f"m{sequence}", intent, sequence)
        affected = self.affected_descriptors(intent)

        provisional: Record | None = None
        if intent.kind is MutationKind.CREATE:
            provisional = {**intent.payload, "id": f"{PROVISIONAL_PREFIX}{pending.id}"}

        for descriptor in affected:
            projection = self._projection(intent, descriptor, provisional)
            if projection is not None:
                self._cache.project(descriptor, pending.id, projection)

        pending.state = MutationState.APPLYING
        self._pending[pending.id] = pending
        logger.debug(
            "Applying %s (%d entries projected)", pending, len(affected)
        )
        pending.attach(asyncio.create_task(self._run(pending, affected)))
        return pending

    async def execute(self, intent: MutationIntent) -> Record | None:
        """Submit and wait. Raises :class:`SyncError` after rollback on failure."""
        return await self.submit(intent)

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    async def _run(
        self, pending: PendingMutation, affected: list[QueryDescriptor]
    ) -> Record | None:
        intent = pending.intent
        operation = f"{_VERBS[intent.kind]} {entity_label(intent.entity_type)}"
        try:
            result = await asyncio.wait_for(self._write(intent), self._timeout)
        except asyncio.CancelledError:
            self._rollback(pending, affected)
            raise
        except Exception as e:
            self._rollback(pending, affected)
            error = self._classifier.handle(e, operation)
            pending.error = error
            raise SyncError(error) from e
        finally:
            self._pending.pop(pending.id, None)

        self._confirm(pending, affected, result)
        return result

    async def _write(self, intent: MutationIntent) -> Record | None:
        if intent.kind is MutationKind.CREATE:
            return await self._source.create(intent.entity_type, intent.payload)
        if intent.kind is MutationKind.UPDATE:
            return await self._source.update(
                intent.entity_type, intent.entity_id, intent.payload
            )
        await self._source.delete(intent.entity_type, intent.entity_id)
        return None

    def _projection(
        self,
        intent: MutationIntent,
        descriptor: QueryDescriptor,
        provisional: Record | None,
    ) -> Projection | None:
        if intent.kind is MutationKind.CREATE:
            assert provisional is not None
            if not matches_filters(provisional, descriptor.filters):
                return None
            return _append(provisional)
        if intent.kind is MutationKind.UPDATE:
            if descriptor.is_single:
                return _merge_single(intent.payload)
            return _merge_by_id(intent.entity_id, intent.payload)
        if descriptor.is_single:
            return _constant(None)
        return _remove_by_id(intent.entity_id)

    def _rollback(
        self, pending: PendingMutation, affected: list[QueryDescriptor]
    ) -> None:
        for descriptor in affected:
            self._cache.rollback(descriptor, pending.id)
        pending.state = MutationState.ROLLED_BACK
        self._forget_settled(pending, pending.intent.entity_id)
        logger.debug("Rolled back %s", pending)

    def _confirm(
        self,
        pending: PendingMutation,
        affected: list[QueryDescriptor],
        result: Record | None,
    ) -> None:
        intent = pending.intent
        record_id = result.get("id") if result else intent.entity_id
        key = (intent.entity_type, record_id)
        newest = self._confirmed.get(key, 0)
        current = pending.sequence > newest
        if current:
            self._confirmed[key] = pending.sequence
        else:
            logger.debug("Ignoring out-of-order confirmation of %s", pending)
        self._forget_settled(pending, record_id)

        for descriptor in affected:
            reconcile = self._reconcile(intent, descriptor, result) if current else None
            self._cache.confirm(descriptor, pending.id, reconcile)
            if intent.kind is MutationKind.DELETE and descriptor.is_single:
                self._cache.remove(descriptor)

        pending.result = result
        pending.state = MutationState.CONFIRMED
        logger.debug("Confirmed %s", pending)

        for entity_type in intent.invalidates:
            self._invalidate(entity_type)

    def _forget_settled(self, settled: PendingMutation, record_id: Any) -> None:
        entity_type = settled.intent.entity_type
        for other in self._pending.values():
            if (
                other is not settled
                and other.intent.entity_type == entity_type
                and other.intent.entity_id == record_id
            ):
                return
        self._confirmed.pop((entity_type, record_id), None)

    def _reconcile(
        self,
        intent: MutationIntent,
        descriptor: QueryDescriptor,
        result: Record | None,
    ) -> Reconcile | None:
        if intent.kind is MutationKind.DELETE:
            return None if descriptor.is_single else _remove_by_id(intent.entity_id)
        if result is None:
            return None
        if descriptor.is_single:
            return _constant(result)
        if intent.kind is MutationKind.CREATE:
            if not matches_filters(result, descriptor.filters):
                return None
            return _insert_or_replace(result)
        return _replace_by_id(result)

    def _invalidate(self, entity_type: str) -> None:
        for descriptor in self._cache.invalidate(entity_type):
            if self._coordinator is not None and self._cache.is_active(descriptor):
                self._coordinator.refresh_in_background(descriptor)


__all__ = [
    "MutationExecutor",
    "PROVISIONAL_PREFIX",
    "entity_label",
    "is_provisional",
    "matches_filters",
]
