"""In-memory data source and change feed.

These back the test-suite and local demos: a simulated backend with id and
timestamp generation, configurable latency, scripted failures and an
in-process change feed.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from collections import OrderedDict, deque
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from venuesync.errors import DataSourceError
from venuesync.sources.base import ChangeCallback
from venuesync.types import ChangeEvent, ChangeOperation, Record

logger = logging.getLogger(__name__)

AggregateQuery = Callable[["InMemoryDataSource", Mapping[str, Any]], Any]

_PAGING_PARAMS = frozenset({"limit", "offset"})


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class _MemorySubscription:
    __slots__ = ("_feed", "callback", "closed", "entity_id", "entity_type")

    def __init__(
        self,
        feed: InMemoryChangeFeed,
        entity_type: str,
        callback: ChangeCallback,
        entity_id: Any | None,
    ) -> None:
        self._feed = feed
        self.entity_type = entity_type
        self.callback = callback
        self.entity_id = entity_id
        self.closed = False

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed._discard(self)


class InMemoryChangeFeed:
    """In-process fan-out change feed."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[_MemorySubscription]] = {}

    async def subscribe(
        self,
        entity_type: str,
        callback: ChangeCallback,
        entity_id: Any | None = None,
    ) -> _MemorySubscription:
        subscription = _MemorySubscription(self, entity_type, callback, entity_id)
        self._subscribers.setdefault(entity_type, []).append(subscription)
        logger.debug("Subscribed to %s changes (id=%s)", entity_type, entity_id)
        return subscription

    def publish(self, event: ChangeEvent) -> int:
        """Deliver an event to matching subscribers. Returns the delivery count."""
        delivered = 0
        for subscription in list(self._subscribers.get(event.entity_type, ())):
            if subscription.entity_id is not None and (
                event.entity_id is None or subscription.entity_id != event.entity_id
            ):
                continue
            try:
                subscription.callback(event)
            except Exception:
                logger.exception("Change callback failed for %s", event.entity_type)
            delivered += 1
        return delivered

    def subscription_count(self, entity_type: str | None = None) -> int:
        if entity_type is not None:
            return len(self._subscribers.get(entity_type, ()))
        return sum(len(subs) for subs in self._subscribers.values())

    def _discard(self, subscription: _MemorySubscription) -> None:
        subs = self._subscribers.get(subscription.entity_type)
        if subs and subscription in subs:
            subs.remove(subscription)
            if not subs:
                del self._subscribers[subscription.entity_type]
        logger.debug("Unsubscribed from %s changes", subscription.entity_type)


class InMemoryDataSource:
    """Simulated backend keeping records per entity type.

    ``latency`` (seconds) delays every call; ``latencies`` overrides it per
    operation name (``"list"``, ``"get"``, ``"create"``, ``"update"``,
    ``"delete"``). When a ``feed`` is given, successful writes publish a
    change event the way the hosted backend does.
    """

    def __init__(
        self,
        seed: Mapping[str, Iterable[Record]] | None = None,
        *,
        latency: float = 0.0,
        latencies: Mapping[str, float] | None = None,
        feed: InMemoryChangeFeed | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._tables: dict[str, OrderedDict[Any, Record]] = {}
        self._queries: dict[str, AggregateQuery] = {}
        self._failures: deque[tuple[str, str | None, BaseException]] = deque()
        self._latency = latency
        self._latencies = dict(latencies or {})
        self._feed = feed
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex[:12])
        self.calls: list[tuple[str, str, Any]] = []

        for entity_type, records in (seed or {}).items():
            table = self._table(entity_type)
            for record in records:
                table[record["id"]] = copy.deepcopy(dict(record))

    # -------------------------------------------------------------------------
    # Test controls
    # -------------------------------------------------------------------------

    def fail_next(
        self,
        operation: str,
        error: BaseException,
        *,
        entity_type: str | None = None,
    ) -> None:
        """Make the next matching call raise ``error`` instead of running."""
        self._failures.append((operation, entity_type, error))

    def set_latency(self, operation: str, seconds: float) -> None:
        self._latencies[operation] = seconds

    def register_query(self, entity_type: str, query: AggregateQuery) -> None:
        """Serve ``list`` for ``entity_type`` from a computed aggregate."""
        self._queries[entity_type] = query

    def records(self, entity_type: str) -> list[Record]:
        """Snapshot of the stored records for assertions."""
        return [copy.deepcopy(r) for r in self._tables.get(entity_type, {}).values()]

    def call_count(self, operation: str, entity_type: str | None = None) -> int:
        return sum(
            1
            for op, etype, _ in self.calls
            if op == operation and (entity_type is None or etype == entity_type)
        )

    # -------------------------------------------------------------------------
    # DataSource protocol
    # -------------------------------------------------------------------------

    async def list(
        self, entity_type: str, params: Mapping[str, Any]
    ) -> list[Record] | Record:
        await self._enter("list", entity_type, dict(params))
        if entity_type in self._queries:
            return copy.deepcopy(self._queries[entity_type](self, params))

        filters = {k: v for k, v in params.items() if k not in _PAGING_PARAMS}
        rows = [
            copy.deepcopy(record)
            for record in self._tables.get(entity_type, {}).values()
            if all(record.get(k) == v for k, v in filters.items())
        ]
        offset = int(params.get("offset", 0))
        limit = params.get("limit")
        end = offset + int(limit) if limit is not None else None
        return rows[offset:end]

    async def get(self, entity_type: str, entity_id: Any) -> Record:
        await self._enter("get", entity_type, entity_id)
        return copy.deepcopy(self._require(entity_type, entity_id))

    async def create(self, entity_type: str, payload: Mapping[str, Any]) -> Record:
        await self._enter("create", entity_type, dict(payload))
        now = _utcnow()
        record = copy.deepcopy(dict(payload))
        record["id"] = self._id_factory()
        record["created_at"] = now
        record["updated_at"] = now
        self._table(entity_type)[record["id"]] = record
        self._publish(entity_type, ChangeOperation.INSERT, record["id"])
        return copy.deepcopy(record)

    async def update(
        self, entity_type: str, entity_id: Any, changes: Mapping[str, Any]
    ) -> Record:
        await self._enter("update", entity_type, entity_id)
        record = self._require(entity_type, entity_id)
        record.update(copy.deepcopy(dict(changes)))
        record["id"] = entity_id
        record["updated_at"] = _utcnow()
        self._publish(entity_type, ChangeOperation.UPDATE, entity_id)
        return copy.deepcopy(record)

    async def delete(self, entity_type: str, entity_id: Any) -> None:
        await self._enter("delete", entity_type, entity_id)
        self._require(entity_type, entity_id)
        del self._tables[entity_type][entity_id]
        self._publish(entity_type, ChangeOperation.DELETE, entity_id)

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _table(self, entity_type: str) -> OrderedDict[Any, Record]:
        return self._tables.setdefault(entity_type, OrderedDict())

    def _require(self, entity_type: str, entity_id: Any) -> Record:
        record = self._tables.get(entity_type, {}).get(entity_id)
        if record is None:
            raise DataSourceError(404, f"{entity_type} {entity_id} not found")
        return record

    async def _enter(self, operation: str, entity_type: str, arg: Any) -> None:
        self.calls.append((operation, entity_type, arg))
        delay = self._latencies.get(operation, self._latency)
        if delay:
            await asyncio.sleep(delay)
        for index, (op, etype, error) in enumerate(self._failures):
            if op == operation and (etype is None or etype == entity_type):
                del self._failures[index]
                raise error

    def _publish(
        self, entity_type: str, operation: ChangeOperation, entity_id: Any
    ) -> None:
        if self._feed is not None:
            self._feed.publish(ChangeEvent(entity_type, operation, entity_id))


__all__ = ["InMemoryChangeFeed", "InMemoryDataSource"]
