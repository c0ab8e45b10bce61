"""SyncClient - one cache shared by the coordinator, executor and invalidator."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any

from venuesync.cache import Clock, EntityCache, Listener
from venuesync.classifier import ErrorClassifier
from venuesync.coordinator import FetchCoordinator
from venuesync.descriptors import QueryDescriptor
from venuesync.errors import ClassifiedError, SyncError
from venuesync.mutations import MutationExecutor
from venuesync.notifications import LoggingNotificationSink, NotificationSink
from venuesync.pending import PendingMutation
from venuesync.policy import FreshnessPolicy, PolicyRegistry
from venuesync.realtime import RealtimeInvalidator
from venuesync.settings import SyncSettings
from venuesync.sources.base import ChangeFeed, DataSource
from venuesync.types import (
    CacheEntry,
    Duration,
    EntryState,
    MutationIntent,
    MutationKind,
    Record,
)

logger = logging.getLogger(__name__)


class QueryHandle:
    """A mounted read: synchronous access to its cache entry.

    Listeners registered through :meth:`subscribe` are dropped when the
    mount ends, so late writes never reach an unmounted view.
    """

    def __init__(self, client: SyncClient, descriptor: QueryDescriptor) -> None:
        self._client = client
        self.descriptor = descriptor
        self.last_error: ClassifiedError | None = None
        self._unsubscribers: list[Any] = []
        self.closed = False

    @property
    def entry(self) -> CacheEntry[Any] | None:
        return self._client.cache.get(self.descriptor)

    @property
    def value(self) -> Any:
        entry = self.entry
        return entry.value if entry is not None else None

    @property
    def error(self) -> ClassifiedError | None:
        entry = self.entry
        if entry is not None and entry.error is not None:
            return entry.error
        return self.last_error

    @property
    def is_loading(self) -> bool:
        entry = self.entry
        return entry is None or (
            entry.state is EntryState.FETCHING and not entry.has_value
        )

    @property
    def is_fetching(self) -> bool:
        entry = self.entry
        return entry is not None and entry.state is EntryState.FETCHING

    def subscribe(self, listener: Listener) -> None:
        if self.closed:
            raise RuntimeError("Cannot subscribe to an unmounted query")
        self._unsubscribers.append(
            self._client.cache.subscribe(self.descriptor, listener)
        )

    async def refetch(self) -> Any:
        """Force a fresh read. Raises :class:`SyncError` on failure."""
        try:
            value = await self._client.refetch(self.descriptor)
        except SyncError as e:
            self.last_error = e.error
            raise
        self.last_error = None
        return value

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self.closed = True


class SyncClient:
    """Entry point wiring the data layer around one shared cache.

    Usage:
        client = SyncClient(source, feed, sink)
        async with client.mount(QueryDescriptor.of("events")) as events:
            render(events.value)
        await client.create("financial_transactions", {"amount": "50.00"})
    """

    def __init__(
        self,
        source: DataSource,
        feed: ChangeFeed | None = None,
        sink: NotificationSink | None = None,
        *,
        policies: Mapping[str, FreshnessPolicy] | None = None,
        default_stale_after: Duration = "3m",
        default_retain_for: Duration = "5m",
        request_timeout: Duration = "30s",
        clock: Clock | None = None,
    ) -> None:
        default = FreshnessPolicy.of(default_stale_after, default_retain_for)
        self.source = source
        self.feed = feed
        self.sink = sink or LoggingNotificationSink()
        self.cache = EntityCache(PolicyRegistry(policies, default=default), clock=clock)
        self.classifier = ErrorClassifier(self.sink)
        self.coordinator = FetchCoordinator(
            self.cache, source, self.classifier, timeout=request_timeout
        )
        self.executor = MutationExecutor(
            self.cache,
            source,
            self.classifier,
            timeout=request_timeout,
            coordinator=self.coordinator,
        )
        self.invalidator = RealtimeInvalidator(
            self.cache, self.coordinator, feed, self.classifier
        )
        self._owned: list[Any] = []

    @classmethod
    def from_settings(
        cls,
        settings: SyncSettings | None = None,
        *,
        sink: NotificationSink | None = None,
    ) -> SyncClient:
        """Build an HTTP-backed client, with a Redis change feed when configured."""
        from venuesync.sources.http import HttpDataSource

        settings = settings or SyncSettings()
        source = HttpDataSource(
            settings.api_base_url,
            api_key=settings.api_key,
            timeout=settings.request_timeout_seconds,
        )
        feed = None
        if settings.redis_url:
            import redis.asyncio

            from venuesync.sources.redis import RedisChangeFeed

            feed = RedisChangeFeed(
                redis.asyncio.from_url(settings.redis_url),
                prefix=settings.channel_prefix,
            )
        client = cls(
            source,
            feed,
            sink,
            default_stale_after=settings.default_stale_after,
            default_retain_for=settings.default_retain_for,
            request_timeout=settings.request_timeout,
        )
        client._owned.extend(r for r in (source, feed) if r is not None)
        return client

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def read(self, descriptor: QueryDescriptor, *, force: bool = False) -> Any:
        return await self.coordinator.read(descriptor, force=force)

    async def refetch(self, descriptor: QueryDescriptor) -> Any:
        return await self.coordinator.refetch(descriptor)

    @contextlib.asynccontextmanager
    async def mount(
        self,
        descriptor: QueryDescriptor,
        *,
        listener: Listener | None = None,
        realtime: bool = True,
    ) -> AsyncIterator[QueryHandle]:
        """Consume a read for the duration of the block.

        Registers interest, watches the entity's change feed and resolves
        the read. A failed initial read doesn't raise: it is exposed on
        ``handle.error`` (already toasted). Everything acquired here is
        released on every exit path.
        """
        self.cache.acquire(descriptor)
        try:
            watch = (
                self.invalidator.watch(descriptor.entity_type, descriptor.entity_id)
                if realtime
                else contextlib.nullcontext()
            )
            async with watch:
                handle = QueryHandle(self, descriptor)
                try:
                    if listener is not None:
                        handle.subscribe(listener)
                    try:
                        await self.coordinator.read(descriptor)
                    except SyncError as e:
                        handle.last_error = e.error
                    yield handle
                finally:
                    handle.close()
        finally:
            self.cache.release(descriptor)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def submit(self, intent: MutationIntent) -> PendingMutation:
        return self.executor.submit(intent)

    async def create(
        self,
        entity_type: str,
        payload: Mapping[str, Any],
        *,
        invalidates: tuple[str, ...] = (),
    ) -> Record | None:
        return await self.executor.execute(
            MutationIntent(
                MutationKind.CREATE,
                entity_type,
                dict(payload),
                invalidates=invalidates,
            )
        )

    async def update(
        self,
        entity_type: str,
        entity_id: Any,
        changes: Mapping[str, Any],
        *,
        invalidates: tuple[str, ...] = (),
    ) -> Record | None:
        return await self.executor.execute(
            MutationIntent(
                MutationKind.UPDATE,
                entity_type,
                dict(changes),
                entity_id=entity_id,
                invalidates=invalidates,
            )
        )

    async def delete(
        self,
        entity_type: str,
        entity_id: Any,
        *,
        invalidates: tuple[str, ...] = (),
    ) -> None:
        await self.executor.execute(
            MutationIntent(
                MutationKind.DELETE,
                entity_type,
                entity_id=entity_id,
                invalidates=invalidates,
            )
        )

    def invalidate(self, target: QueryDescriptor | str) -> list[QueryDescriptor]:
        """Mark reads stale and refetch the ones currently mounted."""
        matched = self.cache.invalidate(target)
        for descriptor in matched:
            if self.cache.is_active(descriptor):
                self.coordinator.refresh_in_background(descriptor)
        return matched

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Release subscriptions, cancel background work, close owned connections."""
        await self.invalidator.close()
        await self.coordinator.close()
        for resource in self._owned:
            await resource.disconnect()
        self._owned.clear()

    async def __aenter__(self) -> SyncClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


__all__ = ["QueryHandle", "SyncClient"]
