"""Fetch coordinator: cached reads with in-flight deduplication.

This module resolves reads for query descriptors:
- fresh entries are served from the cache without a network call
- concurrent reads for the same descriptor share one in-flight fetch
- failures are classified, reported and raised as :class:`SyncError`
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from venuesync.cache import EntityCache
from venuesync.classifier import ErrorClassifier
from venuesync.descriptors import QueryDescriptor
from venuesync.duration import parse_duration
from venuesync.errors import SyncError
from venuesync.sources.base import DataSource
from venuesync.types import Duration

logger = logging.getLogger(__name__)


class FetchCoordinator:
    """Resolves reads against the cache and the data source."""

    def __init__(
        self,
        cache: EntityCache,
        source: DataSource,
        classifier: ErrorClassifier,
        *,
        timeout: Duration = "30s",
    ) -> None:
        self._cache = cache
        self._source = source
        self._classifier = classifier
        self._timeout = parse_duration(timeout) / 1000
        self._in_flight: dict[QueryDescriptor, asyncio.Future[Any]] = {}
        self._background_tasks: set[asyncio.Task[None]] = set()
        self.network_calls = 0

    def in_flight(self, descriptor: QueryDescriptor) -> bool:
        return descriptor in self._in_flight

    async def read(self, descriptor: QueryDescriptor, *, force: bool = False) -> Any:
        """Resolve the value for ``descriptor``.

        Args:
            descriptor: What to read
            force: Skip the freshness check (caller-invoked refetch)

        Returns:
            The cached or freshly fetched value

        Raises:
            SyncError: The fetch failed; the error is already classified
        """
        self._cache.evict_expired()
        entry = self._cache.get(descriptor)
        if not force and entry is not None and self._cache.is_fresh(entry):
            return entry.value

        existing = self._in_flight.get(descriptor)
        if existing is not None:
            logger.debug("Joining in-flight fetch for %r", descriptor)
            return await asyncio.shield(existing)

        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()
        self._in_flight[descriptor] = future
        try:
            value = await self._fetch(descriptor)
        except SyncError as e:
            future.set_exception(e)
            # Mark retrieved so an unshared failure isn't logged by asyncio
            future.exception()
            raise
        except asyncio.CancelledError:
            future.cancel()
            raise
        else:
            future.set_result(value)
            return value
        finally:
            del self._in_flight[descriptor]

    async def refetch(self, descriptor: QueryDescriptor) -> Any:
        """Caller-invoked retry: read bypassing freshness."""
        return await self.read(descriptor, force=True)

    def refresh_in_background(self, descriptor: QueryDescriptor) -> None:
        """Schedule a forced read; failures are already reported, so only logged."""

        async def refresh() -> None:
            try:
                await self.read(descriptor, force=True)
            except SyncError as e:
                logger.warning(
                    "Background refresh of %r failed: %s", descriptor, e.error.message
                )

        task = asyncio.create_task(refresh())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def close(self) -> None:
        """Cancel outstanding background refreshes."""
        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    async def _fetch(self, descriptor: QueryDescriptor) -> Any:
        generation = self._cache.generation(descriptor)
        self._cache.mark_fetching(descriptor)
        operation = f"loading {descriptor.entity_type.replace('_', ' ')}"
        self.network_calls += 1
        logger.debug("Fetching %r", descriptor)

        try:
            value = await asyncio.wait_for(self._call(descriptor), self._timeout)
        except asyncio.CancelledError:
            self._restore_after_cancel(descriptor)
            raise
        except Exception as e:
            error = self._classifier.handle(e, operation)
            self._cache.mark_error(descriptor, error)
            logger.debug("Fetch of %r failed (%s)", descriptor, error.kind.value)
            raise SyncError(error) from e

        # Invalidated while in flight: the result may predate the change
        superseded = self._cache.generation(descriptor) != generation
        self._cache.set(descriptor, value, stale=superseded)
        if superseded and self._cache.is_active(descriptor):
            logger.debug("Result for %r superseded; refetching", descriptor)
            self.refresh_in_background(descriptor)
        return value

    async def _call(self, descriptor: QueryDescriptor) -> Any:
        if descriptor.is_single:
            return await self._source.get(descriptor.entity_type, descriptor.entity_id)
        return await self._source.list(descriptor.entity_type, descriptor.filters)

    def _restore_after_cancel(self, descriptor: QueryDescriptor) -> None:
        entry = self._cache.get(descriptor)
        if entry is None:
            return
        if entry.has_value:
            self._cache.mark_idle(descriptor, stale=True)
        else:
            self._cache.remove(descriptor)


__all__ = ["FetchCoordinator"]
