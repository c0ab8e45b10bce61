"""Realtime invalidator: refetch on server-pushed change notifications."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from venuesync.cache import EntityCache
from venuesync.classifier import ErrorClassifier
from venuesync.coordinator import FetchCoordinator
from venuesync.descriptors import QueryDescriptor
from venuesync.errors import SyncError
from venuesync.sources.base import ChangeFeed, Subscription
from venuesync.types import ChangeEvent

logger = logging.getLogger(__name__)

ChannelKey = tuple[str, Any]


@dataclass
class _Channel:
    refs: int = 0
    subscription: Subscription | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class RealtimeInvalidator:
    """Keeps cached reads current when entities change outside this session.

    Interest is reference-counted per ``(entity_type, entity_id)``: the first
    watcher opens a change-feed subscription and the last one leaving closes
    it. Change events never carry trusted data; they only invalidate, and
    reads with active consumers are refetched.
    """

    def __init__(
        self,
        cache: EntityCache,
        coordinator: FetchCoordinator,
        feed: ChangeFeed | None,
        classifier: ErrorClassifier | None = None,
    ) -> None:
        self._cache = cache
        self._coordinator = coordinator
        self._feed = feed
        self._classifier = classifier or ErrorClassifier()
        self._channels: dict[ChannelKey, _Channel] = {}
        self.events_received = 0

    @property
    def active_subscriptions(self) -> int:
        return sum(1 for c in self._channels.values() if c.subscription is not None)

    def watchers(self, entity_type: str, entity_id: Any | None = None) -> int:
        channel = self._channels.get((entity_type, entity_id))
        return channel.refs if channel is not None else 0

    @asynccontextmanager
    async def watch(
        self, entity_type: str, entity_id: Any | None = None
    ) -> AsyncIterator[None]:
        """Hold a change-feed subscription for the duration of the block."""
        await self.acquire(entity_type, entity_id)
        try:
            yield
        finally:
            await self.release(entity_type, entity_id)

    async def acquire(self, entity_type: str, entity_id: Any | None = None) -> None:
        key = (entity_type, entity_id)
        channel = self._channels.setdefault(key, _Channel())
        channel.refs += 1
        if self._feed is None:
            return

        try:
            async with channel.lock:
                if channel.subscription is None and channel.refs > 0:
                    channel.subscription = await self._feed.subscribe(
                        entity_type, self.handle_change, entity_id
                    )
        except Exception as e:
            await self.release(entity_type, entity_id)
            error = self._classifier.handle(e, f"subscribing to {entity_type}")
            raise SyncError(error) from e
        except BaseException:
            # Cancelled while subscribing: the caller never gets to release.
            await self.release(entity_type, entity_id)
            raise
        logger.debug("Watching %s (id=%s)", entity_type, entity_id)

    async def release(self, entity_type: str, entity_id: Any | None = None) -> None:
        key = (entity_type, entity_id)
        channel = self._channels.get(key)
        if channel is None:
            return
        channel.refs -= 1
        if channel.refs > 0:
            return

        async with channel.lock:
            if channel.refs > 0:
                return
            if self._channels.get(key) is channel:
                del self._channels[key]
            subscription, channel.subscription = channel.subscription, None
            if subscription is not None:
                await subscription.close()
        logger.debug("Stopped watching %s (id=%s)", entity_type, entity_id)

    def handle_change(self, event: ChangeEvent) -> list[QueryDescriptor]:
        """Invalidate the event's entity type and refetch active reads.

        Returns the descriptors that were refetched.
        """
        self.events_received += 1
        invalidated = self._cache.invalidate(event.entity_type)
        refetched = [d for d in invalidated if self._cache.is_active(d)]
        for descriptor in refetched:
            self._coordinator.refresh_in_background(descriptor)
        logger.debug(
            "%s %s: %d invalidated, %d refetching",
            event.entity_type,
            event.operation.value,
            len(invalidated),
            len(refetched),
        )
        return refetched

    async def close(self) -> None:
        """Release every subscription regardless of watchers."""
        channels = list(self._channels.values())
        self._channels.clear()
        for channel in channels:
            channel.refs = 0
            subscription, channel.subscription = channel.subscription, None
            if subscription is not None:
                await subscription.close()


__all__ = ["RealtimeInvalidator"]
