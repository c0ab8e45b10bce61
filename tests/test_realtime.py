"""Tests for the realtime invalidator."""

import asyncio
from typing import Any

import pytest
from conftest import RecordingSink

from venuesync import (
    ChangeEvent,
    ChangeOperation,
    EntityCache,
    ErrorClassifier,
    ErrorKind,
    FetchCoordinator,
    InMemoryChangeFeed,
    InMemoryDataSource,
    QueryDescriptor,
    RealtimeInvalidator,
    SyncError,
)
from venuesync.sources.base import ChangeCallback

ITEMS = QueryDescriptor.of("inventory_items")
BAR_ITEMS = QueryDescriptor.of("inventory_items", category="Bar")


class SlowFeed(InMemoryChangeFeed):
    """Change feed whose subscribe takes a while and counts calls."""

    def __init__(self, delay: float = 0.01) -> None:
        super().__init__()
        self.delay = delay
        self.subscribe_calls = 0

    async def subscribe(
        self, entity_type: str, callback: ChangeCallback, entity_id: Any = None
    ) -> Any:
        self.subscribe_calls += 1
        await asyncio.sleep(self.delay)
        return await super().subscribe(entity_type, callback, entity_id)


class BrokenFeed:
    """Change feed that can't connect."""

    async def subscribe(
        self, entity_type: str, callback: ChangeCallback, entity_id: Any = None
    ) -> Any:
        raise ConnectionRefusedError("realtime unavailable")


@pytest.fixture
def invalidator(
    cache: EntityCache,
    coordinator: FetchCoordinator,
    feed: InMemoryChangeFeed,
    classifier: ErrorClassifier,
) -> RealtimeInvalidator:
    """Create an invalidator on the in-memory feed."""
    return RealtimeInvalidator(cache, coordinator, feed, classifier)


class TestSubscriptionLifecycle:
    """Tests for reference-counted subscriptions."""

    async def test_first_watcher_subscribes_last_unsubscribes(
        self, invalidator: RealtimeInvalidator, feed: InMemoryChangeFeed
    ) -> None:
        """Test that one subscription serves every watcher of a channel."""
        await invalidator.acquire("inventory_items")
        await invalidator.acquire("inventory_items")
        assert feed.subscription_count("inventory_items") == 1
        assert invalidator.watchers("inventory_items") == 2

        await invalidator.release("inventory_items")
        assert feed.subscription_count("inventory_items") == 1

        await invalidator.release("inventory_items")
        assert feed.subscription_count() == 0
        assert invalidator.active_subscriptions == 0

    async def test_mount_unmount_remount(
        self, invalidator: RealtimeInvalidator, feed: InMemoryChangeFeed
    ) -> None:
        """Test that a remount after unmount subscribes again."""
        for _ in range(3):
            async with invalidator.watch("events"):
                assert feed.subscription_count("events") == 1
            assert feed.subscription_count("events") == 0

    async def test_record_channels_are_separate(
        self, invalidator: RealtimeInvalidator, feed: InMemoryChangeFeed
    ) -> None:
        """Test that type-wide and per-record interest use separate channels."""
        async with invalidator.watch("inventory_items"):
            async with invalidator.watch("inventory_items", "item-1"):
                assert invalidator.active_subscriptions == 2
                assert feed.subscription_count("inventory_items") == 2

    async def test_released_on_error(
        self, invalidator: RealtimeInvalidator, feed: InMemoryChangeFeed
    ) -> None:
        """Test that leaving the block by exception still unsubscribes."""
        with pytest.raises(RuntimeError):
            async with invalidator.watch("events"):
                raise RuntimeError("view crashed")
        assert feed.subscription_count() == 0

    async def test_concurrent_acquires_subscribe_once(
        self,
        cache: EntityCache,
        coordinator: FetchCoordinator,
        classifier: ErrorClassifier,
    ) -> None:
        """Test that racing watchers share one subscription."""
        feed = SlowFeed()
        invalidator = RealtimeInvalidator(cache, coordinator, feed, classifier)

        await asyncio.gather(*(invalidator.acquire("events") for _ in range(3)))

        assert feed.subscribe_calls == 1
        assert invalidator.watchers("events") == 3

    async def test_subscribe_failure(
        self,
        cache: EntityCache,
        coordinator: FetchCoordinator,
        classifier: ErrorClassifier,
        sink: RecordingSink,
    ) -> None:
        """Test that a failed subscription is classified and not counted."""
        invalidator = RealtimeInvalidator(cache, coordinator, BrokenFeed(), classifier)

        with pytest.raises(SyncError) as exc_info:
            await invalidator.acquire("events")

        assert exc_info.value.kind is ErrorKind.NETWORK
        assert invalidator.watchers("events") == 0
        assert len(sink.errors) == 1
        assert sink.errors[0].startswith("Error subscribing to events")

    async def test_cancelled_mount_releases_its_ref(
        self,
        cache: EntityCache,
        coordinator: FetchCoordinator,
        classifier: ErrorClassifier,
    ) -> None:
        """Test that unmounting during subscription setup leaves nothing behind."""
        feed = SlowFeed(delay=0.05)
        invalidator = RealtimeInvalidator(cache, coordinator, feed, classifier)

        async def mount() -> None:
            async with invalidator.watch("events"):
                await asyncio.sleep(1)

        task = asyncio.create_task(mount())
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert invalidator.watchers("events") == 0

        async with invalidator.watch("events"):
            assert feed.subscription_count("events") == 1
        assert feed.subscription_count() == 0
        assert invalidator.watchers("events") == 0

    async def test_cancelled_waiter_does_not_pin_subscription(
        self,
        cache: EntityCache,
        coordinator: FetchCoordinator,
        classifier: ErrorClassifier,
    ) -> None:
        """Test that a watcher cancelled while queued behind setup is uncounted."""
        feed = SlowFeed(delay=0.05)
        invalidator = RealtimeInvalidator(cache, coordinator, feed, classifier)

        first = asyncio.create_task(invalidator.acquire("events"))
        second = asyncio.create_task(invalidator.acquire("events"))
        await asyncio.sleep(0.01)
        second.cancel()
        with pytest.raises(asyncio.CancelledError):
            await second
        await first

        assert invalidator.watchers("events") == 1
        await invalidator.release("events")
        assert feed.subscription_count() == 0
        assert feed.subscribe_calls == 1

    async def test_without_feed(
        self, cache: EntityCache, coordinator: FetchCoordinator
    ) -> None:
        """Test that watching without a feed only counts interest."""
        invalidator = RealtimeInvalidator(cache, coordinator, None)
        async with invalidator.watch("events"):
            assert invalidator.watchers("events") == 1
            assert invalidator.active_subscriptions == 0
        assert invalidator.watchers("events") == 0

    async def test_close_releases_everything(
        self, invalidator: RealtimeInvalidator, feed: InMemoryChangeFeed
    ) -> None:
        """Test that close unsubscribes regardless of watchers."""
        await invalidator.acquire("events")
        await invalidator.acquire("customers")
        await invalidator.close()
        assert feed.subscription_count() == 0
        assert invalidator.watchers("events") == 0


class TestChangeHandling:
    """Tests for invalidation on change events."""

    async def test_change_refetches_active_reads_only(
        self,
        invalidator: RealtimeInvalidator,
        coordinator: FetchCoordinator,
        source: InMemoryDataSource,
        feed: InMemoryChangeFeed,
        cache: EntityCache,
    ) -> None:
        """Test that active reads refetch and inactive ones just go stale."""
        await coordinator.read(ITEMS)
        await coordinator.read(BAR_ITEMS)
        cache.acquire(ITEMS)

        async with invalidator.watch("inventory_items"):
            delivered = feed.publish(
                ChangeEvent("inventory_items", ChangeOperation.UPDATE, "item-1")
            )
            await asyncio.sleep(0.01)

        assert delivered == 1
        assert invalidator.events_received == 1
        assert not cache.get(ITEMS).stale
        assert cache.get(BAR_ITEMS).stale
        assert source.call_count("list") == 3

    async def test_inactive_read_refetched_on_next_read(
        self,
        invalidator: RealtimeInvalidator,
        coordinator: FetchCoordinator,
        source: InMemoryDataSource,
        cache: EntityCache,
    ) -> None:
        """Test that a stale inactive read is fetched when next needed."""
        await coordinator.read(BAR_ITEMS)
        invalidator.handle_change(ChangeEvent("inventory_items", ChangeOperation.DELETE))
        assert source.call_count("list") == 1

        await coordinator.read(BAR_ITEMS)
        assert source.call_count("list") == 2

    async def test_other_types_untouched(
        self,
        invalidator: RealtimeInvalidator,
        coordinator: FetchCoordinator,
        cache: EntityCache,
    ) -> None:
        """Test that a change only invalidates its own entity type."""
        await coordinator.read(QueryDescriptor.of("events"))
        refetched = invalidator.handle_change(
            ChangeEvent("inventory_items", ChangeOperation.INSERT, "item-9")
        )
        assert refetched == []
        assert not cache.get(QueryDescriptor.of("events")).stale

    async def test_record_watch_filters_events(
        self, invalidator: RealtimeInvalidator, feed: InMemoryChangeFeed
    ) -> None:
        """Test that a per-record subscription ignores other records."""
        async with invalidator.watch("inventory_items", "item-1"):
            feed.publish(ChangeEvent("inventory_items", ChangeOperation.UPDATE, "item-2"))
            feed.publish(ChangeEvent("inventory_items", ChangeOperation.UPDATE, "item-1"))
        assert invalidator.events_received == 1

    async def test_no_delivery_after_unmount(
        self, invalidator: RealtimeInvalidator, feed: InMemoryChangeFeed
    ) -> None:
        """Test that events after release reach nobody."""
        async with invalidator.watch("events"):
            pass
        assert feed.publish(ChangeEvent("events", ChangeOperation.INSERT, "evt-2")) == 0
        assert invalidator.events_received == 0
