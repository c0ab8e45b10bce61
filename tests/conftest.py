"""Shared pytest fixtures."""

import pytest

from venuesync import (
    EntityCache,
    ErrorClassifier,
    FetchCoordinator,
    InMemoryChangeFeed,
    InMemoryDataSource,
    MutationExecutor,
    Notification,
    NotificationLevel,
    PolicyRegistry,
    SyncClient,
)


class RecordingSink:
    """Notification sink that keeps every toast for assertions."""

    def __init__(self) -> None:
        self.notifications: list[Notification] = []

    def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)

    @property
    def errors(self) -> list[str]:
        return [
            n.message
            for n in self.notifications
            if n.level is NotificationLevel.ERROR
        ]

    @property
    def successes(self) -> list[str]:
        return [
            n.message
            for n in self.notifications
            if n.level is NotificationLevel.SUCCESS
        ]


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: int = 1_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def sink() -> RecordingSink:
    """Create a fresh recording sink for each test."""
    return RecordingSink()


@pytest.fixture
def clock() -> FakeClock:
    """Create a controllable clock."""
    return FakeClock()


@pytest.fixture
def feed() -> InMemoryChangeFeed:
    """Create a fresh in-memory change feed."""
    return InMemoryChangeFeed()


@pytest.fixture
def source(feed: InMemoryChangeFeed) -> InMemoryDataSource:
    """Create an in-memory backend seeded with venue data."""
    return InMemoryDataSource(
        {
            "inventory_items": [
                {"id": "item-1", "name": "Lager", "category": "Bar", "stock": 10},
                {"id": "item-2", "name": "Cola", "category": "Bar", "stock": 24},
                {"id": "item-3", "name": "Napkins", "category": "Supplies", "stock": 500},
            ],
            "financial_transactions": [
                {"id": "txn-1", "amount": "120.00", "category": "Tickets"},
            ],
            "events": [
                {"id": "evt-1", "title": "Jazz Night", "status": "upcoming"},
            ],
        },
        feed=feed,
    )


@pytest.fixture
def cache(clock: FakeClock) -> EntityCache:
    """Create an entity cache driven by the fake clock."""
    return EntityCache(PolicyRegistry(), clock=clock)


@pytest.fixture
def classifier(sink: RecordingSink) -> ErrorClassifier:
    """Create a classifier reporting into the recording sink."""
    return ErrorClassifier(sink)


@pytest.fixture
def coordinator(
    cache: EntityCache, source: InMemoryDataSource, classifier: ErrorClassifier
) -> FetchCoordinator:
    """Create a fetch coordinator over the shared cache."""
    return FetchCoordinator(cache, source, classifier, timeout="2s")


@pytest.fixture
def executor(
    cache: EntityCache,
    source: InMemoryDataSource,
    classifier: ErrorClassifier,
    coordinator: FetchCoordinator,
) -> MutationExecutor:
    """Create a mutation executor over the shared cache."""
    return MutationExecutor(
        cache, source, classifier, timeout="2s", coordinator=coordinator
    )


@pytest.fixture
async def client(
    source: InMemoryDataSource,
    feed: InMemoryChangeFeed,
    sink: RecordingSink,
    clock: FakeClock,
):
    """Create a fully wired client and close it after the test."""
    client = SyncClient(source, feed, sink, request_timeout="2s", clock=clock)
    yield client
    await client.close()
