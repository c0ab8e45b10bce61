"""Data sources and change feeds for venuesync."""

from contextlib import suppress

from venuesync.sources.base import ChangeCallback, ChangeFeed, DataSource, Subscription
from venuesync.sources.http import HttpDataSource
from venuesync.sources.memory import InMemoryChangeFeed, InMemoryDataSource

# Optional feeds - only available when dependencies are installed
with suppress(ImportError):
    from venuesync.sources.redis import RedisChangeFeed

__all__ = [
    "ChangeCallback",
    "ChangeFeed",
    "DataSource",
    "HttpDataSource",
    "InMemoryChangeFeed",
    "InMemoryDataSource",
    "RedisChangeFeed",
    "Subscription",
]
