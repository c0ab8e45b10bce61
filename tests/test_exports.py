"""Tests for package exports."""


def test_core_exports_available() -> None:
    """Test that the main entry points are importable from the package."""
    from venuesync import (
        EntityCache,
        ErrorClassifier,
        FetchCoordinator,
        MutationExecutor,
        RealtimeInvalidator,
        SyncClient,
        define_resources,
    )

    assert EntityCache is not None
    assert ErrorClassifier is not None
    assert FetchCoordinator is not None
    assert MutationExecutor is not None
    assert RealtimeInvalidator is not None
    assert SyncClient is not None
    assert define_resources is not None


def test_sources_exports_available() -> None:
    """Test that data sources are importable from the sources package."""
    from venuesync.sources import (
        ChangeFeed,
        DataSource,
        HttpDataSource,
        InMemoryChangeFeed,
        InMemoryDataSource,
    )

    assert isinstance(InMemoryDataSource(), DataSource)
    assert isinstance(InMemoryChangeFeed(), ChangeFeed)
    assert HttpDataSource is not None


def test_all_names_resolve() -> None:
    """Test that every name in __all__ exists (optional feeds aside)."""
    import venuesync

    missing = [
        name
        for name in venuesync.__all__
        if name != "RedisChangeFeed" and not hasattr(venuesync, name)
    ]
    assert missing == []
    assert venuesync.__version__ == "0.1.0"
