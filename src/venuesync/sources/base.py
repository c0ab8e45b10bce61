"""Protocols for the external collaborators: data sources and change feeds."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, Protocol, runtime_checkable

from venuesync.types import ChangeEvent, Record

ChangeCallback = Callable[[ChangeEvent], None]


@runtime_checkable
class DataSource(Protocol):
    """Request/response access to the hosted backend.

    Failures raise :class:`venuesync.errors.DataSourceError` for structured
    error envelopes, or a transport exception when no response arrived.
    """

    async def list(
        self, entity_type: str, params: Mapping[str, Any]
    ) -> list[Record] | Record:
        """Run a list (or aggregate) query."""
        ...

    async def get(self, entity_type: str, entity_id: Any) -> Record:
        """Fetch a single record by id."""
        ...

    async def create(self, entity_type: str, payload: Mapping[str, Any]) -> Record:
        """Create a record, returning the canonical server copy."""
        ...

    async def update(
        self, entity_type: str, entity_id: Any, changes: Mapping[str, Any]
    ) -> Record:
        """Update a record, returning the canonical server copy."""
        ...

    async def delete(self, entity_type: str, entity_id: Any) -> None:
        """Delete a record."""
        ...


@runtime_checkable
class Subscription(Protocol):
    """Handle for one change-feed subscription."""

    async def close(self) -> None:
        """Stop delivering events. Safe to call more than once."""
        ...


@runtime_checkable
class ChangeFeed(Protocol):
    """Push channel signalling that server-side entity state changed."""

    async def subscribe(
        self,
        entity_type: str,
        callback: ChangeCallback,
        entity_id: Any | None = None,
    ) -> Subscription:
        """Start delivering change events for an entity type (or one record)."""
        ...
