"""Entity cache: the single in-memory store of server state.

The cache is synchronous. Components that talk to the network (the fetch
coordinator, mutation executor and realtime invalidator) all write through
this interface; nothing keeps a private copy.

Each slot keeps the last server-confirmed *base* value plus an ordered list
of pending optimistic projections. The value consumers see is the base with
every projection applied in call order, so dropping a projection restores
exactly what was there before it.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

from venuesync.descriptors import QueryDescriptor
from venuesync.errors import ClassifiedError
from venuesync.policy import FreshnessPolicy, PolicyRegistry
from venuesync.types import CacheEntry, EntryState

logger = logging.getLogger(__name__)

Projection = Callable[[Any], Any]
Reconcile = Callable[[Any], Any]
Listener = Callable[[CacheEntry[Any] | None], None]
Clock = Callable[[], int]


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class _Slot:
    descriptor: QueryDescriptor
    policy: FreshnessPolicy
    base: Any = None
    has_value: bool = False
    fetched_at: int = 0
    touched_at: int = 0
    state: EntryState = EntryState.IDLE
    stale: bool = False
    error: ClassifiedError | None = None
    generation: int = 0
    projections: list[tuple[str, Projection]] = field(default_factory=list)
    entry: CacheEntry[Any] | None = None

    def materialize(self) -> CacheEntry[Any]:
        value = self.base
        for _, project in self.projections:
            value = project(value)
        self.entry = CacheEntry(
            descriptor=self.descriptor,
            value=value,
            fetched_at=self.fetched_at,
            state=self.state,
            stale_after=self.policy.stale_after,
            retain_for=self.policy.retain_for,
            has_value=self.has_value,
            stale=self.stale,
            error=self.error,
            projections=tuple(mid for mid, _ in self.projections),
        )
        return self.entry


class EntityCache:
    """Keyed store of cache entries with listeners, consumers and projections."""

    def __init__(
        self,
        policies: PolicyRegistry | None = None,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._policies = policies or PolicyRegistry()
        self._clock = clock or _wall_clock_ms
        self._slots: dict[QueryDescriptor, _Slot] = {}
        self._listeners: dict[QueryDescriptor, list[Listener]] = {}
        self._consumers: dict[QueryDescriptor, int] = {}

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def now(self) -> int:
        return self._clock()

    @property
    def policies(self) -> PolicyRegistry:
        return self._policies

    def get(self, descriptor: QueryDescriptor) -> CacheEntry[Any] | None:
        """Current entry for a descriptor, or None. No side effects."""
        slot = self._slots.get(descriptor)
        return slot.entry if slot is not None else None

    def is_fresh(self, entry: CacheEntry[Any]) -> bool:
        """Whether an entry can be served without a network round-trip."""
        if not entry.has_value or entry.stale:
            return False
        if entry.state is not EntryState.IDLE:
            return False
        return self._clock() - entry.fetched_at < entry.stale_after

    def generation(self, descriptor: QueryDescriptor) -> int:
        """Invalidation counter; changes whenever the descriptor is invalidated."""
        slot = self._slots.get(descriptor)
        return slot.generation if slot is not None else 0

    def descriptors(self, entity_type: str | None = None) -> list[QueryDescriptor]:
        return [
            d
            for d in self._slots
            if entity_type is None or d.entity_type == entity_type
        ]

    def __contains__(self, descriptor: object) -> bool:
        return descriptor in self._slots

    def __len__(self) -> int:
        return len(self._slots)

    def __iter__(self) -> Iterator[CacheEntry[Any]]:
        return iter([s.entry for s in self._slots.values() if s.entry is not None])

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def set(
        self,
        descriptor: QueryDescriptor,
        value: Any,
        state: EntryState = EntryState.IDLE,
        *,
        error: ClassifiedError | None = None,
        stale: bool = False,
    ) -> CacheEntry[Any]:
        """Replace the server value for a descriptor and notify listeners.

        Pending projections are re-applied on top of the new value.
        """
        slot = self._slot(descriptor)
        now = self._clock()
        slot.base = value
        slot.has_value = True
        slot.fetched_at = now
        slot.touched_at = now
        slot.state = state
        slot.error = error
        slot.stale = stale
        return self._publish(slot)

    def mark_fetching(self, descriptor: QueryDescriptor) -> CacheEntry[Any]:
        slot = self._slot(descriptor)
        slot.state = EntryState.FETCHING
        return self._publish(slot)

    def mark_idle(
        self, descriptor: QueryDescriptor, *, stale: bool = False
    ) -> CacheEntry[Any]:
        """Leave the fetching state without touching the value."""
        slot = self._slot(descriptor)
        slot.state = EntryState.IDLE
        slot.stale = slot.stale or stale
        return self._publish(slot)

    def mark_error(
        self, descriptor: QueryDescriptor, error: ClassifiedError
    ) -> CacheEntry[Any]:
        """Record a failed fetch. The last good value, if any, is kept."""
        slot = self._slot(descriptor)
        slot.state = EntryState.ERROR
        slot.error = error
        return self._publish(slot)

    def invalidate(
        self,
        target: QueryDescriptor | str,
        entity_id: Any | None = None,
    ) -> list[QueryDescriptor]:
        """Mark matching entries stale so the next read fetches.

        ``target`` is a single descriptor or an entity type. Values are kept
        so views can keep showing the last known data while refetching.
        """
        if isinstance(target, QueryDescriptor):
            matched = [target] if target in self._slots else []
        else:
            matched = [d for d in self._slots if d.matches(target, entity_id)]

        for descriptor in matched:
            slot = self._slots[descriptor]
            slot.stale = True
            slot.generation += 1
            self._publish(slot)

        if matched:
            logger.debug("Invalidated %d entries for %r", len(matched), target)
        return matched

    def remove(self, descriptor: QueryDescriptor) -> None:
        """Drop an entry. Listeners are told the entry is gone."""
        if self._slots.pop(descriptor, None) is not None:
            self._notify(descriptor, None)

    def clear(self) -> None:
        descriptors = list(self._slots)
        self._slots.clear()
        for descriptor in descriptors:
            self._notify(descriptor, None)

    # -------------------------------------------------------------------------
    # Optimistic projections
    # -------------------------------------------------------------------------

    def project(
        self, descriptor: QueryDescriptor, mutation_id: str, projection: Projection
    ) -> CacheEntry[Any]:
        """Layer a provisional change over the entry's value."""
        slot = self._slots[descriptor]
        slot.projections.append((mutation_id, projection))
        return self._publish(slot)

    def confirm(
        self,
        descriptor: QueryDescriptor,
        mutation_id: str,
        reconcile: Reconcile | None = None,
    ) -> CacheEntry[Any] | None:
        """Fold a confirmed result into the base value and drop the projection."""
        slot = self._slots.get(descriptor)
        if slot is None:
            return None
        if reconcile is not None and slot.has_value:
            slot.base = reconcile(slot.base)
            slot.touched_at = self._clock()
        slot.projections = [p for p in slot.projections if p[0] != mutation_id]
        return self._publish(slot)

    def rollback(
        self, descriptor: QueryDescriptor, mutation_id: str
    ) -> CacheEntry[Any] | None:
        """Drop a projection, restoring the value it was layered over."""
        slot = self._slots.get(descriptor)
        if slot is None:
            return None
        slot.projections = [p for p in slot.projections if p[0] != mutation_id]
        return self._publish(slot)

    # -------------------------------------------------------------------------
    # Listeners and consumers
    # -------------------------------------------------------------------------

    def subscribe(
        self, descriptor: QueryDescriptor, listener: Listener
    ) -> Callable[[], None]:
        """Call ``listener`` after every write to ``descriptor``.

        Returns an idempotent unsubscribe function.
        """
        listeners = self._listeners.setdefault(descriptor, [])
        listeners.append(listener)

        def unsubscribe() -> None:
            current = self._listeners.get(descriptor)
            if current and listener in current:
                current.remove(listener)
                if not current:
                    del self._listeners[descriptor]

        return unsubscribe

    def acquire(self, descriptor: QueryDescriptor) -> int:
        """Register interest in a descriptor. Returns the consumer count."""
        count = self._consumers.get(descriptor, 0) + 1
        self._consumers[descriptor] = count
        return count

    def release(self, descriptor: QueryDescriptor) -> int:
        """Drop interest in a descriptor. Returns the remaining count."""
        count = self._consumers.get(descriptor, 0) - 1
        if count <= 0:
            self._consumers.pop(descriptor, None)
            slot = self._slots.get(descriptor)
            if slot is not None:
                slot.touched_at = self._clock()
            return 0
        self._consumers[descriptor] = count
        return count

    def consumers(self, descriptor: QueryDescriptor) -> int:
        return self._consumers.get(descriptor, 0)

    def is_active(self, descriptor: QueryDescriptor) -> bool:
        return self.consumers(descriptor) > 0

    def evict_expired(self) -> list[QueryDescriptor]:
        """Drop unused entries that outlived their retention window."""
        now = self._clock()
        expired = [
            d
            for d, slot in self._slots.items()
            if not self.is_active(d)
            and not slot.projections
            and slot.state is not EntryState.FETCHING
            and now - slot.touched_at >= slot.policy.retain_for
        ]
        for descriptor in expired:
            del self._slots[descriptor]
        if expired:
            logger.debug("Evicted %d unused entries", len(expired))
        return expired

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _slot(self, descriptor: QueryDescriptor) -> _Slot:
        slot = self._slots.get(descriptor)
        if slot is None:
            slot = _Slot(
                descriptor=descriptor,
                policy=self._policies[descriptor.entity_type],
                touched_at=self._clock(),
            )
            self._slots[descriptor] = slot
        return slot

    def _publish(self, slot: _Slot) -> CacheEntry[Any]:
        entry = slot.materialize()
        self._notify(slot.descriptor, entry)
        return entry

    def _notify(
        self, descriptor: QueryDescriptor, entry: CacheEntry[Any] | None
    ) -> None:
        for listener in list(self._listeners.get(descriptor, ())):
            try:
                listener(entry)
            except Exception:
                logger.exception("Cache listener failed for %r", descriptor)


__all__ = ["EntityCache", "Listener", "Projection", "Reconcile"]
