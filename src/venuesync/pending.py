"""PendingMutation - awaitable handle for an in-progress mutation."""

from __future__ import annotations

import asyncio
from typing import Any, Generator

from venuesync.errors import ClassifiedError
from venuesync.types import MutationIntent, MutationState, Record


class PendingMutation:
    """An awaitable that resolves to the canonical record, with a ``state``.

    Usage:
        pending = executor.submit(intent)   # projection already visible
        pending.state                       # MutationState.APPLYING
        record = await pending              # canonical server record
    """

    __slots__ = ("_task", "error", "id", "intent", "result", "sequence", "state")

    def __init__(self, mutation_id: str, intent: MutationIntent, sequence: int) -> None:
        self.id = mutation_id
        self.intent = intent
        self.sequence = sequence
        self.state = MutationState.IDLE
        self.result: Record | None = None
        self.error: ClassifiedError | None = None
        self._task: asyncio.Task[Any] | None = None

    def attach(self, task: asyncio.Task[Any]) -> None:
        self._task = task

    def __await__(self) -> Generator[Any, None, Any]:
        if self._task is None:
            raise RuntimeError(f"Mutation {self.id} was never started")
        return self._task.__await__()

    def done(self) -> bool:
        return self.state in (MutationState.CONFIRMED, MutationState.ROLLED_BACK)

    def cancel(self) -> bool:
        """Cancel the write; the projection is rolled back."""
        return self._task.cancel() if self._task is not None else False

    def __repr__(self) -> str:
        return (
            f"PendingMutation({self.id}, {self.intent.kind.value} "
            f"{self.intent.entity_type}, {self.state.value})"
        )


__all__ = ["PendingMutation"]
