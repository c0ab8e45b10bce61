"""Redis pub/sub change feed."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any

from venuesync.sources.base import ChangeCallback
from venuesync.types import ChangeEvent, ChangeOperation

logger = logging.getLogger(__name__)


def encode_event(event: ChangeEvent) -> str:
    return json.dumps(
        {
            "entityType": event.entity_type,
            "operation": event.operation.value,
            "entityId": event.entity_id,
        }
    )


def decode_event(data: bytes | str) -> ChangeEvent:
    raw = json.loads(data)
    return ChangeEvent(
        entity_type=raw["entityType"],
        operation=ChangeOperation(raw["operation"]),
        entity_id=raw.get("entityId"),
    )


class RedisSubscription:
    """One pub/sub connection delivering events to a callback."""

    def __init__(
        self,
        pubsub: Any,  # redis.asyncio.client.PubSub
        channel: str,
        callback: ChangeCallback,
        entity_id: Any | None,
    ) -> None:
        self._pubsub = pubsub
        self._channel = channel
        self._callback = callback
        self._entity_id = entity_id
        self._task: asyncio.Task[None] | None = None
        self.closed = False

    def start(self) -> None:
        self._task = asyncio.create_task(self._listen())

    async def _listen(self) -> None:
        try:
            await self._consume()
        except Exception:
            logger.exception("Redis listener on %s stopped", self._channel)

    async def _consume(self) -> None:
        async for message in self._pubsub.listen():
            if message.get("type") != "message":
                continue
            try:
                event = decode_event(message["data"])
            except (KeyError, ValueError):
                logger.warning("Dropping malformed change message on %s", self._channel)
                continue
            if self._entity_id is not None and event.entity_id != self._entity_id:
                continue
            try:
                self._callback(event)
            except Exception:
                logger.exception("Change callback failed for %s", self._channel)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        try:
            await self._pubsub.unsubscribe(self._channel)
        except Exception:
            logger.warning("Unsubscribe from %s failed", self._channel, exc_info=True)
        finally:
            await self._pubsub.aclose()
        logger.debug("Closed Redis subscription on %s", self._channel)


class RedisChangeFeed:
    """Change feed over Redis pub/sub, one channel per entity type."""

    def __init__(
        self,
        client: Any,  # redis.asyncio.Redis
        *,
        prefix: str = "venuesync",
    ) -> None:
        self._client = client
        self._prefix = prefix

    def channel(self, entity_type: str) -> str:
        """Redis channel name for an entity type."""
        return f"{self._prefix}:changes:{entity_type}"

    async def subscribe(
        self,
        entity_type: str,
        callback: ChangeCallback,
        entity_id: Any | None = None,
    ) -> RedisSubscription:
        channel = self.channel(entity_type)
        pubsub = self._client.pubsub()
        try:
            await pubsub.subscribe(channel)
        except BaseException:
            await pubsub.aclose()
            raise
        subscription = RedisSubscription(pubsub, channel, callback, entity_id)
        subscription.start()
        logger.debug("Subscribed to %s", channel)
        return subscription

    async def publish(self, event: ChangeEvent) -> int:
        """Publish an event. Returns the number of receiving connections."""
        return int(
            await self._client.publish(
                self.channel(event.entity_type), encode_event(event)
            )
        )

    async def disconnect(self) -> None:
        """Close the Redis connection."""
        await self._client.aclose()


__all__ = ["RedisChangeFeed", "RedisSubscription", "decode_event", "encode_event"]
