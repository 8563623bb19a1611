import json
import logging
import uuid
from collections.abc import Mapping
from typing import Protocol, runtime_checkable

from redis.asyncio import Redis

logger = logging.getLogger(__name__)


@runtime_checkable
class NotificationSink(Protocol):
    """Fire-and-forget pool updates. Implementations must never raise."""

    async def emit_pool_created(self, pool_id: uuid.UUID, fields: Mapping) -> None:
        ...

    async def emit_pool_status_changed(self, pool_id: uuid.UUID, fields: Mapping) -> None:
        ...


class NullNotificationSink:
    async def emit_pool_created(self, pool_id: uuid.UUID, fields: Mapping) -> None:
        return None

    async def emit_pool_status_changed(self, pool_id: uuid.UUID, fields: Mapping) -> None:
        return None


def build_message(message_type: str, pool_id: uuid.UUID, fields: Mapping) -> str:
    return json.dumps({"type": message_type, "pool_id": str(pool_id), "data": dict(fields)}, default=str)


class RedisNotificationSink:
    """Publishes pool updates to a Redis channel relayed by the realtime websocket."""

    def __init__(self, redis: Redis, channel: str) -> None:
        self._redis = redis
        self._channel = channel

    async def _publish(self, message_type: str, pool_id: uuid.UUID, fields: Mapping) -> None:
        try:
            await self._redis.publish(self._channel, build_message(message_type, pool_id, fields))
        except Exception:
            logger.warning(
                "Pool notification publish failed",
                exc_info=True,
                extra={"pool_id": str(pool_id), "message_type": message_type, "channel": self._channel},
            )

    async def emit_pool_created(self, pool_id: uuid.UUID, fields: Mapping) -> None:
        await self._publish("pool_created", pool_id, fields)

    async def emit_pool_status_changed(self, pool_id: uuid.UUID, fields: Mapping) -> None:
        await self._publish("pool_status", pool_id, fields)
