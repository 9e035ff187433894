"""
Realtime fan-out of new notifications over Redis pub/sub.

Open app sessions subscribe to ``notifications:{user_id}`` to refresh their
inbox without polling. Publishing is best-effort: the notification row is the
source of truth.
"""

import json
from datetime import datetime

import redis.asyncio as aioredis
import structlog

from core.config import get_settings

logger = structlog.get_logger()


def channel_for(user_id: str) -> str:
    return f"notifications:{user_id}"


def notification_event(notification_id: str, candidate, created_at: datetime) -> str:
    return json.dumps(
        {
            "type": "notification",
            "payload": {
                "notification_id": notification_id,
                "notification_type": candidate.notification_type.value,
                "category": candidate.category.value,
                "severity": candidate.severity.value,
                "title": candidate.title,
                "message": candidate.message,
                "lot_id": (candidate.payload or {}).get("lot_id"),
                "created_at": created_at.isoformat(),
            },
        }
    )


class RedisNotificationPublisher:
    def __init__(self, redis_url: str | None = None):
        self.redis_url = redis_url or get_settings().redis_url

    async def publish(self, notification_id: str, candidate, created_at: datetime) -> int:
        """Returns number of subscribers notified."""
        redis = aioredis.from_url(self.redis_url)
        try:
            return await redis.publish(
                channel_for(candidate.user_id), notification_event(notification_id, candidate, created_at)
            )
        finally:
            await redis.aclose()
