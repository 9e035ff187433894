"""
Tests for the Redis realtime publisher.
"""

import json

from alerts.realtime import RedisNotificationPublisher, channel_for, notification_event


class FakeRedis:
    def __init__(self):
        self.published = []
        self.closed = False

    async def publish(self, channel, message):
        self.published.append((channel, message))
        return 2

    async def aclose(self):
        self.closed = True


def test_channel_per_user():
    assert channel_for("user-1") == "notifications:user-1"


def test_event_shape(make_candidate, now):
    event = json.loads(notification_event("n-1", make_candidate(), now))
    assert event["type"] == "notification"
    assert event["payload"]["notification_id"] == "n-1"
    assert event["payload"]["lot_id"] == "lot-a"
    assert event["payload"]["created_at"] == now.isoformat()


async def test_publish(monkeypatch, make_candidate, user_id, now):
    fake = FakeRedis()
    monkeypatch.setattr("alerts.realtime.aioredis.from_url", lambda url: fake)

    receivers = await RedisNotificationPublisher("redis://test:6379/0").publish("n-1", make_candidate(), now)

    assert receivers == 2
    assert fake.published[0][0] == f"notifications:{user_id}"
    assert fake.closed is True
