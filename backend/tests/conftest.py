"""
Test Configuration — Fixtures for the async DB, notification store and
fake delivery collaborators.

Each test gets its own SQLite file under tmp_path, so pipeline code that
opens a fresh session per operation sees committed rows exactly as it would
against PostgreSQL.
"""

import asyncio
import uuid
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import db.models  # noqa: F401  (registers tables on Base.metadata)
from alerts.push import PushTicket
from alerts.schemas import CandidateAlert, NotificationCategory, NotificationType
from alerts.store import SqlNotificationStore
from db.session import Base
from flock.schemas import BirdKind, LotSnapshot, Severity

USER_ID = "user-0001"
NOW = datetime(2026, 3, 2, 12, 0, 0)


@pytest.fixture
async def test_engine(tmp_path):
    """Create a per-test SQLite database with all tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'coopwatch.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def store(session_factory):
    return SqlNotificationStore(session_factory)


# ── Clock ──────────────────────────────────────────────────────────────────


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(NOW)


# ── Push fakes ─────────────────────────────────────────────────────────────


class FakePushSender:
    def __init__(self, ticket: PushTicket | None = None, error: Exception | None = None, delay: float = 0.0):
        self.ticket = ticket or PushTicket(status="ok", id="ticket-1")
        self.error = error
        self.delay = delay
        self.sent: list[dict] = []
        self.receipts: dict[str, PushTicket] = {}

    async def send(self, token, title, body, severity, payload=None):
        self.sent.append({"token": token, "title": title, "body": body, "severity": severity, "payload": payload})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.ticket

    async def get_receipts(self, ticket_ids):
        return {tid: self.receipts[tid] for tid in ticket_ids if tid in self.receipts}


class FakeTokenResolver:
    def __init__(self, tokens: dict[str, str] | None = None):
        self.tokens = tokens if tokens is not None else {USER_ID: "ExponentPushToken[test-device]"}

    async def get_push_token(self, user_id):
        return self.tokens.get(user_id)


@pytest.fixture
def push_sender():
    return FakePushSender()


@pytest.fixture
def make_sender():
    return FakePushSender


@pytest.fixture
def token_resolver():
    return FakeTokenResolver()


# ── Builders ───────────────────────────────────────────────────────────────


@pytest.fixture
def make_candidate():
    """Factory for candidate alerts with sensible defaults."""

    def _make(**overrides) -> CandidateAlert:
        title = overrides.pop("title", "Attention: Barn A needs weighing")
        notification_type = overrides.pop("notification_type", NotificationType.WEIGHING_OVERDUE)
        lot_id = overrides.pop("lot_id", "lot-a")
        fields = {
            "category": NotificationCategory.PRODUCTION,
            "notification_type": notification_type,
            "severity": Severity.MEDIUM,
            "title": title,
            "message": f"{title}.",
            "correlation_key": f"{notification_type.value}|{title}|{lot_id}|test",
            "user_id": USER_ID,
            "payload": {"lot_id": lot_id},
        }
        fields.update(overrides)
        return CandidateAlert(**fields)

    return _make


@pytest.fixture
def make_lot():
    """Factory for lot snapshots; ``age_days`` is relative to NOW."""

    def _make(age_days: int = 30, **overrides) -> LotSnapshot:
        fields = {
            "lot_id": str(uuid.uuid4()),
            "name": "Barn A",
            "kind": BirdKind.BROILER,
            "breed": "COBB 500",
            "birth_date": NOW.date() - timedelta(days=age_days),
            "initial_count": 1000,
            "current_count": 990,
            "last_weighed_at": NOW - timedelta(days=1),
            "last_collected_at": None,
            "deaths": 0,
        }
        fields.update(overrides)
        return LotSnapshot(**fields)

    return _make


@pytest.fixture
def user_id() -> str:
    return USER_ID


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def today() -> date:
    return NOW.date()
