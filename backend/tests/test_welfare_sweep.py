"""
Tests for the per-farm welfare sweep.

Covers:
  - Lot snapshots built from farm records
  - End-to-end sweep: SQL lots -> evaluator/comparator -> pipeline -> row
  - Farms without an owner are skipped
  - Cooperative cancellation at lot boundaries
  - One failing lot does not abort the sweep
"""

import asyncio
import uuid
from datetime import datetime, timedelta

import pytest

from alerts.engine import NotificationPipeline
from alerts.schemas import NotificationFilter, NotificationType
from alerts.sweep import SqlLotSource, candidates_for_lot, run_farm_sweep, sweep_lots
from db.models import EggCollection, Farm, Lot, MortalityRecord, WeightRecord
from flock.benchmarks import StaticBenchmarkStore
from flock.comparator import BenchmarkComparator
from flock.schemas import BirdKind
from flock.welfare import WelfareEvaluator

FARM_ID = uuid.UUID("00000000-0000-0000-0000-00000000f001")


@pytest.fixture
def evaluator():
    return WelfareEvaluator()


@pytest.fixture
def comparator():
    return BenchmarkComparator(StaticBenchmarkStore())


class RecordingPipeline:
    """Stands in for the pipeline; optionally trips a cancel event after N lots."""

    def __init__(self, cancel_after: int | None = None, cancel_event: asyncio.Event | None = None, fail_for=None):
        self.cancel_after = cancel_after
        self.cancel_event = cancel_event
        self.fail_for = fail_for
        self.batches = []

    async def create_many(self, candidates):
        lot_ids = {c.payload.get("lot_id") for c in candidates}
        if self.fail_for and self.fail_for in lot_ids:
            raise RuntimeError("store unavailable")
        self.batches.append(candidates)
        if self.cancel_after is not None and len(self.batches) >= self.cancel_after:
            self.cancel_event.set()
        return [f"id-{len(self.batches)}-{i}" for i in range(len(candidates))]


def _overdue_lots(make_lot, now, count):
    return [
        make_lot(name=f"Barn {i}", lot_id=f"lot-{i}", last_weighed_at=now - timedelta(days=8)) for i in range(count)
    ]


async def _seed_farm(session_factory, now, owner="owner-1"):
    async with session_factory() as db:
        db.add(Farm(farm_id=FARM_ID, name="Hillside", owner_user_id=owner, status="active"))
        layers = Lot(
            farm_id=FARM_ID,
            name="Layers 1",
            kind="layer",
            breed="Lohmann Brown",
            birth_date=now.date() - timedelta(days=170),
            initial_count=500,
            current_count=495,
            status="active",
        )
        broilers = Lot(
            farm_id=FARM_ID,
            name="Broilers 1",
            kind="broiler",
            breed="COBB 500",
            birth_date=now.date() - timedelta(days=21),
            initial_count=1000,
            current_count=990,
            status="active",
        )
        closed = Lot(
            farm_id=FARM_ID,
            name="Old flock",
            kind="broiler",
            breed="COBB 500",
            birth_date=now.date() - timedelta(days=400),
            initial_count=100,
            current_count=0,
            status="closed",
        )
        db.add_all([layers, broilers, closed])
        await db.flush()
        db.add_all(
            [
                WeightRecord(lot_id=layers.lot_id, average_weight_lb=3.9, recorded_at=now - timedelta(days=1)),
                WeightRecord(lot_id=broilers.lot_id, average_weight_lb=1.8, recorded_at=now - timedelta(days=3)),
                WeightRecord(lot_id=broilers.lot_id, average_weight_lb=2.0, recorded_at=now - timedelta(days=1)),
                MortalityRecord(lot_id=broilers.lot_id, deaths=6, recorded_at=now - timedelta(days=5)),
                MortalityRecord(lot_id=broilers.lot_id, deaths=4, recorded_at=now - timedelta(days=2)),
            ]
        )
        await db.commit()
        return str(layers.lot_id), str(broilers.lot_id)


class TestLotSource:
    async def test_snapshots(self, session_factory, now):
        layers_id, broilers_id = await _seed_farm(session_factory, now)
        lots = {lot.lot_id: lot for lot in await SqlLotSource(session_factory).active_lots(str(FARM_ID))}

        assert set(lots) == {layers_id, broilers_id}
        broilers = lots[broilers_id]
        assert broilers.kind == BirdKind.BROILER
        assert broilers.last_weight_lb == 2.0
        assert broilers.deaths == 10
        assert lots[layers_id].last_collected_at is None

    async def test_lay_rate_from_latest_collection(self, session_factory, now):
        layers_id, _ = await _seed_farm(session_factory, now)
        async with session_factory() as db:
            db.add(EggCollection(lot_id=uuid.UUID(layers_id), eggs_collected=396, collected_at=now - timedelta(hours=5)))
            await db.commit()

        lots = {lot.lot_id: lot for lot in await SqlLotSource(session_factory).active_lots(str(FARM_ID))}
        assert lots[layers_id].current_lay_rate_pct == pytest.approx(396 / 495 * 100)

    async def test_farm_owner(self, session_factory, now):
        await _seed_farm(session_factory, now)
        assert await SqlLotSource(session_factory).farm_owner(str(FARM_ID)) == "owner-1"


class TestFarmSweep:
    async def test_never_collected_layers_notify_owner(self, session_factory, store, evaluator, comparator, clock, now):
        layers_id, _ = await _seed_farm(session_factory, now)
        pipeline = NotificationPipeline(store, clock=clock)

        result = await run_farm_sweep(
            SqlLotSource(session_factory), str(FARM_ID), evaluator, comparator, pipeline, as_of=now
        )

        assert result["status"] == "success"
        assert result["lots_evaluated"] == 2
        rows = await store.list_for_user("owner-1", NotificationFilter(limit=None))
        titles = [r.title for r in rows]
        assert "EMERGENCY: Layers 1 has never produced" in titles
        egg_rows = [r for r in rows if r.payload.get("lot_id") == layers_id]
        assert [r.notification_type for r in egg_rows] == [NotificationType.PRODUCTION_LOW.value]

    async def test_farm_without_owner_is_noop(self, session_factory, store, evaluator, comparator, clock, now):
        await _seed_farm(session_factory, now, owner=None)
        pipeline = NotificationPipeline(store, clock=clock)

        result = await run_farm_sweep(
            SqlLotSource(session_factory), str(FARM_ID), evaluator, comparator, pipeline, as_of=now
        )
        assert result["status"] == "skipped"

    async def test_on_target_broiler_raises_nothing(self, make_lot, evaluator, comparator, now):
        lot = make_lot(age_days=21, last_weight_lb=2.0)
        assert await candidates_for_lot(lot, "owner-1", evaluator, comparator, now) == []


class TestCancellation:
    async def test_cancel_before_start(self, make_lot, evaluator, comparator, now):
        cancel = asyncio.Event()
        cancel.set()
        pipeline = RecordingPipeline()

        summary = await sweep_lots(
            _overdue_lots(make_lot, now, 3), "owner-1", evaluator, comparator, pipeline, cancel_event=cancel, as_of=now
        )
        assert summary["lots_cancelled"] == 3
        assert pipeline.batches == []

    async def test_started_lot_finishes_rest_skipped(self, make_lot, evaluator, comparator, now):
        cancel = asyncio.Event()
        pipeline = RecordingPipeline(cancel_after=1, cancel_event=cancel)

        summary = await sweep_lots(
            _overdue_lots(make_lot, now, 3),
            "owner-1",
            evaluator,
            comparator,
            pipeline,
            concurrency=1,
            cancel_event=cancel,
            as_of=now,
        )
        assert summary["lots_evaluated"] == 1
        assert summary["lots_cancelled"] == 2
        assert len(pipeline.batches) == 1


class TestFailureIsolation:
    async def test_failing_lot_logged_and_skipped(self, make_lot, evaluator, comparator, now):
        pipeline = RecordingPipeline(fail_for="lot-1")

        summary = await sweep_lots(_overdue_lots(make_lot, now, 3), "owner-1", evaluator, comparator, pipeline, as_of=now)
        assert summary["lots_failed"] == 1
        assert summary["lots_evaluated"] == 2


def test_run_welfare_sweep_task(tmp_path, monkeypatch):
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

    from core.config import Settings
    from db.session import Base
    from workers.welfare import run_welfare_sweep

    db_url = f"sqlite+aiosqlite:///{tmp_path / 'sweep.db'}"
    engine = create_async_engine(db_url, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    now = datetime.utcnow()

    async def _seed():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await _seed_farm(session_factory, now)

    asyncio.run(_seed())
    monkeypatch.setattr(
        "core.config.get_settings", lambda: Settings(database_url=db_url, realtime_enabled=False)
    )

    result = run_welfare_sweep.run(farm_id=str(FARM_ID))
    assert result["status"] == "success"
    assert result["notifications_created"] >= 1

    asyncio.run(engine.dispose())
