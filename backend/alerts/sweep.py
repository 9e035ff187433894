"""
Welfare Sweep — evaluate every active lot of a farm and submit the alerts.

For each lot:
  1. Welfare evaluator:    weighing / egg collection / mortality verdicts
  2. Benchmark comparator: weight, lay rate and mortality vs. breed curves
  3. Assembler:            verdicts + results -> candidate alerts
  4. Pipeline:             dedup / consolidate / rate limit / persist / push

Lots run concurrently up to a fixed limit. Cancellation is checked only at
lot boundaries: a lot that has started always finishes, lots not yet
started are skipped.
"""

import asyncio
import uuid
from datetime import datetime

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from alerts.assembler import from_comparison, from_verdict
from alerts.engine import NotificationPipeline
from alerts.schemas import CandidateAlert
from db.models import EggCollection, Farm, Lot, MortalityRecord, WeightRecord
from flock.comparator import BenchmarkComparator
from flock.schemas import BirdKind, LotSnapshot, MetricKind
from flock.welfare import WelfareEvaluator

logger = structlog.get_logger()


class SqlLotSource:
    """Builds read-only lot snapshots from the farm record tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def farm_owner(self, farm_id: str) -> str | None:
        async with self._session_factory() as db:
            farm = await db.get(Farm, uuid.UUID(str(farm_id)))
        return farm.owner_user_id if farm is not None else None

    async def active_lots(self, farm_id: str) -> list[LotSnapshot]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Lot)
                .where(Lot.farm_id == uuid.UUID(str(farm_id)), Lot.status == "active")
                .order_by(Lot.created_at)
            )
            lots = list(result.scalars().all())

            snapshots = []
            for lot in lots:
                weight = (
                    await db.execute(
                        select(WeightRecord)
                        .where(WeightRecord.lot_id == lot.lot_id)
                        .order_by(WeightRecord.recorded_at.desc())
                        .limit(1)
                    )
                ).scalar_one_or_none()
                collection = (
                    await db.execute(
                        select(EggCollection)
                        .where(EggCollection.lot_id == lot.lot_id)
                        .order_by(EggCollection.collected_at.desc())
                        .limit(1)
                    )
                ).scalar_one_or_none()
                deaths = (
                    await db.execute(
                        select(func.coalesce(func.sum(MortalityRecord.deaths), 0)).where(
                            MortalityRecord.lot_id == lot.lot_id
                        )
                    )
                ).scalar()

                lay_rate = None
                if collection is not None and lot.current_count and lot.current_count > 0:
                    lay_rate = collection.eggs_collected / lot.current_count * 100

                snapshots.append(
                    LotSnapshot(
                        lot_id=str(lot.lot_id),
                        name=lot.name,
                        kind=BirdKind(lot.kind),
                        breed=lot.breed,
                        birth_date=lot.birth_date,
                        initial_count=lot.initial_count,
                        current_count=lot.current_count,
                        farm_id=str(lot.farm_id),
                        last_weight_lb=weight.average_weight_lb if weight else None,
                        last_weighed_at=weight.recorded_at if weight else None,
                        last_collected_at=collection.collected_at if collection else None,
                        current_lay_rate_pct=lay_rate,
                        deaths=int(deaths or 0),
                        active=True,
                    )
                )
        return snapshots


async def candidates_for_lot(
    lot: LotSnapshot,
    user_id: str,
    evaluator: WelfareEvaluator,
    comparator: BenchmarkComparator,
    as_of: datetime,
) -> list[CandidateAlert]:
    """Welfare verdicts and benchmark comparisons for one lot, as candidates."""
    candidates = [from_verdict(verdict, user_id) for verdict in evaluator.evaluate_lot(lot, as_of)]

    comparisons = []
    if lot.kind != BirdKind.LAYER and lot.last_weight_lb is not None:
        comparisons.append(comparator.compare(lot.last_weight_lb, lot, MetricKind.WEIGHT, as_of))
    if lot.kind == BirdKind.LAYER and lot.current_lay_rate_pct is not None:
        comparisons.append(comparator.compare(lot.current_lay_rate_pct, lot, MetricKind.PRODUCTION, as_of))
    if lot.initial_count and lot.initial_count > 0 and lot.deaths >= 0:
        mortality_pct = lot.deaths / lot.initial_count * 100
        comparisons.append(comparator.compare(mortality_pct, lot, MetricKind.MORTALITY, as_of))

    for result in await asyncio.gather(*comparisons):
        if result is None:
            continue
        candidate = from_comparison(result, lot, user_id)
        if candidate is not None:
            candidates.append(candidate)
    return candidates


async def sweep_lots(
    lots: list[LotSnapshot],
    user_id: str,
    evaluator: WelfareEvaluator,
    comparator: BenchmarkComparator,
    pipeline: NotificationPipeline,
    *,
    concurrency: int = 8,
    cancel_event: asyncio.Event | None = None,
    as_of: datetime | None = None,
) -> dict:
    as_of = as_of or datetime.utcnow()
    semaphore = asyncio.Semaphore(max(1, concurrency))
    summary = {
        "lots_total": len(lots),
        "lots_evaluated": 0,
        "lots_failed": 0,
        "lots_cancelled": 0,
        "candidates": 0,
        "notifications_created": 0,
    }

    async def _one(lot: LotSnapshot) -> None:
        async with semaphore:
            if cancel_event is not None and cancel_event.is_set():
                summary["lots_cancelled"] += 1
                return
            try:
                candidates = await candidates_for_lot(lot, user_id, evaluator, comparator, as_of)
                created = await pipeline.create_many(candidates)
            except Exception as exc:  # noqa: BLE001
                summary["lots_failed"] += 1
                logger.error("sweep.lot_failed", lot_id=lot.lot_id, error=str(exc), exc_info=True)
                return
            summary["lots_evaluated"] += 1
            summary["candidates"] += len(candidates)
            summary["notifications_created"] += len(created)

    await asyncio.gather(*(_one(lot) for lot in lots))

    if summary["lots_cancelled"]:
        logger.info("sweep.cancelled", **summary)
    return summary


async def run_farm_sweep(
    source: SqlLotSource,
    farm_id: str,
    evaluator: WelfareEvaluator,
    comparator: BenchmarkComparator,
    pipeline: NotificationPipeline,
    *,
    concurrency: int = 8,
    cancel_event: asyncio.Event | None = None,
    as_of: datetime | None = None,
) -> dict:
    owner = await source.farm_owner(farm_id)
    if not owner:
        logger.info("sweep.no_owner", farm_id=farm_id)
        return {"status": "skipped", "reason": "no_owner", "farm_id": farm_id}

    lots = await source.active_lots(farm_id)
    summary = await sweep_lots(
        lots,
        owner,
        evaluator,
        comparator,
        pipeline,
        concurrency=concurrency,
        cancel_event=cancel_event,
        as_of=as_of,
    )
    return {"status": "success", "farm_id": farm_id, **summary}
