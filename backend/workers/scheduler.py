"""
Beat fan-out: one farm-scoped task per farm worth sweeping.

A farm is dispatched only when it is in one of the selected statuses, has an
owner to notify and still keeps at least one active lot. Dispatches can be
spread over a window so an hourly beat does not start every farm at once.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import structlog
from sqlalchemy import exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()

DEFAULT_FARM_STATUSES = ("active",)


async def sweepable_farms(db: AsyncSession, statuses: tuple[str, ...]) -> tuple[list[str], int]:
    """Returns (farm ids to dispatch, farms in those statuses that were passed over)."""
    from db.models import Farm, Lot

    has_active_lot = exists().where(Lot.farm_id == Farm.farm_id, Lot.status == "active")
    result = await db.execute(
        select(Farm.farm_id)
        .where(
            Farm.status.in_(statuses),
            Farm.owner_user_id.is_not(None),
            Farm.owner_user_id != "",
            has_active_lot,
        )
        .order_by(Farm.created_at)
    )
    farm_ids = [str(row.farm_id) for row in result.all()]

    total = (await db.execute(select(func.count(Farm.farm_id)).where(Farm.status.in_(statuses)))).scalar() or 0
    return farm_ids, int(total) - len(farm_ids)


def stagger(index: int, count: int, spread_seconds: int) -> int:
    """Countdown for the index-th of count dispatches, evenly over the spread."""
    if spread_seconds <= 0 or count <= 1:
        return 0
    return int(spread_seconds * index / count)


@celery_app.task(
    name="workers.scheduler.dispatch_active_farms",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def dispatch_active_farms(
    self,
    task_name: str,
    task_kwargs: dict | None = None,
    statuses: list[str] | None = None,
    spread_seconds: int = 0,
):
    """Send task_name once per sweepable farm with farm_id added to its kwargs."""
    from core.config import get_settings

    if not task_name.startswith("workers."):
        return {"status": "failed", "reason": "invalid_task_name", "task_name": task_name}

    run_id = self.request.id or "manual"
    selected = tuple(statuses or DEFAULT_FARM_STATUSES)

    async def _select():
        engine = create_async_engine(get_settings().database_url)
        try:
            async with async_sessionmaker(engine, class_=AsyncSession)() as db:
                return await sweepable_farms(db, selected)
        finally:
            await engine.dispose()

    try:
        farm_ids, skipped = asyncio.run(_select())
    except Exception as exc:  # noqa: BLE001
        logger.error("scheduler.dispatch_failed", task_name=task_name, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)

    for index, farm_id in enumerate(farm_ids):
        celery_app.send_task(
            task_name,
            kwargs={**(task_kwargs or {}), "farm_id": farm_id},
            countdown=stagger(index, len(farm_ids), spread_seconds),
        )

    summary = {
        "status": "success",
        "task_name": task_name,
        "dispatched_count": len(farm_ids),
        "skipped_count": skipped,
        "statuses": list(selected),
        "spread_seconds": spread_seconds,
        "triggered_at": datetime.now(timezone.utc).isoformat(),
        "run_id": run_id,
    }
    logger.info("scheduler.dispatch_complete", **summary)
    return summary
