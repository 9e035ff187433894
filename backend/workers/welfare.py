"""
Welfare Workers — hourly per-farm welfare sweep.

Each run builds its own engine (Celery workers fork, pooled connections do
not survive that) and wires the alerting components from settings.

Schedule: See celery_app.py beat_schedule
"""

import asyncio

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()


def build_pipeline(session_factory, settings):
    """Notification pipeline wired to the SQL store, Expo push and Redis fan-out."""
    from alerts.engine import NotificationPipeline
    from alerts.push import ExpoPushSender, SqlPushTokenResolver
    from alerts.realtime import RedisNotificationPublisher
    from alerts.store import SqlNotificationStore

    delivery = settings.alerting.delivery
    return NotificationPipeline(
        SqlNotificationStore(session_factory),
        policy=delivery,
        token_resolver=SqlPushTokenResolver(session_factory),
        push_sender=ExpoPushSender(
            push_url=settings.expo_push_url,
            receipts_url=settings.expo_receipts_url,
            access_token=settings.expo_access_token,
            timeout=delivery.push_timeout_seconds,
        ),
        publisher=RedisNotificationPublisher(settings.redis_url) if settings.realtime_enabled else None,
    )


@celery_app.task(
    name="workers.welfare.run_welfare_sweep",
    bind=True,
    max_retries=1,
    default_retry_delay=60,
    acks_late=True,
)
def run_welfare_sweep(self, farm_id: str):
    """
    Hourly job: evaluate every active lot on the farm and deliver alerts.

    A farm without an owner has nobody to notify and is skipped.
    """
    run_id = self.request.id or "manual"
    logger.info("sweep.started", farm_id=farm_id, run_id=run_id)

    async def _sweep():
        from alerts.sweep import SqlLotSource, run_farm_sweep
        from core.config import get_settings
        from flock.benchmarks import SqlBenchmarkStore, StaticBenchmarkStore
        from flock.comparator import BenchmarkComparator
        from flock.welfare import WelfareEvaluator

        settings = get_settings()
        policy = settings.alerting
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            return await run_farm_sweep(
                SqlLotSource(async_session),
                farm_id,
                WelfareEvaluator(policy.welfare),
                BenchmarkComparator(SqlBenchmarkStore(async_session, fallback=StaticBenchmarkStore()), policy.comparator),
                build_pipeline(async_session, settings),
                concurrency=policy.sweep_concurrency,
            )
        finally:
            await engine.dispose()

    try:
        result = asyncio.run(_sweep())
        logger.info("sweep.completed", farm_id=farm_id, run_id=run_id, **{k: v for k, v in result.items() if k != "farm_id"})
        return result
    except Exception as exc:  # noqa: BLE001
        logger.error("sweep.failed", farm_id=farm_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
