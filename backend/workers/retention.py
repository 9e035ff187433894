"""
Retention Workers — notification cleanup and push-receipt refresh.

  1. run_retention:    expired -> older than retention_days -> duplicate collapse
  2. refresh_receipts: exchange pending Expo tickets for delivery receipts

Schedule: See celery_app.py beat_schedule
"""

import asyncio

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()


@celery_app.task(
    name="workers.retention.run_retention",
    bind=True,
    max_retries=2,
    default_retry_delay=300,
    acks_late=True,
)
def run_retention(self):
    """Daily job: delete expired, aged-out and duplicate notifications."""
    run_id = self.request.id or "manual"

    async def _cleanup():
        from alerts.retention import cleanup_all_duplicates, cleanup_expired, cleanup_old
        from alerts.store import SqlNotificationStore
        from core.config import get_settings

        settings = get_settings()
        policy = settings.alerting.delivery
        engine = create_async_engine(settings.database_url)
        try:
            store = SqlNotificationStore(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))
            return {
                "expired_deleted": await cleanup_expired(store, policy),
                "aged_out_deleted": await cleanup_old(store, policy),
                "duplicates_deleted": await cleanup_all_duplicates(store, policy),
            }
        finally:
            await engine.dispose()

    try:
        summary = asyncio.run(_cleanup())
        logger.info("retention.completed", run_id=run_id, **summary)
        return {"status": "success", **summary}
    except Exception as exc:  # noqa: BLE001
        logger.error("retention.failed", error=str(exc), exc_info=True)
        raise self.retry(exc=exc)


@celery_app.task(
    name="workers.retention.refresh_receipts",
    bind=True,
    max_retries=1,
    default_retry_delay=120,
)
def refresh_receipts(self):
    """Every 30 minutes: record delivery receipts for pushes sent earlier."""

    async def _refresh():
        from alerts.push import ExpoPushSender
        from alerts.retention import refresh_push_receipts
        from alerts.store import SqlNotificationStore
        from core.config import get_settings

        settings = get_settings()
        policy = settings.alerting.delivery
        engine = create_async_engine(settings.database_url)
        try:
            store = SqlNotificationStore(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))
            sender = ExpoPushSender(
                push_url=settings.expo_push_url,
                receipts_url=settings.expo_receipts_url,
                access_token=settings.expo_access_token,
                timeout=policy.push_timeout_seconds,
            )
            return await refresh_push_receipts(store, sender, policy)
        finally:
            await engine.dispose()

    try:
        summary = asyncio.run(_refresh())
        return {"status": "success", **summary}
    except Exception as exc:  # noqa: BLE001
        logger.error("receipts.failed", error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
