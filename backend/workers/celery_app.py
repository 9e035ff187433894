"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "coopwatch",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["workers.scheduler", "workers.welfare", "workers.retention"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.welfare.*": {"queue": "alerts"},
        "workers.retention.*": {"queue": "maintenance"},
        "workers.scheduler.*": {"queue": "alerts"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    # Farm-scoped jobs fan out via workers.scheduler.dispatch_active_farms.
    beat_schedule={
        # ── Welfare ────────────────────────────────────────────────
        "welfare-sweep-hourly": {
            "task": "workers.scheduler.dispatch_active_farms",
            "schedule": crontab(minute=0),
            "kwargs": {"task_name": "workers.welfare.run_welfare_sweep", "spread_seconds": 600},
            "options": {"queue": "alerts"},
        },
        # ── Delivery ───────────────────────────────────────────────
        "push-receipts-30m": {
            "task": "workers.retention.refresh_receipts",
            "schedule": crontab(minute="*/30"),
            "options": {"queue": "maintenance"},
        },
        # ── Retention ──────────────────────────────────────────────
        "notification-retention-daily": {
            "task": "workers.retention.run_retention",
            "schedule": crontab(hour=3, minute=0),
            "options": {"queue": "maintenance"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["workers"])
