"""
Notification Service — the operations the rest of the product calls.

Creation goes through the pipeline; everything else is a thin layer over the
store that stamps times and shapes results.
"""

from datetime import datetime
from typing import Any, Callable

import structlog

from alerts.engine import NotificationPipeline
from alerts.schemas import (
    CandidateAlert,
    NotificationCategory,
    NotificationFilter,
    NotificationStatus,
)
from alerts.store import SqlNotificationStore
from db.models import Notification
from flock.schemas import Severity

logger = structlog.get_logger()


class NotificationService:
    def __init__(
        self,
        store: SqlNotificationStore,
        pipeline: NotificationPipeline | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self.pipeline = pipeline or NotificationPipeline(store, clock=clock)
        self.clock = clock

    async def create_notification(self, candidate: CandidateAlert) -> str:
        return await self.pipeline.create_notification(candidate)

    async def mark_read(self, notification_id: str) -> bool:
        updated = await self.store.set_status([notification_id], NotificationStatus.READ, self.clock())
        return updated > 0

    async def mark_many_read(self, notification_ids: list[str]) -> int:
        updated = await self.store.set_status(list(notification_ids), NotificationStatus.READ, self.clock())
        logger.info("notifications.marked_read", requested=len(notification_ids), updated=updated)
        return updated

    async def archive(self, notification_id: str) -> bool:
        updated = await self.store.set_status([notification_id], NotificationStatus.ARCHIVED, self.clock())
        return updated > 0

    async def delete_notification(self, notification_id: str) -> bool:
        removed = await self.store.delete([notification_id])
        if removed:
            logger.info("notifications.deleted", notification_id=notification_id)
        return removed > 0

    async def list_notifications(
        self, user_id: str, filter: NotificationFilter | None = None
    ) -> list[Notification]:
        return await self.store.list_for_user(user_id, filter or NotificationFilter())

    async def get_stats(self, user_id: str) -> dict[str, Any]:
        """
        Counts for one user's inbox.

        Every category, severity and status key is present, zero when empty.
        """
        by_category = {c.value: 0 for c in NotificationCategory}
        by_priority = {s.value: 0 for s in Severity}
        by_status = {s.value: 0 for s in NotificationStatus}
        total = 0

        for category, severity, status, count in await self.store.counts_by(user_id):
            by_category[category] = by_category.get(category, 0) + count
            by_priority[severity] = by_priority.get(severity, 0) + count
            by_status[status] = by_status.get(status, 0) + count
            total += count

        return {
            "total": total,
            "unread": by_status[NotificationStatus.UNREAD.value],
            "by_category": by_category,
            "by_priority": by_priority,
            "by_status": by_status,
        }
