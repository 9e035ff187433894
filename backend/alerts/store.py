"""
Notification Store — SQL persistence for delivered notifications.

Every method opens its own short session: no transaction spans more than one
read or one write, so concurrent producers never hold locks on each other.
"""

import uuid
from datetime import datetime
from typing import Any, Protocol

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from alerts.schemas import CandidateAlert, NotificationFilter, NotificationStatus
from db.models import Notification

logger = structlog.get_logger()


class NotificationStore(Protocol):
    async def create(self, candidate: CandidateAlert, created_at: datetime, is_consolidated: bool = False) -> str: ...

    async def has_duplicate(self, user_id: str, notification_type: str, title: str, since: datetime) -> bool: ...

    async def has_correlation_key(self, user_id: str, correlation_key: str) -> bool: ...

    async def consolidation_candidates(
        self, user_id: str, notification_type: str, since: datetime
    ) -> list[Notification]: ...

    async def count_since(self, user_id: str, notification_type: str, since: datetime) -> int: ...

    async def mark_consolidated(self, notification_ids: list[str], into_id: str, at: datetime) -> None: ...

    async def recent_summary(self, user_id: str, notification_type: str, since: datetime) -> Notification | None: ...

    async def fold_into_summary(
        self, summary_id: str, original_ids: list[str], values: dict[str, Any], at: datetime
    ) -> None: ...

    async def record_push_outcome(
        self,
        notification_id: str,
        *,
        sent: bool,
        at: datetime,
        ticket_id: str | None = None,
        error: str | None = None,
    ) -> None: ...


def _uuid(value: str | uuid.UUID) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


class SqlNotificationStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ── Writes ────────────────────────────────────────────────────────────

    async def create(self, candidate: CandidateAlert, created_at: datetime, is_consolidated: bool = False) -> str:
        row = Notification(
            notification_id=uuid.uuid4(),
            user_id=candidate.user_id,
            notification_type=candidate.notification_type.value,
            category=candidate.category.value,
            severity=candidate.severity.value,
            title=candidate.title,
            message=candidate.message,
            correlation_key=candidate.correlation_key,
            payload=candidate.payload or {},
            status=NotificationStatus.UNREAD.value,
            created_at=created_at,
            expires_at=candidate.expires_at,
            is_consolidated=is_consolidated,
            sent_to_push=False,
            push_delivered=False,
        )
        async with self._session_factory() as db:
            db.add(row)
            await db.commit()
        return str(row.notification_id)

    async def mark_consolidated(self, notification_ids: list[str], into_id: str, at: datetime) -> None:
        if not notification_ids:
            return
        async with self._session_factory() as db:
            await db.execute(
                update(Notification)
                .where(Notification.notification_id.in_([_uuid(i) for i in notification_ids]))
                .values(status=NotificationStatus.READ.value, read_at=at, consolidated_into=_uuid(into_id))
            )
            await db.commit()

    async def fold_into_summary(
        self, summary_id: str, original_ids: list[str], values: dict[str, Any], at: datetime
    ) -> None:
        """Rewrite an existing summary and point the new originals at it, in one transaction."""
        async with self._session_factory() as db:
            await db.execute(
                update(Notification).where(Notification.notification_id == _uuid(summary_id)).values(**values)
            )
            if original_ids:
                await db.execute(
                    update(Notification)
                    .where(Notification.notification_id.in_([_uuid(i) for i in original_ids]))
                    .values(status=NotificationStatus.READ.value, read_at=at, consolidated_into=_uuid(summary_id))
                )
            await db.commit()

    async def record_push_outcome(
        self,
        notification_id: str,
        *,
        sent: bool,
        at: datetime,
        ticket_id: str | None = None,
        error: str | None = None,
    ) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(Notification)
                .where(Notification.notification_id == _uuid(notification_id))
                .values(
                    sent_to_push=sent,
                    push_sent_at=at if sent else None,
                    push_ticket_id=ticket_id,
                    push_error=error,
                )
            )
            await db.commit()

    async def record_receipt(self, notification_id: str, *, delivered: bool, error: str | None = None) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(Notification)
                .where(Notification.notification_id == _uuid(notification_id))
                .values(push_delivered=delivered, push_error=error)
            )
            await db.commit()

    async def set_status(self, notification_ids: list[str], status: NotificationStatus, at: datetime) -> int:
        if not notification_ids:
            return 0
        values: dict[str, Any] = {"status": status.value}
        if status == NotificationStatus.READ:
            values["read_at"] = at
        elif status == NotificationStatus.ARCHIVED:
            values["archived_at"] = at
        async with self._session_factory() as db:
            result = await db.execute(
                update(Notification)
                .where(Notification.notification_id.in_([_uuid(i) for i in notification_ids]))
                .values(**values)
            )
            await db.commit()
            return result.rowcount or 0

    async def delete(self, notification_ids: list[str]) -> int:
        if not notification_ids:
            return 0
        async with self._session_factory() as db:
            result = await db.execute(
                delete(Notification).where(Notification.notification_id.in_([_uuid(i) for i in notification_ids]))
            )
            await db.commit()
            return result.rowcount or 0

    async def _delete_in_batches(self, condition, batch_size: int) -> int:
        removed = 0
        while True:
            async with self._session_factory() as db:
                result = await db.execute(select(Notification.notification_id).where(condition).limit(batch_size))
                ids = [row.notification_id for row in result.all()]
                if not ids:
                    break
                await db.execute(delete(Notification).where(Notification.notification_id.in_(ids)))
                await db.commit()
            removed += len(ids)
            if len(ids) < batch_size:
                break
        return removed

    async def delete_expired(self, now: datetime, batch_size: int) -> int:
        return await self._delete_in_batches(
            Notification.expires_at.is_not(None) & (Notification.expires_at <= now), batch_size
        )

    async def delete_created_before(self, cutoff: datetime, batch_size: int) -> int:
        return await self._delete_in_batches(Notification.created_at < cutoff, batch_size)

    # ── Reads ─────────────────────────────────────────────────────────────

    async def get(self, notification_id: str) -> Notification | None:
        async with self._session_factory() as db:
            return await db.get(Notification, _uuid(notification_id))

    async def has_duplicate(self, user_id: str, notification_type: str, title: str, since: datetime) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Notification.notification_id)
                .where(
                    Notification.user_id == user_id,
                    Notification.notification_type == notification_type,
                    Notification.title == title,
                    Notification.created_at >= since,
                )
                .limit(1)
            )
            return result.first() is not None

    async def has_correlation_key(self, user_id: str, correlation_key: str) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Notification.notification_id)
                .where(Notification.user_id == user_id, Notification.correlation_key == correlation_key)
                .limit(1)
            )
            return result.first() is not None

    async def consolidation_candidates(
        self, user_id: str, notification_type: str, since: datetime
    ) -> list[Notification]:
        """Originals still eligible for consolidation: not summaries, not already folded."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(Notification)
                .where(
                    Notification.user_id == user_id,
                    Notification.notification_type == notification_type,
                    Notification.created_at >= since,
                    Notification.is_consolidated.is_(False),
                    Notification.consolidated_into.is_(None),
                )
                .order_by(Notification.created_at.desc())
            )
            return list(result.scalars().all())

    async def recent_summary(self, user_id: str, notification_type: str, since: datetime) -> Notification | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Notification)
                .where(
                    Notification.user_id == user_id,
                    Notification.notification_type == notification_type,
                    Notification.is_consolidated.is_(True),
                    Notification.created_at >= since,
                )
                .order_by(Notification.created_at.desc())
                .limit(1)
            )
            return result.scalars().first()

    async def count_since(self, user_id: str, notification_type: str, since: datetime) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                select(func.count(Notification.notification_id)).where(
                    Notification.user_id == user_id,
                    Notification.notification_type == notification_type,
                    Notification.created_at >= since,
                )
            )
            return int(result.scalar() or 0)

    async def list_for_user(self, user_id: str, filter: NotificationFilter | None = None) -> list[Notification]:
        filter = filter or NotificationFilter(limit=None)
        query = select(Notification).where(Notification.user_id == user_id)
        if filter.statuses:
            query = query.where(Notification.status.in_([s.value for s in filter.statuses]))
        if filter.categories:
            query = query.where(Notification.category.in_([c.value for c in filter.categories]))
        if filter.severities:
            query = query.where(Notification.severity.in_([s.value for s in filter.severities]))
        if filter.types:
            query = query.where(Notification.notification_type.in_([t.value for t in filter.types]))
        if filter.since is not None:
            query = query.where(Notification.created_at >= filter.since)
        if filter.until is not None:
            query = query.where(Notification.created_at <= filter.until)
        query = query.order_by(Notification.created_at.desc())
        # lot_id lives inside the JSON payload; filtered in Python to stay dialect-neutral
        if filter.limit and not filter.lot_id:
            query = query.limit(filter.limit)

        async with self._session_factory() as db:
            result = await db.execute(query)
            rows = list(result.scalars().all())

        if filter.lot_id:
            rows = [r for r in rows if (r.payload or {}).get("lot_id") == filter.lot_id]
            if filter.limit:
                rows = rows[: filter.limit]
        return rows

    async def counts_by(self, user_id: str) -> list[tuple[str, str, str, int]]:
        """(category, severity, status, count) groups for one user."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(
                    Notification.category,
                    Notification.severity,
                    Notification.status,
                    func.count(Notification.notification_id),
                )
                .where(Notification.user_id == user_id)
                .group_by(Notification.category, Notification.severity, Notification.status)
            )
            return [tuple(row) for row in result.all()]

    async def pending_receipts(self, sent_before: datetime, limit: int) -> list[tuple[str, str]]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Notification.notification_id, Notification.push_ticket_id)
                .where(
                    Notification.sent_to_push.is_(True),
                    Notification.push_delivered.is_(False),
                    Notification.push_error.is_(None),
                    Notification.push_ticket_id.is_not(None),
                    Notification.push_sent_at <= sent_before,
                )
                .order_by(Notification.push_sent_at)
                .limit(limit)
            )
            return [(str(row.notification_id), row.push_ticket_id) for row in result.all()]

    async def distinct_users(self) -> list[str]:
        async with self._session_factory() as db:
            result = await db.execute(select(Notification.user_id).distinct())
            return [row.user_id for row in result.all()]
