"""
Notification retention and push-receipt housekeeping.

  - expired:     expires_at <= now
  - aged out:    created more than retention_days ago, deleted in batches
  - duplicates:  repeated (type, title) within a user's latest notifications,
                 only the most recent of each group is kept
  - receipts:    tickets sent a while ago are exchanged for delivery receipts
"""

from datetime import datetime, timedelta

import structlog

from alerts.push import ExpoPushSender
from alerts.schemas import NotificationFilter
from alerts.store import SqlNotificationStore
from core.policy import DeliveryPolicy

logger = structlog.get_logger()


async def cleanup_expired(store: SqlNotificationStore, policy: DeliveryPolicy, now: datetime | None = None) -> int:
    now = now or datetime.utcnow()
    removed = await store.delete_expired(now, policy.cleanup_batch_size)
    logger.info("retention.expired_deleted", removed=removed)
    return removed


async def cleanup_old(store: SqlNotificationStore, policy: DeliveryPolicy, now: datetime | None = None) -> int:
    now = now or datetime.utcnow()
    cutoff = now - timedelta(days=policy.retention_days)
    removed = await store.delete_created_before(cutoff, policy.cleanup_batch_size)
    logger.info("retention.aged_out_deleted", removed=removed, cutoff=cutoff.isoformat())
    return removed


async def cleanup_duplicates(store: SqlNotificationStore, policy: DeliveryPolicy, user_id: str) -> int:
    """Collapse repeated (type, title) notifications in the user's recent history."""
    recent = await store.list_for_user(user_id, NotificationFilter(limit=policy.duplicate_scan_limit))

    seen: set[tuple[str, str]] = set()
    doomed = []
    # newest first, so the first of each group is the one kept
    for row in recent:
        # summaries are referenced by their originals through consolidated_into
        if row.is_consolidated:
            continue
        key = (row.notification_type, row.title)
        if key in seen:
            doomed.append(str(row.notification_id))
        else:
            seen.add(key)

    if not doomed:
        return 0
    removed = await store.delete(doomed)
    logger.info("retention.duplicates_deleted", user_id=user_id, removed=removed)
    return removed


async def cleanup_all_duplicates(store: SqlNotificationStore, policy: DeliveryPolicy) -> int:
    removed = 0
    for user_id in await store.distinct_users():
        try:
            removed += await cleanup_duplicates(store, policy, user_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("retention.duplicates_failed", user_id=user_id, error=str(exc))
    return removed


async def refresh_push_receipts(
    store: SqlNotificationStore,
    sender: ExpoPushSender,
    policy: DeliveryPolicy,
    now: datetime | None = None,
    limit: int = 1000,
) -> dict[str, int]:
    """Exchange pending push tickets for receipts; missing receipts stay pending."""
    now = now or datetime.utcnow()
    pending = await store.pending_receipts(now - timedelta(minutes=policy.receipt_delay_minutes), limit)
    if not pending:
        return {"checked": 0, "delivered": 0, "failed": 0}

    receipts = await sender.get_receipts([ticket_id for _, ticket_id in pending])
    delivered = failed = 0
    for notification_id, ticket_id in pending:
        receipt = receipts.get(ticket_id)
        if receipt is None:
            continue
        if receipt.ok:
            await store.record_receipt(notification_id, delivered=True)
            delivered += 1
        else:
            error = (receipt.details or {}).get("error") or receipt.message or "push receipt error"
            await store.record_receipt(notification_id, delivered=False, error=error)
            failed += 1

    logger.info("retention.receipts_checked", checked=len(pending), delivered=delivered, failed=failed)
    return {"checked": len(pending), "delivered": delivered, "failed": failed}
