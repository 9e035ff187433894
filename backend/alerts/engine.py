"""
Notification Pipeline — turns candidate alerts into delivered notifications.

Per candidate:
  1. Duplicate check:   same (user, type, title) inside the rolling hour -> drop
  2. One-shot check:    `once` candidates already seen for the user -> drop
  3. Consolidation:     >= 3 active (user, type) entries in 24h -> one summary
                        (grown in place if one was sent inside the hour)
  4. Rate limiting:     severity window + quota per (user, type) -> drop
  5. Persist:           unread row, returns the new id
  6. Dispatch:          device token -> push sender -> record outcome
  7. Realtime publish:  Redis pub/sub, best-effort

Checks are read-then-write against the store with no lock around them.
Concurrent producers can race and create the occasional near-duplicate;
that is accepted in exchange for never serializing alert writes.

Store and transport failures never propagate: a failed check falls back to
"not a duplicate" / "not consolidated" / "not limited", and a failed write
means the candidate is reported as not created.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Protocol

import structlog

from alerts.push import PushSender, PushTicket, PushTokenResolver
from alerts.schemas import CandidateAlert
from alerts.store import NotificationStore
from core.policy import DeliveryPolicy
from flock.schemas import SEVERITY_RANK, Severity

logger = structlog.get_logger()


class NotificationPublisher(Protocol):
    async def publish(self, notification_id: str, candidate: CandidateAlert, created_at: datetime) -> int: ...


class NotificationPipeline:
    def __init__(
        self,
        store: NotificationStore,
        policy: DeliveryPolicy | None = None,
        token_resolver: PushTokenResolver | None = None,
        push_sender: PushSender | None = None,
        publisher: NotificationPublisher | None = None,
        current_user: Callable[[], str | None] | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self.policy = policy or DeliveryPolicy()
        self.token_resolver = token_resolver
        self.push_sender = push_sender
        self.publisher = publisher
        self.current_user = current_user
        self.clock = clock

    # ──────────────────────────────────────────────────────────────────────
    # Entry point
    # ──────────────────────────────────────────────────────────────────────

    async def create_notification(self, candidate: CandidateAlert) -> str:
        """Returns the new notification id, or "" when nothing was created."""
        user_id = candidate.user_id or (self.current_user() if self.current_user else None)
        if not user_id:
            logger.debug("notifications.no_user", title=candidate.title)
            return ""
        candidate = candidate.for_user(user_id)
        now = self.clock()

        if await self.is_duplicate(candidate, now):
            logger.info(
                "notifications.duplicate_dropped",
                user_id=user_id,
                notification_type=candidate.notification_type.value,
                title=candidate.title,
            )
            return ""

        if candidate.once and await self._seen_before(candidate):
            logger.info("notifications.once_dropped", user_id=user_id, correlation_key=candidate.correlation_key)
            return ""

        summary_id = await self.consolidate(candidate, now)
        if summary_id is not None:
            return summary_id

        if await self.is_rate_limited(candidate, now):
            logger.info(
                "notifications.rate_limited",
                user_id=user_id,
                notification_type=candidate.notification_type.value,
                severity=candidate.severity.value,
            )
            return ""

        return await self._persist_and_dispatch(candidate, now)

    async def create_many(self, candidates: list[CandidateAlert]) -> list[str]:
        """Submit candidates in order; returns ids of the ones created."""
        created = []
        for candidate in candidates:
            notification_id = await self.create_notification(candidate)
            if notification_id:
                created.append(notification_id)
        return created

    # ──────────────────────────────────────────────────────────────────────
    # Checks
    # ──────────────────────────────────────────────────────────────────────

    async def is_duplicate(self, candidate: CandidateAlert, now: datetime) -> bool:
        since = now - timedelta(minutes=self.policy.duplicate_window_minutes)
        try:
            return await self.store.has_duplicate(
                candidate.user_id, candidate.notification_type.value, candidate.title, since
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("notifications.duplicate_check_failed", error=str(exc))
            return False

    async def _seen_before(self, candidate: CandidateAlert) -> bool:
        try:
            return await self.store.has_correlation_key(candidate.user_id, candidate.correlation_key)
        except Exception as exc:  # noqa: BLE001
            logger.warning("notifications.once_check_failed", error=str(exc))
            return False

    async def is_rate_limited(self, candidate: CandidateAlert, now: datetime) -> bool:
        severity = candidate.severity.value
        since = now - timedelta(minutes=self.policy.window_for(severity))
        try:
            recent = await self.store.count_since(candidate.user_id, candidate.notification_type.value, since)
        except Exception as exc:  # noqa: BLE001
            logger.warning("notifications.frequency_check_failed", error=str(exc))
            return False
        return recent >= self.policy.quota_for(severity)

    # ──────────────────────────────────────────────────────────────────────
    # Consolidation
    # ──────────────────────────────────────────────────────────────────────

    async def consolidate(self, candidate: CandidateAlert, now: datetime) -> str | None:
        """
        Fold recent same-type notifications plus this candidate into one summary.

        Returns the summary id ("" if its write failed or the candidate was
        folded into a summary already sent this hour), or None when the
        candidate should continue down the normal path. Summaries are never
        consolidated again.
        """
        since = now - timedelta(hours=self.policy.consolidation_window_hours)
        try:
            originals = await self.store.consolidation_candidates(
                candidate.user_id, candidate.notification_type.value, since
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("notifications.consolidation_check_failed", error=str(exc))
            return None

        if len(originals) + 1 < self.policy.consolidation_threshold:
            return None

        existing = await self._recent_summary(candidate, now)
        if existing is not None:
            return await self._fold_into(existing, candidate, originals, now)

        summary = build_consolidated_candidate(candidate, originals, now)
        summary_id = await self._persist_and_dispatch(summary, now, is_consolidated=True)
        if not summary_id:
            return ""

        original_ids = [str(row.notification_id) for row in originals]
        try:
            await self.store.mark_consolidated(original_ids, summary_id, now)
        except Exception as exc:  # noqa: BLE001
            logger.warning("notifications.mark_consolidated_failed", summary_id=summary_id, error=str(exc))

        logger.info(
            "notifications.consolidated",
            user_id=candidate.user_id,
            notification_type=candidate.notification_type.value,
            count=len(originals) + 1,
            summary_id=summary_id,
        )
        return summary_id

    async def _recent_summary(self, candidate: CandidateAlert, now: datetime):
        since = now - timedelta(minutes=self.policy.duplicate_window_minutes)
        try:
            return await self.store.recent_summary(candidate.user_id, candidate.notification_type.value, since)
        except Exception as exc:  # noqa: BLE001
            logger.warning("notifications.summary_lookup_failed", error=str(exc))
            return None

    async def _fold_into(self, summary, candidate: CandidateAlert, originals: list, now: datetime) -> str:
        """
        A summary of this type already went out inside the duplicate window:
        grow it instead of writing a second one. Nothing new is created, so
        the candidate reports "" and no push goes out.
        """
        summary_id = str(summary.notification_id)
        original_ids = [str(row.notification_id) for row in originals]
        values = folded_summary_values(summary, candidate, originals)
        try:
            await self.store.fold_into_summary(summary_id, original_ids, values, now)
        except Exception as exc:  # noqa: BLE001
            logger.warning("notifications.fold_failed", summary_id=summary_id, error=str(exc))
            return ""

        logger.info(
            "notifications.consolidation_folded",
            user_id=candidate.user_id,
            notification_type=candidate.notification_type.value,
            count=values["payload"]["consolidated_count"],
            summary_id=summary_id,
        )
        return ""

    # ──────────────────────────────────────────────────────────────────────
    # Persistence + delivery
    # ──────────────────────────────────────────────────────────────────────

    async def _persist_and_dispatch(self, candidate: CandidateAlert, now: datetime, is_consolidated: bool = False) -> str:
        try:
            notification_id = await self.store.create(candidate, now, is_consolidated=is_consolidated)
        except Exception as exc:  # noqa: BLE001
            logger.error("notifications.persist_failed", user_id=candidate.user_id, title=candidate.title, error=str(exc))
            return ""

        logger.info(
            "notifications.created",
            notification_id=notification_id,
            user_id=candidate.user_id,
            notification_type=candidate.notification_type.value,
            severity=candidate.severity.value,
        )
        await self._publish(notification_id, candidate, now)
        await self.dispatch(notification_id, candidate)
        return notification_id

    async def _publish(self, notification_id: str, candidate: CandidateAlert, now: datetime) -> None:
        if self.publisher is None:
            return
        try:
            await self.publisher.publish(notification_id, candidate, now)
        except Exception as exc:  # noqa: BLE001
            logger.warning("notifications.publish_failed", notification_id=notification_id, error=str(exc))

    async def dispatch(self, notification_id: str, candidate: CandidateAlert) -> PushTicket | None:
        """Push the notification to the user's device and record the outcome."""
        if not candidate.send_push:
            return None
        if self.push_sender is None or self.token_resolver is None:
            logger.debug("notifications.push_not_configured", notification_id=notification_id)
            return None

        try:
            token = await self.token_resolver.get_push_token(candidate.user_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("notifications.token_lookup_failed", user_id=candidate.user_id, error=str(exc))
            return None
        if not token:
            logger.info("notifications.no_push_token", user_id=candidate.user_id, notification_id=notification_id)
            return None

        payload = {
            **(candidate.payload or {}),
            "notification_id": notification_id,
            "notification_type": candidate.notification_type.value,
            "category": candidate.category.value,
        }
        try:
            ticket = await asyncio.wait_for(
                self.push_sender.send(token, candidate.title, candidate.message, candidate.severity.value, payload),
                timeout=self.policy.push_timeout_seconds,
            )
        except asyncio.TimeoutError:
            ticket = PushTicket(status="error", message="push send timed out")
        except Exception as exc:  # noqa: BLE001
            ticket = PushTicket(status="error", message=str(exc))

        await self._record_outcome(notification_id, ticket)
        return ticket

    async def _record_outcome(self, notification_id: str, ticket: PushTicket) -> None:
        try:
            await self.store.record_push_outcome(
                notification_id,
                sent=ticket.ok,
                at=self.clock(),
                ticket_id=ticket.id if ticket.ok else None,
                error=None if ticket.ok else (ticket.message or "push delivery failed"),
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("notifications.push_outcome_not_recorded", notification_id=notification_id, error=str(exc))
            return

        if ticket.ok:
            logger.info("notifications.push_sent", notification_id=notification_id, ticket_id=ticket.id)
        else:
            logger.warning("notifications.push_failed", notification_id=notification_id, error=ticket.message)


def _summary_title(candidate: CandidateAlert, count: int) -> str:
    label = candidate.notification_type.value.replace("_", " ")
    return f"{count} {label} alerts in the last 24 hours"


def _summary_message(count: int, titles: list[str]) -> str:
    shown = titles[:5]
    listed = "; ".join(shown)
    if count > len(shown):
        listed += f"; and {count - len(shown)} more"
    return f"{count} similar alerts were grouped together: {listed}"


def _lot_ids(payloads: list[dict], seed: list | None = None) -> list:
    lot_ids = list(seed or [])
    for item in payloads:
        lot_id = item.get("lot_id")
        if lot_id and lot_id not in lot_ids:
            lot_ids.append(lot_id)
    return lot_ids


def build_consolidated_candidate(candidate: CandidateAlert, originals: list, now: datetime) -> CandidateAlert:
    count = len(originals) + 1
    severities = [candidate.severity] + [Severity(row.severity) for row in originals]
    severity = max(severities, key=SEVERITY_RANK.get)
    titles = [candidate.title] + [row.title for row in originals]

    return CandidateAlert(
        category=candidate.category,
        notification_type=candidate.notification_type,
        severity=severity,
        title=_summary_title(candidate, count),
        message=_summary_message(count, titles),
        correlation_key=f"{candidate.notification_type.value}|consolidated|{candidate.user_id}|{now.isoformat()}",
        user_id=candidate.user_id,
        send_push=candidate.send_push,
        expires_at=candidate.expires_at,
        payload={
            "consolidated_count": count,
            "consolidated_ids": [str(row.notification_id) for row in originals],
            "lot_ids": _lot_ids([candidate.payload or {}] + [row.payload or {} for row in originals]),
            "latest": candidate.payload or {},
        },
    )


def folded_summary_values(summary, candidate: CandidateAlert, originals: list) -> dict:
    """Column values for an existing summary grown by this candidate and its originals."""
    previous = summary.payload or {}
    count = int(previous.get("consolidated_count", 0)) + len(originals) + 1
    severities = [Severity(summary.severity), candidate.severity] + [Severity(row.severity) for row in originals]
    titles = [candidate.title] + [row.title for row in originals]

    return {
        "title": _summary_title(candidate, count),
        "message": _summary_message(count, titles),
        "severity": max(severities, key=SEVERITY_RANK.get).value,
        "payload": {
            "consolidated_count": count,
            "consolidated_ids": list(previous.get("consolidated_ids", []))
            + [str(row.notification_id) for row in originals],
            "lot_ids": _lot_ids(
                [candidate.payload or {}] + [row.payload or {} for row in originals],
                seed=previous.get("lot_ids", []),
            ),
            "latest": candidate.payload or {},
        },
    }
