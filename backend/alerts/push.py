"""
Push delivery through the Expo push service.

Expo accepts a message per device token and answers with a ticket; the
ticket id is later exchanged for a receipt that says whether the device
actually received it. Transport failures are turned into error tickets so
the pipeline only ever records an outcome.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

import httpx
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import get_settings

logger = structlog.get_logger()

WELFARE_CHANNEL = "animal-welfare"
DEFAULT_CHANNEL = "default"


@dataclass
class PushTicket:
    status: str  # 'ok' | 'error'
    id: str | None = None
    message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"


class PushSender(Protocol):
    async def send(
        self, token: str, title: str, body: str, severity: str, payload: dict[str, Any] | None = None
    ) -> PushTicket: ...


class PushTokenResolver(Protocol):
    async def get_push_token(self, user_id: str) -> str | None: ...


def build_push_message(
    token: str,
    title: str,
    body: str,
    severity: str,
    payload: dict[str, Any] | None = None,
    category: str = "production",
) -> dict[str, Any]:
    """Expo message for one device; critical/high map to Expo 'high' priority."""
    message: dict[str, Any] = {
        "to": token,
        "title": title,
        "body": body,
        "data": {
            **(payload or {}),
            "severity": severity,
            "sent_at": datetime.utcnow().isoformat(),
        },
        "sound": "default",
        "priority": "high" if severity in ("critical", "high") else "default",
        "channelId": WELFARE_CHANNEL if category == "production" else DEFAULT_CHANNEL,
    }
    if severity == "critical":
        message["badge"] = 1
    return message


class ExpoPushSender:
    def __init__(
        self,
        push_url: str | None = None,
        receipts_url: str | None = None,
        access_token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if push_url is None or receipts_url is None or access_token is None:
            settings = get_settings()
            push_url = push_url or settings.expo_push_url
            receipts_url = receipts_url or settings.expo_receipts_url
            access_token = access_token if access_token is not None else settings.expo_access_token
        self.push_url = push_url
        self.receipts_url = receipts_url
        self.access_token = access_token
        self.timeout = timeout
        self._transport = transport

    @property
    def headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "Content-Type": "application/json",
        }
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def send(
        self, token: str, title: str, body: str, severity: str, payload: dict[str, Any] | None = None
    ) -> PushTicket:
        if not token:
            return PushTicket(status="error", message="no destination token")

        category = (payload or {}).get("category", "production")
        message = build_push_message(token, title, body, severity, payload, category=category)
        try:
            async with self._client() as client:
                response = await client.post(self.push_url, headers=self.headers, json=message)
                response.raise_for_status()
                result = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("push.send_failed", error=str(exc))
            return PushTicket(status="error", message=str(exc))

        data = result.get("data")
        if isinstance(data, list):
            data = data[0] if data else None
        if not data:
            return PushTicket(status="ok")

        ticket = PushTicket(
            status=data.get("status", "error"),
            id=data.get("id"),
            message=data.get("message"),
            details=data.get("details") or {},
        )
        if not ticket.ok:
            logger.warning("push.ticket_error", message=ticket.message, details=ticket.details)
        return ticket

    async def get_receipts(self, ticket_ids: list[str]) -> dict[str, PushTicket]:
        """Receipts keyed by ticket id. Unknown or pending tickets are absent."""
        if not ticket_ids:
            return {}
        try:
            async with self._client() as client:
                response = await client.post(self.receipts_url, headers=self.headers, json={"ids": ticket_ids})
                response.raise_for_status()
                result = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("push.receipts_failed", error=str(exc), ticket_count=len(ticket_ids))
            return {}

        receipts = {}
        for ticket_id, receipt in (result.get("data") or {}).items():
            receipts[ticket_id] = PushTicket(
                status=receipt.get("status", "error"),
                id=ticket_id,
                message=receipt.get("message"),
                details=receipt.get("details") or {},
            )
        return receipts


class SqlPushTokenResolver:
    """Most recently registered device token for a user."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_push_token(self, user_id: str) -> str | None:
        from db.models import DeviceToken

        async with self._session_factory() as db:
            result = await db.execute(
                select(DeviceToken.token)
                .where(DeviceToken.user_id == user_id)
                .order_by(DeviceToken.updated_at.desc())
                .limit(1)
            )
            row = result.first()
        return row.token if row else None
