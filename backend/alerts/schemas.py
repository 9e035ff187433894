"""
Notification vocabulary and the candidate-alert record handed to the pipeline.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from flock.schemas import Severity


class NotificationCategory(str, Enum):
    PRODUCTION = "production"
    FINANCIAL = "financial"
    SYSTEM = "system"
    REMINDER = "reminder"
    EVENT = "event"
    CUSTOM = "custom"


class NotificationType(str, Enum):
    # Production
    MORTALITY_HIGH = "mortality_high"
    PRODUCTION_LOW = "production_low"
    WEIGHT_BELOW_STANDARD = "weight_below_standard"
    WEIGHING_OVERDUE = "weighing_overdue"
    LAY_ONSET_NOTICE = "lay_onset_notice"
    WEIGHT_TARGET = "weight_target"
    MATURATION_READY = "maturation_ready"
    # Financial
    EXPENSE_HIGH = "expense_high"
    PROFITABILITY_LOW = "profitability_low"
    # Reminders
    RECORD_PENDING = "record_pending"
    VACCINATION_PENDING = "vaccination_pending"
    LOT_REVIEW = "lot_review"
    # Events
    LOT_CREATED = "lot_created"
    LOT_CLOSED = "lot_closed"
    SALE_RECORDED = "sale_recorded"
    # System
    MAINTENANCE_SCHEDULED = "maintenance_scheduled"
    CUSTOM = "custom"


class NotificationStatus(str, Enum):
    UNREAD = "unread"
    READ = "read"
    ARCHIVED = "archived"


@dataclass(frozen=True)
class CandidateAlert:
    """An alert proposed by the evaluation layer, before dedup/rate-limit/persistence."""

    category: NotificationCategory
    notification_type: NotificationType
    severity: Severity
    title: str
    message: str
    correlation_key: str
    user_id: str | None = None
    send_push: bool = True
    expires_at: datetime | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    # Drop if any notification with the same correlation key was ever created
    once: bool = False

    def for_user(self, user_id: str) -> "CandidateAlert":
        return replace(self, user_id=user_id)


@dataclass
class NotificationFilter:
    statuses: list[NotificationStatus] | None = None
    categories: list[NotificationCategory] | None = None
    severities: list[Severity] | None = None
    types: list[NotificationType] | None = None
    lot_id: str | None = None
    since: datetime | None = None
    until: datetime | None = None
    limit: int | None = 50
