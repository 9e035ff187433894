"""
Flock domain types shared by the comparator, the welfare evaluator and the
alert assembler.

Lots are read-only inputs: the alerting core never mutates them.
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any


class BirdKind(str, Enum):
    LAYER = "layer"
    BROILER = "broiler"  # grow-out
    PULLET = "pullet"


class MetricKind(str, Enum):
    WEIGHT = "weight"
    PRODUCTION = "production"
    MORTALITY = "mortality"


class PerformanceTier(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    BELOW = "below"
    CRITICAL = "critical"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_RANK = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2, Severity.CRITICAL: 3}


class WelfareConcern(str, Enum):
    WEIGHING = "weighing"
    EGGS = "eggs"
    MORTALITY = "mortality"


class MalformedLotError(ValueError):
    """Lot data that cannot be evaluated (bad dates, impossible counts)."""


@dataclass(frozen=True)
class LotSnapshot:
    """Point-in-time view of a lot plus its latest measurements."""

    lot_id: str
    name: str
    kind: BirdKind
    breed: str
    birth_date: date | datetime | str | None
    initial_count: int
    current_count: int
    farm_id: str | None = None
    last_weight_lb: float | None = None
    last_weighed_at: datetime | None = None
    last_collected_at: datetime | None = None
    current_lay_rate_pct: float | None = None
    deaths: int = 0
    active: bool = True


@dataclass(frozen=True)
class ComparisonResult:
    metric: MetricKind
    actual: float
    expected: float
    percent_of_expected: float
    tier: PerformanceTier
    message: str
    needs_attention: bool


@dataclass(frozen=True)
class WelfareVerdict:
    """A welfare rule that fired for one lot and one concern."""

    concern: WelfareConcern
    severity: Severity
    reason: str
    lot: LotSnapshot
    details: dict[str, Any] = field(default_factory=dict)


def parse_birth_date(value: date | datetime | str | None) -> date:
    if value is None:
        raise MalformedLotError("birth date is missing")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip()).date()
        except ValueError as exc:
            raise MalformedLotError(f"unparsable birth date: {value!r}") from exc
    raise MalformedLotError(f"unsupported birth date type: {type(value).__name__}")


def age_in_days(lot: LotSnapshot, as_of: datetime) -> int:
    """Whole days since hatch. Raises MalformedLotError for bad or future dates."""
    born = parse_birth_date(lot.birth_date)
    days = (as_of.date() - born).days
    if days < 0:
        raise MalformedLotError(f"birth date {born.isoformat()} is in the future")
    return days


def days_since(moment: datetime | None, as_of: datetime) -> int | None:
    if moment is None:
        return None
    return max(0, math.floor((as_of - moment).total_seconds() / 86400))
