"""
Laying phases for egg-collection welfare checks.

The phase is computed once from lot age; each phase has its own pure handler.
Phases are contiguous, non-overlapping age ranges:

  DEVELOPMENT  age < min_alert_age          no production alerts at all
  PRE_LAY      min_alert_age <= age < onset one-shot "get nests ready" notice
  LAY_ONSET    onset <= age < full_lay      late onset / stopped laying
  FULL_LAY     age >= full_lay              never laid / collection gaps
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable

from core.policy import EggThresholds
from flock.schemas import Severity


class GrowthPhase(str, Enum):
    DEVELOPMENT = "development"
    PRE_LAY = "pre_lay"
    LAY_ONSET = "lay_onset"
    FULL_LAY = "full_lay"


@dataclass(frozen=True)
class EggContext:
    age_days: int
    days_since_collection: int | None  # None: never collected
    thresholds: EggThresholds

    @property
    def never_collected(self) -> bool:
        return self.days_since_collection is None


@dataclass(frozen=True)
class EggFinding:
    severity: Severity
    reason: str
    phase: GrowthPhase
    details: dict


def classify_phase(age_days: int, thresholds: EggThresholds) -> GrowthPhase:
    if age_days < thresholds.min_alert_age_days:
        return GrowthPhase.DEVELOPMENT
    if age_days < thresholds.lay_onset_age_days:
        return GrowthPhase.PRE_LAY
    if age_days < thresholds.full_lay_age_days:
        return GrowthPhase.LAY_ONSET
    return GrowthPhase.FULL_LAY


def _development(ctx: EggContext) -> EggFinding | None:
    return None


def _pre_lay(ctx: EggContext) -> EggFinding | None:
    days_to_onset = ctx.thresholds.lay_onset_age_days - ctx.age_days
    if ctx.never_collected and days_to_onset <= ctx.thresholds.pre_lay_notice_days:
        return EggFinding(
            Severity.MEDIUM,
            "pre_lay_notice",
            GrowthPhase.PRE_LAY,
            {"days_to_onset": days_to_onset},
        )
    return None


def _lay_onset(ctx: EggContext) -> EggFinding | None:
    days_since_onset = ctx.age_days - ctx.thresholds.lay_onset_age_days
    if ctx.never_collected:
        if days_since_onset >= ctx.thresholds.no_lay_grace_days:
            return EggFinding(
                Severity.CRITICAL,
                "lay_not_started",
                GrowthPhase.LAY_ONSET,
                {"days_since_onset": days_since_onset},
            )
        return None
    if ctx.days_since_collection >= ctx.thresholds.emergency_days:
        return EggFinding(
            Severity.CRITICAL,
            "lay_stopped",
            GrowthPhase.LAY_ONSET,
            {"days_since_collection": ctx.days_since_collection},
        )
    return None


def _full_lay(ctx: EggContext) -> EggFinding | None:
    if ctx.never_collected:
        return EggFinding(Severity.CRITICAL, "never_collected", GrowthPhase.FULL_LAY, {})
    gap = ctx.days_since_collection
    if gap >= ctx.thresholds.emergency_days:
        return EggFinding(Severity.CRITICAL, "collection_gap_emergency", GrowthPhase.FULL_LAY, {"days_since_collection": gap})
    if gap >= ctx.thresholds.advisory_days:
        return EggFinding(Severity.HIGH, "collection_gap_advisory", GrowthPhase.FULL_LAY, {"days_since_collection": gap})
    return None


PHASE_HANDLERS: dict[GrowthPhase, Callable[[EggContext], EggFinding | None]] = {
    GrowthPhase.DEVELOPMENT: _development,
    GrowthPhase.PRE_LAY: _pre_lay,
    GrowthPhase.LAY_ONSET: _lay_onset,
    GrowthPhase.FULL_LAY: _full_lay,
}


def evaluate_egg_phase(ctx: EggContext) -> EggFinding | None:
    phase = classify_phase(ctx.age_days, ctx.thresholds)
    return PHASE_HANDLERS[phase](ctx)
