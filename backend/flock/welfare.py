"""
Welfare Evaluator — per-lot staleness and mortality rules.

Three independent concerns, each evaluated on its own:
  1. Weighing cadence: thresholds keyed by bird kind.
  2. Egg collection: phase-gated by lot age (layers only), see flock.phases.
  3. Mortality: cumulative deaths vs. initial head count.

This runs as a batch sweep over many lots, so bad lot data is logged and the
affected concern is skipped; nothing raises out of evaluate_lot().
"""

from datetime import datetime

import structlog

from core.policy import WeighingThresholds, WelfarePolicy
from flock.phases import EggContext, evaluate_egg_phase
from flock.schemas import (
    BirdKind,
    LotSnapshot,
    MalformedLotError,
    Severity,
    WelfareConcern,
    WelfareVerdict,
    age_in_days,
    days_since,
)

logger = structlog.get_logger()


class WelfareEvaluator:
    def __init__(self, policy: WelfarePolicy | None = None):
        self.policy = policy or WelfarePolicy()

    def weighing_thresholds(self, kind: BirdKind) -> WeighingThresholds:
        return {
            BirdKind.BROILER: self.policy.broiler,
            BirdKind.PULLET: self.policy.pullet,
            BirdKind.LAYER: self.policy.layer,
        }[BirdKind(kind)]

    # ── Weighing ──────────────────────────────────────────────────────────

    def evaluate_weighing(self, lot: LotSnapshot, as_of: datetime) -> WelfareVerdict | None:
        thresholds = self.weighing_thresholds(lot.kind)
        age = age_in_days(lot, as_of)
        gap = days_since(lot.last_weighed_at, as_of)

        if gap is None:
            if age >= thresholds.never_weighed_days:
                return WelfareVerdict(
                    WelfareConcern.WEIGHING, Severity.CRITICAL, "never_weighed", lot, {"age_days": age}
                )
            return None

        details = {"age_days": age, "days_since_weighing": gap}
        if gap >= thresholds.emergency_days:
            return WelfareVerdict(WelfareConcern.WEIGHING, Severity.CRITICAL, "weighing_gap_emergency", lot, details)
        if gap >= thresholds.advisory_days:
            return WelfareVerdict(WelfareConcern.WEIGHING, Severity.HIGH, "weighing_gap_advisory", lot, details)
        return None

    # ── Egg collection ────────────────────────────────────────────────────

    def evaluate_eggs(self, lot: LotSnapshot, as_of: datetime) -> WelfareVerdict | None:
        if lot.kind != BirdKind.LAYER:
            return None
        age = age_in_days(lot, as_of)
        finding = evaluate_egg_phase(
            EggContext(
                age_days=age,
                days_since_collection=days_since(lot.last_collected_at, as_of),
                thresholds=self.policy.eggs,
            )
        )
        if finding is None:
            return None
        details = {"age_days": age, "age_weeks": age // 7, "phase": finding.phase.value, **finding.details}
        return WelfareVerdict(WelfareConcern.EGGS, finding.severity, finding.reason, lot, details)

    # ── Mortality ─────────────────────────────────────────────────────────

    def evaluate_mortality(self, lot: LotSnapshot) -> WelfareVerdict | None:
        if lot.initial_count is None or lot.initial_count <= 0:
            raise MalformedLotError(f"initial count must be positive, got {lot.initial_count!r}")
        if lot.deaths < 0:
            raise MalformedLotError(f"deaths must not be negative, got {lot.deaths!r}")

        rate = lot.deaths / lot.initial_count * 100
        thresholds = self.policy.mortality
        details = {"rate_pct": round(rate, 2), "deaths": lot.deaths, "initial_count": lot.initial_count}
        if rate >= thresholds.emergency_pct:
            return WelfareVerdict(WelfareConcern.MORTALITY, Severity.CRITICAL, "mortality_emergency", lot, details)
        if rate >= thresholds.advisory_pct:
            return WelfareVerdict(WelfareConcern.MORTALITY, Severity.HIGH, "mortality_advisory", lot, details)
        return None

    # ── Whole lot ─────────────────────────────────────────────────────────

    def evaluate_lot(self, lot: LotSnapshot, as_of: datetime | None = None) -> list[WelfareVerdict]:
        as_of = as_of or datetime.utcnow()
        checks = (
            (WelfareConcern.WEIGHING, lambda: self.evaluate_weighing(lot, as_of)),
            (WelfareConcern.EGGS, lambda: self.evaluate_eggs(lot, as_of)),
            (WelfareConcern.MORTALITY, lambda: self.evaluate_mortality(lot)),
        )
        verdicts = []
        for concern, check in checks:
            try:
                verdict = check()
            except (MalformedLotError, TypeError, ValueError) as exc:
                logger.warning("welfare.concern_skipped", lot_id=lot.lot_id, concern=concern.value, error=str(exc))
                continue
            if verdict is not None:
                logger.info(
                    "welfare.verdict",
                    lot_id=lot.lot_id,
                    concern=concern.value,
                    severity=verdict.severity.value,
                    reason=verdict.reason,
                )
                verdicts.append(verdict)
        return verdicts
