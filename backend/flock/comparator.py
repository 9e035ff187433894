"""
Benchmark Comparator — actual lot performance vs. breed reference curves.

  weight:      exact age point, else linear interpolation between the
               bracketing points, clamped to the first/last point.
               Curves are in grams, lots are weighed in pounds.
  production:  whole-week bucket lookup (layers only), no interpolation —
               lay-rate curves are sparse and non-linear around onset.
  mortality:   percent of expected is inverted (expected / actual) because
               lower mortality is better.

A missing curve is "no data", never a critical verdict.
"""

from datetime import datetime

import structlog

from core.policy import ComparatorPolicy, TierBands
from flock.benchmarks import BenchmarkStore, CurvePoint
from flock.schemas import (
    BirdKind,
    ComparisonResult,
    LotSnapshot,
    MalformedLotError,
    MetricKind,
    PerformanceTier,
    age_in_days,
)

logger = structlog.get_logger()

GRAMS_PER_POUND = 453.592

_TIER_MESSAGES = {
    PerformanceTier.EXCELLENT: "{label} above standard",
    PerformanceTier.GOOD: "{label} within expected range",
    PerformanceTier.ACCEPTABLE: "{label} slightly below standard",
    PerformanceTier.BELOW: "{label} significantly below standard",
    PerformanceTier.CRITICAL: "{label} critical - intervention required",
}

_MORTALITY_MESSAGES = {
    PerformanceTier.EXCELLENT: "Mortality within expected range",
    PerformanceTier.GOOD: "Mortality slightly elevated",
    PerformanceTier.ACCEPTABLE: "Mortality moderately elevated",
    PerformanceTier.BELOW: "Mortality high - attention required",
    PerformanceTier.CRITICAL: "Mortality critical - immediate action required",
}


def interpolate_expected(points: list[CurvePoint], age: int) -> CurvePoint | None:
    """Expected curve point at ``age``; clamps outside the curve's domain."""
    if not points:
        return None
    points = sorted(points, key=lambda p: p.age)

    for point in points:
        if point.age == age:
            return point

    if age <= points[0].age:
        return points[0]
    if age >= points[-1].age:
        return points[-1]

    for lower, upper in zip(points, points[1:]):
        if lower.age < age < upper.age:
            ratio = (age - lower.age) / (upper.age - lower.age)
            return CurvePoint(
                age=age,
                expected=lower.expected + (upper.expected - lower.expected) * ratio,
                minimum=lower.minimum,
                maximum=upper.maximum,
            )
    return None


def classify_tier(percent_of_expected: float, bands: TierBands) -> PerformanceTier:
    if percent_of_expected >= bands.excellent:
        return PerformanceTier.EXCELLENT
    if percent_of_expected >= bands.good:
        return PerformanceTier.GOOD
    if percent_of_expected >= bands.acceptable:
        return PerformanceTier.ACCEPTABLE
    if percent_of_expected >= bands.below:
        return PerformanceTier.BELOW
    return PerformanceTier.CRITICAL


def build_result(
    metric: MetricKind,
    actual: float,
    expected: float,
    percent_of_expected: float,
    bands: TierBands,
) -> ComparisonResult:
    tier = classify_tier(percent_of_expected, bands)
    if metric == MetricKind.MORTALITY:
        message = _MORTALITY_MESSAGES[tier]
    else:
        label = "Weight" if metric == MetricKind.WEIGHT else "Production"
        message = _TIER_MESSAGES[tier].format(label=label)
    return ComparisonResult(
        metric=metric,
        actual=actual,
        expected=expected,
        percent_of_expected=percent_of_expected,
        tier=tier,
        message=message,
        needs_attention=tier in (PerformanceTier.BELOW, PerformanceTier.CRITICAL),
    )


def mortality_percent_of_expected(actual_pct: float, expected_pct: float) -> float:
    # No deaths, or no expectation, counts as fully on target
    if actual_pct <= 0 or expected_pct <= 0:
        return 100.0
    return expected_pct / actual_pct * 100


class BenchmarkComparator:
    def __init__(self, store: BenchmarkStore, policy: ComparatorPolicy | None = None):
        self.store = store
        self.policy = policy or ComparatorPolicy()

    async def compare(
        self,
        actual: float,
        lot: LotSnapshot,
        metric: MetricKind,
        as_of: datetime | None = None,
    ) -> ComparisonResult | None:
        as_of = as_of or datetime.utcnow()
        metric = MetricKind(metric)

        try:
            curve = await self.store.get_benchmark(lot.kind, lot.breed)
        except Exception as exc:  # noqa: BLE001
            logger.warning("comparator.benchmark_lookup_failed", lot_id=lot.lot_id, breed=lot.breed, error=str(exc))
            curve = None

        if metric == MetricKind.MORTALITY:
            expected = self.policy.default_expected_mortality_pct
            if curve is not None and curve.expected_mortality_pct:
                expected = curve.expected_mortality_pct
            pct = mortality_percent_of_expected(actual, expected)
            return build_result(metric, actual, expected, pct, self.policy.mortality_tiers)

        if curve is None or not curve.points:
            logger.debug("comparator.no_curve", lot_id=lot.lot_id, breed=lot.breed, kind=lot.kind.value)
            return None

        try:
            age_days = age_in_days(lot, as_of)
        except MalformedLotError as exc:
            logger.warning("comparator.bad_lot_age", lot_id=lot.lot_id, error=str(exc))
            return None

        if metric == MetricKind.WEIGHT:
            if lot.kind == BirdKind.LAYER:
                return None
            point = interpolate_expected(curve.sorted_points(), age_days)
            if point is None:
                return None
            expected = point.expected / GRAMS_PER_POUND
        else:
            if lot.kind != BirdKind.LAYER:
                return None
            week = age_days // 7
            point = next((p for p in curve.points if p.age == week), None)
            if point is None:
                return None
            expected = point.expected

        pct = actual / expected * 100 if expected > 0 else 0.0
        return build_result(metric, actual, expected, pct, self.policy.growth_tiers)
