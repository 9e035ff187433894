"""
Tests for the Welfare Evaluator — weighing cadence, egg-collection phases
and mortality.

Covers:
  - Weighing thresholds per bird kind (first match wins)
  - Phase classification and the per-phase egg rules
  - Mortality rate bands
  - Malformed lot data is skipped, never raised
"""

from datetime import timedelta

import pytest

from core.policy import EggThresholds
from flock.phases import GrowthPhase, classify_phase
from flock.schemas import BirdKind, MalformedLotError, Severity, WelfareConcern
from flock.welfare import WelfareEvaluator


@pytest.fixture
def evaluator():
    return WelfareEvaluator()


def _layer(make_lot, now, age_days, collected_days_ago=None, **overrides):
    collected = now - timedelta(days=collected_days_ago) if collected_days_ago is not None else None
    return make_lot(
        age_days=age_days,
        kind=BirdKind.LAYER,
        breed="Lohmann Brown",
        last_collected_at=collected,
        **overrides,
    )


# ── Weighing ───────────────────────────────────────────────────────────


class TestWeighing:
    def test_never_weighed_after_threshold_is_critical(self, evaluator, make_lot, now):
        verdict = evaluator.evaluate_weighing(make_lot(age_days=10, last_weighed_at=None), now)
        assert verdict.severity == Severity.CRITICAL
        assert verdict.reason == "never_weighed"

    def test_never_weighed_young_lot_is_fine(self, evaluator, make_lot, now):
        assert evaluator.evaluate_weighing(make_lot(age_days=5, last_weighed_at=None), now) is None

    def test_emergency_gap(self, evaluator, make_lot, now):
        verdict = evaluator.evaluate_weighing(make_lot(last_weighed_at=now - timedelta(days=7)), now)
        assert verdict.severity == Severity.CRITICAL
        assert verdict.reason == "weighing_gap_emergency"

    def test_advisory_gap(self, evaluator, make_lot, now):
        verdict = evaluator.evaluate_weighing(make_lot(last_weighed_at=now - timedelta(days=6)), now)
        assert verdict.severity == Severity.HIGH
        assert verdict.details["days_since_weighing"] == 6

    def test_recent_weighing(self, evaluator, make_lot, now):
        assert evaluator.evaluate_weighing(make_lot(last_weighed_at=now - timedelta(days=4)), now) is None

    def test_layer_thresholds_are_longer(self, evaluator, make_lot, now):
        lot = make_lot(kind=BirdKind.LAYER, age_days=200, last_weighed_at=now - timedelta(days=10))
        assert evaluator.evaluate_weighing(lot, now) is None


# ── Egg phases ─────────────────────────────────────────────────────────


class TestPhaseClassification:
    @pytest.mark.parametrize(
        "age,phase",
        [
            (100, GrowthPhase.DEVELOPMENT),
            (133, GrowthPhase.PRE_LAY),
            (139, GrowthPhase.PRE_LAY),
            (140, GrowthPhase.LAY_ONSET),
            (160, GrowthPhase.LAY_ONSET),
            (161, GrowthPhase.FULL_LAY),
        ],
    )
    def test_boundaries(self, age, phase):
        assert classify_phase(age, EggThresholds()) == phase


class TestEggCollection:
    def test_young_layers_never_alert(self, evaluator, make_lot, now):
        assert evaluator.evaluate_eggs(_layer(make_lot, now, age_days=100), now) is None

    def test_young_layers_ignore_stale_collections(self, evaluator, make_lot, now):
        lot = _layer(make_lot, now, age_days=100, collected_days_ago=10)
        assert evaluator.evaluate_eggs(lot, now) is None

    def test_broilers_never_alert(self, evaluator, make_lot, now):
        assert evaluator.evaluate_eggs(make_lot(age_days=200), now) is None

    def test_pre_lay_notice(self, evaluator, make_lot, now):
        verdict = evaluator.evaluate_eggs(_layer(make_lot, now, age_days=135), now)
        assert verdict.severity == Severity.MEDIUM
        assert verdict.reason == "pre_lay_notice"
        assert verdict.details["days_to_onset"] == 5

    def test_late_onset_within_grace(self, evaluator, make_lot, now):
        assert evaluator.evaluate_eggs(_layer(make_lot, now, age_days=145), now) is None

    def test_late_onset_after_grace(self, evaluator, make_lot, now):
        verdict = evaluator.evaluate_eggs(_layer(make_lot, now, age_days=155), now)
        assert verdict.severity == Severity.CRITICAL
        assert verdict.reason == "lay_not_started"

    def test_laying_stopped_during_onset(self, evaluator, make_lot, now):
        verdict = evaluator.evaluate_eggs(_layer(make_lot, now, age_days=150, collected_days_ago=3), now)
        assert verdict.reason == "lay_stopped"

    def test_full_lay_never_collected(self, evaluator, make_lot, now):
        lot = _layer(make_lot, now, age_days=170)
        egg_verdicts = [v for v in evaluator.evaluate_lot(lot, now) if v.concern == WelfareConcern.EGGS]

        assert len(egg_verdicts) == 1
        assert egg_verdicts[0].severity == Severity.CRITICAL
        assert egg_verdicts[0].reason == "never_collected"

    def test_full_lay_advisory_gap(self, evaluator, make_lot, now):
        verdict = evaluator.evaluate_eggs(_layer(make_lot, now, age_days=200, collected_days_ago=2), now)
        assert verdict.severity == Severity.HIGH

    def test_full_lay_emergency_gap(self, evaluator, make_lot, now):
        verdict = evaluator.evaluate_eggs(_layer(make_lot, now, age_days=200, collected_days_ago=4), now)
        assert verdict.severity == Severity.CRITICAL
        assert verdict.details["days_since_collection"] == 4

    def test_collected_today(self, evaluator, make_lot, now):
        assert evaluator.evaluate_eggs(_layer(make_lot, now, age_days=200, collected_days_ago=0), now) is None


# ── Mortality ──────────────────────────────────────────────────────────


class TestMortality:
    def test_below_advisory(self, evaluator, make_lot):
        assert evaluator.evaluate_mortality(make_lot(deaths=49)) is None

    def test_advisory(self, evaluator, make_lot):
        verdict = evaluator.evaluate_mortality(make_lot(deaths=50))
        assert verdict.severity == Severity.HIGH
        assert verdict.details["rate_pct"] == 5.0

    def test_emergency(self, evaluator, make_lot):
        verdict = evaluator.evaluate_mortality(make_lot(deaths=120))
        assert verdict.severity == Severity.CRITICAL

    def test_zero_initial_count_raises(self, evaluator, make_lot):
        with pytest.raises(MalformedLotError):
            evaluator.evaluate_mortality(make_lot(initial_count=0))


# ── Malformed input ────────────────────────────────────────────────────


class TestMalformedLots:
    def test_unparsable_birth_date_skips_age_rules(self, evaluator, make_lot, now):
        lot = make_lot(birth_date="not-a-date", deaths=150)
        verdicts = evaluator.evaluate_lot(lot, now)
        assert [v.concern for v in verdicts] == [WelfareConcern.MORTALITY]

    def test_future_birth_date_skipped(self, evaluator, make_lot, now):
        lot = make_lot(birth_date=now.date() + timedelta(days=10), last_weighed_at=None)
        assert evaluator.evaluate_lot(lot, now) == []

    def test_non_positive_initial_count_skipped(self, evaluator, make_lot, now):
        lot = make_lot(initial_count=0, deaths=5)
        assert evaluator.evaluate_lot(lot, now) == []

    def test_iso_string_birth_date(self, evaluator, make_lot, now):
        lot = make_lot(birth_date=(now.date() - timedelta(days=10)).isoformat(), last_weighed_at=None)
        verdicts = evaluator.evaluate_lot(lot, now)
        assert verdicts[0].reason == "never_weighed"
