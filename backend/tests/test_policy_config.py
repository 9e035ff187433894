"""
Tests for settings and the alerting policy model.

Covers:
  - Default thresholds
  - Nested environment overrides
  - Validation of tier bands and egg phases
  - Non-local guardrails
"""

import pytest
from pydantic import ValidationError

from core.config import Settings, _enforce_guardrails
from core.policy import DeliveryPolicy, EggThresholds, TierBands, WelfarePolicy


class TestDefaults:
    def test_delivery_windows(self):
        policy = DeliveryPolicy()
        assert policy.window_for("critical") == 15
        assert policy.quota_for("critical") == 3
        assert policy.window_for("low") == 120
        assert policy.quota_for("medium") == 1

    def test_unknown_severity_uses_low(self):
        policy = DeliveryPolicy()
        assert policy.window_for("urgent") == 120
        assert policy.quota_for("urgent") == 1

    def test_weighing_thresholds(self):
        policy = WelfarePolicy()
        assert (policy.broiler.advisory_days, policy.broiler.emergency_days) == (5, 7)
        assert policy.layer.never_weighed_days == 21


class TestValidation:
    def test_tier_bands_must_descend(self):
        with pytest.raises(ValidationError):
            TierBands(excellent=90, good=100, acceptable=85, below=70)

    def test_egg_phases_must_be_ordered(self):
        with pytest.raises(ValidationError):
            EggThresholds(min_alert_age_days=150, lay_onset_age_days=140)


class TestSettings:
    def test_nested_env_override(self, monkeypatch):
        monkeypatch.setenv("ALERTING__DELIVERY__RETENTION_DAYS", "45")
        monkeypatch.setenv("ALERTING__SWEEP_CONCURRENCY", "2")

        settings = Settings()
        assert settings.alerting.delivery.retention_days == 45
        assert settings.alerting.sweep_concurrency == 2
        assert settings.alerting.delivery.duplicate_window_minutes == 60

    def test_debug_refused_outside_local(self):
        with pytest.raises(ValueError):
            _enforce_guardrails(Settings(app_env="production", debug=True))

    def test_sqlite_refused_outside_local(self):
        with pytest.raises(ValueError):
            _enforce_guardrails(Settings(app_env="production", database_url="sqlite+aiosqlite:///x.db"))

    def test_local_allows_anything(self):
        _enforce_guardrails(Settings(app_env="local", debug=True, database_url="sqlite+aiosqlite:///x.db"))
