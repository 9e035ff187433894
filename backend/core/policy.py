"""
Alerting policy — tunable thresholds for the comparator, the welfare
evaluator and the notification pipeline.

Every number here is product policy. Defaults follow common poultry
husbandry practice (Cobb / Lohmann management guides) and can be overridden
through Settings.alerting without code changes.
"""

from pydantic import BaseModel, Field, model_validator


class TierBands(BaseModel):
    """Lower bounds (percent of expected) for each performance tier.

    Anything below ``below`` is critical.
    """

    excellent: float
    good: float
    acceptable: float
    below: float

    @model_validator(mode="after")
    def _check_descending(self) -> "TierBands":
        if not (self.excellent >= self.good >= self.acceptable >= self.below):
            raise ValueError("tier bands must be non-increasing: excellent >= good >= acceptable >= below")
        return self


class ComparatorPolicy(BaseModel):
    growth_tiers: TierBands = TierBands(excellent=105.0, good=100.0, acceptable=85.0, below=70.0)
    # Mortality percent-of-expected is inverted (expected / actual), so the bands differ
    mortality_tiers: TierBands = TierBands(excellent=100.0, good=80.0, acceptable=60.0, below=40.0)
    default_expected_mortality_pct: float = 5.0


class WeighingThresholds(BaseModel):
    advisory_days: int
    emergency_days: int
    never_weighed_days: int


class EggThresholds(BaseModel):
    min_alert_age_days: int = 133  # 19 weeks
    lay_onset_age_days: int = 140  # 20 weeks
    full_lay_age_days: int = 161  # 23 weeks
    pre_lay_notice_days: int = 7
    no_lay_grace_days: int = 14
    advisory_days: int = 2
    emergency_days: int = 3

    @model_validator(mode="after")
    def _check_phases(self) -> "EggThresholds":
        if not (self.min_alert_age_days <= self.lay_onset_age_days <= self.full_lay_age_days):
            raise ValueError("egg phase ages must satisfy min_alert <= lay_onset <= full_lay")
        if self.advisory_days > self.emergency_days:
            raise ValueError("egg advisory_days must not exceed emergency_days")
        return self


class MortalityThresholds(BaseModel):
    advisory_pct: float = 5.0
    emergency_pct: float = 10.0


class WelfarePolicy(BaseModel):
    broiler: WeighingThresholds = WeighingThresholds(advisory_days=5, emergency_days=7, never_weighed_days=7)
    pullet: WeighingThresholds = WeighingThresholds(advisory_days=7, emergency_days=10, never_weighed_days=10)
    layer: WeighingThresholds = WeighingThresholds(advisory_days=14, emergency_days=21, never_weighed_days=21)
    eggs: EggThresholds = EggThresholds()
    mortality: MortalityThresholds = MortalityThresholds()


class DeliveryPolicy(BaseModel):
    duplicate_window_minutes: int = 60
    consolidation_window_hours: int = 24
    consolidation_threshold: int = 3
    rate_window_minutes: dict[str, int] = Field(
        default_factory=lambda: {"critical": 15, "high": 30, "medium": 60, "low": 120}
    )
    rate_quota: dict[str, int] = Field(default_factory=lambda: {"critical": 3, "high": 2, "medium": 1, "low": 1})
    push_timeout_seconds: float = 10.0
    retention_days: int = 30
    cleanup_batch_size: int = 500
    duplicate_scan_limit: int = 200
    receipt_delay_minutes: int = 15

    def window_for(self, severity: str) -> int:
        return self.rate_window_minutes.get(severity, self.rate_window_minutes.get("low", 120))

    def quota_for(self, severity: str) -> int:
        return self.rate_quota.get(severity, self.rate_quota.get("low", 1))


class AlertingPolicy(BaseModel):
    comparator: ComparatorPolicy = ComparatorPolicy()
    welfare: WelfarePolicy = WelfarePolicy()
    delivery: DeliveryPolicy = DeliveryPolicy()
    sweep_concurrency: int = 8
