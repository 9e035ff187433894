"""
Alert Assembler — maps comparator results and welfare verdicts into
candidate alerts.

Pure functions: no I/O, no clock. The correlation key is
``type|title|lot_id|reason`` and is what the pipeline uses to recognise the
same alert when it comes round again.
"""

from flock.schemas import (
    ComparisonResult,
    LotSnapshot,
    MetricKind,
    PerformanceTier,
    Severity,
    WelfareConcern,
    WelfareVerdict,
)
from alerts.schemas import CandidateAlert, NotificationCategory, NotificationType

RECOMMENDATIONS: dict[str, list[str]] = {
    "weight": [
        "Check feed quality and formulation",
        "Verify water intake and drinker pressure",
        "Screen the flock for disease",
        "Consult a veterinarian",
    ],
    "production": [
        "Review house lighting program",
        "Verify the feeding program for the current phase",
        "Assess stressors in the flock",
        "Check ambient temperature",
    ],
    "mortality": [
        "Apply biosecurity measures immediately",
        "Contact a veterinarian urgently",
        "Review house ventilation and temperature",
        "Check feed and water quality",
        "Isolate sick birds",
    ],
    "weighing": [
        "Weigh a representative sample of at least 50 birds",
        "Record the average weight in the lot log",
        "Compare the result against the breed standard",
    ],
    "eggs": [
        "Collect and record eggs at least once a day",
        "Check nests, lighting and feed if production has stopped",
        "Consult a veterinarian if the flock is not laying",
    ],
}

_KIND_LABELS = {"broiler": "broilers", "pullet": "pullets", "layer": "laying hens"}

_METRIC_TYPES = {
    MetricKind.WEIGHT: NotificationType.WEIGHT_BELOW_STANDARD,
    MetricKind.PRODUCTION: NotificationType.PRODUCTION_LOW,
    MetricKind.MORTALITY: NotificationType.MORTALITY_HIGH,
}

_METRIC_TITLES = {
    MetricKind.WEIGHT: "Weight below standard: {name}",
    MetricKind.PRODUCTION: "Production below standard: {name}",
    MetricKind.MORTALITY: "Mortality above standard: {name}",
}


def correlation_key(notification_type: NotificationType, title: str, lot_id: str, reason: str) -> str:
    return f"{notification_type.value}|{title}|{lot_id}|{reason}"


def _lot_payload(lot: LotSnapshot) -> dict:
    return {"lot_id": lot.lot_id, "lot_name": lot.name, "bird_kind": lot.kind.value, "breed": lot.breed}


def from_comparison(result: ComparisonResult, lot: LotSnapshot, user_id: str | None = None) -> CandidateAlert | None:
    """Candidate for a comparison that needs attention; None otherwise."""
    if not result.needs_attention:
        return None

    notification_type = _METRIC_TYPES[result.metric]
    severity = Severity.HIGH if result.tier == PerformanceTier.CRITICAL else Severity.MEDIUM
    title = _METRIC_TITLES[result.metric].format(name=lot.name)
    reason = f"{result.metric.value}_{result.tier.value}"
    message = (
        f'{result.message} for lot "{lot.name}": actual {result.actual:.2f}, '
        f"expected {result.expected:.2f} ({result.percent_of_expected:.0f}% of expected)."
    )
    return CandidateAlert(
        category=NotificationCategory.PRODUCTION,
        notification_type=notification_type,
        severity=severity,
        title=title,
        message=message,
        correlation_key=correlation_key(notification_type, title, lot.lot_id, reason),
        user_id=user_id,
        send_push=True,
        payload={
            **_lot_payload(lot),
            "reason": reason,
            "actual": round(result.actual, 3),
            "expected": round(result.expected, 3),
            "percent_of_expected": round(result.percent_of_expected, 1),
            "tier": result.tier.value,
            "recommendations": list(RECOMMENDATIONS[result.metric.value]),
        },
    )


# ── Welfare templates ─────────────────────────────────────────────────────
# (title, message) keyed by reason code. Messages are formatted with the
# lot name, bird label and the verdict details.

_WELFARE_TEMPLATES: dict[str, tuple[str, str]] = {
    "never_weighed": (
        "EMERGENCY: {name} never weighed",
        'The {birds} in lot "{name}" are {age_days} days old and have never been weighed. '
        "Weigh them now to check health and growth.",
    ),
    "weighing_gap_emergency": (
        "EMERGENCY: {name} weighing overdue",
        'The {birds} in lot "{name}" have gone {days_since_weighing} days without a weight check. '
        "Growth or feeding problems may be going unnoticed. Immediate action required.",
    ),
    "weighing_gap_advisory": (
        "Attention: {name} needs weighing",
        'The {birds} in lot "{name}" have gone {days_since_weighing} days without a weight check. '
        "Weigh them soon to keep tracking their development.",
    ),
    "pre_lay_notice": (
        "Get ready: {name} close to lay",
        'The hens in lot "{name}" are {age_weeks} weeks old and should start laying in about '
        "{days_to_onset} days. Make sure nests are clean and ready.",
    ),
    "lay_not_started": (
        "EMERGENCY: {name} not laying",
        'The hens in lot "{name}" are {age_weeks} weeks old and have not started laying. '
        "Check nutrition, lighting and stress, and call a veterinarian.",
    ),
    "lay_stopped": (
        "ALERT: {name} stopped laying",
        'Lot "{name}" ({age_weeks} weeks) had started laying but has gone {days_since_collection} days '
        "without a collection. Check flock health immediately.",
    ),
    "never_collected": (
        "EMERGENCY: {name} has never produced",
        'Lot "{name}" is {age_weeks} weeks old and has never produced eggs. This points to a serious '
        "problem such as disease, poor nutrition or severe stress. Veterinary evaluation required.",
    ),
    "collection_gap_emergency": (
        "EMERGENCY: egg collection {name}",
        'Lot "{name}" ({age_weeks} weeks) has gone {days_since_collection} days without an egg collection. '
        "Immediate action required.",
    ),
    "collection_gap_advisory": (
        "Attention: collection pending {name}",
        'Lot "{name}" ({age_weeks} weeks) has gone {days_since_collection} days without an egg collection. '
        "Schedule a collection soon to avoid losses.",
    ),
    "mortality_emergency": (
        "EMERGENCY: critical mortality {name}",
        'Lot "{name}" has {rate_pct:.1f}% mortality ({deaths} of {initial_count} birds). '
        "Immediate veterinary attention required. Check sanitation, ventilation, feed and water.",
    ),
    "mortality_advisory": (
        "Attention: elevated mortality {name}",
        'Lot "{name}" has {rate_pct:.1f}% mortality ({deaths} of {initial_count} birds). '
        "Monitor closely and review lot conditions.",
    ),
}

_CONCERN_TYPES = {
    WelfareConcern.WEIGHING: NotificationType.WEIGHING_OVERDUE,
    WelfareConcern.EGGS: NotificationType.PRODUCTION_LOW,
    WelfareConcern.MORTALITY: NotificationType.MORTALITY_HIGH,
}


def from_verdict(verdict: WelfareVerdict, user_id: str | None = None) -> CandidateAlert:
    lot = verdict.lot
    if verdict.reason == "pre_lay_notice":
        notification_type = NotificationType.LAY_ONSET_NOTICE
    else:
        notification_type = _CONCERN_TYPES[verdict.concern]

    title_template, message_template = _WELFARE_TEMPLATES[verdict.reason]
    context = {"name": lot.name, "birds": _KIND_LABELS.get(lot.kind.value, "birds"), **verdict.details}
    title = title_template.format(**context)
    message = message_template.format(**context)

    return CandidateAlert(
        category=NotificationCategory.PRODUCTION,
        notification_type=notification_type,
        severity=verdict.severity,
        title=title,
        message=message,
        correlation_key=correlation_key(notification_type, title, lot.lot_id, verdict.reason),
        user_id=user_id,
        send_push=True,
        payload={
            **_lot_payload(lot),
            "reason": verdict.reason,
            **verdict.details,
            "recommendations": list(RECOMMENDATIONS[verdict.concern.value]),
        },
        once=verdict.reason == "pre_lay_notice",
    )
