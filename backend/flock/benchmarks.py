"""
Breed benchmark curves — expected weight-by-age and lay-rate-by-age.

Weight curves are keyed by age in days with values in grams. Lay-rate curves
are keyed by age in whole weeks with values in percent. Lookup is by breed
name, case-insensitive.

Default catalog values follow the published Cobb 500, Ross 308, Lohmann Brown
and ISA Brown management guides.
"""

from dataclasses import dataclass, field
from typing import Protocol

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flock.schemas import BirdKind

logger = structlog.get_logger()


@dataclass(frozen=True)
class CurvePoint:
    age: int
    expected: float
    minimum: float | None = None
    maximum: float | None = None


@dataclass(frozen=True)
class ReferenceCurve:
    kind: BirdKind
    breed: str
    points: tuple[CurvePoint, ...] = field(default_factory=tuple)
    expected_mortality_pct: float | None = None
    expected_feed_conversion: float | None = None
    target_market_age_days: int | None = None
    target_final_weight_lb: float | None = None
    version: int = 1

    def sorted_points(self) -> list[CurvePoint]:
        return sorted(self.points, key=lambda p: p.age)


class BenchmarkStore(Protocol):
    async def get_benchmark(self, kind: BirdKind, breed: str) -> ReferenceCurve | None: ...


def _points(rows: list[tuple]) -> tuple[CurvePoint, ...]:
    return tuple(CurvePoint(*row) for row in rows)


_COBB_500_WEIGHT = [
    (7, 185, 165, 205),
    (14, 475, 430, 520),
    (21, 925, 860, 990),
    (28, 1530, 1450, 1610),
    (35, 2250, 2150, 2350),
    (42, 3050, 2930, 3170),
]

PREDEFINED_CURVES: tuple[ReferenceCurve, ...] = (
    ReferenceCurve(
        kind=BirdKind.BROILER,
        breed="COBB 500",
        points=_points(_COBB_500_WEIGHT),
        expected_mortality_pct=4.0,
        expected_feed_conversion=1.75,
        target_market_age_days=42,
        target_final_weight_lb=6.7,
    ),
    ReferenceCurve(
        kind=BirdKind.BROILER,
        breed="Ross 308",
        points=_points(
            [
                (7, 180, 160, 200),
                (14, 465, 420, 510),
                (21, 900, 840, 960),
                (28, 1500, 1420, 1580),
                (35, 2200, 2100, 2300),
                (42, 3000, 2880, 3120),
            ]
        ),
        expected_mortality_pct=4.5,
        expected_feed_conversion=1.77,
        target_market_age_days=42,
        target_final_weight_lb=6.6,
    ),
    ReferenceCurve(
        kind=BirdKind.PULLET,
        breed="COBB 500",
        points=_points(_COBB_500_WEIGHT[:4]),
        expected_mortality_pct=3.0,
        expected_feed_conversion=1.6,
        target_market_age_days=140,
        target_final_weight_lb=4.5,
    ),
    ReferenceCurve(
        kind=BirdKind.LAYER,
        breed="Lohmann Brown",
        points=_points([(18, 5), (20, 50), (24, 95), (28, 96), (40, 92), (60, 85), (80, 75)]),
        expected_mortality_pct=5.0,
    ),
    ReferenceCurve(
        kind=BirdKind.LAYER,
        breed="ISA Brown",
        points=_points([(18, 5), (20, 52), (24, 94), (28, 95), (40, 91), (60, 84), (80, 73)]),
        expected_mortality_pct=5.0,
    ),
)


class StaticBenchmarkStore:
    """In-memory catalog, keyed by (kind, lower-cased breed)."""

    def __init__(self, curves: tuple[ReferenceCurve, ...] | list[ReferenceCurve] = PREDEFINED_CURVES):
        self._curves = {(c.kind, c.breed.strip().lower()): c for c in curves}

    async def get_benchmark(self, kind: BirdKind, breed: str) -> ReferenceCurve | None:
        if not breed:
            return None
        return self._curves.get((BirdKind(kind), breed.strip().lower()))


class SqlBenchmarkStore:
    """
    Reads the latest curve version from reference_curves.

    Falls back to the static catalog when the table has no row for the breed.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        fallback: StaticBenchmarkStore | None = None,
    ):
        self._session_factory = session_factory
        self._fallback = fallback

    async def get_benchmark(self, kind: BirdKind, breed: str) -> ReferenceCurve | None:
        from db.models import ReferenceCurveRow

        if not breed:
            return None
        kind = BirdKind(kind)
        async with self._session_factory() as db:
            result = await db.execute(
                select(ReferenceCurveRow)
                .where(
                    ReferenceCurveRow.kind == kind.value,
                    func.lower(ReferenceCurveRow.breed) == breed.strip().lower(),
                )
                .order_by(ReferenceCurveRow.version.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()

        if row is None:
            if self._fallback is not None:
                return await self._fallback.get_benchmark(kind, breed)
            return None

        return ReferenceCurve(
            kind=kind,
            breed=row.breed,
            points=tuple(
                CurvePoint(
                    age=int(p["age"]),
                    expected=float(p["expected"]),
                    minimum=p.get("min"),
                    maximum=p.get("max"),
                )
                for p in (row.points or [])
            ),
            expected_mortality_pct=row.expected_mortality_pct,
            expected_feed_conversion=row.expected_feed_conversion,
            target_market_age_days=row.target_market_age_days,
            target_final_weight_lb=row.target_final_weight_lb,
            version=row.version,
        )
