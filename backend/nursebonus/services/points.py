"""Point strategies for satisfied bonus rules.

``points_config`` is validated and compiled at catalog load into one frozen
strategy per ``conditional_pattern``. A broken definition (unknown pattern,
missing or unknown key, negative points) is a ConfigurationError there; at
evaluation time strategies only raise DataQualityError, for visits lacking a
fact the strategy needs.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import time
from typing import TYPE_CHECKING

from db.enums import ConditionalPattern, PointsType, TimeBucket
from nursebonus.services.errors import (
    DataQualityError,
    MissingPointsConfigError,
    UnknownPatternError,
)
from nursebonus.services.facts import EvaluationContext, FactName, time_bucket

if TYPE_CHECKING:
    from nursebonus.services.catalog import BonusRule

MONTHLY_THRESHOLD_DAYS: int = 14
LOW_OCCUPANCY_MAX: int = 2

_DURATION_KEY = re.compile(r"^duration_(\d+)$")
_AGE_KEY = re.compile(r"^age_(\d+)(?:_(\d+))?$")
_DURATION_OPERATORS: frozenset[str] = frozenset({"greater_than", "greater_than_or_equal"})


@dataclass(frozen=True, slots=True)
class FixedPoints:
    points: int


@dataclass(frozen=True, slots=True)
class Monthly14DayThreshold:
    up_to_14: int
    after_14: int


@dataclass(frozen=True, slots=True)
class TimeBasedPoints:
    buckets: tuple[tuple[TimeBucket, int], ...]


@dataclass(frozen=True, slots=True)
class DurationTier:
    minutes: int
    points: int
    # ">" instead of ">="
    exclusive: bool = False
    label: str = ""


@dataclass(frozen=True, slots=True)
class DurationTiers:
    # longest tier first
    tiers: tuple[DurationTier, ...]
    default: int = 0


@dataclass(frozen=True, slots=True)
class AgeBrackets:
    # (min age inclusive, max age exclusive or None, points, config key)
    brackets: tuple[tuple[int, int | None, int, str], ...]


@dataclass(frozen=True, slots=True)
class BuildingOccupancyPoints:
    occupancy_1_2: int
    occupancy_3_plus: int


@dataclass(frozen=True, slots=True)
class VisitCountPoints:
    visit_1: int
    visit_2: int
    visit_3_plus: int


PointsStrategy = (
    FixedPoints
    | Monthly14DayThreshold
    | TimeBasedPoints
    | DurationTiers
    | AgeBrackets
    | BuildingOccupancyPoints
    | VisitCountPoints
)


@dataclass(frozen=True, slots=True)
class PointsOutcome:
    points: int
    matched: str


# -- Compilation -------------------------------------------------------------


def _points(config: Mapping[str, object], key: str, label: str) -> int:
    if key not in config:
        raise MissingPointsConfigError(f"{label}: points_config is missing '{key}'")
    raw: object = config[key]
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise MissingPointsConfigError(f"{label}: points_config['{key}'] is not a number")
    if isinstance(raw, float) and not raw.is_integer():
        raise MissingPointsConfigError(f"{label}: points_config['{key}'] is not a whole number")
    if raw < 0:
        raise MissingPointsConfigError(f"{label}: points_config['{key}'] is negative")
    return int(raw)


def _reject_unknown(config: Mapping[str, object], allowed: set[str], label: str) -> None:
    unknown: list[str] = sorted(k for k in config if k not in allowed)
    if unknown:
        raise MissingPointsConfigError(
            f"{label}: unknown points_config key(s) {', '.join(unknown)}"
        )


def _fixed(fixed_points: object, label: str) -> FixedPoints:
    if fixed_points is None:
        raise MissingPointsConfigError(f"{label}: fixed bonus has no fixed_points")
    return FixedPoints(_points({"fixed_points": fixed_points}, "fixed_points", label))


def _time_based(config: Mapping[str, object], label: str) -> TimeBasedPoints:
    _reject_unknown(config, {b.value for b in TimeBucket}, label)
    if not config:
        raise MissingPointsConfigError(f"{label}: time_based needs at least one time band")
    return TimeBasedPoints(
        tuple((b, _points(config, b.value, label)) for b in TimeBucket if b.value in config)
    )


def _duration_conditions(config: Mapping[str, object], label: str) -> DurationTiers:
    """``{"conditions": [{durationMinutes, points, operator}], "defaultPoints"}`` form."""
    _reject_unknown(config, {"conditions", "defaultPoints"}, label)
    raw: object = config["conditions"]
    if not isinstance(raw, list) or not raw:
        raise MissingPointsConfigError(
            f"{label}: points_config['conditions'] must be a non-empty list"
        )
    tiers: list[DurationTier] = []
    for i, item in enumerate(raw):
        item_label: str = f"{label} conditions[{i}]"
        if not isinstance(item, Mapping):
            raise MissingPointsConfigError(f"{item_label}: not an object")
        _reject_unknown(item, {"durationMinutes", "points", "operator", "description"}, item_label)
        operator: object = item.get("operator", "greater_than_or_equal")
        if operator not in _DURATION_OPERATORS:
            raise MissingPointsConfigError(f"{item_label}: unknown operator '{operator}'")
        minutes: int = _points(item, "durationMinutes", item_label)
        tiers.append(
            DurationTier(
                minutes,
                _points(item, "points", item_label),
                exclusive=operator == "greater_than",
                label=str(item.get("description") or f"duration_{minutes}"),
            )
        )
    default: int = _points(config, "defaultPoints", label) if "defaultPoints" in config else 0
    # Stable: equal thresholds keep their configured order.
    return DurationTiers(tuple(sorted(tiers, key=lambda t: t.minutes, reverse=True)), default)


def _duration_based(config: Mapping[str, object], label: str) -> DurationTiers:
    if "conditions" in config:
        return _duration_conditions(config, label)
    tiers: list[DurationTier] = []
    for key in config:
        m = _DURATION_KEY.match(key)
        if m is None:
            raise MissingPointsConfigError(f"{label}: unknown points_config key(s) {key}")
        tiers.append(DurationTier(int(m.group(1)), _points(config, key, label), label=key))
    if not tiers:
        raise MissingPointsConfigError(f"{label}: duration_based needs a duration_N key")
    return DurationTiers(tuple(sorted(tiers, key=lambda t: t.minutes, reverse=True)))


def _age_based(config: Mapping[str, object], label: str) -> AgeBrackets:
    brackets: list[tuple[int, int | None, int, str]] = []
    for key in config:
        m = _AGE_KEY.match(key)
        if m is None:
            raise MissingPointsConfigError(f"{label}: unknown points_config key(s) {key}")
        low: int = int(m.group(1))
        high: int | None = int(m.group(2)) if m.group(2) is not None else None
        if high is not None and high <= low:
            raise MissingPointsConfigError(f"{label}: empty age bracket '{key}'")
        brackets.append((low, high, _points(config, key, label), key))
    if not brackets:
        raise MissingPointsConfigError(f"{label}: age_based needs an age_MIN[_MAX] key")
    return AgeBrackets(tuple(sorted(brackets, key=lambda b: b[0])))


def compile_points(
    points_type: str,
    fixed_points: object,
    conditional_pattern: str | None,
    points_config: Mapping[str, object] | None,
    label: str,
) -> PointsStrategy:
    """Build the strategy for one rule. ``label`` prefixes error messages."""
    try:
        kind: PointsType = PointsType(points_type)
    except ValueError:
        raise UnknownPatternError(f"{label}: unknown points_type '{points_type}'") from None
    if kind is PointsType.FIXED:
        return _fixed(fixed_points, label)

    try:
        pattern: ConditionalPattern = ConditionalPattern(conditional_pattern or "")
    except ValueError:
        raise UnknownPatternError(
            f"{label}: unknown conditional_pattern '{conditional_pattern}'"
        ) from None
    config: Mapping[str, object] = points_config or {}

    match pattern:
        case ConditionalPattern.MONTHLY_14DAY_THRESHOLD:
            _reject_unknown(config, {"up_to_14", "after_14"}, label)
            return Monthly14DayThreshold(
                _points(config, "up_to_14", label), _points(config, "after_14", label)
            )
        case ConditionalPattern.TIME_BASED:
            return _time_based(config, label)
        case ConditionalPattern.DURATION_BASED:
            return _duration_based(config, label)
        case ConditionalPattern.AGE_BASED:
            return _age_based(config, label)
        case ConditionalPattern.BUILDING_OCCUPANCY:
            _reject_unknown(config, {"occupancy_1_2", "occupancy_3_plus"}, label)
            return BuildingOccupancyPoints(
                _points(config, "occupancy_1_2", label),
                _points(config, "occupancy_3_plus", label),
            )
        case ConditionalPattern.VISIT_COUNT:
            _reject_unknown(config, {"visit_1", "visit_2", "visit_3_plus"}, label)
            return VisitCountPoints(
                _points(config, "visit_1", label) if "visit_1" in config else 0,
                _points(config, "visit_2", label),
                _points(config, "visit_3_plus", label),
            )


# -- Evaluation ---------------------------------------------------------------


def _require_int(ctx: EvaluationContext, name: FactName) -> int:
    value: object = ctx.fact(name)
    if ctx.is_missing(name.value) or not isinstance(value, int):
        raise DataQualityError(f"{name.value} is required but missing")
    return value


def compute(strategy: PointsStrategy, ctx: EvaluationContext) -> PointsOutcome:
    match strategy:
        case FixedPoints(points=points):
            return PointsOutcome(points, "fixed_points")

        case Monthly14DayThreshold():
            ordinal: int = _require_int(ctx, FactName.VISIT_ORDINAL_IN_MONTH)
            if ordinal <= MONTHLY_THRESHOLD_DAYS:
                return PointsOutcome(strategy.up_to_14, "up_to_14")
            return PointsOutcome(strategy.after_14, "after_14")

        case TimeBasedPoints():
            start: time | None = ctx.start_time
            if start is None:
                raise DataQualityError("visitStartTime is required but missing")
            bucket: TimeBucket = time_bucket(start)
            return PointsOutcome(dict(strategy.buckets).get(bucket, 0), bucket.value)

        case DurationTiers():
            minutes: int = _require_int(ctx, FactName.VISIT_DURATION)
            for tier in strategy.tiers:
                if minutes > tier.minutes or (minutes == tier.minutes and not tier.exclusive):
                    return PointsOutcome(tier.points, tier.label or f"duration_{tier.minutes}")
            return PointsOutcome(strategy.default, "below_threshold")

        case AgeBrackets():
            age: int = _require_int(ctx, FactName.PATIENT_AGE)
            for low, high, points, key in strategy.brackets:
                if age >= low and (high is None or age < high):
                    return PointsOutcome(points, key)
            return PointsOutcome(0, "no_match")

        case BuildingOccupancyPoints():
            # Without a building the patient is the only resident.
            if ctx.fact(FactName.HAS_BUILDING) is not True:
                return PointsOutcome(strategy.occupancy_1_2, "occupancy_1_2")
            occupancy: int = _require_int(ctx, FactName.BUILDING_OCCUPANCY)
            if occupancy <= LOW_OCCUPANCY_MAX:
                return PointsOutcome(strategy.occupancy_1_2, "occupancy_1_2")
            return PointsOutcome(strategy.occupancy_3_plus, "occupancy_3_plus")

        case VisitCountPoints():
            count: int = _require_int(ctx, FactName.DAILY_VISIT_COUNT)
            if count <= 1:
                return PointsOutcome(strategy.visit_1, "visit_1")
            if count == 2:
                return PointsOutcome(strategy.visit_2, "visit_2")
            return PointsOutcome(strategy.visit_3_plus, "visit_3_plus")


def compute_points(rule: "BonusRule", ctx: EvaluationContext) -> int:
    """Point value of a rule whose conditions already passed."""
    return compute(rule.strategy, ctx).points
