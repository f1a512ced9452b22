"""Bonus evaluation for one visit: facts -> versions -> conditions -> points -> combination."""

from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date, tzinfo

import structlog

from config import EngineSettings
from db.enums import InsuranceType
from nursebonus.services._types import (
    AppliedBonusDict,
    DataQualityIssueDict,
    EvaluationResultDict,
    SuppressedBonusDict,
    VisitBundle,
)
from nursebonus.services.catalog import BonusCatalog, BonusRule
from nursebonus.services.combination import ResolvedCombination, resolve
from nursebonus.services.conditions import ConditionOutcome, check_conditions
from nursebonus.services.errors import DataQualityError
from nursebonus.services.facts import DEFAULT_TIMEZONE, EvaluationContext, FactName, extract
from nursebonus.services.points import PointsOutcome, compute

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class AppliedBonus:
    code: str
    version: str
    points: int
    name: str = ""
    bonus_master_id: str | None = None
    matched: str = ""
    conditions_passed: tuple[str, ...] = ()

    def to_dict(self) -> AppliedBonusDict:
        return {
            "code": self.code,
            "name": self.name,
            "version": self.version,
            "points": self.points,
            "bonus_master_id": self.bonus_master_id,
            "matched": self.matched,
            "conditions_passed": list(self.conditions_passed),
        }


@dataclass(frozen=True, slots=True)
class SuppressedBonus:
    code: str
    version: str
    suppressed_by: str


@dataclass(frozen=True, slots=True)
class DataQualityIssue:
    code: str
    detail: str


@dataclass(frozen=True, slots=True)
class EvaluationResult:
    """Applied bonuses in (display_order, code) order and their point total."""

    visit_date: date | None
    applied: tuple[AppliedBonus, ...] = ()
    total_points: int = 0
    suppressed: tuple[SuppressedBonus, ...] = ()
    diagnostics: tuple[DataQualityIssue, ...] = ()

    @property
    def codes(self) -> list[str]:
        return [a.code for a in self.applied]

    def to_dict(self) -> EvaluationResultDict:
        suppressed: list[SuppressedBonusDict] = [
            {"code": s.code, "version": s.version, "suppressed_by": s.suppressed_by}
            for s in self.suppressed
        ]
        diagnostics: list[DataQualityIssueDict] = [
            {"code": d.code, "detail": d.detail} for d in self.diagnostics
        ]
        return {
            "visit_date": self.visit_date.isoformat() if self.visit_date else None,
            "applied": [a.to_dict() for a in self.applied],
            "total_points": self.total_points,
            "suppressed": suppressed,
            "diagnostics": diagnostics,
        }


def evaluate_context(ctx: EvaluationContext, catalog: BonusCatalog) -> EvaluationResult:
    """Evaluate every code in ``catalog`` against prepared facts.

    ConfigurationError from version selection propagates; a rule that cannot
    be priced for lack of data is skipped and reported in ``diagnostics``.
    """
    visit_date: date | None = ctx.visit_date
    if visit_date is None:
        logger.warning("data_quality_issue", detail="visit has no date")
        return EvaluationResult(
            visit_date=None,
            diagnostics=(DataQualityIssue("", "visitDate is required but missing"),),
        )

    issues: list[DataQualityIssue] = []
    satisfied: list[BonusRule] = []
    priced: dict[tuple[str, str], tuple[PointsOutcome, list[ConditionOutcome]]] = {}

    raw_insurance: object = ctx.fact(FactName.INSURANCE_TYPE)
    insurance_type: InsuranceType | None = None
    if raw_insurance:
        try:
            insurance_type = InsuranceType(raw_insurance)
        except ValueError:
            # Unfiltered; rules can still gate on insuranceType themselves.
            issues.append(DataQualityIssue("", f"unknown insuranceType '{raw_insurance}'"))

    for code in catalog.codes(insurance_type):
        rule: BonusRule | None = catalog.select_version(code, visit_date)
        if rule is None:
            continue

        passed, outcomes = check_conditions(rule.conditions, ctx)
        issues.extend(DataQualityIssue(code, o.issue) for o in outcomes if o.issue)
        if not passed:
            continue

        try:
            outcome: PointsOutcome = compute(rule.strategy, ctx)
        except DataQualityError as exc:
            logger.warning("data_quality_issue", code=code, detail=str(exc))
            issues.append(DataQualityIssue(code, str(exc)))
            continue
        if outcome.points <= 0:
            continue

        satisfied.append(rule)
        priced[rule.key] = (outcome, outcomes)

    resolved: ResolvedCombination = resolve(satisfied, catalog.graph)
    applied: list[AppliedBonus] = []
    for rule in resolved.kept:
        outcome, outcomes = priced[rule.key]
        applied.append(
            AppliedBonus(
                code=rule.code,
                version=rule.version,
                points=outcome.points,
                name=rule.name,
                bonus_master_id=rule.id,
                matched=outcome.matched,
                conditions_passed=tuple(o.reason for o in outcomes),
            )
        )

    result: EvaluationResult = EvaluationResult(
        visit_date=visit_date,
        applied=tuple(applied),
        total_points=sum(a.points for a in applied),
        suppressed=tuple(
            SuppressedBonus(s.rule.code, s.rule.version, s.suppressed_by.code)
            for s in resolved.suppressed
        ),
        diagnostics=tuple(issues),
    )
    logger.debug(
        "visit_evaluated",
        visit_date=visit_date.isoformat(),
        applied=result.codes,
        total_points=result.total_points,
        suppressed=len(result.suppressed),
    )
    return result


def evaluate(
    visit: Mapping[str, object] | None,
    patient: Mapping[str, object] | None,
    schedule: Mapping[str, object] | None,
    facility_config: Mapping[str, object] | None,
    catalog: BonusCatalog | Iterable[Mapping[str, object]],
    tz: tzinfo = DEFAULT_TIMEZONE,
) -> EvaluationResult:
    """Evaluate one visit. ``catalog`` may be a loaded catalog or raw bonus_master rows."""
    bonus_catalog: BonusCatalog = (
        catalog if isinstance(catalog, BonusCatalog) else BonusCatalog.load(catalog)
    )
    return evaluate_context(extract(visit, patient, schedule, facility_config, tz), bonus_catalog)


class BonusEngine:
    """A loaded catalog plus engine settings, shared read-only across threads."""

    def __init__(
        self,
        catalog: BonusCatalog | Iterable[Mapping[str, object]],
        settings: EngineSettings | None = None,
    ) -> None:
        self.catalog: BonusCatalog = (
            catalog if isinstance(catalog, BonusCatalog) else BonusCatalog.load(catalog)
        )
        self.settings: EngineSettings = settings or EngineSettings()
        self._tz: tzinfo = self.settings.tzinfo

    def evaluate(
        self,
        visit: Mapping[str, object] | None,
        patient: Mapping[str, object] | None = None,
        schedule: Mapping[str, object] | None = None,
        facility_config: Mapping[str, object] | None = None,
    ) -> EvaluationResult:
        return evaluate(visit, patient, schedule, facility_config, self.catalog, self._tz)

    def _evaluate_bundle(self, bundle: VisitBundle) -> EvaluationResult:
        return self.evaluate(
            bundle.get("visit"),
            bundle.get("patient"),
            bundle.get("schedule"),
            bundle.get("facility_config"),
        )

    def evaluate_many(
        self, bundles: Iterable[VisitBundle], max_workers: int | None = None
    ) -> list[EvaluationResult]:
        """Evaluate visits concurrently; results keep input order.

        The first ConfigurationError raised by any visit is re-raised.
        """
        items: list[VisitBundle] = list(bundles)
        if not items:
            return []
        workers: int = max_workers or self.settings.max_workers
        if workers <= 1 or len(items) == 1:
            return [self._evaluate_bundle(b) for b in items]
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(self._evaluate_bundle, items))
