"""Bonus catalog: typed rules, per-code version index and version selection."""

import bisect
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date

import structlog

from db.enums import InsuranceType
from nursebonus.services._helpers import load_json, load_json_list, parse_date
from nursebonus.services.combination import ConflictGraph
from nursebonus.services.conditions import Condition, compile_conditions
from nursebonus.services.errors import CatalogError, ConfigurationError, VersionSelectionError
from nursebonus.services.points import PointsStrategy, compile_points

logger = structlog.get_logger(__name__)

RuleKey = tuple[str, str]


def _pick(data: Mapping[str, object], *keys: str, default: object = None) -> object:
    """First present key; rows arrive either snake_case (ORM) or camelCase (API)."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _json_list(raw: object, column: str) -> list[object]:
    if isinstance(raw, str):
        try:
            return load_json_list(raw)
        except ValueError:
            raise ConfigurationError(f"invalid JSON in {column}") from None
    if isinstance(raw, Mapping):
        return [raw]
    return list(raw) if isinstance(raw, (list, tuple)) else []


def _json_dict(raw: object, column: str) -> dict[str, object] | None:
    if isinstance(raw, str):
        try:
            return load_json(raw)
        except ValueError:
            raise ConfigurationError(f"invalid JSON in {column}") from None
    return dict(raw) if isinstance(raw, Mapping) else None


def parse_codes(raw: object, column: str = "cannot_combine_with") -> frozenset[str]:
    """Decode a combination list column (JSON text or a sequence) into a set of codes."""
    return frozenset(str(c) for c in _json_list(raw, column) if c not in (None, ""))


@dataclass(frozen=True, slots=True)
class BonusRule:
    """One version of one bonus code, compiled and validated."""

    code: str
    name: str
    category: str
    insurance_type: InsuranceType
    version: str
    valid_from: date
    valid_to: date | None
    strategy: PointsStrategy
    conditions: tuple[Condition, ...] = ()
    can_combine_with: frozenset[str] = field(default_factory=frozenset)
    cannot_combine_with: frozenset[str] = field(default_factory=frozenset)
    display_order: int = 999
    is_active: bool = True
    id: str | None = None
    facility_id: str | None = None

    @property
    def key(self) -> RuleKey:
        return (self.code, self.version)

    @property
    def priority(self) -> tuple[int, str]:
        """Sort key: lower display_order first, then code."""
        return (self.display_order, self.code)

    def covers(self, day: date) -> bool:
        return self.valid_from <= day and (self.valid_to is None or day < self.valid_to)

    def overlaps(self, other: "BonusRule") -> bool:
        starts_before_other_ends: bool = other.valid_to is None or self.valid_from < other.valid_to
        ends_after_other_starts: bool = self.valid_to is None or other.valid_from < self.valid_to
        return starts_before_other_ends and ends_after_other_starts

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "BonusRule":
        """Compile a bonus_master row. Raises ConfigurationError describing the first defect."""
        code: str = str(_pick(data, "code", "bonus_code", "bonusCode", default="")).strip()
        if not code:
            raise ConfigurationError("bonus rule has no code")
        version: str = str(_pick(data, "version", default="")).strip()
        label: str = f"{code}@{version or '?'}"
        if not version:
            raise ConfigurationError(f"{label}: missing version")

        raw_insurance: object = _pick(data, "insurance_type", "insuranceType")
        try:
            insurance_type: InsuranceType = InsuranceType(raw_insurance)
        except ValueError:
            raise ConfigurationError(f"{label}: unknown insurance_type '{raw_insurance}'") from None

        valid_from: date | None = parse_date(_pick(data, "valid_from", "validFrom"))
        if valid_from is None:
            raise ConfigurationError(f"{label}: missing or invalid valid_from")
        raw_to: object = _pick(data, "valid_to", "validTo")
        valid_to: date | None = parse_date(raw_to)
        if raw_to not in (None, "") and valid_to is None:
            raise ConfigurationError(f"{label}: invalid valid_to '{raw_to}'")
        if valid_to is not None and valid_to <= valid_from:
            raise ConfigurationError(f"{label}: valid_to must be after valid_from")

        try:
            points_config: dict[str, object] | None = _json_dict(
                _pick(data, "points_config", "pointsConfig"), "points_config"
            )
            raw_conditions: list[object] = _json_list(
                _pick(data, "conditions", "predefined_conditions", "predefinedConditions"),
                "predefined_conditions",
            )
            conditions: tuple[Condition, ...] = compile_conditions(raw_conditions)
            can: frozenset[str] = parse_codes(
                _pick(data, "can_combine_with", "canCombineWith"), "can_combine_with"
            )
            cannot: frozenset[str] = parse_codes(
                _pick(data, "cannot_combine_with", "cannotCombineWith"), "cannot_combine_with"
            )
        except ConfigurationError as exc:
            raise ConfigurationError(f"{label}: {exc}") from exc

        strategy: PointsStrategy = compile_points(
            _pick(data, "points_type", "pointsType", default="fixed"),
            _pick(data, "fixed_points", "fixedPoints"),
            _pick(data, "conditional_pattern", "conditionalPattern"),
            points_config,
            label,
        )

        both: frozenset[str] = can & cannot
        if both:
            raise ConfigurationError(
                f"{label}: {', '.join(sorted(both))} listed as both combinable and not combinable"
            )

        raw_order: object = _pick(data, "display_order", "displayOrder", default=999)
        if isinstance(raw_order, bool) or not isinstance(raw_order, int):
            raise ConfigurationError(f"{label}: display_order must be an integer")

        raw_id: object = _pick(data, "id")
        raw_facility: object = _pick(data, "facility_id", "facilityId")
        return cls(
            code=code,
            name=str(_pick(data, "name", "bonus_name", "bonusName", default=code)),
            category=str(_pick(data, "category", "bonus_category", "bonusCategory", default="")),
            insurance_type=insurance_type,
            version=version,
            valid_from=valid_from,
            valid_to=valid_to,
            strategy=strategy,
            conditions=conditions,
            can_combine_with=can,
            cannot_combine_with=cannot,
            display_order=raw_order,
            is_active=bool(_pick(data, "is_active", "isActive", default=True)),
            id=str(raw_id) if raw_id is not None else None,
            facility_id=str(raw_facility) if raw_facility is not None else None,
        )


def _overlap_issues(rules: Iterable[BonusRule]) -> list[str]:
    by_code: dict[str, list[BonusRule]] = defaultdict(list)
    for rule in rules:
        if rule.is_active:
            by_code[rule.code].append(rule)
    issues: list[str] = []
    for code in sorted(by_code):
        versions: list[BonusRule] = sorted(by_code[code], key=lambda r: r.valid_from)
        for i, earlier in enumerate(versions):
            for later in versions[i + 1:]:
                if earlier.overlaps(later):
                    issues.append(
                        f"{code}: versions {earlier.version} and {later.version} "
                        "have overlapping validity windows"
                    )
    return issues


class BonusCatalog:
    """Read-only rule catalog indexed by code, with its conflict graph.

    Build with ``BonusCatalog.load`` to validate raw rows. The constructor
    trusts its input, so selection still guards against overlapping versions.
    """

    def __init__(self, rules: Iterable[BonusRule]) -> None:
        self.rules: tuple[BonusRule, ...] = tuple(rules)
        index: dict[str, list[BonusRule]] = defaultdict(list)
        for rule in self.rules:
            if rule.is_active:
                index[rule.code].append(rule)
        self._versions: dict[str, tuple[BonusRule, ...]] = {
            code: tuple(sorted(versions, key=lambda r: (r.valid_from, r.version)))
            for code, versions in index.items()
        }
        self._starts: dict[str, list[date]] = {
            code: [r.valid_from for r in versions] for code, versions in self._versions.items()
        }
        self._overlapping: frozenset[str] = frozenset(
            code
            for code, versions in self._versions.items()
            if any(a.overlaps(b) for i, a in enumerate(versions) for b in versions[i + 1:])
        )
        self.graph: ConflictGraph = ConflictGraph.build(
            r for versions in self._versions.values() for r in versions
        )

    @classmethod
    def load(cls, rows: Iterable[Mapping[str, object] | BonusRule]) -> "BonusCatalog":
        """Compile and validate every row; raise CatalogError listing all defects."""
        rules: list[BonusRule] = []
        issues: list[str] = []
        for i, row in enumerate(rows):
            if isinstance(row, BonusRule):
                rules.append(row)
                continue
            try:
                rules.append(BonusRule.from_dict(row))
            except ConfigurationError as exc:
                issues.append(f"row {i}: {exc}")
        issues.extend(_overlap_issues(rules))
        if issues:
            logger.error("catalog_invalid", issue_count=len(issues), first=issues[0])
            raise CatalogError(issues)
        catalog: BonusCatalog = cls(rules)
        logger.debug("catalog_loaded", rules=len(rules), codes=len(catalog._versions))
        return catalog

    def codes(self, insurance_type: InsuranceType | str | None = None) -> list[str]:
        """Distinct active codes, optionally limited to one insurance type."""
        if not insurance_type:
            return sorted(self._versions)
        wanted: str = InsuranceType(insurance_type).value
        return sorted(
            code
            for code, versions in self._versions.items()
            if any(v.insurance_type.value == wanted for v in versions)
        )

    def versions(self, code: str) -> tuple[BonusRule, ...]:
        return self._versions.get(code, ())

    def select_version(self, code: str, visit_date: date) -> BonusRule | None:
        """The single active version of ``code`` in force on ``visit_date``.

        Returns None when the date lies before the first version or after the
        last one has closed. A date inside the code's span with no covering
        version, or with several, is a VersionSelectionError.
        """
        versions: tuple[BonusRule, ...] = self._versions.get(code, ())
        if not versions:
            return None
        i: int = bisect.bisect_right(self._starts[code], visit_date)
        if i == 0:
            return None

        if code in self._overlapping:
            matches: list[BonusRule] = [v for v in versions[:i] if v.covers(visit_date)]
        else:
            candidate: BonusRule = versions[i - 1]
            matches = [candidate] if candidate.covers(visit_date) else []

        if len(matches) > 1:
            raise VersionSelectionError(
                f"{code}: {len(matches)} versions cover {visit_date.isoformat()} "
                f"({', '.join(m.version for m in matches)})"
            )
        if matches:
            return matches[0]

        open_ended: bool = any(v.valid_to is None for v in versions)
        last_end: date | None = max((v.valid_to for v in versions if v.valid_to), default=None)
        if open_ended or (last_end is not None and visit_date < last_end):
            raise VersionSelectionError(
                f"{code}: no version covers {visit_date.isoformat()} (gap between versions)"
            )
        return None


def select_version(
    catalog: BonusCatalog | Sequence[BonusRule], code: str, visit_date: date
) -> BonusRule | None:
    """Functional form of ``BonusCatalog.select_version``."""
    if not isinstance(catalog, BonusCatalog):
        catalog = BonusCatalog(catalog)
    return catalog.select_version(code, visit_date)
