"""Predefined condition compilation and evaluation.

Raw ``predefined_conditions`` entries are compiled once, at catalog load, into
one of four shapes:

- ``FactComparison``: compare a known fact against a value.
- ``FieldPresence``: whether a fact was recorded at all (``field_not_empty``).
- ``PredicateCheck``: ``met``/``not_met`` against a predicate resolved upstream.
- ``UnrecognizedCondition``: a pattern/operator pair the engine cannot
  interpret. It always evaluates False and is reported as a data-quality issue.

Flag-style patterns accept ``{"operator": "equals", "value": <bool>}``; the
flag's outcome must equal the value, so ``false`` inverts it. A fact that had
to be defaulted never satisfies a comparison, inverted or not.

Malformed rules (unknown ``field``, ``in`` without a list, a value whose type
does not match the fact) raise ``ConfigurationError`` while compiling.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass

import structlog

from db.enums import ConditionOperator, TimeBucket
from nursebonus.services.errors import ConfigurationError
from nursebonus.services.facts import EvaluationContext, FactName

logger = structlog.get_logger(__name__)

_NUMERIC_OPERATORS: frozenset[ConditionOperator] = frozenset(
    {ConditionOperator.GTE, ConditionOperator.LTE, ConditionOperator.GT, ConditionOperator.LT}
)

# Marks an alias whose comparison value comes from the condition itself.
_FROM_CONDITION: object = object()

# Legacy pattern names used by existing bonus_master rows.
_PATTERN_ALIASES: dict[str, tuple[FactName | None, ConditionOperator, object]] = {
    "visit_duration_gte": (FactName.VISIT_DURATION, ConditionOperator.GTE, _FROM_CONDITION),
    "visit_duration_lt": (FactName.VISIT_DURATION, ConditionOperator.LT, _FROM_CONDITION),
    "age_gte": (FactName.PATIENT_AGE, ConditionOperator.GTE, _FROM_CONDITION),
    "age_lt": (FactName.PATIENT_AGE, ConditionOperator.LT, _FROM_CONDITION),
    "daily_visit_count_gte": (FactName.DAILY_VISIT_COUNT, ConditionOperator.GTE, _FROM_CONDITION),
    "field_equals": (None, ConditionOperator.EQUALS, _FROM_CONDITION),
    "care_visit_duration_90plus": (FactName.VISIT_DURATION, ConditionOperator.GTE, 90),
    "care_early_morning_time": (
        FactName.VISIT_TIME_BUCKET, ConditionOperator.EQUALS, TimeBucket.EARLY_MORNING.value
    ),
    "medical_early_morning_time": (
        FactName.VISIT_TIME_BUCKET, ConditionOperator.EQUALS, TimeBucket.EARLY_MORNING.value
    ),
    "care_night_time": (FactName.VISIT_TIME_BUCKET, ConditionOperator.EQUALS, TimeBucket.NIGHT.value),
    "medical_night_time": (
        FactName.VISIT_TIME_BUCKET, ConditionOperator.EQUALS, TimeBucket.NIGHT.value
    ),
    "care_late_night_time": (
        FactName.VISIT_TIME_BUCKET, ConditionOperator.EQUALS, TimeBucket.LATE_NIGHT.value
    ),
    "medical_late_night_time": (
        FactName.VISIT_TIME_BUCKET, ConditionOperator.EQUALS, TimeBucket.LATE_NIGHT.value
    ),
}

# Presence patterns; None means the condition names the field.
_PRESENCE_PATTERNS: dict[str, FactName | None] = {
    "field_not_empty": None,
    # The band itself is priced by the time_based points strategy.
    "time_based": FactName.VISIT_START_TIME,
}

# Checks that need visit history; callers resolve them into "predicate.<pattern>".
_PREDICATE_PATTERNS: frozenset[str] = frozenset({"monthly_visit_limit", "terminal_care_requirement"})


@dataclass(frozen=True, slots=True)
class FactComparison:
    pattern: str
    field: FactName
    operator: ConditionOperator
    value: object
    description: str = ""
    expected: bool = True

    def describe(self) -> str:
        if self.description:
            return self.description
        text: str = f"{self.field.value} {self.operator.value} {self.value!r}"
        return text if self.expected else f"not ({text})"


@dataclass(frozen=True, slots=True)
class FieldPresence:
    pattern: str
    field: FactName
    expected: bool = True
    description: str = ""

    def describe(self) -> str:
        return self.description or f"{self.field.value} {'set' if self.expected else 'empty'}"


@dataclass(frozen=True, slots=True)
class PredicateCheck:
    pattern: str
    expected: bool
    description: str = ""

    def describe(self) -> str:
        return self.description or f"{self.pattern} {'met' if self.expected else 'not_met'}"


@dataclass(frozen=True, slots=True)
class UnrecognizedCondition:
    pattern: str
    operator: str | None
    description: str = ""

    def describe(self) -> str:
        return self.description or f"unrecognized condition {self.pattern!r}/{self.operator!r}"


Condition = FactComparison | FieldPresence | PredicateCheck | UnrecognizedCondition


@dataclass(frozen=True, slots=True)
class ConditionOutcome:
    passed: bool
    reason: str
    issue: str | None = None


# -- Compilation -------------------------------------------------------------


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_kind(field: FactName, value: object, label: str) -> None:
    kind: type = field.kind
    if kind is bool:
        ok: bool = isinstance(value, bool)
    elif kind is int:
        ok = _is_number(value)
    else:
        ok = isinstance(value, str)
    if not ok:
        raise ConfigurationError(
            f"condition '{label}': {value!r} is not a {kind.__name__} value for '{field.value}'"
        )


def _checked_value(
    field: FactName, operator: ConditionOperator, value: object, pattern: str
) -> object:
    label: str = pattern or field.value
    match operator:
        case ConditionOperator.IN:
            if not isinstance(value, (list, tuple)):
                raise ConfigurationError(f"condition '{label}': 'in' requires a list value")
            for item in value:
                _check_kind(field, item, label)
            return tuple(value)
        case ConditionOperator.GTE | ConditionOperator.LTE | ConditionOperator.GT | ConditionOperator.LT:
            if not _is_number(value):
                raise ConfigurationError(
                    f"condition '{label}': '{operator.value}' requires a numeric value"
                )
            if field.kind is not int:
                raise ConfigurationError(
                    f"condition '{label}': '{field.value}' is not a numeric fact"
                )
            return value
        case _:
            if value is None:
                if field.kind is not bool:
                    raise ConfigurationError(f"condition '{label}': 'equals' requires a value")
                return True
            _check_kind(field, value, label)
            return value


def _expected_flag(operator: ConditionOperator | None, value: object) -> bool | None:
    """Outcome a flag-style condition asks for, or None if the pair is meaningless."""
    if operator is None:
        return True
    if operator is ConditionOperator.EQUALS:
        if value is None:
            return True
        if isinstance(value, bool):
            return value
    return None


def compile_condition(raw: Mapping[str, object]) -> Condition:
    """Compile one raw condition dict. Raises ConfigurationError for malformed rules."""
    pattern: str = str(raw.get("pattern") or raw.get("type") or "")
    description: str = str(raw.get("description") or "")
    value: object = raw.get("value")

    field: FactName | None = None
    raw_field: object = raw.get("field")
    if raw_field is not None:
        field = FactName.resolve(str(raw_field))
        if field is None:
            raise ConfigurationError(f"condition '{pattern}': unknown field '{raw_field}'")

    raw_operator: object = raw.get("operator")
    operator: ConditionOperator | None = None
    if raw_operator is not None:
        try:
            operator = ConditionOperator(str(raw_operator))
        except ValueError:
            return UnrecognizedCondition(pattern, str(raw_operator), description)

    if operator in (ConditionOperator.MET, ConditionOperator.NOT_MET):
        if not pattern:
            raise ConfigurationError(f"'{operator.value}' condition requires a pattern")
        return PredicateCheck(pattern, operator is ConditionOperator.MET, description)

    if pattern in _PREDICATE_PATTERNS or pattern in _PRESENCE_PATTERNS:
        expected: bool | None = _expected_flag(operator, value)
        if expected is None:
            return UnrecognizedCondition(pattern, operator.value, description)
        if pattern in _PREDICATE_PATTERNS:
            return PredicateCheck(pattern, expected, description)
        target: FactName | None = field or _PRESENCE_PATTERNS[pattern]
        if target is None:
            raise ConfigurationError(f"condition '{pattern}': a field is required")
        return FieldPresence(pattern, target, expected, description)

    alias = _PATTERN_ALIASES.get(pattern)
    if alias is not None:
        alias_field, alias_operator, alias_value = alias
        field = field or alias_field
        if field is None:
            raise ConfigurationError(f"condition '{pattern}': a field is required")
        if alias_value is _FROM_CONDITION:
            if operator not in (None, alias_operator):
                return UnrecognizedCondition(pattern, operator.value, description)
            checked: object = _checked_value(field, alias_operator, value, pattern)
            return FactComparison(pattern, field, alias_operator, checked, description)
        flag: bool | None = _expected_flag(operator, value)
        if flag is None:
            return UnrecognizedCondition(pattern, operator.value, description)
        return FactComparison(pattern, field, alias_operator, alias_value, description, flag)

    if field is None and pattern:
        field = FactName.resolve(pattern)
    if field is None:
        return UnrecognizedCondition(
            pattern, str(raw_operator) if raw_operator is not None else None, description
        )

    if operator is None:
        if field.kind is not bool:
            raise ConfigurationError(
                f"condition '{pattern or field.value}': '{field.value}' is not a boolean fact"
            )
        return FactComparison(pattern, field, ConditionOperator.EQUALS, True, description)

    return FactComparison(
        pattern, field, operator, _checked_value(field, operator, value, pattern), description
    )


def compile_conditions(raw: Sequence[object]) -> tuple[Condition, ...]:
    compiled: list[Condition] = []
    for i, item in enumerate(raw):
        if not isinstance(item, Mapping):
            raise ConfigurationError(f"condition {i} is not an object")
        compiled.append(compile_condition(item))
    return tuple(compiled)


# -- Evaluation ---------------------------------------------------------------


def _compare(condition: FactComparison, ctx: EvaluationContext) -> ConditionOutcome:
    key: str = condition.field.value
    if ctx.is_missing(key):
        return ConditionOutcome(False, f"{key} unavailable", f"{key} is missing")
    actual: object = ctx.get(key)
    expected: object = condition.value

    if condition.operator in _NUMERIC_OPERATORS:
        if not _is_number(actual):
            return ConditionOutcome(False, f"{key} unavailable", f"{key} is not numeric")
        match condition.operator:
            case ConditionOperator.GTE:
                passed = actual >= expected
            case ConditionOperator.LTE:
                passed = actual <= expected
            case ConditionOperator.GT:
                passed = actual > expected
            case _:
                passed = actual < expected
        reason: str = f"{key}={actual!r} {condition.operator.value} {expected!r}"
    elif condition.operator is ConditionOperator.IN:
        passed = actual in expected
        reason = f"{key}={actual!r} in {list(expected)!r}"
    else:
        passed = actual == expected
        reason = f"{key}={actual!r} equals {expected!r}"

    if not condition.expected:
        return ConditionOutcome(not passed, f"not ({reason})")
    return ConditionOutcome(passed, reason)


def evaluate_condition(
    condition: Condition | Mapping[str, object], ctx: EvaluationContext
) -> ConditionOutcome:
    if isinstance(condition, Mapping):
        condition = compile_condition(condition)

    match condition:
        case FactComparison():
            outcome: ConditionOutcome = _compare(condition, ctx)
        case FieldPresence():
            key: str = condition.field.value
            present: bool = not ctx.is_missing(key) and ctx.get(key) not in (None, "")
            outcome = ConditionOutcome(
                present is condition.expected, f"{key} {'set' if present else 'empty'}"
            )
        case PredicateCheck():
            flag: bool | None = ctx.predicate(condition.pattern)
            if flag is None:
                outcome = ConditionOutcome(
                    False,
                    f"{condition.pattern} unresolved",
                    f"predicate '{condition.pattern}' was not supplied",
                )
            else:
                outcome = ConditionOutcome(
                    flag is condition.expected, f"{condition.pattern}={flag}"
                )
        case UnrecognizedCondition():
            outcome = ConditionOutcome(
                False,
                condition.describe(),
                f"unrecognized pattern/operator {condition.pattern!r}/{condition.operator!r}",
            )
        case _:
            outcome = ConditionOutcome(
                False, "unsupported condition", f"unsupported condition {condition!r}"
            )

    if outcome.issue is not None:
        logger.warning(
            "data_quality_issue",
            pattern=getattr(condition, "pattern", None),
            detail=outcome.issue,
        )
    return outcome


def check_conditions(
    conditions: Sequence[Condition | Mapping[str, object]], ctx: EvaluationContext
) -> tuple[bool, list[ConditionOutcome]]:
    """AND all conditions, stopping at the first failure. Returns the outcomes seen."""
    outcomes: list[ConditionOutcome] = []
    for condition in conditions:
        outcome: ConditionOutcome = evaluate_condition(condition, ctx)
        outcomes.append(outcome)
        if not outcome.passed:
            return False, outcomes
    return True, outcomes


def evaluate_conditions(
    conditions: Sequence[Condition | Mapping[str, object]], ctx: EvaluationContext
) -> bool:
    """True iff every condition holds. An empty list always holds."""
    passed, _ = check_conditions(conditions, ctx)
    return passed
