"""Tests for nursebonus.services.conditions."""

import pytest

from db.enums import ConditionOperator
from nursebonus.services.conditions import (
    Condition,
    ConditionOutcome,
    FactComparison,
    FieldPresence,
    PredicateCheck,
    UnrecognizedCondition,
    check_conditions,
    compile_condition,
    compile_conditions,
    evaluate_condition,
    evaluate_conditions,
)
from nursebonus.services.errors import ConfigurationError
from nursebonus.services.facts import EvaluationContext, FactName, extract


def _ctx(**visit: object) -> EvaluationContext:
    visit.setdefault("visit_date", "2025-06-01")
    return extract(visit, {"insurance_type": "care", "age": 80}, None, None)


class TestCompile:
    def test_bare_boolean_pattern(self) -> None:
        condition: Condition = compile_condition({"pattern": "is_discharge_date"})
        assert isinstance(condition, FactComparison)
        assert condition.field is FactName.IS_DISCHARGE_DATE
        assert condition.operator is ConditionOperator.EQUALS
        assert condition.value is True

    def test_type_is_a_synonym_for_pattern(self) -> None:
        condition: Condition = compile_condition({"type": "is_second_visit"})
        assert isinstance(condition, FactComparison)
        assert condition.field is FactName.IS_SECOND_VISIT

    def test_legacy_duration_alias(self) -> None:
        condition: Condition = compile_condition({"pattern": "care_visit_duration_90plus"})
        assert isinstance(condition, FactComparison)
        assert condition.field is FactName.VISIT_DURATION
        assert condition.operator is ConditionOperator.GTE
        assert condition.value == 90

    def test_field_equals_requires_field(self) -> None:
        with pytest.raises(ConfigurationError):
            compile_condition({"pattern": "field_equals", "value": 1})

    def test_met_becomes_predicate_check(self) -> None:
        condition: Condition = compile_condition({"pattern": "doctor_instruction", "operator": "not_met"})
        assert isinstance(condition, PredicateCheck)
        assert condition.expected is False

    def test_unknown_operator_is_unrecognized_not_fatal(self) -> None:
        condition: Condition = compile_condition(
            {"pattern": "visit_duration", "operator": "between", "value": [1, 2]}
        )
        assert isinstance(condition, UnrecognizedCondition)

    def test_unknown_pattern_without_field_is_unrecognized(self) -> None:
        assert isinstance(compile_condition({"pattern": "moon_phase_full"}), UnrecognizedCondition)

    @pytest.mark.parametrize(
        "raw",
        [
            {"pattern": "x", "field": "noSuchFact", "operator": "equals", "value": 1},
            {"pattern": "x", "field": "patientAge", "operator": "in", "value": 80},
            {"pattern": "x", "field": "patientAge", "operator": "gte", "value": "eighty"},
            {"pattern": "x", "field": "insuranceType", "operator": "gte", "value": 1},
            {"pattern": "x", "field": "patientAge", "operator": "equals"},
            {"pattern": "x", "field": "multipleVisitReason", "operator": "equals", "value": True},
            {"pattern": "x", "field": "patientAge", "operator": "equals", "value": "80"},
            {"pattern": "x", "field": "isSecondVisit", "operator": "equals", "value": "yes"},
            {"pattern": "x", "field": "insuranceType", "operator": "in", "value": ["care", 1]},
            {"pattern": "visit_duration"},
        ],
    )
    def test_malformed_rules_raise(self, raw: dict[str, object]) -> None:
        with pytest.raises(ConfigurationError):
            compile_condition(raw)

    def test_non_mapping_item_raises(self) -> None:
        with pytest.raises(ConfigurationError):
            compile_conditions(["is_discharge_date"])

    def test_field_not_empty_row(self) -> None:
        condition: Condition = compile_condition(
            {
                "field": "multipleVisitReason",
                "value": True,
                "pattern": "field_not_empty",
                "operator": "equals",
                "description": "訪問記録の複数回訪問理由に入力あり",
            }
        )
        assert condition == FieldPresence(
            "field_not_empty",
            FactName.MULTIPLE_VISIT_REASON,
            True,
            "訪問記録の複数回訪問理由に入力あり",
        )

    def test_field_not_empty_requires_field(self) -> None:
        with pytest.raises(ConfigurationError):
            compile_condition({"pattern": "field_not_empty"})

    def test_time_based_condition_checks_start_time(self) -> None:
        condition: Condition = compile_condition({"pattern": "time_based"})
        assert isinstance(condition, FieldPresence)
        assert condition.field is FactName.VISIT_START_TIME

    def test_monthly_visit_limit_is_resolved_upstream(self) -> None:
        condition: Condition = compile_condition({"pattern": "monthly_visit_limit", "value": 1})
        assert condition == PredicateCheck("monthly_visit_limit", True)

    def test_flag_alias_equals_false_inverts(self) -> None:
        condition: Condition = compile_condition(
            {"pattern": "medical_night_time", "operator": "equals", "value": False}
        )
        assert isinstance(condition, FactComparison)
        assert condition.expected is False

    def test_flag_alias_with_non_boolean_value_is_unrecognized(self) -> None:
        condition: Condition = compile_condition(
            {"pattern": "care_night_time", "operator": "equals", "value": "night"}
        )
        assert isinstance(condition, UnrecognizedCondition)


class TestEvaluate:
    def test_empty_list_is_satisfied(self) -> None:
        assert evaluate_conditions((), _ctx()) is True

    def test_numeric_comparisons(self) -> None:
        ctx: EvaluationContext = _ctx(visit_duration_minutes=90)
        gte: Condition = compile_condition(
            {"pattern": "x", "field": "visitDuration", "operator": "gte", "value": 90}
        )
        lt: Condition = compile_condition(
            {"pattern": "x", "field": "visitDuration", "operator": "lt", "value": 90}
        )
        assert evaluate_condition(gte, ctx).passed is True
        assert evaluate_condition(lt, ctx).passed is False

    def test_in_operator(self) -> None:
        condition: Condition = compile_condition(
            {"pattern": "x", "field": "insuranceType", "operator": "in", "value": ["care"]}
        )
        assert evaluate_condition(condition, _ctx()).passed is True

    def test_missing_numeric_fact_fails_closed_with_issue(self) -> None:
        condition: Condition = compile_condition(
            {"pattern": "x", "field": "buildingOccupancy", "operator": "lte", "value": 2}
        )
        outcome: ConditionOutcome = evaluate_condition(condition, _ctx())
        assert outcome.passed is False
        assert outcome.issue is not None

    def test_unresolved_predicate_fails_closed(self) -> None:
        condition: Condition = compile_condition({"pattern": "doctor_instruction", "operator": "met"})
        outcome: ConditionOutcome = evaluate_condition(condition, _ctx())
        assert outcome.passed is False
        assert outcome.issue is not None

        resolved: EvaluationContext = _ctx(predicates={"doctor_instruction": True})
        assert evaluate_condition(condition, resolved).passed is True

    def test_unrecognized_condition_is_false(self) -> None:
        condition: Condition = compile_condition({"pattern": "moon_phase_full"})
        outcome: ConditionOutcome = evaluate_condition(condition, _ctx())
        assert outcome.passed is False
        assert outcome.issue is not None

    def test_all_conditions_must_hold_and_evaluation_stops_at_first_failure(self) -> None:
        conditions: tuple[Condition, ...] = compile_conditions(
            [
                {"pattern": "is_second_visit"},
                {"pattern": "moon_phase_full"},
            ]
        )
        passed, outcomes = check_conditions(conditions, _ctx())
        assert passed is False
        assert len(outcomes) == 1

    def test_time_alias_matches_bucket(self) -> None:
        condition: Condition = compile_condition({"pattern": "care_late_night_time"})
        assert evaluate_condition(condition, _ctx(actual_start_time="05:59:59")).passed is True
        assert evaluate_condition(condition, _ctx(actual_start_time="06:00:00")).passed is False

    @pytest.mark.parametrize(
        "raw",
        [
            {"pattern": "x", "field": "patientAge", "operator": "equals", "value": 0},
            {"pattern": "x", "field": "patientAge", "operator": "in", "value": [0, 1, 2]},
            {"pattern": "x", "field": "buildingId", "operator": "equals", "value": ""},
            {"pattern": "x", "field": "emergencyVisitReason", "operator": "in", "value": [""]},
        ],
    )
    def test_defaulted_fact_never_matches_its_placeholder(self, raw: dict[str, object]) -> None:
        ctx: EvaluationContext = extract({"visit_date": "2025-06-01"}, {}, None, None)
        outcome: ConditionOutcome = evaluate_condition(compile_condition(raw), ctx)
        assert outcome.passed is False
        assert outcome.issue is not None

    def test_inverted_time_alias(self) -> None:
        condition: Condition = compile_condition(
            {"pattern": "medical_night_time", "operator": "equals", "value": False}
        )
        assert evaluate_condition(condition, _ctx(actual_start_time="10:00:00")).passed is True
        assert evaluate_condition(condition, _ctx(actual_start_time="19:00:00")).passed is False
        unknown: ConditionOutcome = evaluate_condition(condition, _ctx())
        assert unknown.passed is False
        assert unknown.issue is not None

    def test_field_not_empty(self) -> None:
        condition: Condition = compile_condition(
            {
                "field": "multipleVisitReason",
                "value": True,
                "pattern": "field_not_empty",
                "operator": "equals",
            }
        )
        reason: EvaluationContext = _ctx(multiple_visit_reason="家族の希望")
        assert evaluate_condition(condition, reason).passed is True
        empty: ConditionOutcome = evaluate_condition(condition, _ctx())
        assert empty.passed is False
        assert empty.issue is None

    def test_time_based_condition(self) -> None:
        condition: Condition = compile_condition(
            {"pattern": "time_based", "description": "訪問時刻が夜間または早朝"}
        )
        assert evaluate_condition(condition, _ctx(actual_start_time="19:00:00")).passed is True
        assert evaluate_condition(condition, _ctx()).passed is False

    def test_monthly_visit_limit(self) -> None:
        condition: Condition = compile_condition({"pattern": "monthly_visit_limit", "value": 1})
        within: EvaluationContext = _ctx(predicates={"monthly_visit_limit": True})
        exceeded: EvaluationContext = _ctx(predicates={"monthly_visit_limit": False})
        assert evaluate_condition(condition, within).passed is True
        assert evaluate_condition(condition, exceeded).passed is False
        assert evaluate_condition(condition, _ctx()).issue is not None

    def test_raw_condition_mapping_is_compiled(self) -> None:
        ctx: EvaluationContext = _ctx(is_second_visit=True)
        assert evaluate_condition({"pattern": "is_second_visit"}, ctx).passed is True
        assert evaluate_conditions([{"pattern": "is_second_visit"}], ctx) is True

    def test_unsupported_condition_object_fails(self) -> None:
        not_a_condition: object = "is_second_visit"
        outcome: ConditionOutcome = evaluate_condition(not_a_condition, _ctx())
        assert outcome.passed is False
        assert outcome.issue is not None
