"""Tests for nursebonus.services.facts."""

from datetime import date, time

import pytest

from db.enums import TimeBucket
from nursebonus.services.facts import EvaluationContext, FactName, extract, time_bucket


class TestTimeBucket:
    @pytest.mark.parametrize(
        ("start", "expected"),
        [
            (time(5, 59, 59), TimeBucket.LATE_NIGHT),
            (time(6, 0), TimeBucket.EARLY_MORNING),
            (time(7, 59, 59), TimeBucket.EARLY_MORNING),
            (time(8, 0), TimeBucket.DAYTIME),
            (time(17, 59, 59), TimeBucket.DAYTIME),
            (time(18, 0), TimeBucket.NIGHT),
            (time(21, 59, 59), TimeBucket.NIGHT),
            (time(22, 0), TimeBucket.LATE_NIGHT),
            (time(0, 0), TimeBucket.LATE_NIGHT),
        ],
    )
    def test_boundaries(self, start: time, expected: TimeBucket) -> None:
        assert time_bucket(start) is expected


class TestFactName:
    def test_resolve_accepts_camel_and_snake_case(self) -> None:
        assert FactName.resolve("visitDuration") is FactName.VISIT_DURATION
        assert FactName.resolve("visit_duration") is FactName.VISIT_DURATION
        assert FactName.resolve("has_24h_support_system") is FactName.HAS_24H_SUPPORT_SYSTEM

    def test_resolve_unknown(self) -> None:
        assert FactName.resolve("favouriteColour") is None

    def test_kinds(self) -> None:
        assert FactName.VISIT_DURATION.kind is int
        assert FactName.INSURANCE_TYPE.kind is str
        assert FactName.IS_SECOND_VISIT.kind is bool


class TestExtract:
    def test_visit_facts(self) -> None:
        ctx: EvaluationContext = extract(
            {
                "visit_date": "2025-06-01",
                "actual_start_time": "18:00:00",
                "actual_end_time": "19:30:00",
                "is_second_visit": True,
                "daily_visit_count": 2,
                "emergency_visit_reason": "発熱",
            },
            {"insurance_type": "medical", "birth_date": "1950-06-02"},
            None,
            None,
        )
        assert ctx.visit_date == date(2025, 6, 1)
        assert ctx[FactName.VISIT_TIME_BUCKET.value] == "night"
        assert ctx[FactName.VISIT_DURATION.value] == 90
        assert ctx[FactName.IS_SECOND_VISIT.value] is True
        assert ctx[FactName.DAILY_VISIT_COUNT.value] == 2
        assert ctx[FactName.HAS_EMERGENCY_VISIT_REASON.value] is True
        assert ctx[FactName.INSURANCE_TYPE.value] == "medical"
        # Birthday is the day after the visit.
        assert ctx[FactName.PATIENT_AGE.value] == 74

    def test_schedule_fills_in_for_missing_actuals(self) -> None:
        ctx: EvaluationContext = extract(
            {},
            None,
            {
                "scheduled_date": "2025-06-01",
                "scheduled_start_time": "07:00",
                "scheduled_end_time": "07:45",
            },
            None,
        )
        assert ctx.visit_date == date(2025, 6, 1)
        assert ctx.start_time == time(7, 0)
        assert ctx[FactName.VISIT_TIME_BUCKET.value] == "early_morning"
        assert ctx[FactName.VISIT_DURATION.value] == 45

    def test_aware_datetimes_bucket_in_facility_zone(self) -> None:
        # 09:30 UTC is 18:30 in Tokyo.
        ctx: EvaluationContext = extract(
            {
                "visit_date": "2025-06-01",
                "actual_start_time": "2025-06-01T09:30:00+00:00",
                "actual_end_time": "2025-06-01T10:30:00+00:00",
            },
            None,
            None,
            None,
        )
        assert ctx.start_time == time(18, 30)
        assert ctx[FactName.VISIT_TIME_BUCKET.value] == "night"
        assert ctx[FactName.VISIT_DURATION.value] == 60

    def test_visit_crossing_midnight(self) -> None:
        ctx: EvaluationContext = extract(
            {"visit_date": "2025-06-01", "actual_start_time": "23:30", "actual_end_time": "00:40"},
            None,
            None,
            None,
        )
        assert ctx[FactName.VISIT_DURATION.value] == 70

    def test_missing_data_defaults_and_is_tracked(self) -> None:
        ctx: EvaluationContext = extract({"visit_date": "2025-06-01"}, None, None, None)
        assert ctx[FactName.VISIT_DURATION.value] == 0
        assert ctx.is_missing(FactName.VISIT_DURATION.value)
        assert ctx[FactName.SPECIALIST_CARE_TYPE.value] == ""
        assert ctx.is_missing(FactName.SPECIALIST_CARE_TYPE.value)
        assert ctx[FactName.IS_DISCHARGE_DATE.value] is False
        assert ctx.start_time is None

    def test_enhanced_24h_needs_two_burden_reduction_measures(self) -> None:
        one: EvaluationContext = extract(
            {"visit_date": "2025-06-01"},
            None,
            None,
            {"has_24h_support_system_enhanced": True, "burden_reduction_measures": ["a"]},
        )
        two: EvaluationContext = extract(
            {"visit_date": "2025-06-01"},
            None,
            None,
            {"has_24h_support_system_enhanced": True, "burden_reduction_measures": ["a", "b"]},
        )
        assert one[FactName.HAS_24H_SUPPORT_SYSTEM_ENHANCED.value] is False
        assert two[FactName.HAS_24H_SUPPORT_SYSTEM_ENHANCED.value] is True
        assert two[FactName.BURDEN_REDUCTION_MEASURE_COUNT.value] == 2

    def test_building_and_death_date(self) -> None:
        ctx: EvaluationContext = extract(
            {"visit_date": "2025-06-01", "building_occupancy": 4},
            {"building_id": "bldg-1", "death_date": "2025-06-01", "death_place_code": "home"},
            None,
            None,
        )
        assert ctx[FactName.HAS_BUILDING.value] is True
        assert ctx[FactName.BUILDING_OCCUPANCY.value] == 4
        assert ctx[FactName.IS_DEATH_DATE.value] is True
        assert ctx[FactName.DEATH_PLACE_CODE.value] == "home"

    def test_predicates_are_namespaced(self) -> None:
        ctx: EvaluationContext = extract(
            {"visit_date": "2025-06-01", "predicates": {"doctor_instruction": True, "junk": "yes"}},
            None,
            None,
            None,
        )
        assert ctx.predicate("doctor_instruction") is True
        assert ctx.predicate("junk") is None
        assert ctx.predicate("unknown") is None

    def test_context_is_read_only(self) -> None:
        ctx: EvaluationContext = extract({"visit_date": "2025-06-01"}, None, None, None)
        with pytest.raises(TypeError):
            ctx["visitDate"] = "2025-01-01"  # type: ignore[index]

    def test_same_input_same_context(self) -> None:
        visit: dict[str, object] = {"visit_date": "2025-06-01", "actual_start_time": "10:00"}
        assert dict(extract(visit, None, None, None)) == dict(extract(visit, None, None, None))
