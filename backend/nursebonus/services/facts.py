"""Fact extraction: flatten a visit and its related records into an evaluation context.

The rest of the engine only ever sees an ``EvaluationContext``, so the shape of
upstream records (ORM ``to_dict()`` output, API payloads) is isolated here.

Defaults for absent data: numeric facts -> 0, boolean facts -> False, string
facts -> "". Numeric and string facts that had to be defaulted are recorded as
missing so that comparisons against them fail closed.
"""

from collections.abc import Iterable, Iterator, Mapping
from datetime import date, datetime, time, tzinfo
from enum import Enum
from types import MappingProxyType
from zoneinfo import ZoneInfo

from db.enums import TimeBucket
from nursebonus.services._helpers import parse_date

DEFAULT_TIMEZONE: ZoneInfo = ZoneInfo("Asia/Tokyo")

# Context keys for externally resolved predicates: "predicate.<name>".
PREDICATE_PREFIX: str = "predicate."

# Burden-reduction measures required for the enhanced 24h support system.
MIN_BURDEN_REDUCTION_MEASURES: int = 2


class FactName(str, Enum):
    """Closed set of facts shared by the extractor and the condition evaluator."""

    VISIT_DATE = "visitDate"
    VISIT_START_TIME = "visitStartTime"
    VISIT_TIME_BUCKET = "visitTimeBucket"
    VISIT_DURATION = "visitDuration"
    IS_SECOND_VISIT = "isSecondVisit"
    DAILY_VISIT_COUNT = "dailyVisitCount"
    VISIT_ORDINAL_IN_MONTH = "visitOrdinalInMonth"
    HAS_EMERGENCY_VISIT_REASON = "hasEmergencyVisitReason"
    EMERGENCY_VISIT_REASON = "emergencyVisitReason"
    MULTIPLE_VISIT_REASON = "multipleVisitReason"
    LONG_VISIT_REASON = "longVisitReason"
    IS_DISCHARGE_DATE = "isDischargeDate"
    IS_FIRST_VISIT_OF_PLAN = "isFirstVisitOfPlan"
    HAS_COLLABORATION_RECORD = "hasCollaborationRecord"
    IS_TERMINAL_CARE = "isTerminalCare"
    INSURANCE_TYPE = "insuranceType"
    PATIENT_AGE = "patientAge"
    HAS_BUILDING = "hasBuilding"
    BUILDING_ID = "buildingId"
    BUILDING_OCCUPANCY = "buildingOccupancy"
    HAS_24H_SUPPORT_SYSTEM = "has24hSupportSystem"
    HAS_24H_SUPPORT_SYSTEM_ENHANCED = "has24hSupportSystemEnhanced"
    HAS_EMERGENCY_SUPPORT_SYSTEM = "hasEmergencySupportSystem"
    HAS_EMERGENCY_SUPPORT_SYSTEM_ENHANCED = "hasEmergencySupportSystemEnhanced"
    BURDEN_REDUCTION_MEASURE_COUNT = "burdenReductionMeasureCount"
    PATIENT_HAS_SPECIAL_MANAGEMENT = "patientHasSpecialManagement"
    SPECIAL_MANAGEMENT_COUNT = "specialManagementCount"
    SPECIALIST_CARE_TYPE = "specialistCareType"
    REQUIRES_SPECIALIZED_NURSE = "requiresSpecializedNurse"
    DEATH_PLACE_CODE = "deathPlaceCode"
    IS_DEATH_DATE = "isDeathDate"
    TERMINAL_CARE_VISIT_COUNT = "terminalCareVisitCount"

    @classmethod
    def resolve(cls, key: str) -> "FactName | None":
        """Look a fact up by its camelCase name or a snake_case pattern name."""
        try:
            return cls(key)
        except ValueError:
            pass
        head, *rest = key.split("_")
        try:
            return cls(head + "".join(p[:1].upper() + p[1:] for p in rest))
        except ValueError:
            return None

    @property
    def kind(self) -> type:
        return _FACT_KINDS.get(self, bool)


_FACT_KINDS: dict[FactName, type] = {
    FactName.VISIT_DATE: str,
    FactName.VISIT_START_TIME: str,
    FactName.VISIT_TIME_BUCKET: str,
    FactName.VISIT_DURATION: int,
    FactName.DAILY_VISIT_COUNT: int,
    FactName.VISIT_ORDINAL_IN_MONTH: int,
    FactName.EMERGENCY_VISIT_REASON: str,
    FactName.MULTIPLE_VISIT_REASON: str,
    FactName.LONG_VISIT_REASON: str,
    FactName.INSURANCE_TYPE: str,
    FactName.PATIENT_AGE: int,
    FactName.BUILDING_ID: str,
    FactName.BUILDING_OCCUPANCY: int,
    FactName.BURDEN_REDUCTION_MEASURE_COUNT: int,
    FactName.SPECIAL_MANAGEMENT_COUNT: int,
    FactName.SPECIALIST_CARE_TYPE: str,
    FactName.DEATH_PLACE_CODE: str,
    FactName.TERMINAL_CARE_VISIT_COUNT: int,
}


class EvaluationContext(Mapping[str, object]):
    """Read-only mapping of fact name -> primitive value for one visit."""

    __slots__ = ("_values", "_missing")

    def __init__(self, values: Mapping[str, object], missing: Iterable[str] = ()) -> None:
        self._values: Mapping[str, object] = MappingProxyType(dict(values))
        self._missing: frozenset[str] = frozenset(missing)

    def __getitem__(self, key: str) -> object:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"EvaluationContext({dict(self._values)!r}, missing={sorted(self._missing)!r})"

    @property
    def missing(self) -> frozenset[str]:
        return self._missing

    def is_missing(self, key: str) -> bool:
        return key in self._missing or key not in self._values

    def fact(self, name: FactName) -> object:
        return self._values.get(name.value)

    def predicate(self, name: str) -> bool | None:
        value: object = self._values.get(PREDICATE_PREFIX + name)
        return value if isinstance(value, bool) else None

    @property
    def visit_date(self) -> date | None:
        return parse_date(self._values.get(FactName.VISIT_DATE.value))

    @property
    def start_time(self) -> time | None:
        raw: object = self._values.get(FactName.VISIT_START_TIME.value)
        if isinstance(raw, str) and raw:
            return time.fromisoformat(raw)
        return None


def time_bucket(start: time) -> TimeBucket:
    """Classify a local start time. Bands are half-open; late night wraps midnight."""
    if start >= time(22) or start < time(6):
        return TimeBucket.LATE_NIGHT
    if start < time(8):
        return TimeBucket.EARLY_MORNING
    if start < time(18):
        return TimeBucket.DAYTIME
    return TimeBucket.NIGHT


# -- Field readers ----------------------------------------------------------


def _get(source: Mapping[str, object] | None, key: str) -> object:
    return source.get(key) if source else None


def _bool(source: Mapping[str, object] | None, key: str) -> bool:
    raw: object = _get(source, key)
    if isinstance(raw, bool):
        return raw
    # SQLite hands booleans back as 0/1.
    return isinstance(raw, int) and raw == 1


def _int(source: Mapping[str, object] | None, key: str) -> int | None:
    raw: object = _get(source, key)
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    if isinstance(raw, str) and raw.strip().lstrip("-").isdigit():
        return int(raw.strip())
    return None


def _str(source: Mapping[str, object] | None, key: str) -> str | None:
    raw: object = _get(source, key)
    if isinstance(raw, str) and raw.strip():
        return raw.strip()
    return None


def _seq(source: Mapping[str, object] | None, key: str) -> list[object]:
    raw: object = _get(source, key)
    return list(raw) if isinstance(raw, (list, tuple)) else []


def _moment(raw: object) -> datetime | time | None:
    if isinstance(raw, (datetime, time)):
        return raw
    if isinstance(raw, str) and raw.strip():
        text: str = raw.strip()
        try:
            if len(text) >= 10 and text[4] == "-":
                return datetime.fromisoformat(text.replace("Z", "+00:00"))
            return time.fromisoformat(text)
        except ValueError:
            return None
    return None


def _local_time(moment: datetime | time, tz: tzinfo) -> time:
    if isinstance(moment, datetime):
        if moment.tzinfo is not None:
            moment = moment.astimezone(tz)
        return moment.time().replace(microsecond=0, tzinfo=None)
    return moment.replace(microsecond=0, tzinfo=None)


def _duration_minutes(start: datetime | time, end: datetime | time, tz: tzinfo) -> int | None:
    if isinstance(start, datetime) and isinstance(end, datetime):
        if (start.tzinfo is None) != (end.tzinfo is None):
            return None
        seconds: float = (end - start).total_seconds()
        return int(seconds // 60) if seconds >= 0 else None
    # Time-of-day only: an end before the start means the visit crossed midnight.
    s: time = _local_time(start, tz)
    e: time = _local_time(end, tz)
    delta: int = (e.hour * 3600 + e.minute * 60 + e.second) - (
        s.hour * 3600 + s.minute * 60 + s.second
    )
    if delta < 0:
        delta += 24 * 3600
    return delta // 60


def _age_at(birth: date, on: date) -> int:
    return on.year - birth.year - ((on.month, on.day) < (birth.month, birth.day))


# -- Extraction -------------------------------------------------------------


def extract(
    visit: Mapping[str, object] | None,
    patient: Mapping[str, object] | None,
    schedule: Mapping[str, object] | None,
    facility_config: Mapping[str, object] | None,
    tz: tzinfo = DEFAULT_TIMEZONE,
) -> EvaluationContext:
    """Build the evaluation context for one visit. Never raises on missing data."""
    values: dict[str, object] = {}
    missing: set[str] = set()

    def put(name: FactName, value: object) -> None:
        if value is None:
            missing.add(name.value)
            value = {int: 0, str: ""}.get(name.kind, False)
        values[name.value] = value

    visit_date: date | None = parse_date(_get(visit, "visit_date")) or parse_date(
        _get(schedule, "scheduled_date")
    )
    put(FactName.VISIT_DATE, visit_date.isoformat() if visit_date else None)

    start: datetime | time | None = _moment(_get(visit, "actual_start_time")) or _moment(
        _get(schedule, "scheduled_start_time")
    )
    end: datetime | time | None = _moment(_get(visit, "actual_end_time")) or _moment(
        _get(schedule, "scheduled_end_time")
    )
    local_start: time | None = _local_time(start, tz) if start is not None else None
    put(FactName.VISIT_START_TIME, local_start.isoformat() if local_start else None)
    put(FactName.VISIT_TIME_BUCKET, time_bucket(local_start).value if local_start else None)

    duration: int | None = _int(visit, "visit_duration_minutes")
    if duration is None and start is not None and end is not None:
        duration = _duration_minutes(start, end, tz)
    put(FactName.VISIT_DURATION, duration)

    put(FactName.IS_SECOND_VISIT, _bool(visit, "is_second_visit"))
    put(FactName.DAILY_VISIT_COUNT, _int(visit, "daily_visit_count"))
    put(FactName.VISIT_ORDINAL_IN_MONTH, _int(visit, "visit_ordinal_in_month"))

    emergency_reason: str | None = _str(visit, "emergency_visit_reason")
    put(FactName.HAS_EMERGENCY_VISIT_REASON, emergency_reason is not None)
    put(FactName.EMERGENCY_VISIT_REASON, emergency_reason)
    put(FactName.MULTIPLE_VISIT_REASON, _str(visit, "multiple_visit_reason"))
    put(FactName.LONG_VISIT_REASON, _str(visit, "long_visit_reason"))

    put(FactName.IS_DISCHARGE_DATE, _bool(visit, "is_discharge_date"))
    put(FactName.IS_FIRST_VISIT_OF_PLAN, _bool(visit, "is_first_visit_of_plan"))
    put(FactName.HAS_COLLABORATION_RECORD, _bool(visit, "has_collaboration_record"))
    put(FactName.IS_TERMINAL_CARE, _bool(visit, "is_terminal_care"))

    put(FactName.INSURANCE_TYPE, _str(patient, "insurance_type"))
    birth_date: date | None = parse_date(_get(patient, "birth_date"))
    age: int | None = (
        _age_at(birth_date, visit_date) if birth_date and visit_date else _int(patient, "age")
    )
    put(FactName.PATIENT_AGE, age)

    building_id: str | None = _str(patient, "building_id")
    put(FactName.HAS_BUILDING, building_id is not None)
    put(FactName.BUILDING_ID, building_id)
    put(FactName.BUILDING_OCCUPANCY, _int(visit, "building_occupancy"))

    measures: list[object] = _seq(facility_config, "burden_reduction_measures")
    put(FactName.HAS_24H_SUPPORT_SYSTEM, _bool(facility_config, "has_24h_support_system"))
    put(
        FactName.HAS_24H_SUPPORT_SYSTEM_ENHANCED,
        _bool(facility_config, "has_24h_support_system_enhanced")
        and len(measures) >= MIN_BURDEN_REDUCTION_MEASURES,
    )
    put(FactName.HAS_EMERGENCY_SUPPORT_SYSTEM, _bool(facility_config, "has_emergency_support_system"))
    put(
        FactName.HAS_EMERGENCY_SUPPORT_SYSTEM_ENHANCED,
        _bool(facility_config, "has_emergency_support_system_enhanced"),
    )
    put(FactName.BURDEN_REDUCTION_MEASURE_COUNT, len(measures))

    special_management: list[object] = _seq(patient, "special_management_types")
    put(FactName.PATIENT_HAS_SPECIAL_MANAGEMENT, bool(special_management))
    put(FactName.SPECIAL_MANAGEMENT_COUNT, len(special_management))

    put(FactName.SPECIALIST_CARE_TYPE, _str(visit, "specialist_care_type"))
    nurse: object = _get(visit, "assigned_nurse")
    certifications: list[object] = (
        _seq(nurse, "specialist_certifications") if isinstance(nurse, Mapping) else []
    )
    put(FactName.REQUIRES_SPECIALIZED_NURSE, bool(certifications))

    put(FactName.DEATH_PLACE_CODE, _str(patient, "death_place_code"))
    death_date: date | None = parse_date(_get(patient, "death_date"))
    put(FactName.IS_DEATH_DATE, death_date is not None and death_date == visit_date)
    put(FactName.TERMINAL_CARE_VISIT_COUNT, _int(visit, "terminal_care_visit_count"))

    predicates: object = _get(visit, "predicates")
    if isinstance(predicates, Mapping):
        for name, flag in predicates.items():
            if isinstance(flag, bool):
                values[PREDICATE_PREFIX + str(name)] = flag

    return EvaluationContext(values, missing)
