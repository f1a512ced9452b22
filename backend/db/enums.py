"""Enumeration types for the Nursing Bonus Engine."""

from enum import Enum


class InsuranceType(str, Enum):
    """Insurance scheme a bonus is billed under."""

    MEDICAL = "medical"
    CARE = "care"


class PointsType(str, Enum):
    """How a bonus computes its points."""

    FIXED = "fixed"
    CONDITIONAL = "conditional"


class ConditionalPattern(str, Enum):
    """Named point-computation strategies for conditional bonuses."""

    MONTHLY_14DAY_THRESHOLD = "monthly_14day_threshold"
    TIME_BASED = "time_based"
    DURATION_BASED = "duration_based"
    AGE_BASED = "age_based"
    BUILDING_OCCUPANCY = "building_occupancy"
    VISIT_COUNT = "visit_count"


class ConditionOperator(str, Enum):
    """Comparison applied by a predefined condition."""

    EQUALS = "equals"
    IN = "in"
    GTE = "gte"
    LTE = "lte"
    GT = "gt"
    LT = "lt"
    MET = "met"
    NOT_MET = "not_met"


class TimeBucket(str, Enum):
    """Time-of-day bands used for time-based bonuses."""

    DAYTIME = "daytime"  # 08:00-18:00
    NIGHT = "night"  # 18:00-22:00
    LATE_NIGHT = "late_night"  # 22:00-06:00
    EARLY_MORNING = "early_morning"  # 06:00-08:00
