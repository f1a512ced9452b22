"""Typed dicts for service-layer return values.

Keeps worker- and caller-facing methods explicit about their shape instead of returning bare dicts.
"""

import sys

if sys.version_info >= (3, 12):
    from typing import NotRequired, TypedDict
else:
    from typing_extensions import NotRequired, TypedDict

from nursebonus.services._helpers import JsonDict

# -- Bonus Engine -----------------------------------------------------------


class AppliedBonusDict(TypedDict):
    code: str
    name: str
    version: str
    points: int
    bonus_master_id: str | None
    matched: str
    conditions_passed: list[str]


class SuppressedBonusDict(TypedDict):
    code: str
    version: str
    suppressed_by: str


class DataQualityIssueDict(TypedDict):
    code: str
    detail: str


class EvaluationResultDict(TypedDict):
    visit_date: str | None
    applied: list[AppliedBonusDict]
    total_points: int
    suppressed: list[SuppressedBonusDict]
    diagnostics: list[DataQualityIssueDict]


class VisitBundle(TypedDict):
    """One visit's inputs as read from a batch file."""

    visit: JsonDict
    patient: NotRequired[JsonDict | None]
    schedule: NotRequired[JsonDict | None]
    facility_config: NotRequired[JsonDict | None]
    nursing_record_id: NotRequired[str]


# -- Bonus Master -----------------------------------------------------------


class RuleSnapshot(TypedDict):
    id: str | None
    code: str
    name: str
    version: str
    insurance_type: str
    valid_from: str
    valid_to: str | None
    display_order: int
    cannot_combine_with: list[str]


class CatalogSnapshot(TypedDict):
    as_of: str
    insurance_type: str | None
    rules: list[RuleSnapshot]


class CatalogReport(TypedDict):
    valid: bool
    rule_count: int
    issues: list[str]


# -- Calculation History ----------------------------------------------------


class HistoryEntry(TypedDict):
    id: str
    nursing_record_id: str
    bonus_code: str
    applied_version: str
    calculated_points: int
    calculation_details: JsonDict
    created_at: str
