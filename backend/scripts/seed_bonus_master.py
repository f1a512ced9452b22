"""Seed a sample bonus catalog for local testing.

Idempotent: skips seeding if bonus_master already has rows.
Run: python scripts/seed_bonus_master.py
"""

import sys
from pathlib import Path

# Ensure backend root is on sys.path so 'config' and 'db' resolve
backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from sqlalchemy import select  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from db.connection import get_session, init_database  # noqa: E402
from db.models import BonusMaster  # noqa: E402
from nursebonus.services.bonus_master import BonusMasterService  # noqa: E402

FY2024 = ("2024-04-01", "2025-04-01")
FY2025 = ("2025-04-01", None)

SAMPLE_RULES: list[dict[str, object]] = [
    {
        "bonus_code": "medical_emergency_visit",
        "bonus_name": "緊急訪問看護加算",
        "bonus_category": "visit",
        "insurance_type": "medical",
        "version": "2024",
        "valid_from": FY2024[0],
        "valid_to": FY2024[1],
        "points_type": "fixed",
        "fixed_points": 265,
        "predefined_conditions": [
            {"pattern": "has_emergency_visit_reason", "description": "緊急訪問の理由あり"},
        ],
        "display_order": 10,
    },
    {
        "bonus_code": "medical_emergency_visit",
        "bonus_name": "緊急訪問看護加算",
        "bonus_category": "visit",
        "insurance_type": "medical",
        "version": "2025",
        "valid_from": FY2025[0],
        "valid_to": FY2025[1],
        "points_type": "conditional",
        "conditional_pattern": "monthly_14day_threshold",
        "points_config": {"up_to_14": 265, "after_14": 200},
        "predefined_conditions": [
            {"pattern": "has_emergency_visit_reason", "description": "緊急訪問の理由あり"},
        ],
        "display_order": 10,
    },
    {
        "bonus_code": "medical_night_early_morning",
        "bonus_name": "夜間・早朝訪問看護加算",
        "bonus_category": "time",
        "insurance_type": "medical",
        "version": "2024",
        "valid_from": FY2024[0],
        "valid_to": None,
        "points_type": "conditional",
        "conditional_pattern": "time_based",
        "points_config": {"early_morning": 210, "night": 210},
        "cannot_combine_with": ["medical_late_night"],
        "display_order": 20,
    },
    {
        "bonus_code": "medical_late_night",
        "bonus_name": "深夜訪問看護加算",
        "bonus_category": "time",
        "insurance_type": "medical",
        "version": "2024",
        "valid_from": FY2024[0],
        "valid_to": None,
        "points_type": "fixed",
        "fixed_points": 420,
        "predefined_conditions": [
            {"pattern": "medical_late_night_time", "description": "22時〜6時の訪問"},
        ],
        "cannot_combine_with": ["medical_night_early_morning"],
        "display_order": 21,
    },
    {
        "bonus_code": "medical_multiple_visit",
        "bonus_name": "難病等複数回訪問加算",
        "bonus_category": "visit",
        "insurance_type": "medical",
        "version": "2024",
        "valid_from": FY2024[0],
        "valid_to": None,
        "points_type": "conditional",
        "conditional_pattern": "visit_count",
        "points_config": {"visit_2": 450, "visit_3_plus": 800},
        "predefined_conditions": [
            {"pattern": "daily_visit_count_gte", "value": 2},
        ],
        "display_order": 30,
    },
    {
        "bonus_code": "24h_response_system_basic",
        "bonus_name": "24時間対応体制加算",
        "bonus_category": "system",
        "insurance_type": "medical",
        "version": "2024",
        "valid_from": FY2024[0],
        "valid_to": None,
        "points_type": "fixed",
        "fixed_points": 6520,
        "predefined_conditions": [
            {"pattern": "has_24h_support_system"},
            {"pattern": "visit_ordinal_in_month", "field": "visitOrdinalInMonth",
             "operator": "equals", "value": 1, "description": "月の初回訪問"},
        ],
        "cannot_combine_with": ["24h_response_system_enhanced"],
        "display_order": 40,
    },
    {
        "bonus_code": "24h_response_system_enhanced",
        "bonus_name": "24時間対応体制加算（看護業務の負担軽減）",
        "bonus_category": "system",
        "insurance_type": "medical",
        "version": "2024",
        "valid_from": FY2024[0],
        "valid_to": None,
        "points_type": "fixed",
        "fixed_points": 6800,
        "predefined_conditions": [
            {"pattern": "has_24h_support_system_enhanced"},
            {"pattern": "visit_ordinal_in_month", "field": "visitOrdinalInMonth",
             "operator": "equals", "value": 1},
        ],
        "cannot_combine_with": ["24h_response_system_basic"],
        "display_order": 39,
    },
    {
        "bonus_code": "care_visit_duration_90plus",
        "bonus_name": "長時間訪問看護加算",
        "bonus_category": "duration",
        "insurance_type": "care",
        "version": "2024",
        "valid_from": FY2024[0],
        "valid_to": None,
        "points_type": "fixed",
        "fixed_points": 300,
        "predefined_conditions": [{"pattern": "care_visit_duration_90plus"}],
        "display_order": 10,
    },
    {
        "bonus_code": "care_night_early_morning",
        "bonus_name": "夜間・早朝訪問加算",
        "bonus_category": "time",
        "insurance_type": "care",
        "version": "2024",
        "valid_from": FY2024[0],
        "valid_to": None,
        "points_type": "conditional",
        "conditional_pattern": "time_based",
        "points_config": {"early_morning": 25, "night": 25, "late_night": 50},
        "display_order": 20,
    },
    {
        "bonus_code": "care_same_building",
        "bonus_name": "同一建物減算",
        "bonus_category": "building",
        "insurance_type": "care",
        "version": "2024",
        "valid_from": FY2024[0],
        "valid_to": None,
        "points_type": "conditional",
        "conditional_pattern": "building_occupancy",
        "points_config": {"occupancy_1_2": 0, "occupancy_3_plus": 10},
        "predefined_conditions": [{"pattern": "has_building"}],
        "display_order": 90,
    },
]


def seed(session: Session) -> None:
    if session.scalars(select(BonusMaster).limit(1)).first() is not None:
        print("Bonus catalog already seeded, skipping.")
        return
    service = BonusMasterService(session)
    for rule in SAMPLE_RULES:
        service.add_rule(rule)
    report = service.validate_catalog()
    print(f"Seeded {report['rule_count']} bonus versions (valid={report['valid']}).")


if __name__ == "__main__":
    init_database()
    with get_session() as session:
        seed(session)
