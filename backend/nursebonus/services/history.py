"""bonus_calculation_history: one row per applied bonus per nursing record."""

from collections.abc import Sequence

import structlog
from sqlalchemy import Select, delete, select
from sqlalchemy.orm import Session

from db.models import BonusCalculationHistory
from nursebonus.services._helpers import JsonDict, dump_json, load_json, new_id, now_iso
from nursebonus.services._types import HistoryEntry
from nursebonus.services.bonus_engine import EvaluationResult

logger = structlog.get_logger(__name__)


class BonusHistoryService:
    def __init__(self, session: Session) -> None:
        self.session: Session = session

    def save(self, nursing_record_id: str, result: EvaluationResult) -> int:
        """Replace the record's stored bonuses with ``result``. Returns rows written.

        Re-saving the same record is idempotent: previous rows are deleted first.
        """
        self.session.execute(
            delete(BonusCalculationHistory).where(
                BonusCalculationHistory.nursing_record_id == nursing_record_id
            )
        )
        created_at: str = now_iso()
        for bonus in result.applied:
            details: JsonDict = {
                "name": bonus.name,
                "matched": bonus.matched,
                "conditions_passed": list(bonus.conditions_passed),
                "visit_date": result.visit_date.isoformat() if result.visit_date else None,
            }
            self.session.add(
                BonusCalculationHistory(
                    id=new_id(),
                    nursing_record_id=nursing_record_id,
                    bonus_master_id=bonus.bonus_master_id,
                    bonus_code=bonus.code,
                    applied_version=bonus.version,
                    calculated_points=bonus.points,
                    calculation_details=dump_json(details),
                    created_at=created_at,
                )
            )
        self.session.flush()
        logger.info(
            "Saved bonus history",
            nursing_record_id=nursing_record_id,
            bonuses=len(result.applied),
            total_points=result.total_points,
        )
        return len(result.applied)

    def for_record(self, nursing_record_id: str) -> list[HistoryEntry]:
        stmt: Select[tuple[BonusCalculationHistory]] = (
            select(BonusCalculationHistory)
            .where(BonusCalculationHistory.nursing_record_id == nursing_record_id)
            .order_by(BonusCalculationHistory.bonus_code)
        )
        rows: Sequence[BonusCalculationHistory] = self.session.scalars(stmt).all()
        return [
            HistoryEntry(
                id=r.id,
                nursing_record_id=r.nursing_record_id,
                bonus_code=r.bonus_code,
                applied_version=r.applied_version,
                calculated_points=r.calculated_points,
                calculation_details=load_json(r.calculation_details) or {},
                created_at=r.created_at,
            )
            for r in rows
        ]

    def total_points(self, nursing_record_id: str) -> int:
        return sum(e["calculated_points"] for e in self.for_record(nursing_record_id))
