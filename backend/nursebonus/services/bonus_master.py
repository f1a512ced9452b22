"""bonus_master persistence: load, validate, snapshot and register rule versions."""

from collections.abc import Mapping, Sequence
from datetime import date

import structlog
from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from db.enums import InsuranceType
from db.models import BonusMaster
from nursebonus.services._helpers import JsonDict, dump_json, now_iso
from nursebonus.services._types import CatalogReport, CatalogSnapshot, RuleSnapshot
from nursebonus.services.catalog import BonusCatalog, BonusRule, parse_codes
from nursebonus.services.errors import CatalogError, ConfigurationError

logger = structlog.get_logger(__name__)


def row_to_dict(row: BonusMaster) -> JsonDict:
    """ORM row -> the mapping BonusRule.from_dict expects.

    JSON columns stay as stored text; BonusRule.from_dict decodes them so a
    corrupt column surfaces as a ConfigurationError naming the row.
    """
    return row.to_dict()


class BonusMasterService:
    """Reads and writes bonus_master rows for one session."""

    def __init__(self, session: Session) -> None:
        self.session: Session = session

    def _active_stmt(
        self,
        insurance_type: InsuranceType | None,
        facility_id: str | None,
        as_of: date | None,
    ) -> Select[tuple[BonusMaster]]:
        stmt: Select[tuple[BonusMaster]] = select(BonusMaster).where(BonusMaster.is_active.is_(True))
        if insurance_type is not None:
            stmt = stmt.where(BonusMaster.insurance_type == insurance_type.value)
        if facility_id is not None:
            stmt = stmt.where(
                (BonusMaster.facility_id == facility_id) | (BonusMaster.facility_id.is_(None))
            )
        else:
            stmt = stmt.where(BonusMaster.facility_id.is_(None))
        if as_of is not None:
            day: str = as_of.isoformat()
            stmt = stmt.where(
                BonusMaster.valid_from <= day,
                (BonusMaster.valid_to.is_(None)) | (BonusMaster.valid_to > day),
            )
        return stmt.order_by(
            BonusMaster.display_order, BonusMaster.bonus_code, BonusMaster.valid_from
        )

    def list_active_rows(
        self,
        insurance_type: InsuranceType | None = None,
        facility_id: str | None = None,
        as_of: date | None = None,
    ) -> list[JsonDict]:
        """Active rows (global plus the facility's own) as mappings for BonusRule.from_dict."""
        rows: Sequence[BonusMaster] = self.session.scalars(
            self._active_stmt(insurance_type, facility_id, as_of)
        ).all()
        return [row_to_dict(r) for r in rows]

    def load_catalog(
        self,
        insurance_type: InsuranceType | None = None,
        facility_id: str | None = None,
    ) -> BonusCatalog:
        """Every active version, compiled. Raises CatalogError when any row is broken."""
        rows: list[JsonDict] = self.list_active_rows(insurance_type, facility_id)
        catalog: BonusCatalog = BonusCatalog.load(rows)
        logger.info(
            "Loaded bonus catalog",
            rules=len(rows),
            insurance_type=insurance_type.value if insurance_type else None,
            facility_id=facility_id,
        )
        return catalog

    def validate_catalog(self, facility_id: str | None = None) -> CatalogReport:
        rows: list[JsonDict] = self.list_active_rows(facility_id=facility_id)
        try:
            BonusCatalog.load(rows)
        except CatalogError as exc:
            return CatalogReport(valid=False, rule_count=len(rows), issues=exc.issues)
        return CatalogReport(valid=True, rule_count=len(rows), issues=[])

    def get_catalog_snapshot(
        self,
        as_of: date,
        insurance_type: InsuranceType | None = None,
        facility_id: str | None = None,
    ) -> CatalogSnapshot:
        rows: list[JsonDict] = self.list_active_rows(insurance_type, facility_id, as_of)
        return CatalogSnapshot(
            as_of=as_of.isoformat(),
            insurance_type=insurance_type.value if insurance_type else None,
            rules=[
                RuleSnapshot(
                    id=str(r["id"]),
                    code=str(r["bonus_code"]),
                    name=str(r["bonus_name"]),
                    version=str(r["version"]),
                    insurance_type=str(r["insurance_type"]),
                    valid_from=str(r["valid_from"]),
                    valid_to=str(r["valid_to"]) if r["valid_to"] else None,
                    display_order=int(r["display_order"]),
                    cannot_combine_with=sorted(parse_codes(r["cannot_combine_with"])),
                )
                for r in rows
            ],
        )

    def add_rule(self, data: Mapping[str, object]) -> BonusMaster:
        """Validate one rule definition and store it as a new bonus_master row.

        The new version must not overlap an active version of the same code.
        """
        rule: BonusRule = BonusRule.from_dict(data)
        existing: list[JsonDict] = [
            row_to_dict(r)
            for r in self.session.scalars(
                select(BonusMaster).where(
                    BonusMaster.bonus_code == rule.code,
                    BonusMaster.is_active.is_(True),
                    (BonusMaster.facility_id == rule.facility_id)
                    if rule.facility_id is not None
                    else BonusMaster.facility_id.is_(None),
                )
            ).all()
        ]
        if rule.is_active:
            BonusCatalog.load([*existing, rule])

        now: str = now_iso()
        points_config: object = data.get("points_config", data.get("pointsConfig"))
        if points_config is not None and not isinstance(points_config, str):
            points_config = dump_json(points_config)
        conditions: object = data.get(
            "predefined_conditions", data.get("conditions", data.get("predefinedConditions"))
        )
        if not isinstance(conditions, str):
            conditions = dump_json(conditions or [])
        entity: BonusMaster = BonusMaster(
            facility_id=rule.facility_id,
            bonus_code=rule.code,
            bonus_name=rule.name,
            bonus_category=rule.category,
            insurance_type=rule.insurance_type.value,
            version=rule.version,
            valid_from=rule.valid_from.isoformat(),
            valid_to=rule.valid_to.isoformat() if rule.valid_to else None,
            points_type=str(data.get("points_type", data.get("pointsType", "fixed"))),
            fixed_points=data.get("fixed_points", data.get("fixedPoints")),
            conditional_pattern=data.get("conditional_pattern", data.get("conditionalPattern")),
            points_config=points_config,
            predefined_conditions=conditions,
            can_combine_with=dump_json(sorted(rule.can_combine_with)),
            cannot_combine_with=dump_json(sorted(rule.cannot_combine_with)),
            display_order=rule.display_order,
            is_active=rule.is_active,
            created_at=now,
            updated_at=now,
        )
        if rule.id is not None:
            entity.id = rule.id
        self.session.add(entity)
        self.session.flush()
        logger.info("Registered bonus version", code=rule.code, version=rule.version)
        return entity

    def deactivate(self, code: str, version: str) -> int:
        """Retire a version without deleting it; history rows keep pointing at it."""
        rows: Sequence[BonusMaster] = self.session.scalars(
            select(BonusMaster).where(
                BonusMaster.bonus_code == code,
                BonusMaster.version == version,
                BonusMaster.is_active.is_(True),
            )
        ).all()
        if not rows:
            raise ConfigurationError(f"{code}@{version}: no active version to deactivate")
        now: str = now_iso()
        for row in rows:
            row.is_active = False
            row.updated_at = now
        self.session.flush()
        return len(rows)
