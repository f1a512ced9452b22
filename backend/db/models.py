"""SQLAlchemy ORM models for the bonus catalog and calculation history.

Mirrors migrations/001_bonus_master.sql. JSON payloads are stored in TEXT
columns and dates as ISO-8601 strings.
"""

from typing import Any
from uuid import uuid4

from sqlalchemy import ForeignKey, Index, MetaData
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=convention)

    def to_dict(self) -> dict[str, Any]:
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}


def generate_uuid() -> str:
    return str(uuid4())


class BonusMaster(Base):
    __tablename__ = "bonus_master"

    id: Mapped[str] = mapped_column(primary_key=True, default=generate_uuid)
    facility_id: Mapped[str | None] = mapped_column()
    bonus_code: Mapped[str] = mapped_column(nullable=False)
    bonus_name: Mapped[str] = mapped_column(nullable=False)
    bonus_category: Mapped[str] = mapped_column(nullable=False, default="")
    insurance_type: Mapped[str] = mapped_column(nullable=False)
    version: Mapped[str] = mapped_column(nullable=False)
    valid_from: Mapped[str] = mapped_column(nullable=False)
    valid_to: Mapped[str | None] = mapped_column()
    points_type: Mapped[str] = mapped_column(nullable=False, default="fixed")
    fixed_points: Mapped[int | None] = mapped_column()
    conditional_pattern: Mapped[str | None] = mapped_column()
    points_config: Mapped[str | None] = mapped_column()
    predefined_conditions: Mapped[str] = mapped_column(nullable=False, default="[]")
    can_combine_with: Mapped[str] = mapped_column(nullable=False, default="[]")
    cannot_combine_with: Mapped[str] = mapped_column(nullable=False, default="[]")
    display_order: Mapped[int] = mapped_column(nullable=False, default=999)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)
    created_at: Mapped[str] = mapped_column(nullable=False)
    updated_at: Mapped[str] = mapped_column(nullable=False)

    __table_args__ = (
        Index("ix_bonus_master_code_valid_from", "bonus_code", "valid_from"),
    )
    history = relationship("BonusCalculationHistory", back_populates="bonus_master")


class BonusCalculationHistory(Base):
    __tablename__ = "bonus_calculation_history"

    id: Mapped[str] = mapped_column(primary_key=True, default=generate_uuid)
    nursing_record_id: Mapped[str] = mapped_column(nullable=False, index=True)
    bonus_master_id: Mapped[str | None] = mapped_column(ForeignKey("bonus_master.id"))
    bonus_code: Mapped[str] = mapped_column(nullable=False)
    applied_version: Mapped[str] = mapped_column(nullable=False)
    calculated_points: Mapped[int] = mapped_column(nullable=False)
    calculation_details: Mapped[str] = mapped_column(nullable=False, default="{}")
    created_at: Mapped[str] = mapped_column(nullable=False)
    bonus_master = relationship("BonusMaster", back_populates="history")
