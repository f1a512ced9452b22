"""Shared fixtures: in-memory SQLite DB with all tables, bonus rule row factory."""

from collections.abc import Callable, Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from db.models import Base

RowFactory = Callable[..., dict[str, object]]


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    eng: Engine = create_engine("sqlite:///:memory:", echo=False)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session(engine: Engine) -> Generator[Session, None, None]:
    factory: sessionmaker[Session] = sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    sess: Session = factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture()
def make_row() -> RowFactory:
    """Build a bonus_master-shaped dict; keyword overrides win."""

    def _make(code: str = "bonus_a", **overrides: object) -> dict[str, object]:
        row: dict[str, object] = {
            "bonus_code": code,
            "bonus_name": code.replace("_", " "),
            "bonus_category": "visit",
            "insurance_type": "medical",
            "version": "2024",
            "valid_from": "2024-04-01",
            "valid_to": None,
            "points_type": "fixed",
            "fixed_points": 100,
            "predefined_conditions": [],
            "can_combine_with": [],
            "cannot_combine_with": [],
            "display_order": 100,
            "is_active": True,
        }
        row.update(overrides)
        return row

    return _make
