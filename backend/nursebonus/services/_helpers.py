"""Shared utilities for the service layer."""

import json
from collections.abc import Mapping
from datetime import UTC, date, datetime
from uuid import uuid4

# JSON column type: object-shaped TEXT columns (points_config, calculation_details).
JsonDict = dict[str, object]
Serializable = Mapping[str, object] | list[object]


def new_id() -> str:
    return str(uuid4())


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


def load_json(raw: str | None) -> JsonDict | None:
    """Deserialize an object-shaped JSON TEXT column."""
    if not raw:
        return None
    result: object = json.loads(raw)
    if isinstance(result, dict):
        return dict(result)
    return None


def load_json_list(raw: str | None) -> list[object]:
    """Deserialize an array-shaped JSON TEXT column (conditions, code lists)."""
    if not raw:
        return []
    result: object = json.loads(raw)
    if isinstance(result, list):
        return list(result)
    if isinstance(result, dict):
        # Some rows were authored with a single condition object.
        return [result]
    return []


def dump_json(obj: Serializable) -> str:
    return json.dumps(obj, default=str, ensure_ascii=False)


def parse_date(raw: object) -> date | None:
    """Accept a date, a datetime or an ISO string; anything else is None."""
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            return date.fromisoformat(raw.strip()[:10])
        except ValueError:
            return None
    return None
