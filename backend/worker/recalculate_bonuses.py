"""Worker: evaluate a batch of visits against the bonus catalog and store the results.

The input file is a JSON array of visit bundles:
    [{"nursing_record_id": "...", "visit": {...}, "patient": {...},
      "schedule": {...}, "facility_config": {...}}, ...]

Usage:
    python -m worker.recalculate_bonuses --input visits.json
    python -m worker.recalculate_bonuses --input visits.json --insurance-type care --dry-run
"""

import argparse
import json
import sys
from pathlib import Path

import structlog

from config import get_settings
from db.connection import get_session
from db.enums import InsuranceType
from nursebonus.services._types import VisitBundle
from nursebonus.services.bonus_engine import BonusEngine, EvaluationResult
from nursebonus.services.bonus_master import BonusMasterService
from nursebonus.services.errors import ConfigurationError
from nursebonus.services.history import BonusHistoryService

logger = structlog.get_logger(__name__)


def load_bundles(path: Path) -> list[VisitBundle]:
    raw: object = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        raise argparse.ArgumentTypeError(f"{path}: expected a JSON array of visit bundles")
    bundles: list[VisitBundle] = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict) or not isinstance(item.get("visit"), dict):
            raise argparse.ArgumentTypeError(f"{path}: bundle {i} has no 'visit' object")
        bundles.append(item)  # type: ignore[arg-type]
    return bundles


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Recalculate visit bonuses for a batch")
    parser.add_argument(
        "--input", "-i", required=True, type=Path, help="JSON file with visit bundles"
    )
    parser.add_argument(
        "--insurance-type", choices=[t.value for t in InsuranceType], default=None,
        help="Load only this insurance type's bonuses",
    )
    parser.add_argument(
        "--facility-id", default=None, help="Include this facility's own bonus rows"
    )
    parser.add_argument(
        "--max-workers", type=int, default=None,
        help="Evaluation threads (default: BONUS_MAX_WORKERS)",
    )
    parser.add_argument(
        "--dry-run", action="store_true", default=False,
        help="Evaluate without persisting history",
    )
    args = parser.parse_args(argv)

    try:
        bundles: list[VisitBundle] = load_bundles(args.input)
    except (OSError, json.JSONDecodeError, argparse.ArgumentTypeError) as exc:
        logger.error("Could not read visit bundles", path=str(args.input), error=str(exc))
        sys.exit(1)

    insurance_type: InsuranceType | None = (
        InsuranceType(args.insurance_type) if args.insurance_type else None
    )
    logger.info(
        "Starting bonus recalculation",
        visits=len(bundles),
        insurance_type=args.insurance_type,
        facility_id=args.facility_id,
        dry_run=args.dry_run,
    )

    try:
        with get_session() as session:
            catalog = BonusMasterService(session).load_catalog(insurance_type, args.facility_id)
            engine = BonusEngine(catalog, get_settings().engine)
            results: list[EvaluationResult] = engine.evaluate_many(bundles, args.max_workers)

            saved: int = 0
            if not args.dry_run:
                history = BonusHistoryService(session)
                for bundle, result in zip(bundles, results):
                    record_id: str | None = bundle.get("nursing_record_id")
                    if record_id:
                        saved += history.save(record_id, result)
    except ConfigurationError as exc:
        logger.error("Bonus catalog is invalid", error=str(exc))
        sys.exit(1)

    diagnostics: int = sum(len(r.diagnostics) for r in results)
    logger.info(
        "Bonus recalculation complete",
        visits=len(results),
        total_points=sum(r.total_points for r in results),
        history_rows=saved,
        diagnostics=diagnostics,
    )
    if args.dry_run:
        for bundle, result in zip(bundles, results):
            print(json.dumps(
                {"nursing_record_id": bundle.get("nursing_record_id"), **result.to_dict()},
                ensure_ascii=False,
            ))


if __name__ == "__main__":
    main()
