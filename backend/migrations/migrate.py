"""SQL migration runner for the bonus tables.

Applies the numbered .sql files in this directory in order, recording each in
a _migrations table so a file is never applied twice.

Usage:
    python migrations/migrate.py                     # apply pending migrations
    python migrations/migrate.py --dry-run           # list what would be applied
    python migrations/migrate.py --status            # applied vs pending
    python migrations/migrate.py --database x.db     # explicit SQLite file
"""

import argparse
import os
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

MIGRATIONS_DIR: Path = Path(__file__).resolve().parent
DEFAULT_SQLITE_PATH: str = "data/nursebonus.db"


def resolve_db_path(explicit: str | None = None) -> Path:
    """Explicit path, else DB_SQLITE_PATH from the environment/.env, relative to backend/."""
    from dotenv import load_dotenv

    backend_root: Path = MIGRATIONS_DIR.parent
    for candidate in (backend_root / ".env", backend_root.parent / ".env"):
        if candidate.exists():
            load_dotenv(candidate, override=False)

    path: Path = Path(explicit or os.environ.get("DB_SQLITE_PATH") or DEFAULT_SQLITE_PATH)
    return path if path.is_absolute() else backend_root / path


def _connect(db_path: Path) -> sqlite3.Connection:
    conn: sqlite3.Connection = sqlite3.connect(db_path)
    conn.execute("PRAGMA foreign_keys=ON")
    conn.execute(
        "CREATE TABLE IF NOT EXISTS _migrations ("
        "  filename TEXT PRIMARY KEY,"
        "  applied_at TEXT NOT NULL"
        ")"
    )
    conn.commit()
    return conn


def applied_migrations(conn: sqlite3.Connection) -> set[str]:
    return {row[0] for row in conn.execute("SELECT filename FROM _migrations")}


def pending_migrations(applied: set[str]) -> list[Path]:
    return [f for f in sorted(MIGRATIONS_DIR.glob("*.sql")) if f.name not in applied]


def migrate(db_path: Path, dry_run: bool = False) -> list[str]:
    """Apply pending files; returns the names applied (or that would be)."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    print(f"Database: {db_path}")
    conn: sqlite3.Connection = _connect(db_path)
    try:
        pending: list[Path] = pending_migrations(applied_migrations(conn))
        if not pending:
            print("No pending migrations.")
            return []
        for migration in pending:
            print(f"{'[DRY RUN] ' if dry_run else ''}Applying {migration.name} ...")
            if dry_run:
                continue
            conn.executescript(migration.read_text(encoding="utf-8"))
            conn.execute(
                "INSERT INTO _migrations (filename, applied_at) VALUES (?, ?)",
                (migration.name, datetime.now(UTC).isoformat()),
            )
            conn.commit()
        return [m.name for m in pending]
    finally:
        conn.close()


def status(db_path: Path) -> None:
    if not db_path.exists():
        print(f"Database not found: {db_path}")
        return
    conn: sqlite3.Connection = _connect(db_path)
    try:
        applied: set[str] = applied_migrations(conn)
        pending: list[Path] = pending_migrations(applied)
    finally:
        conn.close()
    print(f"Database: {db_path}")
    for name in sorted(applied):
        print(f"  [x] {name}")
    for p in pending:
        print(f"  [ ] {p.name}")


def main(argv: list[str] | None = None) -> None:
    parser: argparse.ArgumentParser = argparse.ArgumentParser(description="SQL migration runner")
    parser.add_argument("--dry-run", action="store_true", help="Show what would be applied")
    parser.add_argument("--status", action="store_true", help="Show migration status")
    parser.add_argument("--database", default=None, help="SQLite file (default: DB_SQLITE_PATH)")
    args: argparse.Namespace = parser.parse_args(argv)

    db_path: Path = resolve_db_path(args.database)
    if args.status:
        status(db_path)
    else:
        migrate(db_path, dry_run=args.dry_run)


if __name__ == "__main__":
    main()
