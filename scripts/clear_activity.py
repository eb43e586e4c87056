import argparse
import os
import sqlite3
from pathlib import Path
from typing import Optional


USER_TABLES = [
    "activity_records",
    "clarification_sessions",
    "frequent_phrases",
]


def resolve_db_path(override: Optional[str]) -> Path:
    if override:
        return Path(override).expanduser().resolve()
    env_path = os.getenv("DB_PATH")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return Path("./data/activitylog.db").resolve()


def count_rows(conn: sqlite3.Connection, user_ids: list[str]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for table in USER_TABLES:
        if user_ids:
            placeholders = ",".join("?" for _ in user_ids)
            row = conn.execute(f"SELECT COUNT(*) FROM {table} WHERE user_id IN ({placeholders})", user_ids).fetchone()
        else:
            row = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
        counts[table] = int(row[0])
    return counts


def delete_rows(conn: sqlite3.Connection, user_ids: list[str]) -> dict[str, int]:
    """Delete user-scoped rows; an empty ``user_ids`` list clears every user."""
    counts: dict[str, int] = {}
    for table in USER_TABLES:
        if user_ids:
            placeholders = ",".join("?" for _ in user_ids)
            cur = conn.execute(f"DELETE FROM {table} WHERE user_id IN ({placeholders})", user_ids)
        else:
            cur = conn.execute(f"DELETE FROM {table}")
        counts[table] = cur.rowcount if cur.rowcount is not None else 0
    return counts


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Clear logged activity data from the activity log SQLite DB for testing."
    )
    parser.add_argument(
        "--user-id",
        action="append",
        default=[],
        help="User id to clear (repeatable).",
    )
    parser.add_argument(
        "--all",
        action="store_true",
        help="Clear activity data for every user.",
    )
    parser.add_argument(
        "--db-path",
        default=None,
        help="Override SQLite DB path. Defaults to DB_PATH env or app default.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show matched row counts only; do not delete.",
    )
    parser.add_argument(
        "--yes",
        action="store_true",
        help="Confirm destructive operation.",
    )
    args = parser.parse_args(argv)

    if not args.all and not args.user_id:
        parser.error("Use --user-id <id> or --all")
    if not args.dry_run and not args.yes:
        parser.error("Add --yes to confirm deletion")

    db_path = resolve_db_path(args.db_path)
    if not db_path.exists():
        print(f"DB not found: {db_path}")
        return 1

    user_ids = [] if args.all else [u.strip() for u in args.user_id if u.strip()]
    if not args.all and not user_ids:
        parser.error("--user-id values must not be blank")
    conn = sqlite3.connect(str(db_path))
    try:
        print(f"Target DB: {db_path}")
        print(f"Users: {'all' if args.all else ', '.join(user_ids)}")
        if args.dry_run:
            for table, count in count_rows(conn, user_ids).items():
                print(f"  {table}: {count}")
            return 0
        counts = delete_rows(conn, user_ids)
        conn.commit()
        print("Deleted rows:")
        for table, count in counts.items():
            print(f"  {table}: {count}")
    finally:
        conn.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
