#!/usr/bin/env python
"""Migration CLI: list, apply, rollback migrations of the trade database.

Usage (examples):

python scripts/migrate.py --db spotbot.db list
python scripts/migrate.py --db spotbot.db apply
python scripts/migrate.py --db spotbot.db apply --dry-run
python scripts/migrate.py --db spotbot.db rollback --version 3
python scripts/migrate.py --db spotbot.db rollback --last --yes
"""
import argparse
import sqlite3
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from spotbot.db_migrations import (
    MIGRATIONS,
    applied_versions,
    apply_migrations,
    pending_versions,
    rollback_last,
    rollback_migration,
)


def list_migrations(conn):
    applied = applied_versions(conn)
    print("Available migrations:")
    for v in sorted(MIGRATIONS):
        status = "applied" if v in applied else "pending"
        print(f"  {v}: {status} (applied_at={applied.get(v, '-')})")


def confirm(prompt: str) -> bool:
    """Ask for 'yes'; non-interactive stdin counts as confirmation."""
    try:
        return input(f"{prompt} This may DROP data. Type 'yes' to continue: ").strip().lower() == "yes"
    except (EOFError, BrokenPipeError):
        return True


def do_apply(conn, dry_run: bool):
    if dry_run:
        pending = pending_versions(conn)
        if pending:
            print("Pending migrations:", pending)
        else:
            print("No pending migrations; database up-to-date.")
        return

    applied = apply_migrations(conn)
    if applied:
        print("Applied migrations:", applied)
    else:
        print("No migrations applied; database up-to-date.")


def do_rollback(conn, args):
    if args.version:
        target = args.version
    else:
        applied = applied_versions(conn)
        if not applied:
            print("No applied migrations to rollback")
            return
        target = max(applied)

    if args.dry_run:
        print(f"Would rollback migration {target} (dry-run)")
        return
    if not args.yes and not confirm(f"Are you sure you want to rollback migration {target}?"):
        print("Aborted.")
        return

    if args.version:
        rollback_migration(conn, target)
        print(f"Rolled back migration {target}")
    else:
        v = rollback_last(conn)
        print(f"Rolled back migration {v}" if v is not None else "No applied migrations to rollback")


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--db", required=True, help="Path to sqlite DB file")
    sub = parser.add_subparsers(dest="cmd")

    sub.add_parser("list")
    apply_p = sub.add_parser("apply")
    apply_p.add_argument("--dry-run", action="store_true", help="Show pending migrations without applying them")

    rb = sub.add_parser("rollback")
    rb.add_argument("--version", type=int, help="Rollback a specific migration version")
    rb.add_argument("--last", action="store_true", help="Rollback the last applied migration")
    rb.add_argument("--dry-run", action="store_true", help="Show which migration would be rolled back without performing it")
    rb.add_argument("--yes", action="store_true", help="Do not prompt for confirmation when rolling back")

    args = parser.parse_args()
    db = Path(args.db)
    db.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db), timeout=30)
    try:
        if args.cmd == "list":
            list_migrations(conn)
        elif args.cmd == "apply":
            do_apply(conn, args.dry_run)
        elif args.cmd == "rollback" and (args.version or args.last):
            do_rollback(conn, args)
        else:
            parser.print_help()
    finally:
        conn.close()


if __name__ == "__main__":
    main()
