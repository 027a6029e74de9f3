import sqlite3
from pathlib import Path

import pytest

from spotbot.db_migrations import (
    MIGRATIONS,
    applied_versions,
    apply_migrations,
    pending_versions,
    rollback_last,
    rollback_migration,
)
from spotbot.persistence_sqlite import SQLiteTradeStore


def tables(conn):
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    return {r[0] for r in rows}


def test_apply_migrations_idempotent(tmp_path: Path):
    store = SQLiteTradeStore(tmp_path / "migs.db")
    # the store applied everything on open
    assert apply_migrations(store.conn) == []
    assert set(applied_versions(store.conn)) == set(MIGRATIONS)
    assert pending_versions(store.conn) == []
    store.close()


def test_fresh_database_applies_in_order(tmp_path: Path):
    conn = sqlite3.connect(str(tmp_path / "fresh.db"))
    assert pending_versions(conn) == sorted(MIGRATIONS)
    assert apply_migrations(conn) == sorted(MIGRATIONS)
    assert {"trades", "reports", "schema_migrations"} <= tables(conn)
    conn.close()


def test_rollback_last_drops_reports(tmp_path: Path):
    conn = sqlite3.connect(str(tmp_path / "rb.db"))
    apply_migrations(conn)

    assert rollback_last(conn) == 3
    assert "reports" not in tables(conn)
    assert pending_versions(conn) == [3]

    # reapplying restores it
    assert apply_migrations(conn) == [3]
    assert "reports" in tables(conn)
    conn.close()


def test_rollback_last_on_empty_database(tmp_path: Path):
    conn = sqlite3.connect(str(tmp_path / "empty.db"))
    assert rollback_last(conn) is None
    conn.close()


def test_rollback_unknown_version_raises(tmp_path: Path):
    conn = sqlite3.connect(str(tmp_path / "unknown.db"))
    apply_migrations(conn)
    with pytest.raises(RuntimeError):
        rollback_migration(conn, 99)
    conn.close()


def test_full_rollback_chain(tmp_path: Path):
    conn = sqlite3.connect(str(tmp_path / "chain.db"))
    apply_migrations(conn)
    rolled = []
    while True:
        v = rollback_last(conn)
        if v is None:
            break
        rolled.append(v)
    assert rolled == [3, 2, 1]
    assert "trades" not in tables(conn)
    conn.close()
