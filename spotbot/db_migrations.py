from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional


def _migration_1(conn):
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS trades (
            id TEXT PRIMARY KEY,
            order_id TEXT,
            client_order_id TEXT,
            symbol TEXT NOT NULL,
            side TEXT NOT NULL,
            type TEXT NOT NULL,
            status TEXT NOT NULL,
            quantity TEXT NOT NULL,
            price TEXT NOT NULL,
            quote_quantity TEXT NOT NULL,
            commission TEXT,
            commission_asset TEXT,
            strategy TEXT,
            indicators TEXT,
            related_trade_id TEXT,
            pnl TEXT,
            pnl_percent TEXT,
            notes TEXT,
            trade_date TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            version INTEGER NOT NULL DEFAULT 0
        )
        """
    )


def _migration_1_down(conn):
    cur = conn.cursor()
    cur.execute("DROP TABLE IF EXISTS trades")


def _migration_2(conn):
    """Indices backing the date, symbol and open-position lookups."""
    cur = conn.cursor()
    cur.execute("CREATE INDEX IF NOT EXISTS idx_trades_date ON trades(trade_date, created_at)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_trades_symbol ON trades(symbol, created_at)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_trades_status ON trades(status, side, related_trade_id)")


def _migration_2_down(conn):
    cur = conn.cursor()
    cur.execute("DROP INDEX IF EXISTS idx_trades_date")
    cur.execute("DROP INDEX IF EXISTS idx_trades_symbol")
    cur.execute("DROP INDEX IF EXISTS idx_trades_status")


def _migration_3(conn):
    """Archived daily reports, one row per day."""
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS reports (
            report_date TEXT PRIMARY KEY,
            trades_count INTEGER NOT NULL,
            pnl TEXT NOT NULL,
            pnl_percent TEXT NOT NULL,
            total_balance TEXT NOT NULL,
            message_id TEXT,
            created_at TEXT NOT NULL
        )
        """
    )


def _migration_3_down(conn):
    cur = conn.cursor()
    cur.execute("DROP TABLE IF EXISTS reports")


MIGRATIONS: Dict[int, Callable] = {
    1: _migration_1,
    2: _migration_2,
    3: _migration_3,
}

MIGRATION_DOWNS: Dict[int, Callable] = {
    1: _migration_1_down,
    2: _migration_2_down,
    3: _migration_3_down,
}


def _ensure_version_table(conn) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version INTEGER PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """
    )
    conn.commit()


def applied_versions(conn) -> Dict[int, str]:
    """Return {version: applied_at} for every applied migration."""
    _ensure_version_table(conn)
    cur = conn.execute("SELECT version, applied_at FROM schema_migrations ORDER BY version")
    return {row[0]: row[1] for row in cur.fetchall()}


def pending_versions(conn) -> List[int]:
    applied = applied_versions(conn)
    return sorted(v for v in MIGRATIONS if v not in applied)


def apply_migrations(conn) -> List[int]:
    """Apply pending migrations to the given sqlite3 connection.

    Returns the list of applied migration versions.
    """
    applied_now = []
    for v in pending_versions(conn):
        try:
            conn.execute("BEGIN IMMEDIATE")
            MIGRATIONS[v](conn)
            conn.execute(
                "INSERT INTO schema_migrations(version, applied_at) VALUES(?, ?)",
                (v, datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()
            applied_now.append(v)
        except Exception:
            conn.rollback()
            raise
    return applied_now


def rollback_migration(conn, version: int) -> None:
    """Rollback a specific migration version if a down migration is registered."""
    if version not in MIGRATION_DOWNS:
        raise RuntimeError(f"No down migration registered for version {version}")

    try:
        conn.execute("BEGIN IMMEDIATE")
        MIGRATION_DOWNS[version](conn)
        conn.execute("DELETE FROM schema_migrations WHERE version = ?", (version,))
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def rollback_last(conn) -> Optional[int]:
    """Rollback the latest applied migration; returns its version or None."""
    applied = applied_versions(conn)
    if not applied:
        return None
    v = max(applied)
    rollback_migration(conn, v)
    return v
