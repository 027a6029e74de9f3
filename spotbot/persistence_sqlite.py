import json
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .logging_setup import logger
from .models import OrderSide, OrderStatus, OrderType, Trade, utcnow


class PersistenceError(Exception):
    """Raised when the trade store cannot complete a read or write."""


class ConcurrentUpdateError(PersistenceError):
    """Raised when a trade changed since the caller loaded it."""

    def __init__(self, trade_id: str, expected_version: int):
        super().__init__(
            f"Trade {trade_id} was modified concurrently (expected version {expected_version})"
        )
        self.trade_id = trade_id
        self.expected_version = expected_version


class TradeStore(ABC):
    """Trade ledger used by the execution and P&L layers."""

    @abstractmethod
    def create(self, trade: Trade) -> Trade:
        pass

    @abstractmethod
    def find_by_id(self, trade_id: str) -> Optional[Trade]:
        pass

    @abstractmethod
    def find_by_date(self, day: date, limit: int = 50) -> List[Trade]:
        """Trades created on ``day`` (UTC), newest first."""

    @abstractmethod
    def find_by_date_range(self, start: datetime, end: datetime) -> List[Trade]:
        """Trades with start <= created_at <= end, newest first."""

    @abstractmethod
    def find_by_symbol(self, symbol: str, limit: int = 50) -> List[Trade]:
        pass

    @abstractmethod
    def find_by_status(self, status: OrderStatus) -> List[Trade]:
        pass

    @abstractmethod
    def get_open_positions(self, symbol: Optional[str] = None) -> List[Trade]:
        """FILLED buys without a matching sell, oldest first."""

    @abstractmethod
    def update(self, trade: Trade) -> Trade:
        """Persist ``trade`` if its version matches the stored one.

        Returns the stored trade with the incremented version.

        Raises:
            ConcurrentUpdateError: If the stored version differs
        """

    @abstractmethod
    def count_by_date(self, day: date) -> int:
        pass

    @abstractmethod
    def sum_pnl_by_date(self, day: date) -> Decimal:
        pass

    @abstractmethod
    def save_report(self, report_date: date, data: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def find_report(self, report_date: date) -> Optional[Dict[str, Any]]:
        pass


def _ts(value: datetime) -> str:
    """Normalize to a fixed-width UTC ISO string so that text order is time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _dec(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def _opt_dec(value: Optional[str]) -> Optional[Decimal]:
    return None if value is None else Decimal(value)


class SQLiteTradeStore(TradeStore):
    """SQLite-backed trade ledger.

    Decimals are stored as TEXT to keep them exact. Timestamps are stored as
    UTC ISO strings. Writes run inside ``BEGIN IMMEDIATE`` transactions and
    ``update`` only succeeds when the row still carries the caller's version.
    """

    _COLUMNS = (
        "id, order_id, client_order_id, symbol, side, type, status, quantity, price, "
        "quote_quantity, commission, commission_asset, strategy, indicators, related_trade_id, "
        "pnl, pnl_percent, notes, trade_date, created_at, updated_at, version"
    )

    def __init__(self, path: Union[str, Path]):
        self.path = path
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(path), timeout=30, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._init_db()

    def _init_db(self):
        from .db_migrations import apply_migrations

        applied = apply_migrations(self.conn)
        if applied:
            logger.info(f"Applied trade store migrations | versions={applied} path={self.path}")

    def close(self) -> None:
        self.conn.close()

    # --- row mapping ---
    @staticmethod
    def _to_row(trade: Trade) -> tuple:
        return (
            trade.id,
            trade.order_id,
            trade.client_order_id,
            trade.symbol,
            trade.side.value,
            trade.type.value,
            trade.status.value,
            str(trade.quantity),
            str(trade.price),
            str(trade.quote_quantity),
            _dec(trade.commission),
            trade.commission_asset,
            trade.strategy,
            json.dumps(trade.indicators) if trade.indicators is not None else None,
            trade.related_trade_id,
            _dec(trade.pnl),
            _dec(trade.pnl_percent),
            trade.notes,
            trade.created_at.astimezone(timezone.utc).date().isoformat(),
            _ts(trade.created_at),
            _ts(trade.updated_at),
            trade.version,
        )

    @staticmethod
    def _from_row(row: sqlite3.Row) -> Trade:
        return Trade(
            id=row["id"],
            order_id=row["order_id"],
            client_order_id=row["client_order_id"],
            symbol=row["symbol"],
            side=OrderSide(row["side"]),
            type=OrderType(row["type"]),
            status=OrderStatus(row["status"]),
            quantity=Decimal(row["quantity"]),
            price=Decimal(row["price"]),
            quote_quantity=Decimal(row["quote_quantity"]),
            commission=_opt_dec(row["commission"]),
            commission_asset=row["commission_asset"],
            strategy=row["strategy"],
            indicators=json.loads(row["indicators"]) if row["indicators"] else None,
            related_trade_id=row["related_trade_id"],
            pnl=_opt_dec(row["pnl"]),
            pnl_percent=_opt_dec(row["pnl_percent"]),
            notes=row["notes"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            version=row["version"],
        )

    def _query(self, sql: str, params: tuple = ()) -> List[Trade]:
        try:
            cur = self.conn.execute(sql, params)
            return [self._from_row(r) for r in cur.fetchall()]
        except sqlite3.Error as e:
            raise PersistenceError(f"Trade query failed: {e}") from e

    # --- writes ---
    def create(self, trade: Trade) -> Trade:
        placeholders = ", ".join("?" * 22)
        try:
            self.conn.execute("BEGIN IMMEDIATE")
            self.conn.execute(
                f"INSERT INTO trades({self._COLUMNS}) VALUES({placeholders})",
                self._to_row(trade),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            raise PersistenceError(f"Failed to create trade {trade.id}: {e}") from e
        logger.debug(f"Trade stored | id={trade.id} symbol={trade.symbol} side={trade.side.value}")
        return trade

    def update(self, trade: Trade) -> Trade:
        updated_at = utcnow()
        try:
            self.conn.execute("BEGIN IMMEDIATE")
            cur = self.conn.execute(
                """
                UPDATE trades SET
                    status = ?, commission = ?, commission_asset = ?, related_trade_id = ?,
                    pnl = ?, pnl_percent = ?, notes = ?, updated_at = ?, version = version + 1
                WHERE id = ? AND version = ?
                    AND (related_trade_id IS NULL OR related_trade_id = ?)
                """,
                (
                    trade.status.value,
                    _dec(trade.commission),
                    trade.commission_asset,
                    trade.related_trade_id,
                    _dec(trade.pnl),
                    _dec(trade.pnl_percent),
                    trade.notes,
                    _ts(updated_at),
                    trade.id,
                    trade.version,
                    trade.related_trade_id,
                ),
            )
            if cur.rowcount == 0:
                exists = self.conn.execute(
                    "SELECT 1 FROM trades WHERE id = ?", (trade.id,)
                ).fetchone()
                self.conn.rollback()
                if exists is None:
                    raise PersistenceError(f"Trade not found: {trade.id}")
                raise ConcurrentUpdateError(trade.id, trade.version)
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            raise PersistenceError(f"Failed to update trade {trade.id}: {e}") from e
        return replace(trade, updated_at=updated_at, version=trade.version + 1)

    # --- reads ---
    def find_by_id(self, trade_id: str) -> Optional[Trade]:
        rows = self._query(f"SELECT {self._COLUMNS} FROM trades WHERE id = ?", (trade_id,))
        return rows[0] if rows else None

    def find_by_date(self, day: date, limit: int = 50) -> List[Trade]:
        return self._query(
            f"SELECT {self._COLUMNS} FROM trades WHERE trade_date = ? ORDER BY created_at DESC LIMIT ?",
            (day.isoformat(), limit),
        )

    def find_by_date_range(self, start: datetime, end: datetime) -> List[Trade]:
        return self._query(
            f"SELECT {self._COLUMNS} FROM trades WHERE created_at >= ? AND created_at <= ? "
            "ORDER BY created_at DESC",
            (_ts(start), _ts(end)),
        )

    def find_by_symbol(self, symbol: str, limit: int = 50) -> List[Trade]:
        return self._query(
            f"SELECT {self._COLUMNS} FROM trades WHERE symbol = ? ORDER BY created_at DESC LIMIT ?",
            (symbol, limit),
        )

    def find_by_status(self, status: OrderStatus) -> List[Trade]:
        return self._query(
            f"SELECT {self._COLUMNS} FROM trades WHERE status = ? ORDER BY created_at DESC",
            (status.value,),
        )

    def get_open_positions(self, symbol: Optional[str] = None) -> List[Trade]:
        sql = (
            f"SELECT {self._COLUMNS} FROM trades WHERE side = ? AND status = ? "
            "AND related_trade_id IS NULL"
        )
        params: tuple = (OrderSide.BUY.value, OrderStatus.FILLED.value)
        if symbol is not None:
            sql += " AND symbol = ?"
            params += (symbol,)
        return self._query(sql + " ORDER BY created_at ASC", params)

    def count_by_date(self, day: date) -> int:
        try:
            row = self.conn.execute(
                "SELECT COUNT(*) FROM trades WHERE trade_date = ?", (day.isoformat(),)
            ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Trade count failed: {e}") from e
        return int(row[0])

    def sum_pnl_by_date(self, day: date) -> Decimal:
        try:
            cur = self.conn.execute(
                "SELECT pnl FROM trades WHERE trade_date = ? AND pnl IS NOT NULL",
                (day.isoformat(),),
            )
            return sum((Decimal(r[0]) for r in cur.fetchall()), Decimal("0"))
        except sqlite3.Error as e:
            raise PersistenceError(f"P&L sum failed: {e}") from e

    # --- reports ---
    def save_report(self, report_date: date, data: Dict[str, Any]) -> None:
        try:
            self.conn.execute("BEGIN IMMEDIATE")
            self.conn.execute(
                """
                INSERT OR REPLACE INTO reports(
                    report_date, trades_count, pnl, pnl_percent, total_balance, message_id, created_at
                ) VALUES(?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    report_date.isoformat(),
                    int(data["trades_count"]),
                    str(data["pnl"]),
                    str(data["pnl_percent"]),
                    str(data["total_balance"]),
                    data.get("message_id"),
                    _ts(utcnow()),
                ),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            raise PersistenceError(f"Failed to save report {report_date}: {e}") from e

    def find_report(self, report_date: date) -> Optional[Dict[str, Any]]:
        try:
            row = self.conn.execute(
                "SELECT * FROM reports WHERE report_date = ?", (report_date.isoformat(),)
            ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Report query failed: {e}") from e
        if row is None:
            return None
        return {
            "report_date": date.fromisoformat(row["report_date"]),
            "trades_count": row["trades_count"],
            "pnl": Decimal(row["pnl"]),
            "pnl_percent": Decimal(row["pnl_percent"]),
            "total_balance": Decimal(row["total_balance"]),
            "message_id": row["message_id"],
            "created_at": datetime.fromisoformat(row["created_at"]),
        }
