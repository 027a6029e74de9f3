#!/usr/bin/env python
"""Trade history and P&L reporter.

Usage:
    python scripts/trade_history.py --db spotbot.db list
    python scripts/trade_history.py --db spotbot.db list --symbol ETHUSDT --limit 20
    python scripts/trade_history.py --db spotbot.db stats --days 7
    python scripts/trade_history.py --db spotbot.db pnl <sell_trade_id>
"""
import argparse
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from spotbot.persistence_sqlite import SQLiteTradeStore
from spotbot.pnl import PnlEngine


def list_trades(store, symbol=None, limit=50):
    """List recent trades, newest first."""
    if symbol:
        trades = store.find_by_symbol(symbol, limit=limit)
    else:
        now = datetime.now(timezone.utc)
        trades = store.find_by_date_range(datetime(1970, 1, 1, tzinfo=timezone.utc), now)[:limit]

    if not trades:
        print("No trades found")
        return

    print(f"{'Trade ID':<38} {'Symbol':<10} {'Side':<5} {'Status':<10} {'Qty':<14} {'Price':<14} {'P&L':<10} {'Time':<20}")
    print("-" * 125)
    for t in trades:
        pnl = f"{t.pnl:.2f}" if t.pnl is not None else "-"
        when = t.created_at.strftime("%Y-%m-%d %H:%M:%S")
        print(f"{t.id:<38} {t.symbol:<10} {t.side.value:<5} {t.status.value:<10} {str(t.quantity):<14} {str(t.price):<14} {pnl:<10} {when:<20}")
    print(f"\nTotal: {len(trades)}")


def stats(store, days=1, initial_balance=Decimal("0")):
    """Show P&L and statistics over the last ``days`` days."""
    end = datetime.now(timezone.utc)
    start = end - timedelta(days=days)
    engine = PnlEngine(store)

    summary = engine.calculate_pnl(start, end)
    trade_stats = engine.period_stats(start, end, initial_balance)

    print(f"\n=== Trading Summary (last {days} day(s)) ===")
    print(f"Total Trades: {trade_stats.total_trades} (buy={trade_stats.buy_count} sell={trade_stats.sell_count})")
    print(f"Realized P&L: {summary.pnl:.2f} ({summary.pnl_percent:.2f}%)")
    print(f"Winning / Losing: {summary.winning_trades} / {summary.losing_trades}")
    print(f"Win Rate: {trade_stats.win_rate:.1f}%")
    print(f"Average P&L: {trade_stats.average_pnl:.2f}")
    print(f"Best / Worst: {trade_stats.best_trade:.2f} / {trade_stats.worst_trade:.2f}")
    print(f"Volume: {trade_stats.total_volume:.2f}  Fees: {trade_stats.total_fees:.4f}")


def trade_pnl(store, trade_id):
    """Compute (and store) the P&L of one sell trade."""
    pnl = PnlEngine(store).calculate_trade_pnl(trade_id)
    if pnl is None:
        print(f"No P&L available for trade {trade_id}")
        return 1
    trade = store.find_by_id(trade_id)
    print(f"Trade {trade_id}: P&L {pnl:.2f}")
    if trade is not None and trade.pnl_percent is not None:
        print(f"Return: {trade.pnl_percent:.2f}%")
    if trade is not None and trade.related_trade_id:
        print(f"Matched buy: {trade.related_trade_id}")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Trade history and P&L reporter")
    parser.add_argument("--db", required=True, help="Path to SQLite database")

    sub = parser.add_subparsers(dest="cmd")

    list_cmd = sub.add_parser("list")
    list_cmd.add_argument("--symbol")
    list_cmd.add_argument("--limit", type=int, default=50)

    stats_cmd = sub.add_parser("stats")
    stats_cmd.add_argument("--days", type=int, default=1)
    stats_cmd.add_argument("--initial-balance", type=Decimal, default=Decimal("0"))

    pnl_cmd = sub.add_parser("pnl")
    pnl_cmd.add_argument("trade_id")

    args = parser.parse_args()

    db_path = Path(args.db)
    if not db_path.exists():
        print(f"Database not found: {db_path}")
        sys.exit(1)

    store = SQLiteTradeStore(db_path)
    code = 0
    if args.cmd == "list":
        list_trades(store, args.symbol, args.limit)
    elif args.cmd == "stats":
        stats(store, args.days, args.initial_balance)
    elif args.cmd == "pnl":
        code = trade_pnl(store, args.trade_id)
    else:
        parser.print_help()

    store.close()
    sys.exit(code)


if __name__ == "__main__":
    main()
