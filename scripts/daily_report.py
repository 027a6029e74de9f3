#!/usr/bin/env python
"""Generate (and archive) the daily trading report.

Usage (examples):

python scripts/daily_report.py --config config.yaml
python scripts/daily_report.py --config config.yaml --date 2026-10-17 --json
python scripts/daily_report.py --date 2026-10-17 --no-archive
"""
import argparse
import json
import sys
from datetime import date
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from spotbot.bootstrap import build_gateway, build_store
from spotbot.config import BotConfig
from spotbot.gateway import GatewayError
from spotbot.logging_setup import logger, setup_logging
from spotbot.report import DailyReport, ReportService


def print_report(report: DailyReport, quote_asset: str) -> None:
    stats = report.stats
    print(f"Daily report for {report.date.isoformat()}")
    print(f"  Trades: {stats.total_trades} (buy={stats.buy_count} sell={stats.sell_count})")
    print(f"  P&L: {report.total_pnl:.2f} {quote_asset} ({report.total_pnl_percent:.2f}%)")
    print(f"  Win rate: {stats.win_rate:.2f}%")
    print(f"  Portfolio value: {report.total_balance_quote:.2f} {quote_asset}")
    if report.daily_change_absolute is not None:
        change_pct = report.daily_change_percent
        pct = f" ({change_pct:.2f}%)" if change_pct is not None else ""
        print(f"  Change vs previous day: {report.daily_change_absolute:.2f} {quote_asset}{pct}")
    if report.balances:
        print("  Balances:")
        for asset, qty in sorted(report.balances.items()):
            print(f"    {asset}: {qty}")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Generate the daily trading report")
    parser.add_argument("--config", help="Path to YAML config (defaults used when omitted)")
    parser.add_argument("--db", help="Override persistence.db_path")
    parser.add_argument("--date", type=date.fromisoformat, help="Report day (YYYY-MM-DD, default: yesterday UTC)")
    parser.add_argument("--no-archive", action="store_true", help="Do not store the report")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    args = parser.parse_args(argv)

    config = BotConfig.from_yaml(args.config) if args.config else BotConfig()
    if args.db:
        config.persistence.db_path = args.db
    setup_logging(config.persistence.log_file, config.persistence.log_level)

    quote_asset = config.trading.quote_assets[0]
    store = build_store(config)
    try:
        service = ReportService(store, build_gateway(config), quote_asset=quote_asset)
        report = service.generate_daily_report(args.date)
    except (GatewayError, ValueError) as e:
        print(f"Report generation failed: {e}")
        logger.error(f"Report generation failed | error={e}")
        store.close()
        return 1

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print_report(report, quote_asset)

    exit_code = 0
    if not args.no_archive and not service.archive_report(report):
        print("Failed to archive report")
        exit_code = 1
    store.close()
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
