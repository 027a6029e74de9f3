#!/usr/bin/env python
"""Run one strategy cycle.

Usage (examples):

python scripts/run_bot.py --config config.yaml
python scripts/run_bot.py --config config.yaml --dry-run --strategy combined
python scripts/run_bot.py --symbol ETHUSDT --amount 50 --force
"""
import argparse
import sys
import time
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from spotbot.bootstrap import build_engine, build_gateway, build_store
from spotbot.config import BotConfig
from spotbot.gateway import GatewayError, MarketGateway
from spotbot.logging_setup import logger, setup_logging
from spotbot.models import StrategyConfig, StrategyKind, TradingResult
from spotbot.persistence_sqlite import TradeStore
from spotbot.strategies import describe


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Execute the trading bot strategy")
    parser.add_argument("--config", help="Path to YAML config (defaults used when omitted)")
    parser.add_argument("--db", help="Override persistence.db_path")
    parser.add_argument("--dry-run", action="store_true", help="Evaluate without placing real orders")
    parser.add_argument("--force", action="store_true", help="Run even if the bot is disabled")
    parser.add_argument("--symbol", help="Trading pair symbol (default: from config)")
    parser.add_argument(
        "--strategy", choices=[k.value for k in StrategyKind], help="Trading strategy (default: from config)"
    )
    parser.add_argument("--amount", help="Quote amount per BUY (default: from config)")
    return parser


def print_result(result: TradingResult) -> None:
    print(f"Signal: {result.signal.value}")
    if result.reason:
        print(f"  Reason: {result.reason}")

    snapshot = result.indicators
    print("Indicators:")
    if snapshot.rsi is not None:
        print(f"  RSI: {snapshot.rsi} ({snapshot.rsi_signal})")
    if snapshot.short_ma is not None:
        print(f"  Short MA: {snapshot.short_ma}")
    if snapshot.long_ma is not None:
        print(f"  Long MA: {snapshot.long_ma}")
    if snapshot.current_price is not None:
        print(f"  Current price: {snapshot.current_price}")
    print(f"  Trend: {snapshot.trend.value}")
    if snapshot.golden_cross:
        print("  Golden cross detected")
    if snapshot.death_cross:
        print("  Death cross detected")

    if result.trade is not None:
        trade = result.trade
        print("Trade executed:")
        print(f"  Side: {trade.side.value}")
        print(f"  Quantity: {trade.quantity}")
        print(f"  Price: {trade.price}")
        print(f"  Total: {trade.quote_quantity}")
        print(f"  Order ID: {trade.order_id}")


def run(args, config: BotConfig, gateway: MarketGateway, store: TradeStore) -> int:
    """Execute one cycle; returns the process exit code."""
    if not args.force and not config.trading.enabled:
        print("Bot is disabled. Use --force to run anyway.")
        logger.info("Bot execution skipped: bot is disabled")
        return 0

    symbol = args.symbol or config.trading.symbol
    strategy_config = config.to_strategy_config()
    if args.strategy:
        strategy_config = StrategyConfig(
            kind=StrategyKind(args.strategy),
            oversold=strategy_config.oversold,
            overbought=strategy_config.overbought,
        )
    try:
        amount = Decimal(args.amount) if args.amount else config.trading.amount
    except InvalidOperation:
        print(f"Invalid amount: {args.amount}")
        return 1

    if amount > config.trading.max_amount_per_trade:
        print(f"Amount {amount} exceeds max_amount_per_trade {config.trading.max_amount_per_trade}")
        return 1

    if not args.dry_run:
        today = datetime.now(timezone.utc).date()
        trades_today = store.count_by_date(today)
        if trades_today >= config.trading.max_trades_per_day:
            print(f"Daily trade limit reached ({trades_today}/{config.trading.max_trades_per_day})")
            logger.warning(f"Bot execution skipped: daily trade limit reached | trades_today={trades_today}")
            return 0

    name, description = describe(strategy_config)
    print("Trading parameters:")
    print(f"  Symbol: {symbol}")
    print(f"  Strategy: {name} - {description}")
    print(f"  Amount: {amount}")
    if args.dry_run:
        print("  Mode: DRY RUN (no real orders)")

    logger.info(
        f"Bot execution started | symbol={symbol} strategy={strategy_config.kind.value} "
        f"amount={amount} dry_run={args.dry_run} force={args.force}"
    )
    started = time.monotonic()
    engine = build_engine(config, gateway, store)
    try:
        result = engine.execute_strategy(symbol, strategy_config, amount, dry_run=args.dry_run)
    except (GatewayError, ValueError) as e:
        print(f"Bot execution failed: {e}")
        logger.error(f"Bot execution failed | error={e}")
        return 1

    print_result(result)
    duration = time.monotonic() - started
    logger.info(
        f"Bot execution completed | signal={result.signal.value} trade_executed={result.executed} "
        f"duration_seconds={duration:.2f}"
    )
    print(f"Execution completed in {duration:.2f}s")
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    config = BotConfig.from_yaml(args.config) if args.config else BotConfig()
    if args.db:
        config.persistence.db_path = args.db
    setup_logging(config.persistence.log_file, config.persistence.log_level)

    store = build_store(config)
    try:
        gateway = build_gateway(config)
        return run(args, config, gateway, store)
    except ValueError as e:
        print(f"Configuration error: {e}")
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
