"""Offline demo of one trading cycle and the P&L pipeline.

Shows:
1. Feeding synthetic candles through the in-memory gateway
2. Running the combined strategy (BUY on an oversold dip in an uptrend)
3. Selling later and matching the sell FIFO against the buy
4. Building the daily report
No exchange access or credentials are needed.
"""
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

# Add parent directory to path so we can import the spotbot package
sys.path.insert(0, str(Path(__file__).parent.parent))

from spotbot.execution import TradingEngine
from spotbot.gateway import InMemoryGateway
from spotbot.indicator_service import IndicatorService
from spotbot.logging_setup import logger, setup_logging
from spotbot.models import Candle, StrategyConfig, StrategyKind, Trade
from spotbot.persistence_sqlite import SQLiteTradeStore
from spotbot.pnl import PnlEngine
from spotbot.report import ReportService

SYMBOL = "BTCUSDT"


def make_candles(closes, start):
    candles = []
    for i, close in enumerate(closes):
        price = Decimal(str(close))
        open_time = start + timedelta(minutes=5 * i)
        candles.append(
            Candle(
                open_time=open_time,
                open=price,
                high=price,
                low=price,
                close=price,
                volume=Decimal("1"),
                close_time=open_time + timedelta(minutes=5),
            )
        )
    return candles


def main():
    setup_logging(log_file=None, level="INFO")
    logger.info("=== Spot Bot Demo ===")

    start = datetime.now(timezone.utc) - timedelta(days=1)
    # steady climb, then a sharp pullback: bullish trend with RSI oversold
    closes = [100 + i for i in range(240)] + [339 - 3 * k for k in range(1, 11)]

    gateway = InMemoryGateway()
    gateway.set_candles(SYMBOL, make_candles(closes, start))
    gateway.set_price(SYMBOL, closes[-1])
    gateway.set_balance("USDT", "1000")

    with tempfile.TemporaryDirectory() as tmpdir:
        store = SQLiteTradeStore(Path(tmpdir) / "demo.db")
        engine = TradingEngine(gateway, store, IndicatorService())

        buy = engine.execute_strategy(SYMBOL, StrategyConfig(kind=StrategyKind.COMBINED), Decimal("100"))
        logger.info(f"First cycle | signal={buy.signal.value} executed={buy.executed} rsi={buy.indicators.rsi}")

        # price recovers: sell the position at market
        gateway.set_price(SYMBOL, "330")
        btc = gateway.get_balance("BTC")
        sell = gateway.market_sell(SYMBOL, btc.free)
        store.create(Trade.from_order(sell, strategy="manual"))

        pnl = PnlEngine(store).calculate_pnl(start, datetime.now(timezone.utc) + timedelta(minutes=1))
        logger.info(f"Realized P&L | pnl={pnl.pnl:.2f} pnl_percent={pnl.pnl_percent:.2f}")

        report = ReportService(store, gateway).generate_daily_report(datetime.now(timezone.utc).date())
        logger.info(
            f"Daily report | trades={report.total_trades} portfolio={report.total_balance_quote:.2f} USDT"
        )
        store.close()


if __name__ == "__main__":
    main()
