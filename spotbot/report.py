"""Daily trading report: trades, P&L and portfolio value for one UTC day."""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from .gateway import GatewayError, MarketGateway
from .logging_setup import logger
from .models import Trade
from .persistence_sqlite import PersistenceError, TradeStore
from .pnl import HUNDRED, ZERO, PnlEngine, TradeStats, _q

STABLECOINS = frozenset({"USDT", "USDC", "BUSD", "TUSD"})
MAIN_ASSETS = ("BTC", "ETH", "BNB", "USDT", "USDC", "BUSD", "XRP", "SOL", "ADA", "DOGE")
MAX_CONVERSIONS = 10


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    """First and last microsecond of ``day`` in UTC."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    end = datetime.combine(day, time.max, tzinfo=timezone.utc)
    return start, end


@dataclass(frozen=True)
class DailyReport:
    date: date
    stats: TradeStats
    total_pnl: Decimal
    total_pnl_percent: Decimal
    balances: Dict[str, Decimal]
    total_balance_quote: Decimal
    trades: List[Trade] = field(default_factory=list)
    previous_day_balance: Optional[Decimal] = None

    @property
    def total_trades(self) -> int:
        return self.stats.total_trades

    @property
    def daily_change_percent(self) -> Optional[Decimal]:
        if self.previous_day_balance is None or self.previous_day_balance <= 0:
            return None
        return (self.total_balance_quote - self.previous_day_balance) / self.previous_day_balance * HUNDRED

    @property
    def daily_change_absolute(self) -> Optional[Decimal]:
        if self.previous_day_balance is None:
            return None
        return self.total_balance_quote - self.previous_day_balance

    @property
    def is_positive_day(self) -> bool:
        return self.total_pnl > 0

    def to_dict(self) -> Dict[str, Any]:
        def _opt(v: Optional[Decimal]) -> Optional[str]:
            return None if v is None else str(_q(v))

        return {
            "date": self.date.isoformat(),
            "total_trades": self.stats.total_trades,
            "buy_count": self.stats.buy_count,
            "sell_count": self.stats.sell_count,
            "total_pnl": str(_q(self.total_pnl)),
            "total_pnl_percent": str(_q(self.total_pnl_percent)),
            "balances": {asset: str(qty) for asset, qty in self.balances.items()},
            "total_balance_quote": str(_q(self.total_balance_quote)),
            "trades": [
                {
                    "id": t.id,
                    "symbol": t.symbol,
                    "side": t.side.value,
                    "status": t.status.value,
                    "quantity": str(t.quantity),
                    "price": str(t.price),
                    "pnl": None if t.pnl is None else str(t.pnl),
                    "created_at": t.created_at.isoformat(),
                }
                for t in self.trades
            ],
            "previous_day_balance": _opt(self.previous_day_balance),
            "daily_change_percent": _opt(self.daily_change_percent),
            "daily_change_absolute": _opt(self.daily_change_absolute),
        }


class ReportService:
    """Builds and archives daily reports.

    Portfolio value is expressed in ``quote_asset``: stablecoins count 1:1 and
    the main assets are priced through the gateway, at most
    ``MAX_CONVERSIONS`` price lookups per call.
    """

    def __init__(
        self,
        store: TradeStore,
        gateway: MarketGateway,
        pnl_engine: Optional[PnlEngine] = None,
        quote_asset: str = "USDT",
    ):
        self.store = store
        self.gateway = gateway
        self.pnl_engine = pnl_engine or PnlEngine(store)
        self.quote_asset = quote_asset

    def generate_daily_report(self, day: Optional[date] = None) -> DailyReport:
        day = day or (datetime.now(timezone.utc).date() - timedelta(days=1))
        logger.info(f"Generating daily report | date={day.isoformat()}")

        start, end = day_bounds(day)
        summary = self.pnl_engine.calculate_pnl(start, end)
        # Reload after P&L backfill so the listed trades carry their pnl.
        trades = self.store.find_by_date_range(start, end)
        total_value, balances = self.get_portfolio_value()

        previous = self.store.find_report(day - timedelta(days=1))
        report = DailyReport(
            date=day,
            stats=TradeStats.from_trades(trades),
            total_pnl=summary.pnl,
            total_pnl_percent=summary.pnl_percent,
            balances=balances,
            total_balance_quote=total_value,
            trades=trades,
            previous_day_balance=previous["total_balance"] if previous else None,
        )
        logger.info(
            f"Daily report generated | date={day.isoformat()} total_trades={report.total_trades} "
            f"pnl={report.total_pnl}"
        )
        return report

    def get_portfolio_value(self) -> Tuple[Decimal, Dict[str, Decimal]]:
        """Return (total value in the quote asset, {asset: total quantity})."""
        balances: Dict[str, Decimal] = {}
        total = ZERO
        converted = 0

        for balance in self.gateway.get_account_balances():
            qty = balance.total
            if qty <= 0:
                continue
            balances[balance.asset] = qty

            if balance.asset in STABLECOINS:
                total += qty
            elif balance.asset in MAIN_ASSETS and converted < MAX_CONVERSIONS:
                try:
                    price = self.gateway.get_current_price(f"{balance.asset}{self.quote_asset}")
                except GatewayError as e:
                    logger.warning(f"Failed to get price for asset | asset={balance.asset} error={e}")
                    continue
                converted += 1
                total += qty * price
                logger.debug(f"Asset value calculated | asset={balance.asset} qty={qty} price={price}")

        logger.info(
            f"Portfolio value calculated | total_{self.quote_asset.lower()}={total} "
            f"assets_count={len(balances)} assets_converted={converted}"
        )
        return total, balances

    def archive_report(self, report: DailyReport) -> bool:
        logger.info(f"Archiving daily report | date={report.date.isoformat()}")
        try:
            self.store.save_report(
                report.date,
                {
                    "trades_count": report.total_trades,
                    "pnl": report.total_pnl,
                    "pnl_percent": report.total_pnl_percent,
                    "total_balance": report.total_balance_quote,
                },
            )
        except PersistenceError as e:
            logger.error(f"Failed to archive daily report | date={report.date.isoformat()} error={e}")
            return False
        logger.info(f"Daily report archived | date={report.date.isoformat()}")
        return True
