"""P&L calculation over the trade ledger.

Sells are matched to buys first-in first-out per symbol. A sell takes the
earliest open buy whose quantity covers it; when none does, the earliest open
buy is used as is (no partial-fill splitting). Once matched, the sell gets its
pnl and link written back and the buy is closed, so a repeated calculation
returns the stored value.
"""
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Deque, Dict, Iterable, List, Optional

from .logging_setup import logger
from .models import OrderSide, OrderStatus, Trade
from .persistence_sqlite import ConcurrentUpdateError, PersistenceError, TradeStore

DEFAULT_COMMISSION_RATE = Decimal("0.001")

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def _q(value: Decimal, places: str = "0.01") -> Decimal:
    return value.quantize(Decimal(places), rounding=ROUND_HALF_UP)


class MatchNotFoundError(LookupError):
    """Raised when a sell has no buy to be matched against."""

    def __init__(self, sell_trade_id: str, symbol: str):
        super().__init__(f"No matching buy trade for sell {sell_trade_id} ({symbol})")
        self.sell_trade_id = sell_trade_id
        self.symbol = symbol


class OpenPositionIndex:
    """Per-symbol queue of open buys ordered by creation time.

    Loaded lazily from the store on the first lookup for a symbol and kept in
    sync as matches close positions. Buys created after the load are only seen
    once the symbol is reloaded.
    """

    def __init__(self, store: TradeStore):
        self.store = store
        self._by_symbol: Dict[str, Deque[Trade]] = {}

    def _positions(self, symbol: str) -> Deque[Trade]:
        if symbol not in self._by_symbol:
            opens = sorted(self.store.get_open_positions(symbol), key=lambda t: t.created_at)
            self._by_symbol[symbol] = deque(opens)
        return self._by_symbol[symbol]

    def match(self, sell: Trade) -> Optional[Trade]:
        positions = self._positions(sell.symbol)
        for buy in positions:
            if buy.quantity >= sell.quantity:
                return buy
        return positions[0] if positions else None

    def close(self, symbol: str, buy_id: str) -> None:
        positions = self._positions(symbol)
        for buy in list(positions):
            if buy.id == buy_id:
                positions.remove(buy)
                return

    def reload(self, symbol: str) -> None:
        """Drop the cached queue of ``symbol`` so the next lookup reads the store."""
        self._by_symbol.pop(symbol, None)

    def clear(self) -> None:
        self._by_symbol.clear()


@dataclass(frozen=True)
class PnlSummary:
    pnl: Decimal
    pnl_percent: Decimal
    winning_trades: int
    losing_trades: int

    def to_dict(self) -> dict:
        return {
            "pnl": str(_q(self.pnl)),
            "pnl_percent": str(_q(self.pnl_percent)),
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
        }


@dataclass(frozen=True)
class TradeStats:
    """Aggregate statistics over a list of trades.

    Win rate, average, best and worst only consider trades with a known pnl.
    """

    total_trades: int = 0
    buy_count: int = 0
    sell_count: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: Decimal = ZERO
    total_pnl: Decimal = ZERO
    total_pnl_percent: Decimal = ZERO
    average_pnl: Decimal = ZERO
    best_trade: Decimal = ZERO
    worst_trade: Decimal = ZERO
    total_volume: Decimal = ZERO
    total_fees: Decimal = ZERO

    @classmethod
    def empty(cls) -> "TradeStats":
        return cls()

    @classmethod
    def from_trades(cls, trades: Iterable[Trade], initial_balance: Decimal = ZERO) -> "TradeStats":
        trades = list(trades)
        if not trades:
            return cls.empty()

        pnls: List[Decimal] = [t.pnl for t in trades if t.pnl is not None]
        winners = sum(1 for p in pnls if p > 0)
        losers = sum(1 for p in pnls if p < 0)
        total_pnl = sum(pnls, ZERO)

        return cls(
            total_trades=len(trades),
            buy_count=sum(1 for t in trades if t.side is OrderSide.BUY),
            sell_count=sum(1 for t in trades if t.side is OrderSide.SELL),
            winning_trades=winners,
            losing_trades=losers,
            win_rate=Decimal(winners) / Decimal(len(pnls)) * HUNDRED if pnls else ZERO,
            total_pnl=total_pnl,
            total_pnl_percent=total_pnl / initial_balance * HUNDRED if initial_balance > 0 else ZERO,
            average_pnl=total_pnl / Decimal(len(pnls)) if pnls else ZERO,
            best_trade=max(pnls) if pnls else ZERO,
            worst_trade=min(pnls) if pnls else ZERO,
            total_volume=sum((t.quote_quantity for t in trades), ZERO),
            total_fees=sum((t.commission or ZERO for t in trades), ZERO),
        )

    def to_dict(self) -> dict:
        return {
            "total_trades": self.total_trades,
            "buy_count": self.buy_count,
            "sell_count": self.sell_count,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "win_rate": str(_q(self.win_rate)),
            "total_pnl": str(_q(self.total_pnl)),
            "total_pnl_percent": str(_q(self.total_pnl_percent)),
            "average_pnl": str(_q(self.average_pnl)),
            "best_trade": str(_q(self.best_trade)),
            "worst_trade": str(_q(self.worst_trade)),
            "total_volume": str(_q(self.total_volume)),
            "total_fees": str(_q(self.total_fees, "0.0001")),
        }


def trade_pnl(sell: Trade, buy: Trade, commission_rate: Decimal = DEFAULT_COMMISSION_RATE) -> Decimal:
    """Realized P&L of ``sell`` against ``buy``, net of both fees.

    A missing commission is estimated as ``commission_rate`` of the notional.
    """
    revenue = sell.quantity * sell.price
    cost = buy.quantity * buy.price
    sell_fee = sell.commission if sell.commission is not None else revenue * commission_rate
    buy_fee = buy.commission if buy.commission is not None else cost * commission_rate
    return revenue - cost - sell_fee - buy_fee


class PnlEngine:
    """FIFO matcher and P&L aggregator over a trade store.

    Assumes one settling writer per symbol. The sell backfill is guarded by
    the trade version; when another writer closes the chosen buy first, the
    sell keeps its link and the conflict is logged as an error for manual
    review.
    """

    def __init__(self, store: TradeStore, commission_rate: Decimal = DEFAULT_COMMISSION_RATE):
        self.store = store
        self.commission_rate = commission_rate
        self.index = OpenPositionIndex(store)

    def calculate_trade_pnl(self, sell_trade_id: str) -> Optional[Decimal]:
        """Return the realized P&L of a sell, matching and backfilling it if needed.

        Returns None when the trade is missing, is not a sell, or has no buy
        to match against.
        """
        sell = self.store.find_by_id(sell_trade_id)
        if sell is None or sell.side is not OrderSide.SELL:
            logger.warning(f"Trade not found or not a sell order | trade_id={sell_trade_id}")
            return None
        if sell.pnl is not None:
            return sell.pnl
        if sell.related_trade_id is None:
            self.index.reload(sell.symbol)
        return self._settle(sell)

    def _settle(self, sell: Trade) -> Optional[Decimal]:
        try:
            buy = self._resolve_buy(sell)
        except MatchNotFoundError as e:
            logger.warning(f"No matching buy trade found | sell_trade_id={sell.id} symbol={sell.symbol} error={e}")
            return None

        pnl = trade_pnl(sell, buy, self.commission_rate)
        cost = buy.quantity * buy.price
        pnl_percent = _q(pnl / cost * HUNDRED) if cost > 0 else None
        logger.debug(
            f"P&L calculated for trade | sell_trade_id={sell.id} buy_trade_id={buy.id} "
            f"pnl={pnl} sell_revenue={sell.quantity * sell.price} buy_cost={cost}"
        )
        return self._backfill(sell, buy, pnl, pnl_percent)

    def _resolve_buy(self, sell: Trade) -> Trade:
        if sell.related_trade_id is not None:
            buy = self.store.find_by_id(sell.related_trade_id)
        else:
            buy = self.index.match(sell)
        if buy is None:
            raise MatchNotFoundError(sell.id, sell.symbol)
        return buy

    def _backfill(self, sell: Trade, buy: Trade, pnl: Decimal, pnl_percent: Optional[Decimal]) -> Decimal:
        try:
            self.store.update(sell.with_pnl(pnl, pnl_percent, buy.id))
        except ConcurrentUpdateError:
            current = self.store.find_by_id(sell.id)
            logger.warning(
                f"Sell updated concurrently, reusing stored match | sell_trade_id={sell.id} "
                f"related_trade_id={current.related_trade_id if current else None}"
            )
            self.index.clear()
            if current is not None and current.pnl is not None:
                return current.pnl
            return pnl
        except PersistenceError as e:
            logger.error(f"Failed to store trade P&L | sell_trade_id={sell.id} error={e}")
            return pnl

        if buy.related_trade_id is None:
            try:
                self.store.update(buy.with_related_trade(sell.id))
            except ConcurrentUpdateError:
                current = self.store.find_by_id(buy.id)
                logger.error(
                    f"Matched buy was closed by another sell | buy_trade_id={buy.id} "
                    f"sell_trade_id={sell.id} closed_by={current.related_trade_id if current else None}"
                )
            except PersistenceError as e:
                logger.warning(f"Failed to close matched buy | buy_trade_id={buy.id} error={e}")
        self.index.close(sell.symbol, buy.id)
        return pnl

    def calculate_pnl(self, start: datetime, end: datetime) -> PnlSummary:
        """Aggregate P&L of the FILLED sells created between ``start`` and ``end``.

        The percentage is taken against the quote amount of the FILLED buys in
        the same range.
        """
        logger.debug(f"Calculating P&L | from={start.isoformat()} to={end.isoformat()}")
        self.index.clear()
        trades = self.store.find_by_date_range(start, end)

        filled = [t for t in trades if t.status is OrderStatus.FILLED]
        sells = sorted((t for t in filled if t.side is OrderSide.SELL), key=lambda t: t.created_at)
        invested = sum((t.quote_quantity for t in filled if t.side is OrderSide.BUY), ZERO)

        total = ZERO
        winners = losers = 0
        for sell in sells:
            pnl = sell.pnl if sell.pnl is not None else self._settle(sell)
            if pnl is None:
                continue
            total += pnl
            if pnl > 0:
                winners += 1
            elif pnl < 0:
                losers += 1

        percent = total / invested * HUNDRED if invested > 0 else ZERO
        return PnlSummary(pnl=total, pnl_percent=percent, winning_trades=winners, losing_trades=losers)

    def period_stats(self, start: datetime, end: datetime, initial_balance: Decimal = ZERO) -> TradeStats:
        return TradeStats.from_trades(self.store.find_by_date_range(start, end), initial_balance)
