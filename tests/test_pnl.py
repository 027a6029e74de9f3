from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

from spotbot.models import OrderSide, OrderStatus
from spotbot.persistence_sqlite import SQLiteTradeStore
from spotbot.pnl import PnlEngine, TradeStats, trade_pnl

from conftest import T0


def add(store, *trades):
    for t in trades:
        store.create(t)
    return trades


def test_fifo_matches_earliest_open_buy(store, make_trade):
    b1, b2, sell = add(
        store,
        make_trade("BUY", 1, 100, minutes=0),
        make_trade("BUY", 1, 110, minutes=5),
        make_trade("SELL", 1, 120, minutes=10),
    )
    engine = PnlEngine(store)

    assert engine.calculate_trade_pnl(sell.id) == Decimal("20")

    stored_sell = store.find_by_id(sell.id)
    assert stored_sell.related_trade_id == b1.id
    assert stored_sell.pnl == Decimal("20")
    assert stored_sell.pnl_percent == Decimal("20.00")
    assert store.find_by_id(b1.id).related_trade_id == sell.id
    assert [t.id for t in store.get_open_positions("BTCUSDT")] == [b2.id]


def test_fifo_prefers_buy_covering_the_quantity(store, make_trade):
    small, big, sell = add(
        store,
        make_trade("BUY", "0.5", 100, minutes=0),
        make_trade("BUY", 1, 100, minutes=5),
        make_trade("SELL", 1, 120, minutes=10),
    )
    PnlEngine(store).calculate_trade_pnl(sell.id)
    assert store.find_by_id(sell.id).related_trade_id == big.id


def test_fifo_falls_back_to_earliest_when_none_covers(store, make_trade):
    b1, b2, sell = add(
        store,
        make_trade("BUY", "0.5", 100, minutes=0),
        make_trade("BUY", "0.25", 100, minutes=5),
        make_trade("SELL", 1, 120, minutes=10),
    )
    # no partial splitting: 1 * 120 - 0.5 * 100
    assert PnlEngine(store).calculate_trade_pnl(sell.id) == Decimal("70.0")
    assert store.find_by_id(sell.id).related_trade_id == b1.id


def test_default_commission_when_missing(store, make_trade):
    _, sell = add(
        store,
        make_trade("BUY", 1, 100, commission=None),
        make_trade("SELL", 1, 120, minutes=5, commission=None),
    )
    # 120 - 100 - 0.12 - 0.10
    assert PnlEngine(store).calculate_trade_pnl(sell.id) == Decimal("19.780")


def test_recorded_commission_is_used(make_trade):
    buy = make_trade("BUY", 1, 100, commission="0.5")
    sell = make_trade("SELL", 1, 120, commission="0.25")
    assert trade_pnl(sell, buy) == Decimal("19.25")


def test_calculation_is_idempotent(store, make_trade):
    b1, b2, s1 = add(
        store,
        make_trade("BUY", 1, 100, minutes=0),
        make_trade("BUY", 1, 110, minutes=5),
        make_trade("SELL", 1, 120, minutes=10),
    )
    engine = PnlEngine(store)
    first = engine.calculate_trade_pnl(s1.id)
    second = engine.calculate_trade_pnl(s1.id)
    assert first == second == Decimal("20")
    # the first buy stays consumed by s1
    assert [t.id for t in store.get_open_positions()] == [b2.id]


def test_related_trade_is_used_directly(store, make_trade):
    b1, b2 = add(store, make_trade("BUY", 1, 100, minutes=0), make_trade("BUY", 1, 90, minutes=5))
    sell = replace(make_trade("SELL", 1, 120, minutes=10), related_trade_id=b2.id)
    store.create(sell)
    assert PnlEngine(store).calculate_trade_pnl(sell.id) == Decimal("30")


def test_unknown_or_buy_trade_returns_none(store, make_trade):
    (buy,) = add(store, make_trade("BUY", 1, 100))
    engine = PnlEngine(store)
    assert engine.calculate_trade_pnl("missing") is None
    assert engine.calculate_trade_pnl(buy.id) is None


def test_no_matching_buy_returns_none(store, make_trade):
    (sell,) = add(store, make_trade("SELL", 1, 120))
    assert PnlEngine(store).calculate_trade_pnl(sell.id) is None
    assert store.find_by_id(sell.id).pnl is None


def test_only_same_symbol_buys_match(store, make_trade):
    _, sell = add(
        store,
        make_trade("BUY", 1, 100, symbol="ETHUSDT"),
        make_trade("SELL", 1, 120, minutes=5),
    )
    assert PnlEngine(store).calculate_trade_pnl(sell.id) is None


def test_calculate_pnl_over_range(store, make_trade):
    add(
        store,
        make_trade("BUY", 1, 100, minutes=0),
        make_trade("BUY", 1, 110, minutes=5),
        make_trade("SELL", 1, 120, minutes=10),
        make_trade("SELL", 1, 105, minutes=15),
        make_trade("BUY", 1, 500, minutes=20, status=OrderStatus.CANCELED),
    )
    summary = PnlEngine(store).calculate_pnl(T0, T0 + timedelta(hours=1))

    # s1 <-> b1: +20, s2 <-> b2: -5
    assert summary.pnl == Decimal("15")
    assert summary.winning_trades == 1
    assert summary.losing_trades == 1
    # against FILLED buys only: 15 / 210
    assert round(summary.pnl_percent, 4) == Decimal("7.1429")


def test_calculate_pnl_uses_stored_pnl(store, make_trade):
    add(store, make_trade("SELL", 1, 120, pnl="-3"))
    summary = PnlEngine(store).calculate_pnl(T0, T0 + timedelta(hours=1))
    assert summary.pnl == Decimal("-3")
    assert summary.losing_trades == 1
    assert summary.pnl_percent == Decimal("0")


def test_calculate_pnl_empty_range(store):
    summary = PnlEngine(store).calculate_pnl(T0, T0 + timedelta(hours=1))
    assert summary.pnl == Decimal("0")
    assert summary.pnl_percent == Decimal("0")


class RacingStore(SQLiteTradeStore):
    """Lets another writer store a P&L first, the moment a sell is backfilled."""

    raced = False

    def update(self, trade):
        if not self.raced and trade.pnl is not None:
            self.raced = True
            super().update(replace(trade, pnl=Decimal("5")))
        return super().update(trade)


def test_concurrent_backfill_reuses_stored_result(tmp_path, make_trade):
    store = RacingStore(tmp_path / "race.db")
    _, sell = add(store, make_trade("BUY", 1, 100), make_trade("SELL", 1, 120, minutes=5))

    assert PnlEngine(store).calculate_trade_pnl(sell.id) == Decimal("5")
    assert store.find_by_id(sell.id).pnl == Decimal("5")
    store.close()


class ClaimingStore(SQLiteTradeStore):
    """Lets another sell close a buy the moment it is being closed."""

    claimed = False

    def update(self, trade):
        if not self.claimed and trade.side is OrderSide.BUY:
            self.claimed = True
            super().update(replace(trade, related_trade_id="other-sell"))
        return super().update(trade)


def test_buy_closed_by_another_sell_keeps_sell_link(tmp_path, make_trade):
    store = ClaimingStore(tmp_path / "claim.db")
    buy, sell = add(store, make_trade("BUY", 1, 100), make_trade("SELL", 1, 120, minutes=5))

    assert PnlEngine(store).calculate_trade_pnl(sell.id) == Decimal("20")
    assert store.find_by_id(sell.id).related_trade_id == buy.id
    assert store.find_by_id(buy.id).related_trade_id == "other-sell"
    store.close()


def test_reused_engine_sees_buys_created_later(store, make_trade):
    engine = PnlEngine(store)
    _, s1 = add(store, make_trade("BUY", 1, 10, minutes=0), make_trade("SELL", 1, 11, minutes=5))
    assert engine.calculate_trade_pnl(s1.id) == Decimal("1")

    b2, s2 = add(store, make_trade("BUY", 1, 12, minutes=10), make_trade("SELL", 1, 13, minutes=15))
    assert engine.calculate_trade_pnl(s2.id) == Decimal("1")
    assert store.find_by_id(s2.id).related_trade_id == b2.id
    assert store.get_open_positions("BTCUSDT") == []


def test_trade_stats_from_trades(make_trade):
    trades = [
        make_trade("BUY", 1, 100, commission="0.1"),
        make_trade("SELL", 1, 110, pnl="10", commission="0.11"),
        make_trade("SELL", 1, 95, pnl="-5", commission="0.095"),
        make_trade("SELL", 1, 100),
    ]
    stats = TradeStats.from_trades(trades, initial_balance=Decimal("1000"))

    assert stats.total_trades == 4
    assert stats.buy_count == 1
    assert stats.sell_count == 3
    assert stats.winning_trades == 1
    assert stats.losing_trades == 1
    assert stats.win_rate == Decimal("50")
    assert stats.total_pnl == Decimal("5")
    assert stats.total_pnl_percent == Decimal("0.5")
    assert stats.average_pnl == Decimal("2.5")
    assert stats.best_trade == Decimal("10")
    assert stats.worst_trade == Decimal("-5")
    assert stats.total_volume == Decimal("405")
    assert stats.total_fees == Decimal("0.305")
    assert stats.to_dict()["win_rate"] == "50.00"


def test_trade_stats_empty():
    stats = TradeStats.from_trades([])
    assert stats.total_trades == 0
    assert stats.win_rate == Decimal("0")
