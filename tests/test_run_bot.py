import importlib.util
from decimal import Decimal
from pathlib import Path

import pytest

from spotbot.config import BotConfig

from conftest import combined_buy_prices

SCRIPTS = Path(__file__).resolve().parents[1] / "scripts"


def load_script(name):
    spec = importlib.util.spec_from_file_location(name, SCRIPTS / f"{name}.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture(scope="module")
def run_bot():
    return load_script("run_bot")


@pytest.fixture
def market(gateway, make_candles):
    prices = combined_buy_prices()
    gateway.set_candles("BTCUSDT", make_candles(prices))
    gateway.set_price("BTCUSDT", prices[-1])
    gateway.set_balance("USDT", "1000")
    return gateway


@pytest.fixture
def config():
    config = BotConfig()
    config.retry.base_delay_seconds = 0
    return config


def test_disabled_bot_exits_cleanly(run_bot, config, market, store, capsys):
    config.trading.enabled = False
    args = run_bot.build_parser().parse_args([])

    assert run_bot.run(args, config, market, store) == 0
    assert "Bot is disabled. Use --force to run anyway." in capsys.readouterr().out
    assert market.calls["get_current_price"] == 0


def test_force_runs_disabled_bot(run_bot, config, market, store, capsys):
    config.trading.enabled = False
    args = run_bot.build_parser().parse_args(["--force", "--dry-run", "--strategy", "combined"])

    assert run_bot.run(args, config, market, store) == 0
    out = capsys.readouterr().out
    assert "Signal: BUY" in out
    assert "Mode: DRY RUN" in out
    assert market.orders == []


def test_live_cycle_records_trade(run_bot, config, market, store, capsys):
    args = run_bot.build_parser().parse_args(["--strategy", "combined", "--amount", "100"])

    assert run_bot.run(args, config, market, store) == 0
    out = capsys.readouterr().out
    assert "Trade executed:" in out
    assert "Total: 100" in out
    assert len(store.get_open_positions("BTCUSDT")) == 1


def test_amount_above_maximum(run_bot, config, market, store, capsys):
    args = run_bot.build_parser().parse_args(["--amount", "5000"])
    assert run_bot.run(args, config, market, store) == 1
    assert "exceeds max_amount_per_trade" in capsys.readouterr().out


def test_invalid_amount(run_bot, config, market, store, capsys):
    args = run_bot.build_parser().parse_args(["--amount", "lots"])
    assert run_bot.run(args, config, market, store) == 1
    assert "Invalid amount: lots" in capsys.readouterr().out


def test_daily_limit_skips_live_run(run_bot, config, market, store, capsys):
    config.trading.max_trades_per_day = 0
    args = run_bot.build_parser().parse_args([])
    assert run_bot.run(args, config, market, store) == 0
    assert "Daily trade limit reached" in capsys.readouterr().out
    assert market.calls["get_current_price"] == 0


def test_gateway_failure_exits_nonzero(run_bot, config, market, store, capsys):
    market.prices.clear()
    args = run_bot.build_parser().parse_args(["--dry-run"])
    assert run_bot.run(args, config, market, store) == 1
    assert "Bot execution failed" in capsys.readouterr().out


def test_strategy_choice_is_validated(run_bot):
    with pytest.raises(SystemExit):
        run_bot.build_parser().parse_args(["--strategy", "momentum"])
