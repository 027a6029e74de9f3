import hashlib
import hmac
import json
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlsplit

import pytest
import requests

from spotbot.binance_adapter import TESTNET_URL, BinanceAdapter, parse_kline
from spotbot.gateway import DISCONNECTED, TIMEOUT, TOO_MANY_REQUESTS, GatewayError
from spotbot.models import KlineInterval, OrderSide, OrderStatus, OrderType
from spotbot.rate_limit_policy import REQUEST_WEIGHT, RateLimitManager
from spotbot.secrets import BinanceCredentials

KLINE_ROW = [
    1760691600000, "65000.00", "65100.00", "64900.00", "65050.50", "12.5",
    1760691899999, "812500.0", 420, "6.1", "396000.0", "0",
]

FULL_ORDER = {
    "symbol": "BTCUSDT",
    "orderId": 28,
    "clientOrderId": "6gCrw2kRUAF9CvJDGP16IP",
    "transactTime": 1760691600000,
    "price": "0.00000000",
    "origQty": "0.00150000",
    "executedQty": "0.00150000",
    "cummulativeQuoteQty": "97.50000000",
    "status": "FILLED",
    "timeInForce": "GTC",
    "type": "MARKET",
    "side": "BUY",
    "fills": [
        {"price": "65000.00", "qty": "0.00100000", "commission": "0.00000100", "commissionAsset": "BTC"},
        {"price": "65000.00", "qty": "0.00050000", "commission": "0.00000050", "commissionAsset": "BTC"},
    ],
}


def response(status=200, body=None, headers=None):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = status < 400
    resp.headers = headers or {}
    resp.reason = "Error"
    resp.text = "" if body is None else json.dumps(body)
    resp.json.return_value = body
    return resp


@pytest.fixture
def adapter():
    return BinanceAdapter("key", "secret", base_url=TESTNET_URL)


def sent_url(mock_request):
    return mock_request.call_args[0][1]


@patch("spotbot.binance_adapter.requests.Session.request")
def test_get_current_price(mock_request, adapter):
    mock_request.return_value = response(body={"symbol": "BTCUSDT", "price": "65050.50000000"})

    assert adapter.get_current_price("BTCUSDT") == Decimal("65050.50000000")
    args, kwargs = mock_request.call_args
    assert args == ("GET", f"{TESTNET_URL}/api/v3/ticker/price")
    assert kwargs["params"] == {"symbol": "BTCUSDT"}


@patch("spotbot.binance_adapter.requests.Session.request")
def test_get_klines(mock_request, adapter):
    mock_request.return_value = response(body=[KLINE_ROW, KLINE_ROW])

    candles = adapter.get_klines("BTCUSDT", KlineInterval.FIVE_MINUTES, 2)

    assert len(candles) == 2
    assert candles[0].close == Decimal("65050.50")
    assert candles[0].trade_count == 420
    assert mock_request.call_args[1]["params"] == {"symbol": "BTCUSDT", "interval": "5m", "limit": 2}


def test_parse_kline_times():
    candle = parse_kline(KLINE_ROW)
    assert candle.open_time == datetime(2025, 10, 17, 9, 0, tzinfo=timezone.utc)
    assert candle.quote_volume == Decimal("812500.0")


@patch("spotbot.binance_adapter.requests.Session.request")
def test_malformed_klines_are_not_retryable(mock_request, adapter):
    mock_request.return_value = response(body=[["bad"]])
    with pytest.raises(GatewayError) as exc:
        adapter.get_klines("BTCUSDT", KlineInterval.ONE_HOUR, 1)
    assert exc.value.retryable is False


@patch("spotbot.binance_adapter.requests.Session.request")
def test_signed_request_signature(mock_request, adapter):
    mock_request.return_value = response(
        body={
            "balances": [
                {"asset": "BTC", "free": "0.5", "locked": "0.1"},
                {"asset": "ETH", "free": "0.0", "locked": "0.0"},
                {"asset": "USDT", "free": "1000", "locked": "0"},
            ]
        }
    )

    balances = adapter.get_account_balances()

    assert [b.asset for b in balances] == ["BTC", "USDT"]
    assert balances[0].total == Decimal("0.6")

    url = sent_url(mock_request)
    query = urlsplit(url).query
    payload, signature = query.rsplit("&signature=", 1)
    expected = hmac.new(b"secret", payload.encode(), hashlib.sha256).hexdigest()
    assert signature == expected
    params = parse_qs(payload)
    assert params["recvWindow"] == ["5000"]
    assert "timestamp" in params
    assert mock_request.call_args[1]["params"] is None


def test_api_key_header(adapter):
    assert adapter.session.headers["X-MBX-APIKEY"] == "key"


@patch("spotbot.binance_adapter.requests.Session.request")
def test_market_buy_full_response(mock_request, adapter):
    mock_request.return_value = response(body=FULL_ORDER)

    result = adapter.market_buy("BTCUSDT", Decimal("97.50"))

    assert mock_request.call_args[0][0] == "POST"
    params = parse_qs(urlsplit(sent_url(mock_request)).query)
    assert params["quoteOrderQty"] == ["97.5"]
    assert params["newOrderRespType"] == ["FULL"]
    assert params["type"] == ["MARKET"]

    assert result.order_id == "28"
    assert result.side is OrderSide.BUY
    assert result.type is OrderType.MARKET
    assert result.status is OrderStatus.FILLED
    assert result.quantity == Decimal("0.0015")
    assert result.price == Decimal("65000")
    assert result.quote_quantity == Decimal("97.5")
    assert result.commission == Decimal("0.0000015")
    assert result.commission_asset == "BTC"
    assert result.executed_at == datetime(2025, 10, 17, 9, 0, tzinfo=timezone.utc)


@patch("spotbot.binance_adapter.requests.Session.request")
def test_limit_sell_params(mock_request, adapter):
    body = dict(FULL_ORDER, side="SELL", type="LIMIT", status="NEW", executedQty="0", cummulativeQuoteQty="0", fills=[])
    mock_request.return_value = response(body=body)

    result = adapter.limit_sell("BTCUSDT", Decimal("0.00150000"), Decimal("70000.00"))

    params = parse_qs(urlsplit(sent_url(mock_request)).query)
    assert params["quantity"] == ["0.0015"]
    assert params["price"] == ["70000"]
    assert params["timeInForce"] == ["GTC"]
    assert result.status is OrderStatus.NEW


@patch("spotbot.binance_adapter.requests.Session.request")
def test_exchange_error_code(mock_request, adapter):
    mock_request.return_value = response(
        400, {"code": -2010, "msg": "Account has insufficient balance for requested action."}
    )
    with pytest.raises(GatewayError) as exc:
        adapter.market_sell("BTCUSDT", Decimal("1"))
    assert exc.value.code == -2010
    assert not exc.value.retryable
    assert "insufficient balance" in str(exc.value)


@patch("spotbot.binance_adapter.requests.Session.request")
def test_http_429_is_retryable(mock_request, adapter):
    mock_request.return_value = response(429, {"code": -1003, "msg": "Too many requests"}, {"Retry-After": "3"})
    with pytest.raises(GatewayError) as exc:
        adapter.get_current_price("BTCUSDT")
    assert exc.value.code == TOO_MANY_REQUESTS
    assert exc.value.retryable
    assert exc.value.context["retry_after"] == "3"


@pytest.mark.parametrize("error,code", [
    (requests.exceptions.Timeout("read timed out"), TIMEOUT),
    (requests.exceptions.ConnectionError("refused"), DISCONNECTED),
])
@patch("spotbot.binance_adapter.requests.Session.request")
def test_transport_errors_are_retryable(mock_request, adapter, error, code):
    mock_request.side_effect = error
    with pytest.raises(GatewayError) as exc:
        adapter.get_current_price("BTCUSDT")
    assert exc.value.code == code
    assert exc.value.retryable


@patch("spotbot.binance_adapter.requests.Session.request")
def test_unexpected_payload(mock_request, adapter):
    mock_request.return_value = response(body={"symbol": "BTCUSDT"})
    with pytest.raises(GatewayError) as exc:
        adapter.get_current_price("BTCUSDT")
    assert not exc.value.retryable


@patch("spotbot.binance_adapter.requests.Session.request")
def test_ping(mock_request, adapter):
    mock_request.return_value = response(body={})
    assert adapter.ping()
    mock_request.side_effect = requests.exceptions.ConnectionError("down")
    assert not adapter.ping()


@patch("spotbot.binance_adapter.requests.Session.request")
def test_weight_budget_exhausted(mock_request):
    limiter = RateLimitManager.from_limits(10, 5, sleep=lambda s: None)
    adapter = BinanceAdapter("key", "secret", rate_limiter=limiter)

    with pytest.raises(GatewayError) as exc:
        adapter.get_account_balances()

    assert exc.value.code == TOO_MANY_REQUESTS
    mock_request.assert_not_called()


@patch("spotbot.binance_adapter.requests.Session.request")
def test_requests_consume_weight(mock_request, adapter):
    mock_request.return_value = response(body={"symbol": "BTCUSDT", "price": "1"})
    adapter.get_current_price("BTCUSDT")
    adapter.get_current_price("BTCUSDT")
    assert adapter.rate_limiter.states[REQUEST_WEIGHT].used == 4


def test_from_credentials_testnet():
    adapter = BinanceAdapter.from_credentials(BinanceCredentials("k", "s"), testnet=True)
    assert adapter.base_url == TESTNET_URL
    assert adapter.api_secret == "s"
