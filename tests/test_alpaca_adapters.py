"""Tests for the Alpaca REST and websocket adapters without network access."""

from __future__ import annotations

import asyncio
import json
import threading
from decimal import Decimal

import pytest
from requests.structures import CaseInsensitiveDict

from papertrade.brokers.alpaca_paper import AlpacaPaperBroker
from papertrade.data.alpaca_market_data import AlpacaMarketDataProvider
from papertrade.data.alpaca_stream import AlpacaStream, parse_stream_message
from papertrade.domain.market import BarEvent, QuoteEvent, TradeTick
from papertrade.domain.models import OrderRequest, OrderSide, OrderStatus, OrderType
from papertrade.errors import DataProviderError, PriceUnavailable


class _CaptureDataProvider(AlpacaMarketDataProvider):
    def __init__(self, payload: object = None, error: Exception | None = None) -> None:
        super().__init__(api_key="x", secret_key="y")
        self.payload = payload
        self.error = error
        self.last_request: dict | None = None

    def _request_with_retry(self, path: str, params: dict[str, str]) -> dict:
        self.last_request = {"path": path, "params": params}
        if self.error is not None:
            raise self.error
        return self.payload


class _CaptureBroker(AlpacaPaperBroker):
    def __init__(self, responses: dict[str, object] | None = None) -> None:
        super().__init__(api_key="x", secret_key="y", base_url="https://paper.example")
        self.responses = responses or {}
        self.requests: list[dict] = []

    def _request(
        self,
        method: str,
        path: str,
        json: dict | None = None,
        params: dict[str, str] | None = None,
        missing_ok: bool = False,
    ) -> object:
        self.requests.append({"method": method, "path": path, "json": json})
        return self.responses.get(path)


def test_current_price_is_mid_of_latest_quote() -> None:
    provider = _CaptureDataProvider({"quote": {"bp": 99.0, "ap": 101.0}})

    assert provider.get_current_price("aapl") == 100.0
    assert provider.last_request["path"] == "/v2/stocks/AAPL/quotes/latest"
    assert provider.last_request["params"] == {"feed": "iex"}


@pytest.mark.parametrize(
    ("bid", "ask", "expected"),
    [(0, 101.0, 101.0), (99.0, 0, 99.0), (None, 50.0, 50.0)],
)
def test_one_sided_quote_uses_available_side(bid, ask, expected) -> None:
    assert AlpacaMarketDataProvider.mid_price("AAPL", bid, ask) == expected


def test_empty_quote_raises_price_unavailable() -> None:
    provider = _CaptureDataProvider({"quote": {"bp": 0, "ap": 0}})

    with pytest.raises(PriceUnavailable) as excinfo:
        provider.get_current_price("AAPL")
    assert excinfo.value.symbol == "AAPL"


def test_transport_failure_becomes_price_unavailable() -> None:
    provider = _CaptureDataProvider(error=DataProviderError("Alpaca data rate limit exceeded"))

    with pytest.raises(PriceUnavailable, match="rate limit"):
        provider.get_current_price("AAPL")


def test_get_bars_returns_ascending_ohlcv_frame() -> None:
    provider = _CaptureDataProvider(
        {
            "bars": [
                {"t": "2024-01-02T14:32:00Z", "o": 3, "h": 4, "l": 2, "c": 3.5, "v": 300},
                {"t": "2024-01-02T14:31:00Z", "o": 2, "h": 3, "l": 1, "c": 2.5, "v": 200},
            ]
        }
    )

    frame = provider.get_bars("spy", timeframe="1m", limit=2)

    assert list(frame.columns) == ["open", "high", "low", "close", "volume"]
    assert list(frame["volume"]) == [200, 300]
    assert frame.index.is_monotonic_increasing
    assert str(frame.index.tz) == "UTC"
    params = provider.last_request["params"]
    assert params["timeframe"] == "1Min"
    assert params["limit"] == "2"
    assert params["sort"] == "desc"


def test_get_bars_without_data_is_empty() -> None:
    frame = _CaptureDataProvider({"bars": None}).get_bars("SPY")

    assert frame.empty
    assert list(frame.columns) == ["open", "high", "low", "close", "volume"]


def test_get_bars_rejects_incomplete_payload() -> None:
    provider = _CaptureDataProvider({"bars": [{"t": "2024-01-02T14:31:00Z", "c": 1}]})

    with pytest.raises(DataProviderError):
        provider.get_bars("SPY")


def test_broker_submits_limit_order_payload() -> None:
    broker = _CaptureBroker(
        {
            "/v2/orders": {
                "id": "abc",
                "symbol": "AAPL",
                "side": "buy",
                "status": "accepted",
                "submitted_at": "2024-01-02T14:31:00.123456789Z",
            }
        }
    )

    order = broker.submit_order(
        OrderRequest(
            symbol="aapl",
            qty=3,
            side=OrderSide.BUY,
            order_type=OrderType.LIMIT,
            limit_price=Decimal("101.5"),
        )
    )

    sent = broker.requests[0]
    assert sent["method"] == "POST"
    assert sent["json"] == {
        "symbol": "AAPL",
        "qty": "3",
        "side": "buy",
        "type": "limit",
        "time_in_force": "day",
        "limit_price": "101.5",
    }
    assert order.id == "abc"
    assert order.status is OrderStatus.OPEN
    assert order.submitted_at.microsecond == 123456


def test_broker_maps_rejected_status() -> None:
    broker = _CaptureBroker({"/v2/orders": {"id": "r1", "status": "rejected"}})

    order = broker.submit_order(OrderRequest(symbol="SPY", qty=1, side=OrderSide.SELL))

    assert order.status is OrderStatus.REJECTED
    assert order.side is OrderSide.SELL


def test_broker_account_summary_parses_money_fields() -> None:
    broker = _CaptureBroker(
        {
            "/v2/account": {
                "account_number": "PA123",
                "status": "ACTIVE",
                "cash": "1000.50",
                "equity": "1500.25",
                "buying_power": "3001",
            }
        }
    )

    account = broker.get_account()

    assert account.account_number == "PA123"
    assert account.cash == Decimal("1000.50")
    assert account.equity == Decimal("1500.25")
    assert account.portfolio_value == Decimal("1500.25")
    assert account.buying_power == Decimal("3001")


def test_broker_missing_position_is_none() -> None:
    broker = _CaptureBroker()

    assert broker.get_position("AAPL") is None
    assert broker.requests[0]["path"] == "/v2/positions/AAPL"


def test_broker_positions_keyed_by_symbol() -> None:
    broker = _CaptureBroker(
        {
            "/v2/positions": [
                {"symbol": "aapl", "qty": "5", "avg_entry_price": "100", "market_value": "550"}
            ]
        }
    )

    positions = broker.get_positions()

    assert positions["AAPL"].qty == 5
    assert positions["AAPL"].market_value == Decimal("550")
    assert positions["AAPL"].current_price is None


def test_retry_after_header_is_respected() -> None:
    headers = CaseInsensitiveDict({"Retry-After": "7"})

    assert AlpacaPaperBroker._retry_after_seconds(headers, attempt=1) == 7.0
    assert AlpacaPaperBroker._retry_after_seconds(CaseInsensitiveDict(), attempt=3) == 3.0


def test_parse_stream_message_handles_each_kind() -> None:
    raw = json.dumps(
        [
            {"T": "success", "msg": "authenticated"},
            {
                "T": "b",
                "S": "AAPL",
                "o": 1,
                "h": 2,
                "l": 0.5,
                "c": 1.5,
                "v": 1200,
                "t": "2024-01-02T14:31:00.123456789Z",
            },
            {"T": "t", "S": "AAPL", "p": 1.5, "s": 10, "t": "2024-01-02T14:31:01Z"},
            {"T": "q", "S": "aapl", "bp": 1.4, "ap": 1.6, "bs": 3, "as": 1},
        ]
    )

    events = parse_stream_message(raw)

    assert [type(event) for event in events] == [BarEvent, TradeTick, QuoteEvent]
    bar = events[0]
    assert bar.volume == 1200
    assert bar.timestamp is not None and bar.timestamp.microsecond == 123456
    assert events[2].symbol == "AAPL"
    assert events[2].ask_size == 1


def test_parse_stream_message_drops_malformed_frames() -> None:
    assert parse_stream_message("not json") == []
    assert parse_stream_message({"T": "b", "S": "AAPL", "h": 1}) == []
    assert parse_stream_message([{"T": "subscription", "bars": ["AAPL"]}]) == []


def test_stream_tracks_desired_symbols_while_disconnected() -> None:
    stream = AlpacaStream(api_key="x", secret_key="y")

    stream.subscribe(["aapl", "TSLA", " "])
    stream.unsubscribe(["TSLA"])

    assert stream.symbols == {"AAPL"}
    assert AlpacaStream._subscription_message("subscribe", {"b", "a"}) == {
        "action": "subscribe",
        "bars": ["a", "b"],
        "trades": ["a", "b"],
        "quotes": ["a", "b"],
    }


def test_stream_handler_failures_are_contained() -> None:
    stream = AlpacaStream(api_key="x", secret_key="y")
    received: list = []

    def flaky(event) -> None:
        received.append(event)
        raise RuntimeError("boom")

    stream.set_handler(flaky)
    stream._dispatch(TradeTick(symbol="AAPL", price=1.0, size=1))

    assert len(received) == 1


class _ScriptedStream(AlpacaStream):
    """Replays canned connection attempts instead of opening a socket."""

    def __init__(self, attempts: list[Exception | list]) -> None:
        super().__init__(api_key="x", secret_key="y", reconnect_delay=0)
        self.attempts = list(attempts)
        self.connects = 0

    async def _connect_once(self) -> None:
        self.connects += 1
        outcome = self.attempts.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        for event in outcome:
            self._events.put_nowait(event)
        await asyncio.wait_for(self._events.join(), timeout=5)
        if not self.attempts:
            self._stopping.set()


def test_stream_reconnects_after_unexpected_error() -> None:
    stream = _ScriptedStream([ValueError("Expecting value: line 1 column 1 (char 0)"), []])

    asyncio.run(stream._run_loop())

    assert stream.connects == 2


def test_stream_handler_runs_off_the_event_loop_in_order() -> None:
    ticks = [TradeTick(symbol="AAPL", price=float(n), size=1) for n in range(1, 4)]
    stream = _ScriptedStream([ticks])
    received: list[tuple[float, int]] = []
    loop_threads: list[int] = []
    done = threading.Event()

    def handler(event) -> None:
        received.append((event.price, threading.get_ident()))
        if len(received) == len(ticks):
            done.set()

    async def run() -> None:
        loop_threads.append(threading.get_ident())
        await stream._run_loop()

    stream.set_handler(handler)
    asyncio.run(run())

    assert done.is_set()
    assert [price for price, _ in received] == [1.0, 2.0, 3.0]
    assert all(thread != loop_threads[0] for _, thread in received)
