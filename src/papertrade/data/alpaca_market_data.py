"""Alpaca market data provider."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from time import sleep
from typing import Any

import pandas as pd
import requests

from papertrade.errors import DataProviderError, PriceUnavailable


class AlpacaMarketDataProvider:
    """Fetch latest quotes and OHLCV bars from Alpaca's data API."""

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        data_base_url: str = "https://data.alpaca.markets",
        feed: str = "iex",
        lookback_days: int = 7,
        timeout: int = 20,
        max_retries: int = 3,
    ) -> None:
        self.data_base_url = data_base_url.rstrip("/")
        self.feed = feed
        self.lookback_days = lookback_days
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = requests.Session()
        self.session.headers.update(
            {
                "APCA-API-KEY-ID": api_key,
                "APCA-API-SECRET-KEY": secret_key,
            }
        )

    def get_current_price(self, symbol: str) -> float:
        normalized_symbol = symbol.strip().upper()
        try:
            payload = self._request_with_retry(
                path=f"/v2/stocks/{normalized_symbol}/quotes/latest",
                params={"feed": self.feed},
            )
        except DataProviderError as exc:
            raise PriceUnavailable(normalized_symbol, str(exc)) from exc
        quote = payload.get("quote") if isinstance(payload, dict) else None
        if not isinstance(quote, dict):
            raise PriceUnavailable(normalized_symbol, "quote payload missing")
        return self.mid_price(
            normalized_symbol,
            self._parse_optional_float(quote.get("bp")),
            self._parse_optional_float(quote.get("ap")),
        )

    def get_bars(self, symbol: str, timeframe: str = "1Min", limit: int = 40) -> pd.DataFrame:
        normalized_symbol = symbol.strip().upper()
        end_time = datetime.now(tz=UTC)
        start_time = end_time - timedelta(days=self.lookback_days)
        payload = self._request_with_retry(
            path=f"/v2/stocks/{normalized_symbol}/bars",
            params={
                "timeframe": self._normalize_timeframe(timeframe),
                "start": start_time.isoformat(),
                "end": end_time.isoformat(),
                "limit": str(limit),
                "adjustment": "raw",
                "feed": self.feed,
                "sort": "desc",
            },
        )
        bars = payload.get("bars", []) if isinstance(payload, dict) else []
        return self._bars_to_frame(normalized_symbol, bars if isinstance(bars, list) else [])

    @staticmethod
    def mid_price(symbol: str, bid: float | None, ask: float | None) -> float:
        """Mid of bid/ask; a one-sided book prices at the side that is present."""
        has_bid = bid is not None and bid > 0
        has_ask = ask is not None and ask > 0
        if has_bid and has_ask:
            return (bid + ask) / 2
        if has_bid:
            return float(bid)
        if has_ask:
            return float(ask)
        raise PriceUnavailable(symbol, "no bid or ask in latest quote")

    def _request_with_retry(self, path: str, params: dict[str, str]) -> dict:
        url = f"{self.data_base_url}{path}"
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.session.get(url, params=params, timeout=self.timeout)
            except requests.RequestException as exc:
                if attempt == self.max_retries:
                    raise DataProviderError(f"Alpaca data request failed: {exc}") from exc
                sleep(float(attempt))
                continue
            if response.status_code == 429:
                if attempt == self.max_retries:
                    raise DataProviderError("Alpaca data rate limit exceeded")
                sleep(float(attempt))
                continue
            if response.status_code >= 500:
                if attempt == self.max_retries:
                    raise DataProviderError(f"Alpaca data server error: {response.status_code}")
                sleep(float(attempt))
                continue
            if response.status_code >= 400:
                detail = response.text.strip() or "No response body"
                raise DataProviderError(f"Alpaca data error {response.status_code}: {detail}")
            try:
                return response.json()
            except ValueError as exc:
                raise DataProviderError(f"Alpaca response for {path} was not valid JSON") from exc
        raise DataProviderError("Alpaca data request exhausted retries")

    @staticmethod
    def _bars_to_frame(symbol: str, bars: list[dict]) -> pd.DataFrame:
        columns = ["open", "high", "low", "close", "volume"]
        if not bars:
            return pd.DataFrame(columns=columns, index=pd.DatetimeIndex([], tz="UTC"))
        frame = pd.DataFrame(bars)
        required = {"o", "h", "l", "c", "v", "t"}
        if not required.issubset(frame.columns):
            raise DataProviderError(f"{symbol}: bar payload missing OHLCV fields")
        frame = frame.rename(
            columns={
                "o": "open",
                "h": "high",
                "l": "low",
                "c": "close",
                "v": "volume",
                "t": "time",
            }
        )
        frame.index = pd.to_datetime(frame["time"], utc=True)
        frame = frame.sort_index()
        frame = frame[columns]
        return frame.apply(pd.to_numeric, errors="coerce").dropna()

    @staticmethod
    def _normalize_timeframe(value: str) -> str:
        mapping = {
            "1d": "1Day",
            "day": "1Day",
            "1day": "1Day",
            "1min": "1Min",
            "1m": "1Min",
            "5min": "5Min",
            "15min": "15Min",
            "1h": "1Hour",
            "1hour": "1Hour",
        }
        normalized = value.strip().lower()
        return mapping.get(normalized, value)

    @staticmethod
    def _parse_optional_float(value: Any) -> float | None:
        if value is None:
            return None
        if isinstance(value, (int, float)):
            return float(value)
        text = str(value).strip()
        if not text:
            return None
        try:
            return float(text)
        except ValueError:
            return None
