"""Market data provider contracts."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Protocol

import pandas as pd

from papertrade.domain.market import MarketEvent

MarketEventHandler = Callable[[MarketEvent], None]


class PriceProvider(Protocol):
    """Reference price source used by the ledger."""

    def get_current_price(self, symbol: str) -> float:
        """Return the mid of bid/ask, raising PriceUnavailable on failure."""


class MarketDataProvider(PriceProvider, Protocol):
    """Price source that can also serve historical bars."""

    def get_bars(self, symbol: str, timeframe: str = "1Min", limit: int = 40) -> pd.DataFrame:
        """Return OHLCV bars with a UTC datetime index, oldest first."""


class MarketStream(Protocol):
    """Push-based feed of bar, trade and quote events."""

    def set_handler(self, handler: MarketEventHandler) -> None:
        """Register the callback that receives every parsed event."""

    def subscribe(self, symbols: Iterable[str]) -> None:
        """Start receiving events for symbols."""

    def unsubscribe(self, symbols: Iterable[str]) -> None:
        """Stop receiving events for symbols."""
