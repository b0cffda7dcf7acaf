"""Market data providers."""

from .alpaca_market_data import AlpacaMarketDataProvider
from .alpaca_stream import AlpacaStream, parse_stream_message
from .base import MarketDataProvider, MarketStream, PriceProvider

__all__ = [
    "AlpacaMarketDataProvider",
    "AlpacaStream",
    "MarketDataProvider",
    "MarketStream",
    "PriceProvider",
    "parse_stream_message",
]
