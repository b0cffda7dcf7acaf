"""Trading client implementations."""

from .alpaca_paper import AlpacaPaperBroker
from .base import TradingClient
from .virtual import VirtualTradingClient

__all__ = ["AlpacaPaperBroker", "TradingClient", "VirtualTradingClient"]
