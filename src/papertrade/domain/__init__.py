"""Domain models and event types."""

from .events import CoreEvent
from .market import (
    AlertType,
    BarEvent,
    ImbalanceSignal,
    MarketEvent,
    PriceBar,
    QuoteEvent,
    SupportResistance,
    TradeExecution,
    TradeTick,
    VolumeAlert,
)
from .models import (
    AccountSummary,
    LeaderboardEntry,
    Mode,
    Order,
    OrderRequest,
    OrderSide,
    OrderStatus,
    OrderType,
    Portfolio,
    Position,
)

__all__ = [
    "AccountSummary",
    "AlertType",
    "BarEvent",
    "CoreEvent",
    "ImbalanceSignal",
    "LeaderboardEntry",
    "MarketEvent",
    "Mode",
    "Order",
    "OrderRequest",
    "OrderSide",
    "OrderStatus",
    "OrderType",
    "Portfolio",
    "Position",
    "PriceBar",
    "QuoteEvent",
    "SupportResistance",
    "TradeExecution",
    "TradeTick",
    "VolumeAlert",
]
