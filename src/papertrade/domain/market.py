"""Market-data events and detector signal models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from .models import utc_now


@dataclass(frozen=True)
class BarEvent:
    """Aggregated OHLCV bar pushed by the stream or replayed during warm-up."""

    symbol: str
    high: float
    low: float
    close: float
    volume: float
    timestamp: datetime | None = None
    open: float | None = None

    kind = "bar"


@dataclass(frozen=True)
class TradeTick:
    """Single print on the tape."""

    symbol: str
    price: float
    size: float
    timestamp: datetime | None = None

    kind = "trade"


@dataclass(frozen=True)
class QuoteEvent:
    """Top-of-book quote."""

    symbol: str
    bid_price: float
    ask_price: float
    bid_size: float
    ask_size: float
    timestamp: datetime | None = None

    kind = "quote"


MarketEvent = BarEvent | TradeTick | QuoteEvent


@dataclass(frozen=True)
class PriceBar:
    """Price part of a bar kept in a rolling window."""

    high: float
    low: float
    close: float
    timestamp: datetime | None = None


class AlertType(StrEnum):
    """Direction of an abnormal-volume reading."""

    SPIKE = "spike"
    DROP = "drop"


@dataclass(frozen=True)
class VolumeAlert:
    """Abnormal volume reading for a symbol."""

    symbol: str
    current_volume: float
    avg_volume: float
    z_score: float
    type: AlertType
    timestamp: datetime = field(default_factory=utc_now)

    def to_record(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "current_volume": self.current_volume,
            "avg_volume": self.avg_volume,
            "z_score": self.z_score,
            "type": self.type.value,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class ImbalanceSignal:
    """Informational bid/ask size imbalance."""

    symbol: str
    bid_price: float
    ask_price: float
    bid_size: float
    ask_size: float
    imbalance: float
    timestamp: datetime = field(default_factory=utc_now)

    def to_record(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "bid_price": self.bid_price,
            "ask_price": self.ask_price,
            "bid_size": self.bid_size,
            "ask_size": self.ask_size,
            "imbalance": self.imbalance,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class SupportResistance:
    """Support/resistance snapshot recomputed from a symbol's recent bars."""

    resistance: tuple[float, ...]
    support: tuple[float, ...]
    current_price: float
    updated_at: datetime = field(default_factory=utc_now)

    def to_record(self) -> dict[str, Any]:
        return {
            "resistance": list(self.resistance),
            "support": list(self.support),
            "current_price": self.current_price,
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class TradeExecution:
    """Result of an auto-trade submitted by the detector."""

    order_id: str
    symbol: str
    side: str
    qty: int
    price: float
    reason: str
    timestamp: datetime = field(default_factory=utc_now)

    def to_record(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "symbol": self.symbol,
            "side": self.side,
            "qty": self.qty,
            "price": self.price,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }
