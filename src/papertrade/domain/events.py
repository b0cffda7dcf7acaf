"""Structured event stream models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

ORDER_OPEN = "order_open"
ORDER_FILLED = "order_filled"
ORDER_REJECTED = "order_rejected"
ORDER_CANCELED = "order_canceled"
PRICE_ERROR = "price_error"
VOLUME_ALERT = "volume_alert"
ORDER_BOOK_IMBALANCE = "order_book_imbalance"
SUPPORT_RESISTANCE = "support_resistance"
TRADE_EXECUTED = "trade_executed"
TRADE_ERROR = "trade_error"
WATCHLIST_CHANGED = "watchlist_changed"
RUN_STARTED = "run_started"
RUN_ERROR = "error"

EVENT_TYPES = frozenset(
    {
        ORDER_OPEN,
        ORDER_FILLED,
        ORDER_REJECTED,
        ORDER_CANCELED,
        PRICE_ERROR,
        VOLUME_ALERT,
        ORDER_BOOK_IMBALANCE,
        SUPPORT_RESISTANCE,
        TRADE_EXECUTED,
        TRADE_ERROR,
        WATCHLIST_CHANGED,
        RUN_STARTED,
        RUN_ERROR,
    }
)


@dataclass(frozen=True)
class CoreEvent:
    """Single event published on the bus and written to JSONL."""

    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    ts: str = field(default_factory=lambda: datetime.now(tz=UTC).isoformat())

    def to_record(self, run_id: str = "", mode: str = "") -> dict[str, Any]:
        """Convert event to serializable dict."""
        return {
            "ts": self.ts,
            "run_id": run_id,
            "mode": mode,
            "event_type": self.event_type,
            "payload": self.payload,
        }
