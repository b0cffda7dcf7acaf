"""Concise human-readable run logger."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from decimal import Decimal
from typing import Any

from papertrade.domain.events import (
    ORDER_BOOK_IMBALANCE,
    ORDER_CANCELED,
    ORDER_FILLED,
    ORDER_OPEN,
    ORDER_REJECTED,
    PRICE_ERROR,
    TRADE_ERROR,
    TRADE_EXECUTED,
    VOLUME_ALERT,
    CoreEvent,
)
from papertrade.domain.models import AccountSummary, LeaderboardEntry, Order


class HumanLogger:
    """Console logger with fixed line types."""

    def __init__(self, level: str = "INFO") -> None:
        self._logger = logging.getLogger("papertrade")
        self._logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        self._logger.propagate = False
        if not self._logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s | %(message)s", "%Y-%m-%d %H:%M:%S")
            handler.setFormatter(formatter)
            self._logger.addHandler(handler)

    def handle_event(self, event: CoreEvent) -> None:
        """Bus subscriber rendering core events as console lines."""
        payload = event.payload
        order = payload.get("order")
        if event.event_type == ORDER_OPEN and isinstance(order, Order):
            self.order_submit(
                order.symbol,
                order.side.value,
                order.qty,
                order.id,
                details={"limit_price": order.limit_price},
            )
        elif event.event_type in {ORDER_FILLED, ORDER_REJECTED, ORDER_CANCELED} and isinstance(
            order, Order
        ):
            self.order_update(
                order.id,
                order.status.value,
                details={
                    "filled_avg_price": order.filled_avg_price,
                    "reject_reason": order.reject_reason,
                    "filled_at": order.filled_at.isoformat() if order.filled_at else None,
                },
            )
        elif event.event_type == VOLUME_ALERT:
            self.volume_alert(payload)
        elif event.event_type == ORDER_BOOK_IMBALANCE:
            self.imbalance(payload)
        elif event.event_type == TRADE_EXECUTED:
            self.trade_executed(payload)
        elif event.event_type in {TRADE_ERROR, PRICE_ERROR}:
            self.error(f"{payload.get('symbol', '')}: {payload.get('error', '')}")

    def order_submit(
        self,
        symbol: str,
        side: str,
        qty: float,
        order_id: str,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        parts = [f"submit | {order_id} | {side.strip().lower()} {self._format_qty(qty)} {symbol}"]
        if details:
            limit_price = self._as_float(details.get("limit_price"))
            if limit_price is not None:
                parts.append(f"limit ${limit_price:,.2f}")
        self._logger.info(" | ".join(parts))

    def order_update(
        self,
        order_id: str,
        status: str,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        parts = [f"update | {order_id} | {status}"]
        if details:
            filled_price = self._as_float(details.get("filled_avg_price"))
            if filled_price is not None:
                parts.append(f"fill ${filled_price:,.3f}")
            reason = details.get("reject_reason")
            if reason:
                parts.append(f"reason {reason}")
            event_time = details.get("filled_at")
            if isinstance(event_time, str) and event_time.strip():
                parts.append(f"at {self._short_ts(event_time)}")
        self._logger.info(" | ".join(parts))

    def volume_alert(self, alert: Mapping[str, Any]) -> None:
        self._logger.info(
            "volume | %s | %s | vol %s | avg %s | z %s",
            alert.get("symbol", ""),
            alert.get("type", ""),
            f"{self._as_float(alert.get('current_volume')) or 0.0:,.0f}",
            f"{self._as_float(alert.get('avg_volume')) or 0.0:,.0f}",
            f"{self._as_float(alert.get('z_score')) or 0.0:+.2f}",
        )

    def imbalance(self, signal: Mapping[str, Any]) -> None:
        self._logger.info(
            "imbalance | %s | bid %s x %s | ask %s x %s | ratio %s",
            signal.get("symbol", ""),
            self._format_qty(self._as_float(signal.get("bid_size")) or 0.0),
            f"${self._as_float(signal.get('bid_price')) or 0.0:,.2f}",
            self._format_qty(self._as_float(signal.get("ask_size")) or 0.0),
            f"${self._as_float(signal.get('ask_price')) or 0.0:,.2f}",
            f"{self._as_float(signal.get('imbalance')) or 0.0:.2f}",
        )

    def trade_executed(self, execution: Mapping[str, Any]) -> None:
        self._logger.info(
            "trade | %s | %s %s %s @ $%s | %s",
            execution.get("order_id", ""),
            execution.get("side", ""),
            execution.get("qty", ""),
            execution.get("symbol", ""),
            f"{self._as_float(execution.get('price')) or 0.0:,.2f}",
            execution.get("reason", ""),
        )

    def account(self, summary: AccountSummary) -> None:
        self._logger.info(
            "account | %s | cash $%s | equity $%s | buying_power $%s",
            summary.account_number,
            f"{summary.cash:,.2f}",
            f"{summary.equity:,.2f}",
            f"{summary.buying_power:,.2f}",
        )

    def position_exposure(
        self,
        symbol: str,
        qty: float,
        market_value: float | Decimal | None = None,
        cost_basis: float | Decimal | None = None,
        unrealized_pl: float | Decimal | None = None,
    ) -> None:
        parts = [f"position | {symbol} | qty {self._format_qty(qty, signed=True)}"]
        if market_value is not None:
            parts.append(f"value ${market_value:,.2f}")
        if cost_basis is not None:
            parts.append(f"cost ${cost_basis:,.2f}")
        if unrealized_pl is not None:
            parts.append(f"upl {unrealized_pl:+,.2f}")
        self._logger.info(" | ".join(parts))

    def leaderboard(self, entries: list[LeaderboardEntry]) -> None:
        for rank, entry in enumerate(entries, start=1):
            self._logger.info(
                "leaderboard | #%d %s | equity $%s | return %s",
                rank,
                entry.user_id,
                f"{entry.equity:,.2f}",
                f"{entry.return_pct:+.3f}%",
            )

    def error(self, message: str) -> None:
        self._logger.error("error | %s", message)

    @staticmethod
    def _as_float(value: Any) -> float | None:
        if value is None:
            return None
        if isinstance(value, (int, float, Decimal)):
            return float(value)
        text = str(value).strip()
        if not text:
            return None
        try:
            return float(text)
        except ValueError:
            return None

    @staticmethod
    def _format_qty(value: float, signed: bool = False, precision: int = 8) -> str:
        normalized = 0.0 if abs(float(value)) < 1e-9 else float(value)
        template = f"{{:{'+' if signed else ''}.{max(0, precision)}f}}"
        text = template.format(normalized).rstrip("0").rstrip(".")
        if text in {"", "+", "-", "-0"}:
            return "+0" if signed else "0"
        return text

    @staticmethod
    def _short_ts(value: str) -> str:
        text = value.strip()
        normalized = text.replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(normalized)
        except ValueError:
            return text
        return parsed.strftime("%H:%M:%S")
