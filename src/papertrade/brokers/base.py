"""Trading client contract used by the detector's auto-trade path."""

from __future__ import annotations

from typing import Protocol

from papertrade.domain.models import AccountSummary, Order, OrderRequest, Position


class TradingClient(Protocol):
    """Interface shared by the live broker and the virtual ledger binding."""

    def get_account(self) -> AccountSummary:
        """Return the account summary, including buying power."""

    def get_position(self, symbol: str) -> Position | None:
        """Return the open long position for symbol, or None when flat."""

    def submit_order(self, request: OrderRequest) -> Order:
        """Submit an order and return its resulting state."""
